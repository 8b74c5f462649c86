"""
Test fixtures for the clinical record browser.
"""

import asyncio
import copy
import json
import os

import httpx
import pytest

# Set test environment before importing app so no file-based DB is created
os.environ['TESTING'] = '1'
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
os.environ['LOG_LEVEL'] = 'INFO'

BASE_URL = 'http://fhir.test/fhir'


class FakeBackend:
    """
    In-memory FHIR server behind an httpx.MockTransport.

    Serves the list/read/create/update/delete conventions of the real
    backend. ``fail`` maps (method, path) to an HTTP status to return
    instead, ``raise_on`` maps (method, path) to an exception to raise,
    ``delays`` maps a path to seconds to sleep before answering.
    With ``return_minimal`` set, creates answer 201 with only a Location
    header, like a server honouring ``Prefer: return=minimal``.
    """

    def __init__(self):
        self.store = {}
        self.fail = {}
        self.raise_on = {}
        self.delays = {}
        self.requests = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.return_minimal = False
        self._next_id = 1

    def add(self, resource):
        resource = copy.deepcopy(resource)
        if not resource.get('id'):
            resource['id'] = f'gen-{self._next_id}'
            self._next_id += 1
        self.store[(resource['resourceType'], resource['id'])] = resource
        return resource

    def get(self, resource_type, resource_id):
        return self.store.get((resource_type, resource_id))

    def transport(self):
        return httpx.MockTransport(self.handler)

    def paths(self, method=None):
        return [path for m, path, _ in self.requests if method is None or m == method]

    async def handler(self, request):
        path = request.url.path.split('/fhir/', 1)[-1].strip('/')
        method = request.method
        self.requests.append((method, path, request))

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if path in self.delays:
                await asyncio.sleep(self.delays[path])
            if (method, path) in self.raise_on:
                raise self.raise_on[(method, path)]
            if (method, path) in self.fail:
                return httpx.Response(self.fail[(method, path)], json={
                    'resourceType': 'OperationOutcome',
                    'issue': [{'severity': 'error', 'code': 'exception'}],
                })
            return self._dispatch(method, path, request)
        finally:
            self.in_flight -= 1

    def _dispatch(self, method, path, request):
        parts = path.split('/')
        resource_type = parts[0]
        resource_id = parts[1] if len(parts) > 1 else None

        if method == 'GET' and resource_id is None:
            count = int(request.url.params.get('_count', 20))
            offset = int(request.url.params.get('_offset', 0))
            matches = [r for (t, _), r in self.store.items() if t == resource_type]
            window = matches[offset:offset + count]
            bundle = {'resourceType': 'Bundle', 'type': 'searchset', 'total': len(matches)}
            if window:
                bundle['entry'] = [{'resource': r} for r in window]
            return httpx.Response(200, json=bundle)

        if method == 'GET':
            resource = self.get(resource_type, resource_id)
            if resource is None:
                return httpx.Response(404, json={'resourceType': 'OperationOutcome'})
            return httpx.Response(200, json=resource)

        if method == 'POST':
            created = self.add(json.loads(request.content))
            if self.return_minimal:
                location = f'{BASE_URL}/{resource_type}/{created["id"]}/_history/1'
                return httpx.Response(201, headers={'Location': location})
            return httpx.Response(201, json=created)

        if method == 'PUT':
            body = json.loads(request.content)
            self.store[(resource_type, resource_id)] = body
            return httpx.Response(200, json=body)

        if method == 'DELETE':
            if self.store.pop((resource_type, resource_id), None) is None:
                return httpx.Response(404, json={'resourceType': 'OperationOutcome'})
            return httpx.Response(204)

        return httpx.Response(405)


@pytest.fixture
def backend():
    """An empty fake FHIR server."""
    return FakeBackend()


@pytest.fixture
def make_client(backend):
    """Factory for BackendClients wired to the fake server."""
    from records.client import BackendClient

    def factory(token=''):
        return BackendClient(BASE_URL, token=token, transport=backend.transport())
    return factory


@pytest.fixture
def app(backend):
    """Create a test Flask application talking to the fake server."""
    from main import app as flask_app
    flask_app.config['TESTING'] = True
    flask_app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
    flask_app.config['FHIR_BASE_URL'] = BASE_URL
    flask_app.config['FHIR_TOKEN'] = ''
    flask_app.config['FHIR_TRANSPORT'] = backend.transport()

    from models import db
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create a test client."""
    return app.test_client()


@pytest.fixture
def sample_patient():
    """Sample FHIR Patient resource."""
    return {
        'resourceType': 'Patient',
        'id': 'p1',
        'name': [{'family': 'Smith', 'given': ['John']}],
        'gender': 'male',
        'birthDate': '1990-01-15',
        'identifier': [
            {'system': 'http://example.org/mrn', 'value': 'MRN12345678'}
        ],
    }


@pytest.fixture
def second_patient():
    return {
        'resourceType': 'Patient',
        'id': 'p2',
        'name': [{'family': 'Ångström', 'given': ['Anna']}],
        'gender': 'female',
        'birthDate': '1984-06-02',
    }


def make_condition(condition_id, patient_id, code, display, status,
                   recorded='2024-01-15T10:30:00+00:00', note=None):
    condition = {
        'resourceType': 'Condition',
        'id': condition_id,
        'clinicalStatus': {
            'coding': [{
                'system': 'http://hl7.org/fhir/ValueSet/condition-clinical',
                'code': status,
                'display': status,
            }],
        },
        'code': {
            'coding': [{'system': 'http://snomed.info/sct', 'code': code, 'display': display}],
        },
        'subject': {
            'type': 'Patient',
            'reference': f'Patient/{patient_id}',
            'identifier': {'value': patient_id},
        },
        'recordedDate': recorded,
    }
    if note is not None:
        condition['note'] = [{'text': note}]
    return condition


@pytest.fixture
def sample_condition():
    """Sample FHIR Condition resource referencing patient p1."""
    return make_condition('c1', 'p1', '38341003', 'Hypertension', 'active',
                          note='Monitor blood pressure')


@pytest.fixture
def conditions():
    """A small set of Conditions in deliberately unsorted order."""
    return [
        make_condition('c1', 'p1', '73211009', 'Diabetes mellitus', 'active',
                       recorded='2024-03-01T09:00:00+00:00'),
        make_condition('c2', 'p2', '38341003', 'Hypertension', 'resolved',
                       recorded='2023-11-20T14:15:00+00:00'),
        make_condition('c3', 'p1', '195967001', 'Asthma', 'Inactive',
                       recorded='2024-01-05T08:45:00+00:00'),
        make_condition('c4', 'p3', '44054006', 'Type 2 diabetes', 'active',
                       recorded='2022-07-30T12:00:00+00:00'),
    ]


@pytest.fixture
def sample_observation():
    """Sample FHIR Observation resource."""
    return {
        'resourceType': 'Observation',
        'id': 'o1',
        'status': 'final',
        'code': {
            'coding': [
                {
                    'system': 'http://loinc.org',
                    'code': '2339-0',
                    'display': 'Glucose [Mass/volume] in Blood'
                }
            ]
        },
        'subject': {'reference': 'Patient/p1'},
        'effectiveDateTime': '2024-01-15T10:30:00Z',
        'valueQuantity': {
            'value': 95,
            'unit': 'mg/dL',
            'system': 'http://unitsofmeasure.org',
            'code': 'mg/dL'
        }
    }


@pytest.fixture
def condition_factory():
    """Build Condition resources with the given coding and status."""
    return make_condition
