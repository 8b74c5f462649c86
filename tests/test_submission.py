"""
Tests for create/update/delete submissions.
"""

import asyncio

import httpx
import pytest

from records.editor import set_path
from records.errors import BackendError, NotFound, TransportError
from records.submission import Failure, SubmissionPipeline, Success, reconcile


def submit(make_client, operation, *args, token='', **kwargs):
    async def run():
        async with make_client(token) as http:
            pipeline = SubmissionPipeline(http)
            return await getattr(pipeline, operation)(*args, **kwargs)
    return asyncio.run(run())


class TestCreate:

    def test_create_returns_confirmed_record(self, backend, make_client, sample_condition):
        del sample_condition['id']

        outcome = submit(make_client, 'create', 'Condition', sample_condition)

        assert outcome.ok
        assert outcome.status == 'success'
        assert outcome.record['id'].startswith('gen-')
        assert backend.get('Condition', outcome.record['id']) is not None
        _, _, request = backend.requests[0]
        assert request.headers['Content-Type'] == 'application/fhir+json'

    def test_create_failure(self, backend, make_client, sample_condition):
        backend.fail[('POST', 'Condition')] = 422

        outcome = submit(make_client, 'create', 'Condition', sample_condition)

        assert isinstance(outcome, Failure)
        assert outcome.status == 'failure'
        assert isinstance(outcome.cause, BackendError)
        assert outcome.cause.status_code == 422

    def test_create_transport_failure(self, backend, make_client, sample_condition):
        backend.raise_on[('POST', 'Condition')] = httpx.ConnectError('refused')

        outcome = submit(make_client, 'create', 'Condition', sample_condition)

        assert not outcome.ok
        assert isinstance(outcome.cause, TransportError)

    def test_resource_type_mismatch_is_not_sent(self, backend, make_client, sample_condition):
        outcome = submit(make_client, 'create', 'Observation', sample_condition)

        assert not outcome.ok
        assert isinstance(outcome.cause, ValueError)
        assert backend.requests == []

    def test_verify_subject_passes(self, backend, make_client, sample_patient, sample_condition):
        backend.add(sample_patient)

        outcome = submit(make_client, 'create', 'Condition', sample_condition,
                         verify_subject=True)

        assert outcome.ok
        assert backend.paths() == ['Patient/p1', 'Condition']

    def test_verify_subject_missing_patient(self, backend, make_client, sample_condition):
        outcome = submit(make_client, 'create', 'Condition', sample_condition,
                         verify_subject=True)

        assert not outcome.ok
        assert isinstance(outcome.cause, NotFound)
        assert backend.paths('POST') == []

    def test_verify_subject_without_reference(self, backend, make_client, sample_condition):
        del sample_condition['subject']

        outcome = submit(make_client, 'create', 'Condition', sample_condition,
                         verify_subject=True)

        assert not outcome.ok
        assert isinstance(outcome.cause, ValueError)
        assert backend.requests == []

    def test_credentials_override_client_token(self, backend, make_client, sample_patient):
        submit(make_client, 'create', 'Patient', sample_patient,
               credentials='per-request', token='default')
        _, _, request = backend.requests[0]
        assert request.headers['Authorization'] == 'Bearer per-request'

    def test_bodyless_create_reports_location_id(self, backend, make_client, sample_condition):
        """A 201 with only a Location header yields the created id."""
        backend.return_minimal = True
        del sample_condition['id']

        outcome = submit(make_client, 'create', 'Condition', sample_condition)

        assert outcome.ok
        assert outcome.record is None
        assert outcome.resource_id == 'gen-1'
        reconciled = reconcile(None, sample_condition, outcome)
        assert reconciled['id'] == 'gen-1'
        assert 'id' not in sample_condition


class TestUpdate:

    def test_active_to_resolved_confirmed(self, backend, make_client, sample_condition):
        backend.add(sample_condition)
        draft = set_path(sample_condition, 'clinicalStatus.coding.0.display', 'resolved')

        outcome = submit(make_client, 'update', 'Condition', 'c1', draft)

        assert outcome.ok
        assert outcome.record['clinicalStatus']['coding'][0]['display'] == 'resolved'
        assert reconcile(sample_condition, draft, outcome) == outcome.record
        assert backend.get('Condition', 'c1')['clinicalStatus']['coding'][0]['display'] == 'resolved'

    def test_active_to_resolved_rejected(self, backend, make_client, sample_condition):
        backend.add(sample_condition)
        backend.fail[('PUT', 'Condition/c1')] = 500
        draft = set_path(sample_condition, 'clinicalStatus.coding.0.display', 'resolved')

        outcome = submit(make_client, 'update', 'Condition', 'c1', draft)

        assert not outcome.ok
        kept = reconcile(sample_condition, draft, outcome)
        assert kept is sample_condition
        assert kept['clinicalStatus']['coding'][0]['display'] == 'active'

    def test_update_sets_id_without_mutating(self, backend, make_client, sample_condition):
        backend.add(sample_condition)
        draft = dict(sample_condition)
        del draft['id']

        submit(make_client, 'update', 'Condition', 'c1', draft)

        assert 'id' not in draft
        assert backend.get('Condition', 'c1')['id'] == 'c1'

    def test_update_missing_record(self, backend, make_client, sample_condition):
        backend.fail[('PUT', 'Condition/c1')] = 404
        outcome = submit(make_client, 'update', 'Condition', 'c1', sample_condition)
        assert isinstance(outcome.cause, NotFound)


class TestRemove:

    def test_remove(self, backend, make_client, sample_condition):
        backend.add(sample_condition)

        outcome = submit(make_client, 'remove', 'Condition', 'c1')

        assert outcome == Success()
        assert backend.get('Condition', 'c1') is None

    def test_remove_missing(self, make_client):
        outcome = submit(make_client, 'remove', 'Condition', 'gone')
        assert not outcome.ok
        assert isinstance(outcome.cause, NotFound)


class TestReconcile:

    def test_success_without_body_keeps_draft(self):
        draft = {'resourceType': 'Condition', 'id': 'c1'}
        assert reconcile({'id': 'c1'}, draft, Success()) is draft

    @pytest.mark.parametrize('outcome', [
        Failure(ValueError('bad')),
        Failure(BackendError('boom', status_code=500)),
    ])
    def test_failure_keeps_current(self, outcome):
        current = {'resourceType': 'Condition', 'id': 'c1'}
        assert reconcile(current, {'id': 'c1', 'changed': True}, outcome) is current
