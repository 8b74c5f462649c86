"""
Create, update and delete submissions with binary outcomes.

Every operation returns an Outcome instead of raising: Success carries the
server-confirmed record when the server sent one back, Failure carries the
cause. Callers reconcile their local copy with ``reconcile``.
"""

import copy
import logging
from dataclasses import dataclass

from records.client import BackendClient
from records.errors import RecordsError
from records.resources import ADAPTERS, Reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    record: dict | None = None
    # Id from the Location header when the server sent no body
    resource_id: str | None = None

    status = 'success'
    ok = True


@dataclass(frozen=True)
class Failure:
    cause: Exception

    status = 'failure'
    ok = False


def reconcile(current, draft, outcome):
    """
    Return the record the caller should hold after a submission.

    On success that is the server-confirmed record, or the submitted draft
    if the server sent none, stamped with the id from ``Location``. On
    failure the current record is kept.
    """
    if not outcome.ok:
        return current
    if outcome.record is not None:
        return outcome.record
    if outcome.resource_id and isinstance(draft, dict) and not draft.get('id'):
        draft = copy.deepcopy(draft)
        draft['id'] = outcome.resource_id
    return draft


def _confirmed(body, resource_type):
    if isinstance(body, dict) and body.get('resourceType') == resource_type:
        return body
    return None


class SubmissionPipeline:
    """Issues POST/PUT/DELETE against the backend."""

    def __init__(self, client: BackendClient):
        self.client = client

    async def create(self, resource_type: str, record: dict, credentials=None,
                     verify_subject: bool = False):
        """POST a new record. Optionally check its subject exists first."""
        problem = _check_type(resource_type, record)
        if problem:
            return Failure(problem)

        try:
            if verify_subject:
                await self._verify_subject(resource_type, record, credentials)
        except (RecordsError, ValueError) as e:
            logger.warning(f'Create {resource_type} rejected, subject check failed: {e}')
            return Failure(e)

        try:
            resp = await self.client.request(
                'POST', f'/{resource_type}', json=record, token=credentials
            )
            self.client.raise_for_status(resp, resource_type)
            body = self.client.json_body(resp)
        except RecordsError as e:
            logger.warning(f'Create {resource_type} failed: {e}')
            return Failure(e)

        confirmed = _confirmed(body, resource_type)
        created_id = (confirmed or {}).get('id') or _location_id(resp, resource_type)
        logger.info(f'Created {resource_type}/{created_id or "?"}')
        return Success(confirmed, resource_id=created_id)

    async def update(self, resource_type: str, resource_id: str, record: dict,
                     credentials=None):
        """PUT the full record at ``resource_type/resource_id``."""
        problem = _check_type(resource_type, record)
        if problem:
            return Failure(problem)

        body = copy.deepcopy(record)
        body['id'] = resource_id
        try:
            resp = await self.client.request(
                'PUT', f'/{resource_type}/{resource_id}', json=body, token=credentials
            )
            self.client.raise_for_status(resp, resource_type, resource_id)
            returned = self.client.json_body(resp)
        except RecordsError as e:
            logger.warning(f'Update {resource_type}/{resource_id} failed: {e}')
            return Failure(e)

        logger.info(f'Updated {resource_type}/{resource_id}')
        return Success(_confirmed(returned, resource_type))

    async def remove(self, resource_type: str, resource_id: str, credentials=None):
        """DELETE ``resource_type/resource_id``."""
        try:
            resp = await self.client.request(
                'DELETE', f'/{resource_type}/{resource_id}', token=credentials
            )
            self.client.raise_for_status(resp, resource_type, resource_id)
        except RecordsError as e:
            logger.warning(f'Delete {resource_type}/{resource_id} failed: {e}')
            return Failure(e)

        logger.info(f'Deleted {resource_type}/{resource_id}')
        return Success()

    async def _verify_subject(self, resource_type, record, credentials):
        """
        Raises:
            NotFound: If the referenced subject does not exist
            ValueError: If the record carries no resolvable subject
        """
        target = None
        if resource_type in ADAPTERS:
            target = ADAPTERS[resource_type].related_target(record)
        if target is None:
            raise ValueError(f'{resource_type} has no resolvable subject reference')
        subject_type, subject_id = target
        resp = await self.client.request(
            'GET', f'/{subject_type}/{subject_id}', token=credentials
        )
        self.client.raise_for_status(resp, subject_type, subject_id)


def _check_type(resource_type, record):
    if not isinstance(record, dict):
        return ValueError('Record must be a JSON object')
    actual = record.get('resourceType')
    if actual != resource_type:
        return ValueError(f'Record resourceType {actual!r} does not match {resource_type!r}')
    return None


def _location_id(resp, resource_type):
    """Id of the created resource from ``Location``/``Content-Location``, if any."""
    location = resp.headers.get('Location') or resp.headers.get('Content-Location')
    if not location:
        return None
    target = Reference(reference=location).target()
    if target is None or target[0] != resource_type:
        return None
    return target[1]
