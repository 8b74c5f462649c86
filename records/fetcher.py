"""
Page and single-record reads from the FHIR resource server.
"""

import logging
from dataclasses import dataclass, field

from records.client import BackendClient
from records.errors import BackendError, ShapeError
from records.resources import PageSpec

logger = logging.getLogger(__name__)


@dataclass
class Page:
    """
    One fetched page of records.

    ``end_of_data`` is set when the server answered without an entry list,
    which is how it signals that the offset ran past the data.
    """
    records: list = field(default_factory=list)
    end_of_data: bool = False

    def __iter__(self):
        return iter(self.records)

    def __len__(self):
        return len(self.records)

    def __getitem__(self, index):
        return self.records[index]


def entries_from_bundle(bundle) -> list:
    """
    Extract the resources of a Bundle's entries.

    Raises:
        ShapeError: If the payload is not an object with an ``entry`` list
    """
    if not isinstance(bundle, dict) or not isinstance(bundle.get('entry'), list):
        raise ShapeError('Response has no Bundle entry list')
    resources = []
    for entry in bundle['entry']:
        resource = entry.get('resource') if isinstance(entry, dict) else None
        if isinstance(resource, dict):
            resources.append(resource)
        else:
            logger.debug('Skipping Bundle entry without a resource')
    return resources


class ResourceFetcher:
    """Reads pages and single records. No retries."""

    def __init__(self, client: BackendClient):
        self.client = client

    async def fetch_page(self, resource_type: str, page: PageSpec) -> Page:
        """
        Fetch one page of ``resource_type``.

        Raises:
            TransportError: If the server could not be reached
            BackendError: On a non-2xx status or unreadable body
        """
        resp = await self.client.request(
            'GET', f'/{resource_type}', params=page.to_params()
        )
        self.client.raise_for_status(resp, resource_type)
        bundle = self.client.json_body(resp)

        try:
            records = entries_from_bundle(bundle)
        except ShapeError:
            logger.info(
                f'No more {resource_type} data at offset {page.offset} '
                f'(count {page.count})'
            )
            return Page(records=[], end_of_data=True)

        logger.debug(f'Fetched {len(records)} {resource_type} at offset {page.offset}')
        return Page(records=records)

    async def fetch_by_id(self, resource_type: str, resource_id: str) -> dict:
        """
        Fetch a single record.

        Raises:
            NotFound: If the server has no such record
            TransportError: If the server could not be reached
            BackendError: On any other non-2xx status or unreadable body
        """
        resp = await self.client.request('GET', f'/{resource_type}/{resource_id}')
        self.client.raise_for_status(resp, resource_type, resource_id)
        record = self.client.json_body(resp)
        if not isinstance(record, dict):
            raise BackendError(
                f'{resource_type}/{resource_id} is not a resource object',
                status_code=resp.status_code,
            )
        return record
