"""
Async HTTP transport to the FHIR resource server.

All backend traffic (page reads, single reads, create/update/delete) goes
through BackendClient so that headers, the bearer token, timeouts and the
mapping from HTTP failures to record errors live in one place.

Conventions of the backend:

  GET    /{ResourceType}?_count={n}&_offset={m}   -> Bundle
  GET    /{ResourceType}/{id}                     -> resource
  POST   /{ResourceType}                          -> created resource
  PUT    /{ResourceType}/{id}                     -> updated resource
  DELETE /{ResourceType}/{id}
"""

import logging
import os

import httpx

from records.errors import BackendError, NotFound, TransportError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = os.environ.get('FHIR_BASE_URL', 'http://localhost:8080/fhir')

# Timeout for backend requests (seconds)
DEFAULT_TIMEOUT = float(os.environ.get('FHIR_TIMEOUT', '15'))

FHIR_JSON = 'application/fhir+json'


class BackendClient:
    """
    Thin wrapper around ``httpx.AsyncClient``.

    Use as an async context manager so the connection pool is closed on the
    event loop that opened it. An empty token means no-auth mode and the
    Authorization header is left out.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, token: str = '',
                 timeout: float = DEFAULT_TIMEOUT,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip('/')
        self.token = token or ''
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
            headers={
                'Accept': f'{FHIR_JSON}, application/json',
                'User-Agent': 'fhir-record-browser/1.0',
            },
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        await self._client.aclose()

    def _headers(self, token=None, with_body=False) -> dict:
        headers = {}
        token = self.token if token is None else token
        if token:
            headers['Authorization'] = f'Bearer {token}'
        if with_body:
            headers['Content-Type'] = FHIR_JSON
        return headers

    async def request(self, method: str, path: str, *, params: dict | None = None,
                      json: dict | None = None, token: str | None = None) -> httpx.Response:
        """
        Send one request and return the raw response.

        Raises:
            TransportError: On connection failures and timeouts
        """
        try:
            resp = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(token, with_body=json is not None),
            )
        except httpx.TimeoutException as e:
            logger.error(f'{method} {path} timed out: {e}')
            raise TransportError(f'{method} {path} timed out') from e
        except httpx.HTTPError as e:
            logger.error(f'{method} {path} failed: {e}')
            raise TransportError(f'{method} {path} failed: {e}') from e

        logger.debug(f'{method} {path} -> {resp.status_code}')
        return resp

    @staticmethod
    def raise_for_status(resp: httpx.Response, resource_type: str,
                         resource_id: str | None = None):
        """
        Map a non-2xx response to a record error.

        Raises:
            NotFound: On 404 for a single-resource URL
            BackendError: On any other non-2xx status
        """
        if resp.is_success:
            return
        if resp.status_code == 404 and resource_id is not None:
            raise NotFound(resource_type, resource_id)
        target = f'{resource_type}/{resource_id}' if resource_id else resource_type
        raise BackendError(
            f'Backend returned {resp.status_code} for {target}',
            status_code=resp.status_code,
        )

    @staticmethod
    def json_body(resp: httpx.Response):
        """
        Parse the response body as JSON; an empty body yields None.

        Raises:
            BackendError: If the body is not valid JSON
        """
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise BackendError(
                f'Unreadable response body: {resp.text[:200]}',
                status_code=resp.status_code,
            ) from e
