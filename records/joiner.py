"""
Cross-reference join for a fetched page.

For each record on a page, fetch the record its reference points at (for
example a Condition's subject Patient). All fetches are started up front
and awaited together; a semaphore caps how many are in flight and a
whole-join timeout cancels whatever is still pending.

The result is always position-aligned with the input: a record whose
reference cannot be resolved, whose fetch fails, or whose fetch is
cancelled gets None in its slot.
"""

import asyncio
import logging
import os

from records.errors import RecordsError

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = int(os.environ.get('FHIR_JOIN_CONCURRENCY', '8'))

# Whole-join deadline in seconds
DEFAULT_JOIN_TIMEOUT = float(os.environ.get('FHIR_JOIN_TIMEOUT', '30'))


class CrossReferenceJoiner:
    """Resolves each record's outgoing reference through a ResourceFetcher."""

    def __init__(self, fetcher, concurrency: int = DEFAULT_CONCURRENCY,
                 timeout: float | None = DEFAULT_JOIN_TIMEOUT):
        if concurrency < 1:
            raise ValueError(f'Join concurrency must be at least 1, got {concurrency}')
        self.fetcher = fetcher
        self.concurrency = concurrency
        self.timeout = timeout

    async def join(self, records, adapter) -> list:
        """Return the related record (or None) for every record in order."""
        records = list(records)
        if not records:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def resolve(position, record):
            try:
                target = adapter.related_target(record)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f'Record at position {position} has a malformed reference: {e}')
                return None
            if target is None:
                logger.debug(f'Record at position {position} has no resolvable reference')
                return None
            resource_type, resource_id = target
            async with semaphore:
                try:
                    return await self.fetcher.fetch_by_id(resource_type, resource_id)
                except RecordsError as e:
                    logger.warning(
                        f'Join of {resource_type}/{resource_id} '
                        f'(position {position}) failed: {e}'
                    )
                    return None

        tasks = [
            asyncio.ensure_future(resolve(position, record))
            for position, record in enumerate(records)
        ]
        done, pending = await asyncio.wait(tasks, timeout=self.timeout)

        if pending:
            logger.warning(
                f'Join timed out after {self.timeout}s; '
                f'cancelling {len(pending)} of {len(tasks)} fetches'
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        return [task.result() if task in done else None for task in tasks]
