"""
List and draft state.

ListState holds everything a record list view needs (fetched page, joined
related records, filter, sort, page position, status). ``reduce`` applies
one action to a state and returns the next state; RecordList runs the
reducer and performs the backend fetches the transitions call for.

DraftSession owns one record being edited: edits go to a copy, and the
committed record only changes once the server confirms a submission.
"""

import copy
import logging
from dataclasses import dataclass, field, replace

from records.editor import set_path
from records.errors import FetchFailed
from records.listing import query
from records.paginator import Paginator
from records.resources import FilterSpec, SortSpec, adapter_for
from records.submission import Failure, reconcile

logger = logging.getLogger(__name__)


# --- Actions ---

@dataclass(frozen=True)
class SetFilter:
    attribute: str
    query: str = ''
    case_sensitive: bool = False


@dataclass(frozen=True)
class SetSort:
    attribute: str


@dataclass(frozen=True)
class SetPageSize:
    page_size: int


@dataclass(frozen=True)
class NextPage:
    pass


@dataclass(frozen=True)
class PrevPage:
    pass


@dataclass(frozen=True)
class GoToOffset:
    offset: int


@dataclass(frozen=True)
class Refresh:
    pass


@dataclass(frozen=True)
class PageLoaded:
    records: tuple
    related: tuple = ()
    end_of_data: bool = False


@dataclass(frozen=True)
class PageFailed:
    reason: str = ''


@dataclass(frozen=True)
class ListState:
    resource_type: str
    filter: FilterSpec = None
    sort: SortSpec = None
    paginator: Paginator = field(default_factory=Paginator)
    records: tuple = ()
    related: tuple = ()
    status: str | None = None
    end_of_data: bool = False

    @classmethod
    def initial(cls, resource_type, paginator=None):
        adapter = adapter_for(resource_type)
        return cls(
            resource_type=resource_type,
            filter=FilterSpec(attribute=adapter.default_filter),
            sort=SortSpec(attribute=adapter.default_sort),
            paginator=paginator or Paginator(),
        )


def reduce(state: ListState, action) -> ListState:
    """Return the state that follows ``state`` after ``action``."""
    if isinstance(action, SetFilter):
        return replace(state, filter=FilterSpec(
            attribute=action.attribute,
            query=action.query,
            case_sensitive=action.case_sensitive,
        ))
    if isinstance(action, SetSort):
        return replace(state, sort=SortSpec(attribute=action.attribute))
    if isinstance(action, SetPageSize):
        return replace(state, paginator=state.paginator.set_page_size(action.page_size))
    if isinstance(action, NextPage):
        return replace(state, paginator=state.paginator.advance())
    if isinstance(action, PrevPage):
        return replace(state, paginator=state.paginator.retreat())
    if isinstance(action, GoToOffset):
        return replace(state, paginator=state.paginator.go_to(action.offset))
    if isinstance(action, Refresh):
        return replace(state, status=None)
    if isinstance(action, PageLoaded):
        related = tuple(action.related) or (None,) * len(action.records)
        if len(related) != len(action.records):
            raise ValueError('Joined records must align with the page')
        return replace(
            state,
            records=tuple(action.records),
            related=related,
            status='success',
            end_of_data=action.end_of_data,
        )
    if isinstance(action, PageFailed):
        # Keep the previous page on screen
        return replace(state, status='failure')
    raise TypeError(f'Unknown list action: {type(action).__name__}')


def needs_fetch(before: ListState, after: ListState, action) -> bool:
    """Whether the transition requires fetching the page again."""
    if isinstance(action, (Refresh, SetPageSize)):
        return True
    return before.paginator.spec != after.paginator.spec


def visible_rows(state: ListState) -> list:
    """The ``(record, related)`` rows to show, filtered then sorted."""
    rows = list(zip(state.records, state.related))
    return query(
        rows, state.filter, state.sort,
        adapter_for(state.resource_type),
        accessor=lambda row: row[0],
    )


class RecordList:
    """
    Drives a ListState against the backend.

    ``dispatch`` reduces the action and fetches again when the page
    position changed; fetch failures leave the previous records in place
    and set ``status`` to failure.
    """

    def __init__(self, fetcher, joiner, state: ListState):
        self.fetcher = fetcher
        self.joiner = joiner
        self.state = state

    async def dispatch(self, action) -> ListState:
        before = self.state
        self.state = reduce(before, action)
        if needs_fetch(before, self.state, action):
            await self.refresh()
        return self.state

    async def refresh(self) -> ListState:
        resource_type = self.state.resource_type
        adapter = adapter_for(resource_type)
        try:
            page = await self.fetcher.fetch_page(resource_type, self.state.paginator.spec)
        except FetchFailed as e:
            logger.error(f'Error fetching {resource_type} page: {e}')
            self.state = reduce(self.state, PageFailed(str(e)))
            return self.state

        related = ()
        if page.records and adapter.related_type and self.joiner is not None:
            related = tuple(await self.joiner.join(page.records, adapter))

        self.state = reduce(self.state, PageLoaded(
            records=tuple(page.records),
            related=related,
            end_of_data=page.end_of_data,
        ))
        return self.state

    def rows(self) -> list:
        return visible_rows(self.state)


class DraftSession:
    """
    Editing session for one record.

    ``record`` is the committed copy (None for a new record), ``draft`` the
    working copy. ``status`` is None until a submission settles.
    """

    def __init__(self, record=None, resource_type=None, template=None):
        if record is None and template is None and resource_type is None:
            raise ValueError('A draft needs a record, a template or a resource type')
        self.record = record
        self.resource_type = resource_type or (record or template or {}).get('resourceType')
        self._template = template
        self.status = None
        self.outcome = None
        self.deleted = False
        self.discard()

    @property
    def is_new(self):
        return not (self.record and self.record.get('id'))

    def discard(self):
        """Throw away edits and start again from the committed record."""
        source = self.record if self.record is not None else self._template
        self.draft = copy.deepcopy(source) if source is not None else {
            'resourceType': self.resource_type
        }
        return self.draft

    def edit(self, path, value):
        self.draft = set_path(self.draft, path, value)
        return self.draft

    async def save(self, pipeline, credentials=None, verify_subject=False):
        """Create or update the draft, reconciling ``record`` on success."""
        if self.deleted:
            return self._settle(Failure(ValueError('Record has been deleted')))
        if self.is_new:
            outcome = await pipeline.create(
                self.resource_type, self.draft, credentials, verify_subject=verify_subject
            )
        else:
            outcome = await pipeline.update(
                self.resource_type, self.record['id'], self.draft, credentials
            )
        return self._settle(outcome)

    async def delete(self, pipeline, credentials=None):
        if self.is_new:
            return self._settle(Failure(ValueError('Record has not been saved yet')))
        outcome = await pipeline.remove(self.resource_type, self.record['id'], credentials)
        self.outcome = outcome
        self.status = outcome.status
        if outcome.ok:
            # Closed for good; later saves are refused
            self.deleted = True
            self.record = None
            self.draft = {'resourceType': self.resource_type}
        return outcome

    def _settle(self, outcome):
        self.outcome = outcome
        self.status = outcome.status
        self.record = reconcile(self.record, self.draft, outcome)
        if outcome.ok:
            self.draft = copy.deepcopy(self.record)
        return outcome
