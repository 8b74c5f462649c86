"""
Query value types and per-resource capability adapters.

Each supported resource type gets an adapter that knows which attributes
can be searched and sorted, where its outgoing reference lives, and how to
summarise a record as a list row. The list engine only ever talks to
adapters, never to resource fields directly.
"""

import logging
from dataclasses import dataclass

from records.editor import get_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageSpec:
    """A page request: ``count`` records starting at ``offset``."""
    count: int
    offset: int = 0

    def __post_init__(self):
        if self.count <= 0:
            raise ValueError(f'Page count must be positive, got {self.count}')
        if self.offset < 0:
            raise ValueError(f'Page offset must be non-negative, got {self.offset}')

    def to_params(self) -> dict:
        return {'_count': self.count, '_offset': self.offset}


@dataclass(frozen=True)
class FilterSpec:
    """Substring filter on one searchable attribute."""
    attribute: str
    query: str = ''
    case_sensitive: bool = False


@dataclass(frozen=True)
class SortSpec:
    """Sort on one sortable attribute."""
    attribute: str


@dataclass(frozen=True)
class Reference:
    """
    A non-owning link to another resource.

    Resolved by the id embedded in ``reference`` (``Patient/123``) or,
    failing that, by ``identifier.value``.
    """
    reference: str | None = None
    type: str | None = None
    identifier_system: str | None = None
    identifier_value: str | None = None

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            return None
        identifier = data.get('identifier')
        if not isinstance(identifier, dict):
            identifier = {}
        return cls(
            reference=_text_or_none(data.get('reference')),
            type=_text_or_none(data.get('type')),
            identifier_system=_text_or_none(identifier.get('system')),
            identifier_value=_text_or_none(identifier.get('value')),
        )

    def target(self, default_type=None):
        """Return ``(resource_type, resource_id)`` or None if unresolvable."""
        if self.reference and '/' in self.reference:
            parts = [part for part in self.reference.split('/') if part]
            # Versioned references end in _history/{vid}
            if len(parts) >= 4 and parts[-2] == '_history':
                parts = parts[:-2]
            if len(parts) >= 2:
                return parts[-2], parts[-1]
        resource_type = self.type or default_type
        if self.identifier_value and resource_type:
            return resource_type, self.identifier_value
        return None


class ResourceAdapter:
    """
    Capability interface for one resource type.

    Subclasses declare ``searchable`` and ``sortable`` maps from attribute
    name to edit path, plus the default attributes used when a caller asks
    for an attribute the type does not know.
    """
    resource_type = None
    searchable = {}
    sortable = {}
    default_filter = None
    default_sort = None
    # Path to the outgoing Reference resolved by the joiner
    reference_path = None
    related_type = None

    def id(self, record):
        return record.get('id') if isinstance(record, dict) else None

    def resolve_filter_attribute(self, attribute):
        if attribute in self.searchable:
            return attribute
        logger.debug(
            f'{self.resource_type} has no searchable attribute {attribute!r}, '
            f'using {self.default_filter!r}'
        )
        return self.default_filter

    def filter_key(self, record, attribute) -> str:
        path = self.searchable[self.resolve_filter_attribute(attribute)]
        return _as_text(get_path(record, path))

    def sort_key(self, record, attribute) -> str | None:
        """Return the sort text, or None when the attribute is unmapped."""
        path = self.sortable.get(attribute)
        if path is None:
            return None
        return _as_text(get_path(record, path))

    def reference(self, record):
        if not self.reference_path:
            return None
        return Reference.from_dict(get_path(record, self.reference_path))

    def related_target(self, record):
        ref = self.reference(record)
        return ref.target(default_type=self.related_type) if ref else None

    def summarize(self, record) -> dict:
        return {'id': self.id(record)}


class PatientAdapter(ResourceAdapter):
    resource_type = 'Patient'
    searchable = {
        'name': 'name.0.family',
        'given': 'name.0.given.0',
        'identifier': 'identifier.0.value',
        'id': 'id',
        'gender': 'gender',
        'birthDate': 'birthDate',
    }
    sortable = searchable
    default_filter = 'name'
    default_sort = 'name'

    def summarize(self, record):
        return {
            'id': self.id(record),
            'family': get_path(record, 'name.0.family'),
            'given': get_path(record, 'name.0.given.0'),
            'gender': get_path(record, 'gender'),
            'birthDate': get_path(record, 'birthDate'),
            'identifier': get_path(record, 'identifier.0.value'),
        }


class ConditionAdapter(ResourceAdapter):
    resource_type = 'Condition'
    searchable = {
        'code': 'code.coding.0.code',
        'diagnose': 'code.coding.0.display',
        'patientId': 'subject.identifier.value',
        'clinicalStatus': 'clinicalStatus.coding.0.display',
        'note': 'note.0.text',
    }
    sortable = {
        'code': 'code.coding.0.code',
        'patientId': 'subject.identifier.value',
        'clinicalStatus': 'clinicalStatus.coding.0.display',
        'recordedDate': 'recordedDate',
    }
    default_filter = 'code'
    default_sort = 'recordedDate'
    reference_path = 'subject'
    related_type = 'Patient'

    def summarize(self, record):
        return {
            'id': self.id(record),
            'patientId': get_path(record, 'subject.identifier.value')
            or _reference_id(get_path(record, 'subject.reference')),
            'recordedDate': display_timestamp(get_path(record, 'recordedDate')),
            'diagnose': get_path(record, 'code.coding.0.display'),
            'code': get_path(record, 'code.coding.0.code'),
            'clinicalStatus': get_path(record, 'clinicalStatus.coding.0.display'),
            'note': get_path(record, 'note.0.text'),
        }


class ObservationAdapter(ResourceAdapter):
    resource_type = 'Observation'
    searchable = {
        'code': 'code.coding.0.code',
        'display': 'code.coding.0.display',
        'patientId': 'subject.reference',
        'status': 'status',
    }
    sortable = {
        'code': 'code.coding.0.code',
        'display': 'code.coding.0.display',
        'patientId': 'subject.reference',
        'status': 'status',
        'effectiveDateTime': 'effectiveDateTime',
    }
    default_filter = 'code'
    default_sort = 'effectiveDateTime'
    reference_path = 'subject'
    related_type = 'Patient'

    def summarize(self, record):
        quantity = get_path(record, 'valueQuantity') or {}
        value = quantity.get('value') if isinstance(quantity, dict) else None
        return {
            'id': self.id(record),
            'patientId': _reference_id(get_path(record, 'subject.reference')),
            'effectiveDateTime': display_timestamp(get_path(record, 'effectiveDateTime')),
            'display': get_path(record, 'code.coding.0.display'),
            'code': get_path(record, 'code.coding.0.code'),
            'status': get_path(record, 'status'),
            'value': value,
            'unit': quantity.get('unit') if isinstance(quantity, dict) else None,
        }


ADAPTERS = {
    adapter.resource_type: adapter
    for adapter in (PatientAdapter(), ConditionAdapter(), ObservationAdapter())
}

SUPPORTED_TYPES = tuple(ADAPTERS)


def adapter_for(resource_type) -> ResourceAdapter:
    """
    Return the adapter registered for ``resource_type``.

    Raises:
        ValueError: If the resource type is not supported
    """
    try:
        return ADAPTERS[resource_type]
    except KeyError:
        raise ValueError(f'Unsupported resource type: {resource_type}')


def display_timestamp(value):
    """Render ``2024-01-15T10:30:00+00:00`` as ``2024-01-15 10:30``."""
    if not isinstance(value, str) or not value:
        return ''
    return value[:16].replace('T', ' ')


def _reference_id(reference):
    if not isinstance(reference, str) or '/' not in reference:
        return reference
    return reference.rsplit('/', 1)[-1]


def _as_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    return str(value)


def _text_or_none(value):
    return value if isinstance(value, str) and value else None
