"""
Client-side filtering and sorting of fetched records.

Both operations are pure and work over any sequence; pass ``accessor`` to
run them over rows that wrap a record, e.g. ``(record, related)`` pairs.
Filtering always precedes sorting, see ``query``.
"""

import logging
import unicodedata

logger = logging.getLogger(__name__)


def _identity(item):
    return item


def collation_key(text):
    """
    Locale-style sort key.

    Primary order ignores case and accents, the raw string breaks ties so
    the order stays total.
    """
    decomposed = unicodedata.normalize('NFKD', text)
    base = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), text


def filter_records(records, spec, adapter, accessor=None):
    """
    Keep items whose attribute value contains ``spec.query``.

    Relative order is preserved. An empty query keeps everything; an
    attribute the adapter does not know falls back to its default filter
    attribute.
    """
    accessor = accessor or _identity
    if not spec.query:
        return list(records)

    attribute = adapter.resolve_filter_attribute(spec.attribute)
    needle = spec.query if spec.case_sensitive else spec.query.casefold()

    kept = []
    for item in records:
        haystack = adapter.filter_key(accessor(item), attribute)
        if not spec.case_sensitive:
            haystack = haystack.casefold()
        if needle in haystack:
            kept.append(item)
    return kept


def sort_records(records, spec, adapter, accessor=None):
    """
    Sort items by the collation key of an attribute value.

    Missing values sort as the empty string. Attributes the adapter cannot
    sort on leave the input order unchanged.
    """
    accessor = accessor or _identity
    items = list(records)
    if spec is None or spec.attribute not in adapter.sortable:
        if spec is not None:
            logger.debug(f'{adapter.resource_type} cannot sort on {spec.attribute!r}')
        return items
    return sorted(
        items,
        key=lambda item: collation_key(adapter.sort_key(accessor(item), spec.attribute)),
    )


def query(records, filter_spec, sort_spec, adapter, accessor=None):
    """Filter, then sort."""
    filtered = records if filter_spec is None else filter_records(
        records, filter_spec, adapter, accessor
    )
    return sort_records(filtered, sort_spec, adapter, accessor)
