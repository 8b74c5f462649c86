"""
Nested-path record editor.

Reads and writes values inside FHIR resource trees using dotted paths such
as ``code.coding.0.display``. Writes are copy-on-write: ``set_path`` returns
a new tree and leaves its argument untouched, so a draft never leaks changes
into the fetched collection it was copied from.

Conventions applied on write:

- Missing intermediate containers are created (a list when the next segment
  is an index, a dict otherwise).
- When the value already at the target is a list (``note``, ``category``),
  the text goes into the first element's ``text`` field.
- Timestamp fields are normalised to ``YYYY-MM-DDTHH:MM:00+00:00``.
"""

import copy
import logging
from datetime import date, datetime, timezone

from records.errors import EditError

logger = logging.getLogger(__name__)

# Fields holding a dateTime that the editor normalises on write
TIMESTAMP_PATHS = frozenset({
    ('onsetDateTime',),
    ('recordedDate',),
    ('abatementDateTime',),
    ('effectiveDateTime',),
})

TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:00+00:00'

_MISSING = object()


def parse_path(path) -> tuple:
    """
    Split an edit path into segments.

    Accepts a dotted string or a sequence of segments. All-digit segments
    become integer list indices.

    Raises:
        EditError: If the path is empty or contains an empty or negative segment
    """
    if isinstance(path, str):
        raw = path.split('.')
    elif isinstance(path, (list, tuple)):
        raw = list(path)
    else:
        raise EditError(f'Unsupported path type: {type(path).__name__}')

    if not raw:
        raise EditError('Edit path is empty')

    segments = []
    for seg in raw:
        if isinstance(seg, bool):
            raise EditError(f'Invalid path segment: {seg!r}')
        if isinstance(seg, int):
            if seg < 0:
                raise EditError(f'Negative index in path: {seg}')
            segments.append(seg)
        elif isinstance(seg, str) and seg:
            segments.append(int(seg) if seg.isdigit() else seg)
        else:
            raise EditError(f'Invalid path segment in {path!r}')
    return tuple(segments)


def get_path(record, path):
    """Return the value at ``path``, or None when any segment is missing."""
    try:
        segments = parse_path(path)
    except EditError:
        return None

    current = record
    for seg in segments:
        current = _child(current, seg)
        if current is _MISSING:
            return None
    return current


def set_path(record, path, value, timestamp_paths=TIMESTAMP_PATHS):
    """
    Return a copy of ``record`` with ``value`` written at ``path``.

    Raises:
        EditError: If the path descends into a scalar, indexes a dict-only
            position with a field name, or changes ``resourceType``
    """
    segments = parse_path(path)

    if segments == ('resourceType',):
        existing = record.get('resourceType') if isinstance(record, dict) else None
        if existing and value != existing:
            raise EditError(
                f'resourceType is immutable ({existing} -> {value})'
            )

    if segments in timestamp_paths:
        value = normalize_timestamp(value)

    updated = copy.deepcopy(record) if record is not None else {}
    current = updated
    for index, seg in enumerate(segments[:-1]):
        child = _child(current, seg)
        if child is _MISSING or child is None or child == '':
            child = [] if isinstance(segments[index + 1], int) else {}
            _assign(current, seg, child, path)
        elif not isinstance(child, (dict, list)):
            raise EditError(
                f'Cannot descend into {type(child).__name__} at {seg!r} of {path!r}'
            )
        current = child

    terminal = segments[-1]
    existing = _child(current, terminal)
    if isinstance(existing, list) and not isinstance(value, list):
        # Note-like and code-like sequences carry their text in element 0
        if existing and isinstance(existing[0], dict):
            existing[0]['text'] = value
        elif existing:
            existing[0] = {'text': value}
        else:
            existing.append({'text': value})
    else:
        _assign(current, terminal, value, path)

    logger.debug(f'Set {".".join(str(s) for s in segments)} on '
                 f'{updated.get("resourceType", "record")}')
    return updated


def normalize_timestamp(value):
    """
    Normalise a dateTime input to ``YYYY-MM-DDTHH:MM:00+00:00`` in UTC.

    Accepts ``datetime``/``date`` objects, ``YYYY-MM-DDTHH:MM`` (the
    datetime-local form input), full ISO-8601 strings with an offset or
    ``Z``, and bare dates. Naive values are taken as UTC. Empty input
    clears the field.

    Raises:
        EditError: If the value cannot be parsed as a timestamp
    """
    if value is None or value == '':
        return value

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            raise EditError(f'Invalid timestamp: {value!r}')
    else:
        raise EditError(f'Invalid timestamp type: {type(value).__name__}')

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def _child(container, seg):
    if isinstance(container, dict):
        key = str(seg) if isinstance(seg, int) else seg
        return container.get(key, _MISSING)
    if isinstance(container, list) and isinstance(seg, int):
        if seg < len(container):
            return container[seg]
    return _MISSING


def _assign(container, seg, value, path):
    if isinstance(container, dict):
        container[str(seg) if isinstance(seg, int) else seg] = value
        return
    if not isinstance(seg, int):
        raise EditError(f'Field {seg!r} addresses a list in {path!r}')
    while len(container) < seg:
        container.append({})
    if seg == len(container):
        container.append(value)
    else:
        container[seg] = value
