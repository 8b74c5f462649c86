"""
Error taxonomy for backend and editing operations.

Operation boundaries (page load, join, submission) catch RecordsError and
turn it into a binary success/failure status.
"""


class RecordsError(Exception):
    """Base class for all record engine errors."""


class FetchFailed(RecordsError):
    """A backend read or write could not be completed."""


class TransportError(FetchFailed):
    """Network, DNS or timeout failure before a response arrived."""


class BackendError(FetchFailed):
    """The backend answered with a non-2xx status or an unreadable body."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class NotFound(RecordsError):
    """A single-resource read matched nothing."""

    def __init__(self, resource_type, resource_id):
        super().__init__(f'Resource {resource_type}/{resource_id} not found')
        self.resource_type = resource_type
        self.resource_id = resource_id


class ShapeError(RecordsError):
    """A list response lacked the Bundle entry wrapper (end of data)."""


class EditError(RecordsError, ValueError):
    """An edit path or value cannot be applied to a record."""
