"""
SessionTap Errors

Exception hierarchy shared by the capture and replay pipelines.
"""

from typing import Optional


class SessionTapError(Exception):
    """Base class for all SessionTap errors."""


class SourceIOError(SessionTapError):
    """Raised when a capture log is missing or unreadable. Fatal for a run."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class NestedDecompressionError(SessionTapError):
    """Raised when a nested snapshot blob cannot be decompressed."""


class IdentityConsistencyViolation(SessionTapError):
    """Raised when an id would be bound to two different counterparts."""

    def __init__(self, message: str, original_id: Optional[str] = None, new_id: Optional[str] = None):
        super().__init__(message)
        self.original_id = original_id
        self.new_id = new_id


class RecompressionFailure(SessionTapError):
    """Raised when a blob flagged as originally compressed cannot be recompressed."""

    def __init__(self, message: str, event_index: Optional[int] = None):
        super().__init__(message)
        self.event_index = event_index


class DispatchError(SessionTapError):
    """Raised when the ingestion endpoint rejects a payload or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = None,
        body: Optional[str] = None
    ):
        super().__init__(message)
        self.url = url
        self.status = status
        self.body = body
