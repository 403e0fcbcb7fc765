"""Exception types raised by the LiftLog session engine."""

from __future__ import annotations

from typing import Optional


class LiftLogError(Exception):
    """Base class for engine errors."""


class NotFoundError(LiftLogError, LookupError):
    """A session, exercise instance, set or template id does not resolve."""


class EmptySessionError(LiftLogError):
    """Finalize attempted on a session with no recorded work."""


class EmptySourceError(LiftLogError):
    """Repeat-from-history attempted on a source with no logged exercises."""


class GroupInvariantViolation(LiftLogError):
    """A group swap or merge would break 'not already grouped' or contiguity."""


class ActiveSessionConflict(LiftLogError):
    """A new session was requested while a conflicting one is still in progress."""

    def __init__(self, message: str, existing_session_id: Optional[str] = None):
        super().__init__(message)
        self.existing_session_id = existing_session_id


class StoreLoadError(LiftLogError):
    """Persisted data is unreadable or corrupt. Raw data is kept for manual recovery."""

    def __init__(self, message: str, raw_data: Optional[str] = None):
        super().__init__(message)
        self.raw_data = raw_data
