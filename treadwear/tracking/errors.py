"""Domain errors raised by the session lifecycle and attribution engine.

Every error derives from ``TrackingError`` so callers (the HTTP layer, the
auto-management scheduler) can catch the whole family in one place.
Validation and invariant errors are raised synchronously and never retried
internally.  ``RepositoryFailure`` wraps whatever the persistent store raised
and keeps it reachable through ``__cause__``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any


class TrackingError(Exception):
    """Base class for all tracking domain errors."""


class ItemArchived(TrackingError):
    """Raised when a write targets an archived item."""

    def __init__(self, item_id: Any) -> None:
        super().__init__(f"Item {item_id} is archived")
        self.item_id = item_id


class ItemNotFound(TrackingError):
    """Raised when an item reference does not resolve."""

    def __init__(self, item_id: Any) -> None:
        super().__init__(f"Item {item_id} not found")
        self.item_id = item_id


class SessionAlreadyActive(TrackingError):
    """Raised when starting a session for an item that is already being worn."""

    def __init__(self, item_id: Any) -> None:
        super().__init__(f"Item {item_id} already has an active session")
        self.item_id = item_id


class SessionNotFound(TrackingError):
    """Raised when ending a session for an item with no active session."""

    def __init__(self, item_id: Any) -> None:
        super().__init__(f"No active session for item {item_id}")
        self.item_id = item_id


class InvalidHourBucket(TrackingError):
    """Raised when a value cannot be normalised to an hour bucket."""


class ValidationFailed(TrackingError):
    """Raised when input fails domain validation.

    Attributes:
        errors: Every problem found, not just the first one.
    """

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class RepositoryFailure(TrackingError):
    """Raised when the persistent store fails.  The store error is ``__cause__``."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Store operation '{operation}' failed{detail}")
        self.operation = operation


@contextmanager
def repository_errors(operation: str) -> Iterator[None]:
    """Wrap non-domain exceptions raised inside the block in ``RepositoryFailure``.

    Works around ``await`` expressions too, since the block runs in the
    caller's coroutine frame::

        with repository_errors("save sessions"):
            await store.save_sessions(sessions)

    Args:
        operation: Short description used in the error message.

    Raises:
        RepositoryFailure: If the block raised anything other than a TrackingError.
    """
    try:
        yield
    except TrackingError:
        raise
    except Exception as exc:
        raise RepositoryFailure(operation, exc) from exc
