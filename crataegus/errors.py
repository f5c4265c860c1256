"""Exception taxonomy for the location store.

Only ``StorageError`` is worth retrying: it wraps engine-level faults,
including busy/lock contention that outlived the store's own bounded
retries. Everything else points at the caller's data.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from crataegus.schemas.location import Location


class StoreError(Exception):
    """Base class for every error raised by the store."""


class ValidationError(StoreError):
    """A record failed bound, finite, length or time-consistency checks."""


class ConflictError(StoreError):
    """A location with the same (username, time_utc) key but different data exists.

    The stored row is never overwritten; both versions are kept on the
    exception for diagnosis.
    """

    def __init__(self, original: Location, rejected: Location) -> None:
        self.original = original
        self.rejected = rejected
        super().__init__(
            f"location for {original.username!r} at {original.time_utc.isoformat()} "
            f"already stored with different data: stored={original!r} rejected={rejected!r}"
        )


class UnknownUserError(StoreError):
    """The username does not exist in the users table."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"unknown user: {username!r}")


class DuplicateUserError(StoreError):
    """``user_add`` was called with a username that is already taken."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"user already exists: {username!r}")


class StorageError(StoreError):
    """The database engine failed; ``__cause__`` holds the driver exception."""


class BackupPathError(StoreError):
    """A backup target path violated a precondition."""


class PayloadError(ValueError):
    """An ingestion payload (HTTP push, CSV row) could not be parsed."""
