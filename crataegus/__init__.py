"""Crataegus: GPS location logging backed by a single-file SQLite store."""

from crataegus.errors import (
    BackupPathError,
    ConflictError,
    DuplicateUserError,
    StorageError,
    StoreError,
    UnknownUserError,
    ValidationError,
)
from crataegus.schemas.location import Location, Source, User
from crataegus.store import LocationStore

__all__ = [
    "BackupPathError",
    "ConflictError",
    "DuplicateUserError",
    "Location",
    "LocationStore",
    "Source",
    "StorageError",
    "StoreError",
    "UnknownUserError",
    "User",
    "ValidationError",
]
