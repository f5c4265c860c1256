"""Pydantic schemas."""

from crataegus.schemas.common import ErrorResponse, HealthResponse, InsertResponse
from crataegus.schemas.location import Location, Source, User, validate_location, validate_user

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "InsertResponse",
    "Location",
    "Source",
    "User",
    "validate_location",
    "validate_user",
]
