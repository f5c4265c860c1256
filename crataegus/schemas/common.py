"""Response schemas shared by the HTTP surface."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Standard health check response."""

    status: str = "ok"


class InsertResponse(BaseModel):
    """Outcome of a pushed location."""

    inserted: bool  # False when the exact same fix was already stored


class ErrorResponse(BaseModel):
    error: str
