"""HTTP ingest endpoint for the GPSLogger app."""

from __future__ import annotations

import base64
import binascii

import structlog
import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from crataegus.config import ServerSettings
from crataegus.errors import (
    ConflictError,
    PayloadError,
    StorageError,
    UnknownUserError,
    ValidationError,
)
from crataegus.ingest.gpslogger import GpsLoggerPayload
from crataegus.schemas.common import ErrorResponse, HealthResponse, InsertResponse
from crataegus.store import LocationStore

logger = structlog.get_logger()


def _error(message: str) -> dict:
    return ErrorResponse(error=message).model_dump()


def _parse_basic_auth(authorization: str | None) -> tuple[str, str] | None:
    if not authorization or not authorization.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(authorization[6:], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    username, password = decoded.split(":", 1)
    return username, password


def create_app(store: LocationStore) -> FastAPI:
    """Build the app around an already-open store."""
    app = FastAPI(title="Crataegus", version="0.1.0")

    @app.post(
        "/gpslogger",
        response_model=InsertResponse,
        responses={
            status: {"model": ErrorResponse} for status in (401, 403, 409, 422, 503)
        },
    )
    async def gpslogger_publish(
        request: Request,
        authorization: str | None = Header(default=None),
    ):
        """Receive a GPSLogger ``%ALL`` push.

        Authenticates via HTTP Basic auth. The payload is read from the
        query string, falling back to a URL-encoded body.
        """
        credentials = _parse_basic_auth(authorization)
        if credentials is None:
            return JSONResponse(
                status_code=401,
                content=_error("Authorization required"),
                headers={"WWW-Authenticate": 'Basic realm="crataegus"'},
            )
        username, password = credentials

        try:
            authorized = await store.user_check(username, password)
        except StorageError as e:
            logger.error("auth_storage_error", username=username, error=str(e))
            return JSONResponse(status_code=503, content=_error("Storage unavailable"))
        if not authorized:
            logger.warning("auth_failed", username=username)
            return JSONResponse(status_code=401, content=_error("Invalid credentials"))

        try:
            if request.query_params:
                payload = GpsLoggerPayload.from_params(request.query_params)
            else:
                payload = GpsLoggerPayload.from_body((await request.body()).decode("utf-8"))
            location = payload.to_location(username)
        except (PayloadError, ValidationError, UnicodeDecodeError) as e:
            logger.warning("gpslogger_payload_rejected", username=username, error=str(e))
            return JSONResponse(status_code=422, content=_error(str(e)))

        try:
            inserted = await store.insert(location)
        except ConflictError as e:
            return JSONResponse(status_code=409, content=_error(str(e)))
        except UnknownUserError as e:
            return JSONResponse(status_code=403, content=_error(str(e)))
        except ValidationError as e:
            return JSONResponse(status_code=422, content=_error(str(e)))
        except StorageError as e:
            logger.error("gpslogger_insert_failed", username=username, error=str(e))
            return JSONResponse(status_code=503, content=_error("Storage unavailable"))

        return InsertResponse(inserted=inserted)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok")

    return app


async def serve(store: LocationStore, settings: ServerSettings) -> None:
    """Run the app under uvicorn, with TLS when a cert and key are configured."""
    ssl_options = {}
    if settings.cert or settings.key:
        if not (settings.cert and settings.cert.exists()):
            raise FileNotFoundError(f"Certificate file does not exist: {settings.cert}")
        if not (settings.key and settings.key.exists()):
            raise FileNotFoundError(f"Key file does not exist: {settings.key}")
        ssl_options = {"ssl_certfile": str(settings.cert), "ssl_keyfile": str(settings.key)}
    else:
        logger.warning("tls_disabled", hint="Set server.cert and server.key for HTTPS")

    config = uvicorn.Config(
        create_app(store),
        host=settings.host,
        port=settings.port,
        log_level="info",
        **ssl_options,
    )
    server = uvicorn.Server(config)
    logger.info("server_listening", host=settings.host, port=settings.port, tls=bool(ssl_options))
    await server.serve()
