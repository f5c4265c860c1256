"""Configuration management using Pydantic Settings."""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Location store settings."""

    path: Path = Path("crataegus.db")
    # Number of <path>.<unix-seconds>.bak snapshots kept after each backup
    backups: int = Field(default=7, ge=1)

    # Connection pool
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout_seconds: float = Field(default=120.0, gt=0)

    # Write contention. SQLite serializes writers; busy_timeout makes the
    # engine wait for the lock, the retry loop covers what is left over.
    busy_timeout_ms: int = Field(default=30_000, ge=0)
    busy_retries: int = Field(default=8, ge=0)
    busy_backoff_seconds: float = Field(default=0.05, ge=0)
    busy_backoff_max_seconds: float = Field(default=2.0, ge=0)


class ServerSettings(BaseModel):
    """HTTPS ingest endpoint settings."""

    host: str = "0.0.0.0"
    port: int = 8162
    cert: Path | None = None
    key: Path | None = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables, .env and TOML."""

    db: DatabaseSettings = DatabaseSettings()
    server: ServerSettings = ServerSettings()

    model_config = SettingsConfigDict(
        env_prefix="CRATAEGUS_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )


def load_settings(path: Path | None = None) -> Settings:
    """Build settings, layering a TOML file over env vars when given.

    The TOML file mirrors the settings layout::

        [db]
        path = "/var/lib/crataegus/locations.db"
        backups = 14

        [server]
        port = 8162
        cert = "/etc/crataegus/cert.pem"
        key = "/etc/crataegus/key.pem"
    """
    if path is None:
        return Settings()
    if not path.exists():
        raise FileNotFoundError(f"Config file does not exist: {path}")
    with path.open("rb") as f:
        data = tomllib.load(f)
    return Settings(**data)
