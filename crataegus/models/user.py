"""User model."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from crataegus.models.base import Base
from crataegus.schemas.location import PASSWORD_MAX_LENGTH, USERNAME_MAX_LENGTH


class UserRecord(Base):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(USERNAME_MAX_LENGTH), primary_key=True)
    # Plaintext; see crataegus.schemas.location.User
    password: Mapped[str] = mapped_column(String(PASSWORD_MAX_LENGTH))
