"""
User model for OAuth identities.
"""

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from guestbook.db import Base
from guestbook.models.base import TimestampMixin
from guestbook.settings import settings


class AuthProvider(str, Enum):
    GOOGLE = "google"
    GITHUB = "github"


class User(Base, TimestampMixin):
    """Signed-in guestbook visitor, upserted on every OAuth sign-in."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)  # Provider avatar URLs can be long

    # OAuth
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_sub: Mapped[str] = mapped_column(String(255), nullable=False)  # OAuth subject ID

    # Session management
    session_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True, index=True)
    session_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "provider_sub", name="uq_user_provider_sub"),
    )

    def generate_session_token(self) -> str:
        """Generate a new session token and set expiry."""
        self.session_token = secrets.token_hex(32)
        self.session_expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.session_expire_hours)
        return self.session_token

    def clear_session(self) -> None:
        """Clear session token."""
        self.session_token = None
        self.session_expires_at = None

    def is_session_valid(self) -> bool:
        """Check if current session is valid."""
        if not self.session_token or not self.session_expires_at:
            return False
        expires_at = self.session_expires_at
        if expires_at.tzinfo is None:
            # SQLite hands back naive datetimes
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) < expires_at

    def __repr__(self) -> str:
        return f"<User {self.email}>"
