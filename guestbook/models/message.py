"""
Message model for guestbook entries.
"""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guestbook.db import Base
from guestbook.models.base import CreatedAtMixin


class Message(Base, CreatedAtMixin):
    """A guestbook entry, immutable once posted."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)  # None for anonymous posts

    # Author snapshot at posting time
    user_image: Mapped[str] = mapped_column(Text, nullable=False)
    user_name: Mapped[str] = mapped_column(String(50), nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)

    msg: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationships
    likes = relationship("MessageLike", back_populates="message", cascade="all, delete-orphan", passive_deletes=True)
    comments = relationship("MessageComment", back_populates="message", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self) -> str:
        return f"<Message {self.id} by {self.user_name}>"
