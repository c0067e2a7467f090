"""
Message comment model.
"""

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guestbook.db import Base
from guestbook.models.base import CreatedAtMixin


class MessageComment(Base, CreatedAtMixin):
    """A comment left under a guestbook message."""

    __tablename__ = "message_comments"

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    user_image: Mapped[str] = mapped_column(Text, nullable=False)
    user_name: Mapped[str] = mapped_column(String(50), nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)

    comment: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationships
    message = relationship("Message", back_populates="comments")

    def __repr__(self) -> str:
        return f"<MessageComment {self.id} on message {self.message_id}>"
