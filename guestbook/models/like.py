"""
Message like model.
"""

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guestbook.db import Base
from guestbook.models.base import CreatedAtMixin


class MessageLike(Base, CreatedAtMixin):
    """A like on a message by a signed-in user or an anonymous name/email pair."""

    __tablename__ = "message_likes"

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Identity id, or "<name>_<email>" for anonymous visitors
    user_identifier: Mapped[str] = mapped_column(String(320), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # Relationships
    message = relationship("Message", back_populates="likes")

    # One like per visitor per message
    __table_args__ = (
        UniqueConstraint("message_id", "user_identifier", name="uq_message_like_identifier"),
    )

    def __repr__(self) -> str:
        return f"<MessageLike {self.user_identifier} on message {self.message_id}>"
