# Models package
from guestbook.db import Base
from guestbook.models.user import User, AuthProvider
from guestbook.models.message import Message
from guestbook.models.like import MessageLike
from guestbook.models.comment import MessageComment

__all__ = [
    "Base",
    "User",
    "AuthProvider",
    "Message",
    "MessageLike",
    "MessageComment",
]
