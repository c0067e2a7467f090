"""
Request functions for guestbook interactions: messages, likes, comments
and the users table.
"""

import logging
from typing import Any
from urllib.parse import quote

from guestbook.schemas import CommentRecord, Identity, LikeRecord, MessageRecord, UserRecord
from guestbook.services.auth_providers import OAuthUserInfo
from guestbook.services.store import GuestbookStore
from guestbook.settings import settings

logger = logging.getLogger(__name__)


def default_avatar(user_name: str) -> str:
    """Generated avatar used when the author has no profile image."""
    return settings.default_avatar_url + quote(user_name, safe="")


def user_identifier(user_id: str | None, user_name: str, user_email: str) -> str:
    """Key for who liked a message: the identity id, else name and email."""
    return user_id or f"{user_name}_{user_email}"


async def store_user(store: GuestbookStore, user_info: OAuthUserInfo) -> UserRecord:
    """Upsert the users row for a freshly signed-in OAuth identity."""
    return await store.upsert_user(
        provider=user_info.provider,
        provider_sub=user_info.sub,
        email=user_info.email,
        name=user_info.name,
        image=user_info.picture,
    )


async def post_message(
    store: GuestbookStore,
    user_image: str | None,
    user_email: str,
    user_name: str,
    msg: str,
    user_id: str | None = None,
) -> MessageRecord:
    return await store.insert_message(
        user_image=user_image or default_avatar(user_name),
        user_email=user_email,
        user_name=user_name,
        msg=msg,
        user_id=user_id or None,
    )


async def delete_message(store: GuestbookStore, message_id: int) -> bool:
    deleted = await store.delete_message(message_id)
    if not deleted:
        logger.warning(f"Message {message_id} was already gone")
    return deleted


async def toggle_like(
    store: GuestbookStore,
    message_id: int,
    user_id: str | None,
    user_name: str,
    user_email: str,
) -> bool:
    """Like or unlike a message; returns True when the message is now liked."""
    identifier = user_identifier(user_id, user_name, user_email)
    liked = await store.toggle_like(message_id, identifier, user_id or None)
    logger.info(f"Message {message_id} {'liked' if liked else 'unliked'} by {identifier}")
    return liked


async def get_likes(store: GuestbookStore, message_id: int) -> list[LikeRecord]:
    return await store.list_likes(message_id)


async def post_comment(
    store: GuestbookStore,
    message_id: int,
    user_image: str | None,
    user_email: str,
    user_name: str,
    comment: str,
    user_id: str | None = None,
) -> CommentRecord:
    return await store.insert_comment(
        message_id=message_id,
        user_image=user_image or default_avatar(user_name),
        user_email=user_email,
        user_name=user_name,
        comment=comment,
        user_id=user_id or None,
    )


async def get_comments(store: GuestbookStore, message_id: int) -> list[CommentRecord]:
    return await store.list_comments(message_id)


async def delete_comment(store: GuestbookStore, comment_id: int) -> bool:
    deleted = await store.delete_comment(comment_id)
    if not deleted:
        logger.warning(f"Comment {comment_id} was already gone")
    return deleted


def author_fields(identity: Identity | None, name: str | None, email: str | None) -> dict[str, Any]:
    """Author columns for a new row: the profile when signed in, else the form."""
    if identity:
        return {
            "user_name": identity.name or name or settings.anonymous_name,
            "user_email": identity.email or email or settings.anonymous_email,
            "user_image": identity.avatar_url,
            "user_id": identity.id,
        }
    return {
        "user_name": name.strip() if name else settings.anonymous_name,
        "user_email": email or settings.anonymous_email,
        "user_image": None,
        "user_id": None,
    }


def form_fields(identity: Identity | None, data: dict[str, Any], body_field: str) -> dict[str, Any]:
    """Fields to validate; signed-in visitors post under their profile."""
    if identity:
        return {body_field: data.get(body_field)}
    return {
        "name": data.get("name"),
        "email": data.get("email"),
        body_field: data.get(body_field),
    }
