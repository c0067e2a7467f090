"""
JSON API for guestbook messages, likes and comments.
"""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, Response, status

from guestbook.deps import Classifier, CurrentUser, CurrentUserOptional, PostRateLimit, Store
from guestbook.schemas import (
    CommentRecord,
    Identity,
    LikeRecord,
    MessageRecord,
    ToggleLikeResult,
    ValidationFailed,
    is_valid_anonymous_name,
    validate_comment,
    validate_post,
)
from guestbook.services import interactions
from guestbook.services.guestbook import NAME_REQUIRED
from guestbook.services.profanity import ProfanityServiceError
from guestbook.settings import settings

router = APIRouter(prefix="/api", tags=["guestbook"])


def validation_error(errors: dict[str, str]) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"errors": errors},
    )


def verify_owner(user: Identity, owner_id: str | None) -> None:
    """Allow the row's owner or the guestbook admin."""
    if (owner_id and user.id == owner_id) or settings.is_admin(user.id):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to delete this")


async def get_message_or_404(store: Store, message_id: int) -> MessageRecord:
    message = await store.get_message(message_id)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


async def validate_submission(validator, data: dict[str, Any], body_field: str, user, classifier):
    if not user and not is_valid_anonymous_name(data.get("name")):
        raise validation_error({"name": NAME_REQUIRED})
    try:
        return await validator(interactions.form_fields(user, data, body_field), classifier)
    except ValidationFailed as e:
        raise validation_error(e.errors)
    except ProfanityServiceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


# =============================================================================
# Messages
# =============================================================================


@router.get("/messages", response_model=list[MessageRecord])
async def list_messages(
    store: Store,
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=50),
):
    """Newest-first page of messages."""
    return await store.fetch_messages(offset, limit or settings.page_size)


@router.get("/messages/{message_id}", response_model=MessageRecord)
async def get_message(message_id: int, store: Store):
    return await get_message_or_404(store, message_id)


@router.post(
    "/messages",
    response_model=MessageRecord,
    status_code=status.HTTP_201_CREATED,
    dependencies=[PostRateLimit],
)
async def create_message(
    store: Store,
    classifier: Classifier,
    user: CurrentUserOptional,
    data: dict[str, Any] = Body(...),
):
    """Post a message to the guestbook."""
    form = await validate_submission(validate_post, data, "msg", user, classifier)
    return await interactions.post_message(
        store, msg=form.msg, **interactions.author_fields(user, form.name, form.email),
    )


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(message_id: int, store: Store, user: CurrentUser):
    """Delete a message (owner or admin)."""
    message = await get_message_or_404(store, message_id)
    verify_owner(user, message.user_id)
    await interactions.delete_message(store, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Likes
# =============================================================================


@router.get("/messages/{message_id}/likes", response_model=list[LikeRecord])
async def list_likes(message_id: int, store: Store):
    return await interactions.get_likes(store, message_id)


@router.post("/messages/{message_id}/likes/toggle", response_model=ToggleLikeResult)
async def toggle_like(
    message_id: int,
    store: Store,
    user: CurrentUserOptional,
    data: dict[str, Any] | None = Body(default=None),
):
    """Toggle the visitor's like (add if absent, remove if present)."""
    data = data or {}
    await get_message_or_404(store, message_id)
    if not user and not is_valid_anonymous_name(data.get("name")):
        raise validation_error({"name": "Name is required to like messages"})

    author = interactions.author_fields(user, data.get("name"), data.get("email"))
    liked = await interactions.toggle_like(
        store, message_id, author["user_id"], author["user_name"], author["user_email"],
    )
    return ToggleLikeResult(liked=liked, likes=await interactions.get_likes(store, message_id))


# =============================================================================
# Comments
# =============================================================================


@router.get("/messages/{message_id}/comments", response_model=list[CommentRecord])
async def list_comments(message_id: int, store: Store):
    return await interactions.get_comments(store, message_id)


@router.post(
    "/messages/{message_id}/comments",
    response_model=CommentRecord,
    status_code=status.HTTP_201_CREATED,
    dependencies=[PostRateLimit],
)
async def create_comment(
    message_id: int,
    store: Store,
    classifier: Classifier,
    user: CurrentUserOptional,
    data: dict[str, Any] = Body(...),
):
    """Comment on a message."""
    await get_message_or_404(store, message_id)
    form = await validate_submission(validate_comment, data, "comment", user, classifier)
    return await interactions.post_comment(
        store, message_id, comment=form.comment, **interactions.author_fields(user, form.name, form.email),
    )


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(comment_id: int, store: Store, user: CurrentUser):
    """Delete a comment (owner or admin)."""
    comment = await store.get_comment(comment_id)
    if not comment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")
    verify_owner(user, comment.user_id)
    await interactions.delete_comment(store, comment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
