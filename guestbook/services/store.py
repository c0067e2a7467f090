"""
Table store for guestbook rows over an async SQLAlchemy session factory.

Every committed write is published to the change feed so that mounted
guestbook sessions see it in realtime.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from guestbook.models.comment import MessageComment
from guestbook.models.like import MessageLike
from guestbook.models.message import Message
from guestbook.models.user import User
from guestbook.schemas import CommentRecord, LikeRecord, MessageRecord, UserRecord
from guestbook.services.realtime import ChangeEvent, ChangeFeed, ChangeType

logger = logging.getLogger(__name__)

MESSAGES = "messages"
MESSAGE_LIKES = "message_likes"
MESSAGE_COMMENTS = "message_comments"
USERS = "users"


class StoreError(Exception):
    """A store read or write failed; nothing was applied."""


class GuestbookStore:
    """Query and mutate the guestbook tables."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], feed: ChangeFeed | None = None):
        self._session_maker = session_maker
        self.feed = feed or ChangeFeed()

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_maker() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Error {action}: {e}")
                raise StoreError(f"Failed {action}") from e

    async def _publish(self, table: str, event_type: ChangeType, new=None, old=None) -> None:
        await self.feed.publish(ChangeEvent(table=table, event_type=event_type, new=new, old=old))

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def fetch_messages(self, offset: int, limit: int) -> list[MessageRecord]:
        """Newest-first page of messages starting at ``offset``."""
        async with self._session("fetching messages") as db:
            result = await db.execute(
                select(Message)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return [MessageRecord.model_validate(m) for m in result.scalars().all()]

    async def get_message(self, message_id: int) -> MessageRecord | None:
        async with self._session("fetching message") as db:
            message = await db.get(Message, message_id)
            return MessageRecord.model_validate(message) if message else None

    async def insert_message(
        self,
        *,
        user_image: str,
        user_email: str,
        user_name: str,
        msg: str,
        user_id: str | None = None,
    ) -> MessageRecord:
        async with self._session("inserting message") as db:
            message = Message(
                user_image=user_image,
                user_email=user_email,
                user_name=user_name,
                msg=msg,
                user_id=user_id,
            )
            db.add(message)
            await db.commit()
            await db.refresh(message)
            record = MessageRecord.model_validate(message)

        logger.info(f"Message {record.id} inserted")
        await self._publish(MESSAGES, ChangeType.INSERT, new=record.model_dump())
        return record

    async def delete_message(self, message_id: int) -> bool:
        """Delete a message and, by cascade, its likes and comments."""
        async with self._session("deleting message") as db:
            result = await db.execute(
                delete(Message).where(Message.id == message_id).returning(Message.id)
            )
            deleted = result.scalars().all()
            await db.commit()

        if deleted:
            logger.info(f"Message {message_id} deleted")
            await self._publish(MESSAGES, ChangeType.DELETE, old={"id": message_id})
        return bool(deleted)

    # -------------------------------------------------------------------------
    # Likes
    # -------------------------------------------------------------------------

    async def list_likes(self, message_id: int) -> list[LikeRecord]:
        async with self._session("fetching likes") as db:
            result = await db.execute(
                select(MessageLike)
                .where(MessageLike.message_id == message_id)
                .order_by(MessageLike.id)
            )
            return [LikeRecord.model_validate(like) for like in result.scalars().all()]

    async def find_likes(self, message_id: int, user_identifier: str) -> list[LikeRecord]:
        async with self._session("checking like") as db:
            result = await db.execute(
                select(MessageLike).where(
                    MessageLike.message_id == message_id,
                    MessageLike.user_identifier == user_identifier,
                )
            )
            return [LikeRecord.model_validate(like) for like in result.scalars().all()]

    async def toggle_like(self, message_id: int, user_identifier: str, user_id: str | None = None) -> bool:
        """Remove the visitor's like if present, otherwise add one.

        Runs as a single transaction. The unique constraint on
        (message_id, user_identifier) turns a concurrent double-insert into
        an IntegrityError; if the other insert's row is there, that counts as
        liked. Any other integrity failure, such as a message deleted in the
        meantime, raises StoreError.
        """
        async with self._session("toggling like") as db:
            result = await db.execute(
                delete(MessageLike)
                .where(
                    MessageLike.message_id == message_id,
                    MessageLike.user_identifier == user_identifier,
                )
                .returning(MessageLike.id)
            )
            removed = result.scalars().all()
            if removed:
                await db.commit()
                liked = False
                new_like = None
            else:
                like = MessageLike(message_id=message_id, user_identifier=user_identifier, user_id=user_id)
                db.add(like)
                try:
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    existing = await db.execute(
                        select(MessageLike.id).where(
                            MessageLike.message_id == message_id,
                            MessageLike.user_identifier == user_identifier,
                        )
                    )
                    if existing.first() is None:
                        logger.error(f"Error liking message {message_id}: {e}")
                        raise StoreError("Failed toggling like") from e
                    logger.info(f"Like on message {message_id} already recorded by a concurrent toggle")
                    return True
                await db.refresh(like)
                liked = True
                new_like = LikeRecord.model_validate(like)

        if liked:
            await self._publish(MESSAGE_LIKES, ChangeType.INSERT, new=new_like.model_dump())
        else:
            for like_id in removed:
                await self._publish(MESSAGE_LIKES, ChangeType.DELETE, old={"id": like_id, "message_id": message_id})
        return liked

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    async def list_comments(self, message_id: int) -> list[CommentRecord]:
        """Comments on a message, oldest first."""
        async with self._session("fetching comments") as db:
            result = await db.execute(
                select(MessageComment)
                .where(MessageComment.message_id == message_id)
                .order_by(MessageComment.created_at.asc(), MessageComment.id.asc())
            )
            return [CommentRecord.model_validate(c) for c in result.scalars().all()]

    async def get_comment(self, comment_id: int) -> CommentRecord | None:
        async with self._session("fetching comment") as db:
            comment = await db.get(MessageComment, comment_id)
            return CommentRecord.model_validate(comment) if comment else None

    async def insert_comment(
        self,
        *,
        message_id: int,
        user_image: str,
        user_email: str,
        user_name: str,
        comment: str,
        user_id: str | None = None,
    ) -> CommentRecord:
        async with self._session("inserting comment") as db:
            row = MessageComment(
                message_id=message_id,
                user_image=user_image,
                user_email=user_email,
                user_name=user_name,
                comment=comment,
                user_id=user_id,
            )
            db.add(row)
            await db.commit()
            await db.refresh(row)
            record = CommentRecord.model_validate(row)

        logger.info(f"Comment {record.id} inserted on message {message_id}")
        await self._publish(MESSAGE_COMMENTS, ChangeType.INSERT, new=record.model_dump())
        return record

    async def delete_comment(self, comment_id: int) -> bool:
        async with self._session("deleting comment") as db:
            result = await db.execute(
                delete(MessageComment)
                .where(MessageComment.id == comment_id)
                .returning(MessageComment.message_id)
            )
            deleted = result.scalars().all()
            await db.commit()

        if deleted:
            logger.info(f"Comment {comment_id} deleted")
            await self._publish(
                MESSAGE_COMMENTS, ChangeType.DELETE, old={"id": comment_id, "message_id": deleted[0]},
            )
        return bool(deleted)

    # -------------------------------------------------------------------------
    # Users and sessions
    # -------------------------------------------------------------------------

    async def upsert_user(
        self,
        *,
        provider: str,
        provider_sub: str,
        email: str,
        name: str,
        image: str | None = None,
    ) -> UserRecord:
        """Create or refresh the user row for an OAuth identity."""
        async with self._session("upserting user") as db:
            result = await db.execute(
                select(User).where(User.provider == provider, User.provider_sub == provider_sub)
            )
            user = result.scalar_one_or_none()
            if user:
                user.email = email
                user.name = name
                if image:
                    user.image = image
                event_type = ChangeType.UPDATE
            else:
                user = User(provider=provider, provider_sub=provider_sub, email=email, name=name, image=image)
                db.add(user)
                event_type = ChangeType.INSERT
            await db.commit()
            await db.refresh(user)
            record = UserRecord.model_validate(user)

        logger.info(f"User data upserted for {provider} identity {record.id}")
        await self._publish(USERS, event_type, new=record.model_dump())
        return record

    async def start_session(self, user_id: str) -> str:
        """Issue a new session token for the user."""
        async with self._session("starting session") as db:
            user = await db.get(User, user_id)
            if user is None:
                raise StoreError(f"User {user_id} not found")
            token = user.generate_session_token()
            await db.commit()
            return token

    async def get_user_by_session(self, session_token: str) -> UserRecord | None:
        async with self._session("resolving session") as db:
            result = await db.execute(select(User).where(User.session_token == session_token))
            user = result.scalar_one_or_none()
            if not user or not user.is_session_valid():
                return None
            return UserRecord.model_validate(user)

    async def end_session(self, session_token: str) -> None:
        async with self._session("ending session") as db:
            result = await db.execute(select(User).where(User.session_token == session_token))
            user = result.scalar_one_or_none()
            if user:
                user.clear_session()
                await db.commit()
