"""
Guestbook session controller.

One controller backs one browser session. It owns the client-side view of
the guestbook (loaded messages, per-message like and comment caches, panel
toggles, pagination flags) and keeps it in step with the store through page
fetches, the messages change feed, and refetches after every write.

All state changes happen on the event loop. ``is_loading`` guards pagination
against re-entry, and a first-page reload starts a new load generation so
that a page fetched before it is dropped. Once ``unmount()`` has run, late
results from in-flight calls are dropped instead of applied.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from guestbook.schemas import (
    CommentRecord,
    Identity,
    LikeRecord,
    MessageRecord,
    ProfanityClassifier,
    ValidationFailed,
    is_valid_anonymous_name,
    validate_comment,
    validate_post,
)
from guestbook.services import interactions
from guestbook.services.profanity import ProfanityServiceError
from guestbook.services.realtime import ALL_EVENTS, ChangeEvent, ChangeType, Subscription
from guestbook.services.store import MESSAGES, StoreError
from guestbook.settings import settings

logger = logging.getLogger(__name__)

NAME_REQUIRED = "Please enter your name (at least 2 characters)"
POST_FORM = "post"


@dataclass(frozen=True)
class AnonymousAuthor:
    """Answer to the name prompt shown to anonymous visitors."""

    name: str
    email: str | None = None


Notifier = Callable[[str, str], None]
NamePrompt = Callable[[str], Awaitable[AnonymousAuthor | None]]


def _log_notification(level: str, text: str) -> None:
    logger.info(f"[{level}] {text}")


def comment_form_key(message_id: int) -> str:
    return f"comment:{message_id}"


def dedupe_by_id(messages: list[MessageRecord]) -> list[MessageRecord]:
    """Drop repeated ids, keeping the first occurrence and the order."""
    seen: set[int] = set()
    unique = []
    for message in messages:
        if message.id not in seen:
            seen.add(message.id)
            unique.append(message)
    return unique


@dataclass
class GuestbookState:
    messages: list[MessageRecord] = field(default_factory=list)
    likes: dict[int, list[LikeRecord]] = field(default_factory=dict)
    comments: dict[int, list[CommentRecord]] = field(default_factory=dict)
    expanded_comments: set[int] = field(default_factory=set)
    comment_forms: set[int] = field(default_factory=set)
    errors: dict[str, dict[str, str]] = field(default_factory=dict)
    has_more: bool = True
    is_loading: bool = False

    @property
    def offset(self) -> int:
        return len(self.messages)

    @property
    def message_ids(self) -> set[int]:
        return {m.id for m in self.messages}

    def find_message(self, message_id: int) -> MessageRecord | None:
        return next((m for m in self.messages if m.id == message_id), None)

    def find_comment(self, message_id: int, comment_id: int) -> CommentRecord | None:
        return next((c for c in self.comments.get(message_id, []) if c.id == comment_id), None)


class GuestbookController:
    """Drive one visitor's guestbook view against the store and change feed."""

    def __init__(
        self,
        store,
        classifier: ProfanityClassifier,
        *,
        identity: Identity | None = None,
        notify: Notifier | None = None,
        prompt: NamePrompt | None = None,
        page_size: int | None = None,
        admin_user_id: str | None = None,
        reload_delay: float | None = None,
        on_change: Callable[[], None] | None = None,
    ):
        self.store = store
        self.feed = store.feed
        self.classifier = classifier
        self.identity = identity
        self.notify = notify or _log_notification
        self.prompt = prompt
        self.on_change = on_change
        self.page_size = page_size or settings.page_size
        self.admin_user_id = admin_user_id if admin_user_id is not None else settings.admin_user_id
        self.reload_delay = settings.post_reload_delay_seconds if reload_delay is None else reload_delay

        self.state = GuestbookState()
        self.closed = False
        self._subscription: Subscription | None = None
        self._listener: asyncio.Task | None = None
        self._reload_task: asyncio.Task | None = None
        # Bumped by every first-page reload; page loads from an older generation are stale
        self._generation = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def mount(self) -> None:
        """Subscribe to message changes and load the first page."""
        self._subscription = await self.feed.subscribe(MESSAGES, ALL_EVENTS)
        self._listener = asyncio.create_task(self._listen(self._subscription))
        await self.load_initial()

    async def unmount(self) -> None:
        """Release the subscription and stop applying late results."""
        self.closed = True
        for task in (self._reload_task, self._listener):
            if task and not task.done():
                task.cancel()
        if self._subscription is not None:
            await self.feed.unsubscribe(self._subscription)
            self._subscription = None

    async def __aenter__(self) -> "GuestbookController":
        await self.mount()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.unmount()

    def _changed(self) -> None:
        """Tell the presentational layer that state moved on its own."""
        if self.on_change and not self.closed:
            self.on_change()

    @property
    def pending_reload(self) -> asyncio.Task | None:
        """The delayed first-page reload scheduled after a post, if any."""
        return self._reload_task

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load_initial(self) -> None:
        """Load page 0 and the interactions of every message on it.

        Starts a new load generation, so a page load still in flight is
        discarded when it returns.
        """
        self._generation += 1
        generation = self._generation
        self.state.is_loading = True
        try:
            rows = await self.store.fetch_messages(0, self.page_size)
            if not self._is_current(generation):
                return
            self.state.messages = dedupe_by_id(rows)

            for message in rows:
                await self.load_interactions(message.id)

            if self._is_current(generation):
                self.state.has_more = len(rows) == self.page_size
        except StoreError as e:
            logger.error(f"Error loading initial messages: {e}")
            if not self._is_current(generation):
                return
            self.state.messages = []
            self.state.has_more = False
            self.notify("error", "Failed to load messages. Please check your connection.")
        finally:
            if generation == self._generation:
                self.state.is_loading = False

    async def on_sentinel_visible(self) -> None:
        """The end-of-list marker scrolled into view."""
        if self.state.has_more and not self.state.is_loading:
            await self.load_more()

    async def load_more(self) -> None:
        """Fetch the next page at offset = loaded count and append new rows."""
        if self.closed or self.state.is_loading or not self.state.has_more:
            return

        generation = self._generation
        self.state.is_loading = True
        try:
            rows = await self.store.fetch_messages(self.state.offset, self.page_size)
            if not self._is_current(generation):
                logger.info("Dropping page fetched before a reload")
                return

            loaded = self.state.message_ids
            new_messages = [m for m in rows if m.id not in loaded]
            if new_messages:
                self.state.messages = dedupe_by_id(self.state.messages + new_messages)
                for message in new_messages:
                    await self.load_interactions(message.id)

            if self._is_current(generation):
                self.state.has_more = len(new_messages) == self.page_size
        except StoreError as e:
            logger.error(f"Error loading messages: {e}")
            if not self._is_current(generation):
                return
            self.state.has_more = False
            self.notify("error", "Failed to load messages. Please check your connection.")
        finally:
            if generation == self._generation:
                self.state.is_loading = False

    def _is_current(self, generation: int) -> bool:
        return not self.closed and generation == self._generation

    async def load_interactions(self, message_id: int) -> None:
        """Refresh the like and comment caches of one message."""
        await self._refresh_likes(message_id)
        await self._refresh_comments(message_id)

    async def _refresh_likes(self, message_id: int) -> None:
        try:
            likes = await interactions.get_likes(self.store, message_id)
        except StoreError as e:
            logger.error(f"Error fetching likes for message {message_id}: {e}")
            return
        if not self.closed:
            self.state.likes[message_id] = likes

    async def _refresh_comments(self, message_id: int) -> None:
        try:
            comments = await interactions.get_comments(self.store, message_id)
        except StoreError as e:
            logger.error(f"Error fetching comments for message {message_id}: {e}")
            return
        if not self.closed:
            self.state.comments[message_id] = comments

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    async def _listen(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                changed = self.apply_change(event)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed {event.table} change: {e}")
                continue
            if changed:
                self._changed()

    def apply_change(self, event: ChangeEvent) -> bool:
        """Merge a messages-table change; returns True when state changed.

        Only inserts are merged. Updates and deletions made elsewhere show
        up on the next full reload.
        """
        if self.closed or event.table != MESSAGES or event.event_type != ChangeType.INSERT:
            return False
        if not event.new or "id" not in event.new:
            return False

        message = MessageRecord.model_validate(event.new)
        if message.id in self.state.message_ids:
            return False
        self.state.messages = [message] + self.state.messages
        return True

    # -------------------------------------------------------------------------
    # Viewer helpers
    # -------------------------------------------------------------------------

    def can_delete(self, owner_id: str | None) -> bool:
        """Only the owner or the admin gets a delete control."""
        if not self.identity:
            return False
        if owner_id and self.identity.id == owner_id:
            return True
        return bool(self.admin_user_id) and self.identity.id == self.admin_user_id

    def is_liked(self, message_id: int) -> bool:
        if not self.identity:
            return False
        return any(
            like.user_id == self.identity.id or like.user_identifier == self.identity.id
            for like in self.state.likes.get(message_id, [])
        )

    async def _ask_for_author(self, question: str) -> AnonymousAuthor | None:
        if self.prompt is None:
            return None
        author = await self.prompt(question)
        if author is None or not is_valid_anonymous_name(author.name):
            return None
        return AnonymousAuthor(name=author.name.strip(), email=author.email or None)

    # -------------------------------------------------------------------------
    # Likes
    # -------------------------------------------------------------------------

    async def toggle_like(self, message_id: int) -> bool | None:
        """Like or unlike; returns the new liked state, or None if aborted."""
        if self.identity:
            author = interactions.author_fields(self.identity, None, None)
        else:
            anonymous = await self._ask_for_author("Please enter your name to like this message:")
            if anonymous is None:
                self.notify("error", "Name is required to like messages")
                return None
            author = interactions.author_fields(self.identity, anonymous.name, anonymous.email)

        try:
            liked = await interactions.toggle_like(
                self.store, message_id, author["user_id"], author["user_name"], author["user_email"],
            )
        except StoreError:
            self.notify("error", "Failed to like message. Please try again.")
            return None

        await self._refresh_likes(message_id)
        return liked

    # -------------------------------------------------------------------------
    # Comment panels
    # -------------------------------------------------------------------------

    async def toggle_comments(self, message_id: int) -> None:
        """Expand or collapse a comment panel, loading comments on first open."""
        if message_id in self.state.expanded_comments:
            self.state.expanded_comments.discard(message_id)
            return
        self.state.expanded_comments.add(message_id)
        if message_id not in self.state.comments:
            await self.load_interactions(message_id)

    def toggle_comment_form(self, message_id: int) -> bool:
        if message_id in self.state.comment_forms:
            self.state.comment_forms.discard(message_id)
            return False
        self.state.comment_forms.add(message_id)
        return True

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def post_message(self, data: dict[str, Any]) -> MessageRecord | None:
        """Validate and post a message, then schedule a first-page reload."""
        if not self.identity and not is_valid_anonymous_name(data.get("name")):
            self.state.errors[POST_FORM] = {"name": NAME_REQUIRED}
            self.notify("error", NAME_REQUIRED)
            return None

        try:
            form = await validate_post(interactions.form_fields(self.identity, data, "msg"), self.classifier)
        except ValidationFailed as e:
            self.state.errors[POST_FORM] = e.errors
            return None
        except ProfanityServiceError as e:
            self.notify("error", str(e))
            return None

        author = interactions.author_fields(self.identity, form.name, form.email)
        try:
            message = await interactions.post_message(self.store, msg=form.msg, **author)
        except StoreError:
            self.notify("error", "Failed to send message. Please try again.")
            return None

        self.state.errors.pop(POST_FORM, None)
        self.notify("success", "Message sent successfully!")
        self._schedule_reload()
        return message

    def _schedule_reload(self) -> None:
        if self.closed or (self._reload_task and not self._reload_task.done()):
            return
        self._reload_task = asyncio.create_task(self._delayed_reload())

    async def _delayed_reload(self) -> None:
        await asyncio.sleep(self.reload_delay)
        if not self.closed:
            await self.load_initial()
            self._changed()

    async def delete_message(self, message_id: int) -> bool:
        message = self.state.find_message(message_id)
        if message is None:
            self.notify("error", "Message not found")
            return False
        if not self.can_delete(message.user_id):
            self.notify("error", "You can only delete your own messages")
            return False

        try:
            deleted = await interactions.delete_message(self.store, message_id)
        except StoreError:
            self.notify("error", "Failed to delete message. Please try again.")
            return False
        if self.closed:
            return deleted

        self.state.messages = [m for m in self.state.messages if m.id != message_id]
        self.state.likes.pop(message_id, None)
        self.state.comments.pop(message_id, None)
        self.state.expanded_comments.discard(message_id)
        self.state.comment_forms.discard(message_id)
        if deleted:
            self.notify("success", "Message deleted successfully")
        else:
            self.notify("info", "Message was already deleted")
        return deleted

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    async def post_comment(self, message_id: int, data: dict[str, Any]) -> CommentRecord | None:
        """Validate and post a comment, then reload that message's interactions."""
        form_key = comment_form_key(message_id)
        if not self.identity and not is_valid_anonymous_name(data.get("name")):
            self.state.errors[form_key] = {"name": NAME_REQUIRED}
            self.notify("error", NAME_REQUIRED)
            return None

        try:
            form = await validate_comment(interactions.form_fields(self.identity, data, "comment"), self.classifier)
        except ValidationFailed as e:
            self.state.errors[form_key] = e.errors
            return None
        except ProfanityServiceError as e:
            self.notify("error", str(e))
            return None

        author = interactions.author_fields(self.identity, form.name, form.email)
        try:
            comment = await interactions.post_comment(
                self.store, message_id, comment=form.comment, **author,
            )
        except StoreError:
            self.notify("error", "Failed to post comment. Please try again.")
            return None

        self.state.errors.pop(form_key, None)
        self.notify("success", "Comment posted!")
        await self.load_interactions(message_id)
        if not self.closed:
            self.state.comment_forms.discard(message_id)
        return comment

    async def delete_comment(self, message_id: int, comment_id: int) -> bool:
        comment = self.state.find_comment(message_id, comment_id)
        if comment is None or not self.can_delete(comment.user_id):
            self.notify("error", "You can only delete your own comments")
            return False

        try:
            deleted = await interactions.delete_comment(self.store, comment_id)
        except StoreError:
            self.notify("error", "Failed to delete comment. Please try again.")
            return False

        await self.load_interactions(message_id)
        return deleted

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view of the state for the presentational layer."""
        state = self.state
        messages = []
        for message in state.messages:
            entry = message.model_dump(mode="json")
            entry.update(
                likes_count=len(state.likes.get(message.id, [])),
                comments_count=len(state.comments.get(message.id, [])),
                liked=self.is_liked(message.id),
                can_delete=self.can_delete(message.user_id),
                comments_expanded=message.id in state.expanded_comments,
                comment_form_open=message.id in state.comment_forms,
            )
            if message.id in state.expanded_comments:
                entry["comments"] = [
                    {**c.model_dump(mode="json"), "can_delete": self.can_delete(c.user_id)}
                    for c in state.comments.get(message.id, [])
                ]
            messages.append(entry)

        return {
            "identity": self.identity.model_dump() if self.identity else None,
            "messages": messages,
            "has_more": state.has_more,
            "is_loading": state.is_loading,
            "errors": state.errors,
        }
