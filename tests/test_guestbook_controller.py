"""Tests for the guestbook session controller against the in-memory store."""

import asyncio

from fakes import FakeClassifier, FakeStore

from guestbook.schemas import EMPTY_COMMENT, PROFANITY_REJECTED, Identity
from guestbook.services.guestbook import (
    NAME_REQUIRED,
    POST_FORM,
    AnonymousAuthor,
    GuestbookController,
    comment_form_key,
)
from guestbook.services.realtime import ChangeEvent, ChangeType
from guestbook.services.store import MESSAGES

ALICE = Identity(id="user-alice", email="alice@example.com", name="Alice", avatar_url="https://example.com/a.png")
ADMIN = Identity(id="user-admin", email="admin@example.com", name="Admin")


async def settle():
    """Let listener tasks drain their queues."""
    for _ in range(5):
        await asyncio.sleep(0)


def make_controller(store, identity=None, prompt=None, notes=None, classifier=None):
    return GuestbookController(
        store,
        classifier or FakeClassifier(),
        identity=identity,
        notify=(lambda level, text: notes.append((level, text))) if notes is not None else None,
        prompt=prompt,
        page_size=5,
        admin_user_id=ADMIN.id,
        reload_delay=0,
    )


def seeded_store(ids, **kwargs) -> FakeStore:
    store = FakeStore(**kwargs)
    for message_id in ids:
        store.add_message(message_id)
    return store


def ids_of(controller) -> list[int]:
    return [m.id for m in controller.state.messages]


class TestPagination:
    """Initial load and infinite scroll."""

    def test_short_second_page_ends_pagination(self):
        """[10..6] keeps has_more; [5,4,3] is appended and ends it."""
        store = seeded_store(range(3, 11))

        async def scenario():
            async with make_controller(store) as controller:
                assert ids_of(controller) == [10, 9, 8, 7, 6]
                assert controller.state.has_more is True

                await controller.on_sentinel_visible()
                return ids_of(controller), controller.state.has_more

        messages, has_more = asyncio.run(scenario())
        assert messages == [10, 9, 8, 7, 6, 5, 4, 3]
        assert has_more is False

    def test_full_page_keeps_has_more(self):
        store = seeded_store(range(1, 11))

        async def scenario():
            async with make_controller(store) as controller:
                await controller.load_more()
                return controller.state.has_more, len(controller.state.messages)

        has_more, count = asyncio.run(scenario())
        assert has_more is True
        assert count == 10

    def test_initial_load_fetches_interactions(self):
        store = seeded_store([1, 2])
        store.add_comment(2, comment_id=50)

        async def scenario():
            async with make_controller(store) as controller:
                return controller.state

        state = asyncio.run(scenario())
        assert state.has_more is False
        assert [c.id for c in state.comments[2]] == [50]
        assert state.likes == {1: [], 2: []}

    def test_load_more_skips_already_loaded_ids(self):
        """Rows shifted by a concurrent insert are not appended twice."""
        store = seeded_store(range(1, 11))

        async def scenario():
            async with make_controller(store) as controller:
                store.add_message(11)
                await controller.load_more()
                return ids_of(controller), controller.state.has_more

        messages, has_more = asyncio.run(scenario())
        assert messages == [10, 9, 8, 7, 6, 5, 4, 3, 2]
        assert len(set(messages)) == len(messages)
        assert has_more is False

    def test_sentinel_ignored_while_loading(self):
        store = seeded_store(range(1, 11))

        async def scenario():
            async with make_controller(store) as controller:
                controller.state.is_loading = True
                await controller.on_sentinel_visible()
                return store.calls.count("fetch_messages")

        assert asyncio.run(scenario()) == 1

    def test_reload_during_page_load_drops_stale_page(self):
        """A page fetched at the old offset is not appended after a reload."""
        store = seeded_store(range(1, 21))

        async def scenario():
            async with make_controller(store) as controller:
                await controller.load_more()
                gate = store.gates[10] = asyncio.Event()
                pending = asyncio.create_task(controller.load_more())
                await settle()
                assert controller.state.is_loading is True

                await controller.load_initial()
                gate.set()
                await pending
                after_reload = ids_of(controller), controller.state.has_more, controller.state.is_loading

                await controller.load_more()
                return after_reload, ids_of(controller)

        (messages, has_more, is_loading), scrolled = asyncio.run(scenario())
        assert messages == [20, 19, 18, 17, 16]
        assert has_more is True
        assert is_loading is False
        assert scrolled == list(range(20, 10, -1))

    def test_second_page_load_waits_for_first(self):
        store = seeded_store(range(1, 21))

        async def scenario():
            async with make_controller(store) as controller:
                gate = store.gates[5] = asyncio.Event()
                pending = asyncio.create_task(controller.load_more())
                await settle()
                await controller.on_sentinel_visible()
                gate.set()
                await pending
                return ids_of(controller), store.calls.count("fetch_messages")

        messages, fetches = asyncio.run(scenario())
        assert messages == list(range(20, 10, -1))
        assert fetches == 2

    def test_load_failure_notifies_and_stops_pagination(self):
        store = seeded_store([1])
        store.failing.add("fetch_messages")
        notes = []

        async def scenario():
            async with make_controller(store, notes=notes) as controller:
                return controller.state

        state = asyncio.run(scenario())
        assert state.messages == []
        assert state.has_more is False
        assert state.is_loading is False
        assert notes == [("error", "Failed to load messages. Please check your connection.")]


class TestRealtime:
    """Merging change feed events into the loaded list."""

    def test_insert_is_prepended(self):
        store = seeded_store([1, 2])

        async def scenario():
            async with make_controller(store, identity=ALICE) as controller:
                await store.insert_message(
                    user_image="x", user_email="e@example.com", user_name="Eve", msg="hello",
                )
                await settle()
                return ids_of(controller)

        assert asyncio.run(scenario()) == [1000, 2, 1]

    def test_realtime_insert_and_delayed_reload_yield_one_copy(self):
        """Message 11 arrives both over the feed and via the post reload."""
        store = seeded_store(range(6, 11), next_id=11)

        async def scenario():
            async with make_controller(store) as controller:
                posted = await controller.post_message({"name": "Eve", "msg": "hello"})
                await settle()
                await controller.pending_reload
                return posted, ids_of(controller)

        posted, messages = asyncio.run(scenario())
        assert posted.id == 11
        assert messages.count(11) == 1
        assert messages[0] == 11

    def test_duplicate_insert_is_ignored(self):
        store = seeded_store([1, 2])

        async def scenario():
            async with make_controller(store) as controller:
                event = ChangeEvent(MESSAGES, ChangeType.INSERT, new=store.messages[2].model_dump())
                return controller.apply_change(event), ids_of(controller)

        changed, messages = asyncio.run(scenario())
        assert changed is False
        assert messages == [2, 1]

    def test_update_and_delete_do_not_change_list(self):
        store = seeded_store([1, 2])

        async def scenario():
            async with make_controller(store) as controller:
                update = ChangeEvent(MESSAGES, ChangeType.UPDATE, new=store.messages[1].model_dump())
                delete = ChangeEvent(MESSAGES, ChangeType.DELETE, old={"id": 2})
                return controller.apply_change(update), controller.apply_change(delete), ids_of(controller)

        updated, deleted, messages = asyncio.run(scenario())
        assert (updated, deleted) == (False, False)
        assert messages == [2, 1]

    def test_malformed_payload_is_skipped(self):
        store = seeded_store([1])

        async def scenario():
            async with make_controller(store) as controller:
                await store.feed.publish(ChangeEvent(MESSAGES, ChangeType.INSERT, new={"id": 5}))
                await settle()
                return ids_of(controller), controller._listener.done()

        messages, listener_done = asyncio.run(scenario())
        assert messages == [1]
        assert listener_done is False

    def test_events_after_unmount_are_dropped(self):
        store = seeded_store([1])

        async def scenario():
            controller = make_controller(store)
            await controller.mount()
            await controller.unmount()
            event = ChangeEvent(MESSAGES, ChangeType.INSERT, new=store.messages[1].model_copy(update={"id": 9}).model_dump())
            changed = controller.apply_change(event)
            await store.feed.publish(event)
            await settle()
            return changed, ids_of(controller), store.feed.subscriber_count(MESSAGES)

        changed, messages, subscribers = asyncio.run(scenario())
        assert changed is False
        assert messages == [1]
        assert subscribers == 0

    def test_on_change_called_after_merge(self):
        store = seeded_store([1])
        changes = []

        async def scenario():
            controller = make_controller(store)
            controller.on_change = lambda: changes.append(ids_of(controller))
            async with controller:
                await store.insert_message(user_image="x", user_email="e@example.com", user_name="Eve", msg="hi")
                await settle()

        asyncio.run(scenario())
        assert changes == [[1000, 1]]


class TestLikes:
    """Like toggling for signed-in and anonymous visitors."""

    def test_toggle_twice_returns_to_zero(self):
        store = seeded_store([1])

        async def scenario():
            async with make_controller(store, identity=ALICE) as controller:
                first = await controller.toggle_like(1)
                liked_after_first = controller.is_liked(1)
                second = await controller.toggle_like(1)
                return first, liked_after_first, second, controller.state.likes[1]

        first, liked_after_first, second, likes = asyncio.run(scenario())
        assert first is True
        assert liked_after_first is True
        assert second is False
        assert likes == []

    def test_anonymous_without_prompt_is_rejected(self):
        store = seeded_store([1])
        notes = []

        async def scenario():
            async with make_controller(store, notes=notes) as controller:
                return await controller.toggle_like(1)

        assert asyncio.run(scenario()) is None
        assert store.writes() == []
        assert notes == [("error", "Name is required to like messages")]

    def test_anonymous_short_name_is_rejected(self):
        store = seeded_store([1])

        async def prompt(question):
            return AnonymousAuthor(name=" B ")

        async def scenario():
            async with make_controller(store, prompt=prompt, notes=[]) as controller:
                return await controller.toggle_like(1)

        assert asyncio.run(scenario()) is None
        assert store.writes() == []

    def test_anonymous_like_uses_name_and_email(self):
        store = seeded_store([1])
        questions = []

        async def prompt(question):
            questions.append(question)
            return AnonymousAuthor(name="Bob", email="bob@example.com")

        async def scenario():
            async with make_controller(store, prompt=prompt) as controller:
                await controller.toggle_like(1)
                return controller.state.likes[1]

        likes = asyncio.run(scenario())
        assert questions == ["Please enter your name to like this message:"]
        assert [like.user_identifier for like in likes] == ["Bob_bob@example.com"]

    def test_store_failure_notifies(self):
        store = seeded_store([1])
        store.failing.add("toggle_like")
        notes = []

        async def scenario():
            async with make_controller(store, identity=ALICE, notes=notes) as controller:
                return await controller.toggle_like(1)

        assert asyncio.run(scenario()) is None
        assert notes == [("error", "Failed to like message. Please try again.")]


class TestComments:
    """Comment panels and comment submission."""

    def test_empty_comment_rejected_before_store_call(self):
        store = seeded_store([1])
        classifier = FakeClassifier()

        async def scenario():
            async with make_controller(store, classifier=classifier) as controller:
                result = await controller.post_comment(1, {"name": "Bob", "comment": ""})
                return result, controller.state.errors

        result, errors = asyncio.run(scenario())
        assert result is None
        assert errors[comment_form_key(1)] == {"comment": EMPTY_COMMENT}
        assert "insert_comment" not in store.calls
        assert classifier.checked == []

    def test_profane_comment_rejected(self):
        store = seeded_store([1])

        async def scenario():
            async with make_controller(store, identity=ALICE) as controller:
                await controller.post_comment(1, {"comment": "I hate this"})
                return controller.state.errors

        errors = asyncio.run(scenario())
        assert errors[comment_form_key(1)] == {"comment": PROFANITY_REJECTED}
        assert store.writes() == []

    def test_anonymous_comment_without_name_rejected(self):
        store = seeded_store([1])
        notes = []

        async def scenario():
            async with make_controller(store, notes=notes) as controller:
                await controller.post_comment(1, {"name": "B", "comment": "hello"})
                return controller.state.errors

        errors = asyncio.run(scenario())
        assert errors[comment_form_key(1)] == {"name": NAME_REQUIRED}
        assert store.writes() == []
        assert notes == [("error", NAME_REQUIRED)]

    def test_post_comment_reloads_and_closes_form(self):
        store = seeded_store([1])
        notes = []

        async def scenario():
            async with make_controller(store, identity=ALICE, notes=notes) as controller:
                controller.toggle_comment_form(1)
                comment = await controller.post_comment(1, {"comment": "Lovely"})
                return comment, controller.state

        comment, state = asyncio.run(scenario())
        assert comment.user_id == ALICE.id
        assert comment.user_name == "Alice"
        assert [c.id for c in state.comments[1]] == [comment.id]
        assert 1 not in state.comment_forms
        assert ("success", "Comment posted!") in notes

    def test_toggle_comments_loads_lazily(self):
        store = seeded_store([1])
        store.add_comment(1, comment_id=7)

        async def scenario():
            async with make_controller(store) as controller:
                controller.state.comments.clear()
                await controller.toggle_comments(1)
                opened = (1 in controller.state.expanded_comments, [c.id for c in controller.state.comments[1]])
                await controller.toggle_comments(1)
                return opened, 1 in controller.state.expanded_comments

        (expanded, comment_ids), still_expanded = asyncio.run(scenario())
        assert expanded is True
        assert comment_ids == [7]
        assert still_expanded is False

    def test_delete_comment_requires_owner(self):
        store = seeded_store([1])
        store.add_comment(1, comment_id=7, user_id="someone-else")
        notes = []

        async def scenario():
            async with make_controller(store, identity=ALICE, notes=notes) as controller:
                return await controller.delete_comment(1, 7)

        assert asyncio.run(scenario()) is False
        assert 7 in store.comments
        assert notes == [("error", "You can only delete your own comments")]


class TestMessages:
    """Posting and deleting messages."""

    def test_anonymous_post_without_name_rejected(self):
        store = seeded_store([1])

        async def scenario():
            async with make_controller(store, notes=[]) as controller:
                result = await controller.post_message({"msg": "hello"})
                return result, controller.state.errors

        result, errors = asyncio.run(scenario())
        assert result is None
        assert errors[POST_FORM] == {"name": NAME_REQUIRED}
        assert store.writes() == []

    def test_post_uses_default_avatar_for_anonymous(self):
        store = FakeStore()
        notes = []

        async def scenario():
            async with make_controller(store, notes=notes) as controller:
                message = await controller.post_message({"name": "Eve Adams", "email": "", "msg": "hi"})
                await controller.pending_reload
                return message

        message = asyncio.run(scenario())
        assert message.user_image.endswith("Eve%20Adams")
        assert message.user_email == "anonymous@guestbook.com"
        assert message.user_id is None
        assert ("success", "Message sent successfully!") in notes

    def test_owner_can_delete(self):
        store = seeded_store([1])
        store.messages[1] = store.messages[1].model_copy(update={"user_id": ALICE.id})
        notes = []

        async def scenario():
            async with make_controller(store, identity=ALICE, notes=notes) as controller:
                deleted = await controller.delete_message(1)
                return deleted, ids_of(controller)

        deleted, messages = asyncio.run(scenario())
        assert deleted is True
        assert messages == []
        assert ("success", "Message deleted successfully") in notes

    def test_non_owner_cannot_delete(self):
        store = seeded_store([1])
        notes = []

        async def scenario():
            async with make_controller(store, identity=ALICE, notes=notes) as controller:
                return await controller.delete_message(1)

        assert asyncio.run(scenario()) is False
        assert 1 in store.messages
        assert notes == [("error", "You can only delete your own messages")]


class TestViewerHelpers:
    """Delete-control visibility."""

    def test_can_delete(self):
        anonymous = GuestbookController(FakeStore(), FakeClassifier(), admin_user_id=ADMIN.id)
        owner = GuestbookController(FakeStore(), FakeClassifier(), identity=ALICE, admin_user_id=ADMIN.id)
        admin = GuestbookController(FakeStore(), FakeClassifier(), identity=ADMIN, admin_user_id=ADMIN.id)

        assert anonymous.can_delete(ALICE.id) is False
        assert owner.can_delete(ALICE.id) is True
        assert owner.can_delete("someone-else") is False
        assert owner.can_delete(None) is False
        assert admin.can_delete("someone-else") is True
