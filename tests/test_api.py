"""Tests for the HTTP API and the guestbook WebSocket."""

import pytest
from fakes import FakeClassifier, FakeStore
from fastapi.testclient import TestClient

from guestbook.main import app
from guestbook.routers import auth as auth_router
from guestbook.schemas import EMPTY_COMMENT, PROFANITY_REJECTED, UserRecord
from guestbook.services.auth_providers import OAuthUserInfo
from guestbook.services.guestbook import NAME_REQUIRED
from guestbook.services.profanity import ProfanityServiceError
from guestbook.services.rate_limiter import post_rate_limiter

ALICE = UserRecord(
    id="user-alice", email="alice@example.com", name="Alice", image="https://example.com/a.png",
    provider="github", provider_sub="1",
)
BOB = UserRecord(
    id="user-bob", email="bob@example.com", name="Bob", image=None,
    provider="google", provider_sub="2",
)


class DownClassifier:
    async def is_clean(self, text: str) -> bool:
        raise ProfanityServiceError("Profanity check is unavailable right now")


@pytest.fixture
def store():
    store = FakeStore()
    for message_id in range(1, 8):
        store.add_message(message_id)
    store.users = {ALICE.id: ALICE, BOB.id: BOB}
    store.sessions = {"alice-token": ALICE.id, "bob-token": BOB.id}
    return store


@pytest.fixture
def client(store):
    """Client without lifespan: the store is injected through app.state."""
    app.state.store = store
    app.state.classifier = FakeClassifier()
    post_rate_limiter.reset()
    return TestClient(app)


def sign_in(client: TestClient, token: str) -> None:
    client.cookies.set("session_token", token)


class TestMessagesApi:
    """Listing, posting and deleting messages."""

    def test_list_first_page(self, client):
        response = client.get("/api/messages")
        assert response.status_code == 200
        assert [m["id"] for m in response.json()] == [7, 6, 5, 4, 3]

    def test_list_with_offset(self, client):
        response = client.get("/api/messages", params={"offset": 5, "limit": 5})
        assert [m["id"] for m in response.json()] == [2, 1]

    def test_get_missing_message(self, client):
        assert client.get("/api/messages/999").status_code == 404

    def test_anonymous_post(self, client, store):
        response = client.post("/api/messages", json={"name": "Eve", "msg": "Hello!"})
        assert response.status_code == 201
        body = response.json()
        assert body["user_name"] == "Eve"
        assert body["user_id"] is None
        assert body["user_email"] == "anonymous@guestbook.com"
        assert body["id"] in store.messages

    def test_signed_in_post_uses_profile(self, client):
        sign_in(client, "alice-token")
        response = client.post("/api/messages", json={"name": "Mallory", "msg": "Hi"})
        assert response.status_code == 201
        body = response.json()
        assert body["user_name"] == "Alice"
        assert body["user_id"] == ALICE.id
        assert body["user_image"] == ALICE.image

    def test_anonymous_post_requires_name(self, client, store):
        response = client.post("/api/messages", json={"msg": "Hello!"})
        assert response.status_code == 422
        assert response.json()["detail"]["errors"] == {"name": NAME_REQUIRED}
        assert store.writes() == []

    def test_profane_post_rejected(self, client, store):
        response = client.post("/api/messages", json={"name": "Eve", "msg": "I hate it"})
        assert response.status_code == 422
        assert response.json()["detail"]["errors"] == {"msg": PROFANITY_REJECTED}
        assert store.writes() == []

    def test_classifier_outage_blocks_post(self, client, store):
        app.state.classifier = DownClassifier()
        response = client.post("/api/messages", json={"name": "Eve", "msg": "Hello"})
        assert response.status_code == 503
        assert store.writes() == []

    def test_delete_requires_sign_in(self, client):
        assert client.delete("/api/messages/1").status_code == 401

    def test_non_owner_delete_forbidden(self, client, store):
        store.messages[1] = store.messages[1].model_copy(update={"user_id": ALICE.id})
        sign_in(client, "bob-token")
        assert client.delete("/api/messages/1").status_code == 403
        assert 1 in store.messages

    def test_owner_delete(self, client, store):
        store.messages[1] = store.messages[1].model_copy(update={"user_id": ALICE.id})
        sign_in(client, "alice-token")
        assert client.delete("/api/messages/1").status_code == 204
        assert 1 not in store.messages

    def test_store_failure_is_503(self, client, store):
        store.failing.add("fetch_messages")
        response = client.get("/api/messages")
        assert response.status_code == 503
        assert response.json() == {"detail": "Something went wrong. Please try again."}

    def test_post_rate_limit(self, client, monkeypatch):
        monkeypatch.setattr(post_rate_limiter, "requests_per_minute", 1)
        assert client.post("/api/messages", json={"name": "Eve", "msg": "one"}).status_code == 201
        assert client.post("/api/messages", json={"name": "Eve", "msg": "two"}).status_code == 429


class TestLikesApi:
    """Like toggling over HTTP."""

    def test_anonymous_toggle_requires_name(self, client, store):
        response = client.post("/api/messages/1/likes/toggle", json={})
        assert response.status_code == 422
        assert response.json()["detail"]["errors"] == {"name": "Name is required to like messages"}
        assert store.writes() == []

    def test_toggle_twice(self, client):
        payload = {"name": "Bob", "email": "bob@example.com"}
        first = client.post("/api/messages/1/likes/toggle", json=payload).json()
        second = client.post("/api/messages/1/likes/toggle", json=payload).json()
        assert first["liked"] is True
        assert [like["user_identifier"] for like in first["likes"]] == ["Bob_bob@example.com"]
        assert second == {"liked": False, "likes": []}

    def test_signed_in_toggle_without_body(self, client):
        sign_in(client, "alice-token")
        response = client.post("/api/messages/1/likes/toggle")
        assert response.status_code == 200
        assert response.json()["likes"][0]["user_id"] == ALICE.id

    def test_toggle_missing_message(self, client):
        sign_in(client, "alice-token")
        assert client.post("/api/messages/999/likes/toggle").status_code == 404


class TestCommentsApi:
    """Comment posting, listing and deletion."""

    def test_post_and_list(self, client):
        response = client.post("/api/messages/1/comments", json={"name": "Eve", "comment": "Nice"})
        assert response.status_code == 201
        comments = client.get("/api/messages/1/comments").json()
        assert [c["comment"] for c in comments] == ["Nice"]

    def test_empty_comment_rejected(self, client, store):
        response = client.post("/api/messages/1/comments", json={"name": "Eve", "comment": ""})
        assert response.status_code == 422
        assert response.json()["detail"]["errors"] == {"comment": EMPTY_COMMENT}
        assert "insert_comment" not in store.calls

    def test_non_owner_comment_delete_forbidden(self, client, store):
        store.add_comment(1, comment_id=70, user_id=ALICE.id)
        sign_in(client, "bob-token")
        assert client.delete("/api/comments/70").status_code == 403
        assert 70 in store.comments

    def test_delete_missing_comment(self, client):
        sign_in(client, "alice-token")
        assert client.delete("/api/comments/999").status_code == 404


class TestMetaApi:
    """Health, metadata and identity endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.json() == {"status": "healthy"}
        assert "X-Request-ID" in response.headers

    def test_me_anonymous(self, client):
        assert client.get("/auth/me").json() is None

    def test_me_signed_in(self, client):
        sign_in(client, "alice-token")
        assert client.get("/auth/me").json()["id"] == ALICE.id

    def test_unknown_oauth_provider(self, client):
        assert client.get("/auth/oauth/myspace", follow_redirects=False).status_code == 400


class StubProvider:
    name = "github"

    def build_authorization_url(self, state: str) -> str:
        return f"https://github.test/authorize?state={state}"

    async def exchange_code(self, code: str) -> dict:
        return {"access_token": f"token-{code}"}

    async def get_user_info(self, access_token: str) -> OAuthUserInfo:
        return OAuthUserInfo(provider="github", sub="99", email="carol@example.com", name="Carol")


class TestOAuthApi:
    """Sign-in redirect flow with a stubbed provider."""

    @pytest.fixture(autouse=True)
    def stub_provider(self, monkeypatch):
        monkeypatch.setattr(auth_router, "get_oauth_provider", lambda name: StubProvider())

    def test_start_sets_state_cookie(self, client):
        response = client.get("/auth/oauth/github", follow_redirects=False)
        assert response.status_code == 302
        state = response.cookies["oauth_state"]
        assert response.headers["location"].endswith(f"state={state}")

    def test_callback_signs_in(self, client, store):
        client.cookies.set("oauth_state", "abc")
        response = client.get(
            "/auth/oauth/github/callback", params={"code": "c1", "state": "abc"}, follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"] == "/"
        token = response.cookies["session_token"]
        user_id = store.sessions[token]
        assert store.users[user_id].email == "carol@example.com"

    def test_callback_rejects_bad_state(self, client, store):
        client.cookies.set("oauth_state", "abc")
        response = client.get(
            "/auth/oauth/github/callback", params={"code": "c1", "state": "xyz"}, follow_redirects=False,
        )
        assert response.headers["location"].startswith("/?error=")
        assert "upsert_user" not in store.calls


class TestGuestbookSocket:
    """One controller per WebSocket connection."""

    def test_initial_state_and_ping(self, client):
        with client.websocket_connect("/ws/guestbook") as ws:
            assert ws.receive_json() == {"type": "connected", "identity": None}
            state = ws.receive_json()
            assert state["type"] == "state"
            assert [m["id"] for m in state["state"]["messages"]] == [7, 6, 5, 4, 3]
            assert state["state"]["has_more"] is True

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_load_more(self, client):
        with client.websocket_connect("/ws/guestbook") as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_json({"type": "load_more"})
            state = ws.receive_json()["state"]
            assert [m["id"] for m in state["messages"]] == [7, 6, 5, 4, 3, 2, 1]
            assert state["has_more"] is False

    def test_anonymous_like_prompts_for_name(self, client):
        with client.websocket_connect("/ws/guestbook") as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_json({"type": "toggle_like", "message_id": 7})
            prompt = ws.receive_json()
            assert prompt["type"] == "prompt"

            ws.send_json({"type": "prompt_response", "id": prompt["id"], "name": "Bob"})
            state = ws.receive_json()["state"]
            liked = next(m for m in state["messages"] if m["id"] == 7)
            assert liked["likes_count"] == 1

    def test_unknown_command(self, client):
        with client.websocket_connect("/ws/guestbook") as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_json({"type": "explode"})
            assert ws.receive_json() == {"type": "error", "detail": "Unknown command 'explode'"}

    def test_non_json_frame_keeps_session(self, client):
        with client.websocket_connect("/ws/guestbook") as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "detail": "Malformed JSON frame"}
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_malformed_command(self, client, store):
        with client.websocket_connect("/ws/guestbook") as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_json({"type": "toggle_like", "message_id": "abc"})
            assert ws.receive_json() == {"type": "error", "detail": "Malformed toggle_like command"}
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
        assert store.writes() == []
