"""
WebSocket session: one guestbook controller per connected browser.
"""

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from guestbook.deps import SESSION_COOKIE, get_client_ip, resolve_identity
from guestbook.schemas import Identity
from guestbook.services.guestbook import AnonymousAuthor, GuestbookController
from guestbook.services.rate_limiter import post_rate_limiter
from guestbook.services.store import StoreError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


class MalformedCommand(ValueError):
    """A command payload is missing a field or has one of the wrong type."""


def _int_field(data: dict[str, Any], field: str) -> int:
    value = data.get(field)
    # bool is an int subclass but never a valid id
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise MalformedCommand(field)
    try:
        return int(value)
    except ValueError:
        raise MalformedCommand(field) from None


def _form_field(data: dict[str, Any]) -> dict[str, Any]:
    form = data.get("form") or {}
    if not isinstance(form, dict):
        raise MalformedCommand("form")
    return form


# Fields each command reads from its payload
COMMAND_FIELDS = {
    "load_more": (),
    "reload": (),
    "toggle_like": ("message_id",),
    "toggle_comments": ("message_id",),
    "toggle_comment_form": ("message_id",),
    "post_message": ("form",),
    "delete_message": ("message_id",),
    "post_comment": ("message_id", "form"),
    "delete_comment": ("message_id", "comment_id"),
}


def parse_command(command: str, data: dict[str, Any]) -> dict[str, Any]:
    """Pull a command's arguments out of its payload, raising MalformedCommand."""
    args = {}
    for field in COMMAND_FIELDS[command]:
        args[field] = _form_field(data) if field == "form" else _int_field(data, field)
    return args


async def _load_more(controller: GuestbookController) -> None:
    await controller.on_sentinel_visible()


async def _reload(controller: GuestbookController) -> None:
    await controller.load_initial()


async def _toggle_like(controller: GuestbookController, message_id: int) -> None:
    await controller.toggle_like(message_id)


async def _toggle_comments(controller: GuestbookController, message_id: int) -> None:
    await controller.toggle_comments(message_id)


async def _toggle_comment_form(controller: GuestbookController, message_id: int) -> None:
    controller.toggle_comment_form(message_id)


async def _post_message(controller: GuestbookController, form: dict[str, Any]) -> None:
    await controller.post_message(form)


async def _delete_message(controller: GuestbookController, message_id: int) -> None:
    await controller.delete_message(message_id)


async def _post_comment(controller: GuestbookController, message_id: int, form: dict[str, Any]) -> None:
    await controller.post_comment(message_id, form)


async def _delete_comment(controller: GuestbookController, message_id: int, comment_id: int) -> None:
    await controller.delete_comment(message_id, comment_id)


COMMANDS = {
    "load_more": _load_more,
    "reload": _reload,
    "toggle_like": _toggle_like,
    "toggle_comments": _toggle_comments,
    "toggle_comment_form": _toggle_comment_form,
    "post_message": _post_message,
    "delete_message": _delete_message,
    "post_comment": _post_comment,
    "delete_comment": _delete_comment,
}

RATE_LIMITED_COMMANDS = {"post_message", "post_comment"}


class GuestbookSession:
    """Bridge a WebSocket to a GuestbookController.

    Commands run as their own tasks so that one waiting on the name prompt
    does not block the receive loop that delivers the prompt answer.
    Outgoing events go through a single queue and sender task.
    """

    def __init__(self, websocket: WebSocket, store, classifier, identity: Identity | None):
        self.websocket = websocket
        self.identity = identity
        self.rate_limit_key = f"user:{identity.id}" if identity else f"ip:{get_client_ip(websocket)}"
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.prompts: dict[str, asyncio.Future] = {}
        self.tasks: set[asyncio.Task] = set()
        self.controller = GuestbookController(
            store,
            classifier,
            identity=identity,
            notify=self.notify,
            prompt=self.prompt,
            on_change=self.push_state,
        )

    def send(self, event: dict[str, Any]) -> None:
        self.outbox.put_nowait(event)

    def notify(self, level: str, text: str) -> None:
        self.send({"type": "toast", "level": level, "text": text})

    def push_state(self) -> None:
        self.send({"type": "state", "state": self.controller.snapshot()})

    async def prompt(self, question: str) -> AnonymousAuthor | None:
        """Ask the browser for a name; resolves on the matching prompt_response."""
        prompt_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self.prompts[prompt_id] = future
        self.send({"type": "prompt", "id": prompt_id, "question": question})
        try:
            return await future
        finally:
            self.prompts.pop(prompt_id, None)

    def answer_prompt(self, data: dict[str, Any]) -> None:
        future = self.prompts.get(str(data.get("id")))
        if future is None or future.done():
            return
        name = data.get("name")
        if not name:
            future.set_result(None)
        else:
            future.set_result(AnonymousAuthor(name=str(name), email=data.get("email") or None))

    async def _send_loop(self) -> None:
        try:
            while True:
                event = await self.outbox.get()
                await self.websocket.send_json(event)
        except (WebSocketDisconnect, RuntimeError) as e:
            # Socket closed under us; run() notices on its next receive
            logger.info(f"Guestbook socket stopped accepting events: {e!r}")

    async def _run_command(self, command: str, args: dict[str, Any]) -> None:
        if command in RATE_LIMITED_COMMANDS and not post_rate_limiter.is_allowed(self.rate_limit_key):
            self.notify("error", "Too many requests. Please slow down.")
            return
        try:
            await COMMANDS[command](self.controller, **args)
        except StoreError:
            self.notify("error", "Something went wrong. Please try again.")
        self.push_state()

    def _command_done(self, task: asyncio.Task) -> None:
        self.tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Guestbook command {task.get_name()} failed", exc_info=task.exception())

    def dispatch(self, data: dict[str, Any]) -> None:
        command = data.get("type")
        if command == "ping":
            self.send({"type": "pong"})
        elif command == "prompt_response":
            self.answer_prompt(data)
        elif command in COMMANDS:
            try:
                args = parse_command(command, data)
            except MalformedCommand as e:
                logger.warning(f"Malformed {command} command: bad {e}")
                self.send({"type": "error", "detail": f"Malformed {command} command"})
                return
            task = asyncio.create_task(self._run_command(command, args), name=command)
            self.tasks.add(task)
            task.add_done_callback(self._command_done)
        else:
            self.send({"type": "error", "detail": f"Unknown command {command!r}"})

    async def run(self) -> None:
        sender = asyncio.create_task(self._send_loop())
        try:
            async with self.controller:
                self.send({"type": "connected", "identity": self.identity.model_dump() if self.identity else None})
                self.push_state()
                while True:
                    try:
                        data = await self.websocket.receive_json()
                    except json.JSONDecodeError:
                        self.send({"type": "error", "detail": "Malformed JSON frame"})
                        continue
                    if isinstance(data, dict):
                        self.dispatch(data)
        except WebSocketDisconnect:
            pass
        finally:
            for future in self.prompts.values():
                if not future.done():
                    future.set_result(None)
            for task in list(self.tasks):
                task.cancel()
            sender.cancel()


@router.websocket("/ws/guestbook")
async def guestbook_socket(websocket: WebSocket):
    """WebSocket endpoint driving one guestbook session."""
    state = websocket.app.state
    identity = await resolve_identity(state.store, websocket.cookies.get(SESSION_COOKIE))

    await websocket.accept()
    logger.info(f"Guestbook session opened for {identity.id if identity else 'anonymous visitor'}")
    try:
        await GuestbookSession(websocket, state.store, state.classifier, identity).run()
    finally:
        logger.info("Guestbook session closed")
