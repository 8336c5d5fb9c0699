"""
Shared pytest fixtures for wagate tests.

This module provides:
- FakeChatClient: in-memory BaseChatClient that records calls and lets tests emit events
- FakeClientFactory: client_factory that hands out FakeChatClient instances
- RecordingNotifier: WebhookNotifier that collects notifications instead of posting them
- store / registry / service fixtures wired with the fakes above
"""

from pathlib import Path
from typing import Any

import pytest

from wagate.client.base import (
    EVENT_AUTH_FAILURE,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    BaseChatClient,
    ClientInfo,
    Contact,
    IncomingMessage,
    MediaPayload,
    SentMessage,
)
from wagate.commands.service import CommandService
from wagate.session.registry import SessionRegistry
from wagate.session.storage import CredentialStore
from wagate.webhook.events import WebhookEvent
from wagate.webhook.notifier import WebhookNotifier


class FakeChatClient(BaseChatClient):
    """Chat client double: records every operation, fails on demand."""

    def __init__(self, client_id: str, data_path: str, init_error: Exception | None = None):
        super().__init__(client_id, data_path)
        self.calls: list[str] = []
        self.sent: list[tuple[str, Any]] = []
        self.init_error = init_error
        self.send_error: Exception | None = None
        self.failing_recipients: set[str] = set()
        self.contact_error: Exception | None = None
        self.media_error: Exception | None = None
        self.destroy_error: Exception | None = None
        self.kill_error: Exception | None = None
        self.logout_error: Exception | None = None
        self.on_destroy: Any = None
        self.media = MediaPayload(mimetype="image/png", data="aGVsbG8=", filename="photo.png")

    async def initialize(self) -> None:
        self.calls.append("initialize")
        if self.init_error is not None:
            raise self.init_error

    async def send_message(self, chat_id: str, content: str) -> SentMessage:
        self.calls.append("send_message")
        if self.send_error is not None:
            raise self.send_error
        if chat_id in self.failing_recipients:
            raise RuntimeError(f"recipient {chat_id} rejected")
        self.sent.append((chat_id, content))
        return SentMessage(id=f"msg-{len(self.sent)}", timestamp=1700000000 + len(self.sent))

    async def send_media(self, chat_id: str, media: MediaPayload, caption: str | None = None) -> SentMessage:
        self.calls.append("send_media")
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, (media, caption)))
        return SentMessage(id=f"media-{len(self.sent)}", timestamp=1700000000)

    async def get_contact(self, chat_id: str) -> Contact:
        self.calls.append("get_contact")
        if self.contact_error is not None:
            raise self.contact_error
        return Contact(phone=chat_id.split("@")[0], name="Alice", is_my_contact=True)

    async def download_media(self, message: IncomingMessage) -> MediaPayload:
        self.calls.append("download_media")
        if self.media_error is not None:
            raise self.media_error
        return self.media

    async def logout(self) -> None:
        self.calls.append("logout")
        if self.logout_error is not None:
            raise self.logout_error

    async def destroy(self) -> None:
        self.calls.append("destroy")
        if self.on_destroy is not None:
            self.on_destroy()
        if self.destroy_error is not None:
            raise self.destroy_error

    async def kill(self) -> None:
        self.calls.append("kill")
        if self.kill_error is not None:
            raise self.kill_error

    # Event helpers

    async def emit_qr(self, code: str) -> None:
        await self._emit(EVENT_QR, code)

    async def emit_ready(self, user: str = "15550001", platform: str = "android") -> None:
        self.info = ClientInfo(user=user, platform=platform, pushname="Test")
        await self._emit(EVENT_READY)

    async def emit_message(self, message: IncomingMessage) -> None:
        await self._emit(EVENT_MESSAGE, message)

    async def emit_disconnected(self, reason: str = "NAVIGATION") -> None:
        await self._emit(EVENT_DISCONNECTED, reason)

    async def emit_auth_failure(self, error: str = "bad credentials") -> None:
        await self._emit(EVENT_AUTH_FAILURE, error)


class FakeClientFactory:
    """client_factory double that remembers every client it created."""

    def __init__(self):
        self.clients: list[FakeChatClient] = []
        self.init_errors: dict[Any, Exception] = {}
        self.create_errors: dict[Any, Exception] = {}

    def __call__(self, user_id: int | str, store: CredentialStore) -> FakeChatClient:
        if user_id in self.create_errors:
            raise self.create_errors[user_id]
        client = FakeChatClient(
            store.client_id(user_id),
            str(store.root),
            init_error=self.init_errors.get(user_id),
        )
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeChatClient:
        return self.clients[-1]


class RecordingNotifier(WebhookNotifier):
    """Collects notifications in memory."""

    def __init__(self):
        super().__init__("http://backend.test/api")
        self.events: list[WebhookEvent] = []

    def notify(self, event: WebhookEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.event for e in self.events]


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "sessions")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def registry(store, notifier, factory) -> SessionRegistry:
    return SessionRegistry(store, notifier, factory, startup_grace_s=0)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def service(registry, sleeps) -> CommandService:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return CommandService(registry, bulk_delay_range=(3.0, 8.0), sleep=fake_sleep)
