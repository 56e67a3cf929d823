"""Common test fixtures for matrix-export tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from matrix_export.backend import ChatBackend, Subscription
from matrix_export.config import Settings
from matrix_export.models import (
    Attachment,
    Channel,
    Page,
    RawContent,
    RawMessage,
    Sender,
)
from matrix_export.sinks import Sink

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeBackend(ChatBackend):
    """In-memory backend serving scripted pages and pushing events on demand."""

    def __init__(self, channels=(), pages: Optional[Dict[str, list]] = None) -> None:
        self.channels: List[Channel] = list(channels)
        self.pages: Dict[str, list] = pages or {}
        self.calls: list = []
        self.subscriptions: List[Subscription] = []
        self.init_error: Optional[Exception] = None
        self.read_delays: Dict[str, float] = {}
        self._closed = asyncio.Event()

    async def init(self) -> None:
        self.calls.append("init")
        if self.init_error is not None:
            raise self.init_error

    async def list_channels(self) -> List[Channel]:
        self.calls.append("list_channels")
        return self.channels

    async def read_page(self, channel: Channel, cursor: Optional[str], page_size: int) -> Page:
        self.calls.append(("read_page", channel.id, cursor, page_size))
        if channel.id in self.read_delays:
            await asyncio.sleep(self.read_delays[channel.id])
        page = self.pages[channel.id].pop(0)
        if isinstance(page, Exception):
            raise page
        return page

    def watch(self, channel, on_event, on_error) -> Subscription:
        self.calls.append(("watch", channel.id))
        subscription = Subscription(
            channel, on_event, on_error, detach=lambda: self.subscriptions.remove(subscription)
        )
        self.subscriptions.append(subscription)
        return subscription

    def emit(self, channel_id: str, message: RawMessage) -> None:
        for subscription in list(self.subscriptions):
            if subscription.channel.id == channel_id:
                subscription.dispatch(message)

    async def listen(self) -> None:
        self.calls.append("listen")
        await self._closed.wait()

    async def deinit(self) -> None:
        self.calls.append("deinit")
        self._closed.set()


class RecordingSink(Sink):
    """Sink keeping upserted records in memory, keyed like an index would."""

    def __init__(self, name: str = "recording", delay: float = 0.0) -> None:
        self.name = name
        self.delay = delay
        self.fail_with: Optional[Exception] = None
        self.init_error: Optional[Exception] = None
        self.records: Dict[tuple, dict] = {}
        self.chunks: List[list] = []
        self.messages: list = []
        self.initialized = False
        self.closed = False

    async def init(self) -> None:
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    async def _store(self, channel, messages) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        for message in messages:
            self.records[(self.destination(channel), message.id)] = message.to_record()

    async def save_message(self, channel, message) -> None:
        await self._store(channel, [message])
        self.messages.append(message)

    async def save_chunk(self, channel, messages) -> None:
        await self._store(channel, messages)
        self.chunks.append(list(messages))

    async def close(self) -> None:
        self.closed = True


def _raw(message_id, content: RawContent, offset: int = 0, sender: str = "@alice:example.org"):
    return RawMessage(
        id=message_id,
        sent_at=BASE_TIME + timedelta(seconds=offset),
        sender=Sender(uid=sender, username="Alice", device_id="DEV1", device_name="laptop"),
        revoked_device=False,
        content=content,
    )


class RawFactory:
    def text(self, message_id, body="hello", reply_to=None, **kwargs) -> RawMessage:
        return _raw(message_id, RawContent(type="text", body=body, reply_to=reply_to), **kwargs)

    def attachment(
        self, message_id, filename="cat.png", title="my cat", path="mxc://example.org/cat", **kwargs
    ) -> RawMessage:
        attachment = Attachment(path=path, asset_type="m.image", filename=filename, title=title)
        return _raw(message_id, RawContent(type="attachment", attachment=attachment), **kwargs)

    def reaction(self, message_id, reacts_to="$1", key="👍", **kwargs) -> RawMessage:
        return _raw(message_id, RawContent(type="reaction", body=key, reacts_to=reacts_to), **kwargs)

    def edit(self, message_id, target, body, **kwargs) -> RawMessage:
        return _raw(message_id, RawContent(type="edit", message_id=target, body=body), **kwargs)

    def delete(self, message_id, targets, **kwargs) -> RawMessage:
        return _raw(message_id, RawContent(type="delete", message_ids=list(targets)), **kwargs)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test files."""
    return tmp_path


@pytest.fixture
def test_settings(temp_dir: Path, monkeypatch) -> Settings:
    """Create test settings with mock values."""
    monkeypatch.setenv("MATRIX_HOMESERVER", "https://test.matrix.org")
    monkeypatch.setenv("MATRIX_USER", "@test:matrix.org")
    monkeypatch.setenv("MATRIX_PASSWORD", "test_password")
    monkeypatch.setenv("EXPORT_CHATS", "General,$id$!random:matrix.org")
    monkeypatch.setenv("LOGGING__LEVEL", "DEBUG")

    settings = Settings()
    settings.jsonl.file = str(temp_dir / "export.jsonl")
    settings.logging.file_path = str(temp_dir / "test.log")
    return settings


@pytest.fixture
def raw() -> RawFactory:
    return RawFactory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def general() -> Channel:
    return Channel(id="!general:matrix.org", name="General")


@pytest.fixture
def random_channel() -> Channel:
    return Channel(id="!random:matrix.org", name="Random")


@pytest.fixture
def fake_backend(general, random_channel) -> FakeBackend:
    return FakeBackend(channels=[general, random_channel])


@pytest.fixture
def make_sink():
    return RecordingSink
