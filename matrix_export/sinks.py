"""Persistence backends for exported messages.

Every sink treats a message id as its identity: saving the same message
twice, alone or inside a chunk, leaves one stored copy. The JSONL sink is
the exception, being append-only by nature; consumers dedupe on ``id``.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence

from elasticsearch import AsyncElasticsearch
from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS, WriteApi
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session

from .config import (
    CHANNEL_NAME_TOKEN,
    DatabaseConfig,
    ElasticsearchConfig,
    InfluxDBConfig,
    JsonlConfig,
)
from .errors import SinkError
from .logger import get_logger
from .models import Channel, CleanedMessage
from .schema import Base, Message

logger = get_logger(__name__)


def destination_name(pattern: str, channel: Channel) -> str:
    return pattern.replace(CHANNEL_NAME_TOKEN, channel.name)


class Sink(ABC):
    name = "sink"
    pattern = CHANNEL_NAME_TOKEN

    def destination(self, channel: Channel) -> str:
        return destination_name(self.pattern, channel)

    @abstractmethod
    async def init(self) -> None:
        """Check connectivity; raising here aborts the run."""

    @abstractmethod
    async def save_message(self, channel: Channel, message: CleanedMessage) -> None:
        ...

    @abstractmethod
    async def save_chunk(self, channel: Channel, messages: Sequence[CleanedMessage]) -> None:
        ...

    async def close(self) -> None:
        pass


class ElasticsearchSink(Sink):
    name = "elasticsearch"

    def __init__(
        self, config: ElasticsearchConfig, client: Optional[AsyncElasticsearch] = None
    ) -> None:
        self.pattern = config.index_pattern
        self.client = client or AsyncElasticsearch(hosts=config.hosts, api_key=config.api_key)

    def destination(self, channel: Channel) -> str:
        # Index names must be lowercase
        return super().destination(channel).lower()

    async def init(self) -> None:
        if not await self.client.ping():
            raise SinkError("Elasticsearch is down")

    async def save_message(self, channel: Channel, message: CleanedMessage) -> None:
        await self.client.index(
            index=self.destination(channel),
            id=str(message.id),
            document=message.to_record(),
        )

    async def save_chunk(self, channel: Channel, messages: Sequence[CleanedMessage]) -> None:
        operations = []
        for message in messages:
            operations.append({"index": {"_id": str(message.id)}})
            operations.append(message.to_record())
        response = await self.client.bulk(index=self.destination(channel), operations=operations)
        if response["errors"]:
            failed = [item["index"] for item in response["items"] if "error" in item["index"]]
            raise SinkError(
                f"Elasticsearch rejected {len(failed)} of {len(messages)} messages: "
                f"{failed[0]['error']}"
            )

    async def close(self) -> None:
        await self.client.close()


class JsonlSink(Sink):
    name = "jsonl"

    def __init__(self, config: JsonlConfig) -> None:
        self.pattern = config.file
        self.eol = config.eol
        self._files: Dict[str, IO[str]] = {}
        # One writer at a time so lines from concurrent chunks never interleave
        self._lock = asyncio.Lock()

    def _file(self, path: str) -> IO[str]:
        handle = self._files.get(path)
        if handle is None:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            handle = open(path, "a", encoding="utf-8")
            self._files[path] = handle
        return handle

    def _write(self, channel: Channel, lines: List[str]) -> None:
        handle = self._file(self.destination(channel))
        handle.write(self.eol.join(lines) + self.eol)
        handle.flush()

    async def _append(self, channel: Channel, lines: List[str]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, channel, lines)

    async def init(self) -> None:
        # A fixed path can be checked up front; per-chat files open on first write
        if CHANNEL_NAME_TOKEN not in self.pattern:
            async with self._lock:
                await asyncio.to_thread(self._file, self.pattern)

    async def save_message(self, channel: Channel, message: CleanedMessage) -> None:
        await self._append(channel, [json.dumps(message.to_record(), ensure_ascii=False)])

    async def save_chunk(self, channel: Channel, messages: Sequence[CleanedMessage]) -> None:
        lines = [json.dumps(m.to_record(), ensure_ascii=False) for m in messages]
        await self._append(channel, lines)

    def _close(self) -> None:
        for handle in self._files.values():
            handle.close()
        self._files.clear()

    async def close(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._close)


class DatabaseSink(Sink):
    name = "database"

    def __init__(self, config: DatabaseConfig) -> None:
        self.pattern = config.channel_pattern
        self.engine = create_engine(config.url)

    def _init(self) -> None:
        Base.metadata.create_all(self.engine)
        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))

    def _store(self, destination: str, messages: Sequence[CleanedMessage]) -> None:
        with Session(self.engine) as session:
            for message in messages:
                session.merge(
                    Message(
                        channel=destination,
                        id=str(message.id),
                        text=message.text,
                        reply_to=str(message.reply_to) if message.reply_to is not None else None,
                        attachment_path=message.attachment.path if message.attachment else None,
                        attachment_asset_type=(
                            message.attachment.asset_type if message.attachment else None
                        ),
                        sent_at=message.sent_at,
                        sender_uid=message.sender_uid,
                        sender_username=message.sender_username,
                        device_id=message.device_id,
                        device_name=message.device_name,
                        revoked_device=message.revoked_device,
                    )
                )
            session.commit()

    async def init(self) -> None:
        try:
            await asyncio.to_thread(self._init)
        except Exception as e:
            raise SinkError(f"Database is unreachable: {e}") from e

    async def save_message(self, channel: Channel, message: CleanedMessage) -> None:
        await asyncio.to_thread(self._store, self.destination(channel), [message])

    async def save_chunk(self, channel: Channel, messages: Sequence[CleanedMessage]) -> None:
        await asyncio.to_thread(self._store, self.destination(channel), messages)

    async def close(self) -> None:
        self.engine.dispose()


class InfluxSink(Sink):
    """Message activity as time series; content length is always recorded."""

    name = "influxdb"

    def __init__(self, config: InfluxDBConfig, client: Optional[InfluxDBClient] = None) -> None:
        self.config = config
        self.influx_client: InfluxDBClient = client or InfluxDBClient(
            url=config.url, token=config.token, org=config.org
        )
        self.write_api: WriteApi = self.influx_client.write_api(write_options=SYNCHRONOUS)

    def to_point(self, channel: Channel, message: CleanedMessage) -> Point:
        # The message_id tag makes a rewrite land on the same series and timestamp
        point = (
            Point(self.config.measurement)
            .tag("channel", self.destination(channel))
            .tag("sender", message.sender_uid)
            .tag("message_id", str(message.id))
            .field("content_length", len(message.text or ""))
            .time(message.sent_at)
        )
        if message.text is not None:
            point = point.field("text", message.text)
        if message.attachment is not None:
            point = point.field("attachment_path", message.attachment.path)
        return point

    def _write(self, points: List[Point]) -> None:
        self.write_api.write(bucket=self.config.bucket, record=points)

    async def init(self) -> None:
        if not await asyncio.to_thread(self.influx_client.ping):
            raise SinkError("InfluxDB is down")

    async def save_message(self, channel: Channel, message: CleanedMessage) -> None:
        await asyncio.to_thread(self._write, [self.to_point(channel, message)])

    async def save_chunk(self, channel: Channel, messages: Sequence[CleanedMessage]) -> None:
        await asyncio.to_thread(self._write, [self.to_point(channel, m) for m in messages])

    async def close(self) -> None:
        self.influx_client.close()
