"""Chat backend interface and its Matrix implementation."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from nio import (
    AsyncClient,
    Event,
    LoginResponse,
    MatrixRoom,
    MessageDirection,
    RoomMessagesResponse,
    SyncResponse,
)

from .config import MatrixConfig
from .errors import BackendError
from .logger import get_logger
from .models import Attachment, Channel, Page, RawContent, RawMessage, Sender

logger = get_logger(__name__)

EventHandler = Callable[[RawMessage], None]
ErrorHandler = Callable[[Exception], None]

ATTACHMENT_MSGTYPES = frozenset({"m.image", "m.file", "m.video", "m.audio"})


class Subscription:
    """Handle returned by ``ChatBackend.watch``."""

    def __init__(
        self,
        channel: Channel,
        on_event: EventHandler,
        on_error: ErrorHandler,
        detach: Optional[Callable[[], None]] = None,
    ) -> None:
        self.channel = channel
        self.on_event = on_event
        self.on_error = on_error
        self._detach = detach
        self.active = True

    def dispatch(self, message: RawMessage) -> None:
        if not self.active:
            return
        try:
            self.on_event(message)
        except Exception as e:
            self.on_error(e)

    def cancel(self) -> None:
        if self.active and self._detach is not None:
            self._detach()
        self.active = False


class ChatBackend(ABC):
    @abstractmethod
    async def init(self) -> None:
        """Authenticate; failures are fatal for the run."""

    @abstractmethod
    async def list_channels(self) -> List[Channel]:
        ...

    @abstractmethod
    async def read_page(self, channel: Channel, cursor: Optional[str], page_size: int) -> Page:
        ...

    @abstractmethod
    def watch(self, channel: Channel, on_event: EventHandler, on_error: ErrorHandler) -> Subscription:
        ...

    @abstractmethod
    async def listen(self) -> None:
        """Deliver live events to subscriptions until the stream ends."""

    @abstractmethod
    async def deinit(self) -> None:
        ...


def _content_from_event(source: Dict[str, Any]) -> RawContent:
    event_type = source.get("type") or "unknown"
    content = source.get("content") or {}
    relates_to = content.get("m.relates_to") or {}

    if event_type == "m.room.redaction":
        # Room v11 moved `redacts` into the content
        redacts = source.get("redacts") or content.get("redacts")
        return RawContent(type="delete", message_ids=[redacts] if redacts else [])

    if event_type == "m.reaction":
        return RawContent(
            type="reaction", body=relates_to.get("key"), reacts_to=relates_to.get("event_id")
        )

    if event_type != "m.room.message":
        return RawContent(type=event_type)

    if relates_to.get("rel_type") == "m.replace":
        new_content = content.get("m.new_content") or {}
        return RawContent(
            type="edit",
            message_id=relates_to.get("event_id"),
            body=new_content.get("body", content.get("body")),
        )

    reply_to = (relates_to.get("m.in_reply_to") or {}).get("event_id")
    msgtype = content.get("msgtype")
    if msgtype in ATTACHMENT_MSGTYPES:
        return RawContent(
            type="attachment",
            reply_to=reply_to,
            attachment=Attachment(
                path=content.get("url", ""),
                asset_type=msgtype,
                filename=content.get("filename") or content.get("body"),
                title=content.get("body"),
            ),
        )
    if "body" in content:
        return RawContent(type="text", body=content["body"], reply_to=reply_to)
    return RawContent(type=msgtype or "unknown")


def event_to_raw(source: Dict[str, Any], room: Optional[MatrixRoom] = None) -> Optional[RawMessage]:
    """Convert a Matrix event dict; returns None for events without an id or sender."""
    event_id = source.get("event_id")
    sender = source.get("sender")
    if not event_id or not sender:
        return None

    content = source.get("content") or {}
    return RawMessage(
        id=event_id,
        sent_at=datetime.fromtimestamp(source.get("origin_server_ts", 0) / 1000, tz=timezone.utc),
        sender=Sender(
            uid=sender,
            username=room.user_name(sender) if room is not None else None,
            device_id=content.get("device_id", ""),
        ),
        content=_content_from_event(source),
    )


class MatrixBackend(ChatBackend):
    def __init__(self, config: MatrixConfig, client: Optional[AsyncClient] = None) -> None:
        self.config = config
        self.matrix_client: AsyncClient = client or AsyncClient(
            config.homeserver, config.user, device_id=config.device_id or ""
        )
        self.subscriptions: List[Subscription] = []

    async def init(self) -> None:
        if self.config.access_token:
            logger.info(f"Reusing existing Matrix session for {self.config.user}")
            self.matrix_client.access_token = self.config.access_token
            self.matrix_client.user_id = self.config.user
            if self.config.device_id:
                self.matrix_client.device_id = self.config.device_id
        else:
            logger.info(f"Logging in to Matrix as {self.config.user}...")
            response = await self.matrix_client.login(password=self.config.password)
            if not isinstance(response, LoginResponse):
                logger.error(f"Failed to log in: {response}")
                raise BackendError(f"Failed to log in: {response}")
            logger.info("Successfully logged in")

        # The first sync fills in the room list and the token live events resume from
        response = await self.matrix_client.sync(timeout=30000, full_state=True)
        if not isinstance(response, SyncResponse):
            raise BackendError(f"Initial sync failed: {response}")

    async def list_channels(self) -> List[Channel]:
        return [
            Channel(id=room_id, name=room.display_name)
            for room_id, room in self.matrix_client.rooms.items()
        ]

    async def read_page(self, channel: Channel, cursor: Optional[str], page_size: int) -> Page:
        response = await self.matrix_client.room_messages(
            room_id=channel.id,
            start=cursor,
            limit=page_size,
            direction=MessageDirection.back,
        )
        if not isinstance(response, RoomMessagesResponse):
            raise BackendError(f"Failed to fetch messages from room {channel.id}: {response}")

        room = self.matrix_client.rooms.get(channel.id)
        messages = []
        for event in response.chunk:
            raw = event_to_raw(event.source, room)
            if raw is not None:
                messages.append(raw)

        # A missing or non-advancing end token means the start of the room was reached
        last = not response.end or response.end == cursor
        return Page(messages=messages, cursor=response.end, last=last)

    def watch(self, channel: Channel, on_event: EventHandler, on_error: ErrorHandler) -> Subscription:
        async def callback(room: MatrixRoom, event: Event) -> None:
            if room.room_id != channel.id:
                return
            raw = event_to_raw(event.source, room)
            if raw is not None:
                subscription.dispatch(raw)

        def detach() -> None:
            self.matrix_client.event_callbacks = [
                cb for cb in self.matrix_client.event_callbacks if cb.func is not callback
            ]
            self.subscriptions.remove(subscription)

        subscription = Subscription(channel, on_event, on_error, detach)
        self.matrix_client.add_event_callback(callback, Event)
        self.subscriptions.append(subscription)
        return subscription

    async def listen(self) -> None:
        logger.info("Starting sync loop for new messages...")
        try:
            await self.matrix_client.sync_forever(timeout=30000)
        except Exception as e:
            logger.error(f"Sync loop stopped: {e}")
            for subscription in list(self.subscriptions):
                subscription.on_error(e)

    async def deinit(self) -> None:
        for subscription in list(self.subscriptions):
            subscription.cancel()
        await self.matrix_client.close()
