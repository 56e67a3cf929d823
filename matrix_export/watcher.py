from typing import Optional

from .backend import ChatBackend, Subscription
from .dumper import Dumper
from .logger import get_logger
from .models import Channel, CleanedMessage, RawMessage
from .normalize import normalize
from .retention import RetentionBuffer

logger = get_logger(__name__)


class LiveWatcher:
    """Routes a channel's live events through its retention buffer.

    New messages wait in the buffer for ``timeout`` seconds; edits and
    deletions arriving in that window are applied before the message is
    saved. Events for a channel arrive one at a time from the backend's
    callback, which makes it the only writer of the buffer.
    """

    def __init__(
        self,
        backend: ChatBackend,
        channel: Channel,
        dumper: Dumper,
        timeout: float,
        attachment_stub: bool = False,
    ) -> None:
        self.backend = backend
        self.channel = channel
        self.dumper = dumper
        self.attachment_stub = attachment_stub
        self.buffer = RetentionBuffer(timeout)
        self.subscription: Optional[Subscription] = None

    def start(self) -> None:
        logger.info(f"Watching for new messages: {self.channel.name}")
        self.buffer.start()
        self.subscription = self.backend.watch(self.channel, self.on_event, self.on_error)

    def on_event(self, message: RawMessage) -> None:
        logger.debug(f"Watcher: new event ({message.id}) in {self.channel.name}")
        content = message.content
        if content.type == "edit":
            if content.message_id is not None:
                self.buffer.edit(content.message_id, content.body)
            return
        if content.type == "delete":
            self.buffer.delete(content.message_ids)
            return

        cleaned = normalize(message, self.attachment_stub)
        if cleaned is None:
            return
        self.buffer.add(cleaned, self.save)

    def on_error(self, error: Exception) -> None:
        logger.error(f"Watcher error in {self.channel.name}: {error}")

    async def save(self, message: CleanedMessage) -> None:
        try:
            await self.dumper.save_message(self.channel, message)
        except Exception as e:
            # One lost live message must not stop the channel
            logger.error(f"Failed to save live message {message.id} in {self.channel.name}: {e}")
        else:
            logger.debug(f"Saved live message {message.id} in {self.channel.name}")

    async def stop(self, flush: bool = True) -> None:
        if self.subscription is not None:
            self.subscription.cancel()
            self.subscription = None
        await self.buffer.close(flush=flush)
