import asyncio
import re
import signal
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .backend import ChatBackend, MatrixBackend
from .config import Settings
from .dumper import Dumper
from .history import load_history
from .logger import get_logger, setup_logging
from .models import Channel
from .normalize import normalize_chunk
from .watcher import LiveWatcher

# Create logger for this module
logger = get_logger(__name__)

# `$id$<room id>` selects by id instead of by name
SPECIAL_QUERY = re.compile(r"^\$(.+?)\$(.+)")


class ChannelState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    BACKFILLING = "backfilling"
    DONE = "done"


def find_channel(channels: Sequence[Channel], query: str) -> Optional[Channel]:
    """Resolve a chat selector such as ``Team chat`` or ``$id$!abc:example.org``."""
    special = SPECIAL_QUERY.match(query)
    if not special:
        return next((c for c in channels if c.name == query), None)

    mode, value = special.groups()
    if mode == "id":
        return next((c for c in channels if c.id == value), None)
    logger.warning(f"Unknown mode '{mode}' in chat query '{query}'")
    return None


class ChatExporter:
    def __init__(self, settings: Settings, backend: ChatBackend, dumper: Dumper) -> None:
        self.settings: Settings = settings
        self.backend = backend
        self.dumper = dumper
        self.states: Dict[str, ChannelState] = {}
        self.watchers: Dict[str, LiveWatcher] = {}
        self._listener: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

    def resolve_channels(self, channels: Sequence[Channel]) -> List[Channel]:
        resolved: Dict[str, Channel] = {}
        for query in self.settings.chats:
            channel = find_channel(channels, query)
            if channel is None:
                logger.warning(f"Chat '{query}' not found")
                continue
            resolved.setdefault(channel.id, channel)
        return list(resolved.values())

    def watch_channel(self, channel: Channel) -> LiveWatcher:
        watcher = LiveWatcher(
            self.backend,
            channel,
            self.dumper,
            timeout=self.settings.watcher.timeout,
            attachment_stub=self.settings.attachment_stub,
        )
        watcher.start()
        self.watchers[channel.id] = watcher
        self.states[channel.id] = ChannelState.WATCHING
        return watcher

    async def backfill_channel(self, channel: Channel) -> int:
        """Save a channel's history chunk by chunk, in the order it is fetched."""
        self.states[channel.id] = ChannelState.BACKFILLING
        saved = 0
        async for chunk in load_history(self.backend, channel, self.settings.page_size):
            logger.info(f"New chunk ({len(chunk)}): {channel.name}")
            messages = normalize_chunk(chunk, self.settings.attachment_stub)
            await self.dumper.save_chunk(channel, messages)
            saved += len(messages)

        if channel.id in self.watchers:
            self.states[channel.id] = ChannelState.WATCHING
        else:
            self.states[channel.id] = ChannelState.DONE
        logger.info(f"Backfill finished for {channel.name}: {saved} messages saved")
        return saved

    async def backfill_all(self, channels: List[Channel]) -> None:
        """Backfill channels concurrently; the first failure cancels the rest."""
        tasks = [asyncio.create_task(self.backfill_channel(channel)) for channel in channels]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            # Siblings must be finished before the backend and sinks are closed
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def run(self) -> None:
        """Main run loop"""
        await self.backend.init()
        await self.dumper.init()

        logger.info("Getting chat list")
        channels = await self.backend.list_channels()
        logger.info(f"Total chats: {len(channels)}")
        selected = self.resolve_channels(channels)
        for channel in selected:
            self.states[channel.id] = ChannelState.IDLE

        # Watchers attach before the backfill so nothing sent meanwhile is missed
        if self.settings.watcher.enabled:
            for channel in selected:
                self.watch_channel(channel)
            self._listener = asyncio.create_task(self.backend.listen())

        await self.backfill_all(selected)

        if self._listener is not None:
            logger.info("History export complete, waiting for live messages")
            stop_waiter = asyncio.create_task(self._stopped.wait())
            await asyncio.wait({self._listener, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
            stop_waiter.cancel()
        else:
            logger.info("History export complete")

    def stop(self) -> None:
        """Ask a watching run to return so it can be closed."""
        self._stopped.set()

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

        # Buffered live messages are flushed while the sinks are still open
        for channel_id, watcher in self.watchers.items():
            await watcher.stop(flush=True)
            self.states[channel_id] = ChannelState.DONE
        self.watchers.clear()

        logger.info("deinit")
        await self.backend.deinit()
        await self.dumper.close()


async def main() -> None:
    settings: Settings = Settings()

    # Set up logging before creating the exporter
    setup_logging(settings)
    logger.info("Starting Matrix chat export")

    backend = MatrixBackend(settings.matrix)
    dumper = Dumper.from_settings(settings)
    exporter: ChatExporter = ChatExporter(settings, backend, dumper)

    loop = asyncio.get_running_loop()
    handled_signals = []
    if settings.watcher.enabled:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, exporter.stop)
                handled_signals.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform, KeyboardInterrupt still applies
                pass

    try:
        await exporter.run()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        for sig in handled_signals:
            loop.remove_signal_handler(sig)
        await exporter.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
