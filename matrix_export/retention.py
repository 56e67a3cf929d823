"""Delay live messages so late edits and deletions land before they are saved."""

import asyncio
import heapq
import inspect
import itertools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .errors import DuplicateMessageError
from .logger import get_logger
from .models import CleanedMessage, MessageId

logger = get_logger(__name__)

ExpireCallback = Callable[[CleanedMessage], Union[None, Awaitable[Any]]]


@dataclass
class RetentionEntry:
    message: CleanedMessage
    expires_at: float
    on_expire: ExpireCallback


class RetentionBuffer:
    """Id-keyed store of live messages waiting out their retention window.

    Deadlines live in one min-heap driven by a single task instead of a
    timer per message. Edits push a fresh heap item and leave the old one
    behind; stale items are skipped when they surface.

    Every method is meant to be called from the event loop thread, and only
    ``flush_expired``/``close`` suspend, after the due entries have already
    been removed. A delete that races an expiry therefore finds nothing.
    """

    def __init__(self, timeout: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout = timeout
        self._clock = clock
        self._entries: Dict[MessageId, RetentionEntry] = {}
        self._deadlines: List[Tuple[float, int, MessageId]] = []
        self._counter = itertools.count()
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries

    def _schedule(self, message_id: MessageId, entry: RetentionEntry) -> None:
        entry.expires_at = self._clock() + self.timeout
        heapq.heappush(self._deadlines, (entry.expires_at, next(self._counter), message_id))
        self._wakeup.set()

    def add(self, message: CleanedMessage, on_expire: ExpireCallback) -> None:
        """Buffer a new message; ``on_expire`` receives it once the window closes.

        The buffer keeps a reference to ``message`` and edits it in place.
        """
        if message.id in self._entries:
            raise DuplicateMessageError(f"Message {message.id} is already buffered")
        entry = RetentionEntry(message=message, expires_at=0.0, on_expire=on_expire)
        self._entries[message.id] = entry
        self._schedule(message.id, entry)

    def edit(self, message_id: MessageId, body: Optional[str]) -> None:
        """Replace the buffered text and restart the message's window."""
        entry = self._entries.get(message_id)
        if entry is None:
            logger.debug(f"edit: No buffered message with id {message_id}")
            return
        entry.message.text = body
        self._schedule(message_id, entry)

    def delete(self, message_ids: Iterable[MessageId]) -> None:
        """Discard buffered messages without saving them."""
        for message_id in message_ids:
            if self._entries.pop(message_id, None) is None:
                logger.debug(f"delete: No buffered message with id {message_id}")

    def next_deadline(self) -> Optional[float]:
        while self._deadlines:
            deadline, _, message_id = self._deadlines[0]
            entry = self._entries.get(message_id)
            if entry is not None and entry.expires_at == deadline:
                return deadline
            heapq.heappop(self._deadlines)
        return None

    def pop_expired(self, now: Optional[float] = None) -> List[RetentionEntry]:
        """Remove and return every entry whose window has closed."""
        if now is None:
            now = self._clock()
        expired = []
        while True:
            deadline = self.next_deadline()
            if deadline is None or deadline > now:
                break
            _, _, message_id = heapq.heappop(self._deadlines)
            expired.append(self._entries.pop(message_id))
        return expired

    async def _fire(self, entry: RetentionEntry) -> None:
        # A failing callback must not take the remaining entries down with it
        try:
            result = entry.on_expire(entry.message)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Expiry callback failed for message {entry.message.id}")

    async def flush_expired(self, now: Optional[float] = None) -> int:
        expired = self.pop_expired(now)
        for entry in expired:
            await self._fire(entry)
        return len(expired)

    async def flush_all(self) -> int:
        """Hand over every outstanding entry regardless of its deadline."""
        entries = sorted(self._entries.values(), key=lambda e: e.expires_at)
        self._entries.clear()
        self._deadlines.clear()
        for entry in entries:
            await self._fire(entry)
        return len(entries)

    async def run(self) -> None:
        """Expiry loop: sleep until the earliest deadline, then flush."""
        while not self._closing:
            self._wakeup.clear()
            deadline = self.next_deadline()
            if deadline is None:
                await self._wakeup.wait()
                continue
            delay = deadline - self._clock()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                    continue
                except asyncio.TimeoutError:
                    pass
            await self.flush_expired()

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def close(self, flush: bool = True) -> None:
        """Stop the expiry loop, then flush or abandon what is still buffered."""
        # The loop exits between flushes, so a batch already taken off the
        # heap is always handed over in full
        self._closing = True
        self._wakeup.set()
        if self._task is not None:
            task, self._task = self._task, None
            if not task.done():
                await task
        if flush:
            count = await self.flush_all()
            if count:
                logger.info(f"Flushed {count} buffered messages on shutdown")
        else:
            self._entries.clear()
            self._deadlines.clear()
