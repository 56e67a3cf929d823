from typing import AsyncIterator, List, Optional

from .config import MAX_PAGE_SIZE
from .logger import get_logger
from .models import Channel, RawMessage

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 900


async def load_history(
    backend, channel: Channel, page_size: int = DEFAULT_PAGE_SIZE
) -> AsyncIterator[List[RawMessage]]:
    """Walk a channel's backlog one page per iteration.

    Yields the non-empty chunks in the order the backend pages them and
    stops after the page flagged as last. Fetch errors propagate unchanged;
    a new call starts again from the first page.
    """
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}")

    logger.info(f"Loading history for {channel.name}")
    total_messages = 0
    cursor: Optional[str] = None
    while True:
        page = await backend.read_page(channel, cursor, page_size)
        total_messages += len(page.messages)
        cursor = page.cursor
        if page.messages:
            yield page.messages
        if page.last:
            break
    logger.info(f"Finished loading history for {channel.name} ({total_messages} messages)")
