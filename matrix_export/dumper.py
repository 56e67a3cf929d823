import asyncio
from typing import Awaitable, Callable, List, Sequence

from .config import Settings
from .logger import get_logger
from .models import Channel, CleanedMessage
from .sinks import DatabaseSink, ElasticsearchSink, InfluxSink, JsonlSink, Sink

logger = get_logger(__name__)


def build_sinks(settings: Settings) -> List[Sink]:
    """Create the enabled sinks in a fixed order."""
    sinks: List[Sink] = []
    if settings.elasticsearch.enabled:
        sinks.append(ElasticsearchSink(settings.elasticsearch))
    if settings.jsonl.enabled:
        sinks.append(JsonlSink(settings.jsonl))
    if settings.database.enabled:
        sinks.append(DatabaseSink(settings.database))
    if settings.influxdb.enabled:
        sinks.append(InfluxSink(settings.influxdb))
    return sinks


class Dumper:
    """Writes every message to all configured sinks at once.

    Each call waits for every sink to finish. Sinks that succeed keep their
    writes; if any sink failed, the first failure in sink order is raised
    afterwards.
    """

    def __init__(self, sinks: Sequence[Sink]) -> None:
        self.sinks: List[Sink] = list(sinks)
        if not self.sinks:
            logger.warning("No sinks are enabled, messages will not be saved anywhere")

    @classmethod
    def from_settings(cls, settings: Settings) -> "Dumper":
        return cls(build_sinks(settings))

    async def _fan_out(self, action: str, call: Callable[[Sink], Awaitable[None]]) -> None:
        results = await asyncio.gather(
            *(call(sink) for sink in self.sinks), return_exceptions=True
        )
        errors = []
        for sink, result in zip(self.sinks, results):
            if isinstance(result, BaseException):
                logger.error(f"{action} failed on {sink.name} sink: {result}")
                errors.append(result)
        if errors:
            raise errors[0]

    async def init(self) -> None:
        await self._fan_out("init", lambda sink: sink.init())
        logger.info(f"Sinks ready: {', '.join(sink.name for sink in self.sinks) or 'none'}")

    async def save_message(self, channel: Channel, message: CleanedMessage) -> None:
        await self._fan_out("save_message", lambda sink: sink.save_message(channel, message))

    async def save_chunk(self, channel: Channel, messages: Sequence[CleanedMessage]) -> None:
        if not messages:
            return
        await self._fan_out("save_chunk", lambda sink: sink.save_chunk(channel, messages))

    async def close(self) -> None:
        await self._fan_out("close", lambda sink: sink.close())
