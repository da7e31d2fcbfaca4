"""
Change-feed synchronisation – normalising pushed row events and keeping a
subscription alive across connection losses.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Protocol, Set

from ebf.config import FEED_RECONNECT_SECONDS
from ebf.errors import NetworkFailure
from ebf.models import ChangeKind, RECORD_TYPES

logger = logging.getLogger(__name__)


@dataclass
class ChangeEvent:
    """One committed row change: full row for INSERT/UPDATE, key row for DELETE."""
    kind: ChangeKind
    table: str
    payload: Dict[str, Any] = field(default_factory=dict)


def normalize_event(raw: Any) -> Optional[ChangeEvent]:
    """
    Turn a pushed payload into a ChangeEvent, or None when it is unusable.

    Accepts the service shape ``{"eventType", "table", "new", "old"}`` and
    already-normalised events.
    """
    if isinstance(raw, ChangeEvent):
        return raw
    if not isinstance(raw, dict):
        return None

    try:
        kind = ChangeKind(str(raw.get("eventType") or raw.get("type") or "").upper())
    except ValueError:
        return None

    table = raw.get("table")
    if table not in RECORD_TYPES:
        return None

    if kind == ChangeKind.DELETE:
        payload = raw.get("old") or raw.get("payload") or {}
    else:
        payload = raw.get("new") or raw.get("payload") or {}
    if not isinstance(payload, dict) or not payload:
        return None
    return ChangeEvent(kind, table, dict(payload))


class EventSource(Protocol):
    def listen(self, tables: Iterable[str]) -> AsyncIterator[Dict[str, Any]]:
        ...


class Subscription:
    """Cancellable handle on a running feed consumer."""

    def __init__(self, task: "asyncio.Task"):
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        self._task.cancel()

    async def wait_closed(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class ChangeFeed:
    """Consumes an EventSource and hands normalised events to one handler."""

    def __init__(self, source: EventSource, tables: Iterable[str],
                 reconnect_delay: float = FEED_RECONNECT_SECONDS):
        self.source = source
        self.tables = tuple(tables)
        self.reconnect_delay = reconnect_delay
        self.connections = 0
        self.skipped = 0
        self.failures = 0

    def subscribe(self, handler: Callable[[ChangeEvent], Any]) -> Subscription:
        task = asyncio.get_running_loop().create_task(self._run(handler))
        return Subscription(task)

    async def _run(self, handler) -> None:
        while True:
            self.connections += 1
            if self.connections > 1:
                logger.info("Change feed re-subscribing (attempt %d)", self.connections)
            try:
                async for raw in self.source.listen(self.tables):
                    self._dispatch(handler, raw)
                logger.warning("Change feed stream ended")
            except (NetworkFailure, ConnectionError, OSError) as e:
                logger.warning("Change feed connection lost: %s", e)
            except Exception:
                self.failures += 1
                logger.exception("Change feed source failed")
            await asyncio.sleep(self.reconnect_delay)

    def _dispatch(self, handler, raw) -> None:
        event = normalize_event(raw)
        if event is None:
            self.skipped += 1
            logger.warning("Ignoring malformed change event: %r", raw)
            return
        try:
            handler(event)
        except Exception:
            self.skipped += 1
            logger.exception("Failed to apply %s on %s", event.kind.value, event.table)


class Synchronizer:
    """Attaches a change feed to the entity store."""

    def __init__(self, store, feed: ChangeFeed):
        self.store = store
        self.feed = feed
        self.subscription: Optional[Subscription] = None

    def start(self) -> Subscription:
        if self.subscription is None or not self.subscription.active:
            self.subscription = self.feed.subscribe(self.store.apply_change)
        return self.subscription

    async def stop(self) -> None:
        if self.subscription is not None:
            self.subscription.cancel()
            await self.subscription.wait_closed()
            self.subscription = None


class Broker:
    """In-process fan-out of row events to every listener."""

    def __init__(self):
        self._queues: List["asyncio.Queue"] = []

    @property
    def listeners(self) -> int:
        return len(self._queues)

    def publish(self, event: Dict[str, Any]) -> None:
        for queue in list(self._queues):
            queue.put_nowait(event)

    async def listen(self, tables: Iterable[str]) -> AsyncIterator[Dict[str, Any]]:
        wanted: Set[str] = set(tables)
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                if event.get("table") in wanted:
                    yield event
        finally:
            self._queues.remove(queue)
