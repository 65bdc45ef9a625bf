"""In-process realtime change feed.

The database capability publishes every committed insert to a
`RealtimeBroker`. Consumers open a `RealtimeChannel` scoped to one table and
an equality filter on one column; the channel owns a bounded queue and a pump
task that hands events to the registered coroutine in arrival order.

Channel lifecycle::

    CONNECTING -> SUBSCRIBED -> DISCONNECTED | CHANNEL_ERROR | CLOSED

`CLOSED` is only reached through the owner's own `close()`. The other two
terminal states come from the broker (shutdown, dropped connection) or from a
queue overflow. Channels are never resubscribed; open a new one instead.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from clientdesk.backend.errors import RealtimeError

logger = logging.getLogger(__name__)


class ChannelStatus(str, Enum):
    """Subscription states reported to channel owners."""

    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"
    DISCONNECTED = "DISCONNECTED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    CLOSED = "CLOSED"

    @property
    def terminal(self) -> bool:
        return self in (
            ChannelStatus.DISCONNECTED,
            ChannelStatus.CHANNEL_ERROR,
            ChannelStatus.CLOSED,
        )


@dataclass(frozen=True)
class RowFilter:
    """Equality filter on a single column, e.g. ``client_id=eq.42``."""

    column: str
    value: Any

    def matches(self, record: Mapping[str, Any]) -> bool:
        return record.get(self.column) == self.value

    def __str__(self) -> str:
        return f"{self.column}=eq.{self.value}"


@dataclass(frozen=True)
class InsertEvent:
    """A committed row delivered to subscribers."""

    table: str
    record: Mapping[str, Any]


InsertHandler = Callable[[InsertEvent], Awaitable[None]]
StatusHandler = Callable[[ChannelStatus, Exception | None], Awaitable[None]]


class RealtimeChannel:
    """Live subscription to insert events on one table."""

    def __init__(
        self,
        broker: RealtimeBroker,
        name: str,
        table: str,
        row_filter: RowFilter | None,
        on_insert: InsertHandler,
        on_status: StatusHandler | None = None,
        *,
        max_queue: int = 256,
    ) -> None:
        self.name = name
        self.table = table
        self.row_filter = row_filter
        self._broker = broker
        self._on_insert = on_insert
        self._on_status = on_status
        self._max_queue = max_queue
        self._status: ChannelStatus | None = None
        self._queue: asyncio.Queue[InsertEvent] | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._failure_task: asyncio.Task[None] | None = None

    @property
    def status(self) -> ChannelStatus | None:
        return self._status

    def matches(self, record: Mapping[str, Any]) -> bool:
        return self.row_filter is None or self.row_filter.matches(record)

    async def subscribe(self) -> RealtimeChannel:
        """Attach to the broker and start delivering events."""
        if self._status is not None:
            raise RealtimeError(f"Channel {self.name} has already been subscribed")

        await self._transition(ChannelStatus.CONNECTING)
        if self._broker.closed:
            await self._transition(
                ChannelStatus.CHANNEL_ERROR,
                RealtimeError("Realtime broker is closed"),
            )
            return self

        self._queue = asyncio.Queue(maxsize=self._max_queue)
        self._broker._attach(self)
        self._pump_task = asyncio.create_task(self._pump(), name=f"realtime:{self.name}")
        await self._transition(ChannelStatus.SUBSCRIBED)
        return self

    async def close(self) -> None:
        """Stop delivery and detach from the broker. Safe to call repeatedly."""
        await self._shutdown(ChannelStatus.CLOSED)

    async def drain(self) -> None:
        """Wait until every event queued so far has been handled."""
        if self._queue is not None and self._status is ChannelStatus.SUBSCRIBED:
            await self._queue.join()

    def _offer(self, event: InsertEvent) -> None:
        if self._status is not ChannelStatus.SUBSCRIBED or self._queue is None:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Realtime channel %s overflowed (%d pending); dropping subscription",
                self.name,
                self._queue.qsize(),
            )
            self._broker._detach(self)
            self._failure_task = asyncio.create_task(
                self._shutdown(
                    ChannelStatus.CHANNEL_ERROR,
                    RealtimeError(f"Channel {self.name} fell behind the change feed"),
                )
            )

    async def _pump(self) -> None:
        assert self._queue is not None
        while self._status is ChannelStatus.SUBSCRIBED:
            event = await self._queue.get()
            try:
                await self._on_insert(event)
            except Exception:
                logger.exception("Insert handler for channel %s failed", self.name)
            finally:
                self._queue.task_done()

    async def _shutdown(self, status: ChannelStatus, error: Exception | None = None) -> None:
        if self._status is None or self._status.terminal:
            return

        self._broker._detach(self)
        task, self._pump_task = self._pump_task, None
        # Mark terminal before cancelling so the pump loop exits on its own
        # when shutdown is requested from inside a handler.
        self._status = status
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._notify(status, error)

    async def _transition(self, status: ChannelStatus, error: Exception | None = None) -> None:
        self._status = status
        await self._notify(status, error)

    async def _notify(self, status: ChannelStatus, error: Exception | None) -> None:
        logger.debug("Realtime channel %s -> %s", self.name, status.value)
        if self._on_status is None:
            return
        try:
            await self._on_status(status, error)
        except Exception:
            logger.exception("Status handler for channel %s failed", self.name)


class RealtimeBroker:
    """Fans committed inserts out to matching channels."""

    def __init__(self, *, max_queue: int = 256) -> None:
        self._max_queue = max_queue
        self._channels: dict[str, set[RealtimeChannel]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def open_channels(self) -> int:
        return sum(len(channels) for channels in self._channels.values())

    def channel(
        self,
        name: str,
        table: str,
        row_filter: RowFilter | None,
        on_insert: InsertHandler,
        on_status: StatusHandler | None = None,
    ) -> RealtimeChannel:
        """Build an unsubscribed channel bound to this broker."""
        return RealtimeChannel(
            self,
            name,
            table,
            row_filter,
            on_insert,
            on_status,
            max_queue=self._max_queue,
        )

    def publish(self, table: str, record: Mapping[str, Any]) -> int:
        """Queue `record` on every matching channel; return how many matched."""
        delivered = 0
        for channel in list(self._channels.get(table, ())):
            if channel.matches(record):
                channel._offer(InsertEvent(table=table, record=dict(record)))
                delivered += 1
        return delivered

    async def disconnect(self, reason: str = "connection lost") -> None:
        """Drop every open channel as if the connection had gone away."""
        channels = [channel for group in self._channels.values() for channel in group]
        for channel in channels:
            await channel._shutdown(ChannelStatus.DISCONNECTED, RealtimeError(reason))

    async def close(self) -> None:
        """Disconnect all channels and refuse new subscriptions."""
        self._closed = True
        await self.disconnect("realtime broker shut down")

    def _attach(self, channel: RealtimeChannel) -> None:
        self._channels.setdefault(channel.table, set()).add(channel)

    def _detach(self, channel: RealtimeChannel) -> None:
        group = self._channels.get(channel.table)
        if group is None:
            return
        group.discard(channel)
        if not group:
            del self._channels[channel.table]
