"""Event storage for resumable streams.

Every message pushed to a client over a resumable stream is recorded here
first. A client that reconnects with the id of the last event it saw gets the
rest of the stream replayed in arrival order.
"""

from __future__ import annotations

import itertools
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Final

from relay_mcp.types.json_rpc import JSONRPCMessage

logger = logging.getLogger(__name__)

StreamId = str

EVENT_ID_SEPARATOR: Final[str] = "/"
_SEQUENCE_WIDTH: Final[int] = 20

EventCallback = Callable[[str, JSONRPCMessage], Awaitable[None]]


@dataclass(frozen=True, order=True)
class EventId:
    """Identifier of a stored event: the owning stream plus a monotonic sequence number.

    The wire form is ``<stream_id>/<sequence>`` with the sequence zero-padded to a
    fixed width, so for two events of the same stream the lexical order of their
    wire forms is their arrival order. Parsing splits on the last separator; the
    sequence field is all digits, so stream ids may contain any character.
    """

    stream_id: StreamId
    sequence: int

    def __str__(self) -> str:
        return f"{self.stream_id}{EVENT_ID_SEPARATOR}{self.sequence:0{_SEQUENCE_WIDTH}d}"

    @classmethod
    def parse(cls, value: str) -> EventId | None:
        """Parse the wire form, returning None for anything this store could not have issued."""
        stream_id, separator, sequence = value.rpartition(EVENT_ID_SEPARATOR)
        if not separator or not stream_id:
            return None
        if len(sequence) != _SEQUENCE_WIDTH or not (sequence.isascii() and sequence.isdigit()):
            return None
        return cls(stream_id, int(sequence))


class EventStore(ABC):
    """Interface for resumability support via event storage."""

    @abstractmethod
    async def store_event(self, stream_id: StreamId, message: JSONRPCMessage) -> str:
        """Store an event for later retrieval.

        Args:
            stream_id: ID of the stream the event belongs to
            message: The JSON-RPC message to store

        Returns:
            The generated event ID, greater than every earlier ID of the stream
        """

    @abstractmethod
    async def replay_events_after(self, last_event_id: str, send_callback: EventCallback) -> StreamId | None:
        """Replay the events of a stream that follow ``last_event_id``.

        Args:
            last_event_id: ID of the last event the client received
            send_callback: Awaited once per replayed event, in arrival order

        Returns:
            The stream the events belong to, or None when ``last_event_id`` is
            unknown (the caller then starts a fresh stream)
        """

    @abstractmethod
    async def purge_stream(self, stream_id: StreamId) -> None:
        """Remove every event of a stream. Unknown streams are ignored."""

    async def expire_events(self) -> int:
        """Drop events that outlived their retention. Returns how many were dropped.

        Called periodically by the handler. Stores without time-based retention
        keep the default, which does nothing.
        """
        return 0


@dataclass
class _StoredEvent:
    message: JSONRPCMessage
    stored_at: float


class InMemoryEventStore(EventStore):
    """Process-local event store.

    Each stream is a dict keyed by sequence number. Sequence numbers only grow
    and events are inserted as they arrive, so iteration order is both arrival
    order and age order, and eviction only ever looks at the front.

    Args:
        max_events_per_stream: Oldest events are dropped once a stream holds this many.
        event_ttl: Seconds after which an event is dropped.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        *,
        max_events_per_stream: int | None = None,
        event_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_events_per_stream is not None and max_events_per_stream <= 0:
            raise ValueError("max_events_per_stream must be positive or None")
        if event_ttl is not None and event_ttl <= 0:
            raise ValueError("event_ttl must be positive or None")
        self.max_events_per_stream = max_events_per_stream
        self.event_ttl = event_ttl
        self._clock = clock
        # One counter for all streams: ids are never reused, even after a purge.
        self._sequence = itertools.count(1)
        # stream_id -> {sequence -> event}, in arrival order
        self._streams: dict[StreamId, dict[int, _StoredEvent]] = {}

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    def event_count(self, stream_id: StreamId) -> int:
        return len(self._streams.get(stream_id, {}))

    async def store_event(self, stream_id: StreamId, message: JSONRPCMessage) -> str:
        now = self._clock()
        event_id = EventId(stream_id, next(self._sequence))
        events = self._streams.setdefault(stream_id, {})
        self._expire_stream(events, now)
        events[event_id.sequence] = _StoredEvent(message=message, stored_at=now)

        if self.max_events_per_stream is not None:
            while len(events) > self.max_events_per_stream:
                oldest = next(iter(events))
                del events[oldest]
                logger.debug("Evicted event %s from full stream", EventId(stream_id, oldest))

        return str(event_id)

    async def replay_events_after(self, last_event_id: str, send_callback: EventCallback) -> StreamId | None:
        last = EventId.parse(last_event_id) if last_event_id else None
        if last is None:
            logger.debug("Cannot replay after malformed event id %r", last_event_id)
            return None

        events = self._streams.get(last.stream_id)
        if events is not None and self._expire_stream(events, self._clock()) and not events:
            del self._streams[last.stream_id]
            events = None
        if events is None or last.sequence not in events:
            logger.debug("Event %s is not in the store; nothing to replay", last_event_id)
            return None

        # Snapshot before delivering: the callback may suspend while new events arrive.
        to_replay = [
            (EventId(last.stream_id, sequence), event.message)
            for sequence, event in events.items()
            if sequence > last.sequence
        ]
        logger.debug("Replaying %d events of stream %s", len(to_replay), last.stream_id)

        for event_id, message in to_replay:
            await send_callback(str(event_id), message)

        return last.stream_id

    async def purge_stream(self, stream_id: StreamId) -> None:
        removed = self._streams.pop(stream_id, None)
        if removed:
            logger.debug("Purged %d events of stream %s", len(removed), stream_id)

    async def expire_events(self) -> int:
        if self.event_ttl is None:
            return 0
        now = self._clock()
        dropped = 0
        for stream_id in list(self._streams):
            events = self._streams[stream_id]
            dropped += self._expire_stream(events, now)
            if not events:
                del self._streams[stream_id]
        return dropped

    def _expire_stream(self, events: dict[int, _StoredEvent], now: float) -> int:
        if self.event_ttl is None:
            return 0
        cutoff = now - self.event_ttl
        dropped = 0
        while events:
            oldest = next(iter(events))
            if events[oldest].stored_at >= cutoff:
                break
            del events[oldest]
            dropped += 1
        return dropped
