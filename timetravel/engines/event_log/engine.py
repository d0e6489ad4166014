"""Event Log -- the append-only, indexed record of time-travel events.

The log is the single piece of shared mutable state in a session: the
transport's receive task appends to it while the controlling code slices,
truncates and serializes it. Every read and mutation runs under one
re-entrant lock, and subscribers are notified inside that lock so they can
react to a truncation before any other reader observes the shorter log.
"""
from __future__ import annotations

import threading
from typing import Callable, Iterable

import structlog

from timetravel.domain.entities.event import Event
from timetravel.domain.exceptions import InvalidIndex, InvalidRange, LogClosed
from timetravel.infrastructure.codec.binary import decode_events, encode_events

logger = structlog.get_logger(__name__)

LengthListener = Callable[[int], None]


class EventLog:
    """Ordered, gapless sequence of events indexed ``0..len-1``."""

    def __init__(self, events: Iterable[Event] = ()) -> None:
        self.lock = threading.RLock()
        self._events: list[Event] = [event.with_index(i) for i, event in enumerate(events)]
        self._listeners: list[LengthListener] = []
        self._closed = False
        self._generation = 0

    # -- mutation -----------------------------------------------------------

    def append(self, event: Event) -> int:
        """Store *event* at the next index and return that index."""
        with self.lock:
            if self._closed:
                raise LogClosed("append")
            index = len(self._events)
            self._events.append(event.with_index(index))
            logger.debug(
                "event_appended",
                index=index,
                kind=event.kind.name,
                store_instance_id=event.store_instance_id,
            )
            self._notify(index + 1)
            return index

    def truncate_from(self, index: int) -> None:
        """Permanently discard every event at ``index`` and beyond."""
        with self.lock:
            if self._closed:
                raise LogClosed("truncate")
            length = len(self._events)
            if index < 0 or index > length:
                raise InvalidIndex(index, length)
            if index == length:
                return
            del self._events[index:]
            self._generation += 1
            logger.info("log_truncated", index=index, discarded=length - index, generation=self._generation)
            self._notify(index)

    def close(self) -> None:
        """Finalize the log; later mutations raise :class:`LogClosed`."""
        with self.lock:
            self._closed = True

    # -- reads --------------------------------------------------------------

    def slice(self, start: int, end: int) -> list[Event]:
        with self.lock:
            length = len(self._events)
            if start < 0 or start > end or end > length:
                raise InvalidRange(start, end, length)
            return self._events[start:end]

    def events(self) -> list[Event]:
        with self.lock:
            return list(self._events)

    def __len__(self) -> int:
        with self.lock:
            return len(self._events)

    def __getitem__(self, index: int) -> Event:
        with self.lock:
            if index < 0 or index >= len(self._events):
                raise InvalidIndex(index, len(self._events))
            return self._events[index]

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def generation(self) -> int:
        """Incremented every time events are discarded by a truncation."""
        return self._generation

    # -- subscription -------------------------------------------------------

    def subscribe(self, listener: LengthListener) -> Callable[[], None]:
        """Register *listener* for new-length notifications.

        Returns a callable that removes the listener again.
        """
        with self.lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self.lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, length: int) -> None:
        for listener in list(self._listeners):
            try:
                listener(length)
            except Exception as exc:
                logger.error("log_listener_failed", listener=repr(listener), length=length, error=str(exc))

    # -- serialization ------------------------------------------------------

    def serialize(self) -> bytes:
        with self.lock:
            return encode_events(self._events)

    @classmethod
    def deserialize(cls, data: bytes) -> EventLog:
        return cls(decode_events(data))
