"""Replay Engine -- materialized store state at any point of the event log.

State at index ``i`` is the fold of ``log[0:i)`` grouped by store instance,
where only result and state events change a store. Folds are memoized at
checkpoint indices; the cache belongs to one log generation and is dropped
wholesale as soon as the log discards events.
"""
from __future__ import annotations

import threading
from typing import Any, Callable, Iterable

import structlog

from timetravel.domain.entities.event import Event, EventKind
from timetravel.domain.entities.state import MaterializedState, StoreState
from timetravel.domain.exceptions import InvalidIndex
from timetravel.engines.event_log.engine import EventLog

logger = structlog.get_logger(__name__)

Reducer = Callable[[Any, Event], Any]

DEFAULT_CHECKPOINT_INTERVAL = 64


def latest_payload(previous: Any, event: Event) -> Any:
    """Default reducer: the newest payload replaces the previous value."""
    return event.payload


def fold_events(
    events: Iterable[Event],
    stores: dict[str, StoreState] | None = None,
    reducer: Reducer = latest_payload,
) -> dict[str, StoreState]:
    """Apply *events* in order on top of *stores* and return the new mapping.

    The input mapping is never modified.
    """
    folded = dict(stores or {})
    for event in events:
        if not event.kind.changes_state:
            continue
        previous = folded.get(event.store_instance_id)
        if event.kind is EventKind.STATE:
            value = event.payload
        else:
            value = reducer(previous.value if previous else None, event)
        folded[event.store_instance_id] = StoreState(
            store_instance_id=event.store_instance_id,
            store_tag=event.store_tag,
            value=value,
            last_index=event.index,
            applied=(previous.applied + 1) if previous else 1,
        )
    return folded


class ReplayEngine:
    """Deterministic replay over an :class:`EventLog` with a movable cursor."""

    def __init__(
        self,
        log: EventLog,
        reducer: Reducer = latest_payload,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    ) -> None:
        if checkpoint_interval < 1:
            raise ValueError("checkpoint_interval must be >= 1")
        self._log = log
        self._reducer = reducer
        self._interval = checkpoint_interval
        self._lock = threading.RLock()
        self._checkpoints: dict[int, dict[str, StoreState]] = {0: {}}
        self._cache_generation = log.generation
        self._cursor = 0
        self._unsubscribe = log.subscribe(self._on_log_length)

    # ------------------------------------------
    # PUBLIC API
    # ------------------------------------------

    @property
    def log(self) -> EventLog:
        return self._log

    @property
    def cursor(self) -> int:
        return self._cursor

    def go_to(self, index: int) -> MaterializedState:
        """Materialize state at *index* and move the cursor there."""
        with self._log.lock, self._lock:
            state = self.state_at(index)
            self._cursor = index
            logger.debug("cursor_moved", cursor=index, stores=len(state))
            return state

    def state_at(self, index: int) -> MaterializedState:
        """Materialize state at *index* without moving the cursor."""
        with self._log.lock, self._lock:
            length = len(self._log)
            if index < 0 or index > length:
                raise InvalidIndex(index, length)
            self._validate_cache()
            base = (index // self._interval) * self._interval
            while base not in self._checkpoints:
                base -= self._interval
            stores = self._checkpoints[base]
            position = base
            while position < index:
                stop = min(position + self._interval - position % self._interval, index)
                stores = fold_events(self._log.slice(position, stop), stores, self._reducer)
                position = stop
                if position % self._interval == 0:
                    self._checkpoints[position] = stores
            return MaterializedState(index=index, stores=dict(stores))

    def recompute(self, index: int) -> MaterializedState:
        """Fold from index 0 ignoring the cache; always equals :meth:`state_at`."""
        with self._log.lock:
            length = len(self._log)
            if index < 0 or index > length:
                raise InvalidIndex(index, length)
            return MaterializedState(
                index=index,
                stores=fold_events(self._log.slice(0, index), reducer=self._reducer),
            )

    def current(self) -> MaterializedState:
        return self.state_at(self._cursor)

    def step_forward(self) -> MaterializedState:
        with self._log.lock, self._lock:
            if self._cursor >= len(self._log):
                return self.current()
            return self.go_to(self._cursor + 1)

    def step_back(self) -> MaterializedState:
        with self._log.lock, self._lock:
            if self._cursor == 0:
                return self.current()
            return self.go_to(self._cursor - 1)

    def move_to_start(self) -> MaterializedState:
        return self.go_to(0)

    def move_to_end(self) -> MaterializedState:
        with self._log.lock:
            return self.go_to(len(self._log))

    def detach(self) -> None:
        """Stop listening to the log."""
        self._unsubscribe()

    @property
    def checkpoint_count(self) -> int:
        return len(self._checkpoints)

    # ------------------------------------------
    # INTERNAL METHODS
    # ------------------------------------------

    def _invalidate(self) -> None:
        self._checkpoints = {0: {}}
        self._cache_generation = self._log.generation

    def _validate_cache(self) -> None:
        if self._cache_generation != self._log.generation:
            logger.debug("replay_cache_stale", cached=self._cache_generation, current=self._log.generation)
            self._invalidate()

    def _on_log_length(self, length: int) -> None:
        # Runs under the log lock, before any other reader sees the new length.
        with self._lock:
            if self._cache_generation != self._log.generation:
                self._invalidate()
                logger.debug("replay_cache_invalidated", length=length)
            if self._cursor > length:
                self._cursor = length
