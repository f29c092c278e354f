"""
PROMPTLOOM Edit Buffer — per-field draft with debounced commit

A buffer holds what the user is typing (`value`) next to what was last
written to the Document Store (`last_synced`). Edits land locally at once
and reach the store through exactly one of:

  - the debounce timer firing `debounce_ms` after the last edit
  - `commit_now()` (manual save, blur, or the owning entity going away)

States:
  CLEAN    value == last_synced, no timer
  PENDING  value != last_synced, at most one timer outstanding

Every edit cancels the outstanding timer before scheduling a new one, so
a burst of edits commits once, with the last value.

Timers come from an injected Scheduler. The default uses the running
asyncio loop; tests drive a virtual clock instead. Outside a loop there is
no timer: the buffer stays PENDING until `commit_now()`, blur or `close()`.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Generic, Protocol, TypeVar

from loguru import logger

T = TypeVar("T")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle | None: ...


class AsyncioScheduler:
    """Schedules callbacks on an asyncio loop (the running one unless given)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle | None:
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("[BUFFER] No running event loop; edit held until commit")
                return None
        return loop.call_later(delay, callback)


class BufferState(str, Enum):
    CLEAN = "clean"
    PENDING = "pending"


class EditBuffer(Generic[T]):
    def __init__(
        self,
        initial_value: T,
        on_commit: Callable[[T], None],
        debounce_ms: int = 300,
        sync_on_blur: bool = True,
        scheduler: Scheduler | None = None,
    ):
        self._value = initial_value
        self._last_synced = initial_value
        self._on_commit = on_commit
        self.debounce_ms = debounce_ms
        self._scheduler = scheduler or AsyncioScheduler()
        self._timer: TimerHandle | None = None
        self._closed = False
        self.on_blur: Callable[[], None] | None = self.commit_now if sync_on_blur else None

    @property
    def value(self) -> T:
        return self._value

    @property
    def last_synced(self) -> T:
        return self._last_synced

    @property
    def is_dirty(self) -> bool:
        return self._value != self._last_synced

    @property
    def state(self) -> BufferState:
        return BufferState.PENDING if self.is_dirty else BufferState.CLEAN

    @property
    def closed(self) -> bool:
        return self._closed

    def set_value(self, value: T) -> None:
        if self._closed:
            logger.debug("[BUFFER] Edit on a closed buffer ignored")
            return
        self._value = value
        self._cancel_timer()
        if value != self._last_synced:
            self._timer = self._scheduler.call_later(self.debounce_ms / 1000, self._on_timer)

    def commit_now(self) -> None:
        self._cancel_timer()
        self._commit()

    def discard(self) -> None:
        """Drop the local edit and return to the last committed value."""
        self._cancel_timer()
        self._value = self._last_synced

    def sync_external(self, value: T) -> bool:
        """
        Offer a canonical value that changed outside this buffer.

        Adopted only while the buffer is clean; a pending local edit is
        never overwritten. Returns True when the value was adopted.
        """
        if self.is_dirty or value == self._last_synced:
            return False
        self._value = value
        self._last_synced = value
        return True

    def close(self) -> None:
        """Flush any pending edit and stop accepting new ones."""
        if self._closed:
            return
        self.commit_now()
        self._closed = True

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed:
            return
        self._commit()

    def _commit(self) -> None:
        if self._value == self._last_synced:
            return
        value = self._value
        self._last_synced = value
        self._on_commit(value)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
