from typing import Callable

import pytest

from promptloom.config_loader import PromptloomConfig
from promptloom.gateway import MemoryGateway
from promptloom.registry import AuxiliaryStateRegistry
from promptloom.store import DocumentStore
from promptloom.mutations import MutationEngine


class ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual clock: timers only fire when the test calls `advance`."""

    def __init__(self):
        self.now = 0.0
        self.timers: list[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        while True:
            due = sorted(
                (t for t in self.pending if t.due <= self.now + 1e-9), key=lambda t: t.due
            )
            if not due:
                return
            timer = due[0]
            self.timers.remove(timer)
            timer.callback()


class CompletionFake:
    """Stands in for CompletionClient; returns queued replies or raises queued errors."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[tuple[list, list]] = []

    async def complete(self, messages, tools):
        self.calls.append((list(messages), list(tools)))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture
def store() -> DocumentStore:
    return DocumentStore()


@pytest.fixture
def registry(gateway) -> AuxiliaryStateRegistry:
    return AuxiliaryStateRegistry(gateway)


@pytest.fixture
def engine(store, registry) -> MutationEngine:
    return MutationEngine(store, registry)


@pytest.fixture
def config() -> PromptloomConfig:
    return PromptloomConfig()
