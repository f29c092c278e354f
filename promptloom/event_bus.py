"""
PROMPTLOOM Event Bus — change notifications for the workspace

The Document Store, the Auxiliary State Registry and a RunSession each
announce their changes here. The Workspace listens to persist state; the
CLI and tests listen to observe it.

Delivery is synchronous and in subscription order, on the caller's stack.
A subscriber that raises is logged and skipped.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class EventType(str, Enum):
    STORE_CHANGED = "store.changed"
    REGISTRY_CHANGED = "registry.changed"
    RUN_CHANGED = "run.changed"


class WorkspaceEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    source: str
    payload: Dict[str, Any]

    @property
    def prompt_id(self) -> str | None:
        return self.payload.get("prompt_id")


Subscriber = Callable[[WorkspaceEvent], None]


class EventBus:
    """One bus per Workspace; the store, registry and runs share it."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event_type: EventType | str, source: str, payload: Dict[str, Any]) -> None:
        """Broadcast a change. Unknown event names raise ValueError."""
        event = WorkspaceEvent(
            event_type=EventType(event_type).value,
            source=source,
            payload=payload,
        )
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                # The mutation has already happened; other observers still run
                logger.warning(f"[BUS] Subscriber failed on {event.event_type}: {e}")
