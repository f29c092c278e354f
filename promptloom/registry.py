"""
PROMPTLOOM Auxiliary State Registry

Cosmetic per-entity UI flags kept outside the documents:

  (concern, prompt_id) -> {message_id: flag}

for the per-message concerns (preview, collapsed), plus one
tools-panel-open flag per Prompt. Absence always means the default
(not preview, not collapsed, panel open), so maps only hold the
entries that differ. Orphaned keys left behind by deletes are ignored.

When a gateway is attached, maps are loaded lazily and written through
on every change. Storage trouble degrades to the defaults.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from loguru import logger

from promptloom.event_bus import EventBus, EventType
from promptloom.gateway import PersistenceGateway, read_json, tools_panel_key, write_json
from promptloom.models import Prompt


class Concern(str, Enum):
    PREVIEW = "preview_state"
    COLLAPSED = "collapsed_state"

    def key(self, prompt_id: str) -> str:
        return f"{self.value}_{prompt_id}"


MESSAGE_CONCERNS: tuple[Concern, ...] = (Concern.PREVIEW, Concern.COLLAPSED)


class AuxiliaryStateRegistry:
    def __init__(self, gateway: PersistenceGateway | None = None, bus: EventBus | None = None):
        self.gateway = gateway
        self.bus = bus
        self._maps: dict[tuple[Concern, str], dict[str, Any]] = {}
        self._panels: dict[str, bool] = {}

    # ------------------------------------------------------------------
    # Per-message maps
    # ------------------------------------------------------------------

    def get(self, concern: Concern, prompt_id: str) -> dict[str, Any]:
        """A copy of the map; mutate it and hand it back through `set`."""
        return dict(self._load(concern, prompt_id))

    def set(self, concern: Concern, prompt_id: str, mapping: dict[str, Any]) -> None:
        self._maps[(concern, prompt_id)] = dict(mapping)
        if self.gateway is not None:
            result = write_json(self.gateway, concern.key(prompt_id), mapping)
            if result.is_err:
                logger.warning(f"[REGISTRY] Could not persist {concern.value} for {prompt_id}: {result.error}")
        if self.bus is not None:
            self.bus.emit(EventType.REGISTRY_CHANGED, "registry", {"concern": concern.value, "prompt_id": prompt_id})

    def is_set(self, concern: Concern, prompt_id: str, entity_id: str) -> bool:
        return bool(self._load(concern, prompt_id).get(entity_id))

    def set_flag(self, concern: Concern, prompt_id: str, entity_id: str, value: Any) -> None:
        mapping = self.get(concern, prompt_id)
        if value:
            mapping[entity_id] = value
        else:
            mapping.pop(entity_id, None)
        self.set(concern, prompt_id, mapping)

    def toggle(self, concern: Concern, prompt_id: str, entity_id: str) -> bool:
        flipped = not self.is_set(concern, prompt_id, entity_id)
        self.set_flag(concern, prompt_id, entity_id, True if flipped else None)
        return flipped

    def remap_positional(
        self,
        concern: Concern,
        old_prompt_id: str,
        new_prompt_id: str,
        old_ids: Sequence[str],
        new_ids: Sequence[str],
    ) -> dict[str, Any]:
        """
        Carry flags over to a copied id-space by position: if the i-th old
        id is flagged, the i-th new id is flagged. Indices past the shorter
        list are dropped. The new map replaces whatever `new_prompt_id` had.
        """
        source = self._load(concern, old_prompt_id)
        remapped: dict[str, Any] = {}
        for old_id, new_id in zip(old_ids, new_ids):
            if source.get(old_id):
                remapped[new_id] = True
        self.set(concern, new_prompt_id, remapped)
        return dict(remapped)

    def seed(self, concern: Concern, prompt_id: str, flags: dict[str, bool]) -> None:
        """Populate a fresh map from explicit per-id flags (import path)."""
        self.set(concern, prompt_id, {eid: True for eid, on in flags.items() if on})

    # ------------------------------------------------------------------
    # Tools panel
    # ------------------------------------------------------------------

    def panel_stored(self, prompt_id: str) -> bool | None:
        """The explicitly stored panel flag, or None when the default applies."""
        if prompt_id in self._panels:
            return self._panels[prompt_id]
        if self.gateway is None:
            return None
        raw = self.gateway.get(tools_panel_key(prompt_id))
        if raw.is_err or raw.value is None:
            return None
        stored = raw.value in ("1", "true")
        self._panels[prompt_id] = stored
        return stored

    def panel_open(self, prompt_id: str) -> bool:
        stored = self.panel_stored(prompt_id)
        return True if stored is None else stored

    def set_panel_open(self, prompt_id: str, is_open: bool) -> None:
        self._panels[prompt_id] = is_open
        if self.gateway is not None:
            result = self.gateway.set(tools_panel_key(prompt_id), "1" if is_open else "0")
            if result.is_err:
                logger.warning(f"[REGISTRY] Could not persist tools panel for {prompt_id}: {result.error}")

    # ------------------------------------------------------------------
    # Whole-prompt helpers
    # ------------------------------------------------------------------

    def remap_prompt(self, original: Prompt, copy: Prompt) -> None:
        """Make `copy` look like `original`: every message concern plus the panel flag."""
        old_ids = original.message_ids()
        new_ids = copy.message_ids()
        for concern in MESSAGE_CONCERNS:
            self.remap_positional(concern, original.id, copy.id, old_ids, new_ids)
        stored = self.panel_stored(original.id)
        if stored is not None:
            self.set_panel_open(copy.id, stored)

    def forget(self, prompt_id: str) -> None:
        """Drop cached and stored entries of a deleted Prompt."""
        for concern in MESSAGE_CONCERNS:
            self._maps.pop((concern, prompt_id), None)
            if self.gateway is not None:
                self.gateway.remove(concern.key(prompt_id))
        self._panels.pop(prompt_id, None)
        if self.gateway is not None:
            self.gateway.remove(tools_panel_key(prompt_id))

    def _load(self, concern: Concern, prompt_id: str) -> dict[str, Any]:
        cached = self._maps.get((concern, prompt_id))
        if cached is not None:
            return cached
        mapping: dict[str, Any] = {}
        if self.gateway is not None:
            result = read_json(self.gateway, concern.key(prompt_id))
            if result.is_err:
                logger.debug(f"[REGISTRY] {concern.value} for {prompt_id} unreadable, using defaults")
            elif isinstance(result.value, dict):
                mapping = result.value
        self._maps[(concern, prompt_id)] = mapping
        return mapping
