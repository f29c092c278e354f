"""
PROMPTLOOM Ordered Mutation Engine

Structural edits over the ordered collections (prompts, a prompt's
messages, a prompt's tools), coordinated with the Auxiliary State
Registry so per-item UI flags follow their items across id changes.

`reorder` and `insert_at` are plain list functions. They trust their
indices; bounds are the caller's job.

Duplicate and import both mint fresh ids for every message. Auxiliary
state for the new ids is written *before* the new Prompt enters the
store, so observers never see the copy without its flags.
"""

from __future__ import annotations

from typing import Any, Sequence, TypeVar

from loguru import logger
from pydantic import ValidationError

from promptloom.models import (
    IMPORTED_PROMPT_TITLE,
    ExportDocument,
    Message,
    Prompt,
    Tool,
    new_id,
)
from promptloom.registry import AuxiliaryStateRegistry, Concern
from promptloom.store import DocumentStore

T = TypeVar("T")

COPY_SUFFIX = " (copy)"


def reorder(items: Sequence[T], from_index: int, to_index: int) -> list[T]:
    """Move the element at `from_index` so it ends up at `to_index`."""
    result = list(items)
    if from_index == to_index:
        return result
    moved = result.pop(from_index)
    result.insert(to_index, moved)
    return result


def insert_at(items: Sequence[T], index: int, item: T) -> list[T]:
    """Insert without disturbing the surrounding order. `index` may be len(items)."""
    result = list(items)
    result.insert(index, item)
    return result


def copy_messages(messages: Sequence[Message]) -> list[Message]:
    """Same content, role, enabled flag and label; fresh ids."""
    return [m.model_copy(update={"id": new_id()}) for m in messages]


class MutationEngine:
    def __init__(self, store: DocumentStore, registry: AuxiliaryStateRegistry):
        self.store = store
        self.registry = registry

    # ------------------------------------------------------------------
    # Reordering
    # ------------------------------------------------------------------

    def move_prompt(self, from_index: int, to_index: int) -> bool:
        if from_index == to_index:
            return False
        return self.store.replace_prompts(reorder(self.store.prompts, from_index, to_index))

    def move_message(self, from_index: int, to_index: int, prompt_id: str | None = None) -> bool:
        prompt = self._target(prompt_id)
        if prompt is None or from_index == to_index:
            return False
        return self.store.replace_messages(reorder(prompt.messages, from_index, to_index), prompt.id)

    def move_tool(self, from_index: int, to_index: int, prompt_id: str | None = None) -> bool:
        prompt = self._target(prompt_id)
        if prompt is None or from_index == to_index:
            return False
        return self.store.replace_tools(reorder(prompt.tools, from_index, to_index), prompt.id)

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def insert_message(self, role: str = "user", index: int | None = None, prompt_id: str | None = None) -> Message | None:
        return self.store.add_message(role, index, prompt_id)

    def duplicate_prompt(self, prompt_id: str) -> Prompt | None:
        """The copy goes to the top of the list and becomes the selection."""
        original = self.store.get(prompt_id)
        if original is None:
            logger.debug(f"[MUTATE] Nothing to duplicate for {prompt_id}")
            return None

        copy = Prompt(
            title=original.title + COPY_SUFFIX,
            messages=copy_messages(original.messages),
            tools=[t.model_copy() for t in original.tools],
        )
        self.registry.remap_prompt(original, copy)
        self.store.add_prompt(copy)
        logger.info(f"[MUTATE] Duplicated {original.id} -> {copy.id}")
        return copy

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_prompt(self, prompt_id: str, forget_state: bool = False) -> bool:
        deleted = self.store.delete_prompt(prompt_id)
        if deleted and forget_state:
            self.registry.forget(prompt_id)
        return deleted

    def delete_message(self, message_id: str, prompt_id: str | None = None) -> bool:
        return self.store.remove_message(message_id, prompt_id)

    def delete_tool(self, index: int, prompt_id: str | None = None) -> bool:
        return self.store.remove_tool(index, prompt_id)

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_document(self, doc: Any) -> Prompt:
        """
        Create a Prompt from an export file body. Missing arrays become
        empty, missing scalars take their defaults, and per-message
        preview/collapsed flags seed the registry for the new ids.
        """
        try:
            parsed = ExportDocument.model_validate(doc if isinstance(doc, dict) else {})
        except ValidationError as e:
            logger.warning(f"[MUTATE] Import document rejected, importing empty prompt: {e}")
            parsed = ExportDocument()

        messages = [
            Message(role=m.role, content=m.content, enabled=m.enabled, label=m.label)
            for m in parsed.messages
        ]
        created = Prompt(title=parsed.title, messages=messages, tools=list(parsed.tools))

        self.registry.seed(
            Concern.PREVIEW, created.id,
            {msg.id: src.preview for msg, src in zip(messages, parsed.messages)},
        )
        self.registry.seed(
            Concern.COLLAPSED, created.id,
            {msg.id: src.collapsed for msg, src in zip(messages, parsed.messages)},
        )
        if parsed.toolsPanelOpen is not None:
            self.registry.set_panel_open(created.id, parsed.toolsPanelOpen)

        self.store.add_prompt(created)
        logger.info(f"[MUTATE] Imported {created.title!r} ({len(messages)} messages)")
        return created

    def import_shared(self, preview: dict[str, Any]) -> Prompt:
        """Turn a share preview into a real Prompt. Run payloads import their transcript."""
        raw_messages = preview.get("messages")
        if not isinstance(raw_messages, list) and preview.get("kind") == "run":
            run = preview.get("run")
            raw_messages = run.get("transcript") if isinstance(run, dict) else None
        raw_tools = preview.get("tools")

        messages = [
            Message.model_validate({**m, "id": new_id()})
            for m in (raw_messages if isinstance(raw_messages, list) else [])
            if isinstance(m, dict)
        ]
        tools = [
            Tool.model_validate(t)
            for t in (raw_tools if isinstance(raw_tools, list) else [])
            if isinstance(t, dict)
        ]
        title = preview.get("title")
        created = Prompt(
            title=title if isinstance(title, str) and title else IMPORTED_PROMPT_TITLE,
            messages=messages,
            tools=tools,
        )
        self.store.add_prompt(created)
        logger.info(f"[MUTATE] Imported shared prompt {created.title!r}")
        return created

    def _target(self, prompt_id: str | None) -> Prompt | None:
        if prompt_id is not None:
            return self.store.get(prompt_id)
        return self.store.selected
