"""
PROMPTLOOM Document Store

The canonical collection of Prompts plus the active selection.

Every operation is a pure reducer: (WorkspaceState, args) -> WorkspaceState.
Reducers never touch the incoming state; they rebuild each list and model
they change and return the *same* object when nothing changed, which is
how DocumentStore decides whether to announce a change.

Nested message/tool operations act on the selected Prompt unless a
prompt id is passed explicitly.

Selection:
  None          -> Selected(id)   select / add / duplicate / import
  Selected(id)  -> Selected(id')  select
  Selected(id)  -> None           the selected Prompt is deleted
"""

from __future__ import annotations

from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel

from promptloom.event_bus import EventBus, EventType
from promptloom.models import (
    Message,
    ParamField,
    Prompt,
    Tool,
    WorkspaceState,
)
from promptloom.params import next_param_name, parse_params, serialize_params

PromptUpdater = Callable[[Prompt], Prompt]


def _patched(model: BaseModel, patch: dict[str, Any], frozen_keys: tuple[str, ...] = ()) -> BaseModel:
    """Validated copy of `model` with `patch` applied. Keys in `frozen_keys` are ignored."""
    data = model.model_dump()
    data.update({k: v for k, v in patch.items() if k not in frozen_keys})
    return type(model).model_validate(data)


# ---------------------------------------------------------------------------
# Prompt-level reducers
# ---------------------------------------------------------------------------

def add_prompt(state: WorkspaceState, prompt: Prompt, index: int = 0) -> WorkspaceState:
    """Insert `prompt` (newest first by default) and select it."""
    prompts = list(state.prompts)
    prompts.insert(index, prompt)
    return WorkspaceState(prompts=prompts, selected_id=prompt.id)


def update_prompt(state: WorkspaceState, prompt_id: str, updater: PromptUpdater) -> WorkspaceState:
    idx = state.index_of(prompt_id)
    if idx < 0:
        return state
    current = state.prompts[idx]
    updated = updater(current)
    if updated is current:
        return state
    prompts = list(state.prompts)
    prompts[idx] = updated
    return state.model_copy(update={"prompts": prompts})


def delete_prompt(state: WorkspaceState, prompt_id: str) -> WorkspaceState:
    if state.index_of(prompt_id) < 0:
        return state
    prompts = [p for p in state.prompts if p.id != prompt_id]
    selected = None if state.selected_id == prompt_id else state.selected_id
    return WorkspaceState(prompts=prompts, selected_id=selected)


def select(state: WorkspaceState, prompt_id: str | None) -> WorkspaceState:
    if prompt_id == state.selected_id:
        return state
    if prompt_id is not None and state.index_of(prompt_id) < 0:
        logger.debug(f"[STORE] Ignoring selection of unknown prompt {prompt_id}")
        return state
    return state.model_copy(update={"selected_id": prompt_id})


def replace_prompts(state: WorkspaceState, prompts: list[Prompt]) -> WorkspaceState:
    return state.model_copy(update={"prompts": list(prompts)})


# ---------------------------------------------------------------------------
# Nested reducers (messages, tools, params)
# ---------------------------------------------------------------------------

def _target(state: WorkspaceState, prompt_id: str | None) -> str | None:
    return prompt_id if prompt_id is not None else state.selected_id


def update_target(state: WorkspaceState, prompt_id: str | None, updater: PromptUpdater) -> WorkspaceState:
    target = _target(state, prompt_id)
    if target is None:
        return state
    return update_prompt(state, target, updater)


def add_message(
    state: WorkspaceState,
    message: Message,
    index: int | None = None,
    prompt_id: str | None = None,
) -> WorkspaceState:
    def updater(p: Prompt) -> Prompt:
        messages = list(p.messages)
        messages.insert(len(messages) if index is None else index, message)
        return p.model_copy(update={"messages": messages})
    return update_target(state, prompt_id, updater)


def update_message(
    state: WorkspaceState,
    message_id: str,
    patch: dict[str, Any],
    prompt_id: str | None = None,
) -> WorkspaceState:
    def updater(p: Prompt) -> Prompt:
        if p.find_message(message_id) is None:
            return p
        messages = [
            _patched(m, patch, frozen_keys=("id",)) if m.id == message_id else m
            for m in p.messages
        ]
        return p.model_copy(update={"messages": messages})
    return update_target(state, prompt_id, updater)


def remove_message(state: WorkspaceState, message_id: str, prompt_id: str | None = None) -> WorkspaceState:
    def updater(p: Prompt) -> Prompt:
        if p.find_message(message_id) is None:
            return p
        return p.model_copy(update={"messages": [m for m in p.messages if m.id != message_id]})
    return update_target(state, prompt_id, updater)


def replace_messages(state: WorkspaceState, messages: list[Message], prompt_id: str | None = None) -> WorkspaceState:
    return update_target(state, prompt_id, lambda p: p.model_copy(update={"messages": list(messages)}))


def add_tool(state: WorkspaceState, tool: Tool, prompt_id: str | None = None) -> WorkspaceState:
    return update_target(
        state, prompt_id, lambda p: p.model_copy(update={"tools": [*p.tools, tool]})
    )


def _update_tool_at(state: WorkspaceState, index: int, fn: Callable[[Tool], Tool], prompt_id: str | None) -> WorkspaceState:
    def updater(p: Prompt) -> Prompt:
        if not 0 <= index < len(p.tools):
            logger.debug(f"[STORE] Tool index {index} out of range")
            return p
        tools = list(p.tools)
        tools[index] = fn(tools[index])
        return p.model_copy(update={"tools": tools})
    return update_target(state, prompt_id, updater)


def update_tool(state: WorkspaceState, index: int, patch: dict[str, Any], prompt_id: str | None = None) -> WorkspaceState:
    return _update_tool_at(state, index, lambda t: _patched(t, patch), prompt_id)


def remove_tool(state: WorkspaceState, index: int, prompt_id: str | None = None) -> WorkspaceState:
    def updater(p: Prompt) -> Prompt:
        if not 0 <= index < len(p.tools):
            return p
        return p.model_copy(update={"tools": [t for i, t in enumerate(p.tools) if i != index]})
    return update_target(state, prompt_id, updater)


def replace_tools(state: WorkspaceState, tools: list[Tool], prompt_id: str | None = None) -> WorkspaceState:
    return update_target(state, prompt_id, lambda p: p.model_copy(update={"tools": list(tools)}))


def _rewrite_params(tool: Tool, fn: Callable[[list[ParamField]], list[ParamField]]) -> Tool:
    fields = fn(parse_params(tool.parameters))
    return tool.model_copy(update={"parameters": serialize_params(fields)})


def add_param(state: WorkspaceState, tool_index: int, prompt_id: str | None = None) -> WorkspaceState:
    def fn(fields: list[ParamField]) -> list[ParamField]:
        return [*fields, ParamField(key=next_param_name(fields))]
    return _update_tool_at(state, tool_index, lambda t: _rewrite_params(t, fn), prompt_id)


def update_param(
    state: WorkspaceState,
    tool_index: int,
    field_index: int,
    patch: dict[str, Any],
    prompt_id: str | None = None,
) -> WorkspaceState:
    def fn(fields: list[ParamField]) -> list[ParamField]:
        return [_patched(f, patch) if i == field_index else f for i, f in enumerate(fields)]
    return _update_tool_at(state, tool_index, lambda t: _rewrite_params(t, fn), prompt_id)


def remove_param(state: WorkspaceState, tool_index: int, field_index: int, prompt_id: str | None = None) -> WorkspaceState:
    def fn(fields: list[ParamField]) -> list[ParamField]:
        return [f for i, f in enumerate(fields) if i != field_index]
    return _update_tool_at(state, tool_index, lambda t: _rewrite_params(t, fn), prompt_id)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class DocumentStore:
    """
    Holds the current WorkspaceState and applies reducers to it.

    Emits `store.changed` on the bus after every operation that produced
    a new state. Snapshots handed out earlier are never modified.
    """

    def __init__(self, state: WorkspaceState | None = None, bus: EventBus | None = None):
        self._state = state or WorkspaceState()
        self.bus = bus or EventBus()

    @property
    def state(self) -> WorkspaceState:
        return self._state

    @property
    def prompts(self) -> list[Prompt]:
        return self._state.prompts

    @property
    def selected(self) -> Prompt | None:
        return self._state.selected

    def get(self, prompt_id: str) -> Prompt | None:
        return self._state.find(prompt_id)

    def _apply(self, new_state: WorkspaceState, op: str, **details: Any) -> bool:
        if new_state is self._state:
            return False
        self._state = new_state
        logger.debug(f"[STORE] {op} {details or ''}")
        self.bus.emit(EventType.STORE_CHANGED, "store", {"op": op, **details})
        return True

    # -- prompts -----------------------------------------------------------

    def add_prompt(self, prompt: Prompt | None = None, index: int = 0) -> Prompt:
        prompt = prompt or Prompt()
        self._apply(add_prompt(self._state, prompt, index), "add_prompt", prompt_id=prompt.id)
        return prompt

    def update_prompt(self, prompt_id: str, updater: PromptUpdater) -> bool:
        return self._apply(update_prompt(self._state, prompt_id, updater), "update_prompt", prompt_id=prompt_id)

    def rename_prompt(self, prompt_id: str, title: str) -> bool:
        return self.update_prompt(
            prompt_id, lambda p: p if p.title == title else p.model_copy(update={"title": title})
        )

    def delete_prompt(self, prompt_id: str) -> bool:
        return self._apply(delete_prompt(self._state, prompt_id), "delete_prompt", prompt_id=prompt_id)

    def select(self, prompt_id: str | None) -> bool:
        return self._apply(select(self._state, prompt_id), "select", prompt_id=prompt_id)

    def replace_prompts(self, prompts: list[Prompt]) -> bool:
        return self._apply(replace_prompts(self._state, prompts), "replace_prompts")

    # -- messages ----------------------------------------------------------

    def add_message(self, role: str = "user", index: int | None = None, prompt_id: str | None = None) -> Message | None:
        message = Message(role=role)
        changed = self._apply(
            add_message(self._state, message, index, prompt_id), "add_message", message_id=message.id
        )
        return message if changed else None

    def append_message(self, message: Message, prompt_id: str | None = None) -> bool:
        return self._apply(add_message(self._state, message, None, prompt_id), "add_message", message_id=message.id)

    def update_message(self, message_id: str, patch: dict[str, Any], prompt_id: str | None = None) -> bool:
        return self._apply(
            update_message(self._state, message_id, patch, prompt_id), "update_message", message_id=message_id
        )

    def remove_message(self, message_id: str, prompt_id: str | None = None) -> bool:
        return self._apply(
            remove_message(self._state, message_id, prompt_id), "remove_message", message_id=message_id
        )

    def replace_messages(self, messages: list[Message], prompt_id: str | None = None) -> bool:
        return self._apply(replace_messages(self._state, messages, prompt_id), "replace_messages")

    # -- tools -------------------------------------------------------------

    def add_tool(self, tool: Tool | None = None, prompt_id: str | None = None) -> bool:
        return self._apply(add_tool(self._state, tool or Tool(), prompt_id), "add_tool")

    def update_tool(self, index: int, patch: dict[str, Any], prompt_id: str | None = None) -> bool:
        return self._apply(update_tool(self._state, index, patch, prompt_id), "update_tool", index=index)

    def remove_tool(self, index: int, prompt_id: str | None = None) -> bool:
        return self._apply(remove_tool(self._state, index, prompt_id), "remove_tool", index=index)

    def replace_tools(self, tools: list[Tool], prompt_id: str | None = None) -> bool:
        return self._apply(replace_tools(self._state, tools, prompt_id), "replace_tools")

    def add_param(self, tool_index: int, prompt_id: str | None = None) -> bool:
        return self._apply(add_param(self._state, tool_index, prompt_id), "add_param", index=tool_index)

    def update_param(self, tool_index: int, field_index: int, patch: dict[str, Any], prompt_id: str | None = None) -> bool:
        return self._apply(
            update_param(self._state, tool_index, field_index, patch, prompt_id), "update_param", index=tool_index
        )

    def remove_param(self, tool_index: int, field_index: int, prompt_id: str | None = None) -> bool:
        return self._apply(
            remove_param(self._state, tool_index, field_index, prompt_id), "remove_param", index=tool_index
        )
