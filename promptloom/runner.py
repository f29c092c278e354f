"""
PROMPTLOOM Runner — completion calls for the selected Prompt

Sends a Prompt's enabled messages (and enabled tools) through LiteLLM
and keeps a per-prompt transcript of the replies.

Runs are not cancelled. Starting a new run replaces the transcript with
a fresh loading placeholder; a reply whose placeholder is gone by the
time it arrives belongs to an abandoned run and is dropped. Failures are
surfaced as `session.error` text. Nothing is retried.
"""

from __future__ import annotations

import json
import time
from typing import Any

import litellm
from loguru import logger
from pydantic import BaseModel, Field

from promptloom.config_loader import CompletionConfig
from promptloom.errors import CompletionError
from promptloom.event_bus import EventBus, EventType
from promptloom.models import Message, Prompt, Tool, new_id
from promptloom.params import load_schema
from promptloom.registry import AuxiliaryStateRegistry, Concern
from promptloom.store import DocumentStore


class RunEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    role: str = "assistant"
    content: str = ""
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    loading: bool = False


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------

def build_completion_messages(messages: list[Message]) -> list[dict[str, str]]:
    """Enabled, non-comment messages in conversation order."""
    return [
        {"role": m.role, "content": m.content}
        for m in messages
        if m.enabled and m.role != "comment"
    ]


def build_tool_specs(tools: list[Tool]) -> list[dict[str, Any]] | None:
    specs = [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": load_schema(t.parameters),
            },
        }
        for t in tools
        if t.enabled and t.name
    ]
    return specs or None


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    tools: list[dict[str, Any]] | None,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
    }
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto"
    return kwargs


def _as_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    return dict(getattr(obj, "__dict__", {}))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class CompletionClient:
    def __init__(self, config: CompletionConfig):
        self.config = config
        litellm.suppress_debug_info = True

    async def complete(self, messages: list[Message], tools: list[Tool]) -> RunEntry:
        payload = build_completion_messages(messages)
        kwargs = _build_kwargs(self.config.model, payload, self.config.temperature, build_tool_specs(tools))

        logger.debug(f"[RUN] → {self.config.model} ({len(payload)} messages)")
        start = time.monotonic()
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise CompletionError(str(e)) from e
        elapsed_ms = int((time.monotonic() - start) * 1000)

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        if message is None:
            raise CompletionError("Empty response from model")

        logger.debug(f"[RUN] {self.config.model} complete — {elapsed_ms}ms")
        return RunEntry(
            content=getattr(message, "content", None) or "",
            tool_calls=[_as_dict(tc) for tc in (getattr(message, "tool_calls", None) or [])],
        )


# ---------------------------------------------------------------------------
# Tool-call rendering
# ---------------------------------------------------------------------------

def _render_value(value: Any) -> str:
    return json.dumps(value) if isinstance(value, (dict, list)) else str(value)


def _render_arguments(raw: Any) -> str:
    try:
        parsed = json.loads(raw) if raw else {}
    except (TypeError, json.JSONDecodeError):
        return str(raw or "")

    lines = ""
    if isinstance(parsed, list):
        for arg in parsed:
            if isinstance(arg, dict):
                name = arg.get("name", "value")
                value = arg.get("value", arg)
                lines += f"_{name}:_ {_render_value(value)}\n"
            else:
                lines += f"_value:_ {arg}\n"
    elif isinstance(parsed, dict):
        for key, value in parsed.items():
            lines += f"_{key}:_ {_render_value(value)}\n"
    elif parsed is not None:
        lines += str(parsed)
    return lines


def format_tool_calls(tool_calls: list[dict[str, Any]]) -> str:
    """Markdown listing of each call's name and arguments."""
    parts = []
    for call in tool_calls:
        function = call.get("function") or {}
        name = function.get("name") or "unknown"
        parts.append(f"**Tool call:** {name}\n**arguments:**\n{_render_arguments(function.get('arguments'))}")
    return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class RunSession:
    """
    Chat runner state for one Prompt: transcript, chat draft, running flag
    and the last error. Emits `run.changed` whenever the transcript or
    draft changes.
    """

    def __init__(
        self,
        prompt_id: str,
        store: DocumentStore,
        registry: AuxiliaryStateRegistry,
        client: CompletionClient,
        bus: EventBus | None = None,
        transcript: list[RunEntry] | None = None,
        draft: str = "",
    ):
        self.prompt_id = prompt_id
        self.store = store
        self.registry = registry
        self.client = client
        self.bus = bus or EventBus()
        self.transcript: list[RunEntry] = list(transcript or [])
        self.draft = draft
        self.is_running = False
        self.error = ""
        self._latest_placeholder: str | None = None

    def set_draft(self, text: str) -> None:
        self.draft = text
        self._changed()

    def saved_transcript(self) -> list[dict[str, Any]]:
        """Transcript without loading placeholders, as plain dicts."""
        return [e.model_dump(exclude={"loading"}) for e in self.transcript if not e.loading]

    async def run_prompt(self) -> RunEntry | None:
        prompt = self.store.get(self.prompt_id)
        if prompt is None:
            return None
        return await self._run(prompt.messages, prompt.tools)

    async def send_user_message(self, text: str | None = None) -> RunEntry | None:
        """Send the chat draft (or `text`, which replaces it) as an extra user turn."""
        if text is not None:
            self.draft = text
        prompt = self.store.get(self.prompt_id)
        text = self.draft.strip()
        if prompt is None or not text:
            return None
        self.draft = ""
        turn = Message(role="user", content=text)
        return await self._run([*prompt.messages, turn], prompt.tools)

    async def _run(self, messages: list[Message], tools: list[Tool]) -> RunEntry | None:
        placeholder = RunEntry(loading=True)
        self._latest_placeholder = placeholder.id
        self.transcript = [placeholder]
        self.is_running = True
        self.error = ""
        self._changed()

        try:
            reply = await self.client.complete(messages, tools)
        except CompletionError as e:
            logger.warning(f"[RUN] Completion failed: {e}")
            if self._latest_placeholder == placeholder.id:
                self.error = str(e)
            reply = None
        finally:
            if self._latest_placeholder == placeholder.id:
                self.is_running = False

        if not any(entry.id == placeholder.id for entry in self.transcript):
            logger.debug("[RUN] Discarding reply of an abandoned run")
            return None

        self.transcript = [entry for entry in self.transcript if entry.id != placeholder.id]
        if reply is not None:
            self.transcript.append(reply)
        self._changed()
        return reply

    def save_assistant_to_prompt(self, index: int) -> Message | None:
        """
        Append a transcript reply to the Prompt. Replies that carry tool
        calls are stored as comments; the new message opens in preview.
        """
        if not 0 <= index < len(self.transcript):
            return None
        entry = self.transcript[index]
        if entry.role != "assistant" or entry.loading:
            return None

        has_tools = bool(entry.tool_calls)
        content = entry.content.strip()
        if not content and has_tools:
            content = format_tool_calls(entry.tool_calls)
        if not content:
            return None

        message = Message(role="comment" if has_tools else "assistant", content=content)
        if not self.store.append_message(message, self.prompt_id):
            return None
        self.registry.set_flag(Concern.PREVIEW, self.prompt_id, message.id, True)
        return message

    def _changed(self) -> None:
        self.bus.emit(EventType.RUN_CHANGED, "runner", {"prompt_id": self.prompt_id})
