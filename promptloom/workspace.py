"""
PROMPTLOOM Workspace — one user's prompts, wired together

Owns the Document Store, the Auxiliary State Registry, the Mutation
Engine and the share service, and mirrors them into a Persistence
Gateway:

  store.changed  -> prompts + selected_prompt_id
  run.changed    -> run_messages_<pid> + chat_input_<pid>
  registry       -> writes through on its own

Field edits go through Edit Buffers handed out by `message_buffer` /
`title_buffer`. A buffer is bound to one entity. Switching the selection
or deleting the selected Prompt first flushes and closes every open
buffer, so a pending edit can never land on another entity.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from promptloom.config_loader import DEFAULT_HOME, PromptloomConfig, load_config
from promptloom.edit_buffer import EditBuffer, Scheduler
from promptloom.event_bus import EventBus, EventType, WorkspaceEvent
from promptloom.export import export_prompt
from promptloom.gateway import (
    PROMPTS_KEY,
    SELECTED_KEY,
    FileGateway,
    PersistenceGateway,
    chat_input_key,
    read_json,
    run_messages_key,
    write_json,
)
from promptloom.models import Prompt, WorkspaceState
from promptloom.mutations import MutationEngine
from promptloom.registry import AuxiliaryStateRegistry
from promptloom.runner import CompletionClient, RunEntry, RunSession
from promptloom.share import ShareLink, ShareService, build_prompt_payload, build_run_payload
from promptloom.store import DocumentStore

BufferKey = tuple[str, str, str]  # (prompt_id, entity_id, field)


def load_state(gateway: PersistenceGateway) -> WorkspaceState:
    """Prompts and selection from storage; anything unreadable becomes empty."""
    raw = read_json(gateway, PROMPTS_KEY)
    if raw.is_err:
        logger.warning(f"[WORKSPACE] Stored prompts unreadable, starting empty: {raw.error}")

    prompts = []
    for item in raw.value if isinstance(raw.value, list) else []:
        if not isinstance(item, dict):
            continue
        try:
            prompts.append(Prompt.model_validate(item))
        except ValidationError as e:
            logger.warning(f"[WORKSPACE] Skipping malformed stored prompt: {e}")

    selected = gateway.get(SELECTED_KEY).unwrap_or(None)
    return WorkspaceState(prompts=prompts, selected_id=selected or None)


class Workspace:
    def __init__(
        self,
        gateway: PersistenceGateway,
        config: PromptloomConfig | None = None,
        scheduler: Scheduler | None = None,
        share_service: ShareService | None = None,
        completion_client: CompletionClient | None = None,
    ):
        self.gateway = gateway
        self.config = config or PromptloomConfig()
        self.scheduler = scheduler
        self.bus = EventBus()
        self.store = DocumentStore(load_state(gateway), self.bus)
        self.registry = AuxiliaryStateRegistry(gateway, self.bus)
        self.mutations = MutationEngine(self.store, self.registry)
        self.share = share_service or ShareService(self.config.share)
        self.completion = completion_client or CompletionClient(self.config.completion)
        self._buffers: dict[BufferKey, EditBuffer[str]] = {}
        self._sessions: dict[str, RunSession] = {}
        self.bus.subscribe(self._on_event)

    @classmethod
    def open(cls, home: Path | None = None, **kwargs: Any) -> "Workspace":
        home = home or DEFAULT_HOME
        config = kwargs.pop("config", None) or load_config(home)
        gateway = FileGateway(home / config.storage.state_file)
        return cls(gateway, config=config, **kwargs)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _on_event(self, event: WorkspaceEvent) -> None:
        if event.event_type == EventType.STORE_CHANGED:
            self._persist_documents()
            self._reconcile_buffers()
        elif event.event_type == EventType.RUN_CHANGED:
            self._persist_run(event.prompt_id)

    def _persist_documents(self) -> None:
        state = self.store.state
        result = write_json(self.gateway, PROMPTS_KEY, [p.model_dump() for p in state.prompts])
        if result.is_err:
            logger.warning(f"[WORKSPACE] Could not persist prompts: {result.error}")
        if state.selected_id:
            self.gateway.set(SELECTED_KEY, state.selected_id)
        else:
            self.gateway.remove(SELECTED_KEY)

    def _persist_run(self, prompt_id: str) -> None:
        session = self._sessions.get(prompt_id)
        if session is None:
            return
        write_json(self.gateway, run_messages_key(prompt_id), session.saved_transcript())
        self.gateway.set(chat_input_key(prompt_id), session.draft)

    # ------------------------------------------------------------------
    # Selection and deletion
    # ------------------------------------------------------------------

    @property
    def selected(self) -> Prompt | None:
        return self.store.selected

    def new_prompt(self) -> Prompt:
        self.flush_buffers()
        return self.store.add_prompt()

    def select(self, prompt_id: str | None) -> bool:
        if prompt_id == self.store.state.selected_id:
            return False
        self.flush_buffers()
        return self.store.select(prompt_id)

    def delete_prompt(self, prompt_id: str) -> bool:
        if prompt_id == self.store.state.selected_id:
            self.flush_buffers()
        self._sessions.pop(prompt_id, None)
        return self.mutations.delete_prompt(prompt_id)

    def duplicate_prompt(self, prompt_id: str) -> Prompt | None:
        self.flush_buffers()
        return self.mutations.duplicate_prompt(prompt_id)

    def import_document(self, document: Any) -> Prompt:
        self.flush_buffers()
        return self.mutations.import_document(document)

    def import_shared(self, preview: dict[str, Any]) -> Prompt:
        self.flush_buffers()
        return self.mutations.import_shared(preview)

    # ------------------------------------------------------------------
    # Edit buffers
    # ------------------------------------------------------------------

    def _new_buffer(self, key: BufferKey, initial: str, on_commit) -> EditBuffer[str]:
        existing = self._buffers.get(key)
        if existing is not None and not existing.closed:
            return existing
        buffer = EditBuffer(
            initial,
            on_commit,
            debounce_ms=self.config.editor.debounce_ms,
            sync_on_blur=self.config.editor.sync_on_blur,
            scheduler=self.scheduler,
        )
        self._buffers[key] = buffer
        return buffer

    def message_buffer(self, message_id: str, field: str = "content") -> EditBuffer[str] | None:
        """Buffer for one text field (`content` or `label`) of a message in the selected Prompt."""
        prompt = self.store.selected
        message = prompt.find_message(message_id) if prompt else None
        if message is None:
            return None
        prompt_id = prompt.id

        def commit(value: str) -> None:
            self.store.update_message(message_id, {field: value}, prompt_id)

        return self._new_buffer((prompt_id, message_id, field), getattr(message, field), commit)

    def title_buffer(self) -> EditBuffer[str] | None:
        prompt = self.store.selected
        if prompt is None:
            return None
        prompt_id = prompt.id
        return self._new_buffer(
            (prompt_id, prompt_id, "title"),
            prompt.title,
            lambda value: self.store.rename_prompt(prompt_id, value),
        )

    def flush_buffers(self) -> None:
        buffers, self._buffers = self._buffers, {}
        for buffer in buffers.values():
            buffer.close()

    def _canonical(self, key: BufferKey) -> str | None:
        prompt_id, entity_id, field = key
        prompt = self.store.get(prompt_id)
        if prompt is None:
            return None
        if field == "title":
            return prompt.title
        message = prompt.find_message(entity_id)
        return getattr(message, field) if message is not None else None

    def _reconcile_buffers(self) -> None:
        for key, buffer in list(self._buffers.items()):
            value = self._canonical(key)
            if value is None:
                # Entity is gone; nothing left to commit into.
                buffer.discard()
                buffer.close()
                del self._buffers[key]
                continue
            buffer.sync_external(value)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def run_session(self, prompt_id: str | None = None) -> RunSession | None:
        prompt_id = prompt_id or self.store.state.selected_id
        if prompt_id is None or self.store.get(prompt_id) is None:
            return None
        session = self._sessions.get(prompt_id)
        if session is not None:
            return session

        saved = read_json(self.gateway, run_messages_key(prompt_id)).unwrap_or([])
        transcript = []
        for item in saved if isinstance(saved, list) else []:
            if isinstance(item, dict):
                try:
                    transcript.append(RunEntry.model_validate(item))
                except ValidationError:
                    continue
        draft = self.gateway.get(chat_input_key(prompt_id)).unwrap_or("")

        session = RunSession(
            prompt_id, self.store, self.registry, self.completion,
            bus=self.bus, transcript=transcript, draft=draft,
        )
        self._sessions[prompt_id] = session
        return session

    # ------------------------------------------------------------------
    # Sharing and export
    # ------------------------------------------------------------------

    async def share_prompt(self, prompt_id: str | None = None) -> ShareLink | None:
        self.flush_buffers()
        prompt = self.store.get(prompt_id) if prompt_id else self.store.selected
        if prompt is None:
            return None
        return await self.share.create_link(build_prompt_payload(prompt))

    async def share_run(self, prompt_id: str | None = None) -> ShareLink | None:
        session = self.run_session(prompt_id)
        if session is None:
            return None
        prompt = self.store.get(session.prompt_id)
        payload = build_run_payload(prompt.title, session.saved_transcript())
        return await self.share.create_link(payload)

    async def open_link(self, url: str) -> dict[str, Any] | None:
        """Preview object behind a share link. Never added to the store by itself."""
        return await self.share.resolve_link(url)

    def export_prompt(self, prompt_id: str | None = None) -> dict[str, Any] | None:
        self.flush_buffers()
        prompt = self.store.get(prompt_id) if prompt_id else self.store.selected
        if prompt is None:
            return None
        return export_prompt(prompt, self.registry)
