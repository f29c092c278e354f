"""
PROMPTLOOM Persistence Gateway

String key/value storage behind a three-call interface. Gateways never
raise: every call returns a Result, and an absent key is `Result.ok(None)`
so callers can tell it apart from a failed or corrupt read.

Two implementations:
  - MemoryGateway: in-process dict, with failure injection for tests
  - FileGateway:   one JSON object on disk, replaced atomically per write
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from promptloom.errors import Result, StorageError


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

PROMPTS_KEY = "prompts"
SELECTED_KEY = "selected_prompt_id"


def run_messages_key(prompt_id: str) -> str:
    return f"run_messages_{prompt_id}"


def chat_input_key(prompt_id: str) -> str:
    return f"chat_input_{prompt_id}"


def tools_panel_key(prompt_id: str) -> str:
    return f"tools_panel_open_{prompt_id}"


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class PersistenceGateway(Protocol):
    def get(self, key: str) -> Result[str]: ...

    def set(self, key: str, value: str) -> Result[None]: ...

    def remove(self, key: str) -> Result[None]: ...


def read_json(gateway: PersistenceGateway, key: str) -> Result[Any]:
    """
    Read and parse a JSON value.

    ok(None) when the key is absent, err(StorageError) when the gateway
    failed or the stored text is not JSON.
    """
    raw = gateway.get(key)
    if raw.is_err:
        return raw
    if raw.value is None:
        return Result.ok(None)
    try:
        return Result.ok(json.loads(raw.value))
    except (json.JSONDecodeError, TypeError) as e:
        logger.debug(f"[GATEWAY] Malformed JSON under {key!r}: {e}")
        return Result.err(StorageError(f"Malformed JSON under {key!r}: {e}"))


def write_json(gateway: PersistenceGateway, key: str, value: Any) -> Result[None]:
    try:
        text = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        return Result.err(StorageError(f"Unserializable value for {key!r}: {e}"))
    return gateway.set(key, text)


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------

class MemoryGateway:
    """In-memory gateway. `fail_reads` / `fail_writes` simulate a broken backend."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})
        self.fail_reads = False
        self.fail_writes = False

    def get(self, key: str) -> Result[str]:
        if self.fail_reads:
            return Result.err(StorageError(f"read failed: {key}"))
        return Result.ok(self.data.get(key))

    def set(self, key: str, value: str) -> Result[None]:
        if self.fail_writes:
            return Result.err(StorageError(f"write failed: {key}"))
        self.data[key] = value
        return Result.ok()

    def remove(self, key: str) -> Result[None]:
        if self.fail_writes:
            return Result.err(StorageError(f"remove failed: {key}"))
        self.data.pop(key, None)
        return Result.ok()


class FileGateway:
    """
    Gateway backed by a single JSON object file.

    The file is re-read on every call so two processes sharing a home
    directory see each other's writes; the most recent write wins.
    """

    def __init__(self, path: Path):
        self.path = path

    def get(self, key: str) -> Result[str]:
        loaded = self._load()
        if loaded.is_err:
            return loaded
        value = loaded.value.get(key)
        if value is not None and not isinstance(value, str):
            return Result.err(StorageError(f"Non-string value under {key!r}"))
        return Result.ok(value)

    def set(self, key: str, value: str) -> Result[None]:
        loaded = self._load()
        data = loaded.value if loaded.is_ok else {}
        data[key] = value
        return self._save(data)

    def remove(self, key: str) -> Result[None]:
        loaded = self._load()
        if loaded.is_err:
            return Result.ok()
        data = loaded.value
        if key not in data:
            return Result.ok()
        del data[key]
        return self._save(data)

    def _load(self) -> Result[dict[str, Any]]:
        if not self.path.exists():
            return Result.ok({})
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[GATEWAY] Could not read {self.path}: {e}")
            return Result.err(StorageError(str(e)))
        if not isinstance(data, dict):
            return Result.err(StorageError(f"{self.path} does not hold a JSON object"))
        return Result.ok(data)

    def _save(self, data: dict[str, Any]) -> Result[None]:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            logger.warning(f"[GATEWAY] Could not write {self.path}: {e}")
            return Result.err(StorageError(str(e)))
        return Result.ok()
