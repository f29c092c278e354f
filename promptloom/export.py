"""
Export / Import of a single Prompt as a JSON file.

The export carries the Prompt plus its cosmetic state (per-message
preview/collapsed flags and the tools panel flag) so an import looks
exactly like the original.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from promptloom.errors import Result, StorageError
from promptloom.models import Prompt
from promptloom.registry import AuxiliaryStateRegistry, Concern

EXPORT_VERSION = 2


def export_prompt(prompt: Prompt, registry: AuxiliaryStateRegistry) -> dict[str, Any]:
    preview = registry.get(Concern.PREVIEW, prompt.id)
    collapsed = registry.get(Concern.COLLAPSED, prompt.id)
    return {
        "kind": "prompt",
        "version": EXPORT_VERSION,
        "title": prompt.title or "Untitled",
        "messages": [
            {
                "role": m.role,
                "content": m.content,
                "enabled": m.enabled,
                "preview": bool(preview.get(m.id)),
                "collapsed": bool(collapsed.get(m.id)),
                "label": m.label,
            }
            for m in prompt.messages
        ],
        "tools": [t.model_dump() for t in prompt.tools],
        "toolsPanelOpen": registry.panel_open(prompt.id),
    }


def export_filename(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (title or "prompt").lower()).strip("-")
    return f"{slug or 'prompt'}.json"


def write_export(path: Path, document: dict[str, Any]) -> Path:
    path.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info(f"[EXPORT] Wrote {path}")
    return path


def read_export(path: Path) -> Result[Any]:
    try:
        return Result.ok(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        return Result.err(StorageError(f"Cannot import {path}: {e}"))
