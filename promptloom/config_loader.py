"""
Configuration loader for PROMPTLOOM.
Merges defaults with the user's <home>/config.yaml and PROMPTLOOM_* env vars.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

def _strip_slashes(v: Any) -> Any:
    return v.rstrip("/") if isinstance(v, str) else v


class ShareConfig(BaseModel):
    app_url: str = "http://localhost:5173/"
    backend_base: str = ""
    shlink_base: str = ""
    shlink_api_key: str = ""
    shlink_domain: str = ""
    shortener_base: str = ""
    timeout_seconds: float | None = None

    @field_validator("backend_base", "shlink_base", "shortener_base", mode="before")
    @classmethod
    def _no_trailing_slash(cls, v: Any) -> Any:
        return _strip_slashes(v)


class EditorConfig(BaseModel):
    debounce_ms: int = 300
    sync_on_blur: bool = True


class CompletionConfig(BaseModel):
    model: str = "gpt-4o-mini"
    temperature: float = 0.7


class StorageConfig(BaseModel):
    state_file: str = "state.json"


class PromptloomConfig(BaseModel):
    share: ShareConfig = Field(default_factory=ShareConfig)
    editor: EditorConfig = Field(default_factory=EditorConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"
DEFAULT_HOME = Path.home() / ".promptloom"

# env var -> (section, field)
_ENV_OVERRIDES = {
    "PROMPTLOOM_APP_URL": ("share", "app_url"),
    "PROMPTLOOM_SHARE_BASE_URL": ("share", "backend_base"),
    "PROMPTLOOM_SHLINK_BASE_URL": ("share", "shlink_base"),
    "PROMPTLOOM_SHLINK_API_KEY": ("share", "shlink_api_key"),
    "PROMPTLOOM_SHLINK_DOMAIN": ("share", "shlink_domain"),
    "PROMPTLOOM_SHORTENER_BASE": ("share", "shortener_base"),
    "PROMPTLOOM_MODEL": ("completion", "model"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(home: Path | None = None) -> PromptloomConfig:
    """
    Load config by merging:
      1. Built-in defaults (promptloom/config.yaml)
      2. User overrides (<home>/config.yaml)
      3. Environment variable overrides
    """
    # 1. Built-in defaults
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    # 2. User overrides
    user_config = (home or DEFAULT_HOME) / "config.yaml"
    if user_config.exists():
        with open(user_config, "r") as f:
            overrides: dict[str, Any] = yaml.safe_load(f) or {}
        base = _deep_merge(base, overrides)

    # 3. Env overrides
    env: dict[str, Any] = {}
    for var, (section, field) in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            env.setdefault(section, {})[field] = value
    base = _deep_merge(base, env)

    return PromptloomConfig(**base)


def validate_api_keys() -> dict[str, bool]:
    """Check which completion API keys are available (litellm reads them directly)."""
    return {
        "OPENAI_API_KEY":    bool(os.environ.get("OPENAI_API_KEY")),
        "ANTHROPIC_API_KEY": bool(os.environ.get("ANTHROPIC_API_KEY")),
        "GEMINI_API_KEY":    bool(os.environ.get("GEMINI_API_KEY")),
    }
