"""
PROMPTLOOM Document Models

Prompts, Messages and Tools are frozen pydantic models. Nothing in the
project mutates them in place: every change goes through
`model_copy(update=...)` with freshly built lists, so a snapshot held by
a caller stays valid after the store moves on.

Validators are forgiving. Documents arrive from storage,
share links and export files written by older versions, and a missing
or odd field should fall back to its default instead of failing the load.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["system", "user", "assistant", "comment"]
ParamType = Literal["string", "number", "integer", "boolean"]

ROLES: tuple[str, ...] = ("system", "user", "assistant", "comment")
PARAM_TYPES: tuple[str, ...] = ("string", "number", "integer", "boolean")

DEFAULT_PARAMETERS = '{"type":"object","properties":{}}'
DEFAULT_TOOL_NAME = "toolName"
DEFAULT_PROMPT_TITLE = "New Prompt"
IMPORTED_PROMPT_TITLE = "Imported Prompt"


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

def _role(v: Any) -> str:
    return v if v in ROLES else "user"


def _text(v: Any) -> str:
    return v if isinstance(v, str) else ""


def _enabled(v: Any) -> bool:
    # Only an explicit False disables an entry.
    return v is not False


def _dict_items(v: Any) -> list:
    if not isinstance(v, list):
        return []
    return [item for item in v if isinstance(item, (dict, BaseModel))]


# ---------------------------------------------------------------------------
# Document entities
# ---------------------------------------------------------------------------

class Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=new_id)
    role: Role = "user"
    content: str = ""
    enabled: bool = True
    label: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, v: Any) -> str:
        return _role(v)

    @field_validator("content", "label", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return _text(v)

    @field_validator("enabled", mode="before")
    @classmethod
    def _coerce_enabled(cls, v: Any) -> bool:
        return _enabled(v)


class Tool(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = DEFAULT_TOOL_NAME
    description: str = ""
    parameters: str = DEFAULT_PARAMETERS
    enabled: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, v: Any) -> str:
        return v if isinstance(v, str) and v else DEFAULT_TOOL_NAME

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, v: Any) -> str:
        return _text(v)

    @field_validator("parameters", mode="before")
    @classmethod
    def _coerce_parameters(cls, v: Any) -> str:
        if isinstance(v, str):
            return v
        if isinstance(v, dict):
            return json.dumps(v, separators=(",", ":"))
        return DEFAULT_PARAMETERS

    @field_validator("enabled", mode="before")
    @classmethod
    def _coerce_enabled(cls, v: Any) -> bool:
        return _enabled(v)


class ParamField(BaseModel):
    """One top-level property of a Tool's parameter schema."""
    model_config = ConfigDict(frozen=True)

    key: str
    type: ParamType = "string"
    description: str = ""
    required: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, v: Any) -> str:
        return v if v in PARAM_TYPES else "string"

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, v: Any) -> str:
        return _text(v)


class Prompt(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=new_id)
    title: str = DEFAULT_PROMPT_TITLE
    messages: list[Message] = Field(default_factory=list)
    tools: list[Tool] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, v: Any) -> str:
        return v if isinstance(v, str) else DEFAULT_PROMPT_TITLE

    @field_validator("messages", "tools", mode="before")
    @classmethod
    def _coerce_list(cls, v: Any) -> list:
        return _dict_items(v)

    def message_ids(self) -> list[str]:
        return [m.id for m in self.messages]

    def find_message(self, message_id: str) -> Message | None:
        return next((m for m in self.messages if m.id == message_id), None)


class WorkspaceState(BaseModel):
    """The Document Store's canonical snapshot: ordered prompts plus the selection."""
    model_config = ConfigDict(frozen=True)

    prompts: list[Prompt] = Field(default_factory=list)
    selected_id: str | None = None

    @property
    def selected(self) -> Prompt | None:
        if self.selected_id is None:
            return None
        return self.find(self.selected_id)

    def find(self, prompt_id: str) -> Prompt | None:
        return next((p for p in self.prompts if p.id == prompt_id), None)

    def index_of(self, prompt_id: str) -> int:
        for i, p in enumerate(self.prompts):
            if p.id == prompt_id:
                return i
        return -1


# ---------------------------------------------------------------------------
# Export file schema
# ---------------------------------------------------------------------------

class ExportMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Role = "user"
    content: str = ""
    enabled: bool = True
    preview: bool = False
    collapsed: bool = False
    label: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, v: Any) -> str:
        return _role(v)

    @field_validator("content", "label", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return _text(v)

    @field_validator("enabled", mode="before")
    @classmethod
    def _coerce_enabled(cls, v: Any) -> bool:
        return _enabled(v)

    @field_validator("preview", "collapsed", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return bool(v)


class ExportDocument(BaseModel):
    """
    The JSON file written by Export and read by Import.

    The plainer shape without `version`, `preview` or `collapsed` is
    accepted too; every missing field takes its default.
    """
    model_config = ConfigDict(extra="ignore")

    kind: str = "prompt"
    version: int = 2
    title: str = IMPORTED_PROMPT_TITLE
    messages: list[ExportMessage] = Field(default_factory=list)
    tools: list[Tool] = Field(default_factory=list)
    toolsPanelOpen: bool | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, v: Any) -> str:
        return v if isinstance(v, str) else "prompt"

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, v: Any) -> int:
        return v if isinstance(v, int) and not isinstance(v, bool) else 2

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return IMPORTED_PROMPT_TITLE

    @field_validator("messages", "tools", mode="before")
    @classmethod
    def _coerce_list(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [item if isinstance(item, dict) else {} for item in v]

    @field_validator("toolsPanelOpen", mode="before")
    @classmethod
    def _coerce_panel(cls, v: Any) -> bool | None:
        return v if isinstance(v, bool) else None
