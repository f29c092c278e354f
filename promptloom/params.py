"""
Tool parameter schema <-> ParamField view.

A Tool stores its parameters as a JSON-schema string. The editor works on
a list of ParamFields derived from that string and writes the list back
through `serialize_params`. Only object schemas with top-level scalar
properties are produced here, and those round-trip losslessly.
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger

from promptloom.models import ParamField

EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}
PARAM_BASE_NAME = "param"


def load_schema(parameters: str | None) -> dict[str, Any]:
    """Parse a parameters string, treating anything invalid as the empty object schema."""
    if not parameters:
        return dict(EMPTY_SCHEMA, properties={})
    try:
        schema = json.loads(parameters)
    except (json.JSONDecodeError, TypeError) as e:
        logger.debug(f"[PARAMS] Invalid schema treated as empty: {e}")
        return dict(EMPTY_SCHEMA, properties={})
    if not isinstance(schema, dict):
        return dict(EMPTY_SCHEMA, properties={})
    return schema


def parse_params(parameters: str | None) -> list[ParamField]:
    schema = load_schema(parameters)
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return []
    required = schema.get("required")
    required_keys = set(required) if isinstance(required, list) else set()

    fields = []
    for key, definition in properties.items():
        definition = definition if isinstance(definition, dict) else {}
        fields.append(ParamField(
            key=key,
            type=definition.get("type") or "string",
            description=definition.get("description") or "",
            required=key in required_keys,
        ))
    return fields


def serialize_params(fields: list[ParamField]) -> str:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for f in fields:
        properties[f.key] = {"type": f.type, "description": f.description}
        if f.required:
            required.append(f.key)

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return json.dumps(schema, separators=(",", ":"), ensure_ascii=False)


def next_param_name(fields: list[ParamField]) -> str:
    """First free name in the sequence param, param1, param2, ..."""
    taken = {f.key for f in fields}
    name = PARAM_BASE_NAME
    counter = 1
    while name in taken:
        name = f"{PARAM_BASE_NAME}{counter}"
        counter += 1
    return name
