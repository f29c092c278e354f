"""
PROMPTLOOM Share Codec

Turns a share payload into a URL-safe token and back.

Formats:
  current  LZ-String `compressToEncodedURIComponent` of compact JSON
  legacy   standard base64 of UTF-8 JSON (links made by older builds)

Decoding tries the current format first and falls back to legacy. JSON
is written ASCII-only, so every character survives LZ-String's 16-bit
code units identically in this codec and in browser builds.

Links carry either `#share=<token>` or `#id=<opaque-id>`; the fragment
is consulted before the query string.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urldefrag, urlencode, urlparse, urlunparse

from loguru import logger
from lzstring import LZString

from promptloom.errors import CodecError, Result
from promptloom.models import Prompt

SHARE_PARAM = "share"
ID_PARAM = "id"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def build_prompt_payload(prompt: Prompt) -> dict[str, Any]:
    """Snapshot of a Prompt for sharing. Disabled messages and tools are left out."""
    return {
        "kind": "prompt",
        "title": prompt.title,
        "messages": [m.model_dump() for m in prompt.messages if m.enabled],
        "tools": [t.model_dump() for t in prompt.tools if t.enabled],
    }


def build_run_payload(title: str, transcript: list[dict[str, Any]]) -> dict[str, Any]:
    return {"kind": "run", "title": title, "run": {"transcript": list(transcript)}}


def is_share_object(obj: Any) -> bool:
    if not isinstance(obj, dict):
        return False
    if isinstance(obj.get("messages"), list):
        return True
    run = obj.get("run")
    return obj.get("kind") == "run" and isinstance(run, dict) and isinstance(run.get("transcript"), list)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

def _to_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True)


def encode_legacy(payload: Any) -> str:
    return base64.b64encode(_to_json(payload).encode("utf-8")).decode("ascii")


def encode(payload: Any) -> str:
    text = _to_json(payload)
    compressed = LZString.compressToEncodedURIComponent(text)
    if compressed:
        return compressed
    return encode_legacy(payload)


def decode_lz(token: str) -> Result[Any]:
    try:
        text = LZString.decompressFromEncodedURIComponent(token)
    except Exception as e:
        # The decoder indexes past the end or hits foreign characters on non-LZ input.
        return Result.err(CodecError(f"not an LZ token: {e!r}"))
    if not text or not isinstance(text, str):
        return Result.err(CodecError("empty LZ payload"))
    try:
        return Result.ok(json.loads(text))
    except json.JSONDecodeError as e:
        return Result.err(CodecError(f"LZ payload is not JSON: {e}"))


def decode_legacy(token: str) -> Result[Any]:
    # Form-decoding turns '+' into ' '; put it back before base64.
    cleaned = token.strip().replace(" ", "+")
    try:
        raw = base64.b64decode(cleaned, validate=True)
        return Result.ok(json.loads(raw.decode("utf-8")))
    except (binascii.Error, ValueError) as e:
        return Result.err(CodecError(f"not a legacy token: {e}"))


def decode(token: str | None) -> Result[Any]:
    """Current format first, legacy second. err(CodecError) when neither applies."""
    if not token:
        return Result.err(CodecError("empty token"))
    current = decode_lz(token)
    if current.is_ok:
        return current
    legacy = decode_legacy(token)
    if legacy.is_ok:
        return legacy
    logger.debug(f"[SHARE] Undecodable token ({current.error}; {legacy.error})")
    return Result.err(CodecError("token matches no known format"))


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ShareLinkRef:
    opaque_id: str | None = None
    token: str | None = None

    @property
    def empty(self) -> bool:
        return not self.opaque_id and not self.token


def parse_link(url: str) -> ShareLinkRef:
    parsed = urlparse(url)
    fragment = dict(parse_qsl(parsed.fragment))
    query = dict(parse_qsl(parsed.query))

    def pick(key: str) -> str | None:
        return fragment.get(key) or query.get(key) or None

    return ShareLinkRef(opaque_id=pick(ID_PARAM), token=pick(SHARE_PARAM))


def _with_fragment(app_url: str, params: dict[str, str]) -> str:
    base, _ = urldefrag(app_url)
    return f"{base}#{urlencode(params)}"


def link_for_token(app_url: str, token: str) -> str:
    return _with_fragment(app_url, {SHARE_PARAM: token})


def link_for_id(app_url: str, opaque_id: str) -> str:
    return _with_fragment(app_url, {ID_PARAM: opaque_id})


def strip_share_params(url: str) -> str:
    """Remove `share`/`id` from both the query string and the fragment."""
    parsed = urlparse(url)
    dropped = (SHARE_PARAM, ID_PARAM)
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in dropped]
    fragment = [(k, v) for k, v in parse_qsl(parsed.fragment, keep_blank_values=True) if k not in dropped]
    return urlunparse(parsed._replace(query=urlencode(query), fragment=urlencode(fragment)))
