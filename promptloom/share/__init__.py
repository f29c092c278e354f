"""
PROMPTLOOM Share — portable links for prompts and run transcripts.

  codec   token encode/decode, payload builders, link parsing
  links   backend upload/fetch, shorteners, ShareService
"""

from promptloom.share.codec import (
    ShareLinkRef,
    build_prompt_payload,
    build_run_payload,
    decode,
    encode,
    is_share_object,
    parse_link,
    strip_share_params,
)
from promptloom.share.links import ShareLink, ShareService

__all__ = [
    "ShareLink",
    "ShareLinkRef",
    "ShareService",
    "build_prompt_payload",
    "build_run_payload",
    "decode",
    "encode",
    "is_share_object",
    "parse_link",
    "strip_share_params",
]
