"""
PROMPTLOOM Share Links — creation and resolution strategies

Creating a link walks a fixed resolution order:
  1. remote backend configured -> POST /share, else PUT /share/<uuid>,
     and embed `#id=<id>`
  2. otherwise embed a local `#share=<token>`
  3. no backend id -> offer the URL to the shorteners in order
     (keyed Shlink REST first, plain GET-text second); the first one that
     answers with an absolute http(s) URL wins

Any network failure just moves on to the next strategy. The local token
always works, so `create_link` always returns a URL.

Resolving a link is the mirror image: `#id` through the backend when one
is configured, then `#share` through the codec, else nothing.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol
from urllib.parse import quote, urlparse

import httpx
from loguru import logger

from promptloom.config_loader import ShareConfig
from promptloom.errors import ShareError
from promptloom.share import codec


def is_http_url(text: Any) -> bool:
    if not isinstance(text, str):
        return False
    parsed = urlparse(text.strip())
    return parsed.scheme.lower() in ("http", "https") and bool(parsed.netloc)


# ---------------------------------------------------------------------------
# Remote backend
# ---------------------------------------------------------------------------

_PAYLOAD_KEYS = ("kind", "messages", "run", "tools")
_ID_KEYS = ("id", "uuid", "key")


class ShareBackend:
    """Client for the optional share service at `<base>/share`."""

    def __init__(self, base: str, client: httpx.AsyncClient):
        self.base = base.rstrip("/")
        self.client = client

    async def fetch(self, opaque_id: str) -> dict[str, Any]:
        url = f"{self.base}/share/{quote(opaque_id, safe='')}"
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise ShareError(f"fetch {opaque_id} failed: {e}") from e
        if not response.is_success:
            raise ShareError(f"fetch {opaque_id}: HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            raise ShareError(f"fetch {opaque_id}: body is not JSON") from e

        # Either the payload itself or {data: payload}
        if isinstance(body, dict) and any(body.get(k) for k in _PAYLOAD_KEYS):
            return body
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            return body["data"]
        raise ShareError(f"fetch {opaque_id}: unrecognised body")

    async def upload(self, payload: dict[str, Any]) -> str:
        try:
            response = await self.client.post(f"{self.base}/share", json=payload)
            if response.is_success:
                body = response.json()
                if isinstance(body, dict):
                    for key in _ID_KEYS:
                        value = body.get(key)
                        if isinstance(value, str) and value:
                            return value
            logger.debug(f"[SHARE] POST /share gave no id (HTTP {response.status_code}), trying PUT")
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"[SHARE] POST /share failed: {e}")

        opaque_id = str(uuid.uuid4())
        try:
            response = await self.client.put(f"{self.base}/share/{quote(opaque_id, safe='')}", json=payload)
        except httpx.HTTPError as e:
            raise ShareError(f"upload failed: {e}") from e
        if not response.is_success:
            raise ShareError(f"upload failed: HTTP {response.status_code}")
        return opaque_id


# ---------------------------------------------------------------------------
# Shorteners
# ---------------------------------------------------------------------------

class Shortener(Protocol):
    name: str

    async def shorten(self, long_url: str) -> str | None: ...


class ShlinkShortener:
    """Keyed REST shortener (Shlink v3 API)."""

    name = "shlink"

    def __init__(self, base: str, api_key: str, client: httpx.AsyncClient, domain: str = ""):
        self.base = base.rstrip("/")
        self.api_key = api_key
        self.domain = domain
        self.client = client

    async def shorten(self, long_url: str) -> str | None:
        body: dict[str, Any] = {"longUrl": long_url, "findIfExists": True}
        if self.domain:
            body["domain"] = self.domain
        try:
            response = await self.client.post(
                f"{self.base}/rest/v3/short-urls",
                json=body,
                headers={"X-Api-Key": self.api_key},
            )
            if not response.is_success:
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ShareError(f"shlink failed: {e}") from e
        return self._extract(data)

    def _extract(self, data: Any) -> str | None:
        if is_http_url(data):
            return data.strip()
        if not isinstance(data, dict):
            return None
        short = data.get("shortUrl")
        if is_http_url(short):
            return short.strip()
        if isinstance(short, dict) and is_http_url(short.get("shortUrl")):
            return short["shortUrl"].strip()
        code = data.get("shortCode")
        if code:
            host = self.domain or urlparse(self.base).netloc
            if host:
                return f"https://{host}/{code}"
        return None


class PlainTextShortener:
    """`GET <base>?url=<long url>` answering with the short URL as plain text."""

    name = "plain"

    def __init__(self, base: str, client: httpx.AsyncClient):
        self.base = base.rstrip("/")
        self.client = client

    async def shorten(self, long_url: str) -> str | None:
        try:
            response = await self.client.get(self.base, params={"url": long_url})
        except httpx.HTTPError as e:
            raise ShareError(f"shortener failed: {e}") from e
        if not response.is_success:
            return None
        text = response.text.strip()
        return text if is_http_url(text) else None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ShareLink:
    url: str
    opaque_id: str | None = None
    shortened_by: str | None = None


class ShareService:
    def __init__(self, config: ShareConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            yield client

    def _backend(self, client: httpx.AsyncClient) -> ShareBackend | None:
        if not self.config.backend_base:
            return None
        return ShareBackend(self.config.backend_base, client)

    def shorteners(self, client: httpx.AsyncClient) -> list[Shortener]:
        chain: list[Shortener] = []
        if self.config.shlink_base and self.config.shlink_api_key:
            chain.append(ShlinkShortener(
                self.config.shlink_base, self.config.shlink_api_key, client, self.config.shlink_domain
            ))
        if self.config.shortener_base:
            chain.append(PlainTextShortener(self.config.shortener_base, client))
        return chain

    async def create_link(self, payload: dict[str, Any]) -> ShareLink:
        async with self._session() as client:
            backend = self._backend(client)
            if backend is not None:
                try:
                    opaque_id = await backend.upload(payload)
                    logger.info(f"[SHARE] Uploaded share {opaque_id}")
                    return ShareLink(url=codec.link_for_id(self.config.app_url, opaque_id), opaque_id=opaque_id)
                except ShareError as e:
                    logger.warning(f"[SHARE] Backend upload failed, embedding token instead: {e}")

            url = codec.link_for_token(self.config.app_url, codec.encode(payload))

            for shortener in self.shorteners(client):
                try:
                    short = await shortener.shorten(url)
                except ShareError as e:
                    logger.debug(f"[SHORTEN] {shortener.name}: {e}")
                    continue
                if short:
                    logger.info(f"[SHORTEN] {shortener.name} -> {short}")
                    return ShareLink(url=short, shortened_by=shortener.name)

            return ShareLink(url=url)

    async def resolve_link(self, url: str) -> dict[str, Any] | None:
        """The share object a link points at, or None when nothing valid is there."""
        ref = codec.parse_link(url)
        if ref.empty:
            return None

        if ref.opaque_id:
            async with self._session() as client:
                backend = self._backend(client)
                if backend is not None:
                    try:
                        fetched = await backend.fetch(ref.opaque_id)
                        if codec.is_share_object(fetched):
                            return fetched
                    except ShareError as e:
                        logger.warning(f"[SHARE] Could not fetch {ref.opaque_id}: {e}")

        if not ref.token:
            return None
        decoded = codec.decode(ref.token)
        if decoded.is_ok and codec.is_share_object(decoded.value):
            return decoded.value
        return None
