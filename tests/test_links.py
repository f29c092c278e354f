import asyncio
import json
from urllib.parse import urlencode

import httpx

from promptloom.config_loader import ShareConfig
from promptloom.share.codec import encode, link_for_id, link_for_token
from promptloom.share.links import ShareService, ShlinkShortener, is_http_url

APP_URL = "http://localhost:5173/"
PAYLOAD = {"kind": "prompt", "title": "T", "messages": [{"role": "user", "content": "hi"}], "tools": []}


def _service(handler, **share) -> tuple[ShareService, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return ShareService(ShareConfig(app_url=APP_URL, **share), client=client), requests


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("unreachable", request=request)


def test_is_http_url():
    assert is_http_url("https://s.example/abc")
    assert is_http_url(" http://s.example ")
    assert not is_http_url("ftp://s.example/abc")
    assert not is_http_url("s.example/abc")
    assert not is_http_url(None)


def test_backend_post_id_becomes_link():
    def handler(request):
        assert request.method == "POST"
        assert str(request.url) == "https://api.example/share"
        assert json.loads(request.content) == PAYLOAD
        return httpx.Response(200, json={"id": "abc"})

    service, _ = _service(handler, backend_base="https://api.example/")
    link = asyncio.run(service.create_link(PAYLOAD))

    assert link.opaque_id == "abc"
    assert link.url == link_for_id(APP_URL, "abc")


def test_backend_falls_back_to_put():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(404)
        assert request.url.path.startswith("/share/")
        return httpx.Response(204)

    service, requests = _service(handler, backend_base="https://api.example")
    link = asyncio.run(service.create_link(PAYLOAD))

    opaque_id = requests[-1].url.path.rsplit("/", 1)[-1]
    assert link.opaque_id == opaque_id
    assert link.url.endswith(f"#id={opaque_id}")


def test_backend_failure_embeds_token():
    service, _ = _service(_unreachable, backend_base="https://api.example")
    link = asyncio.run(service.create_link(PAYLOAD))

    assert link.opaque_id is None
    assert link.shortened_by is None
    assert link.url == link_for_token(APP_URL, encode(PAYLOAD))


def test_shlink_shortens_token_link():
    def handler(request):
        assert request.url.path == "/rest/v3/short-urls"
        assert request.headers["X-Api-Key"] == "secret"
        body = json.loads(request.content)
        assert body["longUrl"].startswith(APP_URL + "#share=")
        return httpx.Response(200, json={"shortUrl": "https://sho.rt/abc"})

    service, _ = _service(handler, shlink_base="https://sho.rt", shlink_api_key="secret")
    link = asyncio.run(service.create_link(PAYLOAD))

    assert link.url == "https://sho.rt/abc"
    assert link.shortened_by == "shlink"


def test_plain_shortener_after_shlink_failure():
    def handler(request):
        if request.url.host == "sho.rt":
            return httpx.Response(500)
        assert request.url.params["url"].startswith(APP_URL)
        return httpx.Response(200, text="https://tiny.example/x\n")

    service, requests = _service(
        handler,
        shlink_base="https://sho.rt",
        shlink_api_key="secret",
        shortener_base="https://tiny.example/api",
    )
    link = asyncio.run(service.create_link(PAYLOAD))

    assert [r.url.host for r in requests] == ["sho.rt", "tiny.example"]
    assert link.url == "https://tiny.example/x"
    assert link.shortened_by == "plain"


def test_shortener_without_url_keeps_long_link():
    service, _ = _service(
        lambda request: httpx.Response(200, text="Error: rate limited"),
        shortener_base="https://tiny.example/api",
    )
    link = asyncio.run(service.create_link(PAYLOAD))
    assert link.url == link_for_token(APP_URL, encode(PAYLOAD))


def test_shlink_response_shapes():
    shortener = ShlinkShortener("https://sho.rt", "k", client=None)
    assert shortener._extract("https://sho.rt/a") == "https://sho.rt/a"
    assert shortener._extract({"shortUrl": {"shortUrl": "https://sho.rt/b"}}) == "https://sho.rt/b"
    assert shortener._extract({"shortCode": "c"}) == "https://sho.rt/c"
    assert shortener._extract({"shortUrl": "not a url"}) is None

    with_domain = ShlinkShortener("https://sho.rt", "k", client=None, domain="go.example")
    assert with_domain._extract({"shortCode": "d"}) == "https://go.example/d"


def test_resolve_id_through_backend():
    def handler(request):
        assert request.url.path == "/share/abc"
        return httpx.Response(200, json={"data": PAYLOAD})

    service, _ = _service(handler, backend_base="https://api.example")
    assert asyncio.run(service.resolve_link(APP_URL + "#id=abc")) == PAYLOAD


def test_resolve_token_without_network():
    service, requests = _service(_unreachable)
    url = link_for_token(APP_URL, encode(PAYLOAD))

    assert asyncio.run(service.resolve_link(url)) == PAYLOAD
    assert requests == []


def test_resolve_falls_back_to_token_when_fetch_fails():
    service, _ = _service(lambda request: httpx.Response(404), backend_base="https://api.example")
    url = f"{APP_URL}?{urlencode({'share': encode(PAYLOAD)})}#id=gone"
    assert asyncio.run(service.resolve_link(url)) == PAYLOAD


def test_resolve_nothing_valid():
    service, _ = _service(lambda request: httpx.Response(404), backend_base="https://api.example")
    assert asyncio.run(service.resolve_link(APP_URL + "#id=gone")) is None
    assert asyncio.run(service.resolve_link(APP_URL + "#share=not-a-token!")) is None
    assert asyncio.run(service.resolve_link(APP_URL)) is None


def test_own_client_timeout_follows_config():
    async def session_timeout(config: ShareConfig) -> httpx.Timeout:
        async with ShareService(config)._session() as client:
            return client.timeout

    assert asyncio.run(session_timeout(ShareConfig())) == httpx.Timeout(None)
    assert asyncio.run(session_timeout(ShareConfig(timeout_seconds=5))) == httpx.Timeout(5.0)
