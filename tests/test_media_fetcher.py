from __future__ import annotations

import asyncio
import base64
import socket
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from buddy_bot.services.media import (  # noqa: E402
    MediaFetcher,
    PublicOnlyResolver,
    is_private_address,
    is_safe_https_url,
    parse_giphy_id,
    resolve_direct_media_url,
)


def _resolver(answers: dict[str, list[str]]):
    async def resolve(host: str) -> list[str]:
        if host not in answers:
            raise OSError("no such host")
        return answers[host]

    return resolve


class _FakeContent:
    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = chunks
        self.consumed = 0

    async def iter_chunked(self, size: int):
        for chunk in self._chunks:
            self.consumed += 1
            yield chunk


class _FakeResponse:
    def __init__(self, status: int = 200, headers: dict[str, str] | None = None, chunks: list[bytes] | None = None):
        self.status = status
        self.headers = headers or {}
        self.content = _FakeContent(chunks or [])
        self.released = False

    def release(self) -> None:
        self.released = True


class _FakeSession:
    closed = False

    def __init__(self, responses: dict[str, _FakeResponse]) -> None:
        self.responses = responses
        self.requested: list[str] = []

    async def get(self, url: str, *, allow_redirects: bool = True) -> _FakeResponse:
        assert allow_redirects is False
        self.requested.append(url)
        return self.responses[url]


def _fetcher(session: _FakeSession, **kwargs) -> MediaFetcher:
    fetcher = MediaFetcher(
        resolver=_resolver({"cdn.example.com": ["93.184.216.34"], "evil.example.com": ["10.0.0.5"]}),
        **kwargs,
    )
    fetcher._session = session  # type: ignore[assignment]
    return fetcher


def test_private_address_detection_covers_mapped_and_link_local() -> None:
    assert is_private_address("10.0.0.1") is True
    assert is_private_address("127.0.0.1") is True
    assert is_private_address("169.254.169.254") is True
    assert is_private_address("::ffff:192.168.1.10") is True
    assert is_private_address("fe80::1%eth0") is True
    assert is_private_address("not-an-ip") is True
    assert is_private_address("8.8.8.8") is False


def test_is_safe_https_url_rejects_private_targets() -> None:
    resolver = _resolver({"cdn.example.com": ["93.184.216.34"], "evil.example.com": ["93.184.216.34", "10.0.0.5"]})

    async def scenario() -> None:
        assert await is_safe_https_url("https://cdn.example.com/a.png", resolver=resolver) is True
        assert await is_safe_https_url("http://cdn.example.com/a.png", resolver=resolver) is False
        assert await is_safe_https_url("https://evil.example.com/a.png", resolver=resolver) is False
        assert await is_safe_https_url("https://localhost/a.png", resolver=resolver) is False
        assert await is_safe_https_url("https://[::ffff:10.0.0.1]/a.png", resolver=resolver) is False
        assert await is_safe_https_url("https://missing.example.com/a.png", resolver=resolver) is False

    asyncio.run(scenario())


def test_giphy_and_direct_media_resolution() -> None:
    assert parse_giphy_id("https://giphy.com/gifs/funny-cat-abc123XYZ") == "abc123XYZ"
    assert parse_giphy_id("https://media.giphy.com/media/abc123/giphy.gif") == "abc123"
    assert parse_giphy_id("https://example.com/gifs/abc") is None

    assert resolve_direct_media_url("https://cdn.example.com/pic.JPG?size=2") == "https://cdn.example.com/pic.JPG?size=2"
    assert resolve_direct_media_url("https://giphy.com/gifs/dance-xyz9") == "https://media.giphy.com/media/xyz9/giphy.gif"
    assert resolve_direct_media_url("https://example.com/page") is None


def test_fetch_image_returns_data_url() -> None:
    response = _FakeResponse(headers={"Content-Type": "image/png; charset=binary"}, chunks=[b"\x89PNG", b"data"])
    session = _FakeSession({"https://cdn.example.com/a.png": response})
    fetcher = _fetcher(session)

    result = asyncio.run(fetcher.fetch_image_as_data_url("https://cdn.example.com/a.png"))

    assert result == "data:image/png;base64," + base64.b64encode(b"\x89PNGdata").decode("ascii")
    assert response.released is True


def test_fetch_image_aborts_mid_stream_when_oversized() -> None:
    response = _FakeResponse(headers={"Content-Type": "image/jpeg"}, chunks=[b"a" * 600, b"b" * 600, b"c" * 600])
    session = _FakeSession({"https://cdn.example.com/big.jpg": response})
    fetcher = _fetcher(session, max_image_bytes=1000)

    assert asyncio.run(fetcher.fetch_image_as_data_url("https://cdn.example.com/big.jpg")) is None
    assert response.content.consumed == 2


def test_fetch_image_rejects_declared_size_and_wrong_mime() -> None:
    big = _FakeResponse(headers={"Content-Type": "image/png", "Content-Length": "5000"}, chunks=[b"x"])
    html = _FakeResponse(headers={"Content-Type": "text/html"}, chunks=[b"<html>"])
    session = _FakeSession({"https://cdn.example.com/big.png": big, "https://cdn.example.com/page.png": html})
    fetcher = _fetcher(session, max_image_bytes=1000)

    async def scenario() -> None:
        assert await fetcher.fetch_image_as_data_url("https://cdn.example.com/big.png") is None
        assert await fetcher.fetch_image_as_data_url("https://cdn.example.com/page.png") is None

    asyncio.run(scenario())
    assert big.content.consumed == 0


def test_fetch_image_revalidates_redirect_targets() -> None:
    redirect = _FakeResponse(status=302, headers={"Location": "https://evil.example.com/inner.png"})
    session = _FakeSession({"https://cdn.example.com/r.png": redirect})
    fetcher = _fetcher(session)

    assert asyncio.run(fetcher.fetch_image_as_data_url("https://cdn.example.com/r.png")) is None
    assert session.requested == ["https://cdn.example.com/r.png"]
    assert redirect.released is True


def test_fetch_image_refuses_non_https_without_request() -> None:
    session = _FakeSession({})
    fetcher = _fetcher(session)

    assert asyncio.run(fetcher.fetch_image_as_data_url("http://cdn.example.com/a.png")) is None
    assert session.requested == []


def test_connect_resolver_only_yields_public_addresses() -> None:
    answers = {
        "mixed.example.com": ["127.0.0.1", "93.184.216.34", "10.0.0.5"],
        "evil.example.com": ["10.0.0.5"],
    }
    resolver = PublicOnlyResolver(_resolver(answers))

    async def scenario():
        public = await resolver.resolve("mixed.example.com", 443, 0)
        with pytest.raises(OSError):
            await resolver.resolve("evil.example.com", 443, 0)
        with pytest.raises(OSError):
            await resolver.resolve("mixed.example.com", 443, socket.AF_INET6)
        return public

    public = asyncio.run(scenario())

    assert [entry["host"] for entry in public] == ["93.184.216.34"]
    assert public[0]["port"] == 443
    assert public[0]["family"] == socket.AF_INET
    assert public[0]["hostname"] == "mixed.example.com"


def test_session_connects_through_public_only_resolver() -> None:
    fetcher = MediaFetcher(resolver=_resolver({"cdn.example.com": ["93.184.216.34"]}))

    async def scenario() -> object:
        await fetcher.start()
        try:
            assert fetcher._session is not None
            return fetcher._session.connector._resolver  # type: ignore[union-attr]
        finally:
            await fetcher.close()

    assert isinstance(asyncio.run(scenario()), PublicOnlyResolver)
