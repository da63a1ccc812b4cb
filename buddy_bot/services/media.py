from __future__ import annotations

import asyncio
import base64
import ipaddress
import logging
import re
import socket
from typing import Any, Awaitable, Callable
from urllib.parse import urljoin, urlsplit

import aiohttp
from aiohttp.abc import AbstractResolver

logger = logging.getLogger("buddy_bot.media")

IMAGE_EXT = re.compile(r"\.(png|jpe?g|webp|gif)(\?.*)?$", re.IGNORECASE)
VIDEO_EXT = re.compile(r"\.(mp4|mov|webm|mkv|m4v)(\?.*)?$", re.IGNORECASE)
IMAGE_MIME = frozenset({"image/png", "image/jpeg", "image/webp", "image/gif"})
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

Resolver = Callable[[str], Awaitable[list[str]]]


def is_private_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
        or not ip.is_global
    )


async def _system_resolve(host: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, 443, type=socket.SOCK_STREAM)
    return [str(info[4][0]) for info in infos]


async def is_safe_https_url(url: str, *, resolver: Resolver | None = None) -> bool:
    """True only for https URLs whose host (and every DNS answer for it) is publicly routable."""
    try:
        parsed = urlsplit(url)
        host = (parsed.hostname or "").strip().lower()
    except ValueError:
        return False
    if parsed.scheme.lower() != "https" or not host:
        return False
    if host == "localhost" or host.endswith(".localhost"):
        return False

    try:
        ipaddress.ip_address(host)
    except ValueError:
        pass
    else:
        return not is_private_address(host)

    try:
        addresses = await (resolver or _system_resolve)(host)
    except (OSError, UnicodeError) as exc:
        logger.debug("DNS lookup failed for %s: %s", host, exc)
        return False
    return bool(addresses) and not any(is_private_address(address) for address in addresses)


class PublicOnlyResolver(AbstractResolver):
    """Connect-time resolver for the media session; non-public answers never reach the connector."""

    def __init__(self, resolve: Resolver | None = None) -> None:
        self._resolve = resolve or _system_resolve

    async def resolve(self, host: str, port: int = 0, family: int = socket.AF_INET) -> list[dict[str, Any]]:
        addresses = await self._resolve(host)
        results: list[dict[str, Any]] = []
        for address in addresses:
            if is_private_address(address):
                logger.warning("Dropped non-public address %s for %s", address, host)
                continue
            address_family = socket.AF_INET6 if ":" in address else socket.AF_INET
            if family in (socket.AF_INET, socket.AF_INET6) and family != address_family:
                continue
            results.append(
                {
                    "hostname": host,
                    "host": address,
                    "port": port,
                    "family": address_family,
                    "proto": 0,
                    "flags": socket.AI_NUMERICHOST,
                }
            )
        if not results:
            raise OSError(f"No public address for {host}")
        return results

    async def close(self) -> None:
        return None


def parse_giphy_id(url: str) -> str | None:
    try:
        parsed = urlsplit(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host != "giphy.com" and not host.endswith(".giphy.com"):
        return None
    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) >= 2 and parts[0] == "media":
        return parts[1]
    if len(parts) >= 2 and parts[0] == "gifs":
        match = re.search(r"-?([A-Za-z0-9]+)$", parts[1])
        if match:
            return match.group(1)
    return None


def resolve_direct_media_url(url: str) -> str | None:
    if IMAGE_EXT.search(url):
        return url
    giphy_id = parse_giphy_id(url)
    if giphy_id:
        return f"https://media.giphy.com/media/{giphy_id}/giphy.gif"
    return None


class MediaFetcher:
    """Downloads remote images into base64 data URLs with SSRF and size guards."""

    def __init__(
        self,
        max_image_bytes: int = 5 * 1024 * 1024,
        timeout_seconds: float = 10.0,
        *,
        max_redirects: int = 3,
        resolver: Resolver | None = None,
        chunk_size: int = 64 * 1024,
    ) -> None:
        self.max_image_bytes = max(1, int(max_image_bytes))
        self.timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self.max_redirects = max(0, int(max_redirects))
        self.chunk_size = max(1024, int(chunk_size))
        self._resolver = resolver
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(resolver=PublicOnlyResolver(self._resolver))
            self._session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _open(self, url: str) -> aiohttp.ClientResponse | None:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        current = url
        for _ in range(self.max_redirects + 1):
            if not await is_safe_https_url(current, resolver=self._resolver):
                logger.warning("Rejected unsafe media URL: %s", current)
                return None
            response = await self._session.get(current, allow_redirects=False)
            if response.status not in REDIRECT_STATUSES:
                return response
            location = response.headers.get("Location")
            response.release()
            if not location:
                return None
            current = urljoin(current, location)
        logger.warning("Too many redirects while fetching media: %s", url)
        return None

    async def fetch_image_as_data_url(self, url: str) -> str | None:
        target = resolve_direct_media_url(url) or url
        try:
            response = await self._open(target)
            if response is None:
                return None
            try:
                return await self._read_image(response, target)
            finally:
                response.release()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Image fetch failed for %s: %s", target, exc)
            return None

    async def _read_image(self, response: aiohttp.ClientResponse, url: str) -> str | None:
        if response.status != 200:
            return None
        content_type = str(response.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()
        if content_type not in IMAGE_MIME:
            if url.lower().split("?", 1)[0].endswith(".gif") and not content_type:
                content_type = "image/gif"
            else:
                return None

        declared = str(response.headers.get("Content-Length") or "").strip()
        if declared.isdigit() and int(declared) > self.max_image_bytes:
            return None

        total = 0
        chunks: list[bytes] = []
        async for chunk in response.content.iter_chunked(self.chunk_size):
            total += len(chunk)
            if total > self.max_image_bytes:
                logger.warning("Image exceeded %s bytes mid-stream: %s", self.max_image_bytes, url)
                return None
            chunks.append(chunk)

        encoded = base64.b64encode(b"".join(chunks)).decode("ascii")
        return f"data:{content_type};base64,{encoded}"
