from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..services.media import IMAGE_EXT, VIDEO_EXT, resolve_direct_media_url

_URL_RE = re.compile(r"https://[^\s<>]+", re.IGNORECASE)


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    budget = limit - 3
    cut = text[:budget].rfind(" ")
    if cut >= int(budget * 0.7):
        return text[:cut].rstrip() + "..."
    return text[:budget].rstrip() + "..."


def chunk_text(text: str, limit: int = 1900) -> list[str]:
    if len(text) <= limit:
        return [text]
    parts: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        if len(current) + len(line) <= limit:
            current += line
            continue
        if current:
            parts.append(current)
            current = ""
        if len(line) <= limit:
            current = line
        else:
            for i in range(0, len(line), limit):
                parts.append(line[i : i + limit])
    if current:
        parts.append(current)
    return parts


def _dedupe(urls: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for url in urls:
        if url and url not in seen:
            seen.add(url)
            result.append(url)
    return result


def _path_of(url: str) -> str:
    return url.split("#", 1)[0]


def collect_image_urls(message: Any) -> list[str]:
    """Image attachments, direct image or Giphy links in the text, and embed images/thumbnails."""
    urls: list[str] = []
    for attachment in getattr(message, "attachments", None) or []:
        content_type = str(getattr(attachment, "content_type", "") or "").lower()
        url = str(getattr(attachment, "url", "") or "")
        if content_type.startswith("image/") or IMAGE_EXT.search(_path_of(url)):
            urls.append(url)

    for match in _URL_RE.findall(str(getattr(message, "content", "") or "")):
        if resolve_direct_media_url(match):
            urls.append(match)

    for embed in getattr(message, "embeds", None) or []:
        for part in (getattr(embed, "image", None), getattr(embed, "thumbnail", None)):
            url = str(getattr(part, "url", "") or "") if part is not None else ""
            if url:
                urls.append(url)
    return _dedupe(urls)


def collect_video_urls(message: Any) -> list[str]:
    urls: list[str] = []
    for attachment in getattr(message, "attachments", None) or []:
        content_type = str(getattr(attachment, "content_type", "") or "").lower()
        url = str(getattr(attachment, "url", "") or "")
        if content_type.startswith("video/") or VIDEO_EXT.search(_path_of(url)):
            urls.append(url)

    for match in _URL_RE.findall(str(getattr(message, "content", "") or "")):
        if VIDEO_EXT.search(_path_of(match)):
            urls.append(match)

    for embed in getattr(message, "embeds", None) or []:
        video = getattr(embed, "video", None)
        url = str(getattr(video, "url", "") or "") if video is not None else ""
        if url:
            urls.append(url)
    return _dedupe(urls)


@dataclass(slots=True)
class ReplyContext:
    author: str
    text: str
    images: list[str] = field(default_factory=list)
    videos: list[str] = field(default_factory=list)
