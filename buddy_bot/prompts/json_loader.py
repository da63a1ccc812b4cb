from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger("buddy_bot.prompts")

_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def _data_dir() -> Path:
    return Path(__file__).with_name("data")


def _overlay(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _overlay(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_prompt_json(filename: str, defaults: dict[str, Any], *, data_dir: Path | None = None) -> dict[str, Any]:
    """Overlay `data/<filename>` onto `defaults`; a missing or broken file yields the defaults."""
    path = (data_dir or _data_dir()) / filename
    cache_key = str(path.resolve())

    mtime_ns: int | None = None
    try:
        mtime_ns = path.stat().st_mtime_ns
    except OSError:
        mtime_ns = None

    cached = _CACHE.get(cache_key)
    if cached is not None and cached[0] == mtime_ns:
        return copy.deepcopy(cached[1])

    result = copy.deepcopy(defaults)
    if mtime_ns is not None:
        try:
            payload = json.loads(path.read_text(encoding="utf-8-sig"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to parse prompt JSON %s (%s). Using defaults.", path, exc)
        else:
            if isinstance(payload, dict):
                result = _overlay(result, payload)
            else:
                logger.warning("Prompt JSON root must be an object: %s (using defaults)", path)

    _CACHE[cache_key] = (mtime_ns, copy.deepcopy(result))
    return result
