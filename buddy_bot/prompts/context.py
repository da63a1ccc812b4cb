from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

from .json_loader import load_prompt_json

logger = logging.getLogger("buddy_bot.prompts")

_DEFAULTS: dict[str, Any] = {
    "system_prompt": (
        "You are {BOT_NAME}, an advanced AI assistant integrated into a Discord server. "
        "Provide helpful, concise, and friendly responses to user queries. "
        "When appropriate, use markdown formatting for code snippets and lists. "
        'If you do not know the answer, respond with "idk tbh".'
    ),
    "server_info_template": "Server info:\n{text}",
    "user_info_template": "User info:\n{text}",
    "profile_summary_template": "User profile summary: {text}",
    "recent_user_messages_header": "Recent user messages:",
    "channel_summary_template": "Channel summary: {text}",
    "guild_summary_template": "Server summary: {text}",
    "known_users_template": "Known users in this server: {names}",
    "recent_channel_messages_header": "Recent channel messages:",
    "reply_context_template": "Reply context from {author}: {text}",
    "reply_context_empty_text": "[no text]",
    "reply_context_video_marker": " [video referenced]",
    "video_note_header": "Attached video URLs:",
    "empty_reply": "idk tbh",
    "fallback_error_line": "cant answer rn bro too busy gooning (api error)",
    "vision_unsupported_line": (
        "image input needs a vision-capable model. set LLM_VISION_MODEL or use a multimodal LLM_MODEL."
    ),
    "placeholders": {
        "images": "User sent an image.",
        "videos": "User referenced a video.",
        "reply": "Following up on the replied message.",
        "empty": "...",
    },
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("context.json", _DEFAULTS)


def _text(key: str) -> str:
    return str(_cfg().get(key, _DEFAULTS[key]))


def load_system_prompt(inline: str = "", path: str = "") -> str:
    """Inline text wins, then the prompt file, then the bundled default."""
    if inline.strip():
        return inline
    if path.strip():
        try:
            return Path(path).expanduser().read_text(encoding="utf-8-sig")
        except OSError as exc:
            logger.warning("Falling back to default system prompt; failed to load %s: %s", path, exc)
    return _text("system_prompt")


def render_system_prompt(template: str, bot_name: str) -> str:
    return template.replace("{BOT_NAME}", bot_name)


def build_server_info_block(text: str) -> str:
    return _text("server_info_template").format(text=text)


def build_user_info_block(text: str) -> str:
    return _text("user_info_template").format(text=text)


def build_profile_summary_block(text: str) -> str:
    return _text("profile_summary_template").format(text=text)


def _bulleted(header: str, lines: Sequence[str]) -> str:
    return header + "\n" + "\n".join(f"- {line}" for line in lines)


def build_recent_user_messages_block(lines: Sequence[str]) -> str:
    return _bulleted(_text("recent_user_messages_header"), lines)


def build_channel_summary_block(text: str) -> str:
    return _text("channel_summary_template").format(text=text)


def build_guild_summary_block(text: str) -> str:
    return _text("guild_summary_template").format(text=text)


def build_known_users_block(names: Sequence[str]) -> str:
    return _text("known_users_template").format(names=", ".join(names))


def build_recent_channel_messages_block(lines: Sequence[str]) -> str:
    return _bulleted(_text("recent_channel_messages_header"), lines)


def build_reply_context(author: str, content: str, *, has_video: bool = False) -> str:
    text = content.strip() or _text("reply_context_empty_text")
    line = _text("reply_context_template").format(author=author or "someone", text=text)
    if has_video:
        line += _text("reply_context_video_marker")
    return line


def build_video_note(urls: Sequence[str]) -> str:
    return _bulleted(_text("video_note_header"), urls)


def placeholder_prompt(kind: str) -> str:
    raw = _cfg().get("placeholders")
    placeholders = raw if isinstance(raw, dict) else _DEFAULTS["placeholders"]
    return str(placeholders.get(kind, _DEFAULTS["placeholders"].get(kind, "...")))


def empty_reply() -> str:
    return _text("empty_reply")


def fallback_error_line() -> str:
    return _text("fallback_error_line")


def vision_unsupported_line() -> str:
    return _text("vision_unsupported_line")
