from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # .env files saved with a BOM prefix the first key.
        for candidate in (key, f"﻿{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {'"', "'"}:
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(slots=True)
class Settings:
    discord_token: str
    discord_message_content_intent: bool
    discord_members_intent: bool
    bot_name: str
    super_admin_id: str
    ask_ghost_default: bool
    intent_router_enabled: bool

    llm_api_key: str
    llm_base_url: str
    llm_model: str
    llm_vision_model: str
    llm_timeout_seconds: float
    llm_temperature: float
    llm_top_p: float
    llm_presence_penalty: float
    llm_frequency_penalty: float
    llm_max_tokens: int
    llm_retry_delay_seconds: float
    system_prompt: str
    system_prompt_file: str

    sqlite_path: Path
    summary_user_every: int
    summary_channel_every: int
    summary_guild_every: int
    summary_stale_after_seconds: int
    known_users_window_days: int
    known_users_limit: int
    recent_user_messages: int
    recent_channel_messages: int

    rate_limit_cooldown_seconds: float
    rate_limit_idle_ttl_seconds: float
    turn_window: int
    turn_ttl_seconds: float
    turn_max_identities: int
    edit_window_seconds: float
    edit_throttle_seconds: float

    max_images: int
    max_image_bytes: int
    media_timeout_seconds: float

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN", aliases=("DISCORD_BOT_TOKEN",)) or ""),
            discord_message_content_intent=_env_bool("DISCORD_MESSAGE_CONTENT_INTENT", True),
            discord_members_intent=_env_bool("DISCORD_MEMBERS_INTENT", True),
            bot_name=_env_str("BOT_NAME", "Buddy"),
            super_admin_id=_env_str("SUPER_ADMIN_USER_ID", "", aliases=("SUPER_ADMIN_ID",)),
            ask_ghost_default=_env_bool("ASK_GHOST_DEFAULT", True),
            intent_router_enabled=_env_bool("INTENT_ROUTER_ENABLED", True),
            llm_api_key=_env_str("LLM_API_KEY", "", aliases=("GROK_API_KEY", "OPENAI_API_KEY")),
            llm_base_url=_env_str("LLM_BASE_URL", "https://api.x.ai", aliases=("GROK_BASE_URL",)),
            llm_model=_env_str("LLM_MODEL", "grok-4-1-fast-reasoning-latest", aliases=("GROK_MODEL",)),
            llm_vision_model=_env_str("LLM_VISION_MODEL", "", aliases=("GROK_VISION_MODEL",)),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 60.0),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.3),
            llm_top_p=_env_float("LLM_TOP_P", 0.9),
            llm_presence_penalty=_env_float("LLM_PRESENCE_PENALTY", 0.1),
            llm_frequency_penalty=_env_float("LLM_FREQUENCY_PENALTY", 0.2),
            llm_max_tokens=_env_int("LLM_MAX_TOKENS", 4096),
            llm_retry_delay_seconds=_env_float("LLM_RETRY_DELAY_SECONDS", 0.3),
            system_prompt=_env_str("SYSTEM_PROMPT", ""),
            system_prompt_file=_env_str("SYSTEM_PROMPT_FILE", "./prompts/system_prompt.txt"),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/memory.sqlite", aliases=("DB_PATH",))).expanduser(),
            summary_user_every=_env_int("SUMMARY_USER_EVERY", 20),
            summary_channel_every=_env_int("SUMMARY_CHANNEL_EVERY", 20),
            summary_guild_every=_env_int("SUMMARY_GUILD_EVERY", 30),
            summary_stale_after_seconds=_env_int("SUMMARY_STALE_AFTER_SECONDS", 86400),
            known_users_window_days=_env_int("KNOWN_USERS_WINDOW_DAYS", 30),
            known_users_limit=_env_int("KNOWN_USERS_LIMIT", 12),
            recent_user_messages=_env_int("RECENT_USER_MESSAGES", 3),
            recent_channel_messages=_env_int("RECENT_CHANNEL_MESSAGES", 3),
            rate_limit_cooldown_seconds=_env_float("RATE_LIMIT_COOLDOWN_SECONDS", 3.0),
            rate_limit_idle_ttl_seconds=_env_float("RATE_LIMIT_IDLE_TTL_SECONDS", 3600.0),
            turn_window=_env_int("TURN_WINDOW", 6),
            turn_ttl_seconds=_env_float("TURN_TTL_SECONDS", 3600.0),
            turn_max_identities=_env_int("TURN_MAX_IDENTITIES", 1000),
            edit_window_seconds=_env_float("EDIT_WINDOW_SECONDS", 60.0),
            edit_throttle_seconds=_env_float("EDIT_THROTTLE_SECONDS", 2.0),
            max_images=_env_int("MAX_IMAGES", 4),
            max_image_bytes=_env_int("MAX_IMAGE_BYTES", 5 * 1024 * 1024),
            media_timeout_seconds=_env_float("MEDIA_TIMEOUT_SECONDS", 10.0),
        )

    def validate(self) -> None:
        if not self.discord_token:
            raise ValueError("DISCORD_TOKEN is required")
        if not self.llm_api_key:
            raise ValueError("LLM_API_KEY is required")
        if not self.llm_base_url.lower().startswith(("http://", "https://")):
            raise ValueError("LLM_BASE_URL must be an http(s) URL")
        if not self.llm_model:
            raise ValueError("LLM_MODEL cannot be empty")

        if self.llm_timeout_seconds < 5:
            raise ValueError("LLM_TIMEOUT_SECONDS must be >= 5")
        if not 0.0 <= self.llm_temperature <= 2.0:
            raise ValueError("LLM_TEMPERATURE must be within [0, 2]")
        if not 0.0 <= self.llm_top_p <= 1.0:
            raise ValueError("LLM_TOP_P must be within [0, 1]")
        if not -2.0 <= self.llm_presence_penalty <= 2.0:
            raise ValueError("LLM_PRESENCE_PENALTY must be within [-2, 2]")
        if not -2.0 <= self.llm_frequency_penalty <= 2.0:
            raise ValueError("LLM_FREQUENCY_PENALTY must be within [-2, 2]")
        if not 1 <= self.llm_max_tokens <= 131072:
            raise ValueError("LLM_MAX_TOKENS must be within [1, 131072]")
        if self.llm_retry_delay_seconds < 0:
            raise ValueError("LLM_RETRY_DELAY_SECONDS must be >= 0")

        for name, value in (
            ("SUMMARY_USER_EVERY", self.summary_user_every),
            ("SUMMARY_CHANNEL_EVERY", self.summary_channel_every),
            ("SUMMARY_GUILD_EVERY", self.summary_guild_every),
            ("TURN_WINDOW", self.turn_window),
            ("TURN_MAX_IDENTITIES", self.turn_max_identities),
            ("KNOWN_USERS_WINDOW_DAYS", self.known_users_window_days),
        ):
            if value < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.summary_stale_after_seconds < 60:
            raise ValueError("SUMMARY_STALE_AFTER_SECONDS must be >= 60")
        if self.known_users_limit < 0 or self.recent_user_messages < 0 or self.recent_channel_messages < 0:
            raise ValueError("context limits must be >= 0")

        if self.rate_limit_cooldown_seconds < 0:
            raise ValueError("RATE_LIMIT_COOLDOWN_SECONDS must be >= 0")
        if self.rate_limit_idle_ttl_seconds < self.rate_limit_cooldown_seconds:
            raise ValueError("RATE_LIMIT_IDLE_TTL_SECONDS must be >= RATE_LIMIT_COOLDOWN_SECONDS")
        if self.turn_ttl_seconds < 1:
            raise ValueError("TURN_TTL_SECONDS must be >= 1")
        if self.edit_window_seconds < 1:
            raise ValueError("EDIT_WINDOW_SECONDS must be >= 1")
        if self.edit_throttle_seconds < 0:
            raise ValueError("EDIT_THROTTLE_SECONDS must be >= 0")

        if not 0 <= self.max_images <= 10:
            raise ValueError("MAX_IMAGES must be within [0, 10]")
        if self.max_image_bytes < 1024:
            raise ValueError("MAX_IMAGE_BYTES must be >= 1024")
        if self.media_timeout_seconds < 1:
            raise ValueError("MEDIA_TIMEOUT_SECONDS must be >= 1")
