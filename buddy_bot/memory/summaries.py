from __future__ import annotations

import re
from dataclasses import dataclass

DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True, slots=True)
class SummaryHint:
    pattern: re.Pattern[str]
    label: str


@dataclass(frozen=True, slots=True)
class SummaryPolicy:
    """Cadence knobs for the user, channel and guild summaries."""

    user_every: int = 20
    channel_every: int = 20
    guild_every: int = 30
    stale_after_ms: int = DAY_MS


@dataclass(slots=True)
class ProfileCounters:
    summary: str = ""
    message_count: int = 0
    last_summary_at: int = 0


SUMMARY_HINTS: tuple[SummaryHint, ...] = (
    SummaryHint(re.compile(r"\bmy name is ([^.!?\n]+)", re.IGNORECASE), "Name"),
    SummaryHint(re.compile(r"\bcall me ([^.!?\n]+)", re.IGNORECASE), "Preferred name"),
    SummaryHint(re.compile(r"\bi (?:like|love) ([^.!?\n]+)", re.IGNORECASE), "Likes"),
    SummaryHint(re.compile(r"\bi (?:hate|dislike) ([^.!?\n]+)", re.IGNORECASE), "Dislikes"),
    SummaryHint(re.compile(r"\bmy pronouns are ([^.!?\n]+)", re.IGNORECASE), "Pronouns"),
)

NOTE_VALUE_MAX_CHARS = 120


def extract_summary_notes(content: str) -> list[str]:
    notes: list[str] = []
    for hint in SUMMARY_HINTS:
        match = hint.pattern.search(content or "")
        if match is None:
            continue
        value = " ".join(match.group(1).split())[:NOTE_VALUE_MAX_CHARS].strip(" ,;:")
        if value:
            notes.append(f"{hint.label}: {value}")
    return notes


def _note_label(line: str) -> str:
    label, sep, _ = line.partition(":")
    if not sep:
        return ""
    return label.strip().casefold()


def merge_summary_notes(current: str, notes: list[str]) -> str:
    """Merge `Label: value` notes into a summary, replacing lines that share a label in place."""
    if not notes:
        return current
    lines = [line for line in (current or "").split("\n") if line.strip()]
    for note in notes:
        label = _note_label(note)
        if label:
            index = next((i for i, line in enumerate(lines) if _note_label(line) == label), -1)
            if index >= 0:
                lines[index] = note
                continue
        if note not in lines:
            lines.append(note)
    return "\n".join(lines)


def apply_summary_cadence(
    state: ProfileCounters,
    notes: list[str],
    *,
    every: int,
    stale_after_ms: int,
    now_ms: int,
) -> ProfileCounters:
    next_count = state.message_count + 1
    stale = now_ms - state.last_summary_at > stale_after_ms
    due = (bool(notes) and next_count % max(1, every) == 0) or stale
    if not due:
        return ProfileCounters(state.summary, next_count, state.last_summary_at)
    return ProfileCounters(merge_summary_notes(state.summary, notes), next_count, now_ms)
