"""Keeps conversation history bounded without silently losing turns."""

from __future__ import annotations

import re

from secretary.config import HISTORY_CEILING
from secretary.models import Turn

DEFAULT_HEAD = 10
DEFAULT_TAIL = 60

MARKER_PREFIX = "[compacted:"
_MARKER_COUNT = re.compile(r"^\[compacted: (\d+) ")


def make_marker(elided: int) -> Turn:
    return Turn(role="system", content=f"{MARKER_PREFIX} {elided} earlier messages omitted]")


def is_marker(turn: Turn) -> bool:
    return turn.role == "system" and turn.content.startswith(MARKER_PREFIX)


def _weight(turn: Turn) -> int:
    """How many original messages *turn* stands for."""
    if is_marker(turn):
        match = _MARKER_COUNT.match(turn.content)
        if match:
            return int(match.group(1))
    return 1


def compact(
    history: list[Turn],
    ceiling: int = HISTORY_CEILING,
    head: int = DEFAULT_HEAD,
    tail: int = DEFAULT_TAIL,
) -> list[Turn]:
    """Replace the middle of an over-long history with one marker entry.

    Returns *history* unchanged when it fits under *ceiling*; otherwise
    ``head`` oldest + marker + ``tail`` newest.  Compacting an already
    compacted history is a no-op because ``head + 1 + tail <= ceiling``.
    """
    if head + 1 + tail > ceiling:
        raise ValueError("head + tail + marker must fit under the ceiling")
    if len(history) <= ceiling:
        return history
    # An older marker in the middle carries its own count forward.
    elided = sum(_weight(turn) for turn in history[head:len(history) - tail])
    return history[:head] + [make_marker(elided)] + history[-tail:]


def recent_context(history: list[Turn], max_turns: int = 3) -> str:
    """Short transcript of the last exchanges for classification prompts."""
    recent = [turn for turn in history[-(max_turns * 2):] if not is_marker(turn)]
    if not recent:
        return ""

    lines = ["Recent conversation:\n"]
    for turn in recent:
        speaker = "Patient" if turn.role == "user" else "Secretary"
        lines.append(f"  {speaker}: {turn.content[:200]}")
    lines.append("")
    return "\n".join(lines)
