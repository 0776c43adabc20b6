"""
nextup/formatting.py - Display helpers for brackets and wait times
"""

import time

from .models import Bracket

BRACKET_NAMES = {
    Bracket.WINNERS: "Winners Bracket",
    Bracket.LOSERS: "Losers Bracket",
    Bracket.EXHIBITION: "Exhibition",
    Bracket.ROUND_ROBIN: "Round Robin",
}

BRACKET_SHORT_NAMES = {
    Bracket.WINNERS: "Winners",
    Bracket.LOSERS: "Losers",
    Bracket.EXHIBITION: "Exhibition",
    Bracket.ROUND_ROBIN: "Round Robin",
}


def bracket_name(bracket: Bracket | str) -> str:
    try:
        return BRACKET_NAMES[Bracket(bracket)]
    except ValueError:
        return str(bracket)


def bracket_short_name(bracket: Bracket | str) -> str:
    try:
        return BRACKET_SHORT_NAMES[Bracket(bracket)]
    except ValueError:
        return str(bracket)


def wait_minutes(available_since: float | None, now: float | None = None) -> int:
    """Whole minutes since the match became playable (0 if unknown)."""
    if not available_since:
        return 0
    now = time.time() if now is None else now
    return int((now - available_since) // 60)


def format_wait_time(available_since: float | None, now: float | None = None) -> str:
    """Human-readable wait, e.g. "1h 5m waiting". Empty if unknown or in the future."""
    if not available_since:
        return ""
    now = time.time() if now is None else now
    if now - available_since < 0:
        return ""

    minutes = wait_minutes(available_since, now)
    hours = minutes // 60

    if hours > 0:
        remaining = minutes % 60
        return f"{hours}h {remaining}m waiting" if remaining else f"{hours}h waiting"
    if minutes > 0:
        return f"{minutes}m waiting"
    return "Just ready"
