"""
nextup/readiness.py - Classify bracket matches as ready or upcoming

Pure functions over a snapshot's match list. The provider decides readiness;
we only sort and filter what it reports. Safe to re-run on every poll.
"""

import math
from typing import Iterable

from .models import Bracket, Match, MatchStatus

ALL_BRACKETS = "all"


def _in_bracket(match: Match, bracket: Bracket | str) -> bool:
    if bracket == ALL_BRACKETS:
        return True
    return match.bracket == bracket


def _wait_key(match: Match) -> float:
    # Unknown wait time sorts after every timestamped wait
    if match.available_since is None:
        return math.inf
    return match.available_since


def ready(matches: Iterable[Match], bracket: Bracket | str = ALL_BRACKETS) -> list[Match]:
    """Matches that can be played now, longest-waiting first.

    Includes ready and in_progress matches. Ties keep input order.
    """
    playable = [m for m in matches if m.is_playable and _in_bracket(m, bracket)]
    return sorted(playable, key=_wait_key)


def upcoming(matches: Iterable[Match], bracket: Bracket | str = ALL_BRACKETS) -> list[Match]:
    """Pending matches that unblock once a currently playable match finishes.

    A pending match qualifies when either slot's prerequisite is ready or
    in progress. Lower rounds first.
    """
    matches = list(matches)
    active_ids = {m.id for m in matches if m.is_playable}

    result = [
        m for m in matches
        if m.status == MatchStatus.PENDING
        and _in_bracket(m, bracket)
        and any(pid in active_ids for pid in m.prereq_match_ids)
    ]
    return sorted(result, key=lambda m: m.round)


def available_brackets(matches: Iterable[Match]) -> list[Bracket]:
    """Distinct bracket tags present in the snapshot, sorted by tag."""
    return sorted({m.bracket for m in matches}, key=lambda b: b.value)
