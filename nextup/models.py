"""
nextup/models.py - Data types shared by every component

Tournament snapshots are frozen: a poll replaces the whole snapshot, nothing
patches one in place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ============================================================================
# Enums
# ============================================================================


class MatchStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class Bracket(str, Enum):
    WINNERS = "W"
    LOSERS = "L"
    EXHIBITION = "EX"
    ROUND_ROBIN = "RR"


class PrereqCondition(str, Enum):
    WINNER = "winner"
    LOSER = "loser"


class TournamentStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


PLAYABLE_STATUSES = frozenset({MatchStatus.READY, MatchStatus.IN_PROGRESS})


# ============================================================================
# Bracket graph
# ============================================================================


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    tag: str | None = None
    seed: int | None = None


@dataclass(frozen=True)
class Location:
    """An arena (physical station or stream) that can host one match."""

    id: str
    name: str


@dataclass(frozen=True)
class Slot:
    """One competitor position. Either seeded directly or fed by a prior match."""

    player_id: str | None = None
    prereq_match_id: str | None = None
    prereq_condition: PrereqCondition | None = None


@dataclass(frozen=True)
class Match:
    id: str
    status: MatchStatus
    bracket: Bracket
    round: int
    best_of: int
    slots: tuple[Slot, Slot] = (Slot(), Slot())
    name: str | None = None  # Provider label, e.g. "W:1-1"
    scores: tuple[int, int] | None = None
    winner_id: str | None = None
    available_since: float | None = None  # Epoch seconds
    next_match_ids: tuple[str, ...] = ()

    @property
    def is_playable(self) -> bool:
        return self.status in PLAYABLE_STATUSES

    @property
    def score_to_win(self) -> int:
        return (self.best_of + 1) // 2

    @property
    def prereq_match_ids(self) -> list[str]:
        return [s.prereq_match_id for s in self.slots if s.prereq_match_id]


@dataclass(frozen=True)
class Tournament:
    """Full bracket snapshot as returned by the provider."""

    id: str
    name: str
    status: TournamentStatus
    matches: tuple[Match, ...] = ()
    players: tuple[Player, ...] = ()
    locations: tuple[Location, ...] = ()

    def find_match(self, match_id: str) -> Match | None:
        for m in self.matches:
            if m.id == match_id:
                return m
        return None

    def find_player(self, player_id: str | None) -> Player | None:
        if not player_id:
            return None
        for p in self.players:
            if p.id == player_id:
                return p
        return None


@dataclass(frozen=True)
class TournamentSummary:
    id: str
    name: str
    status: TournamentStatus
    created_at: str  # ISO-8601


# ============================================================================
# Assignments
# ============================================================================


@dataclass(frozen=True)
class Assignment:
    """Binding of one match to one arena, as stored by the ledger."""

    id: str | None
    tournament_id: str
    match_id: str
    arena_id: str
    arena_name: str
    assigned_at: int  # Epoch seconds
    assigned_by: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Assignment":
        """Build from a ledger row (snake_case JSON)."""
        return cls(
            id=row.get("id"),
            tournament_id=row["tournament_id"],
            match_id=row["match_id"],
            arena_id=row["arena_id"],
            arena_name=row["arena_name"],
            assigned_at=int(row.get("assigned_at") or 0),
            assigned_by=row.get("assigned_by"),
        )


@dataclass(frozen=True)
class ArenaOccupancy:
    """One arena with whatever the ledger currently has on it."""

    arena: Location
    assignment: Assignment | None = None
    match: Match | None = None

    @property
    def is_free(self) -> bool:
        return self.assignment is None


@dataclass
class OverlayUpdate:
    """Outcome of an overlay push: which text fields landed and which didn't."""

    scene: str
    fields: dict[str, str] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
