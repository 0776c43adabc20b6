"""
NextUp - Arena assignment and broadcast overlay sync for live brackets

Polls the bracket provider and the assignment ledger, tells operators which
matches are ready, and keeps OBS showing whatever is on each arena.
"""

__version__ = "0.1.0"

from .errors import (
    NextupError,
    ValidationError,
    ConfigurationError,
    TransportError,
    OverlayConnectionError,
    StateError,
)

from .models import (
    MatchStatus,
    Bracket,
    PrereqCondition,
    TournamentStatus,
    ConnectionState,
    Player,
    Location,
    Slot,
    Match,
    Tournament,
    TournamentSummary,
    Assignment,
    ArenaOccupancy,
    OverlayUpdate,
)

from .readiness import ready, upcoming, available_brackets
from .provider import TournamentProvider
from .ledger import LedgerClient, check_arena_available
from .scheduler import LiveSyncScheduler, PollLoop, SyncView
from .overlay import OverlaySupervisor, overlay_fields
from .desk import ArenaDesk

__all__ = [
    # Version
    "__version__",
    # Errors
    "NextupError",
    "ValidationError",
    "ConfigurationError",
    "TransportError",
    "OverlayConnectionError",
    "StateError",
    # Data types
    "MatchStatus",
    "Bracket",
    "PrereqCondition",
    "TournamentStatus",
    "ConnectionState",
    "Player",
    "Location",
    "Slot",
    "Match",
    "Tournament",
    "TournamentSummary",
    "Assignment",
    "ArenaOccupancy",
    "OverlayUpdate",
    # Readiness
    "ready",
    "upcoming",
    "available_brackets",
    # Clients
    "TournamentProvider",
    "LedgerClient",
    "check_arena_available",
    # Coordination
    "LiveSyncScheduler",
    "PollLoop",
    "SyncView",
    "OverlaySupervisor",
    "overlay_fields",
    "ArenaDesk",
]
