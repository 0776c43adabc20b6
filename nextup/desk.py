"""
nextup/desk.py - Operator actions: assign, unassign, push to overlay

Ties the three components together the way an operator console uses them:

    assign(match, arena)
      -> validate against the latest merged view (arena exists, arena free)
      -> ledger upsert
      -> immediate assignment refresh (no optimistic patching)
      -> if that arena's match changed and OBS is up, push the overlay
"""

import logging

from .errors import NextupError, StateError, ValidationError
from .ledger import LedgerClient, check_arena_available
from .models import Assignment, OverlayUpdate
from .overlay import OverlaySupervisor
from .scheduler import LiveSyncScheduler, SyncView

logger = logging.getLogger(__name__)


class ArenaDesk:
    def __init__(
        self,
        scheduler: LiveSyncScheduler,
        ledger: LedgerClient,
        overlay: OverlaySupervisor | None = None,
        operator: str | None = None,
    ):
        self.scheduler = scheduler
        self.ledger = ledger
        self.overlay = overlay
        self.operator = operator

    def _current(self) -> tuple[str, SyncView]:
        view = self.scheduler.view
        if not view.tournament_id:
            raise StateError("No tournament selected")
        return view.tournament_id, view

    async def assign(
        self, match_id: str, arena_id: str, assigned_by: str | None = None
    ) -> Assignment:
        tournament_id, view = self._current()
        if not match_id or not arena_id:
            raise ValidationError("match_id and arena_id are required")

        arena = view.find_arena(arena_id)
        if arena is None:
            raise ValidationError(f"Unknown arena: {arena_id}")

        matches = view.tournament.matches if view.tournament else None
        check_arena_available(view.assignments, arena_id, match_id, matches)

        before = view.occupancy_for_arena(arena_id)
        previous_match = before.assignment.match_id if before and before.assignment else None

        assignment = await self.ledger.assign(
            tournament_id, match_id, arena.id, arena.name, assigned_by or self.operator
        )
        refreshed = await self.scheduler.refresh_assignments()

        if previous_match != match_id:
            if refreshed:
                await self._sync_overlay(arena_id)
            else:
                logger.warning(
                    f"Assignment refresh failed after assigning {match_id}; overlay not updated"
                )
        return assignment

    async def unassign(self, match_id: str) -> None:
        tournament_id, _ = self._current()
        await self.ledger.unassign(tournament_id, match_id)
        await self.scheduler.refresh_assignments()

    async def push_overlay(self, arena_id: str) -> OverlayUpdate:
        """Send whatever is on ``arena_id`` to the overlay. Errors propagate."""
        if self.overlay is None:
            raise StateError("No overlay configured")
        _, view = self._current()
        occupancy = view.occupancy_for_arena(arena_id)
        if occupancy is None:
            raise ValidationError(f"Unknown arena: {arena_id}")
        if occupancy.match is None:
            raise StateError(f"No match assigned to {occupancy.arena.name}")

        players = view.tournament.players if view.tournament else ()
        return await self.overlay.update_overlay(occupancy.match, players, occupancy.arena.name)

    async def _sync_overlay(self, arena_id: str) -> None:
        if self.overlay is None or not self.overlay.connected:
            return
        try:
            await self.push_overlay(arena_id)
        except NextupError as e:
            # The assignment itself went through; the overlay keeps the error
            logger.warning(f"Overlay update for arena {arena_id} failed: {e}")
