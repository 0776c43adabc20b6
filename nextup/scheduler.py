"""
nextup/scheduler.py - Live sync of bracket snapshots and the assignment ledger

Two independent poll loops (tournament snapshot, assignment list) feed one
merged view. Each loop has its own interval and its own sticky error: a
failing feed keeps serving its last good snapshot and never blocks the other.

Timing model:
    - Ticks within a loop are sequential. The next sleep starts only after the
      previous fetch settles, and manual refreshes queue behind the same lock.
    - Stopping or restarting a loop cancels its task right away. A fetch that
      is already in flight is left to finish, and its result is dropped
      because the loop's generation has moved on.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, Sequence, TypeVar

from .models import ArenaOccupancy, Assignment, Bracket, Location, Match, Tournament
from .observable import Observable
from .readiness import ALL_BRACKETS, available_brackets, ready, upcoming

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _retrieve(task: asyncio.Future) -> None:
    # Mark a detached fetch's exception as retrieved so asyncio doesn't warn
    if not task.cancelled():
        task.exception()


# ============================================================================
# Poll loop
# ============================================================================


class PollLoop(Generic[T]):
    """Periodically fetch one resource for one key and keep the last good value."""

    def __init__(
        self,
        name: str,
        fetch: Callable[[str], Awaitable[T]],
        interval: float,
        on_update: Callable[[], None] | None = None,
    ):
        self.name = name
        self.interval = interval
        self.snapshot: T | None = None
        self.error: str | None = None
        self.consecutive_failures = 0
        self._fetch = fetch
        self._on_update = on_update
        self._key: str | None = None
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def key(self) -> str | None:
        return self._key

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, key: str) -> None:
        """Begin polling ``key``. Replaces any previous key. Needs a running loop."""
        self._cancel()
        if key != self._key:
            self.snapshot = None
            self.error = None
            self.consecutive_failures = 0
        self._generation += 1
        self._key = key
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation, key), name=f"poll-{self.name}-{key}"
        )
        logger.debug(f"[{self.name}] polling {key} every {self.interval}s")

    def stop(self) -> None:
        """Stop polling and drop the cached snapshot."""
        self._cancel()
        self._generation += 1
        self._key = None
        self.snapshot = None
        self.error = None
        self.consecutive_failures = 0
        self._notify()

    async def refresh(self) -> bool:
        """Run one tick now for the current key. Returns True if it succeeded."""
        if self._key is None:
            return False
        return await self._tick(self._generation, self._key)

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update()

    async def _run(self, generation: int, key: str) -> None:
        while generation == self._generation:
            await self._tick(generation, key)
            await asyncio.sleep(self.interval)

    async def _tick(self, generation: int, key: str) -> bool:
        async with self._lock:
            if generation != self._generation:
                return False

            fetch = asyncio.ensure_future(self._fetch(key))
            fetch.add_done_callback(_retrieve)
            try:
                result = await asyncio.shield(fetch)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if generation != self._generation:
                    return False
                self.error = str(e) or e.__class__.__name__
                self.consecutive_failures += 1
                logger.warning(
                    f"[{self.name}] fetch for {key} failed "
                    f"({self.consecutive_failures} in a row): {self.error}"
                )
                self._notify()
                return False

            if generation != self._generation:
                logger.debug(f"[{self.name}] discarding stale result for {key}")
                return False

            if self.error is not None:
                logger.info(f"[{self.name}] recovered for {key}")
            self.snapshot = result
            self.error = None
            self.consecutive_failures = 0
            self._notify()
            return True


# ============================================================================
# Merged view
# ============================================================================


@dataclass(frozen=True)
class SyncView:
    """Everything the operator sees, derived from the two latest snapshots."""

    tournament_id: str | None = None
    tournament: Tournament | None = None
    assignments: tuple[Assignment, ...] = ()
    arenas: tuple[Location, ...] = ()
    ready: tuple[Match, ...] = ()
    upcoming: tuple[Match, ...] = ()
    unassigned_ready: tuple[Match, ...] = ()
    arena_occupancy: tuple[ArenaOccupancy, ...] = ()
    available_brackets: tuple[Bracket, ...] = ()
    bracket: Bracket | str = ALL_BRACKETS
    tournament_error: str | None = None
    assignments_error: str | None = None

    def assignment_for_match(self, match_id: str) -> Assignment | None:
        for a in self.assignments:
            if a.match_id == match_id:
                return a
        return None

    def occupancy_for_arena(self, arena_id: str) -> ArenaOccupancy | None:
        for occ in self.arena_occupancy:
            if occ.arena.id == arena_id:
                return occ
        return None

    def find_arena(self, arena_id: str) -> Location | None:
        occ = self.occupancy_for_arena(arena_id)
        return occ.arena if occ else None


def default_arena_locations(names: Iterable[str]) -> tuple[Location, ...]:
    """Stand-in arenas for tournaments that define no locations."""
    cleaned = [n.strip() for n in names if n and n.strip()]
    return tuple(Location(id=f"default-arena-{i + 1}", name=n) for i, n in enumerate(cleaned))


def _latest_by_arena(assignments: Sequence[Assignment]) -> dict[str, Assignment]:
    # The ledger doesn't stop two matches landing on one arena; show the newest
    by_arena: dict[str, Assignment] = {}
    for a in assignments:
        current = by_arena.get(a.arena_id)
        if current is None or a.assigned_at >= current.assigned_at:
            by_arena[a.arena_id] = a
    return by_arena


def build_view(
    tournament_id: str | None,
    tournament: Tournament | None,
    assignments: Sequence[Assignment] | None,
    default_arenas: Iterable[str] = (),
    bracket: Bracket | str = ALL_BRACKETS,
    tournament_error: str | None = None,
    assignments_error: str | None = None,
) -> SyncView:
    assignments = tuple(assignments or ())
    matches = tournament.matches if tournament else ()

    if tournament and tournament.locations:
        arenas = tuple(tournament.locations)
    else:
        arenas = default_arena_locations(default_arenas)

    ready_matches = ready(matches, bracket)
    assigned_ids = {a.match_id for a in assignments}
    by_id = {m.id: m for m in matches}
    by_arena = _latest_by_arena(assignments)

    occupancy = []
    for arena in arenas:
        assignment = by_arena.get(arena.id)
        match = by_id.get(assignment.match_id) if assignment else None
        occupancy.append(ArenaOccupancy(arena=arena, assignment=assignment, match=match))

    return SyncView(
        tournament_id=tournament_id,
        tournament=tournament,
        assignments=assignments,
        arenas=arenas,
        ready=tuple(ready_matches),
        upcoming=tuple(upcoming(matches, bracket)),
        unassigned_ready=tuple(m for m in ready_matches if m.id not in assigned_ids),
        arena_occupancy=tuple(occupancy),
        available_brackets=tuple(available_brackets(matches)),
        bracket=bracket,
        tournament_error=tournament_error,
        assignments_error=assignments_error,
    )


# ============================================================================
# Scheduler
# ============================================================================


class LiveSyncScheduler:
    """Owns both poll loops and the merged view for one tournament context.

    ``provider`` needs ``get_tournament(id)`` and ``ledger`` needs ``list(id)``.
    """

    def __init__(
        self,
        provider,
        ledger,
        tournament_interval: float = 2.0,
        assignment_interval: float = 2.0,
        default_arenas: Iterable[str] = (),
        bracket: Bracket | str = ALL_BRACKETS,
    ):
        self.default_arenas = list(default_arenas)
        self._bracket = bracket
        self._tournament = PollLoop(
            "tournament", provider.get_tournament, tournament_interval, self._recompute
        )
        self._assignments = PollLoop(
            "assignments", ledger.list, assignment_interval, self._recompute
        )
        self._view: Observable[SyncView] = Observable(self._build())

    @classmethod
    def from_settings(cls, settings, provider, ledger) -> "LiveSyncScheduler":
        return cls(
            provider,
            ledger,
            tournament_interval=settings.tournament_poll_interval,
            assignment_interval=settings.assignment_poll_interval,
            default_arenas=settings.default_arenas,
        )

    @property
    def tournament_id(self) -> str | None:
        return self._tournament.key

    @property
    def view(self) -> SyncView:
        return self._view.value

    @property
    def tournament_loop(self) -> PollLoop[Tournament]:
        return self._tournament

    @property
    def assignment_loop(self) -> PollLoop[list[Assignment]]:
        return self._assignments

    def subscribe(self, listener: Callable[[SyncView], None]) -> Callable[[], None]:
        return self._view.subscribe(listener)

    def start(self, tournament_id: str) -> None:
        """Poll ``tournament_id``. Any previous tournament's loops stop first."""
        if self._tournament.key and self._tournament.key != tournament_id:
            logger.info(f"Switching from tournament {self._tournament.key} to {tournament_id}")
        self._tournament.start(tournament_id)
        self._assignments.start(tournament_id)
        self._recompute()

    def stop(self) -> None:
        self._tournament.stop()
        self._assignments.stop()

    async def refresh_tournament(self) -> bool:
        return await self._tournament.refresh()

    async def refresh_assignments(self) -> bool:
        return await self._assignments.refresh()

    def set_bracket_filter(self, bracket: Bracket | str) -> None:
        self._bracket = bracket
        self._recompute()

    def _build(self) -> SyncView:
        return build_view(
            tournament_id=self._tournament.key,
            tournament=self._tournament.snapshot,
            assignments=self._assignments.snapshot,
            default_arenas=self.default_arenas,
            bracket=self._bracket,
            tournament_error=self._tournament.error,
            assignments_error=self._assignments.error,
        )

    def _recompute(self) -> None:
        self._view.set(self._build())
