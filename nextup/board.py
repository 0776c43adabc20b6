"""
nextup/board.py - Rich renderables for the operator board

Turns a SyncView into one panel: arenas with what's on them, the ready queue
(longest wait first), and what unblocks next. Feed errors show as a banner
over the last good data rather than replacing it.
"""

import time

from rich.console import Group
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from .formatting import bracket_short_name, format_wait_time
from .models import Match, MatchStatus, TournamentSummary
from .scheduler import SyncView

STATUS_STYLES = {
    MatchStatus.READY: "green",
    MatchStatus.IN_PROGRESS: "bold yellow",
    MatchStatus.PENDING: "dim",
    MatchStatus.COMPLETE: "dim",
}


def _player(view: SyncView, player_id: str | None) -> str:
    player = view.tournament.find_player(player_id) if view.tournament else None
    return player.name if player else "TBD"


def _versus(view: SyncView, match: Match) -> str:
    return f"{_player(view, match.slots[0].player_id)} vs {_player(view, match.slots[1].player_id)}"


def _label(match: Match) -> str:
    return f"{bracket_short_name(match.bracket)} R{match.round}"


def _error_banner(view: SyncView) -> list[Text]:
    lines = []
    for feed, error in (("Bracket", view.tournament_error), ("Assignments", view.assignments_error)):
        if error:
            line = Text()
            line.append("  !! ", style="bold red")
            line.append(f"{feed} feed: ", style="bold")
            line.append(error, style="red")
            lines.append(line)
    return lines


def arena_table(view: SyncView) -> Table:
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Arena", style="bold", min_width=12)
    table.add_column("Match")
    table.add_column("Players")
    table.add_column("Status")

    for occ in view.arena_occupancy:
        if occ.match is None:
            stale = occ.assignment.match_id if occ.assignment else ""
            table.add_row(occ.arena.name, Text(stale, style="dim"), Text("free", style="dim"), "")
            continue
        status = occ.match.status
        table.add_row(
            occ.arena.name,
            f"{_label(occ.match)}  {occ.match.id}",
            _versus(view, occ.match),
            Text(status.value, style=STATUS_STYLES.get(status, "")),
        )
    return table


def queue_table(view: SyncView, now: float | None = None) -> Table:
    table = Table(show_header=True, header_style="bold green", expand=True)
    table.add_column("Match")
    table.add_column("Players")
    table.add_column("Waiting", justify="right")

    now = time.time() if now is None else now
    for m in view.unassigned_ready:
        table.add_row(f"{_label(m)}  {m.id}", _versus(view, m), format_wait_time(m.available_since, now))
    return table


def build_board(view: SyncView, now: float | None = None) -> Panel:
    """Full board panel for one tournament view."""
    parts: list = []
    parts.extend(_error_banner(view))

    if view.tournament is None and not view.tournament_error:
        parts.append(Text("  loading bracket...", style="dim italic"))

    parts.append(Rule(title="ARENAS", style="dim cyan", align="left"))
    if view.arena_occupancy:
        parts.append(arena_table(view))
    else:
        parts.append(Text("  no arenas - add locations or [arenas] default", style="dim italic"))

    parts.append(Rule(title=f"READY ({len(view.unassigned_ready)})", style="dim green", align="left"))
    if view.unassigned_ready:
        parts.append(queue_table(view, now))
    else:
        parts.append(Text("  nothing waiting", style="dim italic"))

    parts.append(Rule(title=f"UP NEXT ({len(view.upcoming)})", style="dim", align="left"))
    for m in view.upcoming:
        line = Text()
        line.append(f"  {_label(m):<16}", style="bold")
        line.append(f"{m.id:<12}")
        line.append(", ".join(m.prereq_match_ids), style="dim")
        parts.append(line)

    title = view.tournament.name if view.tournament else (view.tournament_id or "No tournament")
    bracket = getattr(view.bracket, "value", view.bracket)
    return Panel(
        Group(*parts),
        title=f"[bold white]NEXTUP[/bold white] [dim]·[/dim] [bold cyan]{escape(title)}[/bold cyan]",
        subtitle=f"[dim]bracket: {bracket}  ·  Ctrl+C to stop[/dim]",
        border_style="cyan",
        padding=(0, 1),
    )


def tournaments_table(tournaments: list[TournamentSummary]) -> Table:
    table = Table(title="Tournaments", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", min_width=14)
    table.add_column("Status")
    table.add_column("Name")
    table.add_column("Created", style="dim")

    for t in tournaments:
        table.add_row(t.id, t.status.value, t.name, t.created_at[:10])
    return table
