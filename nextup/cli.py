#!/usr/bin/env python3
"""
nextup/cli.py - Command line interface for NextUp

Usage:
    nextup ledger-server [--port 8787] [--db ledger.db]
    nextup tournaments
    nextup watch <tournament_id> [--bracket W|L|EX|RR|all] [--once]
    nextup assign <tournament_id> <match_id> <arena_id> [--by NAME] [--no-overlay]
    nextup unassign <tournament_id> <match_id>
    nextup obs-test [--url ws://localhost:4455] [--password ...]
    nextup status
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.table import Table

from .board import build_board, tournaments_table
from .config import load_settings, save_settings, settings_dict
from .desk import ArenaDesk
from .errors import NextupError, TransportError
from .ledger import LedgerClient
from .models import ConnectionState
from .overlay import OverlaySupervisor
from .provider import TournamentProvider
from .readiness import ALL_BRACKETS
from .scheduler import LiveSyncScheduler
from .status import check_all

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

BOARD_REFRESH = 1.0


def _clients(settings) -> tuple[TournamentProvider, LedgerClient]:
    provider = TournamentProvider(settings.tf_user_id, settings.tf_api_key)
    ledger = LedgerClient(settings.ledger_url)
    return provider, ledger


# ============================================================================
# Commands
# ============================================================================


def cmd_ledger_server(args):
    """Start the assignment ledger server."""
    import uvicorn

    from ledger_service.server import app

    # Set DB path on app state so lifespan picks it up
    app.state.db_path = args.db
    logger.info(f"Starting ledger server on port {args.port} (db: {args.db})")
    uvicorn.run(app, host="0.0.0.0", port=args.port, log_level="info")
    return 0


def cmd_tournaments(args):
    """List the account's tournaments."""
    settings = load_settings()

    async def run():
        provider = TournamentProvider(settings.tf_user_id, settings.tf_api_key)
        try:
            return await provider.list_tournaments()
        finally:
            await provider.aclose()

    try:
        tournaments = asyncio.run(run())
    except NextupError as e:
        logger.error(f"Could not list tournaments: {e}")
        return 1

    console = Console()
    console.print()
    console.print(tournaments_table(tournaments))
    console.print()
    return 0


async def _watch_live(scheduler: LiveSyncScheduler, tournament_id: str) -> None:
    """Rich Live board, redrawn whenever the merged view changes."""
    changed = asyncio.Event()
    unsubscribe = scheduler.subscribe(lambda view: changed.set())
    scheduler.start(tournament_id)

    try:
        with Live(build_board(scheduler.view), refresh_per_second=2, screen=False) as live:
            while True:
                try:
                    await asyncio.wait_for(changed.wait(), timeout=BOARD_REFRESH)
                except asyncio.TimeoutError:
                    pass
                changed.clear()
                # Redraw on the timeout too so wait times keep ticking
                live.update(build_board(scheduler.view))
    finally:
        unsubscribe()


def cmd_watch(args):
    """Poll a tournament and keep a live board of arenas and the ready queue."""
    settings = load_settings()

    async def run():
        provider, ledger = _clients(settings)
        scheduler = LiveSyncScheduler.from_settings(settings, provider, ledger)
        scheduler.set_bracket_filter(args.bracket)
        try:
            if args.once:
                scheduler.start(args.tournament_id)
                await asyncio.gather(
                    scheduler.refresh_tournament(), scheduler.refresh_assignments()
                )
                Console().print(build_board(scheduler.view))
                return
            await _watch_live(scheduler, args.tournament_id)
        finally:
            scheduler.stop()
            await provider.aclose()
            await ledger.aclose()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Stopped watching")
    return 0


async def _desk_session(settings, tournament_id, action, use_overlay=False, operator=None):
    """Load both feeds once, then run ``action(desk)`` against that view."""
    provider, ledger = _clients(settings)
    scheduler = LiveSyncScheduler.from_settings(settings, provider, ledger)
    overlay = OverlaySupervisor.from_settings(settings) if use_overlay else None
    try:
        scheduler.start(tournament_id)
        await asyncio.gather(scheduler.refresh_tournament(), scheduler.refresh_assignments())
        view = scheduler.view
        for feed, error in (("bracket", view.tournament_error), ("assignments", view.assignments_error)):
            if error:
                raise TransportError(f"Could not load {feed}: {error}")

        if overlay is not None:
            try:
                await overlay.connect(manual=True)
            except NextupError as e:
                logger.warning(f"OBS not reachable, overlay will not be updated: {e}")

        desk = ArenaDesk(scheduler, ledger, overlay=overlay, operator=operator)
        return await action(desk)
    finally:
        scheduler.stop()
        if overlay is not None:
            await overlay.disconnect()
        await provider.aclose()
        await ledger.aclose()


def cmd_assign(args):
    """Assign a match to an arena, refusing an arena that holds another live match."""
    settings = load_settings()

    try:
        assignment = asyncio.run(
            _desk_session(
                settings,
                args.tournament_id,
                lambda desk: desk.assign(args.match_id, args.arena_id),
                use_overlay=not args.no_overlay,
                operator=args.by,
            )
        )
    except NextupError as e:
        logger.error(f"Assign failed: {e}")
        return 1

    logger.info(f"✅ {assignment.match_id} -> {assignment.arena_name}")
    return 0


def cmd_unassign(args):
    """Remove a match's arena assignment."""
    settings = load_settings()

    try:
        asyncio.run(
            _desk_session(settings, args.tournament_id, lambda desk: desk.unassign(args.match_id))
        )
    except NextupError as e:
        logger.error(f"Unassign failed: {e}")
        return 1

    logger.info(f"✅ {args.match_id} unassigned")
    return 0


def cmd_obs_test(args):
    """Try one manual OBS connection and report the result."""
    settings = load_settings()
    url = args.url or settings.obs_url
    password = args.password if args.password is not None else settings.obs_password

    async def run():
        overlay = OverlaySupervisor(url=url, password=password)
        try:
            await overlay.connect(manual=True)
            return overlay.state, None
        except NextupError as e:
            return overlay.state, str(e)
        finally:
            await overlay.disconnect()

    state, error = asyncio.run(run())
    if state != ConnectionState.CONNECTED:
        logger.error(f"❌ OBS: {error}")
        return 1

    logger.info(f"✅ OBS reachable at {url}")
    if args.save:
        settings.obs_url = url
        settings.obs_password = password
        if save_settings(settings):
            logger.info("Saved OBS settings")
    return 0


def cmd_status(args):
    """Check the provider and the ledger, and show the active config."""
    settings = load_settings()

    async def run():
        provider, ledger = _clients(settings)
        try:
            return await check_all(provider, ledger)
        finally:
            await provider.aclose()
            await ledger.aclose()

    status = asyncio.run(run())
    console = Console()

    table = Table(title="Config", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in settings_dict(settings).items():
        table.add_row(key, repr(value))
    console.print()
    console.print(table)

    console.print()
    for name, state in (("Bracket provider", status.provider), ("Ledger", status.ledger)):
        style = "green" if state.ok else "red"
        console.print(f"[bold]{name:<18}[/bold] [{style}]{escape(state.message)}[/{style}]")
    console.print()
    return 0 if status.required_services_ready else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nextup",
        description="Arena assignment and overlay sync for live brackets",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # ledger-server command
    ledger_parser = subparsers.add_parser("ledger-server", help="Start the assignment ledger server")
    ledger_parser.add_argument("--port", "-p", type=int, default=8787, help="Server port (default: 8787)")
    ledger_parser.add_argument("--db", default="ledger.db", help="SQLite database path (default: ledger.db)")
    ledger_parser.set_defaults(func=cmd_ledger_server)

    # tournaments command
    list_parser = subparsers.add_parser("tournaments", help="List tournaments on the provider account")
    list_parser.set_defaults(func=cmd_tournaments)

    # watch command
    watch_parser = subparsers.add_parser("watch", help="Live board for one tournament")
    watch_parser.add_argument("tournament_id", help="Tournament ID")
    watch_parser.add_argument("--bracket", "-b", default=ALL_BRACKETS, help="W, L, EX, RR or all (default: all)")
    watch_parser.add_argument("--once", action="store_true", help="Fetch once, print, and exit")
    watch_parser.set_defaults(func=cmd_watch)

    # assign command
    assign_parser = subparsers.add_parser("assign", help="Assign a match to an arena")
    assign_parser.add_argument("tournament_id", help="Tournament ID")
    assign_parser.add_argument("match_id", help="Match ID")
    assign_parser.add_argument("arena_id", help="Arena (location) ID")
    assign_parser.add_argument("--by", default=None, help="Operator name recorded with the assignment")
    assign_parser.add_argument("--no-overlay", action="store_true", help="Do not push the match to OBS")
    assign_parser.set_defaults(func=cmd_assign)

    # unassign command
    unassign_parser = subparsers.add_parser("unassign", help="Remove a match's arena assignment")
    unassign_parser.add_argument("tournament_id", help="Tournament ID")
    unassign_parser.add_argument("match_id", help="Match ID")
    unassign_parser.set_defaults(func=cmd_unassign)

    # obs-test command
    obs_parser = subparsers.add_parser("obs-test", help="Test the OBS WebSocket connection")
    obs_parser.add_argument("--url", default=None, help="WebSocket URL (default: from config)")
    obs_parser.add_argument("--password", default=None, help="WebSocket password (default: from config)")
    obs_parser.add_argument("--save", action="store_true", help="Save URL and password on success")
    obs_parser.set_defaults(func=cmd_obs_test)

    # status command
    status_parser = subparsers.add_parser("status", help="Check provider and ledger connectivity")
    status_parser.set_defaults(func=cmd_status)

    return parser


def main():
    args = build_parser().parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
