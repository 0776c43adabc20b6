"""
nextup/overlay.py - Overlay connection supervisor

Owns the single live OBS connection. Everyone else asks the supervisor to
push text and switch scenes; nobody else holds the client.

State machine:

    disconnected --connect()--> connecting --ok--> connected
         ^                          |                  |
         +------- failure ----------+---- close -------+
         |
         +-- (auto-reconnect enabled) one reconnect after a fixed delay

A manual connect (e.g. an operator's "test connection" button) turns
auto-reconnect off until a connection succeeds, so a bad address doesn't
retry forever in the background.
"""

import asyncio
import logging
from typing import Callable, Iterable

from .config import DEFAULT_OBS_URL
from .errors import ConfigurationError, NextupError, OverlayConnectionError, StateError
from .formatting import bracket_name
from .models import ConnectionState, Match, OverlayUpdate, Player
from .obs import ObsClient
from .observable import Observable

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0
RECONNECT_DELAY = 5.0
PLACEHOLDER = "TBD"


# ============================================================================
# Overlay fields
# ============================================================================


def overlay_fields(match: Match, players: Iterable[Player]) -> dict[str, str]:
    """Text source name -> content for a match. Unknown players show as TBD."""
    lookup = {p.id: p for p in players}
    p1 = lookup.get(match.slots[0].player_id) if match.slots[0].player_id else None
    p2 = lookup.get(match.slots[1].player_id) if match.slots[1].player_id else None
    bracket = bracket_name(match.bracket)

    def _seed(player: Player | None) -> str:
        return str(player.seed) if player and player.seed is not None else ""

    return {
        "MatchName": f"{bracket} Round {match.round}",
        "BracketName": bracket,
        "RoundNumber": f"Round {match.round}",
        "ScoreToWin": f"First to {match.score_to_win}",
        "Player1Name": (p1.name if p1 else "") or PLACEHOLDER,
        "Player1Tag": (p1.tag if p1 else "") or "",
        "Player1Seed": _seed(p1),
        "Player2Name": (p2.name if p2 else "") or PLACEHOLDER,
        "Player2Tag": (p2.tag if p2 else "") or "",
        "Player2Seed": _seed(p2),
    }


# ============================================================================
# Supervisor
# ============================================================================


class OverlaySupervisor:
    """Connection state machine with fixed-delay auto-reconnect.

    ``client_factory`` is called as ``client_factory(on_close=callback)`` and
    must return an object with async ``connect(url, password)``,
    ``disconnect()``, ``set_text(name, text)`` and ``set_scene(name)``.
    """

    def __init__(
        self,
        url: str = DEFAULT_OBS_URL,
        password: str | None = None,
        connect_timeout: float = CONNECT_TIMEOUT,
        reconnect_delay: float = RECONNECT_DELAY,
        client_factory: Callable[..., ObsClient] = ObsClient,
    ):
        self.url = url
        self.password = password or None
        self.connect_timeout = connect_timeout
        self.reconnect_delay = reconnect_delay
        self._client_factory = client_factory
        self._client: ObsClient | None = None
        self._state: Observable[ConnectionState] = Observable(ConnectionState.DISCONNECTED)
        self._error: Observable[str | None] = Observable(None)
        self._auto_reconnect = True
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "OverlaySupervisor":
        return cls(url=settings.obs_url, password=settings.obs_password, **kwargs)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state.value

    @property
    def last_error(self) -> str | None:
        return self._error.value

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def auto_reconnect(self) -> bool:
        return self._auto_reconnect

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def subscribe_state(self, listener: Callable[[ConnectionState], None]) -> Callable[[], None]:
        return self._state.subscribe(listener)

    def subscribe_error(self, listener: Callable[[str | None], None]) -> Callable[[], None]:
        return self._error.subscribe(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state.value:
            logger.info(f"[OBS] {self._state.value.value} -> {state.value}")
            self._state.set(state)

    def _set_error(self, error: str | None) -> None:
        if error != self._error.value:
            self._error.set(error)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(
        self, url: str | None = None, password: str | None = None, manual: bool = False
    ) -> None:
        """Replace any current connection with a fresh one.

        Raises OverlayConnectionError if the attempt fails or times out.
        """
        url = url or self.url
        if not url:
            raise ConfigurationError("OBS WebSocket URL not configured")
        self.url = url
        if password is not None:
            self.password = password or None

        if manual:
            self._auto_reconnect = False

        self._cancel_reconnect()
        await self._teardown()

        self._set_state(ConnectionState.CONNECTING)
        self._set_error(None)
        logger.info(f"[OBS] connecting to {url} (password: {'yes' if self.password else 'no'})")

        client: ObsClient | None = None

        def on_close(reason: str) -> None:
            self._handle_close(client, reason)

        client = self._client_factory(on_close=on_close)
        self._client = client

        try:
            await asyncio.wait_for(client.connect(url, self.password), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            error = OverlayConnectionError(
                f"Connection timeout - could not reach {url}. "
                "Is OBS running with WebSocket server enabled?"
            )
            await self._fail_attempt(client, error)
            raise error from None
        except OverlayConnectionError as e:
            await self._fail_attempt(client, e)
            raise
        except Exception as e:
            error = OverlayConnectionError(f"Could not connect to {url}: {e}")
            await self._fail_attempt(client, error)
            raise error from e
        except asyncio.CancelledError:
            if self._client is client:
                self._client = None
                self._set_state(ConnectionState.DISCONNECTED)
            raise

        if self._client is not client:
            # disconnect() or another connect() ran while we were waiting
            await self._close_quietly(client)
            raise OverlayConnectionError("Connection attempt superseded")

        self._set_state(ConnectionState.CONNECTED)
        self._set_error(None)
        self._auto_reconnect = True
        logger.info(f"[OBS] connected to {url}")

    async def disconnect(self) -> None:
        """Close the connection and stay closed."""
        self._cancel_reconnect()
        await self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)
        self._set_error(None)

    async def _fail_attempt(self, client: ObsClient, error: Exception) -> None:
        if self._client is not client:
            return
        self._client = None
        await self._close_quietly(client)
        self._set_state(ConnectionState.DISCONNECTED)
        self._set_error(str(error))
        logger.warning(f"[OBS] connection failed: {error}")
        if self._auto_reconnect:
            self._schedule_reconnect()

    def _handle_close(self, client: ObsClient | None, reason: str) -> None:
        if client is None or client is not self._client:
            return
        self._client = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._set_error(reason)
        if self._auto_reconnect:
            self._schedule_reconnect()

    async def _teardown(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await self._close_quietly(client)

    async def _close_quietly(self, client: ObsClient) -> None:
        try:
            await client.disconnect()
        except Exception as e:
            logger.debug(f"[OBS] ignoring error while closing: {e}")

    # ------------------------------------------------------------------
    # Reconnect timer
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> bool:
        """Arm the reconnect timer. No-op if one is already pending."""
        if self._reconnect_handle is not None:
            return False
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._fire_reconnect)
        logger.info(f"[OBS] reconnecting in {self.reconnect_delay}s")
        return True

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect(), name="obs-reconnect"
        )

    async def _reconnect(self) -> None:
        try:
            await self.connect()
        except NextupError as e:
            # Already recorded as last_error; the failure path re-arms the timer
            logger.debug(f"[OBS] reconnect attempt failed: {e}")

    # ------------------------------------------------------------------
    # Overlay operations
    # ------------------------------------------------------------------

    def _require_connected(self) -> ObsClient:
        if self._client is None or self.state != ConnectionState.CONNECTED:
            raise StateError("OBS not connected")
        return self._client

    async def update_text(self, source_name: str, text: str) -> None:
        await self._require_connected().set_text(source_name, text)

    async def switch_scene(self, scene_name: str) -> None:
        await self._require_connected().set_scene(scene_name)

    async def update_overlay(
        self, match: Match, players: Iterable[Player], arena_name: str
    ) -> OverlayUpdate:
        """Push a match's text fields, then switch to the arena's scene.

        Field failures are logged and reported in the result. A scene switch
        failure is raised.
        """
        client = self._require_connected()
        fields = overlay_fields(match, players)

        async def _push(name: str, text: str) -> str | None:
            try:
                await client.set_text(name, text)
            except NextupError as e:
                logger.warning(f"[OBS] Failed to update {name}: {e}")
                return name
            return None

        results = await asyncio.gather(*(_push(n, t) for n, t in fields.items()))
        failed = [name for name in results if name]

        try:
            await client.set_scene(arena_name)
        except NextupError as e:
            self._set_error(str(e))
            raise

        logger.info(
            f"[OBS] overlay -> {match.id} on {arena_name}"
            + (f" ({len(failed)} field(s) failed)" if failed else "")
        )
        return OverlayUpdate(scene=arena_name, fields=fields, failed=failed)
