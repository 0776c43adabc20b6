"""
nextup/provider.py - TrueFinals bracket provider client

Read-only. Fetches the tournament list and full bracket snapshots and maps the
provider's JSON into our frozen model types. Credentials are checked before
any request goes out.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from .errors import ConfigurationError, TransportError
from .models import (
    Bracket,
    Location,
    Match,
    MatchStatus,
    Player,
    PrereqCondition,
    Slot,
    Tournament,
    TournamentStatus,
    TournamentSummary,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://truefinals.com/api"
DEFAULT_TIMEOUT = 10.0

_GAME_STATES = {
    "available": MatchStatus.READY,
    "active": MatchStatus.IN_PROGRESS,
    "complete": MatchStatus.COMPLETE,
}


# ============================================================================
# Mapping
# ============================================================================


def _ms_to_seconds(value: Any) -> float | None:
    if not value:
        return None
    return value / 1000


def _ms_to_iso(value: Any) -> str:
    if not value:
        return ""
    return datetime.fromtimestamp(value / 1000, timezone.utc).isoformat()


def map_game_state(state: str | None) -> MatchStatus:
    return _GAME_STATES.get(state or "", MatchStatus.PENDING)


def map_bracket(bracket_id: str | None) -> Bracket:
    try:
        return Bracket(bracket_id)
    except ValueError:
        return Bracket.WINNERS


def _tournament_status(data: dict) -> TournamentStatus:
    return TournamentStatus.COMPLETE if data.get("endTime") else TournamentStatus.IN_PROGRESS


def _parse_slot(raw: dict | None) -> Slot:
    raw = raw or {}
    prev = raw.get("prevGameID") or None
    return Slot(
        player_id=raw.get("playerID") or None,
        prereq_match_id=prev,
        prereq_condition=PrereqCondition.WINNER if prev else None,
    )


def _next_match_ids(slot_ids: list[str] | None) -> tuple[str, ...]:
    """"W-4+0" -> "W-4", de-duplicated, order kept."""
    seen: list[str] = []
    for slot_id in slot_ids or []:
        game_id = slot_id.split("+")[0]
        if game_id not in seen:
            seen.append(game_id)
    return tuple(seen)


def parse_game(raw: dict) -> Match:
    raw_slots = list(raw.get("slots") or [])
    raw_slots += [{}] * (2 - len(raw_slots))
    s0, s1 = raw_slots[0] or {}, raw_slots[1] or {}

    status = map_game_state(raw.get("state"))
    score0 = s0.get("score") or 0
    score1 = s1.get("score") or 0

    winner_id = None
    if status == MatchStatus.COMPLETE:
        winner_id = (s0 if score0 > score1 else s1).get("playerID") or None

    score_to_win = raw.get("scoreToWin") or 1
    return Match(
        id=raw["id"],
        name=raw.get("name"),
        status=status,
        bracket=map_bracket(raw.get("bracketID")),
        round=raw.get("round") or 0,
        best_of=score_to_win * 2 - 1,
        slots=(_parse_slot(s0), _parse_slot(s1)),
        scores=(score0, score1),
        winner_id=winner_id,
        available_since=_ms_to_seconds(raw.get("availableSince")),
        next_match_ids=_next_match_ids(raw.get("nextGameSlotIDs")),
    )


def parse_tournament(data: dict) -> Tournament:
    players = tuple(
        Player(
            id=p["id"],
            name=p.get("name") or "",
            tag=(p.get("profileInfo") or {}).get("tag"),
            seed=p.get("seed"),
        )
        for p in data.get("players") or []
    )
    locations = tuple(
        Location(id=loc["id"], name=loc.get("name") or "")
        for loc in data.get("locations") or []
    )
    matches = tuple(parse_game(g) for g in data.get("games") or [])
    return Tournament(
        id=data["id"],
        name=data.get("title") or "",
        status=_tournament_status(data),
        matches=matches,
        players=players,
        locations=locations,
    )


def parse_summary(data: dict) -> TournamentSummary:
    return TournamentSummary(
        id=data["id"],
        name=data.get("title") or "",
        status=_tournament_status(data),
        created_at=_ms_to_iso(data.get("createTime")),
    )


# ============================================================================
# Client
# ============================================================================


class TournamentProvider:
    """Async client for the TrueFinals API.

    Pass ``client`` to share a connection pool or to inject a transport in
    tests; otherwise one is created lazily and closed by ``aclose()``.
    """

    def __init__(
        self,
        user_id: str | None,
        api_key: str | None,
        base_url: str = BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.user_id = user_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        if not self.user_id or not self.api_key:
            raise ConfigurationError(
                "TrueFinals API credentials not configured. "
                "Set [truefinals] user_id and api_key in config.toml."
            )
        return {
            "x-api-user-id": self.user_id,
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _get(self, path: str, what: str) -> Any:
        headers = self._headers()
        try:
            resp = await self._http().get(f"{self.base_url}{path}", headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to fetch {what}: {e}") from e

        if resp.is_error:
            raise TransportError(
                f"Failed to fetch {what}: {resp.status_code} {resp.reason_phrase}",
                status=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"Failed to fetch {what}: invalid JSON") from e

    async def list_tournaments(self) -> list[TournamentSummary]:
        data = await self._get("/v1/user/tournaments", "tournaments")
        if isinstance(data, dict):
            data = data.get("tournaments") or []
        try:
            return [parse_summary(t) for t in data or []]
        except (KeyError, TypeError, AttributeError) as e:
            raise TransportError(f"Malformed tournament list: {e}") from e

    async def get_tournament(self, tournament_id: str) -> Tournament:
        data = await self._get(f"/v1/tournaments/{tournament_id}", "tournament")
        try:
            return parse_tournament(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise TransportError(f"Malformed tournament payload: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
