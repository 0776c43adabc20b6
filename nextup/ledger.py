"""
nextup/ledger.py - Assignment ledger client

Typed accessor over the ledger service's HTTP API. The ledger is the source
of truth; this client only keeps the last list it fetched. Mutations never
patch that cache. Callers re-list after assign/unassign.

The ledger guarantees one row per (tournament, match). It does NOT guarantee
one match per arena; check_arena_available() is the caller-side guard.
"""

import logging
import time
from typing import Any, Iterable

import httpx

from .errors import ConfigurationError, TransportError, ValidationError
from .models import Assignment, Match, MatchStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _require(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def check_arena_available(
    assignments: Iterable[Assignment],
    arena_id: str,
    match_id: str,
    matches: Iterable[Match] | None = None,
) -> None:
    """Raise ValidationError if the arena already holds a different live match.

    Re-assigning a match to the arena it is already on is fine. When
    ``matches`` is given, an occupant that has completed no longer blocks.
    """
    status = {m.id: m.status for m in matches} if matches is not None else {}
    for a in assignments:
        if a.arena_id != arena_id or a.match_id == match_id:
            continue
        if status.get(a.match_id) == MatchStatus.COMPLETE:
            continue
        raise ValidationError(
            f"Arena {a.arena_name or arena_id} is already assigned to match {a.match_id}"
        )


class LedgerClient:
    """Async client for /api/assignments.

    Raises ConfigurationError on first use if no base URL is configured.
    """

    def __init__(
        self,
        base_url: str | None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self.assignments: list[Assignment] = []

    def _url(self, path: str) -> str:
        if not self.base_url:
            raise ConfigurationError(
                "Ledger URL not configured. Set [ledger] url in config.toml "
                "or NEXTUP_LEDGER_URL."
            )
        return f"{self.base_url}{path}"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _request(self, method: str, path: str, what: str, **kwargs) -> httpx.Response:
        url = self._url(path)
        try:
            resp = await self._http().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to {what}: {e}") from e

        if resp.is_error:
            detail = resp.reason_phrase
            try:
                body = resp.json()
                if isinstance(body, dict) and body.get("error"):
                    detail = body["error"]
            except ValueError:
                pass
            raise TransportError(
                f"Failed to {what}: {resp.status_code} {detail}", status=resp.status_code
            )
        return resp

    async def list(self, tournament_id: str) -> list[Assignment]:
        """Fetch every assignment for a tournament and replace the cache."""
        _require(tournament_id=tournament_id)
        resp = await self._request(
            "GET", "/api/assignments", "fetch assignments",
            params={"tournamentId": tournament_id},
        )
        try:
            rows = resp.json()
            result = [Assignment.from_row(r) for r in rows or []]
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"Malformed assignment list: {e}") from e

        self.assignments = result
        return result

    async def assign(
        self,
        tournament_id: str,
        match_id: str,
        arena_id: str,
        arena_name: str,
        assigned_by: str | None = None,
    ) -> Assignment:
        """Upsert the assignment for (tournament_id, match_id)."""
        _require(
            tournament_id=tournament_id,
            match_id=match_id,
            arena_id=arena_id,
            arena_name=arena_name,
        )
        body = {
            "tournamentId": tournament_id,
            "matchId": match_id,
            "arenaId": arena_id,
            "arenaName": arena_name,
        }
        if assigned_by:
            body["assignedBy"] = assigned_by

        resp = await self._request("POST", "/api/assignments", "create assignment", json=body)
        try:
            data = resp.json()
            assignment = Assignment(
                id=data.get("id"),
                tournament_id=tournament_id,
                match_id=data.get("matchId", match_id),
                arena_id=data.get("arenaId", arena_id),
                arena_name=data.get("arenaName", arena_name),
                assigned_at=int(data.get("assignedAt") or time.time()),
                assigned_by=assigned_by,
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise TransportError(f"Malformed assign response: {e}") from e

        logger.info(f"Assigned {match_id} -> {arena_name} ({tournament_id})")
        return assignment

    async def unassign(self, tournament_id: str, match_id: str) -> None:
        """Remove the assignment for a match. No-op if there isn't one."""
        _require(tournament_id=tournament_id, match_id=match_id)
        await self._request(
            "DELETE", f"/api/assignments/{match_id}", "delete assignment",
            params={"tournamentId": tournament_id},
        )
        logger.info(f"Unassigned {match_id} ({tournament_id})")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
