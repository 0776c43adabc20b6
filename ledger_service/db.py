"""
ledger_service/db.py - SQLite storage for arena assignments.

All queries go through LedgerDB. One instance per server lifetime,
backed by a single SQLite file (or :memory: for tests).
"""

import sqlite3
import time
import uuid
from typing import Any


class LedgerDB:
    """Thin wrapper around SQLite for the assignments table."""

    def __init__(self, path: str = "ledger.db"):
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS assignments (
                id TEXT PRIMARY KEY,
                tournament_id TEXT NOT NULL,
                match_id TEXT NOT NULL,
                arena_id TEXT NOT NULL,
                arena_name TEXT NOT NULL,
                assigned_at INTEGER NOT NULL,
                assigned_by TEXT,
                UNIQUE (tournament_id, match_id)
            );

            CREATE INDEX IF NOT EXISTS idx_assignments_tournament
                ON assignments (tournament_id);
            """
        )

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def list_assignments(self, tournament_id: str) -> list[dict[str, Any]]:
        """Every assignment for a tournament, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM assignments WHERE tournament_id = ? ORDER BY assigned_at, id",
            (tournament_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def get_assignment(self, tournament_id: str, match_id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT * FROM assignments WHERE tournament_id = ? AND match_id = ?",
            (tournament_id, match_id),
        ).fetchone()
        return dict(row) if row else None

    def upsert_assignment(
        self,
        tournament_id: str,
        match_id: str,
        arena_id: str,
        arena_name: str,
        assigned_by: str | None = None,
    ) -> dict[str, Any]:
        """Create or overwrite the assignment for (tournament_id, match_id).

        An existing row keeps its id; arena, time and assigner are replaced.
        Returns the stored row.
        """
        self._conn.execute(
            "INSERT INTO assignments "
            "(id, tournament_id, match_id, arena_id, arena_name, assigned_at, assigned_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(tournament_id, match_id) DO UPDATE SET "
            "arena_id = excluded.arena_id, arena_name = excluded.arena_name, "
            "assigned_at = excluded.assigned_at, assigned_by = excluded.assigned_by",
            (
                str(uuid.uuid4()),
                tournament_id,
                match_id,
                arena_id,
                arena_name,
                _now(),
                assigned_by,
            ),
        )
        self._conn.commit()
        return self.get_assignment(tournament_id, match_id)

    def delete_assignment(self, tournament_id: str, match_id: str) -> bool:
        """Delete if present. Returns True if a row was removed."""
        cursor = self._conn.execute(
            "DELETE FROM assignments WHERE tournament_id = ? AND match_id = ?",
            (tournament_id, match_id),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def assignment_count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM assignments").fetchone()[0]

    def close(self) -> None:
        self._conn.close()


def _now() -> int:
    """Epoch seconds."""
    return int(time.time())
