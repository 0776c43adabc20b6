"""
ledger_service/server.py - FastAPI assignment ledger.

Endpoints:
    GET    /api/assignments?tournamentId=         List a tournament's assignments
    POST   /api/assignments                       Upsert by (tournamentId, matchId)
    DELETE /api/assignments/{matchId}?tournamentId=  Delete if present
    GET    /health                                Server health check

Errors are JSON: 400 {"error": ...} for bad input, 500 {"error": ...}
for anything unexpected. CORS is open to every origin.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from .db import LedgerDB

logger = logging.getLogger(__name__)


# Global DB instance - set during lifespan
_db: LedgerDB | None = None


def get_db() -> LedgerDB:
    assert _db is not None, "DB not initialized"
    return _db


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _db
    db_path = getattr(app.state, "db_path", None) or os.environ.get("NEXTUP_LEDGER_DB", "ledger.db")
    _db = LedgerDB(db_path)
    logger.info(f"Ledger DB initialized: {db_path}")

    yield
    _db.close()
    _db = None


app = FastAPI(title="NextUp Assignment Ledger", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)


# ======================================================================
# Error handling
# ======================================================================


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info(f"Rejected {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Missing required fields"})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Error handling {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


# ======================================================================
# Request/Response Models
# ======================================================================


class AssignRequest(BaseModel):
    tournamentId: str | None = None
    matchId: str | None = None
    arenaId: str | None = None
    arenaName: str | None = None
    assignedBy: str | None = None


class AssignResponse(BaseModel):
    success: bool
    matchId: str
    arenaId: str
    arenaName: str
    id: str
    assignedAt: int


class AssignmentRow(BaseModel):
    id: str
    tournament_id: str
    match_id: str
    arena_id: str
    arena_name: str
    assigned_at: int
    assigned_by: str | None = None


class SuccessResponse(BaseModel):
    success: bool


class HealthResponse(BaseModel):
    status: str
    assignments: int


# ======================================================================
# Endpoints
# ======================================================================


@app.get("/api/assignments", response_model=list[AssignmentRow])
def list_assignments(tournamentId: str | None = None) -> list[dict[str, Any]]:
    """All assignments for a tournament. Empty list when there are none."""
    if not tournamentId:
        raise HTTPException(status_code=400, detail="tournamentId is required")
    return get_db().list_assignments(tournamentId)


@app.post("/api/assignments", response_model=AssignResponse)
def assign(req: AssignRequest) -> dict[str, Any]:
    """Assign a match to an arena, replacing any earlier arena for that match."""
    if not (req.tournamentId and req.matchId and req.arenaId and req.arenaName):
        raise HTTPException(status_code=400, detail="Missing required fields")

    row = get_db().upsert_assignment(
        req.tournamentId, req.matchId, req.arenaId, req.arenaName, req.assignedBy or None
    )
    logger.info(
        f"Assigned {req.matchId} -> {req.arenaName} ({req.tournamentId})"
        + (f" by {req.assignedBy}" if req.assignedBy else "")
    )
    return {
        "success": True,
        "matchId": row["match_id"],
        "arenaId": row["arena_id"],
        "arenaName": row["arena_name"],
        "id": row["id"],
        "assignedAt": row["assigned_at"],
    }


@app.delete("/api/assignments/{match_id}", response_model=SuccessResponse)
def unassign(match_id: str, tournamentId: str | None = None) -> dict[str, Any]:
    """Remove a match's assignment. Succeeds whether or not one existed."""
    if not match_id or not tournamentId:
        raise HTTPException(status_code=400, detail="matchId and tournamentId are required")

    removed = get_db().delete_assignment(tournamentId, match_id)
    if removed:
        logger.info(f"Unassigned {match_id} ({tournamentId})")
    return {"success": True}


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    return {"status": "ok", "assignments": get_db().assignment_count()}
