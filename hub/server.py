"""
hub/server.py - FastAPI service for tournament brackets.

Endpoints:
    POST   /tournaments                              Create a tournament
    GET    /tournaments/{id}                         Tournament details
    POST   /tournaments/{id}/start                   Generate the bracket
    GET    /tournaments/{id}/bracket                 Current bracket
    GET    /tournaments/{id}/matches                 All matches, flattened
    POST   /tournaments/{id}/matches/{mid}/report    Report a result
    POST   /tournaments/{id}/matches/{mid}/edit      Edit scores (same winner)
    POST   /tournaments/{id}/matches/{mid}/override  Override the winner
    POST   /tournaments/{id}/matches/{mid}/reset     Reset to pending
    POST   /tournaments/{id}/end                     Settle the prize pool
    GET    /tournaments/{id}/payout                  Settled payout
    PUT    /teams/{id}                               Create/update a team
    GET    /teams/{id}                               Team with balance
    GET    /users/{id}/notifications                 Payout notifications
    GET    /health                                   Server health check

Live updates:
    WS     /ws/tournaments/{id}/bracket              Bracket snapshots after every write
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.cors import CORSMiddleware

from bracketry.config import apply_env_overrides, load_config
from bracketry.errors import BracketError, BracketNotFound

from .db import BracketDB
from .service import TournamentService

logger = logging.getLogger(__name__)

PING_INTERVAL_SECONDS = 30.0

_STATUS_BY_CATEGORY = {
    "validation": 400,
    "conflict": 409,
    "not_found": 404,
}


# Global service instance, set during lifespan
_service: TournamentService | None = None


def get_service() -> TournamentService:
    assert _service is not None, "Service not initialized"
    return _service


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _service
    config = apply_env_overrides(load_config())
    db_path = getattr(app.state, "db_path", None) or config.server.db_path
    db = BracketDB(db_path)
    _service = TournamentService(db, split=config.payout.split)
    logger.info(f"Bracket DB initialized: {db_path}")
    logger.info(f"Payout split: {'/'.join(f'{s:.0%}' for s in config.payout.split)}")

    yield
    _service = None
    db.close()


app = FastAPI(title="Bracketry", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


async def bracket_error_handler(request: Request, exc: BracketError) -> JSONResponse:
    status = _STATUS_BY_CATEGORY.get(exc.category, 400)
    return JSONResponse(status_code=status, content=exc.to_dict())


app.add_exception_handler(BracketError, bracket_error_handler)


# ======================================================================
# Request/Response Models
# ======================================================================


class CreateTournamentRequest(BaseModel):
    title: str | None = None
    format: str = "single"
    prizePool: float | str | None = None
    id: str | None = None


class StartRequest(BaseModel):
    participantIds: list[str]
    format: str | None = None


class ReportRequest(BaseModel):
    score1: float | None = None
    score2: float | None = None
    winnerId: str | None = None
    actorId: str | None = None


class EditRequest(BaseModel):
    score1: float
    score2: float


class OverrideRequest(BaseModel):
    winnerId: str
    score1: float | None = None
    score2: float | None = None


class TeamRequest(BaseModel):
    name: str = ""
    members: list[str] = Field(default_factory=list)


class MatchResponse(BaseModel):
    id: str
    tournamentId: str
    side: str
    round: int
    index: int
    team1Id: str | None = None
    team2Id: str | None = None
    status: str
    score1: float | None = None
    score2: float | None = None
    winnerId: str | None = None
    completedAt: str | None = None


class AwardResponse(BaseModel):
    place: int
    teamId: str
    amount: float


class PayoutResponse(BaseModel):
    total: float
    awards: list[AwardResponse]
    timestamp: str


class TeamResponse(BaseModel):
    id: str
    name: str
    members: list[str]
    balance: float


class HealthResponse(BaseModel):
    status: str
    tournaments: int
    brackets: int


# ======================================================================
# Tournaments
# ======================================================================


@app.post("/tournaments")
def create_tournament(req: CreateTournamentRequest) -> dict[str, Any]:
    tournament = get_service().create_tournament(
        title=req.title, fmt=req.format, prize_pool=req.prizePool, tournament_id=req.id
    )
    return tournament.to_dict()


@app.get("/tournaments/{tournament_id}")
def get_tournament(tournament_id: str) -> dict[str, Any]:
    return get_service().get_tournament(tournament_id).to_dict()


@app.post("/tournaments/{tournament_id}/start")
def start_tournament(tournament_id: str, req: StartRequest) -> dict[str, Any]:
    """Generate the bracket. Repeated calls return the existing one."""
    bracket = get_service().start_bracket(tournament_id, req.participantIds, req.format)
    return bracket.to_dict()


@app.get("/tournaments/{tournament_id}/bracket")
def get_bracket(tournament_id: str) -> dict[str, Any]:
    bracket = get_service().get_bracket(tournament_id)
    if bracket is None:
        raise BracketNotFound(f"Bracket not found: {tournament_id}")
    return bracket.to_dict()


@app.get("/tournaments/{tournament_id}/matches", response_model=list[MatchResponse])
def list_matches(tournament_id: str) -> list[dict[str, Any]]:
    return [m.to_dict() for m in get_service().list_matches(tournament_id)]


# ======================================================================
# Matches
# ======================================================================


@app.post("/tournaments/{tournament_id}/matches/{match_id}/report", response_model=MatchResponse)
def report_match(tournament_id: str, match_id: str, req: ReportRequest) -> dict[str, Any]:
    match = get_service().report_match(
        tournament_id, match_id,
        score1=req.score1, score2=req.score2, winner_id=req.winnerId, actor_id=req.actorId,
    )
    return match.to_dict()


@app.post("/tournaments/{tournament_id}/matches/{match_id}/edit", response_model=MatchResponse)
def edit_match(tournament_id: str, match_id: str, req: EditRequest) -> dict[str, Any]:
    return get_service().edit_match(tournament_id, match_id, req.score1, req.score2).to_dict()


@app.post("/tournaments/{tournament_id}/matches/{match_id}/override", response_model=MatchResponse)
def override_match(tournament_id: str, match_id: str, req: OverrideRequest) -> dict[str, Any]:
    match = get_service().override_match(
        tournament_id, match_id, req.winnerId, req.score1, req.score2
    )
    return match.to_dict()


@app.post("/tournaments/{tournament_id}/matches/{match_id}/reset", response_model=MatchResponse)
def reset_match(tournament_id: str, match_id: str) -> dict[str, Any]:
    return get_service().reset_match(tournament_id, match_id).to_dict()


# ======================================================================
# Settlement
# ======================================================================


@app.post("/tournaments/{tournament_id}/end", response_model=PayoutResponse)
def end_tournament(tournament_id: str) -> dict[str, Any]:
    return get_service().end_tournament(tournament_id).to_dict()


@app.get("/tournaments/{tournament_id}/payout", response_model=PayoutResponse)
def get_payout(tournament_id: str) -> dict[str, Any]:
    return get_service().get_payout(tournament_id).to_dict()


# ======================================================================
# Teams and notifications
# ======================================================================


@app.put("/teams/{team_id}", response_model=TeamResponse)
def upsert_team(team_id: str, req: TeamRequest) -> dict[str, Any]:
    return get_service().upsert_team(team_id, req.name, req.members).to_dict()


@app.get("/teams/{team_id}", response_model=TeamResponse)
def get_team(team_id: str) -> dict[str, Any]:
    return get_service().get_team(team_id).to_dict()


@app.get("/users/{user_id}/notifications")
def list_notifications(user_id: str) -> dict[str, Any]:
    items = get_service().list_notifications(user_id)
    return {"userId": user_id, "notifications": items}


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    db = get_service().db
    return {
        "status": "ok",
        "tournaments": db.tournament_count(),
        "brackets": db.bracket_count(),
    }


# ======================================================================
# Live Bracket Streaming
# ======================================================================


@app.websocket("/ws/tournaments/{tournament_id}/bracket")
async def websocket_bracket(websocket: WebSocket, tournament_id: str):
    """Push the full bracket after every successful write.

    Sends the current bracket (if any) on connect, then one
    {"type": "bracket", "bracket": {...}} per write, and {"type": "ping"}
    whenever nothing happened for PING_INTERVAL_SECONDS.
    """
    service = get_service()
    loop = asyncio.get_running_loop()
    updates: asyncio.Queue = asyncio.Queue()

    # Publishing happens on worker threads; hop onto our loop
    def on_update(snapshot: dict) -> None:
        loop.call_soon_threadsafe(updates.put_nowait, snapshot)

    # Viewers don't send anything; reading only tells us when they leave
    async def watch_disconnect() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            updates.put_nowait(None)

    # Subscribe before accepting so no write after connect is missed
    token = service.broker.subscribe(tournament_id, on_update)
    watcher = None
    try:
        await websocket.accept()
        watcher = asyncio.create_task(watch_disconnect())
        logger.info(f"Bracket viewer connected to {tournament_id}")

        bracket = await asyncio.to_thread(service.get_bracket, tournament_id)
        if bracket is not None:
            await websocket.send_json({"type": "bracket", "bracket": bracket.to_dict()})

        while True:
            try:
                snapshot = await asyncio.wait_for(updates.get(), timeout=PING_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "ping"})
                continue
            if snapshot is None:
                break
            await websocket.send_json({"type": "bracket", "bracket": snapshot})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Bracket stream error for {tournament_id}: {e}")
    finally:
        if watcher is not None:
            watcher.cancel()
        service.broker.unsubscribe(token)
        logger.info(f"Bracket viewer disconnected from {tournament_id}")
