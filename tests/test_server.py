"""
tests/test_server.py - Bracket server endpoint tests.

Uses FastAPI's TestClient, no server process needed.
"""

import random

import pytest
from fastapi.testclient import TestClient

from bracketry.errors import BracketError
from hub.db import BracketDB
from hub.server import app
from hub.service import TournamentService


class FixedDraw(random.Random):
    def shuffle(self, x):
        pass


@pytest.fixture
def service():
    """Fresh in-memory service for each test, with a draw that keeps entry order."""
    return TournamentService(BracketDB(":memory:"), rng=FixedDraw())


@pytest.fixture
def client(service):
    """FastAPI test client backed by an in-memory DB."""
    import hub.server as srv

    # Create a bare app without lifespan so it doesn't overwrite _service
    from fastapi import FastAPI

    test_app = FastAPI()
    # Copy all routes from the real app
    for route in app.routes:
        test_app.routes.append(route)
    test_app.add_exception_handler(BracketError, srv.bracket_error_handler)

    srv._service = service
    with TestClient(test_app) as c:
        yield c
    srv._service = None


def _start(client, tid="t1", fmt="single", teams=("T1", "T2", "T3", "T4"), prize=1000):
    client.post("/tournaments", json={"id": tid, "title": "Cup", "format": fmt, "prizePool": prize})
    return client.post(f"/tournaments/{tid}/start", json={"participantIds": list(teams)})


def _report(client, mid, tid="t1", **body):
    return client.post(f"/tournaments/{tid}/matches/{mid}/report", json=body)


# ======================================================================
# Tournaments
# ======================================================================


class TestTournaments:
    def test_create_and_get(self, client):
        resp = client.post("/tournaments", json={"id": "t1", "title": "Cup", "prizePool": "$500"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "upcoming"

        data = client.get("/tournaments/t1").json()
        assert data["title"] == "Cup"
        assert data["format"] == "single"

    def test_unknown_tournament_is_404(self, client):
        resp = client.get("/tournaments/ghost")
        assert resp.status_code == 404
        assert resp.json()["code"] == "TournamentNotFound"

    def test_bad_format_is_400(self, client):
        resp = client.post("/tournaments", json={"format": "round-robin"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "InvalidFormatConfiguration"


# ======================================================================
# Bracket generation
# ======================================================================


class TestStart:
    def test_start_returns_bracket(self, client):
        resp = _start(client)
        assert resp.status_code == 200
        data = resp.json()
        assert data["tournamentId"] == "t1"
        first_round = data["rounds"]["winners"][0]["matches"]
        assert [(m["team1Id"], m["team2Id"]) for m in first_round] == [
            ("T1", "T2"), ("T3", "T4"),
        ]
        assert client.get("/tournaments/t1").json()["status"] == "ongoing"

    def test_start_twice_returns_same_bracket(self, client):
        first = _start(client).json()
        second = client.post("/tournaments/t1/start", json={"participantIds": ["X", "Y"]}).json()
        assert second == first

    def test_insufficient_participants(self, client):
        client.post("/tournaments", json={"id": "t1"})
        resp = client.post("/tournaments/t1/start", json={"participantIds": ["solo"]})
        assert resp.status_code == 400
        assert resp.json()["code"] == "InsufficientParticipants"

    def test_bracket_missing(self, client):
        client.post("/tournaments", json={"id": "t1"})
        resp = client.get("/tournaments/t1/bracket")
        assert resp.status_code == 404
        assert resp.json()["code"] == "BracketNotFound"

    def test_list_matches(self, client):
        _start(client)
        matches = client.get("/tournaments/t1/matches").json()
        assert [m["id"] for m in matches] == ["mt1-1", "mt1-2", "mt1-3"]
        assert all(m["status"] == "pending" for m in matches)


# ======================================================================
# Match operations
# ======================================================================


class TestMatches:
    def test_report_propagates(self, client):
        _start(client)
        resp = _report(client, "mt1-1", score1=5, score2=3, actorId="admin")
        assert resp.status_code == 200
        assert resp.json()["winnerId"] == "T1"

        final = client.get("/tournaments/t1/bracket").json()["rounds"]["winners"][1]["matches"][0]
        assert final["team1Id"] == "T1"

    def test_report_without_scores_or_winner(self, client):
        _start(client)
        resp = _report(client, "mt1-1")
        assert resp.status_code == 400
        assert resp.json()["code"] == "MatchRequiresScoresOrWinner"

    def test_report_twice_is_conflict(self, client):
        _start(client)
        _report(client, "mt1-1", score1=1, score2=0)
        resp = _report(client, "mt1-1", score1=0, score2=1)
        assert resp.status_code == 409
        assert resp.json()["code"] == "MatchAlreadyCompleted"

    def test_report_unknown_match(self, client):
        _start(client)
        resp = _report(client, "nope", score1=1, score2=0)
        assert resp.status_code == 404
        assert resp.json()["code"] == "MatchNotFound"

    def test_report_empty_match(self, client):
        _start(client)
        resp = _report(client, "mt1-3", score1=1, score2=0)
        assert resp.status_code == 400
        assert resp.json()["code"] == "MatchHasNoParticipants"

    def test_edit_flipping_winner_rejected(self, client):
        _start(client)
        _report(client, "mt1-1", score1=5, score2=3)
        resp = client.post("/tournaments/t1/matches/mt1-1/edit", json={"score1": 1, "score2": 9})
        assert resp.status_code == 400
        assert resp.json()["code"] == "WinnerChangeNotAllowed"

    def test_edit_scores(self, client):
        _start(client)
        _report(client, "mt1-1", score1=5, score2=3)
        resp = client.post("/tournaments/t1/matches/mt1-1/edit", json={"score1": 4, "score2": 0})
        assert resp.status_code == 200
        assert (resp.json()["score1"], resp.json()["score2"]) == (4, 0)

    def test_override(self, client):
        _start(client)
        _report(client, "mt1-1", score1=5, score2=3)
        resp = client.post("/tournaments/t1/matches/mt1-1/override", json={"winnerId": "T2"})
        assert resp.status_code == 200
        assert resp.json()["winnerId"] == "T2"
        matches = client.get("/tournaments/t1/matches").json()
        assert matches[2]["team1Id"] == "T2"

    def test_override_after_downstream_decided(self, client):
        _start(client)
        _report(client, "mt1-1", score1=5, score2=3)
        _report(client, "mt1-2", score1=6, score2=4)
        _report(client, "mt1-3", score1=7, score2=2)
        resp = client.post("/tournaments/t1/matches/mt1-1/override", json={"winnerId": "T2"})
        assert resp.status_code == 409
        assert resp.json()["code"] == "DownstreamAlreadyDecided"

    def test_reset_blocked_by_propagation(self, client):
        _start(client)
        _report(client, "mt1-1", score1=5, score2=3)
        resp = client.post("/tournaments/t1/matches/mt1-1/reset")
        assert resp.status_code == 409
        assert resp.json()["code"] == "WinnerAlreadyPropagated"


# ======================================================================
# Settlement
# ======================================================================


class TestSettlement:
    def _play(self, client):
        for team, members in [("T1", ["u1"]), ("T2", ["u2"]), ("T3", ["u3"]), ("T4", ["u4"])]:
            client.put(f"/teams/{team}", json={"name": team, "members": members})
        _start(client)
        _report(client, "mt1-1", score1=5, score2=3)
        _report(client, "mt1-2", score1=6, score2=4)
        _report(client, "mt1-3", score1=7, score2=2)

    def test_end_pays_out(self, client):
        self._play(client)
        resp = client.post("/tournaments/t1/end")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1000
        assert [(a["place"], a["teamId"], a["amount"]) for a in data["awards"]] == [
            (1, "T1", 600), (2, "T3", 250), (3, "T2", 75), (3, "T4", 75),
        ]
        assert client.get("/teams/T1").json()["balance"] == 600
        assert client.get("/tournaments/t1").json()["status"] == "completed"

    def test_end_twice_same_payout(self, client):
        self._play(client)
        first = client.post("/tournaments/t1/end").json()
        second = client.post("/tournaments/t1/end").json()
        assert second == first
        assert client.get("/teams/T3").json()["balance"] == 250

    def test_payout_lookup(self, client):
        self._play(client)
        resp = client.get("/tournaments/t1/payout")
        assert resp.status_code == 404
        assert resp.json()["code"] == "PayoutNotFound"

        settled = client.post("/tournaments/t1/end").json()
        assert client.get("/tournaments/t1/payout").json() == settled

    def test_end_before_final(self, client):
        _start(client)
        resp = client.post("/tournaments/t1/end")
        assert resp.status_code == 409
        assert resp.json()["code"] == "FinalNotCompleted"

    def test_end_without_bracket(self, client):
        client.post("/tournaments", json={"id": "t1"})
        resp = client.post("/tournaments/t1/end")
        assert resp.status_code == 409
        assert resp.json()["code"] == "BracketNotGenerated"

    def test_writes_rejected_after_settlement(self, client):
        self._play(client)
        client.post("/tournaments/t1/end")
        resp = client.post("/tournaments/t1/matches/mt1-3/reset")
        assert resp.status_code == 409
        assert resp.json()["code"] == "TournamentAlreadySettled"

    def test_notifications(self, client):
        self._play(client)
        client.post("/tournaments/t1/end")
        data = client.get("/users/u1/notifications").json()
        assert data["userId"] == "u1"
        assert len(data["notifications"]) == 1
        note = data["notifications"][0]
        assert note["message"] == "Your team earned $600.00 for place 1 in Cup"
        assert note["metadata"]["tournamentId"] == "t1"

        assert client.get("/users/nobody/notifications").json()["notifications"] == []


# ======================================================================
# Teams
# ======================================================================


class TestTeams:
    def test_upsert_and_get(self, client):
        resp = client.put("/teams/red", json={"name": "Red", "members": ["u1", "u2"]})
        assert resp.status_code == 200
        assert resp.json() == {"id": "red", "name": "Red", "members": ["u1", "u2"], "balance": 0}

        client.put("/teams/red", json={"name": "Crimson", "members": ["u1"]})
        data = client.get("/teams/red").json()
        assert data["name"] == "Crimson"
        assert data["members"] == ["u1"]

    def test_missing_team(self, client):
        resp = client.get("/teams/ghost")
        assert resp.status_code == 404
        assert resp.json()["code"] == "TeamNotFound"


# ======================================================================
# Health
# ======================================================================


class TestHealth:
    def test_health_empty(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "tournaments": 0, "brackets": 0}

    def test_health_counts(self, client):
        _start(client)
        client.post("/tournaments", json={"id": "t2"})
        assert client.get("/health").json() == {"status": "ok", "tournaments": 2, "brackets": 1}


# ======================================================================
# Live bracket stream
# ======================================================================


class TestBracketStream:
    def test_initial_read_runs_in_worker_thread(self, client, service, monkeypatch):
        import hub.server as srv

        offloaded = []
        real_to_thread = srv.asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(srv.asyncio, "to_thread", recording_to_thread)
        _start(client)
        with client.websocket_connect("/ws/tournaments/t1/bracket") as ws:
            assert ws.receive_json()["type"] == "bracket"
        assert offloaded == [service.get_bracket]
    def test_initial_snapshot_and_update(self, client, service):
        _start(client)
        with client.websocket_connect("/ws/tournaments/t1/bracket") as ws:
            initial = ws.receive_json()
            assert initial["type"] == "bracket"
            assert initial["bracket"]["tournamentId"] == "t1"

            _report(client, "mt1-1", score1=5, score2=3)
            update = ws.receive_json()
            assert update["type"] == "bracket"
            final = update["bracket"]["rounds"]["winners"][1]["matches"][0]
            assert final["team1Id"] == "T1"

    def test_no_snapshot_until_started(self, client, service):
        client.post("/tournaments", json={"id": "t1", "title": "Cup"})
        with client.websocket_connect("/ws/tournaments/t1/bracket") as ws:
            client.post("/tournaments/t1/start", json={"participantIds": ["A", "B"]})
            first = ws.receive_json()
            assert first["type"] == "bracket"
            assert first["bracket"]["rounds"]["winners"][0]["matches"][0]["team1Id"] == "A"
