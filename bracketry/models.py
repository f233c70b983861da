"""
bracketry/models.py - Bracket data model.

Matches live in flat per-side round lists and are addressed two ways: by
stable id (``find_match``) and by ``(side, round, index)`` coordinates
(``match_at``). Downstream slots are coordinate lookups, never object links,
so a Bracket round-trips through ``to_dict``/``from_dict`` losslessly.

Wire format uses camelCase keys (team1Id, winnerId, ...) so stored documents
and API payloads look the same.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

# ============================================================================
# Constants
# ============================================================================

SINGLE = "single"
DOUBLE = "double"
FORMATS = (SINGLE, DOUBLE)

WINNERS = "winners"
LOSERS = "losers"
GRAND = "grand"
SIDES = (WINNERS, LOSERS, GRAND)

PENDING = "pending"
COMPLETED = "completed"

UPCOMING = "upcoming"
ONGOING = "ongoing"


def now_iso() -> str:
    """ISO timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Matches and rounds
# ============================================================================


@dataclass
class Match:
    """One pairing. Either slot may be None (TBD or BYE)."""

    id: str
    tournament_id: str
    side: str
    round: int
    index: int
    team1_id: str | None = None
    team2_id: str | None = None
    status: str = PENDING
    score1: float | None = None
    score2: float | None = None
    winner_id: str | None = None
    completed_at: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    @property
    def participants(self) -> list[str]:
        return [t for t in (self.team1_id, self.team2_id) if t]

    @property
    def loser_id(self) -> str | None:
        """The other participant, only when both slots were filled."""
        if not (self.winner_id and self.team1_id and self.team2_id):
            return None
        return self.team2_id if self.winner_id == self.team1_id else self.team1_id

    def holds(self, team_id: str) -> bool:
        return team_id in (self.team1_id, self.team2_id)

    def clear_result(self) -> None:
        self.score1 = None
        self.score2 = None
        self.winner_id = None
        self.status = PENDING
        self.completed_at = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tournamentId": self.tournament_id,
            "side": self.side,
            "round": self.round,
            "index": self.index,
            "team1Id": self.team1_id,
            "team2Id": self.team2_id,
            "status": self.status,
            "score1": self.score1,
            "score2": self.score2,
            "winnerId": self.winner_id,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Match":
        return cls(
            id=data["id"],
            tournament_id=data["tournamentId"],
            side=data["side"],
            round=data["round"],
            index=data["index"],
            team1_id=data.get("team1Id"),
            team2_id=data.get("team2Id"),
            status=data.get("status", PENDING),
            score1=data.get("score1"),
            score2=data.get("score2"),
            winner_id=data.get("winnerId"),
            completed_at=data.get("completedAt"),
        )


@dataclass
class Round:
    round: int
    matches: list[Match] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"round": self.round, "matches": [m.to_dict() for m in self.matches]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Round":
        return cls(
            round=data["round"],
            matches=[Match.from_dict(m) for m in data.get("matches", [])],
        )


# ============================================================================
# Bracket
# ============================================================================


@dataclass
class Bracket:
    """Full structure for one tournament: winners, losers and grand rounds."""

    tournament_id: str
    kind: str
    winners: list[Round] = field(default_factory=list)
    losers: list[Round] = field(default_factory=list)
    grand: list[Round] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    def rounds(self, side: str) -> list[Round]:
        return {WINNERS: self.winners, LOSERS: self.losers, GRAND: self.grand}[side]

    def iter_matches(self) -> Iterator[Match]:
        for side in SIDES:
            for rnd in self.rounds(side):
                yield from rnd.matches

    def find_match(self, match_id: str) -> Match | None:
        for match in self.iter_matches():
            if match.id == match_id:
                return match
        return None

    def match_at(self, side: str, round_num: int, index: int) -> Match | None:
        """Coordinate lookup. Returns None when the slot doesn't exist."""
        for rnd in self.rounds(side):
            if rnd.round == round_num:
                if 0 <= index < len(rnd.matches):
                    return rnd.matches[index]
                return None
        return None

    def last_round(self, side: str) -> Round | None:
        rounds = self.rounds(side)
        return rounds[-1] if rounds else None

    def is_last_round(self, match: Match) -> bool:
        last = self.last_round(match.side)
        return last is not None and last.round == match.round

    @property
    def grand_final(self) -> Match | None:
        last = self.last_round(GRAND)
        if last is None or not last.matches:
            return None
        return last.matches[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournamentId": self.tournament_id,
            "kind": self.kind,
            "rounds": {
                side: [r.to_dict() for r in self.rounds(side)] for side in SIDES
            },
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bracket":
        rounds = data.get("rounds", {})
        return cls(
            tournament_id=data["tournamentId"],
            kind=data["kind"],
            winners=[Round.from_dict(r) for r in rounds.get(WINNERS, [])],
            losers=[Round.from_dict(r) for r in rounds.get(LOSERS, [])],
            grand=[Round.from_dict(r) for r in rounds.get(GRAND, [])],
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


# ============================================================================
# Tournament, payout, teams
# ============================================================================


@dataclass
class Award:
    place: int
    team_id: str
    amount: float

    def to_dict(self) -> dict[str, Any]:
        return {"place": self.place, "teamId": self.team_id, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Award":
        return cls(place=data["place"], team_id=data["teamId"], amount=data["amount"])


@dataclass(frozen=True)
class Payout:
    """Settled prize distribution. Computed once, never recomputed."""

    total: float
    awards: tuple[Award, ...]
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "awards": [a.to_dict() for a in self.awards],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Payout":
        return cls(
            total=data["total"],
            awards=tuple(Award.from_dict(a) for a in data.get("awards", [])),
            timestamp=data["timestamp"],
        )


@dataclass
class Tournament:
    id: str
    title: str = "Untitled Tournament"
    format: str = SINGLE
    status: str = UPCOMING
    prize_pool: float | str | None = None
    payout: Payout | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "format": self.format,
            "status": self.status,
            "prizePool": self.prize_pool,
            "payout": self.payout.to_dict() if self.payout else None,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tournament":
        payout = data.get("payout")
        return cls(
            id=data["id"],
            title=data.get("title") or "Untitled Tournament",
            format=data.get("format", SINGLE),
            status=data.get("status", UPCOMING),
            prize_pool=data.get("prizePool"),
            payout=Payout.from_dict(payout) if payout else None,
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class Team:
    id: str
    name: str = ""
    members: list[str] = field(default_factory=list)
    balance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "members": list(self.members),
            "balance": self.balance,
        }
