"""
hub/service.py - Public tournament operations.

TournamentService wraps the pure engine in bracketry with persistence,
per-tournament serialization and change notification. Every mutation runs
load -> validate/mutate -> persist -> publish while holding that
tournament's lock; a rejected operation never reaches persist, so stored
state is untouched.
"""

import logging
import random
import threading
import weakref
from contextlib import contextmanager
from typing import Callable, Iterator

from bracketry import builder, corrections, payout as payouts, results
from bracketry.errors import (
    BracketError,
    BracketNotFound,
    BracketNotGenerated,
    InvalidFormatConfiguration,
    PayoutNotFound,
    TeamNotFound,
    TournamentAlreadySettled,
    TournamentNotFound,
)
from bracketry.models import (
    COMPLETED,
    FORMATS,
    GRAND,
    ONGOING,
    SINGLE,
    Bracket,
    Match,
    Payout,
    Team,
    Tournament,
    now_iso,
)

from .broker import BracketBroker, ChangeNotifier, DBNotificationSink
from .db import BracketDB

logger = logging.getLogger(__name__)


class TournamentService:
    """The bracket engine's public surface. One instance per process."""

    def __init__(
        self,
        db: BracketDB,
        notifier: ChangeNotifier | None = None,
        split: tuple[float, float, float] = payouts.DEFAULT_SPLIT,
        rng: random.Random | None = None,
    ):
        self.db = db
        self.notifier = notifier or ChangeNotifier(BracketBroker(), DBNotificationSink(db))
        self.split = split
        self._rng = rng
        # An entry lives only while some caller holds or waits on its lock
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    @property
    def broker(self) -> BracketBroker:
        return self.notifier.broker

    @contextmanager
    def _locked(self, tournament_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.get(tournament_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[tournament_id] = lock
        with lock:
            yield

    # ------------------------------------------------------------------
    # Tournaments and teams
    # ------------------------------------------------------------------

    def create_tournament(
        self,
        title: str | None = None,
        fmt: str = SINGLE,
        prize_pool: float | str | None = None,
        tournament_id: str | None = None,
    ) -> Tournament:
        """Create a tournament. An existing id is returned as-is."""
        if fmt not in FORMATS:
            raise InvalidFormatConfiguration(f"Unknown bracket format: {fmt!r}")
        tournament_id = tournament_id or f"t{random.getrandbits(48):012x}"
        with self._locked(tournament_id):
            existing = self.db.get_tournament(tournament_id)
            if existing is not None:
                return existing
            tournament = Tournament(
                id=tournament_id,
                title=(title or "").strip() or "Untitled Tournament",
                format=fmt,
                prize_pool=prize_pool,
                created_at=now_iso(),
            )
            self.db.upsert_tournament(tournament)
        logger.info(f"Created {fmt} tournament {tournament_id} ({tournament.title})")
        return tournament

    def get_tournament(self, tournament_id: str) -> Tournament:
        tournament = self.db.get_tournament(tournament_id)
        if tournament is None:
            raise TournamentNotFound(f"Tournament not found: {tournament_id}")
        return tournament

    def upsert_team(self, team_id: str, name: str, members: list[str]) -> Team:
        return self.db.upsert_team(team_id, name, members)

    def get_team(self, team_id: str) -> Team:
        team = self.db.get_team(team_id)
        if team is None:
            raise TeamNotFound(f"Team not found: {team_id}")
        return team

    def list_notifications(self, user_id: str) -> list[dict]:
        return self.db.list_notifications(user_id)

    # ------------------------------------------------------------------
    # Bracket lifecycle
    # ------------------------------------------------------------------

    def start_bracket(
        self, tournament_id: str, participant_ids: list[str], fmt: str | None = None
    ) -> Bracket:
        """Generate and persist the bracket. Later calls return the stored one."""
        logger.info(
            f"Start bracket requested for {tournament_id} "
            f"({fmt or 'default'} format, {len(participant_ids)} teams)"
        )
        with self._locked(tournament_id):
            existing = self.db.get_bracket(tournament_id)
            if existing is not None:
                logger.info(f"Bracket for {tournament_id} exists, returning it")
                return existing

            tournament = self.get_tournament(tournament_id)
            fmt = fmt or tournament.format
            try:
                bracket = builder.generate_bracket(tournament_id, fmt, participant_ids, self._rng)
            except BracketError as e:
                logger.warning(f"Bracket generation for {tournament_id} failed: {e}")
                raise

            self.db.upsert_bracket(bracket)
            tournament.format = fmt
            tournament.status = ONGOING
            self.db.upsert_tournament(tournament)
            self.notifier.bracket_changed(bracket)
        logger.info(f"Bracket started for {tournament_id}: {len(bracket.winners)} winners rounds")
        return bracket

    def get_bracket(self, tournament_id: str) -> Bracket | None:
        return self.db.get_bracket(tournament_id)

    def list_matches(self, tournament_id: str) -> list[Match]:
        bracket = self.db.get_bracket(tournament_id)
        return list(bracket.iter_matches()) if bracket else []

    # ------------------------------------------------------------------
    # Match mutations
    # ------------------------------------------------------------------

    def _mutate(
        self,
        tournament_id: str,
        action: str,
        apply: Callable[[Bracket], Match],
    ) -> Match:
        with self._locked(tournament_id):
            try:
                bracket = self.db.get_bracket(tournament_id)
                if bracket is None:
                    raise BracketNotFound(f"Bracket not found: {tournament_id}")
                tournament = self.db.get_tournament(tournament_id)
                if tournament is not None and tournament.payout is not None:
                    raise TournamentAlreadySettled()
                match = apply(bracket)
            except BracketError as e:
                logger.warning(f"{action} rejected for {tournament_id}: {e.code}: {e}")
                raise

            self.db.upsert_bracket(bracket)
            if tournament is not None:
                self._sync_status(tournament, match, action)
            self.notifier.bracket_changed(bracket)
        return match

    def _sync_status(self, tournament: Tournament, match: Match, action: str) -> None:
        """Grand final decides the tournament; resetting it reopens it."""
        if match.side != GRAND:
            return
        if results.is_terminal(match) and tournament.status != COMPLETED:
            tournament.status = COMPLETED
        elif action == "reset" and tournament.status == COMPLETED:
            tournament.status = ONGOING
        else:
            return
        self.db.upsert_tournament(tournament)
        logger.info(f"Tournament {tournament.id} is now {tournament.status}")

    def report_match(
        self,
        tournament_id: str,
        match_id: str,
        score1: float | None = None,
        score2: float | None = None,
        winner_id: str | None = None,
        actor_id: str | None = None,
    ) -> Match:
        match = self._mutate(
            tournament_id,
            "report",
            lambda b: results.report_match(b, match_id, score1, score2, winner_id),
        )
        logger.info(
            f"Match {match_id} reported by {actor_id or 'system'}: winner {match.winner_id}"
        )
        return match

    def edit_match(self, tournament_id: str, match_id: str, score1: float, score2: float) -> Match:
        match = self._mutate(
            tournament_id,
            "edit",
            lambda b: corrections.edit_scores(b, match_id, score1, score2),
        )
        logger.info(f"Match {match_id} scores edited to {score1}-{score2}")
        return match

    def override_match(
        self,
        tournament_id: str,
        match_id: str,
        winner_id: str,
        score1: float | None = None,
        score2: float | None = None,
    ) -> Match:
        match = self._mutate(
            tournament_id,
            "override",
            lambda b: corrections.override_winner(b, match_id, winner_id, score1, score2),
        )
        logger.info(f"Match {match_id} winner overridden to {winner_id}")
        return match

    def reset_match(self, tournament_id: str, match_id: str) -> Match:
        match = self._mutate(
            tournament_id,
            "reset",
            lambda b: corrections.reset_match(b, match_id),
        )
        logger.info(f"Match {match_id} reset")
        return match

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def end_tournament(self, tournament_id: str) -> Payout:
        """Settle the prize pool. Safe to call repeatedly: the first payout sticks."""
        with self._locked(tournament_id):
            tournament = self.get_tournament(tournament_id)
            if tournament.payout is not None:
                return tournament.payout

            bracket = self.db.get_bracket(tournament_id)
            try:
                if bracket is None:
                    raise BracketNotGenerated()
                payout = payouts.compute_payout(bracket, tournament.prize_pool, self.split)
            except BracketError as e:
                logger.warning(f"Payout rejected for {tournament_id}: {e.code}: {e}")
                raise

            tournament.status = COMPLETED
            self.db.settle_payout(tournament, payout)

            teams = {}
            for award in payout.awards:
                team = self.db.get_team(award.team_id)
                if team is not None:
                    teams[award.team_id] = team
            queued = self.notifier.payout_settled(tournament, payout, teams)

        logger.info(
            f"Tournament {tournament_id} settled: total {payout.total}, "
            f"{len(payout.awards)} awards, {queued} notifications"
        )
        return payout

    def get_payout(self, tournament_id: str) -> Payout:
        tournament = self.get_tournament(tournament_id)
        if tournament.payout is None:
            raise PayoutNotFound()
        return tournament.payout
