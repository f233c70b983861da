"""
hub/db.py - SQLite storage for tournaments, brackets, teams and notifications.

All queries go through BracketDB. One instance per server lifetime,
backed by a single SQLite file (or :memory: for tests).

Tournaments and brackets are stored as JSON documents keyed by tournament id;
every write is an atomic upsert. Teams keep their balance in a real column so
payout credits are a single UPDATE.
"""

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from bracketry.models import Bracket, Payout, Team, Tournament, now_iso


class BracketDB:
    """Thin wrapper around SQLite for the bracket service."""

    def __init__(self, path: str = "brackets.db"):
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        # One connection is shared by the server's worker threads
        self._lock = threading.RLock()
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS tournaments (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS brackets (
                tournament_id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS teams (
                id TEXT PRIMARY KEY,
                name TEXT,
                members TEXT DEFAULT '[]',
                balance REAL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                message TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_user
                ON notifications(user_id, created_at);
            """
        )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    def upsert_tournament(self, tournament: Tournament) -> None:
        tournament.updated_at = now_iso()
        with self.transaction() as conn:
            self._write_tournament(conn, tournament)

    def _write_tournament(self, conn: sqlite3.Connection, tournament: Tournament) -> None:
        conn.execute(
            "INSERT INTO tournaments (id, data, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at",
            (tournament.id, json.dumps(tournament.to_dict()), tournament.updated_at),
        )

    def get_tournament(self, tournament_id: str) -> Tournament | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM tournaments WHERE id = ?", (tournament_id,)
            ).fetchone()
        return Tournament.from_dict(json.loads(row["data"])) if row else None

    def tournament_count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM tournaments").fetchone()[0]

    # ------------------------------------------------------------------
    # Brackets
    # ------------------------------------------------------------------

    def upsert_bracket(self, bracket: Bracket) -> None:
        bracket.updated_at = now_iso()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO brackets (tournament_id, data, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(tournament_id) DO UPDATE SET "
                "data = excluded.data, updated_at = excluded.updated_at",
                (bracket.tournament_id, json.dumps(bracket.to_dict()), bracket.updated_at),
            )

    def get_bracket(self, tournament_id: str) -> Bracket | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM brackets WHERE tournament_id = ?", (tournament_id,)
            ).fetchone()
        return Bracket.from_dict(json.loads(row["data"])) if row else None

    def bracket_count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM brackets").fetchone()[0]

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def upsert_team(self, team_id: str, name: str, members: list[str]) -> Team:
        """Create or update a team's name and roster. Balance is left alone."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO teams (id, name, members) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name, members = excluded.members",
                (team_id, name, json.dumps(list(dict.fromkeys(members)))),
            )
        return self.get_team(team_id)

    def get_team(self, team_id: str) -> Team | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
        if row is None:
            return None
        return Team(
            id=row["id"],
            name=row["name"] or "",
            members=json.loads(row["members"] or "[]"),
            balance=row["balance"] or 0.0,
        )

    # ------------------------------------------------------------------
    # Payout settlement
    # ------------------------------------------------------------------

    def settle_payout(self, tournament: Tournament, payout: Payout) -> None:
        """Credit every award and store the payout in one transaction.

        Unknown team ids are skipped (nothing to credit).
        """
        tournament.payout = payout
        tournament.updated_at = now_iso()
        with self.transaction() as conn:
            for award in payout.awards:
                if award.amount > 0:
                    conn.execute(
                        "UPDATE teams SET balance = balance + ? WHERE id = ?",
                        (award.amount, award.team_id),
                    )
            self._write_tournament(conn, tournament)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def add_notifications(self, batch: list[dict[str, Any]]) -> int:
        """Store a batch of {userId, message, metadata}. Returns count written."""
        now = now_iso()
        with self.transaction() as conn:
            conn.executemany(
                "INSERT INTO notifications (id, user_id, message, metadata, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (
                        str(uuid.uuid4()),
                        item["userId"],
                        item["message"],
                        json.dumps(item.get("metadata") or {}),
                        now,
                    )
                    for item in batch
                ],
            )
        return len(batch)

    def list_notifications(self, user_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM notifications WHERE user_id = ? ORDER BY created_at ASC, rowid ASC",
                (user_id,),
            ).fetchall()
        return [
            {
                "id": row["id"],
                "userId": row["user_id"],
                "message": row["message"],
                "metadata": json.loads(row["metadata"] or "{}"),
                "createdAt": row["created_at"],
            }
            for row in rows
        ]
