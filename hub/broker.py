"""
hub/broker.py - Post-write fan-out: live bracket snapshots and notifications.

BracketBroker is the subscriber registry (tournament id -> handlers). One
instance per process, owned by the service, never module-global. Publishing
is fire-and-forget: a failing handler is logged and dropped from that call,
and the write that triggered it has already been persisted. Handlers run
inside the write, so they must hand off and return without blocking.
"""

import logging
import threading
import uuid
from typing import Any, Callable, Protocol, runtime_checkable

from bracketry.models import Bracket, Payout, Team, Tournament

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]
Handler = Callable[[Snapshot], None]


class BracketBroker:
    """Live update channel keyed by tournament id."""

    def __init__(self):
        self._lock = threading.Lock()
        # token -> (tournament_id, handler)
        self._subscriptions: dict[str, tuple[str, Handler]] = {}

    def subscribe(self, tournament_id: str, handler: Handler) -> str:
        """Register ``handler`` for snapshots of one tournament.

        Handlers run on the writer's thread while the tournament is locked,
        which keeps snapshots in write order. They must not block: hand the
        snapshot off (queue it, schedule it on a loop) and return.
        """
        token = str(uuid.uuid4())
        with self._lock:
            self._subscriptions[token] = (tournament_id, handler)
        logger.debug(f"Subscribed {token} to {tournament_id}")
        return token

    def unsubscribe(self, token: str) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def subscriber_count(self, tournament_id: str) -> int:
        with self._lock:
            return sum(1 for tid, _ in self._subscriptions.values() if tid == tournament_id)

    def publish(self, tournament_id: str, snapshot: Snapshot) -> int:
        """Deliver a full snapshot to every subscriber. Returns handlers reached."""
        with self._lock:
            handlers = [h for tid, h in self._subscriptions.values() if tid == tournament_id]

        delivered = 0
        for handler in handlers:
            try:
                handler(snapshot)
                delivered += 1
            except Exception as e:
                logger.warning(f"Bracket subscriber for {tournament_id} failed: {e}")
        return delivered


# ======================================================================
# Notifications
# ======================================================================


@runtime_checkable
class NotificationSink(Protocol):
    """Accepts batches of {userId, message, metadata}. Delivery is elsewhere."""

    def enqueue(self, batch: list[dict[str, Any]]) -> None: ...


class DBNotificationSink:
    """Writes notifications into the bracket store's notifications table."""

    def __init__(self, db):
        self._db = db

    def enqueue(self, batch: list[dict[str, Any]]) -> None:
        if batch:
            self._db.add_notifications(batch)


def payout_notifications(
    tournament: Tournament, payout: Payout, teams: dict[str, Team]
) -> list[dict[str, Any]]:
    """One message per member of every team that earned something."""
    batch = []
    for award in payout.awards:
        team = teams.get(award.team_id)
        if award.amount <= 0 or team is None:
            continue
        for member_id in dict.fromkeys(team.members):
            batch.append({
                "userId": member_id,
                "message": (
                    f"Your team earned ${award.amount:.2f} for place {award.place} "
                    f"in {tournament.title}"
                ),
                "metadata": {
                    "teamId": award.team_id,
                    "place": award.place,
                    "tournamentId": tournament.id,
                },
            })
    return batch


class ChangeNotifier:
    """Called by the service after every successful write."""

    def __init__(self, broker: BracketBroker, sink: NotificationSink | None = None):
        self.broker = broker
        self.sink = sink

    def bracket_changed(self, bracket: Bracket) -> None:
        try:
            self.broker.publish(bracket.tournament_id, bracket.to_dict())
        except Exception as e:
            logger.warning(f"Bracket broadcast for {bracket.tournament_id} failed: {e}")

    def payout_settled(
        self, tournament: Tournament, payout: Payout, teams: dict[str, Team]
    ) -> int:
        """Queue payout notifications. Returns the number queued (0 on failure)."""
        if self.sink is None:
            return 0
        batch = payout_notifications(tournament, payout, teams)
        try:
            self.sink.enqueue(batch)
        except Exception as e:
            logger.warning(f"Payout notifications for {tournament.id} failed: {e}")
            return 0
        return len(batch)
