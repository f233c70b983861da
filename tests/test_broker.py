"""Tests for hub.broker: subscriber registry and payout notifications."""

from bracketry.models import Award, Bracket, Payout, Team, Tournament
from hub.broker import BracketBroker, ChangeNotifier, payout_notifications


class RecordingSink:
    def __init__(self):
        self.batches = []

    def enqueue(self, batch):
        self.batches.append(batch)


class BrokenSink:
    def enqueue(self, batch):
        raise ConnectionError("notification service down")


class TestBracketBroker:
    def test_publish_reaches_subscribers_of_that_tournament(self):
        broker = BracketBroker()
        seen_a, seen_b = [], []
        broker.subscribe("a", seen_a.append)
        broker.subscribe("b", seen_b.append)

        delivered = broker.publish("a", {"tournamentId": "a"})
        assert delivered == 1
        assert seen_a == [{"tournamentId": "a"}]
        assert seen_b == []

    def test_unsubscribe(self):
        broker = BracketBroker()
        seen = []
        token = broker.subscribe("a", seen.append)
        assert broker.unsubscribe(token) is True
        assert broker.unsubscribe(token) is False
        broker.publish("a", {})
        assert seen == []
        assert broker.subscriber_count("a") == 0

    def test_failing_handler_does_not_stop_others(self):
        broker = BracketBroker()
        seen = []

        def boom(snapshot):
            raise RuntimeError("viewer went away")

        broker.subscribe("a", boom)
        broker.subscribe("a", seen.append)
        assert broker.publish("a", {"n": 1}) == 1
        assert seen == [{"n": 1}]

    def test_publish_without_subscribers(self):
        assert BracketBroker().publish("nobody", {}) == 0

    def test_separate_brokers_are_independent(self):
        first, second = BracketBroker(), BracketBroker()
        seen = []
        first.subscribe("a", seen.append)
        second.publish("a", {})
        assert seen == []


class TestPayoutNotifications:
    def _payout(self):
        return Payout(
            total=100.0,
            awards=(Award(1, "red", 60.0), Award(2, "blue", 40.0), Award(3, "green", 0.0)),
            timestamp="2026-01-01T00:00:00+00:00",
        )

    def test_one_message_per_member(self):
        tournament = Tournament(id="t1", title="Spring Cup")
        teams = {
            "red": Team("red", "Red", ["u1", "u2"]),
            "blue": Team("blue", "Blue", ["u3"]),
        }
        batch = payout_notifications(tournament, self._payout(), teams)
        assert [n["userId"] for n in batch] == ["u1", "u2", "u3"]
        assert batch[0]["message"] == "Your team earned $60.00 for place 1 in Spring Cup"
        assert batch[2]["metadata"] == {"teamId": "blue", "place": 2, "tournamentId": "t1"}

    def test_zero_awards_and_unknown_teams_skipped(self):
        tournament = Tournament(id="t1")
        teams = {"green": Team("green", "Green", ["u9"])}
        assert payout_notifications(tournament, self._payout(), teams) == []

    def test_notifier_swallows_sink_failure(self):
        notifier = ChangeNotifier(BracketBroker(), BrokenSink())
        teams = {"red": Team("red", "Red", ["u1"])}
        assert notifier.payout_settled(Tournament(id="t1"), self._payout(), teams) == 0

    def test_notifier_enqueues_one_batch(self):
        sink = RecordingSink()
        notifier = ChangeNotifier(BracketBroker(), sink)
        teams = {"red": Team("red", "Red", ["u1"])}
        assert notifier.payout_settled(Tournament(id="t1"), self._payout(), teams) == 1
        assert len(sink.batches) == 1

    def test_bracket_changed_publishes_full_snapshot(self):
        broker = BracketBroker()
        seen = []
        broker.subscribe("t1", seen.append)
        ChangeNotifier(broker).bracket_changed(Bracket(tournament_id="t1", kind="single"))
        assert seen[0]["tournamentId"] == "t1"
        assert set(seen[0]["rounds"]) == {"winners", "losers", "grand"}
