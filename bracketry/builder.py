"""
bracketry/builder.py - Initial bracket construction.

The draw is random, not seeded by rank: participants are shuffled, padded
with BYEs up to the next power of two, and paired into round one. A pairing
with a single real participant is completed on the spot and its winner is
written into round two, the same slot normal propagation would use. A
pairing of two BYEs stays pending with nobody in it; its round-two opponent
then plays alone and wins when reported.

Double elimination adds an empty losers bracket with as many rounds as the
winners bracket and a one-match grand final.
"""

import logging
import random

from .errors import InsufficientParticipants, InvalidFormatConfiguration
from .models import (
    COMPLETED,
    DOUBLE,
    FORMATS,
    GRAND,
    LOSERS,
    WINNERS,
    Bracket,
    Match,
    Round,
    now_iso,
)

logger = logging.getLogger(__name__)

LOSERS_ID_START = 1000


def next_power_of_two(n: int) -> int:
    p = 1
    while p < n:
        p <<= 1
    return p


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def validate_participants(fmt: str, participant_ids: list[str]) -> None:
    """Raise if this field can't produce a bracket of the given format."""
    if fmt not in FORMATS:
        raise InvalidFormatConfiguration(f"Unknown bracket format: {fmt!r}")
    n = len(participant_ids)
    if n < 2:
        raise InsufficientParticipants(f"Not enough teams to start ({n} given)")
    if fmt == DOUBLE and (n < 4 or not is_power_of_two(n)):
        raise InvalidFormatConfiguration(
            f"Double elimination requires power-of-two teams and at least 4 ({n} given)"
        )


def seed_slots(participant_ids: list[str], rng: random.Random | None = None) -> list[str | None]:
    """Shuffle, then pad the tail with BYEs (None) up to a power of two.

    Consecutive entries are paired, so with three or more BYEs the last
    round-one pairings can be BYE vs BYE. Those stay pending and empty.
    """
    rng = rng or random.Random()
    shuffled = list(participant_ids)
    rng.shuffle(shuffled)
    byes = next_power_of_two(len(shuffled)) - len(shuffled)
    return shuffled + [None] * byes


def _build_winners(tournament_id: str, slots: list[str | None]) -> list[Round]:
    rounds: list[Round] = []
    counter = 1

    first = Round(round=1)
    for i in range(0, len(slots), 2):
        match = Match(
            id=f"m{tournament_id}-{counter}",
            tournament_id=tournament_id,
            side=WINNERS,
            round=1,
            index=i // 2,
            team1_id=slots[i],
            team2_id=slots[i + 1],
        )
        counter += 1
        if len(match.participants) == 1:
            # BYE: walkover, no score recorded
            match.winner_id = match.participants[0]
            match.status = COMPLETED
            match.completed_at = now_iso()
        first.matches.append(match)
    rounds.append(first)

    size = len(first.matches)
    round_num = 2
    while size > 1:
        size //= 2
        rnd = Round(round=round_num)
        for index in range(size):
            rnd.matches.append(
                Match(
                    id=f"m{tournament_id}-{counter}",
                    tournament_id=tournament_id,
                    side=WINNERS,
                    round=round_num,
                    index=index,
                )
            )
            counter += 1
        rounds.append(rnd)
        round_num += 1

    # Walkover winners take their round-two slot right away
    if len(rounds) > 1:
        for match in first.matches:
            if match.winner_id:
                target = rounds[1].matches[match.index // 2]
                if match.index % 2 == 0:
                    target.team1_id = match.winner_id
                else:
                    target.team2_id = match.winner_id
    return rounds


def _build_losers(tournament_id: str, round_count: int) -> list[Round]:
    rounds = []
    counter = LOSERS_ID_START
    for r in range(1, round_count + 1):
        count = max(1, 2 ** max(0, round_count - r - 1))
        matches = []
        for index in range(count):
            matches.append(
                Match(
                    id=f"lm{tournament_id}-{counter}",
                    tournament_id=tournament_id,
                    side=LOSERS,
                    round=r,
                    index=index,
                )
            )
            counter += 1
        rounds.append(Round(round=r, matches=matches))
    return rounds


def _build_grand(tournament_id: str) -> list[Round]:
    final = Match(
        id=f"gm{tournament_id}-1",
        tournament_id=tournament_id,
        side=GRAND,
        round=1,
        index=0,
    )
    return [Round(round=1, matches=[final])]


def generate_bracket(
    tournament_id: str,
    fmt: str,
    participant_ids: list[str],
    rng: random.Random | None = None,
) -> Bracket:
    """Build a fresh bracket. Pure: persistence and idempotence live in the service."""
    # Duplicate registrations collapse to one entry
    participant_ids = list(dict.fromkeys(participant_ids))
    validate_participants(fmt, participant_ids)

    slots = seed_slots(participant_ids, rng)
    winners = _build_winners(tournament_id, slots)
    now = now_iso()
    bracket = Bracket(
        tournament_id=tournament_id,
        kind=fmt,
        winners=winners,
        created_at=now,
        updated_at=now,
    )
    if fmt == DOUBLE:
        bracket.losers = _build_losers(tournament_id, len(winners))
        bracket.grand = _build_grand(tournament_id)

    byes = sum(1 for s in slots if s is None)
    logger.debug(
        f"Generated {fmt} bracket for {tournament_id}: {len(participant_ids)} teams, "
        f"{byes} byes, {len(winners)} winners rounds"
    )
    return bracket
