"""
bracketry/payout.py - Final placements and prize distribution.

Pure functions: the service handles balances, notifications and making sure
a payout is only ever computed once.
"""

import logging
import math
import re
from dataclasses import dataclass, field

from .errors import FinalNotCompleted
from .models import DOUBLE, LOSERS, Award, Bracket, Payout, now_iso

logger = logging.getLogger(__name__)

DEFAULT_SPLIT = (0.60, 0.25, 0.15)

_NON_NUMERIC = re.compile(r"[^0-9.]")


@dataclass
class Placements:
    first: str | None = None
    second: str | None = None
    thirds: list[str] = field(default_factory=list)


def parse_prize_pool(value: float | int | str | None) -> float:
    """Lenient prize pool parsing: "$1,000" -> 1000.0, garbage -> 0.0."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if not value:
        return 0.0
    cleaned = _NON_NUMERIC.sub("", str(value))
    try:
        num = float(cleaned)
    except ValueError:
        logger.debug(f"Unparsable prize pool {value!r}, treating as 0")
        return 0.0
    return num if math.isfinite(num) else 0.0


def _placements_single(bracket: Bracket) -> Placements:
    winners = bracket.winners
    if not winners:
        return Placements()
    final = winners[-1].matches[-1]
    placements = Placements(first=final.winner_id, second=final.loser_id)
    if len(winners) >= 2:
        for match in bracket.winners[-2].matches:
            if match.loser_id:
                placements.thirds.append(match.loser_id)
    return placements


def _placements_double(bracket: Bracket) -> Placements:
    grand = bracket.grand_final
    if grand is None:
        return Placements()
    placements = Placements(first=grand.winner_id, second=grand.loser_id)
    last = bracket.last_round(LOSERS)
    if last is not None and last.matches and last.matches[-1].loser_id:
        placements.thirds.append(last.matches[-1].loser_id)
    return placements


def compute_placements(bracket: Bracket) -> Placements:
    """1st/2nd from the deciding match, 3rd from the round before it.

    Raises FinalNotCompleted when 1st or 2nd can't be determined yet.
    """
    if bracket.kind == DOUBLE:
        placements = _placements_double(bracket)
    else:
        placements = _placements_single(bracket)
    if not placements.first or not placements.second:
        raise FinalNotCompleted()
    return placements


def distribute(
    total: float,
    placements: Placements,
    split: tuple[float, float, float] = DEFAULT_SPLIT,
) -> list[Award]:
    """Split ``total`` across placements. Tied thirds share the 3rd-place cut.

    Each award is rounded to cents on its own; split shares are not
    reconciled against the nominal third-place amount.
    """
    first_share, second_share, third_share = split
    awards = [
        Award(place=1, team_id=placements.first, amount=round(total * first_share, 2)),
        Award(place=2, team_id=placements.second, amount=round(total * second_share, 2)),
    ]
    if placements.thirds:
        per_team = round(total * third_share / len(placements.thirds), 2)
        for team_id in placements.thirds:
            awards.append(Award(place=3, team_id=team_id, amount=per_team))
    return awards


def compute_payout(
    bracket: Bracket,
    prize_pool: float | int | str | None,
    split: tuple[float, float, float] = DEFAULT_SPLIT,
) -> Payout:
    placements = compute_placements(bracket)
    total = parse_prize_pool(prize_pool)
    awards = distribute(total, placements, split)
    logger.debug(
        f"Placements for {bracket.tournament_id}: 1st={placements.first} "
        f"2nd={placements.second} 3rd={placements.thirds}"
    )
    return Payout(total=round(total, 2), awards=tuple(awards), timestamp=now_iso())
