"""
bracketry/corrections.py - Administrative fixes to completed matches.

Three tools, in increasing order of reach:

    edit_scores      change scores, never the winner
    override_winner  swap the winner and repair the one downstream slot
                     (single elimination, winners side only)
    reset_match      back to pending, only while nothing downstream has
                     seen the winner

Each validates completely before mutating anything.
"""

import logging

from .errors import (
    DownstreamAlreadyDecided,
    MatchHasNoParticipants,
    MatchNotCompleted,
    OverrideNotSupported,
    SlotMismatch,
    WinnerAlreadyPropagated,
    WinnerChangeNotAllowed,
    WinnerNotParticipant,
)
from .models import GRAND, SINGLE, WINNERS, Bracket, Match
from .results import downstream_slot, get_match

logger = logging.getLogger(__name__)


def _require_completed(match: Match) -> None:
    if not match.is_completed:
        raise MatchNotCompleted(f"Match is not completed yet: {match.id}")
    if not match.participants:
        raise MatchHasNoParticipants(f"Match has no participants: {match.id}")


def _set_scores(match: Match, score1: float | None, score2: float | None) -> None:
    if score1 is not None:
        match.score1 = score1
    if score2 is not None:
        match.score2 = score2


def edit_scores(bracket: Bracket, match_id: str, score1: float, score2: float) -> Match:
    match = get_match(bracket, match_id)
    _require_completed(match)

    implied = match.winner_id
    if match.team1_id and match.team2_id and score1 != score2:
        implied = match.team1_id if score1 > score2 else match.team2_id
    if implied != match.winner_id:
        raise WinnerChangeNotAllowed(
            f"Scores {score1}-{score2} would make {implied} the winner of {match_id}"
        )

    match.score1 = score1
    match.score2 = score2
    return match


def override_winner(
    bracket: Bracket,
    match_id: str,
    new_winner_id: str,
    score1: float | None = None,
    score2: float | None = None,
) -> Match:
    match = get_match(bracket, match_id)
    _require_completed(match)
    if bracket.kind != SINGLE or match.side != WINNERS:
        raise OverrideNotSupported()
    if new_winner_id not in match.participants:
        raise WinnerNotParticipant(f"{new_winner_id} is not playing in match {match_id}")

    if new_winner_id == match.winner_id:
        _set_scores(match, score1, score2)
        return match

    old_winner = match.winner_id
    slot = downstream_slot(bracket, match)
    if slot is not None:
        target, attr = slot
        if target.is_completed or target.winner_id:
            raise DownstreamAlreadyDecided(f"Next match {target.id} already decided")
        if getattr(target, attr) != old_winner:
            raise SlotMismatch(
                f"{target.id} {attr} holds {getattr(target, attr)}, expected {old_winner}"
            )
        setattr(target, attr, new_winner_id)

    _set_scores(match, score1, score2)
    match.winner_id = new_winner_id
    logger.debug(f"Override {match_id}: {old_winner} -> {new_winner_id}")
    return match


def _downstream_matches(bracket: Bracket, match: Match):
    """Every match a result from ``match`` could have flowed into."""
    for rnd in bracket.rounds(match.side):
        if rnd.round > match.round:
            yield from rnd.matches
    if match.side != GRAND:
        yield from (m for rnd in bracket.grand for m in rnd.matches)


def reset_match(bracket: Bracket, match_id: str) -> Match:
    match = get_match(bracket, match_id)
    if match.is_completed and match.winner_id:
        for other in _downstream_matches(bracket, match):
            if other is not match and other.holds(match.winner_id):
                raise WinnerAlreadyPropagated(
                    f"Cannot reset {match_id}: {match.winner_id} already placed in {other.id}"
                )
    match.clear_result()
    return match
