"""
bracketry/results.py - Applying match results and propagating them.

report_match() validates everything first, then completes the match and
pushes its outcome downstream:

    winners match, not final    -> winner into next winners round
    winners final (double)      -> winner into grand final team1
    winners match (double)      -> loser into first empty losers slot
    losers final (double)       -> winner into grand final team2

Propagation is first-writer-wins: an occupied slot is never overwritten.
"""

import logging

from .errors import (
    MatchAlreadyCompleted,
    MatchHasNoParticipants,
    MatchNotFound,
    MatchRequiresScoresOrWinner,
    WinnerNotParticipant,
)
from .models import COMPLETED, DOUBLE, GRAND, LOSERS, WINNERS, Bracket, Match, now_iso

logger = logging.getLogger(__name__)


def get_match(bracket: Bracket, match_id: str) -> Match:
    match = bracket.find_match(match_id)
    if match is None:
        raise MatchNotFound(f"Match not found: {match_id}")
    return match


def decide_winner(match: Match, score1: float, score2: float) -> str | None:
    """Higher score wins. Equal scores go to team1; a lone participant always wins."""
    if match.team1_id and match.team2_id:
        return match.team2_id if score2 > score1 else match.team1_id
    return match.team1_id or match.team2_id


def downstream_slot(bracket: Bracket, match: Match) -> tuple[Match, str] | None:
    """Where a winners-bracket winner goes next: (match, "team1_id"|"team2_id").

    None for the winners final and for non-winners matches.
    """
    if match.side != WINNERS or bracket.is_last_round(match):
        return None
    target = bracket.match_at(WINNERS, match.round + 1, match.index // 2)
    if target is None:
        return None
    return target, "team1_id" if match.index % 2 == 0 else "team2_id"


def _fill(target: Match, slot: str, team_id: str) -> bool:
    if getattr(target, slot):
        return False
    setattr(target, slot, team_id)
    return True


def propagate_winner(bracket: Bracket, match: Match) -> None:
    if match.side != WINNERS or not match.winner_id:
        return
    if bracket.is_last_round(match):
        grand = bracket.grand_final
        if bracket.kind == DOUBLE and grand is not None:
            if _fill(grand, "team1_id", match.winner_id):
                logger.debug(f"{match.winner_id} -> grand final {grand.id} (team1)")
        return
    slot = downstream_slot(bracket, match)
    if slot is None:
        return
    target, attr = slot
    if _fill(target, attr, match.winner_id):
        logger.debug(f"{match.winner_id} -> {target.id} ({attr})")


def propagate_loser(bracket: Bracket, match: Match) -> None:
    if bracket.kind != DOUBLE or match.side != WINNERS:
        return
    loser = match.loser_id
    if loser is None:
        return
    for rnd in bracket.losers:
        for target in rnd.matches:
            for attr in ("team1_id", "team2_id"):
                if _fill(target, attr, loser):
                    logger.debug(f"{loser} dropped to losers {target.id} ({attr})")
                    return
    logger.debug(f"No open losers slot for {loser}")


def advance_losers_champion(bracket: Bracket, match: Match) -> None:
    if bracket.kind != DOUBLE or match.side != LOSERS or not match.winner_id:
        return
    last = bracket.last_round(LOSERS)
    if last is None or last.round != match.round or last.matches[-1] is not match:
        return
    grand = bracket.grand_final
    if grand is not None and _fill(grand, "team2_id", match.winner_id):
        logger.debug(f"{match.winner_id} -> grand final {grand.id} (team2)")


def is_terminal(match: Match) -> bool:
    """Completing this match ends the tournament."""
    return match.side == GRAND and match.status == COMPLETED


def report_match(
    bracket: Bracket,
    match_id: str,
    score1: float | None = None,
    score2: float | None = None,
    winner_id: str | None = None,
) -> Match:
    """Complete a pending match and propagate. Mutates ``bracket`` in place."""
    match = get_match(bracket, match_id)
    if match.is_completed:
        raise MatchAlreadyCompleted(f"Match already completed: {match_id}")
    if not match.participants:
        raise MatchHasNoParticipants(f"Match has no participants: {match_id}")

    # An explicit winner takes precedence; scores sent alongside it are dropped
    if winner_id is not None:
        if winner_id not in match.participants:
            raise WinnerNotParticipant(
                f"{winner_id} is not playing in match {match_id}"
            )
        winner = winner_id
    elif score1 is not None and score2 is not None:
        winner = decide_winner(match, score1, score2)
        match.score1 = score1
        match.score2 = score2
    else:
        raise MatchRequiresScoresOrWinner()

    match.winner_id = winner
    match.status = COMPLETED
    match.completed_at = now_iso()

    propagate_winner(bracket, match)
    propagate_loser(bracket, match)
    advance_losers_champion(bracket, match)
    return match
