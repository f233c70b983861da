"""
Bracketry - Elimination bracket engine

Builds single and double elimination brackets, applies results with
propagation, supports administrative corrections and settles prize pools.
"""

__version__ = "0.1.0"

from .models import (
    # Data types
    Award,
    Bracket,
    Match,
    Payout,
    Round,
    Team,
    Tournament,
)

from .builder import generate_bracket
from .results import report_match
from .corrections import edit_scores, override_winner, reset_match
from .payout import compute_payout, compute_placements, parse_prize_pool

from .errors import BracketError

__all__ = [
    # Version
    "__version__",
    # Data model
    "Award",
    "Bracket",
    "Match",
    "Payout",
    "Round",
    "Team",
    "Tournament",
    # Engine
    "generate_bracket",
    "report_match",
    "edit_scores",
    "override_winner",
    "reset_match",
    "compute_payout",
    "compute_placements",
    "parse_prize_pool",
    # Errors
    "BracketError",
]
