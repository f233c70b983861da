"""
bracketry/errors.py - Exception taxonomy for bracket operations.

Every rejection is a BracketError subclass with a stable ``code`` (the name
clients match on) and a ``category`` the HTTP layer maps to a status code.
Engine functions raise these before touching any state.
"""


class BracketError(Exception):
    """Base class for all rejected bracket operations."""

    code = "BracketError"
    category = "validation"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    default_message = "Bracket operation rejected"

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": str(self)}


class ValidationError(BracketError):
    category = "validation"


class ConflictError(BracketError):
    category = "conflict"


class NotFoundError(BracketError):
    category = "not_found"


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------


class InsufficientParticipants(ValidationError):
    code = "InsufficientParticipants"
    default_message = "Not enough teams to start"


class InvalidFormatConfiguration(ValidationError):
    code = "InvalidFormatConfiguration"
    default_message = "Double elimination requires power-of-two teams and at least 4"


class MatchHasNoParticipants(ValidationError):
    code = "MatchHasNoParticipants"
    default_message = "Match has no participants"


class MatchRequiresScoresOrWinner(ValidationError):
    code = "MatchRequiresScoresOrWinner"
    default_message = "Provide scores or a winner"


class WinnerChangeNotAllowed(ValidationError):
    code = "WinnerChangeNotAllowed"
    default_message = "Cannot edit scores to change winner after completion"


class SlotMismatch(ValidationError):
    code = "SlotMismatch"
    default_message = "Cannot override: winner slot mismatch"


class WinnerNotParticipant(ValidationError):
    code = "WinnerNotParticipant"
    default_message = "Winner must be one of the match participants"


class OverrideNotSupported(ValidationError):
    code = "OverrideNotSupported"
    default_message = "Override allowed only for single-elimination winners bracket"


class ConfigError(ValidationError):
    code = "ConfigError"
    default_message = "Invalid configuration"


# ----------------------------------------------------------------------
# State conflicts
# ----------------------------------------------------------------------


class MatchAlreadyCompleted(ConflictError):
    code = "MatchAlreadyCompleted"
    default_message = "Match already completed"


class MatchNotCompleted(ConflictError):
    code = "MatchNotCompleted"
    default_message = "Match is not completed yet"


class DownstreamAlreadyDecided(ConflictError):
    code = "DownstreamAlreadyDecided"
    default_message = "Cannot override: next match already decided"


class WinnerAlreadyPropagated(ConflictError):
    code = "WinnerAlreadyPropagated"
    default_message = "Cannot reset: winner already propagated"


class FinalNotCompleted(ConflictError):
    code = "FinalNotCompleted"
    default_message = "Final not completed yet"


class BracketNotGenerated(ConflictError):
    code = "BracketNotGenerated"
    default_message = "Bracket not generated"


class TournamentAlreadySettled(ConflictError):
    code = "TournamentAlreadySettled"
    default_message = "Tournament has already been paid out"


# ----------------------------------------------------------------------
# Not found
# ----------------------------------------------------------------------


class BracketNotFound(NotFoundError):
    code = "BracketNotFound"
    default_message = "Bracket not found"


class MatchNotFound(NotFoundError):
    code = "MatchNotFound"
    default_message = "Match not found"


class TournamentNotFound(NotFoundError):
    code = "TournamentNotFound"
    default_message = "Tournament not found"


class TeamNotFound(NotFoundError):
    code = "TeamNotFound"
    default_message = "Team not found"


class PayoutNotFound(NotFoundError):
    code = "PayoutNotFound"
    default_message = "Payout not completed"
