from __future__ import annotations


class ArenaError(Exception):
    """Base for every error the engine raises to its callers."""
    status_code = 400
    code = "arena_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)


# ---------- validation (rejected before anything is written) ----------

class ValidationFailed(ArenaError):
    status_code = 422
    code = "validation_failed"

class InvalidWager(ValidationFailed):
    """Wager is outside the allowed range."""
    code = "invalid_wager"

class InvalidBet(ValidationFailed):
    """Bet amount is outside the allowed range."""
    code = "invalid_bet"

class InvalidDuration(ValidationFailed):
    """Challenge duration is outside the allowed range."""
    code = "invalid_duration"

class SelfChallenge(ValidationFailed):
    """You cannot challenge yourself."""
    code = "self_challenge"

class UnknownOpponent(ValidationFailed):
    """Opponent is not a registered user."""
    code = "unknown_opponent"

class InvalidTarget(ValidationFailed):
    """Bet target is not a participant of this challenge."""
    code = "invalid_target"


# ---------- conflicts (state changed under the caller) ----------

class Conflict(ArenaError):
    status_code = 409
    code = "conflict"

class AlreadyDecided(Conflict):
    """Challenge is no longer pending."""
    code = "already_decided"

class ChallengeFull(Conflict):
    """Challenge has reached its maximum number of participants."""
    code = "challenge_full"

class AlreadyJoined(Conflict):
    """You have already joined this challenge."""
    code = "already_joined"

class DuplicateBet(Conflict):
    """You have already placed a bet on this challenge."""
    code = "duplicate_bet"

class DuplicateChallenge(Conflict):
    """A pending or active challenge between these users already exists."""
    code = "duplicate_challenge"

class WrongStatus(Conflict):
    """Challenge is not accepting this action in its current status."""
    code = "wrong_status"

class WrongParticipant(Conflict):
    """You are not the named opponent of this challenge."""
    code = "wrong_participant"

class ChallengeNotActive(Conflict):
    """This challenge is not active."""
    code = "challenge_not_active"

class BettingClosed(Conflict):
    """Betting has closed for this challenge."""
    code = "betting_closed"

class IsParticipant(Conflict):
    """You cannot bet on a challenge you are participating in."""
    code = "is_participant"

class IsBettor(Conflict):
    """You cannot join a challenge you have bet on."""
    code = "is_bettor"


# ---------- lookups / permissions ----------

class NotFound(ArenaError):
    """Challenge not found."""
    status_code = 404
    code = "not_found"

class UnknownAccount(NotFound):
    """Account not found."""
    code = "unknown_account"

class Forbidden(ArenaError):
    """Not allowed."""
    status_code = 403
    code = "forbidden"


# ---------- ledger ----------

class InsufficientFunds(ArenaError):
    """Insufficient GP balance."""
    status_code = 402
    code = "insufficient_funds"


# ---------- external dependencies ----------

class SourceUnavailable(ArenaError):
    """Leaderboard source is temporarily unavailable."""
    status_code = 503
    code = "source_unavailable"
