"""
Error taxonomy shared by the recommendation and referral services.

Every failure is scoped to a single operation; none of these is fatal to the process.
"""


class EngineError(Exception):
    """Base class for all engine errors."""

    default_message = "Engine error"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class NotFoundError(EngineError):
    """Referenced tracking record, referral or user does not exist. Caller may treat as no-op or re-fetch."""

    default_message = "Record not found"


class ConflictError(EngineError):
    """A concurrent mutation won the race on a conditional update. Retry the whole operation once."""

    default_message = "Concurrent update conflict"


class InvalidTransitionError(EngineError):
    """The recommendation state machine does not allow the requested move."""

    default_message = "Invalid status transition"


class CandidateSourceError(EngineError):
    """The external candidate source failed. Retryable."""

    default_message = "Candidate source unavailable"


class ReferralError(EngineError):
    """Referral redemption rejected. User visible, not retryable as-is."""

    code = "referral_error"


class InvalidCodeError(ReferralError):
    code = "invalid_code"
    default_message = "Invalid referral code"


class SelfReferralError(ReferralError):
    code = "self_referral"
    default_message = "Cannot refer yourself"


class DuplicateReferralError(ReferralError):
    code = "duplicate_referral"
    default_message = "User already referred"
