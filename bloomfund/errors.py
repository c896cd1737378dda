"""
BloomFund Error Taxonomy

Every failure the payout engine can surface, with the HTTP status the API
layer renders it as. Routers never build error responses by hand; they let
these propagate to the exception handler registered in main.py.

Expected outcomes (user-facing, not error-log events):
- Ineligible, PayoutAccountRequired, PayoutAlreadyInProgress

Request-level:
- NotFound (404), Forbidden (403)

Operational (retryable):
- TransferSubmissionFailed (502), StoreUnavailable (503)
"""

from typing import Optional


class BloomFundError(Exception):
    """Base class for all payout engine errors."""

    status_code = 500
    retryable = False

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    def to_response(self) -> dict:
        return {"error": self.message}


class InvalidAmount(BloomFundError):
    status_code = 400


class Ineligible(BloomFundError):
    """Campaign failed the payout eligibility policy."""

    status_code = 400

    def __init__(self, reason: str, terminal: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.terminal = terminal


class PayoutAccountRequired(BloomFundError):
    """Creator has no usable Stripe Connect account."""

    status_code = 400

    def __init__(self, message: str = "Stripe Connect account required"):
        super().__init__(message)

    def to_response(self) -> dict:
        return {
            "error": self.message,
            "action": "setup_connect_account",
            "message": "You need to set up your Stripe Connect account to receive payouts",
        }


class PayoutAlreadyInProgress(BloomFundError):
    status_code = 409

    def __init__(self, message: str = "A payout for this campaign is already in progress"):
        super().__init__(message)


class NotFound(BloomFundError):
    status_code = 404


class Forbidden(BloomFundError):
    status_code = 403

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class TransferSubmissionFailed(BloomFundError):
    status_code = 502
    retryable = True

    def __init__(self, message: str = "Failed to submit payout transfer", payout_id: Optional[int] = None):
        super().__init__(message)
        self.payout_id = payout_id


class InvalidSignature(BloomFundError):
    status_code = 400

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class StoreConflict(BloomFundError):
    status_code = 409


class StoreUnavailable(BloomFundError):
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Database temporarily unavailable"):
        super().__init__(message)


class InvalidEventPayload(BloomFundError):
    """Verified webhook body that does not match the expected event shape."""

    status_code = 400
