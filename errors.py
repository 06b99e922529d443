# errors.py
"""Error taxonomy shared by the swap pipeline and the trade ledger.

Every error carries a short machine readable ``code`` next to the human
message, so callers can branch on the kind of failure without parsing text.
"""


class TradingError(Exception):
    """Base error for the trading core."""

    code = "TRADING_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidArgument(TradingError, ValueError):
    """Malformed numeric input to a pure calculation (fee math, folding)."""

    code = "INVALID_ARGUMENT"


class InvalidInput(TradingError):
    """Bad address, non-positive amount or undecodable credential."""

    code = "INVALID_INPUT"


class InsufficientFunds(TradingError):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance: required {required} lamports, available {available} lamports"
        )


class QuoteUnavailable(TradingError):
    code = "QUOTE_UNAVAILABLE"


class NoRoute(QuoteUnavailable):
    code = "NO_ROUTE"


class SubmissionFailed(TradingError):
    """Transaction rejected before inclusion, or included with an error."""

    code = "SUBMISSION_FAILED"


class ConfirmationTimeout(TradingError):
    """Transaction submitted but its outcome is unknown."""

    code = "CONFIRMATION_TIMEOUT"

    def __init__(self, signature: str, message: str) -> None:
        self.signature = signature
        super().__init__(message)


class NotFound(TradingError):
    code = "NOT_FOUND"


class RateUnavailable(TradingError):
    code = "RATE_UNAVAILABLE"


class ConcurrentUpdate(TradingError):
    """The stored user changed between load and save."""

    code = "CONCURRENT_UPDATE"
