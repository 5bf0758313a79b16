"""Custom exception hierarchy for the ballot API."""

from __future__ import annotations


class AppError(Exception):
    """Base application error with a stable machine-readable code."""

    retryable = False

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Serialize the error in the API standard shape."""
        return {"error": self.message, "code": self.code}


class NotFoundError(AppError):
    """Raised when a requested resource does not exist."""

    def __init__(self, resource: str) -> None:
        super().__init__(message=f"{resource} not found", code="NOT_FOUND", status_code=404)


class ForbiddenError(AppError):
    """Raised when the user lacks permission for the action."""

    def __init__(self, reason: str = "You don't have permission") -> None:
        super().__init__(message=reason, code="FORBIDDEN", status_code=403)


class ConflictError(AppError):
    """Raised on duplicate/conflicting operations."""

    def __init__(self, reason: str, code: str = "CONFLICT") -> None:
        super().__init__(message=reason, code=code, status_code=409)


class UnauthorizedError(AppError):
    """Raised when the caller is not authenticated."""

    def __init__(self, reason: str = "Unauthorized") -> None:
        super().__init__(message=reason, code="UNAUTHORIZED", status_code=401)


class InvalidInputError(AppError):
    """Raised for request payload or parameter validation issues."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=reason, code="INVALID_INPUT", status_code=422)


class MalformedElectionError(AppError):
    """Raised when the backend returns an election record that cannot be voted on."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            message=f"Election data is incomplete: {reason}",
            code="MALFORMED_ELECTION",
            status_code=502,
        )


class LedgerNotConfiguredError(AppError):
    """Raised when a ledger write is attempted without a relayer account."""

    def __init__(self) -> None:
        super().__init__(
            message="Voting is not available: no relayer account is configured",
            code="LEDGER_NOT_CONFIGURED",
            status_code=503,
        )


class BackendUnavailableError(AppError):
    """Raised when the election backend cannot be reached."""

    retryable = True

    def __init__(self, reason: str = "The election backend is unavailable") -> None:
        super().__init__(message=reason, code="BACKEND_UNAVAILABLE", status_code=503)


class LedgerError(AppError):
    """Base class for ledger-side failures a voter may retry after re-checking."""

    retryable = True


class InsufficientFundsError(LedgerError):
    """Raised when the election contract cannot pay for another vote."""

    def __init__(self, balance: int, required: int) -> None:
        super().__init__(
            message="Contract balance too low to vote",
            code="INSUFFICIENT_FUNDS",
            status_code=409,
        )
        self.balance = balance
        self.required = required


class LedgerRejectedError(LedgerError):
    """Raised when the ledger reverts a call or transaction."""

    def __init__(self, reason: str = "The ledger rejected the transaction") -> None:
        super().__init__(message=reason, code="LEDGER_REJECTED", status_code=409)


class LedgerTimeoutError(LedgerError):
    """Raised when the ledger does not answer or finalize in time."""

    def __init__(self, reason: str = "Timed out waiting for the ledger") -> None:
        super().__init__(message=reason, code="LEDGER_TIMEOUT", status_code=504)


class NetworkError(LedgerError):
    """Raised on transient I/O failures talking to the ledger."""

    def __init__(self, reason: str = "Could not reach the ledger") -> None:
        super().__init__(message=reason, code="NETWORK_ERROR", status_code=503)
