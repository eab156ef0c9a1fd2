from __future__ import annotations


class EscrowError(Exception):
    """Base class for every money-movement failure raised by this package."""

    status_code = 400
    code = "ESCROW_ERROR"

    def to_dict(self) -> dict:
        return {"status": "failed", "code": self.code, "message": str(self) or self.code}


class InsufficientFundsError(EscrowError):
    status_code = 402
    code = "INSUFFICIENT_FUNDS"


class InvalidAmountError(EscrowError):
    status_code = 400
    code = "INVALID_AMOUNT"


class EscrowNotFoundError(EscrowError):
    status_code = 404
    code = "ESCROW_NOT_FOUND"


class EscrowNotHeldError(EscrowError):
    """The record is not in the state the operation needs (includes losing a race)."""

    status_code = 409
    code = "ESCROW_NOT_HELD"

    def __init__(self, message: str = "", *, state: str | None = None):
        super().__init__(message or "Escrow is not held; it may already have been resolved")
        self.state = state


class DuplicateReferenceError(EscrowError):
    """A completed ledger entry already exists for this gateway reference."""

    status_code = 409
    code = "DUPLICATE_REFERENCE"

    def __init__(self, reference: str, existing=None):
        super().__init__(f"Reference {reference} already applied")
        self.reference = reference
        self.existing = existing


class GatewayError(EscrowError):
    status_code = 502
    code = "GATEWAY_ERROR"
    retryable = True


class GatewayTimeoutError(GatewayError):
    status_code = 504
    code = "GATEWAY_TIMEOUT"


class GatewayUnavailableError(GatewayError):
    status_code = 502
    code = "GATEWAY_UNAVAILABLE"


class GatewayNotConfiguredError(GatewayError):
    status_code = 500
    code = "GATEWAY_NOT_CONFIGURED"
    retryable = False


class WebhookAuthenticationError(EscrowError):
    status_code = 401
    code = "WEBHOOK_UNAUTHORIZED"


class LedgerInvariantError(EscrowError):
    """A settlement tried to move more money than the escrow held. Always a bug."""

    status_code = 500
    code = "LEDGER_INVARIANT_VIOLATION"


class WithdrawalError(EscrowError):
    status_code = 400
    code = "WITHDRAWAL_FAILED"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


class InvalidRulingError(EscrowError):
    status_code = 400
    code = "INVALID_RESOLUTION"


class InvalidTransitionError(EscrowError):
    """The requested move is not allowed from the record's current state."""

    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, message: str, *, state: str | None = None):
        super().__init__(message)
        self.state = state


class InvalidReferenceError(EscrowError):
    status_code = 400
    code = "INVOICE_REQUIRED"
