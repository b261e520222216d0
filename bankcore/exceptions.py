"""
Custom exception classes and FastAPI exception handlers.

Services raise these domain errors without importing HTTP concepts; the
handlers registered here translate them into consistent JSON responses:
    {"detail": "...", "error_type": "...", ...}

Exception hierarchy:
    BankAPIError (base)
    ├── ValidationError              — malformed or unacceptable request (422)
    │   ├── InsufficientFundsError   — debit exceeds balance + overdraft allowance
    │   └── LimitExceededError       — amount above the caller's movement limit
    ├── ConflictError                — concurrent-update race lost (409)
    │   ├── IdempotencyKeyConflictError — key already used by another caller
    │   └── InvalidTransitionError   — movement state machine violation
    ├── NotFoundError                — unknown resource (404)
    │   ├── AccountNotFoundError
    │   ├── MovementNotFoundError
    │   └── CardNotFoundError
    ├── AccountStateError            — account on hold / frozen / closed (409)
    ├── TransientStorageError        — retryable I/O failure or timeout (503)
    ├── PostApplyNotificationError   — notification failed after money moved
    ├── UnauthorizedAccessError      — resource belongs to someone else (403)
    ├── DuplicateEmailError          — signup with a registered email (409)
    └── InvalidCredentialsError      — bad login (401)

Every error carries a machine-readable `reason`. When a movement is rejected
the engine stores that reason on the movement as `failure_reason`.
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BankAPIError(Exception):
    """Base exception for all domain errors."""

    reason = "error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationError(BankAPIError):
    """
    Raised when a request is malformed or fails a business rule.

    Attributes:
        reason: Machine-readable cause, e.g. "same_account", "missing_fields".
    """

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        super().__init__(detail or reason.replace("_", " ").capitalize())


class InsufficientFundsError(ValidationError):
    """
    Raised when a debit would take the balance below what the account kind
    allows.

    Attributes:
        account_id: The account that lacks sufficient funds.
        requested_cents: The amount the caller tried to debit.
        available_cents: Balance plus overdraft allowance at validation time.
    """

    def __init__(
        self,
        account_id: uuid.UUID,
        requested_cents: int,
        available_cents: int,
    ):
        self.account_id = account_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__(
            "insufficient_funds",
            f"Insufficient funds: requested {requested_cents} cents, "
            f"available {available_cents} cents",
        )


class LimitExceededError(ValidationError):
    """Raised when an amount exceeds the caller's verification-gated limit."""

    def __init__(self, requested_cents: int, limit_cents: int):
        self.requested_cents = requested_cents
        self.limit_cents = limit_cents
        super().__init__(
            "limit_exceeded",
            f"Amount {requested_cents} cents exceeds your limit of "
            f"{limit_cents} cents; complete identity verification to raise it",
        )


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class ConflictError(BankAPIError):
    """Raised when a concurrent writer won a race for the same record."""

    reason = "concurrent_update"


class IdempotencyKeyConflictError(ConflictError):
    """Raised when an idempotency key was already used by a different caller."""

    reason = "idempotency_key_conflict"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Idempotency key {idempotency_key!r} is already in use")


class InvalidTransitionError(ConflictError):
    """Raised when a movement is asked to make a transition it does not allow."""

    reason = "invalid_transition"

    def __init__(self, movement_id: uuid.UUID, current: str, requested: str):
        self.movement_id = movement_id
        super().__init__(
            f"Movement {movement_id} cannot move from {current} to {requested}"
        )


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class NotFoundError(BankAPIError):
    """Raised when a requested resource does not exist."""

    reason = "not_found"


class AccountNotFoundError(NotFoundError):
    """Raised when a requested account does not exist."""

    reason = "account_not_found"

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class MovementNotFoundError(NotFoundError):
    """Raised when a requested movement does not exist."""

    reason = "movement_not_found"

    def __init__(self, movement_id: uuid.UUID):
        self.movement_id = movement_id
        super().__init__(f"Movement {movement_id} not found")


class CardNotFoundError(NotFoundError):
    reason = "card_not_found"

    def __init__(self, detail: str = "Card not found"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Account state, storage, notification
# ---------------------------------------------------------------------------

class AccountStateError(BankAPIError):
    """
    Raised when an account's status does not allow the operation.

    The reason names the status, e.g. "account_on_hold", "account_frozen".
    """

    _REASONS = {
        "hold": "account_on_hold",
        "frozen": "account_frozen",
        "closed": "account_closed",
    }

    def __init__(self, account_id: uuid.UUID, status: str, detail: str | None = None):
        self.account_id = account_id
        self.status = status
        self.reason = self._REASONS.get(status, "account_not_active")
        super().__init__(
            detail or f"Account {account_id} is {self.reason.replace('account_', '').replace('_', ' ')}"
        )


class TransientStorageError(BankAPIError):
    """
    Raised when the ledger could not be reached in time.

    Safe to retry with the same idempotency key: nothing was applied.
    """

    reason = "storage_unavailable"

    def __init__(self, detail: str = "Ledger temporarily unavailable", idempotency_key: str | None = None):
        self.idempotency_key = idempotency_key
        super().__init__(detail)


class PostApplyNotificationError(BankAPIError):
    """
    Raised by the notification dispatcher when delivery failed.

    Never reaches the client: the engine logs it and raises an operator alert,
    because the money has already moved.
    """

    reason = "notification_failed"

    def __init__(self, user_id: uuid.UUID | None, failures: list[str]):
        self.user_id = user_id
        self.failures = failures
        super().__init__(f"Notification delivery failed: {'; '.join(failures)}")


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class UnauthorizedAccessError(BankAPIError):
    """Raised when a user attempts to access a resource they don't own."""

    reason = "not_owner"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


class DuplicateEmailError(BankAPIError):
    """Raised when attempting to register with an email that's already in use."""

    reason = "duplicate_email"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class InvalidCredentialsError(BankAPIError):
    """Raised when login credentials are incorrect."""

    reason = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid email or password")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Handlers are looked up along the exception's MRO, so each subclass is
    served by its category handler unless it needs extra fields.
    """

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(
        request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "detail": exc.detail,
                "error_type": "validation",
                "reason": exc.reason,
                "requested_cents": exc.requested_cents,
                "available_cents": exc.available_cents,
            },
        )

    @app.exception_handler(ValidationError)
    async def validation_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,  # Unprocessable Entity — business rules reject the request
            content={"detail": exc.detail, "error_type": "validation", "reason": exc.reason},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(
        request: Request, exc: NotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": exc.detail, "error_type": "not_found", "reason": exc.reason},
        )

    @app.exception_handler(ConflictError)
    async def conflict_handler(
        request: Request, exc: ConflictError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": exc.detail, "error_type": "conflict", "reason": exc.reason},
        )

    @app.exception_handler(AccountStateError)
    async def account_state_handler(
        request: Request, exc: AccountStateError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": exc.detail, "error_type": "account_state", "reason": exc.reason},
        )

    @app.exception_handler(TransientStorageError)
    async def transient_storage_handler(
        request: Request, exc: TransientStorageError
    ) -> JSONResponse:
        # Generic message: the idempotency key is reserved, so a retry is safe
        return JSONResponse(
            status_code=503,
            content={
                "detail": "The request could not be completed right now. "
                          "Retry with the same idempotency key.",
                "error_type": "transient",
                "reason": exc.reason,
                "idempotency_key": exc.idempotency_key,
            },
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(UnauthorizedAccessError)
    async def unauthorized_access_handler(
        request: Request, exc: UnauthorizedAccessError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=403,
            content={"detail": exc.detail, "error_type": "unauthorized_access"},
        )

    @app.exception_handler(DuplicateEmailError)
    async def duplicate_email_handler(
        request: Request, exc: DuplicateEmailError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": exc.detail, "error_type": "duplicate_email"},
        )

    @app.exception_handler(InvalidCredentialsError)
    async def invalid_credentials_handler(
        request: Request, exc: InvalidCredentialsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={"detail": exc.detail, "error_type": "invalid_credentials"},
        )
