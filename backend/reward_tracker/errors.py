"""Error taxonomy shared by the backend adapters, services and web layer.

Retryability is decided where an error is raised, never inferred later from
its message.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for all application errors."""

    status_code = 500
    code = "error"
    retryable = False

    def __init__(self, message: str = "", *, retryable: bool | None = None):
        super().__init__(message)
        self.message = message or self.__class__.__name__
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, "retryable": self.retryable}


class ConfigError(AppError):
    """Required configuration is missing; fatal at startup."""

    code = "config"


class AuthError(AppError):
    """Credential or session failure. Never retried automatically."""

    status_code = 401
    code = "auth"


class NetworkError(AppError):
    """Connectivity failure talking to the backend."""

    status_code = 503
    code = "network"
    retryable = True

    def __init__(self, message: str = "", *, timeout: bool = False, retryable: bool | None = None):
        # a timeout is reported once, not retried
        if retryable is None:
            retryable = not timeout
        super().__init__(message, retryable=retryable)
        self.timeout = timeout


class ValidationError(AppError):
    """Caller-supplied data failed a precondition."""

    status_code = 422
    code = "validation"


class InsufficientBalanceError(ValidationError):
    """A debit would take a balance below zero."""

    status_code = 402
    code = "insufficient_balance"


class ConflictError(AppError):
    """An invariant would be violated (duplicate active goal, duplicate submit)."""

    status_code = 409
    code = "conflict"


class StateError(AppError):
    """The entity is not in a valid source state for the operation."""

    status_code = 409
    code = "state"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
