"""
Domain errors raised by the services and rendered by the handlers in app.main.

Messages are user-facing (French, like the rest of the UI); `details` carries
extra context such as the gateway's own explanation.
"""
from typing import Any, Dict, Optional


class LifecycleError(Exception):
    status_code = 400

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        error_code: Optional[str] = None,
        **extra: Any,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.error_code = error_code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message}
        if self.details:
            body["details"] = self.details
        if self.error_code:
            body["error_code"] = self.error_code
        body.update(self.extra)
        return body


class ValidationError(LifecycleError):
    status_code = 400


class NotFoundError(LifecycleError):
    # Also used for documents owned by another user, so existence is not leaked
    status_code = 404


class InvalidStateError(LifecycleError):
    status_code = 409


class ConflictError(LifecycleError):
    status_code = 409


class WindowExpiredError(LifecycleError):
    status_code = 400

    def __init__(self, message: str, details: Optional[str] = None, **extra: Any):
        super().__init__(
            message,
            details=details,
            error_code="payout-reversal-time-limit-exceeded",
            **extra,
        )


class ExternalServiceError(LifecycleError):
    status_code = 502
