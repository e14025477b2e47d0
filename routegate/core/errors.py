"""Project error hierarchy and the caller-visible error mapping."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError


class RouteGateError(Exception):
    """Base error."""


class MalformedJSON(RouteGateError):
    """Request body is not valid JSON."""


class InputValidationError(RouteGateError):
    """Request body does not match the chat request schema."""

    def __init__(self, details: list[dict[str, str]]) -> None:
        super().__init__("validation failed")
        self.details = details

    @classmethod
    def from_pydantic(cls, exc: ValidationError) -> "InputValidationError":
        details = [
            {
                "path": ".".join(str(part) for part in item.get("loc", ())),
                "message": str(item.get("msg", "")),
            }
            for item in exc.errors()
        ]
        return cls(details)


class InvalidModelConfig(RouteGateError):
    """Raised by the model resolver for an unusable fast/slow selector."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        suffix = f" ({self.field})" if self.field else ""
        return f"Invalid model configuration: {self.message}{suffix}"


class ClientDisconnected(RouteGateError):
    """The caller went away; not a failure, ends the request with 499."""


class BackendError(RouteGateError):
    """Base for failures reported by (or while reaching) a backend."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class BackendAuthError(BackendError):
    """Credential rejected by the backend."""


class BackendNotFound(BackendError):
    """Backend does not know the requested model."""


class BackendRateLimited(BackendError):
    """Backend refused the call because of rate limiting."""


class UnclassifiedBackendError(BackendError):
    """Any other backend failure, including transport errors."""


def backend_error_for_status(status_code: int, detail: str) -> BackendError:
    if status_code in {401, 403}:
        return BackendAuthError(detail, status_code)
    if status_code == 404:
        return BackendNotFound(detail, status_code)
    if status_code == 429:
        return BackendRateLimited(detail, status_code)
    return UnclassifiedBackendError(detail, status_code)


CLIENT_CLOSED_REQUEST = 499


@dataclass(frozen=True, slots=True)
class ErrorOutcome:
    status_code: int
    body: dict[str, Any] | None = field(default=None)


def classify_error(exc: BaseException) -> ErrorOutcome:
    """Map any failure to the status and JSON body the caller sees."""

    if isinstance(exc, ClientDisconnected):
        return ErrorOutcome(status_code=CLIENT_CLOSED_REQUEST)
    if isinstance(exc, InputValidationError):
        return ErrorOutcome(400, {"error": "Validation failed", "details": exc.details})
    if isinstance(exc, ValidationError):
        return classify_error(InputValidationError.from_pydantic(exc))
    if isinstance(exc, MalformedJSON):
        return ErrorOutcome(400, {"error": "Invalid JSON in request body"})
    if isinstance(exc, InvalidModelConfig):
        return ErrorOutcome(400, {"error": str(exc)})
    if isinstance(exc, BackendAuthError):
        return ErrorOutcome(401, {"error": "Invalid API key"})
    if isinstance(exc, BackendNotFound):
        return ErrorOutcome(404, {"error": "Model not found"})
    if isinstance(exc, BackendRateLimited):
        return ErrorOutcome(429, {"error": "Rate limit exceeded"})
    return ErrorOutcome(500, {"error": "Model proxy failed"})
