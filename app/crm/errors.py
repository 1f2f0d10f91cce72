from __future__ import annotations

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


class CrmApiError(RuntimeError):
    """Base class for failures reported by (or on the way to) the CRM backend."""

    status_code: int | None = None

    def __init__(self, message: str | None = None, *, status_code: int | None = None, detail: str | None = None):
        super().__init__(message or GENERIC_ERROR_MESSAGE)
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail

    @property
    def message(self) -> str:
        return str(self)


class AuthenticationFailure(CrmApiError):
    """401. Handled globally: the session is torn down and the user sent to login."""

    status_code = 401


class RequestFailure(CrmApiError):
    """Failures that are converted to a message at the call site."""


class AuthorizationFailure(RequestFailure):
    status_code = 403


class NotFound(RequestFailure):
    status_code = 404


class Conflict(RequestFailure):
    status_code = 409


class BadRequest(RequestFailure):
    status_code = 400


class ServerFailure(RequestFailure):
    """5xx, unexpected statuses and network errors."""


def user_message(err: RequestFailure, entity: str = "record") -> str:
    """Message shown to the user for a failure caught at the call site."""
    if isinstance(err, AuthorizationFailure):
        return "You do not have permission to perform this action."
    if isinstance(err, NotFound):
        return f"The {entity} was not found."
    if isinstance(err, (BadRequest, Conflict)):
        return err.detail or f"The {entity} could not be saved."
    if err.detail:
        return f"Server error: {err.detail}. Please try again."
    return "The server could not complete the request. Please try again."


class ValidationFailure(ValueError):
    """Client-side field checks failed; the request was never sent."""

    def __init__(self, errors: dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors
