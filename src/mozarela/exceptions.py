"""Error taxonomy shared by the services and the HTTP layer.

Each error carries the HTTP status it is rendered with; the handlers in
``mozarela.main`` turn them into ``{"error": message}`` responses.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class Unauthenticated(AppError):
    """No, unknown or expired session token."""

    status_code = 401


class Forbidden(AppError):
    """Valid session but not allowed (admin gate, CSRF, ownership)."""

    status_code = 403


class NotFound(AppError):
    status_code = 404


class ValidationFailed(AppError):
    """Malformed or inconsistent input; the caller has to fix and resubmit."""

    status_code = 400


class StorageFailure(AppError):
    status_code = 500


class ProviderNotConfigured(AppError):
    status_code = 501


class ProviderFailure(AppError):
    """The text-generation provider failed."""

    status_code = 502


class ProviderOverloaded(ProviderFailure):
    """Provider reported it is overloaded (HTTP 503)."""

    status_code = 503


class RateLimited(AppError):
    """Too many requests from one client; ``details["retry_after"]`` is in seconds."""

    status_code = 429
