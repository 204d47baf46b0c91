"""
Error kinds raised by Sophia services.
Each carries the HTTP status the API layer renders it with.
"""


class SophiaError(Exception):
    """Base class for expected, user-facing service errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BusinessRuleError(SophiaError):
    """Request is well-formed but violates a business rule."""
    status_code = 400


class AuthenticationError(SophiaError):
    """Caller identity is missing, invalid or expired."""
    status_code = 401


class UnauthorizedError(SophiaError):
    """Entity exists but belongs to another owner."""
    status_code = 403


class NotFoundError(SophiaError):
    status_code = 404


class ConflictError(SophiaError):
    status_code = 409


class IntegrationError(SophiaError):
    """An external provider (Google Analytics, Stripe) call failed."""
    status_code = 502


class MissingAPIKeyError(Exception):
    """Raised when an LLM call is attempted without an API key."""
    pass
