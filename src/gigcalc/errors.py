from abc import ABC


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """


class NotFoundError(UserError):
    """Raised when a requested resource is not found or is not owned by the caller."""

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message)


class AuthenticationError(UserError):
    """Raised when the request carries no valid session."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class SessionNotFoundError(AuthenticationError):
    """Session handle is unknown or was revoked."""


class SessionExpiredError(AuthenticationError):
    """Session handle was found but its lifetime has elapsed."""


class InvalidCredentialError(UserError):
    """Raised when an identity-provider credential is expired, malformed or badly signed.

    The message is always the generic sign-in failure text; provider detail
    is kept in ``detail`` for logging only.
    """

    def __init__(self, detail: str = "") -> None:
        super().__init__("Sign-in failed, please try again")
        self.detail = detail


class ExchangeFailedError(InvalidCredentialError):
    """Raised when the identity provider rejects an authorization code exchange."""


class ValidationError(UserError):
    """Raised when user input fails validation."""


class TransientError(Exception):
    """Timeout or connection failure talking to the identity provider or the database.

    Safe to retry by the caller. Never reported as an authentication failure.
    """

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(message)
