"""
Flask-Passkeys error taxonomy.

Every error that may reach a client derives from PasskeyError and carries
the HTTP status it maps to. The blueprint renders them as {"error": message}.
"""


class PasskeyError(Exception):
    """Base class for errors rendered to the client."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequest(PasskeyError):
    """Malformed input, missing session, or a rejected registration response."""
    status_code = 400


class Unauthorized(PasskeyError):
    """Login verification failed."""
    status_code = 401


class NotFound(PasskeyError):
    status_code = 404


class DuplicateUsername(PasskeyError):
    status_code = 409


class InternalError(PasskeyError):
    """Engine or storage failure. The message must stay generic."""
    status_code = 500


class InfrastructureError(InternalError):
    """The backing store could not be read or written."""


class InvalidHandle(ValueError):
    """A user handle could not be decoded into a user id."""


class VerificationError(Exception):
    """The ceremony engine rejected a client response."""
