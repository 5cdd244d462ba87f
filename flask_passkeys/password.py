"""
Password login fallback.

Kept behind PasswordVerifier so a real verifier (bcrypt, argon2, an
external directory) can replace the stub without touching the passkey
ceremonies.
"""

import hmac
from abc import ABC, abstractmethod


class PasswordVerifier(ABC):
    """Checks an email/password pair."""

    @abstractmethod
    def verify(self, email, password):
        """Return True when the credentials are valid"""
        pass


class StubPasswordVerifier(PasswordVerifier):
    """
    Accepts any email with the password "password".
    DO NOT USE IN PRODUCTION.
    """

    def __init__(self, accepted_password="password"):
        self.accepted_password = accepted_password

    def verify(self, email, password):
        if not isinstance(password, str):
            return False
        return hmac.compare_digest(password.encode(), self.accepted_password.encode())
