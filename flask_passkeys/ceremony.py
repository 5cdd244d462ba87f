"""
ceremony.py — passkey ceremony orchestration for flask-passkeys

Carries registration and discoverable login from "challenge issued" to
"credential verified and persisted".

- Begin stores the engine's ceremony state under a correlation key.
- Finish takes that state (single-use) before anything else, so every
  finish attempt, successful or not, burns the challenge.
- Registration is keyed by username. Login uses one well-known slot unless
  per-request correlation is enabled, in which case begin mints a random
  key the client must echo back.
"""

from __future__ import annotations

import secrets
from typing import Any, Dict, Optional, Tuple

from .errors import (
    BadRequest,
    InfrastructureError,
    InternalError,
    InvalidHandle,
    NotFound,
    Unauthorized,
    VerificationError,
)
from .sessions import SessionStateStore
from .user_handle import decode_user_handle, encode_user_handle

LOGIN_SESSION_KEY = "login_session"

SHARED = "shared"
PER_REQUEST = "per_request"


class PasskeyCeremony:
    """
    Drives the four ceremony operations.

    Typical flow:
      1) register_begin(username) -> {"publicKey": {...}}
      2) browser: navigator.credentials.create({publicKey})
      3) register_finish(username, attestation) -> credential
      4) login_begin() -> ({"publicKey": {...}}, key)
      5) browser: navigator.credentials.get({publicKey})
      6) login_finish(assertion, key) -> (user, credential)
    """

    def __init__(
        self,
        storage,
        engine,
        sessions: Optional[SessionStateStore] = None,
        *,
        login_correlation: str = SHARED,
    ):
        if login_correlation not in (SHARED, PER_REQUEST):
            raise ValueError(f"Unknown login correlation mode: {login_correlation}")
        self.storage = storage
        self.engine = engine
        self.sessions = sessions if sessions is not None else SessionStateStore()
        self.login_correlation = login_correlation

    @staticmethod
    def _engine_user(user: Dict[str, Any]) -> Dict[str, Any]:
        engine_user = dict(user)
        engine_user["handle"] = encode_user_handle(user["id"])
        return engine_user

    # ==================== Registration ====================

    def register_begin(self, username: Optional[str]) -> Dict[str, Any]:
        """Provision the user if needed and issue a creation challenge."""
        if not username:
            raise BadRequest("Username required")

        try:
            user = self.storage.get_or_create_user(username, username)
        except InfrastructureError as e:
            raise InternalError("Failed to create user") from e

        try:
            credentials = self.storage.list_credentials(user["id"])
        except InfrastructureError as e:
            raise InternalError("Failed to load credentials") from e

        try:
            options, state = self.engine.begin_registration(
                self._engine_user(user),
                credentials,
                resident_key="required",
            )
        except Exception as e:
            raise InternalError("Failed to begin registration") from e

        self.sessions.put(username, state)
        return options

    def register_finish(self, username: Optional[str], response: Any) -> Dict[str, Any]:
        """Verify an attestation against the stored challenge and save the credential."""
        state = self.sessions.take(username) if username else None
        if state is None:
            raise BadRequest("Session not found")

        try:
            user = self.storage.get_user_by_username(username)
        except NotFound:
            raise BadRequest("User not found") from None
        except InfrastructureError as e:
            raise InternalError("Failed to load user") from e

        try:
            engine_user = self._engine_user(user)
            engine_user["credentials"] = self.storage.list_credentials(user["id"])
        except InfrastructureError as e:
            raise InternalError("Failed to load credentials") from e

        try:
            credential = self.engine.finish_registration(engine_user, state, response)
        except VerificationError as e:
            raise BadRequest(str(e)) from e

        try:
            self.storage.add_credential(user["id"], credential)
        except (InfrastructureError, NotFound) as e:
            raise InternalError("Failed to save credential") from e

        return credential

    # ==================== Discoverable login ====================

    def login_begin(self) -> Tuple[Dict[str, Any], str]:
        """Issue a discoverable-login challenge.

        Returns the challenge bundle and the correlation key it was stored
        under. In shared mode the key is always LOGIN_SESSION_KEY, so a
        second begin replaces the first one's pending challenge.
        """
        try:
            options, state = self.engine.begin_discoverable_login(user_verification="required")
        except Exception as e:
            raise InternalError("Failed to begin login") from e

        if self.login_correlation == PER_REQUEST:
            key = secrets.token_urlsafe(32)
        else:
            key = LOGIN_SESSION_KEY

        self.sessions.put(key, state)
        return options, key

    def login_finish(self, response: Any, key: Optional[str] = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Verify an assertion and return (user, credential)."""
        if self.login_correlation == SHARED:
            key = LOGIN_SESSION_KEY

        state = self.sessions.take(key) if key else None
        if state is None:
            raise BadRequest("Session not found")

        resolved = {}

        def discover_user(raw_id, user_handle):
            try:
                user_id = decode_user_handle(user_handle)
            except InvalidHandle as e:
                raise VerificationError(str(e)) from e

            try:
                user = self.storage.get_user_by_id(user_id)
                credentials = self.storage.list_credentials(user_id)
            except NotFound:
                raise VerificationError(f"user not found for handle: {user_id}") from None
            except InfrastructureError as e:
                raise VerificationError(f"user lookup failed for handle: {user_id}") from e

            resolved.update(user)
            engine_user = self._engine_user(user)
            engine_user["credentials"] = credentials
            return engine_user

        try:
            credential = self.engine.finish_discoverable_login(discover_user, state, response)
        except VerificationError as e:
            raise Unauthorized(f"Verification failed: {e}") from e

        return resolved, credential
