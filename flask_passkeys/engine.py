"""
engine.py — WebAuthn ceremony engine for flask-passkeys

Thin adapter over py_webauthn. It mints challenges, verifies attestation and
assertion responses and shapes credentials; it knows nothing about storage
or HTTP.

Ceremony state returned by the begin_* methods is a JSON-serialisable dict.
Callers must treat it as opaque and hand it back unchanged.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .errors import VerificationError

REGISTRATION = "registration"
LOGIN = "login"

# Every py_webauthn rejection (bad backup flags, unsupported algorithms and
# key types included) derives from WebAuthnException. The builtins cover the
# decoding errors a malformed body produces before the library sees it.
_REJECTIONS = (
    WebAuthnException,
    KeyError,
    TypeError,
    ValueError,
)

_TRANSPORTS = {t.value for t in AuthenticatorTransport}


def _enum_value(value):
    return getattr(value, "value", value)


class WebAuthnEngine:
    """
    Relying-party side of the WebAuthn ceremonies.

    Users handed to the engine are dicts carrying 'handle' (user handle
    bytes), 'username' and 'display_name'; for login the resolver must also
    attach 'credentials'.
    """

    def __init__(
        self,
        *,
        rp_id: str,
        rp_name: str,
        origin: str,
        timeout_ms: int = 60000,
    ):
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.origin = origin
        self.timeout_ms = int(timeout_ms)

    # ==================== Registration ====================

    def begin_registration(
        self,
        user: Dict[str, Any],
        exclude_credentials: List[Dict[str, Any]],
        *,
        resident_key: str = "required",
        user_verification: str = "preferred",
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Return ({"publicKey": creation options}, ceremony state)."""
        resident = ResidentKeyRequirement(resident_key)
        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_id=user["handle"],
            user_name=user["username"],
            user_display_name=user.get("display_name") or user["username"],
            timeout=self.timeout_ms,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=resident,
                require_resident_key=resident == ResidentKeyRequirement.REQUIRED,
                user_verification=UserVerificationRequirement(user_verification),
            ),
            exclude_credentials=[self._descriptor(c) for c in exclude_credentials],
        )

        state = {
            "ceremony": REGISTRATION,
            "challenge": bytes_to_base64url(options.challenge),
            "user_handle": bytes_to_base64url(user["handle"]),
            "user_verification": user_verification,
        }
        return {"publicKey": json.loads(options_to_json(options))}, state

    def finish_registration(
        self,
        user: Dict[str, Any],
        state: Dict[str, Any],
        raw_response: Any,
    ) -> Dict[str, Any]:
        """Verify an attestation response and return the new credential."""
        self._check_state(state, REGISTRATION)
        if state.get("user_handle") != bytes_to_base64url(user["handle"]):
            raise VerificationError("ID mismatch for User and Session")
        if not isinstance(raw_response, dict):
            raise VerificationError("Invalid credential response")

        try:
            verification = verify_registration_response(
                credential=raw_response,
                expected_challenge=base64url_to_bytes(state["challenge"]),
                expected_rp_id=self.rp_id,
                expected_origin=self.origin,
                require_user_verification=state.get("user_verification") == "required",
            )
        except _REJECTIONS as e:
            raise VerificationError(str(e) or e.__class__.__name__) from e

        response = raw_response.get("response") or {}
        transports = [
            t for t in (response.get("transports") or []) if t in _TRANSPORTS
        ]

        return {
            "id": bytes_to_base64url(verification.credential_id),
            "public_key": bytes_to_base64url(verification.credential_public_key),
            "sign_count": verification.sign_count,
            "transports": transports,
            "aaguid": verification.aaguid,
            "device_type": _enum_value(verification.credential_device_type),
            "backed_up": bool(verification.credential_backed_up),
        }

    # ==================== Discoverable login ====================

    def begin_discoverable_login(
        self,
        *,
        user_verification: str = "required",
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Return ({"publicKey": request options}, ceremony state)."""
        options = generate_authentication_options(
            rp_id=self.rp_id,
            timeout=self.timeout_ms,
            user_verification=UserVerificationRequirement(user_verification),
        )

        state = {
            "ceremony": LOGIN,
            "challenge": bytes_to_base64url(options.challenge),
            "user_verification": user_verification,
        }
        return {"publicKey": json.loads(options_to_json(options))}, state

    def finish_discoverable_login(
        self,
        resolver: Callable[[bytes, bytes], Dict[str, Any]],
        state: Dict[str, Any],
        raw_response: Any,
    ) -> Dict[str, Any]:
        """
        Verify an assertion whose owner is identified only by its user handle.

        resolver(raw_credential_id, user_handle) must return the owning user
        with its 'credentials', or raise VerificationError.

        Returns the matched credential with its updated sign count.
        """
        self._check_state(state, LOGIN)
        if not isinstance(raw_response, dict):
            raise VerificationError("Invalid credential response")

        try:
            raw_id = base64url_to_bytes(raw_response["rawId"])
            encoded_handle = (raw_response.get("response") or {}).get("userHandle")
            user_handle = base64url_to_bytes(encoded_handle) if encoded_handle else b""
        except (KeyError, TypeError, ValueError, AttributeError):
            raise VerificationError("Malformed credential response") from None

        if not user_handle:
            raise VerificationError("Client did not provide a user handle")

        user = resolver(raw_id, user_handle)
        if user.get("handle") != user_handle:
            raise VerificationError("User handle does not match the resolved user")

        stored = self._find_credential(user.get("credentials") or [], raw_id)
        if stored is None:
            raise VerificationError("Unable to find the credential for the returned credential ID")

        try:
            verification = verify_authentication_response(
                credential=raw_response,
                expected_challenge=base64url_to_bytes(state["challenge"]),
                expected_rp_id=self.rp_id,
                expected_origin=self.origin,
                credential_public_key=base64url_to_bytes(stored["public_key"]),
                credential_current_sign_count=int(stored.get("sign_count") or 0),
                require_user_verification=state.get("user_verification") == "required",
            )
        except _REJECTIONS as e:
            raise VerificationError(str(e) or e.__class__.__name__) from e

        credential = dict(stored)
        credential["sign_count"] = verification.new_sign_count
        return credential

    # ==================== Helpers ====================

    @staticmethod
    def _check_state(state, ceremony):
        if not isinstance(state, dict) or state.get("ceremony") != ceremony:
            raise VerificationError(f"Session was not issued for {ceremony}")

    @staticmethod
    def _find_credential(credentials, raw_id: bytes) -> Optional[Dict[str, Any]]:
        credential_id = bytes_to_base64url(raw_id)
        for credential in credentials:
            if credential.get("id") == credential_id:
                return credential
        return None

    @staticmethod
    def _descriptor(credential: Dict[str, Any]) -> PublicKeyCredentialDescriptor:
        transports = [
            AuthenticatorTransport(t)
            for t in (credential.get("transports") or [])
            if t in _TRANSPORTS
        ]
        return PublicKeyCredentialDescriptor(
            id=base64url_to_bytes(credential["id"]),
            transports=transports or None,
        )
