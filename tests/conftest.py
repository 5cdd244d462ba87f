"""
Pytest fixtures for Flask-Passkeys tests.

Pytest automatically discovers this file (conftest.py) and uses it to provide
fixtures to tests under this directory tree.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from flask import Flask
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.structs import CredentialDeviceType

# Ensure project root is importable when running tests from /tests
PROJECT_ROOT = str(Path(__file__).resolve().parent.parent)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from flask_passkeys import Passkeys
from flask_passkeys.storage import InMemoryStorageAdapter
from flask_passkeys.user_handle import encode_user_handle


@pytest.fixture
def base_config():
    # Keep config minimal and explicit for test determinism
    return {
        "SECRET_KEY": "test-secret-key",
        "TESTING": True,

        # Passkeys config
        "PASSKEYS_RP_ID": "localhost",
        "PASSKEYS_RP_NAME": "Test App",
        "PASSKEYS_ORIGIN": "http://localhost:3000",
        "PASSKEYS_SESSION_TTL": 300,       # seconds
    }


@pytest.fixture
def storage():
    return InMemoryStorageAdapter()


@pytest.fixture
def app(base_config, storage):
    """Flask app with Passkeys + in-memory storage."""
    app = Flask(__name__)
    app.config.update(base_config)

    Passkeys(app, storage_adapter=storage)

    yield app


@pytest.fixture
def per_request_app(base_config, storage):
    """Flask app whose login ceremonies use per-request correlation keys."""
    app = Flask(__name__)
    app.config.update(base_config)
    app.config["PASSKEYS_LOGIN_CORRELATION"] = "per_request"

    Passkeys(app, storage_adapter=storage)

    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def passkeys(app):
    return app.extensions["passkeys"]


@pytest.fixture
def credential_id():
    return b"credential-alice-laptop"


@pytest.fixture
def registration_response(credential_id):
    """Attestation response as the browser posts it to register/finish."""
    encoded = bytes_to_base64url(credential_id)
    return {
        "id": encoded,
        "rawId": encoded,
        "type": "public-key",
        "response": {
            "clientDataJSON": bytes_to_base64url(b'{"type":"webauthn.create"}'),
            "attestationObject": bytes_to_base64url(b"attestation"),
            "transports": ["internal", "hybrid"],
        },
    }


@pytest.fixture
def verified_registration(credential_id):
    """Stand-in for py_webauthn's VerifiedRegistration."""
    verification = MagicMock()
    verification.credential_id = credential_id
    verification.credential_public_key = b"public-key-alice"
    verification.sign_count = 0
    verification.aaguid = "00000000-0000-0000-0000-000000000000"
    verification.credential_device_type = CredentialDeviceType.MULTI_DEVICE
    verification.credential_backed_up = True
    return verification


@pytest.fixture
def verified_authentication():
    """Stand-in for py_webauthn's VerifiedAuthentication."""
    verification = MagicMock()
    verification.new_sign_count = 1
    return verification


def make_assertion(credential_id, user_handle):
    """Assertion response as the browser posts it to login/finish."""
    encoded = bytes_to_base64url(credential_id)
    response = {
        "clientDataJSON": bytes_to_base64url(b'{"type":"webauthn.get"}'),
        "authenticatorData": bytes_to_base64url(b"authenticator-data"),
        "signature": bytes_to_base64url(b"signature"),
    }
    if user_handle is not None:
        response["userHandle"] = bytes_to_base64url(user_handle)
    return {
        "id": encoded,
        "rawId": encoded,
        "type": "public-key",
        "response": response,
    }


@pytest.fixture
def registered_user(storage, credential_id):
    """A user 'alice' holding one stored passkey."""
    user = storage.create_user("alice", "Alice")
    storage.add_credential(user["id"], {
        "id": bytes_to_base64url(credential_id),
        "public_key": bytes_to_base64url(b"public-key-alice"),
        "sign_count": 0,
        "transports": ["internal"],
        "aaguid": "00000000-0000-0000-0000-000000000000",
        "device_type": "multi_device",
        "backed_up": True,
    })
    return user


@pytest.fixture
def assertion(registered_user, credential_id):
    return make_assertion(credential_id, encode_user_handle(registered_user["id"]))


@pytest.fixture
def assertion_factory():
    return make_assertion
