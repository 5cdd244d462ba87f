from .auth import Passkeys
from .ceremony import PasskeyCeremony
from .engine import WebAuthnEngine
from .errors import (
    PasskeyError,
    BadRequest,
    Unauthorized,
    NotFound,
    DuplicateUsername,
    InternalError,
    InfrastructureError,
    InvalidHandle,
    VerificationError,
)
from .password import PasswordVerifier, StubPasswordVerifier
from .sessions import SessionStateStore
from .storage import StorageAdapter, InMemoryStorageAdapter, SQLAlchemyStorageAdapter
from .user_handle import encode_user_handle, decode_user_handle

__version__ = '0.1.0'

__all__ = [
    'Passkeys',
    'PasskeyCeremony',
    'WebAuthnEngine',
    'SessionStateStore',
    'StorageAdapter',
    'InMemoryStorageAdapter',
    'SQLAlchemyStorageAdapter',
    'PasswordVerifier',
    'StubPasswordVerifier',
    'encode_user_handle',
    'decode_user_handle',
    'PasskeyError',
    'BadRequest',
    'Unauthorized',
    'NotFound',
    'DuplicateUsername',
    'InternalError',
    'InfrastructureError',
    'InvalidHandle',
    'VerificationError',
]
