"""
User handle codec.

The user handle is the opaque byte string bound into every passkey at
registration. We use the ASCII decimal form of the user id: it is stable,
injective and easy to eyeball in authenticator dumps. Handles come back
from the network during discoverable login, so decoding is strict.
"""

from .errors import InvalidHandle

# WebAuthn caps user.id at 64 bytes; ids are bounded well below that.
MAX_USER_ID = 2 ** 63 - 1


def encode_user_handle(user_id: int) -> bytes:
    """Encode a user id as its decimal ASCII representation."""
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise TypeError(f"user id must be an int, got {type(user_id).__name__}")
    if user_id < 1 or user_id > MAX_USER_ID:
        raise ValueError(f"user id out of range: {user_id}")
    return str(user_id).encode("ascii")


def decode_user_handle(handle) -> int:
    """Decode a user handle back into a user id.

    Raises InvalidHandle for anything encode_user_handle could not have
    produced: empty input, non-digits, signs, whitespace, leading zeros or
    values out of range.
    """
    if not isinstance(handle, (bytes, bytearray)):
        raise InvalidHandle("user handle must be bytes")
    if not handle:
        raise InvalidHandle("empty user handle")

    try:
        text = bytes(handle).decode("ascii")
    except UnicodeDecodeError:
        raise InvalidHandle(f"invalid user handle: {handle!r}") from None

    # str.isdigit() accepts things like superscripts; restrict to 0-9
    if not all("0" <= ch <= "9" for ch in text):
        raise InvalidHandle(f"invalid user handle: {text}")
    if text[0] == "0":
        raise InvalidHandle(f"invalid user handle: {text}")

    user_id = int(text)
    if user_id > MAX_USER_ID:
        raise InvalidHandle(f"user handle out of range: {text}")
    return user_id
