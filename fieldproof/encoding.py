"""
Text encodings used on the wire.

Keys and signatures travel as URL-safe base64 without padding. Recovery
secrets and pseudonyms use base58 (Bitcoin alphabet) for copy/paste.
"""

import base64
import binascii
from typing import Union

import base58


def b64url_encode(b: bytes) -> str:
    """URL-safe base64 encode bytes to string (no padding)."""
    return base64.urlsafe_b64encode(b).rstrip(b'=').decode('ascii')


def b64url_decode(s: str) -> bytes:
    """URL-safe base64 decode string to bytes (handles missing padding)."""
    # Add padding if needed
    padding = 4 - (len(s) % 4)
    if padding != 4:
        s += '=' * padding
    return base64.urlsafe_b64decode(s.encode('ascii'))


def b58encode(b: bytes) -> str:
    """Base58 encode bytes to string."""
    return base58.b58encode(b).decode('ascii')


def b58decode(s: str) -> bytes:
    """Base58 decode string to bytes. Raises ValueError on bad characters."""
    return base58.b58decode(s)


def data_url_to_bytes(data_url: str) -> bytes:
    """
    Decode a ``data:`` URL into its raw bytes.

    Photo sources that hold canvas exports hand over
    ``data:image/jpeg;base64,...`` strings rather than bytes.
    """
    if not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("Not a data URL")
    header, _, body = data_url.partition(",")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(body, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 in data URL: {e}") from e
    return body.encode('utf-8')


def photo_bytes(value: Union[bytes, bytearray, memoryview, str]) -> bytes:
    """Normalize a photo source value (bytes or data URL) to bytes."""
    if isinstance(value, str):
        return data_url_to_bytes(value)
    return bytes(value)


def base36(n: int) -> str:
    """Lowercase base36 rendering of a non-negative integer."""
    chars = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = chars[r] + out
        if n == 0:
            return out
