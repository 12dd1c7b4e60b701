"""
Fieldproof Hashing

All hashes are SHA-256. Image and archive hashes travel as unpadded
base64url text (what reports and index entries carry); blob store content
identifiers use a prefixed lowercase hex form.
"""

import hashlib
import hmac
from typing import Union

from .canonicalization import canonicalize
from .encoding import b64url_encode

CONTENT_ID_PREFIX = "sha256:"


def _as_bytes(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        return data.encode('utf-8')
    return bytes(data)


def sha256_bytes(data: Union[bytes, str]) -> bytes:
    """Compute SHA-256 hash and return the raw digest."""
    return hashlib.sha256(_as_bytes(data)).digest()


def sha256_b64url(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash as unpadded base64url text."""
    return b64url_encode(sha256_bytes(data))


def image_hash(photo: bytes) -> str:
    """Hash of a photo as stored in ``media.img_hash``."""
    return sha256_b64url(photo)


def archive_hash(archive: bytes) -> str:
    """Hash of the final serialized archive bytes."""
    return sha256_b64url(archive)


def canonical_hash(obj) -> str:
    """Hash of an object's canonical JSON encoding."""
    return sha256_b64url(canonicalize(obj))


def content_id(data: Union[bytes, str]) -> str:
    """
    Compute a content-addressed identifier.

    Returns:
        Content identifier in format "sha256:abcdef..."
    """
    digest = hashlib.sha256(_as_bytes(data)).hexdigest().lower()
    return f"{CONTENT_ID_PREFIX}{digest}"


def is_content_id(value: str) -> bool:
    """Check that a string has the shape of a content identifier."""
    if not isinstance(value, str) or not value.startswith(CONTENT_ID_PREFIX):
        return False
    digest = value[len(CONTENT_ID_PREFIX):]
    return len(digest) == 64 and all(c in "0123456789abcdef" for c in digest)


def verify_hash(declared_hash: str, data: Union[bytes, str]) -> bool:
    """
    Verify that data matches a declared hash.

    Accepts either a content identifier or a base64url SHA-256 digest.
    The comparison runs in constant time.
    """
    if not isinstance(declared_hash, str) or not declared_hash:
        return False
    if declared_hash.startswith(CONTENT_ID_PREFIX):
        computed = content_id(data)
    else:
        computed = sha256_b64url(data)
    return hmac.compare_digest(computed.encode('ascii'), declared_hash.encode('utf-8'))
