"""
Fieldproof Cryptographic Signing

Uses Ed25519 (RFC 8032) for report and pack signatures. Keys and signatures
are exchanged as unpadded base64url text.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .encoding import b64url_decode, b64url_encode

SEED_LENGTH = 32

# DER header of a PKCS#8 Ed25519 private key; the seed follows it.
PKCS8_ED25519_PREFIX = bytes.fromhex("302e020100300506032b657004220420")


@dataclass(frozen=True)
class KeyPair:
    """Ed25519 key pair as base64url text."""
    public_key: str
    private_key: str
    algorithm: str = "Ed25519"

    def to_dict(self) -> Dict[str, str]:
        return {"publicKey": self.public_key, "privateKey": self.private_key}


def generate_keypair() -> KeyPair:
    """
    Generate a new Ed25519 key pair.

    Returns:
        KeyPair with the raw public key and the 32-byte seed, both base64url
    """
    signing_key = SigningKey.generate()
    return KeyPair(
        public_key=b64url_encode(bytes(signing_key.verify_key)),
        private_key=b64url_encode(bytes(signing_key)),
    )


def seed_from_private_key(private_key: str) -> bytes:
    """
    Decode private key text into a 32-byte Ed25519 seed.

    Accepts a bare seed or a PKCS#8 encoded key as exported by WebCrypto.
    Raises ValueError for anything else.
    """
    raw = b64url_decode(private_key)
    if len(raw) == SEED_LENGTH:
        return raw
    if len(raw) == len(PKCS8_ED25519_PREFIX) + SEED_LENGTH and raw.startswith(PKCS8_ED25519_PREFIX):
        return raw[len(PKCS8_ED25519_PREFIX):]
    raise ValueError(f"Unsupported Ed25519 private key length: {len(raw)}")


def load_signing_key(private_key: str) -> SigningKey:
    return SigningKey(seed_from_private_key(private_key))


def public_key_for(private_key: str) -> str:
    """Derive the base64url public key belonging to a private key."""
    return b64url_encode(bytes(load_signing_key(private_key).verify_key))


def sign(private_key: str, data: bytes) -> str:
    """Sign data with Ed25519, returning a base64url signature."""
    signed = load_signing_key(private_key).sign(data)
    return b64url_encode(signed.signature)


def verify(public_key: str, signature: str, data: bytes) -> bool:
    """
    Verify an Ed25519 signature.

    Never raises: a malformed key, signature, or encoding yields False.
    """
    try:
        verify_key = VerifyKey(b64url_decode(public_key))
        verify_key.verify(data, b64url_decode(signature))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


class PublicKeyCache:
    """
    Signature verification callback with a decoded-key cache.

    Pass an instance to the pack verifier; keys decoded for one report are
    reused for every other report by the same signer in the run.
    """

    def __init__(self):
        self._keys: Dict[str, Optional[VerifyKey]] = {}
        self._lock = threading.Lock()

    def _resolve(self, public_key: str) -> Optional[VerifyKey]:
        with self._lock:
            if public_key in self._keys:
                return self._keys[public_key]
        try:
            key = VerifyKey(b64url_decode(public_key))
        except (ValueError, TypeError):
            key = None
        with self._lock:
            self._keys[public_key] = key
        return key

    def __call__(self, public_key: str, signature: str, data: bytes) -> bool:
        if not isinstance(public_key, str):
            return False
        key = self._resolve(public_key)
        if key is None:
            return False
        try:
            key.verify(data, b64url_decode(signature))
            return True
        except (BadSignatureError, ValueError, TypeError):
            return False

    def __len__(self) -> int:
        return len(self._keys)
