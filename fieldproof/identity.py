"""
Pseudonymous identity management.

An identity is an Ed25519 signing key plus an independent 32-byte recovery
secret. The public key yields a stable pseudonym (anonId); the recovery
secret yields a nullifier that rotates every calendar day, so repeat
submissions within a day can be detected without linking days together.
"""

import json
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Union

from .encoding import b58decode, b58encode, b64url_decode, b64url_encode
from .exceptions import IdentityError
from .hashing import sha256_bytes
from .kvstore import KeyValueStore
from .logging_config import audit_log
from .signing import generate_keypair, public_key_for, seed_from_private_key

logger = logging.getLogger(__name__)

IDENTITY_VERSION = "1"
IDENTITY_STORAGE_KEY = "pothole.identity.v1"
RECOVERY_SECRET_LENGTH = 32
NULLIFIER_DOMAIN = "pothole"

REQUIRED_FIELDS = ("publicKey", "privateKey", "recoverySecret")


@dataclass(frozen=True)
class Identity:
    """A device identity. Private fields must never leave the device unexported."""
    public_key: str
    private_key: str
    recovery_secret: str
    anon_id: str
    version: str = IDENTITY_VERSION

    def to_dict(self) -> Dict[str, str]:
        return {
            "version": self.version,
            "publicKey": self.public_key,
            "privateKey": self.private_key,
            "recoverySecret": self.recovery_secret,
            "anonId": self.anon_id,
        }

    def public_view(self) -> Dict[str, str]:
        """Fields that are safe to display or share."""
        return {"publicKey": self.public_key, "anonId": self.anon_id}


def anon_id_from_public_key(public_key: Union[str, bytes]) -> str:
    """anonId = base58(sha256(raw public key bytes))."""
    raw = b64url_decode(public_key) if isinstance(public_key, str) else bytes(public_key)
    return b58encode(sha256_bytes(raw))


def date_key(when: Optional[Union[datetime, date]] = None) -> str:
    """UTC calendar day used to scope nullifiers, as YYYY-MM-DD."""
    if when is None:
        when = datetime.now(timezone.utc)
    if isinstance(when, datetime):
        if when.tzinfo is not None:
            when = when.astimezone(timezone.utc)
        when = when.date()
    return when.isoformat()


def derive_nullifier(day: str, identity: Identity) -> str:
    """
    Derive the nullifier for an identity on a given day.

    nullifier = base64url(sha256(recoverySecret || day || "pothole"))

    Pure function: same identity and day always give the same value.
    """
    secret = getattr(identity, "recovery_secret", None)
    if not secret:
        raise IdentityError("Missing recovery secret")
    try:
        secret_bytes = b58decode(secret)
    except ValueError as e:
        raise IdentityError(f"Recovery secret is not valid base58: {e}") from e
    combined = secret_bytes + day.encode('utf-8') + NULLIFIER_DOMAIN.encode('utf-8')
    return b64url_encode(sha256_bytes(combined))


def identity_from_dict(raw: Any) -> Identity:
    """
    Validate a raw identity bundle and build an Identity from it.

    The anonId is always recomputed from the public key; a supplied value
    is only compared and otherwise ignored.
    """
    if not isinstance(raw, dict):
        raise IdentityError("Invalid identity payload")
    missing = [f for f in REQUIRED_FIELDS if not raw.get(f)]
    if missing:
        raise IdentityError(f"Identity missing required fields: {', '.join(missing)}")

    public_key = raw["publicKey"]
    try:
        public_bytes = b64url_decode(public_key)
    except (ValueError, TypeError, AttributeError) as e:
        raise IdentityError(f"publicKey is not valid base64url: {e}") from e
    if len(public_bytes) != 32:
        raise IdentityError(f"publicKey must be 32 bytes, got {len(public_bytes)}")

    try:
        seed = seed_from_private_key(raw["privateKey"])
    except (ValueError, TypeError, AttributeError) as e:
        raise IdentityError(f"privateKey is not usable: {e}") from e
    private_key = b64url_encode(seed)
    if public_key_for(private_key) != b64url_encode(public_bytes):
        raise IdentityError("privateKey does not belong to publicKey")

    recovery_secret = raw["recoverySecret"]
    try:
        if not b58decode(recovery_secret):
            raise ValueError("empty")
    except (ValueError, TypeError) as e:
        raise IdentityError(f"recoverySecret is not valid base58: {e}") from e

    anon_id = anon_id_from_public_key(public_bytes)
    claimed = raw.get("anonId")
    if claimed and claimed != anon_id:
        logger.warning("Ignoring supplied anonId %s; public key derives %s", claimed, anon_id)

    return Identity(
        public_key=b64url_encode(public_bytes),
        private_key=private_key,
        recovery_secret=recovery_secret,
        anon_id=anon_id,
        version=str(raw.get("version") or IDENTITY_VERSION),
    )


def new_identity() -> Identity:
    """Generate a fresh keypair and recovery secret."""
    keypair = generate_keypair()
    recovery = secrets.token_bytes(RECOVERY_SECRET_LENGTH)
    return Identity(
        public_key=keypair.public_key,
        private_key=keypair.private_key,
        recovery_secret=b58encode(recovery),
        anon_id=anon_id_from_public_key(keypair.public_key),
    )


class IdentityManager:
    """
    Loads, creates, exports and imports the device identity.

    The identity is cached after the first load. Callers receive an explicit
    Identity handle and pass it to the assembler; nothing else reads the
    cache.
    """

    def __init__(self, store: KeyValueStore, storage_key: str = IDENTITY_STORAGE_KEY):
        self._store = store
        self._storage_key = storage_key
        self._cached: Optional[Identity] = None
        self._lock = threading.RLock()

    def _load_persisted(self) -> Optional[Identity]:
        raw = self._store.get(self._storage_key)
        if raw is None:
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise IdentityError(f"Persisted identity is not valid JSON: {e}") from e
        return identity_from_dict(parsed)

    def _persist(self, identity: Identity) -> None:
        self._store.set(self._storage_key, json.dumps(identity.to_dict()))

    def current(self) -> Optional[Identity]:
        """Return the active identity without creating one."""
        with self._lock:
            if self._cached is None:
                self._cached = self._load_persisted()
            return self._cached

    def create_or_load(self) -> Identity:
        """
        Return the persisted identity, generating one on first use.

        Repeated calls return the same identity. A persisted bundle that
        fails validation raises IdentityError rather than being replaced.
        """
        with self._lock:
            existing = self.current()
            if existing is not None:
                return existing
            identity = new_identity()
            self._persist(identity)
            self._cached = identity
            audit_log.identity_created(identity.anon_id)
            return identity

    def export_bundle(self) -> bytes:
        """Serialize the full identity, private key and recovery secret included."""
        identity = self.current()
        if identity is None:
            raise IdentityError("No identity to export")
        return json.dumps(identity.to_dict(), indent=2).encode('utf-8')

    def import_bundle(self, data: Union[bytes, str]) -> Identity:
        """Validate an exported bundle and make it the active identity."""
        if isinstance(data, bytes):
            try:
                data = data.decode('utf-8')
            except UnicodeDecodeError as e:
                raise IdentityError(f"Identity bundle is not UTF-8: {e}") from e
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise IdentityError(f"Identity bundle is not valid JSON: {e}") from e
        identity = identity_from_dict(parsed)

        with self._lock:
            previous = self._cached
            self._persist(identity)
            self._cached = identity
        audit_log.identity_imported(
            identity.anon_id,
            previous_anon_id=previous.anon_id if previous else None,
        )
        return identity

    def nullifier(self, day: Optional[str] = None) -> str:
        """Nullifier of the active identity for ``day`` (default: today, UTC)."""
        return derive_nullifier(day or date_key(), self.create_or_load())
