"""
Report assembly.

A report binds an externally classified observation and the hash of its
photo to the submitter's pseudonym and daily nullifier, under an Ed25519
signature over the canonical signing view.
"""

import copy
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .canonicalization import canonicalize, signing_view
from .encoding import base36
from .exceptions import MalformedInputError, SignatureSelfCheckError
from .hashing import image_hash
from .identity import Identity, date_key, derive_nullifier
from .logging_config import audit_log
from .signing import sign, verify

DEFAULT_IMG_MIME = "image/jpeg"
REPORT_ID_PREFIX = "pot"

# Wire fields of a report, in the order they are written.
WIRE_FIELDS = ("id", "pubkey", "anonId", "nullifier", "payload", "media", "sig")


class Severity(str, Enum):
    """Severity labels produced by the classifier."""
    MINOR = "MINOR"
    MODERATE = "MODERATE"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class Observation:
    """Location plus the opaque classification output for one photo."""
    lat: float
    lng: float
    severity: str
    score: float
    area_px: float
    depth_cm: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Observation':
        missing = [k for k in ("lat", "lng", "severity", "score", "area_px", "depth_cm") if k not in data]
        if missing:
            raise MalformedInputError(f"Observation missing fields: {', '.join(missing)}")
        severity = data["severity"]
        return cls(
            lat=data["lat"],
            lng=data["lng"],
            severity=severity.value if isinstance(severity, Severity) else severity,
            score=data["score"],
            area_px=data["area_px"],
            depth_cm=data["depth_cm"],
        )


@dataclass
class Report:
    """
    A signed report.

    ``verified``, ``photo_data_url`` and ``metrics`` are local-only and are
    dropped from the wire form.
    """
    id: str
    pubkey: str
    anon_id: str
    nullifier: str
    payload: Dict[str, Any]
    media: Dict[str, Any]
    signature: str
    verified: bool = False
    photo_data_url: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form, as serialized into a pack."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "anonId": self.anon_id,
            "nullifier": self.nullifier,
            "payload": copy.deepcopy(self.payload),
            "media": copy.deepcopy(self.media),
            "sig": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Report':
        if not isinstance(data, dict):
            raise MalformedInputError("Report must be an object")
        missing = [k for k in WIRE_FIELDS if k not in data]
        if missing:
            raise MalformedInputError(f"Report missing fields: {', '.join(missing)}")
        return cls(
            id=data["id"],
            pubkey=data["pubkey"],
            anon_id=data["anonId"],
            nullifier=data["nullifier"],
            payload=copy.deepcopy(data["payload"]),
            media=copy.deepcopy(data["media"]),
            signature=data["sig"],
            verified=bool(data.get("verified", False)),
            photo_data_url=data.get("photoDataURL"),
            metrics=dict(data.get("metrics") or {}),
        )

    def canonical_bytes(self) -> bytes:
        return canonicalize(signing_view(self.to_dict()))

    def check_signature(self) -> bool:
        return verify(self.pubkey, self.signature, self.canonical_bytes())


def new_report_id(prefix: str = REPORT_ID_PREFIX) -> str:
    """Short random id with a millisecond timestamp suffix, e.g. pot-3f9a1ckz9x0b1q."""
    return f"{prefix}-{secrets.token_hex(3)}{base36(int(time.time() * 1000))}"


def iso_timestamp(when: Optional[datetime] = None) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    if when is None:
        when = datetime.now(timezone.utc)
    elif when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    when = when.astimezone(timezone.utc)
    return when.strftime('%Y-%m-%dT%H:%M:%S.') + f"{when.microsecond // 1000:03d}Z"


def assemble_report(
    observation: Observation,
    photo: bytes,
    identity: Identity,
    img_mime: str = DEFAULT_IMG_MIME,
    captured_at: Optional[datetime] = None,
    report_id: Optional[str] = None,
    metrics: Optional[Dict[str, Any]] = None,
) -> Report:
    """
    Build and sign a report for one captured photo.

    Steps:
    1. Hash the photo bytes
    2. Stamp the capture time and the nullifier for the capture day
    3. Canonicalize {payload, media:{img_hash, img_mime}}
    4. Sign with the identity's private key
    5. Re-verify with the public key before returning

    Raises:
        MalformedInputError: empty photo
        SignatureSelfCheckError: the fresh signature did not verify
    """
    if not photo:
        raise MalformedInputError("Photo bytes are empty")
    if isinstance(observation, dict):
        observation = Observation.from_dict(observation)

    if captured_at is None:
        captured_at = datetime.now(timezone.utc)

    payload = {
        "lat": observation.lat,
        "lng": observation.lng,
        "severity": observation.severity,
        "score": observation.score,
        "area_px": observation.area_px,
        "depth_cm": observation.depth_cm,
        "ts": iso_timestamp(captured_at),
    }
    media = {
        "img_hash": image_hash(photo),
        "img_mime": img_mime,
    }

    nullifier = derive_nullifier(date_key(captured_at), identity)
    canonical_bytes = canonicalize({"payload": payload, "media": media})
    signature = sign(identity.private_key, canonical_bytes)

    # Post-condition: the report must verify exactly as a consumer will check it.
    if not verify(identity.public_key, signature, canonical_bytes):
        raise SignatureSelfCheckError("Signature verification failed right after signing")

    report = Report(
        id=report_id or new_report_id(),
        pubkey=identity.public_key,
        anon_id=identity.anon_id,
        nullifier=nullifier,
        payload=payload,
        media=media,
        signature=signature,
        verified=True,
        metrics=dict(metrics or {}),
    )
    audit_log.report_signed(report.id, identity.anon_id, media["img_hash"])
    return report
