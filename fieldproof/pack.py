"""
Pack building.

A pack is a ZIP archive holding ``pack.json`` (the manifest with sanitized
reports) and one image per report under ``images/``. Its hash is taken
over the final archive bytes and is unrelated to any report signature.
"""

import io
import logging
import re
import time
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .canonicalization import canonicalize
from .encoding import photo_bytes
from .exceptions import (
    EmptyPackError,
    ImageHashMismatchError,
    MalformedInputError,
    MissingPhotoError,
)
from .hashing import archive_hash, image_hash
from .identity import Identity
from .logging_config import audit_log
from .report import Report, Severity
from .signing import sign

logger = logging.getLogger(__name__)

PACK_VERSION = "1"
MANIFEST_NAME = "pack.json"
IMAGE_DIR = "images"

# Fields excluded from the signature of a signed pack.
PACK_SIGNATURE_FIELDS = ("packSig", "signer")

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/heic": ".heic",
}

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

PhotoValue = Union[bytes, bytearray, memoryview, str]
PhotoLookup = Union[Mapping[str, PhotoValue], Callable[[str], Optional[PhotoValue]]]


@dataclass(frozen=True)
class BuiltPack:
    """Archive bytes, their hash, and the manifest written into them."""
    archive: bytes
    pack_hash: str
    pack: Dict[str, Any]

    @property
    def report_count(self) -> int:
        return self.pack["reportCount"]


def sanitize_report(report: Union[Report, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Copy a report down to its wire fields.

    Drops local-only data such as the photo data URL and the local
    verification flag.
    """
    if report is None:
        raise MalformedInputError("Report missing")
    if isinstance(report, Report):
        return report.to_dict()
    return Report.from_dict(report).to_dict()


def summarize(reports: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """Count reports per known severity."""
    counts = {s.value: 0 for s in Severity}
    for report in reports:
        severity = (report.get("payload") or {}).get("severity")
        if severity in counts:
            counts[severity] += 1
    return counts


def image_filename(report_id: str, mime: Optional[str]) -> str:
    ext = MIME_EXTENSIONS.get((mime or "").lower(), ".bin")
    return f"{IMAGE_DIR}/{report_id}{ext}"


def _lookup_photo(photo_lookup: PhotoLookup, report_id: str) -> Optional[bytes]:
    if callable(photo_lookup):
        value = photo_lookup(report_id)
    else:
        value = photo_lookup.get(report_id)
    if value is None:
        return None
    try:
        data = photo_bytes(value)
    except ValueError as e:
        raise MalformedInputError(f"Unreadable photo for report {report_id}: {e}") from e
    return data or None


def pack_signing_bytes(pack: Dict[str, Any]) -> bytes:
    """Canonical bytes a pack-level signature covers."""
    body = {k: v for k, v in pack.items() if k not in PACK_SIGNATURE_FIELDS}
    return canonicalize(body)


def _zip_timestamp(created_at_ms: int):
    dt = datetime.fromtimestamp(created_at_ms / 1000, tz=timezone.utc)
    # ZIP cannot represent dates before 1980.
    if dt.year < 1980:
        return (1980, 1, 1, 0, 0, 0)
    return (dt.year, dt.month, dt.day, dt.hour, dt.minute, dt.second)


def _write_entry(zf: zipfile.ZipFile, name: str, data: bytes, date_time) -> None:
    info = zipfile.ZipInfo(name, date_time=date_time)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    zf.writestr(info, data)


def build_pack(
    reports: List[Union[Report, Dict[str, Any]]],
    photo_lookup: PhotoLookup,
    channel: str,
    uploader_id: str,
    created_at: Optional[int] = None,
    signer: Optional[Identity] = None,
) -> BuiltPack:
    """
    Bundle signed reports and their photos into a content-addressed archive.

    Args:
        reports: Signed reports (Report objects or wire dicts)
        photo_lookup: Mapping or callable from report id to photo bytes
            (or a data URL)
        channel: Channel label the pack is published under
        uploader_id: Uploader pseudonym (anonId)
        created_at: Creation time in epoch milliseconds (default: now)
        signer: Optional identity that signs the manifest as a whole

    Returns:
        BuiltPack with the archive bytes and their hash

    Raises:
        EmptyPackError, MissingPhotoError, ImageHashMismatchError,
        MalformedInputError. Nothing is produced on failure.
    """
    if not reports:
        raise EmptyPackError("No reports to pack.")
    if photo_lookup is None:
        raise MalformedInputError("A photo lookup is required.")

    sanitized = [sanitize_report(r) for r in reports]
    images = []
    seen_ids = set()

    for report in sanitized:
        report_id = report["id"]
        if not isinstance(report_id, str) or not _SAFE_ID.match(report_id):
            raise MalformedInputError(f"Report id not usable as a file name: {report_id!r}")
        if report_id in seen_ids:
            raise MalformedInputError(f"Duplicate report id in pack: {report_id}")
        seen_ids.add(report_id)

        media = report.get("media")
        if not isinstance(media, dict):
            raise MalformedInputError(f"Report {report_id} has no media block")

        data = _lookup_photo(photo_lookup, report_id)
        if data is None:
            raise MissingPhotoError(report_id)
        computed = image_hash(data)
        if computed != media.get("img_hash"):
            raise ImageHashMismatchError(report_id, media.get("img_hash"), computed)

        filename = image_filename(report_id, media.get("img_mime"))
        media["img_filename"] = filename
        images.append((filename, data))

    if created_at is None:
        created_at = int(time.time() * 1000)

    pack = {
        "version": PACK_VERSION,
        "channel": channel,
        "uploaderId": uploader_id,
        "createdAt": created_at,
        "reports": sanitized,
        "counts": summarize(sanitized),
        "reportCount": len(sanitized),
    }
    if signer is not None:
        pack["signer"] = signer.public_key
        pack["packSig"] = sign(signer.private_key, pack_signing_bytes(pack))

    stamp = _zip_timestamp(created_at)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for filename, data in images:
            _write_entry(zf, filename, data, stamp)
        _write_entry(zf, MANIFEST_NAME, canonicalize(pack), stamp)

    archive = buffer.getvalue()
    pack_hash = archive_hash(archive)
    audit_log.pack_built(pack_hash, channel, len(sanitized), len(archive))
    logger.debug("Pack %s written with %d images", pack_hash, len(images))
    return BuiltPack(archive=archive, pack_hash=pack_hash, pack=pack)
