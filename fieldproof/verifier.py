"""
Fieldproof Pack Verification

Lets any consumer check a received pack without trusting its uploader, the
blob store, or the metadata index. Each report is judged on its own:

1. Canonicalize {payload, media:{img_hash, img_mime}} as at signing time
2. Check the signature through the caller's callback
3. Locate the image in the archive (or via a fetch hook) and re-hash it
4. Classify the (nullifier, payload.ts) key against the dedup ledger

A report is accepted only when its signature and image check out and it is
not a duplicate. The archive hash is recomputed and compared against any
claimed value, but a mismatch is only a warning.
"""

import io
import json
import logging
import threading
import zipfile
import zlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .canonicalization import canonicalize, signing_view
from .exceptions import IntegrityError, PackFormatError, ResourceUnavailableError
from .hashing import archive_hash, image_hash
from .ledger import DedupLedger, Ledger, dedup_key
from .logging_config import audit_log, set_run_id
from .pack import MANIFEST_NAME, pack_signing_bytes

logger = logging.getLogger(__name__)

# (publicKeyText, signatureText, canonicalBytes) -> bool
SignatureCallback = Callable[[str, str, bytes], bool]
# report -> image bytes, or None / ResourceUnavailableError when absent
ImageFetcher = Callable[[Dict[str, Any]], Optional[bytes]]


class RejectReason(str, Enum):
    """Why a report was not accepted."""
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    IMAGE_UNAVAILABLE = "IMAGE_UNAVAILABLE"
    IMAGE_HASH_MISMATCH = "IMAGE_HASH_MISMATCH"
    IMAGE_CORRUPT = "IMAGE_CORRUPT"
    DUPLICATE = "DUPLICATE"


class ImageState(Enum):
    PRESENT = "present"
    MISSING = "missing"
    CORRUPT = "corrupt"


@dataclass
class ReportVerification:
    """Outcome for one report: the (ok_sig, ok_img, duplicate) tuple plus context."""
    report: Dict[str, Any]
    ok_sig: bool
    ok_img: bool
    duplicate: bool
    image_available: bool = True
    image_corrupt: bool = False

    @property
    def accepted(self) -> bool:
        return self.ok_sig and self.ok_img and not self.duplicate

    @property
    def report_id(self) -> Any:
        return self.report.get("id")

    @property
    def reasons(self) -> List[RejectReason]:
        reasons = []
        if not self.ok_sig:
            reasons.append(RejectReason.SIGNATURE_INVALID)
        if self.image_corrupt:
            reasons.append(RejectReason.IMAGE_CORRUPT)
        elif not self.image_available:
            reasons.append(RejectReason.IMAGE_UNAVAILABLE)
        elif not self.ok_img:
            reasons.append(RejectReason.IMAGE_HASH_MISMATCH)
        if self.duplicate:
            reasons.append(RejectReason.DUPLICATE)
        return reasons

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.report_id,
            "okSig": self.ok_sig,
            "okImg": self.ok_img,
            "duplicate": self.duplicate,
            "accepted": self.accepted,
            "reasons": [r.value for r in self.reasons],
        }


@dataclass
class PackVerification:
    """Result of verifying a whole archive."""
    pack: Dict[str, Any]
    pack_hash: str
    results: List[ReportVerification] = field(default_factory=list)
    expected_hash: Optional[str] = None
    pack_sig_ok: Optional[bool] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def hash_matches(self) -> Optional[bool]:
        if self.expected_hash is None:
            return None
        return self.expected_hash == self.pack_hash

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def ok_sig(self) -> int:
        return sum(1 for r in self.results if r.ok_sig)

    @property
    def ok_img(self) -> int:
        return sum(1 for r in self.results if r.ok_img)

    @property
    def duplicates(self) -> int:
        return sum(1 for r in self.results if r.duplicate)

    @property
    def accepted(self) -> List[Dict[str, Any]]:
        """Reports that passed every check, in archive order."""
        return [r.report for r in self.results if r.accepted]

    @property
    def rejected(self) -> List[ReportVerification]:
        return [r for r in self.results if not r.accepted]

    def summary(self) -> Dict[str, Any]:
        return {
            "packHash": self.pack_hash,
            "expectedHash": self.expected_hash,
            "hashMatches": self.hash_matches,
            "packSigOk": self.pack_sig_ok,
            "channel": self.pack.get("channel"),
            "uploaderId": self.pack.get("uploaderId"),
            "total": self.total,
            "okSig": self.ok_sig,
            "okImg": self.ok_img,
            "duplicates": self.duplicates,
            "accepted": len(self.accepted),
            "rejected": len(self.rejected),
            "warnings": list(self.warnings),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.summary()
        data["results"] = [r.to_dict() for r in self.results]
        return data


_ENTRY_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    zlib.error,
    EOFError,
    NotImplementedError,
    OSError,
)


class EntryCorruptError(IntegrityError):
    """An archive entry is listed but its data cannot be read back."""

    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Entry {name} is unreadable: {cause}")
        self.name = name
        self.cause = cause


class UnpackedPack:
    """An opened archive: its manifest, its hash, and lazy access to entries."""

    def __init__(self, archive: bytes):
        self.pack_hash = archive_hash(archive)
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(archive))
        except zipfile.BadZipFile as e:
            raise PackFormatError(f"Archive is not a readable ZIP: {e}") from e
        self._lock = threading.Lock()

        try:
            manifest = self.read(MANIFEST_NAME)
        except EntryCorruptError as e:
            raise PackFormatError(f"{MANIFEST_NAME} is unreadable: {e.cause}") from e
        if manifest is None:
            raise PackFormatError(f"{MANIFEST_NAME} missing from archive")
        try:
            pack = json.loads(manifest.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PackFormatError(f"{MANIFEST_NAME} is not valid JSON: {e}") from e
        if not isinstance(pack, dict):
            raise PackFormatError(f"{MANIFEST_NAME} must hold an object")

        reports = pack.get("reports") or []
        if not isinstance(reports, list):
            raise PackFormatError("reports must be a list")
        for index, report in enumerate(reports):
            if not isinstance(report, dict):
                raise PackFormatError(f"report #{index} is not an object")

        self.pack: Dict[str, Any] = pack
        self.reports: List[Dict[str, Any]] = reports

    def read(self, name: str) -> Optional[bytes]:
        """
        Bytes of an archive entry, or None if there is no such entry.

        Raises:
            EntryCorruptError: the entry exists but cannot be decompressed
                or fails its CRC check
        """
        with self._lock:
            try:
                return self._zip.read(name)
            except KeyError:
                return None
            except _ENTRY_ERRORS as e:
                raise EntryCorruptError(name, e) from e

    def close(self) -> None:
        self._zip.close()


class PackVerifier:
    """
    Verifies packs against a dedup ledger.

    The same verifier (and ledger) can be reused for many archives; keys
    accepted from one archive flag resubmissions in the next.
    """

    def __init__(
        self,
        verify_signature: SignatureCallback,
        ledger: Optional[Ledger] = None,
        fetch_image: Optional[ImageFetcher] = None,
        max_workers: int = 1,
    ):
        if not callable(verify_signature):
            raise TypeError("verify_signature must be callable")
        self._verify_signature = verify_signature
        self.ledger = ledger if ledger is not None else DedupLedger()
        self._fetch_image = fetch_image
        self._max_workers = max(1, int(max_workers))

    def _fetch(self, report: Dict[str, Any]) -> Optional[bytes]:
        if self._fetch_image is None:
            return None
        try:
            data = self._fetch_image(report)
        except ResourceUnavailableError as e:
            logger.info("Image fetch failed for report %s: %s", report.get("id"), e)
            return None
        except Exception:
            # Any hook failure costs only this report its image
            logger.warning("Image fetch hook raised for report %s", report.get("id"), exc_info=True)
            return None
        return data if isinstance(data, (bytes, bytearray)) else None

    def _load_image(self, unpacked: UnpackedPack, report: Dict[str, Any]) -> Tuple[Optional[bytes], bool]:
        """Image bytes for a report, plus whether its archive entry was corrupt."""
        media = report.get("media")
        filename = media.get("img_filename") if isinstance(media, dict) else None
        if isinstance(filename, str) and filename:
            try:
                data = unpacked.read(filename)
            except EntryCorruptError as e:
                logger.info("Report %s: %s", report.get("id"), e)
                return None, True
            if data is not None:
                return data, False
        return self._fetch(report), False

    def _check_report(self, unpacked: UnpackedPack, report: Dict[str, Any]) -> Tuple[bool, bool, ImageState]:
        """Signature and image checks for one report: (ok_sig, ok_img, image_state)."""
        try:
            canonical_bytes = canonicalize(signing_view(report))
        except ValueError as e:
            logger.info("Report %s cannot be canonicalized: %s", report.get("id"), e)
            canonical_bytes = None

        ok_sig = False
        if canonical_bytes is not None:
            ok_sig = bool(self._verify_signature(report.get("pubkey"), report.get("sig"), canonical_bytes))

        data, corrupt = self._load_image(unpacked, report)
        if corrupt:
            return ok_sig, False, ImageState.CORRUPT
        if data is None:
            return ok_sig, False, ImageState.MISSING

        media = report.get("media")
        declared = media.get("img_hash") if isinstance(media, dict) else None
        ok_img = isinstance(declared, str) and image_hash(bytes(data)) == declared
        return ok_sig, ok_img, ImageState.PRESENT

    def _classify(self, report: Dict[str, Any], checks: Tuple[bool, bool, ImageState]) -> ReportVerification:
        ok_sig, ok_img, image_state = checks
        key = dedup_key(report)
        if ok_sig and ok_img:
            duplicate = not self.ledger.check_and_insert(key)
        else:
            # Failed reports never claim a key, so a forgery cannot shadow the real report.
            duplicate = self.ledger.contains(key)
        return ReportVerification(
            report=report,
            ok_sig=ok_sig,
            ok_img=ok_img,
            duplicate=duplicate,
            image_available=image_state is not ImageState.MISSING,
            image_corrupt=image_state is ImageState.CORRUPT,
        )

    def iter_reports(self, unpacked: UnpackedPack) -> Iterator[ReportVerification]:
        """
        Yield one verification per report, in archive order.

        A caller may stop iterating at any point; results already yielded
        remain valid and the ledger holds exactly their accepted keys. With
        workers enabled, a caller that stops early must ``close()`` the
        generator before closing ``unpacked``; closing waits for running
        checks and cancels the rest.
        """
        reports = unpacked.reports
        if self._max_workers == 1 or len(reports) < 2:
            for report in reports:
                yield self._classify(report, self._check_report(unpacked, report))
            return

        executor = ThreadPoolExecutor(max_workers=self._max_workers)
        try:
            futures = [executor.submit(self._check_report, unpacked, r) for r in reports]
            for report, future in zip(reports, futures):
                yield self._classify(report, future.result())
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def _check_pack_signature(self, pack: Dict[str, Any]) -> Optional[bool]:
        signer = pack.get("signer")
        pack_sig = pack.get("packSig")
        if not signer and not pack_sig:
            return None
        if not signer or not pack_sig:
            return False
        try:
            body = pack_signing_bytes(pack)
        except ValueError:
            return False
        return bool(self._verify_signature(signer, pack_sig, body))

    def verify(self, archive: bytes, expected_hash: Optional[str] = None) -> PackVerification:
        """
        Verify every report in an archive.

        Args:
            archive: Archive bytes as fetched from the blob store
            expected_hash: Archive hash claimed elsewhere (index entry, link)

        Returns:
            PackVerification with one result per report

        Raises:
            PackFormatError: the archive structure is unreadable
        """
        set_run_id()
        unpacked = UnpackedPack(archive)
        try:
            result = PackVerification(
                pack=unpacked.pack,
                pack_hash=unpacked.pack_hash,
                expected_hash=expected_hash,
                pack_sig_ok=self._check_pack_signature(unpacked.pack),
            )
            if expected_hash is not None and expected_hash != unpacked.pack_hash:
                result.warnings.append("Pack hash mismatch")
                audit_log.archive_hash_mismatch(expected_hash, unpacked.pack_hash)
            if result.pack_sig_ok is False:
                result.warnings.append("Pack signature invalid")

            items = self.iter_reports(unpacked)
            try:
                for item in items:
                    result.results.append(item)
                    if not item.accepted:
                        audit_log.report_rejected(item.report_id, [r.value for r in item.reasons])
            finally:
                items.close()
        finally:
            unpacked.close()

        audit_log.pack_verified(
            result.pack_hash,
            result.total,
            len(result.accepted),
            result.duplicates,
            hash_matches=result.hash_matches,
        )
        return result


def verify_pack(
    archive: bytes,
    verify_signature: SignatureCallback,
    ledger: Optional[Ledger] = None,
    expected_hash: Optional[str] = None,
    fetch_image: Optional[ImageFetcher] = None,
    max_workers: int = 1,
) -> PackVerification:
    """Convenience function to verify one archive with a fresh or given ledger."""
    verifier = PackVerifier(
        verify_signature,
        ledger=ledger,
        fetch_image=fetch_image,
        max_workers=max_workers,
    )
    return verifier.verify(archive, expected_hash=expected_hash)
