"""
Publish and import flows.

Publishing puts an archive into the blob store and announces it in the
metadata index. Importing walks index entries, fetches each archive by
content id and verifies it; the claimed archive hash from the index is only
compared, never trusted.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .blobstore import BlobStore
from .encoding import base36
from .exceptions import FieldproofError
from .index import DEFAULT_LIST_LIMIT, MetadataIndex
from .logging_config import audit_log
from .models import PackMeta
from .pack import BuiltPack
from .verifier import PackVerification, PackVerifier

logger = logging.getLogger(__name__)


def new_pack_id() -> str:
    return f"pack-{base36(int(time.time() * 1000))}{secrets.token_hex(2)}"


def publish_pack(
    built: BuiltPack,
    blob_store: BlobStore,
    index: MetadataIndex,
    pack_id: Optional[str] = None,
) -> PackMeta:
    """
    Store an archive and announce it under its channel.

    Returns:
        The index entry that was published
    """
    cid = blob_store.put(built.archive)
    pack = built.pack
    meta = PackMeta(
        packId=pack_id or new_pack_id(),
        contentId=cid,
        channel=pack["channel"],
        archiveHash=built.pack_hash,
        reportCount=pack["reportCount"],
        uploaderId=pack["uploaderId"],
        createdAt=pack["createdAt"],
        counts=dict(pack.get("counts") or {}),
    )
    index.publish(meta)
    audit_log.pack_published(meta.packId, cid, meta.channel)
    return meta


def verify_content(
    content_id: str,
    blob_store: BlobStore,
    verifier: PackVerifier,
    expected_hash: Optional[str] = None,
) -> PackVerification:
    """Fetch an archive by content id and verify it."""
    archive = blob_store.get(content_id)
    return verifier.verify(archive, expected_hash=expected_hash)


@dataclass
class ImportOutcome:
    """Result of importing one index entry."""
    meta: PackMeta
    verification: Optional[PackVerification] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.verification is not None

    @property
    def added(self) -> int:
        return len(self.verification.accepted) if self.verification else 0

    @property
    def skipped(self) -> int:
        return len(self.verification.rejected) if self.verification else 0


def import_pack(meta: PackMeta, blob_store: BlobStore, verifier: PackVerifier) -> ImportOutcome:
    """
    Fetch and verify the archive behind one index entry.

    Raises the underlying error when the archive cannot be fetched or read.
    """
    verification = verify_content(meta.contentId, blob_store, verifier, expected_hash=meta.archiveHash)
    if verification.hash_matches is False:
        logger.warning("Pack %s hash mismatch. Proceed with caution.", meta.packId)
    return ImportOutcome(meta=meta, verification=verification)


@dataclass
class ChannelImport:
    outcomes: List[ImportOutcome] = field(default_factory=list)

    @property
    def accepted_reports(self) -> list:
        reports = []
        for outcome in self.outcomes:
            if outcome.verification:
                reports.extend(outcome.verification.accepted)
        return reports

    @property
    def failed(self) -> List[ImportOutcome]:
        return [o for o in self.outcomes if not o.ok]


def import_channel(
    index: MetadataIndex,
    blob_store: BlobStore,
    verifier: PackVerifier,
    channel: Optional[str] = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> ChannelImport:
    """
    Import every listed pack of a channel through one verifier.

    The verifier's ledger is shared across packs, so a report resubmitted
    in a later pack is flagged as a duplicate. A pack that cannot be fetched
    or read is recorded with its error and does not stop the others.
    """
    result = ChannelImport()
    for meta in index.list(channel, limit=limit):
        try:
            result.outcomes.append(import_pack(meta, blob_store, verifier))
        except FieldproofError as e:
            logger.warning("Import of pack %s failed: %s", meta.packId, e)
            result.outcomes.append(ImportOutcome(meta=meta, error=str(e)))
    return result
