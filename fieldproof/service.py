"""
HTTP surface for publishing and fetching packs.

Run with ``uvicorn fieldproof.service:create_app --factory``.
"""

import logging
import time
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool

from . import __version__
from . import config
from .blobstore import BlobStore, InMemoryBlobStore
from .exceptions import (
    IntegrityError,
    MalformedInputError,
    PackFormatError,
    ResourceUnavailableError,
)
from .feed import publish_pack
from .index import DEFAULT_LIST_LIMIT, MetadataIndex
from .ledger import DedupLedger
from .models import PackMeta, ReportResult, VerificationSummary
from .pack import BuiltPack, summarize
from .rate_limit import RateLimiter
from .signing import PublicKeyCache
from .verifier import PackVerifier, UnpackedPack

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500


def _manifest_entry(unpacked: UnpackedPack, channel: Optional[str]) -> dict:
    """Index fields for an uploaded archive, read from its manifest."""
    pack = unpacked.pack
    created_at = pack.get("createdAt")
    if created_at is None:
        created_at = int(time.time() * 1000)
    if isinstance(created_at, bool) or not isinstance(created_at, int):
        raise PackFormatError("createdAt must be an integer")
    uploader_id = pack.get("uploaderId") or ""
    if not isinstance(uploader_id, str):
        raise PackFormatError("uploaderId must be a string")
    channel = channel or pack.get("channel") or config.DEFAULT_CHANNEL
    if not isinstance(channel, str):
        raise PackFormatError("channel must be a string")
    return {
        "channel": channel,
        "uploaderId": uploader_id,
        "createdAt": created_at,
        "reportCount": len(unpacked.reports),
        "counts": summarize(unpacked.reports),
    }


def _fetch(blob_store: BlobStore, content_id: str) -> bytes:
    try:
        return blob_store.get(content_id)
    except MalformedInputError:
        raise HTTPException(400, 'BAD_CONTENT_ID')
    except ResourceUnavailableError:
        raise HTTPException(404, 'NOT_FOUND')
    except IntegrityError:
        logger.error("Stored blob %s failed its integrity check", content_id)
        raise HTTPException(502, 'INTEGRITY')


def create_app(
    blob_store: Optional[BlobStore] = None,
    index: Optional[MetadataIndex] = None,
    upload_rpm: Optional[int] = None,
) -> FastAPI:
    """
    Build the service app.

    Adapters default to the ones configured through the environment.
    """
    blob_store = blob_store if blob_store is not None else config.get_blob_store()
    index = index if index is not None else config.get_metadata_index()
    upload_limiter = RateLimiter(upload_rpm if upload_rpm is not None else config.UPLOAD_RPM)

    if config.is_production() and isinstance(blob_store, InMemoryBlobStore):
        logger.warning("Serving from an in-memory blob store in production; packs are lost on restart")

    # No interactive docs in production
    docs = {} if not config.is_production() else {"docs_url": None, "redoc_url": None}
    app = FastAPI(title="fieldproof", version=__version__, **docs)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__, "env": config.ENV}

    def ingest(archive: bytes, channel: Optional[str], client: str) -> PackMeta:
        try:
            unpacked = UnpackedPack(archive)
        except PackFormatError as e:
            logger.info("Rejected upload from %s: %s", client, e)
            raise HTTPException(400, 'MALFORMED_PACK')
        try:
            entry = _manifest_entry(unpacked, channel)
        except PackFormatError as e:
            logger.info("Rejected upload from %s: %s", client, e)
            raise HTTPException(400, 'MALFORMED_PACK')
        finally:
            unpacked.close()

        built = BuiltPack(archive=archive, pack_hash=unpacked.pack_hash, pack=entry)
        return publish_pack(built, blob_store, index)

    @app.post("/packs", response_model=PackMeta)
    async def upload_pack(request: Request, channel: Optional[str] = None):
        client = request.client.host if request.client else "unknown"
        if not upload_limiter.allow(client):
            raise HTTPException(429, 'RATE_LIMIT')

        archive = await request.body()
        if not archive:
            raise HTTPException(400, 'EMPTY_BODY')
        # Unzipping, fsync and index commits stay off the event loop
        return await run_in_threadpool(ingest, archive, channel, client)

    @app.get("/packs", response_model=List[PackMeta])
    def list_packs(
        channel: Optional[str] = None,
        limit: int = Query(DEFAULT_LIST_LIMIT, ge=0, le=MAX_LIST_LIMIT),
    ):
        return index.list(channel, limit=limit)

    @app.get("/packs/{content_id}/archive")
    def get_archive(content_id: str):
        return Response(content=_fetch(blob_store, content_id), media_type="application/zip")

    @app.get("/packs/{content_id}/verify", response_model=VerificationSummary)
    def verify_archive(content_id: str, expected_hash: Optional[str] = None):
        archive = _fetch(blob_store, content_id)
        # Fresh ledger and key cache per request: only duplicates inside this
        # archive count, and keys from past uploads are not retained.
        verifier = PackVerifier(PublicKeyCache(), ledger=DedupLedger())
        try:
            verification = verifier.verify(archive, expected_hash=expected_hash)
        except PackFormatError:
            raise HTTPException(422, 'MALFORMED_PACK')

        summary = verification.summary()
        for name in ("channel", "uploaderId"):
            if summary[name] is not None:
                summary[name] = str(summary[name])
        results = []
        for item in verification.results:
            data = item.to_dict()
            if data["id"] is not None:
                data["id"] = str(data["id"])
            results.append(ReportResult(**data))
        return VerificationSummary(contentId=content_id, results=results, **summary)

    return app
