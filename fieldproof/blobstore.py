"""
Content-addressed blob stores.

Every backend exposes ``put(bytes) -> content_id`` and
``get(content_id) -> bytes``. The identifier is derived from the bytes, so
a read is checked against its own key before it is returned.

Backends:
  - InMemoryBlobStore: process-local, for tests and demos.
  - LocalBlobStore: sharded directory on the local filesystem.
  - S3BlobStore: S3 or S3-compatible bucket (requires boto3).
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from .exceptions import IntegrityError, MalformedInputError, ResourceUnavailableError
from .hashing import CONTENT_ID_PREFIX, content_id, is_content_id

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Uniform interface for content-addressed storage."""

    @abstractmethod
    def put(self, data: bytes) -> str:
        """Store bytes and return their content identifier. Idempotent."""
        pass

    @abstractmethod
    def _read(self, cid: str) -> Optional[bytes]:
        """Raw read; None when absent."""
        pass

    def get(self, cid: str) -> bytes:
        """
        Fetch bytes by content identifier.

        Raises:
            MalformedInputError: the identifier is not a content id
            ResourceUnavailableError: nothing is stored under it
            IntegrityError: the stored bytes do not hash to it
        """
        if not is_content_id(cid):
            raise MalformedInputError(f"Not a content identifier: {cid!r}")
        data = self._read(cid)
        if data is None:
            raise ResourceUnavailableError(f"Blob not found: {cid}")
        if content_id(data) != cid:
            raise IntegrityError(f"Stored blob does not match its identifier: {cid}")
        return data

    def exists(self, cid: str) -> bool:
        return is_content_id(cid) and self._read(cid) is not None


class InMemoryBlobStore(BlobStore):

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.RLock()

    def put(self, data: bytes) -> str:
        data = bytes(data)
        cid = content_id(data)
        with self._lock:
            self._blobs.setdefault(cid, data)
        return cid

    def _read(self, cid: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(cid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


class LocalBlobStore(BlobStore):
    """
    Filesystem store laid out as ``<root>/<hex[:2]>/<hex>``.

    Blobs are written to a temporary file and renamed into place, so a
    reader never sees a partial blob. Existing blobs are never rewritten.
    """

    def __init__(self, root: Union[str, Path]):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, cid: str) -> Path:
        digest = cid[len(CONTENT_ID_PREFIX):]
        return self._root / digest[:2] / digest

    def put(self, data: bytes) -> str:
        data = bytes(data)
        cid = content_id(data)
        path = self.path_for(cid)
        if path.exists():
            return cid
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        logger.debug("Stored blob %s (%d bytes)", cid, len(data))
        return cid

    def _read(self, cid: str) -> Optional[bytes]:
        try:
            with open(self.path_for(cid), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None


class S3BlobStore(BlobStore):
    """
    Blob store on an S3 bucket. Objects are keyed ``<prefix><hex digest>``.

    Retries are left to the boto3 client configuration.
    """

    def __init__(self, bucket: str, prefix: str = "fieldproof/blobs/", region: Optional[str] = None, client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/" if prefix else ""
        self._region = region
        self._client = client

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError(
                    "boto3 required for the S3 blob store. Install with: pip install fieldproof[s3]"
                ) from e
            self._client = boto3.client("s3", region_name=self._region)
        return self._client

    def key_for(self, cid: str) -> str:
        return self.prefix + cid[len(CONTENT_ID_PREFIX):]

    def put(self, data: bytes) -> str:
        data = bytes(data)
        cid = content_id(data)
        self._get_client().put_object(
            Bucket=self.bucket,
            Key=self.key_for(cid),
            Body=data,
            ContentType="application/zip",
        )
        return cid

    def _read(self, cid: str) -> Optional[bytes]:
        client = self._get_client()
        try:
            resp = client.get_object(Bucket=self.bucket, Key=self.key_for(cid))
        except client.exceptions.NoSuchKey:
            return None
        return resp["Body"].read()
