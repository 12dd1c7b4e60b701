"""
Configuration module for fieldproof.

Centralizes configuration with environment variable support and factory
functions for the configured storage adapters.
"""

import os
from pathlib import Path
from typing import Dict

from .blobstore import BlobStore, InMemoryBlobStore, LocalBlobStore, S3BlobStore
from .index import MetadataIndex, SqliteMetadataIndex
from .kvstore import FileKeyValueStore, KeyValueStore
from .ledger import DedupLedger, Ledger, SqliteDedupLedger

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("FIELDPROOF_ENV", "dev")  # dev|stage|prod

HOME = Path(os.getenv("FIELDPROOF_HOME", str(Path.home() / ".fieldproof")))

# Paths
IDENTITY_PATH = os.getenv("FIELDPROOF_IDENTITY_PATH", str(HOME / "identity.json"))
BLOB_PATH = os.getenv("FIELDPROOF_BLOB_PATH", str(HOME / "blobs"))
INDEX_PATH = os.getenv("FIELDPROOF_INDEX_PATH", str(HOME / "index.db"))
LEDGER_PATH = os.getenv("FIELDPROOF_LEDGER_PATH", "")  # empty: in-memory per run

# Blob store backend
BLOB_BACKEND = os.getenv("FIELDPROOF_BLOB_BACKEND", "local")  # local|memory|s3
S3_BUCKET = os.getenv("FIELDPROOF_S3_BUCKET", "")
S3_PREFIX = os.getenv("FIELDPROOF_S3_PREFIX", "fieldproof/blobs/")
AWS_REGION = os.getenv("AWS_REGION", "")

# Publishing
DEFAULT_CHANNEL = os.getenv("FIELDPROOF_DEFAULT_CHANNEL", "global")

# Rate limits (requests per minute)
UPLOAD_RPM = int(os.getenv("UPLOAD_RPM", "30"))

# Verification
VERIFY_WORKERS = int(os.getenv("FIELDPROOF_VERIFY_WORKERS", "1"))

# Logging
LOG_LEVEL = os.getenv("FIELDPROOF_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("FIELDPROOF_LOG_JSON", "0").lower() in ("1", "true", "yes")


# ============================================================
# Adapter Factories
# ============================================================

def get_identity_store(path: str = None) -> KeyValueStore:
    """Identity persistence (JSON file)."""
    return FileKeyValueStore(path or IDENTITY_PATH)


def get_blob_store(backend: str = None) -> BlobStore:
    """
    Create the configured blob store.

    Args:
        backend: "local", "memory" or "s3" (default: FIELDPROOF_BLOB_BACKEND)
    """
    backend = backend or BLOB_BACKEND
    if backend == "s3":
        if not S3_BUCKET:
            raise ValueError("FIELDPROOF_S3_BUCKET required for the s3 blob backend")
        return S3BlobStore(bucket=S3_BUCKET, prefix=S3_PREFIX, region=AWS_REGION or None)
    if backend == "memory":
        return InMemoryBlobStore()
    if backend == "local":
        return LocalBlobStore(BLOB_PATH)
    raise ValueError(f"Unknown blob backend: {backend}")


def get_metadata_index(path: str = None) -> MetadataIndex:
    return SqliteMetadataIndex(path or INDEX_PATH)


def get_dedup_ledger(path: str = None) -> Ledger:
    """Persistent ledger when a path is configured, otherwise a fresh in-memory one."""
    path = path or LEDGER_PATH
    if path:
        return SqliteDedupLedger(path)
    return DedupLedger()


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Report which configured paths exist.
    Returns dict of name -> exists.
    """
    paths = {
        "home": str(HOME),
        "identity": IDENTITY_PATH,
        "index": INDEX_PATH,
    }
    if BLOB_BACKEND == "local":
        paths["blobs"] = BLOB_PATH
    if LEDGER_PATH:
        paths["ledger"] = LEDGER_PATH

    return {name: Path(path).exists() for name, path in paths.items()}


# ============================================================
# Environment Checks
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"
