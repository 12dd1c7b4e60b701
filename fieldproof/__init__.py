"""
Fieldproof: signed, geotagged field reports.

Version: 1.0.0

A device holds an Ed25519 identity. Each captured photo becomes a report
binding the photo hash, location and classifier output to the device's
pseudonym and a daily nullifier, signed over a canonical JSON view. Reports
travel in content-addressed ZIP packs; consumers verify every report on
their own and drop resubmissions through a dedup ledger.

Usage:
    from fieldproof import (
        IdentityManager,
        MemoryKeyValueStore,
        assemble_report,
        build_pack,
        verify_pack,
        PublicKeyCache,
    )

    manager = IdentityManager(MemoryKeyValueStore())
    identity = manager.create_or_load()

    report = assemble_report(observation, photo_bytes, identity)
    built = build_pack([report], {report.id: photo_bytes},
                       channel="city-north", uploader_id=identity.anon_id)

    result = verify_pack(built.archive, PublicKeyCache(),
                         expected_hash=built.pack_hash)
    accepted = result.accepted
"""

__version__ = "1.0.0"

# Canonicalization and hashing
from .canonicalization import canonicalize, canonicalize_str, signing_view
from .hashing import (
    archive_hash,
    content_id,
    image_hash,
    sha256_b64url,
    verify_hash,
)

# Signing
from .signing import (
    KeyPair,
    PublicKeyCache,
    generate_keypair,
    sign,
    verify,
)

# Identity
from .kvstore import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .identity import (
    Identity,
    IdentityManager,
    anon_id_from_public_key,
    date_key,
    derive_nullifier,
)

# Reports and packs
from .report import Observation, Report, Severity, assemble_report
from .pack import BuiltPack, build_pack

# Verification
from .ledger import DedupLedger, SqliteDedupLedger, dedup_key
from .verifier import (
    PackVerification,
    PackVerifier,
    RejectReason,
    ReportVerification,
    verify_pack,
)

# Errors
from .exceptions import (
    FieldproofError,
    IdentityError,
    IntegrityError,
    MalformedInputError,
    PackBuildError,
    PackFormatError,
    ResourceUnavailableError,
)


__all__ = [
    "__version__",

    # Canonicalization
    "canonicalize",
    "canonicalize_str",
    "signing_view",

    # Hashing
    "archive_hash",
    "content_id",
    "image_hash",
    "sha256_b64url",
    "verify_hash",

    # Signing
    "KeyPair",
    "PublicKeyCache",
    "generate_keypair",
    "sign",
    "verify",

    # Identity
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "Identity",
    "IdentityManager",
    "anon_id_from_public_key",
    "date_key",
    "derive_nullifier",

    # Reports and packs
    "Observation",
    "Report",
    "Severity",
    "assemble_report",
    "BuiltPack",
    "build_pack",

    # Verification
    "DedupLedger",
    "SqliteDedupLedger",
    "dedup_key",
    "PackVerification",
    "PackVerifier",
    "RejectReason",
    "ReportVerification",
    "verify_pack",

    # Errors
    "FieldproofError",
    "IdentityError",
    "IntegrityError",
    "MalformedInputError",
    "PackBuildError",
    "PackFormatError",
    "ResourceUnavailableError",
]
