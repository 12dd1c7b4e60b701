#!/usr/bin/env python3
"""
Fieldproof Example - Capture, Publish, Import

Two devices capture and sign reports, bundle them into packs and publish
them. A consumer then imports the channel, verifying every report on its
own and dropping a resubmitted pack through the shared dedup ledger.

Run with: python examples/publish_and_verify.py
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Tuple

from fieldproof import (
    IdentityManager,
    MemoryKeyValueStore,
    PackVerifier,
    PublicKeyCache,
    Report,
    assemble_report,
    build_pack,
)
from fieldproof.blobstore import InMemoryBlobStore
from fieldproof.feed import import_channel, publish_pack
from fieldproof.index import InMemoryMetadataIndex
from fieldproof.logging_config import configure_logging


def simulate_classifier(n: int) -> Dict:
    """
    Stand-in for the on-device detector.

    In production the severity, score and size estimates come from the
    segmentation model; they are opaque to the protocol.
    """
    severities = ["MINOR", "MODERATE", "CRITICAL"]
    return {
        "lat": 40.7128 + n * 0.0007,
        "lng": -74.0060 - n * 0.0004,
        "severity": severities[n % 3],
        "score": round(0.6 + n * 0.07, 2),
        "area_px": 900 + n * 250,
        "depth_cm": 2.5 + n,
    }


def capture(manager: IdentityManager, count: int, start: datetime) -> Tuple[List[Report], Dict[str, bytes]]:
    identity = manager.create_or_load()
    reports, photos = [], {}
    for n in range(count):
        photo = f"JPEG bytes of pothole {identity.anon_id[:6]}-{n}".encode()
        report = assemble_report(
            simulate_classifier(n),
            photo,
            identity,
            captured_at=start + timedelta(minutes=n),
        )
        reports.append(report)
        photos[report.id] = photo
    return reports, photos


def main():
    configure_logging(level="WARNING", json_format=False)

    blobs = InMemoryBlobStore()
    index = InMemoryMetadataIndex()
    start = datetime.now(timezone.utc) - timedelta(hours=1)

    print("=" * 60)
    print("Fieldproof: publish and verify")
    print("=" * 60)

    # Device A
    alice = IdentityManager(MemoryKeyValueStore())
    reports_a, photos_a = capture(alice, 3, start)
    pack_a = build_pack(reports_a, photos_a, "downtown", alice.create_or_load().anon_id)
    meta_a = publish_pack(pack_a, blobs, index)
    print(f"\nDevice A published {meta_a.packId}: {meta_a.reportCount} reports, counts {meta_a.counts}")

    # Device B
    bob = IdentityManager(MemoryKeyValueStore())
    reports_b, photos_b = capture(bob, 2, start)
    pack_b = build_pack(reports_b, photos_b, "downtown", bob.create_or_load().anon_id,
                        signer=bob.create_or_load())
    meta_b = publish_pack(pack_b, blobs, index)
    print(f"Device B published {meta_b.packId}: {meta_b.reportCount} reports (signed pack)")

    # Device A uploads the same reports again in a new pack
    again = build_pack(reports_a, photos_a, "downtown", alice.create_or_load().anon_id,
                       created_at=pack_a.pack["createdAt"] + 1)
    publish_pack(again, blobs, index)
    print("Device A re-published its reports in a second pack")

    # Consumer
    print("\n" + "-" * 60)
    print("Consumer imports channel 'downtown'")
    print("-" * 60)
    verifier = PackVerifier(PublicKeyCache())
    result = import_channel(index, blobs, verifier, "downtown")

    for outcome in result.outcomes:
        v = outcome.verification
        print(f"{outcome.meta.packId}: added {outcome.added}, skipped {outcome.skipped}"
              f", hash {'ok' if v.hash_matches else 'MISMATCH'}"
              + (f", pack signature {'ok' if v.pack_sig_ok else 'INVALID'}" if v.pack_sig_ok is not None else ""))
        for item in v.rejected:
            print(f"  ✗ {item.report_id}: {', '.join(r.value for r in item.reasons)}")

    print(f"\nAccepted reports: {len(result.accepted_reports)}")
    print("=" * 60)


if __name__ == "__main__":
    main()
