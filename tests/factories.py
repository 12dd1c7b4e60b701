"""Builders shared by the test modules."""

import io
import json
import zipfile
from datetime import datetime, timedelta, timezone

from fieldproof import IdentityManager, MemoryKeyValueStore, assemble_report, build_pack

CAPTURED_AT = datetime(2025, 3, 14, 9, 26, 53, 589000, tzinfo=timezone.utc)
CREATED_AT = 1741944413589


def make_identity():
    return IdentityManager(MemoryKeyValueStore()).create_or_load()


def make_observation(**overrides):
    observation = {
        "lat": 52.5200,
        "lng": 13.4050,
        "severity": "MODERATE",
        "score": 0.82,
        "area_px": 1834,
        "depth_cm": 4.5,
    }
    observation.update(overrides)
    return observation


def make_photo(n: int) -> bytes:
    return b"\xff\xd8\xff\xe0" + (f"photo-{n}-".encode("ascii") * 32) + b"\xff\xd9"


def make_reports(identity, count=3, severities=("MINOR", "MODERATE", "CRITICAL")):
    """Signed reports with distinct capture times, plus their photos by id."""
    reports, photos = [], {}
    for i in range(count):
        photo = make_photo(i)
        report = assemble_report(
            make_observation(severity=severities[i % len(severities)], lat=52.52 + i / 1000),
            photo,
            identity,
            captured_at=CAPTURED_AT + timedelta(seconds=i),
            report_id=f"pot-test{i}",
        )
        reports.append(report)
        photos[report.id] = photo
    return reports, photos


def make_pack(identity=None, count=3, channel="city-north", created_at=CREATED_AT, signer=None):
    identity = identity or make_identity()
    reports, photos = make_reports(identity, count)
    built = build_pack(
        reports,
        photos,
        channel=channel,
        uploader_id=identity.anon_id,
        created_at=created_at,
        signer=signer,
    )
    return built, reports, photos


def read_entries(archive: bytes):
    with zipfile.ZipFile(io.BytesIO(archive)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def rewrite_archive(archive: bytes, edit_pack=None, drop=(), replace=None):
    """
    Re-pack an archive after editing its manifest or entries.

    ``edit_pack`` receives the parsed pack.json and mutates it in place.
    """
    entries = read_entries(archive)
    pack = json.loads(entries["pack.json"])
    if edit_pack is not None:
        edit_pack(pack)
    entries["pack.json"] = json.dumps(pack).encode("utf-8")
    for name in drop:
        entries.pop(name, None)
    for name, data in (replace or {}).items():
        entries[name] = data

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def corrupt_entry(archive: bytes, name: str) -> bytes:
    """Flip one byte in the middle of an entry's stored (possibly compressed) data."""
    with zipfile.ZipFile(io.BytesIO(archive)) as zf:
        info = zf.getinfo(name)
    offset = info.header_offset
    name_len = int.from_bytes(archive[offset + 26:offset + 28], "little")
    extra_len = int.from_bytes(archive[offset + 28:offset + 30], "little")
    position = offset + 30 + name_len + extra_len + info.compress_size // 2

    damaged = bytearray(archive)
    damaged[position] ^= 0xFF
    return bytes(damaged)
