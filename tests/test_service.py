import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from factories import corrupt_entry, make_pack, rewrite_archive

from fieldproof import config, service
from fieldproof.blobstore import InMemoryBlobStore
from fieldproof.hashing import content_id
from fieldproof.index import InMemoryMetadataIndex
from fieldproof.service import create_app


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def client(blobs):
    app = create_app(blob_store=blobs, index=InMemoryMetadataIndex(), upload_rpm=100)
    return TestClient(app)


@pytest.fixture
def built():
    pack, _, _ = make_pack()
    return pack


def upload(client, archive, channel=None):
    url = "/packs" if channel is None else f"/packs?channel={channel}"
    return client.post(url, content=archive, headers={"Content-Type": "application/zip"})


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_upload_publishes_entry(client, built):
    r = upload(client, built.archive)
    assert r.status_code == 200
    meta = r.json()
    assert meta["contentId"] == content_id(built.archive)
    assert meta["archiveHash"] == built.pack_hash
    assert meta["channel"] == "city-north"
    assert meta["reportCount"] == 3
    assert meta["counts"] == {"MINOR": 1, "MODERATE": 1, "CRITICAL": 1}


def test_channel_query_overrides_manifest(client, built):
    meta = upload(client, built.archive, channel="elsewhere").json()
    assert meta["channel"] == "elsewhere"
    listed = client.get("/packs?channel=elsewhere").json()
    assert [m["packId"] for m in listed] == [meta["packId"]]
    assert client.get("/packs?channel=city-north").json() == []


def test_list_newest_first(client):
    older, _, _ = make_pack(created_at=1000)
    newer, _, _ = make_pack(created_at=2000)
    upload(client, older.archive)
    upload(client, newer.archive)
    listed = client.get("/packs").json()
    assert [m["createdAt"] for m in listed] == [2000, 1000]
    assert len(client.get("/packs?limit=1").json()) == 1


def test_archive_round_trip(client, built):
    cid = upload(client, built.archive).json()["contentId"]
    r = client.get(f"/packs/{cid}/archive")
    assert r.status_code == 200
    assert r.content == built.archive
    assert r.headers["content-type"] == "application/zip"


def test_archive_missing(client):
    r = client.get(f"/packs/sha256:{'0' * 64}/archive")
    assert r.status_code == 404


def test_archive_bad_id(client):
    r = client.get("/packs/not-a-content-id/archive")
    assert r.status_code == 400


def test_verify_endpoint(client, built):
    cid = upload(client, built.archive).json()["contentId"]
    r = client.get(f"/packs/{cid}/verify", params={"expected_hash": built.pack_hash})
    assert r.status_code == 200
    body = r.json()
    assert body["contentId"] == cid
    assert body["hashMatches"] is True
    assert body["total"] == 3
    assert body["accepted"] == 3
    assert body["warnings"] == []
    assert [res["id"] for res in body["results"]] == ["pot-test0", "pot-test1", "pot-test2"]


def test_verify_reports_tampering(client, built):
    def edit(pack):
        pack["reports"][0]["payload"]["lat"] = 0

    cid = upload(client, rewrite_archive(built.archive, edit)).json()["contentId"]
    body = client.get(f"/packs/{cid}/verify", params={"expected_hash": built.pack_hash}).json()
    assert body["hashMatches"] is False
    assert "Pack hash mismatch" in body["warnings"]
    assert body["accepted"] == 2
    assert body["results"][0]["reasons"] == ["SIGNATURE_INVALID"]


def test_verify_is_per_archive(client, built):
    cid = upload(client, built.archive).json()["contentId"]
    first = client.get(f"/packs/{cid}/verify").json()
    second = client.get(f"/packs/{cid}/verify").json()
    assert first["accepted"] == second["accepted"] == 3


def test_upload_rejects_garbage(client):
    assert upload(client, b"not a zip").status_code == 400
    assert upload(client, b"").status_code == 400


def test_upload_rejects_manifestless_zip(client, blobs):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("readme.txt", "hello")
    assert upload(client, buffer.getvalue()).status_code == 400
    assert len(blobs) == 0


def test_upload_rejects_bad_manifest_types(client, built):
    archive = rewrite_archive(built.archive, lambda pack: pack.__setitem__("createdAt", "yesterday"))
    assert upload(client, archive).status_code == 400


def test_upload_rate_limited(blobs, built):
    client = TestClient(create_app(blob_store=blobs, index=InMemoryMetadataIndex(), upload_rpm=2))
    assert upload(client, built.archive).status_code == 200
    assert upload(client, built.archive).status_code == 200
    r = upload(client, built.archive)
    assert r.status_code == 429
    assert r.json()["detail"] == "RATE_LIMIT"
    assert client.get("/packs").status_code == 200


def test_upload_work_runs_in_threadpool(client, built, monkeypatch):
    calls = []
    original = service.run_in_threadpool

    async def recording(func, *args, **kwargs):
        calls.append(func.__name__)
        return await original(func, *args, **kwargs)

    monkeypatch.setattr(service, "run_in_threadpool", recording)
    assert upload(client, built.archive).status_code == 200
    assert calls == ["ingest"]


def test_upload_rejects_corrupt_manifest(client, blobs, built):
    assert upload(client, corrupt_entry(built.archive, "pack.json")).status_code == 400
    assert len(blobs) == 0


def test_verify_corrupt_image_fails_one_report(client, built):
    archive = corrupt_entry(built.archive, "images/pot-test1.jpg")
    cid = upload(client, archive).json()["contentId"]
    r = client.get(f"/packs/{cid}/verify")
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 3
    assert body["accepted"] == 2
    assert body["results"][1]["okSig"] is True
    assert body["results"][1]["reasons"] == ["IMAGE_CORRUPT"]


def test_health_reports_environment(client):
    assert client.get("/health").json()["env"] == config.ENV


def test_production_hides_docs(blobs, monkeypatch):
    monkeypatch.setattr(config, "ENV", "prod")
    prod = TestClient(create_app(blob_store=blobs, index=InMemoryMetadataIndex()))
    assert prod.get("/docs").status_code == 404
    assert prod.get("/health").json()["env"] == "prod"
