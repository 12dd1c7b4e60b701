"""Pack builder tests."""

import base64
import json
import unittest

from factories import CREATED_AT, make_identity, make_pack, make_photo, make_reports, read_entries

from fieldproof.canonicalization import canonicalize
from fieldproof.exceptions import (
    EmptyPackError,
    ImageHashMismatchError,
    MalformedInputError,
    MissingPhotoError,
    PackBuildError,
)
from fieldproof.hashing import archive_hash
from fieldproof.pack import build_pack, image_filename, pack_signing_bytes, summarize
from fieldproof.signing import verify


class TestBuildPack(unittest.TestCase):

    def setUp(self):
        self.identity = make_identity()
        self.built, self.reports, self.photos = make_pack(self.identity)
        self.entries = read_entries(self.built.archive)

    def test_archive_layout(self):
        self.assertEqual(
            sorted(self.entries),
            ["images/pot-test0.jpg", "images/pot-test1.jpg", "images/pot-test2.jpg", "pack.json"]
        )
        for report in self.reports:
            self.assertEqual(self.entries[f"images/{report.id}.jpg"], self.photos[report.id])

    def test_manifest(self):
        pack = json.loads(self.entries["pack.json"])
        self.assertEqual(pack["version"], "1")
        self.assertEqual(pack["channel"], "city-north")
        self.assertEqual(pack["uploaderId"], self.identity.anon_id)
        self.assertEqual(pack["createdAt"], CREATED_AT)
        self.assertEqual(pack["reportCount"], 3)
        self.assertEqual(pack["counts"], {"MINOR": 1, "MODERATE": 1, "CRITICAL": 1})
        self.assertEqual(pack, self.built.pack)
        self.assertEqual(self.built.report_count, 3)

    def test_manifest_is_canonical(self):
        self.assertEqual(self.entries["pack.json"], canonicalize(self.built.pack))

    def test_reports_sanitized(self):
        pack = json.loads(self.entries["pack.json"])
        for wire in pack["reports"]:
            self.assertEqual(
                sorted(wire.keys()),
                ["anonId", "id", "media", "nullifier", "payload", "pubkey", "sig"]
            )
            self.assertEqual(wire["media"]["img_filename"], f"images/{wire['id']}.jpg")

    def test_hash_is_over_archive_bytes(self):
        self.assertEqual(self.built.pack_hash, archive_hash(self.built.archive))

    def test_deterministic(self):
        again = build_pack(
            self.reports,
            self.photos,
            channel="city-north",
            uploader_id=self.identity.anon_id,
            created_at=CREATED_AT,
        )
        self.assertEqual(again.archive, self.built.archive)
        self.assertEqual(again.pack_hash, self.built.pack_hash)

    def test_source_reports_untouched(self):
        for report in self.reports:
            self.assertNotIn("img_filename", report.media)

    def test_accepts_wire_dicts_with_local_fields(self):
        wires = []
        for report in self.reports:
            wire = report.to_dict()
            wire["photoDataURL"] = "data:image/jpeg;base64,AAAA"
            wire["verified"] = True
            wires.append(wire)
        built = build_pack(wires, self.photos, "city-north", self.identity.anon_id, created_at=CREATED_AT)
        self.assertEqual(built.archive, self.built.archive)


class TestPhotoSources(unittest.TestCase):

    def setUp(self):
        self.identity = make_identity()
        self.reports, self.photos = make_reports(self.identity, 2)

    def test_callable_lookup(self):
        built = build_pack(self.reports, self.photos.get, "c", "u", created_at=CREATED_AT)
        self.assertEqual(built.report_count, 2)

    def test_data_url_lookup(self):
        urls = {
            rid: "data:image/jpeg;base64," + base64.b64encode(data).decode("ascii")
            for rid, data in self.photos.items()
        }
        built = build_pack(self.reports, urls, "c", "u", created_at=CREATED_AT)
        entries = read_entries(built.archive)
        self.assertEqual(entries["images/pot-test0.jpg"], self.photos["pot-test0"])


class TestBuildFailures(unittest.TestCase):

    def setUp(self):
        self.identity = make_identity()
        self.reports, self.photos = make_reports(self.identity, 2)

    def test_empty(self):
        with self.assertRaises(EmptyPackError):
            build_pack([], self.photos, "c", "u")

    def test_missing_photo(self):
        photos = {"pot-test0": self.photos["pot-test0"]}
        with self.assertRaises(MissingPhotoError) as ctx:
            build_pack(self.reports, photos, "c", "u")
        self.assertEqual(ctx.exception.report_id, "pot-test1")

    def test_photo_changed_after_signing(self):
        photos = dict(self.photos)
        photos["pot-test1"] = make_photo(99)
        with self.assertRaises(ImageHashMismatchError) as ctx:
            build_pack(self.reports, photos, "c", "u")
        self.assertEqual(ctx.exception.report_id, "pot-test1")
        self.assertIsInstance(ctx.exception, PackBuildError)

    def test_unsafe_id(self):
        wire = self.reports[0].to_dict()
        wire["id"] = "../escape"
        with self.assertRaises(MalformedInputError):
            build_pack([wire], {"../escape": self.photos["pot-test0"]}, "c", "u")

    def test_duplicate_id(self):
        with self.assertRaises(MalformedInputError):
            build_pack([self.reports[0], self.reports[0]], self.photos, "c", "u")

    def test_incomplete_report(self):
        with self.assertRaises(MalformedInputError):
            build_pack([{"id": "pot-test0"}], self.photos, "c", "u")


class TestSignedPack(unittest.TestCase):

    def test_pack_signature(self):
        identity = make_identity()
        built, _, _ = make_pack(identity, signer=identity)
        pack = json.loads(read_entries(built.archive)["pack.json"])
        self.assertEqual(pack["signer"], identity.public_key)
        self.assertTrue(verify(pack["signer"], pack["packSig"], pack_signing_bytes(pack)))

        pack["channel"] = "elsewhere"
        self.assertFalse(verify(pack["signer"], pack["packSig"], pack_signing_bytes(pack)))


class TestHelpers(unittest.TestCase):

    def test_image_filename(self):
        self.assertEqual(image_filename("pot-1", "image/png"), "images/pot-1.png")
        self.assertEqual(image_filename("pot-1", "IMAGE/JPEG"), "images/pot-1.jpg")
        self.assertEqual(image_filename("pot-1", None), "images/pot-1.bin")

    def test_summarize_ignores_unknown(self):
        reports = [
            {"payload": {"severity": "MINOR"}},
            {"payload": {"severity": "SEVERE"}},
            {"payload": None},
        ]
        self.assertEqual(summarize(reports), {"MINOR": 1, "MODERATE": 0, "CRITICAL": 0})


if __name__ == "__main__":
    unittest.main()
