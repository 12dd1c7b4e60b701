"""Publish and import flow tests."""

import unittest

from factories import CREATED_AT, make_identity, make_pack

from fieldproof.blobstore import InMemoryBlobStore
from fieldproof.exceptions import ResourceUnavailableError
from fieldproof.feed import import_channel, import_pack, new_pack_id, publish_pack, verify_content
from fieldproof.index import InMemoryMetadataIndex
from fieldproof.signing import PublicKeyCache
from fieldproof.verifier import PackVerifier


class TestPublish(unittest.TestCase):

    def setUp(self):
        self.blobs = InMemoryBlobStore()
        self.index = InMemoryMetadataIndex()
        self.identity = make_identity()
        self.built, _, _ = make_pack(self.identity)

    def test_entry_fields(self):
        meta = publish_pack(self.built, self.blobs, self.index)
        self.assertTrue(meta.packId.startswith("pack-"))
        self.assertEqual(meta.archiveHash, self.built.pack_hash)
        self.assertEqual(meta.channel, "city-north")
        self.assertEqual(meta.reportCount, 3)
        self.assertEqual(meta.uploaderId, self.identity.anon_id)
        self.assertEqual(meta.createdAt, CREATED_AT)
        self.assertEqual(self.blobs.get(meta.contentId), self.built.archive)
        self.assertEqual(self.index.list(), [meta])

    def test_explicit_pack_id(self):
        meta = publish_pack(self.built, self.blobs, self.index, pack_id="pack-fixed")
        self.assertEqual(self.index.get("pack-fixed"), meta)

    def test_verify_content(self):
        meta = publish_pack(self.built, self.blobs, self.index)
        result = verify_content(meta.contentId, self.blobs, PackVerifier(PublicKeyCache()),
                                expected_hash=meta.archiveHash)
        self.assertTrue(result.hash_matches)
        self.assertEqual(len(result.accepted), 3)

    def test_pack_ids_unique_prefix(self):
        self.assertRegex(new_pack_id(), r"^pack-[0-9a-z]+$")


class TestImport(unittest.TestCase):

    def setUp(self):
        self.blobs = InMemoryBlobStore()
        self.index = InMemoryMetadataIndex()
        self.identity = make_identity()
        self.verifier = PackVerifier(PublicKeyCache())

    def test_import_pack(self):
        built, _, _ = make_pack(self.identity)
        meta = publish_pack(built, self.blobs, self.index)
        outcome = import_pack(meta, self.blobs, self.verifier)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.added, 3)
        self.assertEqual(outcome.skipped, 0)

    def test_claimed_hash_not_trusted(self):
        built, _, _ = make_pack(self.identity)
        meta = publish_pack(built, self.blobs, self.index)
        lying = meta.model_copy(update={"archiveHash": "not-the-hash"})
        outcome = import_pack(lying, self.blobs, self.verifier)
        self.assertFalse(outcome.verification.hash_matches)
        self.assertEqual(outcome.added, 3)

    def test_missing_blob_raises(self):
        built, _, _ = make_pack(self.identity)
        meta = publish_pack(built, InMemoryBlobStore(), self.index)
        with self.assertRaises(ResourceUnavailableError):
            import_pack(meta, self.blobs, self.verifier)

    def test_channel_import_dedups_across_packs(self):
        first, _, _ = make_pack(self.identity, created_at=CREATED_AT)
        resubmitted, _, _ = make_pack(self.identity, created_at=CREATED_AT + 60000)
        self.assertNotEqual(first.pack_hash, resubmitted.pack_hash)
        publish_pack(first, self.blobs, self.index, pack_id="pack-1")
        publish_pack(resubmitted, self.blobs, self.index, pack_id="pack-2")

        result = import_channel(self.index, self.blobs, self.verifier, "city-north")
        self.assertEqual([o.meta.packId for o in result.outcomes], ["pack-2", "pack-1"])
        self.assertEqual(len(result.accepted_reports), 3)
        self.assertEqual(result.outcomes[1].skipped, 3)
        self.assertEqual(result.failed, [])

    def test_channel_import_records_failures(self):
        good, _, _ = make_pack(self.identity, created_at=CREATED_AT)
        other_identity = make_identity()
        gone, _, _ = make_pack(other_identity, created_at=CREATED_AT + 1000)
        publish_pack(good, self.blobs, self.index, pack_id="pack-good")
        publish_pack(gone, InMemoryBlobStore(), self.index, pack_id="pack-gone")

        result = import_channel(self.index, self.blobs, self.verifier)
        self.assertEqual([o.meta.packId for o in result.failed], ["pack-gone"])
        self.assertIn("not found", result.failed[0].error)
        self.assertEqual(len(result.accepted_reports), 3)

    def test_other_channels_ignored(self):
        north, _, _ = make_pack(self.identity, channel="north")
        south, _, _ = make_pack(make_identity(), channel="south")
        publish_pack(north, self.blobs, self.index, pack_id="pack-n")
        publish_pack(south, self.blobs, self.index, pack_id="pack-s")
        result = import_channel(self.index, self.blobs, self.verifier, "south")
        self.assertEqual(len(result.outcomes), 1)
        self.assertEqual(result.outcomes[0].meta.channel, "south")


if __name__ == "__main__":
    unittest.main()
