"""Configuration factory tests."""

import os
import tempfile
import unittest

from fieldproof import config
from fieldproof.blobstore import InMemoryBlobStore, LocalBlobStore
from fieldproof.index import SqliteMetadataIndex
from fieldproof.kvstore import FileKeyValueStore
from fieldproof.ledger import SqliteDedupLedger


class TestFactories(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def test_blob_backends(self):
        self.assertIsInstance(config.get_blob_store("memory"), InMemoryBlobStore)
        original = config.BLOB_PATH
        config.BLOB_PATH = os.path.join(self.tmp.name, "blobs")
        try:
            self.assertIsInstance(config.get_blob_store("local"), LocalBlobStore)
        finally:
            config.BLOB_PATH = original
        with self.assertRaises(ValueError):
            config.get_blob_store("floppy")

    def test_s3_requires_bucket(self):
        original = config.S3_BUCKET
        config.S3_BUCKET = ""
        try:
            with self.assertRaises(ValueError):
                config.get_blob_store("s3")
        finally:
            config.S3_BUCKET = original

    def test_explicit_paths(self):
        path = os.path.join(self.tmp.name, "id.json")
        store = config.get_identity_store(path)
        self.assertIsInstance(store, FileKeyValueStore)
        self.assertEqual(str(store.path), path)

        index = config.get_metadata_index(os.path.join(self.tmp.name, "index.db"))
        self.assertIsInstance(index, SqliteMetadataIndex)
        index.close()

        ledger = config.get_dedup_ledger(os.path.join(self.tmp.name, "ledger.db"))
        self.assertIsInstance(ledger, SqliteDedupLedger)
        ledger.close()

    def test_validate_config_keys(self):
        report = config.validate_config()
        self.assertIn("identity", report)
        self.assertIn("index", report)
        self.assertTrue(all(isinstance(v, bool) for v in report.values()))

    def test_is_production(self):
        original = config.ENV
        try:
            config.ENV = "prod"
            self.assertTrue(config.is_production())
            config.ENV = "stage"
            self.assertFalse(config.is_production())
        finally:
            config.ENV = original


if __name__ == "__main__":
    unittest.main()
