# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Unit tests for local metadata storage"""

import logging
import os
import sys
import tempfile
import unittest
from unittest.mock import patch

from tests import utils
from tufcore.client import FilesystemStorage, MemoryStorage

logger = logging.getLogger(__name__)


class TestFilesystemStorage(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.storage = FilesystemStorage(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_store_and_load(self) -> None:
        self.storage.store("timestamp", b"v1")
        self.assertEqual(self.storage.load("timestamp"), b"v1")
        self.assertTrue(
            os.path.isfile(os.path.join(self.temp_dir.name, "timestamp.json"))
        )

        self.storage.store("timestamp", b"v2")
        self.assertEqual(self.storage.load("timestamp"), b"v2")
        # no temporary files are left behind
        self.assertEqual(os.listdir(self.temp_dir.name), ["timestamp.json"])

    def test_missing(self) -> None:
        with self.assertRaises(FileNotFoundError):
            self.storage.load("snapshot")

    def test_role_names_are_quoted(self) -> None:
        self.storage.store("../role/with/slashes", b"data")
        self.assertEqual(
            os.listdir(self.temp_dir.name),
            ["..%2Frole%2Fwith%2Fslashes.json"],
        )
        self.assertEqual(self.storage.load("../role/with/slashes"), b"data")

    def test_failed_write_keeps_old_data(self) -> None:
        self.storage.store("root", b"old")
        with patch("os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                self.storage.store("root", b"new")

        self.assertEqual(self.storage.load("root"), b"old")
        self.assertEqual(os.listdir(self.temp_dir.name), ["root.json"])


class TestMemoryStorage(unittest.TestCase):
    def test_store_and_load(self) -> None:
        storage = MemoryStorage({"root": b"initial"})
        self.assertEqual(storage.load("root"), b"initial")

        storage.store("root", b"new")
        storage.store("role/1", b"delegated")
        self.assertEqual(storage.load("root"), b"new")
        self.assertEqual(
            storage.files, {"root": b"new", "role/1": b"delegated"}
        )

    def test_missing(self) -> None:
        with self.assertRaises(FileNotFoundError):
            MemoryStorage().load("timestamp")

    def test_initial_is_copied(self) -> None:
        initial = {"root": b"initial"}
        MemoryStorage(initial).store("timestamp", b"ts")
        self.assertEqual(initial, {"root": b"initial"})


# Run unit test.
if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
