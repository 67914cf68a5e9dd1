# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Unit tests for the update cycle state machine"""

import logging
import sys
import unittest
from datetime import datetime, timezone
from typing import List, Optional

from tests import utils
from tests.repository_simulator import RepositorySimulator
from tufcore.api import exceptions
from tufcore.api.metadata import Root, Snapshot, Targets, Timestamp
from tufcore.client._internal.trusted_metadata_set import TrustedMetadataSet
from tufcore.client._internal.workflow import (
    FetchRequest,
    FetchResult,
    State,
    UpdateWorkflow,
)
from tufcore.client.config import UpdaterConfig

logger = logging.getLogger(__name__)

PAST = datetime(2000, 1, 1, tzinfo=timezone.utc)


class TestUpdateWorkflow(unittest.TestCase):
    """Drive UpdateWorkflow against the repository simulator."""

    def setUp(self) -> None:
        self.sim = RepositorySimulator()
        self.trusted_set = TrustedMetadataSet(self.sim.signed_roots[0])
        self.requests: List[FetchRequest] = []

    def _fetch(self, request: FetchRequest) -> bytes:
        self.requests.append(request)
        return self.sim.fetch_metadata(request.role, request.version)

    def _run(self, config: Optional[UpdaterConfig] = None) -> UpdateWorkflow:
        cycle = UpdateWorkflow(self.trusted_set, config)
        self.requests = []
        cycle.run(self._fetch)
        return cycle

    def _publish_new_root(self) -> None:
        self.sim.root.version += 1
        self.sim.publish_root()

    def test_step_by_step(self) -> None:
        cycle = UpdateWorkflow(self.trusted_set)
        self.assertEqual(cycle.state, State.FETCH_ROOT)
        self.assertEqual(cycle.request(), FetchRequest(Root.type, 512000, 2))

        not_found = exceptions.DownloadHTTPError("not found", 404)
        state = cycle.advance(FetchResult(error=not_found))
        self.assertEqual(state, State.FETCH_TIMESTAMP)
        self.assertEqual(
            cycle.request(), FetchRequest(Timestamp.type, 16384, None)
        )

        expected = [
            (Timestamp.type, State.VERIFY_TIMESTAMP, State.FETCH_SNAPSHOT),
            (Snapshot.type, State.VERIFY_SNAPSHOT, State.FETCH_TARGETS),
            (Targets.type, State.VERIFY_TARGETS, State.DONE),
        ]
        for role, verify_state, next_state in expected:
            request = cycle.request()
            self.assertIsNotNone(request)
            self.assertEqual(request.role, role)
            data = self.sim.fetch_metadata(role)
            self.assertEqual(cycle.advance(FetchResult(data)), verify_state)
            self.assertIsNone(cycle.request())
            self.assertEqual(cycle.advance(), next_state)

        self.assertTrue(cycle.finished)
        self.assertIsNone(cycle.error)
        self.assertEqual(
            [role for role, _ in cycle.committed],
            [Timestamp.type, Snapshot.type, Targets.type],
        )
        self.assertIn(Targets.type, self.trusted_set)

    def test_consistent_snapshot_requests(self) -> None:
        self.sim.compute_metafile_hashes_length = True
        self.sim.update_snapshot()
        self._run()

        snapshot_request = self.requests[2]
        self.assertEqual(snapshot_request.role, Snapshot.type)
        self.assertEqual(snapshot_request.version, 2)
        self.assertEqual(
            snapshot_request.max_length,
            self.sim.timestamp.snapshot_meta.length,
        )

    def test_non_consistent_snapshot_requests(self) -> None:
        self.sim.root.consistent_snapshot = False
        self._publish_new_root()
        config = UpdaterConfig(snapshot_max_length=1000)
        self._run(config)

        roles = [(r.role, r.version) for r in self.requests]
        self.assertEqual(
            roles,
            [
                (Root.type, 2),
                (Root.type, 3),
                (Timestamp.type, None),
                (Snapshot.type, None),
                (Targets.type, None),
            ],
        )
        self.assertEqual(self.requests[3].max_length, 1000)

    def test_current_metadata_is_not_fetched(self) -> None:
        self._run()
        cycle = self._run()

        self.assertEqual(cycle.state, State.DONE)
        self.assertEqual(
            [r.role for r in self.requests], [Root.type, Timestamp.type]
        )
        self.assertEqual(cycle.committed, [])

    def test_new_snapshot_only(self) -> None:
        self._run()
        self.sim.update_snapshot()
        cycle = self._run()

        self.assertEqual(
            [r.role for r in self.requests],
            [Root.type, Timestamp.type, Snapshot.type],
        )
        self.assertEqual(
            [role for role, _ in cycle.committed],
            [Timestamp.type, Snapshot.type],
        )

    def test_failed_cycle_changes_nothing(self) -> None:
        self._run()
        timestamp_version = self.trusted_set.timestamp.version

        self.sim.targets.version += 1
        self.sim.targets.expires = PAST
        self.sim.update_snapshot()

        cycle = UpdateWorkflow(self.trusted_set)
        with self.assertRaises(exceptions.ExpiredMetadataError):
            cycle.run(self._fetch)

        self.assertEqual(cycle.state, State.FAILED)
        self.assertIsInstance(cycle.error, exceptions.ExpiredMetadataError)
        self.assertEqual(self.trusted_set.timestamp.version, timestamp_version)
        self.assertEqual(self.trusted_set.targets.version, 1)

    def test_root_rotation_survives_failure(self) -> None:
        self._publish_new_root()
        self.sim.timestamp.expires = PAST

        cycle = UpdateWorkflow(self.trusted_set)
        with self.assertRaises(exceptions.ExpiredMetadataError):
            cycle.run(self._fetch)

        self.assertEqual(self.trusted_set.root.version, 2)
        self.assertEqual(cycle.rotated_roots, [self.sim.signed_roots[1]])
        self.assertNotIn(Timestamp.type, self.trusted_set)

    def test_max_root_rotations(self) -> None:
        for _ in range(3):
            self._publish_new_root()

        cycle = self._run(UpdaterConfig(max_root_rotations=2))
        self.assertEqual(cycle.state, State.DONE)
        self.assertEqual(self.trusted_set.root.version, 3)
        self.assertEqual(len(cycle.rotated_roots), 2)

        self._run()
        self.assertEqual(self.trusted_set.root.version, 4)

    def test_expired_final_root(self) -> None:
        self.sim.root.expires = PAST
        self._publish_new_root()

        cycle = UpdateWorkflow(self.trusted_set)
        with self.assertRaises(exceptions.ExpiredMetadataError):
            cycle.run(self._fetch)
        self.assertEqual(self.trusted_set.root.version, 2)

    def test_transport_failure(self) -> None:
        self.sim.unavailable.add(Snapshot.type)
        cycle = UpdateWorkflow(self.trusted_set)
        with self.assertRaises(exceptions.SlowRetrievalError):
            cycle.run(self._fetch)
        self.assertEqual(cycle.state, State.FAILED)
        self.assertNotIn(Timestamp.type, self.trusted_set)

        # same cycle can be run again once transport recovers
        self.sim.unavailable.clear()
        self.assertEqual(self._run().state, State.DONE)

    def test_length_overrun(self) -> None:
        too_long = exceptions.DownloadLengthMismatchError("too long")
        not_found = FetchResult(error=exceptions.DocumentNotFoundError())

        # the timestamp limit is a configured maximum: transport error
        cycle = UpdateWorkflow(self.trusted_set)
        cycle.advance(not_found)
        self.assertFalse(cycle.request().trusted_length)
        cycle.advance(FetchResult(error=too_long))
        self.assertIs(cycle.error, too_long)

        # the snapshot limit is the length timestamp lists for it
        self.sim.compute_metafile_hashes_length = True
        self.sim.update_snapshot()
        cycle = UpdateWorkflow(self.trusted_set)
        cycle.advance(not_found)
        cycle.advance(FetchResult(self.sim.fetch_metadata(Timestamp.type)))
        self.assertEqual(cycle.advance(), State.FETCH_SNAPSHOT)
        request = cycle.request()
        self.assertTrue(request.trusted_length)

        self.assertEqual(
            cycle.advance(FetchResult(error=too_long)), State.FAILED
        )
        self.assertIsInstance(cycle.error, exceptions.LengthOrHashMismatchError)
        self.assertEqual(cycle.error.role, Snapshot.type)
        self.assertEqual(cycle.error.expected, request.max_length)
        self.assertNotIn(Timestamp.type, self.trusted_set)

    def test_root_server_error_fails(self) -> None:
        cycle = UpdateWorkflow(self.trusted_set)
        error = exceptions.DownloadHTTPError("server error", 500)
        self.assertEqual(cycle.advance(FetchResult(error=error)), State.FAILED)
        self.assertIs(cycle.error, error)

    def test_invalid_use(self) -> None:
        cycle = UpdateWorkflow(self.trusted_set)
        with self.assertRaises(RuntimeError):
            cycle.advance()

        cycle.run(self._fetch)
        with self.assertRaises(RuntimeError):
            cycle.advance(FetchResult(b""))

    not_found_results: utils.DataSet = {
        "document not found": (exceptions.DocumentNotFoundError(), True),
        "http 404": (exceptions.DownloadHTTPError("", 404), True),
        "http 403": (exceptions.DownloadHTTPError("", 403), True),
        "http 500": (exceptions.DownloadHTTPError("", 500), False),
        "timeout": (exceptions.SlowRetrievalError(), False),
        "no error": (None, False),
    }

    @utils.run_sub_tests_with_dataset(not_found_results)
    def test_not_found(self, case: tuple) -> None:
        error, expected = case
        self.assertEqual(FetchResult(error=error).not_found, expected)


# Run unit test.
if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
