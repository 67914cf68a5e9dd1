# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Unit tests for the delegation graph search"""

import hashlib
import logging
import sys
import unittest
from typing import Dict, List, Optional, Tuple

from tests import utils
from tufcore.api import exceptions
from tufcore.api.metadata import (
    DelegatedRole,
    Delegations,
    TargetFile,
    Targets,
)
from tufcore.client._internal.resolver import DelegationResolver

logger = logging.getLogger(__name__)

# (child name, paths, terminating)
Edge = Tuple[str, List[str], bool]


def _target(path: str, tag: str) -> TargetFile:
    # tag makes TargetFiles from different roles distinguishable
    digest = hashlib.sha256(tag.encode()).hexdigest()
    return TargetFile(1, {"sha256": digest}, path)


class TestDelegationResolver(unittest.TestCase):
    """Resolve paths over in-memory targets roles (no signatures involved)."""

    def setUp(self) -> None:
        self.roles: Dict[str, Targets] = {}
        self.loaded: List[Tuple[str, str]] = []
        self._add_role("targets")

    def _add_role(
        self,
        name: str,
        edges: Optional[List[Edge]] = None,
        paths: Optional[List[str]] = None,
    ) -> None:
        delegations = None
        if edges is not None:
            roles = {
                child: DelegatedRole(child, [], 1, terminating, child_paths)
                for child, child_paths, terminating in edges
            }
            delegations = Delegations({}, roles)
        targets = {path: _target(path, name) for path in paths or []}
        self.roles[name] = Targets(targets=targets, delegations=delegations)

    def _load_targets(self, role: str, delegator: str) -> Targets:
        self.loaded.append((role, delegator))
        return self.roles[role]

    def _resolve(self, path: str, **kwargs: int) -> TargetFile:
        trusted = {"targets": self.roles["targets"]}
        resolver = DelegationResolver(trusted, self._load_targets, **kwargs)
        return resolver.resolve(path)

    def test_top_level_target(self) -> None:
        self._add_role("targets", [("a", ["*"], False)], ["file.txt"])
        self._add_role("a", paths=["file.txt"])

        target = self._resolve("file.txt")
        self.assertEqual(target, _target("file.txt", "targets"))
        self.assertEqual(self.loaded, [("targets", "root")])

    def test_delegation_order(self) -> None:
        self._add_role("targets", [("a", ["*"], False), ("b", ["*"], False)])
        self._add_role("a", paths=["file.txt"])
        self._add_role("b", paths=["file.txt"])

        target = self._resolve("file.txt")
        self.assertEqual(target, _target("file.txt", "a"))
        self.assertEqual(self.loaded, [("targets", "root"), ("a", "targets")])

    def test_depth_first(self) -> None:
        self._add_role("targets", [("a", ["*"], False), ("b", ["*"], False)])
        self._add_role("a", [("a1", ["*"], False)])
        self._add_role("a1", paths=["file.txt"])
        self._add_role("b", paths=["file.txt"])

        target = self._resolve("file.txt")
        self.assertEqual(target, _target("file.txt", "a1"))
        self.assertEqual(
            [role for role, _ in self.loaded], ["targets", "a", "a1"]
        )
        self.assertEqual(self.loaded[2], ("a1", "a"))

    def test_path_patterns(self) -> None:
        self._add_role(
            "targets",
            [("docs", ["docs/*"], False), ("bins", ["bin/*.exe"], False)],
        )
        self._add_role("docs", paths=["docs/a.txt", "docs/sub/b.txt"])
        self._add_role("bins", paths=["bin/tool.exe"])

        self.assertEqual(
            self._resolve("bin/tool.exe"), _target("bin/tool.exe", "bins")
        )
        self.assertNotIn(("docs", "targets"), self.loaded)

        # "*" does not match across "/"
        with self.assertRaises(exceptions.TargetNotFoundError):
            self._resolve("docs/sub/b.txt")

    def test_hash_prefixes(self) -> None:
        path_hash = hashlib.sha256(b"file.txt").hexdigest()
        other_prefix = "0" if path_hash[0] != "0" else "1"
        roles = {
            "miss": DelegatedRole(
                "miss", [], 1, False, path_hash_prefixes=[other_prefix]
            ),
            "hit": DelegatedRole(
                "hit", [], 1, False, path_hash_prefixes=[path_hash[:2]]
            ),
        }
        self.roles["targets"] = Targets(delegations=Delegations({}, roles))
        self._add_role("miss", paths=["file.txt"])
        self._add_role("hit", paths=["file.txt"])

        self.assertEqual(self._resolve("file.txt"), _target("file.txt", "hit"))
        self.assertNotIn(("miss", "targets"), self.loaded)

    def test_terminating_delegation(self) -> None:
        self._add_role("targets", [("a", ["*"], True), ("b", ["*"], False)])
        self._add_role("a", [("a1", ["*"], False)])
        self._add_role("a1")
        self._add_role("b", paths=["file.txt"])

        # a1 is still consulted, b is not
        with self.assertRaises(exceptions.TargetNotFoundError):
            self._resolve("file.txt")
        self.assertEqual(
            [role for role, _ in self.loaded], ["targets", "a", "a1"]
        )

    def test_unmatched_terminating_delegation(self) -> None:
        self._add_role(
            "targets", [("a", ["other/*"], True), ("b", ["*"], False)]
        )
        self._add_role("a", paths=["file.txt"])
        self._add_role("b", paths=["file.txt"])

        self.assertEqual(self._resolve("file.txt"), _target("file.txt", "b"))

    def test_not_found(self) -> None:
        self._add_role("targets", [("a", ["*"], False)])
        self._add_role("a", paths=["other.txt"])

        with self.assertRaises(exceptions.TargetNotFoundError):
            self._resolve("file.txt")
        self.assertEqual(len(self.loaded), 2)

    def test_cycle(self) -> None:
        self._add_role("targets", [("a", ["*"], False)])
        self._add_role("a", [("b", ["*"], False)])
        self._add_role("b", [("a", ["*"], False)])

        with self.assertRaises(exceptions.DelegationCycleError) as ctx:
            self._resolve("file.txt")
        self.assertEqual(ctx.exception.role, "a")

    def test_diamond_is_a_cycle(self) -> None:
        self._add_role("targets", [("a", ["*"], False), ("b", ["*"], False)])
        self._add_role("a", [("c", ["*"], False)])
        self._add_role("b", [("c", ["*"], False)])
        self._add_role("c")

        with self.assertRaises(exceptions.DelegationCycleError):
            self._resolve("file.txt")

    def test_cycle_after_match_is_not_reached(self) -> None:
        self._add_role("targets", [("a", ["*"], False)])
        self._add_role("a", [("b", ["*"], False)], ["file.txt"])
        self._add_role("b", [("a", ["*"], False)])

        self.assertEqual(self._resolve("file.txt"), _target("file.txt", "a"))
        self.assertNotIn(("b", "a"), self.loaded)

    def test_max_depth(self) -> None:
        self._add_role("targets", [("r1", ["*"], False)])
        self._add_role("r1", [("r2", ["*"], False)])
        self._add_role("r2", [("r3", ["*"], False)])
        self._add_role("r3", paths=["file.txt"])

        with self.assertRaises(exceptions.DepthExceededError) as ctx:
            self._resolve("file.txt", max_depth=2)
        self.assertEqual(ctx.exception.expected, 2)
        self.assertEqual(ctx.exception.actual, 3)
        self.assertNotIn(("r3", "r2"), self.loaded)

        self.assertEqual(
            self._resolve("file.txt", max_depth=3), _target("file.txt", "r3")
        )

    def test_max_delegations(self) -> None:
        edges = [(f"r{i}", ["*"], False) for i in range(5)]
        self._add_role("targets", edges)
        for name, _, _ in edges:
            self._add_role(name)

        with self.assertRaises(exceptions.DepthExceededError):
            self._resolve("file.txt", max_delegations=3)
        self.assertEqual(len(self.loaded), 3)

        self.loaded = []
        with self.assertRaises(exceptions.TargetNotFoundError):
            self._resolve("file.txt", max_delegations=6)
        self.assertEqual(len(self.loaded), 6)

    def test_load_errors_propagate(self) -> None:
        self._add_role("targets", [("a", ["*"], False)])

        def failing_load(role: str, delegator: str) -> Targets:
            if role == "a":
                raise exceptions.UnsignedMetadataError("bad sigs", role="a")
            return self.roles[role]

        trusted = {"targets": self.roles["targets"]}
        resolver = DelegationResolver(trusted, failing_load)
        with self.assertRaises(exceptions.UnsignedMetadataError):
            resolver.resolve("file.txt")

    def test_targets_not_loaded(self) -> None:
        resolver = DelegationResolver({}, self._load_targets)
        with self.assertRaises(RuntimeError):
            resolver.resolve("file.txt")
        self.assertEqual(self.loaded, [])


# Run unit test.
if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
