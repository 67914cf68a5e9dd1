# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Resolve a target path to a trusted ``TargetFile`` by walking the
delegation graph.
"""

import logging
from typing import Callable, List, Set, Tuple

from tufcore.api import exceptions
from tufcore.api.metadata import Root, TargetFile, Targets
from tufcore.client._internal.trusted_metadata_set import TrustedMetadataSet

logger = logging.getLogger(__name__)


class DelegationResolver:
    """Pre-order depth-first search over targets delegations.

    Roles are interrogated in order of appearance (which is their order of
    trust): a role's own targets first, then its delegations for the path.
    A matching terminating delegation is the last one consulted.

    Args:
        trusted_set: Trusted metadata. Top-level targets must be loaded.
        load_targets: Called as ``load_targets(role, delegator)`` to get a
            verified ``Targets`` for ``role``, loading it into
            ``trusted_set`` if needed.
        max_depth: Maximum delegation depth, top-level targets being 0.
        max_delegations: Maximum number of roles visited per resolution.
    """

    def __init__(
        self,
        trusted_set: TrustedMetadataSet,
        load_targets: Callable[[str, str], Targets],
        max_depth: int = 8,
        max_delegations: int = 32,
    ):
        self._trusted_set = trusted_set
        self._load_targets = load_targets
        self.max_depth = max_depth
        self.max_delegations = max_delegations

    def resolve(self, target_path: str) -> TargetFile:
        """Return the ``TargetFile`` for ``target_path`` from the most trusted
        role that lists it.

        Raises:
            DelegationCycleError: A role was reached twice.
            DepthExceededError: The walk went deeper than ``max_depth`` or
                visited more than ``max_delegations`` roles.
            TargetNotFoundError: No trusted role lists the path.
            RepositoryError: Delegated metadata failed to verify.
            DownloadError: Delegated metadata could not be fetched.
        """
        if Targets.type not in self._trusted_set:
            raise RuntimeError("Top-level targets must be loaded first")

        # (role, delegator, depth) still to visit, top of stack last
        to_visit: List[Tuple[str, str, int]] = [(Targets.type, Root.type, 0)]
        visited: Set[str] = set()

        while to_visit:
            role, delegator, depth = to_visit.pop()

            if role in visited:
                raise exceptions.DelegationCycleError(
                    f"Role {role} reached again via {delegator}",
                    role=role,
                )
            if depth > self.max_depth:
                raise exceptions.DepthExceededError(
                    f"Role {role} is at delegation depth {depth}",
                    role=role,
                    expected=self.max_depth,
                    actual=depth,
                )
            if len(visited) >= self.max_delegations:
                raise exceptions.DepthExceededError(
                    f"Visited {len(visited)} roles looking for {target_path}",
                    role=role,
                    expected=self.max_delegations,
                    actual=len(visited) + 1,
                )

            visited.add(role)
            targets = self._load_targets(role, delegator)

            target = targets.targets.get(target_path)
            if target is not None:
                logger.debug("Found %s in role %s", target_path, role)
                return target

            if targets.delegations is None:
                continue

            children = []
            for child, terminating in targets.delegations.get_roles_for_target(
                target_path
            ):
                children.append((child, role, depth + 1))
                if terminating:
                    logger.debug("Terminating delegation to %s", child)
                    to_visit = []
                    break

            # first listed child ends up on top of the stack
            to_visit.extend(reversed(children))

        raise exceptions.TargetNotFoundError(
            f"No trusted role lists {target_path}",
        )
