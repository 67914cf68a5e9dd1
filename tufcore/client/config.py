# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Configuration options for ``Updater`` class."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class UpdaterConfig:
    """Used to store ``Updater`` configuration.

    Args:
        max_root_rotations: Maximum number of root versions applied in one
            update. Remaining versions are picked up by the next update.
        max_delegations: Maximum number of targets roles visited while
            resolving one target path.
        max_delegation_depth: Maximum delegation depth, top-level targets
            being depth 0.
        root_max_length: Maxmimum length of a root metadata file.
        timestamp_max_length: Maximum length of a timestamp metadata file.
        snapshot_max_length: Maximum length of a snapshot metadata file,
            used when timestamp does not list the length.
        targets_max_length: Maximum length of a targets metadata file,
            used when snapshot does not list the length.
        prefix_targets_with_hash: With consistent snapshots, target download
            URLs prefix the filename with a hash of the content. Set to
            ``False`` for repositories that do not do that.
        app_user_agent: Application user agent, e.g. "MyApp/1.0.0". This is
            prefixed to the default fetcher's user agent.
    """

    max_root_rotations: int = 256
    max_delegations: int = 32
    max_delegation_depth: int = 8
    root_max_length: int = 512000  # bytes
    timestamp_max_length: int = 16384  # bytes
    snapshot_max_length: int = 2000000  # bytes
    targets_max_length: int = 5000000  # bytes
    prefix_targets_with_hash: bool = True
    app_user_agent: Optional[str] = None
