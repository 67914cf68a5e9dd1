# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""The top-level update cycle as an explicit state machine.

``UpdateWorkflow`` does no IO. It tells the caller what to fetch next
(``request()``) and is fed the outcome (``advance()``)::

    FETCH_ROOT <-> VERIFY_ROOT          (until not found or max rotations)
        -> FETCH_TIMESTAMP -> VERIFY_TIMESTAMP
        -> FETCH_SNAPSHOT -> VERIFY_SNAPSHOT      (skipped if current)
        -> FETCH_TARGETS -> VERIFY_TARGETS        (skipped if current)
        -> DONE

Any error moves the machine to FAILED and keeps the exception in
``error``. Each accepted root is committed to the trusted set immediately.
Timestamp, snapshot and targets are verified on a staging copy of the
trusted set which is committed only when DONE is reached: a failed cycle
never leaves a partial upgrade behind.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, NoReturn, Optional, Tuple

from tufcore.api import exceptions
from tufcore.api.metadata import Root, Snapshot, Targets, Timestamp
from tufcore.client._internal.trusted_metadata_set import TrustedMetadataSet
from tufcore.client.config import UpdaterConfig

logger = logging.getLogger(__name__)


class State(enum.Enum):
    """States of one update cycle."""

    FETCH_ROOT = "fetch_root"
    VERIFY_ROOT = "verify_root"
    FETCH_TIMESTAMP = "fetch_timestamp"
    VERIFY_TIMESTAMP = "verify_timestamp"
    FETCH_SNAPSHOT = "fetch_snapshot"
    VERIFY_SNAPSHOT = "verify_snapshot"
    FETCH_TARGETS = "fetch_targets"
    VERIFY_TARGETS = "verify_targets"
    DONE = "done"
    FAILED = "failed"


_FETCH_STATES = {
    State.FETCH_ROOT: State.VERIFY_ROOT,
    State.FETCH_TIMESTAMP: State.VERIFY_TIMESTAMP,
    State.FETCH_SNAPSHOT: State.VERIFY_SNAPSHOT,
    State.FETCH_TARGETS: State.VERIFY_TARGETS,
}


@dataclass(frozen=True)
class FetchRequest:
    """A document the workflow needs: role, optional version, size limit.

    ``trusted_length`` is set when ``max_length`` is the exact length
    recorded in trusted metadata: a longer document is then an integrity
    failure, not a transport one.
    """

    role: str
    max_length: int
    version: Optional[int] = None
    trusted_length: bool = False


@dataclass
class FetchResult:
    """Outcome of a ``FetchRequest``: either ``data`` or a transport
    ``error``.
    """

    data: Optional[bytes] = None
    error: Optional[exceptions.DownloadError] = None

    @property
    def not_found(self) -> bool:
        if isinstance(self.error, exceptions.DocumentNotFoundError):
            return True
        return (
            isinstance(self.error, exceptions.DownloadHTTPError)
            and self.error.status_code in {403, 404}
        )


class UpdateWorkflow:
    """One update cycle over ``trusted_set``.

    Args:
        trusted_set: The trusted set to update.
        config: Limits (lengths, root rotations).
        reference_time: Time for all expiry checks of this cycle. Default
            is now (UTC).
    """

    def __init__(
        self,
        trusted_set: TrustedMetadataSet,
        config: Optional[UpdaterConfig] = None,
        reference_time: Optional[datetime] = None,
    ):
        self.state = State.FETCH_ROOT
        self.error: Optional[Exception] = None
        self.config = config or UpdaterConfig()
        self.reference_time = reference_time or datetime.now(timezone.utc)

        # roots committed during this cycle, in order
        self.rotated_roots: List[bytes] = []
        # (role, bytes) staged and committed on DONE, for persisting
        self.committed: List[Tuple[str, bytes]] = []

        self._trusted_set = trusted_set
        self._staged: Optional[TrustedMetadataSet] = None
        self._data: Optional[bytes] = None

    @property
    def finished(self) -> bool:
        return self.state in (State.DONE, State.FAILED)

    @property
    def _staging(self) -> TrustedMetadataSet:
        if self._staged is None:
            raise RuntimeError(f"No staged metadata in state {self.state}")
        return self._staged

    def request(self) -> Optional[FetchRequest]:
        """Return the document to fetch next, or None outside fetch states."""
        if self.state is State.FETCH_ROOT:
            return FetchRequest(
                Root.type,
                self.config.root_max_length,
                self._trusted_set.root.version + 1,
            )

        if self.state is State.FETCH_TIMESTAMP:
            return FetchRequest(
                Timestamp.type, self.config.timestamp_max_length
            )

        consistent = self._trusted_set.root.consistent_snapshot
        if self.state is State.FETCH_SNAPSHOT:
            meta = self._staging.timestamp.snapshot_meta
            return FetchRequest(
                Snapshot.type,
                meta.length or self.config.snapshot_max_length,
                meta.version if consistent else None,
                trusted_length=bool(meta.length),
            )

        if self.state is State.FETCH_TARGETS:
            meta = self._staging.snapshot.meta[f"{Targets.type}.json"]
            return FetchRequest(
                Targets.type,
                meta.length or self.config.targets_max_length,
                meta.version if consistent else None,
                trusted_length=bool(meta.length),
            )

        return None

    def advance(self, result: Optional[FetchResult] = None) -> State:
        """Feed the outcome of the current step and move to the next state.

        In fetch states ``result`` is required. In verify states it is
        ignored: the fetched data is verified.

        Raises:
            RuntimeError: The workflow is already finished, or no result was
                given in a fetch state.
        """
        if self.finished:
            raise RuntimeError(f"Update cycle already finished: {self.state}")

        try:
            self.state = self._transition(result)
        except (exceptions.RepositoryError, exceptions.DownloadError) as e:
            logger.debug("Update failed in %s: %s", self.state, e)
            self.error = e
            self.state = State.FAILED

        return self.state

    def run(self, fetch: Callable[[FetchRequest], bytes]) -> None:
        """Drive the cycle to completion, calling ``fetch`` for each request.

        ``fetch`` should raise ``DownloadError`` on transport failures.

        Raises:
            RepositoryError: Metadata failed to verify in some way.
            DownloadError: A document could not be fetched.
        """
        while not self.finished:
            request = self.request()
            result = None
            if request is not None:
                try:
                    result = FetchResult(data=fetch(request))
                except exceptions.DownloadError as e:
                    result = FetchResult(error=e)
            self.advance(result)

        if self.error is not None:
            raise self.error

    def _transition(self, result: Optional[FetchResult]) -> State:
        if self.state in _FETCH_STATES:
            if result is None:
                raise RuntimeError(f"{self.state} needs a fetch result")
            if self.state is State.FETCH_ROOT and result.not_found:
                logger.debug("No newer root available")
                return self._finish_root()
            if result.error is not None:
                self._raise_fetch_error(result.error)
            self._data = result.data
            return _FETCH_STATES[self.state]

        data = self._data
        self._data = None
        assert data is not None

        if self.state is State.VERIFY_ROOT:
            return self._verify_root(data)

        if self.state is State.VERIFY_TIMESTAMP:
            self._stage(Timestamp.type, data)
            return self._after_timestamp()

        if self.state is State.VERIFY_SNAPSHOT:
            self._stage(Snapshot.type, data)
            return self._after_snapshot()

        # VERIFY_TARGETS
        self._stage(Targets.type, data)
        return self._done()

    def _verify_root(self, data: bytes) -> State:
        committed = self._trusted_set.propose(
            Root.type, data, self.reference_time
        )
        if not committed:
            return self._finish_root()

        self.rotated_roots.append(data)
        if len(self.rotated_roots) >= self.config.max_root_rotations:
            logger.debug(
                "Applied the maximum of %d root rotations",
                self.config.max_root_rotations,
            )
            return self._finish_root()
        return State.FETCH_ROOT

    def _raise_fetch_error(self, error: exceptions.DownloadError) -> NoReturn:
        request = self.request()
        if (
            isinstance(error, exceptions.DownloadLengthMismatchError)
            and request is not None
            and request.trusted_length
        ):
            raise exceptions.LengthOrHashMismatchError(
                f"{request.role} is longer than the {request.max_length} "
                "bytes listed in trusted metadata",
                role=request.role,
                expected=request.max_length,
            ) from error
        raise error

    def _finish_root(self) -> State:
        self._trusted_set.reference_time = self.reference_time
        self._trusted_set.check_final_root()
        self._staged = self._trusted_set.fork(self.reference_time)
        return State.FETCH_TIMESTAMP

    def _stage(self, role: str, data: bytes) -> None:
        if self._staging.propose(role, data, self.reference_time):
            self.committed.append((role, data))

    def _after_timestamp(self) -> State:
        staged = self._staging
        snapshot = staged.current(Snapshot.type)
        if snapshot is not None:
            if snapshot.version == staged.timestamp.snapshot_meta.version:
                # still current: only expiry can have changed
                staged.check_final_snapshot()
                logger.debug("Snapshot v%d is current", snapshot.version)
                return self._after_snapshot()
        return State.FETCH_SNAPSHOT

    def _after_snapshot(self) -> State:
        staged = self._staging
        meta = staged.snapshot.meta.get(f"{Targets.type}.json")
        if meta is None:
            raise exceptions.IntegrityMismatchError(
                "Snapshot does not contain information for 'targets'",
                role=Targets.type,
            )
        targets = staged.current(Targets.type)
        if targets is not None and targets.version == meta.version:
            staged.check_final_targets()
            logger.debug("Targets v%d is current", targets.version)
            return self._done()
        return State.FETCH_TARGETS

    def _done(self) -> State:
        self._trusted_set.commit(self._staging)
        logger.debug("Update cycle done")
        return State.DONE
