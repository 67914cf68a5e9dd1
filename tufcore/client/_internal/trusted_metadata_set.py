# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Trusted collection of client-side metadata.

``TrustedMetadataSet`` is the single source of truth about which metadata the
client currently trusts. It starts from a pinned root and changes only
through ``propose()`` (or the per-role ``update_*`` methods behind it), which
either commits a fully verified document or raises without changing anything.

Every proposed document goes through the same ordered checks:

 1. decoding (``MalformedMetadataError``)
 2. expiry against the reference time (``ExpiredMetadataError``)
 3. version against the trusted version (``RollbackError``; an equal
    version is a no-op and ``propose()`` returns False)
 4. signature threshold from the delegator (``UnsignedMetadataError``)
 5. consistency with the documents that reference it: the timestamp's
    snapshot pointer and the snapshot's targets entries
    (``IntegrityMismatchError`` and subclasses)

Roots are the exception to step 2: an intermediate root may be expired so
that a client that was offline for a long time can still walk the chain of
roots. Only the final root is checked, by ``check_final_root()`` and before
any timestamp is accepted.

Loaded metadata can be accessed via index access with rolename as key
(``trusted_set[Root.type]``), with ``current()`` or, for top-level metadata,
with the helper properties (``trusted_set.root``).

Example of one update cycle, without staging::

    trusted_set = TrustedMetadataSet(pinned_root_bytes)
    while (data := download_next_root()) is not None:
        trusted_set.propose(Root.type, data)
    trusted_set.check_final_root()
    trusted_set.propose(Timestamp.type, download("timestamp"))
    trusted_set.propose(Snapshot.type, download("snapshot"))
    trusted_set.propose(Targets.type, download("targets"))
"""

import copy
import logging
import threading
from collections import abc
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Sequence, Type, Union, cast

from tufcore.api import exceptions
from tufcore.api.metadata import (
    KeyRegistry,
    Metadata,
    MetaFile,
    Role,
    Root,
    Signed,
    Snapshot,
    T,
    Targets,
    Timestamp,
)

logger = logging.getLogger(__name__)

Delegator = Union[Root, Targets]


class TrustedMetadataSet(abc.Mapping):
    """Verified metadata, keyed by role name.

    Args:
        root_data: Pinned root metadata as bytes. It is verified only by
            itself (and by ``pinned_keyids`` if given): it is the source of
            trust for everything else.
        reference_time: Time used for expiry checks. Default is now (UTC).
            ``propose(..., now=...)`` moves it.
        pinned_keyids: Optional keyids distributed out of band. When set,
            the initial root must also carry ``pinned_threshold`` valid
            signatures from these keys.
        pinned_threshold: Signatures required from ``pinned_keyids``.

    Raises:
        RepositoryError: Root failed to load or verify.
    """

    def __init__(
        self,
        root_data: bytes,
        reference_time: Optional[datetime] = None,
        pinned_keyids: Optional[Sequence[str]] = None,
        pinned_threshold: int = 1,
    ):
        self._trusted_set: Dict[str, Signed] = {}
        self._raw: Dict[str, bytes] = {}
        self._lock = threading.RLock()
        self.reference_time = reference_time or datetime.now(timezone.utc)

        logger.debug("Updating initial trusted root")
        self._load_trusted_root(root_data, pinned_keyids, pinned_threshold)

    def __getitem__(self, role: str) -> Signed:
        """Return current ``Signed`` for ``role``."""
        return self._trusted_set[role]

    def __len__(self) -> int:
        return len(self._trusted_set)

    def __iter__(self) -> Iterator[str]:
        """Iterate over the names of trusted roles."""
        return iter(self._trusted_set)

    # Helper properties for top level metadata
    @property
    def root(self) -> Root:
        return cast(Root, self._trusted_set[Root.type])

    @property
    def timestamp(self) -> Timestamp:
        return cast(Timestamp, self._trusted_set[Timestamp.type])

    @property
    def snapshot(self) -> Snapshot:
        return cast(Snapshot, self._trusted_set[Snapshot.type])

    @property
    def targets(self) -> Targets:
        return cast(Targets, self._trusted_set[Targets.type])

    def current(self, role: str) -> Optional[Signed]:
        """Return the trusted payload for ``role``, or None."""
        return self._trusted_set.get(role)

    def propose(
        self,
        role: str,
        data: bytes,
        now: Optional[datetime] = None,
        delegator: Optional[str] = None,
        trusted: bool = False,
    ) -> bool:
        """Verify ``data`` as the next document for ``role`` and commit it.

        Args:
            role: Role name of the document.
            data: Unverified document bytes.
            now: New reference time for expiry checks, if given. It is kept
                only if the document is not rejected.
            delegator: Name of the delegating targets role for delegated
                roles. Default is the top-level targets role.
            trusted: Only for snapshot: ``data`` was verified before (e.g. it
                was persisted by this client), skip the hash check against
                timestamp.

        Raises:
            RuntimeError: Metadata the document depends on is not loaded.
            RepositoryError: Document was rejected. Nothing was changed.

        Returns:
            True if the document was committed, False if the same version
            was already trusted.
        """
        with self._lock:
            previous_time = self.reference_time
            if now is not None:
                self.reference_time = now
            try:
                if role == Root.type:
                    self.update_root(data)
                elif role == Timestamp.type:
                    self.update_timestamp(data)
                elif role == Snapshot.type:
                    self.update_snapshot(data, trusted)
                elif role == Targets.type:
                    self.update_targets(data)
                else:
                    self.update_delegated_targets(
                        data, role, delegator or Targets.type
                    )
            except exceptions.EqualVersionNumberError:
                logger.debug("%s is already trusted at this version", role)
                return False
            except Exception:
                self.reference_time = previous_time
                raise

            return True

    # Methods for updating metadata
    def update_root(self, data: bytes) -> Root:
        """Verify and load ``data`` as the next root version.

        The new root must be version N+1 and signed by a threshold of both
        the trusted root's and its own root keys. An expired intermediate
        root is accepted, see ``check_final_root()``.

        On success, trusted timestamp and snapshot are dropped if their keys
        changed (so a rotation can recover from a fast-forward attack), and
        all targets metadata is dropped to be verified again under the new
        root.

        Raises:
            RepositoryError: Metadata failed to load or verify.
        """
        logger.debug("Updating root")
        md = self._load_data(Root, data)
        new_root = md.signed
        trusted_version = self.root.version

        if new_root.version == trusted_version:
            raise exceptions.EqualVersionNumberError(
                role=Root.type, expected=trusted_version + 1
            )
        if new_root.version < trusted_version:
            raise exceptions.RollbackError(
                f"Root version {new_root.version} is older than trusted "
                f"version {trusted_version}",
                role=Root.type,
                expected=trusted_version + 1,
                actual=new_root.version,
            )
        if new_root.version != trusted_version + 1:
            raise exceptions.BadVersionNumberError(
                f"Expected root version {trusted_version + 1}"
                f" instead got version {new_root.version}",
                role=Root.type,
                expected=trusted_version + 1,
                actual=new_root.version,
            )

        result = new_root.get_root_verification_result(
            self.root, md.verification_bytes, md.signatures
        )
        results = (("trusted", result.first), ("new", result.second))
        for label, partial in results:
            if not partial:
                raise exceptions.UnsignedMetadataError(
                    f"root v{new_root.version} was signed by "
                    f"{len(partial.signed)}/{partial.threshold} {label} "
                    "root keys",
                    role=Root.type,
                    expected=partial.threshold,
                    actual=len(partial.signed),
                )

        self._rotate_root(new_root, data)
        return new_root

    def _rotate_root(self, new_root: Root, data: bytes) -> None:
        old_root = self.root
        self._set(Root.type, new_root, data)

        if any(
            _role_keys_changed(old_root, new_root, role)
            for role in (Timestamp.type, Snapshot.type)
        ):
            logger.debug("Timestamp or snapshot keys rotated")
            self._drop(Timestamp.type)
            self._drop(Snapshot.type)

        for role in list(self._trusted_set):
            if role not in (Root.type, Timestamp.type, Snapshot.type):
                self._drop(role)

        logger.debug("Updated root v%d", new_root.version)

    def check_final_root(self) -> None:
        """Raise ``ExpiredMetadataError`` if the trusted root is expired."""
        self._check_expiry(self.root)

    def update_timestamp(self, data: bytes) -> Timestamp:
        """Verify and load ``data`` as new timestamp metadata.

        Raises:
            RepositoryError: Metadata failed to load or verify. The actual
                error type and content will contain more details.
        """
        # a timestamp is only meaningful under a valid final root
        self.check_final_root()
        logger.debug("Updating timestamp")

        md = self._load_data(Timestamp, data)
        new_timestamp = md.signed
        self._check_expiry(new_timestamp)

        if Timestamp.type in self._trusted_set:
            self._check_version(self.timestamp, new_timestamp)
            trusted_meta = self.timestamp.snapshot_meta
            new_meta = new_timestamp.snapshot_meta
            if new_meta.version < trusted_meta.version:
                raise exceptions.RollbackError(
                    f"New snapshot version must be >= {trusted_meta.version}"
                    f", got version {new_meta.version}",
                    role=Snapshot.type,
                    expected=trusted_meta.version,
                    actual=new_meta.version,
                )

        self.root.verify_delegate(
            Timestamp.type, md.verification_bytes, md.signatures
        )

        self._set(Timestamp.type, new_timestamp, data)
        logger.debug("Updated timestamp v%d", new_timestamp.version)
        return new_timestamp

    def _check_final_timestamp(self) -> None:
        if Timestamp.type not in self._trusted_set:
            raise RuntimeError("Timestamp is not loaded")
        self._check_expiry(self.timestamp)

    def update_snapshot(self, data: bytes, trusted: bool = False) -> Snapshot:
        """Verify and load ``data`` as new snapshot metadata.

        Args:
            data: Unverified new snapshot metadata as bytes
            trusted: ``True`` if data was verified as snapshot before, e.g.
                when it is loaded from local storage. The length and hashes
                listed in timestamp are then not checked.

        Raises:
            RuntimeError: This function is called before updating timestamp.
            RepositoryError: Metadata failed to load or verify. The actual
                error type and content will contain more details.
        """
        self._check_final_timestamp()
        logger.debug("Updating snapshot")

        md = self._load_data(Snapshot, data)
        new_snapshot = md.signed
        self._check_expiry(new_snapshot)

        if Snapshot.type in self._trusted_set:
            self._check_version(self.snapshot, new_snapshot)
            for filename, fileinfo in self.snapshot.meta.items():
                new_fileinfo = new_snapshot.meta.get(filename)
                if new_fileinfo is None:
                    raise exceptions.RollbackError(
                        f"New snapshot is missing info for '{filename}'",
                        role=Snapshot.type,
                    )
                if new_fileinfo.version < fileinfo.version:
                    raise exceptions.RollbackError(
                        f"Expected {filename} version >= {fileinfo.version}, "
                        f"got {new_fileinfo.version}",
                        role=filename[: -len(".json")],
                        expected=fileinfo.version,
                        actual=new_fileinfo.version,
                    )

        self.root.verify_delegate(
            Snapshot.type, md.verification_bytes, md.signatures
        )

        snapshot_meta = self.timestamp.snapshot_meta
        if not trusted:
            snapshot_meta.verify_length_and_hashes(data)
        if new_snapshot.version != snapshot_meta.version:
            raise exceptions.VersionMismatchError(
                f"Expected snapshot version {snapshot_meta.version}, "
                f"got {new_snapshot.version}",
                role=Snapshot.type,
                expected=snapshot_meta.version,
                actual=new_snapshot.version,
            )

        self._set(Snapshot.type, new_snapshot, data)
        self._drop_outdated_targets()
        logger.debug("Updated snapshot v%d", new_snapshot.version)
        return new_snapshot

    def _drop_outdated_targets(self) -> None:
        """Forget targets roles whose version the snapshot no longer lists."""
        for role in list(self._trusted_set):
            if role in (Root.type, Timestamp.type, Snapshot.type):
                continue
            meta = self.snapshot.meta.get(f"{role}.json")
            if meta is None or meta.version != self._trusted_set[role].version:
                self._drop(role)

    def check_final_snapshot(self) -> None:
        """Raise if snapshot is expired or timestamp points elsewhere."""
        if Snapshot.type not in self._trusted_set:
            raise RuntimeError("Cannot load targets before snapshot")
        self._check_final_timestamp()
        self._check_expiry(self.snapshot)
        snapshot_meta = self.timestamp.snapshot_meta
        if self.snapshot.version != snapshot_meta.version:
            raise exceptions.VersionMismatchError(
                f"Expected snapshot version {snapshot_meta.version}, "
                f"got {self.snapshot.version}",
                role=Snapshot.type,
                expected=snapshot_meta.version,
                actual=self.snapshot.version,
            )

    def check_final_targets(self, role: str = Targets.type) -> None:
        """Raise if trusted ``role`` is expired or snapshot lists another
        version of it.
        """
        self.check_final_snapshot()
        targets = self._trusted_set[role]
        self._check_expiry(targets, role)
        meta = self._snapshot_meta_for(role)
        if targets.version != meta.version:
            raise exceptions.VersionMismatchError(
                f"Expected {role} v{meta.version}, got v{targets.version}",
                role=role,
                expected=meta.version,
                actual=targets.version,
            )

    def update_targets(self, data: bytes) -> Targets:
        """Verify and load ``data`` as new top-level targets metadata.

        Raises:
            RepositoryError: Metadata failed to load or verify.
        """
        return self.update_delegated_targets(data, Targets.type, Root.type)

    def update_delegated_targets(
        self, data: bytes, role_name: str, delegator_name: str
    ) -> Targets:
        """Verify and load ``data`` as new metadata for target ``role_name``.

        Args:
            data: Unverified new metadata as bytes
            role_name: Role name of the new metadata
            delegator_name: Name of the role delegating to the new metadata

        Raises:
            RuntimeError: This function is called before updating snapshot
                or before the delegator is loaded.
            RepositoryError: Metadata failed to load or verify. The actual
                error type and content will contain more details.
        """
        self.check_final_snapshot()

        delegator: Optional[Delegator] = self.get(delegator_name)
        if delegator is None:
            raise RuntimeError("Cannot load targets before delegator")

        logger.debug("Updating %s delegated by %s", role_name, delegator_name)
        meta = self._snapshot_meta_for(role_name)

        md = self._load_data(Targets, data)
        new_delegate = md.signed
        self._check_expiry(new_delegate, role_name)

        current = self.get(role_name)
        if current is not None:
            self._check_version(current, new_delegate, role_name)

        delegator.verify_delegate(
            role_name, md.verification_bytes, md.signatures
        )

        meta.verify_length_and_hashes(data)
        if new_delegate.version != meta.version:
            raise exceptions.VersionMismatchError(
                f"Expected {role_name} v{meta.version}, "
                f"got v{new_delegate.version}",
                role=role_name,
                expected=meta.version,
                actual=new_delegate.version,
            )

        self._set(role_name, new_delegate, data)
        logger.debug("Updated %s v%d", role_name, new_delegate.version)
        return new_delegate

    def verify_delegation(
        self, role_name: str, delegator_name: str
    ) -> Targets:
        """Check trusted ``role_name`` against the delegation to it in
        ``delegator_name`` and return it.

        A delegated role is trusted once, through whichever delegation
        reached it first. Other delegations to the same role name may list
        other keys and thresholds, so each one is checked on its own.

        Raises:
            RuntimeError: ``role_name`` or its delegator is not loaded.
            UnsignedMetadataError: The delegation's keys do not sign
                ``role_name``.
        """
        with self._lock:
            delegator: Optional[Delegator] = self.get(delegator_name)
            if delegator is None or role_name not in self._trusted_set:
                raise RuntimeError(
                    f"Cannot verify {role_name} delegated by {delegator_name}"
                )

            md = self._load_data(Targets, self._raw[role_name])
            delegator.verify_delegate(
                role_name, md.verification_bytes, md.signatures
            )
            return cast(Targets, self._trusted_set[role_name])

    def fork(
        self, reference_time: Optional[datetime] = None
    ) -> "TrustedMetadataSet":
        """Return a staging copy: changes to it are invisible here until
        ``commit()``.
        """
        with self._lock:
            staged = copy.copy(self)
            staged._trusted_set = dict(self._trusted_set)
            staged._raw = dict(self._raw)
            staged._lock = threading.RLock()
            if reference_time is not None:
                staged.reference_time = reference_time
            return staged

    def commit(self, staged: "TrustedMetadataSet") -> None:
        """Make the state of a ``fork()`` the trusted state, at once."""
        with self._lock:
            self._trusted_set = dict(staged._trusted_set)
            self._raw = dict(staged._raw)
            self.reference_time = staged.reference_time

    def export(self) -> Dict[str, bytes]:
        """Return the trusted documents as they were received, by role."""
        with self._lock:
            return dict(self._raw)

    def _load_trusted_root(
        self,
        data: bytes,
        pinned_keyids: Optional[Sequence[str]],
        pinned_threshold: int,
    ) -> None:
        """Verify and load ``data`` as trusted root metadata.

        An expired initial root is accepted: it may still be used to load
        newer roots.
        """
        md = self._load_data(Root, data)
        new_root = md.signed
        new_root.verify_delegate(
            Root.type, md.verification_bytes, md.signatures
        )

        if pinned_keyids is not None:
            # pinned keys must be present in the root they are pinning
            pinned = Role(list(dict.fromkeys(pinned_keyids)), pinned_threshold)
            registry = KeyRegistry(new_root.keys, {Root.type: pinned})
            result = registry.get_verification_result(
                Root.type, md.verification_bytes, md.signatures
            )
            if not result:
                raise exceptions.UnsignedMetadataError(
                    f"Initial root was signed by {len(result.signed)}/"
                    f"{pinned_threshold} pinned keys",
                    role=Root.type,
                    expected=pinned_threshold,
                    actual=len(result.signed),
                )

        self._set(Root.type, new_root, data)
        logger.debug("Loaded trusted root v%d", new_root.version)

    def _load_data(self, role: Type[T], data: bytes) -> Metadata[T]:
        md = Metadata[T].from_bytes(data)
        if md.signed.type != role.type:
            raise exceptions.MalformedMetadataError(
                f"Expected '{role.type}', got '{md.signed.type}'",
                role=role.type,
                expected=role.type,
                actual=md.signed.type,
            )
        return md

    def _check_expiry(self, signed: Signed, role: Optional[str] = None) -> None:
        role = role or signed.type
        if signed.is_expired(self.reference_time):
            raise exceptions.ExpiredMetadataError(
                f"{role}.json is expired",
                role=role,
                expected=self.reference_time,
                actual=signed.expires,
            )

    @staticmethod
    def _check_version(
        trusted: Signed, new: Signed, role: Optional[str] = None
    ) -> None:
        role = role or new.type
        if new.version < trusted.version:
            raise exceptions.RollbackError(
                f"New {role} version {new.version} must be >= "
                f"{trusted.version}",
                role=role,
                expected=trusted.version,
                actual=new.version,
            )
        if new.version == trusted.version:
            raise exceptions.EqualVersionNumberError(
                role=role, expected=trusted.version, actual=new.version
            )

    def _snapshot_meta_for(self, role: str) -> MetaFile:
        meta = self.snapshot.meta.get(f"{role}.json")
        if meta is None:
            raise exceptions.IntegrityMismatchError(
                f"Snapshot does not contain information for '{role}'",
                role=role,
            )
        return meta

    def _set(self, role: str, signed: Signed, data: bytes) -> None:
        self._trusted_set[role] = signed
        self._raw[role] = data

    def _drop(self, role: str) -> None:
        if self._trusted_set.pop(role, None) is not None:
            logger.debug("Dropped trusted %s", role)
        self._raw.pop(role, None)


def _role_keys_changed(old_root: Root, new_root: Root, role: str) -> bool:
    old_role = old_root.roles[role]
    new_role = new_root.roles[role]
    if old_role != new_role:
        return True
    return any(
        old_root.keys.get(keyid) != new_root.keys.get(keyid)
        for keyid in new_role.keyids
    )
