# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Client facade: keep trusted metadata up to date and verify targets.

High-level description of ``Updater`` functionality:
  * Initializing an ``Updater`` loads and verifies the trusted root, either
    from ``bootstrap`` bytes or from local storage. Any other locally stored
    top-level metadata is loaded too, going through the same checks as
    freshly downloaded metadata: anything that fails is ignored.
  * ``update()`` runs one update cycle (root -> timestamp -> snapshot ->
    targets). The cycle either completes or leaves the trusted state as it
    was, apart from root rotations which are kept as soon as they verify.
  * ``resolve_target()`` (or ``get_targetinfo()``) finds the trusted
    ``TargetFile`` for a path, loading delegated targets metadata on demand.
  * ``verify_target_bytes()``, ``find_cached_target()`` and
    ``download_target()`` check target content against a ``TargetFile``.

One ``Updater`` may be shared between threads: all operations on it are
serialized. Running several processes against one metadata directory is not
supported.
"""

import logging
import os
import shutil
import tempfile
import threading
from typing import Optional, Sequence, cast
from urllib import parse

from tufcore.api import exceptions
from tufcore.api.metadata import Root, Snapshot, TargetFile, Targets, Timestamp
from tufcore.client._internal import (
    requests_fetcher,
    resolver,
    target_verifier,
    trusted_metadata_set,
    workflow,
)
from tufcore.client.config import UpdaterConfig
from tufcore.client.fetcher import FetcherInterface
from tufcore.client.storage import FilesystemStorage, MetadataStorage

logger = logging.getLogger(__name__)


class Updater:
    """Creates a new ``Updater`` instance and loads trusted root metadata.

    Args:
        metadata_dir: Local metadata directory. Must be writable and, unless
            ``bootstrap`` is given, contain a trusted root.json file. May be
            ``None`` if ``storage`` is given.
        metadata_base_url: Base URL for all remote metadata downloads
        target_dir: Local targets directory, used as the default by
            ``find_cached_target()`` and ``download_target()``
        target_base_url: ``Optional``; Default base URL for all remote target
            downloads. Can be individually set in ``download_target()``
        fetcher: ``Optional``; ``FetcherInterface`` implementation used to
            download both metadata and targets. Default is ``RequestsFetcher``
        config: ``Optional``; ``UpdaterConfig`` could be used to setup common
            configuration options.
        bootstrap: ``Optional``; Root metadata bytes to trust initially,
            instead of the stored root. It is stored on success.
        storage: ``Optional``; ``MetadataStorage`` for trusted metadata.
            Default is ``FilesystemStorage(metadata_dir)``.
        pinned_root_keyids: ``Optional``; keyids known out of band. The
            initial root must carry ``pinned_root_threshold`` valid
            signatures by these keys.
        pinned_root_threshold: Signatures required from
            ``pinned_root_keyids``.

    Raises:
        ValueError: Neither ``metadata_dir`` nor ``storage`` was given
        OSError: Stored root.json cannot be read
        RepositoryError: Initial root is invalid
    """

    def __init__(
        self,
        metadata_dir: Optional[str],
        metadata_base_url: str,
        target_dir: Optional[str] = None,
        target_base_url: Optional[str] = None,
        fetcher: Optional[FetcherInterface] = None,
        config: Optional[UpdaterConfig] = None,
        bootstrap: Optional[bytes] = None,
        storage: Optional[MetadataStorage] = None,
        pinned_root_keyids: Optional[Sequence[str]] = None,
        pinned_root_threshold: int = 1,
    ):
        if storage is None:
            if metadata_dir is None:
                raise ValueError("Either metadata_dir or storage must be set")
            storage = FilesystemStorage(metadata_dir)
        self._storage = storage

        self._metadata_base_url = _ensure_trailing_slash(metadata_base_url)
        self.target_dir = target_dir
        if target_base_url is None:
            self._target_base_url = None
        else:
            self._target_base_url = _ensure_trailing_slash(target_base_url)

        self.config = config or UpdaterConfig()

        if fetcher is not None:
            self._fetcher = fetcher
        else:
            self._fetcher = requests_fetcher.RequestsFetcher(
                app_user_agent=self.config.app_user_agent
            )

        self._lock = threading.RLock()
        self._updated = False

        data = bootstrap
        if data is None:
            data = self._storage.load(Root.type)

        self._trusted_set = trusted_metadata_set.TrustedMetadataSet(
            data,
            pinned_keyids=pinned_root_keyids,
            pinned_threshold=pinned_root_threshold,
        )
        if bootstrap is not None:
            self._persist_metadata(Root.type, bootstrap)

        self._load_local_state()

    @property
    def trusted_set(self) -> trusted_metadata_set.TrustedMetadataSet:
        """Currently trusted metadata. Read-only use only."""
        return self._trusted_set

    def update(self) -> None:
        """Run one update cycle of the top-level metadata.

        Downloads, verifies, and loads metadata for the top-level roles in the
        order root -> timestamp -> snapshot -> targets. Delegated targets
        metadata is loaded on demand by ``resolve_target()``.

        Verified root versions are stored as they are accepted. Everything
        else is stored only when the whole cycle succeeds. A failed cycle can
        be retried by calling ``update()`` again.

        Raises:
            OSError: New metadata could not be stored
            RepositoryError: Metadata failed to verify in some way
            DownloadError: Download of a metadata file failed in some way
        """
        with self._lock:
            cycle = workflow.UpdateWorkflow(self._trusted_set, self.config)
            try:
                cycle.run(self._fetch_metadata)
            finally:
                for root_data in cycle.rotated_roots:
                    self._persist_metadata(Root.type, root_data)

            for role, data in cycle.committed:
                self._persist_metadata(role, data)
            self._updated = True

    def resolve_target(self, target_path: str) -> TargetFile:
        """Return the trusted ``TargetFile`` for ``target_path``.

        If ``update()`` has not succeeded yet on this ``Updater``, it is done
        implicitly: stored metadata alone is never used to resolve targets.
        Delegated targets metadata is loaded as needed, from local storage
        if still valid or from the remote repository.

        Args:
            target_path: `path-relative-URL string
                <https://url.spec.whatwg.org/#path-relative-url-string>`_
                that uniquely identifies the target within the repository.

        Raises:
            TargetNotFoundError: No trusted role lists ``target_path``
            DelegationError: The delegation graph has a cycle or is too deep
            OSError: New metadata could not be stored
            RepositoryError: Metadata failed to verify in some way
            DownloadError: Download of a metadata file failed in some way
        """
        with self._lock:
            if not self._updated:
                self.update()

            walker = resolver.DelegationResolver(
                self._trusted_set,
                self._load_targets,
                self.config.max_delegation_depth,
                self.config.max_delegations,
            )
            return walker.resolve(target_path)

    def get_targetinfo(self, target_path: str) -> Optional[TargetFile]:
        """Like ``resolve_target()`` but returns ``None`` if no trusted role
        lists ``target_path``.
        """
        try:
            return self.resolve_target(target_path)
        except exceptions.TargetNotFoundError:
            logger.debug("Target %s not found", target_path)
            return None

    @staticmethod
    def verify_target_bytes(targetinfo: TargetFile, data: bytes) -> None:
        """Check ``data`` against ``targetinfo``.

        Raises:
            LengthOrHashMismatchError: Length or a hash does not match
        """
        target_verifier.verify_target_bytes(targetinfo, data)

    def _generate_target_file_path(self, targetinfo: TargetFile) -> str:
        if self.target_dir is None:
            raise ValueError("target_dir must be set if filepath is not given")

        # Use URL encoded target path as filename
        filename = parse.quote(targetinfo.path, "")
        return os.path.join(self.target_dir, filename)

    def find_cached_target(
        self,
        targetinfo: TargetFile,
        filepath: Optional[str] = None,
    ) -> Optional[str]:
        """Check whether a local file is an up to date target.

        Args:
            targetinfo: ``TargetFile`` from ``resolve_target()``.
            filepath: Local path to file. If ``None``, a file path is
                generated based on ``target_dir`` constructor argument.

        Raises:
            ValueError: Incorrect arguments

        Returns:
            Local file path if the file is an up to date target file.
            ``None`` if file is not found or it is not up to date.
        """
        if filepath is None:
            filepath = self._generate_target_file_path(targetinfo)

        try:
            with open(filepath, "rb") as target_file:
                targetinfo.verify_length_and_hashes(target_file)
            return filepath
        except (OSError, exceptions.LengthOrHashMismatchError):
            return None

    def download_target(
        self,
        targetinfo: TargetFile,
        filepath: Optional[str] = None,
        target_base_url: Optional[str] = None,
    ) -> str:
        """Download the target file specified by ``targetinfo``.

        Content is checked while it streams in and the destination file is
        written only once it verified.

        Args:
            targetinfo: ``TargetFile`` from ``resolve_target()``.
            filepath: Local path to download into. If ``None``, the file is
                downloaded into directory defined by ``target_dir`` constructor
                argument using a generated filename. If file already exists,
                it is overwritten.
            target_base_url: Base URL used to form the final target
                download URL. Default is the value provided in ``Updater()``

        Raises:
            ValueError: Invalid arguments
            DownloadError: Download of the target file failed in some way
            RepositoryError: Downloaded target failed to be verified in some way
            OSError: Failed to write target to file

        Returns:
            Local path to downloaded file
        """
        if filepath is None:
            filepath = self._generate_target_file_path(targetinfo)

        if target_base_url is None:
            if self._target_base_url is None:
                raise ValueError(
                    "target_base_url must be set in either "
                    "download_target() or constructor"
                )
            target_base_url = self._target_base_url
        else:
            target_base_url = _ensure_trailing_slash(target_base_url)

        target_filepath = targetinfo.path
        consistent_snapshot = self._trusted_set.root.consistent_snapshot
        if consistent_snapshot and self.config.prefix_targets_with_hash:
            target_filepath = targetinfo.get_prefixed_paths()[0]
        full_url = f"{target_base_url}{target_filepath}"

        verifier = target_verifier.StreamingVerifier(targetinfo)
        with tempfile.TemporaryFile() as temp_file:
            # the verifier rejects a body longer than targetinfo.length
            for chunk in self._fetcher.iter_bytes(full_url, None):
                verifier.update(chunk)
                temp_file.write(chunk)
            verifier.finalize()

            temp_file.seek(0)
            with open(filepath, "wb") as destination_file:
                shutil.copyfileobj(temp_file, destination_file)

        logger.debug("Downloaded target %s", targetinfo.path)
        return filepath

    def _fetch_metadata(self, request: workflow.FetchRequest) -> bytes:
        return self._download_metadata(
            request.role, request.max_length, request.version
        )

    def _download_metadata(
        self, rolename: str, length: int, version: Optional[int] = None
    ) -> bytes:
        """Download a metadata file and return it as bytes."""
        encoded_name = parse.quote(rolename, "")
        if version is None:
            url = f"{self._metadata_base_url}{encoded_name}.json"
        else:
            url = f"{self._metadata_base_url}{version}.{encoded_name}.json"
        return self._fetcher.download_bytes(url, length)

    def _persist_metadata(self, rolename: str, data: bytes) -> None:
        self._storage.store(rolename, data)

    def _load_local_state(self) -> None:
        """Load stored top-level metadata, stopping at the first document
        that is missing or no longer valid.
        """
        for role in (Timestamp.type, Snapshot.type, Targets.type):
            try:
                data = self._storage.load(role)
                # stored snapshot was checked against timestamp when stored
                self._trusted_set.propose(
                    role, data, trusted=role == Snapshot.type
                )
            except (OSError, exceptions.RepositoryError) as e:
                logger.debug("Local %s not loaded: %s", role, e)
                return

    def _load_targets(self, role: str, parent_role: str) -> Targets:
        """Return verified targets metadata for ``role``, loading it from
        storage or the remote repository if it is not trusted yet.
        """
        if role in self._trusted_set:
            # trusted through some delegation, maybe not this one
            return self._trusted_set.verify_delegation(role, parent_role)

        try:
            data = self._storage.load(role)
            self._trusted_set.propose(role, data, delegator=parent_role)
            logger.debug("Local %s is valid: not downloading new one", role)
            return cast(Targets, self._trusted_set[role])
        except (OSError, exceptions.RepositoryError) as e:
            logger.debug("Local %s is invalid (%s), loading remote", role, e)

        metainfo = self._trusted_set.snapshot.meta.get(f"{role}.json")
        if metainfo is None:
            raise exceptions.IntegrityMismatchError(
                f"Snapshot does not contain information for '{role}'",
                role=role,
            )

        length = metainfo.length or self.config.targets_max_length
        version = None
        if self._trusted_set.root.consistent_snapshot:
            version = metainfo.version

        try:
            data = self._download_metadata(role, length, version)
        except exceptions.DownloadLengthMismatchError as e:
            if not metainfo.length:
                raise
            raise exceptions.LengthOrHashMismatchError(
                f"{role} is longer than the {length} bytes snapshot lists",
                role=role,
                expected=length,
            ) from e
        self._trusted_set.propose(role, data, delegator=parent_role)
        self._persist_metadata(role, data)
        return cast(Targets, self._trusted_set[role])


def _ensure_trailing_slash(url: str) -> str:
    """Return url guaranteed to end in a slash."""
    return url if url.endswith("/") else f"{url}/"
