# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Check target content against its trusted ``TargetFile``."""

import logging
from typing import Any, Dict, Iterable, Tuple

from securesystemslib import exceptions as sslib_exceptions
from securesystemslib import hash as sslib_hash

from tufcore.api import exceptions
from tufcore.api.metadata import TargetFile

logger = logging.getLogger(__name__)


def _new_digest(algorithm: str) -> Any:
    try:
        return sslib_hash.digest(algorithm)
    except (
        sslib_exceptions.UnsupportedAlgorithmError,
        sslib_exceptions.FormatError,
    ):
        return None


def compute_length_and_hashes(
    data: bytes, algorithms: Iterable[str]
) -> Tuple[int, Dict[str, str]]:
    """Return length of ``data`` and its hex digests for the supported
    ``algorithms``. Unsupported algorithms are left out.
    """
    hashes = {}
    for algorithm in algorithms:
        digest_object = _new_digest(algorithm)
        if digest_object is None:
            logger.info("Unsupported hash algorithm %s", algorithm)
            continue
        digest_object.update(data)
        hashes[algorithm] = digest_object.hexdigest()
    return len(data), hashes


def verify_target(
    entry: TargetFile, actual_length: int, actual_hashes: Dict[str, str]
) -> None:
    """Check observed length and hashes against ``entry``.

    Every hash listed in ``entry`` must be present in ``actual_hashes`` and
    match; a missing one (e.g. an unsupported algorithm) is a mismatch.

    Raises:
        LengthOrHashMismatchError: Length or a hash does not match.
    """
    if actual_length != entry.length:
        raise exceptions.LengthOrHashMismatchError(
            f"{entry.path}: observed length {actual_length} does not match "
            f"expected length {entry.length}",
            expected=entry.length,
            actual=actual_length,
        )

    for algorithm, expected in entry.hashes.items():
        observed = actual_hashes.get(algorithm)
        if observed != expected:
            raise exceptions.LengthOrHashMismatchError(
                f"{entry.path}: observed {algorithm} hash {observed} does "
                f"not match expected hash {expected}",
                expected=expected,
                actual=observed,
            )


def verify_target_bytes(entry: TargetFile, data: bytes) -> None:
    """Check ``data`` against ``entry``.

    Raises:
        LengthOrHashMismatchError: Length or a hash does not match.
    """
    length, hashes = compute_length_and_hashes(data, entry.hashes)
    verify_target(entry, length, hashes)


class StreamingVerifier:
    """Incremental ``verify_target`` for data that arrives in chunks.

    ``update()`` rejects data as soon as it exceeds the expected length, but
    only a successful ``finalize()`` means the data can be trusted.
    """

    def __init__(self, entry: TargetFile):
        self.entry = entry
        self.received = 0
        self._digests: Dict[str, Any] = {}
        for algorithm in entry.hashes:
            digest_object = _new_digest(algorithm)
            if digest_object is not None:
                self._digests[algorithm] = digest_object

    def update(self, chunk: bytes) -> None:
        """Feed the next chunk.

        Raises:
            LengthOrHashMismatchError: More data than the expected length.
        """
        self.received += len(chunk)
        if self.received > self.entry.length:
            raise exceptions.LengthOrHashMismatchError(
                f"{self.entry.path}: received {self.received} bytes, "
                f"expected {self.entry.length}",
                expected=self.entry.length,
                actual=self.received,
            )
        for digest_object in self._digests.values():
            digest_object.update(chunk)

    def finalize(self) -> None:
        """Check all received data.

        Raises:
            LengthOrHashMismatchError: Length or a hash does not match.
        """
        hashes = {
            algorithm: digest_object.hexdigest()
            for algorithm, digest_object in self._digests.items()
        }
        verify_target(self.entry, self.received, hashes)
