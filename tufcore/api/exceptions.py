# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
Define exceptions raised by the metadata API and the client.

The names of exception classes should end in 'Error'. Verification failures
derive from ``RepositoryError`` and are never retryable: the same bytes will
fail the same way. Transport failures derive from ``DownloadError`` and may be
retried by the caller.
"""

from typing import Any, Optional

#### Repository errors ####


class RepositoryError(Exception):
    """An error with a repository's state, such as a missing file.

    It covers all exceptions that come from the repository side when
    looking from the perspective of users of metadata API or client.

    Args:
        message: Human readable description of the problem.
        role: Name of the role the error is about, if known.
        expected: Expected value (version, length, hash, threshold...).
        actual: Value that was observed instead of ``expected``.
    """

    def __init__(
        self,
        message: str = "",
        role: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
    ):
        super().__init__(message)
        self.role = role
        self.expected = expected
        self.actual = actual


class MalformedMetadataError(RepositoryError):
    """Metadata could not be parsed, or its structure or type is invalid."""


class UnsignedMetadataError(RepositoryError):
    """An error about metadata object with insufficient threshold of
    signatures.
    """


class BadVersionNumberError(RepositoryError):
    """An error for metadata that contains an invalid version number."""


class EqualVersionNumberError(BadVersionNumberError):
    """An error for metadata containing a previously verified version number."""


class RollbackError(BadVersionNumberError):
    """Metadata version is lower than the currently trusted version."""


class ExpiredMetadataError(RepositoryError):
    """Indicate that a TUF Metadata file has expired."""


class IntegrityMismatchError(RepositoryError):
    """Content does not match what trusted metadata says about it."""


class LengthOrHashMismatchError(IntegrityMismatchError):
    """An error while checking the length and hash values of an object."""


class VersionMismatchError(IntegrityMismatchError, BadVersionNumberError):
    """Metadata version differs from the version referenced by its parent."""


class DelegationError(RepositoryError):
    """The delegation graph cannot be walked safely."""


class DelegationCycleError(DelegationError):
    """A role was reached twice while resolving one target path."""


class DepthExceededError(DelegationError):
    """Resolution went deeper (or wider) than the configured bounds."""


class TargetNotFoundError(RepositoryError):
    """No trusted targets metadata describes the requested target path."""


#### Download Errors ####


class DownloadError(Exception):
    """An error occurred while attempting to download a file."""


class DownloadLengthMismatchError(DownloadError):
    """Indicate that a mismatch of lengths was seen while downloading a file."""


class SlowRetrievalError(DownloadError):
    """Indicate that downloading a file took an unreasonably long time."""


class DocumentNotFoundError(DownloadError):
    """The transport has no document for the requested name and version."""


class DownloadHTTPError(DownloadError):
    """
    Returned by FetcherInterface implementations for HTTP errors.

    Args:
        message: The HTTP error messsage
        status_code: The HTTP status code
    """

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
