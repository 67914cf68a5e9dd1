# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Public API for ``tufcore.api``."""

from .exceptions import (
    BadVersionNumberError,
    DelegationCycleError,
    DelegationError,
    DepthExceededError,
    DocumentNotFoundError,
    DownloadError,
    DownloadHTTPError,
    DownloadLengthMismatchError,
    EqualVersionNumberError,
    ExpiredMetadataError,
    IntegrityMismatchError,
    LengthOrHashMismatchError,
    MalformedMetadataError,
    RepositoryError,
    RollbackError,
    SlowRetrievalError,
    TargetNotFoundError,
    UnsignedMetadataError,
    VersionMismatchError,
)
from .metadata import (
    SPECIFICATION_VERSION,
    TOP_LEVEL_ROLE_NAMES,
    DelegatedRole,
    Delegations,
    Key,
    KeyRegistry,
    Metadata,
    MetaFile,
    Role,
    Root,
    Signed,
    Snapshot,
    TargetFile,
    Targets,
    Timestamp,
    VerificationResult,
)

__all__ = [
    "SPECIFICATION_VERSION",
    "TOP_LEVEL_ROLE_NAMES",
    BadVersionNumberError.__name__,
    DelegatedRole.__name__,
    DelegationCycleError.__name__,
    DelegationError.__name__,
    Delegations.__name__,
    DepthExceededError.__name__,
    DocumentNotFoundError.__name__,
    DownloadError.__name__,
    DownloadHTTPError.__name__,
    DownloadLengthMismatchError.__name__,
    EqualVersionNumberError.__name__,
    ExpiredMetadataError.__name__,
    IntegrityMismatchError.__name__,
    Key.__name__,
    KeyRegistry.__name__,
    LengthOrHashMismatchError.__name__,
    MalformedMetadataError.__name__,
    MetaFile.__name__,
    Metadata.__name__,
    RepositoryError.__name__,
    Role.__name__,
    RollbackError.__name__,
    Root.__name__,
    Signed.__name__,
    SlowRetrievalError.__name__,
    Snapshot.__name__,
    TargetFile.__name__,
    TargetNotFoundError.__name__,
    Targets.__name__,
    Timestamp.__name__,
    UnsignedMetadataError.__name__,
    VerificationResult.__name__,
    VersionMismatchError.__name__,
]
