# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Role payloads and the key/threshold registry used to verify them."""

import abc
import fnmatch
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    IO,
    Any,
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from securesystemslib import exceptions as sslib_exceptions
from securesystemslib import hash as sslib_hash
from securesystemslib.signer import Key, Signature

from tufcore.api.exceptions import (
    LengthOrHashMismatchError,
    UnsignedMetadataError,
)

_ROOT = "root"
_SNAPSHOT = "snapshot"
_TARGETS = "targets"
_TIMESTAMP = "timestamp"

# Input metadata must share the major version (first number) with this one.
SPECIFICATION_VERSION = ["1", "0", "31"]
TOP_LEVEL_ROLE_NAMES = {_ROOT, _TIMESTAMP, _SNAPSHOT, _TARGETS}

EXPIRES_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

logger = logging.getLogger(__name__)

# T is a Generic type constraint for container payloads
T = TypeVar("T", "Root", "Timestamp", "Snapshot", "Targets")


class Signed(metaclass=abc.ABCMeta):
    """Common part of every role payload: the content covered by signatures.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        version: Monotonic version of the document, must be > 0. Default 1.
        spec_version: Specification version the document follows. Its major
            version must match ``SPECIFICATION_VERSION``.
        expires: Expiry time in UTC. Default is the current time.
        unrecognized_fields: Fields not managed by this library. They are
            kept so re-serialization does not break signatures.

    Raises:
        ValueError: Invalid arguments.
    """

    # type is required for static reference without changing the API
    type: ClassVar[str] = "signed"

    @property
    def _type(self) -> str:
        return self.type

    @property
    def expires(self) -> datetime:
        """Get the metadata expiry date."""
        return self._expires

    @expires.setter
    def expires(self, value: datetime) -> None:
        self._expires = value.replace(microsecond=0)
        if self._expires.tzinfo is None:
            self._expires = self._expires.replace(tzinfo=timezone.utc)
        elif self._expires.tzinfo != timezone.utc:
            raise ValueError(f"Expected tz UTC, not {self._expires.tzinfo}")

    def __init__(
        self,
        version: Optional[int],
        spec_version: Optional[str],
        expires: Optional[datetime],
        unrecognized_fields: Optional[Dict[str, Any]],
    ):
        if spec_version is None:
            spec_version = ".".join(SPECIFICATION_VERSION)
        # semver (X.Y.Z) and the legacy X.Y form are both accepted
        spec_list = spec_version.split(".")
        if len(spec_list) not in [2, 3] or not all(
            el.isdigit() for el in spec_list
        ):
            raise ValueError(f"Failed to parse spec_version {spec_version}")
        if spec_list[0] != SPECIFICATION_VERSION[0]:
            raise ValueError(f"Unsupported spec_version {spec_version}")
        self.spec_version = spec_version

        self.expires = expires or datetime.now(timezone.utc)

        if version is None:
            version = 1
        elif isinstance(version, bool) or not isinstance(version, int):
            raise ValueError(f"version must be an integer, got {version!r}")
        elif version <= 0:
            raise ValueError(f"version must be > 0, got {version}")
        self.version = version

        self.unrecognized_fields = unrecognized_fields or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Signed):
            return False

        return (
            self.type == other.type
            and self.version == other.version
            and self.spec_version == other.spec_version
            and self.expires == other.expires
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @abc.abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Serialize and return a dict representation of self."""
        raise NotImplementedError

    @classmethod
    @abc.abstractmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Signed":
        """Create the payload from its json/dict representation."""
        raise NotImplementedError

    @classmethod
    def _common_fields_from_dict(
        cls, signed_dict: Dict[str, Any]
    ) -> Tuple[int, str, datetime]:
        """Pop the fields shared by all payloads from ``signed_dict``.

        Returned in the order the subclass constructors expect them as
        leading positional arguments.
        """
        _type = signed_dict.pop("_type")
        if _type != cls.type:
            raise ValueError(f"Expected type {cls.type}, got {_type}")

        version = signed_dict.pop("version")
        spec_version = signed_dict.pop("spec_version")
        expires = datetime.strptime(
            signed_dict.pop("expires"), EXPIRES_FORMAT
        ).replace(tzinfo=timezone.utc)

        return version, spec_version, expires

    def _common_fields_to_dict(self) -> Dict[str, Any]:
        return {
            "_type": self._type,
            "version": self.version,
            "spec_version": self.spec_version,
            "expires": self.expires.strftime(EXPIRES_FORMAT),
            **self.unrecognized_fields,
        }

    def is_expired(self, reference_time: Optional[datetime] = None) -> bool:
        """Check expiration against ``reference_time`` (default: now, UTC).

        A document is expired at the exact second of its ``expires`` value.
        """
        if reference_time is None:
            reference_time = datetime.now(timezone.utc)

        return reference_time >= self.expires


class Role:
    """Keys allowed to sign a role's metadata and how many must do so.

    Args:
        keyids: Identifiers of the keys that may sign. Must be unique.
        threshold: Number of distinct keys required, at least 1.
        unrecognized_fields: Fields not managed by this library.

    Raises:
        ValueError: Invalid arguments.
    """

    def __init__(
        self,
        keyids: List[str],
        threshold: int,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        if len(set(keyids)) != len(keyids):
            raise ValueError(f"Nonunique keyids: {keyids}")
        if isinstance(threshold, bool) or not isinstance(threshold, int):
            raise ValueError(f"threshold must be an integer, got {threshold}")
        if threshold < 1:
            raise ValueError("threshold should be at least 1!")
        self.keyids = keyids
        self.threshold = threshold
        self.unrecognized_fields = unrecognized_fields or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return False

        return (
            self.keyids == other.keyids
            and self.threshold == other.threshold
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, role_dict: Dict[str, Any]) -> "Role":
        """Create ``Role`` object from its json/dict representation.

        Raises:
            ValueError, KeyError: Invalid arguments.
        """
        keyids = role_dict.pop("keyids")
        threshold = role_dict.pop("threshold")
        return cls(keyids, threshold, role_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyids": self.keyids,
            "threshold": self.threshold,
            **self.unrecognized_fields,
        }


@dataclass
class VerificationResult:
    """Outcome of counting signatures for one role.

    Attributes:
        threshold: Number of required signatures.
        signed: keyid to Key for the keys with a valid signature.
        unsigned: keyid to Key for authorized keys without a valid signature.
    """

    threshold: int
    signed: Dict[str, Key] = field(default_factory=dict)
    unsigned: Dict[str, Key] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.verified

    @property
    def verified(self) -> bool:
        """True if threshold of signatures is met."""
        return len(self.signed) >= self.threshold

    @property
    def missing(self) -> int:
        """Number of additional signatures required to reach threshold."""
        return max(0, self.threshold - len(self.signed))


@dataclass
class RootVerificationResult:
    """Root must satisfy both the previous root and itself.

    For the very first root both results come from the same registry.
    """

    first: VerificationResult
    second: VerificationResult

    def __bool__(self) -> bool:
        return self.verified

    @property
    def verified(self) -> bool:
        return self.first.verified and self.second.verified

    @property
    def signed(self) -> Dict[str, Key]:
        return {**self.first.signed, **self.second.signed}

    @property
    def unsigned(self) -> Dict[str, Key]:
        return {**self.first.unsigned, **self.second.unsigned}


class KeyRegistry:
    """Keys and thresholds one delegator grants to the roles it delegates to.

    ``Root`` holds the registry for the top-level roles, every ``Targets``
    with delegations holds the registry for its delegated roles: there is
    one registry per edge of the delegation graph.

    Args:
        keys: keyid to public key.
        roles: role name to ``Role`` (keyids and threshold).
    """

    def __init__(self, keys: Dict[str, Key], roles: Dict[str, Role]):
        self.keys = keys
        self.roles = roles

    def authorized(self, role_name: str) -> Role:
        """Return keyids and threshold for ``role_name``.

        Raises:
            ValueError: ``role_name`` is not delegated by this registry.
        """
        role = self.roles.get(role_name)
        if role is None:
            raise ValueError(f"Delegated role {role_name} not found")
        return role

    def get_key(self, keyid: str) -> Key:
        if keyid not in self.keys:
            raise ValueError(f"Key {keyid} not found")
        return self.keys[keyid]

    def get_verification_result(
        self,
        role_name: str,
        payload: bytes,
        signatures: Sequence[Signature],
    ) -> VerificationResult:
        """Count distinct authorized keys with a valid signature on payload.

        Signatures by unknown keyids are ignored, several signatures by the
        same keyid count once (if any of them verifies), and signatures that
        fail to verify count as missing. Does not raise on threshold failure.

        Raises:
            ValueError: no delegation was found for ``role_name``.
        """
        role = self.authorized(role_name)

        by_keyid: Dict[str, List[Signature]] = {}
        for sig in signatures:
            by_keyid.setdefault(sig.keyid, []).append(sig)

        result = VerificationResult(role.threshold)
        for keyid in role.keyids:
            try:
                key = self.get_key(keyid)
            except ValueError:
                logger.info("No key for keyid %s", keyid)
                continue

            candidates = by_keyid.get(keyid, [])
            if any(_signature_is_valid(key, s, payload) for s in candidates):
                result.signed[keyid] = key
            else:
                logger.info("No valid signature by %s for %s", keyid, role_name)
                result.unsigned[keyid] = key

        return result

    def verify(
        self,
        role_name: str,
        payload: bytes,
        signatures: Sequence[Signature],
    ) -> bool:
        """True if ``signatures`` meet the threshold for ``role_name``."""
        return self.get_verification_result(
            role_name, payload, signatures
        ).verified


def _signature_is_valid(key: Key, sig: Signature, payload: bytes) -> bool:
    try:
        key.verify_signature(sig, payload)
    except (
        sslib_exceptions.UnverifiedSignatureError,
        sslib_exceptions.VerificationError,
    ):
        return False
    return True


class _DelegatorMixin(metaclass=abc.ABCMeta):
    """Verification helpers shared by Root and Targets."""

    @abc.abstractmethod
    def key_registry(self) -> KeyRegistry:
        """Return the registry of roles delegated by this document."""
        raise NotImplementedError

    def get_delegated_role(self, delegated_role: str) -> Role:
        """Raises ValueError if delegated_role is not actually delegated."""
        return self.key_registry().authorized(delegated_role)

    def get_key(self, keyid: str) -> Key:
        return self.key_registry().get_key(keyid)

    def get_verification_result(
        self,
        delegated_role: str,
        payload: bytes,
        signatures: Sequence[Signature],
    ) -> VerificationResult:
        return self.key_registry().get_verification_result(
            delegated_role, payload, signatures
        )

    def verify_delegate(
        self,
        delegated_role: str,
        payload: bytes,
        signatures: Sequence[Signature],
    ) -> None:
        """Verify signature threshold for delegated role.

        Raises:
            UnsignedMetadataError: ``delegated_role`` is not delegated by
                this document, or the threshold of its keys was not met.
        """
        try:
            result = self.get_verification_result(
                delegated_role, payload, signatures
            )
        except ValueError as e:
            raise UnsignedMetadataError(str(e), role=delegated_role) from e

        if not result:
            raise UnsignedMetadataError(
                f"{delegated_role} was signed by {len(result.signed)}/"
                f"{result.threshold} keys",
                role=delegated_role,
                expected=result.threshold,
                actual=len(result.signed),
            )


class Root(Signed, _DelegatorMixin):
    """Root payload: the keys and thresholds of the top-level roles.

    Args:
        version: Metadata version number. Default is 1.
        spec_version: Supported specification version.
        expires: Metadata expiry date. Default is current date and time.
        keys: keyid to Key, the keys referenced from ``roles``.
        roles: Top-level role name to Role. Default is every top-level role
            without keys and with threshold 1.
        consistent_snapshot: Whether the repository publishes versioned
            metadata and hash-prefixed targets. Default is True.
        unrecognized_fields: Fields not managed by this library.

    Raises:
        ValueError: Invalid arguments.
    """

    type = _ROOT

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        keys: Optional[Dict[str, Key]] = None,
        roles: Optional[Dict[str, Role]] = None,
        consistent_snapshot: Optional[bool] = True,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.consistent_snapshot = consistent_snapshot
        self.keys = keys if keys is not None else {}

        if roles is None:
            roles = {r: Role([], 1) for r in TOP_LEVEL_ROLE_NAMES}
        elif set(roles) != TOP_LEVEL_ROLE_NAMES:
            raise ValueError("Role names must be the top-level metadata roles")
        self.roles = roles

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Root):
            return False

        return (
            super().__eq__(other)
            and self.keys == other.keys
            and self.roles == other.roles
            and self.consistent_snapshot == other.consistent_snapshot
        )

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Root":
        """Create ``Root`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        common_args = cls._common_fields_from_dict(signed_dict)
        consistent_snapshot = signed_dict.pop("consistent_snapshot", None)
        keys = {
            keyid: Key.from_dict(keyid, key_dict)
            for keyid, key_dict in signed_dict.pop("keys").items()
        }
        roles = {
            name: Role.from_dict(role_dict)
            for name, role_dict in signed_dict.pop("roles").items()
        }
        return cls(*common_args, keys, roles, consistent_snapshot, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        root_dict = self._common_fields_to_dict()
        if self.consistent_snapshot is not None:
            root_dict["consistent_snapshot"] = self.consistent_snapshot
        root_dict["keys"] = {
            keyid: key.to_dict() for keyid, key in self.keys.items()
        }
        root_dict["roles"] = {
            name: role.to_dict() for name, role in self.roles.items()
        }
        return root_dict

    def add_key(self, key: Key, role: str) -> None:
        """Authorize ``key`` to sign ``role``.

        Raises:
            ValueError: ``role`` is not a top-level role.
        """
        if role not in self.roles:
            raise ValueError(f"Role {role} doesn't exist")
        if key.keyid not in self.roles[role].keyids:
            self.roles[role].keyids.append(key.keyid)
        self.keys[key.keyid] = key

    def key_registry(self) -> KeyRegistry:
        return KeyRegistry(self.keys, self.roles)

    def get_root_verification_result(
        self,
        previous: Optional["Root"],
        payload: bytes,
        signatures: Sequence[Signature],
    ) -> RootVerificationResult:
        """Verify ``payload`` with the previous root and with ``self``.

        ``previous`` may be None for the first trusted root, in which case
        ``self`` is used for both results.

        Raises:
            ValueError: the root versions are not sequential.
        """
        if previous is None:
            previous = self
        elif self.version != previous.version + 1:
            versions = f"v{previous.version} and v{self.version}"
            raise ValueError(
                f"Expected sequential root versions, got {versions}."
            )

        return RootVerificationResult(
            previous.get_verification_result(Root.type, payload, signatures),
            self.get_verification_result(Root.type, payload, signatures),
        )


class BaseFile:
    """Length and hash helpers shared by ``MetaFile`` and ``TargetFile``."""

    @staticmethod
    def _digest(data: Union[bytes, IO[bytes]], algorithm: str) -> str:
        """Return hex digest of ``data`` (bytes or a file object).

        Raises:
            ValueError: ``algorithm`` is not supported.
        """
        try:
            if isinstance(data, bytes):
                digest_object = sslib_hash.digest(algorithm)
                digest_object.update(data)
            else:
                digest_object = sslib_hash.digest_fileobject(data, algorithm)
        except (
            sslib_exceptions.UnsupportedAlgorithmError,
            sslib_exceptions.FormatError,
        ) as e:
            raise ValueError(f"Unsupported algorithm '{algorithm}'") from e

        return digest_object.hexdigest()

    @staticmethod
    def _length_of(data: Union[bytes, IO[bytes]]) -> int:
        if isinstance(data, bytes):
            return len(data)
        # anything else is assumed to be a seekable file object
        data.seek(0, io.SEEK_END)
        return data.tell()

    @classmethod
    def _verify_hashes(
        cls, data: Union[bytes, IO[bytes]], expected_hashes: Dict[str, str]
    ) -> None:
        for algo, exp_hash in expected_hashes.items():
            try:
                observed_hash = cls._digest(data, algo)
            except ValueError as e:
                raise LengthOrHashMismatchError(
                    f"Unsupported algorithm '{algo}'", expected=algo
                ) from e

            if observed_hash != exp_hash:
                raise LengthOrHashMismatchError(
                    f"Observed hash {observed_hash} does not match "
                    f"expected hash {exp_hash}",
                    expected=exp_hash,
                    actual=observed_hash,
                )

    @classmethod
    def _verify_length(
        cls, data: Union[bytes, IO[bytes]], expected_length: int
    ) -> None:
        observed_length = cls._length_of(data)
        if observed_length != expected_length:
            raise LengthOrHashMismatchError(
                f"Observed length {observed_length} does not match "
                f"expected length {expected_length}",
                expected=expected_length,
                actual=observed_length,
            )

    @staticmethod
    def _validate_hashes(hashes: Dict[str, str]) -> None:
        if not hashes:
            raise ValueError("Hashes must be a non empty dictionary")
        for key, value in hashes.items():
            if not (isinstance(key, str) and isinstance(value, str)):
                raise TypeError("Hashes items must be strings")

    @staticmethod
    def _validate_length(length: int) -> None:
        if isinstance(length, bool) or not isinstance(length, int):
            raise TypeError(f"Length must be an integer, got {length!r}")
        if length < 0:
            raise ValueError(f"Length must be >= 0, got {length}")

    @classmethod
    def _get_length_and_hashes(
        cls,
        data: Union[bytes, IO[bytes]],
        hash_algorithms: Optional[List[str]],
    ) -> Tuple[int, Dict[str, str]]:
        if hash_algorithms is None:
            hash_algorithms = [sslib_hash.DEFAULT_HASH_ALGORITHM]

        hashes = {algo: cls._digest(data, algo) for algo in hash_algorithms}
        return cls._length_of(data), hashes


class MetaFile(BaseFile):
    """What a parent document says about one metadata file.

    Args:
        version: Version of the referenced metadata.
        length: Optional exact length in bytes.
        hashes: Optional algorithm to hex digest mapping.
        unrecognized_fields: Fields not managed by this library.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    def __init__(
        self,
        version: int = 1,
        length: Optional[int] = None,
        hashes: Optional[Dict[str, str]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        if version <= 0:
            raise ValueError(f"Metafile version must be > 0, got {version}")
        if length is not None:
            self._validate_length(length)
        if hashes is not None:
            self._validate_hashes(hashes)

        self.version = version
        self.length = length
        self.hashes = hashes
        self.unrecognized_fields = unrecognized_fields or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetaFile):
            return False

        return (
            self.version == other.version
            and self.length == other.length
            and self.hashes == other.hashes
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, meta_dict: Dict[str, Any]) -> "MetaFile":
        version = meta_dict.pop("version")
        length = meta_dict.pop("length", None)
        hashes = meta_dict.pop("hashes", None)
        return cls(version, length, hashes, meta_dict)

    @classmethod
    def from_data(
        cls,
        version: int,
        data: Union[bytes, IO[bytes]],
        hash_algorithms: List[str],
    ) -> "MetaFile":
        """Create a ``MetaFile`` with length and hashes computed from data.

        Raises:
            ValueError: Unsupported hash algorithm.
        """
        length, hashes = cls._get_length_and_hashes(data, hash_algorithms)
        return cls(version, length, hashes)

    def to_dict(self) -> Dict[str, Any]:
        res_dict: Dict[str, Any] = {
            "version": self.version,
            **self.unrecognized_fields,
        }
        if self.length is not None:
            res_dict["length"] = self.length
        if self.hashes is not None:
            res_dict["hashes"] = self.hashes
        return res_dict

    def verify_length_and_hashes(self, data: Union[bytes, IO[bytes]]) -> None:
        """Check ``data`` against whichever of length and hashes are set.

        Raises:
            LengthOrHashMismatchError: Mismatch or unsupported algorithm.
        """
        if self.length is not None:
            self._verify_length(data, self.length)
        if self.hashes is not None:
            self._verify_hashes(data, self.hashes)


class Timestamp(Signed):
    """Timestamp payload: points at the current snapshot.

    The wire format nests the pointer under ``meta["snapshot.json"]``; here
    it is exposed directly as ``snapshot_meta``.

    Raises:
        ValueError: Invalid arguments.
    """

    type = _TIMESTAMP

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        snapshot_meta: Optional[MetaFile] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.snapshot_meta = snapshot_meta or MetaFile(1)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timestamp):
            return False

        return (
            super().__eq__(other) and self.snapshot_meta == other.snapshot_meta
        )

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Timestamp":
        common_args = cls._common_fields_from_dict(signed_dict)
        meta_dict = signed_dict.pop("meta")
        snapshot_meta = MetaFile.from_dict(meta_dict["snapshot.json"])
        return cls(*common_args, snapshot_meta, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        res_dict = self._common_fields_to_dict()
        res_dict["meta"] = {"snapshot.json": self.snapshot_meta.to_dict()}
        return res_dict


class Snapshot(Signed):
    """Snapshot payload: versions (and optionally hashes) of targets roles.

    Args:
        meta: "<role>.json" to ``MetaFile``. Default lists targets.json v1.

    Raises:
        ValueError: Invalid arguments.
    """

    type = _SNAPSHOT

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        meta: Optional[Dict[str, MetaFile]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.meta = meta if meta is not None else {"targets.json": MetaFile(1)}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return False

        return super().__eq__(other) and self.meta == other.meta

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Snapshot":
        common_args = cls._common_fields_from_dict(signed_dict)
        meta = {
            path: MetaFile.from_dict(meta_dict)
            for path, meta_dict in signed_dict.pop("meta").items()
        }
        return cls(*common_args, meta, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        snapshot_dict = self._common_fields_to_dict()
        snapshot_dict["meta"] = {
            path: meta.to_dict() for path, meta in self.meta.items()
        }
        return snapshot_dict


class DelegatedRole(Role):
    """A delegation edge from a targets role to another targets role.

    Exactly one of ``paths`` (shell-style patterns, matched one path
    segment at a time) or ``path_hash_prefixes`` (prefixes of the hex
    sha256 of the target path) must be set.

    Args:
        name: Delegated role name.
        keyids: Delegated role signing key identifiers.
        threshold: Number of keys required to sign this role's metadata.
        terminating: Stop the search after this role if the path matched.
        paths: Path patterns.
        path_hash_prefixes: Hash prefixes.
        unrecognized_fields: Fields not managed by this library.

    Raises:
        ValueError: Invalid arguments.
    """

    def __init__(
        self,
        name: str,
        keyids: List[str],
        threshold: int,
        terminating: bool,
        paths: Optional[List[str]] = None,
        path_hash_prefixes: Optional[List[str]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(keyids, threshold, unrecognized_fields)
        self.name = name
        self.terminating = terminating
        if (paths is None) == (path_hash_prefixes is None):
            raise ValueError(
                "Only one of (paths, path_hash_prefixes) must be set"
            )

        patterns = paths if paths is not None else path_hash_prefixes
        if not all(isinstance(p, str) for p in patterns or []):
            raise ValueError("Path patterns and prefixes must be strings")

        self.paths = paths
        self.path_hash_prefixes = path_hash_prefixes

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DelegatedRole):
            return False

        return (
            super().__eq__(other)
            and self.name == other.name
            and self.terminating == other.terminating
            and self.paths == other.paths
            and self.path_hash_prefixes == other.path_hash_prefixes
        )

    @classmethod
    def from_dict(cls, role_dict: Dict[str, Any]) -> "DelegatedRole":
        """Create ``DelegatedRole`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        name = role_dict.pop("name")
        keyids = role_dict.pop("keyids")
        threshold = role_dict.pop("threshold")
        terminating = role_dict.pop("terminating")
        paths = role_dict.pop("paths", None)
        path_hash_prefixes = role_dict.pop("path_hash_prefixes", None)
        return cls(
            name,
            keyids,
            threshold,
            terminating,
            paths,
            path_hash_prefixes,
            role_dict,
        )

    def to_dict(self) -> Dict[str, Any]:
        res_dict = {
            "name": self.name,
            "terminating": self.terminating,
            **super().to_dict(),
        }
        if self.paths is not None:
            res_dict["paths"] = self.paths
        else:
            res_dict["path_hash_prefixes"] = self.path_hash_prefixes
        return res_dict

    @staticmethod
    def _is_target_in_pathpattern(targetpath: str, pathpattern: str) -> bool:
        # fnmatch does not treat "/" specially: match segment by segment
        target_parts = targetpath.split("/")
        pattern_parts = pathpattern.split("/")
        if len(target_parts) != len(pattern_parts):
            return False

        return all(
            fnmatch.fnmatch(target_dir, pattern_dir)
            for target_dir, pattern_dir in zip(target_parts, pattern_parts)
        )

    def is_delegated_path(self, target_filepath: str) -> bool:
        """Determine whether this role is trusted to provide the target.

        ``target_filepath`` is expected in canonical form ("a/b", not
        "a//b"), with "/" as the only separator.
        """
        if self.path_hash_prefixes is not None:
            digest_object = sslib_hash.digest(algorithm="sha256")
            digest_object.update(target_filepath.encode("utf-8"))
            path_hash = digest_object.hexdigest()
            return any(
                path_hash.startswith(prefix)
                for prefix in self.path_hash_prefixes
            )

        assert self.paths is not None
        return any(
            self._is_target_in_pathpattern(target_filepath, pattern)
            for pattern in self.paths
        )


class Delegations:
    """Keys and ordered delegated roles of a targets role.

    Args:
        keys: keyid to Key, the keys referenced from ``roles``.
        roles: Ordered role name to DelegatedRole. Declaration order is the
            order in which delegations are consulted during a search.
        unrecognized_fields: Fields not managed by this library.

    Raises:
        ValueError: Invalid arguments.
    """

    def __init__(
        self,
        keys: Dict[str, Key],
        roles: Dict[str, DelegatedRole],
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        for role in roles:
            if not role or role in TOP_LEVEL_ROLE_NAMES:
                raise ValueError(
                    "Delegated roles cannot be empty or use top-level "
                    "role names"
                )

        self.keys = keys
        self.roles = roles
        self.unrecognized_fields = unrecognized_fields or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Delegations):
            return False

        return (
            self.keys == other.keys
            # role order is significant
            and list(self.roles.items()) == list(other.roles.items())
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, delegations_dict: Dict[str, Any]) -> "Delegations":
        """Create ``Delegations`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        keys = {
            keyid: Key.from_dict(keyid, key_dict)
            for keyid, key_dict in delegations_dict.pop("keys").items()
        }
        roles: Dict[str, DelegatedRole] = {}
        for role_dict in delegations_dict.pop("roles"):
            new_role = DelegatedRole.from_dict(role_dict)
            if new_role.name in roles:
                raise ValueError(f"Duplicate role {new_role.name}")
            roles[new_role.name] = new_role

        return cls(keys, roles, delegations_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keys": {keyid: key.to_dict() for keyid, key in self.keys.items()},
            "roles": [role.to_dict() for role in self.roles.values()],
            **self.unrecognized_fields,
        }

    def get_roles_for_target(
        self, target_filepath: str
    ) -> Iterator[Tuple[str, bool]]:
        """Yield (name, terminating) of delegated roles trusted for the path,
        in declaration order.
        """
        for role in self.roles.values():
            if role.is_delegated_path(target_filepath):
                yield role.name, role.terminating


class TargetFile(BaseFile):
    """Trusted description of one target artifact.

    Args:
        length: Exact length of the target in bytes.
        hashes: Algorithm to hex digest mapping, at least one entry.
        path: Target path relative to the targets base URL.
        unrecognized_fields: Fields not managed by this library, e.g.
            "custom".

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    def __init__(
        self,
        length: int,
        hashes: Dict[str, str],
        path: str,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        self._validate_length(length)
        self._validate_hashes(hashes)

        self.length = length
        self.hashes = hashes
        self.path = path
        self.unrecognized_fields = unrecognized_fields or {}

    @property
    def custom(self) -> Any:
        """Application specific data attached to the target, if any."""
        return self.unrecognized_fields.get("custom")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TargetFile):
            return False

        return (
            self.length == other.length
            and self.hashes == other.hashes
            and self.path == other.path
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, target_dict: Dict[str, Any], path: str) -> "TargetFile":
        length = target_dict.pop("length")
        hashes = target_dict.pop("hashes")
        return cls(length, hashes, path, target_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "length": self.length,
            "hashes": self.hashes,
            **self.unrecognized_fields,
        }

    @classmethod
    def from_data(
        cls,
        target_file_path: str,
        data: Union[bytes, IO[bytes]],
        hash_algorithms: Optional[List[str]] = None,
    ) -> "TargetFile":
        """Create a ``TargetFile`` describing ``data``.

        Raises:
            ValueError: Unsupported hash algorithm.
        """
        length, hashes = cls._get_length_and_hashes(data, hash_algorithms)
        return cls(length, hashes, target_file_path)

    def verify_length_and_hashes(self, data: Union[bytes, IO[bytes]]) -> None:
        """Check the exact length and every listed hash of ``data``.

        Raises:
            LengthOrHashMismatchError: Mismatch or unsupported algorithm.
        """
        self._verify_length(data, self.length)
        self._verify_hashes(data, self.hashes)

    def get_prefixed_paths(self) -> List[str]:
        """Return hash-prefixed URL paths, one per listed hash."""
        parent, sep, name = self.path.rpartition("/")
        return [
            f"{parent}{sep}{hash_value}.{name}"
            for hash_value in self.hashes.values()
        ]


class Targets(Signed, _DelegatorMixin):
    """Targets payload: trusted target descriptions and further delegations.

    Args:
        targets: Target path to ``TargetFile``. Default is empty.
        delegations: Delegations to other targets roles, or None.

    Raises:
        ValueError: Invalid arguments.
    """

    type = _TARGETS

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        targets: Optional[Dict[str, TargetFile]] = None,
        delegations: Optional[Delegations] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.targets = targets if targets is not None else {}
        self.delegations = delegations

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Targets):
            return False

        return (
            super().__eq__(other)
            and self.targets == other.targets
            and self.delegations == other.delegations
        )

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Targets":
        """Create ``Targets`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        common_args = cls._common_fields_from_dict(signed_dict)
        targets = {
            path: TargetFile.from_dict(info, path)
            for path, info in signed_dict.pop(_TARGETS).items()
        }
        delegations_dict = signed_dict.pop("delegations", None)
        delegations = None
        if delegations_dict is not None:
            delegations = Delegations.from_dict(delegations_dict)
        return cls(*common_args, targets, delegations, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        targets_dict = self._common_fields_to_dict()
        targets_dict[_TARGETS] = {
            path: target.to_dict() for path, target in self.targets.items()
        }
        if self.delegations is not None:
            targets_dict["delegations"] = self.delegations.to_dict()
        return targets_dict

    def add_key(self, key: Key, role: str) -> None:
        """Authorize ``key`` to sign delegated role ``role``.

        Raises:
            ValueError: ``role`` is not delegated by this Targets.
        """
        if self.delegations is None or role not in self.delegations.roles:
            raise ValueError(f"Delegated role {role} doesn't exist")
        if key.keyid not in self.delegations.roles[role].keyids:
            self.delegations.roles[role].keyids.append(key.keyid)
        self.delegations.keys[key.keyid] = key

    def key_registry(self) -> KeyRegistry:
        if self.delegations is None:
            return KeyRegistry({}, {})
        # DelegatedRole is a Role: the registry only needs keyids/threshold
        roles: Dict[str, Role] = dict(self.delegations.roles)
        return KeyRegistry(self.delegations.keys, roles)
