# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""The metadata API: signed role documents and their payloads.

A ``Metadata`` object is one signed document as it travels over the wire:
a ``signed`` payload (one of ``Root``, ``Timestamp``, ``Snapshot`` or
``Targets``) plus the ordered list of signatures over it. ``Metadata`` can be
type constrained, e.g. the signed attribute of ``Metadata[Root]`` is a
``Root``.

Signatures cover the OLPC canonical JSON form of ``signed``. When a document
is deserialized, the canonical bytes of the ``signed`` object are captured
exactly as received, before any model conversion, and those are the bytes
verification runs against (``verification_bytes``).

JSON is the only supported wire format.
"""

import logging
from typing import Any, Dict, Generic, List, Optional, Type, cast

from securesystemslib.formats import encode_canonical
from securesystemslib.signer import Signature, Signer

# Payload classes are exposed here as the public names of the API.
from tufcore.api._payload import (  # noqa: F401
    _ROOT,
    _SNAPSHOT,
    _TARGETS,
    _TIMESTAMP,
    SPECIFICATION_VERSION,
    TOP_LEVEL_ROLE_NAMES,
    BaseFile,
    DelegatedRole,
    Delegations,
    Key,
    KeyRegistry,
    MetaFile,
    Role,
    Root,
    RootVerificationResult,
    Signed,
    Snapshot,
    T,
    TargetFile,
    Targets,
    Timestamp,
    VerificationResult,
)
from tufcore.api.exceptions import UnsignedMetadataError
from tufcore.api.serialization import (
    MetadataDeserializer,
    MetadataSerializer,
    SignedSerializer,
)

logger = logging.getLogger(__name__)

_PAYLOAD_CLASSES: Dict[str, Type[Signed]] = {
    _ROOT: Root,
    _TIMESTAMP: Timestamp,
    _SNAPSHOT: Snapshot,
    _TARGETS: Targets,
}


class Metadata(Generic[T]):
    """A signed role document.

    New documents can be created from scratch with::

        one_day = datetime.now(timezone.utc) + timedelta(days=1)
        timestamp = Metadata(Timestamp(expires=one_day))

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        signed: The role payload.
        signatures: Ordered list of ``Signature`` objects over the canonical
            form of ``signed``. Several signatures by the same keyid are
            allowed: verification counts a key once. Default is empty.
        unrecognized_fields: Envelope fields not managed by this library.
            They are NOT signed.
        received_bytes: Canonical bytes of ``signed`` as they were received.
            Set by ``from_dict``; None for documents built locally.
    """

    def __init__(
        self,
        signed: T,
        signatures: Optional[List[Signature]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
        received_bytes: Optional[bytes] = None,
    ):
        self.signed: T = signed
        self.signatures = signatures if signatures is not None else []
        self.unrecognized_fields = unrecognized_fields or {}
        self.received_bytes = received_bytes

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Metadata):
            return False

        return (
            self.signatures == other.signatures
            and self.signed == other.signed
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @property
    def signed_bytes(self) -> bytes:
        """Canonical json byte representation of the current ``signed``."""

        # Local import avoids a circular import with serialization.json
        from tufcore.api.serialization.json import CanonicalJSONSerializer

        return CanonicalJSONSerializer().serialize(self.signed)

    @property
    def verification_bytes(self) -> bytes:
        """Bytes the signatures must cover.

        The received canonical bytes for deserialized documents, otherwise
        ``signed_bytes``.
        """
        if self.received_bytes is not None:
            return self.received_bytes
        return self.signed_bytes

    @property
    def keyids(self) -> List[str]:
        """Keyids of the signatures, in order, duplicates included."""
        return [sig.keyid for sig in self.signatures]

    @classmethod
    def from_dict(cls, metadata: Dict[str, Any]) -> "Metadata[T]":
        """Create ``Metadata`` object from its json/dict representation.

        Side Effect:
            Destroys the metadata dict passed by reference.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
            securesystemslib.exceptions.FormatError: ``signed`` has no
                canonical form (e.g. contains floats).
        """
        signed_dict = metadata.pop("signed")
        received_bytes = encode_canonical(signed_dict).encode("utf-8")

        _type = signed_dict["_type"]
        inner_cls = _PAYLOAD_CLASSES.get(_type)
        if inner_cls is None:
            raise ValueError(f'unrecognized metadata type "{_type}"')

        signatures = [
            Signature.from_dict(sig_dict)
            for sig_dict in metadata.pop("signatures")
        ]

        return cls(
            signed=cast(T, inner_cls.from_dict(signed_dict)),
            signatures=signatures,
            # All fields left in the metadata dict are unrecognized.
            unrecognized_fields=metadata,
            received_bytes=received_bytes,
        )

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        deserializer: Optional[MetadataDeserializer] = None,
    ) -> "Metadata[T]":
        """Load metadata from raw data.

        Raises:
            tufcore.api.serialization.DeserializationError: data is not a
                well formed document.
        """

        if deserializer is None:
            from tufcore.api.serialization.json import JSONDeserializer

            deserializer = JSONDeserializer()

        return deserializer.deserialize(data)

    def to_bytes(
        self, serializer: Optional[MetadataSerializer] = None
    ) -> bytes:
        """Return the serialized document.

        Re-serializing a deserialized document is not guaranteed to produce
        the original bytes (signatures stay valid). Where exact bytes matter,
        e.g. for hashes listed in other metadata, keep the original bytes.

        Raises:
            tufcore.api.serialization.SerializationError: Serialization
                failed.
        """

        if serializer is None:
            from tufcore.api.serialization.json import JSONSerializer

            serializer = JSONSerializer(compact=True)

        return serializer.serialize(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signatures": [sig.to_dict() for sig in self.signatures],
            "signed": self.signed.to_dict(),
            **self.unrecognized_fields,
        }

    def sign(
        self,
        signer: Signer,
        append: bool = False,
        signed_serializer: Optional[SignedSerializer] = None,
    ) -> Signature:
        """Sign the current ``signed`` and record the signature.

        Args:
            signer: ``securesystemslib.signer.Signer`` providing the key.
            append: Keep existing signatures instead of replacing them.
            signed_serializer: Alternative canonical serializer.

        Raises:
            tufcore.api.serialization.SerializationError: ``signed`` cannot
                be serialized.
            UnsignedMetadataError: Signing failed.
        """

        if signed_serializer is None:
            bytes_data = self.signed_bytes
        else:
            bytes_data = signed_serializer.serialize(self.signed)

        try:
            signature = signer.sign(bytes_data)
        except Exception as e:
            raise UnsignedMetadataError(f"Failed to sign: {e}") from e

        if not append:
            self.signatures.clear()
        self.signatures.append(signature)
        # local edits invalidate what was received
        self.received_bytes = None

        return signature
