# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Abstract de/serializers for metadata.

- Metadata de/serializers convert documents to and from a wire format.
- Signed serializers produce the canonical bytes that signatures cover.

Concrete JSON implementations live in ``tufcore.api.serialization.json``.
"""

import abc
from typing import TYPE_CHECKING

from tufcore.api.exceptions import MalformedMetadataError, RepositoryError

if TYPE_CHECKING:
    from tufcore.api.metadata import Metadata, Signed


class SerializationError(RepositoryError):
    """Error during serialization."""


class DeserializationError(MalformedMetadataError):
    """Error during deserialization."""


class MetadataDeserializer(metaclass=abc.ABCMeta):
    """Abstract base class for deserialization of Metadata objects."""

    @abc.abstractmethod
    def deserialize(self, raw_data: bytes) -> "Metadata":
        """Deserialize bytes to Metadata object."""
        raise NotImplementedError


class MetadataSerializer(metaclass=abc.ABCMeta):
    """Abstract base class for serialization of Metadata objects."""

    @abc.abstractmethod
    def serialize(self, metadata_obj: "Metadata") -> bytes:
        """Serialize Metadata object to bytes."""
        raise NotImplementedError


class SignedSerializer(metaclass=abc.ABCMeta):
    """Abstract base class for serialization of Signed objects."""

    @abc.abstractmethod
    def serialize(self, signed_obj: "Signed") -> bytes:
        """Serialize Signed object to bytes."""
        raise NotImplementedError
