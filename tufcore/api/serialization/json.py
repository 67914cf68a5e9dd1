# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""JSON wire format for metadata, and OLPC canonical JSON for the bytes that
signatures cover.
"""

import json
from typing import Any, Dict, List, Tuple

from securesystemslib.formats import encode_canonical

# Metadata and Signed are imported here while metadata imports the default
# de/serializers lazily, in local scope.
from tufcore.api.metadata import Metadata, Signed
from tufcore.api.serialization import (
    DeserializationError,
    MetadataDeserializer,
    MetadataSerializer,
    SerializationError,
    SignedSerializer,
)


def _reject_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise ValueError(f"Duplicate key '{key}'")
        result[key] = value
    return result


class JSONDeserializer(MetadataDeserializer):
    """Provides JSON to Metadata deserialize method.

    Objects with duplicate keys are rejected: two decoders could otherwise
    disagree about which value was signed.
    """

    def deserialize(self, raw_data: bytes) -> Metadata:
        """Deserialize utf-8 encoded JSON bytes into Metadata object."""
        try:
            json_dict = json.loads(
                raw_data.decode("utf-8"),
                object_pairs_hook=_reject_duplicate_keys,
            )
            if not isinstance(json_dict, dict):
                raise ValueError("Metadata must be a JSON object")
            metadata_obj = Metadata.from_dict(json_dict)

        except Exception as e:
            raise DeserializationError(f"Failed to deserialize: {e}") from e

        return metadata_obj


class JSONSerializer(MetadataSerializer):
    """Provides Metadata to JSON serialize method.

    Args:
        compact: Exclude whitespace from the output.
    """

    def __init__(self, compact: bool = False):
        self.compact = compact

    def serialize(self, metadata_obj: Metadata) -> bytes:
        """Serialize Metadata object into utf-8 encoded JSON bytes."""

        try:
            indent = None if self.compact else 1
            separators = (",", ":") if self.compact else (",", ": ")
            json_bytes = json.dumps(
                metadata_obj.to_dict(),
                indent=indent,
                separators=separators,
                sort_keys=True,
            ).encode("utf-8")
        except Exception as e:
            raise SerializationError("Failed to serialize JSON") from e

        return json_bytes


class CanonicalJSONSerializer(SignedSerializer):
    """Provides Signed to OLPC Canonical JSON serialize method."""

    def serialize(self, signed_obj: Signed) -> bytes:
        """Serialize Signed object into utf-8 encoded canonical JSON."""
        try:
            signed_dict = signed_obj.to_dict()
            canonical_bytes = encode_canonical(signed_dict).encode("utf-8")

        except Exception as e:
            raise SerializationError from e

        return canonical_bytes
