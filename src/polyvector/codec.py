"""Metadata codecs between ``Document`` and backend storage formats.

Two representations are supported:

* a flat ``str -> str`` map where every metadata value is JSON text, for
  backends that only accept string payloads;
* typed node properties, where values the graph store can hold natively
  (scalars and homogeneous scalar lists) are stored as-is and everything
  else is stored as JSON text, with the JSON-encoded keys recorded in a
  reserved property.

Both satisfy ``decode(encode(doc)) == doc`` for JSON-serializable metadata.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from polyvector.documents import Document
from polyvector.errors import SerializationError, ValidationError

JSON_KEYS_PROPERTY = "_json_keys"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_NATIVE_SCALARS = (str, bool, int, float)


def _dumps(key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise SerializationError(key, value, str(exc)) from exc


def _check_reserved(metadata: Mapping[str, Any], reserved: Iterable[str]) -> None:
    clashes = sorted(key for key in reserved if key in metadata)
    if clashes:
        raise ValidationError(
            f"Metadata uses reserved keys: {', '.join(clashes)}"
        )


class FlatMetadataCodec:
    """Encode metadata as a flat map of JSON strings."""

    def __init__(self, text_field: str = "text") -> None:
        self.text_field = text_field

    def encode(self, document: Document) -> dict[str, str]:
        """Serialize every metadata value and add the page content."""
        _check_reserved(document.metadata, [self.text_field])
        payload = {
            key: _dumps(key, value) for key, value in document.metadata.items()
        }
        payload[self.text_field] = document.page_content
        return payload

    def decode(self, payload: Mapping[str, Any] | None) -> Document:
        """Rebuild a document from a stored payload.

        Values that are not JSON text (written by another producer) are kept
        unchanged.
        """
        payload = payload or {}
        metadata: dict[str, Any] = {}
        for key, raw in payload.items():
            if key == self.text_field:
                continue
            metadata[key] = self._loads(raw)
        text = payload.get(self.text_field)
        return Document(
            page_content=text if isinstance(text, str) else "",
            metadata=metadata,
        )

    @staticmethod
    def _loads(raw: Any) -> Any:
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw


def _is_native_scalar(value: Any) -> bool:
    if isinstance(value, (bool, str, float)):
        return True
    if isinstance(value, int):
        return _INT64_MIN <= value <= _INT64_MAX
    return False


def _is_native(value: Any) -> bool:
    """Whether the graph store can hold ``value`` as a typed property."""
    if _is_native_scalar(value):
        return True
    if isinstance(value, list) and value:
        first_type = type(value[0])
        if first_type not in _NATIVE_SCALARS:
            return False
        return all(
            type(item) is first_type and _is_native_scalar(item) for item in value
        )
    return False


class PropertyMetadataCodec:
    """Encode metadata as typed graph node properties."""

    def __init__(
        self,
        text_field: str = "text",
        reserved: Iterable[str] = (),
    ) -> None:
        self.text_field = text_field
        self.reserved = frozenset({text_field, JSON_KEYS_PROPERTY, *reserved})

    def encode(self, document: Document) -> dict[str, Any]:
        """Build the property map for a node, page content included."""
        _check_reserved(document.metadata, self.reserved)
        properties: dict[str, Any] = {}
        json_keys: list[str] = []
        for key, value in document.metadata.items():
            if _is_native(value):
                properties[key] = value
            else:
                properties[key] = _dumps(key, value)
                json_keys.append(key)
        if json_keys:
            properties[JSON_KEYS_PROPERTY] = json_keys
        properties[self.text_field] = document.page_content
        return properties

    def decode_metadata(self, properties: Mapping[str, Any] | None) -> dict[str, Any]:
        """Return the metadata part of a node's properties.

        Reserved keys and nulls (projected-out properties) are dropped.
        """
        properties = properties or {}
        json_keys = set(properties.get(JSON_KEYS_PROPERTY) or [])
        metadata: dict[str, Any] = {}
        for key, value in properties.items():
            if key in self.reserved or value is None:
                continue
            if key in json_keys and isinstance(value, str):
                metadata[key] = json.loads(value)
            else:
                metadata[key] = value
        return metadata

    def decode(self, properties: Mapping[str, Any] | None) -> Document:
        properties = properties or {}
        text = properties.get(self.text_field)
        return Document(
            page_content=text if isinstance(text, str) else "",
            metadata=self.decode_metadata(properties),
        )
