"""Unit tests for the metadata codecs."""

import json

import pytest

from polyvector.codec import (
    JSON_KEYS_PROPERTY,
    FlatMetadataCodec,
    PropertyMetadataCodec,
)
from polyvector.documents import Document
from polyvector.errors import SerializationError, ValidationError

_METADATA = {
    "source": "wiki",
    "page": 3,
    "score": 0.5,
    "published": True,
    "tags": ["a", "b"],
    "mixed": [1, "two", None],
    "nested": {"author": {"name": "Ada"}, "years": [1815, 1852]},
    "missing": None,
    "empty": [],
}


def test_flat_codec_stores_every_value_as_json_text() -> None:
    """encode() produces a str -> str map with the page content under text."""
    codec = FlatMetadataCodec()
    payload = codec.encode(Document(page_content="hello", metadata=_METADATA))

    assert all(isinstance(value, str) for value in payload.values())
    assert payload["text"] == "hello"
    assert payload["page"] == "3"
    assert json.loads(payload["nested"]) == _METADATA["nested"]


def test_flat_codec_round_trip() -> None:
    """decode(encode(doc)) reproduces the document."""
    codec = FlatMetadataCodec(text_field="body")
    document = Document(page_content="hello", metadata=_METADATA)

    assert codec.decode(codec.encode(document)) == document


def test_flat_codec_decode_without_text_field() -> None:
    """Missing page content decodes to an empty string."""
    codec = FlatMetadataCodec()

    document = codec.decode({"source": '"wiki"'})

    assert document.page_content == ""
    assert document.metadata == {"source": "wiki"}


def test_flat_codec_keeps_foreign_values() -> None:
    """Values not written as JSON text are returned unchanged."""
    codec = FlatMetadataCodec()

    document = codec.decode({"text": "t", "raw": "not json", "count": 4})

    assert document.metadata == {"raw": "not json", "count": 4}


def test_flat_codec_rejects_unserializable_value() -> None:
    codec = FlatMetadataCodec()

    with pytest.raises(SerializationError, match="'handle'"):
        codec.encode(Document(page_content="x", metadata={"handle": object()}))


def test_flat_codec_rejects_reserved_text_key() -> None:
    codec = FlatMetadataCodec()

    with pytest.raises(ValidationError, match="text"):
        codec.encode(Document(page_content="x", metadata={"text": "shadow"}))


def test_property_codec_keeps_native_values_typed() -> None:
    """Scalars and homogeneous lists stay native; the rest becomes JSON."""
    codec = PropertyMetadataCodec()
    properties = codec.encode(Document(page_content="hello", metadata=_METADATA))

    assert properties["text"] == "hello"
    assert properties["page"] == 3
    assert properties["published"] is True
    assert properties["tags"] == ["a", "b"]
    assert isinstance(properties["nested"], str)
    assert sorted(properties[JSON_KEYS_PROPERTY]) == [
        "empty",
        "missing",
        "mixed",
        "nested",
    ]


def test_property_codec_round_trip() -> None:
    codec = PropertyMetadataCodec(reserved=("id", "embedding"))
    document = Document(page_content="hello", metadata=_METADATA)

    assert codec.decode(codec.encode(document)) == document


def test_property_codec_json_encodes_large_ints_and_bool_lists() -> None:
    """Values outside the graph's native types survive the round trip."""
    codec = PropertyMetadataCodec()
    metadata = {"big": 2**70, "flags": [True, 1]}

    properties = codec.encode(Document(page_content="", metadata=metadata))

    assert properties[JSON_KEYS_PROPERTY] == ["big", "flags"]
    assert codec.decode_metadata(properties) == metadata


def test_property_codec_drops_reserved_and_projected_nulls() -> None:
    codec = PropertyMetadataCodec(reserved=("id", "embedding"))

    metadata = codec.decode_metadata(
        {"id": "a", "embedding": None, "text": "t", "source": "wiki"}
    )

    assert metadata == {"source": "wiki"}


def test_property_codec_rejects_reserved_keys() -> None:
    codec = PropertyMetadataCodec(reserved=("id",))

    with pytest.raises(ValidationError, match="id"):
        codec.encode(Document(page_content="x", metadata={"id": 1}))
