"""Boundary checks shared by every vector store backend.

All checks run before any backend call so that a rejected request leaves no
partial state behind.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from polyvector.documents import Document
from polyvector.errors import ValidationError


def validate_add_vectors(
    vectors: Sequence[Sequence[float]],
    documents: Sequence[Document],
    ids: Sequence[str] | None = None,
) -> None:
    """Check the shape of an ``add_vectors`` request."""
    if len(vectors) != len(documents):
        raise ValidationError(
            f"Number of vectors ({len(vectors)}) does not equal "
            f"number of documents ({len(documents)})"
        )
    if ids is not None and len(ids) != len(vectors):
        raise ValidationError(
            f"Number of ids ({len(ids)}) does not equal "
            f"number of vectors ({len(vectors)})"
        )
    if not vectors:
        return
    dimensions = len(vectors[0])
    if dimensions == 0:
        raise ValidationError("Vectors must not be empty")
    for position, vector in enumerate(vectors):
        if len(vector) != dimensions:
            raise ValidationError(
                "All vectors must have the same length: "
                f"vector {position} has {len(vector)}, expected {dimensions}"
            )
    if ids is not None:
        blank = [position for position, value in enumerate(ids) if not value]
        if blank:
            raise ValidationError(f"Ids must be non-empty strings (positions {blank})")
        if len(set(ids)) != len(ids):
            raise ValidationError("Ids must be unique within one call")


def resolve_ids(ids: Sequence[str] | None, count: int) -> list[str]:
    """Return the caller's ids, or fresh random ids when none were given."""
    if ids is not None:
        return list(ids)
    return [str(uuid.uuid4()) for _ in range(count)]


def documents_from_texts(
    texts: Sequence[str],
    metadatas: Sequence[Mapping[str, Any]] | Mapping[str, Any] | None = None,
) -> list[Document]:
    """Pair texts with metadata.

    ``metadatas`` may be a list (one entry per text) or a single mapping
    shared by all texts.
    """
    if metadatas is None:
        return [Document(page_content=text) for text in texts]
    if isinstance(metadatas, Mapping):
        return [
            Document(page_content=text, metadata=dict(metadatas)) for text in texts
        ]
    if len(texts) != len(metadatas):
        raise ValidationError(
            f"Number of texts ({len(texts)}) does not equal "
            f"number of metadatas ({len(metadatas)})"
        )
    return [
        Document(page_content=text, metadata=dict(metadata))
        for text, metadata in zip(texts, metadatas, strict=True)
    ]


def validate_embeddings(
    vectors: Sequence[Sequence[float]], expected: int
) -> None:
    """Check that the embeddings provider returned one vector per input."""
    if len(vectors) != expected:
        raise ValidationError(
            f"Embeddings returned {len(vectors)} vectors for {expected} texts"
        )
