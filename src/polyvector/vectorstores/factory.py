"""Backend selection at construction time."""

from __future__ import annotations

from enum import Enum
from typing import Any

from polyvector.embeddings.base import Embeddings
from polyvector.errors import ValidationError
from polyvector.vectorstores.base import VectorStore
from polyvector.vectorstores.neo4j_store import Neo4jVectorStore
from polyvector.vectorstores.qdrant_store import QdrantVectorStore


class Backend(Enum):
    """Supported vector store backends."""

    QDRANT = "qdrant"
    NEO4J = "neo4j"


_STORES: dict[Backend, type[VectorStore]] = {
    Backend.QDRANT: QdrantVectorStore,
    Backend.NEO4J: Neo4jVectorStore,
}


def store_class(backend: Backend | str) -> type[VectorStore]:
    """Return the store implementation for ``backend``."""
    try:
        return _STORES[Backend(backend)]
    except ValueError as exc:
        choices = ", ".join(item.value for item in Backend)
        raise ValidationError(
            f"Unknown backend {backend!r}; expected one of: {choices}"
        ) from exc


async def create_vector_store(
    backend: Backend | str,
    embeddings: Embeddings,
    *,
    existing: bool = False,
    **config: Any,
) -> VectorStore:
    """Construct a store for ``backend``.

    With ``existing=True`` the store attaches to an index that must already
    exist instead of preparing a new one.
    """
    cls = store_class(backend)
    if existing:
        return await cls.from_existing_index(embeddings, **config)
    return await cls.create(embeddings, **config)
