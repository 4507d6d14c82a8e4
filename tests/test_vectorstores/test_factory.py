"""Unit tests for backend selection."""

import pytest

from polyvector.errors import ValidationError
from polyvector.vectorstores.factory import Backend, create_vector_store, store_class
from polyvector.vectorstores.neo4j_store import Neo4jVectorStore
from polyvector.vectorstores.qdrant_store import QdrantVectorStore


def test_store_class_resolves_backend_names() -> None:
    assert store_class("qdrant") is QdrantVectorStore
    assert store_class(Backend.NEO4J) is Neo4jVectorStore


def test_store_class_rejects_unknown_backend() -> None:
    with pytest.raises(ValidationError, match="qdrant, neo4j"):
        store_class("faiss")


@pytest.mark.anyio
async def test_create_vector_store_dispatches_on_existing(
    embeddings, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: list[tuple[str, dict]] = []

    async def create(cls, embeddings, **config):
        calls.append(("create", config))
        return "created"

    async def from_existing_index(cls, embeddings, **config):
        calls.append(("existing", config))
        return "attached"

    monkeypatch.setattr(QdrantVectorStore, "create", classmethod(create))
    monkeypatch.setattr(
        QdrantVectorStore, "from_existing_index", classmethod(from_existing_index)
    )

    assert await create_vector_store("qdrant", embeddings, index_name="a") == "created"
    assert (
        await create_vector_store("qdrant", embeddings, existing=True, index_name="b")
        == "attached"
    )
    assert calls == [("create", {"index_name": "a"}), ("existing", {"index_name": "b"})]
