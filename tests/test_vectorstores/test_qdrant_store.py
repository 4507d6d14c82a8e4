"""Unit tests for QdrantVectorStore against an in-memory Qdrant stand-in."""

from __future__ import annotations

import math
import uuid
from types import SimpleNamespace
from typing import Any

import pytest
from httpx import Headers
from qdrant_client.http import exceptions as qdrant_exceptions
from qdrant_client.http import models

from polyvector.config import Settings
from polyvector.documents import Document
from polyvector.errors import (
    BatchUpsertError,
    IndexLifecycleError,
    IndexNotFoundError,
    IndexNotReadyError,
    InvalidArgumentError,
    SearchError,
    ValidationError,
)
from polyvector.indexes import DistanceStrategy, SearchType
from polyvector.vectorstores.base import StoreOptions
from polyvector.vectorstores.qdrant_store import QdrantVectorStore, to_point_id


def _unexpected(status_code: int, reason: str) -> qdrant_exceptions.UnexpectedResponse:
    return qdrant_exceptions.UnexpectedResponse(
        status_code=status_code,
        reason_phrase=reason,
        content=b"",
        headers=Headers({}),
    )


def _cosine(left: list[float], right: list[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right, strict=True))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    return dot / norm if norm else 0.0


class FakeQdrantClient:
    """Just enough of AsyncQdrantClient to exercise the store."""

    def __init__(self, fail_upsert_on: set[int] | None = None) -> None:
        self.collections: dict[str, Any] = {}
        self.points: dict[str, dict[str, models.PointStruct]] = {}
        self.calls: list[str] = []
        self.upsert_sizes: list[int] = []
        self.query_kwargs: list[dict[str, Any]] = []
        self.fail_upsert_on = fail_upsert_on or set()
        self.close_count = 0

    async def get_collection(self, collection_name: str) -> Any:
        self.calls.append("get_collection")
        if collection_name not in self.collections:
            raise _unexpected(404, "Not Found")
        vectors = self.collections[collection_name]
        params = SimpleNamespace(vectors=vectors)
        return SimpleNamespace(config=SimpleNamespace(params=params))

    async def create_collection(
        self, collection_name: str, vectors_config: Any
    ) -> bool:
        self.calls.append("create_collection")
        if collection_name in self.collections:
            raise _unexpected(409, "Conflict")
        self.collections[collection_name] = vectors_config
        self.points[collection_name] = {}
        return True

    async def delete_collection(self, collection_name: str) -> bool:
        self.calls.append("delete_collection")
        self.points.pop(collection_name, None)
        return self.collections.pop(collection_name, None) is not None

    async def upsert(
        self, collection_name: str, points: list[models.PointStruct], wait: bool
    ) -> models.UpdateResult:
        self.calls.append("upsert")
        index = len(self.upsert_sizes)
        self.upsert_sizes.append(len(points))
        if index in self.fail_upsert_on:
            raise _unexpected(500, "Internal Server Error")
        for point in points:
            self.points[collection_name][str(point.id)] = point
        return models.UpdateResult(
            operation_id=index, status=models.UpdateStatus.COMPLETED
        )

    async def delete(
        self,
        collection_name: str,
        points_selector: models.PointIdsList,
        wait: bool,
    ) -> models.UpdateResult:
        self.calls.append("delete")
        for point_id in points_selector.points:
            self.points[collection_name].pop(str(point_id), None)
        return models.UpdateResult(operation_id=0, status=models.UpdateStatus.COMPLETED)

    async def query_points(self, collection_name: str, **kwargs: Any) -> Any:
        self.calls.append("query_points")
        self.query_kwargs.append(kwargs)
        using = kwargs["using"]
        scored = []
        for point in self.points[collection_name].values():
            vector = point.vector[using] if using else point.vector
            scored.append(
                models.ScoredPoint(
                    id=point.id,
                    version=0,
                    score=_cosine(kwargs["query"], vector),
                    payload=point.payload,
                )
            )
        scored.sort(key=lambda item: item.score, reverse=True)
        return models.QueryResponse(points=scored[: kwargs["limit"]])

    async def close(self) -> None:
        self.close_count += 1


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.delenv("INDEX_NAME", raising=False)
    monkeypatch.delenv("SEARCH_TYPE", raising=False)
    return Settings(_env_file=None)


@pytest.fixture
def client() -> FakeQdrantClient:
    return FakeQdrantClient()


def _store(
    embeddings: Any, client: FakeQdrantClient, **options: Any
) -> QdrantVectorStore:
    options.setdefault("index_name", "docs")
    return QdrantVectorStore(embeddings, client, StoreOptions(**options))


def _documents(count: int) -> list[Document]:
    return [Document(page_content=f"doc {i}", metadata={"n": i}) for i in range(count)]


@pytest.mark.anyio
async def test_ensure_index_exists_reports_creation_once(embeddings, client) -> None:
    """First call creates the collection, the second finds it."""
    store = _store(embeddings, client)

    assert await store.ensure_index_exists(4) is True
    assert await store.ensure_index_exists(4) is False
    assert store.is_ready
    assert store.descriptor.dimensions == 4
    assert client.calls.count("create_collection") == 1


@pytest.mark.anyio
async def test_ensure_index_exists_rejects_dimension_mismatch(
    embeddings, client
) -> None:
    store = _store(embeddings, client)
    await store.ensure_index_exists(4)

    with pytest.raises(IndexLifecycleError, match="exists with 4 dimensions"):
        await store.ensure_index_exists(8)


@pytest.mark.anyio
async def test_add_vectors_count_mismatch_makes_no_backend_calls(
    embeddings, client
) -> None:
    store = _store(embeddings, client)

    with pytest.raises(ValidationError, match=r"vectors \(2\).*documents \(3\)"):
        await store.add_vectors([[1.0, 0.0], [0.0, 1.0]], _documents(3))

    assert client.calls == []


@pytest.mark.anyio
async def test_add_vectors_writes_in_chunks_of_batch_size(embeddings, client) -> None:
    """300 items go out as 128 + 128 + 44 and the ids come back in order."""
    store = _store(embeddings, client, batch_size=128)
    ids = [f"doc-{i}" for i in range(300)]
    vectors = [[float(i), 1.0, 0.0, 0.0] for i in range(300)]

    returned = await store.add_vectors(vectors, _documents(300), ids=ids)

    assert returned == ids
    assert client.upsert_sizes == [128, 128, 44]
    assert len(client.points["docs"]) == 300


@pytest.mark.anyio
async def test_failed_chunk_leaves_earlier_chunks_committed(embeddings) -> None:
    client = FakeQdrantClient(fail_upsert_on={1})
    store = _store(embeddings, client, batch_size=128)
    vectors = [[float(i), 1.0, 0.0, 0.0] for i in range(300)]

    with pytest.raises(BatchUpsertError) as exc_info:
        await store.add_vectors(vectors, _documents(300))

    assert exc_info.value.committed == 128
    assert client.upsert_sizes == [128, 128]
    assert len(client.points["docs"]) == 128


@pytest.mark.anyio
async def test_add_vectors_generates_ids_when_missing(embeddings, client) -> None:
    store = _store(embeddings, client)

    ids = await store.add_vectors([[1.0, 0.0]], _documents(1))

    assert len(ids) == 1
    assert str(uuid.UUID(ids[0])) == ids[0]


@pytest.mark.anyio
async def test_add_vectors_without_auto_create_raises_not_ready(
    embeddings, client
) -> None:
    store = _store(embeddings, client, ensure_index_exists=False)

    with pytest.raises(IndexNotReadyError):
        await store.add_vectors([[1.0, 0.0]], _documents(1))

    assert "create_collection" not in client.calls


@pytest.mark.anyio
async def test_search_rejects_non_positive_k_before_any_call(
    embeddings, client
) -> None:
    store = _store(embeddings, client)

    with pytest.raises(InvalidArgumentError):
        await store.similarity_search_with_score("cat", k=0)

    assert client.calls == []
    assert embeddings.query_calls == []


@pytest.mark.anyio
async def test_search_on_empty_index_returns_no_hits(embeddings, client) -> None:
    store = _store(embeddings, client)
    await store.ensure_index_exists(4)

    assert await store.similarity_search("cat", k=3) == []


@pytest.mark.anyio
async def test_search_on_missing_index_raises_not_ready(embeddings, client) -> None:
    store = _store(embeddings, client)

    with pytest.raises(IndexNotReadyError):
        await store.similarity_search("cat")


@pytest.mark.anyio
async def test_search_rejects_vector_of_wrong_length(embeddings, client) -> None:
    store = _store(embeddings, client)
    await store.ensure_index_exists(4)

    with pytest.raises(ValidationError, match="does not match"):
        await store.similarity_search_vector_with_score([1.0, 0.0], k=1)


@pytest.mark.anyio
async def test_add_texts_and_search_round_trip_metadata(embeddings, client) -> None:
    store = _store(embeddings, client)
    metadata = {"source": "zoo", "tags": ["pet"], "info": {"legs": 4}}

    await store.add_texts(
        ["cat cat", "dog", "fish"],
        metadatas=[metadata, {"source": "park"}, {}],
        ids=["a", "b", "c"],
    )
    hits = await store.similarity_search_with_score("cat", k=2)

    assert hits[0].document == Document(page_content="cat cat", metadata=metadata)
    assert hits[0].score > hits[1].score
    assert embeddings.document_calls == [["cat cat", "dog", "fish"]]


@pytest.mark.anyio
async def test_delete_removes_only_given_ids(embeddings, client) -> None:
    store = _store(embeddings, client)
    await store.add_texts(["cat", "dog", "fish"], ids=["a", "b", "c"])

    await store.delete(["a", "b"])

    remaining = await store.similarity_search("cat", k=10)
    assert [doc.page_content for doc in remaining] == ["fish"]
    assert set(client.points["docs"]) == {to_point_id("c")}


@pytest.mark.anyio
async def test_delete_with_no_ids_is_a_no_op(embeddings, client) -> None:
    store = _store(embeddings, client)

    await store.delete([])

    assert client.calls == []


@pytest.mark.anyio
async def test_search_failure_raises_search_error(embeddings, client) -> None:
    store = _store(embeddings, client)
    await store.ensure_index_exists(4)

    async def broken(*args: Any, **kwargs: Any) -> Any:
        raise _unexpected(503, "Service Unavailable")

    client.query_points = broken

    with pytest.raises(SearchError, match="docs"):
        await store.similarity_search("cat")


@pytest.mark.anyio
async def test_from_existing_index_missing_raises_not_found(
    embeddings, client, settings
) -> None:
    with pytest.raises(IndexNotFoundError, match="missing"):
        await QdrantVectorStore.from_existing_index(
            embeddings, client=client, settings=settings, index_name="missing"
        )


@pytest.mark.anyio
async def test_from_existing_index_attaches_to_collection(
    embeddings, client, settings
) -> None:
    await _store(embeddings, client).add_texts(["cat"], ids=["a"])

    store = await QdrantVectorStore.from_existing_index(
        embeddings, client=client, settings=settings, index_name="docs"
    )

    assert store.is_ready
    assert store.descriptor.dimensions == 4
    assert [doc.page_content for doc in await store.similarity_search("cat")] == ["cat"]


@pytest.mark.anyio
async def test_from_existing_index_rejects_distance_mismatch(
    embeddings, client, settings
) -> None:
    await _store(
        embeddings, client, distance_strategy=DistanceStrategy.EUCLIDEAN
    ).ensure_index_exists(4)

    with pytest.raises(IndexLifecycleError, match="distance"):
        await QdrantVectorStore.from_existing_index(
            embeddings, client=client, settings=settings, index_name="docs"
        )


@pytest.mark.anyio
async def test_named_vector_is_used_for_search(embeddings, client) -> None:
    store = QdrantVectorStore(
        embeddings, client, StoreOptions(index_name="docs"), vector_name="dense"
    )
    await store.add_texts(["cat"], ids=["a"])

    await store.similarity_search("cat")

    assert client.query_kwargs[-1]["using"] == "dense"
    assert "dense" in client.collections["docs"]


@pytest.mark.anyio
async def test_from_texts_with_pre_delete_replaces_collection(
    embeddings, client, settings
) -> None:
    await _store(embeddings, client).add_texts(["dog"], ids=["old"])

    store = await QdrantVectorStore.from_texts(
        ["cat"],
        {"source": "zoo"},
        embeddings,
        client=client,
        settings=settings,
        index_name="docs",
        pre_delete_collection=True,
    )

    assert "delete_collection" in client.calls
    docs = await store.similarity_search("cat", k=5)
    assert docs == [Document(page_content="cat", metadata={"source": "zoo"})]


@pytest.mark.anyio
async def test_drop_index_returns_store_to_uninitialized(embeddings, client) -> None:
    store = _store(embeddings, client)
    await store.ensure_index_exists(4)

    await store.drop_index()

    assert not store.is_ready
    assert "docs" not in client.collections


@pytest.mark.anyio
async def test_close_is_idempotent_for_owned_client(embeddings, client) -> None:
    store = QdrantVectorStore(embeddings, client, owns_client=True)

    async with store:
        pass
    await store.close()

    assert client.close_count == 1


@pytest.mark.anyio
async def test_close_leaves_borrowed_client_open(embeddings, client) -> None:
    await _store(embeddings, client).close()

    assert client.close_count == 0


def test_hybrid_search_is_rejected(embeddings, client) -> None:
    with pytest.raises(ValidationError, match="hybrid"):
        _store(embeddings, client, search_type=SearchType.HYBRID)


def test_to_point_id_keeps_uuids_and_maps_other_ids() -> None:
    value = str(uuid.uuid4())

    assert to_point_id(value) == value
    assert to_point_id("doc-1") == to_point_id("doc-1")
    assert to_point_id("doc-1") != to_point_id("doc-2")


@pytest.mark.anyio
async def test_create_closes_owned_client_when_pre_delete_fails(
    embeddings, settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    client = FakeQdrantClient()

    async def failing_delete(collection_name: str) -> bool:
        raise _unexpected(500, "Internal Server Error")

    client.delete_collection = failing_delete
    monkeypatch.setattr(
        "polyvector.vectorstores.qdrant_store.build_client", lambda _settings: client
    )

    with pytest.raises(IndexLifecycleError, match="drop_index"):
        await QdrantVectorStore.create(
            embeddings, settings=settings, pre_delete_collection=True
        )

    assert client.close_count == 1
