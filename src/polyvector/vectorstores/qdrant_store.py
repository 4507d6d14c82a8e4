"""Qdrant vector store implementation."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Sequence
from typing import Any, Self

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import exceptions as qdrant_exceptions
from qdrant_client.http import models

from polyvector.batching import BatchUpserter, UpsertItem
from polyvector.codec import FlatMetadataCodec
from polyvector.config import Settings
from polyvector.deadline import with_deadline
from polyvector.documents import Document, SearchHit
from polyvector.embeddings.base import Embeddings
from polyvector.errors import (
    BackendError,
    IndexLifecycleError,
    IndexNotFoundError,
    SearchError,
    ValidationError,
)
from polyvector.indexes import DistanceStrategy, SearchType
from polyvector.results import Err, Ok, Result
from polyvector.search import validate_k
from polyvector.vectorstores.base import IndexManager, StoreOptions, VectorStore
from polyvector.vectorstores.validation import resolve_ids, validate_add_vectors

logger = logging.getLogger(__name__)

# Namespace for mapping caller ids that are not UUIDs onto Qdrant point ids.
_POINT_ID_NAMESPACE = uuid.UUID("6f1d3c9e-2b4a-5e8f-9a7c-0d3e1b2c4f5a")

_DISTANCES: dict[DistanceStrategy, models.Distance] = {
    DistanceStrategy.COSINE: models.Distance.COSINE,
    DistanceStrategy.EUCLIDEAN: models.Distance.EUCLID,
}

_ACCEPTED_STATUSES = {models.UpdateStatus.ACKNOWLEDGED, models.UpdateStatus.COMPLETED}


def to_point_id(value: str) -> str:
    """Map a caller id onto a Qdrant point id.

    UUID strings are used as-is; any other id maps to a stable UUIDv5 so the
    same caller id always addresses the same point.
    """
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return str(uuid.uuid5(_POINT_ID_NAMESPACE, value))


async def _call[T](call: Awaitable[T]) -> Result[T]:
    """Run a Qdrant client call, turning client exceptions into ``Err``."""
    try:
        return Ok(await call)
    except qdrant_exceptions.UnexpectedResponse as exc:
        return Err(str(exc), status_code=exc.status_code)
    except qdrant_exceptions.ResponseHandlingException as exc:
        return Err(str(exc))


def build_client(settings: Settings) -> AsyncQdrantClient:
    """Create an async Qdrant client from settings."""
    if settings.qdrant_url:
        return AsyncQdrantClient(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
        )
    return AsyncQdrantClient(
        host=settings.qdrant_host,
        port=settings.qdrant_port,
        api_key=settings.qdrant_api_key,
    )


class QdrantIndexManager(IndexManager):
    """Manage a Qdrant collection acting as the vector index."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        distance_strategy: DistanceStrategy = DistanceStrategy.COSINE,
        vector_name: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if vector_name is not None and not vector_name.strip():
            raise ValidationError("Vector name must be a non-empty string.")
        self._client = client
        self._distance_strategy = distance_strategy
        self._timeout = timeout
        self.vector_name = vector_name

    async def ensure_exists(self, name: str, dimensions: int) -> bool:
        existing = await self.retrieve_existing(name)
        if existing is not None:
            self._check_dimensions(name, existing, dimensions)
            logger.debug("Collection %s already exists (%d dimensions)", name, existing)
            return False

        result = await with_deadline(
            _call(
                self._client.create_collection(
                    collection_name=name,
                    vectors_config=self._build_vectors_config(dimensions),
                )
            ),
            self._timeout,
            operation="create_index",
            index_name=name,
        )
        match result:
            case Ok():
                logger.info(
                    "Created collection %s (%d dimensions, %s)",
                    name,
                    dimensions,
                    self._distance_strategy.value,
                )
                return True
            case Err(status_code=409):
                # Created concurrently by another writer.
                existing = await self.retrieve_existing(name)
                if existing is None:
                    raise IndexLifecycleError("create_index", name, result.message)
                self._check_dimensions(name, existing, dimensions)
                return False
            case Err(message=message):
                raise IndexLifecycleError("create_index", name, message)

    async def retrieve_existing(self, name: str) -> int | None:
        result = await with_deadline(
            _call(self._client.get_collection(name)),
            self._timeout,
            operation="describe_index",
            index_name=name,
        )
        match result:
            case Ok(info):
                pass
            case Err(status_code=404):
                return None
            case Err(message=message):
                raise IndexLifecycleError("describe_index", name, message)

        vectors = self._extract_vectors_config(info)
        self.vector_name = self._resolve_vector_name(name, vectors, self.vector_name)
        params = vectors
        if isinstance(vectors, dict):
            params = vectors.get(self.vector_name) if self.vector_name else None
        if not isinstance(params, models.VectorParams):
            raise IndexLifecycleError(
                "describe_index", name, "collection has no dense vector configuration"
            )
        expected = _DISTANCES[self._distance_strategy]
        if params.distance != expected:
            raise IndexLifecycleError(
                "describe_index",
                name,
                f"collection uses distance {params.distance.value}, "
                f"store is configured for {expected.value}",
            )
        return params.size

    async def drop(self, name: str) -> None:
        result = await with_deadline(
            _call(self._client.delete_collection(collection_name=name)),
            self._timeout,
            operation="drop_index",
            index_name=name,
        )
        match result:
            case Ok(deleted):
                if not deleted:
                    logger.debug("Collection %s did not exist", name)
            case Err(status_code=404):
                logger.debug("Collection %s did not exist", name)
            case Err(message=message):
                raise IndexLifecycleError("drop_index", name, message)

    def build_vector_struct(self, vector: list[float]) -> models.VectorStruct:
        """Build the vector struct for Qdrant APIs."""
        if self.vector_name is None:
            return vector
        return {self.vector_name: vector}

    @staticmethod
    def _check_dimensions(name: str, existing: int, requested: int) -> None:
        if existing != requested:
            raise IndexLifecycleError(
                "create_index",
                name,
                f"collection exists with {existing} dimensions, "
                f"requested {requested}",
            )

    def _build_vectors_config(
        self,
        dimensions: int,
    ) -> models.VectorParams | dict[str, models.VectorParams]:
        params = models.VectorParams(
            size=dimensions,
            distance=_DISTANCES[self._distance_strategy],
        )
        if self.vector_name is None:
            return params
        return {self.vector_name: params}

    def _extract_vectors_config(
        self,
        info: models.CollectionInfo,
    ) -> dict[str, models.VectorParams] | models.VectorParams | None:
        try:
            return info.config.params.vectors
        except AttributeError:
            return None

    def _resolve_vector_name(
        self,
        name: str,
        vectors: dict[str, models.VectorParams] | models.VectorParams | None,
        requested: str | None,
    ) -> str | None:
        if vectors is None or isinstance(vectors, models.VectorParams):
            if requested is not None:
                raise IndexLifecycleError(
                    "describe_index",
                    name,
                    "collection uses an unnamed vector; unset vector_name",
                )
            return None
        if requested is not None:
            if requested not in vectors:
                available = ", ".join(sorted(vectors))
                raise IndexLifecycleError(
                    "describe_index",
                    name,
                    f"collection does not include vector name '{requested}'. "
                    f"Available names: {available}",
                )
            return requested
        if len(vectors) == 1:
            return next(iter(vectors))
        available = ", ".join(sorted(vectors))
        raise IndexLifecycleError(
            "describe_index",
            name,
            f"collection defines multiple vector names; set vector_name to one of: "
            f"{available}",
        )


class QdrantVectorStore(VectorStore):
    """Vector store backed by a Qdrant collection.

    Metadata is written as a flat payload of JSON strings with the page
    content under ``text_field``.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        client: AsyncQdrantClient,
        options: StoreOptions | None = None,
        vector_name: str | None = None,
        owns_client: bool = False,
    ) -> None:
        """Initialize the Qdrant vector store.

        Args:
            embeddings: Provider used to embed texts and queries.
            client: Async Qdrant client.
            options: Store options; defaults apply when omitted.
            vector_name: Optional named vector for multi-vector collections.
            owns_client: Close ``client`` when the store is closed.
        """
        options = options or StoreOptions()
        if options.search_type is SearchType.HYBRID:
            raise ValidationError(
                "Qdrant store supports vector search only; use the Neo4j store "
                "for hybrid search"
            )
        super().__init__(embeddings, options)
        self._client = client
        self._owns_client = owns_client
        self._codec = FlatMetadataCodec(options.text_field)
        self._manager = QdrantIndexManager(
            client,
            distance_strategy=options.distance_strategy,
            vector_name=vector_name,
            timeout=options.operation_timeout,
        )

    @property
    def index_manager(self) -> QdrantIndexManager:
        return self._manager

    @property
    def client(self) -> AsyncQdrantClient:
        return self._client

    @classmethod
    def _build(
        cls,
        embeddings: Embeddings,
        *,
        client: AsyncQdrantClient | None = None,
        settings: Settings | None = None,
        vector_name: str | None = None,
        **options: Any,
    ) -> Self:
        settings = settings or Settings()
        store_options = StoreOptions.from_settings(settings, **options)
        owns_client = client is None
        return cls(
            embeddings,
            client or build_client(settings),
            store_options,
            vector_name=vector_name,
            owns_client=owns_client,
        )

    @classmethod
    async def create(cls, embeddings: Embeddings, **config: Any) -> Self:
        store = cls._build(embeddings, **config)
        if store.options.pre_delete_collection:
            try:
                await store.drop_index()
            except BaseException:
                await store.close()
                raise
        return store

    @classmethod
    async def from_existing_index(cls, embeddings: Embeddings, **config: Any) -> Self:
        store = cls._build(embeddings, **config)
        dimensions = await store.index_manager.retrieve_existing(store.index_name)
        if dimensions is None:
            await store.close()
            raise IndexNotFoundError(store.index_name)
        store.descriptor.mark_ready(dimensions)
        return store

    async def add_vectors(
        self,
        vectors: Sequence[Sequence[float]],
        documents: Sequence[Document],
        ids: Sequence[str] | None = None,
    ) -> list[str]:
        validate_add_vectors(vectors, documents, ids)
        if not vectors:
            return []

        document_ids = resolve_ids(ids, len(documents))
        items = [
            UpsertItem(
                id=item_id,
                vector=list(vector),
                metadata=self._codec.encode(document),
            )
            for item_id, vector, document in zip(
                document_ids, vectors, documents, strict=True
            )
        ]

        await self._require_ready("add_vectors", len(vectors[0]))
        upserter = BatchUpserter(
            self._write_chunk,
            index_name=self.index_name,
            batch_size=self.options.batch_size,
            timeout=self.options.operation_timeout,
        )
        await upserter.upsert(items)
        return document_ids

    async def _write_chunk(
        self, items: list[UpsertItem]
    ) -> Result[models.UpdateResult]:
        points = [
            models.PointStruct(
                id=to_point_id(item.id),
                vector=self._manager.build_vector_struct(item.vector),
                payload=item.metadata,
            )
            for item in items
        ]
        result = await _call(
            self._client.upsert(
                collection_name=self.index_name,
                points=points,
                wait=True,
            )
        )
        match result:
            case Ok(update) if update.status not in _ACCEPTED_STATUSES:
                return Err(f"unexpected update status: {update.status}")
            case _:
                return result

    async def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        if any(not item_id for item_id in ids):
            raise ValidationError("Ids must be non-empty strings")
        await self._require_ready("delete")

        result = await with_deadline(
            _call(
                self._client.delete(
                    collection_name=self.index_name,
                    points_selector=models.PointIdsList(
                        points=[to_point_id(item_id) for item_id in ids]
                    ),
                    wait=True,
                )
            ),
            self.options.operation_timeout,
            operation="delete",
            index_name=self.index_name,
        )
        match result:
            case Ok():
                logger.debug("Deleted %d points from %s", len(ids), self.index_name)
            case Err(message=message):
                raise BackendError("delete", self.index_name, message)

    async def similarity_search_vector_with_score(
        self,
        vector: Sequence[float],
        k: int,
        query_text: str | None = None,
    ) -> list[SearchHit]:
        validate_k(k)
        if not vector:
            raise ValidationError("Query vector must not be empty")
        await self._require_ready("search", len(vector))

        result = await with_deadline(
            _call(
                self._client.query_points(
                    collection_name=self.index_name,
                    query=list(vector),
                    using=self._manager.vector_name,
                    limit=k,
                    with_payload=True,
                )
            ),
            self.options.operation_timeout,
            operation="search",
            index_name=self.index_name,
        )
        match result:
            case Ok(response):
                return [
                    SearchHit(
                        document=self._codec.decode(point.payload),
                        score=point.score,
                    )
                    for point in response.points
                ]
            case Err(message=message):
                raise SearchError("search", self.index_name, message)

    async def _close_backend(self) -> None:
        if self._owns_client:
            await self._client.close()
