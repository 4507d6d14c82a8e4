"""Vector store interfaces shared by all backends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from types import TracebackType
from typing import TYPE_CHECKING, Any, Self

from polyvector.batching import DEFAULT_BATCH_SIZE
from polyvector.documents import Document, SearchHit
from polyvector.embeddings.base import Embeddings
from polyvector.errors import IndexNotReadyError, ValidationError
from polyvector.indexes import DistanceStrategy, IndexDescriptor, SearchType
from polyvector.search import validate_k
from polyvector.vectorstores.validation import (
    documents_from_texts,
    validate_embeddings,
)

if TYPE_CHECKING:
    from polyvector.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreOptions:
    """Construction options recognized by every backend."""

    index_name: str = "default"
    text_field: str = "text"
    ensure_index_exists: bool = True
    distance_strategy: DistanceStrategy = DistanceStrategy.COSINE
    search_type: SearchType = SearchType.VECTOR
    pre_delete_collection: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    operation_timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.index_name:
            raise ValidationError("index_name must be a non-empty string")
        if not self.text_field:
            raise ValidationError("text_field must be a non-empty string")
        if self.batch_size < 1:
            raise ValidationError(
                f"batch_size must be at least 1, got {self.batch_size}"
            )
        if self.operation_timeout is not None and self.operation_timeout <= 0:
            raise ValidationError(
                f"operation_timeout must be positive, got {self.operation_timeout}"
            )

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> Self:
        """Build options from settings, letting keyword arguments win."""
        values = {
            option.name: getattr(settings, option.name) for option in fields(cls)
        }
        values.update(
            {key: value for key, value in overrides.items() if value is not None}
        )
        return cls(**values)


class IndexManager(ABC):
    """Create, discover and drop the vector index behind a store."""

    @abstractmethod
    async def ensure_exists(self, name: str, dimensions: int) -> bool:
        """Create the index if missing.

        Returns:
            True if the index was created, False if it already existed.

        Raises:
            IndexLifecycleError: The backend failed, or an index with that
                name exists with a different dimensionality or distance.
        """
        ...

    @abstractmethod
    async def retrieve_existing(self, name: str) -> int | None:
        """Return the configured dimensionality of an index, or None if absent."""
        ...

    @abstractmethod
    async def drop(self, name: str) -> None:
        """Delete the index and the vectors it holds."""
        ...


class VectorStore(ABC):
    """Abstract interface for storing and searching embedded documents.

    The store tracks index readiness. It starts uninitialized, becomes
    ready once the index is created or discovered, and returns to
    uninitialized after ``drop_index``. Writes create the index on demand
    when ``ensure_index_exists`` is enabled; otherwise writes and searches
    against a missing index raise ``IndexNotReadyError``.
    """

    def __init__(self, embeddings: Embeddings, options: StoreOptions) -> None:
        self.embeddings = embeddings
        self.options = options
        self._descriptor = IndexDescriptor(name=options.index_name)
        self._closed = False

    @property
    def index_name(self) -> str:
        return self._descriptor.name

    @property
    def descriptor(self) -> IndexDescriptor:
        return self._descriptor

    @property
    def is_ready(self) -> bool:
        return self._descriptor.exists

    @property
    @abstractmethod
    def index_manager(self) -> IndexManager:
        """Lifecycle manager for this store's index."""
        ...

    # --- index lifecycle ---

    async def ensure_index_exists(self, dimensions: int) -> bool:
        """Create the index if needed and mark the store ready."""
        created = await self.index_manager.ensure_exists(self.index_name, dimensions)
        self._descriptor.mark_ready(dimensions)
        return created

    async def drop_index(self) -> None:
        """Drop the index; the store becomes uninitialized."""
        await self.index_manager.drop(self.index_name)
        self._descriptor.reset()
        logger.info("Dropped index %s", self.index_name)

    async def _require_ready(
        self, operation: str, dimensions: int | None = None
    ) -> None:
        """Make sure the index is usable for ``operation``.

        ``dimensions`` is the vector length about to be written or queried.
        """
        if not self._descriptor.exists:
            existing = await self.index_manager.retrieve_existing(self.index_name)
            if existing is not None:
                self._descriptor.mark_ready(existing)
            elif (
                operation == "add_vectors"
                and dimensions is not None
                and self.options.ensure_index_exists
            ):
                await self.ensure_index_exists(dimensions)
            else:
                raise IndexNotReadyError(self.index_name, operation)

        expected = self._descriptor.dimensions
        if dimensions is not None and expected is not None and dimensions != expected:
            raise ValidationError(
                f"Vector length ({dimensions}) does not match index "
                f"'{self.index_name}' dimensions ({expected})"
            )

    # --- writes ---

    @abstractmethod
    async def add_vectors(
        self,
        vectors: Sequence[Sequence[float]],
        documents: Sequence[Document],
        ids: Sequence[str] | None = None,
    ) -> list[str]:
        """Store precomputed vectors with their documents.

        Returns:
            The ids of the stored documents, in input order.
        """
        ...

    async def add_documents(
        self,
        documents: Sequence[Document],
        ids: Sequence[str] | None = None,
    ) -> list[str]:
        """Embed documents and store them."""
        if not documents:
            return []
        texts = [document.page_content for document in documents]
        vectors = await self.embeddings.embed_documents(texts)
        validate_embeddings(vectors, len(texts))
        return await self.add_vectors(vectors, documents, ids=ids)

    async def add_texts(
        self,
        texts: Sequence[str],
        metadatas: Sequence[Mapping[str, Any]] | Mapping[str, Any] | None = None,
        ids: Sequence[str] | None = None,
    ) -> list[str]:
        """Wrap texts in documents, embed and store them."""
        return await self.add_documents(documents_from_texts(texts, metadatas), ids=ids)

    @abstractmethod
    async def delete(self, ids: Sequence[str]) -> None:
        """Delete stored documents by id."""
        ...

    # --- search ---

    @abstractmethod
    async def similarity_search_vector_with_score(
        self,
        vector: Sequence[float],
        k: int,
        query_text: str | None = None,
    ) -> list[SearchHit]:
        """Return up to ``k`` hits nearest to ``vector``.

        ``query_text`` feeds the keyword index when the store runs hybrid
        search and is ignored otherwise.
        """
        ...

    async def similarity_search_with_score(
        self, query: str, k: int = 4
    ) -> list[SearchHit]:
        """Embed ``query`` and return up to ``k`` scored hits."""
        validate_k(k)
        vector = await self.embeddings.embed_query(query)
        return await self.similarity_search_vector_with_score(
            vector, k, query_text=query
        )

    async def similarity_search(self, query: str, k: int = 4) -> list[Document]:
        hits = await self.similarity_search_with_score(query, k)
        return [hit.document for hit in hits]

    # --- construction ---

    @classmethod
    @abstractmethod
    async def create(cls, embeddings: Embeddings, **config: Any) -> Self:
        """Construct and initialize a store (pre-delete, connectivity checks)."""
        ...

    @classmethod
    @abstractmethod
    async def from_existing_index(cls, embeddings: Embeddings, **config: Any) -> Self:
        """Attach to an index that must already exist.

        Raises:
            IndexNotFoundError: The index cannot be discovered.
        """
        ...

    @classmethod
    async def from_documents(
        cls,
        documents: Sequence[Document],
        embeddings: Embeddings,
        ids: Sequence[str] | None = None,
        **config: Any,
    ) -> Self:
        """Create a store and add ``documents`` to it."""
        store = await cls.create(embeddings, **config)
        await store.add_documents(documents, ids=ids)
        return store

    @classmethod
    async def from_texts(
        cls,
        texts: Sequence[str],
        metadatas: Sequence[Mapping[str, Any]] | Mapping[str, Any] | None,
        embeddings: Embeddings,
        ids: Sequence[str] | None = None,
        **config: Any,
    ) -> Self:
        """Create a store and add ``texts`` with their metadata to it."""
        documents = documents_from_texts(texts, metadatas)
        return await cls.from_documents(documents, embeddings, ids=ids, **config)

    # --- shutdown ---

    @abstractmethod
    async def _close_backend(self) -> None:
        ...

    async def close(self) -> None:
        """Release the backend connection; repeated calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        await self._close_backend()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
