"""Neo4j vector store with vector and full-text (hybrid) search."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any, Self

from polyvector.batching import BatchUpserter, UpsertItem
from polyvector.codec import PropertyMetadataCodec
from polyvector.config import Settings
from polyvector.deadline import with_deadline
from polyvector.documents import Document, SearchHit
from polyvector.embeddings.base import Embeddings
from polyvector.errors import (
    BackendError,
    IndexLifecycleError,
    IndexNotFoundError,
    IndexNotReadyError,
    InvalidArgumentError,
    SearchError,
    ValidationError,
)
from polyvector.graph.base import GraphDatabase, QueryResult
from polyvector.graph.neo4j_client import Neo4jClient
from polyvector.indexes import DistanceStrategy, SearchType
from polyvector.results import Err, Ok, Result
from polyvector.search import (
    RankedCandidate,
    fuse_hybrid,
    remove_lucene_chars,
    validate_k,
)
from polyvector.vectorstores.base import IndexManager, StoreOptions, VectorStore
from polyvector.vectorstores.validation import (
    resolve_ids,
    validate_add_vectors,
    validate_embeddings,
)

logger = logging.getLogger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# CREATE VECTOR INDEX and db.create.setNodeVectorProperty both need 5.15.
_MIN_VECTOR_INDEX_VERSION = (5, 15, 0)
_ID_PROPERTY = "id"

_VERSION_QUERY = (
    "CALL dbms.components() YIELD name, versions "
    "UNWIND versions AS version RETURN version LIMIT 1"
)

_VECTOR_INDEX_QUERY = (
    "SHOW INDEXES YIELD name, type, labelsOrTypes, properties, options "
    "WHERE type = 'VECTOR' AND (name = $index_name "
    "OR (labelsOrTypes[0] = $node_label "
    "AND properties[0] = $embedding_node_property)) "
    "RETURN name, labelsOrTypes, properties, options"
)

_KEYWORD_INDEX_QUERY = (
    "SHOW INDEXES YIELD name, type, labelsOrTypes, properties, options "
    "WHERE type = 'FULLTEXT' AND (name = $keyword_index_name "
    "OR (labelsOrTypes = [$node_label] "
    "AND properties = $text_node_properties)) "
    "RETURN name, labelsOrTypes, properties, options"
)

_EXISTING_GRAPH_BATCH_SIZE = 1000


def quote_identifier(value: str) -> str:
    """Validate a label or property name and quote it for Cypher."""
    if not _IDENTIFIER_PATTERN.match(value):
        raise ValidationError(f"Invalid Cypher identifier: {value!r}")
    return f"`{value}`"


def quote_index_name(name: str) -> str:
    """Quote an index name for Cypher, escaping embedded backticks."""
    if not name:
        raise ValidationError("Index name must be a non-empty string")
    escaped = name.replace("`", "``")
    return f"`{escaped}`"


def sort_by_index_name(
    records: list[dict[str, Any]], index_name: str
) -> list[dict[str, Any]]:
    """Put the index whose name matches exactly first."""
    return sorted(records, key=lambda record: record.get("name") != index_name)


def parse_version(value: str) -> tuple[int, ...]:
    """Parse '5.11.0' or '5.11-aura' into a comparable tuple."""
    parts = [int(part) for part in re.findall(r"\d+", value)[:3]]
    return tuple(parts + [0] * (3 - len(parts)))


class Neo4jIndexManager(IndexManager):
    """Manage Neo4j vector and full-text indexes for one node label.

    Discovery adopts the name, label and property of an existing index on
    the same label and property, so the manager's ``node_label`` and
    ``embedding_node_property`` may change after ``retrieve_existing``.
    """

    def __init__(
        self,
        graph: GraphDatabase,
        node_label: str = "Chunk",
        embedding_node_property: str = "embedding",
        distance_strategy: DistanceStrategy = DistanceStrategy.COSINE,
        timeout: float | None = None,
    ) -> None:
        quote_identifier(node_label)
        quote_identifier(embedding_node_property)
        self._graph = graph
        self._distance_strategy = distance_strategy
        self._timeout = timeout
        self._resolved_names: dict[str, str] = {}
        self.node_label = node_label
        self.embedding_node_property = embedding_node_property

    def canonical_name(self, name: str) -> str:
        return self._resolved_names.get(name, name)

    async def run(
        self,
        cypher: str,
        params: dict[str, Any] | None = None,
        *,
        operation: str,
        index_name: str,
        error_class: type[BackendError] = IndexLifecycleError,
    ) -> list[dict[str, Any]]:
        """Execute ``cypher`` and return its records, raising on failure."""
        result = await with_deadline(
            self._graph.execute(cypher, params),
            self._timeout,
            operation=operation,
            index_name=index_name,
        )
        match result:
            case Ok(QueryResult(records=records)):
                return records
            case Err(message=message):
                raise error_class(operation, index_name, message)

    async def verify_version(self) -> str:
        """Check that the server supports vector indexes."""
        records = await self.run(
            _VERSION_QUERY, operation="verify_version", index_name="-"
        )
        if not records:
            raise ValidationError("Could not determine the Neo4j server version")
        version = str(records[0]["version"])
        if parse_version(version) < _MIN_VECTOR_INDEX_VERSION:
            minimum = ".".join(str(part) for part in _MIN_VECTOR_INDEX_VERSION)
            raise ValidationError(
                f"Neo4j {version} does not support vector indexes; "
                f"version {minimum} or later is required"
            )
        return version

    async def ensure_exists(self, name: str, dimensions: int) -> bool:
        existing = await self.retrieve_existing(name)
        if existing is not None:
            if existing != dimensions:
                raise IndexLifecycleError(
                    "create_index",
                    self.canonical_name(name),
                    f"index exists with {existing} dimensions, requested {dimensions}",
                )
            return False

        if isinstance(dimensions, bool) or not isinstance(dimensions, int):
            raise ValidationError(f"Dimensions must be an integer, got {dimensions!r}")
        cypher = (
            f"CREATE VECTOR INDEX {quote_index_name(name)} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(self.node_label)}) "
            f"ON (n.{quote_identifier(self.embedding_node_property)}) "
            "OPTIONS {indexConfig: {"
            f"`vector.dimensions`: {dimensions}, "
            f"`vector.similarity_function`: '{self._distance_strategy.value}'"
            "}}"
        )
        await self.run(cypher, operation="create_index", index_name=name)
        logger.info(
            "Created vector index %s on :%s(%s) (%d dimensions, %s)",
            name,
            self.node_label,
            self.embedding_node_property,
            dimensions,
            self._distance_strategy.value,
        )
        return True

    async def retrieve_existing(self, name: str) -> int | None:
        records = await self.run(
            _VECTOR_INDEX_QUERY,
            {
                "index_name": name,
                "node_label": self.node_label,
                "embedding_node_property": self.embedding_node_property,
            },
            operation="describe_index",
            index_name=name,
        )
        if not records:
            return None

        record = sort_by_index_name(records, name)[0]
        config = (record.get("options") or {}).get("indexConfig") or {}
        dimensions = config.get("vector.dimensions")
        similarity = str(config.get("vector.similarity_function", "")).lower()
        if similarity and similarity != self._distance_strategy.value:
            raise IndexLifecycleError(
                "describe_index",
                record["name"],
                f"index uses {similarity} similarity, "
                f"store is configured for {self._distance_strategy.value}",
            )

        self._resolved_names[name] = record["name"]
        self.node_label = record["labelsOrTypes"][0]
        self.embedding_node_property = record["properties"][0]
        if record["name"] != name:
            logger.info("Using existing vector index %s for %s", record["name"], name)
        return int(dimensions) if dimensions is not None else None

    async def retrieve_existing_keyword_index(
        self, name: str, text_node_properties: Sequence[str]
    ) -> str | None:
        """Return the name of a full-text index covering the text properties."""
        records = await self.run(
            _KEYWORD_INDEX_QUERY,
            {
                "keyword_index_name": name,
                "node_label": self.node_label,
                "text_node_properties": list(text_node_properties),
            },
            operation="describe_keyword_index",
            index_name=name,
        )
        if not records:
            return None

        record = sort_by_index_name(records, name)[0]
        if record["labelsOrTypes"] != [self.node_label]:
            raise IndexLifecycleError(
                "describe_keyword_index",
                record["name"],
                f"keyword index covers labels {record['labelsOrTypes']}, "
                f"vector index covers :{self.node_label}",
            )
        if sorted(record["properties"]) != sorted(text_node_properties):
            raise IndexLifecycleError(
                "describe_keyword_index",
                record["name"],
                f"keyword index covers properties {record['properties']}, "
                f"expected {list(text_node_properties)}",
            )
        return record["name"]

    async def create_keyword_index(
        self, name: str, text_node_properties: Sequence[str]
    ) -> bool:
        """Create a full-text index unless one already covers the properties.

        Returns:
            True if an index was created, False if a matching one existed.
        """
        if not text_node_properties:
            raise ValidationError("Keyword index needs at least one text property")
        if await self.retrieve_existing_keyword_index(name, text_node_properties):
            return False

        properties = ", ".join(
            f"n.{quote_identifier(prop)}" for prop in text_node_properties
        )
        cypher = (
            f"CREATE FULLTEXT INDEX {quote_index_name(name)} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(self.node_label)}) ON EACH [{properties}]"
        )
        await self.run(cypher, operation="create_keyword_index", index_name=name)
        logger.info("Created keyword index %s on :%s", name, self.node_label)
        return True

    async def create_id_constraint(self) -> None:
        label = quote_identifier(self.node_label)
        await self.run(
            f"CREATE CONSTRAINT IF NOT EXISTS FOR (n:{label}) "
            f"REQUIRE n.{_ID_PROPERTY} IS UNIQUE",
            operation="create_id_constraint",
            index_name=self.node_label,
        )

    async def drop(self, name: str) -> None:
        """Delete the label's nodes in batches, then the vector index."""
        label = quote_identifier(self.node_label)
        await self.run(
            f"MATCH (n:{label}) "
            "CALL { WITH n DETACH DELETE n } IN TRANSACTIONS OF 10000 ROWS",
            operation="drop_index",
            index_name=name,
        )
        await self.drop_index_only(self.canonical_name(name))

    async def drop_index_only(self, name: str) -> None:
        await self.run(
            f"DROP INDEX {quote_index_name(name)} IF EXISTS",
            operation="drop_index",
            index_name=name,
        )
        self._resolved_names = {
            key: value for key, value in self._resolved_names.items() if value != name
        }


class Neo4jVectorStore(VectorStore):
    """Vector store backed by Neo4j nodes with vector and full-text indexes.

    Each document is a node of ``node_label`` holding its id, page content,
    metadata as typed properties and its embedding. Hybrid search runs the
    vector and full-text queries separately and fuses them with
    ``polyvector.search.fuse_hybrid``.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        graph: GraphDatabase,
        options: StoreOptions | None = None,
        *,
        node_label: str = "Chunk",
        embedding_node_property: str = "embedding",
        text_node_properties: Sequence[str] | None = None,
        keyword_index_name: str = "keyword",
        retrieval_query: str | None = None,
        create_id_index: bool = True,
        owns_graph: bool = False,
    ) -> None:
        """Initialize the Neo4j vector store.

        Args:
            embeddings: Provider used to embed texts and queries.
            graph: Graph database client.
            options: Store options; ``text_field`` names the node property
                holding page content.
            node_label: Label of document nodes.
            embedding_node_property: Node property holding the embedding.
            text_node_properties: Properties concatenated into page content
                for graphs not written by this store.
            keyword_index_name: Name of the full-text index for hybrid search.
            retrieval_query: Cypher tail run after the index lookup with
                ``node`` and ``score`` in scope; must return ``id``, ``text``,
                ``score`` and ``metadata``.
            create_id_index: Create a uniqueness constraint on node ids.
            owns_graph: Close ``graph`` when the store is closed.
        """
        super().__init__(embeddings, options or StoreOptions())
        quote_identifier(self.options.text_field)
        quote_index_name(keyword_index_name)
        self._graph = graph
        self._owns_graph = owns_graph
        self._manager = Neo4jIndexManager(
            graph,
            node_label=node_label,
            embedding_node_property=embedding_node_property,
            distance_strategy=self.options.distance_strategy,
            timeout=self.options.operation_timeout,
        )
        self.text_node_properties = list(text_node_properties or [])
        for prop in self.text_node_properties:
            quote_identifier(prop)
        self.keyword_index_name = keyword_index_name
        self.retrieval_query = retrieval_query
        self.create_id_index = create_id_index
        self._keyword_ready = False
        self._codec = PropertyMetadataCodec(
            self.options.text_field,
            reserved=(
                _ID_PROPERTY,
                embedding_node_property,
                *self.text_node_properties,
            ),
        )

    @property
    def index_manager(self) -> Neo4jIndexManager:
        return self._manager

    @property
    def node_label(self) -> str:
        return self._manager.node_label

    @property
    def embedding_node_property(self) -> str:
        return self._manager.embedding_node_property

    @property
    def keyword_properties(self) -> list[str]:
        return self.text_node_properties or [self.options.text_field]

    # --- construction ---

    @classmethod
    def _build(
        cls,
        embeddings: Embeddings,
        *,
        graph: GraphDatabase | None = None,
        settings: Settings | None = None,
        node_label: str = "Chunk",
        embedding_node_property: str = "embedding",
        text_node_properties: Sequence[str] | None = None,
        keyword_index_name: str = "keyword",
        retrieval_query: str | None = None,
        create_id_index: bool = True,
        **options: Any,
    ) -> Self:
        settings = settings or Settings()
        owns_graph = graph is None
        return cls(
            embeddings,
            graph or Neo4jClient.from_settings(settings),
            StoreOptions.from_settings(settings, **options),
            node_label=node_label,
            embedding_node_property=embedding_node_property,
            text_node_properties=text_node_properties,
            keyword_index_name=keyword_index_name,
            retrieval_query=retrieval_query,
            create_id_index=create_id_index,
            owns_graph=owns_graph,
        )

    @classmethod
    async def create(cls, embeddings: Embeddings, **config: Any) -> Self:
        store = cls._build(embeddings, **config)
        try:
            await store._manager.verify_version()
            if store.options.pre_delete_collection:
                await store.drop_index()
            if store.create_id_index:
                await store._manager.create_id_constraint()
        except BaseException:
            await store.close()
            raise
        return store

    @classmethod
    async def from_existing_index(cls, embeddings: Embeddings, **config: Any) -> Self:
        store = cls._build(embeddings, **config)
        try:
            await store._manager.verify_version()
            dimensions = await store._manager.retrieve_existing(store.index_name)
            if dimensions is None:
                raise IndexNotFoundError(store.index_name)
            store._adopt_index(dimensions)
            if store.options.search_type is SearchType.HYBRID:
                keyword_index = await store._manager.retrieve_existing_keyword_index(
                    store.keyword_index_name, store.keyword_properties
                )
                if keyword_index is None:
                    raise IndexNotFoundError(store.keyword_index_name, "keyword index")
                store.keyword_index_name = keyword_index
                store._keyword_ready = True
        except BaseException:
            await store.close()
            raise
        return store

    @classmethod
    async def from_existing_graph(
        cls,
        embeddings: Embeddings,
        *,
        text_node_properties: Sequence[str],
        node_label: str,
        embedding_node_property: str,
        **config: Any,
    ) -> Self:
        """Index nodes that already exist in the graph.

        Creates the vector index (and the keyword index for hybrid search)
        and embeds every ``node_label`` node that has no embedding yet, using
        its ``text_node_properties`` as text.
        """
        if not text_node_properties:
            raise ValidationError(
                "Parameter text_node_properties must not be an empty list"
            )
        store = cls._build(
            embeddings,
            text_node_properties=text_node_properties,
            node_label=node_label,
            embedding_node_property=embedding_node_property,
            **config,
        )
        try:
            await store._manager.verify_version()
            dimensions = len(await embeddings.embed_query("dimension probe"))
            await store.ensure_index_exists(dimensions)
            if store.options.search_type is SearchType.HYBRID:
                await store._ensure_keyword_index()
            await store._embed_missing_nodes()
        except BaseException:
            await store.close()
            raise
        return store

    def _adopt_index(self, dimensions: int) -> None:
        self._descriptor.name = self._manager.canonical_name(self.index_name)
        self._descriptor.mark_ready(dimensions)

    async def _require_ready(
        self, operation: str, dimensions: int | None = None
    ) -> None:
        await super()._require_ready(operation, dimensions)
        self._descriptor.name = self._manager.canonical_name(self.index_name)

    async def _ensure_keyword_index(self) -> None:
        if self._keyword_ready:
            return
        existing = await self._manager.retrieve_existing_keyword_index(
            self.keyword_index_name, self.keyword_properties
        )
        if existing is not None:
            self.keyword_index_name = existing
        elif self.options.ensure_index_exists:
            await self._manager.create_keyword_index(
                self.keyword_index_name, self.keyword_properties
            )
        else:
            raise IndexNotReadyError(self.keyword_index_name, "hybrid search")
        self._keyword_ready = True

    async def _embed_missing_nodes(self) -> int:
        label = quote_identifier(self.node_label)
        embedding = quote_identifier(self.embedding_node_property)
        fetch = (
            f"MATCH (n:{label}) WHERE n.{embedding} IS null "
            "AND any(k IN $props WHERE n[k] IS NOT null) "
            "RETURN elementId(n) AS id, "
            "reduce(str = '', k IN $props | "
            "str + '\\n' + k + ': ' + coalesce(toString(n[k]), '')) AS text "
            "LIMIT $limit"
        )
        write = (
            "UNWIND $rows AS row "
            f"MATCH (n:{label}) WHERE elementId(n) = row.id "
            "CALL db.create.setNodeVectorProperty(n, $property, row.embedding) "
            "RETURN count(*) AS count"
        )
        total = 0
        while True:
            rows = await self._manager.run(
                fetch,
                {
                    "props": self.text_node_properties,
                    "limit": _EXISTING_GRAPH_BATCH_SIZE,
                },
                operation="embed_existing",
                index_name=self.index_name,
            )
            if not rows:
                break
            texts = [row["text"] for row in rows]
            vectors = await self.embeddings.embed_documents(texts)
            validate_embeddings(vectors, len(rows))
            written = await self._manager.run(
                write,
                {
                    "rows": [
                        {"id": row["id"], "embedding": vector}
                        for row, vector in zip(rows, vectors, strict=True)
                    ],
                    "property": self.embedding_node_property,
                },
                operation="embed_existing",
                index_name=self.index_name,
            )
            count = written[0]["count"] if written else 0
            total += count
            logger.info("Embedded %d existing :%s nodes", total, self.node_label)
            if count == 0 or len(rows) < _EXISTING_GRAPH_BATCH_SIZE:
                break
        return total

    # --- writes ---

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
        items = []
        for item_id, vector, document in zip(
            document_ids, vectors, documents, strict=True
        ):
            properties = self._codec.encode(document)
            properties[_ID_PROPERTY] = item_id
            items.append(
                UpsertItem(id=item_id, vector=list(vector), metadata=properties)
            )

        await self._require_ready("add_vectors", len(vectors[0]))
        if self.options.search_type is SearchType.HYBRID:
            await self._ensure_keyword_index()

        upserter = BatchUpserter(
            self._write_chunk,
            index_name=self.index_name,
            batch_size=self.options.batch_size,
            timeout=self.options.operation_timeout,
        )
        await upserter.upsert(items)
        return document_ids

    async def _write_chunk(self, items: list[UpsertItem]) -> Result[QueryResult]:
        cypher = (
            "UNWIND $rows AS row "
            f"MERGE (n:{quote_identifier(self.node_label)} "
            f"{{{_ID_PROPERTY}: row.id}}) "
            "SET n = row.properties "
            "WITH n, row "
            "CALL db.create.setNodeVectorProperty(n, $property, row.embedding) "
            "RETURN count(*) AS count"
        )
        rows = [
            {"id": item.id, "properties": item.metadata, "embedding": item.vector}
            for item in items
        ]
        return await self._graph.execute(
            cypher, {"rows": rows, "property": self.embedding_node_property}
        )

    async def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        if any(not item_id for item_id in ids):
            raise ValidationError("Ids must be non-empty strings")
        await self._require_ready("delete")
        await self._manager.run(
            f"MATCH (n:{quote_identifier(self.node_label)}) "
            f"WHERE n.{_ID_PROPERTY} IN $ids DETACH DELETE n",
            {"ids": list(ids)},
            operation="delete",
            index_name=self.index_name,
            error_class=BackendError,
        )
        logger.debug("Deleted up to %d nodes from %s", len(ids), self.index_name)

    async def drop_index(self) -> None:
        await super().drop_index()
        if self.options.search_type is SearchType.HYBRID:
            await self._manager.drop_index_only(self.keyword_index_name)
            self._keyword_ready = False

    async def query(
        self, cypher: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run raw Cypher against the store's database."""
        return await self._manager.run(
            cypher,
            params,
            operation="query",
            index_name=self.index_name,
            error_class=BackendError,
        )

    # --- search ---

    def _retrieval_tail(self) -> str:
        if self.retrieval_query:
            return self.retrieval_query
        embedding = quote_identifier(self.embedding_node_property)
        metadata = f"node {{.*, {embedding}: null}} AS metadata"
        if self.text_node_properties:
            return (
                "RETURN elementId(node) AS id, "
                "reduce(str = '', k IN $text_node_properties | "
                "str + '\\n' + k + ': ' + coalesce(toString(node[k]), '')) AS text, "
                f"score, {metadata}"
            )
        text = quote_identifier(self.options.text_field)
        return (
            f"RETURN node.{_ID_PROPERTY} AS id, node.{text} AS text, "
            f"score, {metadata}"
        )

    def _to_candidate(self, record: dict[str, Any]) -> RankedCandidate:
        text = record.get("text")
        page_content = text if isinstance(text, str) else ""
        record_id = record.get("id")
        return RankedCandidate(
            key=str(record_id) if record_id is not None else page_content,
            document=Document(
                page_content=page_content,
                metadata=self._codec.decode_metadata(record.get("metadata")),
            ),
            score=float(record["score"]),
        )

    async def _query_candidates(
        self, cypher: str, params: dict[str, Any], operation: str
    ) -> list[RankedCandidate]:
        records = await self._manager.run(
            cypher,
            {**params, "text_node_properties": self.text_node_properties},
            operation=operation,
            index_name=self.index_name,
            error_class=SearchError,
        )
        return [self._to_candidate(record) for record in records]

    async def similarity_search_vector_with_score(
        self,
        vector: Sequence[float],
        k: int,
        query_text: str | None = None,
    ) -> list[SearchHit]:
        validate_k(k)
        if not vector:
            raise ValidationError("Query vector must not be empty")
        hybrid = self.options.search_type is SearchType.HYBRID
        if hybrid and query_text is None:
            raise InvalidArgumentError("Hybrid search requires query_text")
        await self._require_ready("search", len(vector))
        if hybrid:
            await self._ensure_keyword_index()

        tail = self._retrieval_tail()
        vector_hits = await self._query_candidates(
            "CALL db.index.vector.queryNodes($index, $k, $embedding) "
            f"YIELD node, score {tail}",
            {"index": self.index_name, "k": k, "embedding": list(vector)},
            "search",
        )
        if not hybrid:
            return [
                SearchHit(document=hit.document, score=hit.score) for hit in vector_hits
            ]

        keyword_query = remove_lucene_chars(query_text or "")
        keyword_hits: list[RankedCandidate] = []
        if keyword_query:
            keyword_hits = await self._query_candidates(
                "CALL db.index.fulltext.queryNodes($keyword_index, $query, "
                f"{{limit: $k}}) YIELD node, score {tail}",
                {
                    "keyword_index": self.keyword_index_name,
                    "query": keyword_query,
                    "k": k,
                },
                "keyword_search",
            )
        return fuse_hybrid(vector_hits, keyword_hits, k)

    async def _close_backend(self) -> None:
        if self._owns_graph:
            await self._graph.close()
