"""Vector store implementations and interfaces."""

from polyvector.vectorstores.base import IndexManager, StoreOptions, VectorStore
from polyvector.vectorstores.factory import Backend, create_vector_store, store_class
from polyvector.vectorstores.neo4j_store import Neo4jIndexManager, Neo4jVectorStore
from polyvector.vectorstores.qdrant_store import QdrantIndexManager, QdrantVectorStore

__all__ = [
    "Backend",
    "IndexManager",
    "Neo4jIndexManager",
    "Neo4jVectorStore",
    "QdrantIndexManager",
    "QdrantVectorStore",
    "StoreOptions",
    "VectorStore",
    "create_vector_store",
    "store_class",
]
