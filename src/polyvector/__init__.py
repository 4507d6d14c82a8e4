"""Vector store abstraction over Qdrant and Neo4j."""

from polyvector.documents import Document, SearchHit
from polyvector.indexes import DistanceStrategy, IndexDescriptor, SearchType

__all__ = [
    "DistanceStrategy",
    "Document",
    "IndexDescriptor",
    "SearchHit",
    "SearchType",
]
