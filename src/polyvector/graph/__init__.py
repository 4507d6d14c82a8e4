"""Graph database client used by the Neo4j vector store."""

from polyvector.graph.base import GraphDatabase, QueryResult
from polyvector.graph.neo4j_client import Neo4jClient

__all__ = ["GraphDatabase", "Neo4jClient", "QueryResult"]
