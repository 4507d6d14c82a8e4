from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from polyvector.results import Result


@dataclass
class QueryResult:
    """Records and summary from a successful Cypher query."""

    records: list[dict[str, Any]]
    summary: dict[str, Any] = field(default_factory=dict)


class GraphDatabase(ABC):
    """Abstract interface for graph database operations."""

    @abstractmethod
    async def execute(
        self, cypher: str, params: dict[str, Any] | None = None
    ) -> Result[QueryResult]:
        """Execute a Cypher query.

        Returns:
            ``Ok(QueryResult)`` on success, ``Err`` carrying the database
            message otherwise.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection pool. Safe to call more than once."""
        ...
