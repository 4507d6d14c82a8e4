import logging
from types import TracebackType
from typing import Any

from neo4j import AsyncDriver, NotificationDisabledClassification
from neo4j import AsyncGraphDatabase as Neo4jAsyncGraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from polyvector.config import Settings
from polyvector.errors import ValidationError
from polyvector.graph.base import GraphDatabase, QueryResult
from polyvector.results import Err, Ok, Result

logger = logging.getLogger(__name__)


class Neo4jClient(GraphDatabase):
    """Async Neo4j client with connection pool management."""

    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        database: str = "neo4j",
    ) -> None:
        """Initialize connection parameters; the pool opens on first use."""
        self._uri = uri
        self._auth = (user, password)
        self._database = database
        self._driver: AsyncDriver | None = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "Neo4jClient":
        """Build a client from application settings."""
        missing = [
            name
            for name in ("neo4j_uri", "neo4j_user", "neo4j_password")
            if not getattr(settings, name)
        ]
        if missing:
            raise ValidationError(
                f"Neo4j settings are missing: {', '.join(missing)}"
            )
        return cls(
            uri=settings.neo4j_uri or "",
            user=settings.neo4j_user or "",
            password=settings.neo4j_password or "",
            database=settings.neo4j_database,
        )

    async def __aenter__(self) -> "Neo4jClient":
        """Open connection pool on context entry."""
        self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close connection pool on context exit."""
        await self.close()

    @property
    def database(self) -> str:
        return self._database

    @property
    def _active_driver(self) -> AsyncDriver:
        """Return the driver, opening the pool if needed."""
        return self._connect()

    def _connect(self) -> AsyncDriver:
        if self._closed:
            raise RuntimeError("Client is closed.")
        if self._driver is None:
            self._driver = Neo4jAsyncGraphDatabase.driver(
                self._uri,
                auth=self._auth,
                notifications_disabled_classifications=[
                    NotificationDisabledClassification.DEPRECATION,
                    NotificationDisabledClassification.GENERIC,
                ],
            )
        return self._driver

    async def execute(
        self, cypher: str, params: dict[str, Any] | None = None
    ) -> Result[QueryResult]:
        """Execute a Cypher query and return records with summary."""
        try:
            async with self._active_driver.session(database=self._database) as session:
                result = await session.run(cypher, params or {})
                records = await result.data()
                summary = await result.consume()
                return Ok(
                    QueryResult(
                        records=records,
                        summary={"query_type": summary.query_type},
                    )
                )
        except (Neo4jError, DriverError) as e:
            logger.debug("Cypher query failed: %s", e)
            return Err(str(e))

    async def close(self) -> None:
        """Close the driver once; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
