from pydantic import Field
from pydantic_settings import BaseSettings

from polyvector.indexes import DistanceStrategy, SearchType


class Settings(BaseSettings):
    """Application configuration loaded from environment variables or .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Neo4j
    neo4j_uri: str | None = None
    neo4j_user: str | None = None
    neo4j_password: str | None = None
    neo4j_database: str = "neo4j"

    # Qdrant
    qdrant_host: str = "localhost"
    qdrant_port: int = 6333
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None

    # OpenAI embeddings
    openai_api_key: str | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_dim: int | None = Field(default=None, ge=1)

    # Store defaults
    index_name: str = Field(default="default", min_length=1)
    text_field: str = Field(default="text", min_length=1)
    ensure_index_exists: bool = True
    distance_strategy: DistanceStrategy = DistanceStrategy.COSINE
    search_type: SearchType = SearchType.VECTOR
    pre_delete_collection: bool = False
    batch_size: int = Field(default=128, ge=1)
    operation_timeout: float | None = Field(default=None, gt=0)

    # Logging
    log_level: str = "WARNING"
