from abc import ABC, abstractmethod


class Embeddings(ABC):
    """Abstract interface for text embedding providers."""

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Generate one embedding vector per text, in input order."""
        ...

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Generate the embedding vector for a search query."""
        ...
