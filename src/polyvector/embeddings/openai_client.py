import asyncio
import logging
from typing import Any

from openai import APIConnectionError, AsyncOpenAI, RateLimitError

from polyvector.embeddings.base import Embeddings

logger = logging.getLogger(__name__)


class OpenAIEmbeddings(Embeddings):
    """OpenAI implementation of Embeddings with retry on transient errors."""

    DEFAULT_MODEL = "text-embedding-3-small"
    MAX_RETRIES = 5
    BASE_DELAY = 1.0  # Base delay in seconds for exponential backoff
    MAX_INPUTS_PER_REQUEST = 2048

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        """Initialize OpenAI embeddings client.

        Args:
            api_key: OpenAI API key.
            model: Embedding model (default: text-embedding-3-small).
            dimensions: Optional output dimensionality for models that support it.
        """
        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model or self.DEFAULT_MODEL
        self._dimensions = dimensions

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed texts, splitting into requests the API accepts.

        Raises:
            OpenAIEmbeddingsError: If a request fails after retries.
        """
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.MAX_INPUTS_PER_REQUEST):
            batch = texts[start : start + self.MAX_INPUTS_PER_REQUEST]
            response = await self._request_with_retry(
                self._client.embeddings.create, **self._request_kwargs(batch)
            )
            ordered = sorted(response.data, key=lambda item: item.index)
            vectors.extend(item.embedding for item in ordered)
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query text.

        Raises:
            OpenAIEmbeddingsError: If the request fails after retries.
        """
        response = await self._request_with_retry(
            self._client.embeddings.create, **self._request_kwargs(text)
        )
        return response.data[0].embedding

    async def aclose(self) -> None:
        await self._client.close()

    def _request_kwargs(self, value: str | list[str]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self._model, "input": value}
        if self._dimensions is not None:
            kwargs["dimensions"] = self._dimensions
        return kwargs

    async def _request_with_retry[T](
        self,
        func: Any,
        **kwargs: Any,
    ) -> T:
        """Execute an API request with exponential backoff retry.

        Raises:
            OpenAIEmbeddingsError: If all retries are exhausted.
        """
        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                return await func(**kwargs)
            except (RateLimitError, APIConnectionError) as e:
                last_error = e
                delay = self.BASE_DELAY * (2**attempt)
                logger.warning(
                    "Embedding request failed (%s, attempt %d/%d); retrying in %.1fs",
                    type(e).__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    delay,
                )
                await asyncio.sleep(delay)

        raise OpenAIEmbeddingsError(
            f"Request failed after {self.MAX_RETRIES} retries"
        ) from last_error


class OpenAIEmbeddingsError(Exception):
    """Exception raised when OpenAI embedding requests fail."""

    pass
