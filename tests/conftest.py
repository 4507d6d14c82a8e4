from __future__ import annotations

from pathlib import Path

import pytest

from polyvector.embeddings.base import Embeddings

try:
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover - optional in environments without dev deps
    load_dotenv = None


def pytest_configure() -> None:
    """Load .env for integration tests without overriding existing env vars."""
    if load_dotenv is None:
        return

    repo_root = Path(__file__).resolve().parents[1]
    load_dotenv(repo_root / ".env", override=False)


class FakeEmbeddings(Embeddings):
    """Bag-of-words embeddings over a small fixed vocabulary."""

    VOCABULARY = ("cat", "dog", "fish", "bird")

    def __init__(self) -> None:
        self.document_calls: list[list[str]] = []
        self.query_calls: list[str] = []

    def vector(self, text: str) -> list[float]:
        words = text.lower().split()
        return [float(words.count(term)) + 0.01 for term in self.VOCABULARY]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls.append(list(texts))
        return [self.vector(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        return self.vector(text)


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    """Deterministic embeddings provider (4 dimensions)."""
    return FakeEmbeddings()
