"""Embedding providers consumed by the vector stores."""

from polyvector.embeddings.base import Embeddings
from polyvector.embeddings.openai_client import OpenAIEmbeddings, OpenAIEmbeddingsError

__all__ = ["Embeddings", "OpenAIEmbeddings", "OpenAIEmbeddingsError"]
