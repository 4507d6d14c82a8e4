"""Enumerations and descriptors shared by the vector store backends."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DistanceStrategy(Enum):
    """Metric used to rank vectors. Fixed per index at creation time."""

    EUCLIDEAN = "euclidean"
    COSINE = "cosine"


class SearchType(Enum):
    """Whether the keyword index participates in ranking."""

    VECTOR = "vector"
    HYBRID = "hybrid"


@dataclass
class IndexDescriptor:
    """Cached view of the store's index.

    ``dimensions`` stays ``None`` until the index is created or discovered.
    """

    name: str
    dimensions: int | None = None
    exists: bool = False

    def mark_ready(self, dimensions: int) -> None:
        self.dimensions = dimensions
        self.exists = True

    def reset(self) -> None:
        self.dimensions = None
        self.exists = False
