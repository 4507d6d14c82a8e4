"""Document value type shared by every backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Document:
    """A piece of text with open key/value metadata.

    Documents are never updated in place. Replacing a stored document means
    deleting it by id and adding it again.
    """

    page_content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchHit:
    """A ranked search result.

    ``score`` is the backend's native number: a distance (lower is better)
    or a similarity (higher is better) depending on the index.
    """

    document: Document
    score: float
