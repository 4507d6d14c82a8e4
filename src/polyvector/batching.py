"""Size-bounded sequential upserts."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import anyio

from polyvector.deadline import with_deadline
from polyvector.errors import BatchUpsertError, ValidationError
from polyvector.results import Err, Ok, Result

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 128


@dataclass(frozen=True)
class UpsertItem:
    """Backend-facing write unit."""

    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


type ChunkWriter = Callable[[list[UpsertItem]], Awaitable[Result[Any]]]


def chunked[T](items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into contiguous chunks of at most ``size``, in order."""
    if size < 1:
        raise ValidationError(f"Batch size must be at least 1, got {size}")
    return [list(items[index : index + size]) for index in range(0, len(items), size)]


def validate_items(items: Sequence[UpsertItem]) -> None:
    """Check a batch before anything is sent to the backend."""
    if not items:
        return
    dimensions = len(items[0].vector)
    for position, item in enumerate(items):
        if len(item.vector) != dimensions:
            raise ValidationError(
                "All vectors must have the same length: "
                f"item {position} has {len(item.vector)}, expected {dimensions}"
            )
        if not isinstance(item.id, str) or not item.id:
            raise ValidationError(f"Item {position} has an empty id")


class BatchUpserter:
    """Write items in fixed-size chunks, one backend call per chunk.

    Chunks are sent sequentially in input order. The first rejected chunk
    stops the upsert; chunks sent before it stay committed, so an upsert is
    never atomic as a whole.
    """

    def __init__(
        self,
        writer: ChunkWriter,
        *,
        index_name: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: float | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValidationError(f"Batch size must be at least 1, got {batch_size}")
        self._writer = writer
        self._index_name = index_name
        self._batch_size = batch_size
        self._timeout = timeout

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def upsert(self, items: Sequence[UpsertItem]) -> int:
        """Write ``items`` and return how many were committed.

        Raises:
            ValidationError: The batch is malformed; nothing was sent.
            BatchUpsertError: A chunk was rejected by the backend.
            OperationCancelledError: A chunk exceeded the deadline.
        """
        validate_items(items)
        if not items:
            return 0

        chunks = chunked(items, self._batch_size)
        committed = 0
        for chunk_index, chunk in enumerate(chunks):
            try:
                result = await with_deadline(
                    self._writer(chunk),
                    self._timeout,
                    operation="upsert",
                    index_name=self._index_name,
                )
            except anyio.get_cancelled_exc_class():
                logger.warning(
                    "Upsert into %s cancelled at chunk %d/%d; %d items committed",
                    self._index_name,
                    chunk_index + 1,
                    len(chunks),
                    committed,
                )
                raise

            match result:
                case Ok():
                    committed += len(chunk)
                    logger.debug(
                        "Upserted chunk %d/%d (%d items) into %s",
                        chunk_index + 1,
                        len(chunks),
                        len(chunk),
                        self._index_name,
                    )
                case Err(message=message):
                    logger.error(
                        "Chunk %d/%d rejected by %s: %s",
                        chunk_index + 1,
                        len(chunks),
                        self._index_name,
                        message,
                    )
                    raise BatchUpsertError(
                        self._index_name,
                        message,
                        chunk_index=chunk_index,
                        chunk_count=len(chunks),
                        committed=committed,
                    )

        logger.info("Upserted %d items into %s", committed, self._index_name)
        return committed
