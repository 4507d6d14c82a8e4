"""Exception hierarchy for vector store operations."""

from __future__ import annotations


class VectorStoreError(Exception):
    """Base class for all polyvector errors."""


class ValidationError(VectorStoreError, ValueError):
    """Input shape is invalid (counts, lengths, missing fields).

    Raised before any backend call is issued.
    """


class InvalidArgumentError(ValidationError):
    """A scalar argument is outside its allowed range (e.g. ``k <= 0``)."""


class SerializationError(VectorStoreError):
    """A metadata value cannot be represented in the backend format."""

    def __init__(self, key: str, value: object, reason: str) -> None:
        self.key = key
        self.value = value
        super().__init__(
            f"Metadata value for key '{key}' is not serializable "
            f"({type(value).__name__}): {reason}"
        )


class IndexNotFoundError(VectorStoreError):
    """The named index could not be discovered in the backend."""

    def __init__(self, index_name: str, detail: str | None = None) -> None:
        self.index_name = index_name
        message = f"Index '{index_name}' does not exist"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class IndexNotReadyError(VectorStoreError):
    """An operation needs the index but it is absent and auto-creation is off."""

    def __init__(self, index_name: str, operation: str) -> None:
        self.index_name = index_name
        self.operation = operation
        super().__init__(
            f"Index '{index_name}' is not ready for {operation}; "
            "create it first or enable ensure_index_exists"
        )


class BackendError(VectorStoreError):
    """A failure reported by the backend service, with call context."""

    def __init__(self, operation: str, index_name: str, message: str) -> None:
        self.operation = operation
        self.index_name = index_name
        self.message = message
        super().__init__(f"{operation} failed on index '{index_name}': {message}")


class IndexLifecycleError(BackendError):
    """Index creation, discovery or drop failed or found a conflicting index."""


class SearchError(BackendError):
    """A similarity or keyword query failed."""


class BatchUpsertError(BackendError):
    """A write chunk was rejected; chunks before it remain committed."""

    def __init__(
        self,
        index_name: str,
        message: str,
        *,
        chunk_index: int,
        chunk_count: int,
        committed: int,
    ) -> None:
        self.chunk_index = chunk_index
        self.chunk_count = chunk_count
        self.committed = committed
        super().__init__(
            f"upsert (chunk {chunk_index + 1}/{chunk_count}, "
            f"{committed} items committed)",
            index_name,
            message,
        )


class OperationCancelledError(BackendError):
    """A backend call exceeded its deadline and was abandoned."""
