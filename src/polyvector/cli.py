"""Command-line interface for ingesting, searching and dropping indexes."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

import anyio
from pydantic import ValidationError as SettingsValidationError
from rich.console import Console
from rich.table import Table

from polyvector.config import Settings
from polyvector.documents import Document
from polyvector.embeddings.base import Embeddings
from polyvector.embeddings.openai_client import OpenAIEmbeddings, OpenAIEmbeddingsError
from polyvector.errors import VectorStoreError
from polyvector.indexes import SearchType
from polyvector.logging_setup import configure_logging
from polyvector.vectorstores.base import VectorStore
from polyvector.vectorstores.factory import Backend, create_vector_store

console = Console()


def _add_store_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--backend",
        type=str,
        choices=[backend.value for backend in Backend],
        default=Backend.QDRANT.value,
        help="Vector store backend.",
    )
    parser.add_argument(
        "--index-name",
        type=str,
        default=None,
        help="Index (collection) name; defaults to INDEX_NAME.",
    )
    parser.add_argument(
        "--search-type",
        type=str,
        choices=[search_type.value for search_type in SearchType],
        default=None,
        help="Vector-only or hybrid search (hybrid needs the neo4j backend).",
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="polyvector CLI (ingest, search, drop-index)."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser(
        "ingest", help="Embed and store documents from a JSONL file."
    )
    _add_store_arguments(ingest_parser)
    ingest_parser.add_argument(
        "--input",
        type=Path,
        required=True,
        help='JSONL file with {"text", "metadata", "id"} rows.',
    )
    ingest_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Items per backend write call.",
    )
    ingest_parser.add_argument(
        "--replace",
        action="store_true",
        help="Drop the existing index before ingesting.",
    )

    search_parser = subparsers.add_parser("search", help="Run a similarity search.")
    _add_store_arguments(search_parser)
    search_parser.add_argument("--query", type=str, required=True, help="Query text.")
    search_parser.add_argument("--k", type=int, default=4, help="Number of results.")
    search_parser.add_argument(
        "--json",
        action="store_true",
        help="Emit results as JSON to stdout.",
    )

    drop_parser = subparsers.add_parser("drop-index", help="Drop an index.")
    _add_store_arguments(drop_parser)

    return parser.parse_args(argv)


def _load_settings() -> Settings:
    try:
        return Settings()
    except SettingsValidationError as exc:
        console.print("[red]Configuration error:[/red]")
        for error in exc.errors():
            field = error.get("loc", ("unknown",))[0]
            msg = error.get("msg", "Invalid value")
            console.print(f"  [yellow]{field}[/yellow]: {msg}")
        raise


def _build_embeddings(settings: Settings) -> Embeddings:
    if not settings.openai_api_key:
        raise VectorStoreError("OPENAI_API_KEY is required to embed text")
    return OpenAIEmbeddings(
        api_key=settings.openai_api_key,
        model=settings.openai_embedding_model,
        dimensions=settings.embedding_dim,
    )


class _NoEmbeddings(Embeddings):
    """Embeddings for commands that never embed text."""

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise VectorStoreError("This command does not embed text")

    async def embed_query(self, text: str) -> list[float]:
        raise VectorStoreError("This command does not embed text")


def _store_config(args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    config: dict[str, Any] = {"settings": settings}
    if args.index_name:
        config["index_name"] = args.index_name
    if args.search_type:
        config["search_type"] = SearchType(args.search_type)
    if getattr(args, "batch_size", None):
        config["batch_size"] = args.batch_size
    if getattr(args, "replace", False):
        config["pre_delete_collection"] = True
    return config


def load_jsonl_documents(path: Path) -> tuple[list[Document], list[str] | None]:
    """Read documents (and optional ids) from a JSONL file."""
    documents: list[Document] = []
    ids: list[str] = []
    with path.open(encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError as exc:
                raise VectorStoreError(
                    f"{path}:{line_number}: invalid JSON: {exc.msg}"
                ) from exc
            if not isinstance(row, dict) or not isinstance(row.get("text"), str):
                raise VectorStoreError(
                    f"{path}:{line_number}: expected an object with a 'text' string"
                )
            documents.append(
                Document(page_content=row["text"], metadata=row.get("metadata") or {})
            )
            if row.get("id") is not None:
                ids.append(str(row["id"]))
    if ids and len(ids) != len(documents):
        raise VectorStoreError(
            f"{path}: either every row or no row must have an 'id' "
            f"({len(ids)} of {len(documents)} rows have one)"
        )
    return documents, ids or None


async def _run_ingest(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings()
    except SettingsValidationError:
        return 1
    configure_logging(settings.log_level, console)

    documents, ids = load_jsonl_documents(args.input)
    store: VectorStore = await create_vector_store(
        args.backend, _build_embeddings(settings), **_store_config(args, settings)
    )
    async with store:
        stored = await store.add_documents(documents, ids=ids)

    console.print(f"Stored {len(stored)} documents in [bold]{store.index_name}[/bold]")
    return 0


async def _run_search(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings()
    except SettingsValidationError:
        return 1
    configure_logging(settings.log_level, console)

    store = await create_vector_store(
        args.backend,
        _build_embeddings(settings),
        existing=True,
        **_store_config(args, settings),
    )
    async with store:
        hits = await store.similarity_search_with_score(args.query, k=args.k)

    if args.json:
        payload = [
            {
                "page_content": hit.document.page_content,
                "metadata": hit.document.metadata,
                "score": hit.score,
            }
            for hit in hits
        ]
        print(json.dumps(payload))
        return 0

    table = Table(title=f"Results for {args.query!r}")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Text")
    for rank, hit in enumerate(hits, start=1):
        table.add_row(str(rank), f"{hit.score:.4f}", hit.document.page_content)
    console.print(table)
    return 0


async def _run_drop(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings()
    except SettingsValidationError:
        return 1
    configure_logging(settings.log_level, console)

    store = await create_vector_store(
        args.backend, _NoEmbeddings(), **_store_config(args, settings)
    )
    async with store:
        await store.drop_index()
    console.print(f"Dropped index [bold]{store.index_name}[/bold]")
    return 0


_COMMANDS = {
    "ingest": _run_ingest,
    "search": _run_search,
    "drop-index": _run_drop,
}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    command = _COMMANDS.get(args.command)
    if command is None:
        return 1
    try:
        return anyio.run(command, args)
    except (VectorStoreError, OpenAIEmbeddingsError, OSError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
