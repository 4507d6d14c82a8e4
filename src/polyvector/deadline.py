"""Deadline handling for backend calls."""

from __future__ import annotations

from collections.abc import Awaitable

import anyio

from polyvector.errors import OperationCancelledError


async def with_deadline[T](
    call: Awaitable[T],
    timeout: float | None,
    *,
    operation: str,
    index_name: str,
) -> T:
    """Await ``call``, abandoning it once ``timeout`` seconds have passed.

    Host cancellation is not intercepted and propagates unchanged.
    """
    if timeout is None:
        return await call
    try:
        with anyio.fail_after(timeout):
            return await call
    except TimeoutError as exc:
        raise OperationCancelledError(
            operation, index_name, f"no response within {timeout:g}s"
        ) from exc
