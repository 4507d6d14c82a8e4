"""Tagged results returned by backend client calls.

Clients never raise for backend-reported failures. They return ``Ok`` with
the payload or ``Err`` with the backend's message, and callers ``match`` on
the two variants.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Ok[T]:
    """Successful backend call."""

    value: T


@dataclass(frozen=True)
class Err:
    """Backend-reported failure."""

    message: str
    status_code: int | None = None

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


type Result[T] = Ok[T] | Err
