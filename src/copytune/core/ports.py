"""Ports (interfaces) used by the core.

Ports define the minimal contracts for persistence, HTTP transport and the
host document so that the core can be reused with different backends.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from copytune.core.models import SceneElement


@dataclass(frozen=True)
class HttpResponse:
    """Status and raw body of one HTTP exchange."""

    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpTransportPort(Protocol):
    """JSON-over-HTTPS POST used by the provider dispatcher."""

    async def post_json(
        self,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
        timeout: float,
    ) -> HttpResponse:
        ...


class KeyValueStorePort(Protocol):
    """Async blob store holding the settings and history documents."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...


class DocumentHostPort(Protocol):
    """Host document operations required by an optimisation session."""

    async def scan(self, selection: Optional[Sequence[str]] = None) -> list[SceneElement]:
        ...

    async def set_text(self, element_id: str, text: str) -> bool:
        ...
