"""Request/response channel between the session and the host document.

Each request carries a correlated id and resolves exactly one future, so
ordering, timeouts and cancellation are explicit instead of relying on
ambient listeners.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from copytune.core.errors import HostError
from copytune.core.models import SceneElement
from copytune.core.ports import DocumentHostPort

LOGGER = logging.getLogger(__name__)

SCAN = "scan"
SET_TEXT = "set_text"


@dataclass(frozen=True)
class HostRequest:
    id: int
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HostReply:
    request_id: int
    ok: bool
    payload: Any = None
    error: Optional[str] = None


RequestHandler = Callable[[HostRequest], Awaitable[Any]]


class HostChannel:
    """Correlates outgoing requests with the replies that resolve them."""

    def __init__(self) -> None:
        self._requests: asyncio.Queue[HostRequest] = asyncio.Queue()
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def request(self, kind: str, payload: Optional[dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._requests.put(HostRequest(request_id, kind, payload or {}))
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise HostError(f"Host did not answer {kind} request {request_id} in time") from None
        finally:
            self._pending.pop(request_id, None)

    def is_waiting(self, request_id: int) -> bool:
        future = self._pending.get(request_id)
        return future is not None and not future.done()

    def resolve(self, reply: HostReply) -> bool:
        """Complete the matching request; stale or unknown replies are ignored."""

        future = self._pending.get(reply.request_id)
        if future is None or future.done():
            LOGGER.debug("Dropping reply for unknown request %s", reply.request_id)
            return False
        if reply.ok:
            future.set_result(reply.payload)
        else:
            future.set_exception(HostError(reply.error or "Host request failed"))
        return True

    async def next_request(self) -> HostRequest:
        return await self._requests.get()

    async def serve(self, handler: RequestHandler) -> None:
        """Answer requests forever; cancel the task to stop."""

        while True:
            request = await self.next_request()
            if not self.is_waiting(request.id):
                # The caller timed out or was cancelled; the host must not act on it.
                LOGGER.debug("Skipping abandoned %s request %s", request.kind, request.id)
                continue
            try:
                result = await handler(request)
            except Exception as exc:
                LOGGER.exception("Host request %s (%s) failed", request.id, request.kind)
                self.resolve(HostReply(request.id, False, error=str(exc) or exc.__class__.__name__))
            else:
                self.resolve(HostReply(request.id, True, payload=result))


def host_request_handler(host: DocumentHostPort) -> RequestHandler:
    """Route channel requests to a concrete host implementation."""

    async def handle(request: HostRequest) -> Any:
        if request.kind == SCAN:
            return await host.scan(request.payload.get("selection"))
        if request.kind == SET_TEXT:
            return await host.set_text(request.payload["element_id"], request.payload["text"])
        raise HostError(f"Unknown host request: {request.kind}")

    return handle


class ChannelHost:
    """``DocumentHostPort`` that forwards every call over a ``HostChannel``."""

    def __init__(self, channel: HostChannel, timeout: Optional[float] = None) -> None:
        self._channel = channel
        self._timeout = timeout

    async def scan(self, selection: Optional[Sequence[str]] = None) -> list[SceneElement]:
        payload = {"selection": list(selection) if selection is not None else None}
        return await self._channel.request(SCAN, payload, self._timeout)

    async def set_text(self, element_id: str, text: str) -> bool:
        payload = {"element_id": element_id, "text": text}
        return bool(await self._channel.request(SET_TEXT, payload, self._timeout))


class HostBridge:
    """Async context manager serving ``host`` over a fresh channel.

    ``async with HostBridge(host) as remote:`` yields a ``ChannelHost``.
    """

    def __init__(self, host: DocumentHostPort, timeout: Optional[float] = None) -> None:
        self._host = host
        self._timeout = timeout
        self.channel = HostChannel()
        self._task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> ChannelHost:
        self._task = asyncio.create_task(self.channel.serve(host_request_handler(self._host)))
        return ChannelHost(self.channel, self._timeout)

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
