"""aiohttp transport adapter.

Implements the core HttpTransportPort. Network failures and timeouts are
converted into ``ProviderError`` so callers only deal with core errors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from copytune.core.errors import ProviderError
from copytune.core.ports import HttpResponse

LOGGER = logging.getLogger(__name__)


class AiohttpTransport:
    """POST JSON with a per-request total timeout."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        # A shared session is optional; without one each call opens its own.
        self._session = session

    async def post_json(
        self,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
        timeout: float,
    ) -> HttpResponse:
        timeout_obj = aiohttp.ClientTimeout(total=timeout)
        try:
            if self._session is not None:
                return await self._post(self._session, url, headers, payload, timeout_obj)
            async with aiohttp.ClientSession(timeout=timeout_obj) as session:
                return await self._post(session, url, headers, payload, timeout_obj)
        except asyncio.TimeoutError:
            raise ProviderError(f"Request timed out after {timeout:g}s") from None
        except aiohttp.ClientError as exc:
            raise ProviderError(f"Network error: {exc.__class__.__name__}") from exc

    @staticmethod
    async def _post(
        session: aiohttp.ClientSession,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
        timeout: aiohttp.ClientTimeout,
    ) -> HttpResponse:
        async with session.post(url, headers=headers, json=payload, timeout=timeout) as resp:
            body = await resp.text()
            LOGGER.debug("HTTP %s from %s", resp.status, resp.url.host)
            return HttpResponse(status=resp.status, text=body)
