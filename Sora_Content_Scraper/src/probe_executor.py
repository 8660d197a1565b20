"""
Single-request probe against the configured endpoint.

Wraps an ``aiohttp.ClientSession``: one POST per code, the status code of any
completed exchange is returned as-is, network level failures collapse into
``NO_RESPONSE`` so the batch loop never sees an exception.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

import Sora_Content_Scraper.src.logger
from Sora_Content_Scraper.src.config import DEFAULT_TIMEOUT, NO_RESPONSE

logger = logging.getLogger('SCS.Probe')


class ProbeExecutor:
    def __init__(self, endpoint: str, headers: dict | None = None, *,
                 timeout: float = DEFAULT_TIMEOUT, field: str = "invite_code",
                 session: Optional[aiohttp.ClientSession] = None):
        self.endpoint = endpoint
        self.headers = dict(headers or {})
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.field = field
        self._session = session
        self._owns_session = session is None

        self.stats = {"probes": 0, "no_response": 0}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def probe(self, code: str) -> int:
        """POST ``{field: code}``; HTTP status, or NO_RESPONSE if nothing came back."""
        self.stats["probes"] += 1
        session = await self._get_session()
        try:
            async with session.post(
                self.endpoint,
                json={self.field: code},
                headers=self.headers,
                timeout=self.timeout,
            ) as resp:
                await resp.read()
                return resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.stats["no_response"] += 1
            logger.debug(f"No response for {code}: {type(e).__name__}: {e}")
            return NO_RESPONSE
