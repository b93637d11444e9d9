"""
HTTP access to FHIR package registries and the FHIR build server.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import aiofiles
import httpx

logger = logging.getLogger(__name__)


class RegistryClient:
    """
    Thin async wrapper around httpx for JSON lookups and archive downloads.

    A transport can be supplied to route every request through something
    other than the network (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        timeout: float = 60.0,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.verify = verify
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            verify=self.verify,
            transport=self.transport,
        )

    async def get_json(self, url: str) -> Any:
        """GET url and decode the JSON body. Raises on HTTP errors and bad JSON."""
        logger.debug(f"Requesting {url}")
        async with self._client() as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    async def download(self, url: str, target_path: Path) -> int:
        """
        Stream the body of url into target_path.

        Returns the number of bytes written; 0 means the server had nothing
        to offer.
        """
        logger.debug(f"Downloading {url} to {target_path}")
        written = 0
        async with self._client() as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                async with aiofiles.open(target_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)
                        written += len(chunk)
        return written
