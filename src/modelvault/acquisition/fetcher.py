import asyncio
import os
import ssl
import traceback
from abc import ABC, abstractmethod

import aiohttp
import certifi
from loguru import logger

from modelvault.shared.errors import NotFoundError
from modelvault.shared.types.models import ModelId


class Fetcher(ABC):
    """Obtains artifact bytes from outside the device. The bytes are untrusted."""

    @abstractmethod
    async def fetch(self, model_id: ModelId) -> bytes:
        """Raises `NotFoundError` when the artifact cannot be obtained."""


class OfflineFetcher(Fetcher):
    async def fetch(self, model_id: ModelId) -> bytes:
        raise NotFoundError("offline mode, not fetching", model_id)


class FetchRateLimitError(Exception):
    """429 from the artifact server"""


def create_http_session(total_timeout: float = 600) -> aiohttp.ClientSession:
    ssl_context = ssl.create_default_context(
        cafile=os.getenv("SSL_CERT_FILE") or certifi.where()
    )
    connector = aiohttp.TCPConnector(ssl=ssl_context)

    return aiohttp.ClientSession(
        connector=connector,
        proxy=os.getenv("HTTPS_PROXY") or os.getenv("HTTP_PROXY") or None,
        timeout=aiohttp.ClientTimeout(
            total=total_timeout,
            connect=30,
            sock_read=60,
            sock_connect=30,
        ),
    )


class HttpFetcher(Fetcher):
    """GETs `<base_url>/<artifact filename>`, retrying transient failures."""

    def __init__(self, base_url: str, n_attempts: int = 3):
        self.base_url = base_url.rstrip("/")
        self.n_attempts = n_attempts

    def url_for(self, model_id: ModelId) -> str:
        return f"{self.base_url}/{model_id.artifact_filename}"

    async def _fetch_once(self, model_id: ModelId) -> bytes:
        url = self.url_for(model_id)
        async with create_http_session() as session, session.get(url) as r:
            if r.status == 404:
                raise NotFoundError(f"{url} returned 404", model_id)
            if r.status == 429:
                raise FetchRateLimitError(f"{url} returned 429")
            r.raise_for_status()
            return await r.read()

    async def fetch(self, model_id: ModelId) -> bytes:
        for attempt in range(self.n_attempts):
            try:
                return await self._fetch_once(model_id)
            except NotFoundError:
                raise
            except Exception as e:
                if attempt == self.n_attempts - 1:
                    raise NotFoundError(
                        f"fetch failed after {self.n_attempts} attempts: {e}", model_id
                    ) from e
                logger.error(
                    f"Fetch error on attempt {attempt + 1}/{self.n_attempts} for {model_id}"
                )
                logger.error(traceback.format_exc())
                await asyncio.sleep(2.0**attempt)
        raise NotFoundError("fetch failed", model_id)
