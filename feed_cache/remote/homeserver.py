"""
Write-through collaborator for user-owned records on the homeserver.

The cache only needs ``request(action, url, body)``; signing and authentication
belong to whoever provides the concrete writer.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from feed_cache.config.settings import settings
from feed_cache.remote.client import raise_for_status

logger = logging.getLogger(__name__)

PUT = "PUT"
DELETE = "DELETE"
PUBKY_SCHEME = "pubky://"


class HomeserverWriter(ABC):
    """Abstract write-through interface."""

    @abstractmethod
    async def request(self, action: str, url: str, body: Optional[Dict[str, Any]] = None) -> None:
        """Perform ``action`` (PUT/DELETE) on ``url`` with an optional JSON body."""
        raise NotImplementedError


class HttpHomeserverWriter(HomeserverWriter):
    """
    Plain httpx writer, for homeservers reachable without request signing.

    Args:
        base_url: Prefix prepended to relative URLs.
        http_client: Optional pre-built client.
    """

    def __init__(self, base_url: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.HOMESERVER_BASE_URL).rstrip("/")
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(settings.INDEX_TIMEOUT_SECONDS))

    def _resolve(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        if url.startswith(PUBKY_SCHEME):
            url = url[len(PUBKY_SCHEME):]
        return f"{self.base_url}/{url.lstrip('/')}"

    async def request(self, action: str, url: str, body: Optional[Dict[str, Any]] = None) -> None:
        target = self._resolve(url)
        response = await self.client.request(action, target, json=body if action != DELETE else None)
        raise_for_status(response)
        logger.debug(f"Homeserver {action} {target} -> {response.status_code}")

    async def close(self) -> None:
        await self.client.aclose()
