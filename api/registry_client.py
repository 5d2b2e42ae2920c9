"""
Resource Registry client.

Thin aiohttp wrapper over the Registry's REST surface. Connection failures
and timeouts raise RegistryUnavailableError; non-2xx answers raise
RegistryError carrying the status code.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from core.errors import RegistryError, RegistryUnavailableError
from core.models import ChatEntry, ExtractionLink

logger = logging.getLogger(__name__)


class RegistryClient:
    """
    Async client for the Resource Registry.

    Example:
        async with RegistryClient("http://localhost:8091") as registry:
            links = await registry.list_unprocessed_links(10)
    """

    def __init__(self, base_url: str, timeout_seconds: float = 10.0, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True

    async def close(self):
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if self.session is None or self.session.closed:
            await self.open()

        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    message = await self._error_message(response)
                    raise RegistryError(f"{method} {path} -> {response.status}: {message}", status=response.status)
                if response.content_type == "application/json":
                    return await response.json()
                return {}
        except RegistryError:
            raise
        except asyncio.TimeoutError as e:
            raise RegistryUnavailableError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise RegistryUnavailableError(f"{method} {path} failed: {e}") from e

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        try:
            data = await response.json(content_type=None)
            if isinstance(data, dict):
                return str(data.get("detail") or data.get("error") or data)
        except (aiohttp.ContentTypeError, ValueError):
            pass
        return (await response.text()) or response.reason or "error"

    # === Links ===

    async def list_unprocessed_links(self, limit: int) -> List[ExtractionLink]:
        data = await self._request("GET", "/links/unprocessed", params={"limit": str(int(limit))})
        links = [ExtractionLink.from_dict(item) for item in data.get("links", [])]
        logger.debug(f"[Registry] {len(links)} unprocessed links (limit {limit})")
        return links

    async def mark_processed(self, link_id: int, error: Optional[str] = None) -> None:
        body = {"error": error} if error else {}
        await self._request("POST", f"/links/{int(link_id)}/processed", json=body)

    async def save_links(self, links: List[Dict[str, Any]], vacancy_id: Optional[str] = None) -> int:
        data = await self._request("POST", "/links", json={"vacancyId": vacancy_id, "links": links})
        return int(data.get("inserted", 0))

    # === Resume HTML ===

    async def upsert_html(self, resource_id: str, source_url: str, html_content: str) -> None:
        await self._request("POST", "/resource/html", json={
            "resourceId": resource_id,
            "sourceUrl": source_url,
            "htmlContent": html_content,
        })

    async def html_stats(self) -> Dict[str, Any]:
        return await self._request("GET", "/resource/html/stats")

    # === Chats ===

    async def store_chat_snapshot(self, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/chats/snapshot", json=snapshot)

    async def upsert_chats(self, chats: List[ChatEntry]) -> int:
        data = await self._request("POST", "/chats/bulk", json={"chats": [c.to_dict() for c in chats]})
        return int(data.get("upserted", 0))

    async def health(self) -> bool:
        try:
            data = await self._request("GET", "/health")
        except RegistryError:
            return False
        return data.get("status") == "running"
