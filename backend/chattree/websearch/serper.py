"""Serper.dev (Google results) search backend."""

import logging

import httpx

from chattree.models import WebSearchSource
from chattree.websearch.base import SearchBackend, SearchBackendError

logger = logging.getLogger(__name__)

SERPER_URL = "https://google.serper.dev/search"


class SerperSearchBackend(SearchBackend):
    def __init__(
        self,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def name(self) -> str:
        return "serper"

    async def search(self, query: str, *, limit: int = 5) -> list[WebSearchSource]:
        try:
            response = await self._client.post(
                SERPER_URL,
                json={"q": query, "num": limit},
                headers={"X-API-KEY": self._api_key},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SearchBackendError(f"Search failed for '{query}': {e}") from e

        organic = data.get("organic") or []
        logger.debug("Serper returned %d results for %r", len(organic), query)
        return [
            WebSearchSource(
                title=item.get("title", ""),
                link=item["link"],
                snippet=item.get("snippet", ""),
            )
            for item in organic[:limit]
            if item.get("link")
        ]

    async def close(self) -> None:
        await self._client.aclose()
