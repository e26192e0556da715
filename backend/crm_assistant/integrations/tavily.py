import asyncio
import logging
from dataclasses import asdict, dataclass

import httpx

logger = logging.getLogger(__name__)

TAVILY_BASE_URL = "https://api.tavily.com"


async def _post_with_retry(
    client: httpx.AsyncClient, url: str, payload: dict, max_retries: int = 3
) -> dict:
    """POST with retry on 5xx errors, connection errors, and timeouts."""
    for attempt in range(max_retries):
        try:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            return response.json()
        except (
            httpx.HTTPStatusError,
            httpx.ConnectError,
            httpx.TimeoutException,
        ) as exc:
            if (
                isinstance(exc, httpx.HTTPStatusError)
                and exc.response.status_code < 500
            ):
                raise
            if attempt == max_retries - 1:
                raise
            wait_time = 2**attempt
            logger.warning(
                "Tavily request failed (attempt %d/%d), retrying in %ds: %s",
                attempt + 1,
                max_retries,
                wait_time,
                type(exc).__name__,
            )
            await asyncio.sleep(wait_time)
    raise RuntimeError("Unreachable")


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str

    def to_dict(self) -> dict:
        return asdict(self)


class TavilySearchClient:
    def __init__(self, api_key: str, base_url: str = TAVILY_BASE_URL):
        self.api_key = api_key
        self.base_url = base_url

    async def search(self, query: str, max_results: int = 5) -> list[SearchResult]:
        """Ranked web results for ``query``, at most ``max_results``."""
        payload = {
            "api_key": self.api_key,
            "query": query,
            "max_results": max_results,
        }
        logger.info("Tavily search: query=%r max_results=%d", query, max_results)

        async with httpx.AsyncClient(timeout=30) as client:
            data = await _post_with_retry(client, f"{self.base_url}/search", payload)

        results = self.parse_response(data)[:max_results]
        logger.info("Tavily returned %d results for query=%r", len(results), query)
        return results

    def parse_response(self, data: dict) -> list[SearchResult]:
        """Normalize the Tavily JSON response into title/url/snippet results."""
        return [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("url") or "",
                snippet=item.get("content") or item.get("snippet") or "",
            )
            for item in data.get("results") or []
        ]
