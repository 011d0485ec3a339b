"""
cogni.search.tavily
~~~~~~~~~~~~~~~~~~~

Tavily 搜索 API 的异步客户端（httpx）。

只负责请求与解析，失败统一包装为 :class:`~cogni.core.exceptions.SearchError`；
清洗、截断和"无上下文"降级由 :class:`~cogni.services.augment.SearchAugmenter` 负责。
"""
from __future__ import annotations

import httpx

from cogni.core.exceptions import SearchError
from cogni.core.logging import get_logger
from cogni.schemas.pipeline import SearchHit

logger = get_logger(__name__)


class TavilySearchProvider:
    """Tavily 搜索能力。

    Attributes:
        base_url: API 地址。
        timeout: 请求超时（秒）。
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.tavily.com",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = client

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def search(self, query: str, max_results: int, depth: str) -> list[SearchHit]:
        """执行一次搜索。

        Raises:
            SearchError: 网络错误、非 2xx 响应或响应缺少 ``results``。
        """
        payload = {
            "query": query,
            "max_results": max_results,
            "search_depth": depth,
            "include_images": False,
            "include_answer": False,
            "include_raw_content": False,
        }
        try:
            response = await self._get_http_client().post(
                f"{self.base_url}/search",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise SearchError(f"Tavily 请求失败: {e!s}") from e
        except ValueError as e:
            raise SearchError("Tavily 返回了无法解析的 JSON") from e

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise SearchError("Tavily 响应中没有 results 字段")

        hits = [
            SearchHit(
                title=item.get("title") or "",
                url=item.get("url") or "",
                content=item.get("content") or "",
            )
            for item in results
            if isinstance(item, dict)
        ]
        logger.debug("Tavily 返回 %d 条结果 | query=%s", len(hits), query[:80])
        return hits

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class DisabledSearchProvider:
    """未配置搜索 Key 时使用：总是返回空结果，由增强器给出无上下文标记。"""

    async def search(self, query: str, max_results: int, depth: str) -> list[SearchHit]:
        logger.debug("搜索未配置，返回空结果 | query=%s", query[:80])
        return []

    async def aclose(self) -> None:
        return None
