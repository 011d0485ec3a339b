"""
tests.test_tavily
~~~~~~~~~~~~~~~~~

TavilySearchProvider 单元测试 —— 用 ``httpx.MockTransport`` 代替真实网络。
"""
from __future__ import annotations

import json

import httpx
import pytest

from cogni.core.exceptions import SearchError
from cogni.search.tavily import DisabledSearchProvider, TavilySearchProvider


def _provider(handler) -> TavilySearchProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TavilySearchProvider("tvly-key", base_url="https://tavily.test/", client=client)


class TestTavilySearch:
    """测试 Tavily 搜索请求与解析。"""

    @pytest.mark.asyncio
    async def test_request_and_parse(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"results": [
                {"title": "Eclipse", "url": "https://nasa.example", "content": "Monday."},
                {"title": None, "url": "https://b.example", "content": "Other"},
                "garbage",
            ]})

        provider = _provider(handler)
        hits = await provider.search("next eclipse", 3, "advanced")
        await provider.aclose()

        assert seen["url"] == "https://tavily.test/search"
        assert seen["auth"] == "Bearer tvly-key"
        assert seen["body"]["max_results"] == 3
        assert seen["body"]["search_depth"] == "advanced"
        assert seen["body"]["include_images"] is False
        assert [h.title for h in hits] == ["Eclipse", ""]
        assert hits[0].content == "Monday."

    @pytest.mark.asyncio
    async def test_http_error_raises_search_error(self) -> None:
        provider = _provider(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(SearchError):
            await provider.search("q", 3, "basic")

    @pytest.mark.asyncio
    async def test_missing_results_raises_search_error(self) -> None:
        provider = _provider(lambda request: httpx.Response(200, json={"answer": "x"}))

        with pytest.raises(SearchError):
            await provider.search("q", 3, "basic")

    @pytest.mark.asyncio
    async def test_invalid_json_raises_search_error(self) -> None:
        provider = _provider(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(SearchError):
            await provider.search("q", 3, "basic")


class TestDisabledSearch:
    @pytest.mark.asyncio
    async def test_always_empty(self) -> None:
        assert await DisabledSearchProvider().search("q", 3, "advanced") == []
