"""
cogni.services.augment
~~~~~~~~~~~~~~~~~~~~~~

搜索增强 —— 调用外部搜索能力，清洗结果并格式化为生成用的上下文。

清洗规则:
  - 去掉正文中的 Markdown / HTML 图片引用
  - 结果条数上限 2..5
  - 没有可用结果时给出明确的"无可用上下文"标记，而不是空字符串
  - 搜索失败同样降级为该标记，异常不会传给调用方
"""
from __future__ import annotations

import re

from cogni.core.logging import get_logger
from cogni.prompts.assistant import NO_CONTEXT_MARKER
from cogni.schemas.pipeline import SearchContext, SearchHit, SearchSource
from cogni.services.capabilities import SearchProvider

logger = get_logger(__name__)

MIN_RESULTS: int = 2
MAX_RESULTS: int = 5

_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_HTML_IMAGE_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def strip_images(text: str) -> str:
    """去掉 Markdown ``![alt](url)`` 和 HTML ``<img>`` 图片引用。"""
    text = _MARKDOWN_IMAGE_RE.sub("", text)
    text = _HTML_IMAGE_RE.sub("", text)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def no_context() -> SearchContext:
    return SearchContext(context_text=NO_CONTEXT_MARKER)


class SearchAugmenter:
    """搜索增强器。

    Attributes:
        provider: 注入的搜索能力。
        max_results: 默认结果上限（会被收敛到 2..5）。
        depth: 默认搜索深度。
    """

    def __init__(
        self,
        provider: SearchProvider,
        max_results: int = 3,
        depth: str = "advanced",
    ) -> None:
        self.provider = provider
        self.max_results = max_results
        self.depth = depth

    async def augment(
        self,
        query: str,
        max_results: int | None = None,
        depth: str | None = None,
    ) -> SearchContext:
        """执行搜索并返回清洗后的上下文，永不抛异常。"""
        limit = max(MIN_RESULTS, min(MAX_RESULTS, max_results or self.max_results))
        try:
            hits = await self.provider.search(query, limit, depth or self.depth)
        except Exception as e:
            logger.warning("搜索失败，降级为无上下文: %s", e, exc_info=True)
            return no_context()

        usable = self._sanitize(hits)[:limit]
        if not usable:
            logger.info("搜索无可用结果 | query=%s", query[:80])
            return no_context()

        blocks = [f"[{index}] {hit.title}\n{hit.content}" for index, hit in enumerate(usable, start=1)]
        sources = [SearchSource(title=hit.title, url=hit.url) for hit in usable if hit.url]
        logger.info("搜索命中 %d 条 | query=%s", len(usable), query[:80])
        return SearchContext(
            context_text="\n\n".join(blocks),
            sources=sources,
            has_results=True,
        )

    @staticmethod
    def _sanitize(hits: list[SearchHit]) -> list[SearchHit]:
        cleaned: list[SearchHit] = []
        for hit in hits:
            content = strip_images(hit.content)
            if not content:
                continue
            cleaned.append(
                SearchHit(title=hit.title.strip() or "Untitled", url=hit.url.strip(), content=content),
            )
        return cleaned
