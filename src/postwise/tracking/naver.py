"""Naver 搜索排名与帖子数据."""

import logging
import re
from typing import ClassVar

import httpx

from postwise.crawler.sites import DEFAULT_USER_AGENT
from postwise.models.posting import Platform
from postwise.tracking.base import (
    MetricsFetchError,
    MetricsFetcher,
    PostMetrics,
    RankSearcher,
    RankSearchError,
)
from postwise.tracking.urls import canonicalize_post_url

logger = logging.getLogger(__name__)

NAVER_SEARCH_URL = "https://openapi.naver.com/v1/search"
SEARCH_DISPLAY = 100

# 凭据失效或超出配额时换下一组
_ROTATE_STATUS = (401, 429)


class NaverRankSearcher(RankSearcher):
    """
    通过 Naver 开放搜索 API 查询关键词排名.

    持有多组 client 凭据，遇到 401/429 时轮换到下一组；当前使用的
    凭据下标保存在实例上，下一次查询从它开始。
    """

    ENDPOINTS: ClassVar[dict[str, str]] = {
        Platform.BLOG: "blog.json",
        Platform.CAFE: "cafearticle.json",
    }

    def __init__(
        self,
        credentials: list[tuple[str, str]],
        timeout: float = 30.0,
        base_url: str = NAVER_SEARCH_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.current_index = 0
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    def _rotate(self) -> None:
        self.current_index = (self.current_index + 1) % len(self.credentials)

    async def _search(self, keyword: str, platform: str) -> list[str]:
        endpoint = self.ENDPOINTS.get(platform)
        if endpoint is None:
            raise RankSearchError(f"不支持的平台: {platform}")
        if not self.credentials:
            raise RankSearchError("未配置 Naver 搜索 API 凭据")

        params = {"query": keyword, "display": SEARCH_DISPLAY, "start": 1}
        for _ in range(len(self.credentials)):
            client_id, client_secret = self.credentials[self.current_index]
            try:
                response = await self._client.get(
                    f"{self.base_url}/{endpoint}",
                    params=params,
                    headers={
                        "X-Naver-Client-Id": client_id,
                        "X-Naver-Client-Secret": client_secret,
                    },
                )
            except httpx.HTTPError as e:
                raise RankSearchError(f"搜索请求失败: {e}") from e

            if response.status_code in _ROTATE_STATUS:
                logger.warning(
                    f"Naver 凭据 #{self.current_index} 不可用 "
                    f"({response.status_code})，切换下一组"
                )
                self._rotate()
                continue

            if response.status_code != 200:
                raise RankSearchError(f"搜索接口返回 {response.status_code}")

            items = response.json().get("items", [])
            return [item.get("link", "") for item in items]

        raise RankSearchError("所有 Naver 凭据均不可用")

    async def rank(self, keyword: str, target_url: str, platform: str) -> int | None:
        links = await self._search(keyword, platform)
        target = canonicalize_post_url(target_url)
        for position, link in enumerate(links, 1):
            if link and canonicalize_post_url(link) == target:
                return position
        return None


class NaverPostMetricsFetcher(MetricsFetcher):
    """抓取帖子页面，从内嵌数据中解析浏览数和评论数."""

    VIEW_PATTERNS: ClassVar[list[re.Pattern[str]]] = [
        re.compile(r"[\"']?readCount[\"']?\s*[:=]\s*[\"']?([\d,]+)"),
        re.compile(r"[\"']?viewCount[\"']?\s*[:=]\s*[\"']?([\d,]+)"),
    ]
    COMMENT_PATTERNS: ClassVar[list[re.Pattern[str]]] = [
        re.compile(r"[\"']?commentCount[\"']?\s*[:=]\s*[\"']?([\d,]+)"),
        re.compile(r"[\"']?commentCnt[\"']?\s*[:=]\s*[\"']?([\d,]+)"),
    ]
    # 删除/非公开帖子的提示文案
    UNAVAILABLE_MARKERS: ClassVar[list[str]] = [
        "삭제되었거나 존재하지 않는",
        "존재하지 않는 게시글",
        "삭제된 게시글",
        "비공개 글",
        "접근 권한이 없",
    ]

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
            headers={"User-Agent": DEFAULT_USER_AGENT},
        )

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _match_int(patterns: list[re.Pattern[str]], text: str) -> int | None:
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                return int(match.group(1).replace(",", ""))
        return None

    async def fetch(self, url: str) -> PostMetrics:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise MetricsFetchError(f"帖子请求失败: {e}") from e

        if response.status_code in (403, 404, 410):
            return PostMetrics(accessible=False)
        if response.status_code >= 400:
            raise MetricsFetchError(f"帖子页面返回 {response.status_code}")

        text = response.text
        if any(marker in text for marker in self.UNAVAILABLE_MARKERS):
            return PostMetrics(accessible=False)

        return PostMetrics(
            views=self._match_int(self.VIEW_PATTERNS, text),
            comments=self._match_int(self.COMMENT_PATTERNS, text),
            accessible=True,
        )
