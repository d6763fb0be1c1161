"""测试成效追踪."""

from datetime import datetime, timedelta

import httpx
import pytest
from sqlmodel import select

from postwise.core.performance import PerformanceCollector
from postwise.models.manuscript import Manuscript, ManuscriptStatus
from postwise.models.performance import (
    PerformanceData,
    PerformanceTracking,
    TrackingStatus,
)
from postwise.models.posting import Platform, Posting
from postwise.tracking.base import (
    MetricsFetcher,
    MetricsFetchError,
    PostMetrics,
    RankSearcher,
    RankSearchError,
)
from postwise.tracking.naver import NaverPostMetricsFetcher, NaverRankSearcher
from postwise.tracking.urls import canonicalize_post_url

NOW = datetime(2026, 3, 1, 12, 0, 0)


class TestCanonicalizeUrl:
    """测试 URL 规范化."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://blog.naver.com/camper/223000000001",
            "https://m.blog.naver.com/camper/223000000001",
            "https://blog.naver.com/PostView.naver?blogId=camper&logNo=223000000001",
            "https://m.blog.naver.com/PostView.naver?blogId=camper&logNo=223000000001&x=1",
        ],
    )
    def test_blog_variants(self, url: str) -> None:
        assert canonicalize_post_url(url) == "blog.naver.com/camper/223000000001"

    @pytest.mark.parametrize(
        "url",
        [
            "https://cafe.naver.com/campingclub/12345",
            "https://m.cafe.naver.com/ca-fe/web/cafes/campingclub/articles/12345?art=x",
            "https://cafe.naver.com/ArticleRead.nhn?clubid=campingclub&articleid=12345",
        ],
    )
    def test_cafe_variants(self, url: str) -> None:
        assert canonicalize_post_url(url) == "cafe.naver.com/campingclub/12345"

    def test_other_hosts(self) -> None:
        assert (
            canonicalize_post_url("https://www.example.com/post/1/?utm=x#top")
            == "example.com/post/1"
        )


class FakeRank(RankSearcher):
    def __init__(self, rank: int | None = 3, error: Exception | None = None) -> None:
        self.value = rank
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    async def rank(self, keyword: str, target_url: str, platform: str) -> int | None:
        self.calls.append((keyword, target_url, platform))
        if self.error:
            raise self.error
        return self.value


class FakeMetrics(MetricsFetcher):
    def __init__(self, results: dict[str, PostMetrics | Exception]) -> None:
        self.results = results

    async def fetch(self, url: str) -> PostMetrics:
        result = self.results[url]
        if isinstance(result, Exception):
            raise result
        return result


async def _tracking(
    session_factory,
    url: str,
    end: datetime,
    keyword: str | None = "캠핑",
    platform: str = Platform.BLOG,
) -> int:
    async with session_factory() as session:
        manuscript = Manuscript(user_id=1, title="m", status=ManuscriptStatus.POSTED)
        session.add(manuscript)
        await session.flush()
        assert manuscript.id is not None
        posting = Posting(
            manuscript_id=manuscript.id, url=url, platform=platform, keyword=keyword
        )
        session.add(posting)
        await session.flush()
        assert posting.id is not None
        tracking = PerformanceTracking(
            posting_id=posting.id, tracking_start=end - timedelta(days=7), tracking_end=end
        )
        session.add(tracking)
        await session.commit()
        assert tracking.id is not None
        return tracking.id


async def _points(session_factory, tracking_id: int) -> list[PerformanceData]:
    async with session_factory() as session:
        result = await session.execute(
            select(PerformanceData).where(PerformanceData.tracking_id == tracking_id)
        )
        return list(result.scalars().all())


class TestPerformanceCollector:
    """测试 PerformanceCollector."""

    async def test_expired_tracking_completed_and_skipped(self, session_factory) -> None:
        """过期的追踪先被置为 completed，不再追加数据点."""
        expired = await _tracking(session_factory, "https://a.test/1", NOW)
        active = await _tracking(
            session_factory, "https://a.test/2", NOW + timedelta(days=1)
        )
        metrics = FakeMetrics(
            {"https://a.test/2": PostMetrics(views=10, comments=2)}
        )
        collector = PerformanceCollector(
            session_factory, FakeRank(5), {Platform.BLOG: metrics}, now_func=lambda: NOW
        )

        assert await collector.collect() == 1

        async with session_factory() as session:
            stored = await session.get(PerformanceTracking, expired)
        assert stored is not None
        assert stored.status == TrackingStatus.COMPLETED
        assert await _points(session_factory, expired) == []
        [point] = await _points(session_factory, active)
        assert (point.keyword_rank, point.view_count, point.comment_count) == (5, 10, 2)
        assert point.is_accessible is True

    async def test_failures_are_isolated(self, session_factory) -> None:
        """单个追踪失败不影响其他追踪."""
        end = NOW + timedelta(days=3)
        broken = await _tracking(session_factory, "https://a.test/broken", end)
        hidden = await _tracking(session_factory, "https://a.test/hidden", end)
        healthy = await _tracking(session_factory, "https://a.test/ok", end)
        metrics = FakeMetrics(
            {
                "https://a.test/broken": MetricsFetchError("timeout"),
                "https://a.test/hidden": PostMetrics(accessible=False),
                "https://a.test/ok": PostMetrics(views=1, comments=0),
            }
        )
        rank = FakeRank(2)
        collector = PerformanceCollector(
            session_factory, rank, {Platform.BLOG: metrics}, now_func=lambda: NOW
        )

        assert await collector.collect() == 3

        for tracking_id in (broken, hidden):
            [point] = await _points(session_factory, tracking_id)
            assert point.is_accessible is False
            assert point.keyword_rank is None
            assert point.view_count is None
            assert point.comment_count is None
        [ok] = await _points(session_factory, healthy)
        assert ok.keyword_rank == 2
        # 不可访问的帖子不查询排名
        assert [call[1] for call in rank.calls] == ["https://a.test/ok"]

    async def test_rank_failure_keeps_metrics(self, session_factory) -> None:
        tracking_id = await _tracking(
            session_factory, "https://a.test/1", NOW + timedelta(days=1)
        )
        collector = PerformanceCollector(
            session_factory,
            FakeRank(error=RankSearchError("quota")),
            {Platform.BLOG: FakeMetrics({"https://a.test/1": PostMetrics(views=9)})},
            now_func=lambda: NOW,
        )

        await collector.collect()

        [point] = await _points(session_factory, tracking_id)
        assert point.keyword_rank is None
        assert point.view_count == 9
        assert point.is_accessible is True

    async def test_no_keyword_skips_rank(self, session_factory) -> None:
        await _tracking(
            session_factory, "https://a.test/1", NOW + timedelta(days=1), keyword=None
        )
        rank = FakeRank(1)
        collector = PerformanceCollector(
            session_factory,
            rank,
            {Platform.BLOG: FakeMetrics({"https://a.test/1": PostMetrics()})},
            now_func=lambda: NOW,
        )

        assert await collector.collect() == 1
        assert rank.calls == []


class TestNaverRankSearcher:
    """测试 Naver 搜索排名."""

    async def test_rank_and_rotation(self) -> None:
        """第一组凭据被限流时切换到第二组."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            client_id = request.headers["X-Naver-Client-Id"]
            seen.append(client_id)
            assert request.url.path.endswith("/blog.json")
            assert request.url.params["display"] == "100"
            if client_id == "id1":
                return httpx.Response(429)
            return httpx.Response(
                200,
                json={
                    "items": [
                        {"link": "https://blog.naver.com/other/1"},
                        {"link": "https://blog.naver.com/camper/223000000001"},
                    ]
                },
            )

        searcher = NaverRankSearcher(
            [("id1", "s1"), ("id2", "s2")], transport=httpx.MockTransport(handler)
        )
        rank = await searcher.rank(
            "캠핑",
            "https://m.blog.naver.com/PostView.naver?blogId=camper&logNo=223000000001",
            Platform.BLOG,
        )
        await searcher.close()

        assert rank == 2
        assert seen == ["id1", "id2"]
        assert searcher.current_index == 1

    async def test_all_credentials_exhausted(self) -> None:
        searcher = NaverRankSearcher(
            [("id1", "s1")],
            transport=httpx.MockTransport(lambda request: httpx.Response(401)),
        )
        with pytest.raises(RankSearchError):
            await searcher.rank("k", "https://cafe.naver.com/a/1", Platform.CAFE)
        await searcher.close()

    async def test_not_found_returns_none(self) -> None:
        searcher = NaverRankSearcher(
            [("id1", "s1")],
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"items": []})
            ),
        )
        assert await searcher.rank("k", "https://cafe.naver.com/a/1", Platform.CAFE) is None
        await searcher.close()

    async def test_no_credentials(self) -> None:
        searcher = NaverRankSearcher([])
        with pytest.raises(RankSearchError):
            await searcher.rank("k", "https://blog.naver.com/a/1", Platform.BLOG)
        await searcher.close()


class TestNaverMetricsFetcher:
    """测试帖子数据解析."""

    async def test_parse_counts(self) -> None:
        page = '<script>var data = {"readCount": "1,234", "commentCount": 5};</script>'
        fetcher = NaverPostMetricsFetcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text=page))
        )
        metrics = await fetcher.fetch("https://blog.naver.com/a/1")
        await fetcher.close()
        assert metrics == PostMetrics(views=1234, comments=5, accessible=True)

    async def test_deleted_post(self) -> None:
        page = "<p>삭제되었거나 존재하지 않는 게시물입니다.</p>"
        fetcher = NaverPostMetricsFetcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text=page))
        )
        metrics = await fetcher.fetch("https://blog.naver.com/a/1")
        await fetcher.close()
        assert metrics.accessible is False

    async def test_not_found_is_inaccessible(self) -> None:
        fetcher = NaverPostMetricsFetcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(404))
        )
        assert (await fetcher.fetch("https://blog.naver.com/a/1")).accessible is False
        await fetcher.close()

    async def test_server_error_raises(self) -> None:
        fetcher = NaverPostMetricsFetcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        with pytest.raises(MetricsFetchError):
            await fetcher.fetch("https://blog.naver.com/a/1")
        await fetcher.close()
