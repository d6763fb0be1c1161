"""成效数据采集."""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from postwise.models.performance import (
    PerformanceData,
    PerformanceTracking,
    TrackingStatus,
)
from postwise.models.posting import Posting
from postwise.tracking.base import MetricsFetcher, PostMetrics, RankSearcher
from postwise.utils.clock import utcnow

logger = logging.getLogger(__name__)


class PerformanceCollector:
    """
    为每个追踪中的发布记录追加一个数据点.

    先把已过期的追踪置为 completed 并提交，再处理剩下的追踪；
    单个追踪失败不影响其他追踪。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rank_searcher: RankSearcher,
        metrics_fetchers: dict[str, MetricsFetcher],
        now_func: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.rank_searcher = rank_searcher
        self.metrics_fetchers = metrics_fetchers
        self.now_func = now_func

    async def complete_expired(self, now: datetime) -> int:
        """结束已过追踪窗口的记录."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(PerformanceTracking)
                .where(
                    PerformanceTracking.status == TrackingStatus.TRACKING,  # type: ignore[arg-type]
                    PerformanceTracking.tracking_end <= now,  # type: ignore[arg-type]
                )
                .values(status=TrackingStatus.COMPLETED)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount or 0

    async def _active(self, now: datetime) -> list[tuple[PerformanceTracking, Posting]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PerformanceTracking, Posting)
                .join(Posting, Posting.id == PerformanceTracking.posting_id)  # type: ignore[arg-type]
                .where(
                    PerformanceTracking.status == TrackingStatus.TRACKING,
                    PerformanceTracking.tracking_end > now,
                )
                .order_by(PerformanceTracking.id)  # type: ignore[arg-type]
            )
            return [(tracking, posting) for tracking, posting in result.all()]

    async def collect(self) -> int:
        """执行一次采集，返回写入的数据点数量."""
        now = self.now_func()

        completed = await self.complete_expired(now)
        if completed:
            logger.info(f"{completed} 个追踪已结束")

        collected = 0
        for tracking, posting in await self._active(now):
            try:
                point = await self._measure(tracking, posting)
                async with self.session_factory() as session:
                    session.add(point)
                    await session.commit()
                collected += 1
            except Exception as e:
                logger.exception(f"追踪 #{tracking.id} 数据采集失败: {e}")

        return collected

    async def _measure(
        self, tracking: PerformanceTracking, posting: Posting
    ) -> PerformanceData:
        assert tracking.id is not None
        metrics = await self._fetch_metrics(posting)

        if not metrics.accessible:
            return PerformanceData(
                tracking_id=tracking.id,
                is_accessible=False,
                collected_at=self.now_func(),
            )

        rank: int | None = None
        if posting.keyword:
            try:
                rank = await self.rank_searcher.rank(
                    posting.keyword, posting.url, posting.platform
                )
            except Exception as e:
                logger.warning(f"追踪 #{tracking.id} 排名查询失败: {e}")

        return PerformanceData(
            tracking_id=tracking.id,
            keyword_rank=rank,
            view_count=metrics.views,
            comment_count=metrics.comments,
            is_accessible=True,
            collected_at=self.now_func(),
        )

    async def _fetch_metrics(self, posting: Posting) -> PostMetrics:
        fetcher = self.metrics_fetchers.get(posting.platform)
        if fetcher is None:
            # 没有对应平台的数据来源时只记录排名
            return PostMetrics()
        try:
            return await fetcher.fetch(posting.url)
        except Exception as e:
            logger.warning(f"帖子数据获取失败: {posting.url} - {e}")
            return PostMetrics(accessible=False)
