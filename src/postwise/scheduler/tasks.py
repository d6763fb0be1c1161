"""定时任务定义."""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postwise.config import Settings
from postwise.core.crawler import CrawlPipeline
from postwise.core.generator import ManuscriptGenerator
from postwise.core.job_queue import JobQueue
from postwise.core.performance import PerformanceCollector
from postwise.core.worker import ManuscriptWorker
from postwise.crawler.sites import load_crawl_sites
from postwise.imaging.gemini import GeminiImageProvider
from postwise.imaging.storage import LocalObjectStorage
from postwise.models.posting import Platform
from postwise.tracking.naver import NaverPostMetricsFetcher, NaverRankSearcher
from postwise.utils.clock import utcnow

logger = logging.getLogger(__name__)


class SingleFlight:
    """同一类任务同一时间最多执行一次，运行期间的触发直接跳过."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._running = False
        self.runs = 0
        self.skipped = 0
        self.last_started_at: datetime | None = None
        self.last_finished_at: datetime | None = None
        self.last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, func: Callable[[], Awaitable[Any]]) -> bool:
        """执行任务，返回是否真正执行了."""
        if self._running:
            self.skipped += 1
            logger.info(f"[{self.name}] 上一次执行尚未结束，跳过本次调度")
            return False

        self._running = True
        self.runs += 1
        self.last_started_at = utcnow()
        try:
            await func()
            self.last_error = None
        except Exception as e:
            self.last_error = str(e) or type(e).__name__
            logger.exception(f"[{self.name}] 执行失败: {e}")
        finally:
            self._running = False
            self.last_finished_at = utcnow()
        return True

    def snapshot(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "runs": self.runs,
            "skipped": self.skipped,
            "last_started_at": self.last_started_at,
            "last_finished_at": self.last_finished_at,
            "last_error": self.last_error,
        }


class TaskScheduler:
    """
    后台任务调度.

    抓取和成效采集按 cron 定时执行，启动后再各延迟执行一次；
    原稿 worker 作为常驻 asyncio 任务运行。
    """

    def __init__(
        self,
        settings: Settings,
        crawler: CrawlPipeline,
        collector: PerformanceCollector,
        worker: ManuscriptWorker,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> None:
        self.settings = settings
        self.crawler = crawler
        self.collector = collector
        self.worker = worker
        self.crawl_guard = SingleFlight("crawl")
        self.performance_guard = SingleFlight("performance")
        self._closers = closers or []
        self._scheduler: AsyncIOScheduler | None = None

    async def run_crawl(self) -> bool:
        """抓取一次（已在运行时跳过）."""
        return await self.crawl_guard.run(self.crawler.run)

    async def run_performance(self) -> bool:
        """采集一次成效数据（已在运行时跳过）."""

        async def _collect() -> None:
            count = await self.collector.collect()
            logger.info(f"成效数据采集完成 ({count} 条)")

        return await self.performance_guard.run(_collect)

    def start(self) -> None:
        """注册定时任务并启动 worker."""
        settings = self.settings
        scheduler = AsyncIOScheduler()
        now = datetime.now(timezone.utc)

        scheduler.add_job(
            self.run_crawl,
            CronTrigger.from_crontab(settings.crawl_cron),
            id="crawl_task",
            name="新闻抓取",
            replace_existing=True,
        )
        scheduler.add_job(
            self.run_crawl,
            "date",  # 一次性任务
            run_date=now + timedelta(seconds=settings.crawl_startup_delay_seconds),
            id="crawl_task_initial",
            name="初始抓取",
        )
        scheduler.add_job(
            self.run_performance,
            CronTrigger.from_crontab(settings.performance_cron),
            id="performance_task",
            name="成效采集",
            replace_existing=True,
        )
        scheduler.add_job(
            self.run_performance,
            "date",
            run_date=now
            + timedelta(seconds=settings.performance_startup_delay_seconds),
            id="performance_task_initial",
            name="初始成效采集",
        )

        scheduler.start()
        self._scheduler = scheduler
        self.worker.start()
        logger.info(
            f"定时任务调度器已启动: 抓取 '{settings.crawl_cron}', "
            f"成效采集 '{settings.performance_cron}'"
        )

    async def shutdown(self) -> None:
        """关闭调度器、worker 和外部客户端."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("定时任务调度器已关闭")
        await self.worker.stop()
        for close in self._closers:
            try:
                await close()
            except Exception as e:
                logger.warning(f"客户端关闭失败: {e}")

    def status(self) -> dict[str, Any]:
        return {
            "scheduler_running": self._scheduler is not None,
            "worker_running": self.worker.is_running,
            "crawl": self.crawl_guard.snapshot(),
            "performance": self.performance_guard.snapshot(),
        }


def create_scheduler(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> TaskScheduler:
    """按配置组装各组件（不启动）."""
    data_dir = Path(settings.data_dir)

    queue = JobQueue(session_factory)
    image_ai = GeminiImageProvider(
        api_key=settings.gemini_api_key,
        model=settings.gemini_image_model,
        base_url=settings.gemini_base_url,
        timeout=float(settings.llm_timeout_seconds),
    )
    storage = LocalObjectStorage(data_dir / "files", settings.storage_public_base_url)
    generator = ManuscriptGenerator(session_factory, settings, image_ai, storage)
    worker = ManuscriptWorker(
        queue,
        generator,
        session_factory,
        poll_interval=settings.worker_poll_interval_seconds,
    )

    crawler = CrawlPipeline(
        session_factory, load_crawl_sites(settings.crawl_sites_file), settings
    )

    rank_searcher = NaverRankSearcher(
        settings.naver_credentials(), timeout=float(settings.tracking_timeout_seconds)
    )
    metrics_fetcher = NaverPostMetricsFetcher(
        timeout=float(settings.tracking_timeout_seconds)
    )
    collector = PerformanceCollector(
        session_factory,
        rank_searcher,
        {Platform.BLOG: metrics_fetcher, Platform.CAFE: metrics_fetcher},
    )

    return TaskScheduler(
        settings,
        crawler,
        collector,
        worker,
        closers=[image_ai.close, rank_searcher.close, metrics_fetcher.close],
    )
