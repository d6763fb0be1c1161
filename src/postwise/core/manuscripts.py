"""原稿服务：生成请求、状态查询、发布和成效查询."""

import logging
from datetime import timedelta
from typing import Any
from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from postwise.core.errors import ConflictError, NotFoundError, ValidationError
from postwise.core.job_queue import add_job
from postwise.core.sources import add_worker
from postwise.core.worker import MANUSCRIPT_JOB_TYPE
from postwise.models.manuscript import LengthOption, Manuscript, ManuscriptStatus
from postwise.models.performance import (
    PerformanceData,
    PerformanceTracking,
    TrackingStatus,
)
from postwise.models.posting import Platform, Posting
from postwise.models.prompt import ImageTemplate, Prompt
from postwise.models.source import Source
from postwise.utils.clock import utcnow

logger = logging.getLogger(__name__)

MAX_NEW_IMAGES = 10


def normalize_length_option(value: str | None) -> str:
    """未知的长度选项按 medium 处理."""
    return value if value in LengthOption.ALL else LengthOption.MEDIUM


def clamp_image_count(value: Any) -> int:
    """新图数量限制在 0..10."""
    try:
        count = int(value or 0)
    except (TypeError, ValueError):
        count = 0
    return min(MAX_NEW_IMAGES, max(0, count))


def _is_http_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class ManuscriptService:
    """原稿相关的业务操作（调用方负责会话生命周期）."""

    def __init__(
        self,
        session: AsyncSession,
        job_max_attempts: int = 3,
        tracking_window_days: int = 7,
    ) -> None:
        self.session = session
        self.job_max_attempts = job_max_attempts
        self.tracking_window = timedelta(days=tracking_window_days)

    async def request_generation(
        self,
        user_id: int,
        source_id: int,
        prompt_id: int,
        image_template_id: int,
        keyword: str | None = None,
        length_option: str | None = None,
        new_image_count: Any = 0,
    ) -> dict[str, Any]:
        """
        创建原稿并投递生成任务.

        原稿、作业登记和任务在同一个事务中写入，任务被领取时
        原稿一定已经存在。
        """
        source = await self.session.get(Source, source_id)
        if source is None:
            raise NotFoundError(f"源文章不存在: #{source_id}")

        prompt = await self.session.get(Prompt, prompt_id)
        if prompt is None or not prompt.is_active:
            raise NotFoundError(f"没有可用的提示词: #{prompt_id}")

        template = await self.session.get(ImageTemplate, image_template_id)
        if template is None or not template.is_active:
            raise NotFoundError(f"没有可用的图片模板: #{image_template_id}")

        length = normalize_length_option(length_option)
        image_count = clamp_image_count(new_image_count)
        keyword = (keyword or "").strip() or None

        template_directives = {
            "original_image_prompt": template.original_image_prompt,
            "new_image_prompt": template.new_image_prompt,
            "remove_watermark": bool(template.remove_watermark),
        }

        manuscript = Manuscript(
            user_id=user_id,
            source_id=source.id,
            prompt_id=prompt.id,
            image_template_id=template.id,
            title=source.title,
            keyword=keyword,
            length_option=length,
            new_image_count=image_count,
            status=ManuscriptStatus.GENERATING,
            prompt_snapshot=prompt.content,
            image_template_snapshot={"name": template.name, **template_directives},
            source_title_snapshot=source.title,
            source_url_snapshot=source.original_url,
        )
        self.session.add(manuscript)
        await self.session.flush()
        assert manuscript.id is not None
        assert source.id is not None

        await add_worker(self.session, source.id, user_id)

        job = await add_job(
            self.session,
            MANUSCRIPT_JOB_TYPE,
            {
                "manuscript_id": manuscript.id,
                "user_id": user_id,
                "source_id": source.id,
                "prompt_content": prompt.content,
                "model_provider": prompt.model_provider,
                "model_name": prompt.model_name,
                "image_template": template_directives,
                "keyword": keyword,
                "length_option": length,
                "new_image_count": image_count,
            },
            max_attempts=self.job_max_attempts,
        )
        await self.session.commit()

        logger.info(f"原稿 #{manuscript.id} 已创建，任务 #{job.id} 入队")
        return {
            "manuscript_id": manuscript.id,
            "job_id": job.id,
            "status": manuscript.status,
        }

    async def _get_manuscript(self, manuscript_id: int) -> Manuscript:
        manuscript = await self.session.get(Manuscript, manuscript_id)
        if manuscript is None:
            raise NotFoundError(f"原稿不存在: #{manuscript_id}")
        return manuscript

    async def get_status(self, manuscript_id: int) -> dict[str, Any]:
        """查询生成状态."""
        manuscript = await self._get_manuscript(manuscript_id)
        return {
            "id": manuscript.id,
            "status": manuscript.status,
            "title": manuscript.title,
            "created_at": manuscript.created_at,
        }

    async def publish(
        self,
        manuscript_id: int,
        url: str,
        platform: str,
        keyword: str | None = None,
    ) -> Posting:
        """登记发布结果并开始成效追踪."""
        manuscript = await self._get_manuscript(manuscript_id)

        if manuscript.status == ManuscriptStatus.POSTED:
            raise ConflictError(f"原稿 #{manuscript_id} 已发布")
        if manuscript.status != ManuscriptStatus.GENERATED:
            raise ConflictError(
                f"原稿 #{manuscript_id} 尚未生成完成 (status={manuscript.status})"
            )

        url = (url or "").strip()
        if not _is_http_url(url):
            raise ValidationError("请输入有效的 http(s) URL")
        if platform not in Platform.ALL:
            raise ValidationError("平台只能是 blog 或 cafe")

        now = utcnow()
        posting = Posting(
            manuscript_id=manuscript_id,
            url=url,
            platform=platform,
            keyword=(keyword or "").strip() or manuscript.keyword,
            posted_at=now,
        )
        self.session.add(posting)
        await self.session.flush()
        assert posting.id is not None

        manuscript.status = ManuscriptStatus.POSTED
        manuscript.updated_at = now

        self.session.add(
            PerformanceTracking(
                posting_id=posting.id,
                tracking_start=now,
                tracking_end=now + self.tracking_window,
                status=TrackingStatus.TRACKING,
            )
        )
        await self.session.commit()

        logger.info(f"原稿 #{manuscript_id} 已发布: {platform} {url}")
        return posting

    async def get_performance(self, manuscript_id: int) -> dict[str, Any]:
        """查询发布记录、追踪窗口和数据点（按采集时间排序）."""
        await self._get_manuscript(manuscript_id)

        posting = (
            await self.session.execute(
                select(Posting).where(Posting.manuscript_id == manuscript_id)
            )
        ).scalars().first()
        if posting is None:
            return {"posting": None, "tracking": None, "data": []}

        tracking = (
            await self.session.execute(
                select(PerformanceTracking).where(
                    PerformanceTracking.posting_id == posting.id
                )
            )
        ).scalars().first()

        data: list[PerformanceData] = []
        if tracking is not None:
            result = await self.session.execute(
                select(PerformanceData)
                .where(PerformanceData.tracking_id == tracking.id)
                .order_by(PerformanceData.collected_at, PerformanceData.id)  # type: ignore[arg-type]
            )
            data = list(result.scalars().all())

        return {"posting": posting, "tracking": tracking, "data": data}
