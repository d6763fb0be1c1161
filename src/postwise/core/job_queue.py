"""持久化任务队列."""

import asyncio
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from postwise.models.job import Job, JobStatus
from postwise.utils.clock import utcnow

logger = logging.getLogger(__name__)

_TERMINAL = (JobStatus.COMPLETED, JobStatus.FAILED)


async def add_job(
    session: AsyncSession,
    job_type: str,
    payload: dict[str, Any],
    max_attempts: int = 3,
) -> Job:
    """在调用方的事务中添加任务（不提交）."""
    job = Job(type=job_type, payload=payload, max_attempts=max_attempts)
    session.add(job)
    await session.flush()
    return job


class JobQueue:
    """任务队列.

    领取操作是唯一需要跨调用方互斥的操作：候选行通过
    ``FOR UPDATE SKIP LOCKED`` 选出（不支持行锁的后端会忽略该子句），
    更新条件里再次校验 ``status = 'pending'``，因此并发领取同一任务时
    只有一个调用方能拿到。锁冲突时回滚并重试。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        claim_retries: int = 5,
    ) -> None:
        self.session_factory = session_factory
        self.claim_retries = claim_retries

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        max_attempts: int = 3,
    ) -> int:
        """添加一个 pending 任务，返回任务 ID."""
        async with self.session_factory() as session:
            job = await add_job(session, job_type, payload, max_attempts)
            await session.commit()
            assert job.id is not None
            logger.info(f"任务入队: #{job.id} ({job_type})")
            return job.id

    async def get(self, job_id: int) -> Job | None:
        """按 ID 查询任务."""
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def claim_next_pending(self, job_type: str) -> Job | None:
        """领取最早的可执行任务，没有时返回 None."""
        for attempt in range(1, self.claim_retries + 1):
            try:
                return await self._try_claim(job_type)
            except OperationalError as e:
                if attempt == self.claim_retries:
                    raise
                logger.debug(f"领取任务冲突，重试 ({attempt}): {e}")
                await asyncio.sleep(0.05 * attempt)
        return None

    async def _try_claim(self, job_type: str) -> Job | None:
        async with self.session_factory() as session:
            candidate = (
                select(Job.id)
                .where(
                    Job.type == job_type,
                    Job.status == JobStatus.PENDING,
                    Job.attempts < Job.max_attempts,
                )
                .order_by(Job.created_at, Job.id)  # type: ignore[arg-type]
                .limit(1)
                .with_for_update(skip_locked=True)
                .scalar_subquery()
            )
            stmt = (
                update(Job)
                .where(
                    Job.id == candidate,  # type: ignore[arg-type]
                    Job.status == JobStatus.PENDING,
                )
                .values(
                    status=JobStatus.PROCESSING,
                    attempts=Job.attempts + 1,
                    started_at=utcnow(),
                )
                .returning(Job.id)  # type: ignore[arg-type]
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            job_id = result.scalar_one_or_none()
            await session.commit()

            if job_id is None:
                return None
            return await session.get(Job, job_id)

    async def mark_completed(self, job_id: int) -> None:
        """标记任务完成（已是终态时不做任何事）."""
        await self._finish(job_id, JobStatus.COMPLETED, None)

    async def mark_failed(self, job_id: int, message: str) -> None:
        """标记任务失败（已是终态时不做任何事）."""
        await self._finish(job_id, JobStatus.FAILED, message)

    async def _finish(self, job_id: int, status: str, message: str | None) -> None:
        values: dict[str, Any] = {"status": status, "completed_at": utcnow()}
        if message is not None:
            values["error_message"] = message

        async with self.session_factory() as session:
            await session.execute(
                update(Job)
                .where(
                    Job.id == job_id,  # type: ignore[arg-type]
                    Job.status.notin_(_TERMINAL),  # type: ignore[attr-defined]
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def requeue(self, job_id: int) -> None:
        """把 failed/processing 的任务放回 pending，保留尝试次数."""
        async with self.session_factory() as session:
            await session.execute(
                update(Job)
                .where(
                    Job.id == job_id,  # type: ignore[arg-type]
                    Job.status.in_(  # type: ignore[attr-defined]
                        [JobStatus.FAILED, JobStatus.PROCESSING]
                    ),
                )
                .values(
                    status=JobStatus.PENDING,
                    error_message=None,
                    started_at=None,
                    completed_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def find_processing(self, job_type: str) -> list[Job]:
        """查询处于 processing 的任务（用于服务重启后的恢复）."""
        async with self.session_factory() as session:
            stmt = (
                select(Job)
                .where(Job.type == job_type, Job.status == JobStatus.PROCESSING)
                .order_by(Job.id)  # type: ignore[arg-type]
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
