"""原稿生成 worker."""

import asyncio
import contextlib
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postwise.core.errors import PermanentJobError
from postwise.core.generator import GenerationPayload, ManuscriptGenerator
from postwise.core.job_queue import JobQueue
from postwise.models.job import Job
from postwise.models.manuscript import Manuscript, ManuscriptStatus
from postwise.utils.clock import utcnow

logger = logging.getLogger(__name__)

MANUSCRIPT_JOB_TYPE = "manuscript_generation"


class ManuscriptWorker:
    """轮询任务队列并执行原稿生成."""

    def __init__(
        self,
        queue: JobQueue,
        generator: ManuscriptGenerator,
        session_factory: async_sessionmaker[AsyncSession],
        poll_interval: float = 3.0,
    ) -> None:
        self.queue = queue
        self.generator = generator
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self._busy = False
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_busy(self) -> bool:
        return self._busy

    def start(self) -> None:
        """启动轮询循环."""
        if self.is_running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name="manuscript-worker")
        logger.info(f"原稿 worker 已启动，轮询间隔 {self.poll_interval}s")

    async def stop(self) -> None:
        """停止轮询循环（正在执行的任务会被取消，重启后由 recover 处理）."""
        if self._task is None:
            return
        self._stopping.set()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("原稿 worker 已停止")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"轮询任务失败: {e}")
            await asyncio.sleep(self.poll_interval)

    async def run_once(self) -> bool:
        """领取并执行一个任务，返回是否处理了任务.

        上一轮还没结束时直接返回。
        """
        if self._busy:
            return False

        self._busy = True
        try:
            job = await self.queue.claim_next_pending(MANUSCRIPT_JOB_TYPE)
            if job is None:
                return False
            await self._process(job)
            return True
        finally:
            self._busy = False

    async def _process(self, job: Job) -> None:
        assert job.id is not None
        logger.info(f"开始处理任务 #{job.id} (第 {job.attempts} 次)")

        payload: GenerationPayload | None = None
        try:
            payload = GenerationPayload.parse(job.payload)
            await self.generator.generate(payload)
        except Exception as e:
            await self._handle_failure(job, payload, e)
            return

        await self.queue.mark_completed(job.id)
        logger.info(f"任务 #{job.id} 完成")

    async def _handle_failure(
        self,
        job: Job,
        payload: GenerationPayload | None,
        error: Exception,
    ) -> None:
        assert job.id is not None
        message = str(error) or type(error).__name__
        await self.queue.mark_failed(job.id, message)

        permanent = isinstance(error, PermanentJobError)
        if permanent or job.attempts >= job.max_attempts:
            reason = "不可重试" if permanent else "重试次数已用完"
            logger.error(f"任务 #{job.id} 失败（{reason}）: {message}")
            await self._fail_manuscript(job, payload)
            return

        logger.warning(
            f"任务 #{job.id} 失败，稍后重试 "
            f"({job.attempts}/{job.max_attempts}): {message}"
        )
        await self.queue.requeue(job.id)

    async def _fail_manuscript(
        self, job: Job, payload: GenerationPayload | None
    ) -> None:
        """把原稿置为 failed 并解除作业登记."""
        manuscript_id = (
            payload.manuscript_id if payload else job.payload.get("manuscript_id")
        )
        if not isinstance(manuscript_id, int):
            return

        async with self.session_factory() as session:
            await session.execute(
                update(Manuscript)
                .where(
                    Manuscript.id == manuscript_id,  # type: ignore[arg-type]
                    Manuscript.status == ManuscriptStatus.GENERATING,  # type: ignore[arg-type]
                )
                .values(status=ManuscriptStatus.FAILED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if payload is not None:
            await self.generator.release_worker(payload.source_id, payload.user_id)

    async def recover(self) -> int:
        """处理上次进程退出时遗留在 processing 的任务，返回处理数量."""
        stale = await self.queue.find_processing(MANUSCRIPT_JOB_TYPE)
        for job in stale:
            assert job.id is not None
            if job.attempts >= job.max_attempts:
                await self.queue.mark_failed(job.id, "进程中断，重试次数已用完")
                payload = None
                with contextlib.suppress(PermanentJobError):
                    payload = GenerationPayload.parse(job.payload)
                await self._fail_manuscript(job, payload)
            else:
                await self.queue.requeue(job.id)
        if stale:
            logger.info(f"已恢复 {len(stale)} 个中断的任务")
        return len(stale)
