"""测试原稿生成 worker."""

import asyncio
from pathlib import Path

from sqlmodel import select

from conftest import FakeImageAI, FakeLLM, create_source
from postwise.core.errors import SourceNotFoundError
from postwise.core.generator import GenerationPayload, ManuscriptGenerator
from postwise.core.job_queue import JobQueue
from postwise.core.sources import add_worker
from postwise.core.worker import MANUSCRIPT_JOB_TYPE, ManuscriptWorker
from postwise.models.job import JobStatus
from postwise.models.manuscript import Manuscript, ManuscriptStatus
from postwise.models.source import SourceWorker


class StubGenerator:
    """按预设结果执行的生成器."""

    def __init__(self, errors: list[Exception | None]) -> None:
        self.errors = errors
        self.calls = 0
        self.released: list[tuple[int, int]] = []

    async def generate(self, payload: GenerationPayload) -> None:
        self.calls += 1
        error = self.errors.pop(0) if self.errors else None
        if error is not None:
            raise error

    async def release_worker(self, source_id: int, user_id: int) -> None:
        self.released.append((source_id, user_id))


async def _enqueue(session_factory, queue: JobQueue, max_attempts: int = 3) -> tuple[int, int]:
    async with session_factory() as session:
        manuscript = Manuscript(user_id=1, source_id=None, title="t")
        session.add(manuscript)
        await session.commit()
        assert manuscript.id is not None
    job_id = await queue.enqueue(
        MANUSCRIPT_JOB_TYPE,
        {
            "manuscript_id": manuscript.id,
            "user_id": 1,
            "source_id": 5,
            "prompt_content": "p",
        },
        max_attempts=max_attempts,
    )
    return job_id, manuscript.id


async def _manuscript_status(session_factory, manuscript_id: int) -> str:
    async with session_factory() as session:
        manuscript = await session.get(Manuscript, manuscript_id)
        assert manuscript is not None
        return manuscript.status


class TestRunOnce:
    """测试单轮处理."""

    async def test_success_marks_completed(self, session_factory) -> None:
        queue = JobQueue(session_factory)
        job_id, _ = await _enqueue(session_factory, queue)
        worker = ManuscriptWorker(queue, StubGenerator([None]), session_factory)

        assert await worker.run_once() is True

        job = await queue.get(job_id)
        assert job is not None and job.status == JobStatus.COMPLETED

    async def test_idle_returns_false(self, session_factory) -> None:
        queue = JobQueue(session_factory)
        worker = ManuscriptWorker(queue, StubGenerator([]), session_factory)
        assert await worker.run_once() is False

    async def test_transient_failure_requeued(self, session_factory) -> None:
        """临时错误：任务回到 pending，原稿保持 generating."""
        queue = JobQueue(session_factory)
        job_id, manuscript_id = await _enqueue(session_factory, queue)
        worker = ManuscriptWorker(
            queue, StubGenerator([RuntimeError("timeout")]), session_factory
        )

        await worker.run_once()

        job = await queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.PENDING
        assert job.attempts == 1
        assert await _manuscript_status(session_factory, manuscript_id) == (
            ManuscriptStatus.GENERATING
        )

    async def test_retries_until_exhausted(self, session_factory) -> None:
        """重试次数用完后任务失败、原稿失败、作业登记解除."""
        queue = JobQueue(session_factory)
        job_id, manuscript_id = await _enqueue(session_factory, queue, max_attempts=3)
        generator = StubGenerator([RuntimeError("e")] * 3)
        worker = ManuscriptWorker(queue, generator, session_factory)

        for _ in range(3):
            await worker.run_once()
        assert await worker.run_once() is False

        job = await queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert generator.calls == 3
        assert generator.released == [(5, 1)]
        assert await _manuscript_status(session_factory, manuscript_id) == (
            ManuscriptStatus.FAILED
        )

    async def test_permanent_failure_not_retried(self, session_factory) -> None:
        """不可重试的错误直接失败."""
        queue = JobQueue(session_factory)
        job_id, manuscript_id = await _enqueue(session_factory, queue)
        generator = StubGenerator([SourceNotFoundError("gone")])
        worker = ManuscriptWorker(queue, generator, session_factory)

        await worker.run_once()
        await worker.run_once()

        job = await queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1
        assert job.error_message == "gone"
        assert generator.calls == 1
        assert await _manuscript_status(session_factory, manuscript_id) == (
            ManuscriptStatus.FAILED
        )

    async def test_invalid_payload_fails_job(self, session_factory) -> None:
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(MANUSCRIPT_JOB_TYPE, {"bogus": True})
        generator = StubGenerator([])
        worker = ManuscriptWorker(queue, generator, session_factory)

        await worker.run_once()

        job = await queue.get(job_id)
        assert job is not None and job.status == JobStatus.FAILED
        assert generator.calls == 0

    async def test_overlapping_run_is_noop(self, session_factory) -> None:
        """上一轮未结束时 run_once 直接返回."""
        queue = JobQueue(session_factory)
        await _enqueue(session_factory, queue)
        gate = asyncio.Event()

        class SlowGenerator(StubGenerator):
            async def generate(self, payload: GenerationPayload) -> None:
                self.calls += 1
                await gate.wait()

        generator = SlowGenerator([])
        worker = ManuscriptWorker(queue, generator, session_factory)

        first = asyncio.create_task(worker.run_once())
        while generator.calls == 0:
            await asyncio.sleep(0.01)
        assert await worker.run_once() is False
        gate.set()
        assert await first is True
        assert generator.calls == 1


class TestRecover:
    """测试重启恢复."""

    async def test_requeues_or_fails_stale_jobs(self, session_factory) -> None:
        queue = JobQueue(session_factory)
        retry_id, _ = await _enqueue(session_factory, queue, max_attempts=3)
        await queue.claim_next_pending(MANUSCRIPT_JOB_TYPE)
        dead_id, dead_manuscript = await _enqueue(session_factory, queue, max_attempts=1)
        await queue.claim_next_pending(MANUSCRIPT_JOB_TYPE)

        worker = ManuscriptWorker(queue, StubGenerator([]), session_factory)
        assert await worker.recover() == 2

        retry_job = await queue.get(retry_id)
        dead_job = await queue.get(dead_id)
        assert retry_job is not None and retry_job.status == JobStatus.PENDING
        assert dead_job is not None and dead_job.status == JobStatus.FAILED
        assert await _manuscript_status(session_factory, dead_manuscript) == (
            ManuscriptStatus.FAILED
        )


class TestLoop:
    """测试轮询循环."""

    async def test_start_processes_and_stop(
        self, session_factory, settings, storage
    ) -> None:
        """启动后处理真实生成任务，停止后任务结束."""
        data_dir = Path(settings.data_dir)
        source = await create_source(session_factory, data_dir)
        assert source.id is not None
        async with session_factory() as session:
            manuscript = Manuscript(user_id=3, source_id=source.id, title="t")
            session.add(manuscript)
            await add_worker(session, source.id, 3)
            await session.commit()

        queue = JobQueue(session_factory)
        await queue.enqueue(
            MANUSCRIPT_JOB_TYPE,
            {
                "manuscript_id": manuscript.id,
                "user_id": 3,
                "source_id": source.id,
                "prompt_content": "{원문}",
                "length_option": "short",
            },
        )
        generator = ManuscriptGenerator(
            session_factory, settings, FakeImageAI(), storage, lambda *_: FakeLLM()
        )
        worker = ManuscriptWorker(queue, generator, session_factory, poll_interval=0.01)

        worker.start()
        for _ in range(200):
            if await _manuscript_status(session_factory, manuscript.id) == (
                ManuscriptStatus.GENERATED
            ):
                break
            await asyncio.sleep(0.02)
        await worker.stop()

        assert worker.is_running is False
        assert await _manuscript_status(session_factory, manuscript.id) == (
            ManuscriptStatus.GENERATED
        )
        async with session_factory() as session:
            assert (await session.execute(select(SourceWorker))).scalars().all() == []
