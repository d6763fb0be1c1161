"""测试持久化任务队列."""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from postwise.core.job_queue import JobQueue, add_job
from postwise.models.job import JobStatus

JOB_TYPE = "manuscript_generation"


class TestClaim:
    """测试任务领取."""

    async def test_claim_marks_processing(self, session_factory) -> None:
        """领取后状态为 processing，尝试次数加一."""
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(JOB_TYPE, {"manuscript_id": 1})

        job = await queue.claim_next_pending(JOB_TYPE)

        assert job is not None
        assert job.id == job_id
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        assert job.started_at is not None

    async def test_claim_returns_none_when_empty(self, session_factory) -> None:
        """没有任务时返回 None."""
        queue = JobQueue(session_factory)
        assert await queue.claim_next_pending(JOB_TYPE) is None

    async def test_claim_oldest_first(self, session_factory) -> None:
        """按创建顺序领取."""
        queue = JobQueue(session_factory)
        first = await queue.enqueue(JOB_TYPE, {"n": 1})
        second = await queue.enqueue(JOB_TYPE, {"n": 2})

        claimed_first = await queue.claim_next_pending(JOB_TYPE)
        claimed_second = await queue.claim_next_pending(JOB_TYPE)

        assert claimed_first is not None and claimed_first.id == first
        assert claimed_second is not None and claimed_second.id == second

    async def test_claim_filters_by_type(self, session_factory) -> None:
        """只领取指定类型."""
        queue = JobQueue(session_factory)
        await queue.enqueue("other", {})
        assert await queue.claim_next_pending(JOB_TYPE) is None

    async def test_concurrent_claims_are_exclusive(self, session_factory) -> None:
        """多个调用方同时领取同一个任务，只有一个成功."""
        queue = JobQueue(session_factory, claim_retries=20)
        await queue.enqueue(JOB_TYPE, {"manuscript_id": 1})

        results = await asyncio.gather(
            *(queue.claim_next_pending(JOB_TYPE) for _ in range(8))
        )

        claimed = [job for job in results if job is not None]
        assert len(claimed) == 1

    async def test_concurrent_claims_never_duplicate(self, session_factory) -> None:
        """多个任务并发领取时，每个任务最多被领取一次."""
        queue = JobQueue(session_factory, claim_retries=20)
        for n in range(5):
            await queue.enqueue(JOB_TYPE, {"n": n})

        results = await asyncio.gather(
            *(queue.claim_next_pending(JOB_TYPE) for _ in range(10))
        )

        ids = [job.id for job in results if job is not None]
        assert len(ids) == len(set(ids))
        assert len(ids) <= 5

    async def test_lock_conflict_retried(self, session_factory) -> None:
        """锁冲突时重试."""
        queue = JobQueue(session_factory, claim_retries=3)
        await queue.enqueue(JOB_TYPE, {})
        real_claim = queue._try_claim
        calls = 0

        async def flaky(job_type: str):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise OperationalError("UPDATE", {}, Exception("database is locked"))
            return await real_claim(job_type)

        with patch.object(queue, "_try_claim", side_effect=flaky):
            job = await queue.claim_next_pending(JOB_TYPE)

        assert job is not None
        assert calls == 2

    async def test_lock_conflict_exhausted_raises(self, session_factory) -> None:
        """重试次数用完后抛出异常."""
        queue = JobQueue(session_factory, claim_retries=2)

        async def locked(job_type: str):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        with (
            patch.object(queue, "_try_claim", side_effect=locked),
            pytest.raises(OperationalError),
        ):
            await queue.claim_next_pending(JOB_TYPE)


class TestBoundedRetry:
    """测试重试上限."""

    async def test_exhausted_job_is_not_claimable(self, session_factory) -> None:
        """attempts 达到 max_attempts 的任务不会再被领取."""
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(JOB_TYPE, {}, max_attempts=2)

        for _ in range(2):
            job = await queue.claim_next_pending(JOB_TYPE)
            assert job is not None and job.id == job_id
            await queue.mark_failed(job_id, "boom")
            await queue.requeue(job_id)

        assert await queue.claim_next_pending(JOB_TYPE) is None
        stored = await queue.get(job_id)
        assert stored is not None
        assert stored.attempts == 2


class TestTransitions:
    """测试状态转换."""

    async def test_mark_completed(self, session_factory) -> None:
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(JOB_TYPE, {})
        await queue.claim_next_pending(JOB_TYPE)

        await queue.mark_completed(job_id)

        job = await queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.COMPLETED
        assert job.completed_at is not None

    async def test_mark_failed_keeps_message(self, session_factory) -> None:
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(JOB_TYPE, {})
        await queue.claim_next_pending(JOB_TYPE)

        await queue.mark_failed(job_id, "LLM timeout")

        job = await queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.FAILED
        assert job.error_message == "LLM timeout"

    async def test_terminal_marks_are_idempotent(self, session_factory) -> None:
        """已是终态时再次标记不改变结果."""
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(JOB_TYPE, {})
        await queue.claim_next_pending(JOB_TYPE)
        await queue.mark_completed(job_id)

        await queue.mark_failed(job_id, "late failure")
        await queue.mark_completed(job_id)

        job = await queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.COMPLETED
        assert job.error_message is None

    async def test_requeue_resets_state_keeps_limits(self, session_factory) -> None:
        """requeue 回到 pending，清除错误和时间戳，保留 max_attempts."""
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(JOB_TYPE, {}, max_attempts=5)
        await queue.claim_next_pending(JOB_TYPE)
        await queue.mark_failed(job_id, "boom")

        await queue.requeue(job_id)
        await queue.requeue(job_id)

        job = await queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.PENDING
        assert job.error_message is None
        assert job.started_at is None
        assert job.completed_at is None
        assert job.attempts == 1
        assert job.max_attempts == 5

    async def test_requeue_ignores_completed(self, session_factory) -> None:
        """已完成的任务不会被放回队列."""
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(JOB_TYPE, {})
        await queue.claim_next_pending(JOB_TYPE)
        await queue.mark_completed(job_id)

        await queue.requeue(job_id)

        job = await queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.COMPLETED

    async def test_find_processing(self, session_factory) -> None:
        queue = JobQueue(session_factory)
        job_id = await queue.enqueue(JOB_TYPE, {})
        await queue.enqueue(JOB_TYPE, {})
        await queue.claim_next_pending(JOB_TYPE)

        stale = await queue.find_processing(JOB_TYPE)

        assert [job.id for job in stale] == [job_id]


class TestAddJob:
    """测试在调用方事务中入队."""

    async def test_rolled_back_with_caller(self, session_factory) -> None:
        """调用方回滚时任务不会落库."""
        queue = JobQueue(session_factory)
        async with session_factory() as session:
            job = await add_job(session, JOB_TYPE, {"n": 1})
            assert job.id is not None
            await session.rollback()

        assert await queue.claim_next_pending(JOB_TYPE) is None
