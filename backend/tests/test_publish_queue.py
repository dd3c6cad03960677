"""Publish queue and service tests against fakeredis"""
import time

import pytest

from crosspost.schemas.posts import JobStatus, PostContent, PostStatus
from crosspost.services.publishing import queue
from crosspost.services.publishing.service import enqueue_post, enqueue_post_many, get_job, get_post_status


def _content(text="Hello world", user_id="user-1"):
    return PostContent(text=text, metadata={"user_id": user_id})


@pytest.mark.critical
class TestEnqueue:
    """Test validation and enqueueing"""

    @pytest.mark.asyncio
    async def test_valid_post_is_queued(self, async_redis):
        """Test a valid post creates a queued job"""
        result = await enqueue_post("twitter", _content())

        assert result.status == PostStatus.QUEUED
        assert result.job_id
        assert await queue.queue_depth("twitter") == 1
        job = await queue.get_job(result.job_id)
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.payload.text == "Hello world"
        assert await async_redis.ttl(f"{queue.JOB_KEY_PREFIX}{result.job_id}") > 0

    @pytest.mark.asyncio
    async def test_invalid_post_is_never_queued(self, async_redis):
        """Test validation failures short-circuit before Redis"""
        result = await enqueue_post("twitter", _content("x" * 281))

        assert result.status == PostStatus.FAILED
        assert result.job_id is None
        assert "character limit" in result.error
        assert await queue.queue_depth("twitter") == 0

    @pytest.mark.asyncio
    async def test_fan_out_is_independent(self, async_redis):
        """Test one platform's rejection does not block the others"""
        results = await enqueue_post_many(["twitter", "tiktok", "linkedin"], _content())

        statuses = {result.platform.value: result.status for result in results}
        assert statuses == {
            "twitter": PostStatus.QUEUED,
            "tiktok": PostStatus.FAILED,
            "linkedin": PostStatus.QUEUED,
        }
        assert await queue.queue_depth("tiktok") == 0

    @pytest.mark.asyncio
    async def test_platform_policies(self, async_redis):
        """Test per-platform retry budgets and timeouts"""
        youtube = queue.get_policy("youtube")
        assert (youtube.max_attempts, youtube.backoff_seconds, youtube.timeout_seconds) == (2, 5.0, 3600)
        assert queue.get_policy("tiktok").timeout_seconds == 600
        assert queue.get_policy("twitter").timeout_seconds is None
        assert [queue.get_policy("twitter").backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

        job_id = await queue.enqueue_job("youtube", _content())
        job = await queue.get_job(job_id)
        assert job.max_attempts == 2
        assert job.timeout_seconds == 3600


@pytest.mark.critical
class TestJobLifecycle:
    """Test status transitions and retries"""

    @pytest.mark.asyncio
    async def test_dequeue_and_complete(self, async_redis):
        """Test the happy path"""
        job_id = await queue.enqueue_job("twitter", _content())

        job = await queue.dequeue_job("twitter", timeout=1)
        assert job.id == job_id
        assert await queue.mark_job_in_progress(job_id, "twitter") == 1
        assert await queue.get_processing_jobs("twitter") == [job_id]

        assert await queue.mark_job_completed(job_id, "twitter", {"post_id": "99", "url": "https://x/99"}) is True
        assert await queue.get_processing_jobs("twitter") == []

        status = await get_post_status("twitter", job_id)
        assert status.status == PostStatus.POSTED
        assert status.post_id == "99"
        assert status.url == "https://x/99"

    @pytest.mark.asyncio
    async def test_failure_retries_with_backoff(self, async_redis):
        """Test a failed attempt is re-queued with exponential delay"""
        job_id = await queue.enqueue_job("twitter", _content())
        await queue.dequeue_job("twitter", timeout=1)
        await queue.mark_job_in_progress(job_id, "twitter")

        before = time.time()
        retry_after = await queue.mark_job_failed(job_id, "twitter", "boom")

        assert retry_after == pytest.approx(before + 2.0, abs=1.0)
        job = await queue.get_job(job_id)
        assert job.status == JobStatus.QUEUED
        assert job.failure_reason == "boom"
        assert await queue.queue_depth("twitter") == 1
        assert (await get_post_status("twitter", job_id)).status == PostStatus.QUEUED

    @pytest.mark.asyncio
    async def test_attempts_exhausted_is_terminal(self, async_redis):
        """Test the job fails for good once its attempts are used up"""
        job_id = await queue.enqueue_job("youtube", _content())
        for _ in range(2):
            await queue.dequeue_job("youtube", timeout=1)
            await queue.mark_job_in_progress(job_id, "youtube")
            last = await queue.mark_job_failed(job_id, "youtube", "processing failed")

        assert last is None
        job = await queue.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 2
        status = await get_post_status("youtube", job_id)
        assert status.status == PostStatus.FAILED
        assert status.error == "processing failed"

    @pytest.mark.asyncio
    async def test_non_retryable_failure(self, async_redis):
        """Test retry=False fails on the first attempt"""
        job_id = await queue.enqueue_job("twitter", _content())
        await queue.mark_job_in_progress(job_id, "twitter")
        assert await queue.mark_job_failed(job_id, "twitter", "reconnect", retry=False) is None
        assert (await queue.get_job(job_id)).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_terminal_jobs_are_immutable(self, async_redis):
        """Test completed jobs cannot be restarted, failed or re-completed"""
        job_id = await queue.enqueue_job("twitter", _content())
        await queue.mark_job_in_progress(job_id, "twitter")
        await queue.mark_job_completed(job_id, "twitter", {"post_id": "1"})

        assert await queue.mark_job_in_progress(job_id, "twitter") is None
        assert await queue.mark_job_completed(job_id, "twitter", {"post_id": "2"}) is False
        await queue.mark_job_failed(job_id, "twitter", "late failure", retry=False)

        job = await queue.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"post_id": "1"}
        assert job.failure_reason is None

    @pytest.mark.asyncio
    async def test_dequeue_skips_terminal_jobs(self, async_redis):
        """Test stale queue entries for finished jobs are dropped"""
        job_id = await queue.enqueue_job("twitter", _content())
        await queue.mark_job_in_progress(job_id, "twitter")
        await queue.mark_job_completed(job_id, "twitter", {"post_id": "1"})
        await async_redis.lpush(f"{queue.QUEUE_KEY_PREFIX}twitter", job_id)

        await queue.dequeue_job("twitter", timeout=1)
        assert await queue.dequeue_job("twitter", timeout=1) is None

    @pytest.mark.asyncio
    async def test_stale_in_progress_jobs_are_recovered(self, async_redis):
        """Test jobs orphaned by a dead worker go back through the retry policy"""
        job_id = await queue.enqueue_job("twitter", _content())
        await queue.dequeue_job("twitter", timeout=1)
        await queue.mark_job_in_progress(job_id, "twitter")

        assert await queue.requeue_stale_jobs("twitter") == 1
        job = await queue.get_job(job_id)
        assert job.status == JobStatus.QUEUED
        assert await queue.queue_depth("twitter") == 1

    @pytest.mark.asyncio
    async def test_claimed_job_waiting_for_retry_is_recovered(self, async_redis):
        """Test a job dequeued during its backoff wait is re-queued without charging an attempt"""
        job_id = await queue.enqueue_job("twitter", _content())
        await queue.dequeue_job("twitter", timeout=1)
        await queue.mark_job_in_progress(job_id, "twitter")
        await queue.mark_job_failed(job_id, "twitter", "boom")

        await queue.dequeue_job("twitter", timeout=1)
        assert await queue.get_processing_jobs("twitter") == [job_id]
        assert await queue.queue_depth("twitter") == 0

        assert await queue.requeue_stale_jobs("twitter") == 1
        job = await queue.get_job(job_id)
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 1
        assert job.failure_reason == "boom"
        assert await queue.queue_depth("twitter") == 1
        assert await queue.get_processing_jobs("twitter") == []


@pytest.mark.high
class TestStatusLookup:
    """Test status lookups for unknown or foreign jobs"""

    @pytest.mark.asyncio
    async def test_unknown_job(self, async_redis):
        """Test a missing job reports Job not found"""
        result = await get_post_status("twitter", "does-not-exist")
        assert result.status == PostStatus.FAILED
        assert result.error == "Job not found"

    @pytest.mark.asyncio
    async def test_platform_mismatch(self, async_redis):
        """Test a job cannot be read through another platform"""
        job_id = await queue.enqueue_job("twitter", _content())
        assert (await get_post_status("linkedin", job_id)).error == "Job not found"

    @pytest.mark.asyncio
    async def test_owner_mismatch(self, async_redis):
        """Test other users cannot read a job"""
        job_id = await queue.enqueue_job("twitter", _content(user_id="user-1"))
        assert (await get_post_status("twitter", job_id, user_id="user-2")).error == "Job not found"
        assert (await get_post_status("twitter", job_id, user_id="user-1")).status == PostStatus.QUEUED

    @pytest.mark.asyncio
    async def test_get_job_returns_full_snapshot(self, async_redis):
        """Test get_job exposes attempts and policy, and None for unknown ids"""
        job_id = await queue.enqueue_job("youtube", _content())

        job = await get_job(job_id)
        assert job.id == job_id
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 0
        assert job.max_attempts == 2
        assert job.payload.user_id == "user-1"
        assert await get_job("does-not-exist") is None
