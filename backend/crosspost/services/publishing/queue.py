"""Redis-backed publish queue, one list per platform.

Job metadata lives in a hash keyed by job id; the platform list only carries
ids. Status transitions go through a Lua script so that a job which reached
completed or failed can never be moved again.
"""
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from crosspost.core.config import settings
from crosspost.core.logging import publish_logger as logger
from crosspost.core.metrics import publish_queue_depth_gauge
from crosspost.core.platforms import Platform
from crosspost.db.redis import get_async_redis_client
from crosspost.schemas.posts import JobStatus, PostContent, PublishJobSnapshot

QUEUE_KEY_PREFIX = "publish:queue:"
JOB_KEY_PREFIX = "publish:job:"
PROCESSING_KEY_PREFIX = "publish:processing:"


@dataclass(frozen=True)
class QueuePolicy:
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    timeout_seconds: Optional[float] = None

    def backoff_delay(self, attempts_made: int) -> float:
        """Exponential delay before the next attempt"""
        return self.backoff_seconds * (2 ** max(attempts_made - 1, 0))


DEFAULT_POLICY = QueuePolicy()

QUEUE_POLICIES: Dict[str, QueuePolicy] = {
    Platform.TIKTOK.value: QueuePolicy(max_attempts=3, backoff_seconds=2.0, timeout_seconds=10 * 60),
    # Long server-side processing: fewer, slower retries and a generous ceiling
    Platform.YOUTUBE.value: QueuePolicy(max_attempts=2, backoff_seconds=5.0, timeout_seconds=60 * 60),
}


def get_policy(platform: str) -> QueuePolicy:
    return QUEUE_POLICIES.get(str(platform), DEFAULT_POLICY)


# KEYS[1] = job hash, ARGV[1] = new status, ARGV[2..] = field/value pairs
TRANSITION_SCRIPT = """
local status = redis.call('HGET', KEYS[1], 'status')
if not status then
    return -1
end
if status == 'completed' or status == 'failed' then
    return 0
end
redis.call('HSET', KEYS[1], 'status', ARGV[1])
for i = 2, #ARGV, 2 do
    redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
return 1
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _client():
    client = get_async_redis_client()
    if client is None:
        raise RuntimeError("Async Redis client not available")
    return client


async def _transition(job_id: str, status: JobStatus, **fields) -> int:
    args = [status.value]
    for name, value in fields.items():
        args.extend([name, "" if value is None else str(value)])
    args.extend(["updated_at", _now_iso()])
    return int(await _client().eval(TRANSITION_SCRIPT, 1, f"{JOB_KEY_PREFIX}{job_id}", *args))


async def _update_depth(platform: str):
    depth = await _client().llen(f"{QUEUE_KEY_PREFIX}{platform}")
    publish_queue_depth_gauge.labels(platform=str(platform)).set(depth)


async def enqueue_job(platform: str, content: PostContent, policy: QueuePolicy = None) -> str:
    """Persist a new job and push it onto the platform queue"""
    platform = str(platform)
    policy = policy or get_policy(platform)
    job_id = str(uuid.uuid4())
    now = _now_iso()

    client = _client()
    job_key = f"{JOB_KEY_PREFIX}{job_id}"
    await client.hset(job_key, mapping={
        "id": job_id,
        "platform": platform,
        "status": JobStatus.QUEUED.value,
        "attempts": "0",
        "max_attempts": str(policy.max_attempts),
        "backoff_seconds": str(policy.backoff_seconds),
        "timeout_seconds": "" if policy.timeout_seconds is None else str(policy.timeout_seconds),
        "payload": content.model_dump_json(),
        "created_at": now,
        "updated_at": now,
    })
    await client.expire(job_key, settings.PUBLISH_JOB_TTL_SECONDS)
    await client.lpush(f"{QUEUE_KEY_PREFIX}{platform}", job_id)
    await _update_depth(platform)

    logger.info(f"Enqueued {platform} job {job_id} (max_attempts={policy.max_attempts})")
    return job_id


def _snapshot(meta: Dict[str, Any]) -> PublishJobSnapshot:
    return PublishJobSnapshot(
        id=meta["id"],
        platform=meta["platform"],
        status=meta["status"],
        attempts=int(meta.get("attempts") or 0),
        max_attempts=int(meta.get("max_attempts") or DEFAULT_POLICY.max_attempts),
        payload=PostContent.model_validate_json(meta["payload"]),
        result=json.loads(meta["result"]) if meta.get("result") else None,
        failure_reason=meta.get("failure_reason") or None,
        created_at=meta.get("created_at"),
        updated_at=meta.get("updated_at"),
        retry_after=float(meta["retry_after"]) if meta.get("retry_after") else None,
        timeout_seconds=float(meta["timeout_seconds"]) if meta.get("timeout_seconds") else None,
    )


async def get_job(job_id: str) -> Optional[PublishJobSnapshot]:
    if not job_id:
        return None
    meta = await _client().hgetall(f"{JOB_KEY_PREFIX}{job_id}")
    if not meta:
        return None
    return _snapshot(meta)


async def dequeue_job(platform: str, timeout: int = 5) -> Optional[PublishJobSnapshot]:
    """Block until a job id is available on the platform queue"""
    platform = str(platform)
    result = await _client().brpop(f"{QUEUE_KEY_PREFIX}{platform}", timeout=timeout)
    if result is None:
        return None

    _, job_id = result
    client = _client()
    processing_key = f"{PROCESSING_KEY_PREFIX}{platform}"
    # Claimed from here on: a worker stopping during the backoff wait leaves the id recoverable
    await client.sadd(processing_key, job_id)
    await _update_depth(platform)
    job = await get_job(job_id)
    if job is None:
        await client.srem(processing_key, job_id)
        logger.warning(f"Dropping {platform} job {job_id}: metadata expired or missing")
        return None
    if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
        await client.srem(processing_key, job_id)
        logger.warning(f"Skipping {platform} job {job_id}: already {job.status.value}")
        return None
    return job


async def mark_job_in_progress(job_id: str, platform: str) -> Optional[int]:
    """Start an attempt; returns the attempt number or None for terminal jobs"""
    if await _transition(job_id, JobStatus.IN_PROGRESS, started_at=_now_iso(), retry_after=None) != 1:
        return None
    client = _client()
    attempts = await client.hincrby(f"{JOB_KEY_PREFIX}{job_id}", "attempts", 1)
    await client.sadd(f"{PROCESSING_KEY_PREFIX}{platform}", job_id)
    return int(attempts)


async def mark_job_completed(job_id: str, platform: str, result: Dict[str, Any]) -> bool:
    changed = await _transition(
        job_id, JobStatus.COMPLETED, result=json.dumps(result), failure_reason=None, completed_at=_now_iso()
    )
    await _client().srem(f"{PROCESSING_KEY_PREFIX}{platform}", job_id)
    if changed == 1:
        logger.info(f"{platform} job {job_id} completed: {result.get('url')}")
    return changed == 1


async def mark_job_failed(job_id: str, platform: str, error: str, retry: bool = True) -> Optional[float]:
    """Record a failed attempt.

    Re-queues the job with exponential backoff while attempts remain and
    retry is allowed; otherwise the job becomes terminally failed. Returns
    the retry timestamp (epoch seconds) or None when the job is terminal.
    """
    client = _client()
    job_key = f"{JOB_KEY_PREFIX}{job_id}"
    await client.srem(f"{PROCESSING_KEY_PREFIX}{platform}", job_id)

    meta = await client.hgetall(job_key)
    if not meta:
        logger.warning(f"Job {job_id} metadata not found")
        return None

    attempts = int(meta.get("attempts") or 0)
    max_attempts = int(meta.get("max_attempts") or DEFAULT_POLICY.max_attempts)
    policy = QueuePolicy(max_attempts=max_attempts, backoff_seconds=float(meta.get("backoff_seconds") or 2.0))

    if retry and attempts < max_attempts:
        delay = policy.backoff_delay(attempts)
        retry_after = time.time() + delay
        if await _transition(job_id, JobStatus.QUEUED, failure_reason=error, retry_after=retry_after) != 1:
            return None
        await client.lpush(f"{QUEUE_KEY_PREFIX}{platform}", job_id)
        await _update_depth(platform)
        logger.info(
            f"{platform} job {job_id} failed (attempt {attempts}/{max_attempts}), retrying in {delay:.0f}s: {error}"
        )
        return retry_after

    await _transition(job_id, JobStatus.FAILED, failure_reason=error, failed_at=_now_iso())
    logger.warning(f"{platform} job {job_id} failed permanently after {attempts} attempt(s): {error}")
    return None


async def get_processing_jobs(platform: str) -> List[str]:
    return list(await _client().smembers(f"{PROCESSING_KEY_PREFIX}{platform}"))


async def requeue_stale_jobs(platform: str) -> int:
    """Recover jobs claimed by a worker that stopped.

    A job still queued was waiting out its backoff and goes back on the list
    as is. A job in progress counts as a failed attempt: media containers are
    never resumed, so it goes through the normal retry policy.
    """
    client = _client()
    processing_key = f"{PROCESSING_KEY_PREFIX}{platform}"
    requeued = 0
    for job_id in await get_processing_jobs(platform):
        job = await get_job(job_id)
        if job is None or job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
            await client.srem(processing_key, job_id)
            continue

        if job.status == JobStatus.QUEUED:
            logger.warning(f"Re-queueing {platform} job {job_id} claimed by a previous worker before it started")
            await client.srem(processing_key, job_id)
            await client.lpush(f"{QUEUE_KEY_PREFIX}{platform}", job_id)
            await _update_depth(platform)
        else:
            logger.warning(f"Recovering {platform} job {job_id} left in progress by a previous worker")
            await mark_job_failed(job_id, platform, "Worker stopped while the job was in progress", retry=True)
        requeued += 1
    return requeued


async def queue_depth(platform: str) -> int:
    return int(await _client().llen(f"{QUEUE_KEY_PREFIX}{platform}"))
