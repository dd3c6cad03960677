"""Publish entry points: validate, enqueue, look up status"""
from typing import List

from crosspost.core.logging import publish_logger as logger
from crosspost.core.metrics import publish_jobs_counter
from crosspost.schemas.posts import JobStatus, PostContent, PostResult, PostStatus
from crosspost.services.publishing import queue
from crosspost.services.publishing.validators import validate_content

_JOB_TO_POST_STATUS = {
    JobStatus.COMPLETED: PostStatus.POSTED,
    JobStatus.FAILED: PostStatus.FAILED,
}


async def enqueue_post(platform: str, content: PostContent) -> PostResult:
    """Validate content for a platform and queue it.

    Invalid content is rejected synchronously: the result is failed, has no
    job id, and nothing is queued.
    """
    errors = validate_content(platform, content)
    if errors:
        message = ", ".join(errors)
        logger.info(f"Rejected {platform} post: {message}")
        publish_jobs_counter.labels(platform=str(platform), status="rejected").inc()
        return PostResult(job_id=None, status=PostStatus.FAILED, platform=platform, error=message)

    job_id = await queue.enqueue_job(platform, content)
    return PostResult(job_id=job_id, status=PostStatus.QUEUED, platform=platform)


async def enqueue_post_many(platforms: List[str], content: PostContent) -> List[PostResult]:
    """Fan the same content out to several platforms, one independent job each"""
    results = []
    for platform in dict.fromkeys(str(p) for p in platforms):
        try:
            results.append(await enqueue_post(platform, content))
        except Exception as e:
            # One platform's queue failing must not hide the others' results
            logger.error(f"Failed to enqueue {platform} post: {e}", exc_info=True)
            results.append(PostResult(status=PostStatus.FAILED, platform=platform, error=str(e)))
    return results


async def get_post_status(platform: str, job_id: str, user_id: str = None) -> PostResult:
    job = await queue.get_job(job_id)
    if job is None or job.platform.value != str(platform) or (user_id and job.payload.user_id != str(user_id)):
        return PostResult(job_id=job_id, status=PostStatus.FAILED, platform=platform, error="Job not found")

    result = job.result or {}
    return PostResult(
        job_id=job.id,
        status=_JOB_TO_POST_STATUS.get(job.status, PostStatus.QUEUED),
        platform=job.platform,
        post_id=result.get("post_id"),
        url=result.get("url"),
        error=job.failure_reason if job.status == JobStatus.FAILED else None,
    )


async def get_job(job_id: str):
    """Full job snapshot (attempts, failure reason, raw result) or None"""
    return await queue.get_job(job_id)
