"""Background workers that drain the per-platform publish queues.

Each platform gets its own dispatch loop. A loop pulls one job id at a
time, bounded by a semaphore, and runs every job as a separate asyncio task
so slow media processing on one job never blocks the others.
"""
import asyncio
import time
from typing import Callable, Iterable, List, Optional

import httpx

from crosspost.core.config import settings
from crosspost.core.exceptions import (
    ContentValidationError,
    JobTimeoutError,
    NotConfiguredError,
    NotConnectedError,
    ReauthenticationRequired,
    TokenRefreshError,
)
from crosspost.core.logging import worker_logger as logger
from crosspost.core.metrics import publish_jobs_counter
from crosspost.core.platforms import Platform
from crosspost.schemas.posts import PublishJobSnapshot
from crosspost.services.oauth.token_manager import TokenManager, get_token_manager
from crosspost.services.oauth.types import CredentialRef
from crosspost.services.publishing import queue
from crosspost.services.publishing.platforms.base import PublishCredentials
from crosspost.services.publishing.platforms.registry import get_publisher
from crosspost.services.publishing.validators import validate_content

# Retrying cannot fix these; the job fails on the first occurrence
NON_RETRYABLE_ERRORS = (
    ContentValidationError,
    JobTimeoutError,
    ReauthenticationRequired,
    TokenRefreshError,
    NotConnectedError,
    NotConfiguredError,
)


def _default_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.PUBLISH_HTTP_TIMEOUT_SECONDS)


async def process_publish_job(
    job: PublishJobSnapshot,
    token_manager: Optional[TokenManager] = None,
    http_client_factory: Callable[[], httpx.AsyncClient] = _default_http_client,
    publisher=None,
) -> None:
    """Run one attempt of a job and record the outcome"""
    platform = job.platform.value
    attempt = await queue.mark_job_in_progress(job.id, platform)
    if attempt is None:
        logger.info(f"Job {job.id} is already terminal, skipping")
        return

    content = job.payload
    publisher = publisher or get_publisher(platform)
    logger.info(f"Processing {platform} job {job.id} (attempt {attempt}/{job.max_attempts})")

    try:
        # Queued payloads are re-checked before any remote call
        errors = validate_content(platform, content)
        if errors:
            raise ContentValidationError(errors)

        async with http_client_factory() as client:
            credentials = None
            if publisher.requires_oauth:
                ref = CredentialRef(content.user_id, platform, content.account_id)
                credentials = await PublishCredentials.resolve(token_manager or get_token_manager(), ref)

            publish = publisher.publish(client, content, credentials)
            if job.timeout_seconds:
                try:
                    result = await asyncio.wait_for(publish, timeout=job.timeout_seconds)
                except asyncio.TimeoutError as e:
                    raise JobTimeoutError(job.timeout_seconds) from e
            else:
                result = await publish

        await queue.mark_job_completed(job.id, platform, result.to_dict())
        publish_jobs_counter.labels(platform=platform, status="posted").inc()

    except JobTimeoutError as e:
        # Hard ceiling: in-flight remote work is abandoned, not retried
        logger.error(f"{platform} job {job.id}: {e}")
        await queue.mark_job_failed(job.id, platform, str(e), retry=False)
        publish_jobs_counter.labels(platform=platform, status="failed").inc()

    except NON_RETRYABLE_ERRORS as e:
        logger.warning(f"{platform} job {job.id} cannot succeed: {e}")
        await queue.mark_job_failed(job.id, platform, str(e), retry=False)
        publish_jobs_counter.labels(platform=platform, status="failed").inc()

    except Exception as e:
        logger.error(f"{platform} job {job.id} attempt {attempt} failed: {e}", exc_info=True)
        if await queue.mark_job_failed(job.id, platform, str(e), retry=True) is None:
            publish_jobs_counter.labels(platform=platform, status="failed").inc()


async def _run_job(job: PublishJobSnapshot, semaphore: asyncio.Semaphore, **kwargs) -> None:
    holding = True
    try:
        delay = (job.retry_after - time.time()) if job.retry_after else 0
        if delay > 0:
            # Don't hold a worker slot through the backoff
            semaphore.release()
            holding = False
            logger.info(f"Job {job.id} waiting {delay:.1f}s before retry")
            await asyncio.sleep(delay)
            await semaphore.acquire()
            holding = True
        await process_publish_job(job, **kwargs)
    except Exception as e:
        logger.error(f"Unhandled error running job {job.id}: {e}", exc_info=True)
    finally:
        if holding:
            semaphore.release()


async def publish_worker_loop(platform: str, concurrency: int = None, **job_kwargs) -> None:
    """Dispatch loop for one platform queue"""
    platform = str(platform)
    semaphore = asyncio.Semaphore(concurrency or settings.PUBLISH_WORKER_CONCURRENCY)
    in_flight = set()

    recovered = await queue.requeue_stale_jobs(platform)
    if recovered:
        logger.warning(f"Recovered {recovered} interrupted {platform} job(s)")
    logger.info(f"Starting {platform} publish worker")

    try:
        while True:
            await semaphore.acquire()
            try:
                job = await queue.dequeue_job(platform, timeout=5)
            except asyncio.CancelledError:
                semaphore.release()
                raise
            except Exception as e:
                semaphore.release()
                logger.error(f"Error dequeuing {platform} job: {e}", exc_info=True)
                await asyncio.sleep(5)
                continue

            if job is None:
                semaphore.release()
                continue

            task = asyncio.create_task(_run_job(job, semaphore, **job_kwargs))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
    finally:
        for task in list(in_flight):
            task.cancel()


def start_publish_workers(platforms: Iterable[str] = None, **job_kwargs) -> List[asyncio.Task]:
    platforms = list(platforms) if platforms is not None else [p.value for p in Platform]
    return [
        asyncio.create_task(publish_worker_loop(platform, **job_kwargs), name=f"publish-worker-{platform}")
        for platform in platforms
    ]


async def stop_publish_workers(tasks: List[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
