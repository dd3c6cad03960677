"""Create -> poll -> publish -> resolve flow for asynchronously processed media.

Instagram, TikTok and YouTube do not publish synchronously: media is staged
in a server-side container that has to finish processing before the post
exists. ContainerPublishFlow drives that sequence with a bounded number of
polls. It keeps no state between job attempts; every retry creates a new
container, since an old one may have expired on the platform side.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from crosspost.core.exceptions import ProviderError, PublishFailedError, PublishTimeoutError
from crosspost.services.publishing.platforms.base import PublishResult


class ContainerStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    ERROR = "error"
    EXPIRED = "expired"
    PUBLISHED = "published"


class FlowState(str, Enum):
    CREATED = "created"
    POLLING = "polling"
    READY = "ready"
    PUBLISHED = "published"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass
class ContainerState:
    status: ContainerStatus
    reason: Optional[str] = None
    # Set when the platform reports the post id alongside a published status
    post_id: Optional[str] = None


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float
    max_attempts: int


IMAGE_POLL_POLICY = PollPolicy(interval_seconds=2.0, max_attempts=30)
VIDEO_POLL_POLICY = PollPolicy(interval_seconds=5.0, max_attempts=60)


class ContainerClient(ABC):
    """Platform adapter for the four remote phases"""

    @abstractmethod
    async def create_container(self) -> str:
        pass

    @abstractmethod
    async def get_status(self, container_id: str) -> ContainerState:
        pass

    @abstractmethod
    async def publish_container(self, container_id: str) -> str:
        """Finalize the post and return its id"""
        pass

    async def get_permalink(self, post_id: str) -> Optional[str]:
        return None

    @abstractmethod
    def fallback_url(self, post_id: str) -> str:
        pass


class ContainerPublishFlow:
    def __init__(
        self,
        client: ContainerClient,
        poll_policy: PollPolicy,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        logger: logging.Logger = None,
    ):
        self.client = client
        self.poll_policy = poll_policy
        self._sleep = sleep or asyncio.sleep
        self.logger = logger or logging.getLogger("publish")
        self.state: Optional[FlowState] = None
        self.container_id: Optional[str] = None
        self.polls = 0

    async def run(self) -> PublishResult:
        # Create failures go straight to the job-level retry policy
        self.container_id = await self.client.create_container()
        self.state = FlowState.CREATED
        self.logger.info(f"Created media container {self.container_id}")

        ready = await self.wait_until_ready(self.container_id)

        if ready.status == ContainerStatus.PUBLISHED:
            post_id = ready.post_id or self.container_id
            self.logger.info(f"Container {self.container_id} already published as {post_id}")
        else:
            self.state = FlowState.READY
            try:
                post_id = await self.client.publish_container(self.container_id)
            except (ProviderError, httpx.HTTPError) as e:
                self.state = FlowState.FAILED
                raise PublishFailedError(f"Publishing container {self.container_id} failed: {e}") from e

        self.state = FlowState.PUBLISHED
        return PublishResult(post_id=post_id, url=await self.resolve_url(post_id))

    async def wait_until_ready(self, container_id: str) -> ContainerState:
        self.state = FlowState.POLLING
        policy = self.poll_policy

        for attempt in range(1, policy.max_attempts + 1):
            self.polls = attempt
            current = await self.client.get_status(container_id)

            if current.status in (ContainerStatus.FINISHED, ContainerStatus.PUBLISHED):
                return current
            if current.status in (ContainerStatus.ERROR, ContainerStatus.EXPIRED):
                self.state = FlowState.FAILED
                reason = current.reason or current.status.value
                self.logger.error(
                    f"Container {container_id} {current.status.value}: {reason}",
                    extra={"container_id": container_id, "poll_attempt": attempt},
                )
                raise PublishFailedError(f"Media processing failed ({current.status.value}): {reason}")

            self.logger.debug(f"Container {container_id} still processing ({attempt}/{policy.max_attempts})")
            if attempt < policy.max_attempts:
                await self._sleep(policy.interval_seconds)

        self.state = FlowState.TIMEOUT
        raise PublishTimeoutError(
            f"Media container {container_id} was not ready after {policy.max_attempts} status checks "
            f"({policy.interval_seconds:g}s apart)"
        )

    async def resolve_url(self, post_id: str) -> str:
        try:
            permalink = await self.client.get_permalink(post_id)
        except (ProviderError, httpx.HTTPError) as e:
            self.logger.warning(f"Permalink lookup for {post_id} failed, using fallback URL: {e}")
            permalink = None
        return permalink or self.client.fallback_url(post_id)
