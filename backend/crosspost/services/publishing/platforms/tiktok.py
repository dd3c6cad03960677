"""TikTok Content Posting API (direct post, pulled from a public URL)"""
import logging

from crosspost.core.exceptions import ProviderError, PublishFailedError
from crosspost.core.platforms import Platform
from crosspost.services.oauth.providers.tiktok import TIKTOK_API_BASE
from crosspost.services.publishing.container import (
    VIDEO_POLL_POLICY,
    ContainerClient,
    ContainerPublishFlow,
    ContainerState,
    ContainerStatus,
)
from crosspost.services.publishing.platforms.base import BasePublisher, PublishResult, check_response

tiktok_logger = logging.getLogger("tiktok")

TIKTOK_INIT_URL = f"{TIKTOK_API_BASE}/post/publish/video/init/"
TIKTOK_STATUS_URL = f"{TIKTOK_API_BASE}/post/publish/status/fetch/"
DEFAULT_PRIVACY_LEVEL = "SELF_ONLY"


class TikTokContainerClient(ContainerClient):
    """The publish_id returned by init plays the role of the container"""

    def __init__(self, client, credentials, content):
        self.client = client
        self.credentials = credentials
        self.content = content

    async def _post(self, url: str, body: dict, action: str) -> dict:
        token = await self.credentials.access_token()
        response = await self.client.post(
            url,
            json=body,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json; charset=UTF-8"},
        )
        check_response(response, f"TikTok {action} failed", tiktok_logger)
        payload = response.json()
        error = payload.get("error") or {}
        if error.get("code") not in (None, "", "ok"):
            raise ProviderError(f"TikTok {action} failed: {error.get('code')} - {error.get('message')}",
                                status_code=response.status_code, body=response.text)
        return payload.get("data") or {}

    async def create_container(self) -> str:
        metadata = self.content.metadata
        video = self.content.videos()[0]
        body = {
            "post_info": {
                "title": self.content.text or "",
                "privacy_level": metadata.get("privacy_level", DEFAULT_PRIVACY_LEVEL),
                "disable_comment": bool(metadata.get("disable_comment", False)),
                "disable_duet": bool(metadata.get("disable_duet", False)),
                "disable_stitch": bool(metadata.get("disable_stitch", False)),
            },
            "source_info": {"source": "PULL_FROM_URL", "video_url": video.url},
        }
        data = await self._post(TIKTOK_INIT_URL, body, "publish init")
        publish_id = data.get("publish_id")
        if not publish_id:
            raise PublishFailedError(f"TikTok returned no publish_id: {data}")
        return publish_id

    async def get_status(self, container_id: str) -> ContainerState:
        data = await self._post(TIKTOK_STATUS_URL, {"publish_id": container_id}, "status check")
        status = data.get("status")
        if status in ("PUBLISH_COMPLETE", "SEND_TO_USER_INBOX"):
            post_ids = data.get("publicaly_available_post_id") or []
            return ContainerState(
                status=ContainerStatus.PUBLISHED,
                post_id=str(post_ids[0]) if post_ids else None,
            )
        if status == "FAILED":
            return ContainerState(status=ContainerStatus.ERROR, reason=data.get("fail_reason"))
        return ContainerState(status=ContainerStatus.IN_PROGRESS)

    async def publish_container(self, container_id: str) -> str:
        # Direct post publishes as soon as processing completes
        return container_id

    def fallback_url(self, post_id: str) -> str:
        username = self.credentials.account_name or ""
        return f"https://www.tiktok.com/@{username}/video/{post_id}"


class TikTokPublisher(BasePublisher):
    platform = Platform.TIKTOK.value

    def __init__(self, sleep=None):
        self._sleep = sleep

    async def publish(self, client, content, credentials) -> PublishResult:
        flow = ContainerPublishFlow(TikTokContainerClient(client, credentials, content), VIDEO_POLL_POLICY,
                                    sleep=self._sleep, logger=tiktok_logger)
        return await flow.run()
