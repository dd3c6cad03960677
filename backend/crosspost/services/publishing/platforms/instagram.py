"""Instagram publishing through the Graph API content publishing flow"""
import logging
from typing import List, Optional

from crosspost.core.config import META_GRAPH_API_BASE
from crosspost.core.exceptions import PublishFailedError
from crosspost.core.platforms import Platform
from crosspost.schemas.posts import MediaAttachment, MediaType
from crosspost.services.publishing.container import (
    IMAGE_POLL_POLICY,
    VIDEO_POLL_POLICY,
    ContainerClient,
    ContainerPublishFlow,
    ContainerState,
    ContainerStatus,
)
from crosspost.services.publishing.platforms.base import BasePublisher, PublishResult, check_response

instagram_logger = logging.getLogger("instagram")

_STATUS_CODES = {
    "FINISHED": ContainerStatus.FINISHED,
    "PUBLISHED": ContainerStatus.PUBLISHED,
    "ERROR": ContainerStatus.ERROR,
    "EXPIRED": ContainerStatus.EXPIRED,
}


class InstagramContainerClient(ContainerClient):
    def __init__(self, client, credentials, content, sleep=None):
        self.client = client
        self.credentials = credentials
        self.content = content
        self.ig_user_id = credentials.account_id
        self._sleep = sleep

    async def _graph(self, method: str, path: str, action: str, **params) -> dict:
        params["access_token"] = await self.credentials.access_token()
        response = await self.client.request(method, f"{META_GRAPH_API_BASE}/{path}", params=params)
        check_response(response, f"Instagram {action} failed", instagram_logger)
        return response.json()

    def _media_params(self, item: MediaAttachment, carousel_item: bool = False) -> dict:
        if item.type == MediaType.VIDEO:
            params = {"video_url": item.url, "media_type": "VIDEO" if carousel_item else "REELS"}
        else:
            params = {"image_url": item.url}
        if carousel_item:
            params["is_carousel_item"] = "true"
        else:
            params["caption"] = self.content.text or ""
        return params

    async def _create(self, params: dict) -> str:
        data = await self._graph("POST", f"{self.ig_user_id}/media", "container creation", **params)
        container_id = data.get("id")
        if not container_id:
            raise PublishFailedError(f"Instagram returned no container id: {data}")
        return container_id

    async def create_container(self) -> str:
        media = self.content.media
        if len(media) == 1:
            return await self._create(self._media_params(media[0]))

        # Carousel: children have to finish processing before the parent is created
        children: List[str] = []
        for item in media:
            child_id = await self._create(self._media_params(item, carousel_item=True))
            child_flow = ContainerPublishFlow(self, _poll_policy_for([item]), sleep=self._sleep,
                                              logger=instagram_logger)
            await child_flow.wait_until_ready(child_id)
            children.append(child_id)
        return await self._create({
            "media_type": "CAROUSEL",
            "children": ",".join(children),
            "caption": self.content.text or "",
        })

    async def get_status(self, container_id: str) -> ContainerState:
        data = await self._graph("GET", container_id, "container status", fields="status_code,status")
        status_code = (data.get("status_code") or "").upper()
        return ContainerState(
            status=_STATUS_CODES.get(status_code, ContainerStatus.IN_PROGRESS),
            reason=data.get("status"),
        )

    async def publish_container(self, container_id: str) -> str:
        data = await self._graph("POST", f"{self.ig_user_id}/media_publish", "publish", creation_id=container_id)
        media_id = data.get("id")
        if not media_id:
            raise PublishFailedError(f"Instagram returned no media id: {data}")
        return media_id

    async def get_permalink(self, post_id: str) -> Optional[str]:
        data = await self._graph("GET", post_id, "permalink lookup", fields="permalink")
        return data.get("permalink")

    def fallback_url(self, post_id: str) -> str:
        return f"https://www.instagram.com/p/{post_id}"


def _poll_policy_for(media: List[MediaAttachment]):
    if any(item.type == MediaType.VIDEO for item in media):
        return VIDEO_POLL_POLICY
    return IMAGE_POLL_POLICY


class InstagramPublisher(BasePublisher):
    platform = Platform.INSTAGRAM.value

    def __init__(self, sleep=None):
        self._sleep = sleep

    async def publish(self, client, content, credentials) -> PublishResult:
        if not credentials.account_id:
            raise PublishFailedError("Instagram connection has no business account id; reconnect Instagram")
        container_client = InstagramContainerClient(client, credentials, content, sleep=self._sleep)
        flow = ContainerPublishFlow(container_client, _poll_policy_for(content.media),
                                    sleep=self._sleep, logger=instagram_logger)
        result = await flow.run()
        instagram_logger.info(f"Published Instagram media {result.post_id} after {flow.polls} status check(s)")
        return result
