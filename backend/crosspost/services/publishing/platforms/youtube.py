"""YouTube uploads via the Data API v3 resumable upload protocol"""
import json
import logging

from crosspost.core.exceptions import PublishFailedError
from crosspost.core.platforms import Platform
from crosspost.services.publishing.container import (
    VIDEO_POLL_POLICY,
    ContainerClient,
    ContainerPublishFlow,
    ContainerState,
    ContainerStatus,
)
from crosspost.services.publishing.media import download_media
from crosspost.services.publishing.platforms.base import BasePublisher, PublishResult, check_response

youtube_logger = logging.getLogger("youtube")

YOUTUBE_UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
YOUTUBE_VIDEOS_URL = "https://www.googleapis.com/youtube/v3/videos"
DEFAULT_CATEGORY_ID = "22"  # People & Blogs


def build_video_resource(content) -> dict:
    """Title is the first line of the text, the rest becomes the description"""
    lines = (content.text or "").strip().splitlines()
    title = lines[0].strip() if lines else ""
    description = "\n".join(lines[1:]).strip() or (content.text or "")
    if content.link and content.link not in description:
        description = f"{description}\n\n{content.link}".strip()
    metadata = content.metadata
    return {
        "snippet": {
            "title": title,
            "description": description,
            "tags": list(metadata.get("tags") or []),
            "categoryId": str(metadata.get("category_id", DEFAULT_CATEGORY_ID)),
        },
        "status": {
            "privacyStatus": metadata.get("privacy_status", "private"),
            "selfDeclaredMadeForKids": bool(metadata.get("made_for_kids", False)),
        },
    }


class YouTubeContainerClient(ContainerClient):
    """The uploaded video id stands in for the container while YouTube processes it"""

    def __init__(self, client, credentials, content):
        self.client = client
        self.credentials = credentials
        self.content = content

    async def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {await self.credentials.access_token()}"}

    async def create_container(self) -> str:
        video = self.content.videos()[0]
        data, content_type = await download_media(self.client, video)
        youtube_logger.info(f"Uploading {len(data)} bytes to YouTube")

        headers = await self._auth_headers()
        headers.update({
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Type": content_type,
            "X-Upload-Content-Length": str(len(data)),
        })
        session = await self.client.post(
            YOUTUBE_UPLOAD_URL,
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers=headers,
            content=json.dumps(build_video_resource(self.content)),
        )
        check_response(session, "YouTube upload session failed", youtube_logger)
        upload_url = session.headers.get("location")
        if not upload_url:
            raise PublishFailedError("YouTube did not return a resumable upload URL")

        headers = await self._auth_headers()
        headers["Content-Type"] = content_type
        uploaded = await self.client.put(upload_url, headers=headers, content=data)
        check_response(uploaded, "YouTube video upload failed", youtube_logger)
        video_id = uploaded.json().get("id")
        if not video_id:
            raise PublishFailedError(f"YouTube upload returned no video id: {uploaded.text}")
        return video_id

    async def get_status(self, container_id: str) -> ContainerState:
        response = await self.client.get(
            YOUTUBE_VIDEOS_URL,
            params={"part": "status,processingDetails", "id": container_id},
            headers=await self._auth_headers(),
        )
        check_response(response, "YouTube status check failed", youtube_logger)
        items = response.json().get("items") or []
        if not items:
            return ContainerState(status=ContainerStatus.IN_PROGRESS)

        status = items[0].get("status") or {}
        processing = items[0].get("processingDetails") or {}
        upload_status = status.get("uploadStatus")
        if upload_status == "processed":
            return ContainerState(status=ContainerStatus.PUBLISHED, post_id=container_id)
        if upload_status in ("failed", "rejected", "deleted"):
            reason = status.get("failureReason") or status.get("rejectionReason") or upload_status
            return ContainerState(status=ContainerStatus.ERROR, reason=reason)
        if processing.get("processingStatus") in ("failed", "terminated"):
            reason = (processing.get("processingFailureReason") or processing.get("processingStatus"))
            return ContainerState(status=ContainerStatus.ERROR, reason=reason)
        return ContainerState(status=ContainerStatus.IN_PROGRESS)

    async def publish_container(self, container_id: str) -> str:
        # Privacy status was set at upload time; nothing left to finalize
        return container_id

    def fallback_url(self, post_id: str) -> str:
        return f"https://www.youtube.com/watch?v={post_id}"


class YouTubePublisher(BasePublisher):
    platform = Platform.YOUTUBE.value

    def __init__(self, sleep=None):
        self._sleep = sleep

    async def publish(self, client, content, credentials) -> PublishResult:
        flow = ContainerPublishFlow(YouTubeContainerClient(client, credentials, content), VIDEO_POLL_POLICY,
                                    sleep=self._sleep, logger=youtube_logger)
        return await flow.run()
