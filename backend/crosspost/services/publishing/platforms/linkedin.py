"""LinkedIn publishing via the versioned Posts and Images APIs"""
import logging

from crosspost.core.exceptions import PublishFailedError
from crosspost.core.platforms import Platform
from crosspost.services.publishing.media import download_media, upload_each
from crosspost.services.publishing.platforms.base import BasePublisher, PublishResult, check_response

linkedin_logger = logging.getLogger("linkedin")

LINKEDIN_REST_BASE = "https://api.linkedin.com/rest"
LINKEDIN_API_VERSION = "202405"


class LinkedInPublisher(BasePublisher):
    platform = Platform.LINKEDIN.value

    async def _headers(self, credentials) -> dict:
        return {
            "Authorization": f"Bearer {await credentials.access_token()}",
            "LinkedIn-Version": LINKEDIN_API_VERSION,
            "X-Restli-Protocol-Version": "2.0.0",
        }

    async def _upload_image(self, client, credentials, author: str, media) -> dict:
        response = await client.post(
            f"{LINKEDIN_REST_BASE}/images",
            params={"action": "initializeUpload"},
            json={"initializeUploadRequest": {"owner": author}},
            headers=await self._headers(credentials),
        )
        check_response(response, "LinkedIn image upload init failed", linkedin_logger)
        value = response.json().get("value") or {}

        data, content_type = await download_media(client, media)
        uploaded = await client.put(
            value["uploadUrl"],
            content=data,
            headers={"Authorization": f"Bearer {await credentials.access_token()}", "Content-Type": content_type},
        )
        check_response(uploaded, "LinkedIn image upload failed", linkedin_logger)
        return {"id": value["image"], "altText": media.alt_text or ""}

    async def publish(self, client, content, credentials) -> PublishResult:
        author = credentials.metadata.get("person_urn") or f"urn:li:person:{credentials.account_id}"
        body = {
            "author": author,
            "commentary": content.text or "",
            "visibility": "PUBLIC",
            "distribution": {
                "feedDistribution": "MAIN_FEED",
                "targetEntities": [],
                "thirdPartyDistributionChannels": [],
            },
            "lifecycleState": "PUBLISHED",
            "isReshareDisabledByAuthor": False,
        }

        images = content.images()
        if images:
            uploaded = await upload_each(
                images, lambda item: self._upload_image(client, credentials, author, item), linkedin_logger
            )
            if len(uploaded) == 1:
                body["content"] = {"media": uploaded[0]}
            else:
                body["content"] = {"multiImage": {"images": uploaded}}
        elif content.link:
            body["content"] = {"article": {"source": content.link, "title": content.metadata.get("link_title", content.link)}}

        response = await client.post(f"{LINKEDIN_REST_BASE}/posts", json=body, headers=await self._headers(credentials))
        check_response(response, "LinkedIn post creation failed", linkedin_logger)
        post_urn = response.headers.get("x-restli-id")
        if not post_urn:
            raise PublishFailedError("LinkedIn did not return a post id")
        return PublishResult(post_id=post_urn, url=f"https://www.linkedin.com/feed/update/{post_urn}")
