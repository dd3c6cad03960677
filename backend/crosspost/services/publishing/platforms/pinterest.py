"""Pinterest pin creation via API v5"""
import logging

from crosspost.core.exceptions import PublishFailedError
from crosspost.core.platforms import Platform
from crosspost.services.publishing.platforms.base import BasePublisher, PublishResult, check_response

pinterest_logger = logging.getLogger("pinterest")

PINTEREST_PINS_URL = "https://api.pinterest.com/v5/pins"


class PinterestPublisher(BasePublisher):
    platform = Platform.PINTEREST.value

    async def publish(self, client, content, credentials) -> PublishResult:
        image = content.images()[0]
        metadata = content.metadata
        body = {
            "board_id": str(metadata["board_id"]),
            "description": content.text or "",
            "media_source": {"source_type": "image_url", "url": image.url},
        }
        if metadata.get("title"):
            body["title"] = metadata["title"]
        if content.link:
            body["link"] = content.link
        if image.alt_text:
            body["alt_text"] = image.alt_text

        token = await credentials.access_token()
        response = await client.post(PINTEREST_PINS_URL, json=body, headers={"Authorization": f"Bearer {token}"})
        check_response(response, "Pinterest pin creation failed", pinterest_logger)
        pin_id = response.json().get("id")
        if not pin_id:
            raise PublishFailedError(f"Pinterest returned no pin id: {response.text}")
        return PublishResult(post_id=pin_id, url=f"https://www.pinterest.com/pin/{pin_id}/")
