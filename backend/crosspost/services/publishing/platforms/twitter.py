"""Twitter/X publishing via API v2"""
import logging

from crosspost.core.exceptions import PublishFailedError
from crosspost.core.platforms import Platform
from crosspost.services.publishing.media import download_media, upload_each
from crosspost.services.publishing.platforms.base import BasePublisher, PublishResult, check_response

twitter_logger = logging.getLogger("twitter")

TWITTER_TWEETS_URL = "https://api.twitter.com/2/tweets"
TWITTER_MEDIA_UPLOAD_URL = "https://api.x.com/2/media/upload"


class TwitterPublisher(BasePublisher):
    platform = Platform.TWITTER.value

    async def _upload_image(self, client, credentials, media) -> str:
        data, content_type = await download_media(client, media)
        token = await credentials.access_token()
        response = await client.post(
            TWITTER_MEDIA_UPLOAD_URL,
            headers={"Authorization": f"Bearer {token}"},
            data={"media_category": "tweet_image"},
            files={"media": ("media", data, content_type)},
        )
        check_response(response, "Twitter media upload failed", twitter_logger)
        payload = response.json()
        media_id = (payload.get("data") or {}).get("id") or payload.get("media_id_string")
        if not media_id:
            raise PublishFailedError(f"Twitter media upload returned no id: {response.text}")
        return str(media_id)

    async def publish(self, client, content, credentials) -> PublishResult:
        text = content.text or ""
        if content.link and content.link not in text:
            text = f"{text}\n{content.link}"

        body = {"text": text}
        images = content.images()
        if images:
            media_ids = await upload_each(
                images, lambda item: self._upload_image(client, credentials, item), twitter_logger
            )
            body["media"] = {"media_ids": media_ids}

        token = await credentials.access_token()
        response = await client.post(TWITTER_TWEETS_URL, json=body, headers={"Authorization": f"Bearer {token}"})
        check_response(response, "Tweet creation failed", twitter_logger)
        tweet_id = (response.json().get("data") or {}).get("id")
        if not tweet_id:
            raise PublishFailedError(f"Twitter returned no tweet id: {response.text}")

        handle = credentials.account_name or "i/web"
        return PublishResult(post_id=tweet_id, url=f"https://twitter.com/{handle}/status/{tweet_id}")
