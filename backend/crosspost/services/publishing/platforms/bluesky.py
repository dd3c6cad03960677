"""Bluesky publishing over AT Protocol XRPC, authenticated with an app password"""
import logging
from datetime import datetime, timezone

from crosspost.core.config import settings
from crosspost.core.exceptions import NotConfiguredError, PublishFailedError
from crosspost.core.platforms import Platform
from crosspost.services.publishing.media import download_media, upload_each
from crosspost.services.publishing.platforms.base import BasePublisher, PublishResult, check_response

bluesky_logger = logging.getLogger("bluesky")


class BlueskyPublisher(BasePublisher):
    platform = Platform.BLUESKY.value
    requires_oauth = False

    def __init__(self, service_url: str = None, handle: str = None, app_password: str = None):
        self.service_url = (service_url or settings.BLUESKY_SERVICE_URL).rstrip("/")
        self.handle = handle if handle is not None else settings.BLUESKY_HANDLE
        self.app_password = app_password if app_password is not None else settings.BLUESKY_APP_PASSWORD

    def _xrpc(self, method: str) -> str:
        return f"{self.service_url}/xrpc/{method}"

    async def _create_session(self, client) -> dict:
        if not (self.handle and self.app_password):
            raise NotConfiguredError(self.platform)
        response = await client.post(
            self._xrpc("com.atproto.server.createSession"),
            json={"identifier": self.handle, "password": self.app_password},
        )
        check_response(response, "Bluesky login failed", bluesky_logger)
        return response.json()

    async def _upload_blob(self, client, session: dict, media) -> dict:
        data, content_type = await download_media(client, media)
        response = await client.post(
            self._xrpc("com.atproto.repo.uploadBlob"),
            content=data,
            headers={"Authorization": f"Bearer {session['accessJwt']}", "Content-Type": content_type},
        )
        check_response(response, "Bluesky blob upload failed", bluesky_logger)
        return {"alt": media.alt_text or "", "image": response.json()["blob"]}

    async def publish(self, client, content, credentials=None) -> PublishResult:
        session = await self._create_session(client)
        record = {
            "$type": "app.bsky.feed.post",
            "text": content.text or "",
            "createdAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

        images = content.images()
        if images:
            embedded = await upload_each(
                images, lambda item: self._upload_blob(client, session, item), bluesky_logger
            )
            record["embed"] = {"$type": "app.bsky.embed.images", "images": embedded}
        elif content.link:
            record["embed"] = {
                "$type": "app.bsky.embed.external",
                "external": {"uri": content.link, "title": content.metadata.get("link_title", content.link),
                             "description": ""},
            }

        response = await client.post(
            self._xrpc("com.atproto.repo.createRecord"),
            json={"repo": session["did"], "collection": "app.bsky.feed.post", "record": record},
            headers={"Authorization": f"Bearer {session['accessJwt']}"},
        )
        check_response(response, "Bluesky post creation failed", bluesky_logger)
        uri = response.json().get("uri")
        if not uri:
            raise PublishFailedError(f"Bluesky returned no record uri: {response.text}")
        rkey = uri.rsplit("/", 1)[-1]
        handle = session.get("handle") or self.handle
        return PublishResult(post_id=uri, url=f"https://bsky.app/profile/{handle}/post/{rkey}")
