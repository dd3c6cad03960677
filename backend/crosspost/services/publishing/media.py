"""Download-then-upload helpers for platforms that need media bytes"""
import logging
from typing import Awaitable, Callable, List, Sequence, Tuple, TypeVar

import httpx

from crosspost.core.exceptions import ProviderError, PublishFailedError
from crosspost.schemas.posts import MediaAttachment

T = TypeVar("T")


async def download_media(client: httpx.AsyncClient, media: MediaAttachment) -> Tuple[bytes, str]:
    """Fetch a media URL, returning (bytes, content type)"""
    response = await client.get(media.url, follow_redirects=True)
    if response.status_code >= 400:
        raise ProviderError.from_response(f"Media download failed for {media.url}", response)
    default_type = "video/mp4" if media.type.value == "video" else "image/jpeg"
    content_type = response.headers.get("content-type", default_type).split(";")[0]
    return response.content, content_type


async def upload_each(
    items: Sequence[MediaAttachment],
    upload: Callable[[MediaAttachment], Awaitable[T]],
    logger: logging.Logger,
) -> List[T]:
    """Upload every item, skipping individual failures.

    The post goes out with whatever media made it; only when every upload
    fails is the attempt failed.
    """
    uploaded = []
    errors = []
    for item in items:
        try:
            uploaded.append(await upload(item))
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(f"Skipping media {item.url}: {e}")
            errors.append(str(e))

    if items and not uploaded:
        raise PublishFailedError(f"All {len(items)} media uploads failed: {errors[-1]}")
    return uploaded
