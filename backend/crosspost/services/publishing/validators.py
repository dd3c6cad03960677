"""Per-platform content rules, checked before anything is queued.

Each validator returns every violated rule, not just the first one, so the
caller can fix the content in one round trip.
"""
import re
from typing import Callable, Dict, List

from crosspost.core.platforms import Platform
from crosspost.schemas.posts import MediaType, PostContent

TWITTER_MAX_CHARS = 280
TWITTER_MAX_IMAGES = 4
BLUESKY_MAX_CHARS = 300
BLUESKY_MAX_IMAGES = 4
LINKEDIN_MAX_CHARS = 3000
LINKEDIN_MAX_IMAGES = 20
PINTEREST_MAX_DESCRIPTION = 500
TIKTOK_MAX_CAPTION = 2200
INSTAGRAM_MAX_CAPTION = 2200
INSTAGRAM_MAX_MEDIA = 10
INSTAGRAM_MAX_HASHTAGS = 30
YOUTUBE_MAX_TITLE = 100
YOUTUBE_MAX_TAGS = 30
YOUTUBE_PRIVACY_STATUSES = ("public", "unlisted", "private")

_HASHTAG = re.compile(r"#\w+")


def _common(content: PostContent) -> List[str]:
    errors = []
    if not content.user_id:
        errors.append("User ID is required in metadata")
    for item in content.media:
        if not item.url:
            errors.append("Every media item requires a URL")
            break
    return errors


def _images_only(content: PostContent, platform_name: str) -> List[str]:
    if content.videos():
        return [f"{platform_name} posts support images only"]
    return []


def validate_twitter(content: PostContent) -> List[str]:
    errors = _common(content)
    text = content.text or ""
    if not text.strip():
        errors.append("Text is required")
    if len(text) > TWITTER_MAX_CHARS:
        errors.append(f"Text exceeds Twitter's {TWITTER_MAX_CHARS} character limit")
    if len(content.images()) > TWITTER_MAX_IMAGES:
        errors.append(f"Twitter allows at most {TWITTER_MAX_IMAGES} images")
    errors.extend(_images_only(content, "Twitter"))
    return errors


def validate_bluesky(content: PostContent) -> List[str]:
    errors = _common(content)
    text = content.text or ""
    if not text.strip():
        errors.append("Text is required")
    if len(text) > BLUESKY_MAX_CHARS:
        errors.append(f"Text exceeds Bluesky's {BLUESKY_MAX_CHARS} character limit")
    if len(content.images()) > BLUESKY_MAX_IMAGES:
        errors.append(f"Bluesky allows at most {BLUESKY_MAX_IMAGES} images")
    errors.extend(_images_only(content, "Bluesky"))
    return errors


def validate_linkedin(content: PostContent) -> List[str]:
    errors = _common(content)
    text = content.text or ""
    if not text.strip():
        errors.append("Text is required")
    if len(text) > LINKEDIN_MAX_CHARS:
        errors.append(f"Text exceeds LinkedIn's {LINKEDIN_MAX_CHARS} character limit")
    if len(content.images()) > LINKEDIN_MAX_IMAGES:
        errors.append(f"LinkedIn allows at most {LINKEDIN_MAX_IMAGES} images")
    errors.extend(_images_only(content, "LinkedIn"))
    return errors


def validate_pinterest(content: PostContent) -> List[str]:
    errors = _common(content)
    images = content.images()
    if not images:
        errors.append("Pinterest requires an image")
    elif len(images) > 1:
        errors.append("Pinterest pins support a single image")
    errors.extend(_images_only(content, "Pinterest"))
    if len(content.text or "") > PINTEREST_MAX_DESCRIPTION:
        errors.append(f"Description exceeds Pinterest's {PINTEREST_MAX_DESCRIPTION} character limit")
    if not content.metadata.get("board_id"):
        errors.append("Pinterest requires metadata.board_id")
    return errors


def validate_tiktok(content: PostContent) -> List[str]:
    errors = _common(content)
    if len(content.videos()) != 1 or content.images():
        errors.append("TikTok requires exactly one video")
    if len(content.text or "") > TIKTOK_MAX_CAPTION:
        errors.append(f"Caption exceeds TikTok's {TIKTOK_MAX_CAPTION} character limit")
    return errors


def validate_instagram(content: PostContent) -> List[str]:
    errors = _common(content)
    if not content.media:
        errors.append("Instagram requires at least one image or video")
    elif len(content.media) > INSTAGRAM_MAX_MEDIA:
        errors.append(f"Instagram allows at most {INSTAGRAM_MAX_MEDIA} media items")
    caption = content.text or ""
    if len(caption) > INSTAGRAM_MAX_CAPTION:
        errors.append(f"Caption exceeds Instagram's {INSTAGRAM_MAX_CAPTION} character limit")
    if len(_HASHTAG.findall(caption)) > INSTAGRAM_MAX_HASHTAGS:
        errors.append(f"Instagram allows at most {INSTAGRAM_MAX_HASHTAGS} hashtags")
    for item in content.media:
        if item.type not in (MediaType.IMAGE, MediaType.VIDEO):
            errors.append(f"Unsupported media type: {item.type}")
    return errors


def validate_youtube(content: PostContent) -> List[str]:
    errors = _common(content)
    if len(content.videos()) != 1 or content.images():
        errors.append("YouTube requires exactly one video")
    text = content.text or ""
    if not text.strip():
        errors.append("Text is required (the first line becomes the video title)")
    elif len(text.strip().splitlines()[0]) > YOUTUBE_MAX_TITLE:
        errors.append(f"Title exceeds YouTube's {YOUTUBE_MAX_TITLE} character limit")
    tags = content.metadata.get("tags") or []
    if len(tags) > YOUTUBE_MAX_TAGS:
        errors.append(f"YouTube allows at most {YOUTUBE_MAX_TAGS} tags")
    privacy = content.metadata.get("privacy_status")
    if privacy is not None and privacy not in YOUTUBE_PRIVACY_STATUSES:
        errors.append(f"privacy_status must be one of: {', '.join(YOUTUBE_PRIVACY_STATUSES)}")
    return errors


VALIDATORS: Dict[str, Callable[[PostContent], List[str]]] = {
    Platform.TWITTER.value: validate_twitter,
    Platform.BLUESKY.value: validate_bluesky,
    Platform.LINKEDIN.value: validate_linkedin,
    Platform.PINTEREST.value: validate_pinterest,
    Platform.TIKTOK.value: validate_tiktok,
    Platform.INSTAGRAM.value: validate_instagram,
    Platform.YOUTUBE.value: validate_youtube,
}


def validate_content(platform: str, content: PostContent) -> List[str]:
    validator = VALIDATORS.get(str(platform))
    if validator is None:
        return [f"Unsupported platform: {platform}"]
    return validator(content)
