"""Publisher lookup by platform"""
from typing import Dict

from crosspost.core.platforms import Platform
from crosspost.services.publishing.platforms.base import BasePublisher
from crosspost.services.publishing.platforms.bluesky import BlueskyPublisher
from crosspost.services.publishing.platforms.instagram import InstagramPublisher
from crosspost.services.publishing.platforms.linkedin import LinkedInPublisher
from crosspost.services.publishing.platforms.pinterest import PinterestPublisher
from crosspost.services.publishing.platforms.tiktok import TikTokPublisher
from crosspost.services.publishing.platforms.twitter import TwitterPublisher
from crosspost.services.publishing.platforms.youtube import YouTubePublisher

PUBLISHERS: Dict[str, BasePublisher] = {
    Platform.LINKEDIN.value: LinkedInPublisher(),
    Platform.TWITTER.value: TwitterPublisher(),
    Platform.BLUESKY.value: BlueskyPublisher(),
    Platform.TIKTOK.value: TikTokPublisher(),
    Platform.PINTEREST.value: PinterestPublisher(),
    Platform.INSTAGRAM.value: InstagramPublisher(),
    Platform.YOUTUBE.value: YouTubePublisher(),
}


def get_publisher(platform: str) -> BasePublisher:
    publisher = PUBLISHERS.get(str(platform))
    if publisher is None:
        raise ValueError(f"No publisher registered for {platform}")
    return publisher
