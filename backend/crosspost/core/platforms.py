"""Supported platforms"""
from enum import Enum


class Platform(str, Enum):
    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    BLUESKY = "bluesky"
    TIKTOK = "tiktok"
    PINTEREST = "pinterest"
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"

    def __str__(self):
        return self.value


# Platforms connected through an OAuth consent flow (Bluesky uses an app password)
OAUTH_PLATFORMS = (
    Platform.LINKEDIN,
    Platform.TWITTER,
    Platform.TIKTOK,
    Platform.PINTEREST,
    Platform.INSTAGRAM,
    Platform.YOUTUBE,
)
