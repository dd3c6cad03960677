"""Lookup table of OAuth provider strategies keyed by platform"""
from crosspost.core.config import settings
from crosspost.core.exceptions import NotConfiguredError
from crosspost.services.oauth.providers.base import OAuthProvider
from crosspost.services.oauth.providers.instagram import InstagramProvider
from crosspost.services.oauth.providers.linkedin import LinkedInProvider
from crosspost.services.oauth.providers.pinterest import PinterestProvider
from crosspost.services.oauth.providers.tiktok import TikTokProvider
from crosspost.services.oauth.providers.twitter import TwitterProvider
from crosspost.services.oauth.providers.youtube import YouTubeProvider

PROVIDERS = {
    provider.platform: provider
    for provider in (
        LinkedInProvider,
        TwitterProvider,
        TikTokProvider,
        PinterestProvider,
        YouTubeProvider,
        InstagramProvider,
    )
}


def get_provider(platform: str, config=settings) -> OAuthProvider:
    """Instantiate the provider strategy for a platform from settings"""
    provider_class = PROVIDERS.get(str(platform))
    if provider_class is None:
        raise NotConfiguredError(str(platform))
    return provider_class.from_settings(config)


__all__ = ["OAuthProvider", "PROVIDERS", "get_provider"]
