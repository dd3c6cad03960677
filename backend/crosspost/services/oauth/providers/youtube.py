"""Google OAuth 2.0 for YouTube channels"""
from crosspost.core.platforms import Platform
from crosspost.services.oauth.providers.base import OAuthProvider
from crosspost.services.oauth.types import Identity

YOUTUBE_CHANNELS_URL = "https://www.googleapis.com/youtube/v3/channels"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class YouTubeProvider(OAuthProvider):
    platform = Platform.YOUTUBE.value
    authorize_url = "https://accounts.google.com/o/oauth2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    scopes = (
        "https://www.googleapis.com/auth/youtube.upload",
        "https://www.googleapis.com/auth/youtube.readonly",
        "https://www.googleapis.com/auth/userinfo.profile",
    )
    # Google only issues a refresh token with offline access and a fresh consent
    extra_authorize_params = {
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
    }
    client_id_setting = "GOOGLE_CLIENT_ID"
    client_secret_setting = "GOOGLE_CLIENT_SECRET"

    async def fetch_identity(self, client, tokens):
        channels = await self.get_json(
            client, YOUTUBE_CHANNELS_URL, tokens.access_token,
            params={"part": "snippet", "mine": "true"}, action="channel lookup",
        )
        items = channels.get("items") or []
        if items:
            channel = items[0]
            snippet = channel.get("snippet") or {}
            return Identity(
                account_id=channel.get("id"),
                account_name=snippet.get("customUrl") or snippet.get("title"),
                display_name=snippet.get("title"),
                metadata={"channel_id": channel.get("id")},
            )

        # Google account without a channel yet
        self.logger.warning("No YouTube channel found, falling back to Google profile")
        profile = await self.get_json(client, GOOGLE_USERINFO_URL, tokens.access_token)
        return Identity(
            account_id=profile.get("id"),
            account_name=profile.get("name"),
            display_name=profile.get("name"),
        )
