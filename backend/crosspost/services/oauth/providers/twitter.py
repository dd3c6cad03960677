"""Twitter/X OAuth 2.0 with PKCE"""
from crosspost.core.platforms import Platform
from crosspost.services.oauth.providers.base import OAuthProvider
from crosspost.services.oauth.types import Identity

TWITTER_USER_URL = "https://api.twitter.com/2/users/me"


class TwitterProvider(OAuthProvider):
    platform = Platform.TWITTER.value
    authorize_url = "https://twitter.com/i/oauth2/authorize"
    token_url = "https://api.twitter.com/2/oauth2/token"
    scopes = ("tweet.read", "tweet.write", "users.read", "media.write", "offline.access")
    uses_pkce = True
    client_auth = "basic"
    client_id_setting = "TWITTER_CLIENT_ID"
    client_secret_setting = "TWITTER_CLIENT_SECRET"

    async def fetch_identity(self, client, tokens):
        payload = await self.get_json(client, TWITTER_USER_URL, tokens.access_token)
        user = payload.get("data") or {}
        return Identity(
            account_id=user.get("id"),
            account_name=user.get("username"),
            display_name=user.get("name"),
        )
