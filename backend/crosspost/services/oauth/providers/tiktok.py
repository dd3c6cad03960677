"""TikTok Login Kit (OAuth 2.0 v2)"""
from crosspost.core.exceptions import ProviderError
from crosspost.core.platforms import Platform
from crosspost.services.oauth.providers.base import OAuthProvider
from crosspost.services.oauth.types import Identity

TIKTOK_API_BASE = "https://open.tiktokapis.com/v2"
TIKTOK_USER_INFO_URL = f"{TIKTOK_API_BASE}/user/info/"
TIKTOK_USER_FIELDS = "open_id,union_id,avatar_url,display_name,username"


class TikTokProvider(OAuthProvider):
    platform = Platform.TIKTOK.value
    authorize_url = "https://www.tiktok.com/v2/auth/authorize/"
    token_url = f"{TIKTOK_API_BASE}/oauth/token/"
    scopes = ("user.info.basic", "video.upload", "video.publish")
    scope_separator = ","
    client_id_param = "client_key"
    client_id_setting = "TIKTOK_CLIENT_KEY"
    client_secret_setting = "TIKTOK_CLIENT_SECRET"

    def parse_token_payload(self, payload, response, action):
        # TikTok reports some token errors with HTTP 200 and an "error" field
        if payload.get("error"):
            description = payload.get("error_description") or payload["error"]
            self.logger.error(f"TikTok token {action} error: {payload['error']} - {description}")
            raise ProviderError(f"Token {action} failed: {description}",
                                status_code=response.status_code, body=response.text)
        return super().parse_token_payload(payload, response, action)

    async def fetch_identity(self, client, tokens):
        payload = await self.get_json(
            client, TIKTOK_USER_INFO_URL, tokens.access_token, params={"fields": TIKTOK_USER_FIELDS}
        )
        user = (payload.get("data") or {}).get("user") or {}
        open_id = user.get("open_id") or tokens.raw.get("open_id")
        return Identity(
            account_id=open_id,
            account_name=user.get("username") or user.get("display_name"),
            display_name=user.get("display_name"),
            metadata={"avatar_url": user.get("avatar_url"), "union_id": user.get("union_id")},
        )
