"""Pinterest OAuth 2.0"""
from crosspost.core.platforms import Platform
from crosspost.services.oauth.providers.base import OAuthProvider
from crosspost.services.oauth.types import Identity, TokenSet

PINTEREST_USER_URL = "https://api.pinterest.com/v5/user_account"


class PinterestProvider(OAuthProvider):
    platform = Platform.PINTEREST.value
    authorize_url = "https://www.pinterest.com/oauth/"
    token_url = "https://api.pinterest.com/v5/oauth/token"
    scopes = ("boards:read", "boards:write", "pins:read", "pins:write", "user_accounts:read")
    scope_separator = ","
    client_auth = "basic"
    client_id_setting = "PINTEREST_CLIENT_ID"
    client_secret_setting = "PINTEREST_CLIENT_SECRET"

    async def refresh(self, client, grant_token):
        self.ensure_configured()
        data = {
            "grant_type": "refresh_token",
            "refresh_token": grant_token,
            "scope": self.scope_separator.join(self.scopes),
        }
        return TokenSet.from_response(await self.post_token_request(client, data, "refresh"))

    async def fetch_identity(self, client, tokens):
        account = await self.get_json(client, PINTEREST_USER_URL, tokens.access_token)
        username = account.get("username")
        return Identity(
            account_id=account.get("id") or username,
            account_name=username,
            display_name=account.get("business_name") or username,
            metadata={"account_type": account.get("account_type")},
        )
