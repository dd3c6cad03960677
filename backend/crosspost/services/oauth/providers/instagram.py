"""Instagram professional accounts via Facebook Login.

Facebook's token endpoint is a GET with query parameters, and user tokens
have no refresh token: the short-lived token from the code exchange is
upgraded to a long-lived one (~60 days), and "refreshing" re-exchanges the
current long-lived token for a new one.
"""
from typing import Optional

from crosspost.core.config import META_GRAPH_API_BASE, settings
from crosspost.core.exceptions import ProviderError
from crosspost.core.platforms import Platform
from crosspost.services.oauth.providers.base import OAuthProvider
from crosspost.services.oauth.types import Identity, TokenSet


class InstagramProvider(OAuthProvider):
    platform = Platform.INSTAGRAM.value
    authorize_url = f"https://www.facebook.com/{settings.META_GRAPH_API_VERSION}/dialog/oauth"
    token_url = f"{META_GRAPH_API_BASE}/oauth/access_token"
    scopes = (
        "instagram_basic",
        "instagram_content_publish",
        "pages_read_engagement",
        "pages_show_list",
        "business_management",
    )
    scope_separator = ","
    refreshes_with_access_token = True
    client_id_setting = "FACEBOOK_APP_ID"
    client_secret_setting = "FACEBOOK_APP_SECRET"

    async def _get_token(self, client, params: dict, action: str) -> TokenSet:
        params = {"client_id": self.client_id, "client_secret": self.client_secret, **params}
        response = await client.get(self.token_url, params=params)
        if response.status_code >= 400:
            self.logger.error(f"Instagram token {action} failed: {response.status_code}")
            raise ProviderError.from_response(f"Token {action} failed", response)
        payload = self.parse_token_payload(response.json(), response, action)
        return TokenSet.from_response(payload)

    async def _long_lived(self, client, access_token: str, action: str) -> TokenSet:
        return await self._get_token(
            client,
            {"grant_type": "fb_exchange_token", "fb_exchange_token": access_token},
            action,
        )

    async def exchange_code(self, client, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        self.ensure_configured()
        short_lived = await self._get_token(
            client, {"redirect_uri": self.redirect_uri, "code": code}, "exchange"
        )
        try:
            return await self._long_lived(client, short_lived.access_token, "exchange")
        except ProviderError as e:
            # Still usable for about an hour
            self.logger.warning(f"Long-lived token exchange failed, keeping short-lived token: {e}")
            return short_lived

    async def refresh(self, client, grant_token: str) -> TokenSet:
        self.ensure_configured()
        return await self._long_lived(client, grant_token, "refresh")

    async def fetch_identity(self, client, tokens):
        payload = await self.get_json(
            client,
            f"{META_GRAPH_API_BASE}/me/accounts",
            tokens.access_token,
            params={"fields": "id,name,instagram_business_account{id,username,name}"},
            action="page lookup",
        )
        for page in payload.get("data") or []:
            account = page.get("instagram_business_account")
            if not account:
                continue
            return Identity(
                account_id=account.get("id"),
                account_name=account.get("username"),
                display_name=account.get("name") or account.get("username"),
                metadata={"page_id": page.get("id"), "page_name": page.get("name")},
            )
        raise ProviderError(
            "No Instagram business or creator account is linked to a Facebook Page you manage"
        )
