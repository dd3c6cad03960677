"""LinkedIn OAuth 2.0 (Sign In with LinkedIn using OpenID Connect)"""
from crosspost.core.platforms import Platform
from crosspost.services.oauth.providers.base import OAuthProvider
from crosspost.services.oauth.types import Identity

LINKEDIN_USERINFO_URL = "https://api.linkedin.com/v2/userinfo"


class LinkedInProvider(OAuthProvider):
    platform = Platform.LINKEDIN.value
    authorize_url = "https://www.linkedin.com/oauth/v2/authorization"
    token_url = "https://www.linkedin.com/oauth/v2/accessToken"
    scopes = ("openid", "profile", "email", "w_member_social")
    client_id_setting = "LINKEDIN_CLIENT_ID"
    client_secret_setting = "LINKEDIN_CLIENT_SECRET"

    async def fetch_identity(self, client, tokens):
        info = await self.get_json(client, LINKEDIN_USERINFO_URL, tokens.access_token)
        sub = info.get("sub")
        return Identity(
            account_id=sub,
            account_name=info.get("name"),
            display_name=info.get("name"),
            # Posts are authored as this URN
            metadata={"person_urn": f"urn:li:person:{sub}", "email": info.get("email")},
        )
