"""Shared behaviour for OAuth 2.0 provider strategies.

Each platform gets one small concrete class that fills in its endpoints,
scopes and the few places where it deviates from plain OAuth 2.0 (client
authentication style, PKCE, identity lookup). The token manager only talks
to the four operations defined here.
"""
import logging
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx

from crosspost.core.config import settings
from crosspost.core.exceptions import NotConfiguredError, ProviderError
from crosspost.services.oauth.types import Identity, TokenSet


class OAuthProvider:
    platform: str = ""
    authorize_url: str = ""
    token_url: str = ""
    scopes: tuple = ()
    scope_separator: str = " "
    uses_pkce: bool = False
    # "basic" sends client credentials as an Authorization header, "body" as form fields
    client_auth: str = "body"
    client_id_param: str = "client_id"
    # Long-lived-token platforms refresh by re-exchanging the access token itself
    refreshes_with_access_token: bool = False
    extra_authorize_params: Dict[str, str] = {}

    # Names of the Settings fields holding the client credentials
    client_id_setting: str = ""
    client_secret_setting: str = ""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.logger = logging.getLogger(self.platform or "oauth")

    @classmethod
    def from_settings(cls, config=settings):
        return cls(
            client_id=getattr(config, cls.client_id_setting, ""),
            client_secret=getattr(config, cls.client_secret_setting, ""),
            redirect_uri=config.redirect_uri(cls.platform),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def ensure_configured(self):
        if not self.is_configured:
            raise NotConfiguredError(self.platform)

    # -- authorization URL -------------------------------------------------

    def authorize_params(self, state: str, code_challenge: Optional[str] = None) -> Dict[str, str]:
        params = {
            self.client_id_param: self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        params.update(self.extra_authorize_params)
        return params

    def build_auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        self.ensure_configured()
        return f"{self.authorize_url}?{urlencode(self.authorize_params(state, code_challenge))}"

    # -- token endpoint ----------------------------------------------------

    def _client_auth(self, data: Dict[str, str]):
        if self.client_auth == "basic":
            if self.uses_pkce:
                data.setdefault(self.client_id_param, self.client_id)
            return httpx.BasicAuth(self.client_id, self.client_secret)
        data[self.client_id_param] = self.client_id
        data["client_secret"] = self.client_secret
        return None

    async def post_token_request(self, client: httpx.AsyncClient, data: Dict[str, str], action: str) -> dict:
        """Form-encoded POST to the token endpoint; non-2xx raises ProviderError"""
        auth = self._client_auth(data)
        response = await client.post(
            self.token_url,
            data=data,
            auth=auth,
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 400:
            self.logger.error(
                f"{self.platform} {action} failed: {response.status_code}",
                extra={"status_code": response.status_code, "response_body": response.text[:1000]},
            )
            raise ProviderError.from_response(f"Token {action} failed", response)
        return self.parse_token_payload(response.json(), response, action)

    def parse_token_payload(self, payload: dict, response: httpx.Response, action: str) -> dict:
        if "access_token" not in payload:
            raise ProviderError(
                f"Token {action} failed: response has no access_token",
                status_code=response.status_code,
                body=response.text,
            )
        return payload

    async def exchange_code(self, client: httpx.AsyncClient, code: str,
                            code_verifier: Optional[str] = None) -> TokenSet:
        self.ensure_configured()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        payload = await self.post_token_request(client, data, "exchange")
        return TokenSet.from_response(payload)

    async def refresh(self, client: httpx.AsyncClient, grant_token: str) -> TokenSet:
        """Exchange a refresh token (or, for some platforms, the current access token)"""
        self.ensure_configured()
        data = {"grant_type": "refresh_token", "refresh_token": grant_token}
        payload = await self.post_token_request(client, data, "refresh")
        return TokenSet.from_response(payload)

    # -- identity ----------------------------------------------------------

    async def get_json(self, client: httpx.AsyncClient, url: str, access_token: str,
                       params: Optional[dict] = None, action: str = "profile lookup") -> dict:
        response = await client.get(
            url,
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code >= 400:
            self.logger.error(f"{self.platform} {action} failed: {response.status_code}")
            raise ProviderError.from_response(f"{self.platform} {action} failed", response)
        return response.json()

    async def fetch_identity(self, client: httpx.AsyncClient, tokens: TokenSet) -> Identity:
        raise NotImplementedError
