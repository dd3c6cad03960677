"""Base interface for platform publishers"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from crosspost.core.exceptions import ProviderError
from crosspost.schemas.posts import PostContent
from crosspost.services.oauth.types import CredentialRef


@dataclass
class PublishResult:
    post_id: str
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"post_id": self.post_id, "url": self.url}


@dataclass
class PublishCredentials:
    """The connection a job publishes as.

    access_token() goes back through the token manager on every call, so a
    long-running publish picks up a refreshed token if the old one expires.
    """
    token_manager: Any
    ref: CredentialRef
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    async def access_token(self) -> str:
        return await self.token_manager.valid_access_token(self.ref)

    @classmethod
    async def resolve(cls, token_manager, ref: CredentialRef) -> "PublishCredentials":
        # Raises NotConnected/Reauthentication errors before any platform call
        await token_manager.valid_access_token(ref)
        details = token_manager.get_status(ref)
        return cls(
            token_manager=token_manager,
            ref=CredentialRef(ref.user_id, ref.platform, details.get("platform_account_id")),
            account_id=details.get("platform_account_id"),
            account_name=details.get("platform_account_name"),
            metadata=details.get("metadata") or {},
        )


class BasePublisher(ABC):
    """Publishes validated content to one platform"""

    platform: str = ""
    # Platforms authenticated with deployment credentials instead of user OAuth
    requires_oauth: bool = True

    @abstractmethod
    async def publish(self, client: httpx.AsyncClient, content: PostContent,
                      credentials: Optional[PublishCredentials]) -> PublishResult:
        """Publish content and return the remote post id and public URL

        Raises:
            ProviderError: Non-2xx from the platform
            PublishFailedError: The platform rejected the post or media
            PublishTimeoutError: Server-side processing did not finish in time
        """
        pass


def check_response(response: httpx.Response, message: str, logger=None) -> httpx.Response:
    """Raise ProviderError with the raw body for non-2xx responses"""
    if response.status_code >= 400:
        if logger is not None:
            logger.error(
                f"{message}: {response.status_code}",
                extra={"status_code": response.status_code, "response_body": response.text[:1000]},
            )
        raise ProviderError.from_response(message, response)
    return response
