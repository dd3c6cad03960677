"""Shared FastAPI dependencies"""
from fastapi import Header, HTTPException

from crosspost.core.platforms import OAUTH_PLATFORMS, Platform
from crosspost.services.oauth.token_manager import TokenManager, get_token_manager


def require_user_id(x_user_id: str = Header(None)) -> str:
    """Caller identity, set by the authenticating gateway in front of this service"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id


def token_manager_dependency() -> TokenManager:
    return get_token_manager()


def require_oauth_platform(platform: Platform) -> Platform:
    if platform not in OAUTH_PLATFORMS:
        raise HTTPException(status_code=404, detail=f"{platform.value} does not use OAuth")
    return platform
