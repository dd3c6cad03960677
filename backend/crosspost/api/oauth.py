"""OAuth connection routes: connect, callback, status, refresh, disconnect"""
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from crosspost.api.dependencies import require_oauth_platform, require_user_id, token_manager_dependency
from crosspost.core.config import settings
from crosspost.core.exceptions import ExpiredStateError, InvalidStateError, NotConfiguredError, ProviderError
from crosspost.core.logging import oauth_logger as logger
from crosspost.core.metrics import oauth_flows_counter
from crosspost.core.platforms import Platform
from crosspost.db.session import get_db
from crosspost.schemas.oauth import AuthorizationUrlResponse, ConnectionList, ConnectionStatus
from crosspost.services.oauth.token_manager import TokenManager
from crosspost.services.oauth.types import CredentialRef

router = APIRouter(prefix="/api/auth", tags=["oauth"])


def _frontend_redirect(**params) -> RedirectResponse:
    query = urlencode({key: value for key, value in params.items() if value is not None})
    return RedirectResponse(url=f"{settings.FRONTEND_URL}?{query}")


@router.get("/connections", response_model=ConnectionList)
def list_connections(
    user_id: str = Depends(require_user_id),
    manager: TokenManager = Depends(token_manager_dependency),
    db: Session = Depends(get_db),
):
    """All active connections for the calling user"""
    return {"connections": manager.list_connections(user_id, db=db)}


@router.get("/{platform}/authorize", response_model=AuthorizationUrlResponse)
async def get_authorization_url(
    platform: Platform = Depends(require_oauth_platform),
    user_id: str = Depends(require_user_id),
    manager: TokenManager = Depends(token_manager_dependency),
):
    """Return the provider consent URL (for SPA frontends that redirect themselves)"""
    return {"authorization_url": await manager.authorization_url(user_id, platform.value)}


@router.get("/{platform}/connect")
async def connect(
    platform: Platform = Depends(require_oauth_platform),
    user_id: str = Depends(require_user_id),
    manager: TokenManager = Depends(token_manager_dependency),
):
    """Redirect the browser to the provider consent screen"""
    return RedirectResponse(url=await manager.authorization_url(user_id, platform.value))


@router.get("/{platform}/callback")
async def oauth_callback(
    platform: Platform = Depends(require_oauth_platform),
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    manager: TokenManager = Depends(token_manager_dependency),
    db: Session = Depends(get_db),
):
    """Provider redirect target.

    Provider-reported errors (user denied consent...) and failures on our
    side are sent to the frontend with different error codes.
    """
    name = platform.value
    if error:
        logger.warning(f"{name} authorization denied by provider: {error} - {error_description}")
        oauth_flows_counter.labels(platform=name, outcome="provider_denied").inc()
        if state:
            await manager.state_cache.remove(state)
        return _frontend_redirect(error="provider_denied", platform=name, reason=error_description or error)

    if not code or not state:
        oauth_flows_counter.labels(platform=name, outcome="invalid_state").inc()
        return _frontend_redirect(error="invalid_state", platform=name)

    try:
        connection = await manager.exchange_code(name, code, state, db=db)
    except ExpiredStateError:
        return _frontend_redirect(error="expired_state", platform=name)
    except InvalidStateError:
        return _frontend_redirect(error="invalid_state", platform=name)
    except NotConfiguredError:
        logger.error(f"{name} callback received but OAuth is not configured")
        return _frontend_redirect(error="not_configured", platform=name)
    except (ProviderError, httpx.HTTPError) as e:
        logger.error(f"{name} token exchange failed: {e}")
        return _frontend_redirect(error="exchange_failed", platform=name)

    return _frontend_redirect(connected=name, account=connection.platform_account_name)


@router.get("/{platform}/status", response_model=ConnectionStatus)
async def connection_status(
    platform: Platform = Depends(require_oauth_platform),
    account_id: Optional[str] = None,
    user_id: str = Depends(require_user_id),
    manager: TokenManager = Depends(token_manager_dependency),
    db: Session = Depends(get_db),
):
    """Connection status, refreshing the token first when it is about to expire"""
    ref = CredentialRef(user_id, platform.value, account_id)
    status = manager.get_status(ref, db=db)
    if not status["connected"] or not status["needs_refresh"]:
        return status

    lookup = await manager.get_connection(ref, db=db)
    status = manager.get_status(ref, db=db)
    if lookup.refresh_error is not None:
        status["refresh_error"] = str(lookup.refresh_error)
    return status


@router.post("/{platform}/refresh", response_model=ConnectionStatus)
async def refresh_connection(
    platform: Platform = Depends(require_oauth_platform),
    account_id: Optional[str] = None,
    user_id: str = Depends(require_user_id),
    manager: TokenManager = Depends(token_manager_dependency),
    db: Session = Depends(get_db),
):
    """Refresh the access token now"""
    ref = CredentialRef(user_id, platform.value, account_id)
    await manager.refresh(ref, db=db)
    return manager.get_status(ref, db=db)


@router.delete("/{platform}")
def disconnect(
    platform: Platform = Depends(require_oauth_platform),
    account_id: Optional[str] = None,
    purge: bool = False,
    user_id: str = Depends(require_user_id),
    manager: TokenManager = Depends(token_manager_dependency),
    db: Session = Depends(get_db),
):
    """Revoke (soft delete) a connection, or remove it entirely with purge=true"""
    ref = CredentialRef(user_id, platform.value, account_id)
    if purge:
        removed = manager.purge(ref, db=db) if account_id else manager.purge_all(user_id, platform.value, db=db) > 0
    else:
        removed = manager.revoke(ref, db=db)
    if not removed:
        raise HTTPException(status_code=404, detail=f"No {platform.value} connection found")
    return {"message": f"{platform.value} disconnected", "purged": purge}
