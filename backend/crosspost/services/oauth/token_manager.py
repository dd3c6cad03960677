"""Token lifecycle: authorization URLs, code exchange and refresh-on-read.

Refresh is single-flight per credential. Concurrent callers that need the
same credential refreshed queue on one asyncio.Lock; whoever gets it second
re-reads the row and reuses the token the first caller stored instead of
spending the refresh token again (several providers rotate refresh tokens
on use, so a second exchange would fail).
"""
import asyncio
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, List, Optional

import httpx
from sqlalchemy.orm import Session

from crosspost.core.config import settings
from crosspost.core.exceptions import (
    CrosspostError,
    ExpiredStateError,
    InvalidStateError,
    NoRefreshTokenError,
    NotConnectedError,
    ProviderError,
    RefreshExpiredError,
    TokenRefreshError,
)
from crosspost.core.logging import oauth_logger, token_logger
from crosspost.core.metrics import oauth_flows_counter, token_refresh_counter
from crosspost.db import credentials as store
from crosspost.db.session import SessionLocal
from crosspost.models.social_connection import SocialConnection, as_utc
from crosspost.services.oauth.providers import get_provider
from crosspost.services.oauth.state import OAuthStateCache, get_state_cache
from crosspost.services.oauth.types import CredentialRef

OAUTH_HTTP_TIMEOUT = 30.0


@dataclass
class ConnectionLookup:
    """A credential plus the reason it could not be refreshed, if any"""
    connection: SocialConnection
    refresh_error: Optional[CrosspostError] = None

    @property
    def needs_reauthentication(self) -> bool:
        return self.refresh_error is not None


def _default_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=OAUTH_HTTP_TIMEOUT)


class TokenManager:
    def __init__(
        self,
        state_cache: OAuthStateCache = None,
        session_factory: Callable[[], Session] = SessionLocal,
        http_client_factory: Callable[[], httpx.AsyncClient] = _default_http_client,
        provider_factory: Callable = get_provider,
        lookahead_seconds: int = None,
    ):
        self.state_cache = state_cache or get_state_cache()
        self.session_factory = session_factory
        self.http_client_factory = http_client_factory
        self.provider_factory = provider_factory
        self.lookahead_seconds = (
            lookahead_seconds if lookahead_seconds is not None else settings.TOKEN_REFRESH_LOOKAHEAD_SECONDS
        )
        # Entries vanish once no caller holds or waits on the lock
        self._refresh_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @contextmanager
    def _session(self, db: Session = None):
        if db is not None:
            yield db
            return
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(key)
        if lock is None:
            lock = self._refresh_locks[key] = asyncio.Lock()
        return lock

    # -- authorization flow ----------------------------------------------------

    async def authorization_url(self, user_id: str, platform: str) -> str:
        """Consent URL for the platform, bound to a fresh single-use state token"""
        provider = self.provider_factory(platform)
        provider.ensure_configured()
        issued = await self.state_cache.issue(user_id, platform, with_pkce=provider.uses_pkce)
        oauth_logger.info(f"Starting {platform} authorization for user {user_id}")
        oauth_flows_counter.labels(platform=str(platform), outcome="started").inc()
        return provider.build_auth_url(issued.state, issued.code_challenge)

    async def exchange_code(self, platform: str, code: str, state: str, db: Session = None) -> SocialConnection:
        """Complete the callback: consume state, swap the code for tokens, store them"""
        try:
            pending = await self.state_cache.redeem(state)
        except ExpiredStateError:
            oauth_flows_counter.labels(platform=str(platform), outcome="expired_state").inc()
            raise
        except InvalidStateError:
            oauth_flows_counter.labels(platform=str(platform), outcome="invalid_state").inc()
            raise
        if pending.platform != str(platform):
            oauth_flows_counter.labels(platform=str(platform), outcome="invalid_state").inc()
            raise InvalidStateError(
                f"OAuth state was issued for {pending.platform}, not {platform}; please restart authentication"
            )

        provider = self.provider_factory(platform)
        try:
            async with self.http_client_factory() as client:
                tokens = await provider.exchange_code(client, code, pending.code_verifier)
                identity = await provider.fetch_identity(client, tokens)
        except (ProviderError, httpx.HTTPError) as e:
            oauth_flows_counter.labels(platform=str(platform), outcome="exchange_failed").inc()
            oauth_logger.error(f"{platform} code exchange failed for user {pending.user_id}: {e}")
            raise

        with self._session(db) as session:
            connection = store.upsert_connection(pending.user_id, str(platform), tokens, identity, session)

        oauth_flows_counter.labels(platform=str(platform), outcome="connected").inc()
        oauth_logger.info(
            f"Connected {platform} account {identity.account_name or identity.account_id} for user {pending.user_id}"
        )
        return connection

    # -- reading credentials ----------------------------------------------------

    def _require_connection(self, ref: CredentialRef, db: Session) -> SocialConnection:
        connection = store.find_connection(ref, db=db)
        if connection is None:
            raise NotConnectedError(ref.platform, ref.user_id)
        return connection

    async def valid_access_token(self, ref: CredentialRef, db: Session = None) -> str:
        """Current access token, refreshed first when inside the look-ahead window.

        Refresh failures propagate; publish jobs fail on them without retrying.
        """
        with self._session(db) as session:
            connection = self._require_connection(ref, session)
            if connection.needs_refresh(self.lookahead_seconds):
                connection = await self._refresh_connection(connection, session)
            return store.get_access_token(connection)

    async def get_connection(self, ref: CredentialRef, db: Session = None) -> ConnectionLookup:
        """Refresh-if-needed lookup that keeps the stale credential on failure"""
        with self._session(db) as session:
            connection = self._require_connection(ref, session)
            if not connection.needs_refresh(self.lookahead_seconds):
                return ConnectionLookup(connection)
            try:
                return ConnectionLookup(await self._refresh_connection(connection, session))
            except (NoRefreshTokenError, RefreshExpiredError, ProviderError) as e:
                token_logger.warning(f"Returning stale {ref.platform} credential for user {ref.user_id}: {e}")
                return ConnectionLookup(connection, refresh_error=e)

    async def refresh(self, ref: CredentialRef, db: Session = None) -> SocialConnection:
        """Refresh now, regardless of the expiry window"""
        with self._session(db) as session:
            connection = self._require_connection(ref, session)
            return await self._refresh_connection(connection, session, force=True)

    async def _refresh_connection(self, connection: SocialConnection, db: Session,
                                  force: bool = False) -> SocialConnection:
        platform = connection.platform
        key = CredentialRef(connection.user_id, platform, connection.platform_account_id).lock_key
        seen_updated_at = as_utc(connection.updated_at)

        lock = self._lock_for(key)
        async with lock:
            # Double-check: another caller may have refreshed while we waited
            db.expire_all()
            current = store.get_connection_by_id(connection.id, db)
            if current is None or not current.is_active:
                raise NotConnectedError(platform, connection.user_id)
            if not force and not current.needs_refresh(self.lookahead_seconds):
                token_logger.info(f"{platform} token for user {current.user_id} already refreshed by another caller")
                return current
            if force and seen_updated_at and as_utc(current.updated_at) > seen_updated_at:
                return current

            provider = self.provider_factory(platform)
            if provider.refreshes_with_access_token:
                grant_token = store.get_access_token(current)
            else:
                grant_token = store.get_refresh_token(current)
            if not grant_token:
                token_refresh_counter.labels(platform=platform, outcome="no_refresh_token").inc()
                raise NoRefreshTokenError(platform)
            if current.is_refresh_token_expired():
                token_refresh_counter.labels(platform=platform, outcome="refresh_expired").inc()
                raise RefreshExpiredError(platform)

            token_logger.info(f"Refreshing {platform} token for user {current.user_id}")
            try:
                async with self.http_client_factory() as client:
                    tokens = await provider.refresh(client, grant_token)
            except (ProviderError, httpx.HTTPError) as e:
                token_refresh_counter.labels(platform=platform, outcome="error").inc()
                token_logger.error(f"{platform} token refresh failed for user {current.user_id}: {e}")
                raise TokenRefreshError.wrap(platform, e) from e

            if not store.update_tokens_if_active(current.id, tokens, db):
                token_refresh_counter.labels(platform=platform, outcome="revoked").inc()
                token_logger.warning(f"{platform} connection {current.id} was revoked during refresh, discarding tokens")
                raise NotConnectedError(platform, current.user_id)

            db.refresh(current)
            token_refresh_counter.labels(platform=platform, outcome="success").inc()
            return current

    def get_status(self, ref: CredentialRef, db: Session = None) -> dict:
        with self._session(db) as session:
            connection = store.find_connection(ref, db=session)
            if connection is None:
                return {"connected": False, "platform": str(ref.platform)}
            return {
                "connected": True,
                "platform": connection.platform,
                "platform_account_id": connection.platform_account_id,
                "platform_account_name": connection.platform_account_name,
                "display_name": connection.display_name,
                "scopes": list(connection.scopes or []),
                "expires_at": as_utc(connection.expires_at),
                "needs_refresh": connection.needs_refresh(self.lookahead_seconds),
                "is_expired": connection.is_expired(),
                "metadata": dict(connection.extra_data or {}),
            }

    def list_connections(self, user_id: str, db: Session = None) -> List[dict]:
        with self._session(db) as session:
            return [
                self.get_status(
                    CredentialRef(user_id, connection.platform, connection.platform_account_id), db=session
                )
                for connection in store.list_connections(user_id, session)
            ]

    # -- revocation ------------------------------------------------------------

    def revoke(self, ref: CredentialRef, db: Session = None) -> bool:
        """Soft delete. The provider's remote revocation endpoint is not called."""
        with self._session(db) as session:
            revoked = store.deactivate_connections(ref, session) > 0
        if revoked:
            oauth_logger.info(f"Revoked {ref.platform} connection for user {ref.user_id}")
        return revoked

    def revoke_all(self, user_id: str, platform: str, db: Session = None) -> int:
        with self._session(db) as session:
            return store.deactivate_connections(CredentialRef(user_id, platform), session, all_accounts=True)

    def purge(self, ref: CredentialRef, db: Session = None) -> bool:
        """Hard delete; only on explicit request"""
        with self._session(db) as session:
            purged = store.delete_connections(ref, session) > 0
        if purged:
            oauth_logger.info(f"Purged {ref.platform} connection for user {ref.user_id}")
        return purged

    def purge_all(self, user_id: str, platform: str, db: Session = None) -> int:
        with self._session(db) as session:
            return store.delete_connections(CredentialRef(user_id, platform), session, all_accounts=True)


_token_manager: Optional[TokenManager] = None


def get_token_manager() -> TokenManager:
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenManager()
    return _token_manager
