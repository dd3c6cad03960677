"""Token manager tests: code exchange, refresh-on-read, single-flight refresh and revocation"""
import asyncio
import gc
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from crosspost.core.exceptions import (
    InvalidStateError,
    NoRefreshTokenError,
    NotConnectedError,
    ProviderError,
    RefreshExpiredError,
    TokenRefreshError,
)
from crosspost.db import credentials as store
from crosspost.models.social_connection import SocialConnection, as_utc
from crosspost.services.oauth.types import CredentialRef, Identity, TokenSet

TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
TWITTER_USER_URL = "https://api.twitter.com/2/users/me"


def _seed(db, platform="twitter", account_id="acct-1", expires_in=3600, refresh_token="refresh-1",
          access_token="access-1", user_id="user-1"):
    return store.upsert_connection(
        user_id, platform,
        TokenSet(access_token=access_token, refresh_token=refresh_token, expires_in=expires_in),
        Identity(account_id=account_id, account_name="handle"),
        db,
    )


def _expire(db, connection, seconds_from_now=-60):
    connection.expires_at = datetime.now(timezone.utc) + timedelta(seconds=seconds_from_now)
    db.commit()


def _state_from(url):
    return parse_qs(urlparse(url).query)["state"][0]


def _refresh_handler(calls, access_token="access-2", refresh_token="refresh-2", delay=0.0):
    async def handler(request):
        assert str(request.url) == TWITTER_TOKEN_URL
        calls.append(parse_qs(request.content.decode()))
        if delay:
            await asyncio.sleep(delay)
        payload = {"access_token": access_token, "expires_in": 3600}
        if refresh_token:
            payload["refresh_token"] = refresh_token
        return httpx.Response(200, json=payload)
    return handler


@pytest.mark.critical
class TestCodeExchange:
    """Test the callback half of the authorization flow"""

    @pytest.mark.asyncio
    async def test_exchange_creates_credential(self, token_manager, db_session, http_factory):
        """Test a valid state and code produce an active encrypted credential"""
        url = await token_manager.authorization_url("user-1", "twitter")
        state = _state_from(url)
        pending = await token_manager.state_cache.peek(state)
        seen = {}

        def handler(request):
            if str(request.url) == TWITTER_TOKEN_URL:
                seen["form"] = parse_qs(request.content.decode())
                return httpx.Response(200, json={
                    "access_token": "access-1", "refresh_token": "refresh-1",
                    "expires_in": 7200, "scope": "tweet.read tweet.write",
                })
            return httpx.Response(200, json={"data": {"id": "42", "username": "ada", "name": "Ada"}})

        token_manager.http_client_factory = http_factory(handler)
        connection = await token_manager.exchange_code("twitter", "code-1", state, db=db_session)

        assert seen["form"]["code_verifier"] == [pending.code_verifier]
        assert connection.user_id == "user-1"
        assert connection.platform_account_id == "42"
        assert connection.is_active is True
        assert connection.access_token != "access-1"
        assert store.get_access_token(connection) == "access-1"
        assert store.get_refresh_token(connection) == "refresh-1"
        assert connection.scopes == ["tweet.read", "tweet.write"]
        assert await token_manager.state_cache.count() == 0

    @pytest.mark.asyncio
    async def test_unknown_state_rejected_without_network(self, token_manager, db_session):
        """Test an unknown state never reaches the provider"""
        with pytest.raises(InvalidStateError):
            await token_manager.exchange_code("twitter", "code-1", "not-a-state", db=db_session)
        assert db_session.query(SocialConnection).count() == 0

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, token_manager, db_session, http_factory):
        """Test replaying a callback fails"""
        state = _state_from(await token_manager.authorization_url("user-1", "twitter"))

        def handler(request):
            if str(request.url) == TWITTER_TOKEN_URL:
                return httpx.Response(200, json={"access_token": "a", "expires_in": 60})
            return httpx.Response(200, json={"data": {"id": "42", "username": "ada"}})

        token_manager.http_client_factory = http_factory(handler)
        await token_manager.exchange_code("twitter", "code-1", state, db=db_session)
        with pytest.raises(InvalidStateError):
            await token_manager.exchange_code("twitter", "code-1", state, db=db_session)

    @pytest.mark.asyncio
    async def test_platform_mismatch_rejected(self, token_manager, db_session):
        """Test a state issued for one platform cannot complete another"""
        state = _state_from(await token_manager.authorization_url("user-1", "twitter"))
        with pytest.raises(InvalidStateError, match="issued for twitter"):
            await token_manager.exchange_code("linkedin", "code-1", state, db=db_session)

    @pytest.mark.asyncio
    async def test_provider_failure_stores_nothing(self, token_manager, db_session, http_factory):
        """Test a failed exchange leaves the store untouched"""
        state = _state_from(await token_manager.authorization_url("user-1", "twitter"))
        token_manager.http_client_factory = http_factory(
            lambda request: httpx.Response(400, json={"error": "invalid_grant"})
        )
        with pytest.raises(ProviderError) as exc_info:
            await token_manager.exchange_code("twitter", "code-1", state, db=db_session)
        assert exc_info.value.status_code == 400
        assert db_session.query(SocialConnection).count() == 0

    @pytest.mark.asyncio
    async def test_linkedin_authorization_has_no_pkce(self, token_manager):
        """Test non-PKCE platforms store no verifier"""
        url = await token_manager.authorization_url("user-1", "linkedin")
        pending = await token_manager.state_cache.peek(_state_from(url))
        assert "code_challenge" not in parse_qs(urlparse(url).query)
        assert pending.code_verifier is None
        assert pending.platform == "linkedin"


@pytest.mark.critical
class TestRefreshOnRead:
    """Test look-ahead refresh when reading access tokens"""

    def test_lookahead_boundary(self, db_session):
        """Test the refresh window edge"""
        connection = _seed(db_session)
        now = datetime.now(timezone.utc)
        connection.expires_at = now + timedelta(seconds=299)
        assert connection.needs_refresh(300, now=now) is True
        connection.expires_at = now + timedelta(seconds=301)
        assert connection.needs_refresh(300, now=now) is False

    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_network(self, token_manager, db_session):
        """Test no refresh happens outside the window"""
        _seed(db_session, expires_in=3600)
        token = await token_manager.valid_access_token(CredentialRef("user-1", "twitter"), db=db_session)
        assert token == "access-1"

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, token_manager, db_session, http_factory):
        """Test an expired credential is refreshed before use"""
        connection = _seed(db_session)
        _expire(db_session, connection)
        calls = []
        token_manager.http_client_factory = http_factory(_refresh_handler(calls))

        token = await token_manager.valid_access_token(CredentialRef("user-1", "twitter"), db=db_session)

        assert token == "access-2"
        assert calls[0]["grant_type"] == ["refresh_token"]
        assert calls[0]["refresh_token"] == ["refresh-1"]
        refreshed = store.find_connection(CredentialRef("user-1", "twitter"), db=db_session)
        assert store.get_refresh_token(refreshed) == "refresh-2"
        expires_at = as_utc(refreshed.expires_at)
        expected = datetime.now(timezone.utc) + timedelta(seconds=3600)
        assert abs((expires_at - expected).total_seconds()) < 60

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_when_omitted(self, token_manager, db_session, http_factory):
        """Test the old refresh token survives a response without one"""
        connection = _seed(db_session)
        _expire(db_session, connection)
        token_manager.http_client_factory = http_factory(_refresh_handler([], refresh_token=None))

        await token_manager.valid_access_token(CredentialRef("user-1", "twitter"), db=db_session)

        refreshed = store.find_connection(CredentialRef("user-1", "twitter"), db=db_session)
        assert store.get_access_token(refreshed) == "access-2"
        assert store.get_refresh_token(refreshed) == "refresh-1"

    @pytest.mark.asyncio
    async def test_concurrent_reads_refresh_once(self, token_manager, db_session, http_factory):
        """Test concurrent callers share a single refresh exchange"""
        connection = _seed(db_session)
        _expire(db_session, connection)
        calls = []
        token_manager.http_client_factory = http_factory(_refresh_handler(calls, delay=0.05))
        ref = CredentialRef("user-1", "twitter")

        tokens = await asyncio.gather(*[
            token_manager.valid_access_token(ref, db=db_session) for _ in range(10)
        ])

        assert len(calls) == 1
        assert set(tokens) == {"access-2"}

    @pytest.mark.asyncio
    async def test_refresh_locks_do_not_accumulate(self, token_manager, db_session, http_factory):
        """Test per-credential refresh locks are dropped once nobody holds them"""
        calls = []
        token_manager.http_client_factory = http_factory(_refresh_handler(calls))
        for account_id in ("acct-1", "acct-2", "acct-3"):
            connection = _seed(db_session, account_id=account_id)
            _expire(db_session, connection)
            await token_manager.valid_access_token(CredentialRef("user-1", "twitter", account_id), db=db_session)

        gc.collect()
        assert len(calls) == 3
        assert len(token_manager._refresh_locks) == 0

    @pytest.mark.asyncio
    async def test_missing_refresh_token_raises(self, token_manager, db_session):
        """Test an expired credential without a refresh token requires re-auth"""
        connection = _seed(db_session, refresh_token=None)
        _expire(db_session, connection)
        with pytest.raises(NoRefreshTokenError):
            await token_manager.valid_access_token(CredentialRef("user-1", "twitter"), db=db_session)

    @pytest.mark.asyncio
    async def test_get_connection_returns_stale_credential(self, token_manager, db_session):
        """Test the lookup variant reports the failure alongside the old credential"""
        connection = _seed(db_session, refresh_token=None)
        _expire(db_session, connection)

        lookup = await token_manager.get_connection(CredentialRef("user-1", "twitter"), db=db_session)

        assert lookup.connection.id == connection.id
        assert isinstance(lookup.refresh_error, NoRefreshTokenError)
        assert lookup.needs_reauthentication is True
        assert store.get_access_token(lookup.connection) == "access-1"

    @pytest.mark.asyncio
    async def test_expired_refresh_token_raises(self, token_manager, db_session):
        """Test refresh-token expiry is checked before calling the provider"""
        connection = _seed(db_session)
        connection.refresh_expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        _expire(db_session, connection)
        with pytest.raises(RefreshExpiredError):
            await token_manager.valid_access_token(CredentialRef("user-1", "twitter"), db=db_session)

    @pytest.mark.asyncio
    async def test_provider_rejection_propagates(self, token_manager, db_session, http_factory):
        """Test a rejected refresh leaves the stored tokens alone"""
        connection = _seed(db_session)
        _expire(db_session, connection)
        token_manager.http_client_factory = http_factory(
            lambda request: httpx.Response(400, json={"error": "invalid_grant"})
        )
        with pytest.raises(TokenRefreshError) as exc_info:
            await token_manager.valid_access_token(CredentialRef("user-1", "twitter"), db=db_session)
        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.body
        assert store.get_access_token(store.get_connection_by_id(connection.id, db_session)) == "access-1"

    @pytest.mark.asyncio
    async def test_not_connected(self, token_manager, db_session):
        """Test reading an unknown credential"""
        with pytest.raises(NotConnectedError):
            await token_manager.valid_access_token(CredentialRef("user-1", "twitter"), db=db_session)

    @pytest.mark.asyncio
    async def test_revoke_during_refresh_discards_tokens(self, token_manager, db_session, http_factory):
        """Test a refresh that completes after revocation does not resurrect the credential"""
        connection = _seed(db_session)
        _expire(db_session, connection)
        ref = CredentialRef("user-1", "twitter")

        async def handler(request):
            store.deactivate_connections(ref, db_session)
            return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})

        token_manager.http_client_factory = http_factory(handler)
        with pytest.raises(NotConnectedError):
            await token_manager.valid_access_token(ref, db=db_session)

        db_session.expire_all()
        row = store.get_connection_by_id(connection.id, db_session)
        assert row.is_active is False
        assert store.get_access_token(row) == "access-1"


@pytest.mark.high
class TestStatusAndRevocation:
    """Test status reporting, revocation and purge"""

    @pytest.mark.asyncio
    async def test_forced_refresh(self, token_manager, db_session, http_factory):
        """Test refresh ignores the expiry window"""
        _seed(db_session, expires_in=3600)
        calls = []
        token_manager.http_client_factory = http_factory(_refresh_handler(calls))
        connection = await token_manager.refresh(CredentialRef("user-1", "twitter"), db=db_session)
        assert len(calls) == 1
        assert store.get_access_token(connection) == "access-2"

    def test_status_for_connected_and_missing(self, token_manager, db_session):
        """Test status payloads"""
        _seed(db_session)
        status = token_manager.get_status(CredentialRef("user-1", "twitter"), db=db_session)
        assert status["connected"] is True
        assert status["platform_account_id"] == "acct-1"
        assert status["needs_refresh"] is False
        assert token_manager.get_status(CredentialRef("user-1", "linkedin"), db=db_session) == {
            "connected": False, "platform": "linkedin",
        }

    def test_revoke_is_soft_delete(self, token_manager, db_session):
        """Test revoked rows stay in the table but stop resolving"""
        connection = _seed(db_session)
        ref = CredentialRef("user-1", "twitter")
        assert token_manager.revoke(ref, db=db_session) is True
        assert store.find_connection(ref, db=db_session) is None
        db_session.expire_all()
        assert store.get_connection_by_id(connection.id, db_session).is_active is False
        assert token_manager.revoke(ref, db=db_session) is False

    def test_revoke_targets_one_account(self, token_manager, db_session):
        """Test revoking one account leaves others connected"""
        _seed(db_session, account_id="acct-1")
        _seed(db_session, account_id="acct-2")
        token_manager.revoke(CredentialRef("user-1", "twitter", "acct-1"), db=db_session)
        remaining = token_manager.list_connections("user-1", db=db_session)
        assert [item["platform_account_id"] for item in remaining] == ["acct-2"]

    def test_revoke_all_and_purge_all(self, token_manager, db_session):
        """Test bulk revocation and hard deletion"""
        _seed(db_session, account_id="acct-1")
        _seed(db_session, account_id="acct-2")
        assert token_manager.revoke_all("user-1", "twitter", db=db_session) == 2
        assert token_manager.list_connections("user-1", db=db_session) == []
        assert token_manager.purge_all("user-1", "twitter", db=db_session) == 2
        assert db_session.query(SocialConnection).count() == 0

    def test_purge_removes_row(self, token_manager, db_session):
        """Test purge hard-deletes even an inactive credential"""
        _seed(db_session)
        ref = CredentialRef("user-1", "twitter")
        token_manager.revoke(ref, db=db_session)
        assert token_manager.purge(ref, db=db_session) is True
        assert db_session.query(SocialConnection).count() == 0
