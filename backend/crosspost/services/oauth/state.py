"""CSRF state tokens and PKCE verifiers for in-flight OAuth authorizations"""
import asyncio
import base64
import hashlib
import json
import math
import re
import secrets
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

from crosspost.core.config import settings
from crosspost.core.exceptions import ExpiredStateError, InvalidStateError
from crosspost.core.logging import mask_secret, oauth_logger
from crosspost.core.metrics import pending_oauth_states_gauge
from crosspost.db.redis import get_async_redis_client

PKCE_VERIFIER_MIN_LENGTH = 43
PKCE_VERIFIER_MAX_LENGTH = 128
_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")
STATE_KEY_PREFIX = "oauth:state:"


@dataclass
class PendingAuthState:
    user_id: str
    platform: str
    code_verifier: Optional[str] = None
    code_challenge: Optional[str] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class IssuedState:
    state: str
    code_challenge: Optional[str] = None


def generate_state() -> str:
    """256 bits of randomness, hex encoded"""
    return secrets.token_hex(32)


def generate_code_verifier(length: int = 64) -> str:
    """Random alphanumeric PKCE verifier of 43-128 characters"""
    length = max(PKCE_VERIFIER_MIN_LENGTH, min(length, PKCE_VERIFIER_MAX_LENGTH))
    verifier = ""
    while len(verifier) < length:
        verifier += _NON_ALPHANUMERIC.sub("", secrets.token_urlsafe(length))
    return verifier[:length]


def code_challenge_s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class OAuthStateCache:
    """Single-use state tokens stored in Redis.

    Any worker process can finish a flow that another one started. Each
    entry records when it was issued; an entry older than the TTL is
    rejected as expired. Keys are kept one sweep interval past the TTL so a
    late callback can still be told apart from a forged one, after which the
    sweep (or Redis expiry) removes them.
    """

    def __init__(
        self,
        ttl_seconds: int = None,
        sweep_interval_seconds: int = None,
        redis_factory: Callable = get_async_redis_client,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.OAUTH_STATE_TTL_SECONDS
        self.sweep_interval_seconds = (
            sweep_interval_seconds if sweep_interval_seconds is not None
            else settings.OAUTH_STATE_SWEEP_INTERVAL_SECONDS
        )
        self._redis_factory = redis_factory
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None

    def _client(self):
        client = self._redis_factory()
        if client is None:
            raise RuntimeError("Async Redis client not available")
        return client

    @staticmethod
    def _key(state: str) -> str:
        return f"{STATE_KEY_PREFIX}{state}"

    def _is_expired(self, pending: PendingAuthState) -> bool:
        return self._clock() - pending.created_at >= self.ttl_seconds

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[PendingAuthState]:
        if raw is None:
            return None
        return PendingAuthState(**json.loads(raw))

    async def issue(self, user_id: str, platform: str, with_pkce: bool = False) -> IssuedState:
        state = generate_state()
        pending = PendingAuthState(user_id=str(user_id), platform=str(platform), created_at=self._clock())
        if with_pkce:
            pending.code_verifier = generate_code_verifier()
            pending.code_challenge = code_challenge_s256(pending.code_verifier)
        await self._client().setex(
            self._key(state),
            math.ceil(self.ttl_seconds + self.sweep_interval_seconds),
            json.dumps(asdict(pending)),
        )
        pending_oauth_states_gauge.inc()
        oauth_logger.debug(f"Issued {platform} state {mask_secret(state)} for user {user_id} (pkce={with_pkce})")
        return IssuedState(state=state, code_challenge=pending.code_challenge)

    async def redeem(self, state: str) -> PendingAuthState:
        """Consume a state exactly once.

        Raises ExpiredStateError for a state past its TTL and
        InvalidStateError for one that is unknown or already used.
        """
        if not state:
            raise InvalidStateError()
        # GETDEL: two concurrent callbacks cannot both read the entry
        pending = self._decode(await self._client().getdel(self._key(state)))
        if pending is None:
            oauth_logger.warning(f"Rejected unknown OAuth state {mask_secret(state)}")
            raise InvalidStateError()
        pending_oauth_states_gauge.dec()
        if self._is_expired(pending):
            oauth_logger.warning(f"Rejected expired OAuth state {mask_secret(state)}")
            raise ExpiredStateError()
        return pending

    async def consume(self, state: str) -> Optional[PendingAuthState]:
        """Return the pending authorization once; None when unknown, used or expired"""
        try:
            return await self.redeem(state)
        except InvalidStateError:
            return None

    async def peek(self, state: str) -> Optional[PendingAuthState]:
        pending = self._decode(await self._client().get(self._key(state)))
        if pending is None or self._is_expired(pending):
            return None
        return pending

    async def remove(self, state: str) -> bool:
        removed = bool(await self._client().delete(self._key(state)))
        if removed:
            pending_oauth_states_gauge.dec()
        return removed

    async def count(self) -> int:
        """Live (unexpired) states across all processes"""
        live = 0
        async for key in self._client().scan_iter(match=f"{STATE_KEY_PREFIX}*"):
            pending = self._decode(await self._client().get(key))
            if pending is not None and not self._is_expired(pending):
                live += 1
        return live

    async def sweep(self) -> int:
        """Delete states past their TTL and refresh the pending gauge; returns the number evicted"""
        client = self._client()
        evicted = 0
        live = 0
        async for key in client.scan_iter(match=f"{STATE_KEY_PREFIX}*"):
            pending = self._decode(await client.get(key))
            if pending is None:
                continue
            if self._is_expired(pending):
                evicted += await client.delete(key)
            else:
                live += 1
        pending_oauth_states_gauge.set(live)
        if evicted:
            oauth_logger.info(f"Swept {evicted} expired OAuth state(s)")
        return evicted

    async def _sweep_forever(self):
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                oauth_logger.error(f"OAuth state sweep failed: {e}", exc_info=True)

    def start_sweeper(self) -> asyncio.Task:
        """Run sweep() every sweep interval on the current event loop"""
        if self._sweeper is None or self._sweeper.done():
            oauth_logger.info(f"OAuth state sweeper running every {self.sweep_interval_seconds}s")
            self._sweeper = asyncio.create_task(self._sweep_forever())
        return self._sweeper

    async def stop_sweeper(self):
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None


_state_cache: Optional[OAuthStateCache] = None


def get_state_cache() -> OAuthStateCache:
    """Process-wide handle used by the auth routes and the sweeper"""
    global _state_cache
    if _state_cache is None:
        _state_cache = OAuthStateCache()
    return _state_cache
