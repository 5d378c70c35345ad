"""
Bearer token cache for the provider REST API.

Tokens are fetched lazily through the OAuth client-credentials grant and
reused until `expires_at - margin`. Refreshes are single-flight per scope:
callers that find the token stale while a refresh is running wait for that
refresh instead of starting their own. When a shared cache backend is
configured the token (and its refresh lock) is shared across processes.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import httpx

from application.ports.provider_api import ProviderTimeoutError, TokenAcquisitionError
from core.logging_config import get_logger
from infrastructure.external.api_clients import (
    APINetworkError,
    APITimeoutError,
    BaseAPIClient,
    HTTPMethod,
)
from infrastructure.external.cache import CacheInterface

logger = get_logger(__name__)

DEFAULT_SCOPE = "default"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: datetime
    scope: str = DEFAULT_SCOPE

    def is_fresh(self, now: datetime, margin: timedelta) -> bool:
        return now < self.expires_at - margin

    def to_cache(self) -> dict:
        return {"token": self.token, "expires_at": self.expires_at.isoformat(), "scope": self.scope}

    @classmethod
    def from_cache(cls, value) -> Optional["AccessToken"]:
        if not isinstance(value, dict):
            return None
        try:
            expires_at = datetime.fromisoformat(value["expires_at"])
            return cls(token=str(value["token"]), expires_at=expires_at, scope=value.get("scope", DEFAULT_SCOPE))
        except (KeyError, TypeError, ValueError):
            return None


TokenFetcher = Callable[[str], Awaitable[AccessToken]]


class OAuthTokenClient(BaseAPIClient):
    """Client-credentials grant against `/v1/oauth2/token`."""

    TOKEN_ENDPOINT = "/v1/oauth2/token"

    def __init__(
        self,
        base_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        *,
        timeout: httpx.Timeout,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)
        self._client_id = client_id
        self._client_secret = client_secret
        self._clock = clock

    async def fetch(self, scope: str = DEFAULT_SCOPE) -> AccessToken:
        if not self._client_id or not self._client_secret:
            raise TokenAcquisitionError("Provider credentials are not configured")

        try:
            response = await self._send(
                HTTPMethod.POST,
                self.TOKEN_ENDPOINT,
                data={"grant_type": "client_credentials"},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                auth=(self._client_id, self._client_secret),
            )
        except APITimeoutError as exc:
            raise ProviderTimeoutError("Timed out requesting an access token") from exc
        except APINetworkError as exc:
            raise TokenAcquisitionError(f"Could not reach the token endpoint: {exc.message}") from exc

        payload = response.data if isinstance(response.data, dict) else {}
        if not response.is_success:
            raise TokenAcquisitionError(
                payload.get("error_description") or f"Token request failed with status {response.status_code}",
                status_code=response.status_code,
                payload=payload,
            )

        token = payload.get("access_token")
        try:
            expires_in = int(payload.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0
        if not token or expires_in <= 0:
            raise TokenAcquisitionError("Token response is missing access_token/expires_in", payload=payload)

        logger.info("access_token_fetched", scope=scope, expires_in=expires_in)
        return AccessToken(token=token, expires_at=self._clock() + timedelta(seconds=expires_in), scope=scope)


class BearerTokenCache:
    """Per-scope token cache with single-flight refresh."""

    KEY_PREFIX = "paypal-bearer"

    def __init__(
        self,
        fetcher: TokenFetcher,
        *,
        margin_seconds: int = 60,
        store: Optional[CacheInterface] = None,
        lock_timeout_seconds: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._fetcher = fetcher
        self._margin = timedelta(seconds=margin_seconds)
        self._store = store
        self._lock_timeout = lock_timeout_seconds
        self._clock = clock
        self._tokens: dict[str, AccessToken] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _key(self, scope: str) -> str:
        return f"{self.KEY_PREFIX}:{scope}"

    def _lock_for(self, scope: str) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = self._locks[scope] = asyncio.Lock()
        return lock

    async def _cached(self, scope: str) -> Optional[AccessToken]:
        token = self._tokens.get(scope)
        if token is not None and token.is_fresh(self._clock(), self._margin):
            return token
        if self._store is not None:
            shared = AccessToken.from_cache(await self._store.get(self._key(scope)))
            if shared is not None and shared.is_fresh(self._clock(), self._margin):
                self._tokens[scope] = shared
                return shared
        return None

    async def get_token(self, scope: str = DEFAULT_SCOPE) -> AccessToken:
        token = await self._cached(scope)
        if token is not None:
            return token

        async with self._lock_for(scope):
            # another waiter may have refreshed while we were queued
            token = await self._cached(scope)
            if token is not None:
                return token
            if self._store is None:
                return await self._refresh(scope)
            async with self._store.lock(self._key(scope), timeout=self._lock_timeout,
                                        blocking_timeout=self._lock_timeout):
                token = await self._cached(scope)
                if token is not None:
                    return token
                return await self._refresh(scope)

    async def _refresh(self, scope: str) -> AccessToken:
        token = await self._fetcher(scope)
        self._tokens[scope] = token
        if self._store is not None:
            ttl = int((token.expires_at - self._clock()).total_seconds())
            if ttl > 0:
                await self._store.set(self._key(scope), token.to_cache(), ttl=ttl)
        return token

    async def invalidate(self, scope: str = DEFAULT_SCOPE, token: Optional[str] = None) -> None:
        """Drop the cached token; with `token` given, only if it is still the cached one."""
        current = self._tokens.get(scope)
        if token is not None and current is not None and current.token != token:
            return
        self._tokens.pop(scope, None)
        if self._store is not None:
            shared = AccessToken.from_cache(await self._store.get(self._key(scope)))
            if shared is None or token is None or shared.token == token:
                await self._store.delete(self._key(scope))
        logger.info("access_token_invalidated", scope=scope)
