import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from infrastructure.external.cache import InMemoryCache
from infrastructure.external.paypal.token_cache import AccessToken, BearerTokenCache


class Clock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class CountingFetcher:
    def __init__(self, clock, expires_in=3600):
        self.clock = clock
        self.expires_in = expires_in
        self.calls = 0

    async def __call__(self, scope):
        self.calls += 1
        await asyncio.sleep(0.01)
        return AccessToken(
            token=f"T{self.calls}",
            expires_at=self.clock() + timedelta(seconds=self.expires_in),
            scope=scope,
        )


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_fetch():
    clock = Clock()
    fetcher = CountingFetcher(clock)
    cache = BearerTokenCache(fetcher, margin_seconds=60, clock=clock)

    tokens = await asyncio.gather(*(cache.get_token() for _ in range(10)))

    assert fetcher.calls == 1
    assert {t.token for t in tokens} == {"T1"}


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once():
    clock = Clock()
    fetcher = CountingFetcher(clock, expires_in=600)
    cache = BearerTokenCache(fetcher, margin_seconds=60, clock=clock)
    await cache.get_token()

    # inside the safety margin counts as stale
    clock.advance(541)
    tokens = await asyncio.gather(*(cache.get_token() for _ in range(5)))

    assert fetcher.calls == 2
    assert {t.token for t in tokens} == {"T2"}


@pytest.mark.asyncio
async def test_fresh_token_is_reused():
    clock = Clock()
    fetcher = CountingFetcher(clock, expires_in=600)
    cache = BearerTokenCache(fetcher, margin_seconds=60, clock=clock)

    await cache.get_token()
    clock.advance(500)
    token = await cache.get_token()

    assert token.token == "T1"
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_scopes_are_cached_separately():
    clock = Clock()
    fetcher = CountingFetcher(clock)
    cache = BearerTokenCache(fetcher, clock=clock)

    a = await cache.get_token("payments")
    b = await cache.get_token("vault")

    assert (a.token, b.token) == ("T1", "T2")
    assert b.scope == "vault"


@pytest.mark.asyncio
async def test_invalidate_ignores_a_token_that_was_already_replaced():
    clock = Clock()
    fetcher = CountingFetcher(clock)
    cache = BearerTokenCache(fetcher, clock=clock)
    await cache.get_token()
    await cache.invalidate(token="T1")
    await cache.get_token()

    # a late caller still holding T1 must not drop T2
    await cache.invalidate(token="T1")
    token = await cache.get_token()

    assert token.token == "T2"
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_shared_store_serves_other_instances():
    clock = Clock()
    store = InMemoryCache()
    first_fetcher = CountingFetcher(clock)
    second_fetcher = CountingFetcher(clock)
    first = BearerTokenCache(first_fetcher, store=store, clock=clock)
    second = BearerTokenCache(second_fetcher, store=store, clock=clock)

    await first.get_token()
    token = await second.get_token()

    assert token.token == "T1"
    assert second_fetcher.calls == 0


def test_access_token_cache_roundtrip_rejects_garbage():
    assert AccessToken.from_cache({"token": "x"}) is None
    assert AccessToken.from_cache("not a dict") is None
