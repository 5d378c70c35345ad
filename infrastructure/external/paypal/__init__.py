"""
Provider (PayPal) REST integration: token cache, authorized client and the
typed endpoint facade.
"""
from typing import Optional

import httpx

from core.settings import PayPalSettings
from infrastructure.external.cache import CacheInterface

from .client import AuthorizedClient
from .endpoints import PayPalApi
from .token_cache import AccessToken, BearerTokenCache, OAuthTokenClient


def build_timeout(config: PayPalSettings) -> httpx.Timeout:
    t = config.timeouts
    return httpx.Timeout(t.total, connect=t.connect, read=t.read, write=t.write)


def build_paypal_api(
    config: PayPalSettings,
    *,
    store: Optional[CacheInterface] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[PayPalApi, list]:
    """Wire token client, token cache and authorized client; returns the API and the closables."""
    timeout = build_timeout(config)
    oauth = OAuthTokenClient(
        config.host,
        config.client_id,
        config.client_secret,
        timeout=timeout,
        transport=transport,
    )
    tokens = BearerTokenCache(
        oauth.fetch,
        margin_seconds=config.token_refresh_margin_seconds,
        store=store,
    )
    client = AuthorizedClient(config.host, tokens, timeout=timeout, transport=transport)
    return PayPalApi(client, config.environment), [oauth, client]


__all__ = [
    "AccessToken",
    "AuthorizedClient",
    "BearerTokenCache",
    "OAuthTokenClient",
    "PayPalApi",
    "build_paypal_api",
    "build_timeout",
]
