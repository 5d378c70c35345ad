"""
Merchant onboarding (connection) URL generation.

no cached URL -> onboarding token -> signup link -> cached, keyed by acting
user, environment and the sorted product list. Any failure on the way gives
an empty string, which callers treat as "try again later".
"""
from __future__ import annotations

import secrets
from typing import Any, Callable, Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from application.ports.provider_api import ProviderApi
from core.logging_config import get_logger
from infrastructure.external.cache import CacheInterface

logger = get_logger(__name__)


def add_query_arg(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


class ConnectionUrlGenerator:
    KEY_PREFIX = "onboarding-url"

    def __init__(
        self,
        api: ProviderApi,
        cache: CacheInterface,
        *,
        environment: str,
        return_url: str,
        ttl_seconds: int,
        partner_logo_url: Optional[str] = None,
        lock_timeout_seconds: int = 30,
        token_factory: Callable[[], str] = lambda: secrets.token_urlsafe(32),
    ):
        self._api = api
        self._cache = cache
        self._environment = environment
        self._return_url = return_url
        self._ttl = ttl_seconds
        self._partner_logo_url = partner_logo_url
        self._lock_timeout = lock_timeout_seconds
        self._token_factory = token_factory

    def environment(self) -> str:
        return self._environment

    def cache_key(self, products: Iterable[str], user_id: int) -> str:
        return f"{self.KEY_PREFIX}:{user_id}:{self._environment}-{'-'.join(sorted(products))}"

    async def generate(self, products: Iterable[str] = (), user_id: int = 0) -> str:
        products = [str(p).strip() for p in products if str(p).strip()]
        key = self.cache_key(products, user_id)

        url = await self._load(key)
        if url:
            logger.debug("onboarding_url_cache_hit", cache_key=key)
            return url

        try:
            async with self._cache.lock(key, timeout=self._lock_timeout, blocking_timeout=self._lock_timeout):
                # filled by a concurrent caller while we waited
                url = await self._load(key)
                if url:
                    return url

                logger.info("onboarding_url_generating", cache_key=key)
                url, onboarding_token = await self._generate_new(products, key)
                if url:
                    await self._cache.set(key, {"url": url, "token": onboarding_token}, ttl=self._ttl)
                return url
        except TimeoutError:
            logger.warning("onboarding_url_busy", cache_key=key)
            return ""

    async def _load(self, key: str) -> str:
        cached = await self._cache.get(key)
        if isinstance(cached, dict) and isinstance(cached.get("url"), str):
            return cached["url"]
        return ""

    async def _generate_new(self, products: list[str], key: str) -> tuple[str, Optional[str]]:
        try:
            onboarding_token = self._token_factory()
        except Exception:
            logger.warning("onboarding_token_failed", cache_key=key, exc_info=True)
            return "", None

        data = self.referral_data(products, onboarding_token)
        try:
            url = await self._api.create_signup_link(data)
        except Exception:
            logger.warning("onboarding_url_failed", cache_key=key, exc_info=True)
            return "", None

        return add_query_arg(url, displayMode="minibrowser"), onboarding_token

    def referral_data(self, products: list[str], onboarding_token: str) -> dict[str, Any]:
        """Partner-referral payload; the onboarding token rides on the return URL."""
        override: dict[str, Any] = {
            "return_url": add_query_arg(self._return_url, ppcpToken=onboarding_token),
            "return_url_description": "Return to your shop.",
        }
        if self._partner_logo_url:
            override["partner_logo_url"] = self._partner_logo_url
        return {
            "partner_config_override": override,
            "products": [p.upper() for p in products] or ["EXPRESS_CHECKOUT"],
            "legal_consents": [{"type": "SHARE_DATA_CONSENT", "granted": True}],
            "operations": [
                {
                    "operation": "API_INTEGRATION",
                    "api_integration_preference": {
                        "rest_api_integration": {
                            "integration_method": "PAYPAL",
                            "integration_type": "THIRD_PARTY",
                            "third_party_details": {
                                "features": ["PAYMENT", "REFUND", "PARTNER_FEE", "DELAY_FUNDS_DISBURSEMENT"],
                            },
                        }
                    },
                }
            ],
        }
