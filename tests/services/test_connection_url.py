import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest

from application.ports.provider_api import ProviderApiError
from application.services.connection_url import ConnectionUrlGenerator, add_query_arg
from infrastructure.external.cache import InMemoryCache


def build(api, cache=None, **kwargs):
    tokens = iter(f"token-{n}" for n in range(1, 100))
    return ConnectionUrlGenerator(
        api,
        cache or InMemoryCache(),
        environment="sandbox",
        return_url="https://shop.example.com/admin/onboarding?tab=payments",
        ttl_seconds=3600,
        token_factory=lambda: next(tokens),
        **kwargs,
    )


def test_cache_key_sorts_products():
    generator = build(api=None)

    assert generator.cache_key(["PPCP", "EXPRESS_CHECKOUT"], 3) == "onboarding-url:3:sandbox-EXPRESS_CHECKOUT-PPCP"
    assert generator.cache_key(["EXPRESS_CHECKOUT", "PPCP"], 3) == generator.cache_key(["PPCP", "EXPRESS_CHECKOUT"], 3)
    assert generator.cache_key([], 3) != generator.cache_key([], 4)


def test_add_query_arg_keeps_existing_params():
    url = add_query_arg("https://example.com/path?a=1", b="2")

    assert parse_qs(urlsplit(url).query) == {"a": ["1"], "b": ["2"]}


@pytest.mark.asyncio
async def test_generates_once_and_then_serves_from_cache(provider_api):
    generator = build(provider_api)

    first = await generator.generate(["PPCP"], user_id=1)
    second = await generator.generate(["PPCP"], user_id=1)

    assert first == second
    assert parse_qs(urlsplit(first).query)["displayMode"] == ["minibrowser"]
    assert first.startswith("https://www.sandbox.paypal.com/bizsignup/partner/entry?")
    assert len(provider_api.signup_calls) == 1

    override = provider_api.signup_calls[0]["partner_config_override"]
    return_query = parse_qs(urlsplit(override["return_url"]).query)
    assert return_query == {"tab": ["payments"], "ppcpToken": ["token-1"]}
    assert provider_api.signup_calls[0]["products"] == ["PPCP"]


@pytest.mark.asyncio
async def test_each_user_and_product_set_gets_its_own_url(provider_api):
    generator = build(provider_api)

    await generator.generate(["PPCP"], user_id=1)
    await generator.generate(["PPCP"], user_id=2)
    await generator.generate([], user_id=1)

    assert len(provider_api.signup_calls) == 3
    assert provider_api.signup_calls[2]["products"] == ["EXPRESS_CHECKOUT"]


@pytest.mark.asyncio
async def test_provider_failure_gives_empty_url_and_is_not_cached(provider_api):
    provider_api.signup_error = ProviderApiError("boom", status_code=500)
    generator = build(provider_api)

    assert await generator.generate(["PPCP"], user_id=1) == ""

    provider_api.signup_error = None
    assert await generator.generate(["PPCP"], user_id=1) != ""
    assert len(provider_api.signup_calls) == 2


@pytest.mark.asyncio
async def test_token_failure_gives_empty_url(provider_api):
    def no_token():
        raise RuntimeError("entropy exhausted")

    generator = ConnectionUrlGenerator(
        provider_api,
        InMemoryCache(),
        environment="sandbox",
        return_url="https://shop.example.com/admin",
        ttl_seconds=3600,
        token_factory=no_token,
    )

    assert await generator.generate(["PPCP"], user_id=1) == ""
    assert provider_api.signup_calls == []


@pytest.mark.asyncio
async def test_concurrent_requests_generate_once(provider_api):
    generator = build(provider_api)

    urls = await asyncio.gather(*(generator.generate(["PPCP"], user_id=1) for _ in range(5)))

    assert len(set(urls)) == 1
    assert len(provider_api.signup_calls) == 1


@pytest.mark.asyncio
async def test_partner_logo_is_sent_when_configured(provider_api):
    generator = build(provider_api, partner_logo_url="https://shop.example.com/logo.png")

    await generator.generate(["PPCP"], user_id=1)

    override = provider_api.signup_calls[0]["partner_config_override"]
    assert override["partner_logo_url"] == "https://shop.example.com/logo.png"
