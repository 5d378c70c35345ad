"""
Composition root: wires settings, adapters and application services.

Every collaborator can be passed in explicitly (tests do); anything left
out is built from settings.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from application.ports.local_state import LocalStateAdapter
from application.ports.provider_api import ProviderApi
from application.services.authorized_payments import AuthorizedPaymentsProcessor
from application.services.connection_url import ConnectionUrlGenerator
from application.webhooks import HandlerRegistry, WebhookDispatcher
from application.webhooks.handlers import register_default_handlers
from core.config import Settings, settings as default_settings
from core.logging_config import get_logger
from core.settings import PayPalSettings, paypal_settings as default_paypal_settings
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.external.cache import (
    CacheInterface,
    InMemoryCache,
    init_redis_client,
    shutdown_redis_client,
)
from infrastructure.external.paypal import build_paypal_api
from infrastructure.repositories.local_state_repository import SQLAlchemyLocalState
from infrastructure.state import InMemoryLocalState
from infrastructure.webhooks import CacheEventGuard, ProviderSignatureVerifier

logger = get_logger(__name__)


@dataclass
class Container:
    dispatcher: WebhookDispatcher
    registry: HandlerRegistry
    processor: AuthorizedPaymentsProcessor
    connection_urls: ConnectionUrlGenerator
    state: LocalStateAdapter
    api: ProviderApi
    cache: CacheInterface
    engine: Optional[AsyncEngine] = None
    uses_redis: bool = False
    closables: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for closable in self.closables:
            await closable.close()
        if self.engine is not None:
            await self.engine.dispose()
        if self.uses_redis:
            await shutdown_redis_client()
        logger.info("container_closed")


async def build_container(
    *,
    app_settings: Settings = default_settings,
    provider_settings: PayPalSettings = default_paypal_settings,
    state: Optional[LocalStateAdapter] = None,
    api: Optional[ProviderApi] = None,
    cache: Optional[CacheInterface] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Container:
    uses_redis = False
    if cache is None:
        if app_settings.redis.url:
            cache = await init_redis_client()
            uses_redis = True
        else:
            cache = InMemoryCache(default_ttl=app_settings.redis.default_ttl)

    engine = None
    if state is None:
        if app_settings.database.url:
            engine = build_engine(app_settings.database.url, echo=app_settings.database.echo)
            await create_tables(engine)
            state = SQLAlchemyLocalState(build_session_factory(engine))
        else:
            state = InMemoryLocalState()

    closables: list[Any] = []
    if api is None:
        api, closables = build_paypal_api(provider_settings, store=cache, transport=transport)

    capture = provider_settings.capture
    processor = AuthorizedPaymentsProcessor(
        state,
        api,
        already_captured_issues=capture.already_captured_issues,
        expired_issues=capture.expired_issues,
        voided_issues=capture.voided_issues,
    )

    webhook = provider_settings.webhook
    registry = register_default_handlers(
        HandlerRegistry(),
        state=state,
        api=api,
        processor=processor,
        customer_prefix=provider_settings.customer_prefix,
        tracking_event_types=[webhook.tracking_event_type],
    )
    registry.exempt_from_verification(webhook.verification_exempt_event_types)

    dispatcher = WebhookDispatcher(
        registry,
        ProviderSignatureVerifier(api),
        CacheEventGuard(
            cache,
            ttl_seconds=webhook.dedupe_ttl_seconds,
            lock_timeout_seconds=webhook.lock_timeout_seconds,
        ),
        webhook_id=webhook.webhook_id,
    )

    onboarding = provider_settings.onboarding
    connection_urls = ConnectionUrlGenerator(
        api,
        cache,
        environment=provider_settings.environment,
        return_url=onboarding.return_url,
        ttl_seconds=onboarding.cache_ttl_seconds,
        partner_logo_url=onboarding.partner_logo_url,
    )

    logger.info(
        "container_built",
        environment=provider_settings.environment,
        state=type(state).__name__,
        cache=type(cache).__name__,
        handlers=len(registry),
    )
    return Container(
        dispatcher=dispatcher,
        registry=registry,
        processor=processor,
        connection_urls=connection_urls,
        state=state,
        api=api,
        cache=cache,
        engine=engine,
        uses_redis=uses_redis,
        closables=closables,
    )
