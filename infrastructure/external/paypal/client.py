"""
Authorized REST client for the provider API.

Every call carries a bearer token from `BearerTokenCache`. A 401 drops the
token, refreshes it and replays the call exactly once; every other non-2xx
becomes a `ProviderApiError`. Nothing else is retried here: the provider
redelivers webhooks, which is the retry granularity of the reconciler.
"""
from __future__ import annotations

from typing import Any, Optional, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from application.ports.provider_api import ProviderApiError, ProviderTimeoutError
from core.logging_config import get_logger
from infrastructure.external.api_clients import (
    APINetworkError,
    APIResponse,
    APITimeoutError,
    BaseAPIClient,
    HTTPMethod,
)

from .token_cache import DEFAULT_SCOPE, BearerTokenCache

logger = get_logger(__name__)


class _TokenRejected(Exception):
    def __init__(self, response: APIResponse):
        self.response = response
        super().__init__("bearer token rejected")


class AuthorizedClient(BaseAPIClient):
    def __init__(
        self,
        base_url: str,
        token_cache: BearerTokenCache,
        *,
        timeout: httpx.Timeout,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        scope: str = DEFAULT_SCOPE,
        debug: bool = False,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport, debug=debug)
        self._tokens = token_cache
        self._scope = scope

    def _handle_error_response(self, response: APIResponse):
        payload = response.data if isinstance(response.data, dict) else {}
        message = (
            payload.get("message")
            or payload.get("error_description")
            or f"Provider request failed with status {response.status_code}"
        )
        raise ProviderApiError(message, status_code=response.status_code, payload=payload)

    async def authorized_request(
        self,
        method: Union[str, HTTPMethod],
        path: str,
        body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> APIResponse:
        """
        Send one authorized call.

        Raises:
            ProviderApiError: non-2xx answer, or a second 401 after the refresh
            ProviderTimeoutError: any timeout (connect, read, write, pool)
            TokenAcquisitionError: no token could be obtained
        """
        async def _send_once() -> APIResponse:
            token = await self._tokens.get_token(self._scope)
            response = await self._send(
                method,
                path,
                json_data=body,
                params=params,
                headers={**(headers or {}), "Authorization": f"Bearer {token.token}"},
            )
            if response.status_code == 401:
                logger.warning("provider_token_rejected", path=path)
                await self._tokens.invalidate(self._scope, token.token)
                raise _TokenRejected(response)
            return response

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(_TokenRejected),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await _send_once()
        except _TokenRejected as exc:
            self._handle_error_response(exc.response)
        except APITimeoutError as exc:
            raise ProviderTimeoutError(exc.message) from exc
        except APINetworkError as exc:
            raise ProviderApiError(exc.message) from exc

        if response.is_error:
            self._handle_error_response(response)
        return response
