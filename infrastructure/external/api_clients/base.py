"""
REST API客户端基类

提供通用的HTTP请求功能，包括：
- 错误分类（超时 / 网络 / 状态码）
- 请求/响应日志
- 超时控制

不做自动重试：上游（支付渠道）会重投 webhook，内部重试只会叠加限流。
"""
import json
import time
from typing import Dict, Any, Optional, Union
from dataclasses import dataclass
from enum import Enum
import httpx

from core.logging_config import get_logger

logger = get_logger(__name__)


class HTTPMethod(Enum):
    """HTTP方法枚举"""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


@dataclass
class APIResponse:
    """API响应封装"""
    status_code: int
    headers: Dict[str, str]
    data: Any
    raw_content: bytes
    elapsed_ms: float
    request_id: Optional[str] = None

    @property
    def is_success(self) -> bool:
        """判断请求是否成功"""
        return 200 <= self.status_code < 300

    @property
    def is_error(self) -> bool:
        """判断请求是否失败"""
        return self.status_code >= 400

    def json(self) -> Any:
        """获取JSON响应"""
        if self.data is not None:
            return self.data
        if not self.raw_content:
            return None
        return json.loads(self.raw_content)


class APIError(Exception):
    """API错误基类"""
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[APIResponse] = None,
        request_id: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.response = response
        self.request_id = request_id
        super().__init__(self.message)

    def __str__(self):
        parts = [self.message]
        if self.status_code:
            parts.append(f"Status: {self.status_code}")
        if self.request_id:
            parts.append(f"Request ID: {self.request_id}")
        return " | ".join(parts)


class APITimeoutError(APIError):
    """请求超时"""
    pass


class APINetworkError(APIError):
    """连接失败、DNS 等网络错误"""
    pass


class BaseAPIClient:
    """
    REST API客户端基类

    子类实现具体的API调用；`transport` 参数用于测试时注入 httpx.MockTransport。
    """

    def __init__(
        self,
        base_url: str,
        timeout: Union[float, httpx.Timeout] = 30.0,
        headers: Optional[Dict[str, str]] = None,
        verify_ssl: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        debug: bool = False
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout if isinstance(timeout, httpx.Timeout) else httpx.Timeout(timeout)
        self.verify_ssl = verify_ssl
        self.debug = debug
        self._transport = transport

        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "payment-webhook-reconciler/1.0"
        }
        if headers:
            self.default_headers.update(headers)

        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify_ssl,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """关闭HTTP客户端"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        """构建完整URL"""
        endpoint = endpoint.lstrip('/')
        return f"{self.base_url}/{endpoint}"

    def _log_response(self, method: str, endpoint: str, response: APIResponse):
        """记录响应日志（从不记录请求头，其中有凭证）"""
        if self.debug or response.is_error:
            logger.info(
                "api_response",
                method=method,
                endpoint=endpoint,
                status_code=response.status_code,
                elapsed_ms=round(response.elapsed_ms, 2),
                request_id=response.request_id,
            )

    async def _send(
        self,
        method: Union[str, HTTPMethod],
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> APIResponse:
        """
        发送一次HTTP请求，不论状态码都返回 APIResponse

        Raises:
            APITimeoutError: 任一超时（连接/读/写/连接池）
            APINetworkError: 网络错误
        """
        if isinstance(method, HTTPMethod):
            method = method.value

        url = self._build_url(endpoint)
        request_headers = {**self.default_headers}
        if headers:
            request_headers.update(headers)

        start = time.monotonic()
        try:
            response = await self.client.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                data=data,
                headers=request_headers,
                **kwargs
            )
        except httpx.TimeoutException as exc:
            logger.warning("api_timeout", method=method, endpoint=endpoint)
            raise APITimeoutError(f"Request timeout: {method} {endpoint}") from exc
        except httpx.TransportError as exc:
            logger.warning("api_network_error", method=method, endpoint=endpoint, error=str(exc))
            raise APINetworkError(f"Network error: {exc}") from exc

        elapsed = (time.monotonic() - start) * 1000

        response_data = None
        if "json" in response.headers.get("content-type", ""):
            try:
                response_data = response.json()
            except json.JSONDecodeError:
                response_data = None

        api_response = APIResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            data=response_data,
            raw_content=response.content,
            elapsed_ms=elapsed,
            request_id=response.headers.get("paypal-debug-id") or response.headers.get("x-request-id"),
        )
        self._log_response(method, endpoint, api_response)
        return api_response
