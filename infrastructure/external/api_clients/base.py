"""
REST API客户端基类

提供通用的HTTP请求功能，包括：
- 自动重试（仅对幂等请求重试 5xx/429）
- 错误处理
- 请求/响应日志
- Bearer 认证（令牌按请求获取，便于过期刷新）
- 超时控制
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger


logger = get_logger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


@dataclass
class APIResponse:
    """API响应封装"""
    status_code: int
    headers: Dict[str, str]
    data: Any
    raw_content: bytes
    elapsed_ms: float

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def json(self) -> Any:
        if self.data is not None:
            return self.data
        return json.loads(self.raw_content or b"null")


class APIError(Exception):
    """API错误基类"""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[APIResponse] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)

    def __str__(self):
        if self.status_code:
            return f"{self.message} | Status: {self.status_code}"
        return self.message


class AuthenticationError(APIError):
    """认证错误"""


class NotFoundError(APIError):
    """资源未找到错误"""


class RetryableAPIError(APIError):
    """可重试的API错误"""

    def __init__(self, message: str, status_code: Optional[int], response: Optional[APIResponse], retry_after: Optional[float] = None):
        super().__init__(message=message, status_code=status_code, response=response)
        self.retry_after = retry_after


RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class BaseAPIClient:
    """
    REST API客户端基类

    子类继承并实现具体的API调用；非幂等请求（如追加写）传入 idempotent=False，
    此时只在连接建立失败时重试。
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._token_provider = token_provider
        self._transport = transport
        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """关闭HTTP客户端"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _raise_for_error(self, response: APIResponse) -> None:
        error_map = {401: AuthenticationError, 403: AuthenticationError, 404: NotFoundError}
        error_class = error_map.get(response.status_code, APIError)
        message = f"API request failed with status {response.status_code}"
        if isinstance(response.data, dict):
            err = response.data.get("error")
            if isinstance(err, dict) and err.get("message"):
                message = str(err["message"])
            elif isinstance(err, str):
                message = err
        raise error_class(message=message, status_code=response.status_code, response=response)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        idempotent: bool = True,
    ) -> APIResponse:
        url = self._build_url(endpoint)

        async def _send_once() -> APIResponse:
            headers = dict(self.default_headers)
            if self._token_provider is not None:
                headers["Authorization"] = f"Bearer {await self._token_provider()}"
            start_time = datetime.now()
            response = await self.client.request(method, url, params=params, json=json_data, headers=headers)
            elapsed = (datetime.now() - start_time).total_seconds() * 1000

            data = None
            if "application/json" in response.headers.get("content-type", ""):
                try:
                    data = response.json()
                except json.JSONDecodeError:
                    data = None
            api_response = APIResponse(
                status_code=response.status_code,
                headers=dict(response.headers),
                data=data,
                raw_content=response.content,
                elapsed_ms=elapsed,
            )
            logger.debug("api_response", method=method, url=url, status_code=response.status_code, elapsed_ms=elapsed)

            if api_response.is_error and idempotent and api_response.status_code in RETRY_STATUS_CODES:
                retry_after: Optional[float] = None
                try:
                    retry_after = float(api_response.headers.get("retry-after") or 0) or None
                except (TypeError, ValueError):
                    retry_after = None
                if retry_after:
                    await asyncio.sleep(min(retry_after, 10.0))
                raise RetryableAPIError(
                    message=f"Transient API error with status {api_response.status_code}",
                    status_code=api_response.status_code,
                    response=api_response,
                    retry_after=retry_after,
                )
            if api_response.is_error:
                self._raise_for_error(api_response)
            return api_response

        retry_on = (httpx.TimeoutException, httpx.NetworkError, RetryableAPIError) if idempotent else (httpx.ConnectError, httpx.ConnectTimeout)
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type(retry_on),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await _send_once()
        except httpx.TimeoutException as exc:
            raise APIError(f"Request timeout after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise APIError(f"Network error: {exc}") from exc
        except RetryableAPIError as exc:
            if exc.response is not None:
                self._raise_for_error(exc.response)
            raise APIError(exc.message) from exc

    async def get(self, endpoint: str, **kwargs) -> APIResponse:
        return await self._request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> APIResponse:
        return await self._request("POST", endpoint, **kwargs)
