"""
REST API client base.

Provides the shared HTTP plumbing for remote APIs:
- retries with exponential backoff for transient failures
- status code to typed error mapping
- request/response logging without credentials
- explicit timeouts on every call
"""
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger
from domain.payment.exceptions import (
    AuthError,
    ConnectivityError,
    MalformedResponse,
    RemoteApiError,
)

logger = get_logger(__name__)


class HTTPMethod(Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


@dataclass
class APIResponse:
    """Decoded HTTP response."""
    status_code: int
    headers: Dict[str, str]
    data: Any
    raw_content: bytes
    elapsed_ms: float
    request_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


class TransientAPIError(RemoteApiError):
    """5xx/429 answer worth another attempt."""


RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

# Used when an error body carries no message of its own.
FALLBACK_ERROR_MESSAGES = {
    400: "Bad request - invalid data sent to API",
    401: "Unauthorized - invalid API credentials",
    403: "Forbidden - access denied",
    404: "Not found - API endpoint does not exist",
    500: "Internal server error - API is currently unavailable",
}


def extract_error_message(status_code: int, data: Any) -> str:
    """Pull ``message``/``error``/``detail`` from an error body, else a canned text."""
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return FALLBACK_ERROR_MESSAGES.get(
        status_code, f"API request failed with status code: {status_code}"
    )


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "api_request_retry",
        attempt=retry_state.attempt_number,
        error=str(exc) if exc else None,
    )


class BaseAPIClient:
    """
    REST API client base.

    Subclasses add typed operations on top of ``_request`` and may refine
    error classification by overriding ``_error_for``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        verify_ssl: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        debug: bool = False,
    ):
        """
        Args:
            base_url: API root, without trailing slash
            timeout: per-request timeout in seconds
            max_retries: extra attempts for transient failures
            retry_delay: base backoff in seconds
            headers: default headers
            verify_ssl: TLS certificate verification
            transport: optional httpx transport (tests use ``httpx.MockTransport``)
            debug: log request and response bodies
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.verify_ssl = verify_ssl
        self.debug = debug
        self._transport = transport

        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if headers:
            self.default_headers.update(headers)

        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                verify=self.verify_ssl,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _log_request(self, method: str, url: str, **kwargs):
        if self.debug:
            logger.debug(
                "api_request",
                method=method,
                url=url,
                params=kwargs.get("params"),
                json=kwargs.get("json"),
            )

    def _log_response(self, response: APIResponse):
        if self.debug:
            logger.debug(
                "api_response",
                status_code=response.status_code,
                elapsed_ms=round(response.elapsed_ms, 1),
                request_id=response.request_id,
            )

    def _error_for(self, response: APIResponse) -> RemoteApiError:
        """Map an error response onto the typed error hierarchy."""
        status_code = response.status_code
        message = extract_error_message(status_code, response.data)
        if status_code in (401, 403):
            return AuthError(message, status_code=status_code, body=response.data)
        if status_code in RETRY_STATUS_CODES:
            return TransientAPIError(message, status_code=status_code, body=response.data)
        return RemoteApiError(message, status_code=status_code, body=response.data)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        """Decode a JSON body; an empty body is ``None``, anything unparsable is malformed."""
        if not response.content or not response.content.strip():
            return None
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedResponse(status_code=response.status_code) from exc

    async def _request(
        self,
        method: Union[str, HTTPMethod],
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Union[Dict[str, Any], BaseModel]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> APIResponse:
        """
        Send a request and decode the answer.

        Raises:
            ConnectivityError: network failure or timeout after all attempts
            MalformedResponse: body is not valid JSON
            AuthError / RemoteApiError: status >= 400
        """
        if isinstance(method, HTTPMethod):
            method = method.value
        url = self._build_url(endpoint)

        request_headers = {**self.default_headers}
        if headers:
            request_headers.update(headers)
        if isinstance(json_data, BaseModel):
            json_data = json_data.model_dump(exclude_none=True)

        self._log_request(method, url, params=params, json=json_data)

        async def _send_once() -> APIResponse:
            start_time = datetime.now()
            response = await self.client.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers=request_headers,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
            elapsed = (datetime.now() - start_time).total_seconds() * 1000

            if response.status_code >= 400:
                # error bodies are informative only; unparsable ones fall back to canned text
                try:
                    data = self._decode(response)
                except MalformedResponse:
                    data = None
            else:
                data = self._decode(response)

            api_response = APIResponse(
                status_code=response.status_code,
                headers=dict(response.headers),
                data=data,
                raw_content=response.content,
                elapsed_ms=elapsed,
                request_id=response.headers.get("x-request-id"),
            )
            self._log_response(api_response)

            if api_response.is_error:
                raise self._error_for(api_response)
            return api_response

        attempts = (self.max_retries if max_retries is None else max_retries) + 1
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=self.retry_delay,
                min=self.retry_delay,
                max=self.retry_delay * 8,
            ),
            retry=retry_if_exception_type(
                (httpx.TimeoutException, httpx.NetworkError, TransientAPIError)
            ),
            before_sleep=_log_retry,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await _send_once()
        except httpx.TimeoutException as exc:
            raise ConnectivityError(
                f"Request timeout after {timeout or self.timeout}s", details={"url": url}
            ) from exc
        except httpx.TransportError as exc:
            raise ConnectivityError(f"Network error: {exc}", details={"url": url}) from exc
        raise ConnectivityError("Request was not attempted", details={"url": url})
