"""
Shared async HTTP client for vendor and artifact traffic.

This module provides a pooled HTTP client that injects correlation and
authorization headers, enforces a per-request timeout and converts
transport failures into the ServiceError hierarchy.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from .context import RunContext
from .errors import ErrorCode, RetryableError, ServiceError, TerminalError
from .retry import RetryPolicy

# Methods a server may have acted on once the request left; these are only
# retried when the connection was never established.
NON_IDEMPOTENT_METHODS = frozenset({"POST", "PATCH"})


class ServiceHttpClient:
    """Shared HTTP client for outbound calls.

    Features:
    - Connection pooling via httpx.AsyncClient
    - Automatic header injection (X-Request-Id, X-Owner-Id, plus defaults
      such as Authorization)
    - Retry on transient failures according to a RetryPolicy (POST and
      PATCH only when the connection never opened)
    - Timeout handling
    - Structured error conversion

    Example:
        client = ServiceHttpClient("https://api.meshy.ai", default_headers={...})
        async with client:
            response = await client.get("/v2/text-to-3d/abc", context)
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        default_headers: dict[str, str] | None = None,
        max_connections: int = 100,
        max_keepalive: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP client.

        Args:
            base_url: Base URL for relative request paths.
            timeout: Default timeout in seconds.
            retry_policy: Retry configuration. Uses default if None.
            default_headers: Headers sent with every request.
            max_connections: Maximum total connections in pool.
            max_keepalive: Maximum keepalive connections.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_headers = dict(default_headers or {})

        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
            keepalive_expiry=30.0,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=self._limits,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ServiceHttpClient":
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _build_url(self, path: str) -> str:
        """Build full URL from path.

        Absolute URLs (vendor artifact links) are returned unchanged.
        """
        if path.startswith(("http://", "https://")):
            return path
        path = path.lstrip("/")
        return f"{self.base_url}/{path}"

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Convert error statuses into ServiceErrors."""
        status = response.status_code
        if status < 400:
            return

        body = response.text[:500] if response.text else None

        if status >= 500:
            raise RetryableError(
                code=ErrorCode.SERVICE_UNAVAILABLE,
                message_safe=f"Service returned {status}",
                message_debug=body,
                status_code=status,
            )

        codes = {
            401: (ErrorCode.UNAUTHORIZED, "Unauthorized"),
            402: (ErrorCode.PAYMENT_REQUIRED, "Payment required"),
            403: (ErrorCode.FORBIDDEN, "Forbidden"),
            404: (ErrorCode.NOT_FOUND, "Resource not found"),
            429: (ErrorCode.RATE_LIMITED, "Rate limit exceeded"),
        }
        code, message = codes.get(
            status, (ErrorCode.INVALID_INPUT, f"Request failed with status {status}")
        )
        raise TerminalError(
            code=code,
            message_safe=message,
            message_debug=body,
            status_code=status,
        )

    async def request(
        self,
        method: str,
        path: str,
        context: RunContext,
        retry_policy: RetryPolicy | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with header injection and retry.

        Args:
            method: HTTP method (GET, POST, etc.).
            path: Request path or absolute URL.
            context: RunContext for header injection and correlation.
            retry_policy: Overrides the client's policy for this call.
            timeout: Overrides the client's timeout for this call.
            **kwargs: Additional arguments passed to httpx.

        Returns:
            The HTTP response.

        Raises:
            RetryableError: For transient failures after max retries.
            TerminalError: For permanent failures (4xx, etc.).
            ServiceError: For other errors.
        """
        client = await self._get_client()
        url = self._build_url(path)
        policy = retry_policy or self.retry_policy
        effective_timeout = timeout if timeout is not None else self.timeout

        headers = {**self.default_headers, **kwargs.pop("headers", {})}
        headers.update(context.get_headers())

        last_exception: Exception | None = None
        replay_safe = method.upper() not in NON_IDEMPOTENT_METHODS

        for attempt in range(policy.max_attempts):
            try:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    timeout=effective_timeout,
                    **kwargs,
                )

                if replay_safe and policy.should_retry_status(response.status_code):
                    if attempt + 1 < policy.max_attempts:
                        delay = policy.calculate_delay(attempt)
                        logger.info(
                            f"[{context.request_id}] Retry {attempt + 1}/{policy.max_attempts} "
                            f"for {method} {path} (status={response.status_code}) in {delay:.2f}s"
                        )
                        await asyncio.sleep(delay)
                        continue

                self._raise_for_status(response)
                return response

            except httpx.TimeoutException as e:
                last_exception = e
                sent = not isinstance(e, httpx.ConnectTimeout)
                if attempt + 1 >= policy.max_attempts or (sent and not replay_safe):
                    raise RetryableError(
                        code=ErrorCode.TIMEOUT,
                        message_safe=f"Request timed out after {effective_timeout}s",
                        cause=e,
                    )

                delay = policy.calculate_delay(attempt)
                logger.info(
                    f"[{context.request_id}] Timeout, retry {attempt + 1}/{policy.max_attempts} "
                    f"for {method} {path} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

            except httpx.TransportError as e:
                last_exception = e
                sent = not isinstance(e, httpx.ConnectError)
                if attempt + 1 >= policy.max_attempts or (sent and not replay_safe):
                    raise RetryableError(
                        code=ErrorCode.CONNECTION_ERROR,
                        message_safe="Failed to reach service",
                        message_debug=str(e),
                        cause=e,
                    )

                delay = policy.calculate_delay(attempt)
                logger.info(
                    f"[{context.request_id}] Connection error, retry {attempt + 1}/{policy.max_attempts} "
                    f"for {method} {path} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

            except ServiceError:
                raise

            except Exception as e:
                logger.error(f"[{context.request_id}] Unexpected error: {e}")
                raise ServiceError(
                    code=ErrorCode.INTERNAL_ERROR,
                    message_safe="Unexpected error during request",
                    message_debug=str(e),
                    cause=e,
                )

        if last_exception:
            raise RetryableError(
                code=ErrorCode.SERVICE_UNAVAILABLE,
                message_safe="Max retries exceeded",
                cause=last_exception,
            )
        raise RuntimeError("Retry loop exited unexpectedly")

    async def get(self, path: str, context: RunContext, **kwargs: Any) -> httpx.Response:
        """Make a GET request."""
        return await self.request("GET", path, context, **kwargs)

    async def post(self, path: str, context: RunContext, **kwargs: Any) -> httpx.Response:
        """Make a POST request."""
        return await self.request("POST", path, context, **kwargs)
