"""Shared aiohttp plumbing for the remote services the archiver talks to."""

import asyncio
import json
from typing import Any, Optional

import aiohttp
import structlog

from case_archiver.config import RetrySettings
from utils.circuit_breaker import CircuitBreaker
from utils.logging import get_logger
from utils.retry import RetryConfig, retry_async


class ServerError(Exception):
    """A remote service answered with a 5xx status."""

    def __init__(self, status: int, body: Any) -> None:
        super().__init__(f"HTTP {status}: {body}")
        self.status = status
        self.body = body


# Failures worth retrying and counting against the circuit
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ServerError,
)


class ServiceClient:
    """JSON-over-HTTP client with a lazily created session, retries and a circuit breaker."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        retry: Optional[RetrySettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize service client.

        Args:
            base_url: Base URL of the service
            timeout_seconds: Total timeout per request
            retry: Retry and circuit breaker settings
            session: Optional pre-built aiohttp session (not closed by this client)
            logger: Optional logger instance
        """
        retry = retry or RetrySettings()
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.logger = logger or get_logger(self.service_name)
        self.retry_config = RetryConfig(
            max_attempts=retry.max_attempts,
            initial_delay=retry.initial_delay,
            max_delay=retry.max_delay,
            retryable_exceptions=TRANSIENT_ERRORS,
        )
        self.circuit_breaker = CircuitBreaker(
            name=self.service_name,
            failure_threshold=retry.circuit_failure_threshold,
            recovery_timeout=retry.circuit_recovery_timeout,
            expected_exception=TRANSIENT_ERRORS,
            logger=self.logger,
        )
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create an aiohttp client session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the aiohttp client session if this client created it."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
            self.logger.debug("aiohttp client session closed", service=self.service_name)
        self._session = None

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        payload: Optional[Any] = None,
    ) -> tuple[int, Any]:
        session = await self._get_session()
        async with session.request(method, self.url(path), params=params, json=payload) as response:
            text = await response.text()
            try:
                body = json.loads(text) if text else None
            except ValueError:
                body = text

            if response.status >= 500:
                raise ServerError(response.status, body)
            return response.status, body

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        payload: Optional[Any] = None,
    ) -> tuple[int, Any]:
        """Send a request, retrying transport failures and 5xx answers.

        Returns:
            Tuple of (HTTP status, decoded JSON body or raw text)

        Raises:
            ServerError, aiohttp.ClientError, asyncio.TimeoutError: After retries are exhausted
            CircuitBreakerOpenError: If the circuit is open
        """
        return await retry_async(
            self.circuit_breaker.call_async,
            self._send,
            method,
            path,
            params=params,
            payload=payload,
            config=self.retry_config,
            logger=self.logger,
            operation=f"{self.service_name} {method} {path}",
        )
