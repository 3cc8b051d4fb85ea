"""
Resilient HTTP Client for External API Calls

Used by the warehouse and courier clients:
- Request-scoped deadline (httpx timeout) on every call
- Exponential backoff with jitter, only for idempotent methods
  (POST is never replayed, a shipment must not be booked twice)
- Circuit breaker for repeated failures, per host or per caller-chosen key
- Proper async implementation (no blocking calls)
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = ("GET", "HEAD", "OPTIONS")


class CircuitOpenError(Exception):
    """Raised when a host's circuit is open and requests are being rejected."""

    def __init__(self, host: str, retry_in: float):
        self.host = host
        self.retry_in = retry_in
        super().__init__(f"Circuit breaker OPEN for {host} ({retry_in:.1f}s until retry)")


class CircuitState(Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2
    base_delay: float = 0.5           # Base delay in seconds
    max_delay: float = 5.0            # Maximum delay cap
    exponential_base: float = 2.0     # Exponential backoff multiplier
    jitter_factor: float = 0.5        # Random jitter (0-1)

    # Status codes that should trigger retry
    retryable_status_codes: tuple = (500, 502, 503, 504)


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5        # Failures before opening circuit
    success_threshold: int = 1        # Successes to close circuit
    timeout_seconds: float = 30.0     # Time before half-open test


@dataclass
class HostState:
    """Tracks circuit state for a specific host."""
    circuit_state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0


class ResilientHTTPClient:
    """
    Async HTTP client with built-in resilience patterns.

    Usage:
        client = ResilientHTTPClient(timeout=15.0)
        response = await client.request("GET", "https://courier.example/api/downloadlabel")
        await client.close()

    Non-2xx responses are returned to the caller; only transport failures
    and exhausted retries raise.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        timeout: float = 30.0,
        default_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.circuit_config = circuit_config or CircuitBreakerConfig()
        self.timeout = timeout
        self.default_headers = default_headers or {}
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._host_states: Dict[str, HostState] = {}

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=self.default_headers,
            follow_redirects=True,
            transport=self._transport,
        )

    async def init(self):
        """Open the underlying httpx client; close() releases it."""
        if self._client is None:
            self._client = self._build_client()
        return self

    async def close(self):
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_host(self, url: str) -> str:
        return urlparse(url).netloc

    def _get_host_state(self, host: str) -> HostState:
        if host not in self._host_states:
            self._host_states[host] = HostState()
        return self._host_states[host]

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Formula: min(base * (exp_base ^ attempt) + jitter, max_delay)
        """
        cfg = self.retry_config
        delay = cfg.base_delay * (cfg.exponential_base ** attempt)
        jitter = delay * cfg.jitter_factor * (2 * random.random() - 1)
        return max(0.0, min(delay + jitter, cfg.max_delay))

    def _check_circuit_breaker(self, host: str) -> None:
        state = self._get_host_state(host)
        cfg = self.circuit_config

        if state.circuit_state != CircuitState.OPEN:
            return

        elapsed = time.time() - state.last_failure_time
        if elapsed > cfg.timeout_seconds:
            logger.info(f"[CIRCUIT] {host}: Moving to HALF_OPEN for test request")
            state.circuit_state = CircuitState.HALF_OPEN
            state.success_count = 0
            return

        raise CircuitOpenError(host, cfg.timeout_seconds - elapsed)

    def _record_success(self, host: str) -> None:
        state = self._get_host_state(host)
        state.failure_count = 0

        if state.circuit_state == CircuitState.HALF_OPEN:
            state.success_count += 1
            if state.success_count >= self.circuit_config.success_threshold:
                logger.info(f"[CIRCUIT] {host}: Closing circuit after {state.success_count} successes")
                state.circuit_state = CircuitState.CLOSED

    def _record_failure(self, host: str) -> None:
        state = self._get_host_state(host)
        state.failure_count += 1
        state.last_failure_time = time.time()
        state.success_count = 0

        if state.circuit_state == CircuitState.HALF_OPEN:
            logger.warning(f"[CIRCUIT] {host}: Test request failed, reopening circuit")
            state.circuit_state = CircuitState.OPEN
        elif state.failure_count >= self.circuit_config.failure_threshold:
            logger.error(f"[CIRCUIT] {host}: Opening circuit after {state.failure_count} failures")
            state.circuit_state = CircuitState.OPEN

    async def request(
        self,
        method: str,
        url: str,
        circuit_key: Optional[str] = None,
        **kwargs,
    ) -> httpx.Response:
        """
        Make an HTTP request with resilience.

        Args:
            circuit_key: Circuit to count failures against; defaults to the
                URL host

        Raises:
            httpx.TimeoutException: Deadline exceeded on the final attempt
            httpx.TransportError: Network failure on the final attempt
            CircuitOpenError: Host circuit is open
        """
        if not self._client:
            await self.init()

        method = method.upper()
        host = circuit_key or self._get_host(url)
        cfg = self.retry_config
        attempts = cfg.max_retries + 1 if method in IDEMPOTENT_METHODS else 1

        self._check_circuit_breaker(host)

        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                logger.debug(f"[HTTP] {method} {url} (attempt {attempt + 1}/{attempts})")
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                self._record_failure(host)
                if is_last:
                    logger.error(f"[HTTP] {host}: {type(e).__name__} after {attempt + 1} attempt(s)")
                    raise
                delay = self._calculate_backoff(attempt)
                logger.warning(f"[HTTP] {host}: {type(e).__name__}, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue

            if response.status_code in cfg.retryable_status_codes:
                self._record_failure(host)
                if not is_last:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        f"[HTTP] {host}: Status {response.status_code}, "
                        f"retrying in {delay:.1f}s (attempt {attempt + 1})"
                    )
                    await asyncio.sleep(delay)
                    continue
                return response

            self._record_success(host)
            return response

        raise RuntimeError(f"Request to {url} made no attempts")

