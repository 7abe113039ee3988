"""
VIP Pricing Adapter Framework.

Base class for GraphQL APIs reached over HTTP (the Shopify Admin API today).
Provides:
- Per-shop access-token credentials
- Per-shop rate limiting (sliding window)
- Built-in circuit breaker (closed/open/half_open)
- Retry with exponential backoff on 5xx, throttling and network errors
  (mutations only when the request never reached the server)
- Health tracking (latency, errors, throttles)
- Standardized request/response envelope
"""
from __future__ import annotations
from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
import asyncio
import time

import httpx

from core.logging import get_logger

logger = get_logger("vip_pricing.adapter")

# Failures that prove the request was never delivered
UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@dataclass
class ShopCredentials:
    """Offline access token for one shop."""
    shop: str
    access_token: str
    token_header: str = "X-Shopify-Access-Token"


# ---------------------------------------------------------------------------
# Request / Response envelope
# ---------------------------------------------------------------------------

@dataclass
class GraphQLRequest:
    """Standardized outbound GraphQL operation."""
    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    operation_name: str = ""
    timeout: float = 30.0
    # False for mutations: a lost response may hide a committed write
    idempotent: bool = True

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"query": self.query}
        if self.variables:
            body["variables"] = self.variables
        if self.operation_name:
            body["operationName"] = self.operation_name
        return body


@dataclass
class GraphQLResponse:
    """Standardized inbound GraphQL response."""
    status_code: int
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)
    latency_ms: float = 0.0
    shop: str = ""
    error: str | None = None
    retries: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300 and not self.errors and self.error is None


# ---------------------------------------------------------------------------
# Rate Limiter (sliding window)
# ---------------------------------------------------------------------------

class RateLimiter:
    """Per-shop sliding window rate limiter."""

    def __init__(self, max_requests: int = 100, window_seconds: float = 60.0):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._calls: dict[str, list[float]] = {}

    def check(self, shop: str) -> bool:
        """Return True and count the call if the shop is under its limit."""
        now = time.time()
        cutoff = now - self.window_seconds
        calls = [t for t in self._calls.get(shop, []) if t > cutoff]

        if len(calls) >= self.max_requests:
            self._calls[shop] = calls
            return False

        calls.append(now)
        self._calls[shop] = calls
        return True


# ---------------------------------------------------------------------------
# Health tracking
# ---------------------------------------------------------------------------

@dataclass
class IntegrationHealth:
    """Health metrics for an adapter."""
    adapter_name: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    throttled_requests: int = 0
    avg_latency_ms: float = 0.0
    circuit_state: str = "closed"
    last_success: datetime | None = None
    last_failure: datetime | None = None
    last_error: str | None = None

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests

    def to_dict(self) -> dict[str, Any]:
        return {
            "adapter_name": self.adapter_name,
            "total_requests": self.total_requests,
            "successful": self.successful_requests,
            "failed": self.failed_requests,
            "throttled": self.throttled_requests,
            "error_rate": round(self.error_rate, 4),
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "circuit_state": self.circuit_state,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
        }


# ---------------------------------------------------------------------------
# AdapterBase
# ---------------------------------------------------------------------------

class AdapterBase(ABC):
    """
    Base class for GraphQL adapters.

    Subclasses must set:
        name: str  — adapter identifier
    and implement `endpoint_for(shop)` returning the GraphQL URL.
    """

    name: str = ""

    # Circuit breaker defaults
    CB_FAILURE_THRESHOLD: int = 5
    CB_RECOVERY_TIMEOUT: float = 30.0

    # Retry defaults
    MAX_RETRIES: int = 3
    BACKOFF_BASE: float = 1.0
    BACKOFF_MAX: float = 15.0

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._credentials: dict[str, ShopCredentials] = {}
        self._rate_limiter = RateLimiter()
        self._health = IntegrationHealth(adapter_name=self.name)
        self._latencies: list[float] = []
        self._transport = transport

        # Circuit breaker state
        self._cb_state: str = "closed"
        self._cb_failure_count: int = 0
        self._cb_last_failure: datetime | None = None

    # --- Credentials ---

    def set_credentials(self, creds: ShopCredentials) -> None:
        self._credentials[creds.shop] = creds

    def get_credentials(self, shop: str) -> ShopCredentials | None:
        return self._credentials.get(shop)

    def get_auth_headers(self, shop: str) -> dict[str, str]:
        creds = self._credentials.get(shop)
        if not creds:
            return {}
        return {creds.token_header: creds.access_token}

    def endpoint_for(self, shop: str) -> str:
        raise NotImplementedError

    # --- Circuit breaker ---

    def _check_circuit(self) -> bool:
        """Return True if request should proceed."""
        if self._cb_state == "closed":
            return True
        if self._cb_state == "open":
            if self._cb_last_failure and (
                datetime.now(timezone.utc) - self._cb_last_failure
            ).total_seconds() > self.CB_RECOVERY_TIMEOUT:
                self._cb_state = "half_open"
                self._health.circuit_state = "half_open"
                return True
            return False
        # half_open: allow one test request
        return True

    def _record_success(self) -> None:
        self._cb_failure_count = 0
        self._cb_state = "closed"
        self._health.circuit_state = "closed"

    def _record_failure(self) -> None:
        self._cb_failure_count += 1
        self._cb_last_failure = datetime.now(timezone.utc)
        if self._cb_failure_count >= self.CB_FAILURE_THRESHOLD:
            self._cb_state = "open"
            self._health.circuit_state = "open"

    # --- Health ---

    def _update_health(self, latency_ms: float, success: bool, error: str | None = None) -> None:
        self._health.total_requests += 1
        self._latencies.append(latency_ms)
        if len(self._latencies) > 1000:
            self._latencies = self._latencies[-500:]

        if success:
            self._health.successful_requests += 1
            self._health.last_success = datetime.now(timezone.utc)
            self._record_success()
        else:
            self._health.failed_requests += 1
            self._health.last_failure = datetime.now(timezone.utc)
            self._health.last_error = error
            self._record_failure()

        self._health.avg_latency_ms = sum(self._latencies) / len(self._latencies)

    def get_health(self) -> IntegrationHealth:
        return self._health

    # --- Core request ---

    async def execute(self, req: GraphQLRequest, shop: str) -> GraphQLResponse:
        """
        Execute an operation through the full adapter pipeline:
        Rate Limit → Circuit Breaker → Auth → Retry w/ Backoff → Health

        Never raises for transport problems; callers inspect `error`.
        """
        if not self._rate_limiter.check(shop):
            self._health.throttled_requests += 1
            return GraphQLResponse(status_code=429, error="Rate limit exceeded", shop=shop)

        if not self._check_circuit():
            return GraphQLResponse(
                status_code=503,
                error=f"Circuit breaker OPEN for {self.name}",
                shop=shop,
            )

        headers = {"Content-Type": "application/json", **self.get_auth_headers(shop)}
        url = self.endpoint_for(shop)

        last_error: str | None = None
        latency = 0.0
        retries = 0

        async with httpx.AsyncClient(transport=self._transport) as client:
            for attempt in range(self.MAX_RETRIES + 1):
                start = time.time()
                resendable = True
                try:
                    resp = await client.post(
                        url,
                        json=req.to_body(),
                        headers=headers,
                        timeout=req.timeout,
                    )
                    latency = (time.time() - start) * 1000

                    if resp.status_code == 429:
                        self._health.throttled_requests += 1
                        last_error = "HTTP 429: throttled"
                    elif resp.status_code < 500:
                        body = resp.json() if resp.content else {}
                        errors = body.get("errors") or []
                        success = resp.status_code < 400 and not errors
                        self._update_health(latency, success, None if success else str(errors)[:200])
                        return GraphQLResponse(
                            status_code=resp.status_code,
                            data=body.get("data") or {},
                            errors=errors,
                            latency_ms=latency,
                            shop=shop,
                            error=None if resp.status_code < 400 else f"HTTP {resp.status_code}",
                            retries=retries,
                        )
                    else:
                        last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                        resendable = req.idempotent

                except (httpx.HTTPError, ValueError) as exc:
                    latency = (time.time() - start) * 1000
                    last_error = str(exc) or exc.__class__.__name__
                    resendable = req.idempotent or isinstance(exc, UNSENT_ERRORS)

                if not resendable:
                    logger.warning(
                        "Not retrying operation with unknown outcome",
                        adapter=self.name,
                        operation=req.operation_name,
                        error=last_error,
                    )
                    break
                retries += 1

                if attempt < self.MAX_RETRIES:
                    backoff = min(self.BACKOFF_BASE * (2 ** attempt), self.BACKOFF_MAX)
                    logger.warning(
                        "Retrying GraphQL request",
                        adapter=self.name,
                        operation=req.operation_name,
                        attempt=attempt + 1,
                        backoff=backoff,
                        error=last_error,
                    )
                    await asyncio.sleep(backoff)

        self._update_health(latency, False, last_error)
        return GraphQLResponse(
            status_code=502,
            error=last_error,
            shop=shop,
            retries=retries,
        )
