"""
base.py — Shared request / retry / timeout machinery for provider clients.

Every external data source sits behind a ``ProviderClient`` subclass that
implements a single coroutine, ``_fetch_payload``.  The base class wraps it
with the behaviour all providers share:

Error Handling Strategy
========================
    Level 0 — Missing credentials
        → Return UNCONFIGURED immediately; no network call is attempted

    Level 1 — Network errors (timeout, DNS, connection refused)
        → Retry up to ``max_retries`` times with exponential backoff
          (base, 2·base, 4·base …), never past the call budget

    Level 2 — API errors (HTTP 4xx/5xx, rate limiting)
        → 429 and 5xx: retry (transient)
        → other 4xx: fail immediately (bad query, bad key)

    Level 3 — Data quality (unparseable JSON, missing fields)
        → MALFORMED_RESPONSE, no retry (the same bytes would come back)

    Level 4 — Result
        → Always a ``ProviderResult``; provider faults never propagate

Timeout layering
================
The caller passes its remaining deadline as ``timeout``.  The effective
budget is ``min(config.timeout_seconds, timeout)``; the whole fetch,
retries and backoff included, is bounded by that budget.  Each HTTP
attempt gets whatever budget remains.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, ClassVar, Dict, Generic, List, Optional, TypeVar

import httpx

from backend.app.alerts.models import FloodAlert, ProviderAlerts
from backend.app.core.config import ProviderConfig
from backend.app.core.errors import (
    ProviderMalformedResponseError,
    ProviderUnavailableError,
)
from backend.app.risk.models import FetchStatus, ProviderKind, ProviderResult, RawPayload

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Statuses worth another attempt
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def parse_timestamp(raw: Any, provider: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC so alerts from different providers
    can be ordered together.
    """
    if not isinstance(raw, str) or not raw:
        raise ProviderMalformedResponseError(provider, f"missing timestamp: {raw!r}")
    text = raw.strip().replace(" ", "T", 1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ProviderMalformedResponseError(provider, f"bad timestamp: {raw!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def require(data: Any, *path: str, provider: str) -> Any:
    """Walk ``path`` into nested JSON, raising malformed-response on a gap."""
    node = data
    for key in path:
        if not isinstance(node, dict) or key not in node or node[key] is None:
            raise ProviderMalformedResponseError(
                provider, f"missing field '{'.'.join(path)}'",
            )
        node = node[key]
    return node


def as_number(value: Any, field: str, provider: str) -> float:
    """
    A finite JSON number as float.

    The JSON decoder accepts the bare tokens ``NaN`` and ``Infinity``; those
    are malformed data, not measurements.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProviderMalformedResponseError(provider, f"'{field}' is not numeric: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ProviderMalformedResponseError(provider, f"'{field}' is not finite: {value!r}")
    return number


def optional_number(value: Any, field: str, provider: str, default: float = 0.0) -> float:
    """Like ``as_number`` but an absent (null) field falls back to ``default``."""
    if value is None:
        return default
    return as_number(value, field, provider)


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    Run sub-requests concurrently; if one fails, cancel and await the rest.

    Unlike a bare ``asyncio.gather``, no sibling outlives the failure.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def retrieve_abandoned(task: "asyncio.Future") -> None:
    """Done-callback for tasks abandoned at a deadline; consumes the outcome."""
    if not task.cancelled():
        task.exception()


@dataclass
class CallContext:
    """Mutable per-call state; one instance per ``fetch`` invocation."""
    deadline_at: float
    attempts: int = 0

    @property
    def remaining(self) -> float:
        return self.deadline_at - time.monotonic()


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of one guarded provider operation."""
    status: FetchStatus
    value: Optional[T] = None
    error_message: str = ""
    duration_ms: int = 0
    attempts: int = 0


class ProviderClient(ABC):
    """
    Base class for all external data providers.

    Usage:
        client = WeatherClient(settings.provider_config("weather"))
        result = await client.fetch(location, timeout=3.0)
        if result.success:
            print(result.payload)
        await client.aclose()
    """

    kind: ClassVar[ProviderKind]

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    # ── Connection pool ──

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the long-lived HTTP client for this provider."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ── Public contract ──

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def effective_timeout(self, timeout: Optional[float]) -> float:
        """Inner budget never exceeds the caller's deadline."""
        if timeout is None:
            return self.config.timeout_seconds
        return max(0.0, min(self.config.timeout_seconds, timeout))

    async def fetch(self, query: Any, *, timeout: Optional[float] = None) -> ProviderResult:
        """
        Fetch and parse this provider's data for ``query``.

        Never raises for provider-side faults; check ``result.success``.
        """
        outcome = await self._guarded(lambda call: self._fetch_payload(query, call), timeout)
        if outcome.status == FetchStatus.SUCCESS:
            return ProviderResult(
                kind=self.kind,
                status=FetchStatus.SUCCESS,
                payload=outcome.value,
                duration_ms=outcome.duration_ms,
                attempts=outcome.attempts,
            )
        return ProviderResult.failed(
            self.kind,
            outcome.status,
            outcome.error_message,
            duration_ms=outcome.duration_ms,
            attempts=outcome.attempts,
        )

    async def fetch_alerts(self, province: str, *, timeout: Optional[float] = None) -> ProviderAlerts:
        """Active flood alerts for ``province``; never raises for provider faults."""
        outcome = await self._guarded(lambda call: self._fetch_alerts(province, call), timeout)
        return ProviderAlerts(
            source=self.kind,
            status=outcome.status,
            alerts=tuple(outcome.value or ()),
            error_message=outcome.error_message,
        )

    @abstractmethod
    async def _fetch_payload(self, query: Any, call: CallContext) -> RawPayload:
        """Perform the provider-specific request(s) and parse the payload."""
        raise NotImplementedError

    async def _fetch_alerts(self, province: str, call: CallContext) -> List[FloodAlert]:
        raise NotImplementedError(f"{type(self).__name__} has no alert feed")

    # ── Guarded execution ──

    async def _guarded(
        self,
        work: Callable[[CallContext], Awaitable[T]],
        timeout: Optional[float],
    ) -> Outcome[T]:
        """Run ``work`` under the credential check, budget and error mapping."""
        start = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        if not self.is_configured:
            logger.warning(
                "%s has no credentials configured; skipping",
                self.config.name,
                extra={"provider": self.kind.value},
            )
            return Outcome(
                status=FetchStatus.UNCONFIGURED,
                error_message=f"{self.config.name}: no API key configured",
            )

        budget = self.effective_timeout(timeout)
        call = CallContext(deadline_at=start + budget)

        try:
            value = await asyncio.wait_for(work(call), timeout=budget)
        except asyncio.TimeoutError:
            status, message = FetchStatus.TIMEOUT, f"timed out after {budget:.2f}s"
        except ProviderUnavailableError as e:
            status, message = FetchStatus(e.reason), e.message
        except ProviderMalformedResponseError as e:
            status, message = FetchStatus.MALFORMED_RESPONSE, e.message
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            # Payload shape did not match what the parser expects
            status, message = FetchStatus.MALFORMED_RESPONSE, f"unparseable payload: {e!r}"
        else:
            logger.debug(
                "%s answered in %dms (%d attempt(s))",
                self.config.name, _elapsed(), call.attempts,
                extra={"provider": self.kind.value, "duration_ms": _elapsed()},
            )
            return Outcome(
                status=FetchStatus.SUCCESS,
                value=value,
                duration_ms=_elapsed(),
                attempts=call.attempts,
            )

        logger.warning(
            "%s unavailable [%s]: %s",
            self.config.name, status.value, message,
            extra={"provider": self.kind.value, "duration_ms": _elapsed()},
        )
        return Outcome(
            status=status,
            error_message=message,
            duration_ms=_elapsed(),
            attempts=call.attempts,
        )

    # ── HTTP layer ──

    async def _request_json(
        self,
        call: CallContext,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Issue one logical request with retry and return the decoded JSON.

        Retry strategy (max_retries = 2, base = 0.5s):
            Attempt 1: immediate
            Attempt 2: wait 0.5 seconds
            Attempt 3: wait 1.0 seconds (final)

        Raises ProviderUnavailableError on exhaustion or a non-retryable
        HTTP status, ProviderMalformedResponseError on undecodable JSON.
        """
        name = self.config.name
        last_error: Optional[ProviderUnavailableError] = None

        for attempt in range(self.config.max_retries + 1):
            if attempt > 0:
                wait = self.config.retry_backoff_seconds * (2 ** (attempt - 1))
                if wait >= call.remaining:
                    break
                logger.warning(
                    "Retry %d/%d for %s after %.2fs: %s",
                    attempt, self.config.max_retries, name, wait, last_error.message,
                    extra={"provider": self.kind.value, "attempt": attempt},
                )
                await asyncio.sleep(wait)

            remaining = call.remaining
            if remaining <= 0:
                break

            call.attempts += 1
            client = await self._get_client()
            try:
                response = await client.request(
                    method,
                    path,
                    params=params,
                    content=content,
                    headers=headers,
                    timeout=remaining,
                )
            except httpx.TimeoutException as e:
                last_error = ProviderUnavailableError(
                    name, f"request timed out: {e}", reason="timeout", retryable=True,
                )
                continue
            except httpx.TransportError as e:
                last_error = ProviderUnavailableError(
                    name, f"network error: {e}", reason="network_error", retryable=True,
                )
                continue

            if response.status_code >= 400:
                retryable = response.status_code in RETRYABLE_STATUS_CODES
                last_error = ProviderUnavailableError(
                    name,
                    f"HTTP {response.status_code}: {response.text[:200]}",
                    reason="api_error",
                    retryable=retryable,
                    http_status=response.status_code,
                )
                if retryable:
                    continue
                raise last_error

            try:
                return response.json()
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ProviderMalformedResponseError(name, f"invalid JSON: {e}")

        if last_error is None:
            last_error = ProviderUnavailableError(
                name, "call budget exhausted before a request could be made", reason="timeout",
            )
        raise last_error
