"""Shared JSON transport for road-graph providers.

One ``requests.Session`` serves every provider. Each provider has its own
``source_type`` which selects a token bucket per host, and a retry policy
that only repeats transport failures and throttling statuses. Every
failure leaves this module as a ``ProviderError`` subclass so the road
locator can absorb it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Mapping
from urllib.parse import urlparse

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from roadsnap.common.constants import USER_AGENT
from roadsnap.common.errors import ProviderError
from roadsnap.common.logging import log_event
from roadsnap.common.time_utils import elapsed_ms

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 5.0
    read: float = 15.0

    def as_tuple(self) -> tuple[float, float]:
        return (self.connect, self.read)


@dataclass(frozen=True)
class RetryConfig:
    # Radius growth is the main retry loop; transport retries default to off.
    max_attempts: int = 1
    multiplier: float = 1.0
    max_wait: float = 10.0


class HttpRequestError(ProviderError):
    error_code = "HTTP_ERROR"


class RetryableHttpError(HttpRequestError):
    error_code = "HTTP_RETRYABLE"


def check_status(status: int, url: str) -> None:
    if status in RETRYABLE_STATUS_CODES:
        raise RetryableHttpError(f"Retryable HTTP status {status} from {url}")
    if status >= 400:
        raise HttpRequestError(f"HTTP status {status} from {url}")


class TokenBucket:
    """Blocking token bucket; ``acquire`` sleeps outside the lock."""

    def __init__(self, rate_per_sec: float) -> None:
        self.rate_per_sec = rate_per_sec
        self.capacity = max(rate_per_sec, 1.0)
        self.tokens = self.capacity
        self.updated_at = time.monotonic()
        self.lock = threading.Lock()

    def _take(self) -> float:
        with self.lock:
            now = time.monotonic()
            self.tokens = min(self.capacity, self.tokens + (now - self.updated_at) * self.rate_per_sec)
            self.updated_at = now
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return 0.0
            return max((1.0 - self.tokens) / self.rate_per_sec, 0.01)

    def acquire(self) -> None:
        wait_for = self._take()
        while wait_for:
            time.sleep(wait_for)
            wait_for = self._take()


class SourceRateLimiter:
    """Token buckets keyed by ``(source_type, host)``."""

    def __init__(self, rates: Mapping[str, float] | None = None) -> None:
        self.rates = {source: rate for source, rate in (rates or {}).items() if rate and rate > 0}
        self.buckets: dict[tuple[str, str], TokenBucket] = {}
        self.lock = threading.Lock()

    def acquire(self, source_type: str, url: str) -> None:
        rate = self.rates.get(source_type)
        if rate is None:
            return
        key = (source_type, urlparse(url).netloc)
        with self.lock:
            bucket = self.buckets.get(key)
            if bucket is None:
                bucket = self.buckets[key] = TokenBucket(rate)
        bucket.acquire()


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log_event(
        logger,
        f"retrying provider call after: {exc}",
        level=logging.WARNING,
        provider=state.kwargs.get("source_type"),
        event="HTTP_RETRY",
        status="retry",
        error_code=getattr(exc, "error_code", None),
    )


class HttpClient:
    """Thread-safe JSON client shared by every road-graph provider.

    ``rate_limits`` maps a provider's ``source_type`` to requests per second
    per host; sources without a positive rate are not throttled.
    """

    def __init__(
        self,
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
        rate_limits: Mapping[str, float] | None = None,
    ) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.retry = retry or RetryConfig()
        self.limiter = SourceRateLimiter(rate_limits)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.retry.max_attempts)),
            wait=wait_exponential_jitter(initial=self.retry.multiplier, max=self.retry.max_wait, jitter=1.0),
            retry=retry_if_exception_type(RetryableHttpError),
            before_sleep=_log_retry,
            reraise=True,
        )

    def _send(
        self,
        method: str,
        url: str,
        *,
        source_type: str,
        timeout: TimeoutConfig | None = None,
        **kwargs: Any,
    ) -> Any:
        self.limiter.acquire(source_type, url)
        started = time.monotonic()
        try:
            response = self.session.request(
                method=method,
                url=url,
                timeout=(timeout or self.timeout).as_tuple(),
                **kwargs,
            )
        except requests.Timeout as exc:
            raise RetryableHttpError(f"Timed out calling {url}") from exc
        except requests.RequestException as exc:
            raise RetryableHttpError(f"Transport error calling {url}: {exc}") from exc

        log_event(
            logger,
            f"{method} {url}",
            level=logging.DEBUG,
            provider=source_type,
            event="HTTP_CALL",
            status=str(response.status_code),
            duration_ms=elapsed_ms(started),
        )
        check_status(response.status_code, url)
        try:
            return response.json()
        except ValueError as exc:
            raise HttpRequestError(f"Invalid JSON payload from {url}") from exc

    def request_json(self, method: str, url: str, *, source_type: str, **kwargs: Any) -> Any:
        return self._retrying()(self._send, method, url, source_type=source_type, **kwargs)

    def get_json(
        self,
        url: str,
        *,
        source_type: str,
        params: dict[str, Any] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> Any:
        return self.request_json("GET", url, source_type=source_type, params=params, timeout=timeout)

    def post_form_json(
        self,
        url: str,
        *,
        source_type: str,
        data: dict[str, Any],
        timeout: TimeoutConfig | None = None,
    ) -> Any:
        return self.request_json(
            "POST",
            url,
            source_type=source_type,
            data=data,
            headers={"Content-Type": FORM_CONTENT_TYPE},
            timeout=timeout,
        )
