"""
HTTP utilities for the remote catalog services.

Provides per-service request pacing, optional retries with backoff, and
mapping of transport/status outcomes to typed fetch results.
"""
import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
FORBIDDEN_STATUS_CODES = {401, 403}

ACADEMY = "academy"
LABS = "labs"

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:144.0) Gecko/20100101 Firefox/144.0"


class Outcome(Enum):
    """Closed set of fetch outcomes."""
    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    TRANSIENT_ERROR = "transient_error"
    MALFORMED_PAYLOAD = "malformed_payload"


@dataclass(frozen=True)
class FetchResult:
    """
    Result of a single governed fetch.

    payload is only set when outcome is Outcome.OK.
    """
    outcome: Outcome
    payload: Any = None
    status_code: Optional[int] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @classmethod
    def success(cls, payload: Any, status_code: int = 200) -> "FetchResult":
        return cls(Outcome.OK, payload=payload, status_code=status_code)

    @classmethod
    def failure(
        cls,
        outcome: Outcome,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> "FetchResult":
        return cls(outcome, status_code=status_code, detail=detail)


@dataclass
class RetryConfig:
    max_retries: int = 0
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 300.0
    jitter_ratio: float = 0.3
    timeout_seconds: float = 30.0


class RateGovernor:
    """
    Minimum-interval pacing per service key.

    throttle() returns only once the configured interval has elapsed since the
    previous call start for the same key. Keys are paced independently.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        intervals: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval_seconds = min_interval_seconds
        self.intervals = dict(intervals or {})
        self._clock = clock
        self._sleep = sleep
        self._last_call: Dict[str, float] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def interval_for(self, service: str) -> float:
        return self.intervals.get(service, self.min_interval_seconds)

    def throttle(self, service: str) -> None:
        with self._lock_for(service):
            interval = self.interval_for(service)
            last = self._last_call.get(service)
            if last is not None:
                wait_seconds = interval - (self._clock() - last)
                if wait_seconds > 0:
                    logger.debug("Pacing %s for %.2fs", service, wait_seconds)
                    self._sleep(wait_seconds)
            self._last_call[service] = self._clock()

    def _lock_for(self, service: str) -> threading.Lock:
        with self._registry_lock:
            if service not in self._locks:
                self._locks[service] = threading.Lock()
            return self._locks[service]


def academy_headers(cookie: str, referer: str) -> Dict[str, str]:
    return {
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "en-US,en;q=0.5",
        "Cache-Control": "no-cache",
        "Cookie": cookie,
        "Pragma": "no-cache",
        "Referer": referer,
        "User-Agent": USER_AGENT,
        "X-Requested-With": "XMLHttpRequest",
    }


def labs_headers(bearer: str, origin: str) -> Dict[str, str]:
    if bearer and not bearer.lower().startswith("bearer "):
        bearer = f"Bearer {bearer}"
    return {
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "en-US,en;q=0.5",
        "Authorization": bearer,
        "Cache-Control": "no-cache",
        "Origin": origin,
        "Pragma": "no-cache",
        "Referer": f"{origin}/",
        "User-Agent": USER_AGENT,
    }


class HttpClient:
    """Governed HTTP client that maps responses to FetchResult values."""

    def __init__(
        self,
        governor: RateGovernor,
        base_urls: Dict[str, str],
        retry_config: Optional[RetryConfig] = None,
        origins: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.governor = governor
        self.base_urls = {k: v.rstrip("/") for k, v in base_urls.items()}
        self.origins = origins or {}
        self.retry_config = retry_config or RetryConfig()
        self.session = session or requests.Session()

    def fetch_entity(self, service: str, path: str, credential: Optional[str]) -> FetchResult:
        """
        Fetch one JSON entity from a remote service.

        Args:
            service: Service key (academy | labs)
            path: Path relative to the service base URL
            credential: Cookie string (academy) or bearer token (labs)

        Returns:
            FetchResult; never raises for remote or network failures
        """
        if service not in self.base_urls:
            raise ValueError(f"Unknown service: {service}")

        url = f"{self.base_urls[service]}/{path.lstrip('/')}"
        headers = self._headers(service, credential)

        for attempt in range(self.retry_config.max_retries + 1):
            self.governor.throttle(service)
            started = time.monotonic()
            try:
                response = self.session.get(
                    url,
                    headers=headers,
                    timeout=self.retry_config.timeout_seconds,
                )
            except requests.RequestException as exc:
                elapsed = time.monotonic() - started
                logger.warning("GET %s %s failed after %.2fs: %s", service, path, elapsed, exc)
                if attempt < self.retry_config.max_retries:
                    self._sleep_with_backoff(attempt, None)
                    continue
                return FetchResult.failure(Outcome.TRANSIENT_ERROR, detail=f"{type(exc).__name__}: {exc}")

            elapsed = time.monotonic() - started
            status = response.status_code
            logger.debug("GET %s %s -> %s (%.2fs)", service, path, status, elapsed)

            if status in RETRYABLE_STATUS_CODES and attempt < self.retry_config.max_retries:
                self._sleep_with_backoff(attempt, self._retry_after_seconds(response))
                continue

            return self._to_result(response)

    def _to_result(self, response: requests.Response) -> FetchResult:
        status = response.status_code

        if status == 404:
            return FetchResult.failure(Outcome.NOT_FOUND, status_code=status)
        if status in FORBIDDEN_STATUS_CODES:
            return FetchResult.failure(Outcome.FORBIDDEN, detail=f"HTTP {status}", status_code=status)
        if status >= 400 or status < 200:
            return FetchResult.failure(Outcome.TRANSIENT_ERROR, detail=f"HTTP {status}", status_code=status)

        try:
            payload = response.json()
        except ValueError:
            return FetchResult.failure(
                Outcome.MALFORMED_PAYLOAD,
                detail="response body is not JSON",
                status_code=status,
            )

        if not isinstance(payload, dict):
            return FetchResult.failure(
                Outcome.MALFORMED_PAYLOAD,
                detail=f"expected JSON object, got {type(payload).__name__}",
                status_code=status,
            )

        return FetchResult.success(payload, status_code=status)

    def _headers(self, service: str, credential: Optional[str]) -> Dict[str, str]:
        base = self.base_urls[service]
        if service == LABS:
            return labs_headers(credential or "", self.origins.get(LABS, base))
        return academy_headers(credential or "", self.origins.get(service, base) + "/")

    def _retry_after_seconds(self, response: requests.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if not value:
            return None

        try:
            return float(value)
        except ValueError:
            try:
                dt = parsedate_to_datetime(value)
                if dt.tzinfo is None:
                    dt = dt.replace(tzinfo=timezone.utc)
                return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())
            except (TypeError, ValueError):
                logger.debug("Unable to parse Retry-After header: %s", value)
                return None

    def _sleep_with_backoff(self, attempt: int, retry_after: Optional[float]) -> None:
        base = min(
            self.retry_config.max_delay_seconds,
            self.retry_config.base_delay_seconds * (2 ** attempt),
        )
        jitter = base * random.uniform(0, self.retry_config.jitter_ratio)
        delay = base + jitter
        if retry_after is not None:
            delay = max(delay, retry_after)
        time.sleep(delay)
