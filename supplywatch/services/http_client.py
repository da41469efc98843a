# supplywatch/services/http_client.py

"""Blocking HTTP client shared by the collaborator adapters.

Wraps a ``curl_cffi`` session with retries, adaptive back-off on
rate limiting and a simple circuit breaker.  Callers on the event loop
run it through ``asyncio.to_thread``.
"""

import logging
import time
from typing import Any

from curl_cffi import requests as curl_requests

from supplywatch.config.settings import Settings

# Seconds the breaker stays open before a half-open trial request
CIRCUIT_BREAKER_COOLDOWN = 60.0
CIRCUIT_BREAKER_THRESHOLD = 3
BACKOFF_BASE_DELAY = 1.0
MAX_DELAY_MULTIPLIER = 8


class HttpClient:
    """GET/POST with retries, adaptive delay and a circuit breaker."""

    def __init__(
        self,
        name: str,
        timeout: int | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.name = name
        self.logger = logging.getLogger(f"supplywatch.http.{name}")
        self.session = curl_requests.Session(
            impersonate=Settings.IMPERSONATE_BROWSER
        )
        self._timeout = timeout or Settings.REQUEST_TIMEOUT
        self._max_retries = max_retries or Settings.MAX_RETRIES
        self._current_delay = BACKOFF_BASE_DELAY
        self._consecutive_failures = 0
        self._circuit_open = False
        self._circuit_opened_at = 0.0

    def close(self) -> None:
        self.session.close()

    # ── Circuit breaker ──────────────────────────────────

    def _check_circuit(self) -> bool:
        """Return True if the circuit breaker blocks this request."""
        if not self._circuit_open:
            return False
        elapsed = time.time() - self._circuit_opened_at
        if elapsed >= CIRCUIT_BREAKER_COOLDOWN:
            self.logger.info(
                "[%s] Circuit breaker half-open after %.0fs",
                self.name,
                elapsed,
            )
            self._circuit_open = False
            return False
        return True

    def _record_success(self) -> None:
        self._consecutive_failures = 0
        self._circuit_open = False
        self._circuit_opened_at = 0.0
        self._current_delay = BACKOFF_BASE_DELAY

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= CIRCUIT_BREAKER_THRESHOLD:
            self._circuit_open = True
            self._circuit_opened_at = time.time()
            self.logger.error(
                "[%s] Circuit breaker opened after %d consecutive failures",
                self.name,
                self._consecutive_failures,
            )

    def _escalate_delay(self) -> None:
        self._current_delay = min(
            self._current_delay * 2,
            BACKOFF_BASE_DELAY * MAX_DELAY_MULTIPLIER,
        )
        self.logger.warning(
            "[%s] Rate-limited, delay escalated to %.1fs",
            self.name,
            self._current_delay,
        )

    # ── Requests ─────────────────────────────────────────

    def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> curl_requests.Response | None:
        """Send a request, returning the 2xx response or ``None``."""
        if self._check_circuit():
            self.logger.warning("[%s] Circuit open, skipping %s", self.name, url)
            return None
        for attempt in range(self._max_retries):
            try:
                resp = self.session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=Settings.DEFAULT_HEADERS,
                    timeout=self._timeout,
                )
                if 200 <= resp.status_code < 300:
                    self._record_success()
                    return resp
                self.logger.warning(
                    "[%s] HTTP %d on attempt %d",
                    self.name,
                    resp.status_code,
                    attempt + 1,
                )
                if resp.status_code in (429, 403):
                    self._escalate_delay()
                    time.sleep(self._current_delay)
                elif 400 <= resp.status_code < 500:
                    break
            except Exception as exc:
                self.logger.warning(
                    "[%s] Request error on attempt %d: %s",
                    self.name,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(self._current_delay * (attempt + 1))
        self._record_failure()
        return None

    def get(
        self, url: str, params: dict[str, Any] | None = None,
    ) -> curl_requests.Response | None:
        return self.request("GET", url, params=params)

    def post(
        self, url: str, payload: dict[str, Any],
    ) -> curl_requests.Response | None:
        return self.request("POST", url, payload=payload)
