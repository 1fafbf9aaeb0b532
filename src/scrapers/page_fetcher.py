# src/scrapers/page_fetcher.py

"""HTTP page signal provider: fetches a product page and its body text."""

import logging
import threading
import time
from typing import Any, Protocol

import cloudscraper  # type: ignore[import-untyped]
from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.models.errors import FetchFailure
from src.models.product import PageSignals


class PageSignalProvider(Protocol):
    """Anything that can turn a URL into raw page signals."""

    def fetch(self, url: str) -> PageSignals:
        """Return the page signals or raise :class:`FetchFailure`."""
        ...


def visible_text(html: str, limit: int) -> str:
    """Return the visible ``<body>`` text of *html*, capped at *limit*."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    body = soup.body or soup
    lines = (
        line.strip()
        for line in body.get_text("\n").splitlines()
    )
    text = "\n".join(line for line in lines if line)
    return text[:limit]


class HttpPageFetcher:
    """Fetch pages with curl_cffi, falling back to cloudscraper.

    Keeps an adaptive delay and a circuit breaker across calls so that a
    marketplace that starts blocking us is not hammered further.

    One instance is shared by concurrent analyses running in worker
    threads: each thread gets its own curl_cffi session and the breaker
    state is guarded by a lock.
    """

    # Cloudflare challenge page markers (checked before keyword scan)
    _CF_CHALLENGE_MARKERS: list[str] = [
        "challenges.cloudflare.com",
        "cdn-cgi/challenge-platform",
        "just a moment",
        "cf-turnstile",
        "cf_chl_opt",
    ]

    def __init__(self) -> None:
        self.logger = logging.getLogger("product_intel.fetcher")
        self.settings = Settings()
        self._local = threading.local()
        self._lock = threading.Lock()
        self._current_delay: float = self.settings.REQUEST_DELAY
        self._consecutive_failures: int = 0
        self._circuit_open: bool = False
        self._circuit_opened_at: float = 0.0
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    @property
    def session(self) -> curl_requests.Session:
        """The calling thread's curl_cffi session, created on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = curl_requests.Session(
                impersonate=self.settings.IMPERSONATE_BROWSER
            )
            self._local.session = session
        return session

    def _looks_blocked(self, text: str) -> bool:
        """Check for Cloudflare challenge pages and CAPTCHA walls."""
        lower = text.lower()
        for marker in self._CF_CHALLENGE_MARKERS:
            if marker in lower:
                self.logger.warning(
                    "Cloudflare challenge detected (marker: '%s')",
                    marker,
                )
                return True

        # Product pages mention "captcha" in scripts; only trust the
        # keyword scan on thin pages.
        if len(text) > 20_000:
            return False
        for keyword in self.settings.CAPTCHA_KEYWORDS:
            if keyword in lower:
                self.logger.warning(
                    "CAPTCHA keyword '%s' detected", keyword
                )
                return True
        return False

    def _check_circuit(self) -> bool:
        """Return True if the circuit breaker blocks this request.

        After CIRCUIT_BREAKER_COOLDOWN seconds the breaker enters a
        half-open state, allowing a single trial request through.
        """
        with self._lock:
            if not self._circuit_open:
                return False
            elapsed = time.time() - self._circuit_opened_at
            if elapsed >= self.settings.CIRCUIT_BREAKER_COOLDOWN:
                self.logger.info(
                    "Circuit breaker half-open after %.0fs", elapsed
                )
                self._circuit_open = False
                return False
            return True

    def _record_success(self) -> None:
        """Reset failure counters after a successful fetch."""
        with self._lock:
            self._consecutive_failures = 0
            self._circuit_open = False
            self._circuit_opened_at = 0.0
            self._current_delay = self.settings.REQUEST_DELAY

    def _record_failure(self) -> None:
        """Track failure and open circuit breaker if needed."""
        with self._lock:
            self._consecutive_failures += 1
            if (
                self._consecutive_failures
                >= self.settings.CIRCUIT_BREAKER_THRESHOLD
            ):
                self._circuit_open = True
                self._circuit_opened_at = time.time()
                self.logger.error(
                    "Circuit breaker opened after %d consecutive failures",
                    self._consecutive_failures,
                )

    def _escalate_delay(self) -> float:
        """Double the current delay up to the configured max."""
        max_delay = (
            self.settings.REQUEST_DELAY
            * self.settings.MAX_DELAY_MULTIPLIER
        )
        with self._lock:
            self._current_delay = min(self._current_delay * 2, max_delay)
            delay = self._current_delay
        self.logger.warning("Rate-limited, delay escalated to %.1fs", delay)
        return delay

    def _base_delay(self) -> float:
        with self._lock:
            return self._current_delay

    def _build_headers(self, url: str) -> dict[str, str]:
        """Default browser headers plus a same-site Referer."""
        return {
            **self.settings.DEFAULT_HEADERS,
            "Referer": url,
        }

    def _fetch_primary(self, url: str) -> tuple[str, str] | None:
        """GET with retries and adaptive delay; returns (final_url, html)."""
        headers = self._build_headers(url)
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.get(
                    url,
                    headers=headers,
                    timeout=self._request_timeout,
                    allow_redirects=True,
                )
                if resp.status_code == 200:
                    if self._looks_blocked(resp.text):
                        time.sleep(self._escalate_delay())
                        continue
                    return str(resp.url or url), resp.text
                self.logger.warning(
                    "HTTP %d on attempt %d for %s",
                    resp.status_code,
                    attempt + 1,
                    url,
                )
                if resp.status_code in (429, 403):
                    time.sleep(self._escalate_delay())
            except Exception as exc:
                self.logger.warning(
                    "Request error on attempt %d for %s: %s",
                    attempt + 1,
                    url,
                    exc,
                    exc_info=True,
                )
                time.sleep(self._base_delay() * (attempt + 1))
        return None

    def _fetch_cloudscraper(self, url: str) -> tuple[str, str] | None:
        """Single cloudscraper attempt (JS challenge solver)."""
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            resp: Any = scraper.get(
                url,
                headers=self._build_headers(url),
                timeout=self._request_timeout,
            )
            if resp.status_code == 200:
                text = str(resp.text)
                if not self._looks_blocked(text):
                    return str(resp.url or url), text
            self.logger.warning(
                "cloudscraper fallback got HTTP %d for %s",
                resp.status_code,
                url,
            )
        except Exception as exc:
            self.logger.error(
                "cloudscraper fallback also failed for %s: %s",
                url,
                exc,
                exc_info=True,
            )
        return None

    def fetch(self, url: str) -> PageSignals:
        """Fetch *url* and return its HTML plus visible text.

        Raises:
            FetchFailure: when the circuit is open, or both the primary
                and the fallback client fail or hit a block page.
        """
        if self._check_circuit():
            raise FetchFailure(
                f"Circuit open, not fetching {url}; retry later"
            )

        result = self._fetch_primary(url)
        if result is None:
            self.logger.info(
                "curl_cffi exhausted, falling back to cloudscraper"
            )
            result = self._fetch_cloudscraper(url)

        if result is None:
            self._record_failure()
            raise FetchFailure(f"Could not retrieve {url}")

        self._record_success()
        final_url, html = result
        self.logger.info(
            "Fetched %s (%d bytes)", final_url, len(html)
        )
        return PageSignals(
            url=url,
            final_url=final_url,
            html=html,
            content_text=visible_text(
                html, self.settings.MAX_CONTENT_TEXT
            ),
        )
