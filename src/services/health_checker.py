# src/services/health_checker.py

"""Connectivity health checker for marketplaces and the FX upstream."""

import asyncio
import logging
import time
from dataclasses import dataclass

from src.config.settings import Settings
from src.models.errors import RateUnavailable
from src.models.product import SourceVariant
from src.scrapers.page_fetcher import HttpPageFetcher
from src.scrapers.source_router import extractor_for
from src.services.fx_source import DolarApiRateSource

logger = logging.getLogger("product_intel.health")

_HEALTH_TIMEOUT = 10  # seconds per probe
_SLOW_MS = 5000


@dataclass
class HealthResult:
    """Result of a single health probe."""

    source_id: str
    status: str  # "ok", "slow", "down"
    latency_ms: float
    message: str


def _timed_status(source_id: str, elapsed_ms: float) -> HealthResult:
    if elapsed_ms > _SLOW_MS:
        return HealthResult(source_id, "slow", elapsed_ms, "High latency")
    return HealthResult(source_id, "ok", elapsed_ms, "")


def probe_source(source: dict[str, str]) -> HealthResult:
    """GET a marketplace homepage with the page fetcher's session."""
    source_id = source["id"]
    try:
        homepage = extractor_for(SourceVariant(source_id)).get_homepage()
    except Exception as exc:
        return HealthResult(
            source_id=source_id,
            status="down",
            latency_ms=0.0,
            message=f"Failed to load extractor: {exc}",
        )
    fetcher = HttpPageFetcher()

    start = time.monotonic()
    try:
        resp = fetcher.session.get(
            homepage,
            headers=fetcher._build_headers(homepage),
            timeout=_HEALTH_TIMEOUT,
        )
        elapsed_ms = (time.monotonic() - start) * 1000
        if resp.status_code != 200:
            return HealthResult(
                source_id=source_id,
                status="down",
                latency_ms=elapsed_ms,
                message=f"HTTP {resp.status_code}",
            )
        if fetcher._looks_blocked(resp.text):
            return HealthResult(
                source_id=source_id,
                status="down",
                latency_ms=elapsed_ms,
                message="Blocked (challenge or CAPTCHA)",
            )
        return _timed_status(source_id, elapsed_ms)
    except Exception as exc:
        elapsed_ms = (time.monotonic() - start) * 1000
        return HealthResult(
            source_id=source_id,
            status="down",
            latency_ms=elapsed_ms,
            message=str(exc)[:80],
        )


def probe_fx() -> HealthResult:
    """Fetch one quote from the FX upstream."""
    source = DolarApiRateSource()
    start = time.monotonic()
    try:
        quote = source.fetch_rate()
    except RateUnavailable as exc:
        return HealthResult(
            source_id="fx",
            status="down",
            latency_ms=(time.monotonic() - start) * 1000,
            message=exc.message[:80],
        )
    result = _timed_status("fx", (time.monotonic() - start) * 1000)
    if not result.message:
        result.message = f"{quote.rate:,.2f} ({quote.source})"
    return result


class HealthChecker:
    """Runs concurrent health probes against every external dependency."""

    def __init__(self) -> None:
        self.sources = Settings.AVAILABLE_SOURCES

    async def check_all(self) -> list[HealthResult]:
        """Probe every marketplace and the FX upstream concurrently."""
        tasks = [
            asyncio.to_thread(probe_source, src)
            for src in self.sources
        ]
        tasks.append(asyncio.to_thread(probe_fx))
        results: list[HealthResult] = list(
            await asyncio.gather(*tasks)
        )
        for r in results:
            logger.info(
                "Health check %s: %s (%.0fms) %s",
                r.source_id,
                r.status,
                r.latency_ms,
                r.message,
            )
        return results
