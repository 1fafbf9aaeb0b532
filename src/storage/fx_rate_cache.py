# src/storage/fx_rate_cache.py

"""In-memory exchange-rate cache with single-flight refresh."""

import asyncio
import logging
import time
from collections.abc import Callable

from src.config.settings import Settings
from src.models.errors import RateUnavailable
from src.models.fx_snapshot import FxQuote, FxSnapshot
from src.services.fx_source import RateSource

logger = logging.getLogger("product_intel.fx_cache")


class FxRateCache:
    """Hold the latest reference-per-base rate and refresh it on expiry.

    Concurrent callers that find the snapshot expired share one upstream
    fetch: the first caller starts a refresh task, the others await the
    same task.  Each caller awaits it through ``asyncio.shield`` so a
    cancelled request never cancels the refresh other callers depend
    on.

    If the upstream fails and a previous snapshot exists, that snapshot
    is returned unchanged (stale but usable).  With no snapshot at all
    the failure surfaces as :class:`RateUnavailable`.
    """

    def __init__(
        self,
        source: RateSource,
        clock: Callable[[], float] = time.time,
        ttl: float | None = None,
        fetch_timeout: float | None = None,
    ) -> None:
        self._source = source
        self._clock = clock
        self._ttl: float = ttl if ttl is not None else Settings.FX_CACHE_TTL
        self._fetch_timeout: float = (
            fetch_timeout
            if fetch_timeout is not None
            else Settings.FX_FETCH_TIMEOUT
        )
        self._snapshot: FxSnapshot | None = None
        self._in_flight: asyncio.Task[FxSnapshot] | None = None

    def get_snapshot(self) -> FxSnapshot | None:
        """Return the cached snapshot without triggering a refresh."""
        return self._snapshot

    def clear(self) -> None:
        """Drop the cached snapshot."""
        self._snapshot = None
        logger.info("FX snapshot cleared")

    async def get_rate(self, max_age: float | None = None) -> FxSnapshot:
        """Return a fresh snapshot, refreshing it at most once at a time.

        Args:
            max_age: Freshness window (seconds) given to a snapshot
                produced by this call.  Defaults to ``FX_CACHE_TTL``.

        Raises:
            RateUnavailable: the upstream failed and nothing is cached.
        """
        snapshot = self._snapshot
        if snapshot is not None and snapshot.is_fresh(self._clock()):
            return snapshot

        task = self._in_flight
        if task is None or task.get_loop() is not asyncio.get_running_loop():
            ttl = self._ttl if max_age is None else max_age
            task = asyncio.create_task(self._refresh(ttl))
            task.add_done_callback(self._clear_in_flight)
            self._in_flight = task
        else:
            logger.debug("Joining in-flight FX refresh")

        return await asyncio.shield(task)

    def _clear_in_flight(self, task: "asyncio.Task[FxSnapshot]") -> None:
        if self._in_flight is task:
            self._in_flight = None
        # Retrieve the outcome so an unawaited failure is not reported
        if not task.cancelled():
            task.exception()

    async def _refresh(self, ttl: float) -> FxSnapshot:
        """Fetch upstream once; fall back to the stale snapshot."""
        try:
            quote: FxQuote = await asyncio.wait_for(
                asyncio.to_thread(self._source.fetch_rate),
                timeout=self._fetch_timeout,
            )
            if quote.rate <= 0:
                raise RateUnavailable(
                    f"Upstream {quote.source} returned rate {quote.rate}"
                )
        except Exception as exc:
            stale = self._snapshot
            if stale is not None:
                logger.warning(
                    "FX refresh failed (%s); serving stale rate %.4f"
                    " from %s",
                    exc,
                    stale.rate,
                    stale.source,
                )
                return stale
            logger.error("FX refresh failed: %s", exc, exc_info=True)
            if isinstance(exc, RateUnavailable):
                raise
            raise RateUnavailable(
                f"No exchange rate available: {exc}"
            ) from exc

        now = self._clock()
        snapshot = FxSnapshot(
            rate=quote.rate,
            source=quote.source,
            last_updated_at=now,
            expires_at=now + ttl,
        )
        self._snapshot = snapshot
        logger.info(
            "FX rate refreshed: %.4f from %s (ttl %.0fs)",
            snapshot.rate,
            snapshot.source,
            ttl,
        )
        return snapshot
