# src/services/analysis_orchestrator.py

"""Runs the full product analysis for one URL."""

import asyncio
import logging
from urllib.parse import urlparse

from src.config.settings import Settings
from src.filters.description_normalizer import DescriptionNormalizer
from src.filters.image_filter import ImageFilter
from src.filters.price_normalizer import PriceNormalizer
from src.models.classification import Classification
from src.models.errors import FetchFailure, InvalidInput, UnsupportedSource
from src.models.product import (
    AnalyzeProductOutput,
    ExtractedProductText,
    ExtractionResult,
    PageSignals,
    ProductSummary,
    SourceVariant,
)
from src.scrapers.page_fetcher import HttpPageFetcher, PageSignalProvider
from src.scrapers.source_router import (
    default_currency,
    detect_source,
    extractor_for,
)
from src.services.classifier import Classifier
from src.services.fx_source import default_rate_source
from src.storage.fx_rate_cache import FxRateCache
from src.storage.nomenclator_index import NomenclatorIndex

logger = logging.getLogger("product_intel.orchestrator")


class ProductAnalyzer:
    """Sequences routing, fetching, extraction, pricing and classification.

    The FX cache is the only state shared between runs; pass the same
    instance to every analyzer that should share one rate.
    """

    def __init__(
        self,
        fetcher: PageSignalProvider | None = None,
        fx_cache: FxRateCache | None = None,
        index: NomenclatorIndex | None = None,
    ) -> None:
        self.settings = Settings()
        self.fetcher: PageSignalProvider = fetcher or HttpPageFetcher()
        self.fx_cache = fx_cache or FxRateCache(default_rate_source())
        self.index = index or NomenclatorIndex.open_default()
        self.price_normalizer = PriceNormalizer(self.fx_cache)
        self.classifier = Classifier(self.index)

    # ── Private helpers ──────────────────────────────────

    async def _fetch(self, url: str) -> PageSignals:
        """Fetch page signals in a worker thread, bounded by a timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.fetcher.fetch, url),
                timeout=self.settings.PAGE_FETCH_TIMEOUT,
            )
        except FetchFailure:
            raise
        except asyncio.TimeoutError as exc:
            raise FetchFailure(
                f"Timed out after {self.settings.PAGE_FETCH_TIMEOUT:.0f}s"
                f" fetching {url}"
            ) from exc
        except Exception as exc:
            logger.error(
                "Page fetch failed for %s: %s", url, exc, exc_info=True
            )
            raise FetchFailure(f"Could not retrieve {url}: {exc}") from exc

    async def _classify(self, text: ExtractedProductText) -> Classification:
        return await asyncio.to_thread(self.classifier.classify, text)

    @staticmethod
    def _validate_url(url: str) -> str:
        """Strip *url* and require an http(s) scheme and a host."""
        url = (url or "").strip()
        if not url:
            raise InvalidInput("A product URL is required")
        try:
            parsed = urlparse(url)
            host = parsed.hostname
        except ValueError as exc:
            raise InvalidInput(f"Malformed URL: {url}") from exc
        if parsed.scheme.lower() not in ("http", "https") or not host:
            raise InvalidInput(f"Not an http(s) URL: {url}")
        return url

    @staticmethod
    def _extract(
        source: SourceVariant, signals: PageSignals,
    ) -> tuple[ExtractionResult, str, list[str]]:
        """Parse the page and build the description and image list.

        CPU-bound (lxml parse of the whole page); runs in a worker thread.
        """
        extraction = extractor_for(source).extract(signals)
        text = extraction.text
        normalized_description = DescriptionNormalizer.build(
            title=text.title,
            raw_description=text.raw_description,
            bullets=text.bullets,
            specs=text.specs,
        )
        images = ImageFilter.normalize_and_filter(
            extraction.images, base_url=signals.final_url or signals.url
        )
        return extraction, normalized_description, images

    # ── Public API ───────────────────────────────────────

    async def analyze(self, url: str) -> AnalyzeProductOutput:
        """Analyze one product URL.

        Raises:
            InvalidInput: *url* is empty or not an http(s) URL with a host.
            UnsupportedSource: the host is not a known marketplace; no
                fetch is attempted.
            FetchFailure: the page could not be retrieved in time.
            RateUnavailable: only when FX conversion is mandatory.
        """
        url = self._validate_url(url)

        source = detect_source(url)
        if source is None:
            raise UnsupportedSource(f"Unsupported marketplace URL: {url}")
        logger.info("Analyzing %s URL %s", source.value, url)

        signals = await self._fetch(url)
        extraction, normalized_description, images = (
            await asyncio.to_thread(self._extract, source, signals)
        )
        text = extraction.text

        price, classification = await asyncio.gather(
            self.price_normalizer.normalize(
                extraction.price_candidates, default_currency(url, source)
            ),
            self._classify(text),
        )

        output = AnalyzeProductOutput(
            source=source,
            url=url,
            product=ProductSummary(
                title=text.title,
                raw_description=text.raw_description or "",
                normalized_description=normalized_description,
                price=price,
                images=tuple(images),
            ),
            classification=classification,
        )
        logger.info(
            "Analysis done for %s: price=%s classification=%s (%.2f)",
            url,
            price.type.value,
            classification.code or "-",
            classification.confidence,
        )
        return output

    async def classify_text(
        self,
        text: str,
        code_family: str | None = None,
    ) -> Classification:
        """Classify free text typed by a user."""
        return await asyncio.to_thread(
            self.classifier.classify_query, text, code_family
        )
