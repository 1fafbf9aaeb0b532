# tests/test_analysis_orchestrator.py

"""End-to-end tests for ProductAnalyzer with a fake page fetcher."""

import threading
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from src.config.settings import Settings
from src.models.classification import NomenclatorEntry
from src.models.errors import (
    FetchFailure,
    InvalidInput,
    RateUnavailable,
    UnsupportedSource,
)
from src.models.fx_snapshot import FxQuote
from src.models.price import PriceType
from src.models.product import (
    ExtractedProductText,
    ExtractionResult,
    PageSignals,
    SourceVariant,
)
from src.services.analysis_orchestrator import ProductAnalyzer
from src.storage.fx_rate_cache import FxRateCache
from src.storage.nomenclator_index import NomenclatorIndex

FIXTURES_DIR = Path(__file__).parent / "fixtures"

_ALIBABA_URL = "https://www.alibaba.com/product/123"

_SINGLE_USD_HTML = (
    '<html><head><script type="application/ld+json">'
    '{"@type": "Product", "name": "Hydraulic hand pallet truck",'
    ' "offers": {"price": "10", "priceCurrency": "USD"}}'
    "</script></head><body></body></html>"
)


class _FakeFetcher:
    """Serves fixed HTML and records requested URLs."""

    def __init__(self, html: str = "", error: Exception | None = None):
        self.html = html
        self.error = error
        self.urls: list[str] = []

    def fetch(self, url: str) -> PageSignals:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return PageSignals(url=url, final_url=url, html=self.html)


class _FixedRateSource:
    name = "stub"

    def __init__(self, rate: float) -> None:
        self.rate = rate

    def fetch_rate(self) -> FxQuote:
        return FxQuote(rate=self.rate, source="stub-api")


class _DownRateSource:
    name = "down"

    def fetch_rate(self) -> FxQuote:
        raise RateUnavailable("upstream down")


def _fixture(name: str) -> str:
    with open(FIXTURES_DIR / name, encoding="utf-8") as f:
        return f.read()


def _amazon_price_html(
    offscreen: str = "",
    symbol: str = "",
    whole: str = "",
    fraction: str = "",
) -> str:
    """Minimal Amazon core price block."""
    return (
        '<html><body><div id="corePriceDisplay_desktop_feature_div">'
        '<span class="a-price">'
        f'<span class="a-offscreen">{offscreen}</span>'
        f'<span class="a-price-symbol">{symbol}</span>'
        f'<span class="a-price-whole">{whole}</span>'
        f'<span class="a-price-fraction">{fraction}</span>'
        "</span></div></body></html>"
    )


class TestProductAnalyzer(unittest.IsolatedAsyncioTestCase):
    """Routing, extraction, pricing and classification together."""

    def setUp(self) -> None:
        self.index = NomenclatorIndex(":memory:")
        self.index.upsert([
            NomenclatorEntry(
                "8427", "Carretillas apiladoras (autoelevadores)"
            ),
            NomenclatorEntry(
                "8427.10.11",
                "Autoelevadores eléctricos (electric forklift)",
            ),
            NomenclatorEntry(
                "8427.90.00",
                "Transpaletas manuales (hand pallet truck)",
            ),
            NomenclatorEntry("8517.13.00", "Teléfonos (smartphones)"),
        ])

    def tearDown(self) -> None:
        self.index.close()

    def _analyzer(
        self,
        fetcher: _FakeFetcher,
        source: object | None = None,
    ) -> ProductAnalyzer:
        cache = FxRateCache(source or _DownRateSource())  # type: ignore[arg-type]
        return ProductAnalyzer(
            fetcher=fetcher, fx_cache=cache, index=self.index
        )

    async def test_alibaba_structured_range_without_rate(self) -> None:
        """'USD 10.50 - 12.00 / piece' stays a USD range per piece."""
        analyzer = self._analyzer(
            _FakeFetcher(_fixture("alibaba_product.html"))
        )
        analyzer.price_normalizer.conversion_required = False
        output = await analyzer.analyze(_ALIBABA_URL)

        self.assertIs(output.source, SourceVariant.ALIBABA)
        price = output.product.price
        self.assertEqual(price.type, PriceType.RANGE)
        self.assertEqual((price.min, price.max), (10.5, 12.0))
        self.assertEqual((price.currency, price.unit), ("USD", "piece"))
        self.assertIsNone(price.conversion)

    async def test_alibaba_full_output(self) -> None:
        """Title, description, images and classification are filled."""
        analyzer = self._analyzer(
            _FakeFetcher(_fixture("alibaba_product.html"))
        )
        analyzer.price_normalizer.conversion_required = False
        output = await analyzer.analyze(_ALIBABA_URL)

        product = output.product
        self.assertEqual(product.title, "Electric Forklift 2 Ton CPD20")
        self.assertTrue(
            product.normalized_description.startswith(
                "Título: Electric Forklift 2 Ton CPD20"
            )
        )
        self.assertEqual(
            product.images,
            ("https://s.alicdn.com/@sc04/kf/H1a2b3c4d.jpg",),
        )
        self.assertEqual(output.classification.code, "8427.10.11")
        self.assertGreater(output.classification.confidence, 0)
        self.assertEqual(output.to_dict()["source"], "alibaba")

    async def test_usd_price_converted_with_rate(self) -> None:
        """10 USD at 1000 becomes 10000 in the reference currency."""
        analyzer = self._analyzer(
            _FakeFetcher(_SINGLE_USD_HTML), _FixedRateSource(1000.0)
        )
        output = await analyzer.analyze(_ALIBABA_URL)

        price = output.product.price
        self.assertEqual(price.type, PriceType.SINGLE)
        self.assertEqual(price.min, 10000.0)
        self.assertEqual(price.currency, Settings.REFERENCE_CURRENCY)
        assert price.conversion is not None
        self.assertEqual(price.conversion.source, "stub-api")
        self.assertEqual(price.conversion.original_min, 10.0)

    async def test_rate_required_surfaces_failure(self) -> None:
        """With mandatory conversion the run fails on a missing rate."""
        analyzer = self._analyzer(_FakeFetcher(_SINGLE_USD_HTML))
        analyzer.price_normalizer.conversion_required = True
        with self.assertRaises(RateUnavailable):
            await analyzer.analyze(_ALIBABA_URL)

    async def test_unsupported_host_is_not_fetched(self) -> None:
        """example.com fails fast without a page fetch."""
        fetcher = _FakeFetcher(_SINGLE_USD_HTML)
        with self.assertRaises(UnsupportedSource):
            await self._analyzer(fetcher).analyze(
                "https://example.com/whatever"
            )
        self.assertEqual(fetcher.urls, [])

    async def test_empty_url_is_invalid(self) -> None:
        """Blank input is rejected before routing."""
        fetcher = _FakeFetcher()
        for url in ("", "   "):
            with self.subTest(url=url):
                with self.assertRaises(InvalidInput):
                    await self._analyzer(fetcher).analyze(url)
        self.assertEqual(fetcher.urls, [])

    async def test_fetch_failure_propagates(self) -> None:
        """A provider FetchFailure reaches the caller unchanged."""
        error = FetchFailure("blocked")
        fetcher = _FakeFetcher(error=error)
        with self.assertRaises(FetchFailure) as ctx:
            await self._analyzer(fetcher).analyze(_ALIBABA_URL)
        self.assertIs(ctx.exception, error)

    async def test_unexpected_fetch_error_is_wrapped(self) -> None:
        """Any other provider exception becomes FetchFailure."""
        fetcher = _FakeFetcher(error=RuntimeError("boom"))
        with self.assertRaises(FetchFailure) as ctx:
            await self._analyzer(fetcher).analyze(_ALIBABA_URL)
        self.assertIn("boom", ctx.exception.message)

    async def test_fetch_timeout(self) -> None:
        """A provider slower than PAGE_FETCH_TIMEOUT fails the run."""
        release = threading.Event()
        fetcher = MagicMock()
        fetcher.fetch.side_effect = lambda url: release.wait(2)
        analyzer = self._analyzer(fetcher)
        try:
            with patch.object(Settings, "PAGE_FETCH_TIMEOUT", 0.05):
                with self.assertRaises(FetchFailure) as ctx:
                    await analyzer.analyze(_ALIBABA_URL)
        finally:
            release.set()
        self.assertIn("Timed out", ctx.exception.message)

    async def test_page_without_signals(self) -> None:
        """An empty page yields an unknown price and no code."""
        analyzer = self._analyzer(_FakeFetcher("<html></html>"))
        output = await analyzer.analyze(
            "https://detail.1688.com/offer/55.html"
        )
        self.assertIs(output.source, SourceVariant.ALI1688)
        self.assertEqual(output.product.price.type, PriceType.UNKNOWN)
        self.assertIsNone(output.product.title)
        self.assertEqual(output.classification.code, "")
        self.assertEqual(output.classification.confidence, 0.0)

    async def test_1688_price_stays_in_yuan(self) -> None:
        """CNY prices are not converted."""
        analyzer = self._analyzer(
            _FakeFetcher(_fixture("ali1688_product.html")),
            _FixedRateSource(1000.0),
        )
        output = await analyzer.analyze(
            "https://detail.1688.com/offer/55.html"
        )
        price = output.product.price
        self.assertEqual((price.min, price.currency), (12.5, "CNY"))

    async def test_amazon_bare_dollar_is_usd(self) -> None:
        """Amazon's '$79.99' is read as USD and converted."""
        analyzer = self._analyzer(
            _FakeFetcher(_fixture("amazon_product.html")),
            _FixedRateSource(100.0),
        )
        output = await analyzer.analyze("https://www.amazon.com/dp/B0TEST")
        price = output.product.price
        self.assertEqual(price.min, 7999.0)
        assert price.conversion is not None
        self.assertEqual(price.conversion.original_currency, "USD")

    async def test_brazilian_storefront_keeps_reais(self) -> None:
        """'R$ 199,90' on amazon.com.br is BRL, never converted."""
        analyzer = self._analyzer(
            _FakeFetcher(_amazon_price_html(offscreen="R$ 199,90")),
            _FixedRateSource(1000.0),
        )
        output = await analyzer.analyze("https://www.amazon.com.br/dp/B0TEST")
        price = output.product.price
        self.assertEqual((price.min, price.currency), (199.9, "BRL"))
        self.assertIsNone(price.conversion)

    async def test_german_storefront_reads_euro_symbol(self) -> None:
        """The split '€' + 19 + 99 markup gives EUR 19.99."""
        analyzer = self._analyzer(
            _FakeFetcher(
                _amazon_price_html(symbol="€", whole="19", fraction="99")
            ),
            _FixedRateSource(1000.0),
        )
        output = await analyzer.analyze("https://www.amazon.de/dp/B0TEST")
        price = output.product.price
        self.assertEqual((price.min, price.currency), (19.99, "EUR"))
        self.assertIsNone(price.conversion)

    async def test_mexican_storefront_bare_dollar_is_peso(self) -> None:
        analyzer = self._analyzer(
            _FakeFetcher(_amazon_price_html(offscreen="$1,299.00")),
            _FixedRateSource(1000.0),
        )
        output = await analyzer.analyze("https://www.amazon.com.mx/dp/B0TEST")
        price = output.product.price
        self.assertEqual((price.min, price.currency), (1299.0, "MXN"))
        self.assertIsNone(price.conversion)

    async def test_structured_price_dot_is_decimal(self) -> None:
        """JSON-LD '2.500' is two and a half dollars."""
        html = _SINGLE_USD_HTML.replace('"price": "10"', '"price": "2.500"')
        analyzer = self._analyzer(_FakeFetcher(html))
        analyzer.price_normalizer.conversion_required = False
        output = await analyzer.analyze(_ALIBABA_URL)
        price = output.product.price
        self.assertEqual((price.min, price.currency), (2.5, "USD"))

    async def test_extraction_runs_off_the_event_loop(self) -> None:
        """Page parsing happens in a worker thread."""
        threads: list[int] = []

        def extract(signals: PageSignals) -> ExtractionResult:
            threads.append(threading.get_ident())
            return ExtractionResult(ExtractedProductText(title="x"))

        extractor = MagicMock()
        extractor.extract.side_effect = extract
        analyzer = self._analyzer(_FakeFetcher("<html></html>"))
        with patch(
            "src.services.analysis_orchestrator.extractor_for",
            return_value=extractor,
        ):
            output = await analyzer.analyze(_ALIBABA_URL)

        self.assertEqual(output.product.title, "x")
        self.assertEqual(len(threads), 1)
        self.assertNotEqual(threads[0], threading.get_ident())

    async def test_url_without_http_scheme_or_host_is_invalid(self) -> None:
        """Scheme-less, non-http and malformed URLs are never fetched."""
        fetcher = _FakeFetcher(_SINGLE_USD_HTML)
        for url in (
            "www.amazon.com/dp/B0",
            "ftp://www.amazon.com/dp/B0",
            "https://",
            "http://[",
        ):
            with self.subTest(url=url):
                with self.assertRaises(InvalidInput):
                    await self._analyzer(fetcher).analyze(url)
        self.assertEqual(fetcher.urls, [])

    async def test_analyzers_share_one_rate(self) -> None:
        """Two analyzers given the same cache fetch the rate once."""
        source = MagicMock()
        source.name = "counting"
        source.fetch_rate.return_value = FxQuote(500.0, "counting")
        cache = FxRateCache(source)
        for _ in range(2):
            analyzer = ProductAnalyzer(
                fetcher=_FakeFetcher(_SINGLE_USD_HTML),
                fx_cache=cache,
                index=self.index,
            )
            output = await analyzer.analyze(_ALIBABA_URL)
            self.assertEqual(output.product.price.min, 5000.0)
        self.assertEqual(source.fetch_rate.call_count, 1)

    async def test_classify_text(self) -> None:
        """Free text goes straight to the classifier."""
        analyzer = self._analyzer(_FakeFetcher())
        result = await analyzer.classify_text("transpaleta manual")
        self.assertEqual(result.code, "8427.90.00")
        family = await analyzer.classify_text(
            "autoelevadores", code_family="8517"
        )
        self.assertEqual(family.code, "")


if __name__ == "__main__":
    unittest.main()
