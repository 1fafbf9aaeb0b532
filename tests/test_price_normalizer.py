# tests/test_price_normalizer.py

"""Tests for price parsing, trust-tier selection and FX conversion."""

import unittest
from unittest.mock import MagicMock

from src.filters.price_normalizer import (
    PriceNormalizer,
    candidate_from_price,
    currency_from_text,
    normalize_currency,
    normalize_unit,
    parse_amount,
    parse_candidate,
    parse_machine_amount,
    select_best,
    unit_from_text,
)
from src.models.errors import RateUnavailable
from src.models.fx_snapshot import FxQuote
from src.models.price import NormalizedPrice, PriceType
from src.models.product import PriceCandidate, SignalOrigin
from src.storage.fx_rate_cache import FxRateCache


def _cand(
    text: str,
    origin: SignalOrigin = SignalOrigin.DOM_TEXT,
    currency: str = "",
    unit: str = "",
) -> PriceCandidate:
    return PriceCandidate(
        text=text, origin=origin, hint_currency=currency, hint_unit=unit
    )


class _FixedRateSource:
    """Rate source returning a constant quote."""

    name = "stub"

    def __init__(self, rate: float = 1000.0) -> None:
        self.rate = rate
        self.calls = 0

    def fetch_rate(self) -> FxQuote:
        self.calls += 1
        return FxQuote(rate=self.rate, source="stub-api")


class _FailingRateSource:
    """Rate source that is always down."""

    name = "down"

    def fetch_rate(self) -> FxQuote:
        raise RateUnavailable("upstream down")


class TestParseAmount(unittest.TestCase):
    """The separator disambiguation policy, rule by rule."""

    def test_policy_table(self) -> None:
        """Each documented rule resolves to one deterministic value."""
        cases: dict[str, float | None] = {
            # both separators: right-most is decimal
            "1,234.56": 1234.56,
            "1.234,56": 1234.56,
            "12,345,678.9": 12345678.9,
            # repeated separator with 3-digit groups: thousands
            "1.234.567": 1234567.0,
            "1,234,567": 1234567.0,
            # single separator + exactly three digits: thousands
            "1.500": 1500.0,
            "9,800": 9800.0,
            # ...unless the integer part is zero
            "0.500": 0.5,
            # any other single separator: decimal mark
            "10,50": 10.5,
            "12.3": 12.3,
            "12.99": 12.99,
            "7": 7.0,
            # malformed
            "1.2.3": None,
            "abc": None,
            "": None,
        }
        for token, expected in cases.items():
            with self.subTest(token=token):
                self.assertEqual(parse_amount(token), expected)

    def test_currency_symbols_are_ignored(self) -> None:
        """Non-numeric characters around the number are stripped."""
        self.assertEqual(parse_amount("$1,299.99"), 1299.99)
        self.assertEqual(parse_amount("¥35"), 35.0)

    def test_trailing_separator_dropped(self) -> None:
        """A sentence-ending dot does not become a decimal mark."""
        self.assertEqual(parse_amount("25."), 25.0)

    def test_machine_amounts_use_decimal_dot(self) -> None:
        """schema.org / meta values never use a thousands dot."""
        cases: dict[str, float | None] = {
            "2.500": 2.5,
            "1.125": 1.125,
            "0.500": 0.5,
            "1,299.00": 1299.0,
            "1299": 1299.0,
            "12.99": 12.99,
            # not machine formatted: locale rules apply
            "1.234,56": 1234.56,
            "10,50": 10.5,
            # malformed
            "1.2.3": None,
            "": None,
        }
        for token, expected in cases.items():
            with self.subTest(token=token):
                self.assertEqual(parse_machine_amount(token), expected)


class TestCurrencyAndUnit(unittest.TestCase):
    """Currency and unit detection."""

    def test_hint_aliases(self) -> None:
        """Symbol-style hints map to ISO codes."""
        self.assertEqual(normalize_currency("US$"), "USD")
        self.assertEqual(normalize_currency("U$S"), "USD")
        self.assertEqual(normalize_currency("rmb"), "CNY")
        self.assertEqual(normalize_currency("¥"), "CNY")
        self.assertEqual(normalize_currency(" eur "), "EUR")
        self.assertEqual(normalize_currency(None), "")

    def test_currency_from_text(self) -> None:
        """Codes and symbols in the text are detected."""
        self.assertEqual(currency_from_text("USD 10.50"), "USD")
        self.assertEqual(currency_from_text("US$ 3"), "USD")
        self.assertEqual(currency_from_text("¥ 12.00"), "CNY")
        self.assertEqual(currency_from_text("12.00元"), "CNY")
        self.assertEqual(currency_from_text("€ 9,90"), "EUR")
        self.assertEqual(currency_from_text("AR$ 1.500"), "ARS")
        self.assertEqual(currency_from_text("12.00"), "")

    def test_bare_dollar_uses_default(self) -> None:
        """A lone $ takes the marketplace default currency."""
        self.assertEqual(currency_from_text("$12.99", "USD"), "USD")
        self.assertEqual(currency_from_text("$12.99"), "")

    def test_other_dollar_markers(self) -> None:
        """R$, C$ and MX$ are their own currencies, never the default."""
        cases = {
            "R$ 199,90": "BRL",
            "R$199,90": "BRL",
            "C$ 25.00": "CAD",
            "CA$ 25.00": "CAD",
            "MX$ 349.00": "MXN",
            "AR$ 1.500": "ARS",
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(currency_from_text(text, "USD"), expected)
        self.assertEqual(normalize_currency("r$"), "BRL")
        self.assertEqual(normalize_currency("MX$"), "MXN")

    def test_units(self) -> None:
        """Per-unit suffixes map to canonical units."""
        self.assertEqual(unit_from_text("10 / piece"), "piece")
        self.assertEqual(unit_from_text("3.5 per kg"), "kg")
        self.assertEqual(unit_from_text("12 / Sets"), "set")
        self.assertEqual(unit_from_text("2 / meter"), "meter")
        self.assertEqual(unit_from_text("5 / pair"), "pair")
        self.assertEqual(unit_from_text("9 / box"), "box")
        self.assertEqual(unit_from_text("9.99"), "")

    def test_unit_hints_are_canonicalised(self) -> None:
        """Plural and abbreviated hints collapse to one unit name."""
        self.assertEqual(normalize_unit("Pieces"), "piece")
        self.assertEqual(normalize_unit("pcs"), "piece")
        self.assertEqual(normalize_unit("kg"), "kg")
        self.assertEqual(normalize_unit("carton"), "carton")
        self.assertEqual(normalize_unit(""), "")


class TestParseCandidate(unittest.TestCase):
    """Shape detection for a single candidate."""

    def test_range_with_currency_and_unit(self) -> None:
        """'USD 10.50 - 12.00 / piece' is a USD range per piece."""
        parsed = parse_candidate(_cand("USD 10.50 - 12.00 / piece"))
        assert parsed is not None
        self.assertEqual(parsed.low, 10.5)
        self.assertEqual(parsed.high, 12.0)
        self.assertEqual(parsed.currency, "USD")
        self.assertEqual(parsed.unit, "piece")

    def test_reversed_range_is_swapped(self) -> None:
        """Endpoints are ordered low → high."""
        parsed = parse_candidate(_cand("15 - 10"))
        assert parsed is not None
        self.assertEqual((parsed.low, parsed.high), (10.0, 15.0))

    def test_equal_endpoints_collapse_to_single(self) -> None:
        """'5 - 5' is a single price."""
        parsed = parse_candidate(_cand("5.00 - 5.00"))
        assert parsed is not None
        self.assertEqual(parsed.low, 5.0)
        self.assertIsNone(parsed.high)

    def test_range_separators(self) -> None:
        """Dash, en-dash, tilde and 'to' all build ranges."""
        for text in ("3 - 4", "3 – 4", "3~4", "3 to 4", "$3 - $4"):
            with self.subTest(text=text):
                parsed = parse_candidate(_cand(text))
                assert parsed is not None
                self.assertEqual((parsed.low, parsed.high), (3.0, 4.0))

    def test_several_numbers_without_range_are_ambiguous(self) -> None:
        """Two loose numbers cannot be reduced to one price."""
        self.assertIsNone(parse_candidate(_cand("Buy 2 get 1 free")))

    def test_implausible_values_rejected(self) -> None:
        """Zero and absurdly large values are not prices."""
        self.assertIsNone(parse_candidate(_cand("0")))
        self.assertIsNone(parse_candidate(_cand("60.000.000")))
        self.assertIsNone(parse_candidate(_cand("")))

    def test_structured_and_meta_read_dot_as_decimal(self) -> None:
        """'2.500' is 2.5 from JSON-LD or meta, 2500 from page text."""
        cases = [
            (SignalOrigin.STRUCTURED_DATA, "2.500", 2.5),
            (SignalOrigin.META_TAG, "2.500", 2.5),
            (SignalOrigin.STRUCTURED_DATA, "0.750", 0.75),
            (SignalOrigin.STRUCTURED_DATA, "1,299.00", 1299.0),
            (SignalOrigin.DOM_TEXT, "2.500", 2500.0),
            (SignalOrigin.REGEX_FALLBACK, "2.500", 2500.0),
        ]
        for origin, text, expected in cases:
            with self.subTest(origin=origin.value, text=text):
                parsed = parse_candidate(_cand(text, origin, currency="USD"))
                assert parsed is not None
                self.assertEqual(parsed.low, expected)

    def test_structured_range_reads_dot_as_decimal(self) -> None:
        """Both range endpoints use the machine format."""
        parsed = parse_candidate(
            _cand("1.500 - 2.500", SignalOrigin.STRUCTURED_DATA)
        )
        assert parsed is not None
        self.assertEqual((parsed.low, parsed.high), (1.5, 2.5))

    def test_hint_currency_wins_over_text(self) -> None:
        """An explicit hint beats symbols found in the text."""
        parsed = parse_candidate(_cand("$ 12", currency="CNY"))
        assert parsed is not None
        self.assertEqual(parsed.currency, "CNY")


class TestSelectBest(unittest.TestCase):
    """Trust-tier selection."""

    def test_higher_tier_wins_regardless_of_list_order(self) -> None:
        """Structured data beats DOM text even when listed later."""
        parsed = select_best([
            _cand("9.99"),
            _cand("19.99", SignalOrigin.STRUCTURED_DATA),
        ])
        assert parsed is not None
        self.assertEqual(parsed.low, 19.99)
        self.assertIs(parsed.origin, SignalOrigin.STRUCTURED_DATA)

    def test_unparseable_tier_degrades_to_next(self) -> None:
        """An unparseable structured price falls through to meta."""
        parsed = select_best([
            _cand("N/A", SignalOrigin.STRUCTURED_DATA),
            _cand("24.50", SignalOrigin.META_TAG),
            _cand("1.00", SignalOrigin.REGEX_FALLBACK),
        ])
        assert parsed is not None
        self.assertEqual(parsed.low, 24.5)
        self.assertIs(parsed.origin, SignalOrigin.META_TAG)

    def test_first_parseable_in_tier_wins(self) -> None:
        """Inside a tier, extraction order decides."""
        parsed = select_best([
            _cand("Price unavailable"),
            _cand("15.00"),
            _cand("20.00"),
        ])
        assert parsed is not None
        self.assertEqual(parsed.low, 15.0)

    def test_nothing_parseable(self) -> None:
        """No parseable candidate → None."""
        self.assertIsNone(select_best([]))
        self.assertIsNone(select_best([_cand("call us")]))


class TestPriceNormalizer(unittest.IsolatedAsyncioTestCase):
    """End-to-end normalization including conversion."""

    def _normalizer(
        self,
        source: object | None = None,
        required: bool = False,
    ) -> PriceNormalizer:
        cache = (
            FxRateCache(source, clock=lambda: 0.0)  # type: ignore[arg-type]
            if source is not None
            else None
        )
        return PriceNormalizer(
            cache,
            reference_currency="ARS",
            base_currency="USD",
            conversion_required=required,
        )

    async def test_no_candidates_is_unknown(self) -> None:
        """Empty input yields the unknown price."""
        price = await self._normalizer().normalize([])
        self.assertEqual(price, NormalizedPrice.unknown())

    async def test_usd_single_converted_with_rate(self) -> None:
        """10 USD at rate 1000 becomes 10000 ARS, keeping the source."""
        price = await self._normalizer(_FixedRateSource()).normalize(
            [_cand("10", SignalOrigin.STRUCTURED_DATA, currency="USD")]
        )
        self.assertEqual(price.type, PriceType.SINGLE)
        self.assertEqual(price.min, 10000.0)
        self.assertEqual(price.currency, "ARS")
        assert price.conversion is not None
        self.assertEqual(price.conversion.original_currency, "USD")
        self.assertEqual(price.conversion.original_min, 10.0)
        self.assertEqual(price.conversion.rate, 1000.0)
        self.assertEqual(price.conversion.source, "stub-api")

    async def test_usd_range_converted(self) -> None:
        """Both range endpoints are converted and the unit kept."""
        price = await self._normalizer(_FixedRateSource(2.0)).normalize(
            [_cand("US$ 1.25 - 2.50 / piece")]
        )
        self.assertEqual(price.type, PriceType.RANGE)
        self.assertEqual((price.min, price.max), (2.5, 5.0))
        self.assertEqual(price.unit, "piece")

    async def test_reference_currency_not_converted(self) -> None:
        """ARS prices never touch the rate source."""
        source = _FixedRateSource()
        price = await self._normalizer(source).normalize(
            [_cand("AR$ 1.500")]
        )
        self.assertEqual((price.min, price.currency), (1500.0, "ARS"))
        self.assertIsNone(price.conversion)
        self.assertEqual(source.calls, 0)

    async def test_other_foreign_currency_kept(self) -> None:
        """CNY has no configured rate and stays in CNY."""
        source = MagicMock()
        price = await self._normalizer(source).normalize(
            [_cand("¥ 35.00")]
        )
        self.assertEqual((price.min, price.currency), (35.0, "CNY"))
        source.fetch_rate.assert_not_called()

    async def test_rate_unavailable_degrades(self) -> None:
        """Without a rate the price stays in its original currency."""
        price = await self._normalizer(_FailingRateSource()).normalize(
            [_cand("USD 10.50 - 12.00 / piece")]
        )
        self.assertEqual(price.type, PriceType.RANGE)
        self.assertEqual((price.min, price.max), (10.5, 12.0))
        self.assertEqual(price.currency, "USD")
        self.assertIsNone(price.conversion)

    async def test_rate_unavailable_raises_when_required(self) -> None:
        """Mandatory conversion surfaces the failure."""
        with self.assertRaises(RateUnavailable):
            await self._normalizer(
                _FailingRateSource(), required=True
            ).normalize([_cand("USD 10")])

    async def test_bare_dollar_uses_marketplace_default(self) -> None:
        """On Amazon a bare $ is USD and gets converted."""
        price = await self._normalizer(_FixedRateSource(100.0)).normalize(
            [_cand("$12.99")], default_currency="USD"
        )
        self.assertEqual(price.min, 1299.0)
        self.assertEqual(price.currency, "ARS")

    async def test_renormalizing_is_idempotent(self) -> None:
        """Rendering a price back to a candidate yields the same price."""
        normalizer = self._normalizer()
        for candidates in (
            [_cand("1.234,50 USD / pcs")],
            [_cand("USD 10.50 - 12.00 / piece")],
            [_cand("¥ 0.500")],
        ):
            with self.subTest(text=candidates[0].text):
                first = await normalizer.normalize(candidates)
                again = await normalizer.normalize(
                    [candidate_from_price(first)]
                )
                self.assertEqual(first, again)

    async def test_converted_price_is_stable(self) -> None:
        """A converted ARS price re-normalizes without a second rate."""
        source = _FixedRateSource()
        normalizer = self._normalizer(source)
        first = await normalizer.normalize([_cand("USD 3.5")])
        again = await normalizer.normalize([candidate_from_price(first)])
        self.assertEqual(again.min, first.min)
        self.assertEqual(again.currency, "ARS")
        self.assertEqual(source.calls, 1)


if __name__ == "__main__":
    unittest.main()
