# src/filters/price_normalizer.py

"""Reduce scraped price candidates to one normalized price.

Parsing rules, applied in this order:

1. Trust tier. Candidates are grouped by origin (structured data, meta
   tag, DOM text, regex fallback). The first tier holding a parseable
   candidate wins; lower tiers are ignored. Inside a tier the first
   parseable candidate in extraction order wins.
2. Shape. ``a - b`` / ``a – b`` / ``a ~ b`` / ``a to b`` is a range
   (swapped if reversed, collapsed to a single value if equal). Exactly
   one numeric token is a single price. Several tokens outside a range
   pattern are ambiguous and the candidate is skipped.
3. Separators. Page text goes through :func:`parse_amount`; structured
   data and meta tags carry machine values and go through
   :func:`parse_machine_amount`.
4. Conversion of the base currency into the reference currency through
   the injected :class:`~src.storage.fx_rate_cache.FxRateCache`.
"""

import logging
import re
from dataclasses import dataclass

from src.config.settings import Settings
from src.models.errors import RateUnavailable
from src.models.price import FxConversion, NormalizedPrice, PriceType
from src.models.product import PriceCandidate, SignalOrigin
from src.storage.fx_rate_cache import FxRateCache

logger = logging.getLogger("product_intel.price")

_NUMBER_RE = re.compile(r"\d[\d.,]*")
_RANGE_RE = re.compile(
    r"(\d[\d.,]{0,14})\s*(?:-|–|—|~|\bto\b)\s*"
    r"(?:[^\d\s]{1,4}\s*)?(\d[\d.,]{0,14})",
    re.IGNORECASE,
)
_GROUPED_DOTS_RE = re.compile(r"^\d{1,3}(\.\d{3})+$")
_GROUPED_COMMAS_RE = re.compile(r"^\d{1,3}(,\d{3})+$")

_CURRENCY_ALIASES: dict[str, str] = {
    "US$": "USD",
    "U$S": "USD",
    "RMB": "CNY",
    "YUAN": "CNY",
    "CN¥": "CNY",
    "¥": "CNY",
    "元": "CNY",
    "€": "EUR",
    "£": "GBP",
    "AR$": "ARS",
    "R$": "BRL",
    "C$": "CAD",
    "CA$": "CAD",
    "MX$": "MXN",
}

# Ordered: more specific markers first ("US$" before "$")
_CURRENCY_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bUSD\b|US\$|U\$S"), "USD"),
    (re.compile(r"\bARS\b|AR\$"), "ARS"),
    (re.compile(r"\bBRL\b|\bR\$"), "BRL"),
    (re.compile(r"\bCAD\b|\bCA?\$"), "CAD"),
    (re.compile(r"\bMXN\b|\bMX\$"), "MXN"),
    (re.compile(r"\bCNY\b|\bRMB\b|CN¥|¥|元"), "CNY"),
    (re.compile(r"\bEUR\b|€"), "EUR"),
    (re.compile(r"\bGBP\b|£"), "GBP"),
]
_BARE_DOLLAR_RE = re.compile(r"\$")

# Origins whose text is a machine value with "." as the decimal mark
_MACHINE_ORIGINS = frozenset(
    {SignalOrigin.STRUCTURED_DATA, SignalOrigin.META_TAG}
)

_UNIT_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(
            r"\bper\s+piece\b|/\s*pieces?\b|\bpcs?\b|\bpiezas?\b|"
            r"\bunits?\b|\bunidad(?:es)?\b",
            re.I,
        ),
        "piece",
    ),
    (re.compile(r"\bper\s*kg\b|/\s*kg\b|\bkg\b|\bkilos?\b", re.I), "kg"),
    (re.compile(r"\bper\s*set\b|/\s*sets?\b|\bjuegos?\b", re.I), "set"),
    (
        re.compile(
            r"\bper\s*met(?:er|re)\b|/\s*(?:m|met(?:er|re)s?)\b|\bmetros?\b",
            re.I,
        ),
        "meter",
    ),
    (re.compile(r"\bper\s*pair\b|/\s*pairs?\b|\bpares?\b", re.I), "pair"),
    (re.compile(r"\bper\s*box\b|/\s*box(?:es)?\b|\bcajas?\b", re.I), "box"),
]


def parse_amount(token: str) -> float | None:
    """Parse one numeric token, resolving locale separators.

    - Both ``.`` and ``,`` present: the right-most one is the decimal
      mark (``1,234.56`` and ``1.234,56`` are both 1234.56).
    - One separator kind used several times with 3-digit groups:
      thousands separators (``1.234.567``).
    - A single separator followed by exactly three digits (``1.500``,
      ``9,800``) cannot be resolved from the text alone. It is read as
      a thousands separator, unless the integer part is ``0``
      (``0.500`` is 0.5): no price is written with a zero-led
      thousands group.
    - Any other single separator is the decimal mark (``10,50``).

    Returns ``None`` when nothing numeric is left.
    """
    cleaned = re.sub(r"[^\d.,]", "", token or "").rstrip(".,")
    if not cleaned or not any(ch.isdigit() for ch in cleaned):
        return None

    has_dot = "." in cleaned
    has_comma = "," in cleaned

    if has_dot and has_comma:
        if cleaned.rfind(".") > cleaned.rfind(","):
            normalized = cleaned.replace(",", "")
        else:
            normalized = cleaned.replace(".", "").replace(",", ".")
    elif has_dot or has_comma:
        sep = "." if has_dot else ","
        grouped = _GROUPED_DOTS_RE if has_dot else _GROUPED_COMMAS_RE
        integer_part, _, fraction = cleaned.partition(sep)
        if cleaned.count(sep) > 1:
            if not grouped.match(cleaned):
                return None
            normalized = cleaned.replace(sep, "")
        elif len(fraction) == 3 and integer_part.lstrip("0"):
            normalized = integer_part + fraction
        else:
            normalized = f"{integer_part or '0'}.{fraction}"
    else:
        normalized = cleaned

    try:
        return float(normalized)
    except ValueError:
        return None


def parse_machine_amount(token: str) -> float | None:
    """Parse a machine-readable amount (schema.org ``price``, meta tags).

    These values use ``.`` as the decimal mark, so ``2.500`` is 2.5 and
    ``1,299.00`` is 1299. Tokens without a ``.``, or whose right-most
    separator is a comma, are not in that format and go through
    :func:`parse_amount`.
    """
    cleaned = re.sub(r"[^\d.,]", "", token or "").rstrip(".,")
    if not cleaned or not any(ch.isdigit() for ch in cleaned):
        return None
    if "." not in cleaned or cleaned.rfind(",") > cleaned.rfind("."):
        return parse_amount(cleaned)
    cleaned = cleaned.replace(",", "")
    if cleaned.count(".") > 1:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def normalize_currency(raw: str | None) -> str:
    """Canonical ISO-ish code for a currency hint (``US$`` → ``USD``)."""
    code = (raw or "").strip().upper()
    if not code:
        return ""
    return _CURRENCY_ALIASES.get(code, code)


def currency_from_text(text: str, default_currency: str = "") -> str:
    """Detect a currency from codes or symbols inside *text*.

    Dollar markers of other countries (``R$``, ``C$``, ``MX$``) are
    matched before the bare ``$``. A bare ``$`` is ambiguous (USD on
    amazon.com, MXN on amazon.com.mx) and resolves to
    *default_currency*, which is empty when the storefront is unknown.
    """
    upper = text.upper()
    for pattern, code in _CURRENCY_PATTERNS:
        if pattern.search(upper):
            return code
    if _BARE_DOLLAR_RE.search(text):
        return default_currency
    return ""


def unit_from_text(text: str) -> str:
    """Detect a per-unit suffix such as ``/ piece`` or ``per kg``."""
    for pattern, unit in _UNIT_PATTERNS:
        if pattern.search(text):
            return unit
    return ""


def normalize_unit(raw: str | None) -> str:
    """Canonical unit for a hint such as ``pcs`` or ``Pieces``."""
    hint = (raw or "").strip().lower()
    if not hint:
        return ""
    return unit_from_text(f"/{hint}") or hint


@dataclass(frozen=True)
class ParsedPrice:
    """A candidate that survived parsing, before conversion."""

    low: float
    high: float | None
    currency: str
    unit: str
    origin: SignalOrigin


def _plausible(value: float) -> bool:
    """Prices must be positive and below the sanity ceiling."""
    return 0 < value < Settings.MAX_PLAUSIBLE_PRICE


def parse_candidate(
    candidate: PriceCandidate,
    default_currency: str = "",
) -> ParsedPrice | None:
    """Parse one candidate into amounts, currency and unit, or ``None``."""
    raw = re.sub(r"\s+", " ", candidate.text or "").strip()
    if not raw:
        return None

    currency = normalize_currency(candidate.hint_currency) or (
        currency_from_text(raw, default_currency)
    )
    unit = normalize_unit(candidate.hint_unit) or unit_from_text(raw)
    parse = (
        parse_machine_amount
        if candidate.origin in _MACHINE_ORIGINS
        else parse_amount
    )

    range_match = _RANGE_RE.search(raw)
    if range_match:
        a = parse(range_match.group(1))
        b = parse(range_match.group(2))
        if (
            a is not None
            and b is not None
            and _plausible(a)
            and _plausible(b)
        ):
            low, high = round(min(a, b), 2), round(max(a, b), 2)
            return ParsedPrice(
                low=low,
                high=high if high > low else None,
                currency=currency,
                unit=unit,
                origin=candidate.origin,
            )

    tokens = _NUMBER_RE.findall(raw)
    if len(tokens) != 1:
        if len(tokens) > 1:
            logger.debug(
                "Ambiguous price text %r (%d numbers)", raw, len(tokens)
            )
        return None
    value = parse(tokens[0])
    if value is None or not _plausible(value):
        return None
    return ParsedPrice(
        low=round(value, 2),
        high=None,
        currency=currency,
        unit=unit,
        origin=candidate.origin,
    )


def select_best(
    candidates: list[PriceCandidate],
    default_currency: str = "",
) -> ParsedPrice | None:
    """Pick the first parseable candidate of the most trusted tier."""
    tiers = sorted(
        {c.origin for c in candidates}, key=lambda o: o.trust_rank
    )
    for origin in tiers:
        for candidate in candidates:
            if candidate.origin is not origin:
                continue
            parsed = parse_candidate(candidate, default_currency)
            if parsed is not None:
                logger.debug(
                    "Selected %s candidate %r", origin.value, candidate.text
                )
                return parsed
        logger.debug("No parseable %s candidate", origin.value)
    return None


def _to_price(parsed: ParsedPrice) -> NormalizedPrice:
    """Build the unconverted normalized price."""
    if parsed.high is None:
        return NormalizedPrice.single(
            parsed.low, parsed.currency, parsed.unit
        )
    return NormalizedPrice.range(
        parsed.low, parsed.high, parsed.currency, parsed.unit
    )


def candidate_from_price(price: NormalizedPrice) -> PriceCandidate:
    """Render a normalized price back into a structured-data candidate."""
    if price.type is PriceType.UNKNOWN:
        return PriceCandidate(text="", origin=SignalOrigin.STRUCTURED_DATA)
    text = f"{price.min:.2f}"
    if price.type is PriceType.RANGE:
        text = f"{price.min:.2f} - {price.max:.2f}"
    return PriceCandidate(
        text=text,
        origin=SignalOrigin.STRUCTURED_DATA,
        hint_currency=price.currency,
        hint_unit=price.unit,
    )


class PriceNormalizer:
    """Turn price candidates into one :class:`NormalizedPrice`."""

    def __init__(
        self,
        fx_cache: FxRateCache | None = None,
        reference_currency: str | None = None,
        base_currency: str | None = None,
        conversion_required: bool | None = None,
    ) -> None:
        self.fx_cache = fx_cache
        self.reference_currency = (
            reference_currency or Settings.REFERENCE_CURRENCY
        )
        self.base_currency = base_currency or Settings.FX_BASE_CURRENCY
        self.conversion_required = (
            Settings.FX_CONVERSION_REQUIRED
            if conversion_required is None
            else conversion_required
        )

    async def normalize(
        self,
        candidates: list[PriceCandidate],
        default_currency: str = "",
    ) -> NormalizedPrice:
        """Select, parse and (if needed) convert the page price.

        Raises:
            RateUnavailable: only when conversion is mandatory and no
                rate can be obtained.
        """
        parsed = select_best(candidates, default_currency)
        if parsed is None:
            logger.info(
                "No parseable price among %d candidates", len(candidates)
            )
            return NormalizedPrice.unknown()

        price = _to_price(parsed)
        if not self._needs_conversion(price.currency):
            return price
        return await self._convert(price)

    def _needs_conversion(self, currency: str) -> bool:
        """Only the configured base currency has a cached rate."""
        if not currency or currency == self.reference_currency:
            return False
        if currency != self.base_currency:
            logger.info(
                "No rate configured for %s, keeping original currency",
                currency,
            )
            return False
        return self.fx_cache is not None

    async def _convert(self, price: NormalizedPrice) -> NormalizedPrice:
        """Multiply by the cached rate, keeping a record of the original."""
        if self.fx_cache is None or price.min is None:
            return price
        try:
            snapshot = await self.fx_cache.get_rate()
        except RateUnavailable:
            if self.conversion_required:
                raise
            logger.warning(
                "Rate unavailable, keeping price in %s", price.currency
            )
            return price

        conversion = FxConversion(
            original_currency=price.currency,
            original_min=price.min,
            original_max=price.max,
            rate=snapshot.rate,
            source=snapshot.source,
        )
        low = round(price.min * snapshot.rate, 2)
        if price.type is PriceType.RANGE and price.max is not None:
            high = round(price.max * snapshot.rate, 2)
            if high > low:
                return NormalizedPrice.range(
                    low,
                    high,
                    self.reference_currency,
                    price.unit,
                    conversion,
                )
        return NormalizedPrice.single(
            low, self.reference_currency, price.unit, conversion
        )
