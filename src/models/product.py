# src/models/product.py

"""Product data models for inter-module data flow."""

from dataclasses import dataclass, field
from enum import Enum

from src.models.classification import Classification
from src.models.price import NormalizedPrice


class SourceVariant(str, Enum):
    """Supported marketplaces, derived purely from the URL hostname."""

    ALIBABA = "alibaba"
    ALI1688 = "1688"
    AMAZON = "amazon"


class SignalOrigin(str, Enum):
    """Where a price candidate came from, most trusted first."""

    STRUCTURED_DATA = "structured-data"
    META_TAG = "meta-tag"
    DOM_TEXT = "dom-text"
    REGEX_FALLBACK = "regex-fallback"

    @property
    def trust_rank(self) -> int:
        """0 for the most trusted origin, increasing from there."""
        return _TRUST_ORDER.index(self)


_TRUST_ORDER: list[SignalOrigin] = [
    SignalOrigin.STRUCTURED_DATA,
    SignalOrigin.META_TAG,
    SignalOrigin.DOM_TEXT,
    SignalOrigin.REGEX_FALLBACK,
]


@dataclass(frozen=True)
class PriceCandidate:
    """A raw price-bearing string scraped from one page signal."""

    text: str
    origin: SignalOrigin
    hint_currency: str = ""
    hint_unit: str = ""


@dataclass(frozen=True)
class SpecRow:
    """One ``label: value`` row from a product specification table."""

    label: str
    value: str


@dataclass
class ExtractedProductText:
    """Descriptive text harvested from a product page."""

    title: str | None = None
    raw_description: str | None = None
    bullets: list[str] = field(
        default_factory=lambda: list[str]()
    )
    specs: list[SpecRow] = field(
        default_factory=lambda: list[SpecRow]()
    )


@dataclass(frozen=True)
class PageSignals:
    """Raw page content supplied by a page signal provider.

    ``html`` carries the structured-data blocks, meta tags and DOM;
    ``content_text`` is the visible body text of the rendered page.
    """

    url: str
    final_url: str
    html: str
    content_text: str = ""


@dataclass
class ExtractionResult:
    """Output of a marketplace extractor for one page."""

    text: ExtractedProductText
    images: list[str] = field(
        default_factory=lambda: list[str]()
    )
    price_candidates: list[PriceCandidate] = field(
        default_factory=lambda: list[PriceCandidate]()
    )


@dataclass(frozen=True)
class ProductSummary:
    """The product section of an analysis result."""

    title: str | None
    raw_description: str
    normalized_description: str
    price: NormalizedPrice
    images: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dict."""
        return {
            "title": self.title,
            "raw_description": self.raw_description,
            "normalized_description": self.normalized_description,
            "price": self.price.to_dict(),
            "images": list(self.images),
        }


@dataclass(frozen=True)
class AnalyzeProductOutput:
    """Terminal artifact of one pipeline run."""

    source: SourceVariant
    url: str
    product: ProductSummary
    classification: Classification

    def to_dict(self) -> dict[str, object]:
        """Serialise to a JSON-ready dict."""
        return {
            "source": self.source.value,
            "url": self.url,
            "product": self.product.to_dict(),
            "classification": self.classification.to_dict(),
        }
