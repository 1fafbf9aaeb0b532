# src/scrapers/base_extractor.py

"""Abstract base class for all marketplace signal extractors."""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from bs4 import BeautifulSoup, Tag

from src.config.settings import Settings
from src.models.product import (
    ExtractedProductText,
    ExtractionResult,
    PageSignals,
    PriceCandidate,
    SignalOrigin,
    SpecRow,
)

_WS_RE = re.compile(r"\s+")

# "US$ 1.23 - 4.56 / piece", "¥12.00", "€ 9,90", "R$ 199,90"
_REGEX_PRICE_RE = re.compile(
    r"(?P<cur>\bUSD\b|US\$|U\$S|AR\$|\bR\$|\bCA?\$|\bMX\$|"
    r"¥|RMB|CNY|€|\$)\s*"
    r"(?P<a>\d[\d.,]{0,14})"
    r"(?:\s*(?:-|–|~|to)\s*(?P<b>\d[\d.,]{0,14}))?"
    r"(?:\s*/\s*(?P<unit>[a-zA-Z]+))?",
    re.IGNORECASE,
)

_SYMBOL_CURRENCIES: dict[str, str] = {
    "¥": "CNY",
    "RMB": "CNY",
    "CNY": "CNY",
    "€": "EUR",
    "AR$": "ARS",
    "R$": "BRL",
    "C$": "CAD",
    "CA$": "CAD",
    "MX$": "MXN",
}

_PRODUCT_TYPES = frozenset({"Product", "ProductGroup", "IndividualProduct"})

_MAX_JSONLD_BLOCKS = 8
_MAX_JSONLD_DEPTH = 6
_MAX_REGEX_CANDIDATES = 10
_MAX_IMG_URLS = 80


def squash(text: str | None) -> str:
    """Collapse whitespace runs and strip."""
    return _WS_RE.sub(" ", text or "").strip()


def first_non_empty(*values: str | None) -> str:
    """Return the first value that is non-blank after stripping."""
    for value in values:
        cleaned = squash(value)
        if cleaned:
            return cleaned
    return ""


class BaseExtractor(ABC):
    """Pull product text and price candidates out of raw page signals.

    Subclasses describe the selectors of one marketplace; the trust-order
    fallbacks (structured data, meta tags, DOM, regex) live here.
    """

    # Marketplace-specific selectors, overridden by subclasses
    TITLE_SELECTORS: list[str] = ["h1"]
    DESCRIPTION_SELECTORS: list[str] = []
    BULLET_SELECTORS: list[str] = []
    SPEC_ROW_SELECTORS: list[str] = ["table tr"]
    PRICE_SELECTORS: list[str] = []
    REGEX_SCAN: bool = True

    def __init__(self, source_name: str) -> None:
        self.source_name = source_name
        self.logger = logging.getLogger(
            f"product_intel.extractor.{source_name}"
        )
        self.settings = Settings()

    # ------------------------------------------------------------------
    # Structured data (JSON-LD)
    # ------------------------------------------------------------------

    @staticmethod
    def extract_jsonld(soup: BeautifulSoup) -> list[Any]:
        """Parse up to 8 ``application/ld+json`` blocks, skipping bad JSON."""
        blocks: list[Any] = []
        for script in soup.find_all(
            "script", attrs={"type": "application/ld+json"}
        ):
            raw = (script.string or script.get_text() or "").strip()
            if not raw:
                continue
            try:
                blocks.append(json.loads(raw))
            except (json.JSONDecodeError, TypeError):
                continue
            if len(blocks) >= _MAX_JSONLD_BLOCKS:
                break
        return blocks

    @staticmethod
    def _walk_jsonld(node: Any, depth: int = 0) -> list[dict[str, Any]]:
        """Flatten nested JSON-LD into a list of object nodes."""
        if depth > _MAX_JSONLD_DEPTH or node is None:
            return []
        if isinstance(node, list):
            nodes: list[dict[str, Any]] = []
            for item in node:
                nodes.extend(
                    BaseExtractor._walk_jsonld(item, depth + 1)
                )
            return nodes
        if not isinstance(node, dict):
            return []
        found: list[dict[str, Any]] = [node]
        for key, value in node.items():
            if key in ("@context", "@type"):
                continue
            found.extend(BaseExtractor._walk_jsonld(value, depth + 1))
        return found

    def structured_price_candidates(
        self, blocks: list[Any],
    ) -> list[PriceCandidate]:
        """Price candidates from every JSON-LD node carrying a price."""
        candidates: list[PriceCandidate] = []
        for node in self._walk_jsonld(blocks):
            price = node.get("price")
            low = node.get("lowPrice")
            high = node.get("highPrice")
            if price is None and low is None and high is None:
                continue
            raw_cur = node.get("priceCurrency")
            currency = raw_cur if isinstance(raw_cur, str) else ""
            if price is not None:
                candidates.append(
                    PriceCandidate(
                        text=str(price),
                        origin=SignalOrigin.STRUCTURED_DATA,
                        hint_currency=currency,
                    )
                )
            if low is not None or high is not None:
                a = low if low is not None else price
                b = high if high is not None else price
                candidates.append(
                    PriceCandidate(
                        text=f"{a} - {b}",
                        origin=SignalOrigin.STRUCTURED_DATA,
                        hint_currency=currency,
                    )
                )
        return candidates

    @staticmethod
    def _is_product_node(node: dict[str, Any]) -> bool:
        """True when ``@type`` is, or lists, a schema.org product type."""
        raw = node.get("@type")
        types = raw if isinstance(raw, list) else [raw]
        return any(
            isinstance(t, str) and t.rsplit("/", 1)[-1] in _PRODUCT_TYPES
            for t in types
        )

    @staticmethod
    def _structured_field(blocks: list[Any], key: str) -> str:
        """First string value of *key*, Product nodes before any other.

        WebSite or Organization blocks often precede the Product block;
        their name and description are used only when no Product node
        carries *key*.
        """
        nodes = BaseExtractor._walk_jsonld(blocks)
        products = [n for n in nodes if BaseExtractor._is_product_node(n)]
        others = [n for n in nodes if not BaseExtractor._is_product_node(n)]
        for node in products + others:
            value = node.get(key)
            if isinstance(value, str) and value.strip():
                return squash(value)
        return ""

    # ------------------------------------------------------------------
    # Meta tags
    # ------------------------------------------------------------------

    @staticmethod
    def extract_meta(soup: BeautifulSoup) -> dict[str, str]:
        """Collect the meta tags the pipeline cares about."""
        wanted = {
            ("property", "og:title"): "og_title",
            ("property", "og:description"): "og_description",
            ("property", "og:image"): "og_image",
            ("property", "product:price:amount"): "price_amount",
            ("property", "product:price:currency"): "price_currency",
            ("name", "twitter:title"): "twitter_title",
            ("name", "twitter:description"): "twitter_description",
            ("name", "description"): "description",
        }
        meta: dict[str, str] = {}
        for (attr, key), name in wanted.items():
            tag = soup.find("meta", attrs={attr: key})
            if not isinstance(tag, Tag):
                continue
            content = tag.get("content")
            if content and str(content).strip():
                meta[name] = str(content).strip()
        return meta

    # ------------------------------------------------------------------
    # DOM helpers
    # ------------------------------------------------------------------

    @staticmethod
    def text_from_selectors(
        soup: BeautifulSoup,
        selectors: list[str],
        max_len: int = 40_000,
        min_len: int = 40,
    ) -> str:
        """Joined text of the first selector yielding a real text block."""
        for sel in selectors:
            parts = [
                el.get_text("\n") for el in soup.select(sel)
            ]
            text = "\n".join(parts)
            text = re.sub(r"[ \t]+\n", "\n", text)
            text = re.sub(r"\n{3,}", "\n\n", text).strip()
            if text and len(text) >= min_len:
                return text[:max_len]
        return ""

    @staticmethod
    def list_from_selectors(
        soup: BeautifulSoup,
        selectors: list[str],
        max_items: int = 60,
    ) -> list[str]:
        """Item texts of the first selector that matches anything useful."""
        for sel in selectors:
            items = [
                squash(el.get_text(" ")) for el in soup.select(sel)
            ]
            items = [i for i in items if len(i) >= 3][:max_items]
            if items:
                return items
        return []

    def spec_rows(self, soup: BeautifulSoup) -> list[SpecRow]:
        """Two-column table rows as label/value pairs."""
        rows: list[SpecRow] = []
        for sel in self.SPEC_ROW_SELECTORS:
            for tr in soup.select(sel):
                cells = tr.find_all(["th", "td"])
                if len(cells) < 2:
                    continue
                self._push_spec(
                    rows,
                    cells[0].get_text(" "),
                    cells[1].get_text(" "),
                )
        return rows[:60]

    @staticmethod
    def _push_spec(rows: list[SpecRow], label: str, value: str) -> None:
        """Append a cleaned row, dropping blanks and oversized cells."""
        label = squash(label)
        value = squash(value)
        if not label or not value:
            return
        if len(label) > 80 or len(value) > 220:
            return
        rows.append(SpecRow(label=label, value=value))

    @staticmethod
    def img_urls(soup: BeautifulSoup) -> list[str]:
        """Image URLs from ``<img>`` src / lazy-load attributes / srcset."""
        urls: list[str] = []
        for img in soup.find_all("img"):
            for attr in ("src", "data-src", "data-lazyload", "data-zoom-image"):
                value = img.get(attr)
                if value:
                    urls.append(str(value))
                    break
            srcset = img.get("srcset")
            if srcset:
                for part in str(srcset).split(","):
                    bits = part.strip().split()
                    if bits:
                        urls.append(bits[0])
            if len(urls) >= _MAX_IMG_URLS:
                break
        return urls

    def dom_price_candidates(
        self, soup: BeautifulSoup,
    ) -> list[PriceCandidate]:
        """Visible price strings from the marketplace price selectors."""
        candidates: list[PriceCandidate] = []
        for sel in self.PRICE_SELECTORS:
            el = soup.select_one(sel)
            if el is None:
                continue
            text = squash(el.get_text(" "))
            if text:
                candidates.append(
                    PriceCandidate(text=text, origin=SignalOrigin.DOM_TEXT)
                )
        return candidates

    def regex_price_candidates(self, scan: str) -> list[PriceCandidate]:
        """Currency-marked price patterns found anywhere in page text."""
        candidates: list[PriceCandidate] = []
        for m in _REGEX_PRICE_RE.finditer(scan[:20_000]):
            cur_raw = m.group("cur").upper()
            currency = self.currency_for_symbol(cur_raw)
            text = m.group("a")
            if m.group("b"):
                text = f"{text} - {m.group('b')}"
            candidates.append(
                PriceCandidate(
                    text=text,
                    origin=SignalOrigin.REGEX_FALLBACK,
                    hint_currency=currency,
                    hint_unit=(m.group("unit") or "").lower(),
                )
            )
            if len(candidates) >= _MAX_REGEX_CANDIDATES:
                break
        return candidates

    @staticmethod
    def currency_for_symbol(symbol: str) -> str:
        """Currency code implied by a regex-matched price marker."""
        return _SYMBOL_CURRENCIES.get(symbol, "USD")

    # ------------------------------------------------------------------
    # Extraction template
    # ------------------------------------------------------------------

    def extract(self, signals: PageSignals) -> ExtractionResult:
        """Extract text, images and price candidates from *signals*.

        Never raises on missing signals: each absent signal type just
        contributes nothing.
        """
        soup = BeautifulSoup(signals.html or "", "lxml")
        jsonld = self.extract_jsonld(soup)
        meta = self.extract_meta(soup)

        title_el = soup.find("title")
        title = first_non_empty(
            self._structured_field(jsonld, "name"),
            meta.get("og_title"),
            meta.get("twitter_title"),
            self.dom_title(soup),
            title_el.get_text() if title_el else "",
        )

        dom_description = self.text_from_selectors(
            soup,
            self.DESCRIPTION_SELECTORS,
            max_len=self.settings.MAX_DESCRIPTION_CHARS,
        )
        description = (
            self._structured_field(jsonld, "description")
            or meta.get("og_description", "")
            or meta.get("description", "")
            or dom_description
            or signals.content_text.strip()
        )

        candidates = self.structured_price_candidates(jsonld)
        if meta.get("price_amount"):
            candidates.append(
                PriceCandidate(
                    text=meta["price_amount"],
                    origin=SignalOrigin.META_TAG,
                    hint_currency=meta.get("price_currency", ""),
                )
            )
        candidates.extend(self.dom_price_candidates(soup))
        if self.REGEX_SCAN:
            scan = "\n".join(
                t for t in (dom_description, signals.content_text) if t
            )
            candidates.extend(self.regex_price_candidates(scan))

        images = self.variant_images(signals.html or "", soup)
        if meta.get("og_image"):
            images.append(meta["og_image"])
        images.extend(self.img_urls(soup))

        text = ExtractedProductText(
            title=title or None,
            raw_description=description or None,
            bullets=self.bullets(soup),
            specs=self.spec_rows(soup),
        )
        self.logger.info(
            "[%s] title=%s, %d bullets, %d specs, %d images, "
            "%d price candidates",
            self.source_name,
            "yes" if text.title else "no",
            len(text.bullets),
            len(text.specs),
            len(images),
            len(candidates),
        )
        return ExtractionResult(
            text=text, images=images, price_candidates=candidates
        )

    def dom_title(self, soup: BeautifulSoup) -> str:
        """Title text from the marketplace title selectors."""
        for sel in self.TITLE_SELECTORS:
            el = soup.select_one(sel)
            if el is not None:
                text = squash(el.get_text(" "))
                if text:
                    return text
        return ""

    def bullets(self, soup: BeautifulSoup) -> list[str]:
        """Bullet points from the marketplace list selectors."""
        return self.list_from_selectors(soup, self.BULLET_SELECTORS)

    def variant_images(self, html: str, soup: BeautifulSoup) -> list[str]:
        """Marketplace-specific image sources, highest quality first."""
        return []

    @abstractmethod
    def get_homepage(self) -> str:
        """Return the marketplace homepage URL."""
        ...
