# src/scrapers/amazon_extractor.py

"""Signal extractor for Amazon product pages (all regional storefronts)."""

import html as html_lib
import json
import re

from bs4 import BeautifulSoup

from src.models.product import PriceCandidate, SignalOrigin, SpecRow
from src.scrapers.base_extractor import BaseExtractor, squash

_DYNAMIC_IMAGE_RE = re.compile(
    r"data-a-dynamic-image=[\"']([^\"']+)[\"']", re.IGNORECASE
)
_OLD_HIRES_RE = re.compile(
    r"\bdata-old-hires=[\"']([^\"']+)[\"']", re.IGNORECASE
)
_DETAIL_BULLET_RE = re.compile(r"^([^:]{2,60}):\s*(.{2,160})$")


class AmazonExtractor(BaseExtractor):
    """Extractor for Amazon detail pages.

    Amazon exposes the title in ``#productTitle``, bullets in
    ``#feature-bullets`` and specs in the tech-spec tables plus the
    ``detailBullets`` list. The full page text is never regex-scanned
    for prices: it is full of ASINs and model numbers.
    """

    TITLE_SELECTORS = ["#productTitle", "h1"]
    DESCRIPTION_SELECTORS = [
        "#productDescription",
        "#aplus",
        "#importantInformation",
        "#detailBullets_feature_div",
    ]
    BULLET_SELECTORS = ["#feature-bullets li span.a-list-item"]
    SPEC_ROW_SELECTORS = [
        "#productDetails_techSpec_section_1 tr",
        "#productDetails_detailBullets_sections1 tr",
    ]
    PRICE_SELECTORS = [
        "#priceblock_ourprice",
        "#priceblock_dealprice",
        "#price_inside_buybox",
    ]
    REGEX_SCAN = False

    def __init__(self) -> None:
        super().__init__("amazon")

    def get_homepage(self) -> str:
        """Return the Amazon homepage URL."""
        return "https://www.amazon.com/"

    def bullets(self, soup: BeautifulSoup) -> list[str]:
        """Feature bullets without the 'select to learn more' filler."""
        return [
            b
            for b in super().bullets(soup)
            if not re.search(r"select\s+to\s+learn\s+more", b, re.I)
        ]

    def spec_rows(self, soup: BeautifulSoup) -> list[SpecRow]:
        """Tech-spec table rows plus ``Label: Value`` detail bullets."""
        rows = super().spec_rows(soup)
        for li in soup.select("#detailBullets_feature_div li"):
            text = squash(li.get_text(" "))
            # Amazon pads the label with RTL marks and spaces before ':'
            text = re.sub(r"[\u200e\u200f]", "", text)
            text = re.sub(r"\s+:", ":", text)
            m = _DETAIL_BULLET_RE.match(text)
            if m:
                self._push_spec(rows, m.group(1), m.group(2))
        return rows[:60]

    def dom_price_candidates(
        self, soup: BeautifulSoup,
    ) -> list[PriceCandidate]:
        """Core price block first, then the legacy buy-box ids."""
        candidates: list[PriceCandidate] = []
        core = soup.select_one(
            "#corePriceDisplay_desktop_feature_div span.a-price"
        )
        if core is not None:
            offscreen = core.select_one("span.a-offscreen")
            if offscreen is not None and squash(offscreen.get_text()):
                candidates.append(
                    PriceCandidate(
                        text=squash(offscreen.get_text()),
                        origin=SignalOrigin.DOM_TEXT,
                    )
                )
            symbol_el = core.select_one("span.a-price-symbol")
            whole_el = core.select_one("span.a-price-whole")
            frac_el = core.select_one("span.a-price-fraction")
            whole = re.sub(
                r"\D", "", whole_el.get_text() if whole_el else ""
            )
            frac = re.sub(
                r"\D", "", frac_el.get_text() if frac_el else ""
            )
            symbol = squash(symbol_el.get_text()) if symbol_el else ""
            if whole and frac and len(frac) <= 2:
                # The page's own symbol: "$", "R$", "€" or none
                candidates.append(
                    PriceCandidate(
                        text=f"{symbol}{whole}.{frac}",
                        origin=SignalOrigin.DOM_TEXT,
                    )
                )
        candidates.extend(super().dom_price_candidates(soup))
        return candidates

    def variant_images(self, html: str, soup: BeautifulSoup) -> list[str]:
        """Landing images from ``data-a-dynamic-image``, largest first."""
        sized: list[tuple[str, int]] = []
        for raw in _DYNAMIC_IMAGE_RE.findall(html)[:4]:
            try:
                data = json.loads(html_lib.unescape(raw))
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict):
                continue
            for url, dims in data.items():
                area = 0
                if isinstance(dims, list) and len(dims) >= 2:
                    try:
                        area = int(dims[0]) * int(dims[1])
                    except (TypeError, ValueError):
                        area = 0
                sized.append((url, area))

        for url in _OLD_HIRES_RE.findall(html):
            if url.strip():
                sized.append((url.strip(), 2_000_000))

        sized.sort(key=lambda pair: pair[1], reverse=True)
        seen: set[str] = set()
        ordered: list[str] = []
        for url, _area in sized:
            key = url.split("?")[0]
            if key and key not in seen:
                seen.add(key)
                ordered.append(url)
        return ordered
