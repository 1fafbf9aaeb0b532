# src/scrapers/ali1688_extractor.py

"""Signal extractor for 1688.com (Chinese wholesale) product pages."""

import re

from bs4 import BeautifulSoup

from src.models.product import PriceCandidate, SignalOrigin
from src.scrapers.base_extractor import BaseExtractor

# "¥12.00", "RMB 3.5-4.2", "12.00元"
_CNY_PRICE_RE = re.compile(
    r"(?:¥|RMB|CNY)\s*(?P<a>\d[\d.,]{0,14})"
    r"(?:\s*(?:-|–|~|to)\s*(?P<b>\d[\d.,]{0,14}))?"
    r"|(?P<c>\d[\d.,]{0,14})\s*元",
    re.IGNORECASE,
)


class Ali1688Extractor(BaseExtractor):
    """Extractor for 1688.com offers; prices are in CNY."""

    TITLE_SELECTORS = ["h1", "[class*='title-text']"]
    DESCRIPTION_SELECTORS = [
        "[id*='desc']",
        "[class*='desc']",
        "[class*='detail']",
        "[class*='description']",
    ]
    BULLET_SELECTORS = [
        "[class*='offer'] [class*='feature'] li",
        "[class*='detail'] li",
        "ul li",
    ]
    SPEC_ROW_SELECTORS = ["table tr"]
    PRICE_SELECTORS = [
        "[class*='price-original']",
        "[class*='price-text']",
    ]

    def __init__(self) -> None:
        super().__init__("1688")

    def get_homepage(self) -> str:
        """Return the 1688 homepage URL."""
        return "https://www.1688.com/"

    def bullets(self, soup: BeautifulSoup) -> list[str]:
        """Short feature lines only, capped at 20."""
        return [b for b in super().bullets(soup) if len(b) <= 200][:20]

    def dom_price_candidates(
        self, soup: BeautifulSoup,
    ) -> list[PriceCandidate]:
        """DOM prices on 1688 are always renminbi."""
        return [
            PriceCandidate(
                text=c.text,
                origin=SignalOrigin.DOM_TEXT,
                hint_currency="CNY",
            )
            for c in super().dom_price_candidates(soup)
        ]

    def regex_price_candidates(self, scan: str) -> list[PriceCandidate]:
        """Renminbi-marked prices only; dollar signs are ignored here."""
        candidates: list[PriceCandidate] = []
        for m in _CNY_PRICE_RE.finditer(scan[:20_000]):
            text = m.group("a") or m.group("c")
            if m.group("b"):
                text = f"{text} - {m.group('b')}"
            candidates.append(
                PriceCandidate(
                    text=text,
                    origin=SignalOrigin.REGEX_FALLBACK,
                    hint_currency="CNY",
                )
            )
            if len(candidates) >= 10:
                break
        return candidates
