# src/scrapers/alibaba_extractor.py

"""Signal extractor for alibaba.com product pages."""

from bs4 import BeautifulSoup

from src.scrapers.base_extractor import BaseExtractor


class AlibabaExtractor(BaseExtractor):
    """Extractor for alibaba.com product detail pages.

    Prices are usually quoted as ``US$ 1.23 - 4.56 / piece`` tiers, so
    the regex fallback scan stays enabled.
    """

    TITLE_SELECTORS = ["h1", "[class*='product-title']"]
    DESCRIPTION_SELECTORS = [
        "#module_product_detail",
        "[id*='product-detail']",
        "[id*='productDetail']",
        "[class*='description']",
        "[class*='detail']",
    ]
    BULLET_SELECTORS = [
        "[data-spm-anchor-id*='key-attributes'] li",
        "[class*='key-attribute'] li",
        "ul li",
    ]
    SPEC_ROW_SELECTORS = ["table tr"]
    PRICE_SELECTORS = [
        "[class*='price-range']",
        "[class*='product-price']",
        "[class*='price'] [class*='range']",
    ]

    def __init__(self) -> None:
        super().__init__("alibaba")

    def get_homepage(self) -> str:
        """Return the Alibaba homepage URL."""
        return "https://www.alibaba.com/"

    def bullets(self, soup: BeautifulSoup) -> list[str]:
        """Key attributes, capped at 20."""
        return super().bullets(soup)[:20]
