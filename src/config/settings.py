# src/config/settings.py

"""Central configuration for the product_intel pipeline."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the product_intel pipeline."""

    # --- Page fetching ---
    REQUEST_DELAY: float = 1.0          # Seconds between retries
    REQUEST_TIMEOUT: int = 25           # Seconds per HTTP request
    PAGE_FETCH_TIMEOUT: float = float(
        os.getenv("PAGE_FETCH_TIMEOUT", "40")
    )                                   # Whole fetch step, retries included
    MAX_RETRIES: int = 2                # Retry count on transient failures
    MAX_CONTENT_TEXT: int = 60_000      # Visible body text cap

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 120.0
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "robot check",
        "enter the characters you see",
        "unusual traffic",
        "verify you are a human",
    ]

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "es-AR,es;q=0.9,en-US;q=0.8,en;q=0.7",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Currency ---
    REFERENCE_CURRENCY: str = os.getenv("REFERENCE_CURRENCY", "ARS")
    FX_BASE_CURRENCY: str = "USD"       # The cached rate is REF per BASE
    FX_API_URL: str = os.getenv(
        "FX_API_URL", "https://dolarapi.com/v1/dolares/blue"
    )
    FX_CACHE_TTL: float = 600.0         # Seconds a fetched rate stays fresh
    FX_FETCH_TIMEOUT: float = 10.0      # Seconds before upstream gives up
    FX_CONVERSION_REQUIRED: bool = (
        os.getenv("FX_CONVERSION_REQUIRED", "0") == "1"
    )
    MAX_PLAUSIBLE_PRICE: float = 50_000_000.0
    # Currency of a bare "$" on storefronts reached through a broad rule.
    # Hosts not listed get no default, so their prices stay unconverted.
    STOREFRONT_CURRENCIES: dict[str, str] = {
        "amazon.ca": "CAD",
        "amazon.com.mx": "MXN",
        "amazon.com.br": "BRL",
        "amazon.com.au": "AUD",
        "amazon.sg": "SGD",
    }

    # --- Classification ---
    NOMENCLATOR_SEARCH_LIMIT: int = 12
    CLASSIFIER_MAX_CANDIDATES: int = 10
    MAX_QUERY_TERMS: int = 16

    # --- Text limits ---
    MAX_DESCRIPTION_CHARS: int = 40_000
    MAX_NORMALIZED_CHARS: int = 12_000
    MAX_IMAGES: int = 12

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    NOMENCLATOR_SEED_PATH: Path = (
        BASE_DIR / "src" / "config" / "nomenclator_seed.csv"
    )
    NOMENCLATOR_DB_PATH: Path = Path(
        os.getenv(
            "NOMENCLATOR_DB_PATH",
            str(BASE_DIR / "data" / "nomenclator.db"),
        )
    )
    RESULTS_DIR: Path = BASE_DIR / "results"
    LOGS_DIR: Path = BASE_DIR / "logs"

    # --- Sources (one entry per supported marketplace) ---
    # match="strict": exact domain or a subdomain of it.
    # match="broad": additionally any host containing broad_marker.
    AVAILABLE_SOURCES: list[dict[str, str]] = [
        {
            "id": "alibaba",
            "label": "Alibaba",
            "domain": "alibaba.com",
            "match": "strict",
            "currency": "USD",
            "extractor": "src.scrapers.alibaba_extractor.AlibabaExtractor",
        },
        {
            "id": "1688",
            "label": "1688",
            "domain": "1688.com",
            "match": "strict",
            "currency": "CNY",
            "extractor": "src.scrapers.ali1688_extractor.Ali1688Extractor",
        },
        {
            "id": "amazon",
            "label": "Amazon",
            "domain": "amazon.com",
            "match": "broad",
            "broad_marker": "amazon.",
            "currency": "USD",
            "extractor": "src.scrapers.amazon_extractor.AmazonExtractor",
        },
    ]

    @classmethod
    def source_config(cls, source_id: str) -> dict[str, str]:
        """Return the registry entry for *source_id* (KeyError if absent)."""
        for src in cls.AVAILABLE_SOURCES:
            if src["id"] == source_id:
                return src
        raise KeyError(source_id)
