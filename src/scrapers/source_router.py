# src/scrapers/source_router.py

"""Map a product URL to the marketplace variant that handles it."""

import importlib
import logging
from typing import Any
from urllib.parse import urlparse

from src.config.settings import Settings
from src.models.product import SourceVariant
from src.scrapers.base_extractor import BaseExtractor

logger = logging.getLogger("product_intel.router")


def _normalise_host(url: str) -> str:
    """Return the lower-cased hostname without a leading ``www.``."""
    try:
        host = urlparse(url.strip()).hostname or ""
    except ValueError:
        return ""
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def _matches(host: str, source: dict[str, str]) -> bool:
    """Apply one registry rule to a normalised hostname."""
    domain = source["domain"]
    if host == domain or host.endswith("." + domain):
        return True
    # Broad rules cover regional storefronts (amazon.co.uk, amazon.com.br)
    marker = source.get("broad_marker", "")
    return source.get("match") == "broad" and bool(marker) and marker in host


def detect_source(url: str) -> SourceVariant | None:
    """Classify *url* into a known marketplace, or ``None``.

    Never raises: unparseable input and unknown hosts both return
    ``None`` and the caller treats that as an unsupported source.
    """
    if not url:
        return None
    host = _normalise_host(url)
    if not host:
        logger.debug("No hostname in %r", url)
        return None

    for source in Settings.AVAILABLE_SOURCES:
        if _matches(host, source):
            return SourceVariant(source["id"])

    logger.debug("Host %s matches no known marketplace", host)
    return None


def _load_extractor_class(dotted_path: str) -> type[Any]:
    """Dynamically import an extractor class from its dotted module path."""
    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    cls: type[Any] = getattr(module, class_name)
    return cls


def extractor_for(source: SourceVariant) -> BaseExtractor:
    """Instantiate the extractor registered for *source*."""
    config = Settings.source_config(source.value)
    extractor: BaseExtractor = _load_extractor_class(config["extractor"])()
    return extractor


def default_currency(url: str, source: SourceVariant) -> str:
    """Currency a bare ``$`` stands for on the storefront of *url*.

    The registry ``currency`` applies to the marketplace's own domain.
    Other hosts accepted by a broad rule (regional Amazon stores) look
    up ``Settings.STOREFRONT_CURRENCIES`` and get ``""`` when unlisted.
    """
    config = Settings.source_config(source.value)
    host = _normalise_host(url)
    domain = config["domain"]
    if host == domain or host.endswith("." + domain):
        return config["currency"]
    return Settings.STOREFRONT_CURRENCIES.get(host, "")
