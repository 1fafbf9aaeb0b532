# src/filters/image_filter.py

"""Image URL normalisation, filtering and deduplication."""

import logging
import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from src.config.settings import Settings

logger = logging.getLogger("product_intel.filters")

# Alibaba / generic analytics params that vary per session
_TRACKING_PARAMS: frozenset[str] = frozenset({
    "utm_source", "utm_medium", "utm_campaign", "utm_term",
    "utm_content", "spm", "spm_id_from", "scm",
    "algo_pvid", "algo_exp_id",
})

_IMAGE_EXT_RE = re.compile(r"\.(jpe?g|png|webp|gif)(\?|#|$)", re.I)
_THUMB_WORD_RE = re.compile(
    r"(thumb|thumbnail|small|sprite|icon|logo|avatar)", re.I
)
_DIMENSIONS_RE = re.compile(r"(?<![\da-z])(\d{2,3})x(\d{2,3})(?!\d)")
# Amazon resized suffixes such as ._SX38_ / ._AC_SY50_ / ._AC_US40_
_AMAZON_SMALL_RE = re.compile(r"[._](?:s[xyl]|us|ss)(\d{2,3})_", re.I)
_AMAZON_SIZE_SUFFIX_RE = re.compile(r"\._[^/.]*_(?=\.[a-z]+$)", re.I)

_MAX_THUMB_SIDE = 180


class ImageFilter:
    """Keep the usable product images out of everything a page links."""

    @staticmethod
    def _absolute(raw: str | None, base_url: str | None) -> str | None:
        """Resolve *raw* against *base_url*; ``None`` if not http(s)."""
        value = (raw or "").strip()
        if not value or value.startswith("data:"):
            return None
        try:
            absolute = urljoin(base_url or "", value)
            parsed = urlparse(absolute)
        except ValueError:
            return None
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return None
        return absolute

    @staticmethod
    def _strip_tracking(url: str) -> str:
        parsed = urlparse(url)
        if not parsed.query:
            return url
        kept = [
            (k, v)
            for k, v in parse_qsl(parsed.query, keep_blank_values=True)
            if k.lower() not in _TRACKING_PARAMS
        ]
        return urlunparse(parsed._replace(query=urlencode(kept)))

    @staticmethod
    def _looks_like_thumb(url: str) -> bool:
        if _THUMB_WORD_RE.search(url):
            return True
        m = _DIMENSIONS_RE.search(url.lower())
        if m and (
            int(m.group(1)) <= _MAX_THUMB_SIDE
            or int(m.group(2)) <= _MAX_THUMB_SIDE
        ):
            return True
        small = _AMAZON_SMALL_RE.search(url)
        return bool(small and int(small.group(1)) <= _MAX_THUMB_SIDE)

    @staticmethod
    def _dedupe_key(url: str) -> str:
        """URL without query and without Amazon size suffix."""
        no_query = url.split("?")[0]
        return _AMAZON_SIZE_SUFFIX_RE.sub("", no_query).lower()

    @staticmethod
    def normalize_and_filter(
        urls: list[str],
        base_url: str | None = None,
        limit: int | None = None,
    ) -> list[str]:
        """Return absolute, de-tracked, deduplicated image URLs.

        Relative URLs resolve against *base_url*; non-image links and
        thumbnails are dropped; at most *limit* (default
        ``MAX_IMAGES``) URLs are kept in input order.
        """
        max_images = Settings.MAX_IMAGES if limit is None else limit
        kept: list[str] = []
        seen: set[str] = set()
        for raw in urls:
            absolute = ImageFilter._absolute(raw, base_url)
            if absolute is None or not _IMAGE_EXT_RE.search(absolute):
                continue
            clean = ImageFilter._strip_tracking(absolute)
            if ImageFilter._looks_like_thumb(clean):
                continue
            key = ImageFilter._dedupe_key(clean)
            if key in seen:
                continue
            seen.add(key)
            kept.append(clean)
            if len(kept) >= max_images:
                break

        if len(kept) < len(urls):
            logger.debug(
                "Image filter kept %d of %d URLs", len(kept), len(urls)
            )
        return kept
