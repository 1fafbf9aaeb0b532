# src/services/fx_source.py

"""Upstream exchange-rate sources (reference currency per base currency)."""

import json
import logging
import os
import re
from typing import Any, Protocol

from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.models.errors import RateUnavailable
from src.models.fx_snapshot import FxQuote

logger = logging.getLogger("product_intel.fx_source")


class RateSource(Protocol):
    """A blocking upstream that returns the current rate."""

    name: str

    def fetch_rate(self) -> FxQuote:
        """Return the current rate or raise :class:`RateUnavailable`."""
        ...


def parse_rate(value: Any) -> float | None:
    """Parse an upstream rate: a number, ``"1234.5"`` or ``"1.234,5"``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        rate = float(value)
    elif isinstance(value, str):
        text = re.sub(r"[^\d.,]", "", value)
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        try:
            rate = float(text)
        except ValueError:
            return None
    else:
        return None
    return rate if rate > 0 else None


class DolarApiRateSource:
    """Read the selling (``venta``) rate from a dolarapi-style endpoint."""

    name = "dolarapi"

    def __init__(self, url: str | None = None) -> None:
        self.url = url or Settings.FX_API_URL
        self.session = curl_requests.Session(
            impersonate=Settings.IMPERSONATE_BROWSER
        )

    def fetch_rate(self) -> FxQuote:
        """GET the endpoint and parse its ``venta`` field."""
        try:
            resp = self.session.get(
                self.url,
                headers={"Accept": "application/json"},
                timeout=Settings.FX_FETCH_TIMEOUT,
            )
        except Exception as exc:
            raise RateUnavailable(
                f"{self.name} request failed: {exc}"
            ) from exc

        if resp.status_code != 200:
            raise RateUnavailable(
                f"{self.name} returned HTTP {resp.status_code}"
            )
        try:
            payload = json.loads(resp.text)
        except json.JSONDecodeError as exc:
            raise RateUnavailable(
                f"{self.name} returned non-JSON body"
            ) from exc

        rate = (
            parse_rate(payload.get("venta"))
            if isinstance(payload, dict)
            else None
        )
        if rate is None:
            raise RateUnavailable(f"{self.name} payload has no valid venta")
        logger.debug("%s rate: %.4f", self.name, rate)
        return FxQuote(rate=rate, source=self.name)


class EnvRateSource:
    """Rate configured manually through ``FX_ARS_PER_USD``."""

    name = "env"

    def __init__(self, variable: str = "FX_ARS_PER_USD") -> None:
        self.variable = variable

    def fetch_rate(self) -> FxQuote:
        """Read the variable at call time so .env edits are picked up."""
        rate = parse_rate(os.getenv(self.variable, ""))
        if rate is None:
            raise RateUnavailable(f"{self.variable} is not set to a rate")
        return FxQuote(rate=rate, source=self.name)


class ChainedRateSource:
    """Try several sources in order; the first success wins."""

    name = "chain"

    def __init__(self, sources: list[RateSource]) -> None:
        self.sources = sources

    def fetch_rate(self) -> FxQuote:
        """Return the first source's quote that does not fail."""
        errors: list[str] = []
        for source in self.sources:
            try:
                return source.fetch_rate()
            except RateUnavailable as exc:
                logger.warning(
                    "Rate source %s failed: %s", source.name, exc.message
                )
                errors.append(f"{source.name}: {exc.message}")
        raise RateUnavailable(
            "All rate sources failed ("
            + "; ".join(errors or ["none configured"])
            + ")"
        )


def default_rate_source() -> ChainedRateSource:
    """The public API first, then the manual override."""
    return ChainedRateSource([DolarApiRateSource(), EnvRateSource()])
