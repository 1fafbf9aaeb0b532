# src/models/price.py

"""Normalized price model (single value, range, or unknown)."""

from dataclasses import dataclass
from enum import Enum


class PriceType(str, Enum):
    """Shape of a normalized price."""

    SINGLE = "single"
    RANGE = "range"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FxConversion:
    """Record of a currency conversion applied to a price."""

    original_currency: str
    original_min: float
    original_max: float | None
    rate: float
    source: str

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dict."""
        return {
            "original_currency": self.original_currency,
            "original_min": self.original_min,
            "original_max": self.original_max,
            "rate": self.rate,
            "source": self.source,
        }


@dataclass(frozen=True)
class NormalizedPrice:
    """One normalized price extracted from a product page.

    Invariants are checked on construction:

    - ``range``: ``min < max``.
    - ``single``: ``max is None``.
    - ``unknown``: ``min`` and ``max`` are ``None``, currency and unit
      are empty.
    - amounts are never negative.
    """

    type: PriceType
    min: float | None
    max: float | None
    currency: str
    unit: str
    conversion: FxConversion | None = None

    def __post_init__(self) -> None:
        if self.type is PriceType.UNKNOWN:
            if self.min is not None or self.max is not None:
                raise ValueError("unknown price cannot carry amounts")
            if self.currency or self.unit:
                raise ValueError(
                    "unknown price cannot carry currency or unit"
                )
            return
        if self.min is None or self.min < 0:
            raise ValueError(f"invalid minimum amount: {self.min!r}")
        if self.type is PriceType.SINGLE and self.max is not None:
            raise ValueError("single price must have max=None")
        if self.type is PriceType.RANGE:
            if self.max is None or not self.min < self.max:
                raise ValueError(
                    f"range requires min < max, got {self.min!r}"
                    f" / {self.max!r}"
                )

    @classmethod
    def single(
        cls,
        amount: float,
        currency: str = "",
        unit: str = "",
        conversion: FxConversion | None = None,
    ) -> "NormalizedPrice":
        """Build a single-value price."""
        return cls(
            PriceType.SINGLE, amount, None, currency, unit, conversion
        )

    @classmethod
    def range(
        cls,
        low: float,
        high: float,
        currency: str = "",
        unit: str = "",
        conversion: FxConversion | None = None,
    ) -> "NormalizedPrice":
        """Build a min/max price range."""
        return cls(
            PriceType.RANGE, low, high, currency, unit, conversion
        )

    @classmethod
    def unknown(cls) -> "NormalizedPrice":
        """Build the terminal 'no price extracted' value."""
        return cls(PriceType.UNKNOWN, None, None, "", "")

    @property
    def is_known(self) -> bool:
        """Return True unless this is the ``unknown`` price."""
        return self.type is not PriceType.UNKNOWN

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dict."""
        data: dict[str, object] = {
            "type": self.type.value,
            "min": self.min,
            "max": self.max,
            "currency": self.currency,
            "unit": self.unit,
        }
        if self.conversion is not None:
            data["conversion"] = self.conversion.to_dict()
        return data
