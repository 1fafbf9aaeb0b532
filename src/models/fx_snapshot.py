# src/models/fx_snapshot.py

"""Exchange-rate quote and cached snapshot models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class FxQuote:
    """A rate as returned by an upstream source."""

    rate: float
    source: str


@dataclass(frozen=True)
class FxSnapshot:
    """The cached rate plus its freshness metadata (epoch seconds)."""

    rate: float
    source: str
    last_updated_at: float
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        """Return True while ``now`` is before the expiry time."""
        return now < self.expires_at

    def expires_in(self, now: float) -> float:
        """Seconds of freshness left (0 once expired)."""
        return max(0.0, self.expires_at - now)

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dict."""
        return {
            "rate": self.rate,
            "source": self.source,
            "last_updated_at": self.last_updated_at,
            "expires_at": self.expires_at,
        }
