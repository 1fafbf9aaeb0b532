# src/models/classification.py

"""Nomenclator entries, search matches and classification results."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class NomenclatorEntry:
    """A catalog row: an NCM code with its descriptive text."""

    code: str
    title: str = ""
    breadcrumbs: tuple[str, ...] = ()

    @property
    def digits(self) -> str:
        """The code without separators (``8427.10.11`` → ``84271011``)."""
        return "".join(ch for ch in self.code if ch.isdigit())


@dataclass(frozen=True)
class NomenclatorMatch:
    """A ranked search hit."""

    entry: NomenclatorEntry
    score: float
    matched_terms: tuple[str, ...] = ()

    @property
    def code(self) -> str:
        """Shortcut to the matched entry's code."""
        return self.entry.code


@dataclass(frozen=True)
class ClassificationCandidate:
    """One candidate code, best match first in a candidate list."""

    code: str
    label: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dict."""
        return {"code": self.code, "label": self.label}


@dataclass(frozen=True)
class Classification:
    """Top code, its confidence in [0, 1], and the ranked candidates."""

    code: str = ""
    confidence: float = 0.0
    candidates: tuple[ClassificationCandidate, ...] = field(
        default_factory=tuple
    )

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dict."""
        return {
            "code": self.code,
            "confidence": self.confidence,
            "candidates": [c.to_dict() for c in self.candidates],
        }
