# src/filters/description_normalizer.py

"""Build a dense, classification-friendly product description."""

import logging
import re
import unicodedata

from src.config.settings import Settings
from src.models.product import SpecRow

logger = logging.getLogger("product_intel.filters")

_EMOJI_RE = re.compile(
    "["
    "\U0001F000-\U0001FAFF"  # pictographs, emoticons, transport, symbols
    "\u2600-\u27BF"            # misc symbols and dingbats
    "\u2B00-\u2BFF"            # arrows, stars
    "\uFE0F\u200D"             # variation selector, zero-width joiner
    "]+"
)

_NOISE_PHRASES: list[re.Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bfree\s+shipping\b",
        r"\bbest\s+seller\b",
        r"\blimited\s+time\b",
        r"\bflash\s+sale\b",
        r"\bhot\s+sale\b",
        r"\bdiscount\b",
        r"\bdeal\b",
        r"\boffer\b",
        r"\bpromo\b",
        r"\bnew\s+arrival\b",
        r"\bwholesale\b",
        r"\b100%\s*(?:original|authentic|genuine)\b",
        r"\bguarantee\b",
        r"\bfast\s+delivery\b",
        r"\ben\s+oferta\b",
        r"\boferta\b",
        r"\bdescuento\b",
        r"\benv[ií]o\s+gratis\b",
        r"\bventa\b",
        r"\bcomprar\s+ahora\b",
        r"\bclick\b",
        r"\badd\s+to\s+cart\b",
    )
]

# Materials keep their English name next to the Spanish one so that
# both vocabularies hit the nomenclator.
_MATERIALS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bstainless\s+steel\b", re.I),
     "acero inoxidable (stainless steel)"),
    (re.compile(r"\baluminum\b", re.I), "aluminio (aluminum)"),
    (re.compile(r"\baluminium\b", re.I), "aluminio (aluminium)"),
    (re.compile(r"\bcarbon\s+steel\b", re.I),
     "acero al carbono (carbon steel)"),
    (re.compile(r"\bplastic\b", re.I), "plástico (plastic)"),
    (re.compile(r"\babs\b", re.I), "ABS"),
]

_SYMBOL_ONLY_RE = re.compile(r"^[^a-z0-9]{0,6}$")


class DescriptionNormalizer:
    """Turn title, bullets, specs and raw text into one clean text block."""

    @staticmethod
    def _strip_emojis(text: str) -> str:
        return _EMOJI_RE.sub(" ", text)

    @staticmethod
    def _normalize_units(text: str) -> str:
        """Space numbers from units and spell out material names."""
        t = re.sub(r"[×✕]", "x", text)
        t = re.sub(
            r"(\d)(mm|cm|m|kg|g|l|ml|w|v|hz)\b", r"\1 \2", t, flags=re.I
        )
        t = re.sub(
            r"(\d)\s*(\"|\bin\b|\binch(?:es)?\b)", r"\1 in", t, flags=re.I
        )
        t = re.sub(r"(\d)\s*(lbs?\b|pounds?\b)", r"\1 lb", t, flags=re.I)
        t = re.sub(r"(\d)\s*(oz\b|ounces?\b)", r"\1 oz", t, flags=re.I)
        for pattern, replacement in _MATERIALS:
            t = pattern.sub(replacement, t)
        return t

    @staticmethod
    def _drop_noise(lines: list[str]) -> list[str]:
        """Remove marketing lines and symbol-only lines."""
        kept: list[str] = []
        for line in lines:
            low = line.lower()
            if len(low) <= 2 or _SYMBOL_ONLY_RE.match(low):
                continue
            if any(p.search(line) for p in _NOISE_PHRASES):
                continue
            kept.append(line)
        return kept

    @staticmethod
    def _dedupe_key(line: str) -> str:
        decomposed = unicodedata.normalize("NFD", line.lower())
        stripped = "".join(
            ch for ch in decomposed if not unicodedata.combining(ch)
        )
        return " ".join(stripped.split())

    @staticmethod
    def build(
        title: str | None = None,
        raw_description: str | None = None,
        bullets: list[str] | None = None,
        specs: list[SpecRow] | None = None,
    ) -> str:
        """Assemble and clean the normalized description.

        Layout: a ``Título:`` line, ``- bullet`` lines, ``label: value``
        lines, then the raw description.  Emojis and marketing noise
        are removed and repeated lines (case and accent-insensitive)
        kept once.
        """
        parts: list[str] = []
        if title and title.strip():
            parts.append(f"Título: {title.strip()}")
        parts.extend(f"- {b}" for b in bullets or [])
        parts.extend(f"{s.label}: {s.value}" for s in specs or [])
        if raw_description:
            parts.append(raw_description)

        text = DescriptionNormalizer._strip_emojis(
            DescriptionNormalizer._normalize_units("\n".join(parts))
        )
        lines = [
            line.strip()
            for line in text.replace("\r\n", "\n").split("\n")
            if line.strip()
        ]
        lines = DescriptionNormalizer._drop_noise(lines)

        seen: set[str] = set()
        unique: list[str] = []
        for line in lines:
            key = DescriptionNormalizer._dedupe_key(line)
            if key and key not in seen:
                seen.add(key)
                unique.append(line)

        result = "\n".join(unique)[: Settings.MAX_NORMALIZED_CHARS]
        logger.debug(
            "Normalized description: %d lines, %d chars",
            len(unique),
            len(result),
        )
        return result
