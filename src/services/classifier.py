# src/services/classifier.py

"""NCM classification of product text against the local nomenclator."""

import logging
import sqlite3

from src.config.settings import Settings
from src.models.classification import (
    Classification,
    ClassificationCandidate,
    NomenclatorMatch,
)
from src.models.product import ExtractedProductText
from src.storage.nomenclator_index import NomenclatorIndex, normalize_terms

logger = logging.getLogger("product_intel.classifier")


def build_query(text: ExtractedProductText) -> str:
    """Concatenate title, description, bullets and ``label: value`` specs.

    Title and bullets come first so that, once the query is cut down to
    its first search terms, the most descriptive words survive.
    """
    parts: list[str] = []
    if text.title:
        parts.append(text.title)
    parts.extend(text.bullets)
    parts.extend(f"{s.label}: {s.value}" for s in text.specs)
    if text.raw_description:
        parts.append(text.raw_description)
    return "\n".join(p for p in parts if p and p.strip())


class Classifier:
    """Rank nomenclator codes for a product and score the top pick.

    Confidence is the best entry's score divided by the number of query
    terms, so 1.0 means every query term matched that entry exactly.
    """

    def __init__(
        self,
        index: NomenclatorIndex,
        max_candidates: int | None = None,
    ) -> None:
        self.index = index
        self.max_candidates = (
            max_candidates
            if max_candidates is not None
            else Settings.CLASSIFIER_MAX_CANDIDATES
        )

    def classify(
        self,
        text: ExtractedProductText,
        code_family: str | None = None,
    ) -> Classification:
        """Classify extracted product text."""
        return self.classify_query(build_query(text), code_family)

    def classify_query(
        self,
        query: str,
        code_family: str | None = None,
    ) -> Classification:
        """Classify free text (a product name typed by a user, say)."""
        terms = normalize_terms(query)
        if not terms:
            return Classification()

        try:
            matches = self.index.search(
                query,
                limit=self.max_candidates,
                code_family=code_family,
            )
        except sqlite3.Error as exc:
            logger.error(
                "Nomenclator search failed: %s", exc, exc_info=True
            )
            return Classification()

        if not matches:
            logger.info("No nomenclator match for %d terms", len(terms))
            return Classification()

        confidence = self._confidence(matches[0], len(terms))
        logger.info(
            "Classified as %s (confidence %.2f, %d candidates)",
            matches[0].code,
            confidence,
            len(matches),
        )
        return Classification(
            code=matches[0].code,
            confidence=confidence,
            candidates=tuple(
                ClassificationCandidate(
                    code=m.code, label=m.entry.title or None
                )
                for m in matches
            ),
        )

    @staticmethod
    def _confidence(best: NomenclatorMatch, term_count: int) -> float:
        if term_count <= 0:
            return 0.0
        return round(min(1.0, max(0.0, best.score / term_count)), 4)
