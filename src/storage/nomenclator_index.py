# src/storage/nomenclator_index.py

"""SQLite-backed NCM nomenclator with deterministic ranked text search."""

import csv
import json
import logging
import re
import sqlite3
import time
import unicodedata
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from src.config.settings import Settings
from src.models.classification import NomenclatorEntry, NomenclatorMatch

logger = logging.getLogger("product_intel.nomenclator")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS ncm (
    ncm_code         TEXT    PRIMARY KEY,
    title            TEXT,
    breadcrumbs_json TEXT,
    updated_at       INTEGER NOT NULL
);
"""

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

EXACT_MATCH_WEIGHT = 1.0
PARTIAL_MATCH_WEIGHT = 0.75
_MIN_TERM_LEN = 3
_MIN_PARTIAL_LEN = 4

STOPWORDS: frozenset[str] = frozenset({
    # Spanish
    "las", "los", "del", "con", "sin", "para", "por", "que", "una",
    "uno", "unos", "unas", "sus", "este", "esta", "estos", "estas",
    "como", "mas", "muy", "entre", "sobre", "desde", "hasta", "tipo",
    "otro", "otros", "otra", "otras", "demas", "incluso", "cual",
    "cuales", "sea", "son", "ser", "les",
    # English
    "the", "and", "for", "with", "without", "from", "into", "this",
    "that", "these", "those", "other", "others", "are", "was", "its",
    "per", "not", "new", "all", "any", "set",
})


def normalize_text(text: str) -> str:
    """Lower-case, strip accents, and turn non-alphanumerics into spaces."""
    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    no_accents = "".join(
        ch for ch in decomposed if not unicodedata.combining(ch)
    )
    return _NON_ALNUM_RE.sub(" ", no_accents).strip()


def normalize_terms(
    text: str, max_terms: int | None = None,
) -> list[str]:
    """Distinct search terms of *text*, in order of first appearance.

    Terms shorter than three characters and stopwords are dropped; at
    most *max_terms* (default ``MAX_QUERY_TERMS``) are kept.
    """
    limit = Settings.MAX_QUERY_TERMS if max_terms is None else max_terms
    terms: list[str] = []
    seen: set[str] = set()
    for token in normalize_text(text).split():
        if len(token) < _MIN_TERM_LEN or token in STOPWORDS:
            continue
        if token in seen:
            continue
        seen.add(token)
        terms.append(token)
        if len(terms) >= limit:
            break
    return terms


def format_code(raw: str) -> str | None:
    """Format an NCM code as ``XXXX.XX.XX``.

    A bare 4-digit heading stays ``XXXX``; 5-7 digits are right-padded
    with zeros; anything past 8 digits is dropped.  Fewer than four
    digits is not a code and yields ``None``.
    """
    digits = re.sub(r"\D", "", raw or "")[:8]
    if len(digits) < 4:
        return None
    if len(digits) == 4:
        return digits
    digits = digits.ljust(8, "0")
    return f"{digits[:4]}.{digits[4:6]}.{digits[6:8]}"


def _term_weight(query_term: str, entry_term: str) -> float:
    """1.0 for an exact term, 0.75 when one contains the other."""
    if query_term == entry_term:
        return EXACT_MATCH_WEIGHT
    shorter, longer = sorted((query_term, entry_term), key=len)
    if len(shorter) >= _MIN_PARTIAL_LEN and shorter in longer:
        return PARTIAL_MATCH_WEIGHT
    return 0.0


class NomenclatorIndex:
    """Local catalog of NCM codes searchable by description terms.

    Rows live in an SQLite table and are mirrored in memory in insertion
    (rowid) order together with their pre-computed terms; searches only
    touch the in-memory mirror.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        path = str(db_path or Settings.NOMENCLATOR_DB_PATH)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._entries: list[tuple[NomenclatorEntry, frozenset[str]]] = []
        self._reload()
        logger.debug(
            "NomenclatorIndex opened at %s (%d entries)",
            path,
            len(self._entries),
        )

    @classmethod
    def open_default(cls) -> "NomenclatorIndex":
        """Open the configured database, seeding it on first use."""
        index = cls(Settings.NOMENCLATOR_DB_PATH)
        seed = Settings.NOMENCLATOR_SEED_PATH
        if index.count() == 0 and seed.exists():
            loaded = index.load_file(seed)
            logger.info("Seeded nomenclator with %d entries", loaded)
        return index

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def count(self) -> int:
        """Number of catalog entries."""
        return len(self._entries)

    def get(self, code: str) -> NomenclatorEntry | None:
        """Look up one entry by code (any separator style)."""
        formatted = format_code(code)
        if formatted is None:
            return None
        row = self._conn.execute(
            "SELECT ncm_code, title, breadcrumbs_json FROM ncm "
            "WHERE ncm_code = ?",
            (formatted,),
        ).fetchone()
        return self._row_to_entry(row) if row else None

    # ── Loading ──────────────────────────────────────────

    def upsert(self, entries: Iterable[NomenclatorEntry]) -> int:
        """Insert or update entries; returns how many were accepted.

        Updating an existing code keeps its original insertion order.
        """
        now = int(time.time() * 1000)
        rows: list[tuple[str, str | None, str | None, int]] = []
        for entry in entries:
            code = format_code(entry.code)
            if code is None:
                logger.debug("Skipping malformed code %r", entry.code)
                continue
            crumbs = [c.strip() for c in entry.breadcrumbs if c.strip()]
            rows.append((
                code,
                entry.title.strip() or None,
                json.dumps(crumbs, ensure_ascii=False) if crumbs else None,
                now,
            ))

        with self._conn:
            self._conn.executemany(
                "INSERT INTO ncm "
                "(ncm_code, title, breadcrumbs_json, updated_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(ncm_code) DO UPDATE SET "
                "title=excluded.title, "
                "breadcrumbs_json=excluded.breadcrumbs_json, "
                "updated_at=excluded.updated_at",
                rows,
            )
        self._reload()
        logger.info("Upserted %d nomenclator entries", len(rows))
        return len(rows)

    def load_file(self, path: Path | str) -> int:
        """Bulk import a ``.csv`` or ``.json`` catalog file.

        CSV columns are ``code,title,breadcrumbs`` with breadcrumbs
        separated by ``>``.  JSON is a list of objects with ``code``
        (or ``ncm_code``), ``title`` and ``breadcrumbs`` (list or
        ``>``-separated string).
        """
        file_path = Path(path)
        suffix = file_path.suffix.lower()
        if suffix == ".csv":
            with open(file_path, newline="", encoding="utf-8") as f:
                records: list[dict[str, Any]] = list(csv.DictReader(f))
        elif suffix == ".json":
            with open(file_path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, list):
                raise ValueError(f"{file_path}: expected a JSON list")
            records = [r for r in data if isinstance(r, dict)]
        else:
            raise ValueError(
                f"Unsupported nomenclator file type: {file_path.suffix}"
            )
        return self.upsert(self._record_to_entry(r) for r in records)

    @staticmethod
    def _record_to_entry(record: dict[str, Any]) -> NomenclatorEntry:
        code = str(record.get("code") or record.get("ncm_code") or "")
        crumbs = record.get("breadcrumbs") or []
        if isinstance(crumbs, str):
            crumbs = crumbs.split(">")
        return NomenclatorEntry(
            code=code,
            title=str(record.get("title") or ""),
            breadcrumbs=tuple(str(c).strip() for c in crumbs if str(c).strip()),
        )

    @staticmethod
    def _row_to_entry(row: tuple[str, str | None, str | None]) -> NomenclatorEntry:
        code, title, crumbs_json = row
        crumbs: list[str] = json.loads(crumbs_json) if crumbs_json else []
        return NomenclatorEntry(
            code=code, title=title or "", breadcrumbs=tuple(crumbs)
        )

    def _reload(self) -> None:
        """Rebuild the in-memory mirror in rowid order."""
        rows = self._conn.execute(
            "SELECT ncm_code, title, breadcrumbs_json FROM ncm "
            "ORDER BY rowid"
        ).fetchall()
        mirror: list[tuple[NomenclatorEntry, frozenset[str]]] = []
        for row in rows:
            entry = self._row_to_entry(row)
            text = " ".join((entry.title, *entry.breadcrumbs))
            mirror.append(
                (entry, frozenset(normalize_terms(text, max_terms=10_000)))
            )
        self._entries = mirror

    # ── Searching ────────────────────────────────────────

    def search(
        self,
        query: str,
        limit: int | None = None,
        code_family: str | None = None,
    ) -> list[NomenclatorMatch]:
        """Rank catalog entries against *query*.

        Ordering: score descending, then more specific codes (more
        digits) first, then catalog insertion order.  ``code_family``
        restricts the candidate set to codes starting with those digits
        before ranking.
        """
        max_results = (
            Settings.NOMENCLATOR_SEARCH_LIMIT if limit is None else limit
        )
        terms = normalize_terms(query)
        if not terms or max_results <= 0:
            return []

        family = re.sub(r"\D", "", code_family or "")
        ranked: list[tuple[float, int, int, NomenclatorMatch]] = []
        for position, (entry, entry_terms) in enumerate(self._entries):
            if family and not entry.digits.startswith(family):
                continue
            score = 0.0
            matched: list[str] = []
            for term in terms:
                best = max(
                    (_term_weight(term, t) for t in entry_terms),
                    default=0.0,
                )
                if best > 0:
                    score += best
                    matched.append(term)
            if score <= 0:
                continue
            ranked.append((
                score,
                len(entry.digits),
                position,
                NomenclatorMatch(
                    entry=entry,
                    score=round(score, 4),
                    matched_terms=tuple(matched),
                ),
            ))

        ranked.sort(key=lambda r: (-r[0], -r[1], r[2]))
        results = [r[3] for r in ranked[:max_results]]
        logger.debug(
            "Search %r (family=%s): %d hits, returning %d",
            terms,
            family or "-",
            len(ranked),
            len(results),
        )
        return results
