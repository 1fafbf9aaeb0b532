# src/storage/file_manager.py

"""Handles saving analysis results to disk."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from src.config.settings import Settings
from src.models.product import AnalyzeProductOutput

logger = logging.getLogger("product_intel.storage")

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _slug(text: str, max_len: int = 40) -> str:
    """File-name-safe slug of *text*."""
    slug = _SLUG_RE.sub("_", text.lower()).strip("_")
    return slug[:max_len].rstrip("_") or "product"


class FileManager:
    """Handles saving analysis results to disk."""

    def __init__(self, results_dir: Path | None = None) -> None:
        self.results_dir: Path = results_dir or Settings.RESULTS_DIR
        self.results_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("FileManager initialised, results_dir=%s", self.results_dir)

    def save_analysis(self, output: AnalyzeProductOutput) -> Path:
        """Save one analysis to a timestamped JSON file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        name = _slug(output.product.title or output.url)
        filepath = self.results_dir / (
            f"{output.source.value}_{name}_{timestamp}.json"
        )

        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(output.to_dict(), f, ensure_ascii=False, indent=2)

        logger.info("Saved analysis of %s to %s", output.url, filepath)
        return filepath

    def load_analysis(self, filepath: Path) -> dict[str, object]:
        """Read back a saved analysis as a plain dict."""
        with open(filepath, encoding="utf-8") as f:
            data: dict[str, object] = json.load(f)
        return data
