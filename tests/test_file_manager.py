# tests/test_file_manager.py

"""Tests for the FileManager storage module."""

import tempfile
import unittest
from pathlib import Path

from src.models.classification import (
    Classification,
    ClassificationCandidate,
)
from src.models.price import FxConversion, NormalizedPrice
from src.models.product import (
    AnalyzeProductOutput,
    ProductSummary,
    SourceVariant,
)
from src.storage.file_manager import FileManager, _slug


def _sample_output(title: str | None = "Electric Forklift 2T") -> AnalyzeProductOutput:
    """Return a small converted analysis result."""
    return AnalyzeProductOutput(
        source=SourceVariant.ALIBABA,
        url="https://www.alibaba.com/product/123",
        product=ProductSummary(
            title=title,
            raw_description="Battery forklift",
            normalized_description="Título: Electric Forklift 2T",
            price=NormalizedPrice.range(
                10500.0,
                12000.0,
                "ARS",
                "piece",
                FxConversion("USD", 10.5, 12.0, 1000.0, "dolarapi"),
            ),
            images=("https://s.alicdn.com/a.jpg",),
        ),
        classification=Classification(
            code="8427.10.11",
            confidence=0.875,
            candidates=(ClassificationCandidate("8427.10.11", "Autoelevadores"),),
        ),
    )


class TestFileManager(unittest.TestCase):
    """Tests for JSON save and reload."""

    def setUp(self) -> None:
        """Set up a temp directory for results."""
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.fm = FileManager(Path(self._tmp.name) / "results")

    def test_results_dir_created(self) -> None:
        """The results directory is created on init."""
        self.assertTrue(self.fm.results_dir.is_dir())

    def test_save_analysis_round_trips_json(self) -> None:
        """The saved file holds the serialised analysis."""
        path = self.fm.save_analysis(_sample_output())

        self.assertTrue(path.exists())
        data = self.fm.load_analysis(path)
        self.assertEqual(data["source"], "alibaba")
        product = data["product"]
        assert isinstance(product, dict)
        self.assertEqual(product["price"]["min"], 10500.0)
        self.assertEqual(
            product["price"]["conversion"]["source"], "dolarapi"
        )
        self.assertEqual(
            product["normalized_description"],
            "Título: Electric Forklift 2T",
        )

    def test_filename_format(self) -> None:
        """Filename carries source, title slug and timestamp."""
        path = self.fm.save_analysis(_sample_output())
        self.assertRegex(
            path.name,
            r"^alibaba_electric_forklift_2t_\d{8}_\d{6}\.json$",
        )

    def test_url_used_when_title_missing(self) -> None:
        """A page without a title is named after its URL."""
        path = self.fm.save_analysis(_sample_output(title=None))
        self.assertIn("alibaba_com_product_123", path.name)


class TestSlug(unittest.TestCase):
    """Tests for file-name slugs."""

    def test_slug_rules(self) -> None:
        """Non-alphanumerics collapse to '_' and the result is capped."""
        self.assertEqual(_slug("Hello, World!"), "hello_world")
        self.assertEqual(_slug("不锈钢"), "product")
        self.assertEqual(len(_slug("a" * 100)), 40)


if __name__ == "__main__":
    unittest.main()
