# src/cli/runner.py

"""Headless CLI commands — reuse the async analyzer and the stores."""

import json
import logging
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.table import Table

from src.models.classification import Classification, NomenclatorMatch
from src.models.errors import AnalysisError
from src.models.price import NormalizedPrice, PriceType
from src.models.product import AnalyzeProductOutput
from src.services.analysis_orchestrator import ProductAnalyzer
from src.services.classifier import Classifier
from src.services.fx_source import default_rate_source
from src.storage.file_manager import FileManager
from src.storage.fx_rate_cache import FxRateCache
from src.storage.nomenclator_index import NomenclatorIndex

logger = logging.getLogger("product_intel.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


def _report_failure(exc: AnalysisError) -> int:
    """Print a typed failure to stderr and return exit code 1."""
    retry = " (retryable)" if exc.retryable else ""
    _err.print(f"[red]{exc.kind}{retry}: {exc.message}[/red]")
    return 1


def _dump_json(data: object) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


def format_price(price: NormalizedPrice) -> str:
    """Human-readable price, e.g. ``USD 10.50 – 12.00 / piece``."""
    if price.type is PriceType.UNKNOWN or price.min is None:
        return "unknown"
    amount = f"{price.min:,.2f}"
    if price.type is PriceType.RANGE and price.max is not None:
        amount = f"{amount} – {price.max:,.2f}"
    text = f"{price.currency} {amount}".strip()
    if price.unit:
        text = f"{text} / {price.unit}"
    return text


def _print_analysis(output: AnalyzeProductOutput) -> None:
    """Render a Rich summary of one analysis to stdout."""
    product = output.product
    table = Table(
        title="Product Analysis",
        show_lines=True,
        title_style="bold cyan",
        show_header=False,
    )
    table.add_column("Field", style="bold")
    table.add_column("Value", overflow="fold")
    table.add_row("Source", output.source.value)
    table.add_row("URL", output.url)
    table.add_row("Title", product.title or "—")
    table.add_row("Price", f"[green]{format_price(product.price)}[/green]")
    if product.price.conversion is not None:
        conv = product.price.conversion
        table.add_row(
            "Converted from",
            f"{conv.original_currency} {conv.original_min:,.2f}"
            f" @ {conv.rate:,.4f} ({conv.source})",
        )
    table.add_row("Images", str(len(product.images)))
    table.add_row(
        "NCM",
        f"{output.classification.code or '—'}"
        f" (confidence {output.classification.confidence:.2f})",
    )
    table.add_row("Description", product.normalized_description[:600])
    Console().print(table)
    _print_candidates(output.classification)


def _print_candidates(classification: Classification) -> None:
    if not classification.candidates:
        _err.print("[yellow]No classification candidates.[/yellow]")
        return
    table = Table(title="NCM Candidates", title_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Code", style="magenta")
    table.add_column("Label", max_width=80)
    for idx, c in enumerate(classification.candidates, 1):
        table.add_row(str(idx), c.code, c.label or "—")
    Console().print(table)


async def cli_analyze(
    url: str,
    output_format: str,
    save: bool = False,
    output_dir: str | None = None,
) -> int:
    """Analyze one URL and return an exit code (0=ok, 1=fail)."""
    _err.print(f"[bold]Analyzing:[/bold] {url}")
    analyzer = ProductAnalyzer()
    try:
        output = await analyzer.analyze(url)
    except AnalysisError as exc:
        logger.warning("Analysis of %s failed: %s", url, exc.message)
        return _report_failure(exc)
    finally:
        analyzer.index.close()

    if save:
        try:
            file_manager = FileManager(
                Path(output_dir) if output_dir else None
            )
            path = file_manager.save_analysis(output)
            _err.print(f"[dim]Saved → {path}[/dim]")
        except OSError as exc:
            logger.error("Save failed: %s", exc, exc_info=True)
            _err.print(f"[red]Save failed: {exc}[/red]")

    if output_format == "table":
        _print_analysis(output)
    else:
        _dump_json(output.to_dict())
    return 0


async def run_fx() -> int:
    """Refresh the exchange rate once and print the snapshot."""
    cache = FxRateCache(default_rate_source())
    try:
        snapshot = await cache.get_rate()
    except AnalysisError as exc:
        return _report_failure(exc)

    expires_in = snapshot.expires_in(time.time())
    _err.print(
        f"[green]✓ {snapshot.rate:,.4f} from {snapshot.source}"
        f" (fresh for {expires_in:.0f}s)[/green]"
    )
    _dump_json(snapshot.to_dict())
    return 0


def _matches_to_dicts(
    matches: list[NomenclatorMatch],
) -> list[dict[str, object]]:
    return [
        {
            "code": m.code,
            "title": m.entry.title,
            "breadcrumbs": list(m.entry.breadcrumbs),
            "score": m.score,
            "matched_terms": list(m.matched_terms),
        }
        for m in matches
    ]


def run_ncm_search(
    query: str,
    code_family: str | None,
    output_format: str,
) -> int:
    """Search the nomenclator and print ranked matches."""
    index = NomenclatorIndex.open_default()
    try:
        matches = index.search(query, code_family=code_family)
    finally:
        index.close()

    if not matches:
        _err.print("[yellow]No nomenclator entries matched.[/yellow]")
        return 1

    if output_format == "table":
        table = Table(
            title=f"Nomenclator: {query}",
            show_lines=True,
            title_style="bold cyan",
        )
        table.add_column("#", style="dim", width=4)
        table.add_column("Code", style="magenta")
        table.add_column("Title", max_width=70)
        table.add_column("Score", justify="right", style="green")
        for idx, m in enumerate(matches, 1):
            table.add_row(str(idx), m.code, m.entry.title, f"{m.score:.2f}")
        Console().print(table)
    else:
        _dump_json(_matches_to_dicts(matches))
    return 0


def run_classify(
    text: str,
    code_family: str | None,
    output_format: str,
) -> int:
    """Classify free text against the nomenclator."""
    index = NomenclatorIndex.open_default()
    try:
        classification = Classifier(index).classify_query(text, code_family)
    finally:
        index.close()

    if output_format == "table":
        _err.print(
            f"[bold]{classification.code or '—'}[/bold]"
            f" confidence {classification.confidence:.2f}"
        )
        _print_candidates(classification)
    else:
        _dump_json(classification.to_dict())
    return 0 if classification.code else 1


def run_import_nomenclator(path: str) -> int:
    """Bulk load a CSV/JSON catalog file into the nomenclator DB."""
    source = Path(path)
    if not source.exists():
        _err.print(f"[red]File not found: {source}[/red]")
        return 1

    index = NomenclatorIndex.open_default()
    try:
        loaded = index.load_file(source)
        total = index.count()
    except (ValueError, OSError) as exc:
        logger.error("Import of %s failed: %s", source, exc, exc_info=True)
        _err.print(f"[red]Import failed: {exc}[/red]")
        return 1
    finally:
        index.close()

    _err.print(
        f"[green]✓ Imported {loaded:,} entries"
        f" ({total:,} in catalog)[/green]"
    )
    return 0


async def run_health_check() -> int:
    """Run connectivity health check on marketplaces and FX upstream."""
    from src.services.health_checker import HealthChecker

    _err.print("[bold]Running health check...[/bold]")
    checker = HealthChecker()
    results = await checker.check_all()

    table = Table(
        title="Health Check",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Target", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    table.add_column("Notes", style="dim")

    any_down = False
    for r in results:
        if r.status == "ok":
            status = "[green]✅ OK[/green]"
        elif r.status == "slow":
            status = "[yellow]⚠️  SLOW[/yellow]"
        else:
            status = "[red]❌ DOWN[/red]"
            any_down = True

        latency = (
            f"{r.latency_ms:.0f}ms"
            if r.latency_ms > 0
            else "—"
        )
        table.add_row(
            r.source_id, status, latency, r.message,
        )

    Console().print(table)
    return 1 if any_down else 0
