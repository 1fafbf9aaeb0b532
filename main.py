# main.py

"""Entry point for the product_intel command-line tool."""

import argparse
import asyncio
import logging
import sys

from src.config.logging_config import setup_logging
from src.config.settings import Settings

logger = logging.getLogger("product_intel.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    valid_ids = ", ".join(s["id"] for s in Settings.AVAILABLE_SOURCES)

    parser = argparse.ArgumentParser(
        prog="product_intel",
        description=(
            "Marketplace product analysis: price normalization and"
            " NCM classification."
        ),
        epilog=f"Supported marketplaces: {valid_ids}",
    )
    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="Product URL to analyze.",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="json",
        dest="output_format",
        help="Output format (default: json).",
    )
    parser.add_argument(
        "--save",
        action="store_true",
        default=False,
        help="Save the analysis as JSON under results/.",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        dest="output_dir",
        help="Custom output directory for --save (default: results/).",
    )
    parser.add_argument(
        "--fx",
        action="store_true",
        default=False,
        help="Fetch and print the current exchange-rate snapshot.",
    )
    parser.add_argument(
        "--ncm",
        default=None,
        metavar="QUERY",
        help="Search the local NCM nomenclator.",
    )
    parser.add_argument(
        "--classify",
        default=None,
        metavar="TEXT",
        help="Classify free product text against the nomenclator.",
    )
    parser.add_argument(
        "--hs",
        default=None,
        dest="code_family",
        metavar="DIGITS",
        help="Restrict --ncm/--classify to a code family (e.g. 8427).",
    )
    parser.add_argument(
        "--import-nomenclator",
        default=None,
        dest="import_path",
        metavar="PATH",
        help="Bulk load a CSV or JSON catalog into the nomenclator DB.",
    )
    parser.add_argument(
        "--health",
        action="store_true",
        default=False,
        help="Run a connectivity check on marketplaces and FX upstream.",
    )
    return parser


def run(args: argparse.Namespace) -> int:
    """Dispatch parsed arguments to a CLI command; returns the exit code."""
    from src.cli import runner

    if args.health:
        return asyncio.run(runner.run_health_check())
    if args.import_path:
        return runner.run_import_nomenclator(args.import_path)
    if args.fx:
        return asyncio.run(runner.run_fx())
    if args.ncm:
        return runner.run_ncm_search(
            args.ncm, args.code_family, args.output_format
        )
    if args.classify:
        return runner.run_classify(
            args.classify, args.code_family, args.output_format
        )
    return asyncio.run(
        runner.cli_analyze(
            url=args.url,
            output_format=args.output_format,
            save=args.save,
            output_dir=args.output_dir,
        )
    )


def main() -> None:
    """Parse arguments, set up logging and run one command."""
    parser = _build_parser()
    args = parser.parse_args()
    if not any((
        args.url, args.health, args.import_path,
        args.fx, args.ncm, args.classify,
    )):
        parser.print_help(sys.stderr)
        sys.exit(1)

    log_file = setup_logging()
    logger.info("product_intel starting, log file: %s", log_file)
    try:
        exit_code = run(args)
    except Exception:
        logger.critical("Fatal error during CLI run", exc_info=True)
        raise
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
