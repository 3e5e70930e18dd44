"""Command line entry point: ``vaultknife CONFIG [--apply] [--verbose]``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from vaultknife.config import load_config
from vaultknife.errors import VaultKnifeError
from vaultknife.report import ReportWriter
from vaultknife.repository import VaultRun

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultknife",
        description="Back-populate wikilinks and clean up images in an Obsidian vault",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Dry run: compute every change and write the report only
  vaultknife ~/vault/vaultknife.md

  # Apply changes
  vaultknife ~/vault/vaultknife.md --apply
        """,
    )
    parser.add_argument("config", type=Path, help="YAML file or Markdown note holding the configuration")
    parser.add_argument("--apply", action="store_true", help="Write changes (overrides apply_changes in the config)")
    parser.add_argument("--verbose", action="store_true", help="Log suppressed matches and cache hits")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        config = load_config(args.config)
        if args.apply:
            config.apply_changes = True
        report = VaultRun(config).run()
        path = ReportWriter(config.report_folder).write(report)
    except VaultKnifeError as exc:
        logger.error("%s", exc)
        return 1

    summary = report.summary()
    logger.debug("fingerprint cache: %s", report.cache_stats)
    print(
        f"{summary['mode']}: {summary['back_populated']} links, {summary['ambiguous']} ambiguous, "
        f"{summary['files_changed']} files changed, {summary['images_removed']} images removed; "
        f"report: {path}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
