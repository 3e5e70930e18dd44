"""Run report: polars frames over every record a run produced, and a Markdown writer.

Usage::

    report = VaultRun(config).run()
    report.summary()                 # {"mode": "dry-run", "notes": 120, ...}
    report.ambiguous_frame           # polars DataFrame
    ReportWriter(config.report_folder).write(report)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import polars as pl
import yaml

from vaultknife.errors import ReportWriteError
from vaultknife.images import ImageState

if TYPE_CHECKING:
    from vaultknife.applier import Rejection
    from vaultknife.images import ImageFile, ImageReference
    from vaultknife.matches import AmbiguousMatch, ReplaceableMatch, SuppressedMatch
    from vaultknife.scan import ScanError

REPORT_FILE = "vaultknife report.md"

_BACK_POPULATE_SCHEMA = {"file": pl.Utf8, "line": pl.Int64, "start": pl.Int64, "original": pl.Utf8, "replacement": pl.Utf8}
_AMBIGUOUS_SCHEMA = {"text": pl.Utf8, "file": pl.Utf8, "line": pl.Int64, "start": pl.Int64, "candidates": pl.Utf8, "line_text": pl.Utf8}
_SUPPRESSED_SCHEMA = {"file": pl.Utf8, "line": pl.Int64, "start": pl.Int64, "text": pl.Utf8, "reason": pl.Utf8}
_IMAGES_SCHEMA = {
    "path": pl.Utf8,
    "state": pl.Utf8,
    "size": pl.Int64,
    "format": pl.Utf8,
    "canonical": pl.Utf8,
    "references": pl.Int64,
    "referenced_by": pl.Utf8,
    "deleted": pl.Boolean,
}
_MISSING_SCHEMA = {"file": pl.Utf8, "line": pl.Int64, "start": pl.Int64, "reference": pl.Utf8}
_CHANGES_SCHEMA = {"file": pl.Utf8, "reasons": pl.Utf8}
_REJECTIONS_SCHEMA = {"file": pl.Utf8, "line": pl.Int64, "reason": pl.Utf8}
_ERRORS_SCHEMA = {"path": pl.Utf8, "reason": pl.Utf8}


def _frame(rows: list[dict[str, Any]], schema: dict[str, Any]) -> pl.DataFrame:
    columns = {name: [row.get(name) for row in rows] for name in schema}
    return pl.DataFrame(columns, schema=schema)


@dataclass
class RunReport:
    """Everything a run found, decided and (in apply mode) did."""

    vault_path: str
    apply_changes: bool = False
    note_count: int = 0
    back_populate: list[ReplaceableMatch] = field(default_factory=list)
    ambiguous: list[AmbiguousMatch] = field(default_factory=list)
    suppressed: list[SuppressedMatch] = field(default_factory=list)
    images: list[ImageFile] = field(default_factory=list)
    #: Images removed (apply mode) or that would be removed (dry run).
    deleted_images: list[str] = field(default_factory=list)
    missing_references: list[ImageReference] = field(default_factory=list)
    #: file -> reasons it was (or would be) rewritten
    changed_files: dict[str, list[str]] = field(default_factory=dict)
    rejections: list[Rejection] = field(default_factory=list)
    errors: list[ScanError] = field(default_factory=list)
    #: Fingerprint cache counters; they differ between otherwise identical
    #: runs, so they stay out of :meth:`summary` and the written report.
    cache_stats: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    @property
    def back_populate_frame(self) -> pl.DataFrame:
        rows = [m.to_dict() for m in self.back_populate]
        return _frame(rows, _BACK_POPULATE_SCHEMA).sort(["file", "line", "start"])

    @property
    def ambiguous_frame(self) -> pl.DataFrame:
        rows = [{**m.to_dict(), "candidates": ", ".join(m.candidates)} for m in self.ambiguous]
        return _frame(rows, _AMBIGUOUS_SCHEMA).sort(["file", "line", "start"])

    @property
    def suppressed_frame(self) -> pl.DataFrame:
        rows = [m.to_dict() for m in self.suppressed]
        return _frame(rows, _SUPPRESSED_SCHEMA).sort(["file", "line", "start", "reason"])

    @property
    def images_frame(self) -> pl.DataFrame:
        deleted = set(self.deleted_images)
        rows = [
            {
                **image.to_dict(),
                "referenced_by": ", ".join(image.referencing_files),
                "deleted": image.path in deleted,
            }
            for image in self.images
        ]
        return _frame(rows, _IMAGES_SCHEMA).sort(["state", "path"])

    @property
    def missing_frame(self) -> pl.DataFrame:
        rows = [{**ref.to_dict(), "reference": ref.text} for ref in self.missing_references]
        return _frame(rows, _MISSING_SCHEMA).sort(["file", "line", "start"])

    @property
    def changes_frame(self) -> pl.DataFrame:
        rows = [{"file": path, "reasons": ", ".join(reasons)} for path, reasons in self.changed_files.items()]
        return _frame(rows, _CHANGES_SCHEMA).sort("file")

    @property
    def rejections_frame(self) -> pl.DataFrame:
        rows = [r.to_dict() for r in self.rejections]
        return _frame(rows, _REJECTIONS_SCHEMA).sort(["file", "line"])

    @property
    def errors_frame(self) -> pl.DataFrame:
        rows = [e.to_dict() for e in self.errors]
        return _frame(rows, _ERRORS_SCHEMA).sort("path")

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        states: dict[str, int] = {}
        for image in self.images:
            states[image.state.value] = states.get(image.state.value, 0) + 1
        return {
            "mode": "apply" if self.apply_changes else "dry-run",
            "vault": self.vault_path,
            "notes": self.note_count,
            "images": len(self.images),
            "back_populated": len(self.back_populate),
            "ambiguous": len(self.ambiguous),
            "suppressed": len(self.suppressed),
            "files_changed": len(self.changed_files),
            "images_removed": len(self.deleted_images),
            "image_states": dict(sorted(states.items())),
            "missing_image_references": len(self.missing_references),
            "rejected_files": len(self.rejections),
            "errors": len(self.errors),
        }


# ---------------------------------------------------------------------------
# Markdown rendering
# ---------------------------------------------------------------------------


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value).replace("\n", " ").replace("|", "\\|")


def markdown_table(frame: pl.DataFrame, columns: list[str] | None = None) -> str:
    """Render *frame* as a Markdown table (pipes inside cells escaped)."""
    cols = columns or frame.columns
    lines = [
        "| " + " | ".join(cols) + " |",
        "| " + " | ".join("---" for _ in cols) + " |",
    ]
    for row in frame.select(cols).iter_rows():
        lines.append("| " + " | ".join(_cell(v) for v in row) + " |")
    return "\n".join(lines)


class ReportWriter:
    """Writes ``vaultknife report.md`` into the output folder."""

    def __init__(self, output_folder: Path) -> None:
        self.output_folder = Path(output_folder)

    @property
    def path(self) -> Path:
        return self.output_folder / REPORT_FILE

    def render(self, report: RunReport) -> str:
        summary = report.summary()
        properties = yaml.safe_dump(summary, sort_keys=False, allow_unicode=True).rstrip("\n")
        verb = "" if report.apply_changes else "would be "
        parts = [f"---\n{properties}\n---", "# vaultknife report"]

        parts.append(self._section(f"files {verb}changed", report.changes_frame))
        parts.append(
            self._section(
                f"back populate wikilinks ({len(report.back_populate)} {verb}applied)",
                report.back_populate_frame,
            )
        )
        parts.append(
            self._section(
                "ambiguous matches",
                report.ambiguous_frame,
                ["text", "file", "line", "candidates", "line_text"],
            )
        )
        parts.append(self._section("suppressed matches", report.suppressed_frame))

        images = report.images_frame
        image_parts = ["## image cleanup"]
        for state in ImageState:
            if state is ImageState.UNIQUE:
                continue
            subset = images.filter(pl.col("state") == state.value)
            if subset.height:
                image_parts.append(f"### {state.value} ({subset.height})")
                image_parts.append(
                    markdown_table(subset, ["path", "size", "canonical", "references", "referenced_by", "deleted"])
                )
        if len(image_parts) == 1:
            image_parts.append("no images need attention")
        parts.append("\n\n".join(image_parts))

        parts.append(self._section("missing image references", report.missing_frame))
        parts.append(self._section("rejected files", report.rejections_frame))
        parts.append(self._section("errors", report.errors_frame))
        return "\n\n".join(parts) + "\n"

    @staticmethod
    def _section(title: str, frame: pl.DataFrame, columns: list[str] | None = None) -> str:
        if frame.height == 0:
            return f"## {title}\n\nnone"
        return f"## {title}\n\n{markdown_table(frame, columns)}"

    def write(self, report: RunReport) -> Path:
        """Write the report, raising :class:`ReportWriteError` on any I/O failure."""
        content = self.render(report)
        try:
            self.output_folder.mkdir(parents=True, exist_ok=True)
            self.path.write_bytes(content.encode("utf-8"))
        except OSError as exc:
            raise ReportWriteError(f"cannot write report to {self.path}: {exc.strerror or exc}") from exc
        return self.path
