"""VaultRun: one end-to-end pass over a vault.

Phases::

    scan ─> index ─> back-populate (per file, parallel)
         └─> image classification (vault-wide, parallel fingerprinting)
    merge candidates per file ─> applier ─> writes / deletions (apply mode only)

A dry run executes every phase identically and only skips the final writes
to notes and the image deletions, so it previews exactly what an apply run
with the same inputs will do.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import duckdb

from vaultknife.applier import Rejection, apply
from vaultknife.cache import FingerprintCache
from vaultknife.images import ClassificationResult, ImageClassifier
from vaultknife.matches import ReplaceableMatch
from vaultknife.note import Note
from vaultknife.report import RunReport
from vaultknife.resolver import ExclusionRules, Resolution, back_populate
from vaultknife.scan import ScanError, VaultScan, scan_vault
from vaultknife.targets import TargetIndex, build_index

if TYPE_CHECKING:
    from vaultknife.config import Config

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 100


@dataclass
class FileOutcome:
    """What happened to one note once all its candidates were merged."""

    path: str
    candidates: list[ReplaceableMatch] = field(default_factory=list)
    new_content: str | None = None  # None: unchanged or rejected
    rejection: Rejection | None = None

    @property
    def accepted(self) -> bool:
        return self.rejection is None

    @property
    def reasons(self) -> list[str]:
        return sorted({c.kind.persist_reason for c in self.candidates})


class VaultRun:
    """Runs back-population and image cleanup over the vault named by *config*."""

    def __init__(self, config: Config) -> None:
        self.config = config

    # ------------------------------------------------------------------
    # Back-population
    # ------------------------------------------------------------------

    def _back_populate_targets(self, notes: Sequence[Note]) -> list[Note]:
        file_filter = self.config.back_populate_file_filter
        if file_filter is None:
            return list(notes)
        return [n for n in notes if n.path.rsplit("/", 1)[-1] == file_filter]

    def back_populate(self, notes: Sequence[Note], index: TargetIndex, rules: ExclusionRules) -> dict[str, Resolution]:
        """Resolve every target note, honouring the file filter and file-count limit.

        Notes are handled in path order, a chunk at a time; with a limit of N
        the run stops after the N-th note that yields an edit.
        """
        targets = self._back_populate_targets(notes)
        limit = self.config.back_populate_file_count
        results: dict[str, Resolution] = {}
        with_edits = 0
        with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
            for offset in range(0, len(targets), _CHUNK_SIZE):
                chunk = targets[offset : offset + _CHUNK_SIZE]
                for note, resolution in zip(chunk, executor.map(lambda n: back_populate(n, index, rules), chunk)):
                    if resolution:
                        results[note.path] = resolution
                    if resolution.applied:
                        with_edits += 1
                        if limit is not None and with_edits >= limit:
                            return results
        return results

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def classify_images(self, scan: VaultScan) -> tuple[ClassificationResult, FingerprintCache]:
        cache = FingerprintCache.load(self.config.cache_path)
        result = ImageClassifier(cache, self.config.workers).classify(scan.images, scan.image_references())
        cache.prune(image.path for image in scan.images)
        try:
            cache.save()
        except (duckdb.Error, OSError) as exc:
            logger.warning("could not save fingerprint cache %s: %s", self.config.cache_path, exc)
        return result, cache

    # ------------------------------------------------------------------
    # Merge & apply
    # ------------------------------------------------------------------

    @staticmethod
    def _merge(note: Note, candidates: list[ReplaceableMatch]) -> FileOutcome:
        outcome = FileOutcome(path=note.path, candidates=candidates)
        result = apply(note.lines, candidates)
        if not isinstance(result, list):
            outcome.rejection = result
            logger.warning("rejected all edits to %s: %s", note.path, result.reason)
        elif result != note.lines:
            outcome.new_content = "\n".join(result)
        return outcome

    def merge(self, notes: Sequence[Note], resolutions: dict[str, Resolution], images: ClassificationResult) -> list[FileOutcome]:
        pending: list[tuple[Note, list[ReplaceableMatch]]] = []
        for note in notes:
            candidates = [*resolutions[note.path].applied] if note.path in resolutions else []
            candidates.extend(images.candidates_by_file.get(note.path, []))
            if candidates:
                pending.append((note, candidates))
        with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
            return list(executor.map(lambda item: self._merge(*item), pending))

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> RunReport:
        config = self.config
        mode = "apply" if config.apply_changes else "dry-run"
        logger.info("starting %s run over %s", mode, config.vault_path)

        scan = scan_vault(config)
        index = build_index(scan.notes, learn_from_links=config.learn_from_links)
        logger.info("indexed %d link targets (%d ambiguous)", len(index), len(index.ambiguous()))

        resolutions = self.back_populate(scan.notes, index, config.exclusion_rules())
        classification, cache = self.classify_images(scan)
        outcomes = self.merge(scan.notes, resolutions, classification)

        errors = list(scan.errors)
        accepted = {o.path for o in outcomes if o.accepted}
        if config.apply_changes:
            for outcome in outcomes:
                if outcome.new_content is None:
                    continue
                try:
                    (config.vault_path / outcome.path).write_bytes(outcome.new_content.encode("utf-8"))
                except OSError as exc:
                    accepted.discard(outcome.path)
                    errors.append(ScanError(outcome.path, f"write failed: {exc.strerror or exc}"))
                    logger.warning("could not write %s: %s", outcome.path, exc.strerror or exc)

        deleted: list[str] = []
        for image in classification.images:
            if not image.state.removes:
                continue
            if scan.unread_notes:
                logger.warning("keeping %s: %d notes could not be read", image.path, len(scan.unread_notes))
                continue
            if not all(ref.file in accepted for ref in image.references):
                logger.warning("keeping %s: a file referencing it was not updated", image.path)
                continue
            if config.apply_changes:
                try:
                    image.abs_path.unlink()
                except OSError as exc:
                    errors.append(ScanError(image.path, f"delete failed: {exc.strerror or exc}"))
                    logger.warning("could not delete %s: %s", image.path, exc.strerror or exc)
                    continue
            deleted.append(image.path)

        rejected = {o.path for o in outcomes if not o.accepted}
        report = RunReport(
            vault_path=str(config.vault_path),
            apply_changes=config.apply_changes,
            note_count=len(scan.notes),
            back_populate=[
                m for path, r in sorted(resolutions.items()) if path not in rejected for m in r.applied
            ],
            ambiguous=[m for _, r in sorted(resolutions.items()) for m in r.ambiguous],
            suppressed=[m for _, r in sorted(resolutions.items()) for m in r.suppressed],
            images=classification.images,
            deleted_images=deleted,
            missing_references=classification.missing,
            changed_files={o.path: o.reasons for o in outcomes if o.new_content is not None and o.path in accepted},
            rejections=[o.rejection for o in outcomes if o.rejection is not None],
            errors=errors,
            cache_stats=cache.stats(),
        )
        logger.info(
            "%s run finished: %d back-populated, %d ambiguous, %d files changed, %d images removed",
            mode,
            len(report.back_populate),
            len(report.ambiguous),
            len(report.changed_files),
            len(report.deleted_images),
        )
        return report
