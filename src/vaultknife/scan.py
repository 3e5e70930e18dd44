"""Vault scanner: every note and image under the vault root."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from vaultknife.errors import NoteReadError, VaultRootError
from vaultknife.images import ImageFile, ImageReference, find_image_references, image_format, is_image_path
from vaultknife.note import Note
from vaultknife.parser import frontmatter_line_count, parse_note

if TYPE_CHECKING:
    from vaultknife.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanError:
    path: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "reason": self.reason}


@dataclass
class VaultScan:
    """Notes (in path order), image files and per-file problems found by a scan."""

    vault_path: Path
    notes: list[Note] = field(default_factory=list)
    images: list[ImageFile] = field(default_factory=list)
    errors: list[ScanError] = field(default_factory=list)
    #: Image references recovered from notes that failed to decode.
    held_references: list[ImageReference] = field(default_factory=list)
    #: Notes whose bytes could not be read at all.
    unread_notes: list[str] = field(default_factory=list)

    def image_references(self) -> list[ImageReference]:
        refs: list[ImageReference] = list(self.held_references)
        for note in self.notes:
            refs.extend(find_image_references(note.lines, note.frontmatter_line_count, file=note.path))
        return refs


# ---------------------------------------------------------------------------
# Walk
# ---------------------------------------------------------------------------


def _walk(config: Config, errors: list[ScanError]) -> tuple[list[Path], list[Path]]:
    root = config.vault_path
    try:
        with os.scandir(root):
            pass
    except OSError as exc:
        raise VaultRootError(f"cannot read vault root {root}: {exc.strerror or exc}") from exc

    def on_error(exc: OSError) -> None:
        rel = Path(exc.filename).relative_to(root).as_posix() if exc.filename else "?"
        errors.append(ScanError(rel, exc.strerror or str(exc)))
        logger.warning("cannot read folder %s: %s", rel, exc.strerror or exc)

    markdown: list[Path] = []
    images: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        current = Path(dirpath)
        dirnames[:] = sorted(d for d in dirnames if not config.is_ignored(current / d))
        for name in sorted(filenames):
            path = current / name
            if name.lower().endswith(".md"):
                markdown.append(path)
            elif is_image_path(name):
                images.append(path)
    return sorted(markdown), sorted(images)


def _parse(path: Path, root: Path) -> Note | NoteReadError:
    try:
        return parse_note(path, root)
    except NoteReadError as exc:
        return exc


def _salvage_references(path: Path, rel: str) -> list[ImageReference] | None:
    """Image references of a note that is not valid UTF-8, or None if unreadable."""
    try:
        content = path.read_bytes().decode("utf-8", errors="replace")
    except OSError:
        return None
    return find_image_references(content.split("\n"), frontmatter_line_count(content), file=rel)


def _image_file(path: Path, root: Path) -> ImageFile:
    stat = path.stat()
    rel = path.relative_to(root).as_posix()
    return ImageFile(
        path=rel,
        abs_path=path,
        size=stat.st_size,
        mtime_ns=stat.st_mtime_ns,
        format_tag=image_format(rel),
    )


def scan_vault(config: Config) -> VaultScan:
    """Walk the vault, parse every note in parallel and stat every image.

    Raises :class:`VaultRootError` when the vault root itself cannot be read;
    any other unreadable file is recorded in :attr:`VaultScan.errors`.
    """
    root = config.vault_path
    scan = VaultScan(vault_path=root)
    md_paths, image_paths = _walk(config, scan.errors)

    with ThreadPoolExecutor(max_workers=config.workers) as executor:
        parsed = list(executor.map(lambda p: _parse(p, root), md_paths))
    for path, result in zip(md_paths, parsed):
        if isinstance(result, NoteReadError):
            rel = path.relative_to(root).as_posix()
            scan.errors.append(ScanError(rel, result.reason))
            logger.warning("skipping unreadable note %s: %s", rel, result.reason)
            refs = _salvage_references(path, rel)
            if refs is None:
                scan.unread_notes.append(rel)
            else:
                scan.held_references.extend(refs)
        else:
            scan.notes.append(result)

    for path in image_paths:
        try:
            scan.images.append(_image_file(path, root))
        except OSError as exc:
            rel = path.relative_to(root).as_posix()
            scan.errors.append(ScanError(rel, exc.strerror or str(exc)))
            logger.warning("cannot stat image %s: %s", rel, exc.strerror or exc)

    logger.info("scanned %d notes and %d images in %s", len(scan.notes), len(scan.images), root)
    return scan
