"""Image Classifier & Deduplicator.

Each image on disk walks a small state machine::

    SCANNED ─┬─> UNREADABLE             (skip: never guessed at)
             ├─> ZERO_BYTE              (remove)
             ├─> NON_RENDERING_FORMAT   (remove)
             ├─> DUPLICATE of canonical (remove, redirect references)
             ├─> UNREFERENCED           (remove)
             └─> UNIQUE                 (keep)

:func:`transition` is the whole policy as a pure function; :class:`ImageClassifier`
gathers its inputs (fingerprints, duplicate groups, reference counts) and turns
the resulting states into ``ReplaceableMatch`` candidates for every note that
points at a condemned or missing image.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import unquote

from vaultknife.cache import CacheArena, FingerprintCache
from vaultknife.exclusions import iter_prose_lines
from vaultknife.matches import MatchKind, ReplaceableMatch
from vaultknife.targets import fold

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "tif", "tiff", "pdf", "svg", "bmp"})
NON_RENDERING_FORMATS = frozenset({"tiff"})

_FORMAT_ALIASES = {"tif": "tiff", "jpeg": "jpg"}

_EXT = "|".join(sorted(IMAGE_EXTENSIONS))
# ![[x.png]], ![[dir/x.png|300]], [[x.png]]
_WIKI_IMAGE_RE = re.compile(
    rf"!?\[\[(?P<target>[^\]|#\n]+?\.(?:{_EXT}))(?:#[^\]|\n]*)?(?:\|[^\]\n]*)?\]\]",
    re.IGNORECASE,
)
# ![alt](dir/x.png), [alt](x.png "title")
_MD_IMAGE_RE = re.compile(
    rf"!?\[[^\]\n]*\]\(\s*<?(?P<target>[^)<>\n]+?\.(?:{_EXT}))>?(?:\s+\"[^\"\n]*\")?\s*\)",
    re.IGNORECASE,
)


def image_format(path: str) -> str:
    """Normalised format tag from a file name's extension (``"photo.TIF"`` -> ``"tiff"``)."""
    ext = posixpath.splitext(path)[1].lstrip(".").lower()
    return _FORMAT_ALIASES.get(ext, ext)


def is_image_path(path: str) -> bool:
    return posixpath.splitext(path)[1].lstrip(".").lower() in IMAGE_EXTENSIONS


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageReference:
    """One image reference in a note, located to the character."""

    file: str
    line: int
    start: int
    end: int
    text: str  # the full reference, e.g. ``![[img/a.png|300]]``
    target: str  # the path as written inside the reference
    target_start: int  # offset of ``target`` within ``text``
    markdown: bool = False

    @property
    def has_directory(self) -> bool:
        return "/" in self.target

    def redirected(self, new_target: str) -> str:
        """The reference text pointing at *new_target*, everything else kept."""
        if self.markdown and " " in new_target and "%20" in self.target:
            new_target = new_target.replace(" ", "%20")
        head = self.text[: self.target_start]
        tail = self.text[self.target_start + len(self.target) :]
        return f"{head}{new_target}{tail}"

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line + 1, "start": self.start, "text": self.text}


def find_image_references(
    lines: Sequence[str],
    frontmatter_line_count: int = 0,
    *,
    file: str = "",
) -> list[ImageReference]:
    """Every local image reference outside front-matter and code fences."""
    refs: list[ImageReference] = []
    for idx, line in iter_prose_lines(lines, frontmatter_line_count):
        if "[" not in line:
            continue
        taken: list[tuple[int, int]] = []
        for pattern, markdown in ((_WIKI_IMAGE_RE, False), (_MD_IMAGE_RE, True)):
            for m in pattern.finditer(line):
                target = m.group("target").strip()
                if "://" in target:
                    continue
                if any(m.start() < end and start < m.end() for start, end in taken):
                    continue
                taken.append((m.start(), m.end()))
                refs.append(
                    ImageReference(
                        file=file,
                        line=idx,
                        start=m.start(),
                        end=m.end(),
                        text=m.group(0),
                        target=target,
                        target_start=m.group(0).index(target, m.start("target") - m.start()),
                        markdown=markdown,
                    )
                )
    refs.sort(key=lambda r: (r.line, r.start))
    return refs


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class ImageState(str, Enum):
    SCANNED = "scanned"
    UNREADABLE = "unreadable"
    ZERO_BYTE = "zero-byte"
    NON_RENDERING_FORMAT = "non-rendering-format"
    UNIQUE = "unique"
    DUPLICATE = "duplicate"
    UNREFERENCED = "unreferenced"

    @property
    def removes(self) -> bool:
        return self in _REMOVING_STATES

    @property
    def match_kind(self) -> MatchKind | None:
        """Kind of edit applied to references of an image in this state."""
        if self is ImageState.NON_RENDERING_FORMAT:
            return MatchKind.IMAGE_NONRENDERING_REMOVE
        if self is ImageState.DUPLICATE:
            return MatchKind.IMAGE_DUPLICATE_REDIRECT
        if self in (ImageState.ZERO_BYTE, ImageState.UNREFERENCED):
            return MatchKind.IMAGE_REMOVE
        return None


_REMOVING_STATES = frozenset(
    {
        ImageState.ZERO_BYTE,
        ImageState.NON_RENDERING_FORMAT,
        ImageState.DUPLICATE,
        ImageState.UNREFERENCED,
    }
)


def transition(
    size: int,
    format_tag: str,
    group_size: int = 1,
    is_canonical: bool = True,
    reference_count: int = 0,
) -> ImageState:
    """Classify a readable image.

    *reference_count* for a duplicate group's canonical member is the count
    for the whole group, since every duplicate's references are redirected
    to it.
    """
    if size == 0:
        return ImageState.ZERO_BYTE
    if format_tag in NON_RENDERING_FORMATS:
        return ImageState.NON_RENDERING_FORMAT
    if group_size > 1 and not is_canonical:
        return ImageState.DUPLICATE
    if reference_count == 0:
        return ImageState.UNREFERENCED
    return ImageState.UNIQUE


@dataclass
class ImageFile:
    """An image on disk and what the classifier decided about it."""

    path: str  # vault-relative posix path; identity
    abs_path: Path = field(repr=False, compare=False)
    size: int = 0
    mtime_ns: int = 0
    format_tag: str = ""
    fingerprint: str | None = None
    state: ImageState = ImageState.SCANNED
    canonical: str | None = None  # set on DUPLICATE
    references: list[ImageReference] = field(default_factory=list, repr=False)
    error: str | None = None

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def referencing_files(self) -> list[str]:
        return sorted({ref.file for ref in self.references})

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "format": self.format_tag,
            "state": self.state.value,
            "canonical": self.canonical,
            "references": len(self.references),
            "referenced_by": self.referencing_files,
            "fingerprint": self.fingerprint,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------


class _ImageLookup:
    def __init__(self, images: Iterable[ImageFile]) -> None:
        self.by_path: dict[str, list[ImageFile]] = {}
        self.by_name: dict[str, list[ImageFile]] = {}
        for image in sorted(images, key=lambda i: i.path):
            self.by_path.setdefault(fold(image.path), []).append(image)
            self.by_name.setdefault(fold(image.name), []).append(image)

    def resolve(self, ref: ImageReference) -> ImageFile | None:
        target = unquote(ref.target).replace("\\", "/")
        if "/" in target:
            note_dir = posixpath.dirname(ref.file)
            for candidate in (target.lstrip("/"), posixpath.join(note_dir, target)):
                hits = self.by_path.get(fold(posixpath.normpath(candidate)))
                if hits:
                    return hits[0]
        hits = self.by_name.get(fold(posixpath.basename(target)))
        return hits[0] if hits else None


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


@dataclass
class ClassificationResult:
    images: list[ImageFile] = field(default_factory=list)
    candidates_by_file: dict[str, list[ReplaceableMatch]] = field(default_factory=dict)
    missing: list[ImageReference] = field(default_factory=list)

    def by_state(self, state: ImageState) -> list[ImageFile]:
        return [image for image in self.images if image.state is state]

    def get(self, path: str) -> ImageFile | None:
        return next((image for image in self.images if image.path == path), None)


def _redirect_target(ref: ImageReference, canonical: ImageFile, lookup: _ImageLookup) -> str:
    # a bare name only works while no other image shares it
    if ref.has_directory or len(lookup.by_name.get(fold(canonical.name), [])) > 1:
        return canonical.path
    return canonical.name


class ImageClassifier:
    """Fingerprints, groups and classifies every image in a vault."""

    def __init__(self, cache: FingerprintCache, workers: int = 4) -> None:
        self.cache = cache
        self.workers = max(1, workers)

    # ------------------------------------------------------------------
    # Fingerprinting
    # ------------------------------------------------------------------

    def _fingerprint_batch(self, batch: list[ImageFile]) -> tuple[CacheArena, list[tuple[ImageFile, str | None, str | None]]]:
        arena = CacheArena()
        results: list[tuple[ImageFile, str | None, str | None]] = []
        for image in batch:
            try:
                digest = self.cache.fingerprint_for(image.path, image.abs_path, image.size, image.mtime_ns, arena)
            except OSError as exc:
                results.append((image, None, exc.strerror or str(exc)))
            else:
                results.append((image, digest, None))
        return arena, results

    def _fingerprint(self, images: list[ImageFile]) -> None:
        if not images:
            return
        batches = [images[i :: self.workers] for i in range(min(self.workers, len(images)))]
        with ThreadPoolExecutor(max_workers=len(batches)) as executor:
            outcomes = list(executor.map(self._fingerprint_batch, batches))

        self.cache.merge(arena for arena, _ in outcomes)
        for _, results in outcomes:
            for image, digest, error in results:
                if digest is None:
                    image.state = ImageState.UNREADABLE
                    image.error = error
                    logger.warning("skipping unreadable image %s: %s", image.path, error)
                else:
                    image.fingerprint = digest

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, images: Iterable[ImageFile], references: Iterable[ImageReference]) -> ClassificationResult:
        images = sorted(images, key=lambda i: i.path)
        for image in images:
            image.state = ImageState.SCANNED
            image.canonical = None
            image.references = []

        lookup = _ImageLookup(images)
        missing: list[ImageReference] = []
        for ref in references:
            image = lookup.resolve(ref)
            if image is None:
                missing.append(ref)
            else:
                image.references.append(ref)

        # condemned before hashing
        to_hash: list[ImageFile] = []
        for image in images:
            if image.size == 0 or image.format_tag in NON_RENDERING_FORMATS:
                image.state = transition(image.size, image.format_tag, reference_count=len(image.references))
            else:
                to_hash.append(image)
        self._fingerprint(to_hash)

        groups: dict[str, list[ImageFile]] = {}
        for image in to_hash:
            if image.fingerprint is not None:
                groups.setdefault(image.fingerprint, []).append(image)

        for members in groups.values():
            canonical = members[0]  # ``images`` is sorted, so this is the smallest path
            group_refs = sum(len(m.references) for m in members)
            for member in members:
                is_canonical = member is canonical
                member.state = transition(
                    member.size,
                    member.format_tag,
                    group_size=len(members),
                    is_canonical=is_canonical,
                    reference_count=group_refs if is_canonical else len(member.references),
                )
                if member.state is ImageState.DUPLICATE:
                    member.canonical = canonical.path

        result = ClassificationResult(images=images, missing=missing)
        by_path = {image.path: image for image in images}
        for image in images:
            kind = image.state.match_kind
            if kind is None:
                continue
            for ref in image.references:
                if kind is MatchKind.IMAGE_DUPLICATE_REDIRECT:
                    if image.canonical is None:
                        continue
                    replacement = ref.redirected(_redirect_target(ref, by_path[image.canonical], lookup))
                else:
                    replacement = ""
                self._add(result, ref, replacement, kind)
        for ref in missing:
            self._add(result, ref, "", MatchKind.IMAGE_REMOVE)

        for candidates in result.candidates_by_file.values():
            candidates.sort(key=lambda m: (m.line, m.start))
        logger.info(
            "classified %d images: %s",
            len(images),
            ", ".join(f"{state.value}={n}" for state, n in _state_counts(images).items()) or "none",
        )
        return result

    @staticmethod
    def _add(result: ClassificationResult, ref: ImageReference, replacement: str, kind: MatchKind) -> None:
        result.candidates_by_file.setdefault(ref.file, []).append(
            ReplaceableMatch(
                file=ref.file,
                line=ref.line,
                start=ref.start,
                end=ref.end,
                original=ref.text,
                replacement=replacement,
                kind=kind,
            )
        )


def _state_counts(images: Iterable[ImageFile]) -> dict[ImageState, int]:
    counts: dict[ImageState, int] = {}
    for image in images:
        counts[image.state] = counts.get(image.state, 0) + 1
    return dict(sorted(counts.items(), key=lambda item: item[0].value))
