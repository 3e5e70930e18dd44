"""Persistent content-fingerprint cache for vault images.

The cache lives in a small DuckDB database inside the vault::

    <vault>/.vaultknife/image_cache.duckdb
        fingerprints(path VARCHAR, size BIGINT, mtime_ns BIGINT, fingerprint VARCHAR)

An entry is trusted only while the live file still has the recorded size and
modification time.  Workers never write to the shared cache: each one fills
its own :class:`CacheArena`, and :meth:`FingerprintCache.merge` folds the
arenas in after every worker has joined.  :meth:`FingerprintCache.save` then
rewrites the table once.

Usage::

    cache = FingerprintCache.load(vault / CACHE_FOLDER / CACHE_FILE)
    arena = CacheArena()
    digest = cache.fingerprint_for("img/a.png", vault / "img/a.png", size, mtime_ns, arena)
    cache.merge([arena])
    cache.prune(live_paths)
    cache.save()
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import duckdb

logger = logging.getLogger(__name__)

CACHE_FOLDER = ".vaultknife"
CACHE_FILE = "image_cache.duckdb"

_CHUNK_SIZE = 1 << 16
_FINGERPRINT_RE = re.compile(r"\A[0-9a-f]{64}\Z")


def fingerprint_file(path: Path) -> str:
    """SHA-256 hex digest of *path*'s bytes, read in chunks."""
    hasher = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


class CacheStatus(str, Enum):
    NEW = "new"
    LOADED = "loaded"
    CORRUPTED = "corrupted"


@dataclass(frozen=True)
class CacheEntry:
    size: int
    mtime_ns: int
    fingerprint: str


@dataclass
class CacheArena:
    """Per-worker scratch space: freshly computed entries and lookup counters."""

    entries: dict[str, CacheEntry] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0


def _valid_row(row: tuple[Any, ...]) -> bool:
    if len(row) != 4:
        return False
    path, size, mtime_ns, fingerprint = row
    return (
        isinstance(path, str)
        and bool(path)
        and isinstance(size, int)
        and size >= 0
        and isinstance(mtime_ns, int)
        and isinstance(fingerprint, str)
        and _FINGERPRINT_RE.match(fingerprint) is not None
    )


class FingerprintCache:
    """In-memory view of the persisted fingerprint table."""

    def __init__(self, db_path: Path | None = None, entries: dict[str, CacheEntry] | None = None) -> None:
        self.db_path = db_path
        self.entries: dict[str, CacheEntry] = dict(entries or {})
        self.status = CacheStatus.NEW
        self.hits = 0
        self.misses = 0
        self.added = 0
        self.modified = 0
        self.pruned = 0
        self.dropped = 0  # rows discarded on load

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, db_path: Path) -> FingerprintCache:
        """Read the cache at *db_path*.  A missing or unreadable file yields an empty cache."""
        cache = cls(db_path)
        if not db_path.exists():
            return cache
        try:
            conn = duckdb.connect(str(db_path), read_only=True)
            try:
                rows = conn.execute("SELECT path, size, mtime_ns, fingerprint FROM fingerprints").fetchall()
            finally:
                conn.close()
        except (duckdb.Error, OSError) as exc:
            logger.warning("fingerprint cache %s is unreadable, starting empty: %s", db_path, exc)
            cache.status = CacheStatus.CORRUPTED
            return cache

        for row in rows:
            if not _valid_row(row):
                cache.dropped += 1
                continue
            path, size, mtime_ns, fingerprint = row
            cache.entries[path] = CacheEntry(size, mtime_ns, fingerprint)
        if cache.dropped:
            logger.warning("dropped %d invalid fingerprint cache rows from %s", cache.dropped, db_path)
        cache.status = CacheStatus.LOADED
        logger.debug("loaded %d fingerprint cache entries from %s", len(cache.entries), db_path)
        return cache

    def save(self, db_path: Path | None = None) -> None:
        """Rewrite the whole table in one transaction."""
        target = db_path or self.db_path
        if target is None:
            raise ValueError("no cache path to save to")
        target.parent.mkdir(parents=True, exist_ok=True)
        if self.status is CacheStatus.CORRUPTED and target.exists():
            target.unlink()
            wal = target.with_name(target.name + ".wal")
            if wal.exists():
                wal.unlink()

        rows = [(path, e.size, e.mtime_ns, e.fingerprint) for path, e in sorted(self.entries.items())]
        conn = duckdb.connect(str(target))
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.execute("""
                CREATE OR REPLACE TABLE fingerprints (
                    path        VARCHAR PRIMARY KEY,
                    size        BIGINT  NOT NULL,
                    mtime_ns    BIGINT  NOT NULL,
                    fingerprint VARCHAR NOT NULL
                )
            """)
            if rows:
                conn.executemany("INSERT INTO fingerprints VALUES (?,?,?,?)", rows)
            conn.execute("COMMIT")
        finally:
            conn.close()
        self.db_path = target
        logger.debug("saved %d fingerprint cache entries to %s", len(rows), target)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, path: str, size: int, mtime_ns: int) -> str | None:
        """Cached fingerprint for *path*, or ``None`` when missing or stale."""
        entry = self.entries.get(path)
        if entry is None or entry.size != size or entry.mtime_ns != mtime_ns:
            return None
        return entry.fingerprint

    def fingerprint_for(self, path: str, file: Path, size: int, mtime_ns: int, arena: CacheArena) -> str:
        """Return the fingerprint of *file*, hashing it only on a cache miss.

        Safe to call from several threads at once as long as each passes its
        own *arena*.  Raises :class:`OSError` when the file cannot be read.
        """
        cached = self.lookup(path, size, mtime_ns)
        if cached is not None:
            arena.hits += 1
            logger.debug("fingerprint cache hit: %s", path)
            return cached
        digest = fingerprint_file(file)
        arena.misses += 1
        arena.entries[path] = CacheEntry(size, mtime_ns, digest)
        return digest

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def merge(self, arenas: Iterable[CacheArena]) -> None:
        """Fold worker arenas into the cache.  Call only after all workers join."""
        for arena in arenas:
            self.hits += arena.hits
            self.misses += arena.misses
            for path, entry in arena.entries.items():
                previous = self.entries.get(path)
                if previous is None:
                    self.added += 1
                elif previous != entry:
                    self.modified += 1
                self.entries[path] = entry

    def prune(self, live_paths: Iterable[str]) -> int:
        """Drop entries for files that no longer exist; returns how many went."""
        live = set(live_paths)
        stale = [path for path in self.entries if path not in live]
        for path in stale:
            del self.entries[path]
        self.pruned += len(stale)
        return len(stale)

    def stats(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "entries": len(self.entries),
            "hits": self.hits,
            "misses": self.misses,
            "added": self.added,
            "modified": self.modified,
            "pruned": self.pruned,
            "dropped": self.dropped,
        }

    def __len__(self) -> int:
        return len(self.entries)
