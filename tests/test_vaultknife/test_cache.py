"""Unit tests for vaultknife.cache (DuckDB-backed fingerprint cache)."""

import hashlib
from pathlib import Path

import duckdb
import pytest

from vaultknife.cache import CacheArena, CacheEntry, CacheStatus, FingerprintCache, fingerprint_file


def _image(tmp_path: Path, name: str, data: bytes) -> Path:
    path = tmp_path / name
    path.write_bytes(data)
    return path


def _arena_with(path: str, size: int, mtime_ns: int, fingerprint: str) -> CacheArena:
    arena = CacheArena()
    arena.entries[path] = CacheEntry(size, mtime_ns, fingerprint)
    return arena


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / ".vaultknife" / "image_cache.duckdb"


# ---------------------------------------------------------------------------
# fingerprint_file
# ---------------------------------------------------------------------------


class TestFingerprintFile:
    def test_sha256_of_content(self, tmp_path: Path):
        data = b"x" * 200_000
        path = _image(tmp_path, "a.png", data)
        assert fingerprint_file(path) == hashlib.sha256(data).hexdigest()

    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(OSError):
            fingerprint_file(tmp_path / "nope.png")


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


class TestLookup:
    def test_hit_requires_matching_size_and_mtime(self):
        cache = FingerprintCache()
        cache.merge([_arena_with("a.png", 10, 5, "ab" * 32)])
        assert cache.lookup("a.png", 10, 5) == "ab" * 32
        assert cache.lookup("a.png", 11, 5) is None
        assert cache.lookup("a.png", 10, 6) is None
        assert cache.lookup("b.png", 10, 5) is None

    def test_hit_does_not_rehash(self, tmp_path: Path):
        path = _image(tmp_path, "a.png", b"data")
        stat = path.stat()
        cache = FingerprintCache()

        first = CacheArena()
        digest = cache.fingerprint_for("a.png", path, stat.st_size, stat.st_mtime_ns, first)
        assert (first.hits, first.misses) == (0, 1)
        cache.merge([first])

        second = CacheArena()
        assert cache.fingerprint_for("a.png", path, stat.st_size, stat.st_mtime_ns, second) == digest
        assert (second.hits, second.misses) == (1, 0)
        assert second.entries == {}

    def test_stale_entry_recomputed(self, tmp_path: Path):
        path = _image(tmp_path, "a.png", b"new content")
        stat = path.stat()
        cache = FingerprintCache()
        cache.merge([_arena_with("a.png", stat.st_size, stat.st_mtime_ns - 1, "00" * 32)])
        arena = CacheArena()
        digest = cache.fingerprint_for("a.png", path, stat.st_size, stat.st_mtime_ns, arena)
        assert digest == hashlib.sha256(b"new content").hexdigest()
        assert arena.misses == 1
        cache.merge([arena])
        assert cache.modified == 1


# ---------------------------------------------------------------------------
# Merge / prune
# ---------------------------------------------------------------------------


class TestMaintenance:
    def test_merge_counts(self):
        cache = FingerprintCache()
        a = _arena_with("a.png", 1, 1, "aa" * 32)
        a.hits, a.misses = 2, 1
        b = _arena_with("b.png", 1, 1, "bb" * 32)
        b.misses = 1
        cache.merge([a, b])
        assert (cache.hits, cache.misses, cache.added, cache.modified) == (2, 2, 2, 0)
        assert len(cache) == 2

    def test_prune_drops_vanished_paths(self):
        cache = FingerprintCache()
        cache.merge([_arena_with("a.png", 1, 1, "aa" * 32), _arena_with("b.png", 1, 1, "bb" * 32)])
        assert cache.prune(["b.png"]) == 1
        assert list(cache.entries) == ["b.png"]
        assert cache.pruned == 1


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_missing_file_is_new_empty_cache(self, db_path: Path):
        cache = FingerprintCache.load(db_path)
        assert cache.status is CacheStatus.NEW
        assert len(cache) == 0

    def test_round_trip(self, db_path: Path):
        cache = FingerprintCache(db_path)
        cache.merge([_arena_with("img/a.png", 123, 1_700_000_000_123_456_789, "ab" * 32)])
        cache.save()
        assert db_path.exists()

        loaded = FingerprintCache.load(db_path)
        assert loaded.status is CacheStatus.LOADED
        assert loaded.lookup("img/a.png", 123, 1_700_000_000_123_456_789) == "ab" * 32

    def test_save_replaces_table(self, db_path: Path):
        cache = FingerprintCache(db_path)
        cache.merge([_arena_with("a.png", 1, 1, "aa" * 32)])
        cache.save()
        cache.prune([])
        cache.save()
        assert len(FingerprintCache.load(db_path)) == 0

    def test_corrupt_file_is_not_fatal(self, db_path: Path):
        db_path.parent.mkdir(parents=True)
        db_path.write_bytes(b"this is not a duckdb database")
        cache = FingerprintCache.load(db_path)
        assert cache.status is CacheStatus.CORRUPTED
        assert len(cache) == 0

        cache.merge([_arena_with("a.png", 1, 1, "aa" * 32)])
        cache.save()
        assert FingerprintCache.load(db_path).lookup("a.png", 1, 1) == "aa" * 32

    def test_invalid_rows_dropped(self, db_path: Path):
        db_path.parent.mkdir(parents=True)
        conn = duckdb.connect(str(db_path))
        conn.execute("CREATE TABLE fingerprints (path VARCHAR, size BIGINT, mtime_ns BIGINT, fingerprint VARCHAR)")
        conn.executemany(
            "INSERT INTO fingerprints VALUES (?,?,?,?)",
            [
                ("good.png", 1, 1, "ab" * 32),
                ("neg.png", -1, 1, "ab" * 32),
                ("short.png", 1, 1, "abc"),
                ("null.png", None, 1, "ab" * 32),
            ],
        )
        conn.close()

        cache = FingerprintCache.load(db_path)
        assert list(cache.entries) == ["good.png"]
        assert cache.dropped == 3
