"""End-to-end tests for vaultknife.scan and vaultknife.repository.VaultRun."""

import textwrap
from pathlib import Path

import pytest

from vaultknife.config import Config
from vaultknife.errors import VaultRootError
from vaultknife.images import ImageState
from vaultknife.report import ReportWriter
from vaultknife.repository import VaultRun
from vaultknife.scan import scan_vault

JPEG = b"\xff\xd8\xff\xe0same-bytes"


def _write(vault: Path, rel: str, content: str) -> Path:
    path = vault / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


@pytest.fixture()
def vault(tmp_path: Path) -> Path:
    """Small vault with aliases, an ambiguous alias and duplicate images."""
    root = tmp_path / "vault"
    _write(root, "Sugar.md", """\
        ---
        aliases: [brown sugar, white sugar]
        ---
        Sweet.
    """)
    _write(root, "people/Ed Smith.md", """\
        ---
        aliases: [Ed]
        ---
        Smith.
    """)
    _write(root, "people/Ed Jones.md", """\
        ---
        aliases: [Ed]
        ---
        Jones.
    """)
    _write(root, "Tea.md", """\
        I like brown sugar in tea.
        Ed: call Bob.
        Ed brought ![[b.jpg]] and ![[b.jpg]].
        ![[photo.tiff]]
        ```
        white sugar in code
        ```
    """)
    _write(root, "templates/Template.md", "Sugar everywhere\n")
    (root / "a.jpg").write_bytes(JPEG)
    (root / "b.jpg").write_bytes(JPEG)
    (root / "photo.tiff").write_bytes(b"II*\x00")
    (root / "blank.png").write_bytes(b"")
    return root


def _config(vault: Path, **kw) -> Config:
    kw.setdefault("do_not_back_populate", ["Ed:"])
    return Config(vault_path=vault, ignore_folders=[vault / "templates"], workers=2, **kw)


# ---------------------------------------------------------------------------
# scan_vault
# ---------------------------------------------------------------------------


class TestScanVault:
    def test_notes_in_path_order_and_ignored_folders_skipped(self, vault: Path):
        scan = scan_vault(_config(vault))
        assert [n.path for n in scan.notes] == ["Sugar.md", "Tea.md", "people/Ed Jones.md", "people/Ed Smith.md"]
        assert [i.path for i in scan.images] == ["a.jpg", "b.jpg", "blank.png", "photo.tiff"]
        assert scan.errors == []

    def test_image_metadata(self, vault: Path):
        scan = scan_vault(_config(vault))
        tiff = next(i for i in scan.images if i.path == "photo.tiff")
        assert (tiff.size, tiff.format_tag) == (4, "tiff")
        assert tiff.mtime_ns == (vault / "photo.tiff").stat().st_mtime_ns

    def test_unreadable_note_reported(self, vault: Path):
        (vault / "broken.md").write_bytes(b"\xff\xfe")
        scan = scan_vault(_config(vault))
        assert [e.path for e in scan.errors] == ["broken.md"]
        assert "broken.md" not in [n.path for n in scan.notes]

    def test_missing_root_is_fatal(self, tmp_path: Path):
        config = Config(vault_path=tmp_path / "gone")
        with pytest.raises(VaultRootError):
            scan_vault(config)


# ---------------------------------------------------------------------------
# VaultRun
# ---------------------------------------------------------------------------


class TestDryRun:
    def test_nothing_written(self, vault: Path):
        before = (vault / "Tea.md").read_bytes()
        report = VaultRun(_config(vault)).run()
        assert (vault / "Tea.md").read_bytes() == before
        assert (vault / "b.jpg").exists()
        assert set(report.deleted_images) == {"b.jpg", "blank.png", "photo.tiff"}
        assert report.changed_files == {"Tea.md": ["back populated", "image references updated"]}

    def test_findings(self, vault: Path):
        report = VaultRun(_config(vault)).run()
        assert [(m.file, m.original, m.replacement) for m in report.back_populate] == [
            ("Tea.md", "brown sugar", "[[Sugar|brown sugar]]")
        ]
        assert [(a.file, a.line, a.text) for a in report.ambiguous] == [("Tea.md", 2, "Ed")]
        states = {i.path: i.state for i in report.images}
        assert states["a.jpg"] is ImageState.UNIQUE
        assert states["b.jpg"] is ImageState.DUPLICATE

    def test_deterministic(self, vault: Path):
        config = _config(vault)
        first = ReportWriter(config.output_folder).render(VaultRun(config).run())
        second = ReportWriter(config.output_folder).render(VaultRun(config).run())
        assert first == second

    def test_cache_saved_in_dry_run(self, vault: Path):
        config = _config(vault)
        VaultRun(config).run()
        assert config.cache_path.exists()
        report = VaultRun(config).run()
        assert report.cache_stats["misses"] == 0
        assert report.cache_stats["hits"] == 2


class TestApplyRun:
    def test_writes_and_deletes(self, vault: Path):
        report = VaultRun(_config(vault, apply_changes=True)).run()
        assert (vault / "Tea.md").read_text(encoding="utf-8") == textwrap.dedent("""\
            I like [[Sugar|brown sugar]] in tea.
            Ed: call Bob.
            Ed brought ![[a.jpg]] and ![[a.jpg]].

            ```
            white sugar in code
            ```
        """)
        assert not (vault / "b.jpg").exists()
        assert not (vault / "photo.tiff").exists()
        assert not (vault / "blank.png").exists()
        assert (vault / "a.jpg").exists()
        assert (vault / "templates" / "Template.md").read_text(encoding="utf-8") == "Sugar everywhere\n"
        assert report.rejections == []

    def test_second_run_finds_nothing_new(self, vault: Path):
        VaultRun(_config(vault, apply_changes=True)).run()
        report = VaultRun(_config(vault)).run()
        assert report.back_populate == []
        assert report.changed_files == {}
        assert report.deleted_images == []
        assert [i.state for i in report.images] == [ImageState.UNIQUE]

    def test_preview_matches_apply(self, vault: Path):
        preview = VaultRun(_config(vault)).run()
        applied = VaultRun(_config(vault, apply_changes=True)).run()
        assert preview.back_populate == applied.back_populate
        assert preview.deleted_images == applied.deleted_images
        assert preview.changed_files == applied.changed_files


class TestRestrictedRuns:
    def test_file_filter(self, vault: Path):
        _write(vault, "Coffee.md", "brown sugar in coffee\n")
        report = VaultRun(_config(vault, back_populate_file_filter="Coffee.md")).run()
        assert {m.file for m in report.back_populate} == {"Coffee.md"}

    def test_file_count_limit_keeps_first_files_in_path_order(self, vault: Path):
        for name in ("A1", "A2", "A3"):
            _write(vault, f"{name}.md", "white sugar\n")
        report = VaultRun(_config(vault, back_populate_file_count=2)).run()
        assert sorted({m.file for m in report.back_populate}) == ["A1.md", "A2.md"]

    def test_image_cleanup_is_vault_wide_under_a_filter(self, vault: Path):
        report = VaultRun(_config(vault, back_populate_file_filter="Sugar.md")).run()
        assert report.back_populate == []
        assert "b.jpg" in report.deleted_images


class TestFailClosed:
    def test_rejected_file_keeps_its_images(self, vault: Path, monkeypatch):
        from vaultknife import repository
        from vaultknife.applier import RejectedOverlap

        def reject(lines, candidates):
            first = candidates[0]
            return RejectedOverlap(first.file, first.line, first, first)

        monkeypatch.setattr(repository, "apply", reject)
        report = VaultRun(_config(vault, apply_changes=True)).run()
        assert [r.file for r in report.rejections] == ["Tea.md"]
        assert report.back_populate == []
        assert (vault / "b.jpg").exists()
        assert (vault / "photo.tiff").exists()
        # nothing references blank.png, so it still goes
        assert not (vault / "blank.png").exists()


class TestUnreadableNotes:
    def test_image_referenced_by_undecodable_note_is_kept(self, vault: Path):
        (vault / "Bad.md").write_bytes(b"caf\xe9 ![[keep.png]]\n")
        (vault / "keep.png").write_bytes(b"png-bytes")
        report = VaultRun(_config(vault, apply_changes=True)).run()
        assert [e.path for e in report.errors] == ["Bad.md"]
        assert "keep.png" not in report.deleted_images
        assert (vault / "keep.png").exists()
        assert (vault / "Bad.md").read_bytes() == b"caf\xe9 ![[keep.png]]\n"
        # readable notes are still handled
        assert not (vault / "b.jpg").exists()

    def test_duplicate_referenced_by_undecodable_note_is_kept(self, vault: Path):
        (vault / "Bad.md").write_bytes(b"\xff ![[b.jpg]]\n")
        report = VaultRun(_config(vault, apply_changes=True)).run()
        assert "b.jpg" not in report.deleted_images
        assert (vault / "b.jpg").exists()

    def test_note_that_cannot_be_read_blocks_every_deletion(self, vault: Path, monkeypatch):
        from vaultknife import scan

        def unreadable(path, rel):
            return None

        (vault / "Bad.md").write_bytes(b"\xff\n")
        monkeypatch.setattr(scan, "_salvage_references", unreadable)
        report = VaultRun(_config(vault, apply_changes=True)).run()
        assert report.deleted_images == []
        assert (vault / "blank.png").exists()
        assert (vault / "b.jpg").exists()
