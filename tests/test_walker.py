"""Tests for directory walking."""

import os

import pytest

from photo_atlas.catalog.config import MediaKind
from photo_atlas.catalog.errors import ScanError
from photo_atlas.catalog import walker as walker_module
from photo_atlas.catalog.walker import DirectoryWalker, walk_media


class FakeCatalog:
    """Records directory bookkeeping calls."""

    def __init__(self, scanned=()):
        self.added = []
        self.scanned = set(scanned)

    def add_directory(self, path):
        self.added.append(path)

    def is_scanned(self, path):
        return path in self.scanned


def touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    return path


class TestDirectoryWalker:
    """Test DirectoryWalker."""

    def test_finds_media_with_relative_paths(self, library):
        touch(library / "a.jpg")
        touch(library / "2024" / "b.heic")
        touch(library / "2024" / "trip" / "c.mp4")
        touch(library / "2024" / "notes.txt")

        entries = walk_media(library)
        found = {(e.directory, e.filename, e.kind) for e in entries}
        assert found == {
            ("", "a.jpg", MediaKind.PHOTO),
            ("2024", "b.heic", MediaKind.PHOTO),
            ("2024/trip", "c.mp4", MediaKind.VIDEO),
        }
        for entry in entries:
            assert os.path.isfile(entry.absolute_path)

    def test_order_is_deterministic(self, library):
        for name in ("c.jpg", "a.jpg", "b.jpg"):
            touch(library / name)
        assert [e.filename for e in walk_media(library)] == ["a.jpg", "b.jpg", "c.jpg"]

    def test_skips_hidden_and_special_directories(self, library):
        touch(library / ".thumbnails" / "t.jpg")
        touch(library / "node_modules" / "n.jpg")
        touch(library / "$RECYCLE.BIN" / "r.jpg")
        touch(library / "keep" / "k.jpg")
        assert [e.filename for e in walk_media(library)] == ["k.jpg"]

    def test_registers_subdirectories(self, library):
        touch(library / "one" / "a.jpg")
        touch(library / "one" / "two" / "b.jpg")
        catalog = FakeCatalog()
        result = DirectoryWalker(catalog=catalog).walk(library)
        assert catalog.added == ["one", "one/two"]
        assert result.directories == ["", "one", "one/two"]

    def test_prunes_scanned_subtrees(self, library):
        touch(library / "done" / "a.jpg")
        touch(library / "done" / "deep" / "b.jpg")
        touch(library / "new" / "c.jpg")
        catalog = FakeCatalog(scanned={"done"})
        result = DirectoryWalker(catalog=catalog).walk(library, skip_scanned=True)
        assert [e.filename for e in result.entries] == ["c.jpg"]
        assert "done" not in result.directories
        assert "done/deep" not in result.directories

    def test_scanned_subtrees_walked_without_skip(self, library):
        touch(library / "done" / "a.jpg")
        catalog = FakeCatalog(scanned={"done"})
        result = DirectoryWalker(catalog=catalog).walk(library, skip_scanned=False)
        assert [e.filename for e in result.entries] == ["a.jpg"]

    def test_symlink_cycle_terminates(self, library):
        touch(library / "a" / "photo.jpg")
        try:
            os.symlink(library, library / "a" / "loop")
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")
        entries = walk_media(library)
        assert [e.filename for e in entries] == ["photo.jpg"]

    def test_symlinked_files_are_not_followed(self, library, tmp_path):
        outside = touch(tmp_path / "outside.jpg")
        try:
            os.symlink(outside, library / "link.jpg")
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")
        assert walk_media(library) == []

    def test_directory_progress_events(self, library):
        for i in range(25):
            (library / f"d{i:02d}").mkdir()
        events = []
        DirectoryWalker(progress=events.append).walk(library)
        assert [e.count for e in events] == [10, 20]
        assert all(e.phase == "directory" for e in events)

    def test_failing_progress_sink_does_not_abort(self, library):
        for i in range(12):
            touch(library / f"d{i:02d}" / "a.jpg")

        def broken(event):
            raise RuntimeError("sink down")

        assert len(DirectoryWalker(progress=broken).walk(library).entries) == 12

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(ScanError):
            walk_media(tmp_path / "nope")

    def test_unreadable_subdirectory_is_skipped(self, library, monkeypatch):
        touch(library / "ok" / "a.jpg")
        touch(library / "locked" / "b.jpg")
        deny_listing(monkeypatch, "locked")

        walker = DirectoryWalker()
        result = walker.walk(library)
        assert [e.filename for e in result.entries] == ["a.jpg"]
        assert result.directories == ["", "ok"]
        assert walker.get_stats()["errors"] == 1

    def test_stats_reset_between_walks(self, library):
        touch(library / "a" / "1.jpg")
        walker = DirectoryWalker()
        walker.walk(library)
        walker.walk(library)
        stats = walker.get_stats()
        assert stats["directories"] == 2
        assert stats["files"] == 1


def deny_listing(monkeypatch, name):
    """Make os.scandir fail for directories called ``name``."""
    real_scandir = os.scandir

    def scandir(path):
        if os.path.basename(os.fspath(path)) == name:
            raise PermissionError(13, "Permission denied", os.fspath(path))
        return real_scandir(path)

    monkeypatch.setattr(walker_module.os, "scandir", scandir)
