"""Tests for the manifest model and its local store."""

import json
from unittest.mock import patch

import pytest

from pyftpdeploy.exceptions import ManifestPersistFault, ManifestUnreadableFault
from pyftpdeploy.sync.manifest import (
    CURRENT_FORMAT_VERSION,
    Entry,
    EntryKind,
    Manifest,
    ManifestStore,
)


def _manifest_dict(entries, version=CURRENT_FORMAT_VERSION, generated_at=1700000000000):
    return {
        "description": "test",
        "formatVersion": version,
        "generatedAt": generated_at,
        "entries": entries,
    }


class TestEntry:
    """Tests for manifest entries."""

    def test_file_entry(self):
        """Test creating a file entry."""
        entry = Entry.file("assets/app.js", 512, "abc")
        assert entry.kind == EntryKind.FILE
        assert entry.is_file
        assert not entry.is_folder
        assert entry.byte_size == 512
        assert entry.depth == 2

    def test_folder_entry_counts_zero_bytes(self):
        """Test folders never count towards byte totals."""
        entry = Entry.folder("assets/img")
        assert entry.is_folder
        assert entry.size is None
        assert entry.byte_size == 0
        assert entry.depth == 2

    def test_to_dict_file(self):
        """Test JSON form of a file entry."""
        assert Entry.file("a.txt", 3, "h1").to_dict() == {
            "kind": "file",
            "path": "a.txt",
            "size": 3,
            "hash": "h1",
        }

    def test_to_dict_folder_has_no_size(self):
        """Test JSON form of a folder entry."""
        assert Entry.folder("a").to_dict() == {"kind": "folder", "path": "a"}

    def test_from_dict_file(self):
        """Test decoding a file entry."""
        entry = Entry.from_dict(
            {"kind": "file", "path": "a.txt", "size": 3, "hash": "h"}
        )
        assert entry == Entry.file("a.txt", 3, "h")

    @pytest.mark.parametrize(
        "data",
        [
            "not an object",
            {"path": "a.txt"},
            {"kind": "symlink", "path": "a.txt"},
            {"kind": "file", "path": "", "size": 1, "hash": "h"},
            {"kind": "file", "path": "a.txt", "hash": "h"},
            {"kind": "file", "path": "a.txt", "size": -1, "hash": "h"},
            {"kind": "file", "path": "a.txt", "size": 1},
        ],
    )
    def test_from_dict_rejects_malformed(self, data):
        """Test malformed entries raise ManifestUnreadableFault."""
        with pytest.raises(ManifestUnreadableFault):
            Entry.from_dict(data)


class TestManifest:
    """Tests for the Manifest collection."""

    def test_empty(self):
        """Test an empty manifest has the current version and no entries."""
        manifest = Manifest.empty()
        assert len(manifest) == 0
        assert manifest.format_version == CURRENT_FORMAT_VERSION
        assert manifest.generated_at > 0

    def test_paths_are_unique(self):
        """Test adding an entry for an existing path replaces it."""
        manifest = Manifest([Entry.file("a.txt", 1, "old")])
        manifest.upsert(Entry.file("a.txt", 2, "new"))

        assert len(manifest) == 1
        assert manifest.get("a.txt").content_hash == "new"

    def test_insertion_order_is_kept(self):
        """Test entries iterate in insertion order."""
        manifest = Manifest(
            [Entry.folder("b"), Entry.file("b/x.txt", 1, "h"), Entry.folder("a")]
        )
        assert [e.path for e in manifest] == ["b", "b/x.txt", "a"]

    def test_remove_tree(self):
        """Test removing a folder removes everything below it."""
        manifest = Manifest(
            [
                Entry.folder("old"),
                Entry.file("old/a.txt", 1, "h"),
                Entry.folder("old/sub"),
                Entry.file("old/sub/b.txt", 1, "h"),
                Entry.file("older.txt", 1, "h"),
            ]
        )

        removed = manifest.remove_tree("old")

        assert len(removed) == 4
        assert [e.path for e in manifest] == ["older.txt"]

    def test_filter_returns_copy(self):
        """Test filter leaves the original untouched."""
        manifest = Manifest([Entry.file("a.txt", 1, "h"), Entry.file("b.log", 1, "h")])
        filtered = manifest.filter(lambda e: not e.path.endswith(".log"))

        assert [e.path for e in filtered] == ["a.txt"]
        assert len(manifest) == 2
        assert filtered.generated_at == manifest.generated_at

    def test_counts_and_total_bytes(self):
        """Test file/folder counts and byte total."""
        manifest = Manifest(
            [Entry.folder("a"), Entry.file("a/x", 10, "h"), Entry.file("y", 5, "h")]
        )
        assert manifest.file_count == 2
        assert manifest.folder_count == 1
        assert manifest.total_bytes == 15

    def test_json_round_trip(self):
        """Test a manifest survives encoding and decoding."""
        manifest = Manifest(
            [Entry.folder("a"), Entry.file("a/x.txt", 10, "h1")],
            generated_at=1700000000000,
        )

        decoded = Manifest.from_json(manifest.to_json())

        assert decoded == manifest
        assert decoded.generated_at == 1700000000000
        assert decoded.format_version == CURRENT_FORMAT_VERSION

    def test_json_keys(self):
        """Test the persisted document uses the documented keys."""
        data = json.loads(Manifest.empty().to_json())
        assert set(data) == {"description", "formatVersion", "generatedAt", "entries"}

    def test_from_json_invalid_json(self):
        """Test garbage input is unreadable."""
        with pytest.raises(ManifestUnreadableFault, match="not valid JSON"):
            Manifest.from_json("{not json")

    def test_from_json_bytes(self):
        """Test UTF-8 bytes decode like text."""
        manifest = Manifest([Entry.file("a.txt", 3, "h")], generated_at=1)

        assert Manifest.from_json(manifest.to_json().encode("utf-8")) == manifest

    def test_from_json_invalid_utf8(self):
        """Test bytes that are not UTF-8 are unreadable."""
        with pytest.raises(ManifestUnreadableFault, match="not UTF-8"):
            Manifest.from_json(b'\xff\xfe{"formatVersion": "1.0.0"}')

    def test_from_dict_unknown_version(self):
        """Test unknown format versions are rejected."""
        with pytest.raises(ManifestUnreadableFault, match="Unsupported"):
            Manifest.from_dict(_manifest_dict([], version="2.0.0"))

    def test_from_dict_missing_version(self):
        """Test a manifest without a version is rejected."""
        data = _manifest_dict([])
        del data["formatVersion"]
        with pytest.raises(ManifestUnreadableFault):
            Manifest.from_dict(data)

    def test_from_dict_duplicate_paths(self):
        """Test duplicate paths make a manifest unreadable."""
        entry = {"kind": "folder", "path": "a"}
        with pytest.raises(ManifestUnreadableFault, match="Duplicate"):
            Manifest.from_dict(_manifest_dict([entry, entry]))

    def test_from_dict_entries_not_a_list(self):
        """Test entries must be a list."""
        with pytest.raises(ManifestUnreadableFault, match="must be a list"):
            Manifest.from_dict(_manifest_dict({"a": 1}))

    def test_from_dict_invalid_generated_at(self):
        """Test generatedAt must be an integer timestamp."""
        with pytest.raises(ManifestUnreadableFault, match="generatedAt"):
            Manifest.from_dict(_manifest_dict([], generated_at="yesterday"))

    def test_touch_updates_timestamp(self):
        """Test touch stamps the current time."""
        manifest = Manifest(generated_at=1)
        with patch("pyftpdeploy.sync.manifest.time.time", return_value=1700000000.5):
            manifest.touch()
        assert manifest.generated_at == 1700000000500


class TestManifestStore:
    """Tests for the local checkpoint store."""

    def test_load_missing_returns_none(self, tmp_path):
        """Test loading an absent checkpoint."""
        assert ManifestStore(tmp_path / "state.json").load() is None

    def test_save_and_load(self, tmp_path):
        """Test a saved manifest loads back equal."""
        store = ManifestStore(tmp_path / "state.json")
        manifest = Manifest([Entry.file("a.txt", 3, "h")])

        store.save(manifest)

        assert store.load() == manifest

    def test_save_leaves_no_temp_files(self, tmp_path):
        """Test the atomic write cleans up after itself."""
        store = ManifestStore(tmp_path / "state.json")
        store.save(Manifest.empty())
        store.save(Manifest.empty())

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_load_corrupt_returns_none(self, tmp_path):
        """Test an unreadable checkpoint loads as None."""
        path = tmp_path / "state.json"
        path.write_text("garbage", encoding="utf-8")

        assert ManifestStore(path).load() is None

    def test_load_non_utf8_returns_none(self, tmp_path):
        """Test a checkpoint with invalid bytes loads as None."""
        path = tmp_path / "state.json"
        path.write_bytes(b"\xff\xfe\x00garbage")

        assert ManifestStore(path).load() is None

    def test_save_failure_raises_persist_fault(self, tmp_path):
        """Test a write error surfaces as ManifestPersistFault."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x", encoding="utf-8")
        store = ManifestStore(blocker / "state.json")

        with pytest.raises(ManifestPersistFault):
            store.save(Manifest.empty())
