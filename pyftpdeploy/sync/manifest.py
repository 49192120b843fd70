"""Manifest model and persistence.

A manifest describes what the remote side looks like. The copy pushed to
the server is the baseline the next run diffs against; the copy written to
the local disk is the durable checkpoint of the run in progress.

The file format is plain JSON::

    {
        "description": "...",
        "formatVersion": "1.0.0",
        "generatedAt": 1700000000000,
        "entries": [
            {"kind": "folder", "path": "assets"},
            {"kind": "file", "path": "assets/app.js", "size": 512, "hash": "..."}
        ]
    }
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Union

from ..exceptions import ManifestPersistFault, ManifestUnreadableFault

logger = logging.getLogger(__name__)

SYNC_FILE_DESCRIPTION = (
    "DO NOT DELETE THIS FILE. This file is used to keep track of which files "
    "have been synced in the most recent successful deploy. If you delete this "
    "file the next deploy will re-upload every file."
)
CURRENT_FORMAT_VERSION = "1.0.0"
SUPPORTED_FORMAT_VERSIONS = frozenset({CURRENT_FORMAT_VERSION})


def _now_millis() -> int:
    return int(time.time() * 1000)


class EntryKind(str, Enum):
    """Kind of a manifest entry."""

    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class Entry:
    """One file or folder below the synchronized root."""

    kind: EntryKind
    """File or folder"""

    path: str
    """Slash-separated path relative to the root"""

    size: Optional[int] = None
    """Size in bytes (files only)"""

    content_hash: Optional[str] = None
    """Content digest (files only)"""

    @classmethod
    def file(cls, path: str, size: int, content_hash: str) -> "Entry":
        return cls(EntryKind.FILE, path, size, content_hash)

    @classmethod
    def folder(cls, path: str) -> "Entry":
        return cls(EntryKind.FOLDER, path)

    @property
    def is_file(self) -> bool:
        return self.kind == EntryKind.FILE

    @property
    def is_folder(self) -> bool:
        return self.kind == EntryKind.FOLDER

    @property
    def depth(self) -> int:
        """Number of path segments ("a" is 1, "a/b" is 2)."""
        return len([part for part in self.path.split("/") if part])

    @property
    def byte_size(self) -> int:
        """Size counted in byte totals; folders count zero."""
        return (self.size or 0) if self.is_file else 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "path": self.path}
        if self.is_file:
            data["size"] = self.size
            data["hash"] = self.content_hash
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Entry":
        """Create an Entry from its JSON form.

        Raises:
            ManifestUnreadableFault: If the entry is malformed
        """
        if not isinstance(data, dict):
            raise ManifestUnreadableFault(f"Manifest entry is not an object: {data!r}")
        try:
            kind = EntryKind(data["kind"])
            path = data["path"]
        except (KeyError, ValueError) as e:
            raise ManifestUnreadableFault(f"Malformed manifest entry {data!r}") from e
        if not isinstance(path, str) or not path:
            raise ManifestUnreadableFault(f"Malformed manifest entry path {path!r}")
        if kind == EntryKind.FOLDER:
            return cls.folder(path)

        size = data.get("size")
        content_hash = data.get("hash")
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            raise ManifestUnreadableFault(f"Invalid size for {path}: {size!r}")
        if not isinstance(content_hash, str):
            raise ManifestUnreadableFault(f"Invalid hash for {path}: {content_hash!r}")
        return cls.file(path, size, content_hash)


class Manifest:
    """Versioned snapshot of the entries of a file tree.

    Entries are kept in insertion order and are unique by path; adding an
    entry for a path that already exists replaces it.
    """

    def __init__(
        self,
        entries: Iterable[Entry] = (),
        generated_at: Optional[int] = None,
        format_version: str = CURRENT_FORMAT_VERSION,
        description: str = SYNC_FILE_DESCRIPTION,
    ):
        self.format_version = format_version
        self.generated_at = generated_at if generated_at is not None else _now_millis()
        self.description = description
        self._entries: dict[str, Entry] = {}
        for entry in entries:
            self.upsert(entry)

    @classmethod
    def empty(cls) -> "Manifest":
        return cls()

    @property
    def entries(self) -> list[Entry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(list(self._entries.values()))

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"Manifest({len(self)} entries, generated_at={self.generated_at})"

    def touch(self) -> None:
        """Stamp the manifest with the current time."""
        self.generated_at = _now_millis()

    def get(self, path: str) -> Optional[Entry]:
        return self._entries.get(path)

    def by_path(self) -> dict[str, Entry]:
        return dict(self._entries)

    def upsert(self, entry: Entry) -> None:
        self._entries[entry.path] = entry

    def remove(self, path: str) -> Optional[Entry]:
        return self._entries.pop(path, None)

    def remove_tree(self, path: str) -> list[Entry]:
        """Remove a path and every entry below it."""
        prefix = path.rstrip("/") + "/"
        removed = [
            entry
            for entry in self._entries.values()
            if entry.path == path or entry.path.startswith(prefix)
        ]
        for entry in removed:
            del self._entries[entry.path]
        return removed

    def filter(self, keep) -> "Manifest":
        """Return a copy holding only the entries for which keep(entry) is true."""
        return Manifest(
            (entry for entry in self._entries.values() if keep(entry)),
            generated_at=self.generated_at,
            format_version=self.format_version,
            description=self.description,
        )

    @property
    def file_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.is_file)

    @property
    def folder_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.is_folder)

    @property
    def total_bytes(self) -> int:
        return sum(entry.byte_size for entry in self._entries.values())

    @property
    def generated_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.generated_at / 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "formatVersion": self.format_version,
            "generatedAt": self.generated_at,
            "entries": [entry.to_dict() for entry in self._entries.values()],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Manifest":
        """Decode a manifest, rejecting unknown versions and malformed content.

        Raises:
            ManifestUnreadableFault: If the manifest cannot be used as-is
        """
        if not isinstance(data, dict):
            raise ManifestUnreadableFault("Manifest is not a JSON object")

        version = data.get("formatVersion")
        if version not in SUPPORTED_FORMAT_VERSIONS:
            raise ManifestUnreadableFault(f"Unsupported manifest version: {version!r}")

        raw_entries = data.get("entries")
        if not isinstance(raw_entries, list):
            raise ManifestUnreadableFault("Manifest entries must be a list")

        generated_at = data.get("generatedAt")
        if not isinstance(generated_at, int) or isinstance(generated_at, bool):
            raise ManifestUnreadableFault(f"Invalid generatedAt: {generated_at!r}")

        entries = [Entry.from_dict(item) for item in raw_entries]
        seen: set[str] = set()
        for entry in entries:
            if entry.path in seen:
                raise ManifestUnreadableFault(f"Duplicate manifest path: {entry.path}")
            seen.add(entry.path)

        return cls(
            entries,
            generated_at=generated_at,
            format_version=version,
            description=str(data.get("description", SYNC_FILE_DESCRIPTION)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=4)

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "Manifest":
        """Decode a manifest document; bytes must be UTF-8."""
        if isinstance(text, bytes):
            try:
                text = text.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ManifestUnreadableFault(f"Manifest is not UTF-8: {e}") from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ManifestUnreadableFault(f"Manifest is not valid JSON: {e}") from e
        return cls.from_dict(data)


class ManifestStore:
    """Reads and writes the local checkpoint copy of a manifest."""

    def __init__(self, path: Path):
        """Initialize the store.

        Args:
            path: File the manifest checkpoint is written to
        """
        self.path = path

    def load(self) -> Optional[Manifest]:
        """Load the checkpoint.

        Returns:
            The manifest, or None if it is absent or unreadable
        """
        if not self.path.exists():
            logger.debug(f"No manifest checkpoint found at {self.path}")
            return None

        try:
            manifest = Manifest.from_json(self.path.read_bytes())
        except (OSError, ManifestUnreadableFault) as e:
            logger.warning(f"Failed to load manifest checkpoint: {e}")
            return None

        logger.debug(
            f"Loaded manifest checkpoint with {len(manifest)} entries "
            f"from {manifest.generated_datetime.isoformat()}"
        )
        return manifest

    def save(self, manifest: Manifest) -> None:
        """Write the checkpoint atomically.

        Raises:
            ManifestPersistFault: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(manifest.to_json())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ManifestPersistFault(
                f"Cannot write manifest checkpoint {self.path}: {e}"
            ) from e

        logger.debug(
            f"Saved manifest checkpoint with {len(manifest)} entries to {self.path}"
        )
