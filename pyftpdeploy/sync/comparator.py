"""Manifest comparison for deploys.

The diff is a pure function of the local and the remote manifest: every
path of either side lands in exactly one bucket of the resulting
:class:`ChangeSet`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .manifest import Entry, Manifest


class ChangeAction(str, Enum):
    """Remote operations a change set is made of, in apply order."""

    CREATE_FOLDER = "create_folder"
    """Create a folder that only exists locally"""

    UPLOAD = "upload"
    """Upload a file that only exists locally"""

    REPLACE = "replace"
    """Upload a file whose content changed"""

    DELETE_FILE = "delete_file"
    """Delete a file that no longer exists locally"""

    DELETE_FOLDER = "delete_folder"
    """Delete a folder that no longer exists locally"""


@dataclass
class ChangeSet:
    """Partition of all local and remote paths into operations."""

    to_create_folder: list[Entry] = field(default_factory=list)
    """Folders to create, parents before children"""

    to_upload: list[Entry] = field(default_factory=list)
    """New files"""

    to_replace: list[Entry] = field(default_factory=list)
    """Changed files (local entries)"""

    to_delete: list[Entry] = field(default_factory=list)
    """Remote entries without local counterpart; files first, then folders
    with children before parents"""

    unchanged: list[Entry] = field(default_factory=list)

    @property
    def files_to_delete(self) -> list[Entry]:
        return [entry for entry in self.to_delete if entry.is_file]

    @property
    def folders_to_delete(self) -> list[Entry]:
        return [entry for entry in self.to_delete if entry.is_folder]

    @property
    def bytes_to_upload(self) -> int:
        return sum(entry.byte_size for entry in self.to_upload)

    @property
    def bytes_to_replace(self) -> int:
        return sum(entry.byte_size for entry in self.to_replace)

    @property
    def bytes_to_delete(self) -> int:
        return sum(entry.byte_size for entry in self.to_delete)

    @property
    def total_operations(self) -> int:
        return (
            len(self.to_create_folder)
            + len(self.to_upload)
            + len(self.to_replace)
            + len(self.to_delete)
        )

    @property
    def is_empty(self) -> bool:
        return self.total_operations == 0

    def operations(self) -> list[tuple[ChangeAction, Entry]]:
        """Return every operation in apply order."""
        ops: list[tuple[ChangeAction, Entry]] = []
        ops.extend((ChangeAction.CREATE_FOLDER, e) for e in self.to_create_folder)
        ops.extend((ChangeAction.UPLOAD, e) for e in self.to_upload)
        ops.extend((ChangeAction.REPLACE, e) for e in self.to_replace)
        ops.extend((ChangeAction.DELETE_FILE, e) for e in self.files_to_delete)
        ops.extend((ChangeAction.DELETE_FOLDER, e) for e in self.folders_to_delete)
        return ops

    def to_dict(self) -> dict:
        return {
            "create_folder": [e.path for e in self.to_create_folder],
            "upload": [e.path for e in self.to_upload],
            "replace": [e.path for e in self.to_replace],
            "delete": [e.path for e in self.to_delete],
            "unchanged": len(self.unchanged),
            "bytes_to_upload": self.bytes_to_upload,
            "bytes_to_replace": self.bytes_to_replace,
            "bytes_to_delete": self.bytes_to_delete,
        }


class DiffEngine:
    """Compares a local manifest against the remote baseline.

    Files are compared by content hash only; folders that exist on both
    sides are always unchanged. Renames show up as a delete plus an upload.
    """

    def get_diffs(self, local: Manifest, remote: Manifest) -> ChangeSet:
        """Classify every path of local and remote.

        Args:
            local: Manifest of the local tree
            remote: Baseline manifest of the remote side

        Returns:
            ChangeSet with ordered buckets
        """
        local_entries = local.by_path()
        remote_entries = remote.by_path()
        changes = ChangeSet()

        for path in sorted(set(local_entries) | set(remote_entries)):
            self._classify(
                changes, local_entries.get(path), remote_entries.get(path)
            )

        changes.to_create_folder.sort(key=lambda e: (e.depth, e.path))
        changes.to_delete.sort(key=_delete_order)
        return changes

    def _classify(
        self,
        changes: ChangeSet,
        local_entry: Optional[Entry],
        remote_entry: Optional[Entry],
    ) -> None:
        if local_entry is None:
            if remote_entry is not None:
                changes.to_delete.append(remote_entry)
            return

        if remote_entry is None or remote_entry.kind != local_entry.kind:
            # A path that changed kind is recreated from the local side
            if local_entry.is_folder:
                changes.to_create_folder.append(local_entry)
            else:
                changes.to_upload.append(local_entry)
            return

        if local_entry.is_folder:
            changes.unchanged.append(local_entry)
        elif local_entry.content_hash != remote_entry.content_hash:
            changes.to_replace.append(local_entry)
        else:
            changes.unchanged.append(local_entry)


def _delete_order(entry: Entry) -> tuple:
    # Files first, then folders deepest first
    if entry.is_file:
        return (0, 0, entry.path)
    return (1, -entry.depth, entry.path)
