"""Core sync engine for applying a change set to the server."""

import logging
import time
from pathlib import Path
from typing import Optional

from ..exceptions import FtpDeployError, ManifestPersistFault, NotFoundFault
from ..output import OutputFormatter
from ..transport import Transport
from ..utils import (
    DEFAULT_CHECKPOINT_INTERVAL,
    DEFAULT_STATE_NAME,
    Timings,
    format_size,
    pluralize,
)
from .comparator import ChangeAction, ChangeSet
from .manifest import Entry, Manifest, ManifestStore
from .resilience import ResiliencePolicy

logger = logging.getLogger(__name__)


def get_breadcrumbs(path: str) -> list[str]:
    """Split a relative path into its folder segments.

    Examples:
        >>> get_breadcrumbs("assets/img/icons")
        ['assets', 'img', 'icons']
        >>> get_breadcrumbs("/assets/")
        ['assets']
    """
    return [segment for segment in path.split("/") if segment]


def absolute_remote_path(server_dir: str, path: str) -> str:
    """Resolve a path below the remote root to a slash-rooted path.

    A root of ``.`` or ``./relative`` is treated as relative to ``/``.

    Examples:
        >>> absolute_remote_path("./", "old")
        '/old'
        >>> absolute_remote_path("./public/", "old/sub")
        '/public/old/sub'
        >>> absolute_remote_path("/www/site/", "old")
        '/www/site/old'
    """
    root = server_dir
    if root in (".", "./"):
        root = ""
    elif root.startswith("./"):
        root = root[2:]
    root = root.strip("/")
    prefix = f"/{root}/" if root else "/"
    return prefix + path.strip("/")


class SyncEngine:
    """Applies a change set to the server one operation at a time.

    The engine owns the in-memory copy of the remote manifest. Every
    applied operation is recorded in it immediately, and every
    ``checkpoint_interval`` operations the manifest is written to the local
    checkpoint file and uploaded to the server.
    """

    def __init__(
        self,
        resilience: ResiliencePolicy,
        manifest: Manifest,
        store: ManifestStore,
        local_dir: Path,
        server_dir: str = "./",
        state_name: str = DEFAULT_STATE_NAME,
        dry_run: bool = False,
        output: Optional[OutputFormatter] = None,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        timings: Optional[Timings] = None,
    ):
        """Initialize sync engine.

        Args:
            resilience: Policy running every remote call
            manifest: Remote baseline, updated as operations succeed
            store: Local checkpoint store
            local_dir: Local root the change set refers to
            server_dir: Remote root as configured
            state_name: Manifest file name on the server
            dry_run: If True, log every operation but change nothing
            output: Output formatter for displaying progress/status
            checkpoint_interval: Operations between checkpoints
            timings: Phase timings to record directory changes in
        """
        if checkpoint_interval < 1:
            raise ValueError("checkpoint_interval must be at least 1")
        self.resilience = resilience
        self.manifest = manifest
        self.store = store
        self.local_dir = local_dir
        self.server_dir = server_dir
        self.state_name = state_name
        self.dry_run = dry_run
        self.output = output or OutputFormatter()
        self.checkpoint_interval = checkpoint_interval
        self.timings = timings or Timings()
        self.operations_count = 0
        self.stats = self._create_empty_stats()

    def _create_empty_stats(self) -> dict:
        return {
            "folders_created": 0,
            "files_uploaded": 0,
            "files_replaced": 0,
            "files_deleted": 0,
            "folders_deleted": 0,
            "bytes_uploaded": 0,
            "bytes_replaced": 0,
            "bytes_deleted": 0,
        }

    def sync_local_to_server(self, change_set: ChangeSet) -> dict:
        """Apply a change set and publish the final manifest.

        Args:
            change_set: Operations to apply

        Returns:
            Dictionary with applied counts and byte totals

        Raises:
            FtpDeployError: On the first unrecoverable fault, after a
                best-effort checkpoint of the work done so far
        """
        stats = self.apply_changes(change_set)
        self.finish()
        return stats

    def finish(self) -> None:
        """Write the final checkpoint after a successful apply."""
        self.output.separator()
        self.output.success(
            f"Sync complete. Saving current server state to "
            f'"{self.server_dir}{self.state_name}"'
        )
        self.checkpoint()

    def apply_changes(self, change_set: ChangeSet) -> dict:
        """Apply every operation in order, checkpointing periodically.

        Order: create folders (parents first), upload new files, replace
        changed files, delete files, delete folders (children first).
        """
        total = change_set.total_operations
        self.output.separator()
        self.output.info(
            f"Making changes to {total} "
            f"{pluralize(total, 'file/folder', 'files/folders')} to sync server state"
        )
        self.output.info(
            f"Uploading: {format_size(change_set.bytes_to_upload)} -- "
            f"Deleting: {format_size(change_set.bytes_to_delete)} -- "
            f"Replacing: {format_size(change_set.bytes_to_replace)}"
        )
        if self.dry_run:
            self.output.info("Dry run: No changes will be made")
        self.output.separator()

        try:
            for action, entry in change_set.operations():
                if entry.path == self.state_name:
                    logger.debug(f"Skipping state file {entry.path}")
                    continue
                self._apply(action, entry)
                self.operations_count += 1
                if self.operations_count % self.checkpoint_interval == 0:
                    self.checkpoint()
        except Exception as e:
            logger.debug(f"Sync aborted after {self.operations_count} operations: {e}")
            self._checkpoint_best_effort()
            raise

        return self.stats

    def _apply(self, action: ChangeAction, entry: Entry) -> None:
        if action == ChangeAction.CREATE_FOLDER:
            self.create_folder(entry)
        elif action == ChangeAction.UPLOAD:
            self.upload_file(entry)
        elif action == ChangeAction.REPLACE:
            self.upload_file(entry, replace=True)
        elif action == ChangeAction.DELETE_FILE:
            self.remove_file(entry)
        elif action == ChangeAction.DELETE_FOLDER:
            self.remove_folder(entry)

    def _remove_stale_kind(self, entry: Entry) -> None:
        """Delete a remote entry of the other kind at the same path."""
        existing = self.manifest.get(entry.path)
        if existing is None or existing.kind == entry.kind:
            return
        logger.debug(
            f"{entry.path} changed from {existing.kind.value} to {entry.kind.value}"
        )
        if existing.is_file:
            self.remove_file(existing)
        else:
            self.remove_folder(existing)

    def _enter_and_return(self, transport: Transport, segments: list[str]) -> None:
        entered = 0
        try:
            for segment in segments:
                transport.ensure_dir(segment)
                entered += 1
        finally:
            # Back to the base directory every other operation is relative to,
            # also when a segment failed and the walk is retried
            if entered:
                transport.cdup(entered)

    def create_folder(self, entry: Entry) -> None:
        self._remove_stale_kind(entry)
        self.output.info(f"  + Creating folder: {entry.path}/")

        if not self.dry_run:
            segments = get_breadcrumbs(entry.path)
            self.timings.start("changingDir")
            try:
                self.resilience.call(
                    f"create folder {entry.path}",
                    lambda transport: self._enter_and_return(transport, segments),
                )
            finally:
                self.timings.stop("changingDir")

        self.manifest.upsert(entry)
        self.stats["folders_created"] += 1
        logger.debug(f"  completed creating {entry.path}")

    def upload_file(self, entry: Entry, replace: bool = False) -> None:
        self._remove_stale_kind(entry)
        verb = "replace" if replace else "upload"
        symbol = "~" if replace else "↑"
        self.output.info(f"  {symbol} {verb.capitalize()}: {entry.path}")

        if not self.dry_run:
            local_path = self.local_dir / entry.path
            action_start = time.time()
            self.resilience.call(
                f"{verb} {entry.path}",
                lambda transport: transport.upload(local_path, entry.path),
            )
            logger.debug(
                f"{verb.capitalize()} of {entry.path} took "
                f"{time.time() - action_start:.2f}s"
            )

        self.manifest.upsert(entry)
        if replace:
            self.stats["files_replaced"] += 1
            self.stats["bytes_replaced"] += entry.byte_size
        else:
            self.stats["files_uploaded"] += 1
            self.stats["bytes_uploaded"] += entry.byte_size

    def remove_file(self, entry: Entry) -> None:
        if entry.path not in self.manifest:
            logger.debug(f"{entry.path} already removed with its folder")
            return

        self.output.info(f"  ✗ Delete: {entry.path}")

        if not self.dry_run:
            try:
                self.resilience.call(
                    f"remove {entry.path}",
                    lambda transport: transport.remove_file(entry.path),
                )
            except NotFoundFault:
                self.output.info(
                    "    File not found or you don't have access to the file "
                    "- skipping..."
                )

        self.manifest.remove(entry.path)
        self.stats["files_deleted"] += 1
        self.stats["bytes_deleted"] += entry.byte_size

    def remove_folder(self, entry: Entry) -> None:
        if entry.path not in self.manifest:
            logger.debug(f"{entry.path} already removed with its parent folder")
            return

        absolute_path = absolute_remote_path(self.server_dir, entry.path)
        self.output.info(f"  ✗ Delete folder: {absolute_path}")

        if not self.dry_run:
            self.resilience.call(
                f"remove folder {absolute_path}",
                lambda transport: transport.remove_dir_recursive(absolute_path),
            )

        self.manifest.remove_tree(entry.path)
        self.stats["folders_deleted"] += 1

    def checkpoint(self) -> None:
        """Persist the manifest locally, then publish it to the server.

        Raises:
            ManifestPersistFault: If either write fails
        """
        if self.dry_run:
            return

        self.manifest.touch()
        self.store.save(self.manifest)
        try:
            self.resilience.call(
                f"upload manifest {self.state_name}",
                lambda transport: transport.upload(self.store.path, self.state_name),
            )
        except FtpDeployError as e:
            raise ManifestPersistFault(
                f"Failed to upload manifest {self.state_name}: {e}"
            ) from e
        logger.debug(
            f"State file {self.state_name} uploaded to the server after "
            f"{self.operations_count} operations"
        )

    def _checkpoint_best_effort(self) -> None:
        """Checkpoint on the error path; failures are reported, not raised."""
        try:
            self.checkpoint()
        except FtpDeployError as e:
            self.output.warning(f"Failed to save sync state after error: {e}")
