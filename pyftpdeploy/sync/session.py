"""Deploy session: from local scan to published manifest.

A session walks through a fixed sequence of states::

    IDLE -> CONNECTING -> ENSURING_MANIFEST -> FETCHING_BASELINE -> DIFFING
         -> APPLYING -> CHECKPOINTING -> CLOSED

A fault before DIFFING is fatal right away. A fault while APPLYING moves
the session to ABORTING (the engine has already tried to checkpoint) and
then to CLOSED before the fault is re-raised.
"""

import logging
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn

from ..config import DeployConfig, LogLevel
from ..exceptions import ManifestUnreadableFault, NotFoundFault
from ..output import OutputFormatter
from ..transport import FTPTransport, Transport
from ..utils import Timings, format_number, format_size
from .comparator import ChangeSet, DiffEngine
from .engine import SyncEngine
from .manifest import Manifest, ManifestStore
from .resilience import ResiliencePolicy
from .scanner import LocalScanner, is_excluded

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of a deploy session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    ENSURING_MANIFEST = "ensuring_manifest"
    FETCHING_BASELINE = "fetching_baseline"
    DIFFING = "diffing"
    APPLYING = "applying"
    CHECKPOINTING = "checkpointing"
    ABORTING = "aborting"
    CLOSED = "closed"


@dataclass
class DeployResult:
    """Outcome of a deploy run."""

    change_set: ChangeSet
    stats: dict
    dry_run: bool
    timings: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "changes": self.change_set.to_dict(),
            "applied": dict(self.stats),
            "timings": dict(self.timings),
        }


def _default_transport_factory(config: DeployConfig) -> Callable[[], Transport]:
    def connect() -> Transport:
        transport = FTPTransport.from_config(config)
        transport.connect()
        return transport

    return connect


class DeploySession:
    """Runs one deploy of ``config.local_dir`` to ``config.server_dir``."""

    def __init__(
        self,
        config: DeployConfig,
        transport_factory: Optional[Callable[[], Transport]] = None,
        output: Optional[OutputFormatter] = None,
        resilience: Optional[ResiliencePolicy] = None,
        timings: Optional[Timings] = None,
    ):
        """Initialize a deploy session.

        Args:
            config: Validated run configuration
            transport_factory: Returns a new connected transport; defaults
                to an FTPTransport built from config
            output: Output formatter for displaying progress/status
            resilience: Retry policy; built around transport_factory if omitted
            timings: Phase timings
        """
        self.config = config
        self.output = output or OutputFormatter(
            quiet=config.log_level == LogLevel.MINIMAL
        )
        self.resilience = resilience or ResiliencePolicy(
            transport_factory or _default_transport_factory(config)
        )
        self.timings = timings or Timings()
        self.store = ManifestStore(config.state_path)
        self.state = SessionState.IDLE

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"Session state: {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> DeployResult:
        """Run the whole deploy.

        Returns:
            DeployResult with the computed change set and applied stats

        Raises:
            FtpDeployError: On any unrecoverable fault
        """
        config = self.config
        self.timings.start("total")
        try:
            self.output.separator()
            self.output.info(
                f"Deploying {config.local_dir} to {config.server}:{config.server_dir}"
            )
            logger.debug(f"Using the following exclude filters: {config.exclude}")

            self.timings.start("hash")
            local = self.scan_local()
            self.timings.stop("hash")

            self._transition(SessionState.CONNECTING)
            self.timings.start("connecting")
            self.resilience.open()
            self.timings.stop("connecting")

            if config.dangerous_clean_slate:
                self.clean_slate()

            self._transition(SessionState.ENSURING_MANIFEST)
            self.ensure_manifest_exists()

            self._transition(SessionState.FETCHING_BASELINE)
            if config.dangerous_clean_slate:
                # Nothing survives the wipe, dry run or not
                baseline = Manifest.empty()
            else:
                baseline = self.fetch_baseline()

            self._transition(SessionState.DIFFING)
            self.timings.start("logging")
            change_set = DiffEngine().get_diffs(local, baseline)
            self._display_plan(local, baseline, change_set)
            self.timings.stop("logging")

            engine = SyncEngine(
                resilience=self.resilience,
                manifest=baseline,
                store=self.store,
                local_dir=config.local_dir,
                server_dir=config.server_dir,
                state_name=config.state_name,
                dry_run=config.dry_run,
                output=self.output,
                timings=self.timings,
            )

            self._transition(SessionState.APPLYING)
            self.timings.start("upload")
            try:
                stats = engine.apply_changes(change_set)
                self._transition(SessionState.CHECKPOINTING)
                engine.finish()
            except Exception:
                self._transition(SessionState.ABORTING)
                raise
            finally:
                self.timings.stop("upload")
        finally:
            self.resilience.close()
            self._transition(SessionState.CLOSED)
            self.timings.stop("total")

        result = DeployResult(
            change_set=change_set,
            stats=stats,
            dry_run=config.dry_run,
            timings=self.timings.to_dict(),
        )
        if not self.output.quiet:
            self._display_summary(result)
        return result

    def _display_summary(self, result: DeployResult) -> None:
        stats = result.stats
        self.output.print("")
        if result.dry_run:
            self.output.success("Dry run complete!")
        else:
            self.output.success("Deploy complete!")

        total_actions = (
            stats["folders_created"]
            + stats["files_uploaded"]
            + stats["files_replaced"]
            + stats["files_deleted"]
            + stats["folders_deleted"]
        )
        if total_actions > 0:
            self.output.info(f"Total actions: {total_actions}")
            if stats["folders_created"] > 0:
                self.output.info(f"  Folders created: {stats['folders_created']}")
            if stats["files_uploaded"] > 0:
                self.output.info(
                    f"  Uploaded: {stats['files_uploaded']} "
                    f"({format_size(stats['bytes_uploaded'])})"
                )
            if stats["files_replaced"] > 0:
                self.output.info(
                    f"  Replaced: {stats['files_replaced']} "
                    f"({format_size(stats['bytes_replaced'])})"
                )
            if stats["files_deleted"] > 0:
                self.output.info(
                    f"  Deleted: {stats['files_deleted']} "
                    f"({format_size(stats['bytes_deleted'])})"
                )
            if stats["folders_deleted"] > 0:
                self.output.info(f"  Folders deleted: {stats['folders_deleted']}")
        else:
            self.output.info("No changes needed - everything is in sync!")

        timings = self.timings
        upload_seconds = timings.get_time("upload")
        transferred = stats["bytes_uploaded"] + stats["bytes_replaced"]
        speed = transferred / upload_seconds if upload_seconds > 0 else 0
        self.output.separator()
        self.output.info(f"Time spent hashing: {timings.get_time_formatted('hash')}")
        self.output.info(
            f"Time spent connecting to server: "
            f"{timings.get_time_formatted('connecting')}"
        )
        self.output.info(
            f"Time spent deploying: {timings.get_time_formatted('upload')} "
            f"({format_size(speed)}/second)"
        )
        self.output.info(
            f"  - changing dirs: {timings.get_time_formatted('changingDir')}"
        )
        self.output.info(f"  - logging: {timings.get_time_formatted('logging')}")
        self.output.separator()
        self.output.info(f"Total time: {timings.get_time_formatted('total')}")
        self.output.separator()

    def scan_local(self) -> Manifest:
        """Hash the local tree into a manifest."""
        scanner = LocalScanner(
            exclude=self.config.exclude, state_name=self.config.state_name
        )
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.quiet or self.output.json_output,
        ) as progress:
            task = progress.add_task("Scanning local directory...", total=None)
            local = scanner.scan(self.config.local_dir)
            progress.update(
                task, description=f"Found {local.file_count} local file(s)"
            )
        return local

    def clean_slate(self) -> None:
        """Remove everything below the remote root."""
        self.output.separator()
        self.output.warning(
            "Removing all files on the server because 'dangerous-clean-slate' "
            "was set, this will make the deployment very slow..."
        )
        if not self.config.dry_run:
            self.resilience.call(
                "clear remote directory",
                lambda transport: transport.clear_working_dir(),
            )
        self.output.info("Clear complete")

    def ensure_manifest_exists(self) -> None:
        """Publish an empty manifest if the server has none yet."""
        state_name = self.config.state_name
        remote_path = f"{self.config.server_dir}{state_name}"
        names = self.resilience.call(
            f"list {self.config.server_dir}",
            lambda transport: transport.list_names(),
        )
        if state_name in names:
            logger.debug(f'State file "{remote_path}" already exists')
            return

        self.output.info(f'State file "{remote_path}" does not exist. Creating it...')
        if self.config.dry_run:
            return

        self.store.save(Manifest.empty())
        self.resilience.call(
            f"upload manifest {state_name}",
            lambda transport: transport.upload(self.store.path, state_name),
        )
        logger.debug(f'State file "{remote_path}" has been created on the server')

    def fetch_baseline(self) -> Manifest:
        """Download and decode the remote manifest.

        An absent or unreadable manifest yields an empty baseline.
        """
        state_name = self.config.state_name
        try:
            with tempfile.TemporaryDirectory() as tmpdir:
                buffer = Path(tmpdir) / state_name
                self.resilience.call(
                    f"download manifest {state_name}",
                    lambda transport: transport.download(state_name, buffer),
                )
                baseline = Manifest.from_json(buffer.read_bytes())
        except (NotFoundFault, ManifestUnreadableFault, OSError) as e:
            logger.debug(f"No usable remote manifest: {e}")
            self.output.separator()
            self.output.info(
                f'No file exists on the server "{self.config.server_dir}{state_name}" '
                "- this must be your first publish!"
            )
            self.output.info(
                "The first publish will take a while... but once the initial sync "
                "is done only differences are published!"
            )
            self.output.info(
                "If you get this message and its NOT your first publish, "
                "something is wrong."
            )
            return Manifest.empty()

        self.output.separator()
        self.output.info(
            f"Last published on {baseline.generated_datetime:%A, %B %d, %Y %H:%M}"
        )

        exclude = self.config.exclude
        return baseline.filter(
            lambda entry: entry.path != state_name
            and not is_excluded(entry.path, exclude, is_dir=entry.is_folder)
        )

    def _display_plan(
        self, local: Manifest, baseline: Manifest, change_set: ChangeSet
    ) -> None:
        if self.output.quiet:
            return

        verbose = self.config.log_level == LogLevel.VERBOSE
        self.output.separator()
        self.output.info(f"Local Files:\t{format_number(len(local))}")
        self.output.info(f"Server Files:\t{format_number(len(baseline))}")
        self.output.separator()
        self.output.info("Sync plan:")
        for entry in change_set.to_create_folder:
            self.output.info(f"  + Create: {entry.path}/")
        for entry in change_set.to_upload:
            self.output.info(f"  ↑ Upload: {entry.path}")
        for entry in change_set.to_replace:
            self.output.info(f"  ~ File replace: {entry.path}")
        for entry in change_set.files_to_delete:
            self.output.info(f"  ✗ Delete: {entry.path}")
        for entry in change_set.folders_to_delete:
            self.output.info(f"  ✗ Delete folder: {entry.path}/")
        if verbose:
            for entry in change_set.unchanged:
                if entry.is_file:
                    self.output.info(
                        f"  = File content is the same, doing nothing: {entry.path}"
                    )
        self.output.info(
            f"Upload: {format_size(change_set.bytes_to_upload)}, "
            f"replace: {format_size(change_set.bytes_to_replace)}, "
            f"delete: {format_size(change_set.bytes_to_delete)}"
        )
