"""Utility functions and constants for pyftpdeploy."""

import time
from typing import Callable, Optional

# =============================================================================
# Constants for sync operations
# =============================================================================

# Name of the manifest file kept at the root of the remote target
DEFAULT_STATE_NAME: str = ".ftp-deploy-sync-state.json"

# Exclude patterns applied when none are configured
DEFAULT_EXCLUDE: tuple[str, ...] = (
    "**/.git*",
    "**/.git*/**",
    "**/node_modules/**",
)

# Retry configuration for remote operations
DEFAULT_MAX_ATTEMPTS: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Send a keep-alive probe when the control channel was idle this long
DEFAULT_KEEPALIVE_INTERVAL: float = 5.0  # seconds

# Checkpoint the remote manifest every N applied operations
DEFAULT_CHECKPOINT_INTERVAL: int = 5

# Default FTP connection settings
DEFAULT_PORT: int = 21
DEFAULT_TIMEOUT: float = 30.0  # seconds

# Chunk size used when hashing local files
HASH_CHUNK_SIZE: int = 1024 * 1024


# =============================================================================
# Formatting utilities
# =============================================================================


def format_size(size_bytes: float) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{int(size_bytes)} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


def format_number(value: int) -> str:
    """Format an integer with thousands separators.

    Examples:
        >>> format_number(1234567)
        '1,234,567'
    """
    return f"{value:,}"


def pluralize(count: int, singular: str, plural: str) -> str:
    """Pick the singular or plural form for a count.

    Examples:
        >>> pluralize(1, "file", "files")
        'file'
        >>> pluralize(0, "file", "files")
        'files'
    """
    return singular if count == 1 else plural


# =============================================================================
# Timing utilities
# =============================================================================


class Timings:
    """Accumulates wall-clock time spent in named phases.

    A phase may be started and stopped several times; the durations add up.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._started: dict[str, float] = {}
        self._totals: dict[str, float] = {}

    def start(self, name: str) -> None:
        self._started[name] = self._clock()

    def stop(self, name: str) -> None:
        started = self._started.pop(name, None)
        if started is None:
            return
        self._totals[name] = self._totals.get(name, 0.0) + (self._clock() - started)

    def get_time(self, name: str) -> float:
        """Return the accumulated seconds for a phase (0.0 if never run)."""
        return self._totals.get(name, 0.0)

    def get_time_formatted(self, name: str) -> str:
        seconds = self.get_time(name)
        if seconds < 1:
            return f"{seconds * 1000:.0f}ms"
        if seconds < 60:
            return f"{seconds:.2f}s"
        minutes, rest = divmod(seconds, 60)
        return f"{int(minutes)}m {rest:.0f}s"

    def to_dict(self) -> dict[str, float]:
        return {name: round(value, 3) for name, value in self._totals.items()}
