"""Local directory scanning for deploys."""

import fnmatch
import hashlib
import logging
from pathlib import Path
from typing import Optional

from ..utils import HASH_CHUNK_SIZE
from .manifest import Entry, Manifest

logger = logging.getLogger(__name__)


def hash_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def matches_pattern(relative_path: str, pattern: str, is_dir: bool = False) -> bool:
    """Check a relative path against a glob pattern.

    A leading ``**/`` also matches at the root, and folders are matched both
    as ``name`` and ``name/`` so that ``**/node_modules/**`` excludes the
    folder itself.

    Examples:
        >>> matches_pattern(".gitignore", "**/.git*")
        True
        >>> matches_pattern("web/node_modules", "**/node_modules/**", is_dir=True)
        True
        >>> matches_pattern("src/app.py", "*.log")
        False
    """
    candidates = [relative_path]
    if is_dir:
        candidates.append(relative_path + "/")

    patterns = [pattern]
    while patterns[-1].startswith("**/"):
        patterns.append(patterns[-1][3:])

    return any(
        fnmatch.fnmatchcase(candidate, candidate_pattern)
        for candidate in candidates
        for candidate_pattern in patterns
    )


def is_excluded(relative_path: str, patterns: list[str], is_dir: bool = False) -> bool:
    return any(matches_pattern(relative_path, p, is_dir=is_dir) for p in patterns)


class LocalScanner:
    """Builds a manifest of a local directory tree.

    Examples:
        >>> scanner = LocalScanner(exclude=["*.tmp", "cache/**"])
        >>> manifest = scanner.scan(Path("./dist"))
    """

    def __init__(
        self,
        exclude: Optional[list[str]] = None,
        state_name: Optional[str] = None,
    ):
        """Initialize local scanner.

        Args:
            exclude: Glob patterns of paths to leave out (e.g. ["*.log", "tmp/**"])
            state_name: Manifest file name at the root, never part of the scan
        """
        self.exclude = exclude or []
        self.state_name = state_name

    def should_ignore(self, relative_path: str, is_dir: bool = False) -> bool:
        if self.state_name and relative_path == self.state_name:
            return True
        if self.exclude and is_excluded(relative_path, self.exclude, is_dir=is_dir):
            logger.debug(f"Ignoring (excluded): {relative_path}")
            return True
        return False

    def scan(self, directory: Path) -> Manifest:
        """Recursively scan a directory and hash every file.

        Folders appear before their contents; siblings are sorted by name.

        Args:
            directory: Root of the tree to publish

        Returns:
            Manifest of the local tree
        """
        manifest = Manifest()
        self._scan_directory(directory, directory, manifest)
        logger.debug(
            f"Scanned {directory}: {manifest.file_count} file(s), "
            f"{manifest.folder_count} folder(s)"
        )
        return manifest

    def _scan_directory(
        self, directory: Path, base_path: Path, manifest: Manifest
    ) -> None:
        for item in sorted(directory.iterdir(), key=lambda p: p.name):
            relative_path = item.relative_to(base_path).as_posix()
            is_dir = item.is_dir()
            if self.should_ignore(relative_path, is_dir=is_dir):
                continue

            if is_dir:
                manifest.upsert(Entry.folder(relative_path))
                self._scan_directory(item, base_path, manifest)
            elif item.is_file():
                manifest.upsert(
                    Entry.file(relative_path, item.stat().st_size, hash_file(item))
                )
