"""Sync engine for pyftpdeploy - incremental publishing of a local tree."""

from .comparator import ChangeAction, ChangeSet, DiffEngine
from .engine import SyncEngine
from .manifest import (
    CURRENT_FORMAT_VERSION,
    Entry,
    EntryKind,
    Manifest,
    ManifestStore,
)
from .resilience import ResiliencePolicy
from .scanner import LocalScanner
from .session import DeployResult, DeploySession, SessionState

__all__ = [
    "SyncEngine",
    "DeploySession",
    "DeployResult",
    "SessionState",
    "DiffEngine",
    "ChangeSet",
    "ChangeAction",
    "Entry",
    "EntryKind",
    "Manifest",
    "ManifestStore",
    "CURRENT_FORMAT_VERSION",
    "ResiliencePolicy",
    "LocalScanner",
]
