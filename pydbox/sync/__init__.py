"""Sync engine for pydbox - reconciliation between a local tree and Dropbox."""

from .engine import SyncEngine
from .operations import RemoteBackend, SyncOperations
from .pull import Pull
from .push import Push
from .reconciler import Reconciler
from .scanner import DirectoryScanner, LocalItem, RemoteItem
from .state import Entry, EntryIndex, RootMetadata

__all__ = [
    "SyncEngine",
    "SyncOperations",
    "RemoteBackend",
    "Reconciler",
    "Pull",
    "Push",
    "DirectoryScanner",
    "LocalItem",
    "RemoteItem",
    "Entry",
    "EntryIndex",
    "RootMetadata",
]
