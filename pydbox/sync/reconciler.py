"""Shared state and helpers of the Pull and Push reconcilers."""

import logging
import os
from typing import Optional, Union

from ..case_insensitive import CaseInsensitiveFS
from ..models import Changelist, FileMetadata
from ..utils import (
    in_scope,
    is_scope_ancestor,
    normalize_path,
    parent_path,
    parse_subdirs,
    relative_to_remote_path,
    remote_to_relative_path,
)
from .operations import RemoteBackend, SyncOperations
from .scanner import DirectoryScanner, RemoteItem
from .state import Entry, EntryIndex

logger = logging.getLogger(__name__)


class Reconciler:
    """Base class for one reconciliation pass over a managed directory.

    Args:
        index: Entry index of the managed directory
        client: Remote backend
        subdirs: Optional sub-scope, as a list or comma-separated string of
            directories relative to the root
        blacklisted_extensions: File extensions that are never synced
        fs: Case-insensitive filesystem facade
        dry_run: Compute and report the changes without applying them
    """

    def __init__(
        self,
        index: EntryIndex,
        client: RemoteBackend,
        subdirs: Optional[Union[str, list[str]]] = None,
        blacklisted_extensions: Optional[list[str]] = None,
        fs: Optional[CaseInsensitiveFS] = None,
        dry_run: bool = False,
    ):
        self.index = index
        self.dry_run = dry_run
        self.client = client
        self.fs = fs or CaseInsensitiveFS()
        self.subdirs = parse_subdirs(subdirs)
        self.scanner = DirectoryScanner(self.fs, blacklisted_extensions)
        self.operations = SyncOperations(client, self.fs)

    @property
    def local_root(self) -> str:
        return self.index.local_path

    @property
    def remote_root(self) -> str:
        return self.index.remote_path

    def execute(self) -> Changelist:
        """Run one pass.

        Index changes are written once, when the pass ends. A dry run
        leaves the index file untouched.

        Returns:
            Sorted and deduplicated changelist
        """
        with self.index.batch(commit=not self.dry_run):
            changes = self.run().sort()
        if self.dry_run:
            logger.info(
                "Dry run: %d to create, %d to update, %d to delete, %d to move",
                len(changes.created),
                len(changes.updated),
                len(changes.deleted),
                len(changes.moved),
            )
        return changes

    def run(self) -> Changelist:
        raise NotImplementedError

    # =========================
    # Paths
    # =========================

    def local_path(self, relative_path: str) -> str:
        """Local path of a relative path, resolved case-insensitively."""
        return self.fs.join(self.local_root, relative_path)

    def relative_local_path(self, local_path: str) -> str:
        return os.path.relpath(local_path, self.local_root).replace(os.sep, "/")

    def remote_path(self, relative_path: str) -> str:
        return relative_to_remote_path(self.remote_root, relative_path)

    def relative_remote_path(self, metadata: FileMetadata) -> str:
        return remote_to_relative_path(
            self.remote_root, metadata.path_display or metadata.path_lower
        )

    def in_scope(self, relative_path: str) -> bool:
        return in_scope(relative_path, self.subdirs)

    def may_delete_dir(self, relative_path: str) -> bool:
        """Directories leading up to the sub-scope are never deleted."""
        return self.in_scope(relative_path) and not is_scope_ancestor(
            relative_path, self.subdirs
        )

    # =========================
    # Remote listing and index
    # =========================

    def gather_remote(self) -> list[RemoteItem]:
        """Fetch and filter the recursive listing of the remote root."""
        listing = self.client.list_folder(self.remote_root or "/", recursive=True)
        items = self.scanner.filter_remote(listing, self.remote_root, self.subdirs)
        logger.debug(
            "Remote listing of %s: %d item(s) after filtering",
            self.remote_root or "/",
            len(items),
        )
        return items

    @staticmethod
    def entry_from_metadata(metadata: FileMetadata, relative_path: str) -> Entry:
        return Entry(
            id=metadata.id,
            path_lower=normalize_path(relative_path),
            path=relative_path,
            content_hash=metadata.content_hash,
            revision=metadata.rev,
            modified=metadata.server_modified,
        )

    def invalidate_parent(self, relative_path: str) -> None:
        """Force a full re-check of the directory containing ``relative_path``.

        Marking the entries below the parent directory stale disables the
        cached-hash shortcut for them on the next pull. Their revisions are
        kept, so a later push still uploads against the right revision.
        """
        parent = normalize_path(parent_path(relative_path))
        prefix = f"{parent}/" if parent else ""
        for entry in self.index.list_entries():
            if entry.path_lower.startswith(prefix) and not entry.stale:
                self.index.update_entry_by_path(entry.path, stale=True)
