"""Pull reconciler: converges the local tree onto the remote tree."""

import logging
import os
from dataclasses import replace
from typing import Optional

from ..exceptions import AmbiguousCollisionError, DboxError
from ..models import Changelist, FileMetadata
from ..utils import content_hash_file, find_nonconflicting_path, times_equal
from .reconciler import Reconciler
from .scanner import RemoteItem
from .state import Entry

logger = logging.getLogger(__name__)


class Pull(Reconciler):
    """Download remote changes into the managed directory.

    The index is maintained incrementally: each successfully pulled file
    is upserted right away, and entries are dropped once the file they
    track has been deleted remotely.

    Examples:
        >>> index = EntryIndex.load("/home/me/docs")
        >>> changes = Pull(index, client).execute()
        >>> changes.created
        ['notes/todo.txt']
    """

    def run(self) -> Changelist:
        changes = Changelist()
        if not self.dry_run:
            removed = self.operations.remove_tmpfiles(self.local_root)
            if removed:
                logger.info("Removed %d abandoned download(s)", removed)

        remote_items = self.gather_remote()
        self._backfill_ids(remote_items)

        for item in remote_items:
            if item.is_dir:
                self._pull_folder(item, changes)
            else:
                self._pull_file(item, changes)

        self._delete_files(remote_items, changes)
        self._delete_dirs(remote_items, changes)
        return changes

    def _backfill_ids(self, remote_items: list[RemoteItem]) -> None:
        """Attach remote identifiers to entries that were stored without one."""
        by_path = {item.path_lower: item for item in remote_items if not item.is_dir}
        for entry in self.index.list_entries():
            if entry.id is not None:
                continue
            item = by_path.get(entry.path_lower)
            if item is None or self.index.find_by_id(item.metadata.id) is not None:
                continue
            logger.debug("Backfilling id of %s", entry.path)
            self.index.update_entry_by_path(entry.path, id=item.metadata.id)

    def _pull_folder(self, item: RemoteItem, changes: Changelist) -> None:
        local = self.local_path(item.relative_path)
        if self.fs.isdir(local):
            return
        try:
            if not self.dry_run:
                self.fs.makedirs(local)
        except OSError as e:
            logger.error("Failed to create directory %s: %s", item.relative_path, e)
            changes.add_failure("create", item.relative_path, e)
            return
        logger.info("Created directory %s", item.relative_path)
        changes.created.append(item.relative_path)

    def _pull_file(self, item: RemoteItem, changes: Changelist) -> None:
        metadata: FileMetadata = item.metadata  # type: ignore[assignment]
        entry = self.index.find_by_id(metadata.id) or self.index.find_by_path(
            item.relative_path
        )
        operation = "create" if entry is None else "update"
        try:
            local = None
            if entry is not None:
                entry, local = self._follow_move(entry, item, changes)
            self._update_file(metadata, item.relative_path, entry, changes, local)
        except AmbiguousCollisionError:
            raise
        except (DboxError, OSError) as e:
            logger.exception("Failed to pull %s", item.relative_path)
            changes.add_failure(operation, item.relative_path, e)
            self.invalidate_parent(item.relative_path)

    def _follow_move(
        self, entry: Entry, item: RemoteItem, changes: Changelist
    ) -> tuple[Entry, Optional[str]]:
        """Move the local copy of a file that was renamed remotely.

        A case-only rename is a move as well.

        Returns:
            The entry, rekeyed to the new path, and the local path now
            holding the file (None when nothing was moved)
        """
        if entry.path == item.relative_path:
            return entry, None

        old_local = self.local_path(entry.path)
        if not self.fs.isfile(old_local):
            return entry, None

        destination = os.path.join(self.local_root, item.relative_path)
        if self.dry_run:
            moved_to = old_local
        else:
            try:
                moved_to = self.fs.move(old_local, destination)
            except FileExistsError:
                logger.debug(
                    "Not moving %s: %s is occupied", entry.path, item.relative_path
                )
                return entry, None

        logger.info("Moved %s to %s", entry.path, item.relative_path)
        changes.add_move(entry.path, item.relative_path)
        moved = replace(entry, path=item.relative_path, path_lower=item.path_lower)
        self.index.upsert_entry(moved)
        return moved, moved_to

    def _is_cached(
        self, metadata: FileMetadata, relative_path: str, local: str, entry: Entry
    ) -> bool:
        """Check the path, revision, hash and mtime of an entry against the listing."""
        return (
            entry.path == relative_path
            and not entry.stale
            and entry.revision is not None
            and entry.revision == metadata.rev
            and entry.content_hash == metadata.content_hash
            and times_equal(self.fs.getmtime(local), metadata.server_modified)
        )

    def _update_file(
        self,
        metadata: FileMetadata,
        relative_path: str,
        entry: Optional[Entry],
        changes: Changelist,
        local: Optional[str] = None,
    ) -> None:
        local = local or self.local_path(relative_path)
        if entry is not None and self._is_cached(
            metadata, relative_path, local, entry
        ):
            return

        local_hash = content_hash_file(local)
        if local_hash is not None and local_hash == metadata.content_hash:
            logger.debug("%s is up to date", relative_path)
            if not self.dry_run:
                self.operations.set_local_mtime(local, metadata.server_modified)
            self.index.upsert_entry(self.entry_from_metadata(metadata, relative_path))
            return

        if local_hash is not None and (
            entry is None or local_hash != entry.content_hash
        ):
            # Keep local changes that were never pushed
            renamed = find_nonconflicting_path(local, exists=self.fs.exists)
            if not self.dry_run:
                renamed = self.fs.move(local, renamed)
            renamed_relative = self.relative_local_path(renamed)
            logger.warning(
                "Local changes to %s kept as %s", relative_path, renamed_relative
            )
            changes.add_conflict(relative_path, renamed_relative)

        if not self.dry_run:
            self.operations.download_file(metadata, local)
        if entry is None:
            logger.info("Downloaded %s", relative_path)
            changes.created.append(relative_path)
        else:
            logger.info("Updated %s", relative_path)
            changes.updated.append(relative_path)
        self.index.upsert_entry(self.entry_from_metadata(metadata, relative_path))

    def _delete_files(
        self, remote_items: list[RemoteItem], changes: Changelist
    ) -> None:
        """Delete tracked files that no longer exist remotely."""
        remote_paths = {item.path_lower for item in remote_items}
        for entry in self.index.list_entries():
            if entry.path_lower in remote_paths or not self.in_scope(entry.path):
                continue
            if self.scanner.is_blacklisted(entry.path):
                continue

            local = self.local_path(entry.path)
            try:
                local_hash = content_hash_file(local)
                if local_hash is not None and local_hash != entry.content_hash:
                    logger.warning(
                        "%s was deleted remotely but has local changes; keeping it",
                        entry.path,
                    )
                    self.index.delete_entry_by_path(entry.path)
                    continue
                if not self.dry_run and self.fs.remove(local):
                    logger.info("Deleted %s", entry.path)
                self.index.delete_entry_by_path(entry.path)
            except AmbiguousCollisionError:
                raise
            except OSError as e:
                logger.exception("Failed to delete %s", entry.path)
                changes.add_failure("delete", entry.path, e)
                continue
            changes.deleted.append(entry.path)

    def _delete_dirs(self, remote_items: list[RemoteItem], changes: Changelist) -> None:
        """Delete local directories that no longer exist remotely.

        Directories that still hold files (other than dotfiles) are kept:
        those files have never been pushed.
        """
        remote_paths = {item.path_lower for item in remote_items}
        for directory, dirnames, _filenames in self.fs.walk(self.local_root):
            kept: list[str] = []
            for name in dirnames:
                if name.startswith("."):
                    continue
                full = os.path.join(directory, name)
                relative = self.relative_local_path(full)
                if relative.lower() in remote_paths or not self.may_delete_dir(
                    relative
                ):
                    kept.append(name)
                    continue
                if self._has_files(full):
                    logger.debug("Keeping %s: it holds unsynced files", relative)
                    kept.append(name)
                    continue
                try:
                    if not self.dry_run:
                        self.fs.rmtree(full)
                except OSError as e:
                    logger.exception("Failed to delete directory %s", relative)
                    changes.add_failure("delete", relative, e)
                    continue
                logger.info("Deleted directory %s", relative)
                changes.deleted.append(relative)
            dirnames[:] = kept

    def _has_files(self, directory: str) -> bool:
        for _directory, dirnames, filenames in self.fs.walk(directory):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            if any(not name.startswith(".") for name in filenames):
                return True
        return False
