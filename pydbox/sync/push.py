"""Push reconciler: converges the remote tree onto the local tree."""

import logging
import os
from dataclasses import replace
from typing import Optional

from ..exceptions import (
    AmbiguousCollisionError,
    DboxError,
    DboxRemoteAlreadyExistsError,
)
from ..models import Changelist, FileMetadata
from ..utils import content_hash_file, normalize_path
from .reconciler import Reconciler
from .scanner import LocalItem, RemoteItem
from .state import Entry

logger = logging.getLogger(__name__)


class Push(Reconciler):
    """Upload local changes of the managed directory.

    The index entries within the pushed scope are treated as a cache of
    the previous push: they are snapshotted, discarded and re-registered
    from the outcome of this pass.

    Uploads of tracked files name the revision they are based on and
    untracked files are added without overwriting. When the remote side
    changed concurrently the backend stores the upload under a new name;
    the local file is renamed to match and the collision is reported as a
    conflict.
    """

    def run(self) -> Changelist:
        changes = Changelist()
        if not self.dry_run:
            self.operations.remove_tmpfiles(self.local_root)

        local_items = self.scanner.scan_local(self.local_root, self.subdirs)
        remote_items = self.gather_remote()
        remote_by_path = {item.path_lower: item for item in remote_items}

        old_entries = {
            entry.path_lower: entry
            for entry in self.index.list_entries()
            if self.in_scope(entry.path)
        }
        if self.subdirs:
            self.index.delete_entries(lambda e: self.in_scope(e.path))
        else:
            self.index.delete_all_entries()

        for item in local_items:
            remote = remote_by_path.get(item.path_lower)
            if item.is_dir:
                self._push_dir(item, remote, changes)
            else:
                self._push_file(item, remote, old_entries.get(item.path_lower), changes)

        local_paths = {item.path_lower for item in local_items}
        self._delete_remote(remote_items, local_paths, old_entries, changes)
        return changes

    def _push_dir(
        self, item: LocalItem, remote: Optional[RemoteItem], changes: Changelist
    ) -> None:
        if remote is not None:
            if not remote.is_dir:
                logger.error(
                    "Cannot create remote directory %s: a file is in the way",
                    item.relative_path,
                )
                changes.add_failure(
                    "create",
                    item.relative_path,
                    DboxRemoteAlreadyExistsError(
                        "A file exists at the remote path",
                        path=self.remote_path(item.relative_path),
                    ),
                )
            return

        try:
            if not self.dry_run:
                self.operations.create_remote_dir(
                    self.remote_path(item.relative_path)
                )
        except (DboxError, OSError) as e:
            logger.exception("Failed to create remote directory %s", item.relative_path)
            changes.add_failure("create", item.relative_path, e)
            return
        logger.info("Created remote directory %s", item.relative_path)
        changes.created.append(item.relative_path)

    def _push_file(
        self,
        item: LocalItem,
        remote: Optional[RemoteItem],
        old: Optional[Entry],
        changes: Changelist,
    ) -> None:
        operation = "create" if remote is None else "update"
        try:
            self._upload_if_changed(item, remote, old, changes)
        except AmbiguousCollisionError:
            raise
        except (DboxError, OSError) as e:
            logger.exception("Failed to push %s", item.relative_path)
            changes.add_failure(operation, item.relative_path, e)
            if old is not None:
                # Keep tracking the file, at its last synced revision
                self.index.upsert_entry(replace(old, stale=True))

    def _upload_if_changed(
        self,
        item: LocalItem,
        remote: Optional[RemoteItem],
        old: Optional[Entry],
        changes: Changelist,
    ) -> None:
        if remote is not None and remote.is_dir:
            raise DboxRemoteAlreadyExistsError(
                "A folder exists at the remote path",
                path=self.remote_path(item.relative_path),
            )

        local_hash = content_hash_file(item.path)
        if local_hash is None:
            logger.debug("%s vanished before it could be pushed", item.relative_path)
            return

        if remote is not None:
            metadata: FileMetadata = remote.metadata  # type: ignore[assignment]
            if metadata.content_hash == local_hash:
                self._register(metadata, remote.relative_path, item.path)
                return

        if old is not None and old.content_hash == local_hash:
            # Unchanged since the last sync; remote changes are left to pull
            logger.debug("%s has no local changes", item.relative_path)
            self.index.upsert_entry(old)
            return

        if self.dry_run:
            logger.info("Would upload %s", item.relative_path)
            target = changes.created if remote is None else changes.updated
            target.append(item.relative_path)
            return

        previous_revision = old.revision if old is not None else None
        result = self.operations.upload_file(
            item.path, self.remote_path(item.relative_path), previous_revision
        )
        stored_relative = self.relative_remote_path(result)

        local = item.path
        if normalize_path(stored_relative) != item.path_lower:
            local = self.fs.move(
                item.path, os.path.join(self.local_root, stored_relative)
            )
            logger.warning(
                "Remote copy of %s changed concurrently; uploaded as %s",
                item.relative_path,
                stored_relative,
            )
            changes.add_conflict(item.relative_path, stored_relative)
        elif remote is None:
            logger.info("Uploaded %s", item.relative_path)
            changes.created.append(item.relative_path)
        else:
            logger.info("Updated remote %s", item.relative_path)
            changes.updated.append(item.relative_path)

        self._register(result, stored_relative, local)

    def _register(self, metadata: FileMetadata, relative_path: str, local: str) -> None:
        self.index.upsert_entry(self.entry_from_metadata(metadata, relative_path))
        if not self.dry_run:
            self.operations.set_local_mtime(local, metadata.server_modified)

    def _delete_remote(
        self,
        remote_items: list[RemoteItem],
        local_paths: set[str],
        old_entries: dict[str, Entry],
        changes: Changelist,
    ) -> None:
        """Delete remote objects whose local counterpart was removed.

        Only files tracked by the previous index are deleted; untracked
        remote files are new and are left for pull. A folder is deleted
        when it held tracked files and holds no untracked ones.
        """
        missing = [
            item
            for item in remote_items
            if item.path_lower not in local_paths and self.in_scope(item.relative_path)
        ]

        for item in missing:
            if item.is_dir or item.path_lower not in old_entries:
                continue
            self._delete_one(item, changes)

        untracked = [
            item.path_lower
            for item in remote_items
            if not item.is_dir and item.path_lower not in old_entries
        ]
        folders = [item for item in missing if item.is_dir]
        # Deepest first
        folders.sort(key=lambda i: i.path_lower.count("/"), reverse=True)
        for item in folders:
            if not self.may_delete_dir(item.relative_path):
                continue
            prefix = item.path_lower + "/"
            if not any(path.startswith(prefix) for path in old_entries):
                continue
            if any(path.startswith(prefix) for path in untracked):
                logger.debug("Keeping remote %s: holds new files", item.relative_path)
                continue
            self._delete_one(item, changes)

    def _delete_one(self, item: RemoteItem, changes: Changelist) -> None:
        try:
            if not self.dry_run:
                self.operations.delete_remote(self.remote_path(item.relative_path))
        except (DboxError, OSError) as e:
            logger.exception("Failed to delete remote %s", item.relative_path)
            changes.add_failure("delete", item.relative_path, e)
            return
        logger.info("Deleted remote %s", item.relative_path)
        changes.deleted.append(item.relative_path)
