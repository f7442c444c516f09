"""Durable index of previously-synced files.

The index records, for each file that was successfully uploaded or
downloaded, its remote identifier, both path casings, content hash,
revision and modification time, together with the root path
configuration of the managed directory. It is stored as a hidden JSON file
in the local root; the presence of that file is what marks a directory as
managed.
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

from ..exceptions import DboxDatabaseError
from ..utils import INDEX_FILE_NAME, normalize_path, normalize_remote_root

logger = logging.getLogger(__name__)

INDEX_VERSION = 1


@dataclass
class RootMetadata:
    """Root path configuration of a managed directory."""

    local_path: str
    """Absolute local root"""

    remote_path: str
    """Remote root (``/a/b`` form, ``""`` for the account root)"""


@dataclass
class Entry:
    """A tracked file."""

    id: Optional[str]
    """Remote identifier (None for entries written before ids were tracked)"""

    path_lower: str
    """Case-folded relative path"""

    path: str
    """Case-preserving relative path"""

    content_hash: Optional[str] = None
    """Last-known content hash"""

    revision: Optional[str] = None
    """Remote revision tag"""

    modified: Optional[str] = None
    """Last-known server modification time (ISO 8601)"""

    stale: bool = False
    """Set after a failed transfer nearby; the next pull re-checks the file"""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entry":
        path = data.get("path") or data.get("path_lower") or ""
        return cls(
            id=data.get("id"),
            path_lower=data.get("path_lower") or normalize_path(path),
            path=path,
            content_hash=data.get("content_hash"),
            revision=data.get("revision"),
            modified=data.get("modified"),
            stale=bool(data.get("stale", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_ENTRY_FIELDS = {f.name for f in fields(Entry)}


class EntryIndex:
    """Index of tracked files for one managed directory.

    Every mutation is written to disk immediately so the index survives
    process restarts. Inside :meth:`batch` the writes are deferred and the
    index is written once when the block exits.

    Examples:
        >>> index = EntryIndex.create("/tmp/docs", "/Docs")
        >>> index.add_entry(Entry(id="id:1", path_lower="a.txt", path="A.txt"))
        >>> index.find_by_path("A.TXT").path
        'A.txt'
    """

    def __init__(self, index_file: Path, metadata: RootMetadata, entries: list[Entry]):
        self.index_file = index_file
        self._metadata = metadata
        self._batch_depth = 0
        self._dirty = False
        self._discard = False
        self._by_path: dict[str, Entry] = {}
        for entry in entries:
            self._insert(entry)

    # =========================
    # Lifecycle
    # =========================

    @staticmethod
    def index_path(local_path: Union[str, Path]) -> Path:
        return Path(local_path) / INDEX_FILE_NAME

    @staticmethod
    def exists(local_path: Union[str, Path]) -> bool:
        """Check whether ``local_path`` is a managed directory."""
        return EntryIndex.index_path(local_path).is_file()

    @classmethod
    def create(
        cls, local_path: Union[str, Path], remote_path: str
    ) -> "EntryIndex":
        """Create the local root (if needed) and an empty index.

        Raises:
            DboxDatabaseError: If the directory is already managed
        """
        local = Path(local_path).expanduser().absolute()
        if cls.exists(local):
            raise DboxDatabaseError(f"{local} is already managed by pydbox")
        local.mkdir(parents=True, exist_ok=True)
        metadata = RootMetadata(
            local_path=str(local), remote_path=normalize_remote_root(remote_path)
        )
        index = cls(cls.index_path(local), metadata, [])
        index.save()
        logger.debug("Created index at %s", index.index_file)
        return index

    @classmethod
    def load(cls, local_path: Union[str, Path]) -> "EntryIndex":
        """Load the index of a managed directory.

        Raises:
            DboxDatabaseError: If the directory is not managed or the index
                cannot be read
        """
        local = Path(local_path).expanduser().absolute()
        index_file = cls.index_path(local)
        if not index_file.is_file():
            raise DboxDatabaseError(
                f"No pydbox index found in {local}; run create or clone first"
            )
        try:
            with open(index_file, encoding="utf-8") as f:
                data = json.load(f)
            raw_metadata = data["metadata"]
            entries = [Entry.from_dict(e) for e in data.get("entries", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise DboxDatabaseError(f"Failed to load index {index_file}: {e}") from e

        metadata = RootMetadata(
            # The directory may have been moved since the index was written
            local_path=str(local),
            remote_path=normalize_remote_root(raw_metadata.get("remote_path", "")),
        )
        logger.debug("Loaded index with %d entries from %s", len(entries), index_file)
        return cls(index_file, metadata, entries)

    def save(self) -> None:
        """Atomically write the index to disk."""
        data = {
            "version": INDEX_VERSION,
            "metadata": asdict(self._metadata),
            "entries": [e.to_dict() for e in self.list_entries()],
        }
        directory = self.index_file.parent
        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{INDEX_FILE_NAME}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.index_file)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _changed(self) -> None:
        if self._batch_depth:
            self._dirty = True
        else:
            self.save()

    @contextmanager
    def batch(self, commit: bool = True) -> Iterator["EntryIndex"]:
        """Defer writes until the outermost ``batch`` block exits.

        The index is saved once on exit, also when the block raises, so the
        progress of a partially failed pass is kept.

        Args:
            commit: Whether to write the changes at all; ``False`` leaves the
                file on disk untouched

        Examples:
            >>> with index.batch():
            ...     index.delete_all_entries()
            ...     index.add_entry(entry)
        """
        outermost = self._batch_depth == 0
        if outermost:
            self._discard = not commit
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if outermost:
                dirty, self._dirty = self._dirty, False
                if dirty and not self._discard:
                    self.save()

    # =========================
    # Root metadata
    # =========================

    def load_metadata(self) -> RootMetadata:
        return replace(self._metadata)

    def update_metadata(self, **changes: Any) -> None:
        """Update root metadata fields (``local_path``, ``remote_path``)."""
        if "remote_path" in changes:
            changes["remote_path"] = normalize_remote_root(changes["remote_path"])
        self._metadata = replace(self._metadata, **changes)
        self._changed()

    @property
    def local_path(self) -> str:
        return self._metadata.local_path

    @property
    def remote_path(self) -> str:
        return self._metadata.remote_path

    # =========================
    # Entries
    # =========================

    def _insert(self, entry: Entry) -> None:
        key = normalize_path(entry.path_lower or entry.path)
        entry.path_lower = key
        if key in self._by_path:
            raise DboxDatabaseError(f"Duplicate entry for path {entry.path}")
        if entry.id is not None and self.find_by_id(entry.id) is not None:
            raise DboxDatabaseError(f"Duplicate entry for id {entry.id}")
        self._by_path[key] = entry

    def list_entries(self) -> list[Entry]:
        """All entries, ordered by case-folded path."""
        return [replace(self._by_path[k]) for k in sorted(self._by_path)]

    def find_by_path(self, path: str) -> Optional[Entry]:
        entry = self._by_path.get(normalize_path(path))
        return replace(entry) if entry else None

    def find_by_id(self, entry_id: str) -> Optional[Entry]:
        for entry in self._by_path.values():
            if entry.id is not None and entry.id == entry_id:
                return replace(entry)
        return None

    def add_entry(self, entry: Entry) -> None:
        """Add a new entry.

        Raises:
            DboxDatabaseError: If an entry with the same id or case-folded
                path already exists
        """
        self._insert(replace(entry))
        self._changed()

    def upsert_entry(self, entry: Entry) -> None:
        """Store ``entry``, replacing entries that share its id or path."""
        self._remove_where(
            lambda e: e.path_lower == normalize_path(entry.path_lower or entry.path)
            or (entry.id is not None and e.id == entry.id)
        )
        self._insert(replace(entry))
        self._changed()

    def _update(self, current: Optional[Entry], changes: dict[str, Any]) -> bool:
        if current is None:
            return False
        unknown = set(changes) - _ENTRY_FIELDS
        if unknown:
            raise TypeError(f"Unknown entry fields: {', '.join(sorted(unknown))}")
        if "path" in changes and "path_lower" not in changes:
            changes["path_lower"] = normalize_path(changes["path"])
        updated = replace(current, **changes)
        del self._by_path[current.path_lower]
        try:
            self._insert(updated)
        except DboxDatabaseError:
            self._by_path[current.path_lower] = current
            raise
        self._changed()
        return True

    def update_entry_by_path(self, path: str, **changes: Any) -> bool:
        """Update fields of the entry at ``path``.

        Returns:
            True if an entry was updated
        """
        return self._update(self._by_path.get(normalize_path(path)), changes)

    def update_entry_by_id(self, entry_id: str, **changes: Any) -> bool:
        """Update fields of the entry with ``entry_id``."""
        current = self.find_by_id(entry_id)
        if current is not None:
            current = self._by_path[current.path_lower]
        return self._update(current, changes)

    def delete_entry_by_path(self, path: str) -> bool:
        """Delete the entry at ``path``; deleting an absent entry is a no-op."""
        if self._by_path.pop(normalize_path(path), None) is None:
            return False
        self._changed()
        return True

    def _remove_where(self, predicate: Callable[[Entry], bool]) -> int:
        doomed = [k for k, e in self._by_path.items() if predicate(e)]
        for key in doomed:
            del self._by_path[key]
        return len(doomed)

    def delete_entries(self, predicate: Callable[[Entry], bool]) -> int:
        """Delete every entry matching ``predicate``.

        Returns:
            Number of deleted entries
        """
        count = self._remove_where(predicate)
        if count:
            self._changed()
        return count

    def delete_all_entries(self) -> None:
        self._by_path.clear()
        self._changed()
