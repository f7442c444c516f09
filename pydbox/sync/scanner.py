"""Directory scanning utilities for sync operations."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from ..case_insensitive import CaseInsensitiveFS
from ..models import Metadata
from ..utils import (
    in_scope,
    is_scope_ancestor,
    normalize_path,
    remote_to_relative_path,
)

logger = logging.getLogger(__name__)


@dataclass
class LocalItem:
    """A local file or directory below the managed root."""

    path: str
    """Absolute path in its real casing"""

    relative_path: str
    """Relative path using forward slashes"""

    is_dir: bool

    @property
    def path_lower(self) -> str:
        return normalize_path(self.relative_path)


@dataclass
class RemoteItem:
    """A remote listing entry together with its path below the remote root."""

    metadata: Metadata
    """Remote metadata"""

    relative_path: str
    """Case-preserving relative path"""

    @property
    def path_lower(self) -> str:
        return normalize_path(self.relative_path)

    @property
    def is_dir(self) -> bool:
        return self.metadata.tag == "folder"


def _is_dotfile(relative_path: str) -> bool:
    return any(part.startswith(".") for part in relative_path.split("/"))


class DirectoryScanner:
    """Enumerates the local tree and filters remote listings.

    Dot-named objects are never synced, which also keeps the index file
    and temporary download artifacts out of every pass.

    Examples:
        >>> scanner = DirectoryScanner(blacklisted_extensions=[".tmp"])
        >>> items = scanner.scan_local("/sync/folder")
    """

    def __init__(
        self,
        fs: Optional[CaseInsensitiveFS] = None,
        blacklisted_extensions: Optional[list[str]] = None,
    ):
        """Initialize directory scanner.

        Args:
            fs: Case-insensitive filesystem facade
            blacklisted_extensions: File extensions to skip (e.g. [".tmp"])
        """
        self.fs = fs or CaseInsensitiveFS()
        self.blacklisted_extensions = {
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in (blacklisted_extensions or [])
        }

    def is_blacklisted(self, relative_path: str) -> bool:
        ext = os.path.splitext(relative_path.rsplit("/", 1)[-1])[1].lower()
        return bool(ext) and ext in self.blacklisted_extensions

    def scan_local(
        self, root: str, subdirs: Optional[list[str]] = None
    ) -> list[LocalItem]:
        """Enumerate the local tree below ``root``.

        Directories are visited breadth-first from an explicit queue with
        names sorted case-insensitively, so the result order is stable.

        Args:
            root: Local root directory
            subdirs: Optional relative subdirectories to restrict the scan to;
                their ancestors are included as directory items

        Returns:
            List of LocalItem objects
        """
        root = self.fs.resolve(root)
        items: list[LocalItem] = []
        seen: set[str] = set()

        starts: list[str] = [root]
        if subdirs:
            starts = []
            for subdir in subdirs:
                start = self.fs.join(root, subdir)
                relative = os.path.relpath(start, root).replace(os.sep, "/")
                # Ancestors of the requested scope
                parts = relative.split("/")
                for depth in range(1, len(parts)):
                    ancestor = "/".join(parts[:depth])
                    if normalize_path(ancestor) not in seen and self.fs.isdir(
                        os.path.join(root, ancestor)
                    ):
                        seen.add(normalize_path(ancestor))
                        items.append(
                            LocalItem(os.path.join(root, ancestor), ancestor, True)
                        )
                if not os.path.isdir(start) or _is_dotfile(relative):
                    logger.debug("Requested subdir %s does not exist locally", subdir)
                    continue
                if normalize_path(relative) not in seen:
                    seen.add(normalize_path(relative))
                    items.append(LocalItem(start, relative, True))
                starts.append(start)

        for start in starts:
            for directory, dirnames, filenames in self.fs.walk(start):
                dirnames[:] = [d for d in dirnames if not d.startswith(".")]
                for name in dirnames + filenames:
                    if name.startswith("."):
                        continue
                    full = os.path.join(directory, name)
                    relative = os.path.relpath(full, root).replace(os.sep, "/")
                    is_dir = name in dirnames
                    if not is_dir and self.is_blacklisted(relative):
                        continue
                    if normalize_path(relative) in seen:
                        continue
                    seen.add(normalize_path(relative))
                    items.append(LocalItem(full, relative, is_dir))

        return items

    def filter_remote(
        self,
        entries: list[Metadata],
        remote_root: str,
        subdirs: Optional[list[str]] = None,
    ) -> list[RemoteItem]:
        """Filter a remote listing and attach relative paths.

        Removes the root itself, dot-named objects, blacklisted extensions,
        deleted entries and, when ``subdirs`` are given, everything outside
        of them (ancestor folders of the scope are kept).

        Args:
            entries: Raw listing entries
            remote_root: Remote root the listing was taken from
            subdirs: Optional relative subdirectories

        Returns:
            List of RemoteItem objects sorted by case-folded path
        """
        items: list[RemoteItem] = []
        for entry in entries:
            if entry.tag == "deleted":
                # Deletions are detected by comparing against the full listing
                continue
            if entry.tag not in ("file", "folder"):
                raise TypeError(f"Unexpected listing entry: {entry!r}")

            display = entry.path_display or entry.path_lower
            try:
                relative = remote_to_relative_path(remote_root, display)
            except ValueError:
                logger.debug("Skipping entry outside of the root: %s", display)
                continue
            if not relative or _is_dotfile(relative):
                continue
            if entry.tag == "file" and self.is_blacklisted(relative):
                continue
            if subdirs and not in_scope(relative, subdirs):
                # Folders leading up to the scope are still created
                if entry.tag != "folder" or not is_scope_ancestor(relative, subdirs):
                    continue
            items.append(RemoteItem(entry, relative))

        items.sort(key=lambda item: item.path_lower)
        return items
