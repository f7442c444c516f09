"""Case-insensitive path resolution on top of a possibly case-sensitive filesystem.

Dropbox treats paths case-insensitively while the local filesystem may not.
Every local path used by the reconcilers is routed through
:class:`CaseInsensitiveFS`, which maps a path in any casing to the one
physical object it denotes.

The resolution itself is implemented as pure functions over a directory
listing callable, so it can be exercised without touching the disk::

    >>> tree = {"/": ["Docs"], "/Docs": ["Notes.TXT"]}
    >>> case_insensitive_resolve("/docs/notes.txt", tree.get)
    '/Docs/Notes.TXT'
"""

import errno
import logging
import os
import shutil
from collections import deque
from collections.abc import Iterable, Iterator
from typing import IO, Any, Callable, Optional

from .exceptions import AmbiguousCollisionError

logger = logging.getLogger(__name__)

DirectoryLister = Callable[[str], Optional[Iterable[str]]]
"""Returns the entry names of a directory, or None if it cannot be listed."""


def _split(path: str) -> tuple[str, list[str]]:
    """Split a path into its anchor and its segments."""
    drive, rest = os.path.splitdrive(path)
    if os.altsep:
        rest = rest.replace(os.altsep, os.sep)
    anchor = drive + os.sep if rest.startswith(os.sep) else drive
    segments = [s for s in rest.split(os.sep) if s and s != "."]
    return anchor, segments


def _join(base: str, name: str) -> str:
    return os.path.join(base, name) if base else name


def _listing(listdir: DirectoryLister, directory: str) -> list[str]:
    names = listdir(directory or os.curdir)
    return list(names) if names is not None else []


def _exists_exactly(path: str, listdir: DirectoryLister) -> bool:
    anchor, segments = _split(path)
    current = anchor
    for segment in segments:
        if segment != os.pardir and segment not in _listing(listdir, current):
            return False
        current = _join(current, segment)
    return True


def case_insensitive_resolve(
    path: str,
    listdir: DirectoryLister,
    exists: Optional[Callable[[str], bool]] = None,
) -> str:
    """Resolve ``path`` to the physical object it denotes, ignoring case.

    Args:
        path: Path in any casing
        listdir: Directory listing capability
        exists: Optional exact-existence check; derived from ``listdir``
            when omitted

    Returns:
        ``path`` itself if it exists exactly or nothing matches it,
        otherwise the single case-insensitive match

    Raises:
        AmbiguousCollisionError: If more than one object matches
    """
    if exists is None:

        def exists(p: str) -> bool:
            return _exists_exactly(p, listdir)

    if exists(path):
        return path

    # Walk up to the longest prefix that exists as spelled
    anchor, segments = _split(path)
    head_segments = list(segments)
    tail: list[str] = []
    head = anchor
    while head_segments:
        tail.insert(0, head_segments.pop())
        head = anchor
        for segment in head_segments:
            head = _join(head, segment)
        if exists(head or os.curdir):
            break

    candidates = [head]
    for segment in tail:
        folded = segment.lower()
        matched: list[str] = []
        for candidate in candidates:
            if segment == os.pardir:
                matched.append(_join(candidate, segment))
                continue
            matched.extend(
                _join(candidate, name)
                for name in _listing(listdir, candidate)
                if name.lower() == folded
            )
        candidates = matched
        if not candidates:
            break

    if not candidates:
        return path
    if len(candidates) == 1:
        return candidates[0]
    raise AmbiguousCollisionError(path, candidates)


def case_insensitive_join(
    base: str,
    *segments: str,
    listdir: DirectoryLister,
    exists: Optional[Callable[[str], bool]] = None,
) -> str:
    """Join segments onto ``base``, resolving each step against the listing.

    Existing directories are picked up in their real casing even if the
    final component does not exist yet, so new files land in the right
    directory.
    """
    anchor, parts = _split(base)
    for segment in segments:
        parts.extend(p for p in segment.replace("\\", "/").split("/") if p and p != ".")

    resolved = anchor
    for part in parts:
        resolved = case_insensitive_resolve(_join(resolved, part), listdir, exists)
    return resolved or os.curdir


def case_insensitive_equal(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two paths ignoring case."""
    return a is not None and b is not None and a.lower() == b.lower()


def case_insensitive_difference(a: Iterable[str], b: Iterable[str]) -> list[str]:
    """Items of ``a`` that have no case-insensitive counterpart in ``b``."""
    folded = {s.lower() for s in b}
    return [s for s in a if s.lower() not in folded]


def os_listdir(path: str) -> Optional[list[str]]:
    """List a directory on disk, returning None when it cannot be read."""
    try:
        return os.listdir(path)
    except (FileNotFoundError, NotADirectoryError, PermissionError):
        return None


class CaseInsensitiveFS:
    """Filesystem facade that resolves every path case-insensitively.

    Args:
        listdir: Directory listing capability (defaults to the real disk)
        exists: Exact existence check matching ``listdir``
    """

    def __init__(
        self,
        listdir: DirectoryLister = os_listdir,
        exists: Optional[Callable[[str], bool]] = None,
    ):
        self._listdir = listdir
        if exists is None and listdir is os_listdir:
            exists = os.path.lexists
        self._exists = exists

    def resolve(self, path: str) -> str:
        return case_insensitive_resolve(path, self._listdir, self._exists)

    def join(self, base: str, *segments: str) -> str:
        return case_insensitive_join(
            base, *segments, listdir=self._listdir, exists=self._exists
        )

    def exists(self, path: str) -> bool:
        return os.path.lexists(self.resolve(path))

    def isdir(self, path: str) -> bool:
        return os.path.isdir(self.resolve(path))

    def isfile(self, path: str) -> bool:
        return os.path.isfile(self.resolve(path))

    def listdir(self, path: str) -> list[str]:
        """Sorted (case-insensitively) entry names of a directory."""
        names = self._listdir(self.resolve(path))
        return sorted(names or [], key=lambda n: (n.lower(), n))

    def open(self, path: str, mode: str = "rb") -> IO[Any]:
        return open(self.join(path), mode)

    def getmtime(self, path: str) -> Optional[float]:
        try:
            return os.path.getmtime(self.resolve(path))
        except OSError:
            return None

    def set_mtime(self, path: str, mtime: float) -> None:
        resolved = self.resolve(path)
        os.utime(resolved, (os.path.getatime(resolved), mtime))

    def makedirs(self, path: str) -> str:
        """Create a directory and its parents (idempotent).

        Returns:
            The resolved directory path
        """
        resolved = self.join(path)
        os.makedirs(resolved, exist_ok=True)
        return resolved

    def remove(self, path: str) -> bool:
        """Delete a file if present.

        Returns:
            True if something was deleted
        """
        try:
            os.remove(self.resolve(path))
            return True
        except FileNotFoundError:
            return False

    def rmtree(self, path: str) -> bool:
        """Delete a directory tree if present."""
        resolved = self.resolve(path)
        if not os.path.isdir(resolved):
            return False
        shutil.rmtree(resolved)
        return True

    def move(self, src: str, dst: str) -> str:
        """Rename ``src`` to ``dst``, keeping the casing given in ``dst``.

        A case-only rename of the same object is allowed; any other
        existing object at ``dst`` is an error.

        Returns:
            The new path
        """
        source = self.resolve(src)
        parent = self.makedirs(os.path.dirname(dst))
        target = os.path.join(parent, os.path.basename(dst))
        existing = self.resolve(target)
        if os.path.lexists(existing) and not os.path.samefile(source, existing):
            raise FileExistsError(errno.EEXIST, "Destination already exists", existing)
        os.rename(source, target)
        logger.debug("Moved %s to %s", source, target)
        return target

    def replace(self, src: str, dst: str) -> str:
        """Atomically move ``src`` over ``dst``, replacing any existing file."""
        target = self.join(dst)
        os.replace(self.resolve(src), target)
        return target

    def walk(self, root: str) -> Iterator[tuple[str, list[str], list[str]]]:
        """Breadth-first walk using an explicit queue.

        Yields ``(directory, dirnames, filenames)`` with names sorted
        case-insensitively, so traversal order is deterministic.
        """
        queue = deque([self.resolve(root)])
        while queue:
            directory = queue.popleft()
            dirnames: list[str] = []
            filenames: list[str] = []
            for name in self.listdir(directory):
                full = os.path.join(directory, name)
                if os.path.isdir(full) and not os.path.islink(full):
                    dirnames.append(name)
                else:
                    filenames.append(name)
            yield directory, dirnames, filenames
            queue.extend(os.path.join(directory, name) for name in dirnames)
