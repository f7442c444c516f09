"""Utility functions for pydbox."""

import hashlib
import os
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Optional, Union

# =============================================================================
# Constants for file operations
# =============================================================================

# Block size used by the Dropbox content hash (4 MiB)
CONTENT_HASH_BLOCK_SIZE: int = 4 * 1024 * 1024

# Downloads above this size are streamed instead of buffered (100 kB)
MIN_BYTES_TO_STREAM_DOWNLOAD: int = 100 * 1024

# Chunk size for upload sessions (8 MiB)
DEFAULT_CHUNK_SIZE: int = 8 * 1024 * 1024

# Threshold for using an upload session instead of a single request (150 MiB)
DEFAULT_UPLOAD_SESSION_THRESHOLD: int = 150 * 1024 * 1024

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 3.0  # seconds

# Name of the hidden index file that marks a managed directory
INDEX_FILE_NAME: str = ".pydbox.json"

# Suffix of temporary download artifacts
TMP_FILE_SUFFIX: str = ".pydbox-part"


# =============================================================================
# Content hash utilities
# =============================================================================


def content_hash(stream: BinaryIO, block_size: int = CONTENT_HASH_BLOCK_SIZE) -> str:
    """Calculate the Dropbox content hash of a byte stream.

    The stream is split into 4 MiB blocks, each block is hashed with
    SHA-256, the raw block digests are concatenated and the result is
    hashed once more with SHA-256.

    Args:
        stream: Binary stream positioned at the start of the content
        block_size: Block size in bytes

    Returns:
        Hexadecimal digest

    Examples:
        >>> import io
        >>> content_hash(io.BytesIO(b""))
        '5df6e0e2761359d30a8275058e299fcc0381534545f55cf43e41983f5d4c9456'
    """
    block_digests = b""
    eof = False
    while not eof:
        block = b""
        # Pipes and sockets may return fewer bytes than asked for
        while len(block) < block_size:
            chunk = stream.read(block_size - len(block))
            if not chunk:
                eof = True
                break
            block += chunk
        # An empty input still contributes one (empty) block
        if not block and block_digests:
            break
        block_digests += hashlib.sha256(block).digest()
    return hashlib.sha256(block_digests).hexdigest()


def content_hash_file(path: str) -> Optional[str]:
    """Calculate the content hash of the file at ``path``.

    Returns:
        Hexadecimal digest, or None if the path is missing or is a directory
    """
    try:
        with open(path, "rb") as f:
            return content_hash(f)
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
        return None


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse ISO format timestamp from the Dropbox API.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00Z")

    Returns:
        Timezone-aware datetime in UTC or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError):
        return None


def to_timestamp(timestamp_str: Optional[str]) -> Optional[float]:
    """Convert an ISO timestamp string to a Unix timestamp."""
    dt = parse_iso_timestamp(timestamp_str)
    return dt.timestamp() if dt else None


def format_timestamp(timestamp: float) -> str:
    """Format a Unix timestamp the way Dropbox reports server times."""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime(
        "%Y-%m-%dT%H:%M:%SZ"
    )


def times_equal(mtime: Optional[float], timestamp_str: Optional[str]) -> bool:
    """Compare a local mtime with a server timestamp at second precision."""
    server_ts = to_timestamp(timestamp_str)
    if mtime is None or server_ts is None:
        return False
    return int(mtime) == int(server_ts)


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Path utilities
# =============================================================================


def normalize_path(path: str) -> str:
    """Case-fold a relative path for use as a lookup key."""
    return path.strip("/").lower()


def normalize_remote_root(path: str) -> str:
    """Normalize a remote root to ``/a/b`` form (``""`` for the account root)."""
    stripped = path.strip().strip("/")
    return f"/{stripped}" if stripped else ""


def remote_to_relative_path(remote_root: str, remote_path: str) -> str:
    """Strip the remote root from an absolute remote path (case-insensitive).

    Raises:
        ValueError: If ``remote_path`` does not lie under ``remote_root``
    """
    root = normalize_remote_root(remote_root)
    if not root:
        return remote_path.strip("/")
    if remote_path.lower() == root.lower():
        return ""
    prefix = root + "/"
    if remote_path.lower().startswith(prefix.lower()):
        return remote_path[len(prefix) :].strip("/")
    raise ValueError(f"Not a remote path under {root}: {remote_path}")


def relative_to_remote_path(remote_root: str, relative_path: str) -> str:
    """Join a relative path onto the remote root."""
    root = normalize_remote_root(remote_root)
    relative_path = relative_path.strip("/")
    if not relative_path:
        return root or "/"
    return f"{root}/{relative_path}"


def parent_path(relative_path: str) -> str:
    """Return the parent of a relative path (``""`` for top-level items)."""
    return relative_path.rpartition("/")[0]


def in_scope(relative_path: str, subdirs: Optional[list[str]]) -> bool:
    """Check whether a relative path lies inside one of the requested subdirs."""
    if not subdirs:
        return True
    lower = normalize_path(relative_path)
    for subdir in subdirs:
        scope = normalize_path(subdir)
        if lower == scope or lower.startswith(scope + "/"):
            return True
    return False


def is_scope_ancestor(relative_path: str, subdirs: Optional[list[str]]) -> bool:
    """Check whether a relative path is a strict ancestor of a requested subdir."""
    if not subdirs:
        return False
    lower = normalize_path(relative_path)
    return any(normalize_path(subdir).startswith(lower + "/") for subdir in subdirs)


def parse_subdirs(
    subdirs: Optional[Union[str, Iterable[str]]],
) -> Optional[list[str]]:
    """Accept a comma-separated string or a list of relative subdirs."""
    if not subdirs:
        return None
    if isinstance(subdirs, str):
        items = subdirs.split(",")
    else:
        items = [part for item in subdirs for part in item.split(",")]
    cleaned = [item.strip().strip("/") for item in items if item.strip().strip("/")]
    return cleaned or None


# =============================================================================
# Conflict naming utilities
# =============================================================================

_COUNTER_RE = re.compile(r"^(.*?)(?: \((\d+)\))?(\.[^.]*)?$")


def next_nonconflicting_name(name: str) -> str:
    """Propose the next candidate name for an occupied file name.

    Examples:
        >>> next_nonconflicting_name("hello.txt")
        'hello (1).txt'
        >>> next_nonconflicting_name("hello (1).txt")
        'hello (2).txt'
        >>> next_nonconflicting_name("README")
        'README (1)'
    """
    match = _COUNTER_RE.match(name)
    if match is None:  # pragma: no cover - the pattern matches any string
        return f"{name} (1)"
    stem, counter, ext = match.groups()
    number = int(counter) + 1 if counter else 1
    return f"{stem} ({number}){ext or ''}"


def find_nonconflicting_path(
    path: str, exists: Callable[[str], bool] = os.path.exists
) -> str:
    """Find a free name next to ``path`` by bumping a " (N)" counter.

    The check is best effort: a concurrent writer may claim the returned
    name before the caller does.

    Args:
        path: Occupied target path
        exists: Existence check; should be case-insensitive

    Returns:
        First candidate path for which ``exists`` returns False
    """
    proposed = path
    while exists(proposed):
        directory, name = os.path.split(proposed)
        proposed = os.path.join(directory, next_nonconflicting_name(name))
    return proposed
