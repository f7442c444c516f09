"""Data models for remote metadata and reconciliation results."""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from .exceptions import DboxInvalidResponseError


@dataclass(frozen=True)
class FolderMetadata:
    """A remote folder."""

    path_lower: str
    path_display: str
    id: Optional[str] = None
    tag: Literal["folder"] = "folder"


@dataclass(frozen=True)
class FileMetadata:
    """A remote file."""

    path_lower: str
    path_display: str
    id: str
    content_hash: Optional[str]
    size: int
    server_modified: Optional[str]
    rev: Optional[str]
    tag: Literal["file"] = "file"


@dataclass(frozen=True)
class DeletedMetadata:
    """A remote object that has been deleted."""

    path_lower: str
    path_display: Optional[str] = None
    tag: Literal["deleted"] = "deleted"


Metadata = Union[FolderMetadata, FileMetadata, DeletedMetadata]


def metadata_from_api(data: dict[str, Any]) -> Metadata:
    """Build a metadata variant from a Dropbox API response dict.

    Args:
        data: Entry as returned by ``list_folder``, ``get_metadata`` or
            ``upload``. Upload responses carry no ``.tag`` and are files.

    Raises:
        DboxInvalidResponseError: If the entry cannot be interpreted
    """
    if not isinstance(data, dict):
        raise DboxInvalidResponseError(f"Invalid metadata from server: {data!r}")

    tag = data.get(".tag", "file")
    path_lower = data.get("path_lower")
    path_display = data.get("path_display") or path_lower
    if not isinstance(path_lower, str):
        raise DboxInvalidResponseError(f"Metadata without path: {data!r}")

    if tag == "folder":
        return FolderMetadata(
            path_lower=path_lower, path_display=path_display, id=data.get("id")
        )
    if tag == "file":
        if "id" not in data:
            raise DboxInvalidResponseError(f"File metadata without id: {data!r}")
        return FileMetadata(
            path_lower=path_lower,
            path_display=path_display,
            id=data["id"],
            content_hash=data.get("content_hash"),
            size=int(data.get("size", 0)),
            server_modified=data.get("server_modified"),
            rev=data.get("rev"),
        )
    if tag == "deleted":
        return DeletedMetadata(path_lower=path_lower, path_display=path_display)
    raise DboxInvalidResponseError(f"Unknown metadata type {tag!r}: {data!r}")


@dataclass
class Changelist:
    """Actions taken during one reconciliation pass."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    moved: list[dict[str, str]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    conflicts: list[dict[str, str]] = field(default_factory=list)

    def add_failure(self, operation: str, path: str, error: BaseException) -> None:
        self.failed.append({"operation": operation, "path": path, "error": error})

    def add_conflict(self, original: str, renamed: str) -> None:
        self.conflicts.append({"original": original, "renamed": renamed})

    def add_move(self, source: str, target: str) -> None:
        self.moved.append({"from": source, "to": target})

    def sort(self) -> "Changelist":
        """Sort and deduplicate every list in place."""
        self.created = sorted(set(self.created))
        self.updated = sorted(set(self.updated))
        self.deleted = sorted(set(self.deleted))
        self.moved = _unique(sorted(self.moved, key=lambda m: (m["from"], m["to"])))
        failed: dict[tuple[str, str], dict[str, Any]] = {}
        for failure in self.failed:
            failed.setdefault((failure["path"], failure["operation"]), failure)
        self.failed = [failed[key] for key in sorted(failed)]
        self.conflicts = _unique(
            sorted(self.conflicts, key=lambda c: (c["original"], c["renamed"]))
        )
        return self

    def is_empty(self) -> bool:
        return not (
            self.created
            or self.updated
            or self.deleted
            or self.moved
            or self.failed
            or self.conflicts
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict; ``conflicts`` only appears when non-empty."""
        out: dict[str, Any] = {
            "created": list(self.created),
            "updated": list(self.updated),
            "deleted": list(self.deleted),
            "moved": [dict(m) for m in self.moved],
            "failed": [
                {
                    "operation": f["operation"],
                    "path": f["path"],
                    "error": str(f["error"]),
                }
                for f in self.failed
            ],
        }
        if self.conflicts:
            out["conflicts"] = [dict(c) for c in self.conflicts]
        return out


def _unique(items: list[dict[str, str]]) -> list[dict[str, str]]:
    out: list[dict[str, str]] = []
    for item in items:
        if not out or out[-1] != item:
            out.append(item)
    return out
