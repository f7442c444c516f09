"""Shared fixtures: an in-memory Dropbox backend."""

import io
import itertools
from typing import BinaryIO, Optional

import pytest

from pydbox.exceptions import (
    DboxAPIError,
    DboxRemoteAlreadyExistsError,
    DboxRemoteMissingError,
    DboxServerError,
)
from pydbox.models import FileMetadata, FolderMetadata, Metadata
from pydbox.utils import content_hash, format_timestamp, next_nonconflicting_name


def _key(path: str) -> str:
    return path.strip("/").lower()


def _display(path: str) -> str:
    return "/" + path.strip("/")


class FakeDropbox:
    """In-memory remote backend with Dropbox namespace semantics.

    Paths are case-insensitive and case-preserving, parent folders are
    created implicitly, and uploads that would clobber someone else's
    revision are stored under a " (N)" name instead.
    """

    def __init__(self):
        self.folders: dict[str, str] = {}
        self.files: dict[str, dict] = {}
        self._ids = itertools.count(1)
        self._revs = itertools.count(1)
        self.clock = 1_700_000_000
        self.fail_downloads: set[str] = set()
        self.fail_uploads: set[str] = set()
        self.uploads: list[str] = []
        self.downloads: list[tuple[str, bool]] = []

    # Helpers for tests, acting as another client

    def _tick(self) -> str:
        self.clock += 10
        return format_timestamp(self.clock)

    def _ensure_parents(self, path: str) -> None:
        parts = path.strip("/").split("/")[:-1]
        for depth in range(1, len(parts) + 1):
            folder = "/".join(parts[:depth])
            if _key(folder) in self.files:
                raise DboxAPIError(f"A file is in the way of {path}", path)
            self.folders.setdefault(_key(folder), _display(folder))

    def write(self, path: str, data: bytes) -> FileMetadata:
        """Create or overwrite a file, keeping its id."""
        self._ensure_parents(path)
        existing = self.files.get(_key(path))
        self.files[_key(path)] = {
            "path": existing["path"] if existing else _display(path),
            "data": data,
            "id": existing["id"] if existing else f"id:{next(self._ids)}",
            "rev": f"{next(self._revs):09x}",
            "modified": self._tick(),
        }
        return self._file_metadata(_key(path))

    def read(self, path: str) -> bytes:
        return self.files[_key(path)]["data"]

    def exists(self, path: str) -> bool:
        return _key(path) in self.files or _key(path) in self.folders

    def _file_metadata(self, key: str) -> FileMetadata:
        record = self.files[key]
        return FileMetadata(
            path_lower=record["path"].lower(),
            path_display=record["path"],
            id=record["id"],
            content_hash=content_hash(io.BytesIO(record["data"])),
            size=len(record["data"]),
            server_modified=record["modified"],
            rev=record["rev"],
        )

    def _folder_metadata(self, key: str) -> FolderMetadata:
        display = self.folders[key]
        return FolderMetadata(path_lower=display.lower(), path_display=display)

    # Remote backend interface

    def get_metadata(self, path: str) -> Metadata:
        key = _key(path)
        if not key:
            return FolderMetadata(path_lower="/", path_display="/")
        if key in self.folders:
            return self._folder_metadata(key)
        if key in self.files:
            return self._file_metadata(key)
        raise DboxRemoteMissingError(f"{path} does not exist", path)

    def list_folder(
        self, path: str, recursive: bool = False, include_deleted: bool = False
    ) -> list[Metadata]:
        root = _key(path)
        if root and root not in self.folders:
            raise DboxRemoteMissingError(f"{path} does not exist", path)
        prefix = f"{root}/" if root else ""

        def wanted(key: str) -> bool:
            if not key.startswith(prefix) or key == root:
                return False
            return recursive or "/" not in key[len(prefix) :]

        entries: list[Metadata] = [
            self._folder_metadata(k) for k in sorted(self.folders) if wanted(k)
        ]
        entries.extend(self._file_metadata(k) for k in sorted(self.files) if wanted(k))
        return entries

    def create_dir(self, path: str) -> FolderMetadata:
        key = _key(path)
        if key in self.folders or key in self.files:
            raise DboxRemoteAlreadyExistsError(f"{path} already exists", path)
        self._ensure_parents(path)
        self.folders[key] = _display(path)
        return self._folder_metadata(key)

    def put_file(
        self,
        path: str,
        file_obj: BinaryIO,
        previous_revision: Optional[str] = None,
    ) -> FileMetadata:
        if _key(path) in self.fail_uploads:
            raise DboxServerError(f"Server error 500 ({path})", path)
        data = file_obj.read()
        self.uploads.append(_display(path))

        key = _key(path)
        if key in self.folders:
            raise DboxRemoteAlreadyExistsError(f"{path} is a folder", path)
        existing = self.files.get(key)
        if existing is not None:
            if existing["data"] == data:
                return self._file_metadata(key)
            if previous_revision is None or existing["rev"] != previous_revision:
                # Someone else's revision: keep both
                while self.exists(path):
                    parent, _, name = path.rpartition("/")
                    path = f"{parent}/{next_nonconflicting_name(name)}"
        return self.write(path, data)

    def get_file(self, path: str, sink: BinaryIO, stream: bool = False) -> None:
        key = _key(path)
        if key in self.fail_downloads:
            sink.write(b"partial")
            raise DboxServerError(f"Server error 500 ({path})", path)
        if key not in self.files:
            raise DboxRemoteMissingError(f"{path} does not exist", path)
        self.downloads.append((self.files[key]["path"], stream))
        sink.write(self.files[key]["data"])

    def delete(self, path: str) -> None:
        key = _key(path)
        if key in self.files:
            del self.files[key]
            return
        if key not in self.folders:
            raise DboxRemoteMissingError(f"{path} does not exist", path)
        prefix = f"{key}/"
        for table in (self.folders, self.files):
            for child in [k for k in table if k == key or k.startswith(prefix)]:
                del table[child]

    def idempotent_delete(self, path: str) -> bool:
        try:
            self.delete(path)
            return True
        except DboxRemoteMissingError:
            return False

    def move(self, path: str, new_path: str) -> Metadata:
        src, dst = _key(path), _key(new_path)
        if not self.exists(path):
            raise DboxRemoteMissingError(f"{path} does not exist", path)
        if src != dst and self.exists(new_path):
            raise DboxRemoteAlreadyExistsError(f"{new_path} already exists", new_path)
        self._ensure_parents(new_path)

        if src in self.files:
            record = self.files.pop(src)
            record["path"] = _display(new_path)
            self.files[dst] = record
            return self._file_metadata(dst)

        prefix = f"{src}/"
        old_display = self.folders[src]
        new_display = _display(new_path)
        for table in (self.folders, self.files):
            for key in sorted(k for k in table if k == src or k.startswith(prefix)):
                value = table.pop(key)
                new_key = dst + key[len(src) :]
                if table is self.folders:
                    table[new_key] = new_display + value[len(old_display) :]
                else:
                    value["path"] = new_display + value["path"][len(old_display) :]
                    table[new_key] = value
        return self._folder_metadata(dst)


@pytest.fixture
def remote():
    """Provide an empty in-memory Dropbox."""
    return FakeDropbox()
