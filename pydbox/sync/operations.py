"""Sync operations wrapper for unified upload/download interface."""

import logging
import os
import uuid
from typing import BinaryIO, Optional, Protocol

from ..case_insensitive import CaseInsensitiveFS
from ..exceptions import DboxRemoteAlreadyExistsError
from ..models import FileMetadata, FolderMetadata, Metadata
from ..utils import MIN_BYTES_TO_STREAM_DOWNLOAD, TMP_FILE_SUFFIX, to_timestamp

logger = logging.getLogger(__name__)


class RemoteBackend(Protocol):
    """Remote storage operations the reconcilers rely on.

    :class:`pydbox.api.DropboxClient` implements this protocol.
    """

    def get_metadata(self, path: str) -> Metadata: ...

    def list_folder(
        self, path: str, recursive: bool = False, include_deleted: bool = False
    ) -> list[Metadata]: ...

    def create_dir(self, path: str) -> FolderMetadata: ...

    def put_file(
        self, path: str, file_obj: BinaryIO, previous_revision: Optional[str] = None
    ) -> FileMetadata: ...

    def get_file(self, path: str, sink: BinaryIO, stream: bool = False) -> None: ...

    def delete(self, path: str) -> None: ...

    def idempotent_delete(self, path: str) -> bool: ...

    def move(self, path: str, new_path: str) -> Metadata: ...


class SyncOperations:
    """Unified transfer and cleanup operations used by Pull and Push."""

    def __init__(self, client: RemoteBackend, fs: Optional[CaseInsensitiveFS] = None):
        """Initialize sync operations.

        Args:
            client: Remote backend
            fs: Case-insensitive filesystem facade
        """
        self.client = client
        self.fs = fs or CaseInsensitiveFS()

    @staticmethod
    def is_tmpfile(name: str) -> bool:
        return name.startswith(".") and name.endswith(TMP_FILE_SUFFIX)

    def generate_tmpfilename(self, target: str) -> str:
        """Temporary file name beside ``target``."""
        directory, name = os.path.split(target)
        return os.path.join(
            directory, f".{name}.{uuid.uuid4().hex[:8]}{TMP_FILE_SUFFIX}"
        )

    def remove_tmpfiles(self, root: str) -> int:
        """Delete temporary download artifacts left by an interrupted pull.

        Returns:
            Number of removed files
        """
        removed = 0
        for directory, _dirnames, filenames in self.fs.walk(root):
            for name in filenames:
                if self.is_tmpfile(name):
                    path = os.path.join(directory, name)
                    logger.debug("Removing abandoned download %s", path)
                    self.fs.remove(path)
                    removed += 1
        return removed

    def set_local_mtime(self, local_path: str, server_modified: Optional[str]) -> None:
        """Set the mtime of a local file to the server modification time."""
        timestamp = to_timestamp(server_modified)
        if timestamp is None:
            return
        try:
            self.fs.set_mtime(local_path, timestamp)
        except FileNotFoundError:
            pass

    def download_file(self, remote_file: FileMetadata, local_path: str) -> str:
        """Download a remote file without exposing partial content.

        The bytes are written to a temporary file in the target directory
        and renamed over the target once complete, so the previous file
        stays intact until then. Large files are streamed.

        Args:
            remote_file: Remote file to download
            local_path: Local path where the file should be saved

        Returns:
            Resolved local path of the downloaded file
        """
        self.fs.makedirs(os.path.dirname(local_path))
        target = self.fs.join(local_path)
        tmp = self.generate_tmpfilename(target)
        stream = remote_file.size > MIN_BYTES_TO_STREAM_DOWNLOAD

        try:
            with open(tmp, "wb") as f:
                self.client.get_file(remote_file.path_lower, f, stream)
            target = self.fs.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

        self.set_local_mtime(target, remote_file.server_modified)
        return target

    def upload_file(
        self,
        local_path: str,
        remote_path: str,
        previous_revision: Optional[str] = None,
    ) -> FileMetadata:
        """Upload a local file.

        Args:
            local_path: Local file to upload
            remote_path: Absolute remote destination
            previous_revision: Revision the local copy is based on

        Returns:
            Metadata of the stored file; its path may differ from
            ``remote_path`` when the backend renamed a conflicting upload
        """
        with self.fs.open(local_path, "rb") as f:
            return self.client.put_file(remote_path, f, previous_revision)

    def create_remote_dir(self, remote_path: str) -> None:
        try:
            self.client.create_dir(remote_path)
        except DboxRemoteAlreadyExistsError:
            logger.debug("%s already exists remotely", remote_path)

    def delete_remote(self, remote_path: str) -> bool:
        """Delete a remote object; a missing object counts as deleted."""
        return self.client.idempotent_delete(remote_path)

    def delete_local(self, local_path: str) -> bool:
        """Delete a local file or directory tree if present."""
        if self.fs.isdir(local_path):
            return self.fs.rmtree(local_path)
        return self.fs.remove(local_path)
