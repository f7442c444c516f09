"""API client for Dropbox."""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, BinaryIO

import httpx

from .config import config
from .exceptions import (
    DboxAPIError,
    DboxAuthenticationError,
    DboxConfigError,
    DboxInvalidResponseError,
    DboxNetworkError,
    DboxRateLimitError,
    DboxRemoteAlreadyExistsError,
    DboxRemoteMissingError,
    DboxRequestDeniedError,
    DboxServerError,
)
from .models import (
    FileMetadata,
    FolderMetadata,
    Metadata,
    metadata_from_api,
)
from .utils import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_UPLOAD_SESSION_THRESHOLD,
)

logger = logging.getLogger(__name__)


def _api_path(path: str) -> str:
    """Dropbox addresses the account root as the empty string."""
    stripped = path.strip().rstrip("/")
    if not stripped:
        return ""
    return stripped if stripped.startswith("/") else f"/{stripped}"


class DropboxClient:
    """Client for the Dropbox HTTP API v2.

    This is the remote backend consumed by the reconcilers. An instance is
    created by the caller and handed to :class:`pydbox.sync.SyncEngine`.
    """

    def __init__(
        self,
        access_token: str | None = None,
        api_url: str | None = None,
        content_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize Dropbox API client.

        Args:
            access_token: Optional access token (uses config if not provided)
            api_url: Optional RPC endpoint URL (uses config if not provided)
            content_url: Optional content endpoint URL (uses config if not provided)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Fixed delay between retries in seconds (default: 3.0)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
        """
        self.access_token = access_token or config.access_token
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.content_url = (content_url or config.content_url).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport

        if not self.access_token:
            raise DboxConfigError(
                "Access token not configured. Please set the DROPBOX_ACCESS_TOKEN "
                "environment variable or run 'pydbox init'."
            )

        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> DropboxClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================
    # Request handling
    # =========================

    def _error_for_response(
        self, response: httpx.Response, path: str | None
    ) -> DboxAPIError:
        """Map an error response to the matching exception."""
        status_code = response.status_code
        summary = ""
        try:
            data = response.json()
            if isinstance(data, dict):
                summary = str(data.get("error_summary") or data.get("error") or "")
        except ValueError:
            summary = response.text[:200] if response.content else ""

        where = f" ({path})" if path else ""
        if status_code == 401:
            return DboxAuthenticationError(
                f"Invalid access token or unauthorized access{where}", path
            )
        if status_code == 403:
            return DboxRequestDeniedError(f"Operation denied{where}: {summary}", path)
        if status_code == 404:
            return DboxRemoteMissingError(f"{path or 'Resource'} does not exist", path)
        if status_code == 409:
            if "not_found" in summary:
                return DboxRemoteMissingError(f"{path} does not exist: {summary}", path)
            if "conflict" in summary:
                return DboxRemoteAlreadyExistsError(
                    f"{path} already exists or has invalid characters: {summary}",
                    path,
                )
            return DboxAPIError(f"API conflict{where}: {summary}", path)
        if status_code == 429:
            return DboxRateLimitError("Rate limit exceeded - please try again later")
        if 500 <= status_code < 600:
            return DboxServerError(
                f"Server error {status_code}{where}: {summary}".rstrip(": "), path
            )
        return DboxAPIError(
            f"API request failed with status {status_code}{where}: {summary}", path
        )

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int, path: str | None
    ) -> tuple[DboxAPIError, bool]:
        """Handle HTTP errors and determine if retry should occur.

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        error = self._error_for_response(e.response, path)
        retryable = isinstance(error, (DboxRateLimitError, DboxServerError))
        return error, retryable and attempt < self.max_retries

    def _request(
        self,
        url: str,
        path: str | None = None,
        expect_json: bool = True,
        **kwargs: Any,
    ) -> Any:
        """Make a POST request with retry logic.

        Args:
            url: Full endpoint URL
            path: Remote path the request is about (for error messages)
            expect_json: Whether the response body must be JSON
            **kwargs: Additional arguments passed to httpx

        Returns:
            Parsed JSON (``expect_json``) or the raw response

        Raises:
            DboxAPIError: If the request fails after all retries
        """
        last_exception: Exception | None = None
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.post(url, **kwargs)
                response.raise_for_status()

                if not expect_json:
                    return response

                content_type = response.headers.get("Content-Type", "")
                if response.content and "application/json" not in content_type:
                    raise DboxInvalidResponseError(
                        f"Unexpected response type: {content_type}", path
                    )
                if not response.content:
                    return {}
                try:
                    return response.json()
                except ValueError as e:
                    raise DboxInvalidResponseError(
                        "Invalid JSON response from server", path
                    ) from e

            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt, path)
                last_exception = error
                if should_retry:
                    delay = self.retry_delay
                    retry_after = e.response.headers.get("Retry-After")
                    if isinstance(error, DboxRateLimitError) and retry_after:
                        if retry_after.isdigit():
                            delay = float(retry_after)
                    logger.debug(
                        "Request to %s failed (attempt %d/%d), retrying in %.1fs: %s",
                        url,
                        attempt + 1,
                        self.max_retries + 1,
                        delay,
                        error,
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except DboxAPIError:
                raise
            except httpx.RequestError as e:
                error = DboxNetworkError(f"Network error: {e}", path)
                last_exception = error
                if attempt < self.max_retries:
                    time.sleep(self.retry_delay)
                    continue
                raise error from e

        if last_exception:
            raise last_exception
        raise DboxAPIError("Request failed after all retry attempts", path)

    def _rpc(self, endpoint: str, payload: dict[str, Any], path: str | None) -> Any:
        return self._request(f"{self.api_url}/{endpoint}", path=path, json=payload)

    def _content_headers(self, arg: dict[str, Any]) -> dict[str, str]:
        return {
            "Dropbox-API-Arg": json.dumps(arg),
            "Content-Type": "application/octet-stream",
        }

    # =========================
    # Metadata Operations
    # =========================

    def get_current_account(self) -> dict[str, Any]:
        """Fetch information about the account the token belongs to."""
        result = self._request(
            f"{self.api_url}/users/get_current_account",
            content=b"null",
            headers={"Content-Type": "application/json"},
        )
        if not isinstance(result, dict):
            raise DboxInvalidResponseError(f"Invalid result from server: {result!r}")
        return result

    def get_metadata(self, path: str) -> Metadata:
        """Fetch metadata of a single remote object.

        Raises:
            DboxRemoteMissingError: If nothing exists at ``path``
        """
        logger.debug("Fetching metadata for %s", path)
        api_path = _api_path(path)
        if not api_path:
            return FolderMetadata(path_lower="/", path_display="/")
        result = self._rpc("files/get_metadata", {"path": api_path}, path)
        return metadata_from_api(result)

    def list_folder(
        self,
        path: str,
        recursive: bool = False,
        include_deleted: bool = False,
    ) -> list[Metadata]:
        """List a remote folder, following pagination cursors.

        Args:
            path: Remote folder path
            recursive: Whether to list all descendants
            include_deleted: Whether to include deleted entries

        Returns:
            All entries, excluding the listed folder itself
        """
        logger.debug("Getting file listing for %s", path)
        api_path = _api_path(path)
        result = self._rpc(
            "files/list_folder",
            {
                "path": api_path,
                "recursive": recursive,
                "include_deleted": include_deleted,
            },
            path,
        )
        entries: list[Metadata] = []
        while True:
            if not isinstance(result, dict) or not isinstance(
                result.get("entries"), list
            ):
                raise DboxInvalidResponseError(
                    f"Invalid result from server: {result!r}", path
                )
            for raw in result["entries"]:
                entry = metadata_from_api(raw)
                if entry.path_lower != api_path.lower():
                    entries.append(entry)
            if not result.get("has_more"):
                break
            result = self._rpc(
                "files/list_folder/continue", {"cursor": result["cursor"]}, path
            )
        return entries

    # =========================
    # Mutating Operations
    # =========================

    def create_dir(self, path: str) -> FolderMetadata:
        """Create a remote folder.

        Raises:
            DboxRemoteAlreadyExistsError: If something already exists at ``path``
        """
        logger.info("Creating %s", path)
        result = self._rpc(
            "files/create_folder_v2",
            {"path": _api_path(path), "autorename": False},
            path,
        )
        folder = result.get("metadata") if isinstance(result, dict) else None
        if not isinstance(folder, dict) or "path_lower" not in folder:
            raise DboxInvalidResponseError(
                f"Invalid result from server: {result!r}", path
            )
        return FolderMetadata(
            path_lower=folder["path_lower"],
            path_display=folder.get("path_display") or folder["path_lower"],
            id=folder.get("id"),
        )

    def put_file(
        self,
        path: str,
        file_obj: BinaryIO,
        previous_revision: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        session_threshold: int = DEFAULT_UPLOAD_SESSION_THRESHOLD,
    ) -> FileMetadata:
        """Upload file contents to ``path``.

        With a previous revision the upload only overwrites that revision;
        otherwise it adds a new file. In both cases Dropbox renames the
        upload instead of overwriting someone else's changes, so the
        returned path may differ from ``path``.

        Args:
            path: Remote destination path
            file_obj: Binary stream with the contents
            previous_revision: Revision the local copy was based on
            chunk_size: Chunk size for upload sessions
            session_threshold: Size above which an upload session is used

        Returns:
            Metadata of the stored file
        """
        logger.info("Uploading %s", path)
        mode: Any = (
            {".tag": "update", "update": previous_revision}
            if previous_revision
            else "add"
        )
        commit = {
            "path": _api_path(path),
            "mode": mode,
            "autorename": True,
            "mute": True,
        }

        try:
            size = os.fstat(file_obj.fileno()).st_size
        except (AttributeError, OSError, ValueError):
            size = None

        if size is not None and size > session_threshold:
            result = self._upload_session(path, file_obj, size, commit, chunk_size)
        else:
            result = self._request(
                f"{self.content_url}/files/upload",
                path=path,
                headers=self._content_headers(commit),
                content=file_obj.read(),
            )
        metadata = metadata_from_api(result)
        if not isinstance(metadata, FileMetadata):
            raise DboxInvalidResponseError(
                f"Upload returned unexpected metadata: {result!r}", path
            )
        return metadata

    def _upload_session(
        self,
        path: str,
        file_obj: BinaryIO,
        size: int,
        commit: dict[str, Any],
        chunk_size: int,
    ) -> Any:
        """Upload a large file in chunks."""
        logger.debug("Using upload session for %s", path)
        chunk = file_obj.read(chunk_size)
        start = self._request(
            f"{self.content_url}/files/upload_session/start",
            path=path,
            headers=self._content_headers({"close": False}),
            content=chunk,
        )
        session_id = start.get("session_id") if isinstance(start, dict) else None
        if not session_id:
            raise DboxInvalidResponseError(f"No upload session id: {start!r}", path)
        offset = len(chunk)

        while size - offset > chunk_size:
            chunk = file_obj.read(chunk_size)
            self._request(
                f"{self.content_url}/files/upload_session/append_v2",
                path=path,
                headers=self._content_headers(
                    {"cursor": {"session_id": session_id, "offset": offset}}
                ),
                content=chunk,
            )
            offset += len(chunk)

        return self._request(
            f"{self.content_url}/files/upload_session/finish",
            path=path,
            headers=self._content_headers(
                {
                    "cursor": {"session_id": session_id, "offset": offset},
                    "commit": commit,
                }
            ),
            content=file_obj.read(),
        )

    def get_file(self, path: str, sink: BinaryIO, stream: bool = False) -> None:
        """Download file contents into ``sink``.

        Args:
            path: Remote file path
            sink: Writable binary stream
            stream: Write the body chunk by chunk instead of buffering it
        """
        url = f"{self.content_url}/files/download"
        headers = {"Dropbox-API-Arg": json.dumps({"path": _api_path(path)})}

        if not stream:
            logger.info("Downloading %s", path)
            response = self._request(
                url, path=path, expect_json=False, headers=headers
            )
            sink.write(response.content)
            return

        logger.info("Streaming %s", path)
        client = self._get_client()
        try:
            with client.stream("POST", url, headers=headers) as response:
                if response.is_error:
                    response.read()
                    raise self._error_for_response(response, path)
                for chunk in response.iter_bytes(chunk_size=64 * 1024):
                    if chunk:
                        sink.write(chunk)
        except httpx.RequestError as e:
            raise DboxNetworkError(f"Network error during download: {e}", path) from e

    def delete(self, path: str) -> None:
        """Delete a remote file or folder.

        Raises:
            DboxRemoteMissingError: If nothing exists at ``path``
        """
        logger.info("Deleting %s", path)
        self._rpc("files/delete_v2", {"path": _api_path(path)}, path)

    def idempotent_delete(self, path: str) -> bool:
        """Delete a remote object, treating a missing object as success.

        Returns:
            True if something was deleted
        """
        try:
            self.delete(path)
            return True
        except DboxRemoteMissingError:
            logger.debug("%s already gone", path)
            return False

    def move(self, path: str, new_path: str) -> Metadata:
        """Move a remote object.

        Raises:
            DboxRemoteAlreadyExistsError: If ``new_path`` is taken
            DboxRemoteMissingError: If ``path`` does not exist
        """
        logger.info("Moving %s to %s", path, new_path)
        result = self._rpc(
            "files/move_v2",
            {
                "from_path": _api_path(path),
                "to_path": _api_path(new_path),
                "autorename": False,
            },
            path,
        )
        return metadata_from_api(result.get("metadata", {}))
