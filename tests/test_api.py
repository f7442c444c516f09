"""Unit tests for the Dropbox API client."""

import io
import json
from unittest.mock import patch

import httpx
import pytest

from pydbox.api import DropboxClient
from pydbox.exceptions import (
    DboxAuthenticationError,
    DboxConfigError,
    DboxInvalidResponseError,
    DboxNetworkError,
    DboxRateLimitError,
    DboxRemoteAlreadyExistsError,
    DboxRemoteMissingError,
    DboxServerError,
)
from pydbox.models import FileMetadata, FolderMetadata

API = "https://api.dropboxapi.com/2"
CONTENT = "https://content.dropboxapi.com/2"


def file_entry(path, **fields):
    entry = {
        ".tag": "file",
        "path_lower": path.lower(),
        "path_display": path,
        "id": f"id:{path.lower()}",
        "content_hash": "hash",
        "size": 4,
        "server_modified": "2025-01-01T00:00:00Z",
        "rev": "0001",
    }
    entry.update(fields)
    return entry


class Recorder:
    """httpx handler that replays canned responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def body(self, number=0):
        return json.loads(self.requests[number].content)

    def arg(self, number=0):
        return json.loads(self.requests[number].headers["Dropbox-API-Arg"])


def make_client(recorder, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    return DropboxClient(
        access_token="tok", transport=httpx.MockTransport(recorder), **kwargs
    )


class TestDropboxClient:
    """Tests for DropboxClient initialization."""

    def test_init_with_access_token(self):
        """Test client initialization with an explicit token."""
        client = DropboxClient(access_token="tok", api_url="https://custom.api/")
        assert client.access_token == "tok"
        assert client.api_url == "https://custom.api"

    def test_init_without_access_token_raises_error(self):
        """Test that a missing token is a configuration error."""
        with patch("pydbox.api.config") as mock_config:
            mock_config.access_token = None
            with pytest.raises(DboxConfigError, match="Access token not configured"):
                DropboxClient(access_token=None)

    def test_authorization_header(self):
        """Test that requests carry the bearer token."""
        recorder = Recorder(httpx.Response(200, json={"account_id": "a"}))
        client = make_client(recorder)

        assert client.get_current_account() == {"account_id": "a"}
        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer tok"
        assert str(request.url) == f"{API}/users/get_current_account"


class TestRequestErrors:
    """Tests for error mapping and retries."""

    @pytest.mark.parametrize(
        "summary,error_class",
        [
            ("path/not_found/..", DboxRemoteMissingError),
            ("path/conflict/folder/...", DboxRemoteAlreadyExistsError),
        ],
    )
    def test_conflict_responses(self, summary, error_class):
        """Test mapping of 409 error summaries."""
        recorder = Recorder(httpx.Response(409, json={"error_summary": summary}))
        with pytest.raises(error_class):
            make_client(recorder).get_metadata("/docs")

    def test_unauthorized_is_not_retried(self):
        """Test that 401 fails immediately."""
        recorder = Recorder(httpx.Response(401, json={"error_summary": "expired"}))
        with pytest.raises(DboxAuthenticationError):
            make_client(recorder).get_metadata("/docs")
        assert len(recorder.requests) == 1

    def test_server_errors_are_retried(self):
        """Test that 5xx responses are retried until success."""
        recorder = Recorder(
            httpx.Response(500, text="oops"),
            httpx.Response(503, text="busy"),
            httpx.Response(200, json={".tag": "folder", "path_lower": "/docs"}),
        )
        meta = make_client(recorder).get_metadata("/docs")
        assert meta == FolderMetadata(path_lower="/docs", path_display="/docs")
        assert len(recorder.requests) == 3

    def test_retries_are_bounded(self):
        """Test that retries stop after max_retries."""
        recorder = Recorder(*[httpx.Response(500, text="oops") for _ in range(3)])
        with pytest.raises(DboxServerError):
            make_client(recorder, max_retries=2).get_metadata("/docs")
        assert len(recorder.requests) == 3

    def test_rate_limit(self):
        """Test that 429 is retried and then reported."""
        recorder = Recorder(*[httpx.Response(429, text="slow down") for _ in range(2)])
        with pytest.raises(DboxRateLimitError):
            make_client(recorder, max_retries=1).get_metadata("/docs")
        assert len(recorder.requests) == 2

    def test_network_error(self):
        """Test that transport failures become DboxNetworkError."""
        recorder = Recorder(
            httpx.ConnectError("connection refused"),
            httpx.ConnectError("connection refused"),
        )
        with pytest.raises(DboxNetworkError):
            make_client(recorder, max_retries=1).get_metadata("/docs")
        assert len(recorder.requests) == 2

    def test_invalid_json(self):
        """Test that a broken JSON body is reported."""
        recorder = Recorder(
            httpx.Response(
                200, content=b"{nope", headers={"Content-Type": "application/json"}
            )
        )
        with pytest.raises(DboxInvalidResponseError):
            make_client(recorder).get_metadata("/docs")

    def test_unexpected_content_type(self):
        """Test that an HTML page instead of JSON is reported."""
        recorder = Recorder(
            httpx.Response(
                200, content=b"<html></html>", headers={"Content-Type": "text/html"}
            )
        )
        with pytest.raises(DboxInvalidResponseError, match="Unexpected response"):
            make_client(recorder).get_metadata("/docs")


class TestMetadata:
    """Tests for metadata and listing calls."""

    def test_root_metadata_needs_no_request(self):
        """Test that the account root is answered locally."""
        recorder = Recorder()
        meta = make_client(recorder).get_metadata("/")
        assert meta.tag == "folder"
        assert recorder.requests == []

    def test_get_file_metadata(self):
        """Test fetching a file entry."""
        recorder = Recorder(httpx.Response(200, json=file_entry("/Docs/A.txt")))
        meta = make_client(recorder).get_metadata("Docs/A.txt")
        assert isinstance(meta, FileMetadata)
        assert meta.path_display == "/Docs/A.txt"
        assert recorder.body() == {"path": "/Docs/A.txt"}

    def test_list_folder_follows_cursor(self):
        """Test pagination of folder listings."""
        recorder = Recorder(
            httpx.Response(
                200,
                json={
                    "entries": [
                        {".tag": "folder", "path_lower": "/docs"},
                        file_entry("/Docs/a.txt"),
                    ],
                    "cursor": "c1",
                    "has_more": True,
                },
            ),
            httpx.Response(
                200,
                json={
                    "entries": [{".tag": "deleted", "path_lower": "/docs/b.txt"}],
                    "cursor": "c2",
                    "has_more": False,
                },
            ),
        )

        entries = make_client(recorder).list_folder("/Docs/", recursive=True)

        assert [e.path_lower for e in entries] == ["/docs/a.txt", "/docs/b.txt"]
        assert recorder.body(0) == {
            "path": "/Docs",
            "recursive": True,
            "include_deleted": False,
        }
        assert str(recorder.requests[1].url) == f"{API}/files/list_folder/continue"
        assert recorder.body(1) == {"cursor": "c1"}

    def test_list_folder_rejects_malformed_result(self):
        """Test that a listing without entries is reported."""
        recorder = Recorder(httpx.Response(200, json={"cursor": "c"}))
        with pytest.raises(DboxInvalidResponseError):
            make_client(recorder).list_folder("/docs")


class TestTransfers:
    """Tests for uploads and downloads."""

    def test_put_file_adds_without_revision(self):
        """Test that new files are uploaded in add mode."""
        recorder = Recorder(httpx.Response(200, json=file_entry("/a.txt")))
        meta = make_client(recorder).put_file("/a.txt", io.BytesIO(b"data"))

        request = recorder.requests[0]
        assert str(request.url) == f"{CONTENT}/files/upload"
        assert request.content == b"data"
        assert recorder.arg() == {
            "path": "/a.txt",
            "mode": "add",
            "autorename": True,
            "mute": True,
        }
        assert meta.id == "id:/a.txt"

    def test_put_file_updates_a_revision(self):
        """Test that tracked files are uploaded in update mode."""
        recorder = Recorder(httpx.Response(200, json=file_entry("/a (1).txt")))
        meta = make_client(recorder).put_file(
            "/a.txt", io.BytesIO(b"data"), previous_revision="0abc"
        )

        assert recorder.arg()["mode"] == {".tag": "update", "update": "0abc"}
        assert meta.path_display == "/a (1).txt"

    def test_put_file_uses_session_for_large_files(self, tmp_path):
        """Test chunked uploads above the session threshold."""
        path = tmp_path / "big.bin"
        path.write_bytes(b"0123456789")
        recorder = Recorder(
            httpx.Response(200, json={"session_id": "s1"}),
            httpx.Response(200, json={}),
            httpx.Response(200, json=file_entry("/big.bin")),
        )

        with open(path, "rb") as f:
            make_client(recorder).put_file(
                "/big.bin", f, chunk_size=4, session_threshold=5
            )

        urls = [str(r.url) for r in recorder.requests]
        assert urls == [
            f"{CONTENT}/files/upload_session/start",
            f"{CONTENT}/files/upload_session/append_v2",
            f"{CONTENT}/files/upload_session/finish",
        ]
        assert [r.content for r in recorder.requests] == [b"0123", b"4567", b"89"]
        assert recorder.arg(2)["cursor"] == {"session_id": "s1", "offset": 8}

    @pytest.mark.parametrize("stream", [False, True])
    def test_get_file(self, stream):
        """Test downloading with and without streaming."""
        recorder = Recorder(httpx.Response(200, content=b"file body"))
        sink = io.BytesIO()

        make_client(recorder).get_file("/Docs/a.txt", sink, stream=stream)

        assert sink.getvalue() == b"file body"
        assert recorder.arg() == {"path": "/Docs/a.txt"}

    def test_streamed_download_error(self):
        """Test that an error during a streamed download is mapped."""
        recorder = Recorder(
            httpx.Response(409, json={"error_summary": "path/not_found/"})
        )
        with pytest.raises(DboxRemoteMissingError):
            make_client(recorder).get_file("/a.txt", io.BytesIO(), stream=True)


class TestMutations:
    """Tests for folder creation, deletion and moves."""

    def test_create_dir(self):
        """Test creating a folder."""
        recorder = Recorder(
            httpx.Response(
                200,
                json={"metadata": {"path_lower": "/new", "path_display": "/New"}},
            )
        )
        meta = make_client(recorder).create_dir("/New")
        assert meta.path_display == "/New"
        assert recorder.body() == {"path": "/New", "autorename": False}

    def test_idempotent_delete(self):
        """Test that deleting a missing object is not an error."""
        recorder = Recorder(
            httpx.Response(200, json={"metadata": file_entry("/a.txt")}),
            httpx.Response(409, json={"error_summary": "path_lookup/not_found/"}),
        )
        client = make_client(recorder)

        assert client.idempotent_delete("/a.txt") is True
        assert client.idempotent_delete("/a.txt") is False

    def test_delete_missing_raises(self):
        """Test that a plain delete of a missing object raises."""
        recorder = Recorder(
            httpx.Response(409, json={"error_summary": "path_lookup/not_found/"})
        )
        with pytest.raises(DboxRemoteMissingError):
            make_client(recorder).delete("/a.txt")

    def test_move(self):
        """Test moving a folder."""
        recorder = Recorder(
            httpx.Response(
                200,
                json={"metadata": {".tag": "folder", "path_lower": "/archive/docs"}},
            )
        )
        meta = make_client(recorder).move("/Docs", "/Archive/Docs")
        assert meta.path_lower == "/archive/docs"
        assert recorder.body() == {
            "from_path": "/Docs",
            "to_path": "/Archive/Docs",
            "autorename": False,
        }

    def test_move_onto_existing_target(self):
        """Test that an occupied move target is reported."""
        recorder = Recorder(
            httpx.Response(409, json={"error_summary": "to/conflict/folder/"})
        )
        with pytest.raises(DboxRemoteAlreadyExistsError):
            make_client(recorder).move("/a", "/b")
