"""Unit tests for the pydbox CLI commands."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from pydbox.cli import main
from pydbox.exceptions import DboxAuthenticationError, DboxDatabaseError
from pydbox.models import Changelist
from pydbox.sync.state import EntryIndex


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def mock_engine():
    """Patch the client and sync engine used by the commands."""
    with patch("pydbox.cli.DropboxClient") as client_class, patch(
        "pydbox.cli.SyncEngine"
    ) as engine_class:
        engine = engine_class.return_value
        engine.client_class = client_class
        yield engine


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "pydbox" in result.output
        assert "--access-token" in result.output
        for command in ("init", "clone", "pull", "push", "sync", "exists"):
            assert command in result.output

    def test_missing_access_token(self, runner, tmp_path):
        """Test that commands needing the remote fail without a token."""
        with patch("pydbox.auth.config") as mock_config:
            mock_config.access_token = None
            result = runner.invoke(
                main,
                ["pull", str(tmp_path)],
                env={"DROPBOX_ACCESS_TOKEN": None},
            )
        assert result.exit_code == 1
        assert "access token not configured" in result.output


class TestInitCommand:
    """Tests for the init command."""

    @patch("pydbox.cli.DropboxClient")
    @patch("pydbox.cli.config")
    def test_init_with_valid_token(self, mock_config, mock_client_class, runner):
        """Test init with a valid access token."""
        mock_client_class.return_value.get_current_account.return_value = {
            "email": "me@example.com"
        }
        mock_config.get_config_path.return_value = Path("/home/me/config")

        result = runner.invoke(main, ["init"], input="tok\n")

        assert result.exit_code == 0
        assert "me@example.com" in result.output
        mock_client_class.assert_called_once_with(access_token="tok")
        mock_config.save_access_token.assert_called_once_with("tok")

    @patch("pydbox.cli.DropboxClient")
    @patch("pydbox.cli.config")
    def test_init_with_invalid_token_declined(
        self, mock_config, mock_client_class, runner
    ):
        """Test that a rejected token is only saved on request."""
        mock_client_class.return_value.get_current_account.side_effect = (
            DboxAuthenticationError("Invalid access token")
        )

        result = runner.invoke(main, ["init", "-t", "bad"], input="n\n")

        assert result.exit_code == 1
        assert "validation failed" in result.output
        mock_config.save_access_token.assert_not_called()


class TestSyncCommands:
    """Tests for clone, pull, push and sync."""

    def test_pull_json(self, runner, mock_engine, tmp_path):
        """Test JSON output of a pull."""
        mock_engine.pull.return_value = Changelist(created=["a.txt"])

        result = runner.invoke(
            main,
            ["-t", "tok", "--json", "pull", str(tmp_path), "-s", "docs"],
        )

        assert result.exit_code == 0
        assert json.loads(result.stdout) == Changelist(created=["a.txt"]).to_dict()
        mock_engine.pull.assert_called_once_with(
            str(tmp_path), ["docs"], dry_run=False
        )
        mock_engine.client_class.assert_called_once_with(access_token="tok")

    def test_push_text_output(self, runner, mock_engine, tmp_path):
        """Test the human-readable changelist."""
        mock_engine.push.return_value = Changelist(
            created=["new.txt"], deleted=["old.txt"]
        )

        result = runner.invoke(main, ["-t", "tok", "push", str(tmp_path)])

        assert result.exit_code == 0
        assert "new.txt" in result.output
        assert "old.txt" in result.output

    def test_nothing_to_do(self, runner, mock_engine, tmp_path):
        """Test the message for an empty changelist."""
        mock_engine.push.return_value = Changelist()
        result = runner.invoke(main, ["-t", "tok", "push", str(tmp_path)])
        assert result.exit_code == 0
        assert "nothing to do" in result.output

    def test_push_dry_run(self, runner, mock_engine, tmp_path):
        """Test that --dry-run reaches the engine and labels the output."""
        mock_engine.push.return_value = Changelist(created=["new.txt"])

        result = runner.invoke(
            main, ["-t", "tok", "push", str(tmp_path), "--dry-run"]
        )

        assert result.exit_code == 0
        assert "dry run" in result.output
        assert "new.txt" in result.output
        mock_engine.push.assert_called_once_with(str(tmp_path), None, dry_run=True)

    def test_failures_set_exit_code(self, runner, mock_engine, tmp_path):
        """Test that per-file failures are reported with exit code 1."""
        changes = Changelist()
        changes.add_failure("update", "bad.txt", OSError("disk full"))
        mock_engine.pull.return_value = changes

        result = runner.invoke(main, ["-t", "tok", "pull", str(tmp_path)])

        assert result.exit_code == 1
        assert "bad.txt" in result.output

    def test_error_exit(self, runner, mock_engine, tmp_path):
        """Test that engine errors are printed and exit with 1."""
        mock_engine.pull.side_effect = DboxDatabaseError("No pydbox index found")

        result = runner.invoke(main, ["-t", "tok", "pull", str(tmp_path)])

        assert result.exit_code == 1
        assert "No pydbox index found" in result.output

    def test_sync_json(self, runner, mock_engine, tmp_path):
        """Test JSON output of a sync."""
        mock_engine.sync.return_value = {
            "push": Changelist(created=["up.txt"]),
            "pull": Changelist(updated=["down.txt"]),
        }

        result = runner.invoke(
            main, ["-t", "tok", "--json", "sync", str(tmp_path), "-s", "a,b"]
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["push"]["created"] == ["up.txt"]
        assert data["pull"]["updated"] == ["down.txt"]
        mock_engine.sync.assert_called_once_with(
            str(tmp_path), ["a,b"], dry_run=False
        )

    def test_clone_with_excluded_extensions(self, runner, tmp_path):
        """Test that excluded extensions reach the engine."""
        with patch("pydbox.cli.DropboxClient"), patch(
            "pydbox.cli.SyncEngine"
        ) as engine_class:
            engine_class.return_value.clone.return_value = Changelist()
            result = runner.invoke(
                main,
                ["-t", "tok", "clone", "/Docs", str(tmp_path / "docs"), "-x", ".tmp"],
            )

        assert result.exit_code == 0
        assert engine_class.call_args.kwargs["blacklisted_extensions"] == [".tmp"]
        engine_class.return_value.clone.assert_called_once_with(
            "/Docs", str(tmp_path / "docs"), None
        )


class TestManagementCommands:
    """Tests for move, delete and exists."""

    def test_move(self, runner, mock_engine, tmp_path):
        """Test moving the remote root."""
        result = runner.invoke(main, ["-t", "tok", "move", "/New", str(tmp_path)])
        assert result.exit_code == 0
        mock_engine.move.assert_called_once_with("/New", str(tmp_path))

    def test_delete_asks_for_confirmation(self, runner, mock_engine):
        """Test that delete can be cancelled."""
        result = runner.invoke(main, ["-t", "tok", "delete", "/Docs"], input="n\n")
        assert result.exit_code == 1
        mock_engine.delete.assert_not_called()

    def test_delete_with_yes(self, runner, mock_engine):
        """Test deleting without a prompt."""
        result = runner.invoke(main, ["-t", "tok", "delete", "/Docs", "--yes"])
        assert result.exit_code == 0
        mock_engine.delete.assert_called_once_with("/Docs", None)

    def test_exists(self, runner, tmp_path):
        """Test exists on a managed directory."""
        EntryIndex.create(tmp_path, "/Docs")
        result = runner.invoke(main, ["--json", "exists", str(tmp_path)])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"exists": True, "path": str(tmp_path)}

    def test_exists_unmanaged(self, runner, tmp_path):
        """Test exists on an unmanaged directory."""
        result = runner.invoke(main, ["--json", "exists", str(tmp_path)])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["exists"] is False
