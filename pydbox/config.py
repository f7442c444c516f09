"""Configuration management for pydbox."""

import os
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, set_key

DEFAULT_API_URL = "https://api.dropboxapi.com/2"
DEFAULT_CONTENT_URL = "https://content.dropboxapi.com/2"


class Config:
    """Configuration read from the environment and ``~/.config/pydbox/config``.

    Environment variables take precedence over the config file.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or Path.home() / ".config" / "pydbox"
        self._file_values: Optional[dict[str, str]] = None

    def get_config_path(self) -> Path:
        """Path of the config file."""
        return self.config_dir / "config"

    def _load_file(self) -> dict[str, str]:
        if self._file_values is None:
            path = self.get_config_path()
            values = dotenv_values(path) if path.is_file() else {}
            # Keys without a value come back as None
            self._file_values = {k: v for k, v in values.items() if v is not None}
        return self._file_values

    def _get(self, key: str) -> Optional[str]:
        return os.environ.get(key) or self._load_file().get(key)

    @property
    def access_token(self) -> Optional[str]:
        """Dropbox access token."""
        return self._get("DROPBOX_ACCESS_TOKEN")

    @property
    def api_url(self) -> str:
        """Base URL of the RPC endpoints."""
        return self._get("PYDBOX_API_URL") or DEFAULT_API_URL

    @property
    def content_url(self) -> str:
        """Base URL of the content (upload/download) endpoints."""
        return self._get("PYDBOX_CONTENT_URL") or DEFAULT_CONTENT_URL

    def is_configured(self) -> bool:
        """Check whether an access token is available."""
        return bool(self.access_token)

    def save_access_token(self, token: str) -> None:
        """Store the access token in the config file.

        Args:
            token: Dropbox access token
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.get_config_path()
        path.touch(mode=0o600, exist_ok=True)
        set_key(path, "DROPBOX_ACCESS_TOKEN", token, quote_mode="never")
        path.chmod(0o600)
        self._file_values = None


config = Config()
