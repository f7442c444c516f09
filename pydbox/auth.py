"""Access token lookup for CLI commands."""

from typing import Any

from .config import config
from .output import OutputFormatter


def require_access_token(ctx: Any, out: OutputFormatter) -> str:
    """Return the access token or exit with an error.

    The ``--access-token`` option (or ``DROPBOX_ACCESS_TOKEN``) takes
    precedence over the stored configuration.

    Args:
        ctx: Click context
        out: Output formatter for error messages

    Returns:
        Access token
    """
    token = ctx.obj.get("access_token") or config.access_token
    if not token:
        out.error("Dropbox access token not configured.")
        out.info("Run 'pydbox init' or set DROPBOX_ACCESS_TOKEN")
        ctx.exit(1)
    return token
