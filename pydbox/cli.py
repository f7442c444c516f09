"""CLI interface for pydbox."""

import logging
from typing import Any, Optional

import click

from .api import DropboxClient
from .auth import require_access_token
from .config import config
from .exceptions import DboxAPIError, DboxError
from .models import Changelist
from .output import OutputFormatter
from .sync import SyncEngine

logger = logging.getLogger(__name__)


def _engine(ctx: Any, exclude_ext: tuple[str, ...] = ()) -> SyncEngine:
    out: OutputFormatter = ctx.obj["out"]
    access_token = require_access_token(ctx, out)
    client = DropboxClient(access_token=access_token)
    return SyncEngine(client, out, blacklisted_extensions=list(exclude_ext) or None)


def _subdirs(subdir: tuple[str, ...]) -> Optional[list[str]]:
    return list(subdir) or None


def _report(ctx: Any, changes: Changelist, title: str) -> None:
    out: OutputFormatter = ctx.obj["out"]
    out.print_changelist(changes, title)
    if changes.failed:
        ctx.exit(1)


subdir_option = click.option(
    "--subdir",
    "-s",
    multiple=True,
    help="Only sync this subdirectory (repeatable or comma-separated)",
)
exclude_ext_option = click.option(
    "--exclude-ext",
    "-x",
    multiple=True,
    help="Never sync files with this extension (e.g. .tmp, repeatable)",
)
dry_run_option = click.option(
    "--dry-run",
    "-n",
    is_flag=True,
    help="Show what would change without changing anything",
)


@click.group()
@click.option(
    "--access-token",
    "-t",
    envvar="DROPBOX_ACCESS_TOKEN",
    help="Dropbox access token",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pydbox")
@click.pass_context
def main(
    ctx: Any,
    access_token: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """pydbox - Keep local folders in sync with Dropbox."""
    ctx.ensure_object(dict)
    ctx.obj["access_token"] = access_token
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pydbox").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option(
    "--access-token",
    "-t",
    prompt="Enter your Dropbox access token",
    hide_input=True,
    help="Dropbox access token",
)
@click.pass_context
def init(ctx: Any, access_token: str) -> None:
    """Initialize pydbox configuration.

    Stores your access token in ~/.config/pydbox/config for future use.
    """
    out: OutputFormatter = ctx.obj["out"]

    out.info("Validating access token...")
    try:
        account = DropboxClient(access_token=access_token).get_current_account()
        out.success(f"Token is valid for {account.get('email', 'this account')}")
    except DboxAPIError as e:
        out.error(f"Access token validation failed: {e}")
        if not click.confirm("Save access token anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)

    config.save_access_token(access_token)
    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "Configuration saved successfully"),
            ("Config file", str(config.get_config_path())),
        ],
    )


@main.command()
@click.argument("remote_path")
@click.argument("local_path", type=click.Path(file_okay=False))
@exclude_ext_option
@click.pass_context
def create(
    ctx: Any, remote_path: str, local_path: str, exclude_ext: tuple[str, ...]
) -> None:
    """Create REMOTE_PATH on Dropbox and manage it in LOCAL_PATH.

    Examples:
        pydbox create /Projects/notes ./notes
    """
    engine = _engine(ctx, exclude_ext)
    try:
        changes = engine.create(remote_path, local_path)
    except DboxError as e:
        ctx.obj["out"].error(str(e))
        ctx.exit(1)
        return
    _report(ctx, changes, f"Created {remote_path}")


@main.command()
@click.argument("remote_path")
@click.argument("local_path", type=click.Path(file_okay=False))
@subdir_option
@exclude_ext_option
@click.pass_context
def clone(
    ctx: Any,
    remote_path: str,
    local_path: str,
    subdir: tuple[str, ...],
    exclude_ext: tuple[str, ...],
) -> None:
    """Clone the existing Dropbox folder REMOTE_PATH into LOCAL_PATH.

    Examples:
        pydbox clone /Projects/notes ./notes
        pydbox clone /Photos ./photos --subdir 2024
    """
    engine = _engine(ctx, exclude_ext)
    try:
        changes = engine.clone(remote_path, local_path, _subdirs(subdir))
    except DboxError as e:
        ctx.obj["out"].error(str(e))
        ctx.exit(1)
        return
    _report(ctx, changes, f"Cloned {remote_path}")


@main.command()
@click.argument(
    "local_path", default=".", type=click.Path(exists=True, file_okay=False)
)
@subdir_option
@exclude_ext_option
@dry_run_option
@click.pass_context
def pull(
    ctx: Any,
    local_path: str,
    subdir: tuple[str, ...],
    exclude_ext: tuple[str, ...],
    dry_run: bool,
) -> None:
    """Download remote changes into LOCAL_PATH (default: current directory)."""
    engine = _engine(ctx, exclude_ext)
    try:
        changes = engine.pull(local_path, _subdirs(subdir), dry_run=dry_run)
    except DboxError as e:
        ctx.obj["out"].error(str(e))
        ctx.exit(1)
        return
    _report(ctx, changes, "Pull (dry run)" if dry_run else "Pull")


@main.command()
@click.argument(
    "local_path", default=".", type=click.Path(exists=True, file_okay=False)
)
@subdir_option
@exclude_ext_option
@dry_run_option
@click.pass_context
def push(
    ctx: Any,
    local_path: str,
    subdir: tuple[str, ...],
    exclude_ext: tuple[str, ...],
    dry_run: bool,
) -> None:
    """Upload local changes of LOCAL_PATH (default: current directory)."""
    engine = _engine(ctx, exclude_ext)
    try:
        changes = engine.push(local_path, _subdirs(subdir), dry_run=dry_run)
    except DboxError as e:
        ctx.obj["out"].error(str(e))
        ctx.exit(1)
        return
    _report(ctx, changes, "Push (dry run)" if dry_run else "Push")


@main.command()
@click.argument(
    "local_path", default=".", type=click.Path(exists=True, file_okay=False)
)
@subdir_option
@exclude_ext_option
@dry_run_option
@click.pass_context
def sync(
    ctx: Any,
    local_path: str,
    subdir: tuple[str, ...],
    exclude_ext: tuple[str, ...],
    dry_run: bool,
) -> None:
    """Push local changes, then pull remote changes.

    Examples:
        pydbox sync
        pydbox --json sync ./notes --subdir drafts,archive
    """
    out: OutputFormatter = ctx.obj["out"]
    engine = _engine(ctx, exclude_ext)
    try:
        results = engine.sync(local_path, _subdirs(subdir), dry_run=dry_run)
    except DboxError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({name: changes.to_dict() for name, changes in results.items()})
    else:
        out.print_changelist(results["push"], "Push")
        out.print_changelist(results["pull"], "Pull")
    if any(changes.failed for changes in results.values()):
        ctx.exit(1)


@main.command()
@click.argument("new_remote_path")
@click.argument(
    "local_path", default=".", type=click.Path(exists=True, file_okay=False)
)
@click.pass_context
def move(ctx: Any, new_remote_path: str, local_path: str) -> None:
    """Move the Dropbox folder of LOCAL_PATH to NEW_REMOTE_PATH."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _engine(ctx)
    try:
        engine.move(new_remote_path, local_path)
    except DboxError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    if out.json_output:
        out.output_json({"moved": True, "remote_path": new_remote_path})
    else:
        out.success(f"Moved remote folder to {new_remote_path}")


@main.command()
@click.argument("remote_path")
@click.argument("local_path", required=False, type=click.Path(file_okay=False))
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(
    ctx: Any, remote_path: str, local_path: Optional[str], yes: bool
) -> None:
    """Delete REMOTE_PATH on Dropbox and, if given, LOCAL_PATH."""
    out: OutputFormatter = ctx.obj["out"]
    if not yes:
        target = f"{remote_path} and {local_path}" if local_path else remote_path
        if not click.confirm(f"Delete {target}?", default=False):
            out.warning("Deletion cancelled.")
            ctx.exit(1)
            return

    engine = _engine(ctx)
    try:
        engine.delete(remote_path, local_path)
    except DboxError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    if out.json_output:
        out.output_json({"deleted": True, "remote_path": remote_path})
    else:
        out.success(f"Deleted {remote_path}")


@main.command()
@click.argument("local_path", default=".", type=click.Path())
@click.pass_context
def exists(ctx: Any, local_path: str) -> None:
    """Check whether LOCAL_PATH is managed by pydbox (exit code 1 if not)."""
    out: OutputFormatter = ctx.obj["out"]
    managed = SyncEngine.exists(local_path)
    if out.json_output:
        out.output_json({"exists": managed, "path": local_path})
    elif managed:
        out.info(f"{local_path} is managed by pydbox")
    else:
        out.info(f"{local_path} is not managed by pydbox")
    if not managed:
        ctx.exit(1)


if __name__ == "__main__":
    main()
