"""Top-level operations on managed directories."""

import logging
from typing import Optional, Union

from rich.progress import Progress, SpinnerColumn, TextColumn

from ..case_insensitive import CaseInsensitiveFS
from ..exceptions import DboxRemoteMissingError
from ..models import Changelist
from ..output import OutputFormatter
from ..utils import normalize_remote_root
from .operations import RemoteBackend
from .pull import Pull
from .push import Push
from .reconciler import Reconciler
from .state import EntryIndex

logger = logging.getLogger(__name__)

Subdirs = Optional[Union[str, list[str]]]


class SyncEngine:
    """Entry point for creating, cloning and synchronizing managed directories.

    Every call runs a single blocking pass. Per-file failures are returned
    in the changelist; missing local state and remote-root problems raise.

    Examples:
        >>> engine = SyncEngine(DropboxClient(access_token="..."))
        >>> engine.clone("/Docs", "/home/me/docs")
        >>> changes = engine.sync("/home/me/docs")
        >>> changes["push"].to_dict()["created"]
        ['hello.txt']
    """

    def __init__(
        self,
        client: RemoteBackend,
        output: Optional[OutputFormatter] = None,
        blacklisted_extensions: Optional[list[str]] = None,
        fs: Optional[CaseInsensitiveFS] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Remote backend
            output: Output formatter for displaying progress/status
            blacklisted_extensions: File extensions that are never synced
            fs: Case-insensitive filesystem facade
        """
        self.client = client
        self.output = output or OutputFormatter(quiet=True)
        self.blacklisted_extensions = blacklisted_extensions
        self.fs = fs or CaseInsensitiveFS()

    def _run(self, reconciler: Reconciler, description: str) -> Changelist:
        if self.output.quiet or self.output.json_output:
            return reconciler.execute()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
        ) as progress:
            progress.add_task(description, total=None)
            return reconciler.execute()

    def _reconciler(
        self,
        cls: type[Reconciler],
        index: EntryIndex,
        subdirs: Subdirs,
        dry_run: bool = False,
    ) -> Reconciler:
        return cls(
            index,
            self.client,
            subdirs=subdirs,
            blacklisted_extensions=self.blacklisted_extensions,
            fs=self.fs,
            dry_run=dry_run,
        )

    def create(self, remote_path: str, local_path: str) -> Changelist:
        """Create a new remote folder and clone it into ``local_path``.

        Raises:
            DboxRemoteAlreadyExistsError: If the remote folder exists
        """
        remote = normalize_remote_root(remote_path)
        logger.info("Creating remote folder %s", remote or "/")
        self.client.create_dir(remote or "/")
        return self.clone(remote, local_path)

    def clone(
        self, remote_path: str, local_path: str, subdirs: Subdirs = None
    ) -> Changelist:
        """Start managing ``local_path`` as a copy of an existing remote folder.

        Args:
            remote_path: Remote folder
            local_path: Local directory (created if missing)
            subdirs: Optional sub-scope to fetch

        Raises:
            DboxRemoteMissingError: If the remote folder does not exist
            DboxDatabaseError: If ``local_path`` is already managed
        """
        remote = normalize_remote_root(remote_path)
        metadata = self.client.get_metadata(remote or "/")
        if metadata.tag != "folder":
            raise DboxRemoteMissingError(f"{remote} is not a folder", path=remote)

        index = EntryIndex.create(local_path, remote)
        logger.info("Cloning %s into %s", remote or "/", index.local_path)
        return self._run(
            self._reconciler(Pull, index, subdirs), f"Cloning {remote or '/'}..."
        )

    def pull(
        self, local_path: str, subdirs: Subdirs = None, dry_run: bool = False
    ) -> Changelist:
        """Download remote changes into a managed directory.

        With ``dry_run`` the changes are only computed and reported.
        """
        index = EntryIndex.load(local_path)
        return self._run(
            self._reconciler(Pull, index, subdirs, dry_run), "Pulling..."
        )

    def push(
        self, local_path: str, subdirs: Subdirs = None, dry_run: bool = False
    ) -> Changelist:
        """Upload local changes of a managed directory."""
        index = EntryIndex.load(local_path)
        return self._run(
            self._reconciler(Push, index, subdirs, dry_run), "Pushing..."
        )

    def sync(
        self, local_path: str, subdirs: Subdirs = None, dry_run: bool = False
    ) -> dict[str, Changelist]:
        """Push, then pull.

        A dry run computes both halves against the current state, so the
        pull half does not see what the push would have uploaded.

        Returns:
            ``{"push": changelist, "pull": changelist}``
        """
        pushed = self.push(local_path, subdirs, dry_run)
        pulled = self.pull(local_path, subdirs, dry_run)
        return {"push": pushed, "pull": pulled}

    def move(self, new_remote_path: str, local_path: str) -> None:
        """Move the remote root of a managed directory.

        Raises:
            DboxRemoteAlreadyExistsError: If the destination exists
            DboxRemoteMissingError: If the current remote root is gone
        """
        index = EntryIndex.load(local_path)
        new_remote = normalize_remote_root(new_remote_path)
        logger.info("Moving %s to %s", index.remote_path, new_remote)
        self.client.move(index.remote_path, new_remote)
        index.update_metadata(remote_path=new_remote)

    def delete(self, remote_path: str, local_path: Optional[str] = None) -> None:
        """Delete a remote folder and optionally its local copy."""
        remote = normalize_remote_root(remote_path)
        logger.info("Deleting remote folder %s", remote or "/")
        self.client.delete(remote or "/")
        if local_path is not None and self.fs.rmtree(local_path):
            logger.info("Deleted local folder %s", local_path)

    @staticmethod
    def exists(local_path: str) -> bool:
        """Check whether ``local_path`` is a managed directory."""
        return EntryIndex.exists(local_path)
