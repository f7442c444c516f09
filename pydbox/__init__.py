"""pydbox - bidirectional synchronization between local folders and Dropbox."""

from .api import DropboxClient
from .exceptions import (
    AmbiguousCollisionError,
    DboxAPIError,
    DboxAuthenticationError,
    DboxConfigError,
    DboxDatabaseError,
    DboxError,
    DboxInvalidResponseError,
    DboxNetworkError,
    DboxRateLimitError,
    DboxRemoteAlreadyExistsError,
    DboxRemoteMissingError,
    DboxRequestDeniedError,
    DboxServerError,
)
from .models import Changelist
from .utils import content_hash, content_hash_file

__version__ = "0.1.0"

__all__ = [
    "DropboxClient",
    "Changelist",
    "AmbiguousCollisionError",
    "DboxAPIError",
    "DboxAuthenticationError",
    "DboxConfigError",
    "DboxDatabaseError",
    "DboxError",
    "DboxInvalidResponseError",
    "DboxNetworkError",
    "DboxRateLimitError",
    "DboxRemoteAlreadyExistsError",
    "DboxRemoteMissingError",
    "DboxRequestDeniedError",
    "DboxServerError",
    "content_hash",
    "content_hash_file",
]
