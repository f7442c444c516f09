"""Exceptions raised by pydbox."""

from typing import Optional


class DboxError(Exception):
    """Base class for all pydbox errors."""


class DboxConfigError(DboxError):
    """Required configuration (e.g. the access token) is missing."""


class DboxDatabaseError(DboxError):
    """Local management state is missing, corrupt or already present."""


class AmbiguousCollisionError(DboxError):
    """Several local paths differ only by case and match the same name.

    This state cannot be resolved automatically; one of the files has to
    be removed by hand.
    """

    def __init__(self, path: str, matches: list[str]):
        self.path = path
        self.matches = sorted(matches)
        super().__init__(
            "Multiple files differ only by case, please delete all but one of "
            f"them: {', '.join(self.matches)}"
        )


class DboxAPIError(DboxError):
    """Base class for errors reported by the remote backend."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class DboxAuthenticationError(DboxAPIError):
    """The access token was rejected."""


class DboxRequestDeniedError(DboxAPIError):
    """The operation was denied by the backend (HTTP 403)."""


class DboxRemoteMissingError(DboxAPIError):
    """The remote object does not exist."""


class DboxRemoteAlreadyExistsError(DboxAPIError):
    """The creation or move target already exists."""


class DboxInvalidResponseError(DboxAPIError):
    """The backend returned a malformed or unexpected response."""


class DboxServerError(DboxAPIError):
    """The backend failed with a 5xx status."""


class DboxRateLimitError(DboxAPIError):
    """Too many requests (HTTP 429)."""


class DboxNetworkError(DboxAPIError):
    """The request never reached the backend or the connection dropped."""
