"""Error taxonomy shared by the Gist client, the local cache and the manager."""

from __future__ import annotations


class GolfDataError(Exception):
    """Base class for every error raised by golf_core."""


class AuthError(GolfDataError):
    """Missing or rejected GitHub credential."""


class RemoteError(GolfDataError):
    """Transport failure or non-2xx response from the Gist API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CorruptDataError(GolfDataError):
    """The stored document exists but its content cannot be used."""


class NotFoundError(GolfDataError, LookupError):
    """A referenced record or remote document does not exist."""


class ValidationError(GolfDataError, ValueError):
    """A required field is missing or a value is out of range."""


class NotReadyError(GolfDataError, RuntimeError):
    """Mutation attempted before data finished loading."""


# Failures of the remote side that the manager downgrades to notices.
REMOTE_FAILURES = (AuthError, RemoteError, CorruptDataError, NotFoundError)
