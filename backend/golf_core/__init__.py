"""Participants, competitions and attendance for a golf club, synced to a GitHub Gist."""

from .config import Config, load_config
from .errors import (
    AuthError,
    CorruptDataError,
    GolfDataError,
    NotFoundError,
    NotReadyError,
    RemoteError,
    ValidationError,
)
from .gist import GistClient
from .local_cache import LocalCache, UserSettings
from .manager import GolfDataManager, LoadResult, LoadState, StatusCounts, export_filename
from .models import Aggregate, Attendance, AttendanceStatus, Competition, Participant

__all__ = [
    "Aggregate",
    "Attendance",
    "AttendanceStatus",
    "AuthError",
    "Competition",
    "Config",
    "CorruptDataError",
    "GistClient",
    "GolfDataError",
    "GolfDataManager",
    "LoadResult",
    "LoadState",
    "LocalCache",
    "NotFoundError",
    "NotReadyError",
    "Participant",
    "RemoteError",
    "StatusCounts",
    "UserSettings",
    "ValidationError",
    "export_filename",
    "load_config",
]
