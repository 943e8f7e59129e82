from __future__ import annotations

import datetime as dt
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import CorruptDataError, ValidationError


logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

_BASE36 = string.digits + string.ascii_lowercase

# A calendar date, optionally followed by a time part.
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}(T.*)?$")


class AttendanceStatus(str, Enum):
    PENDING = "pending"
    ABSENT = "absent"
    PRESENT = "present"


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: List[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id() -> str:
    """Return a record id: millisecond timestamp plus 64 random bits, both base36."""
    stamp = _to_base36(time.time_ns() // 1_000_000)
    noise = _to_base36(secrets.randbits(64)).rjust(13, "0")
    return stamp + noise


def _require_text(value: Any, label: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required")
    return text


def coerce_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    text = str(value or "").strip()
    if not text:
        raise ValidationError("Competition date is required")
    if not _ISO_DATE.match(text):
        raise ValidationError(f"Invalid competition date: {text}")
    try:
        return dt.date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValidationError(f"Invalid competition date: {text}") from exc


def coerce_fee(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError("Fee must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError("Fee must be an integer")
        value = int(value)
    try:
        fee = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Fee must be an integer: {value!r}") from exc
    if fee < 0:
        raise ValidationError("Fee cannot be negative")
    return fee


@dataclass
class Participant:
    id: str
    name: str
    email: str
    created_at: str

    def __post_init__(self) -> None:
        self.name = _require_text(self.name, "Participant name")
        self.email = _require_text(self.email, "Participant email")

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Participant":
        return cls(
            id=str(row["id"]),
            name=row.get("name", ""),
            email=row.get("email", ""),
            created_at=str(row.get("createdAt") or ""),
        )


@dataclass
class Competition:
    id: str
    title: str
    date: dt.date
    created_at: str

    def __post_init__(self) -> None:
        self.title = _require_text(self.title, "Competition title")
        self.date = coerce_date(self.date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date.isoformat(),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Competition":
        return cls(
            id=str(row["id"]),
            title=row.get("title", ""),
            date=row.get("date"),
            created_at=str(row.get("createdAt") or ""),
        )


@dataclass
class Attendance:
    """One participant's status for one competition.

    The fee only means something for ``present`` rows; any other status
    forces it back to zero on construction.
    """

    participant_id: str
    competition_id: str
    status: AttendanceStatus = AttendanceStatus.PENDING
    fee: int = 0

    def __post_init__(self) -> None:
        try:
            self.status = AttendanceStatus(self.status)
        except ValueError as exc:
            raise ValidationError(f"Unknown attendance status: {self.status!r}") from exc
        self.fee = coerce_fee(self.fee)
        if self.status is not AttendanceStatus.PRESENT:
            self.fee = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.participant_id, self.competition_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participantId": self.participant_id,
            "competitionId": self.competition_id,
            "status": self.status.value,
            "fee": self.fee,
        }

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Attendance":
        status = row.get("status") or AttendanceStatus.PENDING
        return cls(
            participant_id=str(row["participantId"]),
            competition_id=str(row["competitionId"]),
            status=status,
            # Only present rows carry a fee.
            fee=row.get("fee") if status == AttendanceStatus.PRESENT.value else 0,
        )


@dataclass
class DocumentSettings:
    """Document metadata, written once when the gist is created."""

    version: str = SCHEMA_VERSION
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"version": self.version}
        if self.created_at:
            data["createdAt"] = self.created_at
        return data

    @classmethod
    def from_dict(cls, row: Any) -> Optional["DocumentSettings"]:
        if not isinstance(row, dict):
            return None
        return cls(
            version=str(row.get("version") or SCHEMA_VERSION),
            created_at=str(row["createdAt"]) if row.get("createdAt") else None,
        )


@dataclass
class Aggregate:
    participants: List[Participant] = field(default_factory=list)
    competitions: List[Competition] = field(default_factory=list)
    attendance: List[Attendance] = field(default_factory=list)
    # None until a document from GitHub has supplied it.
    settings: Optional[DocumentSettings] = None

    def find_participant(self, participant_id: str) -> Optional[Participant]:
        return next((p for p in self.participants if p.id == participant_id), None)

    def find_competition(self, competition_id: str) -> Optional[Competition]:
        return next((c for c in self.competitions if c.id == competition_id), None)

    def find_attendance(self, participant_id: str, competition_id: str) -> Optional[Attendance]:
        key = (participant_id, competition_id)
        return next((row for row in self.attendance if row.key == key), None)

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "participants": [p.to_dict() for p in self.participants],
            "competitions": [c.to_dict() for c in self.competitions],
            "attendance": [a.to_dict() for a in self.attendance],
        }
        if self.settings is not None:
            document["settings"] = self.settings.to_dict()
        return document

    @classmethod
    def from_document(cls, payload: Any) -> "Aggregate":
        """Parse a persisted document.

        Missing collections are treated as empty. Attendance rows that fail
        validation, point at unknown records, or repeat an earlier composite
        key are dropped; a bad participant or competition record makes the
        whole document corrupt.
        """
        if not isinstance(payload, dict):
            raise CorruptDataError(f"Expected a JSON object, got {type(payload).__name__}")

        try:
            participants = [Participant.from_dict(row) for row in _rows(payload, "participants")]
            competitions = [Competition.from_dict(row) for row in _rows(payload, "competitions")]
        except (KeyError, ValidationError) as exc:
            raise CorruptDataError(f"Invalid record in stored data: {exc}") from exc

        raw_attendance: List[Attendance] = []
        for row in _rows(payload, "attendance"):
            try:
                raw_attendance.append(Attendance.from_dict(row))
            except (KeyError, ValidationError) as exc:
                logger.warning("Skipping invalid attendance row %r: %s", row, exc)

        participant_ids = {p.id for p in participants}
        competition_ids = {c.id for c in competitions}
        seen: set[Tuple[str, str]] = set()
        attendance: List[Attendance] = []
        dropped = 0
        for row in raw_attendance:
            if row.participant_id not in participant_ids or row.competition_id not in competition_ids:
                dropped += 1
                continue
            if row.key in seen:
                dropped += 1
                continue
            seen.add(row.key)
            attendance.append(row)
        if dropped:
            logger.warning("Dropped %d dangling or duplicate attendance rows while loading", dropped)

        return cls(
            participants=participants,
            competitions=competitions,
            attendance=attendance,
            settings=DocumentSettings.from_dict(payload.get("settings")),
        )


def _rows(payload: Dict[str, Any], name: str) -> List[Dict[str, Any]]:
    rows = payload.get(name)
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise CorruptDataError(f"'{name}' must be a list")
    for row in rows:
        if not isinstance(row, dict):
            raise CorruptDataError(f"'{name}' contains a non-object entry")
    return rows
