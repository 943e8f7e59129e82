"""Canonical in-memory aggregate and the load/save protocol around it."""

from __future__ import annotations

import asyncio
import copy
import datetime as dt
import json
import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .config import Config, load_config
from .errors import (
    REMOTE_FAILURES,
    AuthError,
    CorruptDataError,
    NotFoundError,
    NotReadyError,
    ValidationError,
)
from .gist import GistClient
from .local_cache import LocalCache, UserSettings
from .models import (
    Aggregate,
    Attendance,
    AttendanceStatus,
    Competition,
    DocumentSettings,
    Participant,
    coerce_fee,
    generate_id,
    utc_now_iso,
)


logger = logging.getLogger(__name__)

LOAD_FAILED_NOTICE = "Could not load data from GitHub; using local data."
SAVE_FAILED_NOTICE = "Saved locally, but saving to GitHub failed."


def export_filename() -> str:
    return f"golf-competition-data-{dt.datetime.now(dt.timezone.utc).date().isoformat()}.json"


class LoadState(str, Enum):
    NO_CREDENTIAL = "no_credential"
    HAS_CREDENTIAL = "has_credential"
    READY = "ready"


@dataclass
class LoadResult:
    source: str
    warning: Optional[str] = None


@dataclass
class StatusCounts:
    present_count: int = 0
    absent_count: int = 0
    pending_count: int = 0
    total_fee: int = 0

    def add(self, row: Attendance) -> None:
        if row.status is AttendanceStatus.PRESENT:
            self.present_count += 1
            self.total_fee += row.fee
        elif row.status is AttendanceStatus.ABSENT:
            self.absent_count += 1
        else:
            self.pending_count += 1


@dataclass
class ParticipantReport:
    participant: Participant
    lines: List[tuple[Competition, Attendance]] = field(default_factory=list)
    summary: StatusCounts = field(default_factory=StatusCounts)


@dataclass
class CompetitionReport:
    competition: Competition
    lines: List[tuple[Participant, Attendance]] = field(default_factory=list)
    summary: StatusCounts = field(default_factory=StatusCounts)


class GolfDataManager:
    """Owns the participants, competitions and attendance of one club.

    Every mutation updates the in-memory aggregate and the local cache before
    returning. The copy on GitHub is refreshed in a background task when an
    event loop is running; a failed or skipped remote save never rolls the
    local change back.
    """

    def __init__(
        self,
        config: Config | None = None,
        cache: LocalCache | None = None,
        remote: GistClient | None = None,
    ) -> None:
        self.config = config or load_config()
        self.cache = cache or LocalCache(self.config.data_dir)
        self.settings: UserSettings = self.cache.read_settings(self.config.site_password)
        if self.config.github_token:
            self.settings.github_token = self.config.github_token
        self.remote = remote or GistClient(
            api_url=self.config.api_url,
            token=self.settings.github_token,
            timeout=self.config.http_timeout,
        )

        self._aggregate = Aggregate()
        self._state = self._credential_state()
        self._notices: List[str] = []
        self._pending: Set[asyncio.Task] = set()
        self._revision = 0
        self._landed_revision = 0
        self._remote_dirty = False
        self._save_notice_shown = False

    # ------------------------------------------------------------------
    # Load protocol

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def has_unsynced_changes(self) -> bool:
        return self._remote_dirty

    async def load(self) -> LoadResult:
        self._state = self._credential_state()

        if self._state is LoadState.NO_CREDENTIAL:
            logger.info("GitHub token not set; using local data")
            return self.load_local()

        try:
            document = await self.remote.read()
            aggregate = Aggregate.from_document(document)
        except REMOTE_FAILURES as exc:
            logger.warning("Loading from GitHub failed (%s); using local data", exc)
            self.load_local()
            self._notify(LOAD_FAILED_NOTICE)
            return LoadResult(source="local", warning=LOAD_FAILED_NOTICE)

        self._aggregate = aggregate
        self.cache.write_data(aggregate.to_document())
        self._landed_revision = self._revision
        self._remote_dirty = False
        self._state = LoadState.READY
        logger.info(
            "Loaded %d participants, %d competitions from GitHub",
            len(aggregate.participants),
            len(aggregate.competitions),
        )
        return LoadResult(source="remote")

    def load_local(self) -> LoadResult:
        """Become ready from the local cache alone, without contacting GitHub."""
        self._aggregate = self._load_local()
        self._state = LoadState.READY
        return LoadResult(source="local")

    def _credential_state(self) -> LoadState:
        return LoadState.HAS_CREDENTIAL if self.remote.has_credential else LoadState.NO_CREDENTIAL

    def _load_local(self) -> Aggregate:
        document = self.cache.read_data()
        if document is None:
            return Aggregate()
        try:
            return Aggregate.from_document(document)
        except CorruptDataError as exc:
            logger.warning("Local data is unusable (%s); starting empty", exc)
            return Aggregate()

    def _require_ready(self) -> None:
        if self._state is not LoadState.READY:
            raise NotReadyError("Data has not been loaded yet")

    # ------------------------------------------------------------------
    # Settings and passphrase

    def check_passphrase(self, value: str) -> bool:
        return secrets.compare_digest(
            (value or "").encode("utf-8"), self.settings.site_password.encode("utf-8")
        )

    async def update_settings(
        self,
        github_token: str | None = None,
        site_password: str | None = None,
    ) -> LoadResult:
        """Store non-empty values, then reload against the new credential."""
        token = (github_token or "").strip()
        password = (site_password or "").strip()
        if token:
            self.settings.github_token = token
            self.remote.authenticate(token)
        if password:
            self.settings.site_password = password
        self.cache.write_settings(self.settings)
        return await self.load()

    # ------------------------------------------------------------------
    # Participants

    def add_participant(self, name: str, email: str) -> Participant:
        self._require_ready()
        participant = Participant(id=generate_id(), name=name, email=email, created_at=utc_now_iso())
        self._aggregate.participants.append(participant)
        self._persist()
        return copy.deepcopy(participant)

    def update_participant(self, participant_id: str, name: str, email: str) -> Participant:
        self._require_ready()
        index = self._participant_index(participant_id)
        current = self._aggregate.participants[index]
        updated = Participant(id=current.id, name=name, email=email, created_at=current.created_at)
        self._aggregate.participants[index] = updated
        self._persist()
        return copy.deepcopy(updated)

    def delete_participant(self, participant_id: str) -> None:
        self._require_ready()
        index = self._participant_index(participant_id)
        del self._aggregate.participants[index]
        self._aggregate.attendance = [
            row for row in self._aggregate.attendance if row.participant_id != participant_id
        ]
        self._persist()

    def _participant_index(self, participant_id: str) -> int:
        for index, participant in enumerate(self._aggregate.participants):
            if participant.id == participant_id:
                return index
        raise NotFoundError(f"Participant not found: {participant_id}")

    # ------------------------------------------------------------------
    # Competitions

    def add_competition(self, title: str, date: Any) -> Competition:
        self._require_ready()
        competition = Competition(id=generate_id(), title=title, date=date, created_at=utc_now_iso())
        self._aggregate.competitions.append(competition)
        self._persist()
        return copy.deepcopy(competition)

    def update_competition(self, competition_id: str, title: str, date: Any) -> Competition:
        self._require_ready()
        index = self._competition_index(competition_id)
        current = self._aggregate.competitions[index]
        updated = Competition(id=current.id, title=title, date=date, created_at=current.created_at)
        self._aggregate.competitions[index] = updated
        self._persist()
        return copy.deepcopy(updated)

    def delete_competition(self, competition_id: str) -> None:
        self._require_ready()
        index = self._competition_index(competition_id)
        del self._aggregate.competitions[index]
        self._aggregate.attendance = [
            row for row in self._aggregate.attendance if row.competition_id != competition_id
        ]
        self._persist()

    def _competition_index(self, competition_id: str) -> int:
        for index, competition in enumerate(self._aggregate.competitions):
            if competition.id == competition_id:
                return index
        raise NotFoundError(f"Competition not found: {competition_id}")

    # ------------------------------------------------------------------
    # Attendance

    def set_attendance(
        self,
        participant_id: str,
        competition_id: str,
        status: AttendanceStatus | str,
        fee: Any = None,
    ) -> Attendance:
        """Create or update the row for one participant at one competition.

        When ``fee`` is omitted a present row keeps its current fee. Any
        status other than ``present`` stores a fee of zero.
        """
        self._require_ready()
        self._check_keys(participant_id, competition_id)

        existing = self._aggregate.find_attendance(participant_id, competition_id)
        if fee is None and existing is not None:
            fee = existing.fee
        row = Attendance(participant_id=participant_id, competition_id=competition_id, status=status, fee=fee)

        self._store_attendance(row)
        self._persist()
        return copy.deepcopy(row)

    def set_attendance_fee(self, participant_id: str, competition_id: str, fee: Any) -> Attendance:
        self._require_ready()
        self._check_keys(participant_id, competition_id)

        existing = self._aggregate.find_attendance(participant_id, competition_id)
        if existing is None or existing.status is not AttendanceStatus.PRESENT:
            raise ValidationError("A fee can only be set for a participant marked present")
        row = Attendance(
            participant_id=participant_id,
            competition_id=competition_id,
            status=AttendanceStatus.PRESENT,
            fee=coerce_fee(fee),
        )

        self._store_attendance(row)
        self._persist()
        return copy.deepcopy(row)

    def remove_attendance_row(self, participant_id: str, competition_id: str) -> bool:
        """Delete the stored row. Returns False (and writes nothing) if there was none."""
        self._require_ready()
        key = (participant_id, competition_id)
        remaining = [row for row in self._aggregate.attendance if row.key != key]
        if len(remaining) == len(self._aggregate.attendance):
            return False
        self._aggregate.attendance = remaining
        self._persist()
        return True

    def _check_keys(self, participant_id: str, competition_id: str) -> None:
        if self._aggregate.find_participant(participant_id) is None:
            raise NotFoundError(f"Participant not found: {participant_id}")
        if self._aggregate.find_competition(competition_id) is None:
            raise NotFoundError(f"Competition not found: {competition_id}")

    def _store_attendance(self, row: Attendance) -> None:
        for index, current in enumerate(self._aggregate.attendance):
            if current.key == row.key:
                self._aggregate.attendance[index] = row
                return
        self._aggregate.attendance.append(row)

    # ------------------------------------------------------------------
    # Queries

    def snapshot(self) -> Aggregate:
        return copy.deepcopy(self._aggregate)

    def list_participants(self) -> List[Participant]:
        return copy.deepcopy(self._aggregate.participants)

    def list_competitions(self) -> List[Competition]:
        return copy.deepcopy(self._aggregate.competitions)

    def get_participant(self, participant_id: str) -> Participant:
        return copy.deepcopy(self._aggregate.participants[self._participant_index(participant_id)])

    def get_competition(self, competition_id: str) -> Competition:
        return copy.deepcopy(self._aggregate.competitions[self._competition_index(competition_id)])

    def get_attendance(self, participant_id: str, competition_id: str) -> Attendance:
        row = self._aggregate.find_attendance(participant_id, competition_id)
        if row is None:
            return Attendance(participant_id=participant_id, competition_id=competition_id)
        return copy.deepcopy(row)

    def attendance_for_competition(self, competition_id: str) -> List[Attendance]:
        """One row per participant, pending where nothing is stored."""
        self._competition_index(competition_id)
        return [self.get_attendance(p.id, competition_id) for p in self._aggregate.participants]

    def attendance_for_participant(self, participant_id: str) -> List[Attendance]:
        self._participant_index(participant_id)
        return [self.get_attendance(participant_id, c.id) for c in self._aggregate.competitions]

    def participant_summary(self, participant_id: str) -> StatusCounts:
        counts = StatusCounts()
        for row in self.attendance_for_participant(participant_id):
            counts.add(row)
        return counts

    def competition_summary(self, competition_id: str) -> StatusCounts:
        counts = StatusCounts()
        for row in self.attendance_for_competition(competition_id):
            counts.add(row)
        return counts

    def participant_report(self, participant_id: str) -> ParticipantReport:
        report = ParticipantReport(
            participant=self.get_participant(participant_id),
            summary=self.participant_summary(participant_id),
        )
        for row in self._aggregate.attendance:
            if row.participant_id != participant_id:
                continue
            competition = self._aggregate.find_competition(row.competition_id)
            if competition is not None:
                report.lines.append((copy.deepcopy(competition), copy.deepcopy(row)))
        return report

    def competition_report(self, competition_id: str) -> CompetitionReport:
        report = CompetitionReport(
            competition=self.get_competition(competition_id),
            summary=self.competition_summary(competition_id),
        )
        for participant in self._aggregate.participants:
            report.lines.append(
                (copy.deepcopy(participant), self.get_attendance(participant.id, competition_id))
            )
        return report

    # ------------------------------------------------------------------
    # Export

    def export_document(self) -> Dict[str, Any]:
        document = self._aggregate.to_document()
        document.pop("settings", None)
        document["exportDate"] = utc_now_iso()
        return document

    def export_to(self, directory: Path) -> Path:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / export_filename()
        with path.open("w", encoding="utf-8") as handle:
            json.dump(self.export_document(), handle, indent=2, ensure_ascii=False)
        logger.info("Exported competition data to %s", path)
        return path

    # ------------------------------------------------------------------
    # Persistence

    def drain_notices(self) -> List[str]:
        notices, self._notices = self._notices, []
        return notices

    def _notify(self, message: str) -> None:
        if message not in self._notices:
            self._notices.append(message)

    def _persist(self) -> None:
        self._revision += 1
        document = self._aggregate.to_document()
        self.cache.write_data(document)

        if not self.remote.has_credential:
            return
        self._remote_dirty = True

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; remote save deferred until sync()")
            return

        task = loop.create_task(self._background_save(document, self._revision))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _background_save(self, document: Dict[str, Any], revision: int) -> None:
        try:
            await self._push(document)
        except REMOTE_FAILURES as exc:
            self._remote_dirty = True
            logger.warning("Saving to GitHub failed (%s); data kept locally", exc)
            if not self._save_notice_shown:
                self._save_notice_shown = True
                self._notify(SAVE_FAILED_NOTICE)
            return
        except Exception:  # pragma: no cover - logging side effect
            self._remote_dirty = True
            logger.exception("Unexpected error while saving to GitHub")
            return

        self._save_notice_shown = False
        # GitHub now holds whichever revision landed last, even an older one.
        self._remote_dirty = revision != self._revision
        if revision < self._landed_revision:
            logger.warning(
                "Revision %d reached GitHub after revision %d; remote copy is stale",
                revision,
                self._landed_revision,
            )
        self._landed_revision = revision
        logger.debug("Saved revision %d to GitHub", revision)

    async def _push(self, document: Dict[str, Any]) -> None:
        if "settings" not in document:
            settings = await self._remote_settings()
            if settings is not None:
                document = dict(document, settings=settings.to_dict())
        await self.remote.replace(document)

    async def _remote_settings(self) -> Optional[DocumentSettings]:
        """Settings already stored on GitHub, adopted into the aggregate."""
        try:
            stored = await self.remote.read()
        except CorruptDataError as exc:
            logger.warning("Stored document is unreadable (%s); replacing it without settings", exc)
            return None
        settings = DocumentSettings.from_dict(stored.get("settings"))
        if settings is not None and self._aggregate.settings is None:
            self._aggregate.settings = settings
        return settings

    async def wait_for_pending(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def sync(self) -> None:
        """Push the current aggregate to GitHub, raising on failure."""
        self._require_ready()
        if not self.remote.has_credential:
            raise AuthError("GitHub token is not set")
        await self._push(self._aggregate.to_document())
        self._landed_revision = self._revision
        self._remote_dirty = False
        self._save_notice_shown = False
