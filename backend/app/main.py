from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from golf_core import (
    Attendance,
    AuthError,
    Competition,
    GolfDataError,
    GolfDataManager,
    LoadState,
    NotFoundError,
    NotReadyError,
    Participant,
    StatusCounts,
    ValidationError,
    export_filename,
)

app = FastAPI(title="Golf Competition Manager API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)


class ParticipantPayload(BaseModel):
    name: str = ""
    email: str = ""


class ParticipantModel(BaseModel):
    id: str
    name: str
    email: str
    created_at: str = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class ParticipantListResponse(BaseModel):
    participants: List[ParticipantModel]


class CompetitionPayload(BaseModel):
    title: str = ""
    date: str = ""


class CompetitionModel(BaseModel):
    id: str
    title: str
    date: str
    created_at: str = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class CompetitionListResponse(BaseModel):
    competitions: List[CompetitionModel]


class AttendancePayload(BaseModel):
    status: str
    fee: Optional[int] = None


class FeePayload(BaseModel):
    fee: int


class AttendanceModel(BaseModel):
    participant_id: str = Field(alias="participantId")
    competition_id: str = Field(alias="competitionId")
    status: str
    fee: int

    model_config = ConfigDict(populate_by_name=True)


class AttendanceListResponse(BaseModel):
    attendance: List[AttendanceModel]


class StatusCountsModel(BaseModel):
    present_count: int = Field(alias="presentCount")
    absent_count: int = Field(alias="absentCount")
    pending_count: int = Field(alias="pendingCount")
    total_fee: int = Field(alias="totalFee")

    model_config = ConfigDict(populate_by_name=True)


class ParticipantReportLine(BaseModel):
    competition: CompetitionModel
    attendance: AttendanceModel


class ParticipantReportResponse(BaseModel):
    participant: ParticipantModel
    lines: List[ParticipantReportLine]
    summary: StatusCountsModel


class CompetitionReportLine(BaseModel):
    participant: ParticipantModel
    attendance: AttendanceModel


class CompetitionReportResponse(BaseModel):
    competition: CompetitionModel
    lines: List[CompetitionReportLine]
    summary: StatusCountsModel


class SessionPayload(BaseModel):
    password: str = ""


class SettingsPayload(BaseModel):
    github_token: Optional[str] = Field(default=None, alias="githubToken")
    site_password: Optional[str] = Field(default=None, alias="sitePassword")

    model_config = ConfigDict(populate_by_name=True)


class SettingsResponse(BaseModel):
    source: str
    warning: Optional[str] = None
    document_url: Optional[str] = Field(default=None, alias="documentUrl")

    model_config = ConfigDict(populate_by_name=True)


class NoticesResponse(BaseModel):
    notices: List[str]


@lru_cache(maxsize=1)
def manager() -> GolfDataManager:
    return GolfDataManager()


async def loaded_manager(current: GolfDataManager = Depends(manager)) -> GolfDataManager:
    if current.state is not LoadState.READY:
        result = await current.load()
        if result.warning:
            logger.warning(result.warning)
    return current


async def require_passphrase(
    x_site_password: str = Header(default=""),
    current: GolfDataManager = Depends(loaded_manager),
) -> GolfDataManager:
    if not current.check_passphrase(x_site_password):
        raise HTTPException(status_code=401, detail="Incorrect password")
    return current


def _http_error(exc: GolfDataError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, NotReadyError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def _participant_model(participant: Participant) -> ParticipantModel:
    return ParticipantModel(**participant.to_dict())


def _competition_model(competition: Competition) -> CompetitionModel:
    return CompetitionModel(**competition.to_dict())


def _attendance_model(row: Attendance) -> AttendanceModel:
    return AttendanceModel(**row.to_dict())


def _counts_model(counts: StatusCounts) -> StatusCountsModel:
    return StatusCountsModel(
        present_count=counts.present_count,
        absent_count=counts.absent_count,
        pending_count=counts.pending_count,
        total_fee=counts.total_fee,
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/session")
async def create_session(payload: SessionPayload, current: GolfDataManager = Depends(loaded_manager)) -> dict:
    if not current.check_passphrase(payload.password):
        raise HTTPException(status_code=401, detail="Incorrect password")
    return {"authenticated": True}


@app.get("/participants", response_model=ParticipantListResponse)
async def list_participants(current: GolfDataManager = Depends(require_passphrase)):
    return ParticipantListResponse(participants=[_participant_model(p) for p in current.list_participants()])


@app.post("/participants", response_model=ParticipantModel, status_code=201)
async def add_participant(payload: ParticipantPayload, current: GolfDataManager = Depends(require_passphrase)):
    try:
        participant = current.add_participant(payload.name, payload.email)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return _participant_model(participant)


@app.patch("/participants/{participant_id}", response_model=ParticipantModel)
async def update_participant(
    participant_id: str,
    payload: ParticipantPayload,
    current: GolfDataManager = Depends(require_passphrase),
):
    try:
        participant = current.update_participant(participant_id, payload.name, payload.email)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return _participant_model(participant)


@app.delete("/participants/{participant_id}", status_code=204)
async def delete_participant(participant_id: str, current: GolfDataManager = Depends(require_passphrase)):
    try:
        current.delete_participant(participant_id)
    except GolfDataError as exc:
        raise _http_error(exc) from exc


@app.get("/competitions", response_model=CompetitionListResponse)
async def list_competitions(current: GolfDataManager = Depends(require_passphrase)):
    return CompetitionListResponse(competitions=[_competition_model(c) for c in current.list_competitions()])


@app.post("/competitions", response_model=CompetitionModel, status_code=201)
async def add_competition(payload: CompetitionPayload, current: GolfDataManager = Depends(require_passphrase)):
    try:
        competition = current.add_competition(payload.title, payload.date)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return _competition_model(competition)


@app.patch("/competitions/{competition_id}", response_model=CompetitionModel)
async def update_competition(
    competition_id: str,
    payload: CompetitionPayload,
    current: GolfDataManager = Depends(require_passphrase),
):
    try:
        competition = current.update_competition(competition_id, payload.title, payload.date)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return _competition_model(competition)


@app.delete("/competitions/{competition_id}", status_code=204)
async def delete_competition(competition_id: str, current: GolfDataManager = Depends(require_passphrase)):
    try:
        current.delete_competition(competition_id)
    except GolfDataError as exc:
        raise _http_error(exc) from exc


@app.get("/competitions/{competition_id}/attendance", response_model=AttendanceListResponse)
async def competition_attendance(competition_id: str, current: GolfDataManager = Depends(require_passphrase)):
    try:
        rows = current.attendance_for_competition(competition_id)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return AttendanceListResponse(attendance=[_attendance_model(row) for row in rows])


@app.put("/attendance/{participant_id}/{competition_id}", response_model=AttendanceModel)
async def set_attendance(
    participant_id: str,
    competition_id: str,
    payload: AttendancePayload,
    current: GolfDataManager = Depends(require_passphrase),
):
    try:
        row = current.set_attendance(participant_id, competition_id, payload.status, payload.fee)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return _attendance_model(row)


@app.patch("/attendance/{participant_id}/{competition_id}/fee", response_model=AttendanceModel)
async def set_attendance_fee(
    participant_id: str,
    competition_id: str,
    payload: FeePayload,
    current: GolfDataManager = Depends(require_passphrase),
):
    try:
        row = current.set_attendance_fee(participant_id, competition_id, payload.fee)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return _attendance_model(row)


@app.delete("/attendance/{participant_id}/{competition_id}", status_code=204)
async def remove_attendance(
    participant_id: str,
    competition_id: str,
    current: GolfDataManager = Depends(require_passphrase),
):
    try:
        current.remove_attendance_row(participant_id, competition_id)
    except GolfDataError as exc:
        raise _http_error(exc) from exc


@app.get("/reports/participants/{participant_id}", response_model=ParticipantReportResponse)
async def participant_report(participant_id: str, current: GolfDataManager = Depends(require_passphrase)):
    try:
        report = current.participant_report(participant_id)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return ParticipantReportResponse(
        participant=_participant_model(report.participant),
        lines=[
            ParticipantReportLine(competition=_competition_model(competition), attendance=_attendance_model(row))
            for competition, row in report.lines
        ],
        summary=_counts_model(report.summary),
    )


@app.get("/reports/competitions/{competition_id}", response_model=CompetitionReportResponse)
async def competition_report(competition_id: str, current: GolfDataManager = Depends(require_passphrase)):
    try:
        report = current.competition_report(competition_id)
    except GolfDataError as exc:
        raise _http_error(exc) from exc
    return CompetitionReportResponse(
        competition=_competition_model(report.competition),
        lines=[
            CompetitionReportLine(participant=_participant_model(participant), attendance=_attendance_model(row))
            for participant, row in report.lines
        ],
        summary=_counts_model(report.summary),
    )


@app.get("/export")
async def export_data(current: GolfDataManager = Depends(require_passphrase)):
    filename = export_filename()
    return JSONResponse(
        content=current.export_document(),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.put("/settings", response_model=SettingsResponse)
async def update_settings(payload: SettingsPayload, current: GolfDataManager = Depends(require_passphrase)):
    result = await current.update_settings(
        github_token=payload.github_token,
        site_password=payload.site_password,
    )
    return SettingsResponse(
        source=result.source,
        warning=result.warning,
        document_url=current.remote.document_url,
    )


@app.get("/notices", response_model=NoticesResponse)
async def notices(current: GolfDataManager = Depends(require_passphrase)):
    return NoticesResponse(notices=current.drain_notices())
