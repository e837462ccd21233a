# schemas.py
# =============================================================================
# Records persisted in the local store plus the request/response bodies of the
# HTTP layer (Pydantic v2). Records carry no behavior.
# =============================================================================

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}$")


def _validate_date_str(v: str) -> str:
    if not _DATE_RE.match(v):
        raise ValueError("date must be YYYY-MM-DD format")
    try:
        datetime.strptime(v, "%Y-%m-%d")
    except ValueError:
        raise ValueError("date is not a valid calendar date")
    return v


def _validate_time_str(v: str) -> str:
    # Empty time is a user-facing notice, not a schema error.
    if v == "":
        return v
    if not _TIME_RE.match(v):
        raise ValueError("time must be HH:mm format")
    try:
        datetime.strptime(v, "%H:%M")
    except ValueError:
        raise ValueError("time is not a valid clock time")
    return v


# -----------------------------------------------------------------------------
# Enumerations (values are the stored labels)
# -----------------------------------------------------------------------------
class EventStatus(str, Enum):
    REQUESTED = "신청"
    CONFIRMED = "확정"
    COMPLETED = "완료"
    CANCELED = "취소"


class ChangeType(str, Enum):
    REQUESTED = "신청"
    CHANGED = "변경"
    CANCELED = "취소"


class ChangeStatus(str, Enum):
    PENDING = "대기"
    CONFIRMED = "확정"


class Attendance(str, Enum):
    PRESENT = "출석"
    LATE = "지각"
    ABSENT = "결석"


class PassHistoryType(str, Enum):
    PURCHASE = "구매"
    DEDUCTION = "차감"
    REFUND = "환불"
    MANUAL_EDIT = "수정"


class MachineKey(str, Enum):
    LEG_PRESS = "legPress"
    LEG_EXTENSION = "legExtension"
    LEG_CURL = "legCurl"
    PEC_DECK = "pecDeck"
    SEATED_ROW = "seatedRow"
    LAT_PULLDOWN = "latPulldown"
    CABLE = "cable"
    DUMBBELL = "dumbbell"
    BARBELL = "barbell"


class PhotoSlot(str, Enum):
    FRONT = "front"
    SIDE = "side"
    BACK = "back"
    SQUAT = "squat"
    OVERHEAD = "overhead"


# -----------------------------------------------------------------------------
# Roster
# -----------------------------------------------------------------------------
class Member(BaseModel):
    """v1 roster entry."""
    id: str
    name: str
    phone: Optional[str] = ""


class PassHistoryItem(BaseModel):
    id: str
    created_at: str
    type: PassHistoryType
    amount: int  # signed
    memo: Optional[str] = ""
    ref: Optional[str] = None


class MemberV2(BaseModel):
    id: str
    name: str
    phone: Optional[str] = ""
    remaining_sessions: int = Field(0, ge=0)
    expiry_date: str = ""
    history: List[PassHistoryItem] = Field(default_factory=list)
    created_at: str
    updated_at: str

    @field_validator("expiry_date")
    @classmethod
    def validate_expiry(cls, v: str) -> str:
        return _validate_date_str(v) if v else v


# -----------------------------------------------------------------------------
# Scheduling
# -----------------------------------------------------------------------------
class ScheduleEvent(BaseModel):
    id: str
    member_id: str
    member_name: str
    date: str
    time: str
    duration_min: int = 50
    status: EventStatus = EventStatus.REQUESTED
    note: Optional[str] = ""
    created_at: str
    updated_at: str


class ChangeItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: str
    member_name: str
    type: ChangeType
    before: Optional[str] = None
    after: Optional[str] = None
    date: str
    time: str
    status: ChangeStatus = ChangeStatus.PENDING


class NotificationItem(BaseModel):
    id: str
    created_at: str
    title: str
    body: str
    read: bool = False


# -----------------------------------------------------------------------------
# Workout log
# -----------------------------------------------------------------------------
class SetRow(BaseModel):
    id: str
    weight: float = Field(0, ge=0)  # kg
    reps: int = Field(0, ge=0)
    rpe: float = 7  # 6~10, not enforced
    note: Optional[str] = ""


class ExerciseRow(BaseModel):
    id: str
    machine: str
    name: str = ""
    sets: List[SetRow] = Field(default_factory=list)


class WorkoutLog(BaseModel):
    member_id: str
    member_name: str
    date: str
    attendance: Attendance = Attendance.PRESENT
    focus: str = ""
    coach_note: str = ""
    exercises: List[ExerciseRow] = Field(default_factory=list)
    created_at: str
    updated_at: str


class RecentLogItem(BaseModel):
    id: str  # "<member_id>::<date>"
    member_id: Optional[str] = None
    member_name: str
    date: str
    updated_at: str


# -----------------------------------------------------------------------------
# Assessment / recommendation
# -----------------------------------------------------------------------------
class Answers(BaseModel):
    shoulder_pain_overhead: bool = False  # 팔 올릴 때 어깨 통증/뻐근함
    squat_back_rounds: bool = False       # 스쿼트 시 허리가 먼저 꺾임
    knee_valgus: bool = False             # 스쿼트 시 무릎 안쪽 모임 느낌
    hip_asymmetry: bool = False           # 골반 비대칭/체중 한쪽 쏠림


class Exercise(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    machine: MachineKey
    tags: List[str] = Field(default_factory=list)


class Recommendation(BaseModel):
    cautions: List[str] = Field(default_factory=list)
    focuses: List[str] = Field(default_factory=list)
    excludes: List[str] = Field(default_factory=list)
    avoid_movements: List[str] = Field(default_factory=list)
    recommended_ids: List[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Photo feedback
# -----------------------------------------------------------------------------
class FeedbackDraft(BaseModel):
    photos: Dict[PhotoSlot, str] = Field(default_factory=dict)  # slot -> filename


class FeedbackRequest(BaseModel):
    submitted_at: str
    notes: str = ""
    photo_keys: List[PhotoSlot] = Field(default_factory=list)
    filenames: Dict[PhotoSlot, str] = Field(default_factory=dict)


class CoachFeedback(BaseModel):
    note: str = ""
    updated_at: str


# -----------------------------------------------------------------------------
# HTTP bodies
# -----------------------------------------------------------------------------
class HealthOut(BaseModel):
    ok: bool = True
    db_connected: bool = True
    db_path: str
    timestamp: str


class GenericResponse(BaseModel):
    message: str


class MemberIn(BaseModel):
    name: str
    phone: Optional[str] = ""


class PurchaseIn(BaseModel):
    count: int = 10
    memo: Optional[str] = ""


class ManualEditIn(BaseModel):
    remaining_sessions: int = Field(..., ge=0)
    expiry_date: str = ""

    @field_validator("expiry_date")
    @classmethod
    def validate_expiry(cls, v: str) -> str:
        return _validate_date_str(v) if v else v


class SessionAdjustIn(BaseModel):
    amount: int = Field(1, ge=1)
    memo: Optional[str] = ""
    ref: Optional[str] = None


class MachineIn(BaseModel):
    name: str


class EventIn(BaseModel):
    member_id: str = ""
    date: str
    time: str = "10:00"
    duration_min: Optional[int] = 50
    status: EventStatus = EventStatus.REQUESTED
    note: Optional[str] = ""

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        return _validate_date_str(v)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _validate_time_str(v)


class CountsOut(BaseModel):
    counts: Dict[str, int] = Field(default_factory=dict)
    month_total: int = 0


class CalendarCellOut(BaseModel):
    date: Optional[str] = None
    day: Optional[int] = None
    count: int = 0


class CalendarOut(BaseModel):
    year: int
    month: int
    month_total: int
    cells: List[CalendarCellOut] = Field(default_factory=list)


class LogFieldsIn(BaseModel):
    attendance: Optional[Attendance] = None
    focus: Optional[str] = None
    coach_note: Optional[str] = None


class ExerciseIn(BaseModel):
    machine: Optional[str] = None
    name: Optional[str] = None


class SetIn(BaseModel):
    weight: Optional[float] = Field(None, ge=0)
    reps: Optional[int] = Field(None, ge=0)
    rpe: Optional[float] = None
    note: Optional[str] = None


class LogMetricsOut(BaseModel):
    total_volume: float
    max_weight: float
    exercise_volumes: Dict[str, float] = Field(default_factory=dict)


class LogOut(BaseModel):
    log: WorkoutLog
    metrics: LogMetricsOut


class SummaryOut(BaseModel):
    text: str


class RecommendIn(BaseModel):
    answers: Optional[Answers] = None
    machines: Optional[List[MachineKey]] = None


class RecommendOut(BaseModel):
    answers: Answers
    recommendation: Recommendation
    exercises: List[Exercise] = Field(default_factory=list)


class FeedbackSubmitIn(BaseModel):
    notes: str = ""


class CoachNoteIn(BaseModel):
    note: str = ""


class DashboardOut(BaseModel):
    today: str
    today_count: int
    month_total: int
    unread_count: int
    change_count: int
    today_events: List[ScheduleEvent] = Field(default_factory=list)
    recent_logs: List[RecentLogItem] = Field(default_factory=list)
    change_lines: List[str] = Field(default_factory=list)
    log_lines: List[str] = Field(default_factory=list)
