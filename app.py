# app.py
# =============================================================================
# Formpick Studio — local studio manager (FastAPI + SQLAlchemy 2.x async, Pydantic v2)
# Roster, class schedule, workout logs, assessment recommendations, photo feedback.
# Everything lives in one local SQLite file; the HTTP layer only wires requests.
# =============================================================================

from __future__ import annotations

import logging
import os
import traceback
from contextlib import asynccontextmanager
from datetime import MAXYEAR, MINYEAR, datetime, timezone
from pathlib import Path as OSPath
from typing import AsyncGenerator, Dict, List, Optional

from fastapi import FastAPI, File, Query, Request, UploadFile
from fastapi import Path as FPath
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import feedback
import recommend
import workout_log
from calendar_view import month_view, parse_iso, shift_month, today_iso
from errors import NotFound, StudioError, ValidationFailed
from members import Roster, migrate_members_to_v2
from scheduling import Scheduler, change_line
from schemas import (
    Answers,
    CalendarCellOut,
    CalendarOut,
    ChangeItem,
    CoachFeedback,
    CoachNoteIn,
    CountsOut,
    DashboardOut,
    EventIn,
    Exercise,
    ExerciseIn,
    ExerciseRow,
    FeedbackDraft,
    FeedbackRequest,
    FeedbackSubmitIn,
    GenericResponse,
    HealthOut,
    LogFieldsIn,
    LogMetricsOut,
    LogOut,
    MachineIn,
    ManualEditIn,
    MemberIn,
    MemberV2,
    NotificationItem,
    PhotoSlot,
    PurchaseIn,
    RecentLogItem,
    RecommendIn,
    RecommendOut,
    ScheduleEvent,
    SessionAdjustIn,
    SetIn,
    SetRow,
    SummaryOut,
)
from store import Base, RecordStore
from workout_log import WorkoutLogEditor, exercise_volume

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=os.getenv("FORMPICK_LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s %(message)s",
)
log = logging.getLogger("formpick")

# -----------------------------------------------------------------------------
# DB connection
# Priority:
#   1) env FORMPICK_DB (path to formpick.db)
#   2) ./data/formpick.db
#   3) ./formpick.db  (fallback)
# -----------------------------------------------------------------------------
env_db = os.getenv("FORMPICK_DB")
candidates = [
    env_db,
    str((OSPath(__file__).parent / "data" / "formpick.db").resolve()),
    str((OSPath(__file__).parent / "formpick.db").resolve()),
]
DB_PATH = env_db or next((p for p in candidates if p and OSPath(p).exists()), candidates[-1])
engine = create_async_engine(f"sqlite+aiosqlite:///{DB_PATH}", echo=False)
log.info(f"Using SQLite (async): {DB_PATH}")

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

AUDIT_FIELD_EDITS = os.getenv("FORMPICK_AUDIT_FIELD_EDITS", "").lower() in ("1", "true", "yes")

store = RecordStore(async_session)
roster = Roster(store)
scheduler = Scheduler(store, roster, audit_field_edits=AUDIT_FIELD_EDITS)


# -----------------------------------------------------------------------------
# Startup: create table & run migrations
# -----------------------------------------------------------------------------
async def _init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await migrate_members_to_v2(store)


# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    await _init_db()
    yield
    await engine.dispose()


app = FastAPI(
    title="Formpick Studio",
    description="Local fitness-studio manager: members, schedule, workout logs, recommendations.",
    version="1.0.0",
    lifespan=lifespan,
)


# -----------------------------------------------------------------------------
# Error handling: domain notices become 4xx, anything else is logged as 500
# -----------------------------------------------------------------------------
@app.exception_handler(StudioError)
async def _studio_error_handler(request: Request, exc: StudioError):
    log.warning(f"{request.method} {request.url.path} rejected: {exc.notice}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.notice})


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exc()
    log.error(f"Unhandled error on {request.method} {request.url.path}: {exc}\n{tb}")
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {type(exc).__name__}: {exc}"},
    )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def _log_out(editor: WorkoutLogEditor) -> LogOut:
    m = editor.metrics()
    return LogOut(
        log=editor.log,
        metrics=LogMetricsOut(
            total_volume=m["total_volume"],
            max_weight=m["max_weight"],
            exercise_volumes={ex.id: exercise_volume(ex) for ex in editor.log.exercises},
        ),
    )


async def _editor(member_id: str, date: str) -> WorkoutLogEditor:
    return await WorkoutLogEditor.open(store, roster, member_id, date)


async def _member_editor(member_id: str, date: str) -> WorkoutLogEditor:
    """Editor for writes: the member must be on the roster."""
    await roster.require(member_id)
    return await _editor(member_id, date)


def _current_month(year: Optional[int], month: Optional[int]):
    if year is None or month is None:
        y, m, _ = parse_iso(today_iso())
        return year or y, month or m
    return year, month


# =============================================================================
# ENDPOINTS — Health / Root
# =============================================================================
@app.get("/health", response_model=HealthOut)
async def health() -> HealthOut:
    db_connected = False
    try:
        async with async_session() as s:
            await s.execute(text("SELECT 1"))
            db_connected = True
    except Exception as e:
        log.error(f"Health check DB query failed: {e}")
    return HealthOut(
        ok=db_connected, db_connected=db_connected,
        db_path=DB_PATH, timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.get("/", response_model=GenericResponse)
async def root() -> GenericResponse:
    return GenericResponse(message="Formpick Studio v1 is running")


# =============================================================================
# ENDPOINTS — Members
# =============================================================================
@app.get("/members", response_model=List[MemberV2])
async def list_members(q: str = Query("", description="name or phone fragment")) -> List[MemberV2]:
    return await roster.list(q)


@app.post("/members", response_model=MemberV2)
async def add_member(body: MemberIn) -> MemberV2:
    return await roster.add(body.name, body.phone)


@app.get("/members/{member_id}", response_model=MemberV2)
async def get_member(member_id: str) -> MemberV2:
    return await roster.require(member_id)


@app.delete("/members/{member_id}", response_model=GenericResponse)
async def remove_member(member_id: str) -> GenericResponse:
    await roster.remove(member_id)
    return GenericResponse(message="회원 삭제 ✅ (저장된 운동일지는 남아있을 수 있어)")


@app.post("/members/{member_id}/purchase", response_model=MemberV2)
async def register_purchase(member_id: str, body: PurchaseIn) -> MemberV2:
    return await roster.register_purchase(member_id, body.count, body.memo or "")


@app.put("/members/{member_id}/pass", response_model=MemberV2)
async def manual_edit(member_id: str, body: ManualEditIn) -> MemberV2:
    return await roster.manual_edit(member_id, body.remaining_sessions, body.expiry_date)


@app.post("/members/{member_id}/deduct", response_model=MemberV2)
async def deduct_session(member_id: str, body: Optional[SessionAdjustIn] = None) -> MemberV2:
    body = body or SessionAdjustIn()
    return await roster.deduct(member_id, body.amount, ref=body.ref, memo=body.memo or "")


@app.post("/members/{member_id}/refund", response_model=MemberV2)
async def refund_sessions(member_id: str, body: SessionAdjustIn) -> MemberV2:
    return await roster.refund(member_id, body.amount, memo=body.memo or "")


# =============================================================================
# ENDPOINTS — Center machines
# =============================================================================
@app.get("/machines", response_model=List[str])
async def list_machines() -> List[str]:
    return await workout_log.load_machines(store)


@app.post("/machines", response_model=List[str])
async def add_machine(body: MachineIn) -> List[str]:
    return await workout_log.add_machine(store, body.name)


@app.delete("/machines/{name}", response_model=List[str])
async def remove_machine(name: str) -> List[str]:
    return await workout_log.remove_machine(store, name)


# =============================================================================
# ENDPOINTS — Schedule
# IMPORTANT: fixed /schedule/* paths BEFORE /schedule/events/{event_id}
# =============================================================================
@app.get("/schedule/events", response_model=List[ScheduleEvent])
async def list_events(
    date: Optional[str] = Query(None, pattern=_DATE_PATTERN, description="YYYY-MM-DD; all events if omitted"),
) -> List[ScheduleEvent]:
    if date:
        return await scheduler.day_events(date)
    return await scheduler.events()


@app.get("/schedule/counts", response_model=CountsOut)
async def schedule_counts(
    year: Optional[int] = Query(None, ge=MINYEAR, le=MAXYEAR), month: Optional[int] = Query(None, ge=1, le=12),
) -> CountsOut:
    y, m = _current_month(year, month)
    return CountsOut(counts=await scheduler.counts_by_date(), month_total=await scheduler.month_total(y, m))


@app.get("/schedule/calendar", response_model=CalendarOut)
async def schedule_calendar(
    year: Optional[int] = Query(None, ge=MINYEAR, le=MAXYEAR),
    month: Optional[int] = Query(None, ge=1, le=12),
    offset: int = Query(0, description="months to move from year/month, e.g. -1 for previous"),
) -> CalendarOut:
    y, m = shift_month(*_current_month(year, month), offset)
    if not MINYEAR <= y <= MAXYEAR:
        raise ValidationFailed("달력 범위를 벗어났어!")
    counts = await scheduler.counts_by_date()
    cells = [CalendarCellOut(date=c.date, day=c.day, count=c.count) for c in month_view(y, m, counts)]
    return CalendarOut(year=y, month=m, month_total=await scheduler.month_total(y, m), cells=cells)


@app.post("/schedule/events", response_model=ScheduleEvent)
async def create_event(body: EventIn) -> ScheduleEvent:
    return await scheduler.create_event(
        body.member_id, body.date, body.time, body.duration_min, body.status, body.note,
    )


@app.put("/schedule/events/{event_id}", response_model=ScheduleEvent)
async def edit_event(event_id: str, body: EventIn) -> ScheduleEvent:
    return await scheduler.edit_event(
        event_id, body.member_id, body.date, body.time, body.duration_min, body.status, body.note,
    )


@app.post("/schedule/events/{event_id}/cancel", response_model=ScheduleEvent)
async def cancel_event(event_id: str) -> ScheduleEvent:
    return await scheduler.cancel_event(event_id)


# =============================================================================
# ENDPOINTS — Change log / Notifications
# =============================================================================
@app.get("/changes", response_model=List[ChangeItem])
async def list_changes(limit: int = Query(100, ge=1, le=1000)) -> List[ChangeItem]:
    return (await scheduler.changes())[:limit]


@app.get("/notifications", response_model=List[NotificationItem])
async def list_notifications(unread_only: bool = False) -> List[NotificationItem]:
    items = await scheduler.notifications()
    return [n for n in items if not n.read] if unread_only else items


# IMPORTANT: /notifications/read_all must be defined BEFORE /notifications/{notification_id}/read
@app.post("/notifications/read_all", response_model=GenericResponse)
async def read_all_notifications() -> GenericResponse:
    changed = await scheduler.mark_all_read()
    return GenericResponse(message=f"{changed} notifications marked read")


@app.post("/notifications/{notification_id}/read", response_model=NotificationItem)
async def read_notification(notification_id: str) -> NotificationItem:
    return await scheduler.mark_read(notification_id)


# =============================================================================
# ENDPOINTS — Workout logs
# IMPORTANT: /logs/recent BEFORE /logs/{member_id}/{date}
# =============================================================================
@app.get("/logs/recent", response_model=List[RecentLogItem])
async def list_recent_logs(limit: int = Query(30, ge=1, le=30)) -> List[RecentLogItem]:
    return await workout_log.recent_logs(store, limit)


@app.get("/logs/{member_id}/{date}", response_model=LogOut)
async def get_log(member_id: str, date: str = FPath(..., pattern=_DATE_PATTERN)) -> LogOut:
    return _log_out(await _editor(member_id, date))


@app.patch("/logs/{member_id}/{date}", response_model=LogOut)
async def update_log_fields(
    member_id: str, body: LogFieldsIn, date: str = FPath(..., pattern=_DATE_PATTERN),
) -> LogOut:
    editor = await _member_editor(member_id, date)
    await editor.update_fields(body.attendance, body.focus, body.coach_note)
    return _log_out(editor)


@app.delete("/logs/{member_id}/{date}", response_model=LogOut)
async def clear_log(member_id: str, date: str = FPath(..., pattern=_DATE_PATTERN)) -> LogOut:
    editor = await _editor(member_id, date)
    await editor.clear()
    return _log_out(editor)


@app.get("/logs/{member_id}/{date}/summary", response_model=SummaryOut)
async def log_summary(
    member_id: str,
    date: str = FPath(..., pattern=_DATE_PATTERN),
    skip_empty_sets: bool = Query(False, description="leave out 0kg x 0 sets"),
) -> SummaryOut:
    editor = await _editor(member_id, date)
    return SummaryOut(text=editor.summary(skip_empty_sets=skip_empty_sets))


@app.post("/logs/{member_id}/{date}/exercises", response_model=ExerciseRow)
async def add_exercise(
    member_id: str,
    date: str = FPath(..., pattern=_DATE_PATTERN),
    body: Optional[ExerciseIn] = None,
) -> ExerciseRow:
    body = body or ExerciseIn()
    editor = await _member_editor(member_id, date)
    return await editor.add_exercise(machine=body.machine, name=body.name or "")


@app.patch("/logs/{member_id}/{date}/exercises/{ex_id}", response_model=ExerciseRow)
async def update_exercise(
    member_id: str, ex_id: str, body: ExerciseIn, date: str = FPath(..., pattern=_DATE_PATTERN),
) -> ExerciseRow:
    editor = await _member_editor(member_id, date)
    return await editor.update_exercise(ex_id, machine=body.machine, name=body.name)


@app.delete("/logs/{member_id}/{date}/exercises/{ex_id}", response_model=LogOut)
async def remove_exercise(member_id: str, ex_id: str, date: str = FPath(..., pattern=_DATE_PATTERN)) -> LogOut:
    editor = await _member_editor(member_id, date)
    await editor.remove_exercise(ex_id)
    return _log_out(editor)


@app.post("/logs/{member_id}/{date}/exercises/{ex_id}/sets", response_model=SetRow)
async def add_set(member_id: str, ex_id: str, date: str = FPath(..., pattern=_DATE_PATTERN)) -> SetRow:
    editor = await _member_editor(member_id, date)
    return await editor.add_set(ex_id)


@app.patch("/logs/{member_id}/{date}/exercises/{ex_id}/sets/{set_id}", response_model=SetRow)
async def update_set(
    member_id: str, ex_id: str, set_id: str, body: SetIn, date: str = FPath(..., pattern=_DATE_PATTERN),
) -> SetRow:
    editor = await _member_editor(member_id, date)
    return await editor.update_set(ex_id, set_id, weight=body.weight, reps=body.reps,
                                   rpe=body.rpe, note=body.note)


@app.delete("/logs/{member_id}/{date}/exercises/{ex_id}/sets/{set_id}", response_model=LogOut)
async def remove_set(
    member_id: str, ex_id: str, set_id: str, date: str = FPath(..., pattern=_DATE_PATTERN),
) -> LogOut:
    editor = await _member_editor(member_id, date)
    await editor.remove_set(ex_id, set_id)
    return _log_out(editor)


# =============================================================================
# ENDPOINTS — Assessment / Recommendations
# =============================================================================
@app.get("/exercises", response_model=List[Exercise])
async def exercise_catalog() -> List[Exercise]:
    return list(recommend.EXERCISES)


@app.put("/assessment", response_model=Answers)
async def save_assessment(body: Answers) -> Answers:
    await recommend.save_answers(store, body)
    return body


@app.get("/assessment", response_model=Answers)
async def get_assessment() -> Answers:
    answers = await recommend.load_answers(store)
    if answers is None:
        raise NotFound("평가 데이터가 없어요. 먼저 자가평가를 진행해주세요.")
    return answers


@app.post("/recommendations", response_model=RecommendOut)
async def recommendations(body: Optional[RecommendIn] = None) -> RecommendOut:
    """Recommend for the given answers, or for the last saved assessment."""
    body = body or RecommendIn()
    answers = body.answers
    if answers is None:
        answers = await recommend.load_answers(store)
    if answers is None:
        raise NotFound("평가 데이터가 없어요. 먼저 자가평가를 진행해주세요.")
    rec = recommend.recommend(answers)
    return RecommendOut(
        answers=answers,
        recommendation=rec,
        exercises=recommend.filter_by_machines(rec.recommended_ids, body.machines),
    )


# =============================================================================
# ENDPOINTS — Photo feedback / Coach
# =============================================================================
@app.get("/feedback/slots", response_model=Dict[str, str])
async def photo_slots() -> Dict[str, str]:
    return {slot.value: label for slot, label in feedback.PHOTO_LABEL.items()}


@app.get("/feedback/draft", response_model=FeedbackDraft)
async def get_feedback_draft() -> FeedbackDraft:
    return await feedback.load_draft(store)


@app.put("/feedback/photos/{slot}", response_model=FeedbackDraft)
async def upload_photo(slot: PhotoSlot, file: UploadFile = File(...)) -> FeedbackDraft:
    # Only the name is recorded; the bytes are dropped with the upload.
    draft = await feedback.attach_photo(store, slot, file.filename or "", file.content_type)
    await file.close()
    return draft


@app.delete("/feedback/photos/{slot}", response_model=FeedbackDraft)
async def remove_photo(slot: PhotoSlot) -> FeedbackDraft:
    return await feedback.detach_photo(store, slot)


@app.post("/feedback/requests", response_model=FeedbackRequest)
async def submit_feedback_request(body: FeedbackSubmitIn) -> FeedbackRequest:
    return await feedback.submit_request(store, body.notes)


@app.get("/feedback/requests/latest", response_model=FeedbackRequest)
async def latest_feedback_request() -> FeedbackRequest:
    req = await feedback.load_request(store)
    if req is None:
        raise NotFound("아직 저장된 요청이 없어요.")
    return req


@app.put("/coach/feedback", response_model=CoachFeedback)
async def save_coach_feedback(body: CoachNoteIn) -> CoachFeedback:
    return await feedback.save_coach_feedback(store, body.note)


@app.get("/coach/feedback", response_model=CoachFeedback)
async def get_coach_feedback() -> CoachFeedback:
    fb = await feedback.load_coach_feedback(store)
    if fb is None:
        raise NotFound("아직 작성된 피드백이 없어요.")
    return fb


# =============================================================================
# ENDPOINTS — Dashboard
# =============================================================================
@app.get("/dashboard", response_model=DashboardOut)
async def dashboard(today: Optional[str] = Query(None, pattern=_DATE_PATTERN)) -> DashboardOut:
    today = today or today_iso()
    y, m, _ = parse_iso(today)
    counts = await scheduler.counts_by_date()
    changes = await scheduler.changes()
    recent = await workout_log.recent_logs(store, 5)
    return DashboardOut(
        today=today,
        today_count=counts.get(today, 0),
        month_total=await scheduler.month_total(y, m),
        unread_count=await scheduler.unread_count(),
        change_count=len(changes),
        today_events=await scheduler.today_events(today),
        recent_logs=recent,
        change_lines=[change_line(c) for c in changes[:5]],
        log_lines=[workout_log.recent_log_line(item) for item in recent],
    )
