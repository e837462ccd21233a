# workout_log.py
# =============================================================================
# Workout logs: one document per (member, date), autosaved on every change,
# plus the recent-activity index, derived metrics and the shareable summary.
# =============================================================================

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from calendar_view import fmt_datetime, format_korean_date
from errors import AttendanceLocked, NotFound, ValidationFailed
from members import Roster, uid
from schemas import Attendance, ExerciseRow, RecentLogItem, SetRow, WorkoutLog
from store import LOG_INDEX, MACHINES, RecordStore, log_key, now_iso

log = logging.getLogger("formpick.workout_log")

RECENT_LIMIT = 30
DEFAULT_SETS = 3
DEFAULT_RPE = 7

DEFAULT_MACHINES: List[str] = [
    "레그프레스",
    "레그익스텐션",
    "레그컬",
    "랫풀다운",
    "시티드로우",
    "펙덱플라이",
    "케이블머신",
    "덤벨",
    "바벨",
]

_ABSENT_NOTICE = "결석이면 운동 기록을 막아둘게!"


# -----------------------------------------------------------------------------
# Metrics
# -----------------------------------------------------------------------------
def exercise_volume(ex: ExerciseRow) -> float:
    return sum(s.weight * s.reps for s in ex.sets)


def total_volume(exercises: List[ExerciseRow]) -> float:
    return sum(exercise_volume(ex) for ex in exercises)


def max_weight(exercises: List[ExerciseRow]) -> float:
    return max((s.weight for ex in exercises for s in ex.sets), default=0)


def _num(v: float) -> str:
    """40.0 -> '40', 42.5 -> '42.5'."""
    return str(int(v)) if float(v).is_integer() else str(v)


def _thousands(v: float) -> str:
    return f"{int(v):,}" if float(v).is_integer() else f"{v:,}"


def _is_empty_set(s: SetRow) -> bool:
    return not s.weight and not s.reps


def build_member_message(wlog: WorkoutLog, skip_empty_sets: bool = False) -> str:
    """Plain-text summary of the day for sending to the member.

    With ``skip_empty_sets`` sets that have neither weight nor reps are left
    out, and exercises with nothing left are dropped; the totals do not
    change since those sets add no volume.
    """
    exercises = wlog.exercises
    if skip_empty_sets:
        exercises = [
            ex.model_copy(update={"sets": [s for s in ex.sets if not _is_empty_set(s)]})
            for ex in exercises
        ]
        exercises = [ex for ex in exercises if ex.sets]

    lines: List[str] = [f"📌 오늘의 운동일지 ({format_korean_date(wlog.date)})", ""]
    lines.append(f"👤 회원: {wlog.member_name or '미선택'}")
    lines.append(f"✅ 출석: {wlog.attendance.value}")
    if wlog.focus.strip():
        lines.append(f"🎯 포커스: {wlog.focus.strip()}")
    lines.append("")

    if not exercises:
        lines.append("오늘 기록된 운동이 없습니다.")
    else:
        lines.append("🏋️‍♂️ 운동 기록")
        for idx, ex in enumerate(exercises, start=1):
            lines.append(f"\n{idx}) [{ex.machine}] {ex.name or '운동명 미입력'}")
            for s_idx, s in enumerate(ex.sets, start=1):
                note = f" / 메모: {s.note.strip()}" if (s.note or "").strip() else ""
                lines.append(
                    f"- {s_idx}세트: {_num(s.weight)}kg x {s.reps}회 (RPE {_num(s.rpe)}){note}"
                )
        lines.append("")
        lines.append("📊 오늘 운동량 요약")
        lines.append(f"- 총 볼륨(kg·reps): {_thousands(total_volume(wlog.exercises))}")
        lines.append(f"- 최고 중량: {_num(max_weight(wlog.exercises))}kg")

    if wlog.coach_note.strip():
        lines.append("")
        lines.append("📝 코치 코멘트")
        lines.append(wlog.coach_note.strip())

    lines.append("")
    lines.append("👍 수고하셨어요! 다음 수업 때 컨디션/통증 체크 후 진행할게요.")
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Center machines
# -----------------------------------------------------------------------------
async def load_machines(store: RecordStore) -> List[str]:
    saved = await store.read_list(MACHINES, str)
    return saved or list(DEFAULT_MACHINES)


async def add_machine(store: RecordStore, name: str) -> List[str]:
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("기구명을 입력해줘!")
    machines = await load_machines(store)
    if name in machines:
        raise ValidationFailed("이미 등록된 기구야.")
    machines = [name] + machines
    await store.write(MACHINES, machines)
    return machines


async def remove_machine(store: RecordStore, name: str) -> List[str]:
    machines = [m for m in await load_machines(store) if m != name]
    await store.write(MACHINES, machines)
    return machines


# -----------------------------------------------------------------------------
# Recent-activity index
# -----------------------------------------------------------------------------
async def recent_logs(store: RecordStore, limit: int = RECENT_LIMIT) -> List[RecentLogItem]:
    items = await store.read_list(LOG_INDEX, RecentLogItem)
    return items[:limit]


def recent_log_line(item: RecentLogItem) -> str:
    return f"{item.member_name} · {format_korean_date(item.date)} · 마지막 수정: {fmt_datetime(item.updated_at)}"


async def upsert_log_index(store: RecordStore, wlog: WorkoutLog) -> List[RecentLogItem]:
    entry_id = f"{wlog.member_id}::{wlog.date}"
    item = RecentLogItem(id=entry_id, member_id=wlog.member_id, member_name=wlog.member_name,
                         date=wlog.date, updated_at=wlog.updated_at or now_iso())
    prev = await store.read_list(LOG_INDEX, RecentLogItem)
    nxt = ([item] + [x for x in prev if x.id != entry_id])[:RECENT_LIMIT]
    await store.write(LOG_INDEX, nxt)
    return nxt


# -----------------------------------------------------------------------------
# Editor
# -----------------------------------------------------------------------------
def _empty_log(member_id: str, member_name: str, date: str) -> WorkoutLog:
    now = now_iso()
    return WorkoutLog(member_id=member_id, member_name=member_name, date=date,
                      created_at=now, updated_at=now)


def _new_set() -> SetRow:
    return SetRow(id=uid("set"), weight=0, reps=0, rpe=DEFAULT_RPE, note="")


class WorkoutLogEditor:
    """Holds one day's log in memory and writes it through on every change."""

    def __init__(self, store: RecordStore, wlog: WorkoutLog, machines: Optional[List[str]] = None):
        self.store = store
        self.log = wlog
        self.machines = machines if machines is not None else list(DEFAULT_MACHINES)

    @classmethod
    async def open(cls, store: RecordStore, roster: Roster, member_id: str, date: str) -> "WorkoutLogEditor":
        if not member_id:
            raise ValidationFailed("회원 선택이 필요해!")
        member = await roster.get(member_id)
        name = member.name if member else ""
        saved = await store.read_as(log_key(member_id, date), WorkoutLog, None)
        if saved is not None:
            # 이름이 바뀌었으면 반영
            wlog = saved.model_copy(update={"member_id": member_id, "member_name": name, "date": date})
        else:
            wlog = _empty_log(member_id, name, date)
        return cls(store, wlog, await load_machines(store))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    async def _commit(self) -> WorkoutLog:
        self.log.updated_at = now_iso()
        await self.store.write(log_key(self.log.member_id, self.log.date), self.log)
        await upsert_log_index(self.store, self.log)
        return self.log

    def _guard_absent(self) -> None:
        if self.log.attendance == Attendance.ABSENT:
            raise AttendanceLocked(_ABSENT_NOTICE)

    def _exercise(self, ex_id: str) -> ExerciseRow:
        ex = next((e for e in self.log.exercises if e.id == ex_id), None)
        if ex is None:
            raise NotFound("운동을 찾을 수 없어!")
        return ex

    # -------------------------------------------------------------------------
    # Mutators
    # -------------------------------------------------------------------------
    async def update_fields(
        self,
        attendance: Optional[Attendance] = None,
        focus: Optional[str] = None,
        coach_note: Optional[str] = None,
    ) -> WorkoutLog:
        if attendance is not None:
            self.log.attendance = attendance
        if focus is not None:
            self.log.focus = focus
        if coach_note is not None:
            self.log.coach_note = coach_note
        return await self._commit()

    async def add_exercise(self, machine: Optional[str] = None, name: str = "") -> ExerciseRow:
        self._guard_absent()
        ex = ExerciseRow(
            id=uid("ex"),
            machine=machine or (self.machines[0] if self.machines else "기구"),
            name=name,
            sets=[_new_set() for _ in range(DEFAULT_SETS)],
        )
        self.log.exercises.insert(0, ex)
        await self._commit()
        return ex

    async def remove_exercise(self, ex_id: str) -> WorkoutLog:
        self.log.exercises = [e for e in self.log.exercises if e.id != ex_id]
        return await self._commit()

    async def update_exercise(self, ex_id: str, machine: Optional[str] = None,
                              name: Optional[str] = None) -> ExerciseRow:
        self._guard_absent()
        ex = self._exercise(ex_id)
        if machine is not None:
            ex.machine = machine
        if name is not None:
            ex.name = name
        await self._commit()
        return ex

    async def add_set(self, ex_id: str) -> SetRow:
        self._guard_absent()
        ex = self._exercise(ex_id)
        row = _new_set()
        ex.sets.append(row)
        await self._commit()
        return row

    async def remove_set(self, ex_id: str, set_id: str) -> WorkoutLog:
        ex = self._exercise(ex_id)
        ex.sets = [s for s in ex.sets if s.id != set_id]
        return await self._commit()

    async def update_set(
        self,
        ex_id: str,
        set_id: str,
        weight: Optional[float] = None,
        reps: Optional[int] = None,
        rpe: Optional[float] = None,
        note: Optional[str] = None,
    ) -> SetRow:
        self._guard_absent()
        ex = self._exercise(ex_id)
        row = next((s for s in ex.sets if s.id == set_id), None)
        if row is None:
            raise NotFound("세트를 찾을 수 없어!")
        if weight is not None:
            if weight < 0:
                raise ValidationFailed("중량은 0 이상이어야 해!")
            row.weight = weight
        if reps is not None:
            if reps < 0:
                raise ValidationFailed("횟수는 0 이상이어야 해!")
            row.reps = reps
        if rpe is not None:
            row.rpe = rpe
        if note is not None:
            row.note = note
        await self._commit()
        return row

    async def clear(self) -> WorkoutLog:
        """Forget the stored log for this day and start over. The index entry stays."""
        await self.store.remove(log_key(self.log.member_id, self.log.date))
        log.info(f"Cleared workout log for {self.log.member_id} on {self.log.date}")
        self.log = _empty_log(self.log.member_id, self.log.member_name, self.log.date)
        return self.log

    # -------------------------------------------------------------------------
    # Derived
    # -------------------------------------------------------------------------
    def metrics(self) -> Dict[str, float]:
        return {
            "total_volume": total_volume(self.log.exercises),
            "max_weight": max_weight(self.log.exercises),
        }

    def summary(self, skip_empty_sets: bool = False) -> str:
        return build_member_message(self.log, skip_empty_sets=skip_empty_sets)
