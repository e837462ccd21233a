# scheduling.py
# =============================================================================
# Class schedule: events keyed by date, with a change log and notifications
# emitted on create / reschedule / cancel. Cancel is a soft status change.
# =============================================================================

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from calendar_view import fmt_datetime, format_korean_date, month_prefix, today_iso
from errors import DuplicateBooking, NotFound, ValidationFailed
from members import Roster, uid
from schemas import (
    ChangeItem,
    ChangeType,
    EventStatus,
    MemberV2,
    NotificationItem,
    ScheduleEvent,
)
from store import CHANGES, EVENTS, NOTIFICATIONS, RecordStore, now_iso

log = logging.getLogger("formpick.scheduling")

DEFAULT_DURATION_MIN = 50


def change_line(c: ChangeItem) -> str:
    """One-line history entry, e.g. for the dashboard."""
    if c.type == ChangeType.CHANGED:
        detail = f"시간 변경: {c.before} → {c.after}"
    elif c.type == ChangeType.REQUESTED:
        detail = "신규 신청"
    else:
        detail = "취소"
    return f"{c.member_name} · {format_korean_date(c.date)} {c.time} · {detail} · {fmt_datetime(c.created_at)}"


class Scheduler:
    def __init__(self, store: RecordStore, roster: Roster, audit_field_edits: bool = False):
        self.store = store
        self.roster = roster
        self.audit_field_edits = audit_field_edits

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------
    async def events(self) -> List[ScheduleEvent]:
        return await self.store.read_list(EVENTS, ScheduleEvent)

    async def _save_events(self, events: List[ScheduleEvent]) -> None:
        await self.store.write(EVENTS, events)

    async def changes(self) -> List[ChangeItem]:
        return await self.store.read_list(CHANGES, ChangeItem)

    async def notifications(self) -> List[NotificationItem]:
        return await self.store.read_list(NOTIFICATIONS, NotificationItem)

    async def _push_change(
        self,
        kind: ChangeType,
        member_name: str,
        date: str,
        time: str,
        before: Optional[str] = None,
        after: Optional[str] = None,
    ) -> ChangeItem:
        item = ChangeItem(id=uid("chg"), created_at=now_iso(), member_name=member_name,
                          type=kind, date=date, time=time, before=before, after=after)
        await self.store.write(CHANGES, [item] + await self.changes())
        return item

    async def _push_notification(self, title: str, body: str) -> NotificationItem:
        item = NotificationItem(id=uid("noti"), created_at=now_iso(), title=title, body=body)
        await self.store.write(NOTIFICATIONS, [item] + await self.notifications())
        return item

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------
    async def _check(
        self,
        events: List[ScheduleEvent],
        member_id: str,
        date: str,
        time: str,
        ignore_id: Optional[str] = None,
    ) -> MemberV2:
        member = await self.roster.get(member_id)
        if member is None:
            raise ValidationFailed("회원 선택이 필요해!")
        if not time:
            raise ValidationFailed("시간을 입력해줘!")
        dup = any(
            e.member_id == member.id and e.date == date and e.time == time
            and e.status != EventStatus.CANCELED and e.id != ignore_id
            for e in events
        )
        if dup:
            raise DuplicateBooking("같은 시간에 이미 예약이 있어!")
        return member

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------
    async def create_event(
        self,
        member_id: str,
        date: str,
        time: str,
        duration_min: Optional[int] = DEFAULT_DURATION_MIN,
        status: EventStatus = EventStatus.REQUESTED,
        note: Optional[str] = "",
    ) -> ScheduleEvent:
        events = await self.events()
        member = await self._check(events, member_id, date, time)
        now = now_iso()
        ev = ScheduleEvent(
            id=uid("ev"),
            member_id=member.id,
            member_name=member.name,
            date=date,
            time=time,
            duration_min=duration_min or DEFAULT_DURATION_MIN,
            status=status,
            note=(note or "").strip(),
            created_at=now,
            updated_at=now,
        )
        await self._save_events([ev] + events)
        await self._push_change(ChangeType.REQUESTED, ev.member_name, ev.date, ev.time)
        await self._push_notification(
            "수업 신청",
            f"{ev.member_name} 회원님이 {format_korean_date(ev.date)} {ev.time} 수업을 신청했습니다.",
        )
        log.info(f"Event {ev.id} booked for {ev.member_id} on {ev.date} {ev.time}")
        return ev

    async def edit_event(
        self,
        event_id: str,
        member_id: str,
        date: str,
        time: str,
        duration_min: Optional[int] = DEFAULT_DURATION_MIN,
        status: EventStatus = EventStatus.REQUESTED,
        note: Optional[str] = "",
    ) -> ScheduleEvent:
        events = await self.events()
        current = next((e for e in events if e.id == event_id), None)
        if current is None:
            raise NotFound("수업을 찾을 수 없어!")
        member = await self._check(events, member_id, date, time, ignore_id=event_id)

        updated = current.model_copy(update={
            "member_id": member.id,
            "member_name": member.name,
            "date": date,
            "time": time,
            "duration_min": duration_min or DEFAULT_DURATION_MIN,
            "status": status,
            "note": (note or "").strip(),
            "updated_at": now_iso(),
        })
        await self._save_events([updated if e.id == event_id else e for e in events])

        if current.time != time or current.date != date:
            await self._push_change(ChangeType.CHANGED, member.name, date, time,
                                    before=current.time, after=time)
            await self._push_notification(
                "수업 변경",
                f"{member.name} 회원님의 수업이 변경되었습니다. "
                f"({format_korean_date(current.date)} {current.time} → {format_korean_date(date)} {time})",
            )
        elif self.audit_field_edits and (current.status != updated.status or current.note != updated.note):
            await self._push_change(ChangeType.CHANGED, member.name, date, time,
                                    before=current.time, after=time)
            await self._push_notification(
                "수업 수정",
                f"{member.name} 회원님의 {format_korean_date(date)} {time} 수업 정보가 수정되었습니다. "
                f"(상태: {updated.status.value})",
            )
        return updated

    async def cancel_event(self, event_id: str) -> ScheduleEvent:
        """Mark canceled. Canceling twice records the history twice."""
        events = await self.events()
        ev = next((e for e in events if e.id == event_id), None)
        if ev is None:
            raise NotFound("수업을 찾을 수 없어!")
        canceled = ev.model_copy(update={"status": EventStatus.CANCELED, "updated_at": now_iso()})
        await self._save_events([canceled if e.id == event_id else e for e in events])
        await self._push_change(ChangeType.CANCELED, ev.member_name, ev.date, ev.time)
        await self._push_notification(
            "수업 취소",
            f"{ev.member_name} 회원님의 {format_korean_date(ev.date)} {ev.time} 수업이 취소되었습니다.",
        )
        return canceled

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------
    async def counts_by_date(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for e in await self.events():
            if e.status != EventStatus.CANCELED:
                counts[e.date] = counts.get(e.date, 0) + 1
        return counts

    async def month_total(self, year: int, month: int) -> int:
        prefix = month_prefix(year, month)
        return sum(
            1 for e in await self.events()
            if e.status != EventStatus.CANCELED and e.date.startswith(prefix)
        )

    async def day_events(self, date: str) -> List[ScheduleEvent]:
        return sorted((e for e in await self.events() if e.date == date), key=lambda e: e.time)

    async def today_events(self, today: Optional[str] = None) -> List[ScheduleEvent]:
        today = today or today_iso()
        return [e for e in await self.day_events(today) if e.status != EventStatus.CANCELED]

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------
    async def unread_count(self) -> int:
        return sum(1 for n in await self.notifications() if not n.read)

    async def mark_read(self, notification_id: str) -> NotificationItem:
        items = await self.notifications()
        target = next((n for n in items if n.id == notification_id), None)
        if target is None:
            raise NotFound("알림을 찾을 수 없어!")
        target.read = True
        await self.store.write(NOTIFICATIONS, items)
        return target

    async def mark_all_read(self) -> int:
        items = await self.notifications()
        changed = 0
        for n in items:
            if not n.read:
                n.read = True
                changed += 1
        await self.store.write(NOTIFICATIONS, items)
        return changed
