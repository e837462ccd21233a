# members.py
# =============================================================================
# Member roster (v2 schema): remaining PT sessions, expiry and pass history.
# The session count only moves through operations that record a history item.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from errors import NotFound, ValidationFailed
from schemas import Member, MemberV2, PassHistoryItem, PassHistoryType
from store import MEMBERS_V1, MEMBERS_V2, RecordStore, now_iso

log = logging.getLogger("formpick.members")

SEED_MEMBERS: List[Member] = [
    Member(id="m_001", name="김OO", phone="010-0000-0000"),
    Member(id="m_002", name="이OO", phone="010-0000-0000"),
    Member(id="m_003", name="박OO", phone="010-0000-0000"),
]


def uid(prefix: str = "id") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# -----------------------------------------------------------------------------
# v1 -> v2 migration
# -----------------------------------------------------------------------------
async def migrate_members_to_v2(store: RecordStore) -> List[MemberV2]:
    """Seed the v2 roster from v1 records (or the seed members) once.

    Skips when the v2 collection already holds members, so running it on
    every startup is safe.
    """
    current = await store.read_list(MEMBERS_V2, MemberV2)
    if current:
        return current

    v1 = await store.read_list(MEMBERS_V1, Member)
    source = v1 or SEED_MEMBERS
    now = now_iso()
    seeded = [
        MemberV2(id=m.id, name=m.name, phone=m.phone, created_at=now, updated_at=now)
        for m in source
    ]
    await store.write(MEMBERS_V2, seeded)
    log.info(f"Migrated {len(seeded)} members to v2 ({'v1 records' if v1 else 'seed'})")
    return seeded


class Roster:
    def __init__(self, store: RecordStore):
        self.store = store

    async def _load(self) -> List[MemberV2]:
        return await self.store.read_list(MEMBERS_V2, MemberV2)

    async def _save(self, members: List[MemberV2]) -> None:
        await self.store.write(MEMBERS_V2, members)

    async def list(self, query: str = "") -> List[MemberV2]:
        members = await self._load()
        q = query.strip().lower()
        if not q:
            return members
        return [m for m in members if q in m.name.lower() or q in (m.phone or "")]

    async def get(self, member_id: str) -> Optional[MemberV2]:
        if not member_id:
            return None
        return next((m for m in await self._load() if m.id == member_id), None)

    async def require(self, member_id: str) -> MemberV2:
        m = await self.get(member_id)
        if m is None:
            raise NotFound("회원을 찾을 수 없어!")
        return m

    async def add(self, name: str, phone: Optional[str] = "") -> MemberV2:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("회원 이름을 입력해줘!")
        now = now_iso()
        member = MemberV2(id=uid("m"), name=name, phone=(phone or "").strip(),
                          created_at=now, updated_at=now)
        await self._save([member] + await self._load())
        return member

    async def remove(self, member_id: str) -> MemberV2:
        """Drop the member. Their events and logs stay in the store."""
        members = await self._load()
        target = next((m for m in members if m.id == member_id), None)
        if target is None:
            raise NotFound("회원을 찾을 수 없어!")
        await self._save([m for m in members if m.id != member_id])
        log.info(f"Removed member {member_id}; dependent records are kept")
        return target

    # -------------------------------------------------------------------------
    # Pass history
    # -------------------------------------------------------------------------
    async def _apply(
        self,
        member_id: str,
        *,
        kind: PassHistoryType,
        amount: int,
        memo: str,
        ref: Optional[str] = None,
        expiry_date: Optional[str] = None,
    ) -> MemberV2:
        members = await self._load()
        idx = next((i for i, m in enumerate(members) if m.id == member_id), None)
        if idx is None:
            raise NotFound("회원을 찾을 수 없어!")
        m = members[idx]
        now = now_iso()
        item = PassHistoryItem(id=uid("his"), created_at=now, type=kind,
                               amount=amount, memo=memo, ref=ref)
        updated = m.model_copy(update={
            "remaining_sessions": m.remaining_sessions + amount,
            "expiry_date": m.expiry_date if expiry_date is None else expiry_date,
            "history": [item] + m.history,
            "updated_at": now,
        })
        members[idx] = updated
        await self._save(members)
        return updated

    async def register_purchase(self, member_id: str, count: int, memo: str = "") -> MemberV2:
        cnt = int(count or 0)
        if cnt <= 0:
            raise ValidationFailed("구매 횟수는 1회 이상이어야 해!")
        return await self._apply(member_id, kind=PassHistoryType.PURCHASE, amount=cnt,
                                 memo=memo or f"PT {cnt}회 구매")

    async def deduct(self, member_id: str, amount: int = 1, ref: Optional[str] = None,
                     memo: str = "") -> MemberV2:
        m = await self.require(member_id)
        if amount <= 0:
            raise ValidationFailed("차감 횟수는 1회 이상이어야 해!")
        if m.remaining_sessions < amount:
            raise ValidationFailed("남은 PT 횟수가 부족해!")
        return await self._apply(member_id, kind=PassHistoryType.DEDUCTION, amount=-amount,
                                 memo=memo or f"PT {amount}회 차감", ref=ref)

    async def refund(self, member_id: str, amount: int, memo: str = "") -> MemberV2:
        m = await self.require(member_id)
        if amount <= 0:
            raise ValidationFailed("환불 횟수는 1회 이상이어야 해!")
        if m.remaining_sessions < amount:
            raise ValidationFailed("남은 PT 횟수보다 많이 환불할 수 없어!")
        return await self._apply(member_id, kind=PassHistoryType.REFUND, amount=-amount,
                                 memo=memo or f"PT {amount}회 환불")

    async def manual_edit(self, member_id: str, remaining: int, expiry_date: str) -> MemberV2:
        """Overwrite count and expiry; a history item is added only if either changed."""
        m = await self.require(member_id)
        if remaining < 0:
            raise ValidationFailed("남은 횟수는 0 이상이어야 해!")
        diff = remaining - m.remaining_sessions
        if diff == 0 and expiry_date == m.expiry_date:
            return m
        memo = f"관리자 수동 수정 (만료일: {m.expiry_date or '없음'} → {expiry_date or '없음'})"
        return await self._apply(member_id, kind=PassHistoryType.MANUAL_EDIT, amount=diff,
                                 memo=memo, expiry_date=expiry_date)
