# feedback.py
# Photo-upload feedback loop: the member fills photo slots and submits a
# request, the coach reads it and leaves a note. Only filenames are kept,
# never the image bytes.

from __future__ import annotations

import logging
from typing import Dict, Optional

from errors import ValidationFailed
from schemas import CoachFeedback, FeedbackDraft, FeedbackRequest, PhotoSlot
from store import COACH_FEEDBACK, FEEDBACK_DRAFT, FEEDBACK_REQUEST, RecordStore, now_iso

log = logging.getLogger("formpick.feedback")

MIN_PHOTOS = 3

PHOTO_LABEL: Dict[PhotoSlot, str] = {
    PhotoSlot.FRONT: "정면(서서)",
    PhotoSlot.SIDE: "측면(서서)",
    PhotoSlot.BACK: "후면(서서)",
    PhotoSlot.SQUAT: "스쿼트 하강(측면 추천)",
    PhotoSlot.OVERHEAD: "팔 올린 자세(오버헤드)",
}


async def load_draft(store: RecordStore) -> FeedbackDraft:
    return await store.read_as(FEEDBACK_DRAFT, FeedbackDraft, FeedbackDraft())


async def attach_photo(
    store: RecordStore, slot: PhotoSlot, filename: str, content_type: Optional[str]
) -> FeedbackDraft:
    """Put ``filename`` in ``slot``, replacing whatever was there."""
    if not (content_type or "").startswith("image/"):
        raise ValidationFailed("이미지 파일만 올릴 수 있어요.")
    if not filename:
        raise ValidationFailed("파일 이름이 없어요.")
    draft = await load_draft(store)
    replaced = draft.photos.get(slot)
    draft.photos[slot] = filename
    await store.write(FEEDBACK_DRAFT, draft)
    if replaced:
        log.info(f"Photo slot {slot.value}: {replaced} replaced by {filename}")
    return draft


async def detach_photo(store: RecordStore, slot: PhotoSlot) -> FeedbackDraft:
    draft = await load_draft(store)
    draft.photos.pop(slot, None)
    await store.write(FEEDBACK_DRAFT, draft)
    return draft


async def submit_request(store: RecordStore, notes: str = "") -> FeedbackRequest:
    draft = await load_draft(store)
    if len(draft.photos) < MIN_PHOTOS:
        raise ValidationFailed("최소 3장은 업로드해 주세요. (정면/측면/후면 추천)")
    keys = [slot for slot in PhotoSlot if slot in draft.photos]
    req = FeedbackRequest(
        submitted_at=now_iso(),
        notes=notes,
        photo_keys=keys,
        filenames={k: draft.photos[k] for k in keys},
    )
    await store.write(FEEDBACK_REQUEST, req)
    log.info(f"Feedback request submitted with {len(keys)} photos")
    return req


async def load_request(store: RecordStore) -> Optional[FeedbackRequest]:
    return await store.read_as(FEEDBACK_REQUEST, FeedbackRequest, None)


async def save_coach_feedback(store: RecordStore, note: str) -> CoachFeedback:
    fb = CoachFeedback(note=note, updated_at=now_iso())
    await store.write(COACH_FEEDBACK, fb)
    return fb


async def load_coach_feedback(store: RecordStore) -> Optional[CoachFeedback]:
    return await store.read_as(COACH_FEEDBACK, CoachFeedback, None)
