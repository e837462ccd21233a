"""
Test suite for the Formpick Studio API.
Uses a throwaway SQLite file via aiosqlite.
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override env BEFORE importing app so it uses a temp SQLite file
import os
import tempfile
os.environ["FORMPICK_DB"] = os.path.join(tempfile.mkdtemp(), "formpick_test.db")
os.environ.pop("FORMPICK_AUDIT_FIELD_EDITS", None)

from app import app, engine, Base, store  # noqa: E402
from members import migrate_members_to_v2  # noqa: E402

transport = ASGITransport(app=app)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create a fresh database with the seed roster for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await migrate_members_to_v2(store)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ─── Sample data ─────────────────────────────────────────────────────────────

VALID_EVENT = {
    "member_id": "m_001",
    "date": "2024-06-01",
    "time": "10:00",
    "duration_min": 50,
    "status": "신청",
    "note": "",
}

LOG_URL = "/logs/m_001/2024-06-01"


# ─── Health & Root ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_root(client):
    r = await client.get("/")
    assert r.status_code == 200
    assert "Formpick" in r.json()["message"]


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["db_connected"] is True
    assert data["db_path"].endswith("formpick_test.db")


# ─── Members ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_seed_members(client):
    r = await client.get("/members")
    assert r.status_code == 200
    assert [m["name"] for m in r.json()] == ["김OO", "이OO", "박OO"]


@pytest.mark.asyncio
async def test_add_member_and_search(client):
    r = await client.post("/members", json={"name": "정OO", "phone": "010-1234-5678"})
    assert r.status_code == 200
    new_id = r.json()["id"]

    r = await client.get("/members", params={"q": "1234"})
    assert [m["id"] for m in r.json()] == [new_id]


@pytest.mark.asyncio
async def test_add_member_blank_name(client):
    r = await client.post("/members", json={"name": "  "})
    assert r.status_code == 400
    assert r.json()["detail"] == "회원 이름을 입력해줘!"


@pytest.mark.asyncio
async def test_member_not_found(client):
    r = await client.get("/members/ghost")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_pass_lifecycle(client):
    r = await client.post("/members/m_001/purchase", json={"count": 10})
    assert r.status_code == 200
    assert r.json()["remaining_sessions"] == 10

    r = await client.post("/members/m_001/deduct")
    assert r.json()["remaining_sessions"] == 9

    r = await client.post("/members/m_001/refund", json={"amount": 4, "memo": "환불"})
    assert r.json()["remaining_sessions"] == 5

    r = await client.put("/members/m_001/pass", json={"remaining_sessions": 7, "expiry_date": "2024-12-31"})
    data = r.json()
    assert data["remaining_sessions"] == 7
    assert data["expiry_date"] == "2024-12-31"
    assert [h["type"] for h in data["history"]] == ["수정", "환불", "차감", "구매"]
    assert sum(h["amount"] for h in data["history"]) == 7


@pytest.mark.asyncio
async def test_deduct_below_zero_rejected(client):
    r = await client.post("/members/m_002/deduct", json={"amount": 1})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_manual_edit_invalid_expiry(client):
    r = await client.put("/members/m_001/pass", json={"remaining_sessions": 1, "expiry_date": "2024-13-01"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_remove_member(client):
    r = await client.delete("/members/m_003")
    assert r.status_code == 200
    r = await client.get("/members/m_003")
    assert r.status_code == 404


# ─── Machines ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_machines(client):
    r = await client.get("/machines")
    assert "레그프레스" in r.json()

    r = await client.post("/machines", json={"name": "스미스머신"})
    assert r.json()[0] == "스미스머신"

    r = await client.post("/machines", json={"name": "스미스머신"})
    assert r.status_code == 400

    r = await client.delete("/machines/스미스머신")
    assert "스미스머신" not in r.json()


# ─── Schedule ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_event_and_duplicate(client):
    r = await client.post("/schedule/events", json=VALID_EVENT)
    assert r.status_code == 200
    assert r.json()["member_name"] == "김OO"

    r = await client.post("/schedule/events", json=VALID_EVENT)
    assert r.status_code == 409
    assert r.json()["detail"] == "같은 시간에 이미 예약이 있어!"

    r = await client.get("/changes")
    assert len(r.json()) == 1
    r = await client.get("/notifications")
    assert len(r.json()) == 1


@pytest.mark.asyncio
async def test_create_event_validation(client):
    r = await client.post("/schedule/events", json={**VALID_EVENT, "date": "2024/06/01"})
    assert r.status_code == 422
    r = await client.post("/schedule/events", json={**VALID_EVENT, "time": "25:00"})
    assert r.status_code == 422
    r = await client.post("/schedule/events", json={**VALID_EVENT, "time": ""})
    assert r.status_code == 400
    r = await client.post("/schedule/events", json={**VALID_EVENT, "member_id": ""})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_edit_and_cancel_event(client):
    ev = (await client.post("/schedule/events", json=VALID_EVENT)).json()

    r = await client.put(f"/schedule/events/{ev['id']}", json={**VALID_EVENT, "time": "11:00"})
    assert r.status_code == 200
    assert r.json()["time"] == "11:00"

    r = await client.post(f"/schedule/events/{ev['id']}/cancel")
    assert r.json()["status"] == "취소"

    types = [c["type"] for c in (await client.get("/changes")).json()]
    assert types == ["취소", "변경", "신청"]


@pytest.mark.asyncio
async def test_edit_unknown_event(client):
    r = await client.put("/schedule/events/ev_missing", json=VALID_EVENT)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_day_listing_and_counts(client):
    await client.post("/schedule/events", json={**VALID_EVENT, "time": "15:00"})
    await client.post("/schedule/events", json={**VALID_EVENT, "member_id": "m_002", "time": "09:00"})
    await client.post("/schedule/events", json={**VALID_EVENT, "date": "2024-06-20"})

    r = await client.get("/schedule/events", params={"date": "2024-06-01"})
    assert [e["time"] for e in r.json()] == ["09:00", "15:00"]

    r = await client.get("/schedule/counts", params={"year": 2024, "month": 6})
    data = r.json()
    assert data["counts"] == {"2024-06-01": 2, "2024-06-20": 1}
    assert data["month_total"] == 3


@pytest.mark.asyncio
async def test_calendar(client):
    await client.post("/schedule/events", json=VALID_EVENT)
    r = await client.get("/schedule/calendar", params={"year": 2024, "month": 6})
    data = r.json()
    assert len(data["cells"]) == 42
    assert data["cells"][6] == {"date": "2024-06-01", "day": 1, "count": 1}
    assert data["month_total"] == 1

    r = await client.get("/schedule/calendar", params={"year": 2024, "month": 7, "offset": -1})
    assert r.json()["month"] == 6
    assert r.json()["month_total"] == 1


@pytest.mark.asyncio
async def test_calendar_out_of_range(client):
    r = await client.get("/schedule/calendar", params={"year": 9999, "month": 12, "offset": 1})
    assert r.status_code == 400
    r = await client.get("/schedule/calendar", params={"year": 1, "month": 1, "offset": -1})
    assert r.status_code == 400
    r = await client.get("/schedule/calendar", params={"year": 10000, "month": 1})
    assert r.status_code == 422
    r = await client.get("/schedule/counts", params={"year": 10000, "month": 1})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_notifications_read(client):
    await client.post("/schedule/events", json=VALID_EVENT)
    await client.post("/schedule/events", json={**VALID_EVENT, "time": "11:00"})
    items = (await client.get("/notifications")).json()

    r = await client.post(f"/notifications/{items[0]['id']}/read")
    assert r.json()["read"] is True

    r = await client.get("/notifications", params={"unread_only": True})
    assert len(r.json()) == 1

    await client.post("/notifications/read_all")
    r = await client.get("/notifications", params={"unread_only": True})
    assert r.json() == []


# ─── Workout logs ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_open_empty_log(client):
    r = await client.get(LOG_URL)
    assert r.status_code == 200
    data = r.json()
    assert data["log"]["member_name"] == "김OO"
    assert data["log"]["exercises"] == []
    assert data["metrics"]["total_volume"] == 0

    r = await client.get("/logs/recent")
    assert r.json() == []


@pytest.mark.asyncio
async def test_log_bad_date(client):
    r = await client.get("/logs/m_001/2024-6-1")
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_log_editing_flow(client):
    ex = (await client.post(f"{LOG_URL}/exercises", json={"name": "레그프레스"})).json()
    assert len(ex["sets"]) == 3

    s1, s2, s3 = [s["id"] for s in ex["sets"]]
    await client.patch(f"{LOG_URL}/exercises/{ex['id']}/sets/{s1}", json={"weight": 40, "reps": 10})
    await client.patch(f"{LOG_URL}/exercises/{ex['id']}/sets/{s2}", json={"weight": 50, "reps": 8})
    r = await client.delete(f"{LOG_URL}/exercises/{ex['id']}/sets/{s3}")
    metrics = r.json()["metrics"]
    assert metrics["total_volume"] == 800
    assert metrics["max_weight"] == 50
    assert metrics["exercise_volumes"][ex["id"]] == 800

    r = await client.get(LOG_URL)
    assert len(r.json()["log"]["exercises"][0]["sets"]) == 2

    recent = (await client.get("/logs/recent")).json()
    assert recent[0]["id"] == "m_001::2024-06-01"


@pytest.mark.asyncio
async def test_negative_weight_rejected(client):
    ex = (await client.post(f"{LOG_URL}/exercises")).json()
    r = await client.patch(f"{LOG_URL}/exercises/{ex['id']}/sets/{ex['sets'][0]['id']}", json={"weight": -5})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_absent_locks_log(client):
    ex = (await client.post(f"{LOG_URL}/exercises")).json()
    r = await client.patch(LOG_URL, json={"attendance": "결석"})
    assert r.json()["log"]["attendance"] == "결석"

    r = await client.post(f"{LOG_URL}/exercises")
    assert r.status_code == 409
    assert r.json()["detail"] == "결석이면 운동 기록을 막아둘게!"
    r = await client.post(f"{LOG_URL}/exercises/{ex['id']}/sets")
    assert r.status_code == 409

    r = await client.get(LOG_URL)
    exercises = r.json()["log"]["exercises"]
    assert len(exercises) == 1
    assert len(exercises[0]["sets"]) == 3


@pytest.mark.asyncio
async def test_summary(client):
    ex = (await client.post(f"{LOG_URL}/exercises", json={"machine": "레그프레스", "name": "레그프레스"})).json()
    await client.patch(f"{LOG_URL}/exercises/{ex['id']}/sets/{ex['sets'][0]['id']}", json={"weight": 40, "reps": 10})
    await client.patch(LOG_URL, json={"focus": "하체", "coach_note": "굿"})

    r = await client.get(f"{LOG_URL}/summary")
    text = r.json()["text"]
    assert "2024년 6월 1일" in text
    assert "- 3세트: 0kg x 0회" in text

    r = await client.get(f"{LOG_URL}/summary", params={"skip_empty_sets": True})
    text = r.json()["text"]
    assert "2세트" not in text
    assert "- 총 볼륨(kg·reps): 400" in text


@pytest.mark.asyncio
async def test_log_writes_need_roster_member(client):
    r = await client.post("/logs/ghost/2024-06-01/exercises")
    assert r.status_code == 404
    r = await client.patch("/logs/ghost/2024-06-01", json={"focus": "하체"})
    assert r.status_code == 404
    assert (await client.get("/logs/recent")).json() == []


@pytest.mark.asyncio
async def test_clear_log(client):
    await client.post(f"{LOG_URL}/exercises")
    r = await client.delete(LOG_URL)
    assert r.json()["log"]["exercises"] == []
    r = await client.get(LOG_URL)
    assert r.json()["log"]["exercises"] == []


# ─── Assessment / Recommendations ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_exercise_catalog(client):
    r = await client.get("/exercises")
    assert len(r.json()) == 11


@pytest.mark.asyncio
async def test_recommend_without_assessment(client):
    r = await client.post("/recommendations")
    assert r.status_code == 404
    r = await client.get("/assessment")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_recommend_from_saved_answers(client):
    answers = {
        "shoulder_pain_overhead": True,
        "squat_back_rounds": False,
        "knee_valgus": False,
        "hip_asymmetry": False,
    }
    r = await client.put("/assessment", json=answers)
    assert r.status_code == 200

    r = await client.post("/recommendations")
    data = r.json()
    assert data["recommendation"]["recommended_ids"] == ["lp", "sr", "lpull", "c_face"]
    assert data["recommendation"]["excludes"] == []
    assert [e["id"] for e in data["exercises"]] == ["lp", "sr", "lpull", "c_face"]


@pytest.mark.asyncio
async def test_recommend_with_machine_filter(client):
    r = await client.post("/recommendations", json={"answers": {}, "machines": ["legPress", "pecDeck"]})
    data = r.json()
    assert data["recommendation"]["recommended_ids"] == ["lp", "sr", "lpull", "pd"]
    assert [e["id"] for e in data["exercises"]] == ["lp", "pd"]


# ─── Photo feedback / Coach ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_photo_feedback_flow(client):
    for slot in ("back", "front"):
        r = await client.put(f"/feedback/photos/{slot}", files={"file": (f"{slot}.jpg", b"x", "image/jpeg")})
        assert r.status_code == 200

    r = await client.post("/feedback/requests", json={"notes": "허리"})
    assert r.status_code == 400

    await client.put("/feedback/photos/side", files={"file": ("side.png", b"x", "image/png")})
    r = await client.post("/feedback/requests", json={"notes": "허리"})
    assert r.status_code == 200
    assert r.json()["photo_keys"] == ["front", "side", "back"]

    r = await client.get("/feedback/requests/latest")
    assert r.json()["filenames"]["side"] == "side.png"


@pytest.mark.asyncio
async def test_photo_slots(client):
    r = await client.get("/feedback/slots")
    assert list(r.json()) == ["front", "side", "back", "squat", "overhead"]


@pytest.mark.asyncio
async def test_photo_upload_rejects_non_image(client):
    r = await client.put("/feedback/photos/front", files={"file": ("a.txt", b"x", "text/plain")})
    assert r.status_code == 400
    r = await client.put("/feedback/photos/elbow", files={"file": ("a.jpg", b"x", "image/jpeg")})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_coach_feedback(client):
    r = await client.get("/coach/feedback")
    assert r.status_code == 404
    await client.put("/coach/feedback", json={"note": "밴드 워밍업 추가"})
    r = await client.get("/coach/feedback")
    assert r.json()["note"] == "밴드 워밍업 추가"


# ─── Dashboard ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dashboard(client):
    await client.post("/schedule/events", json=VALID_EVENT)
    cancelled = (await client.post("/schedule/events", json={**VALID_EVENT, "time": "12:00"})).json()
    await client.post(f"/schedule/events/{cancelled['id']}/cancel")
    await client.post(f"{LOG_URL}/exercises")

    r = await client.get("/dashboard", params={"today": "2024-06-01"})
    data = r.json()
    assert data["today_count"] == 1
    assert data["month_total"] == 1
    assert data["unread_count"] == 3
    assert data["change_count"] == 3
    assert [e["time"] for e in data["today_events"]] == ["10:00"]
    assert data["recent_logs"][0]["member_id"] == "m_001"
    assert len(data["change_lines"]) == 3
    assert data["change_lines"][0].startswith("김OO · 2024년 6월 1일 12:00 · 취소 · ")
    assert data["change_lines"][2].startswith("김OO · 2024년 6월 1일 10:00 · 신규 신청 · ")
    assert data["log_lines"][0].startswith("김OO · 2024년 6월 1일 · 마지막 수정: ")
