# recommend.py
# =============================================================================
# Rule-based exercise recommendations from the self-assessment answers.
# Static rule tables and a fixed catalog; presence/absence only, no scoring.
# =============================================================================

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from schemas import Answers, Exercise, MachineKey, Recommendation
from store import ANSWERS, RecordStore

log = logging.getLogger("formpick.recommend")

MACHINE_LABEL: Dict[MachineKey, str] = {
    MachineKey.LEG_PRESS: "파워 레그프레스",
    MachineKey.LEG_EXTENSION: "레그익스텐션",
    MachineKey.LEG_CURL: "레그컬",
    MachineKey.PEC_DECK: "펙덱플라이",
    MachineKey.SEATED_ROW: "시티드로우",
    MachineKey.LAT_PULLDOWN: "랫풀다운",
    MachineKey.CABLE: "케이블 머신",
    MachineKey.DUMBBELL: "덤벨",
    MachineKey.BARBELL: "바벨",
}

EXERCISES: Tuple[Exercise, ...] = (
    # 하체
    Exercise(id="lp", name="레그프레스 (발 위치/깊이 조절)", machine=MachineKey.LEG_PRESS, tags=["하체", "초보"]),
    Exercise(id="le", name="레그익스텐션 (무릎 각도 주의)", machine=MachineKey.LEG_EXTENSION, tags=["대퇴사두"]),
    Exercise(id="lc", name="레그컬 (햄스트링)", machine=MachineKey.LEG_CURL, tags=["햄스트링"]),
    # 등/견갑
    Exercise(id="sr", name="시티드로우 (견갑 후인 중심)", machine=MachineKey.SEATED_ROW, tags=["등", "견갑"]),
    Exercise(id="lpull", name="랫풀다운 (어깨 통증 시 범위 제한)", machine=MachineKey.LAT_PULLDOWN, tags=["등"]),
    Exercise(id="c_row", name="케이블 로우 (가슴 열고 당기기)", machine=MachineKey.CABLE, tags=["등", "자세"]),
    # 가슴
    Exercise(id="pd", name="펙덱플라이 (어깨 불편 시 가동범위 줄이기)", machine=MachineKey.PEC_DECK, tags=["가슴"]),
    # 프리웨이트/보완
    Exercise(id="db_rdl", name="덤벨 RDL (힙힌지 연습)", machine=MachineKey.DUMBBELL, tags=["둔근", "코어"]),
    Exercise(id="db_split", name="덤벨 스플릿 스쿼트 (균형)", machine=MachineKey.DUMBBELL, tags=["균형"]),
    Exercise(id="bb_box", name="박스 스쿼트(바벨/스미스 대체 가능)", machine=MachineKey.BARBELL, tags=["스쿼트 패턴"]),
    Exercise(id="c_face", name="케이블 페이스풀 (어깨 안정화)", machine=MachineKey.CABLE, tags=["어깨"]),
)

_BY_ID: Dict[str, Exercise] = {e.id: e for e in EXERCISES}


class FlagRule(NamedTuple):
    cautions: Tuple[str, ...] = ()
    focuses: Tuple[str, ...] = ()
    avoid_movements: Tuple[str, ...] = ()
    excludes: Tuple[str, ...] = ()  # exercise ids removed outright; none yet


# Declaration order of the answer flags is the output order.
FLAG_RULES: Tuple[Tuple[str, FlagRule], ...] = (
    ("shoulder_pain_overhead", FlagRule(
        cautions=("랫풀다운/펙덱은 통증 없는 범위까지만(ROM 제한)",),
        focuses=("견갑 안정화(로우/페이스풀 중심)",),
        avoid_movements=("오버헤드 프레스/머리 위로 미는 동작(초기 제외)",),
    )),
    ("squat_back_rounds", FlagRule(
        cautions=("스쿼트 깊이 욕심 금지: 허리 중립 유지가 우선",),
        focuses=("힙힌지(엉덩이 접기) + 둔근/햄스트링 강화",),
    )),
    ("knee_valgus", FlagRule(
        cautions=("무릎이 안쪽으로 모이면 중량 내리고 발-무릎 정렬부터",),
        focuses=("둔근 중둔근/고관절 외회전 컨트롤",),
    )),
    ("hip_asymmetry", FlagRule(
        cautions=("한쪽만 불편하면 좌/우 볼륨을 동일하게, 가동범위부터 맞추기",),
        focuses=("편측 운동(스플릿 스쿼트/런지)로 균형",),
    )),
)

BASE_IDS: Tuple[str, ...] = ("lp", "sr", "lpull")

ADDITIONS: Tuple[Tuple[Callable[[Answers], bool], str], ...] = (
    (lambda a: a.squat_back_rounds, "db_rdl"),
    (lambda a: a.knee_valgus or a.hip_asymmetry, "db_split"),
    (lambda a: a.shoulder_pain_overhead, "c_face"),
    # 어깨 이슈 없으면 펙덱 추가
    (lambda a: not a.shoulder_pain_overhead, "pd"),
)


def recommend(answers: Answers) -> Recommendation:
    rec = Recommendation()
    for flag, rule in FLAG_RULES:
        if not getattr(answers, flag):
            continue
        rec.cautions.extend(rule.cautions)
        rec.focuses.extend(rule.focuses)
        rec.avoid_movements.extend(rule.avoid_movements)
        rec.excludes.extend(e for e in rule.excludes if e not in rec.excludes)

    ids: List[str] = list(BASE_IDS)
    for applies, ex_id in ADDITIONS:
        if applies(answers) and ex_id not in ids:
            ids.append(ex_id)
    rec.recommended_ids = [i for i in ids if i not in rec.excludes]
    return rec


def filter_by_machines(
    ids: Iterable[str], machines: Optional[Iterable[MachineKey]] = None
) -> List[Exercise]:
    """Catalog exercises for ``ids`` whose machine is available. ``None`` means all."""
    selected = set(MACHINE_LABEL) if machines is None else {MachineKey(m) for m in machines}
    picked = [_BY_ID[i] for i in ids if i in _BY_ID]
    return [e for e in picked if e.machine in selected]


# -----------------------------------------------------------------------------
# Persisted answers
# -----------------------------------------------------------------------------
async def save_answers(store: RecordStore, answers: Answers) -> None:
    await store.write(ANSWERS, answers)


async def load_answers(store: RecordStore) -> Optional[Answers]:
    """Stored answers, or None when nothing usable was saved. Missing flags read as False."""
    raw = await store.read(ANSWERS, None)
    if not isinstance(raw, dict):
        return None
    return Answers(**{name: bool(raw.get(name)) for name in Answers.model_fields})
