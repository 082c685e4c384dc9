"""
services/session_engine.py

응시 세션 상태 머신.

  taking ──제출/자동 제출──▶ summary ──▶ review
    │                          ▲           │
    └─ 저장 후 종료 (세션 폐기)  └── 돌아가기 ─┘
  (응시 기록) ────────────────────────────▶ review

모든 함수는 ExamSession 을 제자리에서 바꾸거나 새 세션을 만들 뿐, 저장소를 호출하지 않는다.
시간이 필요한 함수는 now(epoch ms)를 받으며, 생략하면 현재 시각을 쓴다.
"""

import logging
from typing import List, Optional

from study_exam_cbt.models.exam_model import Exam, ExamResult, QuestionStat
from study_exam_cbt.models.session_state import ExamSession, MediaState, SessionSnapshot
from study_exam_cbt.services.normalizer import normalize_exam
from study_exam_cbt.services.subset_builder import (
    build_subset, incorrect_question_indices, resolve_review_packet,
)
from study_exam_cbt.services.timing import (
    begin_question_timing, ensure_question_stats, finalize_active_question_timing,
    now_ms, record_answer_change, snapshot_question_stats,
)

logger = logging.getLogger(__name__)


class ExamStateError(ValueError):
    """현재 세션 상태에서 허용되지 않는 조작."""


def _resolve_now(now: Optional[int]) -> int:
    return now_ms() if now is None else int(now)


def total_exam_time_ms(exam: Exam) -> int:
    return exam.seconds_per_question * len(exam.questions) * 1000


def _require_mode(session: ExamSession, mode: str, action: str) -> None:
    if session.mode != mode:
        raise ExamStateError(f"{action}: '{session.mode}' 상태에서는 할 수 없습니다.")


# ══════════════════════════════════════════════════════════════════════════════
# 세션 생성
# ══════════════════════════════════════════════════════════════════════════════

def create_taking_session(
    exam: Exam,
    now: Optional[int] = None,
    base_exam: Optional[Exam] = None,
    subset_indices: Optional[List[int]] = None,
) -> ExamSession:
    """
    새 응시 세션을 만든다.

    문항이 없는 시험은 taking 상태로 들어갈 수 없다 (ExamStateError).
    시간제 시험은 문항 수 × 문항당 시간만큼 remaining_ms 를 채운다.
    """
    if not exam.questions:
        raise ExamStateError("문항이 없는 시험은 시작할 수 없습니다.")
    t = _resolve_now(now)
    snapshot = exam.model_copy(deep=True)
    session = ExamSession(
        mode="taking",
        exam=snapshot,
        started_at=t,
        remaining_ms=total_exam_time_ms(snapshot) if snapshot.is_timed else None,
        question_stats=[QuestionStat() for _ in snapshot.questions],
        base_exam=base_exam.model_copy(deep=True) if base_exam is not None else None,
        subset_indices=list(subset_indices) if subset_indices is not None else None,
    )
    begin_question_timing(session, 0, t)
    logger.info(f"응시 시작: '{snapshot.exam_title}' ({len(snapshot.questions)}문항, {snapshot.timer_mode})")
    return session


def hydrate_saved_session(
    snapshot: SessionSnapshot,
    fallback_exam: Optional[Exam],
    now: Optional[int] = None,
) -> ExamSession:
    """
    저장된 스냅샷으로 응시를 이어간다.
    스냅샷에 시험 사본이 없으면 fallback_exam 을 쓴다. 인덱스는 범위 안으로 보정.
    """
    if snapshot.exam is not None:
        exam, _ = normalize_exam(snapshot.exam)
    elif fallback_exam is not None:
        exam = fallback_exam.model_copy(deep=True)
    else:
        raise ExamStateError(f"이어풀 시험 정보가 없습니다: {snapshot.exam_id}")
    if not exam.questions:
        raise ExamStateError("문항이 없는 시험은 이어풀 수 없습니다.")

    count = len(exam.questions)
    if exam.is_timed:
        remaining = (
            max(0, snapshot.remaining_ms) if snapshot.remaining_ms is not None
            else total_exam_time_ms(exam)
        )
    else:
        remaining = None

    stats = []
    for i in range(count):
        prev = snapshot.question_stats[i] if i < len(snapshot.question_stats) else None
        stats.append(
            prev.model_copy(deep=True, update={"entered_at": None}) if prev is not None else QuestionStat()
        )

    t = _resolve_now(now)
    base_exam = normalize_exam(snapshot.base_exam)[0] if snapshot.base_exam is not None else None
    session = ExamSession(
        mode="taking",
        exam=exam,
        idx=min(max(snapshot.idx, 0), count - 1),
        answers={k: v for k, v in snapshot.answers.items() if 0 <= k < count},
        flagged={k: v for k, v in snapshot.flagged.items() if 0 <= k < count},
        checked={k: v for k, v in snapshot.checked.items() if 0 <= k < count},
        started_at=t,
        elapsed_ms=max(0, snapshot.elapsed_ms),
        remaining_ms=remaining,
        question_stats=stats,
        base_exam=base_exam,
        subset_indices=list(snapshot.subset_indices) if snapshot.subset_indices is not None else None,
    )
    begin_question_timing(session, session.idx, t)
    logger.info(f"응시 재개: '{exam.exam_title}' {session.idx + 1}/{count}번 문항부터")
    return session


# ══════════════════════════════════════════════════════════════════════════════
# 응시 중 조작
# ══════════════════════════════════════════════════════════════════════════════

def store_scroll_position(session: ExamSession, idx: int, value: Optional[float]) -> None:
    session.scroll_positions[idx] = float(value) if value is not None else 0.0


def get_stored_scroll(session: ExamSession, idx: int) -> Optional[float]:
    return session.scroll_positions.get(idx)


def navigate(
    session: ExamSession,
    next_idx: int,
    scroll_offset: Optional[float] = None,
    media: Optional[MediaState] = None,
    now: Optional[int] = None,
) -> float:
    """
    다른 문항으로 이동한다.

    1. 떠나는 문항의 계측 구간을 닫는다 (taking 모드).
    2. 떠나는 문항의 스크롤 위치와 미디어 재생 상태를 인덱스별로 저장한다.
    3. 도착 문항의 계측 구간을 연다 (taking 모드).

    Returns:
        도착 문항에 저장돼 있던 스크롤 위치 (처음 방문이면 0).
    """
    total = session.question_count
    if not total:
        return 0.0
    clamped = min(max(int(next_idx), 0), total - 1)
    if clamped == session.idx:
        return get_stored_scroll(session, clamped) or 0.0

    leaving = session.idx
    if scroll_offset is not None:
        store_scroll_position(session, leaving, scroll_offset)
    if media is not None:
        session.media_state[leaving] = media
    t = _resolve_now(now)
    if session.mode == "taking":
        finalize_active_question_timing(session, t)
    session.idx = clamped
    if session.mode == "taking":
        begin_question_timing(session, clamped, t)

    restored = get_stored_scroll(session, clamped)
    if restored is None:
        store_scroll_position(session, clamped, 0.0)
        return 0.0
    return restored


def answer_question(
    session: ExamSession,
    option_id: str,
    idx: Optional[int] = None,
    now: Optional[int] = None,
) -> None:
    """
    보기를 선택한다 (taking 모드 전용).
    답 변경을 기록하고, 비시간제 시험이면 해당 문항의 즉시 채점 표시를 지운다.
    """
    _require_mode(session, "taking", "answer")
    idx = session.idx if idx is None else idx
    if not (0 <= idx < session.question_count):
        raise ExamStateError(f"문항 인덱스 범위 초과: {idx}")
    question = session.exam.questions[idx]
    if not question.options:
        raise ExamStateError(f"{idx + 1}번 문항에는 보기가 없습니다.")
    if not question.has_option(option_id):
        raise ExamStateError(f"{idx + 1}번 문항에 없는 보기입니다: {option_id}")

    record_answer_change(session, idx, question, option_id, now)
    session.answers[idx] = option_id
    if not session.exam.is_timed:
        session.checked.pop(idx, None)


def toggle_flag(session: ExamSession, idx: Optional[int] = None) -> bool:
    """플래그 토글. 답과 무관하게 세션 동안 유지되고 결과에 실린다."""
    _require_mode(session, "taking", "flag")
    idx = session.idx if idx is None else idx
    if not (0 <= idx < session.question_count):
        raise ExamStateError(f"문항 인덱스 범위 초과: {idx}")
    flagged = not session.flagged.get(idx, False)
    session.flagged[idx] = flagged
    return flagged


def toggle_check(session: ExamSession) -> bool:
    """즉시 채점 표시 토글. 시간제 시험에서는 쓸 수 없다."""
    _require_mode(session, "taking", "check")
    if session.exam.is_timed:
        raise ExamStateError("시간제 시험에서는 정답 확인을 할 수 없습니다.")
    if not session.exam.questions[session.idx].options:
        raise ExamStateError(f"{session.idx + 1}번 문항에는 보기가 없습니다.")
    if session.checked.get(session.idx):
        session.checked.pop(session.idx, None)
        return False
    session.checked[session.idx] = True
    return True


def is_instant_check(session: ExamSession) -> bool:
    return (
        session.mode == "taking"
        and not session.exam.is_timed
        and bool(session.checked.get(session.idx))
    )


def unanswered_question_numbers(session: ExamSession) -> List[int]:
    """미응답 문항 번호 (1-based)."""
    return [
        idx + 1 for idx in range(session.question_count)
        if session.answers.get(idx) is None
    ]


# ══════════════════════════════════════════════════════════════════════════════
# 시계
# ══════════════════════════════════════════════════════════════════════════════

def tick(session: ExamSession, now: Optional[int] = None) -> bool:
    """
    타이머 1틱. 마지막 틱 이후 경과분을 elapsed/remaining 에 접어 넣는다.

    Returns:
        시간제 시험의 남은 시간이 0 이하가 되면 True (자동 제출 대상).
    """
    if session.mode != "taking":
        return False
    t = _resolve_now(now)
    last = session.started_at if session.started_at is not None else t
    delta = max(0, t - last)
    session.started_at = t
    session.elapsed_ms += delta
    if session.exam.is_timed and session.remaining_ms is not None:
        session.remaining_ms = max(0, session.remaining_ms - delta)
        return session.remaining_ms <= 0
    return False


def pause_clock(session: ExamSession, now: Optional[int] = None) -> None:
    """
    시계를 멈춘다. 벽시계를 멈추는 대신 마지막 틱 이후 경과분을 누적값에 접어 넣는다.
    현재 문항의 계측 구간도 닫는다.
    """
    t = _resolve_now(now)
    finalize_active_question_timing(session, t)
    if session.started_at is None:
        return
    delta = max(0, t - session.started_at)
    session.elapsed_ms += delta
    if session.exam.is_timed and session.remaining_ms is not None:
        session.remaining_ms = max(0, session.remaining_ms - delta)
    session.started_at = None


def resume_clock(session: ExamSession, now: Optional[int] = None) -> None:
    if session.mode != "taking":
        return
    t = _resolve_now(now)
    if session.started_at is None:
        session.started_at = t
    begin_question_timing(session, session.idx, t)


def current_elapsed_ms(session: ExamSession, now: Optional[int] = None) -> int:
    if session.started_at is None:
        return session.elapsed_ms
    return session.elapsed_ms + max(0, _resolve_now(now) - session.started_at)


def snapshot_session(session: ExamSession, now: Optional[int] = None) -> SessionSnapshot:
    """저장용 스냅샷. 호출 전에 pause_clock 으로 경과분을 접어 두어야 한다."""
    _require_mode(session, "taking", "snapshot")
    ensure_question_stats(session)
    return SessionSnapshot(
        exam_id=session.exam.id,
        exam=session.exam.model_copy(deep=True),
        idx=session.idx,
        answers=dict(session.answers),
        flagged=dict(session.flagged),
        checked=dict(session.checked),
        remaining_ms=max(0, session.remaining_ms) if session.remaining_ms is not None else None,
        elapsed_ms=session.elapsed_ms,
        mode="taking",
        base_exam=session.base_exam.model_copy(deep=True) if session.base_exam is not None else None,
        subset_indices=list(session.subset_indices) if session.subset_indices is not None else None,
        question_stats=snapshot_question_stats(session),
        saved_at=_resolve_now(now),
    )


# ══════════════════════════════════════════════════════════════════════════════
# summary / review 전이
# ══════════════════════════════════════════════════════════════════════════════

def enter_summary(exam: Exam, result: ExamResult) -> ExamSession:
    return ExamSession(mode="summary", exam=exam, latest_result=result)


def enter_review(
    exam: Exam,
    result: ExamResult,
    from_summary: Optional[ExamResult] = None,
) -> ExamSession:
    """
    저장된 결과를 복습한다.
    부분 결과는 현재 시험으로 부분 시험을 다시 만든다 (범위를 벗어난 인덱스는 버림).
    """
    packet = resolve_review_packet(exam, result)
    is_subset = packet.exam is not exam
    return ExamSession(
        mode="review",
        exam=packet.exam.model_copy(deep=True),
        result=packet.result.model_copy(deep=True) if packet.result is not None else None,
        base_exam=exam.model_copy(deep=True) if is_subset else None,
        from_summary=from_summary.model_copy(deep=True) if from_summary is not None else None,
    )


def back_to_summary(session: ExamSession) -> ExamSession:
    _require_mode(session, "review", "back_to_summary")
    if session.from_summary is None:
        raise ExamStateError("돌아갈 결과 요약이 없습니다.")
    return enter_summary(session.owning_exam, session.from_summary)


def review_attempt(session: ExamSession) -> ExamSession:
    _require_mode(session, "summary", "review")
    return enter_review(session.exam, session.latest_result, from_summary=session.latest_result)


def review_incorrect(session: ExamSession) -> Optional[ExamSession]:
    """오답 복습. 틀린 문항이 없으면 None."""
    _require_mode(session, "summary", "review_incorrect")
    wrong = incorrect_question_indices(session.exam, session.latest_result)
    subset = build_subset(session.exam, wrong, session.latest_result)
    if subset is None:
        return None
    return ExamSession(
        mode="review",
        exam=subset.exam,
        result=subset.result,
        base_exam=session.exam.model_copy(deep=True),
        from_summary=session.latest_result.model_copy(deep=True),
    )


def retake(session: ExamSession, now: Optional[int] = None) -> ExamSession:
    _require_mode(session, "summary", "retake")
    return create_taking_session(session.exam, now)


def retake_incorrect(session: ExamSession, now: Optional[int] = None) -> Optional[ExamSession]:
    """오답만 다시 응시. 틀린 문항이 없으면 None."""
    _require_mode(session, "summary", "retake_incorrect")
    wrong = incorrect_question_indices(session.exam, session.latest_result)
    subset = build_subset(session.exam, wrong)
    if subset is None:
        return None
    return create_taking_session(subset.exam, now, base_exam=session.exam, subset_indices=wrong)
