"""
services/timing.py

문항별 소요 시간 계측과 답 변경 기록.
세션이 taking 모드이고 계측 구간이 열려 있을 때만 시간이 누적된다.
"""

import time
from typing import List, Optional

from study_exam_cbt.models.exam_model import AnswerChange, QuestionStat
from study_exam_cbt.models.question_model import Question
from study_exam_cbt.models.session_state import ExamSession


def now_ms() -> int:
    return int(time.time() * 1000)


def _resolve_now(now: Optional[int]) -> int:
    return now_ms() if now is None else int(now)


def ensure_question_stats(session: ExamSession) -> None:
    """
    question_stats 길이를 문항 수에 맞춘다.
    기존 값(누적 시간, 변경 기록, 최초 응답)은 보존하고, 열린 구간은 그대로 둔다.
    """
    count = session.question_count
    stats = session.question_stats
    if len(stats) == count:
        return
    session.question_stats = [
        stats[i].model_copy(deep=True) if i < len(stats) else QuestionStat()
        for i in range(count)
    ]


def begin_question_timing(session: ExamSession, idx: int, now: Optional[int] = None) -> None:
    if session.mode != "taking":
        return
    ensure_question_stats(session)
    if not (0 <= idx < len(session.question_stats)):
        return
    stat = session.question_stats[idx]
    if stat.entered_at is None:
        stat.entered_at = _resolve_now(now)


def finalize_question_timing(session: ExamSession, idx: int, now: Optional[int] = None) -> None:
    if session.mode != "taking":
        return
    ensure_question_stats(session)
    if not (0 <= idx < len(session.question_stats)):
        return
    stat = session.question_stats[idx]
    if stat.entered_at is None:
        return
    delta = max(0, _resolve_now(now) - stat.entered_at)
    stat.time_ms += delta
    stat.entered_at = None


def finalize_active_question_timing(session: ExamSession, now: Optional[int] = None) -> None:
    finalize_question_timing(session, session.idx, now)


def record_answer_change(
    session: ExamSession,
    idx: int,
    question: Question,
    next_answer: Optional[str],
    now: Optional[int] = None,
) -> None:
    """
    답 변경 이벤트를 기록한다.

    - 이전 답과 같으면 아무것도 하지 않는다.
    - 처음으로 답을 고르면 initial_answer 로만 기록하고 변경으로 세지 않는다.
    - 그 외에는 {from, to} 변경 이벤트를 추가한다.
    """
    if session.mode != "taking":
        return
    ensure_question_stats(session)
    if not (0 <= idx < len(session.question_stats)):
        return
    stat = session.question_stats[idx]
    prev = session.answers.get(idx)
    if prev == next_answer:
        return
    at = _resolve_now(now)
    if prev is None:
        if next_answer is not None and stat.initial_answer is None:
            stat.initial_answer = next_answer
            stat.initial_answer_at = at
        return
    stat.changes.append(AnswerChange(
        at=at,
        from_answer=prev,
        to_answer=next_answer,
        from_correct=prev == question.answer,
        to_correct=(next_answer == question.answer) if next_answer is not None else None,
    ))


def snapshot_question_stats(session: ExamSession) -> List[QuestionStat]:
    """열린 구간 정보를 뺀 통계 사본."""
    ensure_question_stats(session)
    return [
        stat.model_copy(deep=True, update={"entered_at": None})
        for stat in session.question_stats
    ]
