"""
services/finalizer.py

진행 중 세션을 불변 결과(ExamResult)로 확정한다.

- 세션 인덱스를 소유 시험의 원본 인덱스로 되돌린다 (original_index, 없으면 세션 인덱스).
- 소유 시험보다 작은 부분 응시이면 subset_indices 를 남겨 나중에 복습/오답 재응시를 다시 만들 수 있게 한다.
- 결과를 덧붙인 시험을 저장하고, 저장된 진행 스냅샷은 지운다 (확정과 이어풀기는 배타적).
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from study_exam_cbt.models.exam_model import Exam, ExamResult, QuestionStat
from study_exam_cbt.models.session_state import ExamSession
from study_exam_cbt.services.answer_analysis import summarize_answer_changes
from study_exam_cbt.services.normalizer import new_id
from study_exam_cbt.services.session_engine import (
    ExamStateError, pause_clock, unanswered_question_numbers,
)
from study_exam_cbt.services.storage import JsonExamRepository, StorageError
from study_exam_cbt.services.timing import now_ms, snapshot_question_stats

logger = logging.getLogger(__name__)

ConfirmUnanswered = Callable[[List[int]], bool]


def _original_index(session: ExamSession, idx: int) -> int:
    original = session.exam.questions[idx].original_index
    return original if original is not None else idx


def build_result(session: ExamSession, now: Optional[int] = None) -> Tuple[ExamResult, Exam]:
    """
    세션을 채점하여 (결과, 결과가 덧붙은 소유 시험) 을 반환한다. 저장소는 건드리지 않는다.
    호출 전에 pause_clock 으로 경과 시간을 접어 두어야 한다.
    """
    t = now_ms() if now is None else now
    answers: Dict[int, str] = {}
    correct = 0
    for idx, question in enumerate(session.exam.questions):
        answer = session.answers.get(idx)
        if answer is None:
            continue
        answers[_original_index(session, idx)] = answer
        if answer == question.answer:
            correct += 1

    flagged = [
        _original_index(session, idx)
        for idx, value in sorted(session.flagged.items())
        if value and 0 <= idx < session.question_count
    ]

    stats: Dict[int, QuestionStat] = {
        _original_index(session, idx): stat
        for idx, stat in enumerate(snapshot_question_stats(session))
    }

    owning_exam = session.owning_exam
    result = ExamResult(
        id=new_id(),
        when=t,
        correct=correct,
        total=session.question_count,
        answers=answers,
        flagged=flagged,
        duration_ms=session.elapsed_ms,
        answered=len(answers),
        question_stats=stats,
        change_summary=summarize_answer_changes(stats, owning_exam, answers),
    )

    if session.base_exam is not None:
        subset_indices = [_original_index(session, idx) for idx in range(session.question_count)]
        if subset_indices and len(subset_indices) < len(session.base_exam.questions):
            result.subset_indices = subset_indices

    updated_exam = owning_exam.model_copy(deep=True)
    updated_exam.results = [*updated_exam.results, result]
    updated_exam.updated_at = t
    return result, updated_exam


def finalize(
    session: ExamSession,
    repository: JsonExamRepository,
    auto_submit: bool = False,
    confirm: Optional[ConfirmUnanswered] = None,
    now: Optional[int] = None,
) -> Optional[ExamResult]:
    """
    응시를 확정한다.

    Args:
        session:     taking 상태의 세션. 성공하면 제자리에서 summary 로 전이한다.
        repository:  시험/스냅샷 저장소.
        auto_submit: 시간 종료 자동 제출. 미응답 확인을 건너뛴다.
        confirm:     수동 제출 시 미응답 번호 목록을 받아 제출 여부를 돌려주는 콜백.
                     미응답이 있는데 콜백이 없거나 False 를 돌려주면 확정하지 않는다.

    Returns:
        확정된 ExamResult. 사용자가 제출을 취소하면 None (세션은 그대로).

    Raises:
        ExamStateError: taking 상태가 아닐 때.
        StorageError:   시험 저장 실패. 세션은 taking 상태로 남는다.
    """
    if session.mode != "taking":
        raise ExamStateError(f"finalize: '{session.mode}' 상태에서는 제출할 수 없습니다.")

    unanswered = unanswered_question_numbers(session)
    if not auto_submit and unanswered:
        if confirm is None or not confirm(unanswered):
            logger.info(f"제출 보류: 미응답 {len(unanswered)}문항 ({unanswered})")
            return None

    t = now_ms() if now is None else now
    pause_clock(session, t)
    result, updated_exam = build_result(session, t)

    try:
        repository.upsert_exam(updated_exam)
    except StorageError as e:
        logger.error(f"결과 저장 실패 ({updated_exam.id}): {e}")
        raise

    try:
        repository.delete_exam_session_progress(updated_exam.id)
    except StorageError as e:
        logger.warning(f"진행 스냅샷 삭제 실패 ({updated_exam.id}): {e}")

    logger.info(
        f"응시 확정{' (자동 제출)' if auto_submit else ''}: '{updated_exam.exam_title}' "
        f"{result.correct}/{result.total}, 응답 {result.answered}"
    )

    # 제자리에서 summary 로 전이
    session.mode = "summary"
    session.exam = updated_exam
    session.latest_result = result
    session.idx = 0
    session.answers = {}
    session.flagged = {}
    session.checked = {}
    session.question_stats = []
    session.started_at = None
    session.remaining_ms = None
    session.base_exam = None
    session.subset_indices = None
    session.scroll_positions = {}
    session.media_state = {}
    return result
