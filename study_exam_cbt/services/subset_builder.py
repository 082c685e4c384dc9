"""
services/subset_builder.py

인덱스 집합으로 부분 시험을 만든다 (오답 재응시, 오답 복습, QBank 추출).
각 파생 문항에는 original_index 로 원본 위치를 남겨 나중에 역매핑할 수 있게 한다.

Public API:
  - build_subset(exam, indices, result=None) -> Optional[SubsetPacket]
  - incorrect_question_indices(exam, result) -> List[int]
  - resolve_review_packet(exam, result) -> SubsetPacket
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from study_exam_cbt.models.exam_model import Exam, ExamResult, QuestionStat
from study_exam_cbt.services.answer_analysis import summarize_answer_changes


@dataclass
class SubsetPacket:
    exam: Exam
    result: Optional[ExamResult] = None


def valid_indices(indices: Optional[Iterable], question_count: int) -> List[int]:
    """범위를 벗어난 값, 정수가 아닌 값, 중복은 조용히 버린다. 순서는 유지."""
    if indices is None:
        return []
    seen = set()
    valid: List[int] = []
    for idx in indices:
        if isinstance(idx, bool) or not isinstance(idx, int):
            continue
        if not (0 <= idx < question_count) or idx in seen:
            continue
        seen.add(idx)
        valid.append(idx)
    return valid


def build_subset(
    exam: Optional[Exam],
    indices: Optional[Iterable[int]],
    result: Optional[ExamResult] = None,
) -> Optional[SubsetPacket]:
    """
    부분 시험 생성.

    Args:
        exam:    원본 시험.
        indices: 원본 시험의 문항 위치. 잘못된 값은 버린다.
        result:  함께 재색인할 이전 결과 (선택).

    Returns:
        SubsetPacket. 유효한 인덱스가 하나도 없으면 None (오류 아님, 호출측이 확인).
        result 를 넘기면 answers/flagged/question_stats 를 부분 시험 인덱스로 옮기고
        total/correct/answered/change_summary 를 다시 계산한다.
    """
    if exam is None:
        return None
    valid = valid_indices(indices, len(exam.questions))
    if not valid:
        return None

    base_questions = exam.questions
    next_exam = exam.model_copy(deep=True)
    next_exam.questions = [
        base_questions[idx].model_copy(deep=True, update={"original_index": idx})
        for idx in valid
    ]

    if result is None:
        return SubsetPacket(exam=next_exam)

    answers = {}
    flagged: List[int] = []
    stats = {}
    correct = 0
    flagged_set = set(result.flagged)
    for new_idx, orig_idx in enumerate(valid):
        answer = result.answers.get(orig_idx)
        if answer is not None:
            answers[new_idx] = answer
            if answer == base_questions[orig_idx].answer:
                correct += 1
        if orig_idx in flagged_set:
            flagged.append(new_idx)
        stat = result.question_stats.get(orig_idx)
        stats[new_idx] = stat.model_copy(deep=True) if stat is not None else QuestionStat()

    next_result = result.model_copy(deep=True, update={
        "answers": answers,
        "flagged": flagged,
        "question_stats": stats,
        "total": len(next_exam.questions),
        "correct": correct,
        "answered": len(answers),
        "change_summary": summarize_answer_changes(stats, next_exam, answers),
    })
    return SubsetPacket(exam=next_exam, result=next_result)


def incorrect_question_indices(exam: Optional[Exam], result: Optional[ExamResult]) -> List[int]:
    """
    결과에서 틀렸거나 응답하지 않은 문항의 원본 인덱스.
    부분 결과이면 subset_indices 범위 안에서만 찾는다 (현재 시험 범위를 벗어난 인덱스는 버림).
    """
    if exam is None or result is None:
        return []
    count = len(exam.questions)
    subset = valid_indices(result.subset_indices, count) if result.subset_indices else []
    indices = subset or list(range(count))
    return [
        idx for idx in indices
        if result.answers.get(idx) is None or result.answers.get(idx) != exam.questions[idx].answer
    ]


def resolve_review_packet(exam: Exam, result: ExamResult) -> SubsetPacket:
    """
    복습용 (시험, 결과) 쌍.
    부분 결과는 현재 시험으로 부분 시험을 다시 만들고, 만들 수 없으면 전체를 그대로 쓴다.
    """
    if result.is_partial:
        subset = build_subset(exam, result.subset_indices, result)
        if subset is not None:
            return subset
    return SubsetPacket(exam=exam, result=result)
