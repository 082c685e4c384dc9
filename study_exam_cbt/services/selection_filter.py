"""
services/selection_filter.py

QBank 출제 조건(강의/블록/주차 태그 + 응답 이력)으로 출제 가능한 문항 인덱스를 계산한다.
QBank 자체는 절대 수정하지 않는다.

Public API:
  - matches_selection(question, selection) -> bool
  - build_answer_history(exams, qbank) -> Dict[str, AnswerHistory]
  - is_eligible(question, selection, history, fallback_exam_id) -> bool
  - eligible_indices(qbank, selection, history) -> List[int]
  - draw_indices(eligible, requested, rng) -> List[int]
"""

import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from config import QBANK_DEFAULT_COUNT
from study_exam_cbt.models.exam_model import Exam, ExamResult
from study_exam_cbt.models.question_model import Question
from study_exam_cbt.models.selection_model import BlockCatalog, QBankSelection


@dataclass
class AnswerHistory:
    answered: bool = False
    correct: bool = False
    incorrect: bool = False
    flagged: bool = False


# ── 태그 매칭 ────────────────────────────────────────────────────────────────

def matches_selection(question: Question, selection: QBankSelection) -> bool:
    """
    태그 조건 판정.

    - 선택 조건이 하나도 없으면 통과.
    - 강의 참조가 없는 문항은 include_untagged 일 때만 통과.
    - 강의 참조 중 하나라도 선택된 강의 / (블록, 주차) / 블록과 맞으면 통과.
    """
    if not selection.has_tag_criteria():
        return True
    if not question.lectures:
        return selection.include_untagged
    for ref in question.lectures:
        block_id = ref.block_id
        if f"{block_id}|{ref.id}" in selection.selected_lectures:
            return True
        if block_id and block_id in selection.selected_blocks:
            return True
        if ref.week is not None and f"{block_id}|{ref.week}" in selection.selected_weeks:
            return True
    return False


# ── 응답 이력 ────────────────────────────────────────────────────────────────

def history_key(question: Optional[Question], fallback_exam_id: str = "") -> str:
    """'<원본 시험 ID>|<문항 ID>'. 어느 하나라도 없으면 빈 문자열."""
    if question is None:
        return ""
    exam_id = question.source_exam_id or fallback_exam_id
    if not exam_id or not question.id:
        return ""
    return f"{exam_id}|{question.id}"


def _ingest_result(
    history: Dict[str, AnswerHistory],
    exam: Exam,
    result: ExamResult,
    resolve_key: Callable[[Question], str],
) -> None:
    questions = exam.questions
    for idx, value in result.answers.items():
        if not (0 <= idx < len(questions)):
            continue
        question = questions[idx]
        key = resolve_key(question)
        if not key:
            continue
        entry = history.setdefault(key, AnswerHistory())
        entry.answered = True
        if value == question.answer:
            entry.correct = True
        else:
            entry.incorrect = True
    for idx in result.flagged:
        if not (0 <= idx < len(questions)):
            continue
        key = resolve_key(questions[idx])
        if not key:
            continue
        history.setdefault(key, AnswerHistory()).flagged = True


def build_answer_history(exams: Sequence[Exam], qbank: Optional[Exam] = None) -> Dict[str, AnswerHistory]:
    """
    문항별 응답 이력.
    각 시험의 결과는 그 시험 기준으로, QBank 결과는 문항의 source_exam_id 기준으로 재생한다.
    """
    history: Dict[str, AnswerHistory] = {}
    for exam in exams:
        if qbank is not None and exam.id == qbank.id:
            continue
        for result in exam.results:
            _ingest_result(history, exam, result, lambda q, eid=exam.id: history_key(q, eid))
    if qbank is not None:
        for result in qbank.results:
            _ingest_result(history, qbank, result, lambda q: history_key(q, q.source_exam_id or qbank.id))
    return history


def matches_answer_filters(
    question: Question,
    selection: QBankSelection,
    history: Optional[Dict[str, AnswerHistory]] = None,
    fallback_exam_id: str = "",
) -> bool:
    """
    응답 이력 조건.

    - include_answered 가 False: 한 번도 응답하지 않은 문항만.
    - include_answered 가 True:  미응답 문항 + 요청한 필터(오답/정답/플래그) 중 하나에 맞는 응답 문항.
      필터를 하나도 고르지 않았다면 응답한 문항은 모두 제외.
    """
    key = history_key(question, fallback_exam_id)
    entry = (history or {}).get(key) if key else None
    answered = bool(entry and entry.answered)
    if not selection.include_answered:
        return not answered
    if not answered:
        return True
    filters = selection.answered_filters
    if not filters.any_selected():
        return False
    return bool(
        (filters.correct and entry.correct)
        or (filters.incorrect and entry.incorrect)
        or (filters.flagged and entry.flagged)
    )


def is_eligible(
    question: Question,
    selection: QBankSelection,
    history: Optional[Dict[str, AnswerHistory]] = None,
    fallback_exam_id: str = "",
) -> bool:
    return (
        matches_selection(question, selection)
        and matches_answer_filters(question, selection, history, fallback_exam_id)
    )


def eligible_indices(
    qbank: Exam,
    selection: QBankSelection,
    history: Optional[Dict[str, AnswerHistory]] = None,
) -> List[int]:
    return [
        idx for idx, question in enumerate(qbank.questions)
        if is_eligible(question, selection, history, qbank.id)
    ]


# ── 추출 ─────────────────────────────────────────────────────────────────────

def shuffle_indices(indices: Sequence[int], rng: Optional[random.Random] = None) -> List[int]:
    """Fisher–Yates 셔플. 입력은 바꾸지 않는다."""
    rng = rng or random.Random()
    items = list(indices)
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]
    return items


def clamp_question_count(requested: Optional[int], available: int) -> int:
    """출제 수를 [1, available] 로 맞춘다. 값이 없으면 기본 출제 수, 출제 가능한 문항이 없으면 0."""
    if available <= 0:
        return 0
    try:
        value = int(requested) if requested else 0
    except (TypeError, ValueError):
        value = 0
    if not value:
        value = QBANK_DEFAULT_COUNT
    return min(max(1, value), available)


def draw_indices(
    eligible: Sequence[int],
    requested: Optional[int],
    rng: Optional[random.Random] = None,
) -> List[int]:
    count = clamp_question_count(requested, len(eligible))
    if not count:
        return []
    return shuffle_indices(eligible, rng)[:count]


# ── 카탈로그 ─────────────────────────────────────────────────────────────────

def prune_selection(selection: QBankSelection, catalog: BlockCatalog) -> QBankSelection:
    """카탈로그에서 사라진 블록/주차/강의 선택을 걸러낸 사본."""
    block_ids = {block.block_id for block in catalog.blocks} | set(catalog.lecture_lists)
    lecture_keys = set()
    week_keys = set()
    for block_id, lectures in catalog.lecture_lists.items():
        for lecture in lectures:
            lecture_keys.add(f"{block_id}|{lecture.id}")
            if lecture.week is not None:
                week_keys.add(f"{block_id}|{lecture.week}")
    for block in catalog.blocks:
        for week in range(1, (block.weeks or 0) + 1):
            week_keys.add(f"{block.block_id}|{week}")
    return selection.model_copy(update={
        "selected_blocks": {b for b in selection.selected_blocks if b in block_ids},
        "selected_weeks": {w for w in selection.selected_weeks if w in week_keys},
        "selected_lectures": {l for l in selection.selected_lectures if l in lecture_keys},
    })
