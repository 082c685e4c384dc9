"""
services/qbank.py

모든 시험의 문항을 이어 붙인 가상 시험(QBank).
원본 시험 구성의 시그니처(examId, updatedAt, 문항 수)가 바뀔 때만 다시 만든다.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from config import DEFAULT_SECONDS, QBANK_EXAM_ID, QBANK_TITLE
from study_exam_cbt.models.exam_model import Exam
from study_exam_cbt.models.question_model import Question
from study_exam_cbt.services.timing import now_ms

logger = logging.getLogger(__name__)


def is_qbank(exam: Optional[Exam]) -> bool:
    return exam is not None and exam.id == QBANK_EXAM_ID


def _source_exams(exams: Sequence[Exam]) -> List[Exam]:
    return [exam for exam in exams if not is_qbank(exam)]


def qbank_signature_for(exams: Sequence[Exam]) -> str:
    """'<id>:<updatedAt>:<문항 수>' 를 '|' 로 이은 캐시 키."""
    return "|".join(
        f"{exam.id}:{exam.updated_at or 0}:{len(exam.questions)}"
        for exam in _source_exams(exams)
    )


def aggregate_questions(exams: Sequence[Exam]) -> List[Question]:
    """
    문항 이어 붙이기.
    original_index 는 원본 시험이 아니라 QBank 안에서의 위치다 (QBank 직접 응시용 인덱스 공간).
    """
    questions: List[Question] = []
    for exam in _source_exams(exams):
        for question in exam.questions:
            questions.append(question.model_copy(deep=True, update={
                "original_index": len(questions),
                "source_exam_id": exam.id,
                "source_exam_title": exam.exam_title,
            }))
    return questions


def build_qbank(
    exams: Sequence[Exam],
    existing: Optional[Exam] = None,
    now: Optional[int] = None,
) -> Tuple[Exam, bool]:
    """
    QBank 를 반환한다.

    Returns:
        (qbank, rebuilt)
        기존 QBank 의 시그니처가 현재와 같으면 그 객체를 그대로 돌려주고 rebuilt=False.
        다르면 새로 만들되, 기존 응시 결과(results)는 저장 순서대로 이어받는다.
    """
    signature = qbank_signature_for(exams)
    if existing is not None and existing.qbank_signature == signature:
        return existing, False

    qbank = Exam(
        id=QBANK_EXAM_ID,
        exam_title=QBANK_TITLE,
        timer_mode="untimed",
        seconds_per_question=DEFAULT_SECONDS,
        questions=aggregate_questions(exams),
        results=[r.model_copy(deep=True) for r in existing.results] if existing else [],
        updated_at=now_ms() if now is None else now,
        qbank_signature=signature,
    )
    logger.info(
        f"build_qbank: 시험 {len(_source_exams(exams))}개 → 문항 {len(qbank.questions)}개로 재구성"
    )
    return qbank, True
