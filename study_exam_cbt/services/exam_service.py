"""
services/exam_service.py

문항 채점 및 결과 요약 비즈니스 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경 없음.
"""

from typing import Dict, Optional

from config import PASS_SCORE
from study_exam_cbt.models.exam_model import Exam, ExamResult
from study_exam_cbt.models.question_model import Question


def evaluate_question_answer(question: Optional[Question], answer: Optional[str]) -> Dict[str, bool]:
    """
    답 하나를 판정한다.

    Returns:
        {"responded": 응답 여부, "isValid": 보기에 존재하는 답인지, "isCorrect": 정답 여부}
        응답하지 않았으면 세 값 모두 False.
    """
    responded = answer is not None and answer != ""
    if not responded or question is None:
        return {"responded": responded, "isValid": False, "isCorrect": False}
    is_valid = question.has_option(answer)
    return {
        "responded": True,
        "isValid": is_valid,
        "isCorrect": is_valid and answer == question.answer,
    }


def score_percentage(result: Optional[ExamResult]) -> Optional[int]:
    """
    결과의 정답률(0~100, 반올림)을 반환한다.
    결과가 없거나 total 이 0 이하이면 None.
    """
    if result is None or result.total <= 0:
        return None
    return round(result.correct / result.total * 100)


def format_score(result: ExamResult) -> str:
    pct = score_percentage(result) or 0
    return f"{result.correct}/{result.total} • {pct}%"


def is_passed(pct: Optional[float], pass_score: float = PASS_SCORE) -> bool:
    """
    합격 여부를 반환한다.

    Args:
        pct:        score_percentage()가 반환한 점수. None 이면 불합격.
        pass_score: 합격 기준 점수 (기본값 60.0점).
    """
    return pct is not None and pct >= pass_score


def latest_result(exam: Exam) -> Optional[ExamResult]:
    """가장 최근(when 최대) 결과. when 이 같으면 먼저 저장된 결과."""
    latest: Optional[ExamResult] = None
    for res in exam.results:
        if latest is None or res.when > latest.when:
            latest = res
    return latest


def best_result(exam: Exam) -> Optional[ExamResult]:
    """정답률이 가장 높은 결과. 동률이면 먼저 저장된 결과."""
    best: Optional[ExamResult] = None
    best_pct = -1.0
    for res in exam.results:
        pct = res.correct / res.total if res.total else 0.0
        if best is None or pct > best_pct:
            best, best_pct = res, pct
    return best


def format_duration(ms: Optional[int]) -> str:
    """소요 시간 표시. 예: 3725000 → '1h 2m 5s'"""
    if ms is None:
        return "—"
    total_seconds = max(0, round(ms / 1000))
    hours, rem = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)
