"""
models/exam_model.py

시험 문서와 응시 결과 모델.
Exam 은 저장소가 소유하며, Finalizer 가 결과를 덧붙인 사본을 upsert 할 때만 바뀐다.
"""

from typing import Dict, List, Literal, Optional

from pydantic import Field

from study_exam_cbt.models.question_model import CamelModel, Question

TimerMode = Literal["timed", "untimed"]


class AnswerChange(CamelModel):
    """답 변경 이벤트 1건. 최초 응답은 변경으로 기록하지 않는다."""

    at: int = Field(..., description="변경 시각 (epoch ms)")
    from_answer: Optional[str] = Field(None, alias="from")
    to_answer: Optional[str] = Field(None, alias="to")
    from_correct: Optional[bool] = None
    to_correct: Optional[bool] = None


class QuestionStat(CamelModel):
    """
    문항별 응시 통계.

    entered_at 은 열린 계측 구간의 시작 시각이다. 구간이 닫히면 None 이고,
    스냅샷/결과에는 항상 None 으로 기록된다.
    """

    time_ms: int = 0
    changes: List[AnswerChange] = Field(default_factory=list)
    initial_answer: Optional[str] = None
    initial_answer_at: Optional[int] = None
    entered_at: Optional[int] = None


class ChangeSummary(CamelModel):
    right_to_wrong: int = 0
    wrong_to_right: int = 0
    switched: int = 0
    ended_different: int = 0
    returned_to_original: int = 0
    total_changes: int = 0


class ExamResult(CamelModel):
    """
    확정된 응시 결과 (불변).

    answers / flagged / question_stats 의 인덱스는 항상 소유 시험의 원본
    인덱스 공간이다. subset_indices 는 소유 시험의 일부만 응시했을 때만 존재한다.
    """

    id: str
    when: int
    correct: int = 0
    total: int = 0
    answers: Dict[int, str] = Field(default_factory=dict)
    flagged: List[int] = Field(default_factory=list)
    duration_ms: int = 0
    answered: int = 0
    question_stats: Dict[int, QuestionStat] = Field(default_factory=dict)
    change_summary: Optional[ChangeSummary] = None
    subset_indices: Optional[List[int]] = None

    @property
    def is_partial(self) -> bool:
        return bool(self.subset_indices)


class Exam(CamelModel):
    id: str
    exam_title: str = "Untitled Exam"
    timer_mode: TimerMode = "untimed"
    seconds_per_question: int = 60
    questions: List[Question] = Field(default_factory=list)
    results: List[ExamResult] = Field(default_factory=list)
    updated_at: Optional[int] = None
    qbank_signature: Optional[str] = None

    @property
    def is_timed(self) -> bool:
        return self.timer_mode == "timed"
