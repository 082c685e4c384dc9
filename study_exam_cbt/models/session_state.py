"""
models/session_state.py

응시 세션 상태 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음. 렌더링 캐시(타이머 엘리먼트, 마지막 렌더 인덱스 등)는 두지 않는다.
"""

from typing import Dict, List, Literal, Optional

from pydantic import Field

from study_exam_cbt.models.exam_model import Exam, ExamResult, QuestionStat
from study_exam_cbt.models.question_model import CamelModel

SessionMode = Literal["taking", "review", "summary"]


class MediaState(CamelModel):
    """문항을 떠날 때 기록한 미디어 재생 위치."""

    current_time: float = 0.0
    paused: bool = True
    src: str = ""


class ExamSession(CamelModel):
    """
    응시 1회의 메모리 상태.

    Attributes:
        mode:           taking → summary (제출), summary → review, 결과 → review.
        exam:           세션이 다루는 시험 (부분 시험이면 파생 시험).
        idx:            현재 문항 인덱스 (0-based).
        answers:        {문항 인덱스: 보기 id}
        flagged:        {문항 인덱스: 플래그 여부}
        checked:        {문항 인덱스: 즉시 채점 표시 여부} (비시간제 전용)
        started_at:     마지막 틱 시각 (epoch ms). 시계가 멈추면 None.
        elapsed_ms:     누적 경과 시간.
        remaining_ms:   남은 시간. 시간제 시험에서만 값이 있다.
        base_exam:      부분 시험일 때 원본(소유) 시험.
        subset_indices: 부분 시험의 원본 인덱스 목록.
        result:         review 모드에서 보는 결과.
        latest_result:  summary 모드에서 보여줄 방금 확정된 결과.
        from_summary:   summary 에서 review 로 들어왔을 때 돌아갈 결과.
    """

    mode: SessionMode = "taking"
    exam: Exam
    idx: int = Field(default=0, ge=0)
    answers: Dict[int, str] = Field(default_factory=dict)
    flagged: Dict[int, bool] = Field(default_factory=dict)
    checked: Dict[int, bool] = Field(default_factory=dict)
    started_at: Optional[int] = None
    elapsed_ms: int = 0
    remaining_ms: Optional[int] = None
    question_stats: List[QuestionStat] = Field(default_factory=list)
    base_exam: Optional[Exam] = None
    subset_indices: Optional[List[int]] = None
    scroll_positions: Dict[int, float] = Field(default_factory=dict)
    media_state: Dict[int, MediaState] = Field(default_factory=dict)
    result: Optional[ExamResult] = None
    latest_result: Optional[ExamResult] = None
    from_summary: Optional[ExamResult] = None

    @property
    def question_count(self) -> int:
        return len(self.exam.questions)

    @property
    def owning_exam(self) -> Exam:
        return self.base_exam or self.exam


class SessionSnapshot(CamelModel):
    """저장/이어풀기용 직렬화 스냅샷. 진행 중 세션이 영속화되는 유일한 형태."""

    exam_id: str
    exam: Optional[Exam] = None
    idx: int = 0
    answers: Dict[int, str] = Field(default_factory=dict)
    flagged: Dict[int, bool] = Field(default_factory=dict)
    checked: Dict[int, bool] = Field(default_factory=dict)
    remaining_ms: Optional[int] = None
    elapsed_ms: int = 0
    mode: SessionMode = "taking"
    base_exam: Optional[Exam] = None
    subset_indices: Optional[List[int]] = None
    question_stats: List[QuestionStat] = Field(default_factory=list)
    saved_at: Optional[int] = None
