"""
services/answer_analysis.py

답 변경 분석. 최초 응답 → 변경 이력 → 최종 답 순서를 재구성하고
순효과(오→정, 정→오, 중립, 원래 답으로 복귀)를 분류한다.
순수 함수 — 세션/저장소 상태를 바꾸지 않는다.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from study_exam_cbt.models.exam_model import ChangeSummary, Exam, QuestionStat
from study_exam_cbt.models.question_model import Question

RIGHT_TO_WRONG = "right-to-wrong"
WRONG_TO_RIGHT = "wrong-to-right"
NEUTRAL = "neutral"

StatCollection = Union[Mapping, List[Optional[QuestionStat]]]


@dataclass
class AnswerChangeAnalysis:
    initial_answer: Optional[str] = None
    final_answer: Optional[str] = None
    initial_correct: Optional[bool] = None
    final_correct: Optional[bool] = None
    changed: bool = False
    direction: Optional[str] = None
    switched: bool = False
    sequence: List[str] = field(default_factory=list)


def extract_answer_sequence(stat: Optional[QuestionStat], final_answer: Optional[str]) -> List[str]:
    """최초 답 → 각 변경의 to → 최종 답. 연속 중복과 None 은 접는다."""
    sequence: List[str] = []

    def push(value: Optional[str]) -> None:
        if value is None:
            return
        if sequence and sequence[-1] == value:
            return
        sequence.append(value)

    if stat is not None:
        push(stat.initial_answer)
        for change in stat.changes:
            push(change.to_answer)
    push(final_answer)
    return sequence


def analyze_answer_change(
    stat: Optional[QuestionStat],
    question: Optional[Question],
    final_answer: Optional[str],
) -> AnswerChangeAnalysis:
    """
    문항 하나의 답 변경 순효과를 분류한다.

    - switched: 순서 길이 > 1 (바꿨다가 되돌린 경우 포함)
    - changed:  처음과 마지막 답이 모두 있고 서로 다를 때만 True
    - direction: changed 일 때 정답 여부 기준 right-to-wrong / wrong-to-right / neutral
    """
    if question is None:
        return AnswerChangeAnalysis()

    sequence = extract_answer_sequence(stat, final_answer)
    if sequence:
        initial_answer = sequence[0]
        resolved_final = sequence[-1]
    else:
        initial_answer = stat.initial_answer if stat is not None else None
        resolved_final = final_answer

    initial_correct = (initial_answer == question.answer) if initial_answer is not None else None
    final_correct = (resolved_final == question.answer) if resolved_final is not None else None

    switched = len(sequence) > 1
    changed = (
        switched
        and initial_answer is not None
        and resolved_final is not None
        and initial_answer != resolved_final
    )

    direction = None
    if changed:
        if initial_correct is True and final_correct is False:
            direction = RIGHT_TO_WRONG
        elif initial_correct is False and final_correct is True:
            direction = WRONG_TO_RIGHT
        else:
            direction = NEUTRAL

    return AnswerChangeAnalysis(
        initial_answer=initial_answer,
        final_answer=resolved_final,
        initial_correct=initial_correct,
        final_correct=final_correct,
        changed=changed,
        direction=direction,
        switched=switched,
        sequence=sequence,
    )


def count_meaningful_answer_changes(stat: Optional[QuestionStat]) -> int:
    """from 이 있고 to 와 다른 변경만 센다."""
    if stat is None:
        return 0
    return sum(
        1 for change in stat.changes
        if change.from_answer is not None and change.from_answer != change.to_answer
    )


def _iter_stats(stats: Optional[StatCollection]) -> Iterable[Tuple[int, Optional[QuestionStat]]]:
    if stats is None:
        return []
    if isinstance(stats, Mapping):
        return ((int(idx), stat) for idx, stat in stats.items())
    return enumerate(stats)


def summarize_answer_changes(
    stats: Optional[StatCollection],
    exam: Optional[Exam],
    answers: Optional[Dict[int, str]] = None,
) -> ChangeSummary:
    """
    문항별 분류를 시험 단위 집계로 합산한다.

    stats 는 리스트(세션 인덱스) 또는 {인덱스: 통계} 매핑(결과의 원본 인덱스) 모두 받는다.
    returned_to_original = switched - ended_different (음수 불가)
    """
    answers = answers or {}
    questions = exam.questions if exam is not None else []
    right_to_wrong = wrong_to_right = switched = ended_different = 0

    for idx, stat in _iter_stats(stats):
        if not (0 <= idx < len(questions)):
            continue
        details = analyze_answer_change(stat, questions[idx], answers.get(idx))
        if details.switched:
            switched += 1
        if details.changed:
            ended_different += 1
            if details.direction == RIGHT_TO_WRONG:
                right_to_wrong += 1
            elif details.direction == WRONG_TO_RIGHT:
                wrong_to_right += 1

    return ChangeSummary(
        right_to_wrong=right_to_wrong,
        wrong_to_right=wrong_to_right,
        switched=switched,
        ended_different=ended_different,
        returned_to_original=max(0, switched - ended_different),
        total_changes=switched,
    )
