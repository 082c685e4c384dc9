from typing import Dict, List, Optional, Set

from pydantic import Field

from config import QBANK_DEFAULT_COUNT
from study_exam_cbt.models.question_model import CamelModel


class AnsweredFilters(CamelModel):
    incorrect: bool = False
    correct: bool = False
    flagged: bool = False

    def any_selected(self) -> bool:
        return self.incorrect or self.correct or self.flagged


class QBankSelection(CamelModel):
    """
    QBank 출제 조건.

    키 형식:
      - selected_blocks:   "<blockId>"
      - selected_weeks:    "<blockId>|<week>"
      - selected_lectures: "<blockId>|<lectureId>"
    """

    selected_blocks: Set[str] = Field(default_factory=set)
    selected_weeks: Set[str] = Field(default_factory=set)
    selected_lectures: Set[str] = Field(default_factory=set)
    include_untagged: bool = False
    include_answered: bool = False
    answered_filters: AnsweredFilters = Field(default_factory=AnsweredFilters)
    question_count: int = QBANK_DEFAULT_COUNT

    def has_tag_criteria(self) -> bool:
        return bool(self.selected_blocks or self.selected_weeks or self.selected_lectures)


class Lecture(CamelModel):
    id: int
    name: str = ""
    week: Optional[int] = None


class Block(CamelModel):
    block_id: str
    title: str = ""
    weeks: Optional[int] = None


class BlockCatalog(CamelModel):
    """블록/강의 카탈로그. 선택 필터가 쓰는 강의·주차 식별자의 전체 집합."""

    blocks: List[Block] = Field(default_factory=list)
    lecture_lists: Dict[str, List[Lecture]] = Field(default_factory=dict)
