from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    JSON 페이로드(camelCase) ↔ 파이썬 속성(snake_case) 공통 설정.
    저장소에는 항상 model_dump(by_alias=True) 형태로 기록한다.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Option(CamelModel):
    """보기 하나. id는 문항 안에서 고유."""

    id: str = Field(..., description="보기 식별자")
    text: str = Field("", description="보기 내용 (리치 텍스트)")


class LectureRef(CamelModel):
    """문항이 참조하는 강의. (block_id, id) 쌍이 고유 키."""

    block_id: str = Field(..., description="블록 ID")
    id: int = Field(..., description="블록 내 강의 ID")
    name: str = Field("", description="강의명")
    week: Optional[int] = Field(None, description="주차 (없으면 None)")


class Question(CamelModel):
    """
    시험 문항 모델.

    original_index / source_exam_id 는 부분 시험(오답 재응시, QBank 추출)에서
    파생된 문항에만 존재하며, 원본 시험의 위치를 가리킨다.
    """

    id: str = Field(..., description="문항 식별자")
    stem: str = Field("", description="발문")
    options: List[Option] = Field(default_factory=list, description="보기 리스트")
    answer: str = Field("", description="정답 보기 id")
    explanation: str = Field("", description="해설")
    tags: List[str] = Field(default_factory=list)
    lectures: List[LectureRef] = Field(default_factory=list)
    media: str = Field("", description="이미지/오디오/비디오 소스")
    source_exam_id: Optional[str] = Field(None, description="QBank 문항의 원본 시험 ID")
    source_exam_title: Optional[str] = None
    original_index: Optional[int] = Field(None, description="원본 시험에서의 위치 (0-based)")

    def has_option(self, option_id: Optional[str]) -> bool:
        return option_id is not None and any(opt.id == option_id for opt in self.options)
