import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from study_exam_cbt.models.exam_model import Exam
from study_exam_cbt.models.question_model import LectureRef, Option, Question
from study_exam_cbt.services.storage import JsonExamRepository, StorageError


def make_question(qid, answer="a", lectures=None):
    return Question(
        id=qid,
        stem=f"{qid} 발문",
        options=[Option(id=oid, text=oid.upper()) for oid in ("a", "b", "c", "d")],
        answer=answer,
        explanation=f"{qid} 해설",
        lectures=[LectureRef(**ref) for ref in (lectures or [])],
    )


def make_exam(exam_id="exam-1", count=3, timed=False, seconds=60, updated_at=1000, title=None, lectures=None):
    lectures = lectures or {}
    return Exam(
        id=exam_id,
        exam_title=title or f"{exam_id} 모의고사",
        timer_mode="timed" if timed else "untimed",
        seconds_per_question=seconds,
        questions=[make_question(f"q{i}", lectures=lectures.get(i)) for i in range(count)],
        updated_at=updated_at,
    )


class FlakyRepository(JsonExamRepository):
    """쓰기 실패를 흉내 내는 저장소."""

    def __init__(self, data_dir):
        super().__init__(data_dir)
        self.fail_upsert = False
        self.fail_save = False
        self.fail_delete_progress = False

    def upsert_exam(self, exam):
        if self.fail_upsert:
            raise StorageError("disk full")
        super().upsert_exam(exam)

    def save_exam_session_progress(self, snapshot):
        if self.fail_save:
            raise StorageError("disk full")
        super().save_exam_session_progress(snapshot)

    def delete_exam_session_progress(self, exam_id):
        if self.fail_delete_progress:
            raise StorageError("locked")
        super().delete_exam_session_progress(exam_id)


@pytest.fixture
def repository(tmp_path):
    return FlakyRepository(str(tmp_path / "data"))


@pytest.fixture
def exam():
    return make_exam()
