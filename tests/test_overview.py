import random

from config import QBANK_EXAM_ID, QBANK_SESSION_TITLE
from conftest import make_exam
from study_exam_cbt.models.exam_model import Exam
from study_exam_cbt.models.selection_model import Block, BlockCatalog, QBankSelection
from study_exam_cbt.services.finalizer import finalize
from study_exam_cbt.services import session_engine as engine
from study_exam_cbt.services.overview import (
    delete_exam_with_progress, load_exam_overview, qbank_eligible_indices, start_qbank_session,
)


def _seed(repository):
    repository.upsert_exam(make_exam("old", count=2, updated_at=100))
    repository.upsert_exam(make_exam("new", count=3, updated_at=500))


def test_overview_sorts_newest_first_and_builds_qbank(repository):
    _seed(repository)
    overview = load_exam_overview(repository, now=1_000)

    assert [e.id for e in overview.exams] == ["new", "old"]
    assert overview.qbank.id == QBANK_EXAM_ID
    assert len(overview.qbank.questions) == 5
    assert repository.get_exam(QBANK_EXAM_ID)["qbankSignature"] == "new:500:3|old:100:2"


def test_overview_persists_repaired_exams(repository):
    repository.upsert_exam({
        "id": "broken",
        "examTitle": "Broken",
        "questions": [{"id": "q", "options": [{"id": "x"}], "answer": "zzz"}],
    })

    overview = load_exam_overview(repository, now=1)

    assert overview.find_exam("broken").questions[0].answer == "x"
    assert repository.get_exam("broken")["questions"][0]["answer"] == "x"


def test_overview_removes_orphaned_snapshots(repository):
    _seed(repository)
    repository.save_exam_session_progress({"examId": "new", "idx": 1})
    repository.save_exam_session_progress({"examId": "ghost", "idx": 0})

    overview = load_exam_overview(repository, now=1)

    assert set(overview.saved_sessions) == {"new"}
    assert repository.load_exam_session("ghost") is None


def test_qbank_snapshot_survives_until_qbank_is_rebuilt(repository):
    _seed(repository)
    load_exam_overview(repository, now=1)
    repository.save_exam_session_progress({"examId": QBANK_EXAM_ID, "idx": 0})

    load_exam_overview(repository, now=2)
    assert repository.load_exam_session(QBANK_EXAM_ID) is not None

    repository.upsert_exam(make_exam("newer", count=1, updated_at=900))
    overview = load_exam_overview(repository, now=3)

    assert repository.load_exam_session(QBANK_EXAM_ID) is None
    assert len(overview.qbank.questions) == 6


def test_start_qbank_session_draws_requested_count(repository):
    _seed(repository)
    overview = load_exam_overview(repository, now=1)

    session = start_qbank_session(overview, QBankSelection(), requested=2, rng=random.Random(4), now=10)

    assert session.mode == "taking"
    assert session.exam.exam_title == QBANK_SESSION_TITLE
    assert session.exam.timer_mode == "untimed"
    assert session.question_count == 2
    assert session.base_exam.id == QBANK_EXAM_ID
    assert len(session.subset_indices) == 2
    assert [q.original_index for q in session.exam.questions] == session.subset_indices


def test_qbank_attempt_is_recorded_on_qbank(repository):
    _seed(repository)
    overview = load_exam_overview(repository, now=1)
    session = start_qbank_session(overview, QBankSelection(), requested=2, rng=random.Random(1), now=10)
    picked = list(session.subset_indices)

    result = finalize(session, repository, auto_submit=True, now=20)

    assert result.subset_indices == picked
    stored = Exam.model_validate(repository.get_exam(QBANK_EXAM_ID))
    assert [r.id for r in stored.results] == [result.id]
    assert stored.exam_title != QBANK_SESSION_TITLE
    assert session.exam.id == QBANK_EXAM_ID


def test_qbank_excludes_questions_answered_elsewhere(repository):
    _seed(repository)
    overview = load_exam_overview(repository, now=1)
    exam = overview.find_exam("old")
    session = engine.create_taking_session(exam, now=0)
    engine.answer_question(session, "a", now=1)
    engine.navigate(session, 1, now=2)
    engine.answer_question(session, "b", now=3)
    finalize(session, repository, now=4)

    overview = load_exam_overview(repository, now=5)
    qbank_session = start_qbank_session(overview, QBankSelection(), requested=10, rng=random.Random(0), now=6)

    drawn_ids = {(q.source_exam_id, q.id) for q in qbank_session.exam.questions}
    assert qbank_session.question_count == 3
    assert ("old", "q0") not in drawn_ids
    assert ("old", "q1") not in drawn_ids


def test_start_qbank_session_without_eligible_questions(repository):
    _seed(repository)
    overview = load_exam_overview(repository, now=1)
    selection = QBankSelection(selected_blocks={"nowhere"})

    assert start_qbank_session(overview, selection, rng=random.Random(0)) is None


def test_delete_exam_with_progress(repository):
    _seed(repository)
    repository.save_exam_session_progress({"examId": "old", "idx": 0})

    delete_exam_with_progress(repository, "old")

    assert repository.get_exam("old") is None
    assert repository.load_exam_session("old") is None


def test_selection_is_pruned_against_saved_catalog(repository):
    _seed(repository)
    repository.save_block_catalog(BlockCatalog(blocks=[Block(block_id="B1", weeks=1)]))
    overview = load_exam_overview(repository, now=1)
    selection = QBankSelection(selected_blocks={"GONE"})

    # 사라진 블록만 골랐다면 태그 조건이 없는 것과 같다
    assert qbank_eligible_indices(overview, selection) == [0, 1, 2, 3, 4]


def test_overview_lists_exams_despite_malformed_record(repository):
    _seed(repository)
    repository.upsert_exam({"id": "bad", "examTitle": "Bad", "updatedAt": "yesterday", "questions": []})

    overview = load_exam_overview(repository, now=1)

    assert [e.id for e in overview.exams] == ["new", "old", "bad"]
    assert repository.get_exam("bad")["updatedAt"] is None
