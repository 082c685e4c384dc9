import pytest

from conftest import make_exam
from study_exam_cbt.models.exam_model import Exam
from study_exam_cbt.services import session_engine as engine
from study_exam_cbt.services.finalizer import build_result, finalize
from study_exam_cbt.services.storage import StorageError


def _stored(repository, exam_id) -> Exam:
    return Exam.model_validate(repository.get_exam(exam_id))


def _answer(session, picks, start=100):
    for offset, (idx, option_id) in enumerate(picks):
        engine.navigate(session, idx, now=start + offset * 100)
        engine.answer_question(session, option_id, now=start + offset * 100 + 50)


def test_finalize_scores_and_persists(repository, exam):
    repository.upsert_exam(exam)
    session = engine.create_taking_session(exam, now=0)
    _answer(session, [(0, "a"), (1, "a")])
    asked = []

    result = finalize(session, repository, confirm=lambda nums: asked.append(nums) or True, now=10_000)

    assert asked == [[3]]
    assert (result.correct, result.total, result.answered) == (2, 3, 2)
    assert result.answers == {0: "a", 1: "a"}
    assert result.duration_ms == 10_000
    assert result.when == 10_000
    assert result.subset_indices is None

    stored = _stored(repository, exam.id)
    assert [r.id for r in stored.results] == [result.id]
    assert stored.updated_at == 10_000

    assert session.mode == "summary"
    assert session.latest_result.id == result.id
    assert session.exam.results[-1].id == result.id
    assert session.answers == {}


def test_finalize_declined_leaves_session_untouched(repository, exam):
    repository.upsert_exam(exam)
    session = engine.create_taking_session(exam, now=0)
    _answer(session, [(0, "a")])

    assert finalize(session, repository, confirm=lambda nums: False, now=5_000) is None
    assert finalize(session, repository, now=5_000) is None

    assert session.mode == "taking"
    assert session.started_at == 0
    assert session.answers == {0: "a"}
    assert _stored(repository, exam.id).results == []


def test_auto_submit_skips_confirmation(repository, exam):
    session = engine.create_taking_session(exam, now=0)

    def never(nums):
        raise AssertionError("auto submit must not ask")

    result = finalize(session, repository, auto_submit=True, confirm=never, now=1_000)

    assert result.answered == 0
    assert result.total == 3
    assert session.mode == "summary"


def test_finalize_requires_taking_mode(repository, exam):
    result_session = engine.create_taking_session(exam, now=0)
    _answer(result_session, [(0, "a"), (1, "a"), (2, "a")])
    finalize(result_session, repository, now=1_000)

    with pytest.raises(engine.ExamStateError):
        finalize(result_session, repository, now=2_000)


def test_finalize_deletes_saved_progress(repository, exam):
    session = engine.create_taking_session(exam, now=0)
    engine.pause_clock(session, now=100)
    repository.save_exam_session_progress(engine.snapshot_session(session, now=100))
    engine.resume_clock(session, now=100)

    finalize(session, repository, auto_submit=True, now=200)

    assert repository.load_exam_session(exam.id) is None


def test_finalize_tolerates_snapshot_delete_failure(repository, exam):
    repository.fail_delete_progress = True
    session = engine.create_taking_session(exam, now=0)

    result = finalize(session, repository, auto_submit=True, now=200)

    assert result is not None
    assert session.mode == "summary"


def test_finalize_storage_failure_keeps_taking_session(repository, exam):
    repository.fail_upsert = True
    session = engine.create_taking_session(exam, now=0)
    _answer(session, [(0, "a"), (1, "b"), (2, "c")])

    with pytest.raises(StorageError):
        finalize(session, repository, now=5_000)

    assert session.mode == "taking"
    assert session.answers == {0: "a", 1: "b", 2: "c"}
    assert repository.get_exam(exam.id) is None


def test_subset_attempt_maps_back_to_owner(repository):
    exam = make_exam(count=5)
    repository.upsert_exam(exam)
    first = engine.create_taking_session(exam, now=0)
    _answer(first, [(0, "a"), (1, "b"), (2, "a"), (3, "c"), (4, "a")])
    finalize(first, repository, now=1_000)

    retake = engine.retake_incorrect(first, now=2_000)
    assert retake.subset_indices == [1, 3]
    _answer(retake, [(0, "a"), (1, "b")], start=2_100)
    engine.toggle_flag(retake)

    result = finalize(retake, repository, now=3_000)

    assert result.subset_indices == [1, 3]
    assert result.answers == {1: "a", 3: "b"}
    assert result.flagged == [3]
    assert set(result.question_stats) == {1, 3}
    assert (result.correct, result.total) == (1, 2)

    stored = _stored(repository, exam.id)
    assert len(stored.results) == 2
    assert len(stored.questions) == 5
    assert retake.exam.id == exam.id
    assert retake.base_exam is None


def test_build_result_computes_change_summary(exam):
    session = engine.create_taking_session(exam, now=0)
    engine.answer_question(session, "b", now=10)
    engine.answer_question(session, "a", now=20)
    engine.pause_clock(session, now=30)

    result, updated = build_result(session, now=30)

    assert result.change_summary.wrong_to_right == 1
    assert result.question_stats[0].changes[0].to_answer == "a"
    assert result.question_stats[0].time_ms == 30
    assert updated.results[-1] is result
    assert exam.results == []


def test_three_question_scenario_requires_confirmation(repository):
    exam = make_exam(count=3)
    for question, answer in zip(exam.questions, ("a", "b", "c")):
        question.answer = answer
    repository.upsert_exam(exam)
    session = engine.create_taking_session(exam, now=0)
    _answer(session, [(0, "a"), (1, "b")])

    assert finalize(session, repository, confirm=lambda nums: False, now=1_000) is None
    assert session.mode == "taking"

    result = finalize(session, repository, confirm=lambda nums: nums == [3], now=1_000)
    assert (result.correct, result.total, result.answered) == (2, 3, 2)
