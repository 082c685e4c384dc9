import time

import pytest

from conftest import make_exam
from study_exam_cbt.models.exam_model import Exam
from study_exam_cbt.services import session_engine as engine
from study_exam_cbt.services.runner import ExamRunner
from study_exam_cbt.services.storage import SESSIONS_FILE, StorageError
from study_exam_cbt.services.timer import ExamTimer, format_countdown


def _wait_until(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.mark.parametrize("ms, expected", [
    (0, "00:00"),
    (None, "00:00"),
    (-500, "00:00"),
    (1, "00:01"),
    (59_001, "01:00"),
    (125_000, "02:05"),
    (3_600_000, "01:00:00"),
    (3_725_000, "01:02:05"),
])
def test_format_countdown(ms, expected):
    assert format_countdown(ms) == expected


def test_exam_timer_ticks_until_cancelled():
    calls = []
    timer = ExamTimer(lambda: calls.append(1), interval=0.01)
    timer.start()

    assert _wait_until(lambda: len(calls) >= 3)
    timer.cancel()
    timer.cancel()
    assert not timer.active
    settled = len(calls)
    time.sleep(0.05)
    assert len(calls) <= settled + 1


def test_timer_survives_callback_errors():
    calls = []

    def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    timer = ExamTimer(flaky, interval=0.01)
    timer.start()
    assert _wait_until(lambda: len(calls) >= 2)
    timer.cancel()


def test_timer_armed_only_for_timed_taking_session(repository, exam):
    untimed = ExamRunner.start_exam(exam, repository)
    assert not untimed.timer_active

    timed = ExamRunner.start_exam(make_exam(timed=True), repository, timer_interval=10)
    assert timed.timer_active
    timed.dispose()
    assert not timed.timer_active


def test_expired_tick_auto_submits_exactly_once(repository):
    exam = make_exam(count=2, timed=True, seconds=60)
    repository.upsert_exam(exam)
    runner = ExamRunner.start_exam(exam, repository, arm_timer=False)
    started = runner.session.started_at
    runner.answer("a", now=started + 1_000)

    assert runner.tick(now=started + 60_000) is False
    assert runner.tick(now=started + 120_000) is True
    assert runner.session.mode == "summary"
    assert runner.session.latest_result.answered == 1
    assert runner.status_message

    assert runner.tick(now=started + 180_000) is False
    stored = Exam.model_validate(repository.get_exam(exam.id))
    assert len(stored.results) == 1


def test_real_timer_auto_submits(repository):
    exam = make_exam(count=1, timed=True, seconds=1)
    repository.upsert_exam(exam)
    runner = ExamRunner.start_exam(exam, repository, timer_interval=0.05)

    assert _wait_until(lambda: runner.session.mode == "summary")
    assert not runner.timer_active
    stored = Exam.model_validate(repository.get_exam(exam.id))
    assert len(stored.results) == 1


def test_auto_submit_storage_failure_retries_on_next_tick(repository):
    exam = make_exam(count=1, timed=True, seconds=1)
    runner = ExamRunner.start_exam(exam, repository, arm_timer=False)
    started = runner.session.started_at
    repository.fail_upsert = True

    with pytest.raises(StorageError):
        runner.tick(now=started + 2_000)
    assert runner.session.mode == "taking"

    repository.fail_upsert = False
    assert runner.tick(now=started + 3_000) is True
    assert runner.session.mode == "summary"


def test_submit_needs_confirmation_for_unanswered(repository, exam):
    runner = ExamRunner.start_exam(exam, repository)
    runner.answer("a")

    assert runner.submit() is None
    assert runner.session.mode == "taking"
    assert runner.unanswered() == [2, 3]

    result = runner.submit(confirm=lambda nums: True)
    assert result.answered == 1
    assert runner.session.mode == "summary"


def test_submit_storage_failure_resumes_clock(repository):
    repository.fail_upsert = True
    runner = ExamRunner.start_exam(make_exam(timed=True), repository, timer_interval=10)

    with pytest.raises(StorageError):
        runner.submit(confirm=lambda nums: True)

    assert runner.session.mode == "taking"
    assert runner.session.started_at is not None
    assert runner.timer_active
    runner.dispose()


def test_save_and_exit_then_resume(repository):
    exam = make_exam(count=3, timed=True, seconds=30)
    repository.upsert_exam(exam)
    runner = ExamRunner.start_exam(exam, repository, timer_interval=10)
    runner.answer("c")
    runner.navigate(1, scroll_offset=40.0)

    snapshot = runner.save_and_exit()

    assert runner.disposed
    assert not runner.timer_active
    assert snapshot.answers == {0: "c"}
    assert repository.load_exam_session(exam.id)["examId"] == exam.id

    resumed = ExamRunner.resume(repository, exam.id, exam, timer_interval=10)
    assert resumed.session.idx == 1
    assert resumed.session.answers == {0: "c"}
    assert 0 < resumed.session.remaining_ms <= 90_000
    assert resumed.timer_active
    resumed.dispose()


def test_save_and_exit_failure_keeps_session_alive(repository):
    repository.fail_save = True
    runner = ExamRunner.start_exam(make_exam(timed=True), repository, timer_interval=10)
    runner.answer("b")

    with pytest.raises(StorageError):
        runner.save_and_exit()

    assert not runner.disposed
    assert runner.session.mode == "taking"
    assert runner.session.answers == {0: "b"}
    assert runner.session.started_at is not None
    assert runner.timer_active
    runner.dispose()


def test_save_and_exit_outside_taking_is_rejected(repository, exam):
    runner = ExamRunner(engine.enter_review(exam, engine.ExamResult(id="r", when=1)), repository)
    with pytest.raises(engine.ExamStateError):
        runner.save_and_exit()


def test_resume_without_snapshot_returns_none(repository, exam):
    assert ExamRunner.resume(repository, exam.id, exam) is None


def test_resume_repairs_malformed_snapshot(repository, exam):
    repository.save_exam_session_progress({
        "examId": exam.id,
        "idx": "2",
        "answers": {"0": 1, "one": "b", "1": None},
        "flagged": {"0": "yes", "2": True},
        "elapsedMs": None,
        "questionStats": [{"timeMs": "12"}, "junk"],
    })

    runner = ExamRunner.resume(repository, exam.id, exam, arm_timer=False)

    assert runner.session.idx == 2
    assert runner.session.answers == {0: "1"}
    assert runner.session.flagged == {2: True}
    assert runner.session.elapsed_ms == 0
    assert runner.session.question_stats[0].time_ms == 12
    assert runner.session.question_stats[1].time_ms == 0


def test_resume_drops_unusable_snapshot(repository, exam):
    repository._write(SESSIONS_FILE, {exam.id: ["not", "a", "snapshot"]})

    assert ExamRunner.resume(repository, exam.id, exam) is None
    assert repository.load_exam_session(exam.id) is None


def test_discard_removes_saved_progress(repository, exam):
    runner = ExamRunner.start_exam(exam, repository)
    engine.pause_clock(runner.session)
    repository.save_exam_session_progress(engine.snapshot_session(runner.session))

    runner.discard()

    assert runner.disposed
    assert repository.load_exam_session(exam.id) is None


def test_transition_to_retake_rearms_timer(repository):
    exam = make_exam(count=2, timed=True)
    runner = ExamRunner.start_exam(exam, repository, timer_interval=10)
    runner.answer("a")
    runner.submit(confirm=lambda nums: True)
    assert not runner.timer_active

    assert runner.transition(engine.retake_incorrect) is not None
    assert runner.session.mode == "taking"
    assert runner.session.subset_indices == [1]
    assert runner.timer_active
    runner.dispose()


def test_transition_with_nothing_to_retake_keeps_session(repository, exam):
    runner = ExamRunner.start_exam(exam, repository)
    for idx in range(3):
        runner.navigate(idx)
        runner.answer("a")
    runner.submit()

    assert runner.transition(engine.retake_incorrect) is None
    assert runner.session.mode == "summary"
