from api import session
from conftest import make_exam
from study_exam_cbt.services.runner import ExamRunner


def test_set_runner_replaces_and_disposes_previous(repository):
    sid = session.create_session()
    first = ExamRunner.start_exam(make_exam(timed=True), repository, timer_interval=10)
    second = ExamRunner.start_exam(make_exam(timed=True), repository, timer_interval=10)

    session.set_runner(sid, first)
    session.set_runner(sid, second)

    assert first.disposed
    assert not first.timer_active
    assert session.get_runner(sid) is second
    session.reset(sid)
    assert second.disposed


def test_set_runner_on_missing_session_disposes_runner(repository):
    runner = ExamRunner.start_exam(make_exam(timed=True), repository, timer_interval=10)
    assert runner.timer_active

    session.set_runner("no-such-session", runner)

    assert runner.disposed
    assert not runner.timer_active
