from study_exam_cbt.services.session_engine import answer_question, create_taking_session, navigate
from study_exam_cbt.services.timing import (
    begin_question_timing, ensure_question_stats, finalize_active_question_timing,
    record_answer_change, snapshot_question_stats,
)


def test_time_accumulates_per_question(exam):
    session = create_taking_session(exam, now=1000)
    assert session.question_stats[0].entered_at == 1000

    navigate(session, 1, now=4000)
    navigate(session, 0, now=6000)
    finalize_active_question_timing(session, now=7000)

    assert session.question_stats[0].time_ms == 4000
    assert session.question_stats[1].time_ms == 2000
    assert session.question_stats[0].entered_at is None


def test_begin_is_noop_when_interval_already_open(exam):
    session = create_taking_session(exam, now=1000)
    begin_question_timing(session, 0, now=5000)
    assert session.question_stats[0].entered_at == 1000


def test_first_answer_is_initial_not_a_change(exam):
    session = create_taking_session(exam, now=0)
    answer_question(session, "b", now=100)

    stat = session.question_stats[0]
    assert stat.initial_answer == "b"
    assert stat.initial_answer_at == 100
    assert stat.changes == []


def test_answer_change_records_correctness(exam):
    session = create_taking_session(exam, now=0)
    answer_question(session, "b", now=100)
    answer_question(session, "b", now=150)
    answer_question(session, "a", now=200)

    changes = session.question_stats[0].changes
    assert len(changes) == 1
    assert changes[0].from_answer == "b"
    assert changes[0].to_answer == "a"
    assert changes[0].from_correct is False
    assert changes[0].to_correct is True
    assert changes[0].at == 200


def test_record_answer_change_ignored_outside_taking(exam):
    session = create_taking_session(exam, now=0)
    session.mode = "review"
    record_answer_change(session, 0, exam.questions[0], "c", now=5)
    assert session.question_stats[0].initial_answer is None


def test_ensure_question_stats_pads_and_preserves(exam):
    session = create_taking_session(exam, now=0)
    session.question_stats[0].time_ms = 42
    session.question_stats = session.question_stats[:1]

    ensure_question_stats(session)

    assert len(session.question_stats) == 3
    assert session.question_stats[0].time_ms == 42


def test_snapshot_clears_open_interval(exam):
    session = create_taking_session(exam, now=0)
    stats = snapshot_question_stats(session)

    assert all(stat.entered_at is None for stat in stats)
    assert session.question_stats[0].entered_at == 0
