import random

import pytest

from config import QBANK_DEFAULT_COUNT
from conftest import make_exam
from study_exam_cbt.models.exam_model import ExamResult
from study_exam_cbt.models.selection_model import (
    AnsweredFilters, Block, BlockCatalog, Lecture, QBankSelection,
)
from study_exam_cbt.services.qbank import build_qbank
from study_exam_cbt.services.selection_filter import (
    build_answer_history, clamp_question_count, draw_indices, eligible_indices,
    history_key, matches_selection, prune_selection, shuffle_indices,
)


LECTURES = {
    0: [{"block_id": "B1", "id": 1, "name": "Heart", "week": 1}],
    1: [{"block_id": "B1", "id": 2, "name": "Vessels", "week": 2}],
    2: [{"block_id": "B2", "id": 1, "name": "Kidney", "week": 1}],
}


@pytest.fixture
def tagged_exam():
    return make_exam("e1", count=4, lectures=LECTURES)


@pytest.fixture
def qbank(tagged_exam):
    return build_qbank([tagged_exam], now=1)[0]


def _select(**kwargs):
    # 태그 필터만 보려면 응답 이력 조건을 통과시킨다
    kwargs.setdefault("include_answered", True)
    return QBankSelection(**kwargs)


def test_no_tag_criteria_matches_everything(qbank):
    assert eligible_indices(qbank, _select()) == [0, 1, 2, 3]


@pytest.mark.parametrize("selection, expected", [
    ({"selected_lectures": {"B1|2"}}, [1]),
    ({"selected_weeks": {"B1|1"}}, [0]),
    ({"selected_blocks": {"B2"}}, [2]),
    ({"selected_blocks": {"B2"}, "include_untagged": True}, [2, 3]),
    ({"selected_lectures": {"B1|1"}, "selected_blocks": {"B2"}}, [0, 2]),
])
def test_tag_filters(qbank, selection, expected):
    assert eligible_indices(qbank, _select(**selection)) == expected


def test_untagged_question_needs_include_untagged(qbank):
    selection = _select(selected_blocks={"B1"})
    assert not matches_selection(qbank.questions[3], selection)


def test_history_key():
    exam = make_exam("e9")
    assert history_key(exam.questions[0], "e9") == "e9|q0"
    assert history_key(exam.questions[0]) == ""
    assert history_key(None, "e9") == ""


def _answered_exam(tagged_exam):
    tagged_exam.results.append(ExamResult(
        id="r1", when=1, total=4, answers={0: "a", 1: "b"}, flagged=[2],
    ))
    return tagged_exam


def test_answer_history_from_exam_results(tagged_exam):
    exam = _answered_exam(tagged_exam)
    qbank = build_qbank([exam], now=1)[0]
    history = build_answer_history([exam], qbank)

    assert history["e1|q0"].correct and not history["e1|q0"].incorrect
    assert history["e1|q1"].incorrect
    assert history["e1|q2"].flagged and not history["e1|q2"].answered


def test_answer_history_replays_qbank_results_by_source(tagged_exam):
    qbank = build_qbank([tagged_exam], now=1)[0]
    qbank.results.append(ExamResult(id="qr", when=2, total=1, answers={3: "a"}))
    history = build_answer_history([tagged_exam], qbank)

    assert history["e1|q3"].answered
    assert history["e1|q3"].correct


def test_exclude_answered_by_default(tagged_exam):
    exam = _answered_exam(tagged_exam)
    qbank = build_qbank([exam], now=1)[0]
    history = build_answer_history([exam], qbank)

    assert eligible_indices(qbank, QBankSelection(), history) == [2, 3]


@pytest.mark.parametrize("filters, expected", [
    ({}, [2, 3]),
    ({"incorrect": True}, [1, 2, 3]),
    ({"correct": True}, [0, 2, 3]),
    ({"correct": True, "incorrect": True}, [0, 1, 2, 3]),
])
def test_include_answered_filters(tagged_exam, filters, expected):
    exam = _answered_exam(tagged_exam)
    qbank = build_qbank([exam], now=1)[0]
    history = build_answer_history([exam], qbank)
    selection = QBankSelection(include_answered=True, answered_filters=AnsweredFilters(**filters))

    assert eligible_indices(qbank, selection, history) == expected


def test_shuffle_is_a_permutation_and_leaves_input_alone():
    items = list(range(10))
    shuffled = shuffle_indices(items, random.Random(7))

    assert sorted(shuffled) == items
    assert items == list(range(10))


def test_clamp_question_count():
    assert clamp_question_count(50, 10) == 10
    assert clamp_question_count(-3, 10) == 1
    assert clamp_question_count(None, 100) == QBANK_DEFAULT_COUNT
    assert clamp_question_count(None, 5) == 5
    assert clamp_question_count("abc", 5) == 5
    assert clamp_question_count(3, 0) == 0


def test_draw_indices_picks_unique_eligible_questions():
    eligible = [4, 8, 15, 16, 23, 42]
    picked = draw_indices(eligible, 3, random.Random(1))

    assert len(picked) == 3
    assert len(set(picked)) == 3
    assert set(picked) <= set(eligible)
    assert draw_indices([], 3, random.Random(1)) == []


def test_draw_indices_is_deterministic_for_seeded_rng():
    eligible = list(range(30))
    assert draw_indices(eligible, 5, random.Random(3)) == draw_indices(eligible, 5, random.Random(3))


def test_prune_selection_drops_unknown_keys():
    catalog = BlockCatalog(
        blocks=[Block(block_id="B1", title="Cardio", weeks=2)],
        lecture_lists={"B1": [Lecture(id=1, name="Heart", week=1)]},
    )
    selection = QBankSelection(
        selected_blocks={"B1", "GONE"},
        selected_weeks={"B1|2", "B9|1"},
        selected_lectures={"B1|1", "B1|5"},
    )

    pruned = prune_selection(selection, catalog)

    assert pruned.selected_blocks == {"B1"}
    assert pruned.selected_weeks == {"B1|2"}
    assert pruned.selected_lectures == {"B1|1"}
    assert selection.selected_blocks == {"B1", "GONE"}
