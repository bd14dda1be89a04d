import asyncio

import pytest

from conftest import STUDENT
from exam_bot.answers import record_answer


@pytest.fixture()
def joined_polls(services, messenger, active_exam):
    asyncio.run(services.exams.join_exam(active_exam.id, STUDENT, "stud", "Stu"))
    return messenger.poll_ids_for(STUDENT)


def test_first_answer_wins(services, joined_polls):
    first = record_answer(services.store, joined_polls[0], STUDENT, [2])
    second = record_answer(services.store, joined_polls[0], STUDENT, [1])

    assert first is not None and first.selected_option == 2
    assert second is None
    question = services.store.question_for_poll(joined_polls[0])
    assert services.store.get_answer(STUDENT, question.id).selected_option == 2


def test_retraction_is_ignored(services, joined_polls):
    assert record_answer(services.store, joined_polls[0], STUDENT, []) is None

    question = services.store.question_for_poll(joined_polls[0])
    assert services.store.get_answer(STUDENT, question.id) is None


def test_unknown_poll_is_ignored(services, joined_polls):
    assert record_answer(services.store, "not-a-poll", STUDENT, [0]) is None
    assert services.store.list_answers(services.store.question_for_poll(joined_polls[0]).exam_id) == []


def test_out_of_range_option_is_ignored(services, joined_polls):
    assert record_answer(services.store, joined_polls[1], STUDENT, [7]) is None


def test_answers_after_end_are_ignored(services, active_exam, joined_polls):
    asyncio.run(services.exams.end_exam(active_exam.id))

    assert record_answer(services.store, joined_polls[0], STUDENT, [1]) is None
    assert services.store.list_answers(active_exam.id) == []


def test_each_joiner_polls_resolve_to_same_question(services, messenger, active_exam, joined_polls):
    other = STUDENT + 1
    asyncio.run(services.exams.join_exam(active_exam.id, other))
    other_polls = messenger.poll_ids_for(other)

    # The first joiner's poll must still resolve after a later joiner got new polls.
    record_answer(services.store, joined_polls[0], STUDENT, [1])
    record_answer(services.store, other_polls[0], other, [0])

    answers = services.store.list_answers(active_exam.id)
    assert {(a.user_id, a.selected_option) for a in answers} == {(STUDENT, 1), (other, 0)}
    assert len({a.question_id for a in answers}) == 1
