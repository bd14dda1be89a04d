import asyncio

import pytest

from conftest import GROUP_CHAT, STUDENT, SUPER_ADMIN
from exam_bot.errors import (
    AlreadyJoined,
    DeliveryFailed,
    InvalidState,
    NoQuestions,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from exam_bot.lifecycle import PublishTarget, parse_options, parse_start_offset
from exam_bot.models import ExamStatus


def test_create_exam_is_pending(services):
    exam = services.exams.create_exam("History", 15, SUPER_ADMIN)

    assert exam.status == ExamStatus.PENDING
    assert exam.created_by == SUPER_ADMIN
    assert exam.start_time > exam.created_at


def test_start_rejects_exam_without_questions(services):
    exam = services.exams.create_exam("Empty", 0, SUPER_ADMIN)

    with pytest.raises(NoQuestions):
        asyncio.run(services.exams.start_exam(exam.id))

    assert services.exams.get_exam(exam.id).status == ExamStatus.PENDING


def test_start_unrestricted_does_not_push(services, messenger, exam_with_questions):
    services.store.add_group(GROUP_CHAT, SUPER_ADMIN, "Class A")

    outcome = asyncio.run(services.exams.start_exam(exam_with_questions.id, PublishTarget.UNRESTRICTED))

    assert outcome.exam.status == ExamStatus.ACTIVE
    assert outcome.exam.target_chat_id is None
    assert outcome.question_count == 2
    assert messenger.messages == []


def test_start_all_announces_to_every_group(services, messenger, exam_with_questions):
    services.store.add_group(GROUP_CHAT, SUPER_ADMIN, "Class A")
    services.store.add_group(GROUP_CHAT - 1, SUPER_ADMIN, "Class B")

    outcome = asyncio.run(services.exams.start_exam(exam_with_questions.id, PublishTarget.ALL))

    assert sorted(outcome.notified_chats) == sorted([GROUP_CHAT, GROUP_CHAT - 1])
    assert outcome.exam.target_chat_id is None


def test_start_skips_unreachable_group(services, messenger, exam_with_questions):
    services.store.add_group(GROUP_CHAT, SUPER_ADMIN, "Gone")
    services.store.add_group(GROUP_CHAT - 1, SUPER_ADMIN, "Here")
    messenger.unreachable.add(GROUP_CHAT)

    outcome = asyncio.run(services.exams.start_exam(exam_with_questions.id, PublishTarget.ALL))

    assert outcome.notified_chats == [GROUP_CHAT - 1]
    assert services.exams.get_exam(exam_with_questions.id).status == ExamStatus.ACTIVE


def test_start_for_single_group_records_target(services, messenger, exam_with_questions):
    services.store.add_group(GROUP_CHAT, SUPER_ADMIN, "Class A")

    outcome = asyncio.run(services.exams.start_exam(exam_with_questions.id, GROUP_CHAT))

    assert outcome.exam.target_chat_id == GROUP_CHAT
    assert messenger.texts_to(GROUP_CHAT)


def test_start_for_unknown_group_fails_without_side_effects(services, exam_with_questions):
    with pytest.raises(NotFoundError):
        asyncio.run(services.exams.start_exam(exam_with_questions.id, GROUP_CHAT))

    assert services.exams.get_exam(exam_with_questions.id).status == ExamStatus.PENDING


def test_second_start_publishes_nothing(services, messenger, active_exam):
    services.store.add_group(GROUP_CHAT, SUPER_ADMIN, "Class A")

    with pytest.raises(InvalidState):
        asyncio.run(services.exams.start_exam(active_exam.id, PublishTarget.ALL))

    assert messenger.messages == []


def test_questions_are_frozen_once_active(services, active_exam):
    question = services.store.list_questions(active_exam.id)[0]

    with pytest.raises(InvalidState):
        services.exams.add_question(active_exam.id, "Late?", ["a", "b"], 0)
    with pytest.raises(InvalidState):
        services.exams.edit_question_text(question.id, "changed")
    with pytest.raises(InvalidState):
        services.exams.delete_question(question.id)


def test_option_edit_resets_out_of_range_correct_index(services):
    exam = services.exams.create_exam("Edit", 0, SUPER_ADMIN)
    question = services.exams.add_question(exam.id, "Pick D", ["a", "b", "c", "d"], 3)

    edit = services.exams.edit_question_options(question.id, ["a", "b"])

    assert edit.correct_reset is True
    assert edit.question.correct_option == 0
    assert edit.question.options == ["a", "b"]


def test_option_edit_keeps_valid_correct_index(services):
    exam = services.exams.create_exam("Edit", 0, SUPER_ADMIN)
    question = services.exams.add_question(exam.id, "Pick B", ["a", "b", "c", "d"], 1)

    edit = services.exams.edit_question_options(question.id, ["x", "y", "z"])

    assert edit.correct_reset is False
    assert edit.question.correct_option == 1


def test_set_correct_option_validates_range(services, exam_with_questions):
    question = services.store.list_questions(exam_with_questions.id)[0]

    with pytest.raises(ValidationError):
        services.exams.set_correct_option(question.id, 3)

    assert services.exams.set_correct_option(question.id, 2).correct_option == 2


def test_join_delivers_every_question_and_records_tokens(services, messenger, active_exam):
    outcome = asyncio.run(services.exams.join_exam(active_exam.id, STUDENT, "stud", "Stu"))

    assert outcome.delivered == 2
    poll_ids = messenger.poll_ids_for(STUDENT)
    assert len(poll_ids) == 2
    questions = services.store.list_questions(active_exam.id)
    assert [services.store.question_for_poll(p).id for p in poll_ids] == [q.id for q in questions]
    assert [q.poll_id for q in questions] == poll_ids


def test_join_is_exactly_once(services, messenger, active_exam):
    asyncio.run(services.exams.join_exam(active_exam.id, STUDENT))

    with pytest.raises(AlreadyJoined):
        asyncio.run(services.exams.join_exam(active_exam.id, STUDENT))

    assert len(services.store.list_participants(active_exam.id)) == 1
    assert len(messenger.poll_ids_for(STUDENT)) == 2


def test_join_requires_active_exam(services, exam_with_questions):
    with pytest.raises(InvalidState):
        asyncio.run(services.exams.join_exam(exam_with_questions.id, STUDENT))

    assert services.store.list_participants(exam_with_questions.id) == []


def test_join_respects_group_target(services, exam_with_questions):
    services.store.add_group(GROUP_CHAT, SUPER_ADMIN, "Class A")
    asyncio.run(services.exams.start_exam(exam_with_questions.id, GROUP_CHAT))

    with pytest.raises(PermissionDenied):
        asyncio.run(services.exams.join_exam(exam_with_questions.id, STUDENT, source_chat_id=STUDENT))

    outcome = asyncio.run(services.exams.join_exam(exam_with_questions.id, STUDENT, source_chat_id=GROUP_CHAT))
    assert outcome.delivered == 2


def test_join_rolls_back_when_user_cannot_be_reached(services, messenger, active_exam):
    messenger.unreachable.add(STUDENT)

    with pytest.raises(DeliveryFailed):
        asyncio.run(services.exams.join_exam(active_exam.id, STUDENT))

    assert services.store.get_participant(active_exam.id, STUDENT) is None


def test_end_notifies_participants_and_skips_blocked(services, messenger, active_exam):
    asyncio.run(services.exams.join_exam(active_exam.id, STUDENT))
    asyncio.run(services.exams.join_exam(active_exam.id, STUDENT + 1))
    messenger.unreachable.add(STUDENT + 1)

    outcome = asyncio.run(services.exams.end_exam(active_exam.id))

    assert outcome.exam.status == ExamStatus.ENDED
    assert outcome.exam.end_time is not None
    assert outcome.notified_users == [STUDENT]


def test_end_requires_active_exam(services, exam_with_questions):
    with pytest.raises(InvalidState):
        asyncio.run(services.exams.end_exam(exam_with_questions.id))

    assert services.exams.get_exam(exam_with_questions.id).status == ExamStatus.PENDING


def test_ended_exam_cannot_restart(services, active_exam):
    asyncio.run(services.exams.end_exam(active_exam.id))

    with pytest.raises(InvalidState):
        asyncio.run(services.exams.start_exam(active_exam.id))

    assert services.exams.get_exam(active_exam.id).status == ExamStatus.ENDED


def test_joinable_exams_filters_by_chat(services, exam_with_questions):
    services.store.add_group(GROUP_CHAT, SUPER_ADMIN, "Class A")
    open_exam = services.exams.create_exam("Open", 0, SUPER_ADMIN)
    services.exams.add_question(open_exam.id, "Q", ["a", "b"], 0)
    asyncio.run(services.exams.start_exam(open_exam.id))
    asyncio.run(services.exams.start_exam(exam_with_questions.id, GROUP_CHAT))

    assert [e.name for e in services.exams.joinable_exams()] == ["Open"]
    assert sorted(e.name for e in services.exams.joinable_exams(GROUP_CHAT)) == ["Math", "Open"]


def test_parse_helpers():
    assert parse_start_offset(" 5 ") == 5
    with pytest.raises(ValidationError):
        parse_start_offset("-1")
    with pytest.raises(ValidationError):
        parse_start_offset("soon")

    assert parse_options("a\n\n b \n") == ["a", "b"]
    with pytest.raises(ValidationError):
        parse_options("only one")
