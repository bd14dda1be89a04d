from datetime import datetime, timezone

from conftest import STUDENT, SUPER_ADMIN
from exam_bot.models import ExamStatus

NOW = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


def _exam_with_activity(store):
    exam = store.add_exam("Stored", NOW, SUPER_ADMIN)
    question = store.add_question(exam.id, "Q", ["a", "b"], 0)
    store.add_participant(exam.id, STUDENT)
    store.record_delivery("poll-1", question, STUDENT)
    store.add_answer(STUDENT, question, 1)
    return exam, question


def test_options_round_trip_as_json(store):
    exam = store.add_exam("Json", NOW, SUPER_ADMIN)
    question = store.add_question(exam.id, "Q", ["α", "β", "γ"], 2)

    assert store.get_question(question.id).options == ["α", "β", "γ"]


def test_duplicate_participant_and_answer_return_none(store):
    exam, question = _exam_with_activity(store)

    assert store.add_participant(exam.id, STUDENT) is None
    assert store.add_answer(STUDENT, question, 0) is None
    assert len(store.list_participants(exam.id)) == 1
    assert store.get_answer(STUDENT, question.id).selected_option == 1


def test_transition_is_compare_and_set(store):
    exam = store.add_exam("Cas", NOW, SUPER_ADMIN)

    assert store.transition_exam(exam.id, [ExamStatus.PENDING], ExamStatus.ACTIVE, start_time=NOW)
    assert not store.transition_exam(exam.id, [ExamStatus.PENDING], ExamStatus.ACTIVE)
    assert store.get_exam(exam.id).status == ExamStatus.ACTIVE


def test_delete_exam_cascades(store):
    exam, question = _exam_with_activity(store)

    assert store.delete_exam(exam.id)

    assert store.get_exam(exam.id) is None
    assert store.get_question(question.id) is None
    assert store.list_participants(exam.id) == []
    assert store.list_answers(exam.id) == []
    assert store.question_for_poll("poll-1") is None
    assert not store.delete_exam(exam.id)


def test_delete_question_cascades_answers(store):
    exam, question = _exam_with_activity(store)

    assert store.delete_question(question.id)

    assert store.list_answers(exam.id) == []
    assert store.question_for_poll("poll-1") is None
    assert len(store.list_participants(exam.id)) == 1


def test_question_for_poll_falls_back_to_latest_token(store):
    exam, question = _exam_with_activity(store)
    store.update_question(question.id, poll_id="legacy-token")

    assert store.question_for_poll("legacy-token").id == question.id
    assert store.question_for_poll("poll-1").id == question.id


def test_list_exams_filters(store):
    first = store.add_exam("First", NOW, SUPER_ADMIN)
    store.add_exam("Second", NOW, SUPER_ADMIN + 1)
    store.transition_exam(first.id, [ExamStatus.PENDING], ExamStatus.ACTIVE)

    assert [e.name for e in store.list_exams(created_by=SUPER_ADMIN)] == ["First"]
    assert [e.name for e in store.list_exams(status=ExamStatus.PENDING)] == ["Second"]
    assert len(store.list_exams()) == 2


def test_exams_joined_by(store):
    exam, _ = _exam_with_activity(store)
    store.add_exam("Other", NOW, SUPER_ADMIN)

    assert [e.id for e in store.exams_joined_by(STUDENT)] == [exam.id]
    assert store.exams_joined_by(STUDENT, status=ExamStatus.ENDED) == []


def test_timestamps_come_back_timezone_aware(store):
    exam, question = _exam_with_activity(store)

    stored = store.get_exam(exam.id)
    answer = store.get_answer(STUDENT, question.id)

    assert stored.start_time == NOW
    assert stored.created_at.tzinfo is not None
    assert answer.answered_at.tzinfo is not None
    assert answer.answered_at >= stored.created_at
