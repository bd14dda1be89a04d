"""Exam lifecycle: pending -> active -> ended, question bank edits, publishing."""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Sequence, Union

from . import screens
from .errors import (
    AlreadyJoined,
    DeliveryFailed,
    InvalidState,
    NoQuestions,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from .messenger import DELIVERY_ERRORS, Messenger, broadcast
from .models import MAX_OPTIONS, MIN_OPTIONS, Exam, ExamStatus, Participant, Question, utcnow
from .store import Store

logger = logging.getLogger(__name__)

POLL_QUESTION_LIMIT = 300
POLL_OPTION_LIMIT = 100


class PublishTarget:
    UNRESTRICTED = "unrestricted"
    ALL = "all"


Target = Union[str, int]


@dataclass(slots=True)
class StartOutcome:
    exam: Exam
    question_count: int
    notified_chats: List[int] = field(default_factory=list)


@dataclass(slots=True)
class EndOutcome:
    exam: Exam
    notified_users: List[int] = field(default_factory=list)


@dataclass(slots=True)
class JoinOutcome:
    participant: Participant
    delivered: int
    failed: int


@dataclass(slots=True)
class OptionsEdit:
    question: Question
    correct_reset: bool


def parse_start_offset(text: str) -> int:
    text = text.strip()
    try:
        minutes = int(text)
    except ValueError:
        raise ValidationError("❌ Invalid time. Enter a number >= 0:") from None
    if minutes < 0:
        raise ValidationError("❌ Invalid time. Enter a number >= 0:")
    return minutes


def parse_options(text: str) -> List[str]:
    options = [line.strip() for line in text.splitlines() if line.strip()]
    if len(options) < MIN_OPTIONS:
        raise ValidationError("❌ Need at least 2 options. Try again:")
    if len(options) > MAX_OPTIONS:
        raise ValidationError(f"❌ At most {MAX_OPTIONS} options are allowed. Try again:")
    return options


def parse_explanation(text: str) -> Optional[str]:
    text = text.strip()
    return None if text in {"", "-"} else text


class ExamService:
    def __init__(self, store: Store, messenger: Messenger):
        self.store = store
        self.messenger = messenger

    # ===================== LOOKUPS =====================

    def get_exam(self, exam_id: int) -> Exam:
        exam = self.store.get_exam(exam_id)
        if exam is None:
            raise NotFoundError("❌ Exam not found.")
        return exam

    def get_question(self, question_id: int) -> Question:
        question = self.store.get_question(question_id)
        if question is None:
            raise NotFoundError("❌ Question not found.")
        return question

    def pending_exam(self, exam_id: int) -> Exam:
        exam = self.get_exam(exam_id)
        if exam.status != ExamStatus.PENDING:
            raise InvalidState("❌ Questions can only be changed while the exam is pending.")
        return exam

    def editable_question(self, question_id: int) -> Question:
        question = self.get_question(question_id)
        self.pending_exam(question.exam_id)
        return question

    def joinable_exams(self, chat_id: Optional[int] = None) -> List[Exam]:
        """Active exams visible from a chat: private chats see only unrestricted ones."""
        exams = self.store.list_exams(status=ExamStatus.ACTIVE)
        return [e for e in exams if e.target_chat_id is None or e.target_chat_id == chat_id]

    # ===================== AUTHORING =====================

    def create_exam(self, name: str, start_offset_minutes: int, creator: int) -> Exam:
        name = name.strip()
        if not name:
            raise ValidationError("❌ Exam name cannot be empty. Enter exam name:")
        start_time = utcnow() + timedelta(minutes=start_offset_minutes)
        exam = self.store.add_exam(name, start_time, creator)
        logger.info("Exam %s (%s) created by %s", exam.id, exam.name, creator)
        return exam

    def add_question(
        self,
        exam_id: int,
        question_text: str,
        options: Sequence[str],
        correct_option: int,
        explanation: Optional[str] = None,
    ) -> Question:
        self.pending_exam(exam_id)
        question_text = question_text.strip()
        if not question_text:
            raise ValidationError("❌ Question text cannot be empty.")
        if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
            raise ValidationError("❌ A question needs between 2 and 10 options.")
        if not 0 <= correct_option < len(options):
            raise ValidationError("❌ Correct option is out of range.")
        return self.store.add_question(exam_id, question_text, list(options), correct_option, explanation)

    def edit_question_text(self, question_id: int, question_text: str) -> Question:
        self.editable_question(question_id)
        question_text = question_text.strip()
        if not question_text:
            raise ValidationError("❌ Question text cannot be empty. Try again:")
        return self.store.update_question(question_id, question_text=question_text)

    def edit_question_options(self, question_id: int, options: Sequence[str]) -> OptionsEdit:
        question = self.editable_question(question_id)
        if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
            raise ValidationError("❌ A question needs between 2 and 10 options. Try again:")
        correct_option = question.correct_option
        reset = correct_option >= len(options)
        if reset:
            correct_option = 0
        updated = self.store.update_question(question_id, options=list(options), correct_option=correct_option)
        return OptionsEdit(question=updated, correct_reset=reset)

    def edit_question_explanation(self, question_id: int, explanation: Optional[str]) -> Question:
        self.editable_question(question_id)
        return self.store.update_question(question_id, explanation=explanation)

    def set_correct_option(self, question_id: int, correct_option: int) -> Question:
        question = self.editable_question(question_id)
        if not 0 <= correct_option < len(question.options):
            raise ValidationError("❌ Correct option is out of range.")
        return self.store.update_question(question_id, correct_option=correct_option)

    def delete_question(self, question_id: int) -> Question:
        question = self.editable_question(question_id)
        self.store.delete_question(question_id)
        return question

    # ===================== STATE TRANSITIONS =====================

    async def start_exam(self, exam_id: int, target: Target = PublishTarget.UNRESTRICTED) -> StartOutcome:
        exam = self.get_exam(exam_id)
        question_count = self.store.count_questions(exam_id)
        if question_count == 0:
            raise NoQuestions("❌ Cannot start exam without questions! Add questions first.")

        if target == PublishTarget.ALL:
            destinations = [g.chat_id for g in self.store.list_groups()]
            target_chat_id = None
        elif target == PublishTarget.UNRESTRICTED:
            destinations = []
            target_chat_id = None
        else:
            group = self.store.get_group(int(target))
            if group is None:
                raise NotFoundError("❌ Group is not authorized.")
            destinations = [group.chat_id]
            target_chat_id = group.chat_id

        started = self.store.transition_exam(
            exam_id,
            [ExamStatus.PENDING],
            ExamStatus.ACTIVE,
            start_time=utcnow(),
            target_chat_id=target_chat_id,
        )
        if not started:
            raise InvalidState(f"❌ Exam \"{html.escape(exam.name)}\" is not pending.")
        exam = self.get_exam(exam_id)
        logger.info("Exam %s started, target=%s", exam_id, target)

        notified = await broadcast(
            self.messenger,
            destinations,
            screens.exam_announcement_text(exam, question_count),
            reply_markup=screens.join_keyboard(exam),
        )
        return StartOutcome(exam=exam, question_count=question_count, notified_chats=notified)

    async def end_exam(self, exam_id: int) -> EndOutcome:
        exam = self.get_exam(exam_id)
        ended = self.store.transition_exam(exam_id, [ExamStatus.ACTIVE], ExamStatus.ENDED, end_time=utcnow())
        if not ended:
            raise InvalidState(f"❌ Exam \"{html.escape(exam.name)}\" is not active.")
        exam = self.get_exam(exam_id)
        logger.info("Exam %s ended", exam_id)

        user_ids = list(dict.fromkeys(p.user_id for p in self.store.list_participants(exam_id)))
        notified = await broadcast(
            self.messenger,
            user_ids,
            screens.exam_ended_text(exam),
            reply_markup=screens.view_result_keyboard(exam),
        )
        return EndOutcome(exam=exam, notified_users=notified)

    def delete_exam(self, exam_id: int) -> Exam:
        exam = self.get_exam(exam_id)
        if not self.store.delete_exam(exam_id):
            raise NotFoundError("❌ Exam not found.")
        logger.info("Exam %s (%s) deleted", exam_id, exam.name)
        return exam

    # ===================== PARTICIPATION =====================

    async def join_exam(
        self,
        exam_id: int,
        user_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        source_chat_id: Optional[int] = None,
    ) -> JoinOutcome:
        exam = self.get_exam(exam_id)
        if source_chat_id is not None and exam.target_chat_id not in (None, source_chat_id):
            raise PermissionDenied("❌ This exam is not available in this chat.")
        if self.store.get_participant(exam_id, user_id) is not None:
            raise AlreadyJoined()
        if exam.status != ExamStatus.ACTIVE:
            raise InvalidState("❌ This exam is not open for joining.")
        questions = self.store.list_questions(exam_id)
        if not questions:
            raise NoQuestions("❌ This exam has no questions yet. Please wait for the admin to add questions.")

        participant = self.store.add_participant(exam_id, user_id, username=username, first_name=first_name)
        if participant is None:
            raise AlreadyJoined()

        delivered = failed = 0
        for number, question in enumerate(questions, start=1):
            try:
                poll_id = await self.messenger.send_poll(
                    user_id,
                    f"Q{number}. {question.question_text}"[:POLL_QUESTION_LIMIT],
                    [option[:POLL_OPTION_LIMIT] for option in question.options],
                )
            except DELIVERY_ERRORS as e:
                logger.warning("Poll for question %s to %s failed: %s", question.id, user_id, e)
                failed += 1
                if delivered == 0:
                    # Nothing reached the user, so let them retry after opening the chat.
                    self.store.remove_participant(exam_id, user_id)
                    raise DeliveryFailed() from e
                continue
            self.store.record_delivery(poll_id, question, user_id)
            delivered += 1

        logger.info("User %s joined exam %s (%s polls)", user_id, exam_id, delivered)
        return JoinOutcome(participant=participant, delivered=delivered, failed=failed)
