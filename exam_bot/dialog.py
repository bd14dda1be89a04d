"""Per-user multi-step authoring dialogs.

State lives only in process memory and is lost on restart. Starting a flow
replaces whatever flow the user had open.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import screens
from .auth import AccessControl
from .errors import AlreadyExists, ExamBotError, ValidationError
from .lifecycle import ExamService, parse_explanation, parse_options, parse_start_offset
from .messenger import DELIVERY_ERRORS, Messenger
from .parser import parse_questions
from .screens import Reply

logger = logging.getLogger(__name__)


class Flow:
    CREATE_EXAM = "create_exam"
    ADD_QUESTION = "add_question"
    EDIT_QUESTION_TEXT = "edit_question_text"
    EDIT_QUESTION_OPTIONS = "edit_question_options"
    EDIT_QUESTION_EXPLANATION = "edit_question_explanation"
    UPLOAD_QUESTIONS = "upload_questions"
    ADD_ADMIN = "add_admin"


class Step:
    NAME = "name"
    START_TIME = "start_time"
    TEXT = "text"
    OPTIONS = "options"
    CORRECT = "correct"
    EXPLANATION = "explanation"
    INPUT = "input"
    FILE = "file"


@dataclass(slots=True)
class DialogState:
    flow: str
    step: str
    data: Dict[str, Any] = field(default_factory=dict)


class DialogTracker:
    def __init__(self) -> None:
        self._states: Dict[int, DialogState] = {}

    def begin(self, user_id: int, flow: str, step: str, **data) -> DialogState:
        state = DialogState(flow=flow, step=step, data=dict(data))
        self._states[user_id] = state
        return state

    def get(self, user_id: int) -> Optional[DialogState]:
        return self._states.get(user_id)

    def advance(self, user_id: int, step: str, **data) -> DialogState:
        state = self._states[user_id]
        state.step = step
        state.data.update(data)
        return state

    def finish(self, user_id: int) -> None:
        self._states.pop(user_id, None)

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._states

    def __len__(self) -> int:
        return len(self._states)


class DialogEngine:
    """Routes text, option picks and uploads to the user's open flow."""

    def __init__(self, tracker: DialogTracker, exams: ExamService, access: AccessControl, messenger: Messenger):
        self.tracker = tracker
        self.exams = exams
        self.access = access
        self.messenger = messenger

    # ===================== FLOW ENTRY POINTS =====================

    def begin_create_exam(self, user_id: int) -> Reply:
        self.access.require_admin(user_id)
        self.tracker.begin(user_id, Flow.CREATE_EXAM, Step.NAME)
        return screens.prompt("📝 Enter exam name:", remove_keyboard=True)

    def begin_add_question(self, user_id: int, exam_id: int) -> Reply:
        self.access.require_admin(user_id)
        self.exams.pending_exam(exam_id)
        self.tracker.begin(user_id, Flow.ADD_QUESTION, Step.TEXT, exam_id=exam_id)
        return screens.prompt("❓ Enter question text:")

    def begin_edit_text(self, user_id: int, question_id: int) -> Reply:
        self.access.require_admin(user_id)
        self.exams.editable_question(question_id)
        self.tracker.begin(user_id, Flow.EDIT_QUESTION_TEXT, Step.INPUT, question_id=question_id)
        return screens.prompt("✏️ Enter new question text:")

    def begin_edit_options(self, user_id: int, question_id: int) -> Reply:
        self.access.require_admin(user_id)
        self.exams.editable_question(question_id)
        self.tracker.begin(user_id, Flow.EDIT_QUESTION_OPTIONS, Step.INPUT, question_id=question_id)
        return screens.prompt("✏️ Enter new options (one per line, minimum 2):")

    def begin_edit_explanation(self, user_id: int, question_id: int) -> Reply:
        self.access.require_admin(user_id)
        self.exams.editable_question(question_id)
        self.tracker.begin(user_id, Flow.EDIT_QUESTION_EXPLANATION, Step.INPUT, question_id=question_id)
        return screens.prompt("✏️ Enter new explanation (or \"-\" to remove):")

    def begin_upload(self, user_id: int, exam_id: int) -> Reply:
        self.access.require_admin(user_id)
        self.exams.pending_exam(exam_id)
        self.tracker.begin(user_id, Flow.UPLOAD_QUESTIONS, Step.FILE, exam_id=exam_id)
        return screens.upload_instructions()

    def begin_add_admin(self, user_id: int) -> Reply:
        self.access.require_super_admin(user_id)
        self.tracker.begin(user_id, Flow.ADD_ADMIN, Step.INPUT)
        return screens.prompt("👮 Send the numeric Telegram user ID of the new admin:")

    # ===================== INPUT HANDLING =====================

    def handle_text(self, user_id: int, text: str) -> Optional[List[Reply]]:
        """Apply ``text`` to the current step; None when the user has no open flow."""
        state = self.tracker.get(user_id)
        if state is None:
            return None
        handler = self._text_handlers().get((state.flow, state.step))
        if handler is None:
            return None
        try:
            return handler(user_id, state, text)
        except ValidationError as e:
            return [Reply(str(e))]
        except ExamBotError as e:
            self.tracker.finish(user_id)
            return [Reply(str(e))]

    def _text_handlers(self):
        return {
            (Flow.CREATE_EXAM, Step.NAME): self._exam_name,
            (Flow.CREATE_EXAM, Step.START_TIME): self._exam_start_time,
            (Flow.ADD_QUESTION, Step.TEXT): self._question_text,
            (Flow.ADD_QUESTION, Step.OPTIONS): self._question_options,
            (Flow.ADD_QUESTION, Step.EXPLANATION): self._question_explanation,
            (Flow.EDIT_QUESTION_TEXT, Step.INPUT): self._edit_text,
            (Flow.EDIT_QUESTION_OPTIONS, Step.INPUT): self._edit_options,
            (Flow.EDIT_QUESTION_EXPLANATION, Step.INPUT): self._edit_explanation,
            (Flow.ADD_ADMIN, Step.INPUT): self._add_admin,
        }

    def _exam_name(self, user_id, state, text):
        name = text.strip()
        if not name:
            raise ValidationError("❌ Exam name cannot be empty. Enter exam name:")
        self.tracker.advance(user_id, Step.START_TIME, exam_name=name)
        return [Reply("⏰ Enter start time (minutes from now, or 0 for immediate):")]

    def _exam_start_time(self, user_id, state, text):
        minutes = parse_start_offset(text)
        exam = self.exams.create_exam(state.data["exam_name"], minutes, user_id)
        self.tracker.finish(user_id)
        return [screens.exam_created(exam)]

    def _question_text(self, user_id, state, text):
        question_text = text.strip()
        if not question_text:
            raise ValidationError("❌ Question text cannot be empty. Enter question text:")
        self.tracker.advance(user_id, Step.OPTIONS, question_text=question_text)
        return [Reply("📝 Enter options (one per line, minimum 2):")]

    def _question_options(self, user_id, state, text):
        options = parse_options(text)
        self.tracker.advance(user_id, Step.CORRECT, options=options)
        return [screens.correct_option_picker(options, "correct", state.data["exam_id"], "Select correct answer:")]

    def _question_explanation(self, user_id, state, text):
        data = state.data
        self.exams.add_question(
            data["exam_id"],
            data["question_text"],
            data["options"],
            data["correct_option"],
            parse_explanation(text),
        )
        self.tracker.finish(user_id)
        return [screens.question_added(data["exam_id"])]

    def _edit_text(self, user_id, state, text):
        question = self.exams.edit_question_text(state.data["question_id"], text)
        self.tracker.finish(user_id)
        return [Reply("✅ Question text updated!"), screens.question_card(question)]

    def _edit_options(self, user_id, state, text):
        edit = self.exams.edit_question_options(state.data["question_id"], parse_options(text))
        self.tracker.finish(user_id)
        replies = [Reply("✅ Options updated!")]
        if edit.correct_reset:
            replies.append(Reply("⚠️ Correct answer was reset to option 1. Please update it."))
        replies.append(screens.question_card(edit.question))
        return replies

    def _edit_explanation(self, user_id, state, text):
        question = self.exams.edit_question_explanation(state.data["question_id"], parse_explanation(text))
        self.tracker.finish(user_id)
        return [Reply("✅ Explanation updated!"), screens.question_card(question)]

    def _add_admin(self, user_id, state, text):
        new_admin_id = self.access.parse_admin_id(text)
        try:
            self.access.grant_admin(new_admin_id, user_id)
        except AlreadyExists as e:
            self.tracker.finish(user_id)
            return [Reply(str(e))]
        self.tracker.finish(user_id)
        return [Reply(f"✅ User <code>{new_admin_id}</code> is now an admin."),
                screens.admin_list(self.access.authorities())]

    def choose_correct(self, user_id: int, exam_id: int, index: int) -> Optional[Reply]:
        """Option pick from the inline keyboard shown at the ``correct`` step."""
        state = self.tracker.get(user_id)
        if state is None or state.flow != Flow.ADD_QUESTION or state.step != Step.CORRECT:
            return None
        if state.data.get("exam_id") != exam_id or not 0 <= index < len(state.data["options"]):
            return None
        self.tracker.advance(user_id, Step.EXPLANATION, correct_option=index)
        return Reply("💡 Enter explanation (or \"-\" to skip):")

    async def handle_document(self, user_id: int, file_id: str, file_name: Optional[str]) -> Optional[List[Reply]]:
        state = self.tracker.get(user_id)
        if state is None or state.flow != Flow.UPLOAD_QUESTIONS:
            return None
        if not (file_name or "").lower().endswith(".txt"):
            return [Reply("❌ Please upload a .txt file.")]

        exam_id = state.data["exam_id"]
        try:
            self.exams.pending_exam(exam_id)
        except ExamBotError as e:
            self.tracker.finish(user_id)
            return [Reply(str(e))]

        try:
            raw = await self.messenger.fetch_file(file_id)
        except DELIVERY_ERRORS as e:
            logger.warning("Download of %s for exam %s failed: %s", file_name, exam_id, e)
            return [Reply("❌ Error downloading file. Please try again.")]
        text = raw.decode("utf-8-sig", errors="replace")

        added = failed = 0
        parsed = 0
        for question in parse_questions(text):
            parsed += 1
            try:
                self.exams.add_question(
                    exam_id,
                    question.question_text,
                    question.options,
                    question.correct_option,
                    question.explanation,
                )
            except (ExamBotError, SQLAlchemyError):
                logger.exception("Error inserting question into exam %s", exam_id)
                failed += 1
            else:
                added += 1

        if parsed == 0:
            return [Reply("❌ No valid questions found in file. Please check the format.")]

        self.tracker.finish(user_id)
        logger.info("Imported %s questions into exam %s (%s failed)", added, exam_id, failed)
        return [Reply(screens.upload_report(added, failed), screens.authoring_keyboard(exam_id, first=False))]
