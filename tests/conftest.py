import asyncio
from itertools import count

import pytest
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from aiogram.methods import GetFile, SendMessage

from exam_bot.bot import build_services
from exam_bot.config import Settings
from exam_bot.store import Store, make_engine

SUPER_ADMIN = 1000
OTHER_ADMIN = 2000
STUDENT = 5001
GROUP_CHAT = -100500


class FakeMessenger:
    """Records everything the services try to send."""

    def __init__(self):
        self.messages = []
        self.polls = []
        self.documents = []
        self.deleted = []
        self.files = {}
        self.unreachable = set()
        self.oversized = set()
        self._ids = count(1)

    def _check(self, chat_id):
        if chat_id in self.unreachable:
            raise TelegramForbiddenError(
                method=SendMessage(chat_id=chat_id, text="-"),
                message="Forbidden: bot was blocked by the user",
            )

    async def send_message(self, chat_id, text, reply_markup=None):
        self._check(chat_id)
        self.messages.append((chat_id, text, reply_markup))
        return next(self._ids)

    async def send_poll(self, chat_id, question, options):
        self._check(chat_id)
        poll_id = f"poll-{next(self._ids)}"
        self.polls.append((chat_id, question, list(options), poll_id))
        return poll_id

    async def delete_message(self, chat_id, message_id):
        self.deleted.append((chat_id, message_id))

    async def fetch_file(self, file_id):
        if file_id in self.oversized:
            raise TelegramBadRequest(method=GetFile(file_id=file_id), message="Bad Request: file is too big")
        return self.files[file_id]

    async def send_document(self, chat_id, filename, content, caption=""):
        self._check(chat_id)
        self.documents.append((chat_id, filename, content))

    def texts_to(self, chat_id):
        return [text for target, text, _ in self.messages if target == chat_id]

    def poll_ids_for(self, chat_id):
        return [poll_id for target, _, _, poll_id in self.polls if target == chat_id]


@pytest.fixture()
def store():
    store = Store(make_engine("sqlite://"))
    store.create_all()
    return store


@pytest.fixture()
def messenger():
    return FakeMessenger()


@pytest.fixture()
def services(store, messenger):
    return build_services(Settings(admin_ids=(SUPER_ADMIN,)), messenger, store=store)


@pytest.fixture()
def exam_with_questions(services):
    """A pending exam owned by the super admin with two questions."""
    exam = services.exams.create_exam("Math", 0, SUPER_ADMIN)
    services.exams.add_question(exam.id, "2+2?", ["3", "4", "5"], 1)
    services.exams.add_question(exam.id, "3*3?", ["6", "9"], 1, "Multiplication")
    return exam


@pytest.fixture()
def active_exam(services, exam_with_questions):
    asyncio.run(services.exams.start_exam(exam_with_questions.id))
    return services.exams.get_exam(exam_with_questions.id)
