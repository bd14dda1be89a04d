"""SQLModel tables for exams, questions, participants, answers and authorities."""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, BigInteger, Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

MAX_OPTIONS = 10
MIN_OPTIONS = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AwareDateTime(TypeDecorator):
    """UTC timestamps that always come back timezone-aware.

    SQLite has no time zone support, so values are written there as naive UTC and
    get ``timezone.utc`` attached again on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def timestamp(nullable: bool = False, **kwargs):
    return Field(sa_column=Column(AwareDateTime(), nullable=nullable), **kwargs)


class ExamStatus:
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"

    ALL = (PENDING, ACTIVE, ENDED)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    start_time: datetime = timestamp()
    end_time: Optional[datetime] = timestamp(nullable=True, default=None)
    status: str = Field(default=ExamStatus.PENDING, index=True)
    created_by: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    # None means unrestricted: open to private chats and every authorized group.
    target_chat_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    created_at: datetime = timestamp(default_factory=utcnow)


class Question(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_text: str
    options: List[str] = Field(sa_column=Column(JSON, nullable=False))
    correct_option: int
    explanation: Optional[str] = None
    poll_id: Optional[str] = Field(default=None, index=True)


class Participant(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "exam_id", name="uq_participant_user_exam"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    exam_id: int = Field(foreign_key="exam.id", index=True)
    username: Optional[str] = None
    first_name: Optional[str] = None
    joined_at: datetime = timestamp(default_factory=utcnow)


class Answer(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("user_id", "exam_id", "question_id", name="uq_answer_user_exam_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    selected_option: int
    answered_at: datetime = timestamp(default_factory=utcnow)


class PollDelivery(SQLModel, table=True):
    """One row per poll sent to a participant; maps the poll id back to its question."""

    __table_args__ = (UniqueConstraint("poll_id", name="uq_delivery_poll"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    poll_id: str
    question_id: int = Field(foreign_key="question.id", index=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    user_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    sent_at: datetime = timestamp(default_factory=utcnow)


class Admin(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", name="uq_admin_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    username: Optional[str] = None
    first_name: Optional[str] = None
    added_by: int = Field(sa_column=Column(BigInteger, nullable=False))
    added_at: datetime = timestamp(default_factory=utcnow)


class AuthorizedGroup(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("chat_id", name="uq_group_chat"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    chat_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    title: Optional[str] = None
    added_by: int = Field(sa_column=Column(BigInteger, nullable=False))
    added_at: datetime = timestamp(default_factory=utcnow)
