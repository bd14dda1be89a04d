"""Data store gateway: thin CRUD over the SQLModel tables.

Every public method opens its own session and commits before returning, so each
call is one atomic store operation. Uniqueness conflicts on participants, answers,
admins, groups and poll deliveries are reported as ``None``/``False`` returns.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from .models import (
    Admin,
    Answer,
    AuthorizedGroup,
    Exam,
    Participant,
    PollDelivery,
    Question,
    utcnow,
)

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in {"sqlite://", "sqlite:///"}:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)
    return create_engine(database_url, echo=False)


class Store:
    def __init__(self, engine: Engine):
        self.engine = engine

    def create_all(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _insert(self, row):
        with self._session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def _insert_unique(self, row):
        with self._session() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            session.refresh(row)
            return row

    # ===================== EXAMS =====================

    def add_exam(self, name: str, start_time: datetime, created_by: int) -> Exam:
        return self._insert(Exam(name=name, start_time=start_time, created_by=created_by))

    def get_exam(self, exam_id: int) -> Optional[Exam]:
        with self._session() as session:
            return session.get(Exam, exam_id)

    def list_exams(
        self,
        created_by: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[Exam]:
        statement = select(Exam)
        if created_by is not None:
            statement = statement.where(Exam.created_by == created_by)
        if status is not None:
            statement = statement.where(Exam.status == status)
        statement = statement.order_by(Exam.created_at.desc(), Exam.id.desc())
        with self._session() as session:
            return list(session.exec(statement).all())

    def exams_joined_by(self, user_id: int, status: Optional[str] = None) -> List[Exam]:
        statement = (
            select(Exam)
            .join(Participant, Participant.exam_id == Exam.id)
            .where(Participant.user_id == user_id)
        )
        if status is not None:
            statement = statement.where(Exam.status == status)
        statement = statement.order_by(Exam.created_at.desc(), Exam.id.desc())
        with self._session() as session:
            return list(session.exec(statement).all())

    def transition_exam(self, exam_id: int, from_statuses: Iterable[str], to_status: str, **values) -> bool:
        """Compare-and-set the exam status; True only for the caller that changed it."""
        statement = (
            update(Exam)
            .where(Exam.id == exam_id, Exam.status.in_(list(from_statuses)))
            .values(status=to_status, **values)
        )
        with self._session() as session:
            result = session.exec(statement)
            session.commit()
            return result.rowcount == 1

    def delete_exam(self, exam_id: int) -> bool:
        with self._session() as session:
            exam = session.get(Exam, exam_id)
            if exam is None:
                return False
            session.exec(delete(Answer).where(Answer.exam_id == exam_id))
            session.exec(delete(PollDelivery).where(PollDelivery.exam_id == exam_id))
            session.exec(delete(Participant).where(Participant.exam_id == exam_id))
            session.exec(delete(Question).where(Question.exam_id == exam_id))
            session.delete(exam)
            session.commit()
            return True

    # ===================== QUESTIONS =====================

    def add_question(
        self,
        exam_id: int,
        question_text: str,
        options: List[str],
        correct_option: int,
        explanation: Optional[str] = None,
    ) -> Question:
        return self._insert(
            Question(
                exam_id=exam_id,
                question_text=question_text,
                options=list(options),
                correct_option=correct_option,
                explanation=explanation,
            )
        )

    def get_question(self, question_id: int) -> Optional[Question]:
        with self._session() as session:
            return session.get(Question, question_id)

    def list_questions(self, exam_id: int) -> List[Question]:
        statement = select(Question).where(Question.exam_id == exam_id).order_by(Question.id)
        with self._session() as session:
            return list(session.exec(statement).all())

    def count_questions(self, exam_id: int) -> int:
        statement = select(func.count()).select_from(Question).where(Question.exam_id == exam_id)
        with self._session() as session:
            return session.exec(statement).one()

    def update_question(self, question_id: int, **fields) -> Optional[Question]:
        with self._session() as session:
            question = session.get(Question, question_id)
            if question is None:
                return None
            for key, value in fields.items():
                setattr(question, key, value)
            session.add(question)
            session.commit()
            session.refresh(question)
            return question

    def delete_question(self, question_id: int) -> bool:
        with self._session() as session:
            question = session.get(Question, question_id)
            if question is None:
                return False
            session.exec(delete(Answer).where(Answer.question_id == question_id))
            session.exec(delete(PollDelivery).where(PollDelivery.question_id == question_id))
            session.delete(question)
            session.commit()
            return True

    # ===================== PARTICIPANTS =====================

    def add_participant(
        self,
        exam_id: int,
        user_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> Optional[Participant]:
        return self._insert_unique(
            Participant(exam_id=exam_id, user_id=user_id, username=username, first_name=first_name)
        )

    def get_participant(self, exam_id: int, user_id: int) -> Optional[Participant]:
        statement = select(Participant).where(
            Participant.exam_id == exam_id, Participant.user_id == user_id
        )
        with self._session() as session:
            return session.exec(statement).first()

    def remove_participant(self, exam_id: int, user_id: int) -> bool:
        statement = delete(Participant).where(Participant.exam_id == exam_id, Participant.user_id == user_id)
        with self._session() as session:
            result = session.exec(statement)
            session.commit()
            return result.rowcount > 0

    def list_participants(self, exam_id: int) -> List[Participant]:
        statement = select(Participant).where(Participant.exam_id == exam_id).order_by(Participant.id)
        with self._session() as session:
            return list(session.exec(statement).all())

    # ===================== POLL DELIVERIES =====================

    def record_delivery(self, poll_id: str, question: Question, user_id: int) -> Optional[PollDelivery]:
        delivery = self._insert_unique(
            PollDelivery(
                poll_id=poll_id,
                question_id=question.id,
                exam_id=question.exam_id,
                user_id=user_id,
            )
        )
        with self._session() as session:
            session.exec(update(Question).where(Question.id == question.id).values(poll_id=poll_id))
            session.commit()
        return delivery

    def question_for_poll(self, poll_id: str) -> Optional[Question]:
        statement = (
            select(Question)
            .join(PollDelivery, PollDelivery.question_id == Question.id)
            .where(PollDelivery.poll_id == poll_id)
        )
        with self._session() as session:
            question = session.exec(statement).first()
            if question is None:
                question = session.exec(select(Question).where(Question.poll_id == poll_id)).first()
            return question

    # ===================== ANSWERS =====================

    def add_answer(
        self,
        user_id: int,
        question: Question,
        selected_option: int,
        answered_at: Optional[datetime] = None,
    ) -> Optional[Answer]:
        return self._insert_unique(
            Answer(
                user_id=user_id,
                exam_id=question.exam_id,
                question_id=question.id,
                selected_option=selected_option,
                answered_at=answered_at or utcnow(),
            )
        )

    def get_answer(self, user_id: int, question_id: int) -> Optional[Answer]:
        statement = select(Answer).where(Answer.user_id == user_id, Answer.question_id == question_id)
        with self._session() as session:
            return session.exec(statement).first()

    def list_answers(self, exam_id: int, user_id: Optional[int] = None) -> List[Answer]:
        statement = select(Answer).where(Answer.exam_id == exam_id)
        if user_id is not None:
            statement = statement.where(Answer.user_id == user_id)
        statement = statement.order_by(Answer.answered_at, Answer.id)
        with self._session() as session:
            return list(session.exec(statement).all())

    # ===================== ADMINS =====================

    def add_admin(
        self,
        user_id: int,
        added_by: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> Optional[Admin]:
        return self._insert_unique(
            Admin(user_id=user_id, added_by=added_by, username=username, first_name=first_name)
        )

    def get_admin(self, user_id: int) -> Optional[Admin]:
        with self._session() as session:
            return session.exec(select(Admin).where(Admin.user_id == user_id)).first()

    def list_admins(self) -> List[Admin]:
        with self._session() as session:
            return list(session.exec(select(Admin).order_by(Admin.added_at, Admin.id)).all())

    def remove_admin(self, user_id: int) -> bool:
        with self._session() as session:
            result = session.exec(delete(Admin).where(Admin.user_id == user_id))
            session.commit()
            return result.rowcount > 0

    # ===================== GROUPS =====================

    def add_group(self, chat_id: int, added_by: int, title: Optional[str] = None) -> Optional[AuthorizedGroup]:
        return self._insert_unique(AuthorizedGroup(chat_id=chat_id, added_by=added_by, title=title))

    def get_group(self, chat_id: int) -> Optional[AuthorizedGroup]:
        with self._session() as session:
            return session.exec(select(AuthorizedGroup).where(AuthorizedGroup.chat_id == chat_id)).first()

    def list_groups(self) -> List[AuthorizedGroup]:
        statement = select(AuthorizedGroup).order_by(AuthorizedGroup.added_at, AuthorizedGroup.id)
        with self._session() as session:
            return list(session.exec(statement).all())

    def remove_group(self, chat_id: int) -> bool:
        with self._session() as session:
            result = session.exec(delete(AuthorizedGroup).where(AuthorizedGroup.chat_id == chat_id))
            session.commit()
            return result.rowcount > 0
