"""Poll answer ingestion. The first answer per (user, question) wins."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .models import Answer, ExamStatus
from .store import Store

logger = logging.getLogger(__name__)


def record_answer(store: Store, poll_id: str, user_id: int, option_ids: Sequence[int]) -> Optional[Answer]:
    """Store the vote if it is the user's first for that question.

    Unknown polls, exams that are not active, retractions (no options) and
    repeated votes are ignored and return ``None``. Duplicate concurrent votes
    are settled by the unique constraint on the answers table.
    """
    question = store.question_for_poll(poll_id)
    if question is None:
        return None

    exam = store.get_exam(question.exam_id)
    if exam is None or exam.status != ExamStatus.ACTIVE:
        return None

    if not option_ids:
        return None

    if store.get_answer(user_id, question.id) is not None:
        return None

    selected = option_ids[0]
    if not 0 <= selected < len(question.options):
        return None

    answer = store.add_answer(user_id, question, selected)
    if answer is None:
        logger.debug("Duplicate answer from %s for question %s ignored", user_id, question.id)
        return None
    return answer
