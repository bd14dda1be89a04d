"""Read-only aggregation of answers: leaderboard, reports, analytics, exports."""

from __future__ import annotations

import csv
import io
import re
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from openpyxl import Workbook

from .errors import NotFoundError
from .models import Answer, Exam, Participant, Question
from .store import Store

# Participants who answered nothing sort after every real timestamp.
NEVER = datetime.max.replace(tzinfo=timezone.utc)
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
EXPORT_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)
ZIP_EPOCH = datetime(1980, 1, 1)

_CORE_DATES_RE = re.compile(rb"(<dcterms:(created|modified)[^>]*>)[^<]*(</dcterms:\2>)")

Cell = Union[str, int]


def percentage(correct: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(correct / total * 100, 1)


def display_name(participant: Participant) -> str:
    return participant.first_name or participant.username or "User"


@dataclass(slots=True)
class AnswerCell:
    question: Question
    answer: Optional[Answer] = None

    @property
    def answered(self) -> bool:
        return self.answer is not None

    @property
    def is_correct(self) -> bool:
        return self.answer is not None and self.answer.selected_option == self.question.correct_option

    @property
    def selected_text(self) -> Optional[str]:
        if self.answer is None:
            return None
        options = self.question.options
        if 0 <= self.answer.selected_option < len(options):
            return options[self.answer.selected_option]
        return None

    @property
    def correct_text(self) -> str:
        return self.question.options[self.question.correct_option]


@dataclass(slots=True)
class ParticipantReport:
    participant: Participant
    cells: List[AnswerCell]

    @property
    def correct(self) -> int:
        return sum(1 for cell in self.cells if cell.is_correct)

    @property
    def answered(self) -> int:
        return sum(1 for cell in self.cells if cell.answered)

    @property
    def total(self) -> int:
        return len(self.cells)

    @property
    def percentage(self) -> float:
        return percentage(self.correct, self.total)

    @property
    def first_answer_time(self) -> Optional[datetime]:
        times = [cell.answer.answered_at for cell in self.cells if cell.answer is not None]
        return min(times) if times else None


@dataclass(slots=True)
class LeaderboardRow:
    rank: int
    user_id: int
    name: str
    username: Optional[str]
    correct: int
    total: int
    percentage: float
    first_answer_time: Optional[datetime]


@dataclass(slots=True)
class QuestionStats:
    number: int
    question: Question
    counts: List[int]

    @property
    def total_answers(self) -> int:
        return sum(self.counts)

    @property
    def correct_count(self) -> int:
        return self.counts[self.question.correct_option]

    @property
    def correct_rate(self) -> float:
        return percentage(self.correct_count, self.total_answers)

    def option_rate(self, index: int) -> float:
        return percentage(self.counts[index], self.total_answers)


@dataclass(slots=True)
class PersonalResult:
    exam: Exam
    cells: List[AnswerCell]

    @property
    def correct(self) -> int:
        return sum(1 for cell in self.cells if cell.is_correct)

    @property
    def wrong(self) -> int:
        return len(self.cells) - self.correct

    @property
    def total(self) -> int:
        return len(self.cells)

    @property
    def percentage(self) -> float:
        return percentage(self.correct, self.total)


@dataclass(slots=True)
class ExamSnapshot:
    exam: Exam
    questions: List[Question]
    participants: List[Participant]
    answers: Dict[int, Dict[int, Answer]] = field(default_factory=dict)  # user_id -> question_id -> answer

    def cells_for(self, user_id: int) -> List[AnswerCell]:
        by_question = self.answers.get(user_id, {})
        return [AnswerCell(question=q, answer=by_question.get(q.id)) for q in self.questions]


class ResultsEngine:
    def __init__(self, store: Store):
        self.store = store

    def snapshot(self, exam_id: int) -> ExamSnapshot:
        exam = self.store.get_exam(exam_id)
        if exam is None:
            raise NotFoundError("❌ Exam not found.")
        snapshot = ExamSnapshot(
            exam=exam,
            questions=self.store.list_questions(exam_id),
            participants=self.store.list_participants(exam_id),
        )
        for answer in self.store.list_answers(exam_id):
            snapshot.answers.setdefault(answer.user_id, {}).setdefault(answer.question_id, answer)
        return snapshot

    def detailed_report(self, exam_id: int) -> List[ParticipantReport]:
        snapshot = self.snapshot(exam_id)
        return [ParticipantReport(p, snapshot.cells_for(p.user_id)) for p in snapshot.participants]

    def leaderboard(self, exam_id: int) -> List[LeaderboardRow]:
        reports = self.detailed_report(exam_id)
        reports.sort(key=lambda r: (-r.correct, r.first_answer_time or NEVER, r.participant.id))
        return [
            LeaderboardRow(
                rank=rank,
                user_id=r.participant.user_id,
                name=display_name(r.participant),
                username=r.participant.username,
                correct=r.correct,
                total=r.total,
                percentage=r.percentage,
                first_answer_time=r.first_answer_time,
            )
            for rank, r in enumerate(reports, start=1)
        ]

    def question_analytics(self, exam_id: int) -> List[QuestionStats]:
        snapshot = self.snapshot(exam_id)
        stats = []
        for number, question in enumerate(snapshot.questions, start=1):
            counts = [0] * len(question.options)
            for by_question in snapshot.answers.values():
                answer = by_question.get(question.id)
                if answer is not None and 0 <= answer.selected_option < len(counts):
                    counts[answer.selected_option] += 1
            stats.append(QuestionStats(number=number, question=question, counts=counts))
        return stats

    def personal_result(self, exam_id: int, user_id: int) -> PersonalResult:
        snapshot = self.snapshot(exam_id)
        return PersonalResult(exam=snapshot.exam, cells=snapshot.cells_for(user_id))

    def export_table(self, exam_id: int) -> List[List[Cell]]:
        snapshot = self.snapshot(exam_id)
        header: List[Cell] = ["Name", "Username"]
        for number in range(1, len(snapshot.questions) + 1):
            header += [f"Q{number} Answer", f"Q{number} Status", f"Q{number} Time"]
        header += ["Total Correct", "Total Questions", "Percentage", "First Answer Time"]

        rows = [header]
        for participant in snapshot.participants:
            report = ParticipantReport(participant, snapshot.cells_for(participant.user_id))
            row: List[Cell] = [participant.first_name or "N/A", participant.username or "N/A"]
            for cell in report.cells:
                if cell.answered:
                    row += [
                        cell.selected_text or "N/A",
                        "Correct" if cell.is_correct else "Wrong",
                        cell.answer.answered_at.strftime(TIME_FORMAT),
                    ]
                else:
                    row += ["No Answer", "Wrong", "N/A"]
            first = report.first_answer_time
            row += [
                report.correct,
                report.total,
                f"{report.percentage:.1f}%",
                first.strftime(TIME_FORMAT) if first else "N/A",
            ]
            rows.append(row)
        return rows


def table_to_csv(table: List[List[Cell]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(table)
    return buffer.getvalue().encode("utf-8")


def table_to_xlsx(
    table: List[List[Cell]],
    sheet_title: str = "Results",
    stamp: Optional[datetime] = None,
) -> bytes:
    """Excel rendition of ``table``; the same table and stamp give the same bytes."""
    stamp = (stamp or EXPORT_EPOCH).astimezone(timezone.utc).replace(tzinfo=None, microsecond=0)
    workbook = Workbook()
    workbook.properties.created = stamp
    workbook.properties.modified = stamp
    sheet = workbook.active
    sheet.title = sheet_title
    for row in table:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return _freeze_archive(buffer.getvalue(), stamp)


def _freeze_archive(content: bytes, stamp: datetime) -> bytes:
    # openpyxl writes the save time into core.xml and every zip entry.
    w3cdtf = stamp.strftime("%Y-%m-%dT%H:%M:%SZ").encode("ascii")
    date_time = max(stamp, ZIP_EPOCH).timetuple()[:6]
    out = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(content)) as source, zipfile.ZipFile(out, "w") as target:
        for item in source.infolist():
            data = source.read(item.filename)
            if item.filename == "docProps/core.xml":
                data = _CORE_DATES_RE.sub(rb"\g<1>" + w3cdtf + rb"\g<3>", data)
            info = zipfile.ZipInfo(item.filename, date_time=date_time)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o600 << 16
            target.writestr(info, data)
    return out.getvalue()
