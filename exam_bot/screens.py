"""Pure render functions: entity state in, message text and keyboard out."""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import List, Sequence, Union

from aiogram.types import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
)

from .auth import Configured
from .models import AuthorizedGroup, Exam, ExamStatus, Question
from .parser import TEMPLATE

Markup = Union[InlineKeyboardMarkup, ReplyKeyboardMarkup, ReplyKeyboardRemove, None]


@dataclass(slots=True)
class Reply:
    text: str
    reply_markup: Markup = None


# ===================== MENU =====================

class Menu:
    CREATE_EXAM = "📝 Create Exam"
    MY_EXAMS = "📋 My Exams"
    START_EXAM = "▶️ Start Exam"
    END_EXAM = "⏹️ End Exam"
    VIEW_RESULTS = "📊 View Results"
    EDIT_QUESTIONS = "✏️ Edit Questions"
    UPLOAD_QUESTIONS = "📤 Upload Questions"
    DELETE_EXAM = "🗑️ Delete Exam"
    ADMINS = "👮 Admins"
    GROUPS = "👥 Groups"
    ACTIVE_EXAMS = "📚 Active Exams"
    MY_RESULTS = "📈 My Results"

    ALL = (
        CREATE_EXAM, MY_EXAMS, START_EXAM, END_EXAM, VIEW_RESULTS, EDIT_QUESTIONS,
        UPLOAD_QUESTIONS, DELETE_EXAM, ADMINS, GROUPS, ACTIVE_EXAMS, MY_RESULTS,
    )


STATUS_MARK = {
    ExamStatus.PENDING: "⚪",
    ExamStatus.ACTIVE: "🟢",
    ExamStatus.ENDED: "🔴",
}


def main_menu(is_admin: bool, is_super_admin: bool = False) -> ReplyKeyboardMarkup:
    if is_admin:
        rows = [
            [Menu.CREATE_EXAM, Menu.MY_EXAMS],
            [Menu.START_EXAM, Menu.END_EXAM],
            [Menu.VIEW_RESULTS, Menu.EDIT_QUESTIONS],
            [Menu.UPLOAD_QUESTIONS, Menu.DELETE_EXAM],
            [Menu.ADMINS, Menu.GROUPS] if is_super_admin else [Menu.GROUPS],
            [Menu.ACTIVE_EXAMS, Menu.MY_RESULTS],
        ]
    else:
        rows = [[Menu.ACTIVE_EXAMS, Menu.MY_RESULTS]]
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=label) for label in row] for row in rows],
        resize_keyboard=True,
    )


def welcome(is_admin: bool, is_super_admin: bool = False) -> Reply:
    role = "You are an Admin." if is_admin else "You are a User."
    return Reply(
        f"Welcome to Quiz Bot! 🎓\n\n{role}\n\nUse the menu below to navigate.",
        main_menu(is_admin, is_super_admin),
    )


def _button(text: str, data: str) -> List[InlineKeyboardButton]:
    return [InlineKeyboardButton(text=text, callback_data=data)]


def exam_picker(exams: Sequence[Exam], action: str, title: str, show_status: bool = False) -> Reply:
    rows = []
    for exam in exams:
        label = exam.name
        if show_status:
            label = f"{STATUS_MARK.get(exam.status, '')} {exam.name} ({exam.status})"
        rows.append(_button(label, f"{action}:{exam.id}"))
    return Reply(title, InlineKeyboardMarkup(inline_keyboard=rows))


def results_picker(exams: Sequence[Exam], viewer_id: int) -> Reply:
    rows = []
    for exam in exams:
        owner = " (You)" if exam.created_by == viewer_id else f" (Admin: {exam.created_by})"
        rows.append(_button(f"{exam.name}{owner}", f"results:{exam.id}"))
    return Reply("📊 Select exam to view results:", InlineKeyboardMarkup(inline_keyboard=rows))


def exam_list(exams: Sequence[Exam]) -> Reply:
    if not exams:
        return Reply("📋 No exams created yet.")
    lines = ["📋 <b>Your Exams:</b>", ""]
    for exam in exams:
        lines.append(f"{STATUS_MARK.get(exam.status, '')} <b>{html.escape(exam.name)}</b>")
        lines.append(f"   ID: {exam.id} | Status: {exam.status}")
        lines.append("")
    return Reply("\n".join(lines).rstrip())


# ===================== AUTHORING =====================

def authoring_keyboard(exam_id: int, first: bool = True) -> InlineKeyboardMarkup:
    add_label = "➕ Add Question" if first else "➕ Add Another"
    return InlineKeyboardMarkup(inline_keyboard=[[
        InlineKeyboardButton(text=add_label, callback_data=f"add_question:{exam_id}"),
        InlineKeyboardButton(text="✅ Done", callback_data=f"done_exam:{exam_id}"),
    ]])


def exam_created(exam: Exam) -> Reply:
    return Reply(
        f"✅ Exam \"{html.escape(exam.name)}\" created!\n\nNow add questions.",
        authoring_keyboard(exam.id),
    )


def question_added(exam_id: int) -> Reply:
    return Reply("✅ Question added!", authoring_keyboard(exam_id, first=False))


def correct_option_picker(options: Sequence[str], action: str, key: int, title: str) -> Reply:
    lines = [title, ""]
    rows = []
    for idx, option in enumerate(options):
        lines.append(f"{idx + 1}. {html.escape(option)}")
        rows.append(_button(f"{idx + 1}. {option}"[:64], f"{action}:{key}:{idx}"))
    return Reply("\n".join(lines), InlineKeyboardMarkup(inline_keyboard=rows))


def upload_instructions() -> Reply:
    return Reply(
        "📤 <b>Upload Questions File</b>\n\n"
        "Send a .txt file with this format:\n\n"
        f"<pre>{html.escape(TEMPLATE)}</pre>\n"
        "<b>Format Rules:</b>\n"
        "• Start with number and dot (1., 2., etc.)\n"
        "• Options: A., B., C., D. (one per line)\n"
        "• Ans: followed by letter (A, B, C, or D)\n"
        "• Explain: followed by explanation (optional)\n"
        "• Blank line between questions\n\n"
        "Now send your .txt file:",
        InlineKeyboardMarkup(inline_keyboard=[_button("📄 Download template", "template")]),
    )


def upload_report(added: int, failed: int) -> str:
    text = f"✅ Upload complete!\n\n✓ Added: {added} questions\n"
    if failed:
        text += f"✗ Failed: {failed} questions\n"
    return text


def question_list(exam: Exam, questions: Sequence[Question]) -> Reply:
    if not questions:
        return Reply("❌ No questions in this exam to edit.")
    rows = []
    for idx, question in enumerate(questions, start=1):
        preview = question.question_text[:50]
        if len(question.question_text) > 50:
            preview += "..."
        rows.append(_button(f"{idx}. {preview}", f"edit_q:{question.id}"))
    rows.append(_button("« Back", "back_to_menu"))
    return Reply(
        f"✏️ <b>{html.escape(exam.name)}</b>\nSelect question to edit:",
        InlineKeyboardMarkup(inline_keyboard=rows),
    )


def question_card(question: Question) -> Reply:
    lines = ["📝 <b>Current Question:</b>", "", f"<b>Q:</b> {html.escape(question.question_text)}", "", "<b>Options:</b>"]
    for idx, option in enumerate(question.options):
        marker = "✅" if idx == question.correct_option else "▫️"
        lines.append(f"{marker} {idx + 1}. {html.escape(option)}")
    if question.explanation:
        lines.append("")
        lines.append(f"<b>Explanation:</b> {html.escape(question.explanation)}")
    keyboard = InlineKeyboardMarkup(inline_keyboard=[
        _button("✏️ Edit Question Text", f"edit_q_text:{question.id}"),
        _button("✏️ Edit Options", f"edit_q_options:{question.id}"),
        _button("✏️ Change Correct Answer", f"edit_q_correct:{question.id}"),
        _button("✏️ Edit Explanation", f"edit_q_explanation:{question.id}"),
        _button("🗑️ Delete Question", f"delete_q:{question.id}"),
        _button("« Back", f"edit_exam:{question.exam_id}"),
    ])
    return Reply("\n".join(lines), keyboard)


def correct_answer_editor(question: Question) -> Reply:
    reply = correct_option_picker(question.options, "set_correct", question.id, "✏️ Select new correct answer:")
    reply.reply_markup.inline_keyboard.append(_button("« Back", f"edit_q:{question.id}"))
    return reply


def delete_confirmation(exam: Exam, question_count: int, participant_count: int) -> Reply:
    return Reply(
        "⚠️ <b>Confirm Deletion</b>\n\n"
        f"Exam: <b>{html.escape(exam.name)}</b>\n"
        f"Status: {exam.status}\n"
        f"Questions: {question_count}\n"
        f"Participants: {participant_count}\n\n"
        "This will permanently delete the exam and all related data. Are you sure?",
        InlineKeyboardMarkup(inline_keyboard=[[
            InlineKeyboardButton(text="✅ Yes, Delete", callback_data=f"delete_exam:{exam.id}"),
            InlineKeyboardButton(text="❌ Cancel", callback_data="back_to_menu"),
        ]]),
    )


# ===================== PUBLISHING =====================

def target_picker(exam: Exam, groups: Sequence[AuthorizedGroup]) -> Reply:
    rows = [
        _button("🌐 Unrestricted (private chats)", f"publish:{exam.id}:unrestricted"),
        _button("📢 All groups", f"publish:{exam.id}:all"),
    ]
    for group in groups:
        rows.append(_button(f"👥 {group.title or group.chat_id}", f"publish:{exam.id}:{group.chat_id}"))
    return Reply(
        f"▶️ Where should \"{html.escape(exam.name)}\" be published?",
        InlineKeyboardMarkup(inline_keyboard=rows),
    )


def exam_announcement_text(exam: Exam, question_count: int) -> str:
    return (
        "<blockquote>📣 <b>Exam Started</b></blockquote>\n"
        f"<b>{html.escape(exam.name)}</b>\n"
        f"<blockquote>Total Questions: <b>{question_count}</b></blockquote>\n"
        "Press Join to receive the questions in a private chat."
    )


def join_keyboard(exam: Exam) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[_button("📝 Join Exam", f"join_exam:{exam.id}")])


def exam_ended_text(exam: Exam) -> str:
    return f"📢 Exam \"{html.escape(exam.name)}\" has ended! Check your results."


def view_result_keyboard(exam: Exam) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[_button("📈 View Results", f"my_result:{exam.id}")])


def joined(question_count: int) -> str:
    return (
        f"✅ Joined exam! Sending {question_count} questions...\n\n"
        "⚠️ Answer carefully - you won't see results until the exam ends."
    )


# ===================== RESULTS =====================

def _medal(rank: int) -> str:
    return {1: "🥇", 2: "🥈", 3: "🥉"}.get(rank, f"{rank}.")


def results_summary(exam: Exam, rows, question_count: int, viewer_id: int) -> Reply:
    creator = "You" if exam.created_by == viewer_id else f"Admin ID: {exam.created_by}"
    lines = [
        f"📊 <b>Results for \"{html.escape(exam.name)}\"</b>",
        f"👤 Created by: {creator}",
        "",
        f"👥 Participants: {len(rows)}",
        f"❓ Questions: {question_count}",
        "",
        "🏆 <b>Leaderboard:</b>",
        "",
    ]
    for row in rows:
        lines.append(
            f"{_medal(row.rank)} {html.escape(row.name)}: {row.correct}/{row.total} ({row.percentage:.1f}%)"
        )
    keyboard = InlineKeyboardMarkup(inline_keyboard=[
        _button("📋 Detailed Report", f"detailed:{exam.id}"),
        _button("📊 Question Analytics", f"analytics:{exam.id}"),
        _button("📥 Export CSV", f"export_csv:{exam.id}"),
        _button("📥 Export Excel", f"export_xlsx:{exam.id}"),
    ])
    return Reply("\n".join(lines), keyboard)


def detailed_report(exam: Exam, reports) -> str:
    lines = [f"📋 <b>Detailed Results: \"{html.escape(exam.name)}\"</b>", ""]
    for report in reports:
        participant = report.participant
        name = participant.first_name or participant.username or "User"
        lines.append(f"👤 <b>{html.escape(name)}</b>")
        for number, cell in enumerate(report.cells, start=1):
            if cell.answered:
                mark = "✅" if cell.is_correct else "❌"
                when = cell.answer.answered_at.strftime("%H:%M:%S")
                lines.append(f"  {number}. {html.escape(cell.selected_text or '?')} {mark} ({when})")
            else:
                lines.append(f"  {number}. No answer ❌")
        lines.append(f"  <b>Total: {report.correct}/{report.total}</b>")
        lines.append("")
    return "\n".join(lines)


def question_analytics(stats) -> str:
    lines = ["📊 <b>Question Analytics:</b>", ""]
    for stat in stats:
        text = stat.question.question_text
        preview = text[:50] + ("..." if len(text) > 50 else "")
        lines.append(f"<b>Q{stat.number}:</b> {html.escape(preview)}")
        lines.append(f"✅ Correct: {stat.correct_count}/{stat.total_answers} ({stat.correct_rate:.1f}%)")
        for idx, option in enumerate(stat.question.options):
            mark = "✅" if idx == stat.question.correct_option else "❌"
            lines.append(f"  {mark} {html.escape(option)}: {stat.counts[idx]} ({stat.option_rate(idx):.0f}%)")
        lines.append("")
    return "\n".join(lines)


def personal_result(result) -> str:
    header = [
        f"📊 <b>Score: {result.correct}/{result.total} ({result.percentage:.1f}%)</b>",
        f"✅ Correct: {result.correct}",
        f"❌ Wrong: {result.wrong}",
        "",
        f"📈 <b>Your Results: \"{html.escape(result.exam.name)}\"</b>",
        "",
    ]
    body = []
    for number, cell in enumerate(result.cells, start=1):
        body.append(f"<b>Q{number}:</b> {html.escape(cell.question.question_text)}")
        if cell.answered:
            mark = "✅" if cell.is_correct else "❌"
            body.append(f"Your answer: {html.escape(cell.selected_text or '?')} {mark}")
        else:
            body.append("Your answer: Not answered ❌")
        body.append(f"Correct answer: {html.escape(cell.correct_text)}")
        if cell.question.explanation:
            body.append(f"💡 {html.escape(cell.question.explanation)}")
        body.append("")
    return "\n".join(header + body).rstrip()


def chunk_text(text: str, limit: int) -> List[str]:
    """Split on line boundaries so no chunk exceeds ``limit`` characters."""
    chunks: List[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


# ===================== ADMINISTRATION =====================

def admin_list(authorities) -> Reply:
    lines = ["👮 <b>Admins</b>", ""]
    rows = []
    for entry in authorities:
        if isinstance(entry, Configured):
            lines.append(f"⭐ <code>{entry.user_id}</code> (configured)")
        else:
            name = entry.first_name or entry.username or ""
            lines.append(
                f"• <code>{entry.user_id}</code> {html.escape(name)} (added by {entry.granted_by})".rstrip()
            )
            rows.append(_button(f"🗑 Remove {entry.user_id}", f"remove_admin:{entry.user_id}"))
    rows.append(_button("➕ Add Admin", "add_admin"))
    return Reply("\n".join(lines), InlineKeyboardMarkup(inline_keyboard=rows))


def group_list(groups: Sequence[AuthorizedGroup]) -> Reply:
    if not groups:
        return Reply("👥 No authorized groups yet.\nSend /authorize inside a group to add it.")
    lines = ["👥 <b>Authorized Groups</b>", ""]
    rows = []
    for group in groups:
        lines.append(f"• {html.escape(group.title or '')} <code>{group.chat_id}</code>")
        rows.append(_button(f"🗑 Revoke {group.title or group.chat_id}", f"remove_group:{group.chat_id}"))
    return Reply("\n".join(lines), InlineKeyboardMarkup(inline_keyboard=rows))


def prompt(text: str, remove_keyboard: bool = False) -> Reply:
    return Reply(text, ReplyKeyboardRemove() if remove_keyboard else None)
