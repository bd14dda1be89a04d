"""aiogram router: menu texts, commands, inline callbacks, uploads and poll answers."""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Iterable

from aiogram import F, Router
from aiogram.enums import ChatType, ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command, ExceptionTypeFilter
from aiogram.types import CallbackQuery, ErrorEvent, Message, PollAnswer

from . import screens
from .answers import record_answer
from .auth import AccessControl
from .config import Settings
from .dialog import DialogEngine, DialogTracker
from .errors import ExamBotError, InvalidState, PermissionDenied
from .lifecycle import ExamService, PublishTarget
from .messenger import Messenger
from .models import Exam, ExamStatus
from .parser import TEMPLATE
from .results import ResultsEngine, table_to_csv, table_to_xlsx
from .screens import Menu, Reply
from .store import Store

logger = logging.getLogger(__name__)

router = Router()

GROUP_CHATS = {ChatType.GROUP, ChatType.SUPERGROUP}


@dataclass(slots=True)
class Services:
    settings: Settings
    store: Store
    messenger: Messenger
    access: AccessControl
    exams: ExamService
    results: ResultsEngine
    tracker: DialogTracker
    dialog: DialogEngine


# ===================== HELPERS =====================

async def send(message: Message, replies: Iterable[Reply]) -> None:
    for reply in replies:
        await message.answer(reply.text, reply_markup=reply.reply_markup, parse_mode=ParseMode.HTML)


async def send_long(message: Message, text: str, limit: int) -> None:
    for chunk in screens.chunk_text(text, limit):
        await message.answer(chunk, parse_mode=ParseMode.HTML)


def callback_args(call: CallbackQuery) -> list[int]:
    return [int(part) for part in call.data.split(":")[1:]]


def owned_exam(services: Services, exam_id: int, user_id: int) -> Exam:
    services.access.require_admin(user_id)
    exam = services.exams.get_exam(exam_id)
    if exam.created_by != user_id and not services.access.is_super_admin(user_id):
        raise PermissionDenied("❌ Only the exam's creator can do this.")
    return exam


def menu_for(services: Services, user_id: int):
    return screens.main_menu(services.access.is_admin(user_id), services.access.is_super_admin(user_id))


# ===================== ERRORS =====================

@router.error(ExceptionTypeFilter(ExamBotError), F.update.callback_query.as_("call"))
async def on_callback_error(event: ErrorEvent, call: CallbackQuery):
    try:
        await call.answer(str(event.exception), show_alert=True)
    except TelegramBadRequest:
        await call.message.answer(str(event.exception), parse_mode=ParseMode.HTML)


@router.error(ExceptionTypeFilter(ExamBotError), F.update.message.as_("message"))
async def on_message_error(event: ErrorEvent, message: Message):
    await message.answer(str(event.exception), parse_mode=ParseMode.HTML)


@router.error()
async def on_unexpected_error(event: ErrorEvent):
    logger.error("Unhandled error in %s update", event.update.event_type, exc_info=event.exception)
    call = event.update.callback_query
    if call is None:
        return
    try:
        await call.answer(str(ExamBotError()), show_alert=True)
    except TelegramBadRequest as e:
        logger.debug("Could not answer callback %s: %s", call.id, e)


# ===================== COMMANDS =====================

@router.message(Command("start", "menu"))
async def cmd_start(message: Message, services: Services):
    user_id = message.from_user.id
    services.tracker.finish(user_id)

    if message.chat.type in GROUP_CHATS:
        if services.access.is_group_authorized(message.chat.id):
            await message.reply("ℹ️ Exam bot is ready.\n📚 Use /exams to see active exams.")
        return

    await send(message, [screens.welcome(services.access.is_admin(user_id), services.access.is_super_admin(user_id))])


@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(
        "📖 <b>Exam Bot Help</b>\n\n"
        "👤 <b>Private chat</b>\n"
        "/start, /menu - Main menu\n"
        "/cancel - Abandon the current input\n\n"
        "👥 <b>Group Commands</b>\n"
        "/authorize - Allow this group to use the bot (admin)\n"
        "/exams - Active exams for this group\n\n"
        "📊 <b>Exam Flow</b>\n"
        "- Admin creates an exam and adds or uploads questions\n"
        "- Admin starts it for private chats, one group or all groups\n"
        "- Participants join and answer the polls in a private chat\n"
        "- Only the first vote on each question counts\n"
        "- Results are available after the exam ends\n",
        parse_mode=ParseMode.HTML,
    )


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, services: Services):
    services.tracker.finish(message.from_user.id)
    await message.answer("👍 Cancelled.", reply_markup=menu_for(services, message.from_user.id))


@router.message(Command("authorize"), F.chat.type.in_(GROUP_CHATS))
async def cmd_authorize(message: Message, services: Services):
    services.access.authorize_group(message.chat.id, message.from_user.id, title=message.chat.title)
    await message.reply("✅ This group can now receive exams.")


@router.message(Command("exams"), F.chat.type.in_(GROUP_CHATS))
async def cmd_group_exams(message: Message, services: Services):
    if not services.access.is_group_authorized(message.chat.id):
        return
    exams = services.exams.joinable_exams(message.chat.id)
    if not exams:
        await message.reply("📚 No active exams at the moment.")
        return
    await send(message, [screens.exam_picker(exams, "join_exam", "📚 Select an exam to join:")])


# ===================== MENU =====================

@router.message(F.chat.type == ChatType.PRIVATE, F.text.in_(Menu.ALL))
async def on_menu(message: Message, services: Services):
    user_id = message.from_user.id
    # Switching menus abandons any half-finished dialog.
    services.tracker.finish(user_id)
    store = services.store
    choice = message.text

    if choice == Menu.ACTIVE_EXAMS:
        exams = services.exams.joinable_exams()
        if not exams:
            await message.answer("📚 No active exams at the moment.")
            return
        await send(message, [screens.exam_picker(exams, "join_exam", "📚 Select an exam to join:")])
        return

    if choice == Menu.MY_RESULTS:
        exams = store.exams_joined_by(user_id, ExamStatus.ENDED)
        if not exams:
            await message.answer("📈 No completed exams yet.")
            return
        await send(message, [screens.exam_picker(exams, "my_result", "📈 Select exam to view your results:")])
        return

    if choice == Menu.ADMINS:
        services.access.require_super_admin(user_id)
        await send(message, [screens.admin_list(services.access.authorities())])
        return

    services.access.require_admin(user_id)

    if choice == Menu.CREATE_EXAM:
        await send(message, [services.dialog.begin_create_exam(user_id)])
    elif choice == Menu.MY_EXAMS:
        await send(message, [screens.exam_list(store.list_exams(created_by=user_id))])
    elif choice == Menu.START_EXAM:
        exams = store.list_exams(created_by=user_id, status=ExamStatus.PENDING)
        if not exams:
            await message.answer("❌ No pending exams to start.")
            return
        await send(message, [screens.exam_picker(exams, "start_exam", "▶️ Select exam to start:")])
    elif choice == Menu.END_EXAM:
        exams = store.list_exams(created_by=user_id, status=ExamStatus.ACTIVE)
        if not exams:
            await message.answer("❌ No active exams to end.")
            return
        await send(message, [screens.exam_picker(exams, "end_exam", "⏹️ Select exam to end:")])
    elif choice == Menu.VIEW_RESULTS:
        exams = store.list_exams(status=ExamStatus.ENDED)
        if not exams:
            await message.answer("❌ No ended exams yet.")
            return
        await send(message, [screens.results_picker(exams, user_id)])
    elif choice == Menu.EDIT_QUESTIONS:
        exams = store.list_exams(created_by=user_id, status=ExamStatus.PENDING)
        if not exams:
            await message.answer("❌ No pending exams. You can only edit questions in pending exams.")
            return
        await send(message, [screens.exam_picker(exams, "edit_exam", "✏️ Select exam to edit questions:")])
    elif choice == Menu.UPLOAD_QUESTIONS:
        exams = store.list_exams(created_by=user_id, status=ExamStatus.PENDING)
        if not exams:
            await message.answer("❌ No pending exams. Create an exam first.")
            return
        await send(message, [screens.exam_picker(exams, "upload", "📤 Select exam to upload questions:")])
    elif choice == Menu.DELETE_EXAM:
        exams = store.list_exams(created_by=user_id)
        if not exams:
            await message.answer("❌ No exams to delete.")
            return
        await send(message, [screens.exam_picker(exams, "confirm_delete", "🗑️ Select exam to delete:", show_status=True)])
    elif choice == Menu.GROUPS:
        await send(message, [screens.group_list(store.list_groups())])


# ===================== AUTHORING CALLBACKS =====================

@router.callback_query(F.data.startswith("add_question:"))
async def cb_add_question(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    owned_exam(services, exam_id, call.from_user.id)
    reply = services.dialog.begin_add_question(call.from_user.id, exam_id)
    await call.answer()
    await send(call.message, [reply])


@router.callback_query(F.data.startswith("done_exam:"))
async def cb_done_exam(call: CallbackQuery, services: Services):
    services.tracker.finish(call.from_user.id)
    await call.answer()
    await call.message.answer("✅ Exam setup complete!", reply_markup=menu_for(services, call.from_user.id))


@router.callback_query(F.data.startswith("correct:"))
async def cb_correct(call: CallbackQuery, services: Services):
    exam_id, index = callback_args(call)
    reply = services.dialog.choose_correct(call.from_user.id, exam_id, index)
    await call.answer()
    if reply is not None:
        await send(call.message, [reply])


@router.callback_query(F.data.startswith("upload:"))
async def cb_upload(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    owned_exam(services, exam_id, call.from_user.id)
    reply = services.dialog.begin_upload(call.from_user.id, exam_id)
    await call.answer()
    await send(call.message, [reply])


@router.callback_query(F.data == "template")
async def cb_template(call: CallbackQuery, services: Services):
    await call.answer()
    await services.messenger.send_document(
        call.message.chat.id, "questions_template.txt", TEMPLATE.encode("utf-8"), caption="📄 Question file template"
    )


@router.callback_query(F.data.startswith("edit_exam:"))
async def cb_edit_exam(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    exam = owned_exam(services, exam_id, call.from_user.id)
    await call.answer()
    await send(call.message, [screens.question_list(exam, services.store.list_questions(exam_id))])


@router.callback_query(F.data.startswith("edit_q:"))
async def cb_edit_question(call: CallbackQuery, services: Services):
    (question_id,) = callback_args(call)
    question = services.exams.get_question(question_id)
    owned_exam(services, question.exam_id, call.from_user.id)
    await call.answer()
    await send(call.message, [screens.question_card(question)])


async def _begin_question_edit(call: CallbackQuery, services: Services, begin):
    (question_id,) = callback_args(call)
    question = services.exams.get_question(question_id)
    owned_exam(services, question.exam_id, call.from_user.id)
    reply = begin(call.from_user.id, question_id)
    await call.answer()
    await send(call.message, [reply])


@router.callback_query(F.data.startswith("edit_q_text:"))
async def cb_edit_text(call: CallbackQuery, services: Services):
    await _begin_question_edit(call, services, services.dialog.begin_edit_text)


@router.callback_query(F.data.startswith("edit_q_options:"))
async def cb_edit_options(call: CallbackQuery, services: Services):
    await _begin_question_edit(call, services, services.dialog.begin_edit_options)


@router.callback_query(F.data.startswith("edit_q_explanation:"))
async def cb_edit_explanation(call: CallbackQuery, services: Services):
    await _begin_question_edit(call, services, services.dialog.begin_edit_explanation)


@router.callback_query(F.data.startswith("edit_q_correct:"))
async def cb_edit_correct(call: CallbackQuery, services: Services):
    (question_id,) = callback_args(call)
    question = services.exams.editable_question(question_id)
    owned_exam(services, question.exam_id, call.from_user.id)
    await call.answer()
    await send(call.message, [screens.correct_answer_editor(question)])


@router.callback_query(F.data.startswith("set_correct:"))
async def cb_set_correct(call: CallbackQuery, services: Services):
    question_id, index = callback_args(call)
    owned_exam(services, services.exams.get_question(question_id).exam_id, call.from_user.id)
    question = services.exams.set_correct_option(question_id, index)
    await call.answer("✅ Correct answer updated!")
    await send(call.message, [screens.question_card(question)])


@router.callback_query(F.data.startswith("delete_q:"))
async def cb_delete_question(call: CallbackQuery, services: Services):
    (question_id,) = callback_args(call)
    exam = owned_exam(services, services.exams.get_question(question_id).exam_id, call.from_user.id)
    services.exams.delete_question(question_id)
    await call.answer("✅ Question deleted!")
    await send(call.message, [screens.question_list(exam, services.store.list_questions(exam.id))])


# ===================== LIFECYCLE CALLBACKS =====================

@router.callback_query(F.data.startswith("start_exam:"))
async def cb_start_exam(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    exam = owned_exam(services, exam_id, call.from_user.id)
    if exam.status != ExamStatus.PENDING:
        raise InvalidState(f"❌ Exam \"{html.escape(exam.name)}\" is not pending.")
    await call.answer()
    await send(call.message, [screens.target_picker(exam, services.store.list_groups())])


@router.callback_query(F.data.startswith("publish:"))
async def cb_publish(call: CallbackQuery, services: Services):
    _, raw_exam_id, raw_target = call.data.split(":", 2)
    exam_id = int(raw_exam_id)
    owned_exam(services, exam_id, call.from_user.id)
    target = raw_target if raw_target in {PublishTarget.ALL, PublishTarget.UNRESTRICTED} else int(raw_target)

    outcome = await services.exams.start_exam(exam_id, target)
    await call.answer()
    text = (
        f"✅ Exam \"{html.escape(outcome.exam.name)}\" is now active with {outcome.question_count} questions!"
    )
    if outcome.notified_chats:
        text += f"\n📢 Announced in {len(outcome.notified_chats)} group(s)."
    await call.message.answer(text, parse_mode=ParseMode.HTML)


@router.callback_query(F.data.startswith("end_exam:"))
async def cb_end_exam(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    owned_exam(services, exam_id, call.from_user.id)
    outcome = await services.exams.end_exam(exam_id)
    await call.answer()
    await call.message.answer(
        f"✅ Exam \"{html.escape(outcome.exam.name)}\" has ended!\n"
        f"📨 Notified {len(outcome.notified_users)} participant(s).",
        parse_mode=ParseMode.HTML,
    )


@router.callback_query(F.data.startswith("confirm_delete:"))
async def cb_confirm_delete(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    exam = owned_exam(services, exam_id, call.from_user.id)
    reply = screens.delete_confirmation(
        exam,
        services.store.count_questions(exam_id),
        len(services.store.list_participants(exam_id)),
    )
    await call.answer()
    await send(call.message, [reply])


@router.callback_query(F.data.startswith("delete_exam:"))
async def cb_delete_exam(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    owned_exam(services, exam_id, call.from_user.id)
    exam = services.exams.delete_exam(exam_id)
    await call.answer()
    await call.message.answer(
        f"✅ Exam \"{html.escape(exam.name)}\" and all related data deleted successfully!",
        reply_markup=menu_for(services, call.from_user.id),
        parse_mode=ParseMode.HTML,
    )


@router.callback_query(F.data == "back_to_menu")
async def cb_back_to_menu(call: CallbackQuery, services: Services):
    services.tracker.finish(call.from_user.id)
    await call.answer()
    await call.message.answer("👍 Back to main menu", reply_markup=menu_for(services, call.from_user.id))


# ===================== PARTICIPANT CALLBACKS =====================

@router.callback_query(F.data.startswith("join_exam:"))
async def cb_join_exam(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    chat = call.message.chat
    if chat.type in GROUP_CHATS and not services.access.is_group_authorized(chat.id):
        raise PermissionDenied("❌ This group is not authorized.")

    user = call.from_user
    outcome = await services.exams.join_exam(
        exam_id,
        user.id,
        username=user.username,
        first_name=user.first_name,
        source_chat_id=chat.id,
    )
    await call.answer("✅ Check your private chat with the bot." if chat.type in GROUP_CHATS else None)
    if chat.type not in GROUP_CHATS:
        await call.message.answer(screens.joined(outcome.delivered))


@router.callback_query(F.data.startswith("my_result:"))
async def cb_my_result(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    exam = services.exams.get_exam(exam_id)
    if exam.status != ExamStatus.ENDED:
        raise InvalidState("❌ Results will be available after the exam ends.")
    result = services.results.personal_result(exam_id, call.from_user.id)
    await call.answer()
    await send_long(call.message, screens.personal_result(result), services.settings.max_message_length)


# ===================== RESULTS CALLBACKS =====================

@router.callback_query(F.data.startswith("results:"))
async def cb_results(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    services.access.require_admin(call.from_user.id)
    exam = services.exams.get_exam(exam_id)
    rows = services.results.leaderboard(exam_id)
    reply = screens.results_summary(exam, rows, services.store.count_questions(exam_id), call.from_user.id)
    await call.answer()
    await send(call.message, [reply])


@router.callback_query(F.data.startswith("detailed:"))
async def cb_detailed(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    services.access.require_admin(call.from_user.id)
    exam = services.exams.get_exam(exam_id)
    text = screens.detailed_report(exam, services.results.detailed_report(exam_id))
    await call.answer()
    await send_long(call.message, text, services.settings.max_message_length)


@router.callback_query(F.data.startswith("analytics:"))
async def cb_analytics(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    services.access.require_admin(call.from_user.id)
    text = screens.question_analytics(services.results.question_analytics(exam_id))
    await call.answer()
    await send_long(call.message, text, services.settings.max_message_length)


@router.callback_query(F.data.startswith("export_csv:") | F.data.startswith("export_xlsx:"))
async def cb_export(call: CallbackQuery, services: Services):
    (exam_id,) = callback_args(call)
    services.access.require_admin(call.from_user.id)
    exam = services.exams.get_exam(exam_id)
    table = await asyncio.to_thread(services.results.export_table, exam_id)
    if call.data.startswith("export_csv:"):
        filename, content = f"exam_{exam_id}_results.csv", table_to_csv(table)
    else:
        content = await asyncio.to_thread(table_to_xlsx, table, "Results", exam.end_time)
        filename = f"exam_{exam_id}_results.xlsx"
    await call.answer()
    await services.messenger.send_document(
        call.message.chat.id, filename, content, caption=f"📊 Results for \"{html.escape(exam.name)}\""
    )


# ===================== ADMINISTRATION CALLBACKS =====================

@router.callback_query(F.data == "add_admin")
async def cb_add_admin(call: CallbackQuery, services: Services):
    reply = services.dialog.begin_add_admin(call.from_user.id)
    await call.answer()
    await send(call.message, [reply])


@router.callback_query(F.data.startswith("remove_admin:"))
async def cb_remove_admin(call: CallbackQuery, services: Services):
    (user_id,) = callback_args(call)
    services.access.revoke_admin(user_id, call.from_user.id)
    await call.answer("✅ Admin removed")
    await send(call.message, [screens.admin_list(services.access.authorities())])


@router.callback_query(F.data.startswith("remove_group:"))
async def cb_remove_group(call: CallbackQuery, services: Services):
    (chat_id,) = callback_args(call)
    services.access.revoke_group(chat_id, call.from_user.id)
    await call.answer("✅ Group revoked")
    await send(call.message, [screens.group_list(services.store.list_groups())])


# ===================== UPLOADS, TEXT, POLLS =====================

@router.message(F.chat.type == ChatType.PRIVATE, F.document)
async def on_document(message: Message, services: Services):
    document = message.document
    if services.tracker.get(message.from_user.id) is None:
        return
    notice = await message.answer("⏳ Processing file...")
    try:
        replies = await services.dialog.handle_document(message.from_user.id, document.file_id, document.file_name)
    finally:
        await services.messenger.delete_message(message.chat.id, notice.message_id)
    if replies:
        await send(message, replies)


@router.message(F.chat.type == ChatType.PRIVATE, F.text)
async def on_text(message: Message, services: Services):
    if message.text.startswith("/"):
        return
    replies = services.dialog.handle_text(message.from_user.id, message.text)
    if replies:
        await send(message, replies)


@router.poll_answer()
async def on_poll_answer(poll_answer: PollAnswer, services: Services):
    if poll_answer.user is None:
        return
    await asyncio.to_thread(
        record_answer, services.store, poll_answer.poll_id, poll_answer.user.id, poll_answer.option_ids
    )
