from datetime import datetime, timezone

from exam_bot import screens
from exam_bot.models import Exam, ExamStatus

NOW = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


def test_chunk_text_respects_limit_and_line_boundaries():
    text = "\n".join(f"line {n:02d}" for n in range(10))

    chunks = screens.chunk_text(text, 20)

    assert all(len(chunk) <= 20 for chunk in chunks)
    assert "\n".join(chunks) == text


def test_chunk_text_splits_overlong_lines():
    chunks = screens.chunk_text("x" * 25, 10)

    assert chunks == ["x" * 10, "x" * 10, "x" * 5]


def test_chunk_text_short_input_is_single_chunk():
    assert screens.chunk_text("hello", 4000) == ["hello"]


def test_exam_names_are_escaped():
    exam = Exam(id=1, name="<b>Evil</b>", start_time=NOW, created_by=1, status=ExamStatus.ACTIVE)

    text = screens.exam_announcement_text(exam, 3)

    assert "&lt;b&gt;Evil&lt;/b&gt;" in text
    assert "<b>Evil</b>" not in text


def test_main_menu_hides_admin_buttons_from_students():
    student = [b.text for row in screens.main_menu(False).keyboard for b in row]
    admin = [b.text for row in screens.main_menu(True).keyboard for b in row]
    super_admin = [b.text for row in screens.main_menu(True, True).keyboard for b in row]

    assert screens.Menu.CREATE_EXAM not in student
    assert screens.Menu.ACTIVE_EXAMS in student
    assert screens.Menu.CREATE_EXAM in admin
    assert screens.Menu.ADMINS not in admin
    assert screens.Menu.ADMINS in super_admin


def test_target_picker_lists_groups():
    exam = Exam(id=7, name="Math", start_time=NOW, created_by=1)

    class Group:
        chat_id = -100
        title = "Class A"

    reply = screens.target_picker(exam, [Group()])

    callbacks = [row[0].callback_data for row in reply.reply_markup.inline_keyboard]
    assert callbacks == ["publish:7:unrestricted", "publish:7:all", "publish:7:-100"]
