"""Error taxonomy shared by the services and the chat handlers.

Every error carries a user-facing message; handlers reply with ``str(exc)``.
"""


class ExamBotError(Exception):
    default_message = "❌ Something went wrong."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class ValidationError(ExamBotError):
    default_message = "❌ Invalid input. Try again:"


class NotFoundError(ExamBotError):
    default_message = "❌ Not found."


class PermissionDenied(ExamBotError):
    default_message = "❌ You are not allowed to do this."


class AlreadyExists(ExamBotError):
    default_message = "ℹ️ Already exists."


class AlreadyJoined(ExamBotError):
    default_message = "❌ You have already joined this exam. You can only take each exam once."


class NoQuestions(ExamBotError):
    default_message = "❌ This exam has no questions yet."


class InvalidState(ExamBotError):
    default_message = "❌ This action is not available for the exam's current status."


class DeliveryFailed(ExamBotError):
    default_message = "❌ I can't message you. Open a private chat with me, press Start, then try again."
