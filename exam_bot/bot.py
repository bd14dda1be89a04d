import asyncio
import logging

from aiogram import Bot, Dispatcher

from .auth import AccessControl
from .config import Settings, load_settings
from .dialog import DialogEngine, DialogTracker
from .handlers import Services, router
from .lifecycle import ExamService
from .messenger import AiogramMessenger, Messenger
from .results import ResultsEngine
from .store import Store, make_engine

logger = logging.getLogger(__name__)


def build_services(settings: Settings, messenger: Messenger, store: Store | None = None) -> Services:
    if store is None:
        store = Store(make_engine(settings.database_url))
        store.create_all()
    access = AccessControl(store, settings.admin_ids)
    exams = ExamService(store, messenger)
    tracker = DialogTracker()
    return Services(
        settings=settings,
        store=store,
        messenger=messenger,
        access=access,
        exams=exams,
        results=ResultsEngine(store),
        tracker=tracker,
        dialog=DialogEngine(tracker, exams, access, messenger),
    )


async def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    if not settings.bot_token:
        raise RuntimeError("Please set BOT_TOKEN before running the bot")
    if not settings.admin_ids:
        logger.warning("ADMIN_IDS is empty: nobody can create exams")

    bot = Bot(settings.bot_token)
    services = build_services(settings, AiogramMessenger(bot))

    dp = Dispatcher(services=services)
    dp.include_router(router)

    logger.info("Bot is running...")
    await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())


def run() -> None:
    asyncio.run(main())
