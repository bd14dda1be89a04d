import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///./exam_bot.db"
DEFAULT_MAX_MESSAGE_LENGTH = 4000


def _parse_ids(raw: str) -> Tuple[int, ...]:
    ids = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if chunk:
            ids.append(int(chunk))
    return tuple(ids)


@dataclass(frozen=True, slots=True)
class Settings:
    bot_token: str = ""
    admin_ids: Tuple[int, ...] = field(default_factory=tuple)
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        bot_token=os.getenv("BOT_TOKEN", "").strip(),
        admin_ids=_parse_ids(os.getenv("ADMIN_IDS", "")),
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        max_message_length=int(os.getenv("MAX_MESSAGE_LENGTH", str(DEFAULT_MAX_MESSAGE_LENGTH))),
    )
