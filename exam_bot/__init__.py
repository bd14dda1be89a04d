"""Telegram exam bot: authoring, publishing, poll answers and results."""

__version__ = "1.0.0"
