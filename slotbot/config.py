from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _parse_admin_chat_ids(raw: str) -> tuple[str, ...]:
    """Chats that receive alerts about a broken or unsaveable slot table.

    Accepts one id or a comma-separated list, e.g. ``123456789,-1001234567890``
    for an admin plus an ops group. Blank entries are dropped, repeats are
    sent to once.
    """
    chat_ids: list[str] = []
    for part in raw.split(","):
        chat_id = part.strip()
        if not chat_id or chat_id in chat_ids:
            continue
        # Group chats have negative ids, so only "integer and non-zero" is checked.
        digits = chat_id[1:] if chat_id.startswith("-") else chat_id
        if not (digits.isascii() and digits.isdigit()):
            raise RuntimeError(
                f"Invalid TELEGRAM_ADMIN_CHAT_ID entry {chat_id!r}: admin alerts need numeric Telegram chat ids."
            )
        if int(chat_id) == 0:
            raise RuntimeError("Invalid TELEGRAM_ADMIN_CHAT_ID entry '0': not a valid chat id for admin alerts.")
        chat_ids.append(chat_id)
    return tuple(chat_ids)


@dataclass(frozen=True)
class Settings:
    # Where the slot table lives; None keeps everything in memory only.
    data_file: str | None = "slots.json"

    # How many times a failed save is attempted before giving up.
    save_retry_attempts: int = 3

    # Admin alerts (optional). Without a token no alerts are sent.
    telegram_bot_token: str | None = None
    telegram_admin_chat_ids: tuple[str, ...] = ()

    log_level: str = "INFO"

    @property
    def alerts_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_admin_chat_ids)


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    # An explicitly empty SLOTS_DATA_FILE turns persistence off.
    data_file = os.getenv("SLOTS_DATA_FILE", "slots.json").strip() or None

    save_retry_attempts = int(os.getenv("SAVE_RETRY_ATTEMPTS", "3"))
    if save_retry_attempts < 1:
        raise RuntimeError("SAVE_RETRY_ATTEMPTS must be >= 1")

    telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip() or None
    admin_chat_ids = _parse_admin_chat_ids(os.getenv("TELEGRAM_ADMIN_CHAT_ID", ""))
    if telegram_bot_token and not admin_chat_ids:
        raise RuntimeError("TELEGRAM_ADMIN_CHAT_ID is empty. Provide at least one chat id when TELEGRAM_BOT_TOKEN is set.")

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    return Settings(
        data_file=data_file,
        save_retry_attempts=save_retry_attempts,
        telegram_bot_token=telegram_bot_token,
        telegram_admin_chat_ids=admin_chat_ids,
        log_level=log_level,
    )
