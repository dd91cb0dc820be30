from __future__ import annotations

import logging
from typing import Iterable

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"

# Telegram rejects messages longer than this.
MAX_MESSAGE_LENGTH = 4096


def send_telegram_message(
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    timeout_seconds: float = 20.0,
    client: httpx.Client | None = None,
) -> None:
    if len(text) > MAX_MESSAGE_LENGTH:
        text = text[: MAX_MESSAGE_LENGTH - 1] + "…"

    url = f"{TELEGRAM_API_URL}/bot{bot_token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }

    if client is None:
        with httpx.Client(timeout=timeout_seconds) as own_client:
            _post(own_client, url, payload)
    else:
        _post(client, url, payload)


def _post(client: httpx.Client, url: str, payload: dict[str, object]) -> None:
    r = client.post(url, json=payload)
    r.raise_for_status()
    data = r.json()
    if not data.get("ok", False):
        raise RuntimeError(f"Telegram API error: {data.get('description', data)}")


def broadcast_telegram_message(*, bot_token: str, chat_ids: Iterable[str], text: str) -> list[str]:
    """Send ``text`` to every chat and return the ids that failed.

    One bad chat id must not keep the alert from reaching the others, so
    failures are collected rather than raised.
    """
    failed: list[str] = []
    with httpx.Client(timeout=20.0) as client:
        for chat_id in chat_ids:
            try:
                send_telegram_message(bot_token=bot_token, chat_id=chat_id, text=text, client=client)
            except (httpx.HTTPError, RuntimeError) as e:
                logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
                failed.append(chat_id)
    return failed
