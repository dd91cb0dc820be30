from __future__ import annotations

import logging
from typing import Iterable

from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from slotbot.config import Settings
from slotbot.domain import NO_USER, PersistenceFailure, Slot
from slotbot.repository import SlotRepository
from slotbot.telegram_notifier import broadcast_telegram_message

logger = logging.getLogger(__name__)


def format_slot(slot: Slot) -> str:
    line = (
        f"• {slot.id}  {slot.start_at.isoformat()} – {slot.end_at.isoformat()}  [{slot.status.value}]"
    )
    if slot.booked_by != NO_USER:
        line += f" booked_by={slot.booked_by}"
    return line


def format_slots(slots: Iterable[Slot]) -> str:
    by_start = sorted(slots, key=lambda s: (s.start_at, s.id))
    if not by_start:
        return "No slots."
    return "\n".join(format_slot(s) for s in by_start)


def alert_admins(settings: Settings, text: str) -> bool:
    """Best-effort admin alert. Returns True if every admin chat got the message."""
    token = settings.telegram_bot_token
    if not token or not settings.alerts_enabled:
        logger.debug("Admin alerts disabled, dropping: %s", text)
        return False

    failed = broadcast_telegram_message(
        bot_token=token,
        chat_ids=settings.telegram_admin_chat_ids,
        text=text,
    )
    if failed:
        logger.warning("Admin alert not delivered to: %s", ", ".join(failed))
        return False
    return True


def _save_failure_reason(retry_state: RetryCallState) -> str:
    outcome = retry_state.outcome
    exc = outcome.exception() if outcome is not None and outcome.failed else None
    if exc is None:
        return "unknown"
    # PersistenceFailure already names the file; the errno lives on the OSError behind it.
    cause = exc.__cause__
    if isinstance(cause, OSError) and cause.errno is not None:
        return f"{exc} [errno {cause.errno}]"
    return str(exc).strip() or type(exc).__name__


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.warning("Save attempt %s failed (%s)", retry_state.attempt_number, _save_failure_reason(retry_state))


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    next_attempt = retry_state.attempt_number + 1

    if sleep_seconds is None:
        logger.info("Retrying save (attempt %s)...", next_attempt)
        return

    logger.info("Retrying save in %.1f s (attempt %s)", sleep_seconds, next_attempt)


def save_with_retry(repo: SlotRepository, settings: Settings) -> None:
    decorated = retry(
        retry=retry_if_exception_type(PersistenceFailure),
        stop=stop_after_attempt(settings.save_retry_attempts),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(repo.save)

    decorated()


def persist(repo: SlotRepository, settings: Settings) -> None:
    """Save after a mutation; a save that keeps failing is an admin problem."""
    try:
        save_with_retry(repo, settings)
    except PersistenceFailure as e:
        logger.error("Giving up on saving slots (%s)", e)
        alert_admins(
            settings,
            text=(
                "SlotBot: не удалось сохранить слоты.\n"
                f"Файл: {repo.data_path}\n"
                f"Причина: {e}"
            ),
        )
        raise
