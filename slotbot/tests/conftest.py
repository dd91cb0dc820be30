from __future__ import annotations

import datetime as dt

import pytest

from slotbot.repository import SlotRepository
from slotbot.tests.helpers import UTC, FakeClock


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Не даём переменным окружения разработчика протечь в тесты.
    for name in (
        "SLOTS_DATA_FILE",
        "SAVE_RETRY_ATTEMPTS",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_ADMIN_CHAT_ID",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(dt.datetime(2025, 2, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def repo(clock: FakeClock) -> SlotRepository:
    return SlotRepository(clock=clock)
