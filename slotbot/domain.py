from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum


class SlotStatus(str, Enum):
    FREE = "free"
    BUSY = "busy"
    CANCELED = "canceled"


# Telegram user ids are positive; 0 means "nobody booked this slot".
NO_USER = 0


@dataclass(frozen=True)
class Slot:
    """A bookable time interval.

    Instances are snapshots: the repository swaps in a new object on every
    mutation, so holding one never gives write access to the table.
    """

    id: str
    start_at: dt.datetime
    end_at: dt.datetime
    status: SlotStatus
    booked_by: int  # NO_USER unless status is BUSY
    created_at: dt.datetime
    updated_at: dt.datetime

    def overlaps(self, start_at: dt.datetime, end_at: dt.datetime) -> bool:
        # half-open [start, end)
        return start_at < self.end_at and end_at > self.start_at


class SlotError(RuntimeError):
    """Base class for everything the slot repository raises."""

    def __init__(self, message: str, *, slot_id: str | None = None):
        super().__init__(message)
        self.slot_id = slot_id


class InvalidRange(SlotError):
    pass


class Conflict(SlotError):
    pass


class NotFound(SlotError):
    pass


class AlreadyCanceled(SlotError):
    pass


class AlreadyBooked(SlotError):
    pass


class Canceled(SlotError):
    pass


class NotBooked(SlotError):
    pass


class NotBookingOwner(SlotError):
    pass


class InvalidState(SlotError):
    """Таблица слотов в несогласованном состоянии.

    Это не ошибка пользователя: так проявляется ранее испорченная таблица,
    поэтому вызывающая сторона должна поднять тревогу, а не просто ответить
    пользователю.
    """


class DataCorruption(SlotError):
    """The persisted table could not be turned back into slots."""


class PersistenceFailure(SlotError):
    """Reading or writing the data file failed at the OS level."""
