from __future__ import annotations

import datetime as dt
import logging
import threading
import uuid
from dataclasses import replace
from typing import Callable

from slotbot.domain import (
    NO_USER,
    AlreadyBooked,
    AlreadyCanceled,
    Canceled,
    Conflict,
    InvalidRange,
    InvalidState,
    NotBooked,
    NotBookingOwner,
    NotFound,
    Slot,
    SlotStatus,
)
from slotbot.state_file import check_no_overlaps, load_slots, save_slots

logger = logging.getLogger(__name__)

# uuid4 collisions are practically impossible; the bound only guarantees termination.
_MAX_ID_ATTEMPTS = 16


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class SlotRepository:
    """In-memory slot table guarded by a single lock.

    Every public method holds the lock for its whole critical section. Disk
    I/O in load()/save() happens outside of it; saves are serialized by a
    separate lock so the file always ends up with the newest snapshot. The
    repository never saves on its own; the caller decides when to persist.
    """

    def __init__(self, data_path: str | None = None, *, clock: Callable[[], dt.datetime] | None = None):
        self._data_path = data_path or None
        self._clock = clock or _utc_now
        self._slots: dict[str, Slot] = {}
        self._lock = threading.Lock()
        # Orders whole-file writes so an older snapshot never lands after a newer one.
        self._save_lock = threading.Lock()

    @property
    def data_path(self) -> str | None:
        return self._data_path

    def load(self) -> None:
        if self._data_path is None:
            return

        # Validate everything first: a broken file must not leave half a table behind.
        loaded = load_slots(self._data_path)

        with self._lock:
            merged = dict(self._slots)
            for slot in loaded:
                merged[slot.id] = slot
            check_no_overlaps(merged.values())
            self._slots = merged
            total = len(merged)

        logger.info("Loaded %d slots from %s (table size=%d)", len(loaded), self._data_path, total)

    def save(self) -> None:
        if self._data_path is None:
            return

        with self._save_lock:
            with self._lock:
                snapshot = list(self._slots.values())

            save_slots(self._data_path, snapshot)

        logger.info("Saved %d slots to %s", len(snapshot), self._data_path)

    def create_slot(self, start_at: dt.datetime, end_at: dt.datetime) -> Slot:
        if start_at.tzinfo is None or end_at.tzinfo is None:
            raise InvalidRange("invalid time range: timestamps must carry a timezone")
        if start_at >= end_at:
            raise InvalidRange("invalid time range: start must be before end")

        with self._lock:
            for existing in self._slots.values():
                if existing.status == SlotStatus.CANCELED:
                    continue
                if existing.overlaps(start_at, end_at):
                    raise Conflict("time slot conflicts with an existing slot", slot_id=existing.id)

            slot_id = self._new_id()
            now = self._clock()
            slot = Slot(
                id=slot_id,
                start_at=start_at,
                end_at=end_at,
                status=SlotStatus.FREE,
                booked_by=NO_USER,
                created_at=now,
                updated_at=now,
            )
            self._slots[slot_id] = slot

        logger.info("Slot created: id=%s %s..%s", slot.id, slot.start_at.isoformat(), slot.end_at.isoformat())
        return slot

    def cancel_slot(self, slot_id: str) -> Slot:
        with self._lock:
            slot = self._require(slot_id)
            if slot.status == SlotStatus.CANCELED:
                raise AlreadyCanceled("slot already canceled", slot_id=slot_id)

            updated = self._touch(slot, status=SlotStatus.CANCELED, booked_by=NO_USER)

        logger.info("Slot canceled: id=%s (was %s)", slot_id, slot.status.value)
        return updated

    def get_slot(self, slot_id: str) -> tuple[Slot | None, bool]:
        with self._lock:
            slot = self._slots.get(slot_id)
        return slot, slot is not None

    def list_slots(self) -> list[Slot]:
        with self._lock:
            return list(self._slots.values())

    def list_free_slots(self) -> list[Slot]:
        with self._lock:
            return [s for s in self._slots.values() if s.status == SlotStatus.FREE]

    def book_slot(self, slot_id: str, user_id: int) -> Slot:
        if user_id <= NO_USER:
            raise ValueError(f"user_id must be a positive integer, got {user_id!r}")

        with self._lock:
            slot = self._require(slot_id)
            if slot.status == SlotStatus.BUSY:
                raise AlreadyBooked("slot already booked", slot_id=slot_id)
            if slot.status == SlotStatus.CANCELED:
                raise Canceled("slot canceled", slot_id=slot_id)
            if slot.booked_by != NO_USER:
                raise InvalidState(
                    f"free slot is already assigned to user {slot.booked_by}",
                    slot_id=slot_id,
                )

            updated = self._touch(slot, status=SlotStatus.BUSY, booked_by=user_id)

        logger.info("Slot booked: id=%s user=%s", slot_id, user_id)
        return updated

    def cancel_booking(self, slot_id: str, user_id: int) -> Slot:
        with self._lock:
            slot = self._require(slot_id)
            if slot.status == SlotStatus.CANCELED:
                raise Canceled("slot canceled", slot_id=slot_id)
            if slot.status == SlotStatus.FREE:
                raise NotBooked("slot is not booked", slot_id=slot_id)
            if slot.booked_by != user_id:
                raise NotBookingOwner("slot is booked by another user", slot_id=slot_id)

            updated = self._touch(slot, status=SlotStatus.FREE, booked_by=NO_USER)

        logger.info("Booking released: id=%s user=%s", slot_id, user_id)
        return updated

    def list_slots_by_user(self, user_id: int) -> list[Slot]:
        with self._lock:
            return [s for s in self._slots.values() if s.booked_by == user_id]

    # The helpers below expect the lock to be held.

    def _require(self, slot_id: str) -> Slot:
        slot = self._slots.get(slot_id)
        if slot is None:
            raise NotFound("slot not found", slot_id=slot_id)
        return slot

    def _touch(self, slot: Slot, **changes: object) -> Slot:
        # updated_at >= created_at even if the wall clock went backwards
        updated = replace(slot, updated_at=max(self._clock(), slot.created_at), **changes)
        self._slots[slot.id] = updated
        return updated

    def _new_id(self) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            slot_id = uuid.uuid4().hex
            if slot_id not in self._slots:
                return slot_id
        raise InvalidState(f"could not allocate a unique slot id in {_MAX_ID_ATTEMPTS} attempts")
