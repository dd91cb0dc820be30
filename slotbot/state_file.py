from __future__ import annotations

import datetime as dt
import json
import os
import tempfile
from typing import Any, Iterable

from slotbot.domain import DataCorruption, PersistenceFailure, Slot, SlotStatus


def parse_timestamp(raw: str) -> dt.datetime:
    # fromisoformat() before 3.11 does not understand the "Z" suffix.
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    return dt.datetime.fromisoformat(raw)


def _parse_timestamp(item: dict[str, Any], key: str, index: int) -> dt.datetime:
    raw = item.get(key)
    if not isinstance(raw, str):
        raise DataCorruption(f"invalid data: record #{index} has no {key!r} timestamp")
    try:
        value = parse_timestamp(raw)
    except ValueError as e:
        raise DataCorruption(f"invalid data: record #{index} has bad {key!r}: {raw!r}") from e
    if value.tzinfo is None:
        raise DataCorruption(f"invalid data: record #{index} {key!r} has no timezone offset")
    return value


def slot_from_record(item: Any, index: int) -> Slot:
    if not isinstance(item, dict):
        raise DataCorruption(f"invalid data: record #{index} is not an object")

    slot_id = item.get("id")
    if not isinstance(slot_id, str) or not slot_id:
        raise DataCorruption(f"invalid data: record #{index} has empty ID")

    try:
        status = SlotStatus(item.get("status"))
    except ValueError as e:
        raise DataCorruption(f"invalid data: unknown status {item.get('status')!r}", slot_id=slot_id) from e

    booked_by = item.get("bookedBy", 0)
    if not isinstance(booked_by, int) or isinstance(booked_by, bool):
        raise DataCorruption(f"invalid data: bookedBy must be an integer, got {booked_by!r}", slot_id=slot_id)

    start_at = _parse_timestamp(item, "start", index)
    end_at = _parse_timestamp(item, "end", index)
    if start_at >= end_at:
        raise DataCorruption("invalid data: start must be before end", slot_id=slot_id)

    created_at = _parse_timestamp(item, "createdAt", index)
    updated_at = _parse_timestamp(item, "updatedAt", index)
    if updated_at < created_at:
        raise DataCorruption("invalid data: updatedAt is before createdAt", slot_id=slot_id)

    # A free slot that still has an owner is loaded as-is; book_slot reports it as InvalidState.
    return Slot(
        id=slot_id,
        start_at=start_at,
        end_at=end_at,
        status=status,
        booked_by=booked_by,
        created_at=created_at,
        updated_at=updated_at,
    )


def find_overlap(slots: Iterable[Slot]) -> tuple[Slot, Slot] | None:
    """Return the first pair of non-canceled slots whose intervals overlap."""
    active = sorted((s for s in slots if s.status != SlotStatus.CANCELED), key=lambda s: (s.start_at, s.id))
    latest: Slot | None = None
    for slot in active:
        if latest is not None and slot.start_at < latest.end_at:
            return latest, slot
        if latest is None or slot.end_at > latest.end_at:
            latest = slot
    return None


def check_no_overlaps(slots: Iterable[Slot]) -> None:
    pair = find_overlap(slots)
    if pair is not None:
        first, second = pair
        raise DataCorruption(
            f"invalid data: slots {first.id} and {second.id} overlap",
            slot_id=second.id,
        )


def slot_to_record(slot: Slot) -> dict[str, Any]:
    return {
        "id": slot.id,
        "start": slot.start_at.isoformat(),
        "end": slot.end_at.isoformat(),
        "status": slot.status.value,
        "bookedBy": slot.booked_by,
        "createdAt": slot.created_at.isoformat(),
        "updatedAt": slot.updated_at.isoformat(),
    }


def load_slots(path: str) -> list[Slot]:
    """Read every slot stored at ``path``.

    A missing file is an empty table. Anything else that cannot be decoded
    raises DataCorruption; nothing is skipped silently, because a half-read
    table would lose bookings on the next save.
    """
    if not os.path.exists(path):
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise DataCorruption(f"failed to parse json in {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise DataCorruption(f"{path} is not valid UTF-8: {e}") from e
    except OSError as e:
        raise PersistenceFailure(f"failed to read {path}: {e}") from e

    if not isinstance(raw, list):
        raise DataCorruption(f"invalid data: expected a list of slots in {path}")

    slots = [slot_from_record(item, i) for i, item in enumerate(raw)]

    # Later records win on duplicate ids, same as the merge in SlotRepository.load().
    check_no_overlaps({s.id: s for s in slots}.values())
    return slots


def save_slots(path: str, slots: Iterable[Slot]) -> None:
    data = [slot_to_record(s) for s in sorted(slots, key=lambda s: (s.start_at, s.id))]

    folder = os.path.dirname(os.path.abspath(path))

    tmp_name: str | None = None
    try:
        if folder and not os.path.exists(folder):
            os.makedirs(folder, exist_ok=True)

        # Atomic write
        with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
            tmp_name = tf.name
            json.dump(data, tf, ensure_ascii=False, indent=2)

        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise PersistenceFailure(f"could not write {path}: {e}") from e
