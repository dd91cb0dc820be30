import argparse
import datetime as dt
import logging
import sys

from slotbot.config import Settings, load_settings
from slotbot.domain import DataCorruption, InvalidState, PersistenceFailure, SlotError
from slotbot.repository import SlotRepository
from slotbot.state_file import parse_timestamp
from slotbot.worker import alert_admins, format_slot, format_slots, persist

logger = logging.getLogger(__name__)

MUTATING_COMMANDS = {"create", "cancel", "book", "unbook"}


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _timestamp(raw: str) -> dt.datetime:
    try:
        value = parse_timestamp(raw)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not an ISO 8601 timestamp: {raw!r}") from e
    # Naive input from the command line is read as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SlotBot: bookable time slots")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create", help="Create a free slot")
    p.add_argument("start", type=_timestamp)
    p.add_argument("end", type=_timestamp)

    p = sub.add_parser("cancel", help="Cancel a slot")
    p.add_argument("slot_id")

    p = sub.add_parser("show", help="Show one slot")
    p.add_argument("slot_id")

    p = sub.add_parser("list", help="List slots")
    p.add_argument("--free", action="store_true", help="Only free slots")

    p = sub.add_parser("book", help="Book a free slot for a user")
    p.add_argument("slot_id")
    p.add_argument("user_id", type=int)

    p = sub.add_parser("unbook", help="Release a booking")
    p.add_argument("slot_id")
    p.add_argument("user_id", type=int)

    p = sub.add_parser("mine", help="List slots booked by a user")
    p.add_argument("user_id", type=int)

    return parser


def run_command(repo: SlotRepository, args: argparse.Namespace) -> str:
    if args.command == "create":
        return "Created:\n" + format_slot(repo.create_slot(args.start, args.end))
    if args.command == "cancel":
        return "Canceled:\n" + format_slot(repo.cancel_slot(args.slot_id))
    if args.command == "show":
        slot, found = repo.get_slot(args.slot_id)
        if not found or slot is None:
            return f"Slot {args.slot_id} not found."
        return format_slot(slot)
    if args.command == "list":
        return format_slots(repo.list_free_slots() if args.free else repo.list_slots())
    if args.command == "book":
        return "Booked:\n" + format_slot(repo.book_slot(args.slot_id, args.user_id))
    if args.command == "unbook":
        return "Released:\n" + format_slot(repo.cancel_booking(args.slot_id, args.user_id))
    if args.command == "mine":
        return format_slots(repo.list_slots_by_user(args.user_id))
    raise ValueError(f"Unknown command: {args.command}")


def _handle(settings: Settings, args: argparse.Namespace) -> int:
    repo = SlotRepository(settings.data_file)
    try:
        repo.load()
    except (DataCorruption, PersistenceFailure) as e:
        logger.error("Failed to load slots from %s (%s)", settings.data_file, e)
        alert_admins(
            settings,
            text=(
                "SlotBot: не удалось загрузить слоты.\n"
                f"Файл: {settings.data_file}\n"
                f"Причина: {type(e).__name__}: {e}"
            ),
        )
        raise

    try:
        output = run_command(repo, args)
    except InvalidState as e:
        # Таблица испорчена: это не ошибка пользователя, зовём админов.
        logger.error("Inconsistent slot table (%s)", e)
        alert_admins(
            settings,
            text=(
                "SlotBot: обнаружено несогласованное состояние слота.\n"
                f"Слот: {e.slot_id}\n"
                f"Причина: {e}"
            ),
        )
        raise
    except (SlotError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.command in MUTATING_COMMANDS:
        persist(repo, settings)

    print(output)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = load_settings()
    _setup_logging(settings.log_level)

    return _handle(settings, args)


if __name__ == "__main__":
    raise SystemExit(main())
