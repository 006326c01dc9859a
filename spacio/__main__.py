"""Command-line entry for spacio.

A front end over the client library: classify a booking slot, list and
act on bookings, send and answer cancellation requests, manage meeting
minutes, browse rooms, and keep local history and settings. The session
lives in ``state.json`` under the configured state directory, next to
``history.json`` and ``settings.json``.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

from pydantic import ValidationError as PydanticValidationError

from . import _init_logging
from .core.api_client import SpacioAPIClient
from .core.config_manager import ConfigManager, SpacioConfig
from .core.exceptions import AuthorizationError, SpacioError, ValidationError
from .core.http_client import close_all_clients
from .core.logging_config import configure_logging
from .core.storage import JsonFileStore
from .core.timezone_utils import ReferenceClock, ReferenceTime
from .domain.authorization import BookingAction
from .domain.cancel_requests import CancelRequestService
from .domain.coordinator import BookingActionCoordinator
from .domain.history import HistoryStatus, HistoryStore
from .domain.models import Booking, BookingDraft, BookingId, CancelRequest, CurrentUser, MeetingType
from .domain.notifications import PendingCancelRequestSource, PendingRequestMonitor
from .domain.rispat import RispatService, format_file_size
from .domain.rooms import RoomDirectory
from .domain.session import SessionStore
from .domain.settings import SettingsStore
from .domain.status_classifier import classify

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

STATE_FILE = "state.json"
HISTORY_FILE = "history.json"
SETTINGS_FILE = "settings.json"

ON_OFF = ("on", "off")


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the spacio CLI."""
    parser = argparse.ArgumentParser(
        prog="spacio",
        description="Spacio - meeting room reservation client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m spacio login --email alice@example.com
  python -m spacio bookings
  python -m spacio cancel 12 --reason "Client postponed"
  python -m spacio request-cancel ai_7 --reason "Room double-booked"
  python -m spacio respond 42 approved --message "OK, go ahead"
  python -m spacio minutes upload 12 notulen.pdf
  python -m spacio status 2024-01-10 09:00 10:00 --now 2024-01-10 09:30
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Classify a booking slot as upcoming/ongoing/expired")
    status.add_argument("date", help="Booking date (YYYY-MM-DD)")
    status.add_argument("start", help="Start time (HH:MM)")
    status.add_argument("end", nargs="?", default=None, help="End time (HH:MM)")
    status.add_argument(
        "--now",
        nargs=2,
        metavar=("DATE", "TIME"),
        help="Reference date and time instead of the server clock",
    )

    sub.add_parser("bookings", help="List active bookings and what you may do with them")

    book = sub.add_parser("book", help="Create a booking")
    book.add_argument("room_id", type=int)
    book.add_argument("date", help="Meeting date (YYYY-MM-DD)")
    book.add_argument("start", help="Start time (HH:MM)")
    book.add_argument("end", help="End time (HH:MM)")
    book.add_argument("--topic", required=True)
    book.add_argument("--participants", type=int, required=True)
    book.add_argument("--pic", default=None, help="Person in charge (defaults to you)")
    book.add_argument("--external", action="store_true", help="External meeting")
    book.add_argument("--facility", action="append", default=[], help="Requested facility (repeatable)")
    book.add_argument("--rispat", action="store_true", help="Meeting minutes required before completion")

    complete = sub.add_parser("complete", help="Mark an ongoing booking you own as completed")
    complete.add_argument("booking_id", help="Booking id (12 or ai_12)")

    cancel = sub.add_parser("cancel", help="Cancel a booking you own")
    cancel.add_argument("booking_id", help="Booking id (12 or ai_12)")
    cancel.add_argument("--reason", required=True)

    request_cancel = sub.add_parser("request-cancel", help="Ask a booking's owner to cancel it")
    request_cancel.add_argument("booking_id", help="Booking id (12 or ai_12)")
    request_cancel.add_argument("--reason", required=True)

    requests = sub.add_parser("requests", help="List cancel requests made or received by a user")
    requests.add_argument("--user", required=True, help="User display name")

    pending = sub.add_parser("pending", help="Show pending cancel requests addressed to a user")
    pending.add_argument("--user", required=True, help="Booking owner's display name")
    pending.add_argument("--watch", action="store_true", help="Keep polling until interrupted")

    respond = sub.add_parser("respond", help="Approve or reject a cancel request addressed to you")
    respond.add_argument("request_id", type=int)
    respond.add_argument("decision", choices=("approved", "rejected"))
    respond.add_argument("--message", default=None, help="Optional response message")

    minutes = sub.add_parser("minutes", help="Meeting minutes (rispat) files")
    minutes_sub = minutes.add_subparsers(dest="minutes_command", required=True)
    minutes_list = minutes_sub.add_parser("list", help="List files for a booking")
    minutes_list.add_argument("booking_id")
    minutes_upload = minutes_sub.add_parser("upload", help="Upload a file for a booking")
    minutes_upload.add_argument("booking_id")
    minutes_upload.add_argument("path", type=Path)
    minutes_download = minutes_sub.add_parser("download", help="Download a file")
    minutes_download.add_argument("file_id", type=int)
    minutes_download.add_argument("destination", type=Path)
    minutes_delete = minutes_sub.add_parser("delete", help="Delete a file")
    minutes_delete.add_argument("file_id", type=int)

    history = sub.add_parser("history", help="Show locally recorded finished bookings")
    history.add_argument("--status", choices=[s.value for s in HistoryStatus], default=None)
    history.add_argument("--limit", type=int, default=None)
    history.add_argument("--clear", action="store_true", help="Forget all history entries")

    settings = sub.add_parser("settings", help="Show or change local preferences")
    settings.add_argument("--language", choices=("id", "en", "ja"), default=None)
    settings.add_argument("--dark-mode", choices=ON_OFF, default=None)
    settings.add_argument("--email-notifications", choices=ON_OFF, default=None)
    settings.add_argument("--push-notifications", choices=ON_OFF, default=None)
    settings.add_argument("--reset", action="store_true", help="Restore defaults")

    rooms = sub.add_parser("rooms", help="List meeting rooms")
    rooms.add_argument("--search", default=None, help="Match name, address or facility")
    rooms.add_argument("--min-capacity", type=int, default=None)
    rooms.add_argument("--status", choices=("available", "maintenance"), default=None)

    login = sub.add_parser("login", help="Log in and store the session token")
    login.add_argument("--email", required=True)
    login.add_argument("--password", default=None, help="Prompted for when omitted")

    sub.add_parser("logout", help="End the stored session")

    return parser


class ConsoleAlertSink:
    """Prints coordinator alerts: info to stdout, warnings and errors to stderr."""

    def alert(self, message: str, level: str = "error") -> None:
        print(message, file=sys.stdout if level == "info" else sys.stderr)


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return EXIT_ERROR


def _require_user(session: Optional[SessionStore]) -> CurrentUser:
    user = session.current_user if session is not None else None
    if user is None:
        raise AuthorizationError("Not logged in. Run 'spacio login' first.")
    return user


def _history_store(config: SpacioConfig) -> HistoryStore:
    return HistoryStore(JsonFileStore(config.state_dir / HISTORY_FILE), max_entries=config.max_history_entries)


async def _build_coordinator(
    config: SpacioConfig, api: SpacioAPIClient, session: Optional[SessionStore]
) -> BookingActionCoordinator:
    """Coordinator for the logged-in user, with the clock synced to the server."""
    actor = _require_user(session)
    clock = ReferenceClock(api.get_server_time, timezone=config.timezone)
    await clock.sync()
    return BookingActionCoordinator(
        api=api,
        history=_history_store(config),
        clock=clock,
        actor=actor,
        alerts=ConsoleAlertSink(),
        rispat=RispatService(api),
        cancel_requests=CancelRequestService(api, max_length=config.max_reason_length),
        auto_cancel_on_approve=config.auto_cancel_on_approve,
    )


def _booking_id(raw: str) -> BookingId:
    try:
        return BookingId.parse(raw)
    except ValueError as e:
        raise ValidationError(str(e), field_name="booking_id", field_value=raw) from e


async def _load_target(coordinator: BookingActionCoordinator, raw_id: str) -> Optional[Booking]:
    """Load bookings and return the active one matching ``raw_id``."""
    target = _booking_id(raw_id)
    await coordinator.load_bookings()
    if coordinator.load_error is not None:
        return None
    booking = coordinator.find(target)
    if booking is None:
        _error(f"Booking {raw_id} is not an active booking")
    return booking


def _format_request(request: CancelRequest) -> str:
    created = request.created_at.strftime("%Y-%m-%d %H:%M") if request.created_at else "-"
    line = (
        f"#{request.id:<5} {request.status.value:<9} booking {request.target.display:<8} "
        f"{request.requester_name} -> {request.owner_name}  ({created})  {request.reason}"
    )
    if request.response_message:
        line += f'  [reply: "{request.response_message}"]'
    return line


async def _cmd_status(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    if args.now:
        reference = ReferenceTime(date=args.now[0], time=args.now[1], timezone=config.timezone)
    else:
        clock = ReferenceClock(api.get_server_time, timezone=config.timezone)
        await clock.sync()
        reference = clock.now()
    print(classify(args.date, args.start, args.end, reference).value)
    return EXIT_OK


async def _cmd_bookings(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    coordinator = await _build_coordinator(config, api, api.session)
    bookings = await coordinator.load_bookings()
    if coordinator.load_error is not None:
        return EXIT_ERROR
    if not bookings:
        print("No active bookings.")
    for booking in bookings:
        # minutes are checked when completing
        actions = [
            a.value
            for a in coordinator.available_actions(booking, has_minutes=True)
            if a is not BookingAction.VIEW
        ]
        slot = f"{booking.date} {booking.time[:5]}-{booking.end_time or '--:--'}"
        minutes = "  [minutes required]" if booking.requires_rispat else ""
        print(
            f"{booking.id.display:<8} {slot}  {coordinator.status_of(booking).value:<8} "
            f"{booking.room_name:<16} {booking.topic}  (PIC {booking.pic}; "
            f"actions: {', '.join(actions) or '-'}){minutes}"
        )
    return EXIT_OK


async def _cmd_book(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    user = _require_user(api.session)
    try:
        draft = BookingDraft(
            room_id=args.room_id,
            topic=args.topic,
            date=args.date,
            start_time=args.start,
            end_time=args.end,
            participants=args.participants,
            pic=args.pic or user.display_name,
            meeting_type=MeetingType.EXTERNAL if args.external else MeetingType.INTERNAL,
            facilities=args.facility,
            requires_rispat=args.rispat,
        )
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or "booking"
        raise ValidationError(f"Invalid {field}: {first['msg']}", field_name=field) from e

    payload = await api.create_booking(draft, user.id)
    data = payload.get("data") if isinstance(payload, dict) else None
    booking_id = data.get("id") if isinstance(data, dict) else None
    print(f"Booking #{booking_id if booking_id is not None else '?'} created: {draft.topic}")
    return EXIT_OK


async def _cmd_complete(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    coordinator = await _build_coordinator(config, api, api.session)
    booking = await _load_target(coordinator, args.booking_id)
    if booking is None:
        return EXIT_ERROR
    result = await coordinator.complete(booking)
    return EXIT_OK if result.success else EXIT_ERROR


async def _cmd_cancel(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    coordinator = await _build_coordinator(config, api, api.session)
    booking = await _load_target(coordinator, args.booking_id)
    if booking is None:
        return EXIT_ERROR
    result = await coordinator.cancel(booking, args.reason)
    return EXIT_OK if result.success else EXIT_ERROR


async def _cmd_request_cancel(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    coordinator = await _build_coordinator(config, api, api.session)
    booking = await _load_target(coordinator, args.booking_id)
    if booking is None:
        return EXIT_ERROR
    result = await coordinator.request_cancel(booking, args.reason)
    if result.success and result.request is not None:
        print(f"Request #{result.request.id} is pending")
    return EXIT_OK if result.success else EXIT_ERROR


async def _cmd_requests(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    service = CancelRequestService(api, max_length=config.max_reason_length)
    requests = await service.list_for_user(args.user)
    if not requests:
        print("No cancel requests.")
    for request in requests:
        print(_format_request(request))
    return EXIT_OK


async def _cmd_pending(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    service = CancelRequestService(api, max_length=config.max_reason_length)
    source = PendingCancelRequestSource(service, args.user)

    if not args.watch:
        requests = await source.pull()
        print(f"{len(requests)} pending cancel request(s) for {args.user}")
        for request in requests:
            print(_format_request(request))
        return EXIT_OK

    monitor = PendingRequestMonitor(source, interval=config.notification_poll_interval)
    monitor.subscribe(lambda reqs: print(f"{len(reqs)} pending cancel request(s) for {args.user}"))
    monitor.start()
    try:
        await asyncio.Event().wait()
    finally:
        await monitor.stop()
    return EXIT_OK


async def _cmd_respond(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    coordinator = await _build_coordinator(config, api, api.session)
    addressed = await coordinator.cancel_requests.list_by_owner(coordinator.actor_name)
    request = next((r for r in addressed if r.id == args.request_id), None)
    if request is None:
        return _error(f"Cancel request #{args.request_id} is not addressed to {coordinator.actor_name}")
    if request.is_terminal:
        return _error(f"Cancel request #{request.id} was already processed ({request.status.value})")

    if coordinator.auto_cancel_on_approve:
        await coordinator.load_bookings()
    result = await coordinator.respond_to_request(request, args.decision, args.message)
    return EXIT_OK if result.success else EXIT_ERROR


async def _cmd_minutes(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    service = RispatService(api)
    action = args.minutes_command

    if action == "list":
        files = await service.list_files(_booking_id(args.booking_id))
        if not files:
            print(f"No minutes for booking {args.booking_id}.")
        for f in files:
            uploaded = f.uploaded_at.strftime("%Y-%m-%d %H:%M") if f.uploaded_at else "-"
            print(
                f"{f.id:<5} {f.original_name or f.file_name:<32} {format_file_size(f.file_size):>10}  "
                f"{f.uploaded_by or '-'} ({uploaded})"
            )
        return EXIT_OK

    if action == "upload":
        user = _require_user(api.session)
        await service.upload(_booking_id(args.booking_id), args.path, uploaded_by=user.display_name)
        print(f"Uploaded {args.path.name} for booking {args.booking_id}")
        return EXIT_OK

    if action == "download":
        target = await service.download(args.file_id, args.destination)
        print(f"Saved minutes #{args.file_id} to {target}")
        return EXIT_OK

    _require_user(api.session)
    await service.delete(args.file_id)
    print(f"Deleted minutes #{args.file_id}")
    return EXIT_OK


async def _cmd_history(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    history = _history_store(config)
    if args.clear:
        history.clear()
        print("History cleared")
        return EXIT_OK

    entries = history.entries()
    if args.status:
        entries = [e for e in entries if e.status.value == args.status]
    if args.limit is not None:
        entries = entries[: args.limit]
    if not entries:
        print("No history.")
    for entry in entries:
        line = (
            f"{entry.id:<8} {entry.date} {entry.time[:5]}  {entry.status.value:<9} "
            f"{entry.room_name:<16} {entry.topic}"
        )
        if entry.cancel_reason:
            line += f"  ({entry.cancel_reason})"
        print(line)
    return EXIT_OK


async def _cmd_settings(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    store = SettingsStore(JsonFileStore(config.state_dir / SETTINGS_FILE))
    settings = store.reset() if args.reset else store.load()

    changes = {
        "language": args.language,
        "dark_mode": args.dark_mode,
        "email_notifications": args.email_notifications,
        "push_notifications": args.push_notifications,
    }
    updates = {
        name: (value == "on" if value in ON_OFF else value)
        for name, value in changes.items()
        if value is not None
    }
    if updates:
        settings = store.save(settings.model_copy(update=updates))

    for name, value in settings.model_dump(exclude={"saved_at"}).items():
        if isinstance(value, bool):
            value = "on" if value else "off"
        print(f"{name}: {value}")
    return EXIT_OK


async def _cmd_rooms(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    directory = RoomDirectory(api)
    rooms = await directory.search(args.search, args.min_capacity, args.status)
    for room in rooms:
        state = "available" if room.is_active else "maintenance"
        facilities = ", ".join(room.facilities) or "-"
        print(f"{room.id:<4} {room.name:<24} cap {room.capacity:<3} {state:<11} {room.address}  [{facilities}]")
    print(f"{len(rooms)} of {len(directory.rooms)} room(s)")
    return EXIT_OK


async def _cmd_login(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    await api.login(args.email, password)
    user = api.session.current_user if api.session is not None else None
    print(f"Logged in as {user.display_name if user else args.email}")
    return EXIT_OK


async def _cmd_logout(args: argparse.Namespace, api: SpacioAPIClient, config: SpacioConfig) -> int:
    await api.logout()
    print("Logged out")
    return EXIT_OK


COMMANDS = {
    "status": _cmd_status,
    "bookings": _cmd_bookings,
    "book": _cmd_book,
    "complete": _cmd_complete,
    "cancel": _cmd_cancel,
    "request-cancel": _cmd_request_cancel,
    "requests": _cmd_requests,
    "pending": _cmd_pending,
    "respond": _cmd_respond,
    "minutes": _cmd_minutes,
    "history": _cmd_history,
    "settings": _cmd_settings,
    "rooms": _cmd_rooms,
    "login": _cmd_login,
    "logout": _cmd_logout,
}


async def _run(args: argparse.Namespace, config: SpacioConfig) -> int:
    session = SessionStore(JsonFileStore(config.state_dir / STATE_FILE))
    try:
        async with SpacioAPIClient(config, session=session) as api:
            return await COMMANDS[args.command](args, api, config)
    finally:
        await close_all_clients()


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the spacio CLI and exit with 0, 1 (handled error) or 130 (Ctrl-C)."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    config = ConfigManager().build_config()
    _init_logging("DEBUG" if args.debug else config.log_level)
    configure_logging(debug_mode=args.debug)

    try:
        code = asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)
    except SpacioError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc.message}", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    sys.exit(code)


if __name__ == "__main__":
    main()
