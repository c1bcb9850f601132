"""Run the automatic school bell, or manage its schedule and settings.

Run with: python scripts/run_bell.py run
List:     python scripts/run_bell.py list
JSON:     python scripts/run_bell.py list --json
Add:      python scripts/run_bell.py add --period 6 --start 11:00 --end 11:45 \
              --teacher "Dewi Lestari" --honorific Ibu --subject Biologi --class-name X-B
Edit:     python scripts/run_bell.py edit <id> --start 11:15 --end 12:00
Delete:   python scripts/run_bell.py delete <id>
Toggle:   python scripts/run_bell.py toggle <id>
Test:     python scripts/run_bell.py test <id>
Settings: python scripts/run_bell.py settings --auto off --voice Puck

Configuration comes from the environment or a .env file (see BellConfig):
SUPABASE_URL / SUPABASE_ANON_KEY enable the remote tables, GEMINI_API_KEY
enables synthesized announcements. Without them the bell runs local-only
with on-device speech.

Exit codes:
  0 = success
  1 = error (message on stderr)
  2 = invalid input (validation message on stderr)
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from datetime import datetime

from dotenv import load_dotenv
from pydantic import ValidationError

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.schoolbell.app import BellApp  # noqa: E402
from src.schoolbell.config import get_config  # noqa: E402
from src.schoolbell.errors import EntryNotFoundError  # noqa: E402
from src.schoolbell.logging import setup_logging  # noqa: E402
from src.schoolbell.models import Honorific, ScheduleEntry, VoiceName  # noqa: E402

# CLI flag -> ScheduleEntry attribute
_ENTRY_FLAGS = {
    "period": "period",
    "start": "start_time",
    "end": "end_time",
    "teacher": "teacher",
    "honorific": "honorific",
    "subject": "subject",
    "class_name": "class_name",
}


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for tables and JSON."""
    print(msg, file=sys.stderr)


def _add_entry_fields(parser: argparse.ArgumentParser, required: bool) -> None:
    parser.add_argument("--period", type=int, required=required, help="Period number.")
    parser.add_argument("--start", required=required, help="Start time, HH:MM.")
    parser.add_argument("--end", required=required, help="End time, HH:MM.")
    parser.add_argument("--teacher", required=required, help="Teacher name.")
    parser.add_argument(
        "--honorific",
        choices=[h.value for h in Honorific],
        required=required,
        help="Form of address spoken before the name.",
    )
    parser.add_argument("--subject", required=required, help="Subject taught.")
    parser.add_argument("--class-name", required=required, help="Classroom, e.g. X-A.")


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Automatic school bell with spoken announcements.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("run", help="Show the live clock and ring bells automatically.")

    list_cmd = commands.add_parser("list", help="Show the schedule.")
    list_cmd.add_argument("--json", action="store_true", help="Output JSON instead of a table.")

    add_cmd = commands.add_parser("add", help="Add a period.")
    _add_entry_fields(add_cmd, required=True)

    edit_cmd = commands.add_parser("edit", help="Change fields of a period.")
    edit_cmd.add_argument("id", help="Entry id (see list).")
    _add_entry_fields(edit_cmd, required=False)

    for name, help_text in (
        ("delete", "Delete a period."),
        ("toggle", "Activate or deactivate a period."),
        ("test", "Ring the bell for a period now."),
    ):
        cmd = commands.add_parser(name, help=help_text)
        cmd.add_argument("id", help="Entry id (see list).")

    settings_cmd = commands.add_parser("settings", help="Show or change settings.")
    settings_cmd.add_argument("--school-name", help="School name used in the greeting.")
    settings_cmd.add_argument("--auto", choices=["on", "off"], help="Automatic bell on/off.")
    settings_cmd.add_argument(
        "--voice", choices=[v.value for v in VoiceName], help="Announcement voice."
    )
    return parser.parse_args()


def _format_table(entries: list[ScheduleEntry]) -> str:
    """Format schedule entries as a human-readable table.

    Columns: Id | Period | Time | Class | Teacher | Subject | Active
    """
    if not entries:
        return "(no periods scheduled)"

    headers = ["Id", "Period", "Time", "Class", "Teacher", "Subject", "Active"]

    rows = []
    for e in entries:
        rows.append(
            [
                e.id,
                str(e.period),
                f"{e.start_time}-{e.end_time}",
                e.class_name,
                f"{e.honorific.value} {e.teacher}",
                e.subject,
                "yes" if e.is_active else "no",
            ]
        )

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)
    row_lines = [" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)) for row in rows]

    return "\n".join([header_line, separator, *row_lines])


def _entry_changes(args: argparse.Namespace) -> dict:
    return {
        field: getattr(args, flag)
        for flag, field in _ENTRY_FLAGS.items()
        if getattr(args, flag) is not None
    }


async def _run_clock(app: BellApp) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, app.stop)
        except (NotImplementedError, RuntimeError):
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    def show(now: datetime) -> None:
        status = app.status(now)
        line = (
            f"{status['school_name']} | {status['time']} {status['date']} | "
            f"Auto {status['auto']} | Next bell {status['next_bell']} | "
            f"Last {status['last_triggered'] or 'None'}"
        )
        if status["announcing"]:
            line += " | ANNOUNCING"
        print(f"\r{line}", end="", flush=True)

    _log(f"run_bell: clock started ({len(app.schedule())} periods)")
    await app.run(on_tick=show)
    print()
    _log("run_bell: stopped")


async def main(args: argparse.Namespace) -> int:
    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)
    app = BellApp.create(config)

    command = args.command
    try:
        if command == "run":
            await _run_clock(app)

        elif command == "list":
            entries = app.schedule()
            if args.json:
                print(json.dumps([e.to_record() for e in entries], indent=2, ensure_ascii=False))
            else:
                print(_format_table(entries))

        elif command == "add":
            entry = app.add(_entry_changes(args))
            _log(f"  Added period {entry.period} at {entry.start_time} (id {entry.id})")

        elif command == "edit":
            current = app.state.store.get(args.id)
            changed = ScheduleEntry.model_validate({**current.model_dump(), **_entry_changes(args)})
            app.edit(changed)
            _log(f"  Updated {args.id}")

        elif command == "delete":
            if app.delete(args.id):
                _log(f"  Deleted {args.id}")
            else:
                _log(f"  No period with id {args.id}")

        elif command == "toggle":
            entry = app.toggle_active(args.id)
            _log(f"  {args.id} is now {'active' if entry.is_active else 'inactive'}")

        elif command == "test":
            task = app.test_trigger(args.id)
            if task is not None:
                result = await task
                if result is not None:
                    _log(f"  Announced via {result.spoken_by}: {result.text}")

        elif command == "settings":
            changes = {}
            if args.school_name is not None:
                changes["school_name"] = args.school_name
            if args.auto is not None:
                changes["auto_trigger_enabled"] = args.auto == "on"
            if args.voice is not None:
                changes["voice_name"] = args.voice
            settings = app.update_settings(**changes) if changes else app.state.settings
            print(json.dumps(settings.to_record(), indent=2, ensure_ascii=False))

    except (ValidationError, EntryNotFoundError) as e:
        _log(f"ERROR: {e}")
        return 2
    finally:
        await app.flush()

    return 0


if __name__ == "__main__":
    args = _parse_args()
    try:
        sys.exit(asyncio.run(main(args)))
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
