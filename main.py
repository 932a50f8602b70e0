from __future__ import annotations

import argparse
import logging

from lesson_sync.config import get_settings, read_table_configs
from lesson_sync.errors import ConfigurationError
from lesson_sync.gcal import GoogleCalendar, build_service
from lesson_sync.mail import GmailNotifier, LogNotifier
from lesson_sync.orchestrator import Orchestrator
from lesson_sync.sheets import GoogleSheetsStore


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync lesson schedules from Google Sheets to Google Calendar")
    parser.add_argument("--spreadsheet", type=str, default=None, help="Spreadsheet id (overrides SPREADSHEET_ID)")
    parser.add_argument(
        "--table",
        action="append",
        default=[],
        help="Only sync this table; repeat for several",
    )
    parser.add_argument("--dry-run", action="store_true", help="Log the plan without touching sheets or calendars")
    parser.add_argument("--no-notify", action="store_true", help="Do not send notice or cancellation emails")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    settings = get_settings()
    if args.spreadsheet:
        settings.spreadsheet_id = args.spreadsheet
    if args.no_notify:
        settings.send_notifications = False
    if not settings.spreadsheet_id:
        logging.error("No spreadsheet id; set SPREADSHEET_ID or pass --spreadsheet")
        return 1

    secrets, token = settings.google_client_secrets, settings.google_token_file
    store = GoogleSheetsStore(build_service("sheets", "v4", secrets, token), settings.spreadsheet_id)
    calendar = GoogleCalendar(build_service("calendar", "v3", secrets, token))
    if args.dry_run or not settings.send_notifications:
        notifier = LogNotifier()
    else:
        notifier = GmailNotifier(build_service("gmail", "v1", secrets, token))

    try:
        tables = read_table_configs(store, settings)
    except ConfigurationError as exc:
        logging.error("%s", exc)
        return 1
    if args.table:
        wanted = set(args.table)
        unknown = wanted - {config.name for config in tables}
        for name in sorted(unknown):
            logging.warning("Table %s is not enabled in %s", name, settings.config_sheet_name)
        tables = [config for config in tables if config.name in wanted]
    if not tables:
        logging.warning("No tables to sync")
        return 0

    summary = Orchestrator(store, calendar, notifier, settings, dry_run=args.dry_run).run(tables)
    logging.info("Done")
    return 0 if summary.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
