from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from .errors import ConfigurationError
from .headers import CONFIG_HEADERS, resolve_headers
from .models import ROLES
from .store import TabularStore
from .utils import parse_bool

load_dotenv()

DEFAULT_TIMEZONE = "Asia/Shanghai"


@dataclass
class RateLimit:
    operation_delay: float = 0.5
    max_retries: int = 3
    retry_delay: float = 2.0


@dataclass
class Settings:
    spreadsheet_id: str
    timezone: ZoneInfo
    google_client_secrets: str
    google_token_file: str
    config_sheet_name: str = "_SheetConfig"
    status_sheet_prefix: str = "_StatusLog_"
    rate_limit: RateLimit = field(default_factory=RateLimit)
    send_notifications: bool = True

    def ledger_table(self, table: str) -> str:
        return f"{self.status_sheet_prefix}{table}"


@dataclass
class TableConfig:
    name: str
    timezone: ZoneInfo
    teacher_calendar_id: str = ""
    student_calendar_id: str = ""
    teacher_email: str = ""
    student_email: str = ""
    reminder_minutes: Optional[int] = None

    def calendar_for(self, role: str) -> str:
        if role == "teacher":
            return self.teacher_calendar_id or self.teacher_email
        return self.student_calendar_id or self.student_email

    def targets(self) -> Dict[str, str]:
        """Role -> calendar id for every calendar that must carry the lesson.

        Roles sharing one calendar get a single event, owned by the first role.
        """
        targets: Dict[str, str] = {}
        for role in ROLES:
            calendar_id = self.calendar_for(role)
            if calendar_id and calendar_id not in targets.values():
                targets[role] = calendar_id
        return targets


def get_timezone(tz_name: Optional[str] = None, fallback: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    tz_name = tz_name or os.getenv("TIMEZONE", fallback)
    try:
        return ZoneInfo(tz_name)
    except Exception:
        logging.warning("Invalid TIMEZONE %s, falling back to %s", tz_name, fallback)
        return ZoneInfo(fallback)


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logging.warning("Invalid %s=%r, using %s", name, raw, default)
        return default


def get_settings() -> Settings:
    settings = Settings(
        spreadsheet_id=os.getenv("SPREADSHEET_ID", ""),
        timezone=get_timezone(),
        google_client_secrets=os.getenv("GOOGLE_CLIENT_SECRETS", "credentials.json"),
        google_token_file=os.getenv("GOOGLE_TOKEN_FILE", "token.json"),
        config_sheet_name=os.getenv("CONFIG_SHEET_NAME", "_SheetConfig"),
        status_sheet_prefix=os.getenv("STATUS_SHEET_PREFIX", "_StatusLog_"),
        rate_limit=RateLimit(
            operation_delay=_env_number("OPERATION_DELAY", 0.5),
            max_retries=_env_number("MAX_RETRIES", 3, int),
            retry_delay=_env_number("RETRY_DELAY", 2.0),
        ),
        send_notifications=parse_bool(os.getenv("SEND_NOTIFICATIONS", "true")),
    )
    if not settings.spreadsheet_id:
        logging.warning("SPREADSHEET_ID is not set")
    return settings


def _parse_reminder(raw: str, sheet_name: str) -> Optional[int]:
    if not raw:
        return None
    try:
        minutes = int(float(raw))
    except ValueError:
        minutes = 0
    if minutes <= 0:
        logging.warning("Ignoring invalid reminder minutes %r for %s", raw, sheet_name)
        return None
    return minutes


def read_table_configs(store: TabularStore, settings: Settings) -> List[TableConfig]:
    """Read the enabled tables from the configuration table."""
    if not store.has_table(settings.config_sheet_name):
        raise ConfigurationError(f"Configuration table {settings.config_sheet_name} does not exist")

    rows = store.read_table(settings.config_sheet_name)
    if len(rows) < 2:
        raise ConfigurationError(f"Configuration table {settings.config_sheet_name} has no data rows")

    headers = resolve_headers(rows[0], CONFIG_HEADERS)
    if not headers.has("sheet_name"):
        raise ConfigurationError(
            f"Configuration table {settings.config_sheet_name} has no sheet name column; header: {rows[0]}"
        )
    if not headers.has("enabled"):
        logging.info("No enabled column in %s, every listed table is enabled", settings.config_sheet_name)

    configs: List[TableConfig] = []
    seen = set()
    for row in rows[1:]:
        name = headers.value(row, "sheet_name")
        if not name:
            continue
        if headers.has("enabled") and not parse_bool(headers.value(row, "enabled")):
            logging.info("Skipping disabled table %s", name)
            continue
        if name in seen:
            logging.warning("Table %s listed twice in %s, using the first entry", name, settings.config_sheet_name)
            continue
        if not store.has_table(name):
            logging.warning("Configured table %s does not exist, skipped", name)
            continue

        teacher_calendar = headers.value(row, "teacher_calendar_id")
        student_calendar = headers.value(row, "student_calendar_id")
        tz_name = headers.value(row, "timezone")
        config = TableConfig(
            name=name,
            timezone=get_timezone(tz_name, settings.timezone.key) if tz_name else settings.timezone,
            teacher_calendar_id=teacher_calendar,
            student_calendar_id=student_calendar,
            teacher_email=headers.value(row, "teacher_email") or teacher_calendar,
            student_email=headers.value(row, "student_email") or student_calendar,
            reminder_minutes=_parse_reminder(headers.value(row, "reminder_minutes"), name),
        )
        logging.debug("Table %s: calendars %s, timezone %s", name, config.targets(), config.timezone.key)
        configs.append(config)
        seen.add(name)

    logging.info("Read %d enabled table(s) from %s", len(configs), settings.config_sheet_name)
    return configs
