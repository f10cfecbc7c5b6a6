"""
Settings loading: INI config file overlaid with environment variables.
"""

import os
from configparser import ConfigParser
from pathlib import Path
from typing import Mapping
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

from icloud_exchange_sync.models import WRITABLE_TAGS
from icloud_exchange_sync.models import ConfigError
from icloud_exchange_sync.models import SyncConfig

CONFIG_SECTION = "calendar-sync"

REQUIRED_SETTINGS = (
    "ICLOUD_USERNAME",
    "ICLOUD_APP_PASSWORD",
    "ICLOUD_CAL1",
    "ICLOUD_CAL2",
    "MS_TENANT_ID",
    "MS_CLIENT_ID",
    "MS_CLIENT_SECRET",
    "MS_USER_ID",
    "MS_TARGET_CALENDAR_NAME",
)

OPTIONAL_SETTINGS = (
    "ICLOUD_PUBLIC_CAL_URL",
    "MS_BUSY_SOURCE_CALENDAR_NAME",
    "ICLOUD_BUSY_TARGET_CAL",
    "SYNC_WRITEBACK_CALENDAR",
    "SYNC_LOOKBACK_DAYS",
    "SYNC_LOOKAHEAD_DAYS",
    "TIMEZONE",
    "SYNC_PAUSED",
)

_TRUTHY = {"1", "true", "yes", "on"}


def clean_value(value: str | None) -> str:
    """Trim whitespace and one layer of surrounding quotes."""
    if value is None:
        return ""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1].strip()
    return value


def load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser(interpolation=None)
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return {key.upper(): value for key, value in parser[CONFIG_SECTION].items()}


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge config-file values with the environment (environment wins)."""
    environ = os.environ if environ is None else environ
    settings = load_config_file(config_path) if config_path else {}
    for name in REQUIRED_SETTINGS + OPTIONAL_SETTINGS:
        if name in environ:
            settings[name] = environ[name]
    return {name: clean_value(value) for name, value in settings.items()}


def is_paused(settings: Mapping[str, str]) -> bool:
    """Kill switch: true when SYNC_PAUSED holds a truthy value."""
    return clean_value(settings.get("SYNC_PAUSED")).lower() in _TRUTHY


def _parse_days(settings: Mapping[str, str], name: str, default: int) -> int:
    raw = clean_value(settings.get(name))
    if not raw:
        return default
    try:
        days = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if days < 0:
        raise ConfigError(f"{name} must not be negative, got {days}")
    return days


def build_config(settings: Mapping[str, str], dry_run: bool = False) -> SyncConfig:
    """Validate settings and build the immutable SyncConfig.

    Raises ConfigError naming every missing required value, so a run fails
    before any network call is made.
    """
    values = {name: clean_value(settings.get(name)) for name in REQUIRED_SETTINGS + OPTIONAL_SETTINGS}

    missing = [name for name in REQUIRED_SETTINGS if not values[name]]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    timezone_name = values["TIMEZONE"] or "UTC"
    try:
        ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"Unknown timezone: {timezone_name}")

    busy_source = values["MS_BUSY_SOURCE_CALENDAR_NAME"] or None
    busy_target = values["ICLOUD_BUSY_TARGET_CAL"] or None
    if bool(busy_source) != bool(busy_target):
        raise ConfigError(
            "MS_BUSY_SOURCE_CALENDAR_NAME and ICLOUD_BUSY_TARGET_CAL must be set together"
        )

    write_back_tag = (values["SYNC_WRITEBACK_CALENDAR"] or "CAL1").upper()
    if write_back_tag not in WRITABLE_TAGS:
        raise ConfigError(
            f"SYNC_WRITEBACK_CALENDAR must be one of {', '.join(WRITABLE_TAGS)}, got {write_back_tag}"
        )

    return SyncConfig(
        icloud_username=values["ICLOUD_USERNAME"],
        icloud_password=values["ICLOUD_APP_PASSWORD"],
        icloud_cal1=values["ICLOUD_CAL1"],
        icloud_cal2=values["ICLOUD_CAL2"],
        ms_tenant_id=values["MS_TENANT_ID"],
        ms_client_id=values["MS_CLIENT_ID"],
        ms_client_secret=values["MS_CLIENT_SECRET"],
        ms_user_id=values["MS_USER_ID"],
        ms_target_calendar=values["MS_TARGET_CALENDAR_NAME"],
        lookback_days=_parse_days(values, "SYNC_LOOKBACK_DAYS", 7),
        lookahead_days=_parse_days(values, "SYNC_LOOKAHEAD_DAYS", 60),
        timezone=timezone_name,
        icloud_public_url=values["ICLOUD_PUBLIC_CAL_URL"] or None,
        busy_source_calendar=busy_source,
        busy_target_calendar=busy_target,
        write_back_tag=write_back_tag,
        dry_run=dry_run,
    )
