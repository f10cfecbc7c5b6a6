"""
iCalendar parsing and generation.

Everything leaving this module carries aware UTC instants: timed events are
converted from their TZID (floating times use the configured timezone) and
all-day dates become UTC midnight.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from datetime import tzinfo

import recurring_ical_events
from icalendar import Calendar
from icalendar import Event

from icloud_exchange_sync.models import NormalizedEvent
from icloud_exchange_sync.models import SyncWindow

_logger = logging.getLogger(__name__)

PRODID = "-//icloud-exchange-sync//EN"

# Separates the series uid from the occurrence key of an expanded recurrence.
OCCURRENCE_SEPARATOR = "::"

_RECURRENCE_PROPERTIES = ("RRULE", "RDATE", "RECURRENCE-ID")


def to_utc(value: date | datetime, tz: tzinfo) -> tuple[datetime, bool]:
    """Convert a DTSTART/DTEND value to (aware UTC datetime, is_all_day)."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=tz)
        return value.astimezone(timezone.utc), False
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc), True


def occurrence_key(value: date | datetime, tz: tzinfo) -> str:
    if isinstance(value, datetime):
        instant, _ = to_utc(value, tz)
        return instant.strftime("%Y%m%dT%H%M%SZ")
    return value.strftime("%Y%m%d")


def is_occurrence_uid(uid: str) -> bool:
    return OCCURRENCE_SEPARATOR in uid


def is_cancelled(component) -> bool:
    return str(component.get("STATUS", "")).upper() == "CANCELLED"


def component_to_event(
    component,
    calendar_label: str,
    tz: tzinfo,
    handle: str | None = None,
    recurring_uids: set[str] | frozenset = frozenset(),
) -> NormalizedEvent | None:
    """Normalise one VEVENT; returns None when it has no UID or DTSTART."""
    uid = str(component.get("UID", "")).strip()
    dtstart = component.get("DTSTART")
    if not uid or dtstart is None:
        return None

    start, is_all_day = to_utc(dtstart.dt, tz)
    if component.get("DTEND") is not None:
        end, _ = to_utc(component.get("DTEND").dt, tz)
    elif component.get("DURATION") is not None:
        end = start + component.get("DURATION").dt
    elif is_all_day:
        end = start + timedelta(days=1)
    else:
        end = start
    if end < start:
        end = start

    recurrence_id = None
    if uid in recurring_uids:
        rid = component.get("RECURRENCE-ID")
        recurrence_id = occurrence_key(rid.dt if rid is not None else dtstart.dt, tz)
        uid = f"{uid}{OCCURRENCE_SEPARATOR}{recurrence_id}"

    last_modified = None
    if component.get("LAST-MODIFIED") is not None:
        last_modified, _ = to_utc(component.get("LAST-MODIFIED").dt, tz)

    return NormalizedEvent(
        uid=uid,
        title=str(component.get("SUMMARY", "")),
        description=str(component.get("DESCRIPTION", "")),
        start=start,
        end=end,
        is_all_day=is_all_day,
        location=str(component.get("LOCATION", "")),
        calendar=calendar_label,
        handle=handle,
        last_modified=last_modified,
        recurrence_id=recurrence_id,
    )


def events_from_ical(
    data: str | bytes,
    calendar_label: str,
    tz: tzinfo,
    handle: str | None = None,
    window: SyncWindow | None = None,
) -> list[NormalizedEvent]:
    """Parse a VCALENDAR into NormalizedEvents.

    With a window, recurring series are expanded into their occurrences inside
    it and every returned event intersects the window.  Without one, only the
    master components are returned (used for lookups by uid).  Cancelled and
    unparsable events are skipped.
    """
    try:
        cal = Calendar.from_ical(data)
    except ValueError as e:
        _logger.warning(f"Skipping unparsable calendar object {handle or ''}: {e}")
        return []

    if window is None:
        components = [c for c in cal.walk("VEVENT") if c.get("RECURRENCE-ID") is None]
        recurring_uids: set[str] = set()
    else:
        recurring_uids = {
            str(c.get("UID", "")).strip()
            for c in cal.walk("VEVENT")
            if any(c.get(prop) is not None for prop in _RECURRENCE_PROPERTIES)
        }
        components = recurring_ical_events.of(cal).between(window.start, window.end)

    events = []
    for component in components:
        if is_cancelled(component):
            continue
        event = component_to_event(component, calendar_label, tz, handle, recurring_uids)
        if event is None:
            _logger.debug(f"Skipping VEVENT without UID or DTSTART in {calendar_label}")
            continue
        if window is not None and not window.overlaps(event.start, event.end):
            continue
        events.append(event)
    return events


def build_event_ics(event: NormalizedEvent, opaque: bool = False, now: datetime | None = None) -> str:
    """Serialise a NormalizedEvent as a single-event VCALENDAR."""
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")

    vevent = Event()
    vevent.add("uid", event.uid)
    vevent.add("dtstamp", now or datetime.now(timezone.utc))
    if event.is_all_day:
        vevent.add("dtstart", event.start.date())
        end = event.end if event.end > event.start else event.start + timedelta(days=1)
        vevent.add("dtend", end.date())
    else:
        vevent.add("dtstart", event.start)
        vevent.add("dtend", event.end)
    vevent.add("summary", event.title)
    if event.description:
        vevent.add("description", event.description)
    if event.location:
        vevent.add("location", event.location)
    if opaque:
        vevent.add("transp", "OPAQUE")

    cal.add_component(vevent)
    return cal.to_ical().decode("utf-8")


def _in_original_zone(instant: datetime, previous) -> datetime:
    """Express instant in the zone the existing property used, if it had one."""
    if isinstance(previous, datetime) and previous.tzinfo is not None:
        return instant.astimezone(previous.tzinfo)
    return instant


def _replace_property(vevent, name: str, value):
    if name in vevent:
        del vevent[name]
    vevent.add(name, value)


def merge_event_ics(
    existing: str | bytes,
    event: NormalizedEvent,
    opaque: bool = False,
    now: datetime | None = None,
) -> str:
    """Apply event's timing and text to an existing calendar object.

    Only the master VEVENT for event.uid is edited, and only the properties
    the sync owns; alarms, attendees and everything else are kept.  Raises
    ValueError when the object is unparsable or holds no such VEVENT.
    """
    cal = Calendar.from_ical(existing)
    masters = [
        c for c in cal.walk("VEVENT")
        if str(c.get("UID", "")).strip() == event.uid and c.get("RECURRENCE-ID") is None
    ]
    if not masters:
        raise ValueError(f"no VEVENT with UID {event.uid}")
    vevent = masters[0]
    stamp = now or datetime.now(timezone.utc)

    previous_start = vevent["DTSTART"].dt if "DTSTART" in vevent else None
    previous_end = vevent["DTEND"].dt if "DTEND" in vevent else previous_start
    if "DURATION" in vevent:
        del vevent["DURATION"]
    if event.is_all_day:
        end = event.end if event.end > event.start else event.start + timedelta(days=1)
        _replace_property(vevent, "DTSTART", event.start.date())
        _replace_property(vevent, "DTEND", end.date())
    else:
        _replace_property(vevent, "DTSTART", _in_original_zone(event.start, previous_start))
        _replace_property(vevent, "DTEND", _in_original_zone(event.end, previous_end))

    _replace_property(vevent, "SUMMARY", event.title)
    if event.location:
        _replace_property(vevent, "LOCATION", event.location)
    elif "LOCATION" in vevent:
        del vevent["LOCATION"]
    if str(vevent.get("DESCRIPTION", "")) != event.description:
        if event.description:
            _replace_property(vevent, "DESCRIPTION", event.description)
        else:
            del vevent["DESCRIPTION"]
    if opaque:
        _replace_property(vevent, "TRANSP", "OPAQUE")

    sequence = int(vevent.get("SEQUENCE", 0))
    _replace_property(vevent, "SEQUENCE", sequence + 1)
    _replace_property(vevent, "DTSTAMP", stamp)
    _replace_property(vevent, "LAST-MODIFIED", stamp)
    return cal.to_ical().decode("utf-8")
