"""
Schedule Utilities
Time & calendar evaluation of schedule entries in the device's local time
"""
import logging
from datetime import datetime, date, time, timezone
from typing import List, Dict, Optional, Any, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from flask import current_app, has_app_context
from models import Schedule, ScheduleEntry, Scene, db
from utils.content_refs import ContentType

logger = logging.getLogger(__name__)

SCENE_TARGETS = (ContentType.SCENE.value,)
LEGACY_TARGETS = (ContentType.PLAYLIST.value, ContentType.LAYOUT.value, ContentType.MEDIA.value)


def _default_timezone_name() -> str:
    if has_app_context():
        return current_app.config.get('DEFAULT_TIMEZONE', 'UTC')
    return 'UTC'


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """
    Look up an IANA timezone, falling back to DEFAULT_TIMEZONE

    Unknown or malformed names are logged and never raised.
    """
    fallback = _default_timezone_name()
    if not tz_name:
        return ZoneInfo(fallback)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning(f"Unknown timezone {tz_name!r}, using {fallback}")
        return ZoneInfo(fallback)


def local_now(now_utc: datetime, tz_name: Optional[str]) -> datetime:
    """
    Convert a UTC instant into the device's local civil time

    Args:
        now_utc: Naive datetime (treated as UTC) or aware datetime
        tz_name: IANA timezone name of the device

    Returns:
        Aware datetime in the device's zone
    """
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    return now_utc.astimezone(get_zone(tz_name))


def local_weekday(moment: datetime) -> int:
    """Day of week with 0=Sunday..6=Saturday"""
    return moment.isoweekday() % 7


def parse_days_of_week(value) -> Optional[List[int]]:
    """
    Parse a stored day-of-week set

    Accepts "1,2,3" strings or integer lists. Returns None (every day)
    when the set is unset or blank, and an empty list (no day) when none
    of the given days is valid.
    """
    if value is None:
        return None
    if isinstance(value, str):
        tokens = [t.strip() for t in value.split(',') if t.strip()]
    else:
        tokens = list(value)

    if not tokens:
        return None

    days = []
    for token in tokens:
        try:
            day = int(token)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid day of week {token!r}")
            continue
        if 0 <= day <= 6 and day not in days:
            days.append(day)
        elif not 0 <= day <= 6:
            logger.warning(f"Ignoring out of range day of week {day}")

    if not days:
        logger.warning(f"No valid day of week in {value!r}, entry never matches")
    return sorted(days)


def time_in_window(moment: time, start: Optional[time], end: Optional[time]) -> bool:
    """
    Inclusive time-of-day check

    An end earlier than the start is not treated as an overnight window
    and never matches.
    """
    if start is not None and end is not None and end < start:
        return False
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def is_entry_active(entry: ScheduleEntry, now_utc: datetime, device_timezone: Optional[str]) -> bool:
    """
    Decide whether a schedule entry is active right now for a device

    Args:
        entry: ScheduleEntry to evaluate
        now_utc: Current instant
        device_timezone: IANA name of the device's timezone

    Returns:
        True when the date range, day-of-week set and time range all match
    """
    if not entry.is_active:
        return False

    local = local_now(now_utc, device_timezone)
    today = local.date()

    if entry.start_date and today < entry.start_date:
        return False
    if entry.end_date and today > entry.end_date:
        return False

    days = parse_days_of_week(entry.days_of_week)
    if days is not None and local_weekday(local) not in days:
        return False

    return time_in_window(local.time(), entry.start_time, entry.end_time)


def _entry_sort_key(entry: ScheduleEntry):
    # Highest priority first, then earliest start time (untimed last), then id
    untimed = entry.start_time is None
    return (-(entry.priority or 0), untimed, entry.start_time or time.min, entry.id or 0)


def rank_active_entries(entries: Iterable[ScheduleEntry], now_utc: datetime,
                        device_timezone: Optional[str]) -> List[ScheduleEntry]:
    """Entries currently in window, best first"""
    active = [e for e in entries if is_entry_active(e, now_utc, device_timezone)]
    active.sort(key=_entry_sort_key)
    return active


def pick_winning_entry(entries: Iterable[ScheduleEntry], now_utc: datetime,
                       device_timezone: Optional[str]) -> Optional[ScheduleEntry]:
    """
    Choose the entry to show among those currently in window

    Returns:
        Winning ScheduleEntry or None if no entry is active
    """
    ranked = rank_active_entries(entries, now_utc, device_timezone)
    return ranked[0] if ranked else None


def _entries_for(schedule: Optional[Schedule], target_types) -> List[ScheduleEntry]:
    if schedule is None or not schedule.is_active:
        return []
    return schedule.entries.filter(ScheduleEntry.target_type.in_(target_types)).all()


def get_scene_schedule(device) -> Optional[Schedule]:
    """Scene schedule of a device: its own, else its group's"""
    if device.assigned_schedule_id is not None:
        return device.assigned_schedule
    if device.group is not None and device.group.assigned_schedule_id is not None:
        return device.group.assigned_schedule
    return None


def _targets_renderable_scene(entry: ScheduleEntry) -> bool:
    scene = db.session.get(Scene, entry.target_id)
    return scene is not None and scene.is_renderable


def get_scene_entries(device) -> List[ScheduleEntry]:
    """Scene entries whose scene exists and is active with content"""
    entries = _entries_for(get_scene_schedule(device), SCENE_TARGETS)
    return [e for e in entries if _targets_renderable_scene(e)]


def get_legacy_entries(device) -> List[ScheduleEntry]:
    return _entries_for(device.assigned_schedule, LEGACY_TARGETS)


def _entry_summary(entry: Optional[ScheduleEntry]) -> Optional[Dict[str, Any]]:
    if entry is None:
        return None
    return {
        'entry_id': entry.id,
        'schedule_id': entry.schedule_id,
        'target_type': entry.target_type,
        'target_id': entry.target_id,
        'priority': entry.priority,
    }


def get_schedule_preview(device, day: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Generate an hourly preview of which entry wins for a device

    Args:
        device: Device to preview
        day: Local calendar day (default: today in the device's timezone)

    Returns:
        List of 24 hour slots with the winning scene and legacy entry
    """
    zone = get_zone(device.timezone)
    if day is None:
        day = datetime.now(zone).date()

    scene_entries = get_scene_entries(device)
    legacy_entries = get_legacy_entries(device)

    timeline = []
    for hour in range(24):
        local_slot = datetime.combine(day, time(hour, 0)).replace(tzinfo=zone)
        slot_utc = local_slot.astimezone(timezone.utc).replace(tzinfo=None)

        scene_entry = pick_winning_entry(scene_entries, slot_utc, device.timezone)
        legacy_entry = pick_winning_entry(legacy_entries, slot_utc, device.timezone)

        timeline.append({
            'hour': hour,
            'local_time': local_slot.isoformat(),
            'utc_time': slot_utc.isoformat(),
            'scheduled_scene': _entry_summary(scene_entry),
            'legacy_schedule': _entry_summary(legacy_entry),
        })

    return timeline
