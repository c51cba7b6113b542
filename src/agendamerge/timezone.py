from __future__ import annotations

import logging
import os
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import CalendarEvent

logger = logging.getLogger(__name__)

UTC = timezone.utc
DEFAULT_VIEWER_TIMEZONE = "UTC"
GAP_TOLERANCE = timedelta(minutes=1)
DAY_END = time(23, 59, 59, 999000)

E = TypeVar("E", bound=CalendarEvent)


def get_viewer_timezone(preferred: Optional[str] = None) -> str:
    """Return the first loadable IANA zone of `preferred`, $TZ, then UTC."""
    for candidate in (preferred, os.environ.get("TZ")):
        if not candidate:
            continue
        try:
            ZoneInfo(candidate)
            return candidate
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r; trying next candidate", candidate)
    return DEFAULT_VIEWER_TIMEZONE


def _round_trip(wall_clock: datetime, tz: ZoneInfo) -> datetime:
    return wall_clock.replace(tzinfo=tz).astimezone(UTC).astimezone(tz)


def _resolve_wall_clock(wall_clock: datetime, tz: ZoneInfo) -> datetime:
    # Inside a spring-forward gap the round trip lands on a different wall
    # clock; step past the gap and resolve again.
    naive = wall_clock.replace(tzinfo=None)
    resolved = _round_trip(naive, tz)
    if abs(resolved.replace(tzinfo=None) - naive) > GAP_TOLERANCE:
        resolved = _round_trip(naive + timedelta(hours=1), tz)
    return resolved


class TimezoneNormalizer:
    """Converts event times into the viewer's zone.

    Naive datetimes are wall-clock readings: in the event's declared zone when
    it has one, in the viewer's zone when it is floating. Aware datetimes are
    instants. Nothing here raises: failures are logged and the input comes
    back unconverted.
    """

    def is_floating_time(self, event: CalendarEvent) -> bool:
        return not event.timezone

    def is_absolute_time(self, event: CalendarEvent) -> bool:
        return not self.is_floating_time(event)

    def normalize_nonexistent_local_time(self, local: datetime, zone: str) -> datetime:
        try:
            return _resolve_wall_clock(local, ZoneInfo(zone))
        except Exception as e:
            logger.warning("Could not normalize %s in %s: %s", local.isoformat(), zone, e)
            return local

    def handle_floating_time(self, value: datetime, zone: str) -> datetime:
        return self.normalize_nonexistent_local_time(value.replace(tzinfo=None), zone)

    def convert_absolute_date_to_local(self, instant: datetime, zone: str) -> datetime:
        try:
            if instant.tzinfo is None:
                instant = instant.replace(tzinfo=UTC)
            return instant.astimezone(ZoneInfo(zone))
        except Exception as e:
            logger.warning("Could not convert %s to %s: %s", instant.isoformat(), zone, e)
            return instant

    def convert_to_local_time(self, event: E, viewer_zone: str) -> E:
        if event.start_time is None or event.end_time is None:
            return event
        try:
            viewer_tz = ZoneInfo(viewer_zone)
            if self.is_floating_time(event):
                return replace(
                    event,
                    start_time=_resolve_wall_clock(event.start_time, viewer_tz),
                    end_time=_resolve_wall_clock(event.end_time, viewer_tz),
                )

            if event.timezone == viewer_zone:
                return event

            declared_tz = ZoneInfo(event.timezone)
            return replace(
                event,
                start_time=self._as_instant(event.start_time, declared_tz).astimezone(viewer_tz),
                end_time=self._as_instant(event.end_time, declared_tz).astimezone(viewer_tz),
                timezone=viewer_zone,
            )
        except Exception as e:
            logger.warning("Leaving event %s unconverted: %s", event.id, e)
            return event

    def adjust_for_dst_transition(self, events: Iterable[E], viewer_zone: str) -> List[E]:
        return [self.convert_to_local_time(e, viewer_zone) for e in events]

    def handle_dst_gaps(self, time_slots: Iterable[datetime], zone: str) -> List[datetime]:
        return [self.normalize_nonexistent_local_time(slot, zone) for slot in time_slots]

    def get_local_day_bounds(self, day: date, zone: str) -> Tuple[datetime, datetime]:
        if isinstance(day, datetime):
            day = day.date()
        start = datetime.combine(day, time.min)
        end = datetime.combine(day, DAY_END)
        try:
            tz = ZoneInfo(zone)
            return _resolve_wall_clock(start, tz), _resolve_wall_clock(end, tz)
        except Exception as e:
            logger.warning("Could not compute day bounds for %s in %s: %s", day, zone, e)
            return start, end

    def validate_all_day_event(self, event: CalendarEvent, zone: str) -> bool:
        if not event.is_all_day or event.start_time is None or event.end_time is None:
            return True
        try:
            tz = ZoneInfo(zone)
            day_diff = (self._local_date(event.end_time, tz) - self._local_date(event.start_time, tz)).days
            return 0 <= day_diff <= 1
        except Exception as e:
            logger.warning("Could not validate all-day event %s: %s", event.id, e)
            return False

    @staticmethod
    def _as_instant(value: datetime, declared_tz: ZoneInfo) -> datetime:
        if value.tzinfo is not None:
            return value
        return _resolve_wall_clock(value, declared_tz)

    @staticmethod
    def _local_date(value: datetime, tz: ZoneInfo) -> date:
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(tz).date()
