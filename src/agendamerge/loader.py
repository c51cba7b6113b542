from __future__ import annotations
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List
import json

from .models import CalendarEvent

REQUIRED_FIELDS = ("id", "external_id", "feed_id", "start", "end")


def _parse_when(value: Any, field: str) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"{field}: expected an ISO date or datetime string, got {value!r}")
    try:
        if len(value) == 10:
            # All-day values carry a bare date
            return datetime.combine(date.fromisoformat(value), datetime.min.time())
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"{field}: {e}") from e


def event_from_dict(data: Dict[str, Any]) -> CalendarEvent:
    missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise ValueError(f"Event record missing required field(s): {', '.join(missing)}")

    sequence = data.get("sequence", 0)
    if not isinstance(sequence, int) or sequence < 0:
        raise ValueError(f"sequence: expected a non-negative integer, got {sequence!r}")

    all_day = data.get("all_day")
    if all_day is None:
        all_day = len(str(data["start"])) == 10

    return CalendarEvent(
        id=str(data["id"]),
        external_id=str(data["external_id"]),
        sequence=sequence,
        feed_id=str(data["feed_id"]),
        source=str(data.get("source", "ical")),
        title=str(data.get("title") or "(No title)"),
        start_time=_parse_when(data["start"], "start"),
        end_time=_parse_when(data["end"], "end"),
        timezone=data.get("timezone") or None,
        is_all_day=bool(all_day),
        description=data.get("description"),
        location=data.get("location"),
        color=data.get("color"),
        friend_user_id=data.get("friend_user_id"),
        canonical_event_id=data.get("canonical_event_id"),
        cancelled=bool(data.get("cancelled", False)),
    )


def event_to_dict(event: CalendarEvent) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": event.id,
        "external_id": event.external_id,
        "sequence": event.sequence,
        "feed_id": event.feed_id,
        "source": event.source,
        "title": event.title,
        "start": event.start_time.isoformat(),
        "end": event.end_time.isoformat(),
        "all_day": event.is_all_day,
    }
    optional = {
        "timezone": event.timezone,
        "description": event.description,
        "location": event.location,
        "color": event.color,
        "friend_user_id": event.friend_user_id,
        "canonical_event_id": event.canonical_event_id,
    }
    payload.update({k: v for k, v in optional.items() if v is not None})
    if event.cancelled:
        payload["cancelled"] = True
    return payload


def load_events(path: str) -> List[CalendarEvent]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("events", [])
    if not isinstance(data, list):
        raise ValueError("Events file must hold a list of event records")
    return [event_from_dict(item) for item in data]
