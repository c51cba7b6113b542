from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

@dataclass(frozen=True)
class CalendarEvent:
    id: str                     # source-local id
    external_id: str            # shared by every observation of the same real-world event
    sequence: int
    feed_id: str
    source: str                 # "google" / "ical" / "friend" / ...
    title: str
    start_time: datetime        # naive means wall-clock in `timezone` (or floating)
    end_time: datetime
    timezone: Optional[str] = None
    is_all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    color: Optional[str] = None
    friend_user_id: Optional[str] = None
    canonical_event_id: Optional[str] = None
    cancelled: bool = False

@dataclass
class EventGroup:
    canonical_id: str
    events: List[CalendarEvent]
    highest_sequence: int
    primary_event: CalendarEvent
    sources: Set[str]

@dataclass(frozen=True)
class ColorAssignment:
    color: str
    pattern: str = "plain"      # "plain" / "stripe" / "dot"
    wcag_rating: str = "AA"

@dataclass
class ResolutionResult:
    canonical_events: Dict[str, CalendarEvent] = field(default_factory=dict)
    duplicate_groups: Dict[str, List[CalendarEvent]] = field(default_factory=dict)
    color_assignments: Dict[str, str] = field(default_factory=dict)
    resolved_count: int = 0
