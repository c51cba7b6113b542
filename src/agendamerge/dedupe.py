from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from .colors import ColorCollisionResolver
from .models import CalendarEvent, EventGroup, ResolutionResult
from .timezone import TimezoneNormalizer

logger = logging.getLogger(__name__)

SOURCE_PRIORITY: Dict[str, int] = {"google": 3, "ical": 2}
DEFAULT_SOURCE_PRIORITY = 1


class DuplicateEventResolverError(Exception):
    code = "RESOLVER_ERROR"

    def __init__(self, message: str, event_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.event_id = event_id


class ResolutionFailed(DuplicateEventResolverError):
    code = "RESOLUTION_FAILED"


class EmptyEventList(DuplicateEventResolverError):
    code = "EMPTY_EVENT_LIST"


def _instant(event: CalendarEvent, value: datetime) -> datetime:
    # Naive readings belong to the declared zone; floating ones compare as UTC.
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=ZoneInfo(event.timezone) if event.timezone else timezone.utc)


def _overlaps(a: CalendarEvent, b: CalendarEvent) -> bool:
    a_start, a_end = _instant(a, a.start_time), _instant(a, a.end_time)
    b_start, b_end = _instant(b, b.start_time), _instant(b, b.end_time)
    return a_start < b_end and b_start < a_end


def _content_differs(a: CalendarEvent, b: CalendarEvent) -> bool:
    return a.title != b.title or a.description != b.description or a.location != b.location


def events_conflict(a: CalendarEvent, b: CalendarEvent) -> bool:
    return _overlaps(a, b) and _content_differs(a, b)


class DuplicateEventResolver:
    """Collapses every observation of one real-world event into a canonical record.

    Observations are grouped by `external_id`. Within a group the newest
    revision wins; an older revision from another source survives next to it
    unless the two overlap in time and disagree on content. The winner's copy
    is re-keyed as ``canonical:<external_id>:<feed_id>``.
    """

    def __init__(
        self,
        color_resolver: Optional[ColorCollisionResolver] = None,
        normalizer: Optional[TimezoneNormalizer] = None,
        source_priority: Optional[Mapping[str, int]] = None,
    ) -> None:
        self.color_resolver = color_resolver or ColorCollisionResolver()
        self.normalizer = normalizer or TimezoneNormalizer()
        self.source_priority = dict(SOURCE_PRIORITY if source_priority is None else source_priority)

    def resolve(self, events: List[CalendarEvent], viewer_timezone: Optional[str] = None) -> ResolutionResult:
        if not events:
            return ResolutionResult()

        try:
            if viewer_timezone:
                events = self.normalizer.adjust_for_dst_transition(events, viewer_timezone)
            groups = self._resolve_groups(self._group_by_external_id(events))
            canonical_events = self._materialize(groups)
            color_assignments = self.resolve_color_collisions(list(canonical_events.values()))
            duplicate_groups = {
                g.canonical_id: g.events
                for g in groups
                if len(g.events) > 1 and g.canonical_id in canonical_events
            }
        except Exception as e:
            raise ResolutionFailed(f"Failed to resolve event duplicates: {e}") from e

        resolved_count = len(events) - len(canonical_events)
        logger.debug(
            "Resolved %d events into %d canonical events (%d duplicate groups)",
            len(events),
            len(canonical_events),
            len(duplicate_groups),
        )
        return ResolutionResult(
            canonical_events=canonical_events,
            duplicate_groups=duplicate_groups,
            color_assignments=color_assignments,
            resolved_count=resolved_count,
        )

    def resolve_color_collisions(self, events: List[CalendarEvent]) -> Dict[str, str]:
        return self.color_resolver.resolve_colors(events)

    def generate_event_key(self, event: CalendarEvent) -> str:
        return f"{event.external_id}:{event.sequence}:{self.get_event_source_id(event)}"

    def get_event_source_id(self, event: CalendarEvent) -> str:
        return event.friend_user_id or event.feed_id

    def get_source_priority(self, event: CalendarEvent) -> int:
        return self.source_priority.get(event.source, DEFAULT_SOURCE_PRIORITY)

    def compare_event_sequences(self, a: CalendarEvent, b: CalendarEvent) -> int:
        return b.sequence - a.sequence

    def are_sources_compatible(self, a: CalendarEvent, b: CalendarEvent) -> bool:
        if self.get_event_source_id(a) == self.get_event_source_id(b):
            return True
        return a.external_id == b.external_id

    def are_events_equivalent(self, a: CalendarEvent, b: CalendarEvent) -> bool:
        return a.external_id == b.external_id and self.are_sources_compatible(a, b)

    def rank_events(self, events: List[CalendarEvent]) -> List[CalendarEvent]:
        """Order by sequence desc, source priority desc, then feed id."""
        return sorted(events, key=lambda e: (-e.sequence, -self.get_source_priority(e), e.feed_id))

    def assign_canonical_id(self, events: List[CalendarEvent]) -> str:
        if not events:
            raise EmptyEventList("Cannot assign canonical ID to empty event list")
        primary = self.rank_events(events)[0]
        return f"canonical:{primary.external_id}:{primary.feed_id}"

    def is_superseded(self, event: CalendarEvent, group: List[CalendarEvent]) -> bool:
        source_id = self.get_event_source_id(event)
        for other in group:
            if other.sequence <= event.sequence:
                continue
            if self.get_event_source_id(other) == source_id:
                return True
            if self.are_sources_compatible(event, other) and events_conflict(event, other):
                return True
        return False

    def _group_by_external_id(self, events: List[CalendarEvent]) -> Dict[str, List[CalendarEvent]]:
        groups: Dict[str, List[CalendarEvent]] = {}
        for event in events:
            groups.setdefault(event.external_id, []).append(event)
        return groups

    def _resolve_groups(self, grouped: Dict[str, List[CalendarEvent]]) -> List[EventGroup]:
        resolved: List[EventGroup] = []
        for members in grouped.values():
            if len(members) == 1:
                event = members[0]
                resolved.append(
                    EventGroup(
                        canonical_id=self.assign_canonical_id(members),
                        events=[event],
                        highest_sequence=event.sequence,
                        primary_event=event,
                        sources={self.get_event_source_id(event)},
                    )
                )
                continue
            resolved.append(self._resolve_duplicate_group(members))
        return resolved

    def _resolve_duplicate_group(self, members: List[CalendarEvent]) -> EventGroup:
        by_sequence = sorted(members, key=lambda e: -e.sequence)
        highest = by_sequence[0].sequence
        survivors = [
            e for e in by_sequence if e.sequence == highest or not self.is_superseded(e, by_sequence)
        ]
        ranked = self.rank_events(survivors)
        primary = ranked[0]
        return EventGroup(
            canonical_id=f"canonical:{primary.external_id}:{primary.feed_id}",
            events=ranked,
            highest_sequence=highest,
            primary_event=primary,
            sources={self.get_event_source_id(e) for e in ranked},
        )

    def _materialize(self, groups: List[EventGroup]) -> Dict[str, CalendarEvent]:
        canonical: Dict[str, CalendarEvent] = {}
        for group in groups:
            primary = group.primary_event
            if primary.cancelled:
                continue
            changes = {"id": group.canonical_id}
            if primary.friend_user_id:
                changes["canonical_event_id"] = group.canonical_id
            canonical[group.canonical_id] = replace(primary, **changes)
        return canonical
