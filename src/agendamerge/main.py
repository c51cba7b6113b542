from __future__ import annotations

import hashlib
import json
import os
from datetime import datetime
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from .cache import ColorAssignmentCache
from .colors import ColorCollisionResolver, ColorPaletteManager
from .config import AppConfig, load_config
from .dedupe import DuplicateEventResolver, ResolutionFailed
from .loader import load_events
from .models import CalendarEvent, ResolutionResult
from .state import load_state, save_state
from .timezone import get_viewer_timezone

STATE_PATH_DEFAULT = "/var/lib/agendamerge/state.json"
CONFIG_PATH_DEFAULT = "/etc/agendamerge/config.yaml"


def _local(value: datetime, tz: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def _event_sort_key(e: CalendarEvent, tz: ZoneInfo):
    return (_local(e.start_time, tz).date(), 0 if e.is_all_day else 1, _local(e.start_time, tz), e.title.lower(), e.id)


def _agenda_lines(result: ResolutionResult, tz: ZoneInfo) -> List[str]:
    lines: List[str] = []
    events = sorted(result.canonical_events.values(), key=lambda e: _event_sort_key(e, tz))
    for e in events:
        start = _local(e.start_time, tz)
        end = _local(e.end_time, tz)
        when = "all day    " if e.is_all_day else f"{start:%H:%M}–{end:%H:%M}"
        color = result.color_assignments.get(e.id, "")
        line = f"{start:%a %Y-%m-%d} {when}  {e.title}"
        if e.location:
            line += f" @ {e.location}"
        lines.append(f"{line}  [{color}]")
    return lines


def _agenda_signature(tz: ZoneInfo, result: ResolutionResult) -> str:
    # Only include fields that affect the printed agenda.
    def _event_payload(e: CalendarEvent) -> dict:
        return {
            "id": e.id,
            "title": e.title,
            "start": _local(e.start_time, tz).isoformat(),
            "end": _local(e.end_time, tz).isoformat(),
            "all_day": e.is_all_day,
            "location": e.location or "",
            "color": result.color_assignments.get(e.id, ""),
        }

    payload = {
        "timezone": str(tz),
        "events": [_event_payload(e) for e in sorted(result.canonical_events.values(), key=lambda e: e.id)],
    }
    b = json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(b).hexdigest()


def _seconds_since(iso: str, now: datetime) -> float:
    if not iso:
        return 0.0
    try:
        then = datetime.fromisoformat(iso)
    except ValueError:
        return 0.0
    if then.tzinfo is None:
        then = then.replace(tzinfo=now.tzinfo)
    return max(0.0, (now - then).total_seconds())


def build_resolver(
    cfg: AppConfig,
    color_assignments: Optional[Dict[str, str]] = None,
    color_ages: Optional[Dict[str, float]] = None,
) -> DuplicateEventResolver:
    cache = ColorAssignmentCache(ttl_seconds=cfg.cache.ttl_seconds, max_entries=cfg.cache.max_entries)
    if color_assignments:
        cache.load(color_assignments, color_ages)
    palette = ColorPaletteManager(cfg.colors.palette, min_contrast=cfg.colors.min_contrast)
    return DuplicateEventResolver(
        color_resolver=ColorCollisionResolver(palette, cache),
        source_priority=cfg.sources.priority,
    )


def run_once(
    events_path: str,
    config_path: str = CONFIG_PATH_DEFAULT,
    state_path: str = STATE_PATH_DEFAULT,
    force: bool = False,
) -> ResolutionResult:
    load_dotenv()
    cfg = load_config(config_path)
    viewer_zone = get_viewer_timezone(os.environ.get("AGENDAMERGE_TIMEZONE") or cfg.timezone)
    tz = ZoneInfo(viewer_zone)

    state = load_state(state_path)
    now = datetime.now(tz=tz)
    # Persisted ages are as of the last saved pass; add the time since then.
    elapsed = _seconds_since(state.last_resolved_iso, now)
    ages = {k: state.color_ages.get(k, 0.0) + elapsed for k in state.color_assignments}
    resolver = build_resolver(cfg, state.color_assignments, ages)

    events = load_events(events_path)
    result = resolver.resolve(events, viewer_timezone=viewer_zone)

    for e in result.canonical_events.values():
        if not resolver.normalizer.validate_all_day_event(e, viewer_zone):
            print(f"All-day event {e.id} spans more than one day; check the feed data")

    print(
        f"Resolved {len(events)} events into {len(result.canonical_events)} canonical events; "
        f"collapsed={result.resolved_count}, duplicate_groups={len(result.duplicate_groups)}, tz={viewer_zone}"
    )

    sig = _agenda_signature(tz, result)
    if not force and sig == state.last_hash:
        print("No agenda change; skipping state update")
        return result

    for line in _agenda_lines(result, tz):
        print(line)

    state.last_hash = sig
    cache = resolver.color_resolver.cache
    state.last_resolved_iso = now.isoformat()
    state.color_assignments = cache.snapshot()
    state.color_ages = cache.ages()
    save_state(state_path, state)
    return result


def main():
    import argparse

    ap = argparse.ArgumentParser()
    ap.add_argument("--events", required=True)
    ap.add_argument("--config", default=CONFIG_PATH_DEFAULT)
    ap.add_argument("--state", default=STATE_PATH_DEFAULT)
    ap.add_argument("--force", action="store_true")
    args = ap.parse_args()

    try:
        run_once(events_path=args.events, config_path=args.config, state_path=args.state, force=args.force)
    except ValueError as e:
        print(f"Could not read events: {e}")
        raise SystemExit(1)
    except ResolutionFailed as e:
        print(f"Resolution failed; retry the whole batch. Error: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
