from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Set

from .cache import ColorAssignmentCache
from .models import CalendarEvent, ColorAssignment

logger = logging.getLogger(__name__)

CALENDAR_COLORS: List[str] = [
    "#3B82F6",  # blue
    "#10B981",  # emerald
    "#F59E0B",  # amber
    "#EF4444",  # red
    "#8B5CF6",  # violet
    "#06B6D4",  # cyan
    "#84CC16",  # lime
    "#F97316",  # orange
    "#EC4899",  # pink
    "#6366F1",  # indigo
    "#14B8A6",  # teal
    "#A855F7",  # purple
    "#22C55E",  # green
    "#F43F5E",  # rose
    "#0EA5E9",  # sky
    "#65A30D",  # green-600
    "#DC2626",  # red-600
    "#7C3AED",  # violet-600
    "#059669",  # emerald-600
    "#D97706",  # amber-600
]

MIN_CONTRAST_RATIO = 4.5        # WCAG AA, normal text
PREFERRED_CONTRAST_RATIO = 7.0  # WCAG AAA

DARK_TEXT = "#000000"
LIGHT_TEXT = "#FFFFFF"

_HEX_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
_PATTERNS = ("stripe", "dot")
_MAX_VARIATIONS = 19


def validate_hex_color(color: Optional[str]) -> bool:
    if not color or not isinstance(color, str):
        return False
    return bool(_HEX_RE.match(color))


def _hex_to_rgb(color: str):
    return int(color[1:3], 16), int(color[3:5], 16), int(color[5:7], 16)


def _relative_luminance(color: str) -> float:
    def channel(value: int) -> float:
        c = value / 255
        return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4

    r, g, b = _hex_to_rgb(color)
    return 0.2126 * channel(r) + 0.7152 * channel(g) + 0.0722 * channel(b)


def calculate_contrast_ratio(color1: str, color2: str) -> Optional[float]:
    if not validate_hex_color(color1) or not validate_hex_color(color2):
        return None
    l1 = _relative_luminance(color1)
    l2 = _relative_luminance(color2)
    lighter, darker = max(l1, l2), min(l1, l2)
    return (lighter + 0.05) / (darker + 0.05)


def get_optimal_text_color(background: str) -> Optional[str]:
    """Pick whichever of dark/light text reads better on `background`."""
    if not validate_hex_color(background):
        return None
    dark = calculate_contrast_ratio(background, DARK_TEXT)
    light = calculate_contrast_ratio(background, LIGHT_TEXT)
    return DARK_TEXT if dark >= light else LIGHT_TEXT


def check_contrast_compliance(background: str, text_color: Optional[str] = None, minimum: float = MIN_CONTRAST_RATIO) -> Optional[float]:
    """Return the contrast ratio when it meets `minimum`, otherwise None."""
    text = text_color or get_optimal_text_color(background)
    if text is None:
        return None
    ratio = calculate_contrast_ratio(background, text)
    if ratio is None or ratio < minimum:
        return None
    return ratio


def _color_variation(base: str, step: int) -> str:
    amount = step * 5
    r, g, b = (min(255, max(0, v + amount)) for v in _hex_to_rgb(base))
    return f"#{r:02X}{g:02X}{b:02X}"


class PaletteAllocator(Protocol):
    def assign_colors(
        self, item_ids: Sequence[str], already_assigned: Mapping[str, ColorAssignment]
    ) -> Dict[str, ColorAssignment]: ...

    def accepts(self, color: str) -> bool: ...


class ColorPaletteManager:
    """Deterministic palette allocator.

    The same item ids and committed assignments always produce the same
    colors: ids are served in sorted order and the palette is scanned from the
    start on every call.
    """

    def __init__(self, palette: Optional[Sequence[str]] = None, min_contrast: float = MIN_CONTRAST_RATIO) -> None:
        self.min_contrast = min_contrast
        candidates = [c.upper() for c in (palette or CALENDAR_COLORS) if validate_hex_color(c)]
        self.palette = [c for c in candidates if check_contrast_compliance(c, minimum=min_contrast) is not None]
        if not self.palette:
            raise ValueError(f"No palette color meets the {min_contrast}:1 contrast minimum")

    def accepts(self, color: str) -> bool:
        return validate_hex_color(color) and check_contrast_compliance(color, minimum=self.min_contrast) is not None

    def validate_color_assignment(self, color: Optional[str], pattern: Optional[str] = None) -> ColorAssignment:
        if not color or not self.accepts(color):
            color = self.palette[0]
        return ColorAssignment(color=color, pattern=pattern or "plain", wcag_rating=self._wcag_rating(color))

    def assign_colors(
        self, item_ids: Sequence[str], already_assigned: Mapping[str, ColorAssignment]
    ) -> Dict[str, ColorAssignment]:
        used: Set[str] = {a.color.upper() for a in already_assigned.values()}
        assignments: Dict[str, ColorAssignment] = {}
        for item_id in sorted(set(item_ids)):
            if item_id in already_assigned:
                continue
            assignment = self._next_assignment(used, len(assignments) + len(already_assigned))
            assignments[item_id] = assignment
            used.add(assignment.color.upper())
        return assignments

    def get_harmonious_colors(self, count: int) -> List[str]:
        count = min(max(count, 0), len(self.palette))
        if count == 0:
            return []
        step = len(self.palette) // count
        return [self.palette[i * step] for i in range(count)]

    def _next_assignment(self, used: Set[str], position: int) -> ColorAssignment:
        for color in self.palette:
            if color not in used:
                return ColorAssignment(color=color, wcag_rating=self._wcag_rating(color))

        for step in range(1, _MAX_VARIATIONS + 1):
            for base in self.palette:
                variant = _color_variation(base, step)
                if variant not in used and self.accepts(variant):
                    return ColorAssignment(color=variant, wcag_rating=self._wcag_rating(variant))

        # Every color and variant is taken; fall back to a patterned repeat.
        base = self.palette[position % len(self.palette)]
        pattern = _PATTERNS[(position // len(self.palette)) % len(_PATTERNS)]
        logger.debug("Palette exhausted; reusing %s with %s pattern", base, pattern)
        return ColorAssignment(color=base, pattern=pattern, wcag_rating=self._wcag_rating(base))

    def _wcag_rating(self, color: str) -> str:
        ratio = check_contrast_compliance(color, minimum=0)
        return "AAA" if ratio is not None and ratio >= PREFERRED_CONTRAST_RATIO else "AA"


class ColorCollisionResolver:
    """Gives every canonical event a color no other event in the pass uses.

    Order of preference: the cached color, then the event's own color, then a
    fresh color from the palette allocator. Only fresh colors are cached.
    """

    def __init__(self, allocator: Optional[PaletteAllocator] = None, cache: Optional[ColorAssignmentCache] = None) -> None:
        self.allocator = allocator or ColorPaletteManager()
        self.cache = cache if cache is not None else ColorAssignmentCache()

    def resolve_colors(self, events: Iterable[CalendarEvent]) -> Dict[str, str]:
        ordered = sorted(events, key=lambda e: e.id)
        assignments: Dict[str, str] = {}
        used: Set[str] = set()

        for event in ordered:
            cached = self.cache.get(event.id)
            if cached and cached.upper() not in used:
                assignments[event.id] = cached
                used.add(cached.upper())

        for event in ordered:
            if event.id in assignments or not event.color:
                continue
            if event.color.upper() in used or not self.allocator.accepts(event.color):
                continue
            assignments[event.id] = event.color
            used.add(event.color.upper())

        pending = [e.id for e in ordered if e.id not in assignments]
        if pending:
            committed = {event_id: ColorAssignment(color=color) for event_id, color in assignments.items()}
            allocated = self.allocator.assign_colors(pending, committed)
            for event_id in pending:
                color = allocated[event_id].color
                assignments[event_id] = color
                used.add(color.upper())
                self.cache.set(event_id, color)

        return {event.id: assignments[event.id] for event in ordered}
