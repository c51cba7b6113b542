from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List
import yaml

from .cache import DEFAULT_MAX_ENTRIES, DEFAULT_TTL_SECONDS
from .colors import CALENDAR_COLORS, MIN_CONTRAST_RATIO
from .dedupe import SOURCE_PRIORITY

@dataclass
class CacheConfig:
    ttl_seconds: int
    max_entries: int

@dataclass
class ColorsConfig:
    palette: List[str]
    min_contrast: float

@dataclass
class SourcesConfig:
    priority: Dict[str, int] = field(default_factory=dict)

@dataclass
class AppConfig:
    timezone: str
    cache: CacheConfig
    colors: ColorsConfig
    sources: SourcesConfig

def load_config(path: str) -> AppConfig:
    p = Path(path)
    data: Dict[str, Any] = {}
    if p.exists():
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    cache = data.get("cache") or {}
    colors = data.get("colors") or {}
    sources = data.get("sources") or {}

    return AppConfig(
        timezone=str(data.get("timezone", "UTC")),
        cache=CacheConfig(
            ttl_seconds=int(cache.get("ttl_seconds", DEFAULT_TTL_SECONDS)),
            max_entries=int(cache.get("max_entries", DEFAULT_MAX_ENTRIES)),
        ),
        colors=ColorsConfig(
            palette=[str(c) for c in colors.get("palette", CALENDAR_COLORS)],
            min_contrast=float(colors.get("min_contrast", MIN_CONTRAST_RATIO)),
        ),
        sources=SourcesConfig(
            priority={str(k): int(v) for k, v in (sources.get("priority") or SOURCE_PRIORITY).items()},
        ),
    )
