from __future__ import annotations
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Dict, Any
import json

@dataclass
class State:
    last_hash: str = ""
    last_resolved_iso: str = ""
    color_assignments: Dict[str, str] = field(default_factory=dict)  # event id -> color, LRU first
    color_ages: Dict[str, float] = field(default_factory=dict)  # event id -> seconds old at last_resolved_iso

def load_state(path: str) -> State:
    p = Path(path)
    if not p.exists():
        return State()
    data: Dict[str, Any] = json.loads(p.read_text(encoding="utf-8"))
    return State(
        last_hash=str(data.get("last_hash", "")),
        last_resolved_iso=str(data.get("last_resolved_iso", "")),
        color_assignments={str(k): str(v) for k, v in (data.get("color_assignments") or {}).items()},
        color_ages={str(k): float(v) for k, v in (data.get("color_ages") or {}).items()},
    )

def save_state(path: str, state: State) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(asdict(state), indent=2), encoding="utf-8")
