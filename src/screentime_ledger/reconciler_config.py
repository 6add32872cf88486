from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


DEFAULT_POLL_OFFSETS: tuple[float, ...] = (0.0, 1.0, 2.0, 3.0, 6.0, 9.0, 12.0, 15.0)
DEFAULT_PLACEHOLDER_PATTERNS: tuple[str, ...] = (r"^app\s*\d{2,}$",)
DEFAULT_PLACEHOLDER_LITERALS: tuple[str, ...] = ("unknown",)
DEFAULT_PLACEHOLDER_SUBSTRINGS: tuple[str, ...] = ("familycontrols", "authentication")


@dataclass(frozen=True)
class ReconcilerConfig:
    poll_offsets: tuple[float, ...] = DEFAULT_POLL_OFFSETS
    placeholder_patterns: tuple[str, ...] = DEFAULT_PLACEHOLDER_PATTERNS
    placeholder_literals: tuple[str, ...] = DEFAULT_PLACEHOLDER_LITERALS
    placeholder_substrings: tuple[str, ...] = DEFAULT_PLACEHOLDER_SUBSTRINGS
    top_apps_limit: int = 10


def _str_tuple(value: object, fallback: tuple[str, ...]) -> tuple[str, ...]:
    if not isinstance(value, list):
        return fallback
    items = tuple(str(v).strip() for v in value if str(v).strip())
    return items or fallback


def load_reconciler_config(path: Path) -> ReconcilerConfig:
    if not path.exists():
        return ReconcilerConfig()

    raw = yaml.safe_load(path.read_text()) or {}
    if not isinstance(raw, dict):
        return ReconcilerConfig()

    offsets: tuple[float, ...] = DEFAULT_POLL_OFFSETS
    offsets_raw = raw.get("poll_offsets")
    if isinstance(offsets_raw, list):
        parsed: list[float] = []
        for item in offsets_raw:
            try:
                parsed.append(max(0.0, float(item)))
            except (TypeError, ValueError):
                continue
        if parsed:
            offsets = tuple(sorted(parsed))

    placeholders = raw.get("placeholders", {})
    if not isinstance(placeholders, dict):
        placeholders = {}

    try:
        top_limit = max(1, int(raw.get("top_apps_limit", 10)))
    except (TypeError, ValueError):
        top_limit = 10

    return ReconcilerConfig(
        poll_offsets=offsets,
        placeholder_patterns=_str_tuple(placeholders.get("patterns"), DEFAULT_PLACEHOLDER_PATTERNS),
        placeholder_literals=tuple(
            s.lower() for s in _str_tuple(placeholders.get("literals"), DEFAULT_PLACEHOLDER_LITERALS)
        ),
        placeholder_substrings=tuple(
            s.lower() for s in _str_tuple(placeholders.get("substrings"), DEFAULT_PLACEHOLDER_SUBSTRINGS)
        ),
        top_apps_limit=top_limit,
    )
