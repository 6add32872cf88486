from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PetHealthState(str, Enum):
    SICK = "sick"
    SAD = "sad"
    CONTENT = "content"
    HAPPY = "happy"
    FULL_HEALTH = "fullhealth"


# (from_hours, to_hours, health at from, health at to)
HEALTH_BANDS: tuple[tuple[float, float, int, int], ...] = (
    (2.0, 3.0, 100, 80),
    (3.0, 4.0, 80, 70),
    (4.0, 5.0, 70, 60),
    (5.0, 6.0, 60, 40),
    (6.0, 8.0, 40, 20),
    (8.0, 10.0, 20, 0),
)


@dataclass(frozen=True)
class PetHealth:
    percentage: int
    state: PetHealthState


def health_percentage(total_minutes: int) -> int:
    hours = max(0, total_minutes) / 60.0
    if hours <= HEALTH_BANDS[0][0]:
        return 100
    for start, end, high, low in HEALTH_BANDS:
        if hours <= end:
            progress = (hours - start) / (end - start)
            return high - int(progress * (high - low))
    return 0


def health_state(percentage: float) -> PetHealthState:
    if percentage >= 80:
        return PetHealthState.FULL_HEALTH
    if percentage >= 60:
        return PetHealthState.HAPPY
    if percentage >= 40:
        return PetHealthState.CONTENT
    if percentage >= 20:
        return PetHealthState.SAD
    return PetHealthState.SICK


def pet_health(total_minutes: int) -> PetHealth:
    pct = health_percentage(total_minutes)
    return PetHealth(percentage=pct, state=health_state(pct))
