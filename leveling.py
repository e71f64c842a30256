"""
Experience and levels.

Level thresholds grow exponentially: reaching level n+1 from level n costs
floor(100 * 1.5^(n-1)) XP. One award may cross several thresholds, so the
rollover is an explicit loop with a hard iteration cap.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from reward_config import FEATURE_GATES

MAX_LEVEL_STEPS = 1000


class LevelCurveError(RuntimeError):
    """The level curve produced a threshold the rollover loop cannot settle."""


def xp_required(level: int) -> int:
    """XP needed to advance from `level` to `level + 1`."""
    return math.floor(100 * 1.5 ** (level - 1))


def _threshold(level: int) -> int:
    required = xp_required(level)
    if required <= 0:
        raise LevelCurveError(f"Non-positive XP threshold {required} at level {level}")
    return required


def _roll(level: int, progress: int) -> tuple[int, int]:
    steps = 0
    required = _threshold(level)
    while progress >= required:
        steps += 1
        if steps > MAX_LEVEL_STEPS:
            raise LevelCurveError(f"Level rollover exceeded {MAX_LEVEL_STEPS} steps")
        progress -= required
        level += 1
        required = _threshold(level)
    return level, progress


def level_from_xp(total_xp: int) -> int:
    return _roll(1, max(0, total_xp))[0]


def xp_for_levels_below(level: int) -> int:
    return sum(xp_required(n) for n in range(1, level))


@dataclass
class XPSnapshot:
    total_xp: int
    level: int
    xp_progress: int
    xp_required: int

    def to_dict(self) -> dict:
        return {
            "total_xp": self.total_xp,
            "level": self.level,
            "xp_progress": self.xp_progress,
            "xp_required": self.xp_required,
        }


def xp_snapshot(total_xp: int) -> XPSnapshot:
    level, progress = _roll(1, max(0, total_xp))
    return XPSnapshot(total_xp=total_xp, level=level, xp_progress=progress,
                      xp_required=xp_required(level))


@dataclass
class AwardResult:
    total_xp: int
    level: int
    xp_progress: int
    xp_required: int
    xp_awarded: int = 0
    previous_level: int = 1
    daily_bonus_applied: bool = False
    events: list[dict] = field(default_factory=list)

    @property
    def leveled_up(self) -> bool:
        return self.level > self.previous_level

    def to_dict(self) -> dict:
        return {
            "total_xp": self.total_xp,
            "level": self.level,
            "xp_progress": self.xp_progress,
            "xp_required": self.xp_required,
            "xp_awarded": self.xp_awarded,
            "leveled_up": self.leveled_up,
            "daily_bonus_applied": self.daily_bonus_applied,
            "events": list(self.events),
        }


def apply_xp(total_xp: int, level: int, amount: int, age_group: str = "adult") -> AwardResult:
    """Add `amount` XP to a (total_xp, level) ledger, crossing as many levels as it covers."""
    progress = total_xp - xp_for_levels_below(level)
    if amount <= 0:
        return AwardResult(total_xp, level, progress, xp_required(level), previous_level=level)

    new_level, new_progress = _roll(level, progress + amount)
    events: list[dict] = []
    for reached in range(level + 1, new_level + 1):
        events.append({"type": "level-up", "amount": reached, "label": f"Level {reached}"})
        events.extend(unlock_events(reached, age_group))

    return AwardResult(
        total_xp=total_xp + amount,
        level=new_level,
        xp_progress=new_progress,
        xp_required=xp_required(new_level),
        xp_awarded=amount,
        previous_level=level,
        events=events,
    )


# ── Feature gates ────────────────────────────────────────────────────


def is_feature_unlocked(feature: str, level: int, age_group: str) -> bool:
    if age_group == "adult":
        return True
    required = FEATURE_GATES.get(feature)
    if required is None:
        return False
    return level >= required


def unlock_events(level: int, age_group: str) -> list[dict]:
    """Features that become visible exactly at `level` for this age group."""
    if age_group == "adult":
        return []
    return [
        {"type": "feature-unlock", "feature": feature,
         "label": f"{feature.replace('_', ' ').title()} unlocked!"}
        for feature, required in FEATURE_GATES.items()
        if required == level
    ]


def feature_gates(level: int, age_group: str) -> dict[str, bool]:
    return {f: is_feature_unlocked(f, level, age_group) for f in FEATURE_GATES}


# ── Combo ────────────────────────────────────────────────────────────


def combo_multiplier(combo: int) -> float:
    if combo >= 5:
        return 2.0
    if combo >= 3:
        return 1.5
    return 1.0


def apply_combo(amount: int, combo: int) -> int:
    return int(math.floor(amount * combo_multiplier(combo) + 0.5))


class ComboTracker:
    """Consecutive-correct counter for one study session. Never persisted."""

    def __init__(self) -> None:
        self.count = 0

    def record(self, outcome: str) -> int:
        if outcome == "correct":
            self.count += 1
        else:
            self.count = 0
        return self.count

    def reset(self) -> None:
        self.count = 0

    @property
    def multiplier(self) -> float:
        return combo_multiplier(self.count)
