"""
Simplified SM-2 spaced repetition for flashcards.

Tracks per-card interval, ease factor and repetition count. Everything here
is pure: the DB layer loads a CardState, passes it through update_card(),
and writes the result back.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

OUTCOMES = ("correct", "incorrect", "skipped")

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5
HISTORY_LIMIT = 20


@dataclass
class CardState:
    last_seen: str | None = None
    next_due: str | None = None
    interval: int = 0
    ease_factor: float = DEFAULT_EASE_FACTOR
    repetitions: int = 0
    history: list[dict] = field(default_factory=list)  # most recent first

    def to_dict(self) -> dict:
        return {
            "last_seen": self.last_seen,
            "next_due": self.next_due,
            "interval": self.interval,
            "ease_factor": self.ease_factor,
            "repetitions": self.repetitions,
            "history": [dict(h) for h in self.history],
        }


def create_card() -> CardState:
    """Fresh state for a card the profile has never reviewed."""
    return CardState()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def update_card(card: CardState, outcome: str, now: datetime | None = None) -> CardState:
    """Return the card's state after one review. The input is left untouched."""
    if outcome not in OUTCOMES:
        raise ValueError(f"Unknown outcome: {outcome!r}")

    now = now or datetime.now()
    interval = card.interval
    ease = card.ease_factor
    reps = card.repetitions

    if outcome == "correct":
        reps += 1
        if reps == 1:
            interval = 1
        elif reps == 2:
            interval = 3
        else:
            interval = _round_half_up(interval * ease)
        ease = max(MIN_EASE_FACTOR, ease + 0.1)
    elif outcome == "incorrect":
        reps = 0
        interval = 1
        ease = max(MIN_EASE_FACTOR, ease - 0.2)
    else:
        # A skipped 30-day card comes back tomorrow, not in 30 days.
        interval = 1

    seen = now.isoformat(timespec="seconds")
    due = (now + timedelta(days=interval or 1)).isoformat(timespec="seconds")
    history = [{"date": seen, "result": outcome}] + [dict(h) for h in card.history]

    return replace(
        card,
        last_seen=seen,
        next_due=due,
        interval=interval,
        ease_factor=ease,
        repetitions=reps,
        history=history[:HISTORY_LIMIT],
    )
