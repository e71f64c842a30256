"""Token reward calculation for completed tests.

Tokens convert to pocket money, so the rules lean hard against farming:
a score gate, a difficulty-scaled ramp, a mastery gate, diminishing returns
on repeats, and a daily cap. calculate_token_reward() is pure; the ledger
side lives in db_stores.TokenStoreDB.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

DAILY_CAP = 10
MAX_REPEATS = 3
PASS_SCORE = 50
BASE_TOKENS = {"easy": 2, "medium": 3, "hard": 5}
REPEAT_MULTIPLIERS = (1.0, 0.5, 0.25)

DEFAULT_TOKEN_RATE = 0.10
MAX_TOKEN_RATE = 10.0


@dataclass
class AttemptHistory:
    times_completed: int = 0
    best_score: int = 0


@dataclass
class TokenReward:
    amount: int
    reason: str

    def to_dict(self) -> dict:
        return {"amount": self.amount, "reason": self.reason}


def daily_remaining(daily_earned: int) -> int:
    return max(0, DAILY_CAP - daily_earned)


def calculate_token_reward(
    score: int,
    difficulty: str,
    history: AttemptHistory | None,
    daily_earned: int,
) -> TokenReward:
    """Tokens earned for one test completion, with the reason shown to the child."""
    if score < PASS_SCORE:
        return TokenReward(0, "Score below 50% — keep practising!")

    base = BASE_TOKENS[difficulty]
    calculated = math.ceil(base * (score - PASS_SCORE) / PASS_SCORE)

    attempt_note = ""
    if history is not None:
        if history.best_score >= 100:
            return TokenReward(0, "Test mastered — try a different topic!")
        if history.times_completed >= MAX_REPEATS:
            return TokenReward(0, "Maximum repeats reached — try a new test!")
        if history.times_completed > 0:
            multiplier = REPEAT_MULTIPLIERS[history.times_completed]
            calculated = max(1, math.ceil(calculated * multiplier))
            attempt_note = f" (attempt {history.times_completed + 1}/{MAX_REPEATS})"

    remaining = daily_remaining(daily_earned)
    if remaining <= 0:
        return TokenReward(0, "Daily token cap reached — come back tomorrow!")

    return TokenReward(min(calculated, remaining), f"{difficulty} test, {score}% score{attempt_note}")


def validate_token_rate(rate) -> float:
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or not math.isfinite(rate):
        raise ValueError("Rate must be a number")
    if rate < 0 or rate > MAX_TOKEN_RATE:
        raise ValueError(f"Rate must be between 0 and {MAX_TOKEN_RATE:g}")
    return float(rate)


def monetary_value(tokens: int, rate: float) -> float:
    return round(tokens * rate, 2)
