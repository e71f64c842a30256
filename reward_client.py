"""
Client-side reward prediction and sync.

The study UI shows XP and coins the moment a card is answered. RewardPredictor
keeps two separate states: the last server-confirmed CanonicalState, and the
PredictedState shown on screen. Deltas are buffered, sealed into batches with
an idempotency key, and flushed through a transport. Every successful sync
replaces the canonical state with the server's answer and throws away any
drift in the prediction.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field, replace

import requests

from leveling import ComboTracker, apply_combo, apply_xp, xp_required
from reward_config import COIN_AWARDS, MAX_SYNC_COINS, MAX_SYNC_XP, XP_AWARDS

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """A batch could not be delivered. It stays queued for the next flush."""


@dataclass
class CanonicalState:
    total_xp: int = 0
    level: int = 1
    xp_progress: int = 0
    xp_required: int = field(default_factory=lambda: xp_required(1))
    coins: int = 0
    achievements_unlocked: int = 0
    daily_bonus_available: bool = False

    @classmethod
    def from_server(cls, data: dict, previous: "CanonicalState | None" = None) -> "CanonicalState":
        """Build from a summary or award response. Missing fields carry over."""
        base = previous or cls()
        xp = data.get("xp", data)
        return cls(
            total_xp=xp.get("total_xp", base.total_xp),
            level=xp.get("level", base.level),
            xp_progress=xp.get("xp_progress", base.xp_progress),
            xp_required=xp.get("xp_required", base.xp_required),
            coins=data.get("coins", base.coins),
            achievements_unlocked=data.get(
                "achievements_unlocked",
                base.achievements_unlocked + len(data.get("new_achievements", [])),
            ),
            daily_bonus_available=data.get("daily_bonus_available", base.daily_bonus_available),
        )


@dataclass
class PredictedState:
    total_xp: int = 0
    level: int = 1
    xp_progress: int = 0
    xp_required: int = field(default_factory=lambda: xp_required(1))
    coins: int = 0
    daily_bonus_available: bool = False

    @classmethod
    def from_canonical(cls, state: CanonicalState) -> "PredictedState":
        return cls(
            total_xp=state.total_xp,
            level=state.level,
            xp_progress=state.xp_progress,
            xp_required=state.xp_required,
            coins=state.coins,
            daily_bonus_available=state.daily_bonus_available,
        )


@dataclass
class Reward:
    id: int
    type: str
    amount: int
    label: str


class RewardQueue:
    """FIFO of reward notifications. Only the oldest can be dismissed."""

    def __init__(self) -> None:
        self._items: deque[Reward] = deque()
        self._next_id = 1

    def push(self, type: str, amount: int = 0, label: str = "") -> Reward:
        reward = Reward(self._next_id, type, amount, label)
        self._next_id += 1
        self._items.append(reward)
        return reward

    def peek(self) -> Reward | None:
        return self._items[0] if self._items else None

    def dismiss(self) -> Reward | None:
        return self._items.popleft() if self._items else None

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))


@dataclass
class PendingBatch:
    batch_id: str
    xp: int
    coins: int
    reason: str = "Study session"

    def payload(self) -> dict:
        return asdict(self)


class HttpSyncTransport:
    """Delivers batches to the award endpoint over HTTP."""

    def __init__(self, base_url: str, session: requests.Session | None = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            raise SyncError(f"{method} {url} failed: {e}") from e
        except ValueError as e:
            raise SyncError(f"{method} {url} returned invalid JSON") from e

    def send(self, profile_id: str, batch: PendingBatch) -> dict:
        return self._request("POST", f"/api/gamification/{profile_id}/award", json=batch.payload())

    def fetch_summary(self, profile_id: str) -> dict:
        return self._request("GET", f"/api/gamification/{profile_id}")


class RewardPredictor:
    """Optimistic XP/coin display for one profile's study session."""

    def __init__(self, profile_id: str, transport, age_group: str = "adult") -> None:
        self.profile_id = profile_id
        self.transport = transport
        self.age_group = age_group
        self.canonical = CanonicalState()
        self.predicted = PredictedState()
        self.queue = RewardQueue()
        self.combo = ComboTracker()
        self._pending_xp = 0
        self._pending_coins = 0
        self._batches: deque[PendingBatch] = deque()

    # ── State ────────────────────────────────────────────────────

    def load(self, summary: dict) -> None:
        self.canonical = CanonicalState.from_server(summary)
        self.predicted = PredictedState.from_canonical(self.canonical)
        if "age_group" in summary:
            self.age_group = summary["age_group"]

    def refresh(self) -> None:
        self.load(self.transport.fetch_summary(self.profile_id))

    @property
    def pending(self) -> tuple[int, int]:
        """Unsealed (xp, coins) deltas."""
        return self._pending_xp, self._pending_coins

    @property
    def queued_batches(self) -> list[PendingBatch]:
        return list(self._batches)

    # ── Predictions ──────────────────────────────────────────────

    def _predict_xp(self, amount: int, label: str) -> None:
        shown = amount
        if self.predicted.daily_bonus_available:
            shown *= 2
            self.predicted = replace(self.predicted, daily_bonus_available=False)
            self.queue.push("daily-bonus", shown, "Daily bonus: double XP!")

        result = apply_xp(self.predicted.total_xp, self.predicted.level, shown, self.age_group)
        self.predicted = replace(
            self.predicted,
            total_xp=result.total_xp,
            level=result.level,
            xp_progress=result.xp_progress,
            xp_required=result.xp_required,
        )
        self.queue.push("xp", shown, label)
        for event in result.events:
            self.queue.push(event["type"], event.get("amount", 0), event["label"])
        self._pending_xp += amount

    def award_xp(self, amount: int, label: str = "") -> None:
        if amount <= 0:
            return
        self._predict_xp(amount, label or f"+{amount} XP")

    def award_coins(self, amount: int, label: str = "") -> None:
        if amount <= 0:
            return
        self.predicted = replace(self.predicted, coins=self.predicted.coins + amount)
        self.queue.push("coins", amount, label or f"+{amount} coins")
        self._pending_coins += amount

    def record_answer(self, outcome: str, base_xp: int | None = None, coins: int | None = None) -> None:
        """Predict rewards for one answered card."""
        count = self.combo.record(outcome)
        if outcome == "correct":
            base = XP_AWARDS["card_correct"] if base_xp is None else base_xp
            amount = apply_combo(base, count)
            multiplier = self.combo.multiplier
            label = f"+{amount} XP (x{multiplier:g} combo)" if multiplier > 1 else f"+{amount} XP"
            self.award_xp(amount, label)
            self.award_coins(COIN_AWARDS["card_correct"] if coins is None else coins)
        elif outcome == "incorrect":
            self.award_xp(XP_AWARDS["card_incorrect"] if base_xp is None else base_xp)

    # ── Sync ─────────────────────────────────────────────────────

    def seal(self) -> PendingBatch | None:
        """Move the pending deltas into batches, each with its own idempotency key.

        Deltas above the server's per-batch ceiling are split across several
        batches. Returns the last batch sealed.
        """
        batch = None
        while self._pending_xp or self._pending_coins:
            xp = min(self._pending_xp, MAX_SYNC_XP)
            coins = min(self._pending_coins, MAX_SYNC_COINS)
            batch = PendingBatch(uuid.uuid4().hex, xp, coins)
            self._pending_xp -= xp
            self._pending_coins -= coins
            self._batches.append(batch)
        return batch

    def flush(self) -> int:
        """Send queued batches oldest first. Returns how many were acknowledged.

        Stops at the first failure; the failed batch keeps its key and is
        retried on the next flush.
        """
        self.seal()
        sent = 0
        while self._batches:
            batch = self._batches[0]
            try:
                response = self.transport.send(self.profile_id, batch)
            except SyncError:
                logger.warning("Reward sync failed for profile %s; %d batch(es) queued",
                               self.profile_id, len(self._batches), exc_info=True)
                break
            self._batches.popleft()
            sent += 1
            self.canonical = CanonicalState.from_server(response, self.canonical)
            for achievement in response.get("new_achievements", []):
                self.queue.push("achievement", 0, achievement.get("name", ""))

        if sent:
            self._rebase()
        return sent

    def _rebase(self) -> None:
        """Reset the prediction to canonical plus whatever is still unconfirmed."""
        self.predicted = PredictedState.from_canonical(self.canonical)
        unconfirmed_xp = sum(b.xp for b in self._batches) + self._pending_xp
        unconfirmed_coins = sum(b.coins for b in self._batches) + self._pending_coins
        if unconfirmed_xp:
            result = apply_xp(self.predicted.total_xp, self.predicted.level, unconfirmed_xp, self.age_group)
            self.predicted = replace(self.predicted, total_xp=result.total_xp, level=result.level,
                                     xp_progress=result.xp_progress, xp_required=result.xp_required)
        if unconfirmed_coins:
            self.predicted = replace(self.predicted, coins=self.predicted.coins + unconfirmed_coins)
