"""Event orchestrator for study events.

The only component that sees raw events. Each event runs as one unit of
work: the card scheduler, streak tracker, leveling engine, quest engine
and (for tests) token economy update inside a single transaction.
"""

from __future__ import annotations

import logging
import math
import random
import uuid
from collections.abc import Callable
from datetime import datetime

from database import savepoint, transaction
from db_stores import (
    AchievementStoreDB,
    CardProgressDB,
    CoinLedgerDB,
    ProfileDB,
    ProfileStatsDB,
    ProfileXPDB,
    QuestStoreDB,
    RewardStateDB,
    SubjectXPDB,
    SyncBatchDB,
    TestSessionDB,
    TokenStoreDB,
    WeeklyStreakDB,
)
from leveling import LevelCurveError, feature_gates
from reward_config import AGE_GROUPS, COIN_AWARDS, MAX_SYNC_COINS, MAX_SYNC_XP, XP_AWARDS
from spaced_repetition import OUTCOMES, create_card, update_card
from streaks import is_new_session, update_stats, update_weekly_streak
from token_economy import BASE_TOKENS

logger = logging.getLogger(__name__)

HIGH_SCORE = 80


class ValidationError(ValueError):
    """Bad event input. Raised before anything is written."""


def _int_field(value, name: str, minimum: int = 0, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{name} must be a number")
    number = int(math.floor(value + 0.5))
    if number < minimum or (maximum is not None and number > maximum):
        if maximum is None:
            raise ValidationError(f"{name} must not be below {minimum}")
        raise ValidationError(f"{name} must be between {minimum} and {maximum}")
    return number


class EventOrchestrator:
    """Routes card and test events through the reward pipeline for one profile."""

    def __init__(
        self,
        profile_id: str,
        age_group: str | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.profile_id = profile_id
        if age_group is None:
            age_group = ProfileDB(profile_id).age_group
        if age_group not in AGE_GROUPS:
            raise ValidationError(f"Unknown age group: {age_group!r}")
        self.age_group = age_group
        self.rng = rng or random.Random()
        self.clock = clock

    # ── Store accessors ──────────────────────────────────────────

    def _xp(self) -> ProfileXPDB:
        return ProfileXPDB(self.profile_id, self.age_group)

    def _quests(self) -> QuestStoreDB:
        return QuestStoreDB(self.profile_id, self.rng)

    # ── Best-effort steps ────────────────────────────────────────

    def _advance_quests(self, metrics: list[tuple[str, int]], now: datetime) -> tuple[list, list]:
        """Bump quest counters and pay out completed quests.

        Runs in a savepoint: a failure is logged and rolled back without
        touching the rest of the event.
        """
        completed: list[dict] = []
        rewards: list[dict] = []
        try:
            with savepoint("quests"):
                quests = self._quests()
                quests.assign_daily(now.date())
                quests.assign_weekly(now.date())
                for metric, amount in metrics:
                    completed.extend(quests.increment(metric, amount, now))

                xp = self._xp()
                coins = CoinLedgerDB(self.profile_id)
                for quest in completed:
                    rewards.append({"type": "quest-complete", "quest_id": quest["quest_id"],
                                    "label": quest["title"]})
                    if quest["xp_reward"]:
                        result = xp.award_xp(quest["xp_reward"], now)
                        rewards.extend(result.events)
                    if quest["coin_reward"]:
                        coins.award(quest["coin_reward"], f"Quest: {quest['title']}", now)
        except LevelCurveError:
            raise
        except Exception:
            logger.warning("Quest update failed for profile %s", self.profile_id, exc_info=True)
            return [], []
        return completed, rewards

    def _check_achievements(self, now: datetime) -> list[dict]:
        try:
            with savepoint("achievements"):
                return AchievementStoreDB(self.profile_id).check_and_unlock(now)
        except LevelCurveError:
            raise
        except Exception:
            logger.warning("Achievement check failed for profile %s", self.profile_id, exc_info=True)
            return []

    # ── Events ───────────────────────────────────────────────────

    def record_outcome(self, card_id: str, outcome: str) -> dict:
        """Process one answered flashcard."""
        if not card_id or not isinstance(card_id, str):
            raise ValidationError("card_id is required")
        if outcome not in OUTCOMES:
            raise ValidationError(f"result must be one of: {', '.join(OUTCOMES)}")

        now = self.clock()
        today = now.date()
        with transaction():
            cards = CardProgressDB(self.profile_id)
            card = update_card(cards.get(card_id) or create_card(), outcome, now)
            cards.save(card_id, card)

            stats_db = ProfileStatsDB(self.profile_id)
            prior = stats_db.load()
            stats = update_stats(prior, is_new_session(prior, today), now)
            stats_db.save(stats)

            weekly_db = WeeklyStreakDB(self.profile_id)
            weekly = update_weekly_streak(weekly_db.load(), today)
            weekly_db.save(weekly)

            RewardStateDB(self.profile_id).update_last_session_date(today)

            metrics = [("cards_reviewed", 1)]
            if outcome == "correct":
                metrics.append(("correct_answers", 1))
            completed, rewards = self._advance_quests(metrics, now)
            new_achievements = self._check_achievements(now)

        logger.debug("Recorded %s for card %s (profile %s)", outcome, card_id, self.profile_id)
        return {
            "card": card.to_dict(),
            "stats": stats.to_dict(),
            "weekly_streak": {
                "current_weekly_streak": weekly.current_weekly_streak,
                "longest_weekly_streak": weekly.longest_weekly_streak,
                "days_studied_this_week": weekly.days_this_week(today),
            },
            "quests_completed": completed,
            "rewards": rewards,
            "new_achievements": new_achievements,
        }

    def complete_test(self, test_key: str, score, difficulty: str, subject_id: str | None = None) -> dict:
        """Process a finished test: session record, XP, coins, tokens, quests."""
        if not test_key or not isinstance(test_key, str):
            raise ValidationError("test_key is required")
        score = _int_field(score, "score", maximum=100)
        if difficulty not in BASE_TOKENS:
            raise ValidationError(f"difficulty must be one of: {', '.join(BASE_TOKENS)}")

        now = self.clock()
        session_id = uuid.uuid4().hex
        with transaction():
            TestSessionDB(self.profile_id).add(session_id, test_key, score, difficulty, now)

            xp_result = self._xp().award_xp(XP_AWARDS["test_complete"], now)
            CoinLedgerDB(self.profile_id).award(COIN_AWARDS["test_complete"], f"Test: {test_key}", now)
            if subject_id:
                SubjectXPDB(self.profile_id).award(subject_id, XP_AWARDS["test_complete"])

            tokens = TokenStoreDB(self.profile_id)
            reward = tokens.calculate(score, difficulty, test_key, now.date())
            balance = tokens.award(reward.amount, reward.reason, session_id, now)
            tokens.record_completion(test_key, score)

            metrics = [("tests_completed", 1), ("sessions_completed", 1)]
            if score >= HIGH_SCORE:
                metrics.append(("score_above_80", 1))
            if subject_id:
                metrics.append(("subjects_studied", 1))
            completed, rewards = self._advance_quests(metrics, now)
            new_achievements = self._check_achievements(now)

        logger.info(
            "Test %s completed by profile %s: score=%d tokens=%d",
            test_key, self.profile_id, score, reward.amount,
        )
        return {
            "session_id": session_id,
            "tokens_awarded": reward.amount,
            "reason": reward.reason,
            "new_balance": balance,
            "xp": xp_result.to_dict(),
            "rewards": xp_result.events + rewards,
            "quests_completed": completed,
            "new_achievements": new_achievements,
        }

    def award_and_sync(self, pending_xp, pending_coins, reason: str = "",
                       batch_id: str | None = None, subject_id: str | None = None) -> dict:
        """Apply a client's buffered XP/coin deltas and return canonical state.

        A batch_id already applied for this profile is acknowledged without
        re-applying anything.
        """
        xp_amount = _int_field(pending_xp, "xp", maximum=MAX_SYNC_XP)
        coin_amount = _int_field(pending_coins, "coins", maximum=MAX_SYNC_COINS)
        if batch_id is not None and (not isinstance(batch_id, str) or not batch_id):
            raise ValidationError("batch_id must be a non-empty string")

        now = self.clock()
        duplicate = False
        events: list[dict] = []
        with transaction():
            batches = SyncBatchDB(self.profile_id)
            if batch_id and batches.seen(batch_id):
                duplicate = True
                new_achievements: list[dict] = []
            else:
                result = self._xp().award_xp(xp_amount, now)
                events = result.events
                CoinLedgerDB(self.profile_id).award(coin_amount, reason or "Study rewards", now)
                if subject_id:
                    SubjectXPDB(self.profile_id).award(subject_id, xp_amount)
                if batch_id:
                    batches.record(batch_id, xp_amount, coin_amount, now)
                new_achievements = self._check_achievements(now)

        if duplicate:
            logger.info("Duplicate reward batch %s for profile %s", batch_id, self.profile_id)
        return {
            "xp": self._xp().snapshot().to_dict(),
            "coins": CoinLedgerDB(self.profile_id).balance(),
            "events": events,
            "new_achievements": new_achievements,
            "daily_bonus_available": RewardStateDB(self.profile_id).daily_bonus_available(now.date()),
            "duplicate": duplicate,
        }

    # ── Reads ────────────────────────────────────────────────────

    def get_due_cards(self, theme_ids: list[str] | None = None, limit: int = 30) -> dict:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer")
        return CardProgressDB(self.profile_id).due_cards(theme_ids, limit, self.clock())

    def get_active_quests(self) -> list[dict]:
        today = self.clock().date()
        quests = self._quests()
        with transaction():
            quests.assign_daily(today)
            quests.assign_weekly(today)
        return quests.active(today)

    def summary(self) -> dict:
        xp = self._xp().snapshot()
        unlocked, total = AchievementStoreDB(self.profile_id).counts()
        return {
            "profile_id": self.profile_id,
            "age_group": self.age_group,
            **xp.to_dict(),
            "coins": CoinLedgerDB(self.profile_id).balance(),
            "achievements_unlocked": unlocked,
            "achievements_total": total,
            "features": feature_gates(xp.level, self.age_group),
            "daily_bonus_available": RewardStateDB(self.profile_id).daily_bonus_available(
                self.clock().date()),
        }

    def detailed_stats(self) -> dict:
        stats = ProfileStatsDB(self.profile_id).load()
        return {
            **CardProgressDB(self.profile_id).detailed_stats(self.clock()),
            "total_sessions": stats.total_sessions,
            "total_cards_studied": stats.total_cards_studied,
            "current_streak": stats.current_streak,
            "longest_streak": stats.longest_streak,
        }

    def weekly_streak(self) -> dict:
        return WeeklyStreakDB(self.profile_id).summary(self.clock().date())

    def reward_state(self) -> dict:
        return RewardStateDB(self.profile_id).summary(self.clock().date())
