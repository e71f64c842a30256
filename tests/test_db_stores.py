"""Tests for db_stores.py — DB-backed per-profile ledgers."""

import random
from datetime import timedelta

import pytest

from conftest import FIXED_NOW
from database import get_db
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
    TokenStoreDB,
    WeeklyStreakDB,
)
from leveling import xp_required
from spaced_repetition import CardState, create_card, update_card
from streaks import ProfileStats

TODAY = FIXED_NOW.date()


def _card_due(days_from_now: int) -> CardState:
    seen = FIXED_NOW - timedelta(days=5)
    return CardState(
        last_seen=seen.isoformat(timespec="seconds"),
        next_due=(FIXED_NOW + timedelta(days=days_from_now)).isoformat(timespec="seconds"),
        interval=3,
        repetitions=2,
        history=[{"date": seen.isoformat(timespec="seconds"), "result": "correct"}],
    )


class TestProfileDB:
    def test_children(self, app):
        with app.app_context():
            assert ProfileDB("parent1").children() == ["kid1", "kid2"]
            assert ProfileDB("kid1").children() == []
            assert set(ProfileDB("admin").children()) == {"kid1", "kid2", "kid3", "adult1"}

    def test_age_group(self, app):
        with app.app_context():
            assert ProfileDB("kid2").age_group == "secondary"
            assert not ProfileDB("nobody").exists()


class TestCardProgressDB:
    def test_save_and_get(self, app):
        with app.app_context():
            store = CardProgressDB("kid1")
            assert store.get("q1") is None
            card = update_card(create_card(), "correct", FIXED_NOW)
            card = update_card(card, "incorrect", FIXED_NOW + timedelta(hours=1))
            store.save("q1", update_card(create_card(), "correct", FIXED_NOW))
            store.save("q1", card)
            loaded = store.get("q1")
            assert loaded.repetitions == 0
            assert loaded.interval == 1
            assert [h["result"] for h in loaded.history] == ["incorrect", "correct"]

    def test_due_cards_most_overdue_first(self, app):
        with app.app_context():
            store = CardProgressDB("kid1")
            store.save("q1", _card_due(-1))
            store.save("q2", _card_due(-2))
            store.save("q3", _card_due(1))
            result = store.due_cards(now=FIXED_NOW)
            assert result["due_cards"] == ["q2", "q1"]
            assert result["unseen_cards"] == ["q4", "q5", "q6"]
            assert result["total_due"] == 2
            assert result["total_unseen"] == 3

    def test_unseen_fill_remaining_limit(self, app):
        with app.app_context():
            store = CardProgressDB("kid1")
            store.save("q1", _card_due(-1))
            store.save("q2", _card_due(-2))
            result = store.due_cards(limit=3, now=FIXED_NOW)
            assert result["due_cards"] == ["q2", "q1"]
            assert result["unseen_cards"] == ["q3"]
            assert result["total_unseen"] == 4

    def test_theme_filter(self, app):
        with app.app_context():
            store = CardProgressDB("kid1")
            store.save("q1", _card_due(-1))
            assert store.due_cards(["plants"], now=FIXED_NOW) == {
                "due_cards": [], "unseen_cards": ["q4", "q5"], "total_due": 0, "total_unseen": 2,
            }
            assert store.due_cards(["fractions"], now=FIXED_NOW)["due_cards"] == ["q1"]

    def test_profiles_are_isolated(self, app):
        with app.app_context():
            CardProgressDB("kid1").save("q1", _card_due(-1))
            assert CardProgressDB("kid2").get("q1") is None
            assert CardProgressDB("kid2").due_cards(now=FIXED_NOW)["total_due"] == 0

    def test_detailed_stats(self, app):
        with app.app_context():
            store = CardProgressDB("kid1")
            card = update_card(create_card(), "correct", FIXED_NOW)
            store.save("q1", card)
            store.save("q1", update_card(card, "incorrect", FIXED_NOW))
            store.save("q4", update_card(create_card(), "correct", FIXED_NOW))
            stats = store.detailed_stats(FIXED_NOW + timedelta(days=2))
            assert stats["overall_accuracy"] == 67
            assert stats["due_today"] == 2
            assert stats["heatmap"] == {"2026-03-10": 3}
            assert {c["category"] for c in stats["category_breakdown"]} == {"Number", "Biology"}
            assert stats["weakest_cards"][0]["card_id"] == "q1"


class TestProfileStatsDB:
    def test_defaults_and_save(self, app):
        with app.app_context():
            store = ProfileStatsDB("kid1")
            assert store.load() == ProfileStats()
            store.save(ProfileStats(2, 15, 3, 5, "2026-03-10T09:00:00"))
            assert store.load().longest_streak == 5


class TestWeeklyStreakDB:
    def test_summary(self, app):
        with app.app_context():
            store = WeeklyStreakDB("kid1")
            state = store.load()
            state.week_study_days = {"2026-W11": [1, 2]}
            store.save(state)
            summary = store.summary(TODAY)
            assert summary["days_studied_this_week"] == 2
            assert summary["days_required"] == 4


class TestProfileXPDB:
    def test_daily_bonus_once_per_day(self, app):
        with app.app_context():
            xp = ProfileXPDB("kid1", "child")
            first = xp.award_xp(10, FIXED_NOW)
            second = xp.award_xp(10, FIXED_NOW)
            assert first.daily_bonus_applied
            assert first.xp_awarded == 20
            assert not second.daily_bonus_applied
            assert xp.snapshot().total_xp == 30
            tomorrow = xp.award_xp(10, FIXED_NOW + timedelta(days=1))
            assert tomorrow.daily_bonus_applied

    def test_multi_level_rollover(self, app):
        with app.app_context():
            xp = ProfileXPDB("adult1", "adult")
            RewardStateDB("adult1").mark_daily_bonus_used(TODAY)
            result = xp.award_xp(xp_required(1) + xp_required(2) + 5, FIXED_NOW)
            assert result.level == 3
            assert result.xp_progress == 5
            assert xp.level == 3

    def test_non_positive_noop(self, app):
        with app.app_context():
            xp = ProfileXPDB("kid1")
            xp.award_xp(0, FIXED_NOW)
            assert RewardStateDB("kid1").daily_bonus_available(TODAY)
            assert xp.snapshot().total_xp == 0


class TestRewardStateDB:
    def test_comeback(self, app):
        with app.app_context():
            state = RewardStateDB("kid1")
            assert not state.comeback_bonus(TODAY)["eligible"]
            state.update_last_session_date(TODAY - timedelta(days=3))
            assert state.comeback_bonus(TODAY) == {"eligible": True, "days_since_last_session": 3}
            state.update_last_session_date(TODAY - timedelta(days=2))
            assert not state.comeback_bonus(TODAY)["eligible"]


class TestCoinsAndSubjects:
    def test_coin_award_writes_transaction(self, app):
        with app.app_context():
            coins = CoinLedgerDB("kid1")
            assert coins.award(5, "Quest", FIXED_NOW) == 5
            assert coins.award(0, "nothing", FIXED_NOW) == 5
            assert [t["amount"] for t in coins.transactions()] == [5]

    def test_subject_xp_additive(self, app):
        with app.app_context():
            subjects = SubjectXPDB("kid1")
            subjects.award("maths", 10)
            subjects.award("maths", 15)
            subjects.award("science", 5)
            assert subjects.all() == [{"subject_id": "maths", "xp": 25}, {"subject_id": "science", "xp": 5}]


class TestAchievementStoreDB:
    def test_unlock_once(self, app):
        with app.app_context():
            store = AchievementStoreDB("kid1")
            assert store.unlock("first-card", FIXED_NOW)
            assert not store.unlock("first-card", FIXED_NOW)
            assert store.counts()[0] == 1

    def test_check_and_unlock_returns_new_only(self, app):
        with app.app_context():
            CardProgressDB("kid1").save("q1", update_card(create_card(), "correct", FIXED_NOW))
            store = AchievementStoreDB("kid1")
            assert [a["id"] for a in store.check_and_unlock(FIXED_NOW)] == ["first-card"]
            assert store.check_and_unlock(FIXED_NOW) == []
            statuses = {a["id"]: a["unlocked_at"] for a in store.all_with_status()}
            assert statuses["first-card"] == "2026-03-10T09:00:00"
            assert statuses["ten-cards"] is None


class TestQuestStoreDB:
    def test_assignment_idempotent(self, app):
        with app.app_context():
            quests = QuestStoreDB("kid1", random.Random(1))
            assert len(quests.assign_daily(TODAY)) == 3
            assert len(quests.assign_weekly(TODAY)) == 1
            assert quests.assign_daily(TODAY) == []
            assert quests.assign_weekly(TODAY) == []
            active = quests.active(TODAY)
            assert len([q for q in active if q["type"] == "daily"]) == 3
            assert len([q for q in active if q["type"] == "weekly"]) == 1
            assert len({q["quest_id"] for q in active}) == 4

    def test_deterministic_with_seeded_rng(self, app):
        with app.app_context():
            first = QuestStoreDB("kid1", random.Random(42)).assign_daily(TODAY)
            second = QuestStoreDB("kid2", random.Random(42)).assign_daily(TODAY)
            assert first == second

    def test_new_day_gets_new_dailies(self, app):
        with app.app_context():
            quests = QuestStoreDB("kid1", random.Random(1))
            quests.assign_daily(TODAY)
            assert len(quests.assign_daily(TODAY + timedelta(days=1))) == 3

    def test_increment_completes_once(self, app):
        with app.app_context():
            get_db().execute(
                "INSERT INTO profile_quests (profile_id, quest_id, assigned_date) VALUES (?, ?, ?)",
                ("kid1", "daily-review-10", TODAY.isoformat()),
            )
            quests = QuestStoreDB("kid1")
            assert quests.increment("cards_reviewed", 4, FIXED_NOW) == []
            assert quests.increment("correct_answers", 4, FIXED_NOW) == []
            assert quests.increment("cards_reviewed", 4, FIXED_NOW) == []
            done = quests.increment("cards_reviewed", 4, FIXED_NOW)
            assert [q["quest_id"] for q in done] == ["daily-review-10"]
            assert quests.increment("cards_reviewed", 4, FIXED_NOW) == []
            (quest,) = quests.active(TODAY)
            assert quest["progress"] == 10
            assert quest["completed"]

    def test_increment_ignores_other_periods(self, app):
        with app.app_context():
            get_db().execute(
                "INSERT INTO profile_quests (profile_id, quest_id, assigned_date) VALUES (?, ?, ?)",
                ("kid1", "daily-test-1", (TODAY - timedelta(days=1)).isoformat()),
            )
            assert QuestStoreDB("kid1").increment("tests_completed", 1, FIXED_NOW) == []


class TestTokenStoreDB:
    def test_award_and_daily_reset(self, app):
        with app.app_context():
            tokens = TokenStoreDB("kid1")
            assert tokens.award(4, "hard test", "s1", FIXED_NOW) == 4
            assert tokens.summary(TODAY)["daily_earned"] == 4
            summary = tokens.summary(TODAY + timedelta(days=1))
            assert summary["daily_earned"] == 0
            assert summary["daily_remaining"] == 10
            assert summary["tokens"] == 4
            assert summary["monetary_value"] == 0.4

    def test_zero_award_writes_nothing(self, app):
        with app.app_context():
            tokens = TokenStoreDB("kid1")
            tokens.award(0, "gated", "s1", FIXED_NOW)
            assert tokens.transactions() == []

    def test_history(self, app):
        with app.app_context():
            tokens = TokenStoreDB("kid1")
            assert tokens.history("maths-1") is None
            tokens.record_completion("maths-1", 70)
            tokens.record_completion("maths-1", 60)
            history = tokens.history("maths-1")
            assert history.times_completed == 2
            assert history.best_score == 70

    def test_calculate_uses_history_and_cap(self, app):
        with app.app_context():
            tokens = TokenStoreDB("kid1")
            tokens.award(9, "earlier", None, FIXED_NOW)
            reward = tokens.calculate(100, "hard", "maths-1", TODAY)
            assert reward.amount == 1

    def test_transactions_limit_clamped(self, app):
        with app.app_context():
            tokens = TokenStoreDB("kid1")
            for i in range(3):
                tokens.award(1, f"t{i}", None, FIXED_NOW)
            assert len(tokens.transactions(0)) == 1
            assert [t["reason"] for t in tokens.transactions(500)] == ["t2", "t1", "t0"]

    def test_set_rate(self, app):
        with app.app_context():
            tokens = TokenStoreDB("kid1")
            assert tokens.set_rate(0.25) == 0.25
            assert tokens.summary()["token_rate"] == 0.25
            with pytest.raises(ValueError):
                tokens.set_rate(11)
            assert tokens.summary()["token_rate"] == 0.25

    def test_children_summaries(self, app):
        with app.app_context():
            TokenStoreDB("kid2").award(3, "test", None, FIXED_NOW)
            summaries = TokenStoreDB.children_summaries(["kid1", "kid2"], TODAY)
            assert [(s["profile_id"], s["tokens"]) for s in summaries] == [("kid1", 0), ("kid2", 3)]


class TestSyncBatchDB:
    def test_seen(self, app):
        with app.app_context():
            batches = SyncBatchDB("kid1")
            assert not batches.seen("abc")
            batches.record("abc", 10, 1, FIXED_NOW)
            assert batches.seen("abc")
            assert not SyncBatchDB("kid2").seen("abc")
