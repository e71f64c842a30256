"""Tests for reward_client.py — optimistic prediction, queueing and reconciliation."""

from unittest.mock import MagicMock

import pytest
import requests

from reward_client import (
    CanonicalState,
    HttpSyncTransport,
    PendingBatch,
    RewardPredictor,
    RewardQueue,
    SyncError,
)
from reward_config import MAX_SYNC_XP


class FakeTransport:
    """Acknowledges batches like the award endpoint, optionally failing first."""

    def __init__(self, fail_times=0, server_xp_bonus=0):
        self.fail_times = fail_times
        self.server_xp_bonus = server_xp_bonus
        self.sent: list[PendingBatch] = []
        self.total_xp = 0
        self.coins = 0

    def send(self, profile_id, batch):
        if self.fail_times:
            self.fail_times -= 1
            raise SyncError("connection refused")
        self.sent.append(batch)
        self.total_xp += batch.xp + self.server_xp_bonus
        self.coins += batch.coins
        return {
            "xp": {"total_xp": self.total_xp, "level": 1, "xp_progress": self.total_xp, "xp_required": 100},
            "coins": self.coins,
            "new_achievements": [],
            "daily_bonus_available": False,
            "duplicate": False,
        }

    def fetch_summary(self, profile_id):
        return {"total_xp": 90, "level": 1, "xp_progress": 90, "xp_required": 100,
                "coins": 4, "achievements_unlocked": 2, "age_group": "child",
                "daily_bonus_available": False}


class TestRewardQueue:
    def test_fifo(self):
        queue = RewardQueue()
        a = queue.push("xp", 10, "+10 XP")
        b = queue.push("coins", 1, "+1 coins")
        assert b.id > a.id
        assert queue.peek() is a
        assert queue.dismiss() is a
        assert queue.dismiss() is b
        assert queue.dismiss() is None
        assert len(queue) == 0


class TestPrediction:
    def test_combo_multiplies_xp(self):
        predictor = RewardPredictor("kid1", FakeTransport())
        for _ in range(3):
            predictor.record_answer("correct")
        # 10 + 10 + 15
        assert predictor.pending == (35, 3)
        assert predictor.predicted.total_xp == 35
        labels = [r.label for r in predictor.queue if r.type == "xp"]
        assert labels[-1] == "+15 XP (x1.5 combo)"

    def test_miss_resets_combo(self):
        predictor = RewardPredictor("kid1", FakeTransport())
        for _ in range(3):
            predictor.record_answer("correct")
        predictor.record_answer("incorrect")
        predictor.record_answer("correct")
        assert predictor.combo.count == 1
        assert predictor.pending == (35 + 2 + 10, 4)

    def test_skipped_awards_nothing(self):
        predictor = RewardPredictor("kid1", FakeTransport())
        predictor.record_answer("skipped")
        assert predictor.pending == (0, 0)
        assert len(predictor.queue) == 0

    def test_multi_level_prediction(self):
        predictor = RewardPredictor("kid1", FakeTransport())
        predictor.award_xp(255, "Bonus")
        assert predictor.predicted.level == 3
        assert predictor.predicted.xp_progress == 5
        level_ups = [r.amount for r in predictor.queue if r.type == "level-up"]
        assert level_ups == [2, 3]

    def test_display_predicts_daily_bonus(self):
        predictor = RewardPredictor("kid1", FakeTransport())
        predictor.load({"total_xp": 0, "level": 1, "xp_progress": 0, "xp_required": 100,
                        "coins": 0, "daily_bonus_available": True})
        predictor.award_xp(10)
        predictor.award_xp(10)
        assert predictor.predicted.total_xp == 30
        assert predictor.pending == (20, 0)


class TestFlush:
    def test_success_replaces_state(self):
        transport = FakeTransport(server_xp_bonus=25)
        predictor = RewardPredictor("kid1", transport)
        predictor.record_answer("correct")
        assert predictor.flush() == 1
        # server added quest XP the client could not predict; canonical wins
        assert predictor.canonical.total_xp == 35
        assert predictor.predicted.total_xp == 35
        assert predictor.pending == (0, 0)
        assert predictor.queued_batches == []

    def test_failure_keeps_batch_and_key(self):
        transport = FakeTransport(fail_times=1)
        predictor = RewardPredictor("kid1", transport)
        predictor.award_xp(20)
        assert predictor.flush() == 0
        (batch,) = predictor.queued_batches
        assert predictor.predicted.total_xp == 20
        predictor.award_coins(2)
        assert predictor.flush() == 2
        assert transport.sent[0].batch_id == batch.batch_id
        assert [b.xp for b in transport.sent] == [20, 0]
        assert predictor.canonical.coins == 2

    def test_oversized_pending_split_into_batches(self):
        transport = FakeTransport()
        predictor = RewardPredictor("kid1", transport)
        predictor.award_xp(MAX_SYNC_XP + 40)
        assert predictor.flush() == 2
        assert [b.xp for b in transport.sent] == [MAX_SYNC_XP, 40]
        assert len({b.batch_id for b in transport.sent}) == 2
        assert predictor.canonical.total_xp == MAX_SYNC_XP + 40

    def test_flush_with_nothing_pending(self):
        transport = FakeTransport()
        predictor = RewardPredictor("kid1", transport)
        assert predictor.flush() == 0
        assert transport.sent == []

    def test_new_achievements_queued(self):
        transport = MagicMock()
        transport.send.return_value = {
            "xp": {"total_xp": 10, "level": 1, "xp_progress": 10, "xp_required": 100},
            "coins": 1,
            "new_achievements": [{"id": "first-card", "name": "First Flip"}],
        }
        predictor = RewardPredictor("kid1", transport)
        predictor.record_answer("correct")
        predictor.flush()
        assert predictor.canonical.achievements_unlocked == 1
        assert [r.label for r in predictor.queue if r.type == "achievement"] == ["First Flip"]

    def test_refresh(self):
        predictor = RewardPredictor("kid1", FakeTransport())
        predictor.refresh()
        assert predictor.canonical == CanonicalState(90, 1, 90, 100, 4, 2, False)
        assert predictor.predicted.total_xp == 90
        assert predictor.age_group == "child"


class TestHttpSyncTransport:
    def test_posts_batch(self):
        session = MagicMock()
        session.request.return_value.json.return_value = {"coins": 1}
        transport = HttpSyncTransport("http://localhost:5001/", session=session, timeout=3)
        batch = PendingBatch("abc", 10, 1, "Study session")
        assert transport.send("kid1", batch) == {"coins": 1}
        session.request.assert_called_once_with(
            "POST", "http://localhost:5001/api/gamification/kid1/award", timeout=3,
            json={"batch_id": "abc", "xp": 10, "coins": 1, "reason": "Study session"},
        )

    def test_connection_error_is_sync_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")
        transport = HttpSyncTransport("http://localhost:5001", session=session)
        with pytest.raises(SyncError):
            transport.send("kid1", PendingBatch("abc", 10, 1))

    def test_http_error_is_sync_error(self):
        session = MagicMock()
        session.request.return_value.raise_for_status.side_effect = requests.HTTPError("500")
        transport = HttpSyncTransport("http://localhost:5001", session=session)
        with pytest.raises(SyncError):
            transport.fetch_summary("kid1")
