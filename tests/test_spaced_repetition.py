"""Tests for spaced_repetition.py — SM-2 card scheduling."""

from datetime import datetime, timedelta

import pytest

from spaced_repetition import HISTORY_LIMIT, MIN_EASE_FACTOR, CardState, create_card, update_card

NOW = datetime(2026, 3, 10, 9, 0, 0)


class TestCorrect:
    def test_first_correct(self):
        card = update_card(create_card(), "correct", NOW)
        assert card.repetitions == 1
        assert card.interval == 1
        assert card.ease_factor == pytest.approx(2.6)
        assert card.last_seen == "2026-03-10T09:00:00"
        assert card.next_due == "2026-03-11T09:00:00"

    def test_second_correct_is_three_days(self):
        card = update_card(create_card(), "correct", NOW)
        card = update_card(card, "correct", NOW + timedelta(days=1))
        assert card.repetitions == 2
        assert card.interval == 3
        assert card.ease_factor == pytest.approx(2.7)

    def test_third_correct_multiplies_by_ease(self):
        card = CardState(interval=3, ease_factor=2.7, repetitions=2)
        card = update_card(card, "correct", NOW)
        assert card.interval == 8  # round(3 * 2.7)
        assert card.repetitions == 3

    def test_rounds_half_up(self):
        card = CardState(interval=5, ease_factor=2.5, repetitions=2)
        assert update_card(card, "correct", NOW).interval == 13


class TestIncorrect:
    def test_resets_repetitions(self):
        card = CardState(interval=8, ease_factor=2.5, repetitions=3)
        card = update_card(card, "incorrect", NOW)
        assert card.repetitions == 0
        assert card.interval == 1
        assert card.ease_factor == pytest.approx(2.3)

    def test_ease_never_below_floor(self):
        card = CardState(ease_factor=1.35)
        for _ in range(5):
            card = update_card(card, "incorrect", NOW)
        assert card.ease_factor == MIN_EASE_FACTOR


class TestSkipped:
    def test_skipped_long_interval_comes_back_tomorrow(self):
        card = CardState(last_seen="2026-02-01T09:00:00", next_due="2026-03-03T09:00:00",
                         interval=30, ease_factor=2.2, repetitions=4)
        updated = update_card(card, "skipped", NOW)
        assert updated.interval == 1
        assert updated.repetitions == 4
        assert updated.ease_factor == 2.2
        assert updated.next_due == "2026-03-11T09:00:00"


class TestHistory:
    def test_most_recent_first(self):
        card = update_card(create_card(), "correct", NOW)
        card = update_card(card, "incorrect", NOW + timedelta(hours=1))
        assert [h["result"] for h in card.history] == ["incorrect", "correct"]
        assert card.history[0]["date"] == "2026-03-10T10:00:00"

    def test_truncated(self):
        card = create_card()
        for i in range(HISTORY_LIMIT + 5):
            card = update_card(card, "correct" if i % 2 else "skipped", NOW + timedelta(minutes=i))
        assert len(card.history) == HISTORY_LIMIT

    def test_input_not_mutated(self):
        card = update_card(create_card(), "correct", NOW)
        before = card.to_dict()
        update_card(card, "incorrect", NOW + timedelta(days=1))
        assert card.to_dict() == before


def test_unknown_outcome_rejected():
    with pytest.raises(ValueError):
        update_card(create_card(), "maybe", NOW)
