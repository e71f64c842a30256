"""
Reward catalog — XP awards, achievements, quest definitions and feature gates.

Achievement and quest rows are seeded into the database from these tables
on init (see database.seed_definitions).
"""

from __future__ import annotations

XP_AWARDS = {
    "card_correct": 10,
    "card_incorrect": 2,
    "test_complete": 50,
}

COIN_AWARDS = {
    "card_correct": 1,
    "test_complete": 20,
}

# Ceiling on one client sync batch.
MAX_SYNC_XP = 100_000
MAX_SYNC_COINS = 10_000

# Age-gated progressive disclosure: feature -> level at which it unlocks.
# Adults see everything from level 1.
FEATURE_GATES = {
    "quests": 3,
    "variable_rewards": 3,
    "achievements": 5,
    "streaks": 5,
    "weekly_streaks": 5,
}

AGE_GROUPS = ("child", "secondary", "adult")

ACHIEVEMENT_DEFINITIONS = [
    # (id, name, description, icon, category, threshold)
    ("first-card", "First Flip", "Review your first flashcard", "cards", "cards", 1),
    ("ten-cards", "Getting Going", "Review 10 flashcards", "cards", "cards", 10),
    ("hundred-cards", "Card Shark", "Review 100 flashcards", "cards", "cards", 100),
    ("first-test", "Test Pilot", "Complete your first test", "clipboard", "tests", 1),
    ("five-tests", "Exam Ready", "Complete 5 tests", "clipboard", "tests", 5),
    ("perfect-score", "Perfectionist", "Score 100% on a test", "trophy", "tests", 100),
    ("three-streak", "On a Roll", "Study 3 days in a row", "fire", "streaks", 3),
    ("seven-streak", "Week Warrior", "Study 7 days in a row", "fire", "streaks", 7),
    ("level-five", "Rising Star", "Reach level 5", "star", "levels", 5),
    ("level-ten", "Scholar", "Reach level 10", "medal", "levels", 10),
]

QUEST_DEFINITIONS = [
    # (id, type, title, description, target, metric, xp_reward, coin_reward)
    ("daily-review-10", "daily", "Card Collector", "Review 10 flashcards", 10, "cards_reviewed", 30, 5),
    ("daily-review-25", "daily", "Deck Diver", "Review 25 flashcards", 25, "cards_reviewed", 60, 10),
    ("daily-correct-5", "daily", "Sharp Mind", "Get 5 answers right", 5, "correct_answers", 25, 5),
    ("daily-correct-15", "daily", "Brain Box", "Get 15 answers right", 15, "correct_answers", 50, 10),
    ("daily-test-1", "daily", "Quiz Time", "Complete a test", 1, "tests_completed", 40, 10),
    ("daily-score-80", "daily", "High Flyer", "Score 80% or more on a test", 1, "score_above_80", 50, 15),
    ("daily-session-2", "daily", "Double Up", "Finish 2 study sessions", 2, "sessions_completed", 35, 5),
    ("weekly-review-100", "weekly", "Centurion", "Review 100 flashcards this week", 100, "cards_reviewed", 150, 40),
    ("weekly-tests-5", "weekly", "Test Marathon", "Complete 5 tests this week", 5, "tests_completed", 200, 50),
    ("weekly-subjects-3", "weekly", "All-Rounder", "Study 3 subjects this week", 3, "subjects_studied", 150, 40),
    ("weekly-correct-75", "weekly", "Accuracy Ace", "Get 75 answers right this week", 75, "correct_answers", 175, 45),
]

DAILY_QUEST_COUNT = 3
WEEKLY_QUEST_COUNT = 1

QUEST_METRICS = (
    "cards_reviewed",
    "correct_answers",
    "tests_completed",
    "sessions_completed",
    "score_above_80",
    "subjects_studied",
)

COMEBACK_AFTER_DAYS = 3
