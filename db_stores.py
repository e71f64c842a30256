"""
DB-backed store classes for the Family Revision Companion.

Each class wraps one per-profile ledger. Stores never commit: the caller
(normally orchestrator.EventOrchestrator) owns the transaction, so every
write an event makes lands together or not at all.
"""

from __future__ import annotations

import json
import random
from datetime import date, datetime, timedelta
from typing import Optional

from database import get_db
from leveling import AwardResult, XPSnapshot, apply_xp, xp_snapshot
from reward_config import COMEBACK_AFTER_DAYS, DAILY_QUEST_COUNT, WEEKLY_QUEST_COUNT
from spaced_repetition import HISTORY_LIMIT, CardState
from streaks import ProfileStats, WeeklyStreak, WEEKLY_DAYS_REQUIRED, iso_week
from token_economy import (
    DAILY_CAP,
    DEFAULT_TOKEN_RATE,
    AttemptHistory,
    TokenReward,
    calculate_token_reward,
    daily_remaining,
    monetary_value,
    validate_token_rate,
)


def _now_iso(now: datetime | None = None) -> str:
    return (now or datetime.now()).isoformat(timespec="seconds")


# ── Profiles ─────────────────────────────────────────────────────────


class ProfileDB:
    """Read access to the profile row owned by the auth layer."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def _row(self):
        db = get_db()
        return db.execute("SELECT * FROM profiles WHERE id=?", (self.profile_id,)).fetchone()

    def exists(self) -> bool:
        return self._row() is not None

    @property
    def age_group(self) -> str:
        r = self._row()
        return r["age_group"] if r else "adult"

    @property
    def role(self) -> str:
        r = self._row()
        return r["role"] if r else "child"

    def children(self) -> list[str]:
        """Profiles this one manages: a parent's children, or everyone for an admin."""
        db = get_db()
        if self.role == "admin":
            rows = db.execute(
                "SELECT id FROM profiles WHERE role='child' ORDER BY id"
            ).fetchall()
        else:
            rows = db.execute(
                "SELECT id FROM profiles WHERE parent_id=? ORDER BY id", (self.profile_id,)
            ).fetchall()
        return [r["id"] for r in rows]


# ── Card progress (SM-2) ─────────────────────────────────────────────


class CardProgressDB:
    """DB-backed per-card spaced repetition state."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def get(self, card_id: str) -> Optional[CardState]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM card_progress WHERE profile_id=? AND card_id=?",
            (self.profile_id, card_id),
        ).fetchone()
        if not row:
            return None
        history = db.execute(
            "SELECT date, result FROM card_history WHERE profile_id=? AND card_id=? "
            "ORDER BY id DESC LIMIT ?",
            (self.profile_id, card_id, HISTORY_LIMIT),
        ).fetchall()
        return CardState(
            last_seen=row["last_seen"],
            next_due=row["next_due"],
            interval=row["interval"],
            ease_factor=row["ease_factor"],
            repetitions=row["repetitions"],
            history=[{"date": h["date"], "result": h["result"]} for h in history],
        )

    def save(self, card_id: str, card: CardState) -> None:
        """Upsert the card row and append its newest history entry."""
        db = get_db()
        db.execute(
            "INSERT INTO card_progress (profile_id, card_id, last_seen, next_due, interval, "
            "ease_factor, repetitions) VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(profile_id, card_id) DO UPDATE SET "
            "last_seen=excluded.last_seen, next_due=excluded.next_due, "
            "interval=excluded.interval, ease_factor=excluded.ease_factor, "
            "repetitions=excluded.repetitions",
            (self.profile_id, card_id, card.last_seen, card.next_due, card.interval,
             card.ease_factor, card.repetitions),
        )
        if card.history:
            latest = card.history[0]
            db.execute(
                "INSERT INTO card_history (profile_id, card_id, date, result) VALUES (?, ?, ?, ?)",
                (self.profile_id, card_id, latest["date"], latest["result"]),
            )

    def due_cards(self, theme_ids: list[str] | None = None, limit: int = 30,
                  now: datetime | None = None) -> dict:
        """Due cards (most overdue first) topped up with never-seen questions."""
        db = get_db()
        now_str = _now_iso(now)
        theme_sql = ""
        theme_params: list[str] = []
        if theme_ids:
            theme_sql = f" AND q.theme_id IN ({','.join('?' for _ in theme_ids)})"
            theme_params = list(theme_ids)

        due = db.execute(
            "SELECT cp.card_id FROM card_progress cp JOIN questions q ON cp.card_id = q.id "
            "WHERE cp.profile_id=? AND cp.last_seen IS NOT NULL AND cp.next_due <= ?"
            + theme_sql + " ORDER BY cp.next_due ASC, cp.card_id ASC",
            (self.profile_id, now_str, *theme_params),
        ).fetchall()
        unseen = db.execute(
            "SELECT q.id FROM questions q WHERE q.id NOT IN "
            "(SELECT card_id FROM card_progress WHERE profile_id=? AND last_seen IS NOT NULL)"
            + theme_sql + " ORDER BY q.id",
            (self.profile_id, *theme_params),
        ).fetchall()

        limit = max(0, limit)
        due_ids = [r["card_id"] for r in due][:limit]
        unseen_ids = [r["id"] for r in unseen][: max(0, limit - len(due_ids))]
        return {
            "due_cards": due_ids,
            "unseen_cards": unseen_ids,
            "total_due": len(due),
            "total_unseen": len(unseen),
        }

    def review_count(self) -> int:
        db = get_db()
        return db.execute(
            "SELECT COUNT(*) AS cnt FROM card_history WHERE profile_id=?", (self.profile_id,)
        ).fetchone()["cnt"]

    def detailed_stats(self, now: datetime | None = None) -> dict:
        """Dashboard analytics derived from the review history."""
        db = get_db()
        now = now or datetime.now()
        pid = self.profile_id

        acc = db.execute(
            "SELECT COUNT(*) AS total, "
            "SUM(CASE WHEN result='correct' THEN 1 ELSE 0 END) AS correct "
            "FROM card_history WHERE profile_id=? AND result != 'skipped'",
            (pid,),
        ).fetchone()
        total = acc["total"] or 0
        overall = round((acc["correct"] or 0) / total * 100) if total else 0

        due_today = db.execute(
            "SELECT COUNT(*) AS cnt FROM card_progress "
            "WHERE profile_id=? AND last_seen IS NOT NULL AND next_due <= ?",
            (pid, _now_iso(now)),
        ).fetchone()["cnt"]

        daily = db.execute(
            "SELECT substr(date, 1, 10) AS day, COUNT(*) AS total, "
            "SUM(CASE WHEN result='correct' THEN 1 ELSE 0 END) AS correct "
            "FROM card_history WHERE profile_id=? AND result != 'skipped' "
            "GROUP BY day ORDER BY day DESC LIMIT 30",
            (pid,),
        ).fetchall()
        accuracy_over_time = [
            {"date": r["day"], "accuracy": round(r["correct"] / r["total"] * 100), "total": r["total"]}
            for r in reversed(daily)
        ]

        categories = db.execute(
            "SELECT q.category, COUNT(*) AS total, COUNT(DISTINCT h.card_id) AS card_count, "
            "SUM(CASE WHEN h.result='correct' THEN 1 ELSE 0 END) AS correct "
            "FROM card_history h JOIN questions q ON h.card_id = q.id "
            "WHERE h.profile_id=? AND h.result != 'skipped' GROUP BY q.category",
            (pid,),
        ).fetchall()
        category_breakdown = sorted(
            (
                {
                    "category": r["category"],
                    "correct": r["correct"],
                    "total": r["total"],
                    "accuracy": round(r["correct"] / r["total"] * 100),
                    "card_count": r["card_count"],
                }
                for r in categories
            ),
            key=lambda c: c["accuracy"],
        )

        weakest = db.execute(
            "SELECT cp.card_id, q.question, q.category, cp.ease_factor, cp.last_seen, "
            "SUM(CASE WHEN h.result='incorrect' THEN 1 ELSE 0 END) AS incorrect_count "
            "FROM card_progress cp LEFT JOIN questions q ON cp.card_id = q.id "
            "LEFT JOIN card_history h ON cp.profile_id = h.profile_id AND cp.card_id = h.card_id "
            "WHERE cp.profile_id=? GROUP BY cp.card_id "
            "HAVING incorrect_count > 0 OR cp.ease_factor < 2.0 "
            "ORDER BY cp.ease_factor ASC LIMIT 10",
            (pid,),
        ).fetchall()
        weakest_cards = [
            {
                "card_id": r["card_id"],
                "question": r["question"] or r["card_id"],
                "category": r["category"] or "Unknown",
                "ease_factor": r["ease_factor"],
                "incorrect_count": r["incorrect_count"],
                "last_seen": r["last_seen"],
            }
            for r in weakest
        ]

        cutoff = (now.date() - timedelta(days=84)).isoformat()
        heat = db.execute(
            "SELECT substr(date, 1, 10) AS day, COUNT(*) AS cnt FROM card_history "
            "WHERE profile_id=? AND substr(date, 1, 10) >= ? GROUP BY day",
            (pid, cutoff),
        ).fetchall()

        return {
            "overall_accuracy": overall,
            "due_today": due_today,
            "accuracy_over_time": accuracy_over_time,
            "category_breakdown": category_breakdown,
            "weakest_cards": weakest_cards,
            "heatmap": {r["day"]: r["cnt"] for r in heat},
        }


# ── Session stats & streaks ──────────────────────────────────────────


class ProfileStatsDB:
    """DB-backed session counters and daily streak."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def _ensure(self) -> None:
        db = get_db()
        db.execute("INSERT OR IGNORE INTO profile_stats (profile_id) VALUES (?)", (self.profile_id,))

    def load(self) -> ProfileStats:
        self._ensure()
        db = get_db()
        r = db.execute("SELECT * FROM profile_stats WHERE profile_id=?", (self.profile_id,)).fetchone()
        return ProfileStats(
            total_sessions=r["total_sessions"],
            total_cards_studied=r["total_cards_studied"],
            current_streak=r["current_streak"],
            longest_streak=r["longest_streak"],
            last_session_date=r["last_session_date"],
        )

    def save(self, stats: ProfileStats) -> None:
        self._ensure()
        db = get_db()
        db.execute(
            "UPDATE profile_stats SET total_sessions=?, total_cards_studied=?, current_streak=?, "
            "longest_streak=?, last_session_date=? WHERE profile_id=?",
            (stats.total_sessions, stats.total_cards_studied, stats.current_streak,
             stats.longest_streak, stats.last_session_date, self.profile_id),
        )


class WeeklyStreakDB:
    """DB-backed weekly streak (weeks with 4+ study days)."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def _ensure(self) -> None:
        db = get_db()
        db.execute("INSERT OR IGNORE INTO weekly_streaks (profile_id) VALUES (?)", (self.profile_id,))

    def load(self) -> WeeklyStreak:
        self._ensure()
        db = get_db()
        r = db.execute("SELECT * FROM weekly_streaks WHERE profile_id=?", (self.profile_id,)).fetchone()
        try:
            days = json.loads(r["week_study_days"] or "{}")
        except json.JSONDecodeError:
            days = {}
        return WeeklyStreak(
            current_weekly_streak=r["current_weekly_streak"],
            longest_weekly_streak=r["longest_weekly_streak"],
            week_study_days=days,
            last_week_completed=r["last_week_completed"],
            streak_freezes=r["streak_freezes"],
        )

    def save(self, state: WeeklyStreak) -> None:
        self._ensure()
        db = get_db()
        db.execute(
            "UPDATE weekly_streaks SET current_weekly_streak=?, longest_weekly_streak=?, "
            "week_study_days=?, last_week_completed=? WHERE profile_id=?",
            (state.current_weekly_streak, state.longest_weekly_streak,
             json.dumps(state.week_study_days), state.last_week_completed, self.profile_id),
        )

    def summary(self, today: date | None = None) -> dict:
        today = today or date.today()
        state = self.load()
        return {
            "current_weekly_streak": state.current_weekly_streak,
            "longest_weekly_streak": state.longest_weekly_streak,
            "days_studied_this_week": state.days_this_week(today),
            "days_required": WEEKLY_DAYS_REQUIRED,
            "streak_freezes": state.streak_freezes,
        }


# ── Reward state (daily / comeback bonus) ────────────────────────────


class RewardStateDB:
    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def _row(self):
        db = get_db()
        db.execute("INSERT OR IGNORE INTO profile_reward_state (profile_id) VALUES (?)", (self.profile_id,))
        return db.execute(
            "SELECT * FROM profile_reward_state WHERE profile_id=?", (self.profile_id,)
        ).fetchone()

    def daily_bonus_available(self, today: date) -> bool:
        return self._row()["daily_bonus_used"] != today.isoformat()

    def mark_daily_bonus_used(self, today: date) -> None:
        self._row()
        get_db().execute(
            "UPDATE profile_reward_state SET daily_bonus_used=? WHERE profile_id=?",
            (today.isoformat(), self.profile_id),
        )

    def update_last_session_date(self, today: date) -> None:
        self._row()
        get_db().execute(
            "UPDATE profile_reward_state SET last_session_date=? WHERE profile_id=?",
            (today.isoformat(), self.profile_id),
        )

    def comeback_bonus(self, today: date) -> dict:
        last = self._row()["last_session_date"]
        if not last:
            return {"eligible": False, "days_since_last_session": None}
        days = (today - date.fromisoformat(last)).days
        return {"eligible": days >= COMEBACK_AFTER_DAYS, "days_since_last_session": days}

    def summary(self, today: date) -> dict:
        r = self._row()
        return {
            "last_session_date": r["last_session_date"],
            "daily_bonus_available": r["daily_bonus_used"] != today.isoformat(),
            "variable_rewards": bool(r["variable_rewards"]),
            "comeback": self.comeback_bonus(today),
        }


# ── XP ledger ────────────────────────────────────────────────────────


class ProfileXPDB:
    """DB-backed XP/level ledger. The first award of each calendar day is doubled."""

    def __init__(self, profile_id: str, age_group: str = "adult"):
        self.profile_id = profile_id
        self.age_group = age_group

    def _row(self):
        db = get_db()
        db.execute("INSERT OR IGNORE INTO profile_xp (profile_id) VALUES (?)", (self.profile_id,))
        return db.execute(
            "SELECT total_xp, level FROM profile_xp WHERE profile_id=?", (self.profile_id,)
        ).fetchone()

    def snapshot(self) -> XPSnapshot:
        return xp_snapshot(self._row()["total_xp"])

    @property
    def level(self) -> int:
        return self._row()["level"]

    def award_xp(self, amount: int, now: datetime | None = None) -> AwardResult:
        r = self._row()
        if amount <= 0:
            return apply_xp(r["total_xp"], r["level"], 0, self.age_group)

        today = (now or datetime.now()).date()
        reward_state = RewardStateDB(self.profile_id)
        bonus = reward_state.daily_bonus_available(today)
        if bonus:
            amount *= 2
            reward_state.mark_daily_bonus_used(today)

        result = apply_xp(r["total_xp"], r["level"], amount, self.age_group)
        get_db().execute(
            "UPDATE profile_xp SET total_xp=?, level=? WHERE profile_id=?",
            (result.total_xp, result.level, self.profile_id),
        )
        if bonus:
            result.daily_bonus_applied = True
            result.events.insert(0, {"type": "daily-bonus", "amount": amount,
                                     "label": "Daily bonus: double XP!"})
        return result


class SubjectXPDB:
    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def all(self) -> list[dict]:
        rows = get_db().execute(
            "SELECT subject_id, xp FROM subject_xp WHERE profile_id=? ORDER BY subject_id",
            (self.profile_id,),
        ).fetchall()
        return [{"subject_id": r["subject_id"], "xp": r["xp"]} for r in rows]

    def award(self, subject_id: str, amount: int) -> None:
        if amount <= 0:
            return
        get_db().execute(
            "INSERT INTO subject_xp (profile_id, subject_id, xp) VALUES (?, ?, ?) "
            "ON CONFLICT(profile_id, subject_id) DO UPDATE SET xp = xp + excluded.xp",
            (self.profile_id, subject_id, amount),
        )


# ── Coins ────────────────────────────────────────────────────────────


class CoinLedgerDB:
    """Coin balance plus its transaction log, always written together."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def balance(self) -> int:
        db = get_db()
        db.execute("INSERT OR IGNORE INTO profile_coins (profile_id) VALUES (?)", (self.profile_id,))
        return db.execute(
            "SELECT coins FROM profile_coins WHERE profile_id=?", (self.profile_id,)
        ).fetchone()["coins"]

    def award(self, amount: int, reason: str, now: datetime | None = None) -> int:
        if amount <= 0:
            return self.balance()
        db = get_db()
        self.balance()
        db.execute("UPDATE profile_coins SET coins = coins + ? WHERE profile_id=?", (amount, self.profile_id))
        db.execute(
            "INSERT INTO coin_transactions (profile_id, amount, reason, created_at) VALUES (?, ?, ?, ?)",
            (self.profile_id, amount, reason, _now_iso(now)),
        )
        return self.balance()

    def transactions(self, limit: int = 20) -> list[dict]:
        rows = get_db().execute(
            "SELECT id, amount, reason, created_at FROM coin_transactions "
            "WHERE profile_id=? ORDER BY id DESC LIMIT ?",
            (self.profile_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]


# ── Achievements ─────────────────────────────────────────────────────


class AchievementStoreDB:
    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def all_with_status(self) -> list[dict]:
        rows = get_db().execute(
            "SELECT a.*, pa.unlocked_at FROM achievements a "
            "LEFT JOIN profile_achievements pa ON a.id = pa.achievement_id AND pa.profile_id=? "
            "ORDER BY a.category, a.threshold",
            (self.profile_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def counts(self) -> tuple[int, int]:
        db = get_db()
        unlocked = db.execute(
            "SELECT COUNT(*) AS cnt FROM profile_achievements WHERE profile_id=?", (self.profile_id,)
        ).fetchone()["cnt"]
        total = db.execute("SELECT COUNT(*) AS cnt FROM achievements").fetchone()["cnt"]
        return unlocked, total

    def unlock(self, achievement_id: str, now: datetime | None = None) -> bool:
        """True only the first time; unlocks are never revoked."""
        cur = get_db().execute(
            "INSERT OR IGNORE INTO profile_achievements (profile_id, achievement_id, unlocked_at) "
            "VALUES (?, ?, ?)",
            (self.profile_id, achievement_id, _now_iso(now)),
        )
        return cur.rowcount > 0

    def check_and_unlock(self, now: datetime | None = None) -> list[dict]:
        db = get_db()
        pid = self.profile_id
        card_reviews = CardProgressDB(pid).review_count()
        tests = db.execute(
            "SELECT COUNT(*) AS cnt, SUM(CASE WHEN score = 100 THEN 1 ELSE 0 END) AS perfect "
            "FROM test_sessions WHERE profile_id=?",
            (pid,),
        ).fetchone()
        test_count = tests["cnt"] or 0
        perfect = tests["perfect"] or 0
        stats = ProfileStatsDB(pid).load()
        streak = max(stats.current_streak, stats.longest_streak)
        level = ProfileXPDB(pid).level

        checks = [
            ("first-card", card_reviews >= 1),
            ("ten-cards", card_reviews >= 10),
            ("hundred-cards", card_reviews >= 100),
            ("first-test", test_count >= 1),
            ("five-tests", test_count >= 5),
            ("perfect-score", perfect >= 1),
            ("three-streak", streak >= 3),
            ("seven-streak", streak >= 7),
            ("level-five", level >= 5),
            ("level-ten", level >= 10),
        ]
        new_ids = [aid for aid, condition in checks if condition and self.unlock(aid, now)]
        if not new_ids:
            return []
        placeholders = ",".join("?" for _ in new_ids)
        rows = db.execute(
            f"SELECT * FROM achievements WHERE id IN ({placeholders}) ORDER BY category, threshold",
            new_ids,
        ).fetchall()
        return [dict(r) for r in rows]


# ── Quests ───────────────────────────────────────────────────────────


class QuestStoreDB:
    """Daily/weekly quest assignments and their progress counters."""

    def __init__(self, profile_id: str, rng: random.Random | None = None):
        self.profile_id = profile_id
        self.rng = rng or random.Random()

    def _assigned_ids(self, quest_type: str, period: str) -> list[str]:
        rows = get_db().execute(
            "SELECT pq.quest_id FROM profile_quests pq "
            "JOIN quest_definitions qd ON pq.quest_id = qd.id "
            "WHERE pq.profile_id=? AND pq.assigned_date=? AND qd.type=?",
            (self.profile_id, period, quest_type),
        ).fetchall()
        return [r["quest_id"] for r in rows]

    def _assign(self, quest_type: str, period: str, count: int) -> list[str]:
        existing = self._assigned_ids(quest_type, period)
        missing = count - len(existing)
        if missing <= 0:
            return []
        db = get_db()
        candidates = [
            r["id"] for r in db.execute(
                "SELECT id FROM quest_definitions WHERE type=? ORDER BY id", (quest_type,)
            ).fetchall()
            if r["id"] not in existing
        ]
        picks = self.rng.sample(candidates, min(missing, len(candidates)))
        db.executemany(
            "INSERT OR IGNORE INTO profile_quests (profile_id, quest_id, progress, completed, "
            "assigned_date) VALUES (?, ?, 0, 0, ?)",
            [(self.profile_id, quest_id, period) for quest_id in picks],
        )
        return picks

    def assign_daily(self, today: date) -> list[str]:
        return self._assign("daily", today.isoformat(), DAILY_QUEST_COUNT)

    def assign_weekly(self, today: date) -> list[str]:
        return self._assign("weekly", iso_week(today), WEEKLY_QUEST_COUNT)

    def active(self, today: date) -> list[dict]:
        rows = get_db().execute(
            "SELECT pq.id, pq.quest_id, pq.progress, pq.completed, pq.completed_at, "
            "pq.assigned_date, qd.type, qd.title, qd.description, qd.target, qd.metric, "
            "qd.xp_reward, qd.coin_reward FROM profile_quests pq "
            "JOIN quest_definitions qd ON pq.quest_id = qd.id "
            "WHERE pq.profile_id=? AND ((qd.type='daily' AND pq.assigned_date=?) "
            "OR (qd.type='weekly' AND pq.assigned_date=?)) ORDER BY qd.type ASC, pq.id ASC",
            (self.profile_id, today.isoformat(), iso_week(today)),
        ).fetchall()
        return [
            {
                "id": r["id"],
                "quest_id": r["quest_id"],
                "type": r["type"],
                "title": r["title"],
                "description": r["description"],
                "metric": r["metric"],
                "progress": r["progress"],
                "target": r["target"],
                "completed": bool(r["completed"]),
                "completed_at": r["completed_at"],
                "rewards": {"xp": r["xp_reward"], "coins": r["coin_reward"]},
            }
            for r in rows
        ]

    def increment(self, metric: str, amount: int = 1, now: datetime | None = None) -> list[dict]:
        """Advance matching current-period quests; return the ones that just completed."""
        if amount <= 0:
            return []
        now = now or datetime.now()
        today = now.date()
        db = get_db()
        matching = db.execute(
            "SELECT pq.id, pq.quest_id, pq.progress, qd.target, qd.title, qd.type, "
            "qd.xp_reward, qd.coin_reward FROM profile_quests pq "
            "JOIN quest_definitions qd ON pq.quest_id = qd.id "
            "WHERE pq.profile_id=? AND pq.completed=0 AND qd.metric=? "
            "AND ((qd.type='daily' AND pq.assigned_date=?) OR (qd.type='weekly' AND pq.assigned_date=?))",
            (self.profile_id, metric, today.isoformat(), iso_week(today)),
        ).fetchall()

        completed = []
        for quest in matching:
            progress = min(quest["progress"] + amount, quest["target"])
            if progress >= quest["target"]:
                db.execute(
                    "UPDATE profile_quests SET progress=?, completed=1, completed_at=? "
                    "WHERE id=? AND completed=0",
                    (progress, _now_iso(now), quest["id"]),
                )
                completed.append({
                    "id": quest["id"],
                    "quest_id": quest["quest_id"],
                    "title": quest["title"],
                    "type": quest["type"],
                    "xp_reward": quest["xp_reward"],
                    "coin_reward": quest["coin_reward"],
                })
            else:
                db.execute("UPDATE profile_quests SET progress=? WHERE id=?", (progress, quest["id"]))
        return completed


# ── Tokens ───────────────────────────────────────────────────────────


class TokenStoreDB:
    """DB-backed token balance, daily cap counter, and per-test history."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def _row(self, today: date | None = None):
        today_str = (today or date.today()).isoformat()
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO profile_tokens (profile_id, token_rate, daily_reset_date) "
            "VALUES (?, ?, ?)",
            (self.profile_id, DEFAULT_TOKEN_RATE, today_str),
        )
        db.execute(
            "UPDATE profile_tokens SET daily_earned=0, daily_reset_date=? "
            "WHERE profile_id=? AND daily_reset_date != ?",
            (today_str, self.profile_id, today_str),
        )
        return db.execute(
            "SELECT tokens, token_rate, daily_earned FROM profile_tokens WHERE profile_id=?",
            (self.profile_id,),
        ).fetchone()

    def summary(self, today: date | None = None) -> dict:
        r = self._row(today)
        return {
            "tokens": r["tokens"],
            "token_rate": r["token_rate"],
            "daily_earned": r["daily_earned"],
            "daily_remaining": daily_remaining(r["daily_earned"]),
            "daily_cap": DAILY_CAP,
            "monetary_value": monetary_value(r["tokens"], r["token_rate"]),
        }

    def history(self, test_key: str) -> Optional[AttemptHistory]:
        row = get_db().execute(
            "SELECT times_completed, best_score FROM token_test_history "
            "WHERE profile_id=? AND test_key=?",
            (self.profile_id, test_key),
        ).fetchone()
        if not row:
            return None
        return AttemptHistory(times_completed=row["times_completed"], best_score=row["best_score"])

    def calculate(self, score: int, difficulty: str, test_key: str,
                  today: date | None = None) -> TokenReward:
        r = self._row(today)
        return calculate_token_reward(score, difficulty, self.history(test_key), r["daily_earned"])

    def award(self, amount: int, reason: str, session_id: str | None = None,
              now: datetime | None = None) -> int:
        now = now or datetime.now()
        r = self._row(now.date())
        if amount <= 0:
            return r["tokens"]
        db = get_db()
        db.execute(
            "UPDATE profile_tokens SET tokens = tokens + ?, daily_earned = daily_earned + ? "
            "WHERE profile_id=?",
            (amount, amount, self.profile_id),
        )
        db.execute(
            "INSERT INTO token_transactions (profile_id, amount, reason, session_id, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (self.profile_id, amount, reason, session_id, _now_iso(now)),
        )
        return self._row(now.date())["tokens"]

    def record_completion(self, test_key: str, score: int) -> None:
        get_db().execute(
            "INSERT INTO token_test_history (profile_id, test_key, times_completed, best_score) "
            "VALUES (?, ?, 1, ?) ON CONFLICT(profile_id, test_key) DO UPDATE SET "
            "times_completed = times_completed + 1, best_score = MAX(best_score, excluded.best_score)",
            (self.profile_id, test_key, score),
        )

    def transactions(self, limit: int = 20) -> list[dict]:
        limit = min(max(limit, 1), 100)
        rows = get_db().execute(
            "SELECT id, amount, reason, session_id, created_at FROM token_transactions "
            "WHERE profile_id=? ORDER BY id DESC LIMIT ?",
            (self.profile_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def set_rate(self, rate) -> float:
        rate = validate_token_rate(rate)
        self._row()
        get_db().execute(
            "UPDATE profile_tokens SET token_rate=? WHERE profile_id=?", (rate, self.profile_id)
        )
        return rate

    @staticmethod
    def children_summaries(child_ids: list[str], today: date | None = None) -> list[dict]:
        return [
            {"profile_id": cid, **TokenStoreDB(cid).summary(today)}
            for cid in child_ids
        ]


class TestSessionDB:
    __test__ = False  # not a pytest class

    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def add(self, session_id: str, test_key: str, score: int, difficulty: str,
            now: datetime | None = None) -> None:
        get_db().execute(
            "INSERT INTO test_sessions (id, profile_id, test_key, score, difficulty, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (session_id, self.profile_id, test_key, score, difficulty, _now_iso(now)),
        )


# ── Sync batches ─────────────────────────────────────────────────────


class SyncBatchDB:
    """Idempotency keys of client reward batches already applied."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id

    def seen(self, batch_id: str) -> bool:
        row = get_db().execute(
            "SELECT 1 FROM sync_batches WHERE profile_id=? AND batch_id=?",
            (self.profile_id, batch_id),
        ).fetchone()
        return row is not None

    def record(self, batch_id: str, xp: int, coins: int, now: datetime | None = None) -> None:
        get_db().execute(
            "INSERT INTO sync_batches (profile_id, batch_id, xp, coins, created_at) VALUES (?, ?, ?, ?, ?)",
            (self.profile_id, batch_id, xp, coins, _now_iso(now)),
        )
