"""
Test fixtures for the Family Revision Companion.

Provides app, client, auth_client, parent_client, admin_client and db
fixtures with file-based SQLite, plus a controllable clock.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

PIN = "1234"

# Tuesday of ISO week 2026-W11
FIXED_NOW = datetime(2026, 3, 10, 9, 0, 0)

QUESTIONS = [
    ("q1", "maths", "fractions", "Number", "What is 1/2 + 1/4?"),
    ("q2", "maths", "fractions", "Number", "Simplify 6/8"),
    ("q3", "maths", "shapes", "Geometry", "How many sides has a hexagon?"),
    ("q4", "science", "plants", "Biology", "What do leaves need for photosynthesis?"),
    ("q5", "science", "plants", "Biology", "Name the male part of a flower"),
    ("q6", "science", "forces", "Physics", "What pulls objects towards Earth?"),
]


class FakeClock:
    """Callable clock for orchestrator tests."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "QUEST_RNG": random.Random(7),
    })

    with app.app_context():
        from auth import create_profile
        from database import get_db, init_db, run_migrations

        init_db()
        run_migrations()
        app._db_initialized = True

        create_profile("admin", "Admin", PIN, role="admin", age_group="adult")
        create_profile("parent1", "Sam", PIN, role="parent", age_group="adult")
        create_profile("parent2", "Alex", PIN, role="parent", age_group="adult")
        create_profile("kid1", "Robin", PIN, role="child", age_group="child", parent_id="parent1")
        create_profile("kid2", "Jo", PIN, role="child", age_group="secondary", parent_id="parent1")
        create_profile("kid3", "Max", PIN, role="child", age_group="child", parent_id="parent2")
        create_profile("adult1", "Chris", PIN, role="child", age_group="adult")

        get_db().executemany(
            "INSERT INTO questions (id, subject_id, theme_id, category, question) VALUES (?, ?, ?, ?, ?)",
            QUESTIONS,
        )

        yield app


def _login(app, profile_id):
    client = app.test_client()
    resp = client.post("/api/auth/login", json={"profile_id": profile_id, "pin": PIN})
    assert resp.status_code == 200
    return client


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def auth_client(app):
    """Test client logged in as child profile kid1."""
    return _login(app, "kid1")


@pytest.fixture
def parent_client(app):
    """Test client logged in as parent1 (parent of kid1 and kid2)."""
    return _login(app, "parent1")


@pytest.fixture
def admin_client(app):
    return _login(app, "admin")


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()
