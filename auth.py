"""
Profile Authentication — Flask-Login blueprint.

Minimal JSON login/logout for family profiles. Each profile signs in with
its id and a PIN; PINs are hashed with werkzeug.security.
"""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from audit import log_event
from database import get_db
from extensions import limiter
from reward_config import AGE_GROUPS

ROLES = ("admin", "parent", "child")

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
login_manager = LoginManager()


@login_manager.unauthorized_handler
def _unauthorized():
    return jsonify({"error": "Authentication required"}), 401


class User(UserMixin):
    """Wraps a profile row for Flask-Login."""

    def __init__(self, id: str, name: str, role: str = "child", age_group: str = "child",
                 parent_id: str | None = None):
        self.id = id
        self.name = name
        self.role = role
        self.age_group = age_group
        self.parent_id = parent_id

    @property
    def is_admin(self):
        return self.role == "admin"

    @property
    def is_parent(self):
        return self.role == "parent"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "age_group": self.age_group,
            "parent_id": self.parent_id,
        }

    @staticmethod
    def from_row(row) -> "User":
        return User(row["id"], row["name"], row["role"], row["age_group"], row["parent_id"])

    @staticmethod
    def get(profile_id: str):
        db = get_db()
        row = db.execute(
            "SELECT id, name, role, age_group, parent_id FROM profiles WHERE id = ?", (profile_id,)
        ).fetchone()
        if row:
            return User.from_row(row)
        return None


@login_manager.user_loader
def load_user(profile_id):
    return User.get(profile_id)


def create_profile(profile_id: str, name: str, pin: str, role: str = "child",
                   age_group: str = "child", parent_id: str | None = None) -> User:
    """Insert a profile row. Used by seeding scripts and tests."""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role!r}")
    if age_group not in AGE_GROUPS:
        raise ValueError(f"Unknown age group: {age_group!r}")
    db = get_db()
    db.execute(
        "INSERT INTO profiles (id, name, role, age_group, parent_id, pin_hash, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (profile_id, name, role, age_group, parent_id, generate_password_hash(pin),
         datetime.now().isoformat(timespec="seconds")),
    )
    return User(profile_id, name, role, age_group, parent_id)


@auth_bp.route("/login", methods=["POST"])
@limiter.limit(lambda: current_app.config["LOGIN_RATE_LIMIT"], methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    profile_id = str(data.get("profile_id", "")).strip()
    pin = str(data.get("pin", ""))

    if not profile_id or not pin:
        return jsonify({"error": "profile_id and pin are required"}), 400

    db = get_db()
    row = db.execute(
        "SELECT id, name, role, age_group, parent_id, pin_hash FROM profiles WHERE id = ?",
        (profile_id,),
    ).fetchone()
    if not row or not row["pin_hash"] or not check_password_hash(row["pin_hash"], pin):
        log_event("login_failed", row["id"] if row else None, f"profile_id={profile_id}")
        return jsonify({"error": "Invalid profile or PIN"}), 401

    user = User.from_row(row)
    login_user(user, remember=True)
    log_event("login_success", user.id)
    return jsonify({"success": True, "profile": user.to_dict()})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    log_event("logout", current_user.id)
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify(current_user.to_dict())
