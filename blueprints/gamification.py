"""XP, coins, achievements, and reward sync routes."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify

from db_stores import AchievementStoreDB, SubjectXPDB
from helpers import json_body, orchestrator_for, profile_access_required
from orchestrator import ValidationError

bp = Blueprint("gamification", __name__)
logger = logging.getLogger(__name__)


@bp.route("/api/gamification/<profile_id>")
@profile_access_required
def api_gamification(profile_id):
    return jsonify(orchestrator_for(profile_id).summary())


@bp.route("/api/gamification/<profile_id>/award", methods=["POST"])
@profile_access_required
def api_award(profile_id):
    """Apply a client's buffered XP/coin deltas; replays of a batch_id are no-ops."""
    data = json_body()
    try:
        result = orchestrator_for(profile_id).award_and_sync(
            data.get("xp", 0),
            data.get("coins", 0),
            reason=str(data.get("reason", "") or ""),
            batch_id=data.get("batch_id"),
            subject_id=data.get("subject_id") or None,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result)


@bp.route("/api/gamification/<profile_id>/achievements")
@profile_access_required
def api_achievements(profile_id):
    return jsonify({"achievements": AchievementStoreDB(profile_id).all_with_status()})


@bp.route("/api/gamification/<profile_id>/subject-xp")
@profile_access_required
def api_subject_xp(profile_id):
    return jsonify({"subjects": SubjectXPDB(profile_id).all()})


@bp.route("/api/gamification/<profile_id>/reward-state")
@profile_access_required
def api_reward_state(profile_id):
    return jsonify(orchestrator_for(profile_id).reward_state())
