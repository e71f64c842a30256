"""Daily and weekly quest routes."""

from __future__ import annotations

from flask import Blueprint, jsonify

from helpers import orchestrator_for, profile_access_required

bp = Blueprint("quests", __name__)


@bp.route("/api/quests/<profile_id>")
@profile_access_required
def api_quests(profile_id):
    quests = orchestrator_for(profile_id).get_active_quests()
    return jsonify({
        "daily": [q for q in quests if q["type"] == "daily"],
        "weekly": [q for q in quests if q["type"] == "weekly"],
    })
