"""Card review, due-card, and progress statistics routes."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from helpers import int_arg, json_body, orchestrator_for, profile_access_required
from orchestrator import ValidationError

bp = Blueprint("progress", __name__)
logger = logging.getLogger(__name__)


@bp.route("/api/progress/<profile_id>/card/<card_id>", methods=["POST"])
@profile_access_required
def api_record_card(profile_id, card_id):
    data = json_body()
    result = data.get("result")
    try:
        outcome = orchestrator_for(profile_id).record_outcome(card_id, result)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"success": True, **outcome})


@bp.route("/api/progress/<profile_id>/due")
@profile_access_required
def api_due_cards(profile_id):
    themes = request.args.get("themes", "")
    theme_ids = [t.strip() for t in themes.split(",") if t.strip()] or None
    limit = int_arg("limit", 30)
    if limit is None:
        return jsonify({"error": "limit must be an integer"}), 400
    try:
        return jsonify(orchestrator_for(profile_id).get_due_cards(theme_ids, limit))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@bp.route("/api/progress/<profile_id>/stats")
@profile_access_required
def api_detailed_stats(profile_id):
    return jsonify(orchestrator_for(profile_id).detailed_stats())


@bp.route("/api/progress/<profile_id>/weekly-streak")
@profile_access_required
def api_weekly_streak(profile_id):
    return jsonify(orchestrator_for(profile_id).weekly_streak())
