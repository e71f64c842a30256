"""Test completion and token economy routes."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify

from audit import log_event
from database import transaction
from db_stores import ProfileDB, TokenStoreDB
from helpers import (
    current_profile_id,
    int_arg,
    json_body,
    orchestrator_for,
    parent_required,
    profile_access_required,
)
from orchestrator import ValidationError

bp = Blueprint("tokens", __name__)
logger = logging.getLogger(__name__)


@bp.route("/api/tests/<profile_id>/complete", methods=["POST"])
@profile_access_required
def api_complete_test(profile_id):
    data = json_body()
    try:
        result = orchestrator_for(profile_id).complete_test(
            data.get("test_key"),
            data.get("score"),
            data.get("difficulty"),
            subject_id=data.get("subject_id") or None,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result)


@bp.route("/api/tokens/children/summary")
@parent_required
def api_children_summary():
    children = ProfileDB(current_profile_id()).children()
    return jsonify({"children": TokenStoreDB.children_summaries(children)})


@bp.route("/api/tokens/<profile_id>")
@profile_access_required
def api_token_balance(profile_id):
    return jsonify(TokenStoreDB(profile_id).summary())


@bp.route("/api/tokens/<profile_id>/transactions")
@profile_access_required
def api_token_transactions(profile_id):
    limit = int_arg("limit", 20)
    if limit is None:
        return jsonify({"error": "limit must be an integer"}), 400
    return jsonify({"transactions": TokenStoreDB(profile_id).transactions(limit)})


@bp.route("/api/tokens/<profile_id>/rate", methods=["PUT"])
@parent_required
@profile_access_required
def api_set_token_rate(profile_id):
    data = json_body()
    try:
        with transaction():
            rate = TokenStoreDB(profile_id).set_rate(data.get("rate"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    log_event("token_rate_changed", current_profile_id(), f"profile_id={profile_id} rate={rate}")
    return jsonify({"success": True, "token_rate": rate})
