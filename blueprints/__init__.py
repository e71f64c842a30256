"""
Blueprint registration for the Family Revision Companion.

All blueprints carry their full /api/... paths, so none use URL prefixes.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.progress import bp as progress_bp
    from blueprints.gamification import bp as gamification_bp
    from blueprints.quests import bp as quests_bp
    from blueprints.tokens import bp as tokens_bp

    app.register_blueprint(progress_bp)
    app.register_blueprint(gamification_bp)
    app.register_blueprint(quests_bp)
    app.register_blueprint(tokens_bp)
