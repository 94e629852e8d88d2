"""
CLI Commands for the loyalty back-end.

Usage:
    flask affiliates seed-tiers          # Insert default tier thresholds
    flask affiliates promote-all         # Recompute every affiliate's tier
    flask affiliates distribution        # Affiliates per tier

    flask points reconcile               # Check balances against the ledger
    flask points reconcile --user-id 7 --fix
"""
from .affiliates import init_app as init_affiliate_commands
from .points import init_app as init_points_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_affiliate_commands(app)
    init_points_commands(app)
