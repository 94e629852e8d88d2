"""
Affiliate maintenance commands.

# Nightly tier sweep (catches promotions missed by request-time checks)
0 3 * * * cd /app && flask affiliates promote-all
"""

import click
from flask.cli import with_appcontext
from ..models.affiliate import seed_tier_thresholds, TIER_ORDER
from ..services.affiliate_tiers import affiliate_tier_service


@click.group('affiliates')
def affiliates_cli():
    """Affiliate program commands."""
    pass


@affiliates_cli.command('seed-tiers')
@with_appcontext
def seed_tiers():
    """Insert the default tier thresholds when none are stored."""
    count = seed_tier_thresholds()
    if count:
        click.echo(f"Seeded {count} tier thresholds")
    else:
        click.echo("Tier thresholds already present, nothing to do")


@affiliates_cli.command('promote-all')
@with_appcontext
def promote_all():
    """Recompute the tier of every affiliate. Tiers never go down."""
    result = affiliate_tier_service.promote_all()
    click.echo(f"Checked: {result['total']} affiliates")
    click.echo(f"Promoted: {result['promoted']}")


@affiliates_cli.command('distribution')
@with_appcontext
def distribution():
    """Show the number of affiliates per tier."""
    counts = affiliate_tier_service.tier_distribution()
    for tier in TIER_ORDER:
        click.echo(f"  {tier:<9} {counts.get(tier, 0)}")


def init_app(app):
    app.cli.add_command(affiliates_cli)
