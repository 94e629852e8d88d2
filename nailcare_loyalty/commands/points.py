"""
Points ledger maintenance commands.
"""

import click
from flask.cli import with_appcontext
from ..models.user import User
from ..services.points_service import points_service


@click.group('points')
def points_cli():
    """Points ledger commands."""
    pass


@points_cli.command('reconcile')
@click.option('--user-id', type=int, help='Specific user ID (or all users with points activity)')
@click.option('--fix', is_flag=True, help='Reset drifted balances to the ledger sum')
@with_appcontext
def reconcile(user_id, fix):
    """
    Compare stored balances with the signed sum of each user's ledger.
    """
    if user_id:
        user_ids = [user_id]
    else:
        user_ids = [u.id for u in User.query.order_by(User.id).all()]

    drifted = 0
    for uid in user_ids:
        result = points_service.reconcile_balance(uid, fix=fix)
        if result['consistent']:
            continue
        drifted += 1
        status = 'FIXED' if result['fixed'] else 'DRIFT'
        click.echo(
            f"  [{status}] user {uid}: stored={result['stored_balance']} "
            f"ledger={result['ledger_sum']} last_after={result['latest_balance_after']}"
        )

    click.echo(f"\nChecked {len(user_ids)} users, {drifted} inconsistent{' (fixed)' if fix and drifted else ''}")


def init_app(app):
    app.cli.add_command(points_cli)
