"""
Tests for the flask CLI maintenance commands.
"""
from nailcare_loyalty.extensions import db
from nailcare_loyalty.models import Affiliate, AffiliateTierThreshold, User
from nailcare_loyalty.services.points_service import points_service


class TestAffiliateCommands:

    def test_seed_tiers(self, app):
        runner = app.test_cli_runner()

        first = runner.invoke(args=['affiliates', 'seed-tiers'])
        assert first.exit_code == 0
        assert 'Seeded 4 tier thresholds' in first.output

        second = runner.invoke(args=['affiliates', 'seed-tiers'])
        assert 'already present' in second.output
        assert AffiliateTierThreshold.query.count() == 4

    def test_promote_all_and_distribution(self, app, affiliate):
        Affiliate.query.filter_by(id=affiliate.id).update({
            'total_referrals': 10,
            'total_points_earned': 500,
            'active_referrals': 5,
        }, synchronize_session=False)
        db.session.commit()
        runner = app.test_cli_runner()

        result = runner.invoke(args=['affiliates', 'promote-all'])
        assert result.exit_code == 0
        assert 'Checked: 1 affiliates' in result.output
        assert 'Promoted: 1' in result.output

        result = runner.invoke(args=['affiliates', 'distribution'])
        lines = dict(line.split() for line in result.output.strip().splitlines())
        assert lines == {'BRONZE': '0', 'SILVER': '1', 'GOLD': '0', 'PLATINUM': '0'}


class TestPointsCommands:

    def test_reconcile_reports_drift(self, app, sample_user, other_user):
        points_service.award_points(sample_user.id, 40, 'AFFILIATE_PURCHASE')
        User.query.filter_by(id=sample_user.id).update({'points_balance': 55}, synchronize_session=False)
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['points', 'reconcile'])

        assert result.exit_code == 0
        assert f'[DRIFT] user {sample_user.id}: stored=55 ledger=40 last_after=40' in result.output
        assert 'Checked 2 users, 1 inconsistent' in result.output
        db.session.refresh(sample_user)
        assert sample_user.points_balance == 55

    def test_reconcile_fix_single_user(self, app, sample_user):
        points_service.award_points(sample_user.id, 40, 'AFFILIATE_PURCHASE')
        User.query.filter_by(id=sample_user.id).update({'points_balance': 0}, synchronize_session=False)
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['points', 'reconcile', '--user-id', str(sample_user.id), '--fix'])

        assert '[FIXED]' in result.output
        assert 'Checked 1 users, 1 inconsistent (fixed)' in result.output
        db.session.refresh(sample_user)
        assert sample_user.points_balance == 40
