"""
Persistence-layer tests: concurrency guard, update rules and the
verify-vesting command.
"""

import pytest
from datetime import date
from sqlalchemy import text

from vestledger import db
from vestledger.errors import (
    ConcurrentModification, GrantHasSales, InsufficientAvailableShares, InvalidSaleInput, RecordNotFound
)
from vestledger.models import Grant, StockSale, VestEvent
from vestledger.utils import grant_manager
from vestledger.utils.verify_vesting import verify_all_vesting_schedules, verify_vesting_command


SALE = {'shares_amount': 100, 'price_per_share': 25.0, 'sale_date': '2024-06-01'}


@pytest.fixture
def grant(app, grant_payload):
    return grant_manager.create_grant(grant_payload)


class TestRecordSale:

    def test_sale_bumps_grant_version(self, grant):
        version = grant.version
        grant_manager.record_sale(grant.id, SALE)
        assert db.session.get(Grant, grant.id).version == version + 1

    def test_stale_grant_is_rejected(self, grant):
        # Another writer commits between our read and our write
        stale = grant_manager.get_grant(grant.id)
        assert stale.version == 1
        db.session.execute(text('UPDATE grants SET version = version + 1 WHERE id = :id'), {'id': grant.id})

        with pytest.raises(ConcurrentModification):
            grant_manager.record_sale(grant.id, SALE)

        assert StockSale.query.count() == 0

    def test_back_dated_sale_uses_sale_date_availability(self, grant):
        # Only 50 shares had vested by 2022-05-01
        with pytest.raises(InsufficientAvailableShares):
            grant_manager.record_sale(grant.id, {**SALE, 'sale_date': '2022-05-01', 'shares_amount': 51})

        sale = grant_manager.record_sale(grant.id, {**SALE, 'sale_date': '2022-05-01', 'shares_amount': 50})
        assert not sale.is_long_term
        assert sale.holding_period_days == 120

    def test_recent_sale_records_price(self, grant):
        today = date(2024, 6, 2)
        grant_manager.record_sale(grant.id, SALE, today=today)
        assert db.session.get(Grant, grant.id).current_price == 25.0


class TestUpdateGrant:

    def test_grant_date_after_sale_rejected(self, grant):
        grant_manager.record_sale(grant.id, SALE)
        with pytest.raises(GrantHasSales):
            grant_manager.update_grant(grant.id, {'grant_date': '2024-07-01'})

    def test_regeneration_must_still_cover_sold_shares(self, grant):
        grant_manager.record_sale(grant.id, SALE)
        # Moving to a two-year cliff leaves only the cliff tranche vested by 2024-06-01
        with pytest.raises(GrantHasSales):
            grant_manager.update_grant(grant.id, {'vesting_plan': 'quarterly-5yr-2yr-cliff',
                                                  'grant_date': '2022-06-01'},
                                       as_of=date(2024, 5, 31))

    def test_update_missing_grant(self, app):
        with pytest.raises(RecordNotFound):
            grant_manager.update_grant(12345, {'notes': 'x'})


class TestChangeVestingPlan:

    def test_plan_change_must_still_cover_sold_shares(self, grant):
        grant_manager.record_sale(grant.id, {**SALE, 'shares_amount': 300})
        # Nothing had vested by 2022-02-01, so every tranche would be redistributed
        with pytest.raises(GrantHasSales):
            grant_manager.change_vesting_plan(grant.id, 'semi-annual-4yr', today=date(2022, 2, 1))

        db.session.rollback()
        reloaded = db.session.get(Grant, grant.id)
        assert reloaded.vesting_plan == 'quarterly-5yr'
        assert len(reloaded.vest_events) == 20

    def test_plan_only_update_must_still_cover_sold_shares(self, grant):
        grant_manager.record_sale(grant.id, {**SALE, 'shares_amount': 300})
        with pytest.raises(GrantHasSales):
            grant_manager.update_grant(grant.id, {'vesting_plan': 'semi-annual-4yr'}, as_of=date(2022, 2, 1))

    def test_vested_tranches_kept(self, grant):
        grant_manager.record_sale(grant.id, {**SALE, 'shares_amount': 300})
        result = grant_manager.change_vesting_plan(grant.id, 'semi-annual-4yr', today=date(2024, 6, 1))

        position = result['grant']['position']
        assert position['vested_shares'] == 450
        assert position['sold_shares'] == 300
        assert result['summary']['new_plan'] == 'semi-annual-4yr'


class TestSaleTaxPreview:

    def test_future_sale_date_allowed(self, grant):
        preview = grant_manager.preview_sale_tax(grant.id, 100, 25.0, '2024-06-01', today=date(2023, 1, 1))
        assert preview['is_long_term']
        assert preview['grant_info']['available_shares'] == 450

    def test_future_preview_checks_availability_on_sale_date(self, grant):
        with pytest.raises(InsufficientAvailableShares):
            grant_manager.preview_sale_tax(grant.id, 451, 25.0, '2024-06-01', today=date(2023, 1, 1))

    def test_future_sale_still_cannot_be_recorded(self, grant):
        with pytest.raises(InvalidSaleInput):
            grant_manager.record_sale(grant.id, SALE, today=date(2023, 1, 1))


class TestTaxReports:

    def test_optimal_timing(self, grant):
        timing = grant_manager.get_optimal_sale_timing(grant.id, 100, 25.0, today=date(2023, 6, 1))
        assert timing['grant_id'] == grant.id
        assert timing['days_until_long_term'] == 214
        assert timing['tax_savings'] == 600.0

    def test_optimal_timing_checks_availability_on_long_term_date(self, grant):
        # 400 shares have vested by 2024-01-01
        grant_manager.get_optimal_sale_timing(grant.id, 400, 25.0, today=date(2023, 6, 1))
        with pytest.raises(InsufficientAvailableShares):
            grant_manager.get_optimal_sale_timing(grant.id, 401, 25.0, today=date(2023, 6, 1))

    def test_liability_by_grant(self, grant):
        grant_manager.record_sale(grant.id, SALE)
        liability = grant_manager.get_tax_liability_by_grant(grant.id, today=date(2024, 6, 2))

        assert liability['is_long_term']
        assert liability['realized']['total_tax'] == 1025.0
        unrealized = liability['unrealized']
        assert unrealized['remaining_shares'] == 900
        assert unrealized['current_price'] == 10.0
        assert unrealized['estimated_capital_gains_tax'] == 0.0
        assert unrealized['estimated_total_tax'] == 5850.0

    def test_projections(self, grant):
        grant_manager.record_sale(grant.id, {**SALE, 'sale_date': '2023-06-01'})
        grant_manager.record_sale(grant.id, {**SALE, 'sale_date': '2024-03-01'})
        grant_manager.record_sale(grant.id, SALE)

        projections = grant_manager.get_tax_projections(2024)
        assert projections['summary']['total_sales'] == 2
        assert projections['summary']['total_tax'] == 2050.0
        assert [(m['month'], m['monthly_tax']) for m in projections['monthly_breakdown']] == [
            (3, 1025.0), (6, 1025.0)
        ]
        assert [p['amount'] for p in projections['quarterly_payments']] == [512.5] * 4

    def test_projections_without_sales(self, app):
        projections = grant_manager.get_tax_projections(2019)
        assert projections['monthly_breakdown'] == []
        assert projections['quarterly_payments'] == []


class TestVerifyVesting:

    def test_clean_database(self, grant):
        assert verify_all_vesting_schedules() == []

    def test_reports_and_repairs_mismatch(self, grant):
        VestEvent.query.filter_by(grant_id=grant.id, period=20).delete()
        db.session.commit()

        problems = verify_all_vesting_schedules()
        assert len(problems) == 1
        assert not problems[0]['is_valid']
        assert not problems[0]['repaired']

        problems = verify_all_vesting_schedules(repair=True)
        assert problems[0]['repaired']
        assert verify_all_vesting_schedules() == []

    def test_cli_command(self, app, grant):
        runner = app.test_cli_runner()
        result = runner.invoke(verify_vesting_command)
        assert result.exit_code == 0
        assert 'Checked 1 grants: 0 invalid' in result.output
