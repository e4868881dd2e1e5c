"""
Tests for sale tax calculation.
"""

import pytest
from datetime import date
from types import SimpleNamespace

from vestledger.errors import InvalidSaleInput
from vestledger.utils.tax_calculator import (
    TaxCalculator, TaxRates, calculate_quarterly_payments, monthly_tax_breakdown, summarize_sales
)


GRANT_DATE = date(2022, 1, 1)


@pytest.fixture
def calculator():
    return TaxCalculator()


def sell(calculator, sale_date, shares=100, sale_price=25.0, grant_price=10.0):
    return calculator.calculate_sale_tax(
        grant_date=GRANT_DATE,
        sale_date=sale_date,
        shares_amount=shares,
        sale_price=sale_price,
        grant_price_per_share=grant_price
    )


class TestSaleTax:

    def test_long_term_sale(self, calculator):
        calc = sell(calculator, date(2024, 6, 1))
        assert calc.is_long_term
        assert calc.original_value == 1000.0
        assert calc.sale_value == 2500.0
        assert calc.profit == 1500.0
        assert calc.wage_income_tax == 650.0
        assert calc.capital_gains_tax == 375.0
        assert calc.total_tax == 1025.0
        assert calc.net_value == 1475.0
        assert calc.effective_tax_rate == 0.41
        assert calc.capital_gains_rate == 0.25

    def test_short_term_sale(self, calculator):
        calc = sell(calculator, date(2023, 6, 1))
        assert not calc.is_long_term
        assert calc.capital_gains_tax == 975.0
        assert calc.total_tax == 1625.0
        assert calc.net_value == 875.0
        assert calc.effective_tax_rate == 0.65

    @pytest.mark.parametrize("sale_date, expected", [
        (date(2023, 12, 31), False),  # 729 days
        (date(2024, 1, 1), True),     # 730 days
    ])
    def test_long_term_boundary(self, calculator, sale_date, expected):
        calc = sell(calculator, sale_date)
        assert calc.is_long_term is expected
        assert calculator.is_long_term(GRANT_DATE, sale_date) is expected

    def test_qualification_date(self, calculator):
        assert calculator.long_term_qualification_date(GRANT_DATE) == date(2024, 1, 1)

    def test_loss_is_not_taxed(self, calculator):
        calc = sell(calculator, date(2024, 6, 1), sale_price=6.0)
        assert calc.profit == -400.0
        assert calc.capital_gains_tax == 0.0
        assert calc.total_tax == 650.0
        assert calc.net_value == -50.0

    def test_amounts_rounded_to_cents(self, calculator):
        calc = sell(calculator, date(2024, 6, 1), shares=3, sale_price=10.005, grant_price=3.333)
        assert calc.original_value == 10.0
        assert calc.wage_income_tax == round(calc.original_value * 0.65, 2)
        assert calc.effective_tax_rate == round(calc.effective_tax_rate, 4)

    def test_components_add_up_to_the_cent(self, calculator):
        # Short-term so both buckets carry odd cents
        for shares in range(1, 60):
            for cents in range(1, 200):
                grant_price = cents / 100
                calc = sell(calculator, date(2023, 6, 1), shares=shares,
                            sale_price=grant_price * 2, grant_price=grant_price)
                total = calc.wage_income_tax + calc.capital_gains_tax
                assert calc.total_tax == pytest.approx(total, abs=1e-9), (shares, grant_price)
                assert calc.net_value == pytest.approx(calc.sale_value - calc.total_tax, abs=1e-9), \
                    (shares, grant_price)

    @pytest.mark.parametrize("shares, price", [(0, 25.0), (-1, 25.0), (100, 0.0), (100, -2.0)])
    def test_rejects_non_positive_inputs(self, calculator, shares, price):
        with pytest.raises(InvalidSaleInput):
            sell(calculator, date(2024, 6, 1), shares=shares, sale_price=price)

    def test_injected_rates(self):
        rates = TaxRates(wage_income_rate=0.5, long_term_rate=0.1, short_term_rate=0.3,
                         long_term_threshold_days=365, label='2025 table')
        calc = sell(TaxCalculator(rates), date(2023, 6, 1))
        assert calc.is_long_term
        assert calc.wage_income_tax == 500.0
        assert calc.capital_gains_tax == 150.0
        assert calc.rate_label == '2025 table'

    def test_rates_from_config(self):
        rates = TaxRates.from_config({'WAGE_INCOME_TAX_RATE': '0.6', 'LONG_TERM_THRESHOLD_DAYS': '365'})
        assert rates.wage_income_rate == 0.6
        assert rates.long_term_threshold_days == 365
        assert rates.long_term_rate == 0.25


class TestUnrealizedEstimate:

    def test_estimate(self, calculator):
        estimate = calculator.estimate_unrealized_tax(100, 10.0, 25.0)
        assert estimate['estimated_wage_income_tax'] == 650.0
        assert estimate['estimated_capital_gains_tax'] == 375.0
        assert estimate['estimated_total_tax'] == 1025.0
        assert estimate['assumes_long_term']

    def test_short_term_estimate(self, calculator):
        estimate = calculator.estimate_unrealized_tax(100, 10.0, 25.0, is_long_term=False)
        assert estimate['estimated_capital_gains_tax'] == 975.0


class TestSalesSummary:

    def test_summarize_frozen_figures(self, calculator):
        sales = []
        for sale_date in (date(2024, 6, 1), date(2023, 6, 1)):
            calc = sell(calculator, sale_date)
            sales.append(SimpleNamespace(
                shares_sold=100,
                total_proceeds=calc.sale_value,
                original_value=calc.original_value,
                profit=calc.profit,
                wage_income_tax=calc.wage_income_tax,
                capital_gains_tax=calc.capital_gains_tax,
                total_tax=calc.total_tax,
                net_value=calc.net_value,
                is_long_term=calc.is_long_term
            ))

        summary = summarize_sales(sales)
        assert summary['total_sales'] == 2
        assert summary['total_shares_sold'] == 200
        assert summary['total_tax'] == 2650.0
        assert summary['long_term_sales'] == 1
        assert summary['short_term_sales'] == 1
        assert summary['effective_tax_rate'] == 0.53

    def test_empty_summary(self):
        summary = summarize_sales([])
        assert summary['total_sales'] == 0
        assert summary['effective_tax_rate'] == 0.0


class TestSaleTiming:

    def test_waiting_for_long_term(self, calculator):
        timing = calculator.compare_sale_timing(GRANT_DATE, 100, 25.0, 10.0, today=date(2023, 6, 1))
        assert timing['long_term_qualification_date'] == '2024-01-01'
        assert timing['days_until_long_term'] == 214
        assert timing['short_term_scenario']['total_tax'] == 1625.0
        assert not timing['short_term_scenario']['is_long_term']
        assert timing['long_term_scenario']['sale_date'] == '2024-01-01'
        assert timing['long_term_scenario']['total_tax'] == 1025.0
        assert timing['tax_savings'] == 600.0
        assert timing['net_savings'] == 600.0
        assert 'Consider waiting 214 days' in timing['recommendation']

    def test_already_long_term(self, calculator):
        timing = calculator.compare_sale_timing(GRANT_DATE, 100, 25.0, 10.0, today=date(2024, 6, 1))
        assert timing['days_until_long_term'] == 0
        assert timing['tax_savings'] == 0.0
        assert timing['short_term_scenario'] == timing['long_term_scenario']
        assert 'already qualifies' in timing['recommendation']


class TestProjections:

    def test_monthly_breakdown(self):
        sales = [
            SimpleNamespace(sale_date=date(2024, 6, 20), total_tax=100.1, profit=50.0, total_proceeds=400.0),
            SimpleNamespace(sale_date=date(2024, 3, 1), total_tax=10.0, profit=-5.0, total_proceeds=20.0),
            SimpleNamespace(sale_date=date(2024, 6, 2), total_tax=0.2, profit=0.1, total_proceeds=1.0),
        ]
        breakdown = monthly_tax_breakdown(sales)
        assert [m['month'] for m in breakdown] == [3, 6]
        assert breakdown[0] == {'month': 3, 'monthly_tax': 10.0, 'monthly_profit': -5.0, 'monthly_sales': 20.0}
        assert breakdown[1]['monthly_tax'] == pytest.approx(100.3)
        assert breakdown[1]['monthly_sales'] == 401.0

    def test_quarterly_payments(self):
        payments = calculate_quarterly_payments(2024, 1025.01)
        assert [p['quarter'] for p in payments] == ['Q1', 'Q2', 'Q3', 'Q4']
        assert [p['due_date'] for p in payments] == ['2025-04-30', '2025-07-31', '2025-10-31', '2025-01-31']
        assert [p['amount'] for p in payments[:3]] == [256.25, 256.25, 256.25]
        assert payments[3]['amount'] == 256.26
        assert sum(p['amount'] for p in payments) == pytest.approx(1025.01)

    @pytest.mark.parametrize("total_tax", [0, 0.0, -10.0])
    def test_no_payments_without_tax(self, total_tax):
        assert calculate_quarterly_payments(2024, total_tax) == []
