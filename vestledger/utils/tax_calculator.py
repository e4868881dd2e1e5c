"""
RSU sale tax calculator (Israeli-style dual bucket).

- Wage income tax on the grant-value portion of the shares sold
- Capital gains tax on the profit above grant value, at the long-term rate
  once the shares have been held for two years from the grant date
"""

from dataclasses import dataclass, asdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from vestledger.errors import InvalidSaleInput


# Default rates (overridable through app config or a TaxRateSet row)
WAGE_INCOME_TAX_RATE = 0.65  # 65% on original grant value
LONG_TERM_CAPITAL_GAINS_RATE = 0.25  # 25% on profit after 2 years
SHORT_TERM_CAPITAL_GAINS_RATE = 0.65  # 65% on profit before 2 years
LONG_TERM_THRESHOLD_DAYS = 365 * 2


@dataclass(frozen=True)
class TaxRates:
    """Rate table injected into the calculator."""

    wage_income_rate: float = WAGE_INCOME_TAX_RATE
    long_term_rate: float = LONG_TERM_CAPITAL_GAINS_RATE
    short_term_rate: float = SHORT_TERM_CAPITAL_GAINS_RATE
    long_term_threshold_days: int = LONG_TERM_THRESHOLD_DAYS
    label: str = 'default'

    @classmethod
    def from_config(cls, config: Mapping) -> 'TaxRates':
        """Build rates from a Flask config (or any mapping)."""
        return cls(
            wage_income_rate=float(config.get('WAGE_INCOME_TAX_RATE', WAGE_INCOME_TAX_RATE)),
            long_term_rate=float(config.get('LONG_TERM_CAPITAL_GAINS_RATE', LONG_TERM_CAPITAL_GAINS_RATE)),
            short_term_rate=float(config.get('SHORT_TERM_CAPITAL_GAINS_RATE', SHORT_TERM_CAPITAL_GAINS_RATE)),
            long_term_threshold_days=int(config.get('LONG_TERM_THRESHOLD_DAYS', LONG_TERM_THRESHOLD_DAYS)),
            label=config.get('TAX_RATE_LABEL', 'default')
        )

    def capital_gains_rate(self, is_long_term: bool) -> float:
        return self.long_term_rate if is_long_term else self.short_term_rate


@dataclass(frozen=True)
class TaxCalculation:
    """Tax breakdown for one sale. Frozen into the sale row when recorded."""

    original_value: float
    sale_value: float
    profit: float
    is_long_term: bool
    holding_period_days: int
    wage_income_tax: float
    capital_gains_tax: float
    total_tax: float
    net_value: float
    effective_tax_rate: float
    wage_income_rate: float
    capital_gains_rate: float
    rate_label: str = 'default'

    def to_dict(self) -> Dict:
        return asdict(self)


def _money(value: float) -> float:
    return round(value, 2)


class TaxCalculator:
    """Calculate taxes on RSU sales with an injected rate table."""

    def __init__(self, rates: Optional[TaxRates] = None):
        self.rates = rates or TaxRates()

    def is_long_term(self, grant_date: date, sale_date: date) -> bool:
        """Holding period of at least two years (730 days) from the grant date."""
        return (sale_date - grant_date).days >= self.rates.long_term_threshold_days

    def long_term_qualification_date(self, grant_date: date) -> date:
        """First sale date that gets long-term treatment."""
        return grant_date + timedelta(days=self.rates.long_term_threshold_days)

    def calculate_sale_tax(self, grant_date: date, sale_date: date, shares_amount: int,
                           sale_price: float, grant_price_per_share: float) -> TaxCalculation:
        """
        Calculate all taxes on a sale.

        Args:
            grant_date: Date the shares were granted
            sale_date: Date of the sale
            shares_amount: Shares sold
            sale_price: Price per share at sale
            grant_price_per_share: Grant value per share (cost basis)

        Returns:
            TaxCalculation with amounts rounded to cents
        """
        if shares_amount is None or shares_amount <= 0:
            raise InvalidSaleInput('Shares amount must be greater than 0')
        if sale_price is None or sale_price <= 0:
            raise InvalidSaleInput('Sale price must be greater than 0')

        rates = self.rates
        holding_period_days = (sale_date - grant_date).days
        is_long_term = holding_period_days >= rates.long_term_threshold_days

        # Each figure is rounded before it feeds the next, so totals add up to the cent
        original_value = _money(shares_amount * grant_price_per_share)
        sale_value = _money(shares_amount * sale_price)
        profit = _money(sale_value - original_value)

        wage_income_tax = _money(original_value * rates.wage_income_rate)

        # Losses are not taxed and do not produce a credit
        capital_gains_rate = rates.capital_gains_rate(is_long_term)
        capital_gains_tax = _money(max(profit, 0.0) * capital_gains_rate)

        total_tax = _money(wage_income_tax + capital_gains_tax)
        net_value = _money(sale_value - total_tax)
        effective_tax_rate = total_tax / sale_value if sale_value > 0 else 0.0

        return TaxCalculation(
            original_value=original_value,
            sale_value=sale_value,
            profit=profit,
            is_long_term=is_long_term,
            holding_period_days=holding_period_days,
            wage_income_tax=wage_income_tax,
            capital_gains_tax=capital_gains_tax,
            total_tax=total_tax,
            net_value=net_value,
            effective_tax_rate=round(effective_tax_rate, 4),
            wage_income_rate=rates.wage_income_rate,
            capital_gains_rate=capital_gains_rate,
            rate_label=rates.label
        )

    def estimate_unrealized_tax(self, shares: int, grant_price_per_share: float,
                                current_price: float, is_long_term: bool = True) -> Dict:
        """
        Estimate tax due if ``shares`` were sold today at ``current_price``.

        Assumes long-term treatment unless told otherwise.
        """
        original_value = _money(shares * grant_price_per_share)
        current_value = _money(shares * current_price)
        profit = _money(current_value - original_value)

        wage_income_tax = _money(original_value * self.rates.wage_income_rate)
        capital_gains_tax = _money(max(profit, 0.0) * self.rates.capital_gains_rate(is_long_term))
        total_tax = _money(wage_income_tax + capital_gains_tax)

        return {
            'shares': shares,
            'original_value': original_value,
            'current_value': current_value,
            'profit': profit,
            'estimated_wage_income_tax': wage_income_tax,
            'estimated_capital_gains_tax': capital_gains_tax,
            'estimated_total_tax': total_tax,
            'estimated_net_value': _money(current_value - total_tax),
            'assumes_long_term': is_long_term
        }

    def compare_sale_timing(self, grant_date: date, shares_amount: int, sale_price: float,
                            grant_price_per_share: float, today: Optional[date] = None) -> Dict:
        """
        Compare selling today against waiting for long-term treatment.

        Both scenarios use the same price, so the difference is purely the
        capital-gains rate.

        Returns:
            dict with both scenarios, days until long-term and the savings
        """
        today = today or date.today()
        qualification_date = self.long_term_qualification_date(grant_date)
        long_term_date = max(today, qualification_date)
        days_until_long_term = (long_term_date - today).days

        now = self.calculate_sale_tax(grant_date, today, shares_amount, sale_price, grant_price_per_share)
        later = self.calculate_sale_tax(grant_date, long_term_date, shares_amount, sale_price,
                                        grant_price_per_share)

        tax_savings = _money(now.total_tax - later.total_tax)
        if days_until_long_term > 0:
            recommendation = (f'Consider waiting {days_until_long_term} days to qualify for long-term '
                              f'capital gains and save ${tax_savings:,.2f} in taxes.')
        else:
            recommendation = 'This sale already qualifies for long-term capital gains treatment.'

        return {
            'current_date': today.isoformat(),
            'long_term_qualification_date': qualification_date.isoformat(),
            'days_until_long_term': days_until_long_term,
            'short_term_scenario': _scenario(today, now),
            'long_term_scenario': _scenario(long_term_date, later),
            'tax_savings': tax_savings,
            'net_savings': _money(later.net_value - now.net_value),
            'recommendation': recommendation
        }


def _scenario(sale_date: date, calculation: TaxCalculation) -> Dict:
    return {
        'sale_date': sale_date.isoformat(),
        'is_long_term': calculation.is_long_term,
        'total_tax': calculation.total_tax,
        'net_value': calculation.net_value,
        'effective_tax_rate': calculation.effective_tax_rate
    }


def summarize_sales(sales: Iterable) -> Dict:
    """
    Aggregate the frozen tax figures of recorded sales.

    Sales need total_proceeds, shares_sold and the frozen tax columns.
    """
    summary = {
        'total_sales': 0,
        'total_shares_sold': 0,
        'total_sale_value': 0.0,
        'total_original_value': 0.0,
        'total_profit': 0.0,
        'total_wage_income_tax': 0.0,
        'total_capital_gains_tax': 0.0,
        'total_tax': 0.0,
        'total_net_value': 0.0,
        'long_term_sales': 0,
        'short_term_sales': 0
    }

    for sale in sales:
        summary['total_sales'] += 1
        summary['total_shares_sold'] += sale.shares_sold
        summary['total_sale_value'] += sale.total_proceeds
        summary['total_original_value'] += sale.original_value
        summary['total_profit'] += sale.profit
        summary['total_wage_income_tax'] += sale.wage_income_tax
        summary['total_capital_gains_tax'] += sale.capital_gains_tax
        summary['total_tax'] += sale.total_tax
        summary['total_net_value'] += sale.net_value
        if sale.is_long_term:
            summary['long_term_sales'] += 1
        else:
            summary['short_term_sales'] += 1

    for key, value in summary.items():
        if isinstance(value, float):
            summary[key] = _money(value)

    total_sale_value = summary['total_sale_value']
    summary['effective_tax_rate'] = (
        round(summary['total_tax'] / total_sale_value, 4) if total_sale_value > 0 else 0.0
    )
    return summary


def monthly_tax_breakdown(sales: Iterable) -> List[Dict]:
    """Frozen tax, profit and sale value of recorded sales per calendar month."""
    months: Dict[int, Dict] = {}
    for sale in sales:
        bucket = months.setdefault(sale.sale_date.month, {
            'month': sale.sale_date.month,
            'monthly_tax': 0.0,
            'monthly_profit': 0.0,
            'monthly_sales': 0.0
        })
        bucket['monthly_tax'] += sale.total_tax
        bucket['monthly_profit'] += sale.profit
        bucket['monthly_sales'] += sale.total_proceeds

    breakdown = []
    for month in sorted(months):
        bucket = months[month]
        for key in ('monthly_tax', 'monthly_profit', 'monthly_sales'):
            bucket[key] = _money(bucket[key])
        breakdown.append(bucket)
    return breakdown


# Installments on a year's sale tax fall due in the following year
QUARTERLY_DUE_DATES = (('Q1', 4, 30), ('Q2', 7, 31), ('Q3', 10, 31), ('Q4', 1, 31))


def calculate_quarterly_payments(year: int, total_tax: float) -> List[Dict]:
    """
    Split a year's total tax into four installments.

    The last installment absorbs the rounding remainder so the four add up to
    ``total_tax``.
    """
    if not total_tax or total_tax <= 0:
        return []

    installment = _money(total_tax / 4)
    last = _money(total_tax - 3 * installment)
    return [
        {
            'quarter': quarter,
            'due_date': date(year + 1, month, day).isoformat(),
            'amount': last if quarter == 'Q4' else installment
        }
        for quarter, month, day in QUARTERLY_DUE_DATES
    ]
