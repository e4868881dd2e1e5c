"""
Tax rate table versions.
"""

from vestledger import db
from datetime import datetime, date
from typing import Dict, Mapping, Optional

from vestledger.utils.tax_calculator import TaxRates


class TaxRateSet(db.Model):
    """A version of the wage-income / capital-gains rate table."""

    __tablename__ = 'tax_rate_sets'

    id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(100), nullable=False)
    effective_from = db.Column(db.Date, nullable=False, index=True)

    wage_income_rate = db.Column(db.Float, nullable=False)
    long_term_rate = db.Column(db.Float, nullable=False)
    short_term_rate = db.Column(db.Float, nullable=False)
    long_term_threshold_days = db.Column(db.Integer, nullable=False, default=730)

    # Metadata
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f'<TaxRateSet {self.label} from {self.effective_from}>'

    def to_rates(self) -> TaxRates:
        return TaxRates(
            wage_income_rate=self.wage_income_rate,
            long_term_rate=self.long_term_rate,
            short_term_rate=self.short_term_rate,
            long_term_threshold_days=self.long_term_threshold_days,
            label=self.label
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'label': self.label,
            'effective_from': self.effective_from.isoformat(),
            'wage_income_rate': self.wage_income_rate,
            'long_term_rate': self.long_term_rate,
            'short_term_rate': self.short_term_rate,
            'long_term_threshold_days': self.long_term_threshold_days
        }


def get_tax_rates(as_of: Optional[date], config: Mapping) -> TaxRates:
    """
    Rates in force on ``as_of``.

    The latest rate set effective on or before the date wins; without one the
    configured defaults apply.
    """
    as_of = as_of or date.today()
    rate_set = TaxRateSet.query.filter(
        TaxRateSet.effective_from <= as_of
    ).order_by(TaxRateSet.effective_from.desc(), TaxRateSet.id.desc()).first()

    if rate_set:
        return rate_set.to_rates()
    return TaxRates.from_config(config)
