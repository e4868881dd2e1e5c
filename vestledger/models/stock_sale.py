"""
Stock sale tracking model.
Records sales of vested shares together with the tax computed at sale time.
"""

from vestledger import db
from datetime import datetime
from typing import Dict

from vestledger.utils.tax_calculator import TaxCalculation


class StockSale(db.Model):
    """A sale of vested shares from one grant."""

    __tablename__ = 'stock_sales'

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(db.Integer, db.ForeignKey('grants.id'), nullable=False, index=True)

    # Sale details
    sale_date = db.Column(db.Date, nullable=False, index=True)
    shares_sold = db.Column(db.Integer, nullable=False)
    sale_price = db.Column(db.Float, nullable=False)  # Price per share
    total_proceeds = db.Column(db.Float, nullable=False)  # shares_sold * sale_price

    # Tax figures frozen at the moment the sale is recorded
    original_value = db.Column(db.Float, nullable=False)  # shares_sold * grant price per share
    profit = db.Column(db.Float, nullable=False)
    is_long_term = db.Column(db.Boolean, nullable=False)  # Held >= 2 years from grant
    holding_period_days = db.Column(db.Integer, nullable=False)
    wage_income_tax = db.Column(db.Float, nullable=False)
    capital_gains_tax = db.Column(db.Float, nullable=False)
    total_tax = db.Column(db.Float, nullable=False)
    net_value = db.Column(db.Float, nullable=False)
    effective_tax_rate = db.Column(db.Float, nullable=False)

    # Rates that produced the figures above
    wage_income_rate_applied = db.Column(db.Float, nullable=False)
    capital_gains_rate_applied = db.Column(db.Float, nullable=False)
    tax_rate_label = db.Column(db.String(100), nullable=True)

    # Notes
    notes = db.Column(db.String(500), nullable=True)

    # Metadata
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f'<StockSale {self.sale_date} - {self.shares_sold} shares @ ${self.sale_price}>'

    def apply_tax_calculation(self, calculation: TaxCalculation) -> None:
        """Copy a tax calculation onto the row. Only done once, at record time."""
        self.original_value = calculation.original_value
        self.profit = calculation.profit
        self.is_long_term = calculation.is_long_term
        self.holding_period_days = calculation.holding_period_days
        self.wage_income_tax = calculation.wage_income_tax
        self.capital_gains_tax = calculation.capital_gains_tax
        self.total_tax = calculation.total_tax
        self.net_value = calculation.net_value
        self.effective_tax_rate = calculation.effective_tax_rate
        self.wage_income_rate_applied = calculation.wage_income_rate
        self.capital_gains_rate_applied = calculation.capital_gains_rate
        self.tax_rate_label = calculation.rate_label

    @property
    def tax_calculation(self) -> TaxCalculation:
        """The stored tax figures, never recomputed."""
        return TaxCalculation(
            original_value=self.original_value,
            sale_value=self.total_proceeds,
            profit=self.profit,
            is_long_term=self.is_long_term,
            holding_period_days=self.holding_period_days,
            wage_income_tax=self.wage_income_tax,
            capital_gains_tax=self.capital_gains_tax,
            total_tax=self.total_tax,
            net_value=self.net_value,
            effective_tax_rate=self.effective_tax_rate,
            wage_income_rate=self.wage_income_rate_applied,
            capital_gains_rate=self.capital_gains_rate_applied,
            rate_label=self.tax_rate_label or 'default'
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'grant_id': self.grant_id,
            'sale_date': self.sale_date.isoformat(),
            'shares_sold': self.shares_sold,
            'sale_price': self.sale_price,
            'total_proceeds': self.total_proceeds,
            'notes': self.notes,
            'tax_calculation': self.tax_calculation.to_dict()
        }
