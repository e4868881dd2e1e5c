"""
Vest event model for tracking individual vesting tranches.
"""

from vestledger import db
from datetime import datetime, date
from typing import Dict, Optional

from vestledger.utils.vest_calculator import ScheduleEntry


class VestEvent(db.Model):
    """Individual vesting event for a grant."""

    __tablename__ = 'vest_events'

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(db.Integer, db.ForeignKey('grants.id'), nullable=False, index=True)

    # Vest details
    period = db.Column(db.Integer, nullable=False)
    vest_date = db.Column(db.Date, nullable=False, index=True)
    shares = db.Column(db.Integer, nullable=False)
    is_cliff = db.Column(db.Boolean, default=False, nullable=False)
    # Note: vested status is derived from vest_date, see has_vested()

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f'<VestEvent {self.vest_date} - {self.shares} shares>'

    @classmethod
    def from_entry(cls, entry: ScheduleEntry) -> 'VestEvent':
        return cls(
            period=entry.period,
            vest_date=entry.vest_date,
            shares=entry.shares,
            is_cliff=entry.is_cliff
        )

    def to_entry(self) -> ScheduleEntry:
        return ScheduleEntry(
            period=self.period,
            vest_date=self.vest_date,
            shares=self.shares,
            is_cliff=bool(self.is_cliff)
        )

    def has_vested(self, as_of: Optional[date] = None) -> bool:
        """Check if vest date has passed (based on today's date by default)."""
        return self.vest_date <= (as_of or date.today())

    def estimated_value(self, price: Optional[float] = None) -> float:
        """Value of this tranche at the grant's current price (or grant price)."""
        if price is None:
            price = self.grant.current_price or self.grant.price_per_share
        return self.shares * price

    def to_dict(self, as_of: Optional[date] = None) -> Dict:
        return {
            'id': self.id,
            'grant_id': self.grant_id,
            'period': self.period,
            'vest_date': self.vest_date.isoformat(),
            'shares': self.shares,
            'is_cliff': bool(self.is_cliff),
            'vested': self.has_vested(as_of)
        }
