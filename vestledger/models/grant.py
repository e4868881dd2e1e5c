"""
Grant model for RSU awards.
"""

from vestledger import db
from datetime import datetime, date
from enum import Enum
from typing import Dict, List, Optional

from vestledger.utils.share_ledger import SharePosition, calculate_share_position
from vestledger.utils.vest_calculator import DEFAULT_VESTING_PLAN, ScheduleEntry


class GrantStatus(str, Enum):
    """Lifecycle states of a grant."""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Grant(db.Model):
    """Grant model representing one RSU award."""

    __tablename__ = 'grants'

    id = db.Column(db.Integer, primary_key=True)

    # Grant details
    stock_symbol = db.Column(db.String(10), nullable=False, index=True)
    name = db.Column(db.String(150), nullable=True)
    company = db.Column(db.String(100), nullable=True)
    grant_date = db.Column(db.Date, nullable=False, index=True)
    total_shares = db.Column(db.Integer, nullable=False)
    total_value = db.Column(db.Float, nullable=False)

    # Vesting details
    vesting_plan = db.Column(db.String(50), nullable=False, default=DEFAULT_VESTING_PLAN, index=True)
    status = db.Column(db.String(20), nullable=False, default=GrantStatus.ACTIVE.value)

    # Latest known market price, refreshed when prices are recorded
    current_price = db.Column(db.Float, nullable=False, default=0.0)

    # Metadata
    notes = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Bumped on every write; a stale writer fails at flush
    version = db.Column(db.Integer, nullable=False)

    # Relationships
    vest_events = db.relationship('VestEvent', backref='grant', lazy=True,
                                  cascade='all, delete-orphan', order_by='VestEvent.period')
    sales = db.relationship('StockSale', backref='grant', lazy=True,
                            cascade='all, delete-orphan', order_by='StockSale.sale_date')

    __mapper_args__ = {'version_id_col': version}

    def __repr__(self) -> str:
        return f'<Grant {self.stock_symbol} - {self.total_shares} shares>'

    @property
    def price_per_share(self) -> float:
        """Grant value per share (the wage-income cost basis)."""
        if not self.total_shares:
            return 0.0
        return self.total_value / self.total_shares

    @property
    def schedule(self) -> List[ScheduleEntry]:
        return [event.to_entry() for event in self.vest_events]

    def position(self, as_of: Optional[date] = None) -> SharePosition:
        """Share position for this grant as of a date (defaults to today)."""
        return calculate_share_position(
            total_shares=self.total_shares,
            total_value=self.total_value,
            schedule=self.vest_events,
            sales=self.sales,
            as_of=as_of,
            current_price=self.current_price
        )

    @property
    def vested_shares(self) -> int:
        return self.position().vested_shares

    @property
    def unvested_shares(self) -> int:
        return self.position().unvested_shares

    @property
    def available_shares(self) -> int:
        return self.position().available_shares

    def replace_schedule(self, entries: List[ScheduleEntry]) -> None:
        """Swap the vest events for a freshly generated schedule."""
        from vestledger.models.vest_event import VestEvent

        self.vest_events = [VestEvent.from_entry(entry) for entry in entries]

    def to_dict(self, as_of: Optional[date] = None, include_schedule: bool = False,
                include_sales: bool = False) -> Dict:
        as_of = as_of or date.today()
        data = {
            'id': self.id,
            'stock_symbol': self.stock_symbol,
            'name': self.name,
            'company': self.company,
            'grant_date': self.grant_date.isoformat(),
            'total_shares': self.total_shares,
            'total_value': self.total_value,
            'price_per_share': self.price_per_share,
            'vesting_plan': self.vesting_plan,
            'status': self.status,
            'notes': self.notes,
            'position': self.position(as_of).to_dict()
        }
        if include_schedule:
            data['vesting_schedule'] = [event.to_dict(as_of) for event in self.vest_events]
        if include_sales:
            data['sales'] = [sale.to_dict() for sale in self.sales]
        return data
