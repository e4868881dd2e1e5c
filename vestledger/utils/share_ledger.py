"""
Share accounting for a single grant: vested, sold and available shares,
plus current valuation.

Schedule entries need ``vest_date`` and ``shares``; sales need
``shares_sold``. Both ORM rows and plain dataclasses work.
"""

from dataclasses import dataclass, asdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from vestledger.errors import InsufficientAvailableShares, InvalidSaleInput


@dataclass(frozen=True)
class SharePosition:
    """Point-in-time view of a grant's shares."""

    as_of: date
    total_shares: int
    vested_shares: int
    unvested_shares: int
    sold_shares: int
    available_shares: int
    vesting_progress: float
    current_price: float
    current_value: float
    vested_value: float
    gain_loss: float
    gain_loss_percentage: float
    next_vest_date: Optional[date] = None
    next_vest_shares: int = 0

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['as_of'] = self.as_of.isoformat()
        data['next_vest_date'] = self.next_vest_date.isoformat() if self.next_vest_date else None
        return data


def calculate_share_position(total_shares: int, total_value: float, schedule: Iterable,
                             sales: Iterable, as_of: Optional[date] = None,
                             current_price: float = 0.0) -> SharePosition:
    """
    Compute a grant's share position.

    Args:
        total_shares: Shares granted
        total_value: Value of the grant at grant date
        schedule: Vesting entries for the grant
        sales: Sales recorded against the grant
        as_of: Date the position is evaluated at (defaults to today)
        current_price: Latest market price per share

    Returns:
        SharePosition
    """
    as_of = as_of or date.today()
    entries = sorted(schedule, key=lambda e: e.vest_date)

    vested_shares = sum(int(e.shares) for e in entries if e.vest_date <= as_of)
    upcoming = [e for e in entries if e.vest_date > as_of]
    sold_shares = sum(int(s.shares_sold) for s in sales)
    available_shares = max(0, vested_shares - sold_shares)

    current_price = current_price or 0.0
    current_value = total_shares * current_price
    gain_loss = current_value - total_value

    return SharePosition(
        as_of=as_of,
        total_shares=total_shares,
        vested_shares=vested_shares,
        unvested_shares=total_shares - vested_shares,
        sold_shares=sold_shares,
        available_shares=available_shares,
        vesting_progress=(vested_shares / total_shares) * 100 if total_shares else 0.0,
        current_price=current_price,
        current_value=current_value,
        vested_value=vested_shares * current_price,
        gain_loss=gain_loss,
        gain_loss_percentage=(gain_loss / total_value) * 100 if total_value else 0.0,
        next_vest_date=upcoming[0].vest_date if upcoming else None,
        next_vest_shares=int(upcoming[0].shares) if upcoming else 0
    )


def validate_sale_request(position: SharePosition, requested_shares: int) -> None:
    """
    Reject a sale that would sell more than vested minus already sold.

    Raises:
        InvalidSaleInput: requested shares is not a positive whole number
        InsufficientAvailableShares: requested shares exceed availability
    """
    if isinstance(requested_shares, bool) or not isinstance(requested_shares, int) or requested_shares <= 0:
        raise InvalidSaleInput('Shares to sell must be a positive whole number')

    if requested_shares > position.available_shares:
        raise InsufficientAvailableShares(
            requested=requested_shares,
            vested=position.vested_shares,
            sold=position.sold_shares,
            available=position.available_shares
        )


def upcoming_vest_events(schedule: Iterable, as_of: Optional[date] = None, days: int = 30) -> List:
    """Entries vesting after ``as_of`` and within the next ``days`` days."""
    as_of = as_of or date.today()
    horizon = as_of + timedelta(days=days)
    return sorted(
        (e for e in schedule if as_of < e.vest_date <= horizon),
        key=lambda e: e.vest_date
    )


def group_events_by_month(events: Iterable[Dict]) -> List[Dict]:
    """
    Group upcoming event dicts (with vest_date, shares, estimated_value) by
    calendar month, oldest first.
    """
    calendar: Dict = {}
    for event in events:
        vest_date = event['vest_date']
        key = (vest_date.year, vest_date.month)
        bucket = calendar.setdefault(key, {
            'year': vest_date.year,
            'month': vest_date.month,
            'events': [],
            'total_shares': 0,
            'total_estimated_value': 0.0
        })
        bucket['events'].append(event)
        bucket['total_shares'] += event['shares']
        bucket['total_estimated_value'] += event.get('estimated_value') or 0.0

    return [calendar[key] for key in sorted(calendar)]
