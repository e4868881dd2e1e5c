"""
Vesting schedule calculator for RSU grants.

Plans are strategy objects kept in ``VESTING_PLANS``. Each plan turns a
grant date and a share count into an ordered list of ``ScheduleEntry``
tranches whose shares always sum to the grant's total.
"""

from dataclasses import dataclass
from datetime import date, datetime
from dateutil.relativedelta import relativedelta
from typing import Dict, Iterable, List, Optional, Tuple

from vestledger.errors import InvalidGrantInput, PlanChangeRejected, UnknownVestingPlan


DEFAULT_VESTING_PLAN = 'quarterly-5yr'
CLIFF_ANNIVERSARY_YEARS = 2


@dataclass(frozen=True)
class ScheduleEntry:
    """One vesting tranche of a grant."""

    period: int
    vest_date: date
    shares: int
    is_cliff: bool = False

    def has_vested(self, as_of: date) -> bool:
        return self.vest_date <= as_of

    def to_dict(self, as_of: Optional[date] = None) -> Dict:
        as_of = as_of or date.today()
        return {
            'period': self.period,
            'vest_date': self.vest_date.isoformat(),
            'shares': self.shares,
            'is_cliff': self.is_cliff,
            'vested': self.has_vested(as_of)
        }


def as_schedule_entry(entry) -> ScheduleEntry:
    """Coerce anything with period/vest_date/shares/is_cliff into a ScheduleEntry."""
    if isinstance(entry, ScheduleEntry):
        return entry
    return ScheduleEntry(
        period=entry.period,
        vest_date=entry.vest_date,
        shares=int(entry.shares),
        is_cliff=bool(getattr(entry, 'is_cliff', False))
    )


def validate_grant_input(grant_date, total_shares) -> date:
    """
    Check the inputs every plan needs before a schedule is generated.

    Returns:
        The grant date as a plain ``date``
    """
    if grant_date is None:
        raise InvalidGrantInput('Grant date is required')
    if isinstance(grant_date, datetime):
        grant_date = grant_date.date()
    if not isinstance(grant_date, date):
        raise InvalidGrantInput(f'Invalid grant date: {grant_date!r}')

    if isinstance(total_shares, bool) or not isinstance(total_shares, int):
        raise InvalidGrantInput('Total shares must be a whole number')
    if total_shares <= 0:
        raise InvalidGrantInput('Total shares must be greater than 0')
    return grant_date


def distribute_shares_evenly(total_shares: int, periods: int) -> List[int]:
    """
    Split shares across periods, front-loading the remainder.

    Example: 1003 shares over 20 periods gives 51 to periods 0-2 and 50 to
    the other 17.
    """
    if periods <= 0:
        raise InvalidGrantInput('Periods must be a positive number')
    if total_shares < 0:
        raise InvalidGrantInput('Shares to distribute cannot be negative')

    base_shares, remainder = divmod(total_shares, periods)
    return [base_shares + 1 if i < remainder else base_shares for i in range(periods)]


def calculate_vesting_dates(grant_date: date, periods: int, interval_months: int) -> List[date]:
    """Vest dates at each interval after the grant date (never on the grant date)."""
    return [
        grant_date + relativedelta(months=(i + 1) * interval_months)
        for i in range(periods)
    ]


class VestingPlan:
    """
    Periodic vesting plan with an optional cliff.

    A cliff folds the first ``cliff_periods`` periods into a single event
    dated at the end of the cliff.
    """

    def __init__(self, plan_id: str, name: str, description: str, periods: int,
                 interval_months: int, cliff_periods: int = 0, is_default: bool = False):
        self.id = plan_id
        self.name = name
        self.description = description
        self.periods = periods
        self.interval_months = interval_months
        self.cliff_periods = cliff_periods
        self.is_default = is_default

    def __repr__(self) -> str:
        return f'<VestingPlan {self.id}>'

    @property
    def years(self) -> float:
        return self.periods * self.interval_months / 12

    def period_dates(self, grant_date: date) -> List[date]:
        return calculate_vesting_dates(grant_date, self.periods, self.interval_months)

    def cliff_date(self, grant_date: date) -> Optional[date]:
        if not self.cliff_periods:
            return None
        return grant_date + relativedelta(months=self.cliff_periods * self.interval_months)

    def generate_schedule(self, grant_date: date, total_shares: int) -> List[ScheduleEntry]:
        """Full schedule for a new grant."""
        grant_date = validate_grant_input(grant_date, total_shares)
        return self._build_entries(
            self.period_dates(grant_date),
            total_shares,
            self.cliff_date(grant_date)
        )

    def generate_remaining_schedule(self, grant_date: date, shares: int, after: date,
                                    first_period: int = 1) -> List[ScheduleEntry]:
        """
        Schedule ``shares`` over this plan's periods that fall after ``after``.

        Dates stay anchored on the grant date so the new cadence lines up with
        what the plan would have produced from day one. If the plan's horizon
        has already elapsed, everything vests at the next cadence step.
        """
        dates = [d for d in self.period_dates(grant_date) if d > after]
        if not dates:
            dates = [self.next_cadence_date(grant_date, after)]

        cliff_date = self.cliff_date(grant_date)
        if cliff_date is not None and cliff_date <= after:
            cliff_date = None

        return self._build_entries(dates, shares, cliff_date, first_period)

    def next_cadence_date(self, grant_date: date, after: date) -> date:
        step = 1
        candidate = grant_date + relativedelta(months=self.interval_months)
        while candidate <= after:
            step += 1
            candidate = grant_date + relativedelta(months=step * self.interval_months)
        return candidate

    def _build_entries(self, dates: List[date], shares: int, cliff_date: Optional[date],
                       first_period: int = 1) -> List[ScheduleEntry]:
        distribution = distribute_shares_evenly(shares, len(dates))

        tranches: List[Tuple[date, int, bool]] = []
        if cliff_date is not None:
            cliff_shares = sum(s for d, s in zip(dates, distribution) if d <= cliff_date)
            tranches.append((cliff_date, cliff_shares, True))
            tranches.extend((d, s, False) for d, s in zip(dates, distribution) if d > cliff_date)
        else:
            tranches.extend((d, s, False) for d, s in zip(dates, distribution))

        # Grants smaller than the period count leave trailing periods empty
        tranches = [t for t in tranches if t[1] > 0]

        return [
            ScheduleEntry(period=first_period + i, vest_date=d, shares=s, is_cliff=cliff)
            for i, (d, s, cliff) in enumerate(tranches)
        ]

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'periods': self.periods,
            'interval_months': self.interval_months,
            'cliff_periods': self.cliff_periods,
            'years': self.years,
            'is_default': self.is_default
        }


VESTING_PLANS: Dict[str, VestingPlan] = {
    plan.id: plan for plan in [
        VestingPlan('quarterly-5yr', 'Quarterly - 5 Years',
                    'Vest every 3 months for 5 years (20 periods)',
                    periods=20, interval_months=3, is_default=True),
        VestingPlan('quarterly-4yr', 'Quarterly - 4 Years',
                    'Vest every 3 months for 4 years (16 periods)',
                    periods=16, interval_months=3),
        VestingPlan('semi-annual-4yr', 'Semi-Annual - 4 Years',
                    'Vest every 6 months for 4 years (8 periods)',
                    periods=8, interval_months=6),
        VestingPlan('quarterly-4yr-1yr-cliff', 'Quarterly - 4 Years, 1 Year Cliff',
                    'First year vests at once, then every 3 months (13 events)',
                    periods=16, interval_months=3, cliff_periods=4),
        VestingPlan('quarterly-5yr-2yr-cliff', 'Quarterly - 5 Years, 2 Year Cliff',
                    'First two years vest at once, then every 3 months (13 events)',
                    periods=20, interval_months=3, cliff_periods=8),
    ]
}


def get_vesting_plan(plan_id: Optional[str]) -> VestingPlan:
    """Look up a plan; ``None`` selects the default plan."""
    if plan_id is None:
        plan_id = DEFAULT_VESTING_PLAN
    plan = VESTING_PLANS.get(plan_id)
    if plan is None:
        raise UnknownVestingPlan(plan_id)
    return plan


def list_vesting_plans() -> List[Dict]:
    return [plan.to_dict() for plan in VESTING_PLANS.values()]


def calculate_vest_schedule(grant_date: date, total_shares: int,
                            plan_id: Optional[str] = None) -> List[ScheduleEntry]:
    """
    Calculate the complete vesting schedule for a grant.

    Args:
        grant_date: The date the grant was issued
        total_shares: Whole number of shares granted
        plan_id: Vesting plan identifier (defaults to quarterly over 5 years)

    Returns:
        Ordered list of schedule entries
    """
    grant_date = validate_grant_input(grant_date, total_shares)
    plan = get_vesting_plan(plan_id)
    return plan.generate_schedule(grant_date, total_shares)


def split_schedule(schedule: Iterable, as_of: date) -> Tuple[List[ScheduleEntry], List[ScheduleEntry]]:
    """Split a schedule into (vested, unvested) entries as of a date."""
    entries = sorted((as_schedule_entry(e) for e in schedule), key=lambda e: (e.vest_date, e.period))
    vested = [e for e in entries if e.has_vested(as_of)]
    unvested = [e for e in entries if not e.has_vested(as_of)]
    return vested, unvested


def _plan_change(grant_date: date, schedule: Iterable, current_plan_id: Optional[str],
                 new_plan_id: str, as_of: date):
    new_plan = get_vesting_plan(new_plan_id)
    current_plan = VESTING_PLANS.get(current_plan_id) or get_vesting_plan(None)

    if new_plan.id == current_plan_id:
        raise PlanChangeRejected(f'Grant already uses the {new_plan.name} plan')

    kept, replaced = split_schedule(schedule, as_of)
    unvested_shares = sum(e.shares for e in replaced)
    if unvested_shares <= 0:
        raise PlanChangeRejected('Cannot change vesting plan - all shares are already vested')

    first_period = max((e.period for e in kept), default=0) + 1
    new_entries = new_plan.generate_remaining_schedule(grant_date, unvested_shares, as_of, first_period)
    return current_plan, new_plan, kept, replaced, new_entries


def preview_plan_change(grant_date: date, schedule: Iterable, current_plan_id: Optional[str],
                        new_plan_id: str, as_of: Optional[date] = None) -> Dict:
    """
    Describe what switching plans would do, without changing anything.

    Vested tranches are kept as they are; only the unvested remainder is
    redistributed under the new plan's cadence.

    Raises:
        UnknownVestingPlan: new plan id is not registered
        PlanChangeRejected: nothing left to vest, or plan unchanged
    """
    as_of = as_of or date.today()
    current_plan, new_plan, kept, replaced, new_entries = _plan_change(
        grant_date, schedule, current_plan_id, new_plan_id, as_of
    )

    vested_shares = sum(e.shares for e in kept)
    unvested_shares = sum(e.shares for e in replaced)

    return {
        'can_change': True,
        'current_plan': {
            'id': current_plan.id,
            'name': current_plan.name,
            'unvested_periods': len(replaced),
            'next_vest_date': replaced[0].vest_date.isoformat() if replaced else None
        },
        'new_plan': {
            'id': new_plan.id,
            'name': new_plan.name,
            'unvested_periods': len(new_entries),
            'next_vest_date': new_entries[0].vest_date.isoformat() if new_entries else None
        },
        'impact': {
            'vested_shares_unchanged': vested_shares,
            'unvested_shares_redistributed': unvested_shares,
            'periods_kept': len(kept),
            'periods_replaced': len(replaced),
            'old_period_count': len(kept) + len(replaced),
            'new_period_count': len(kept) + len(new_entries)
        },
        'schedule_preview': {
            'kept_schedule': [e.to_dict(as_of) for e in kept],
            'new_schedule': [e.to_dict(as_of) for e in new_entries]
        }
    }


def apply_plan_change(grant_date: date, schedule: Iterable, current_plan_id: Optional[str],
                      new_plan_id: str, as_of: Optional[date] = None) -> Tuple[List[ScheduleEntry], Dict]:
    """
    Build the schedule that results from switching plans.

    Returns:
        Tuple of (full new schedule, summary dict)
    """
    as_of = as_of or date.today()
    current_plan, new_plan, kept, replaced, new_entries = _plan_change(
        grant_date, schedule, current_plan_id, new_plan_id, as_of
    )

    summary = {
        'old_plan': current_plan.id,
        'new_plan': new_plan.id,
        'vested_shares_unchanged': sum(e.shares for e in kept),
        'unvested_shares_redistributed': sum(e.shares for e in replaced),
        'old_period_count': len(kept) + len(replaced),
        'new_period_count': len(kept) + len(new_entries)
    }
    return kept + new_entries, summary


def validate_vesting_schedule(schedule: Iterable, total_shares: int) -> Dict:
    """
    Check a schedule's integrity against its grant's total shares.

    Returns:
        dict with is_valid, errors, warnings and the share totals compared
    """
    entries = [as_schedule_entry(e) for e in schedule]
    errors = []
    warnings = []

    if not entries:
        errors.append('Vesting schedule cannot be empty')
        return {'is_valid': False, 'errors': errors, 'warnings': warnings,
                'total_scheduled_shares': 0, 'total_expected_shares': total_shares}

    scheduled_shares = sum(e.shares for e in entries)
    if scheduled_shares != total_shares:
        errors.append(f'Scheduled shares ({scheduled_shares}) do not match total shares ({total_shares})')

    invalid = [e for e in entries if e.shares <= 0]
    if invalid:
        errors.append(f'{len(invalid)} vesting events have invalid share amounts')

    dates = [e.vest_date for e in entries]
    if len(set(dates)) != len(dates):
        warnings.append('Duplicate vesting dates found')
    if dates != sorted(dates):
        warnings.append('Vesting schedule is not in chronological order')

    return {
        'is_valid': not errors,
        'errors': errors,
        'warnings': warnings,
        'total_scheduled_shares': scheduled_shares,
        'total_expected_shares': total_shares
    }


def identify_cliff_event(grant_date: date, schedule: Iterable) -> Optional[ScheduleEntry]:
    """
    Find the event that represents the grant's cliff.

    An explicitly flagged cliff wins; otherwise the first event on or after
    the two-year anniversary of the grant.
    """
    entries = sorted((as_schedule_entry(e) for e in schedule), key=lambda e: e.vest_date)
    for entry in entries:
        if entry.is_cliff:
            return entry

    anniversary = grant_date + relativedelta(years=CLIFF_ANNIVERSARY_YEARS)
    for entry in entries:
        if entry.vest_date >= anniversary:
            return entry
    return None
