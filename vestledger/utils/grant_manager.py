"""
Grant and sale operations: the persistence side of the vesting, ledger and
tax calculators.

Every function runs inside an application context and commits its own
unit of work.
"""

from datetime import date, datetime
from typing import Dict, List, Mapping, Optional
import logging

from dateutil.relativedelta import relativedelta
from sqlalchemy import extract
from sqlalchemy.orm.exc import StaleDataError

from vestledger import db
from vestledger.errors import (
    ConcurrentModification, GrantHasSales, InvalidGrantInput, InvalidSaleInput, RecordNotFound
)
from vestledger.models.grant import Grant, GrantStatus
from vestledger.models.stock_sale import StockSale
from vestledger.models.tax_rate import get_tax_rates
from vestledger.utils.price_utils import get_latest_price, record_price
from vestledger.utils.share_ledger import group_events_by_month, upcoming_vest_events, validate_sale_request
from vestledger.utils.tax_calculator import (
    TaxCalculator, calculate_quarterly_payments, monthly_tax_breakdown, summarize_sales
)
from vestledger.utils.vest_calculator import (
    apply_plan_change, calculate_vest_schedule, get_vesting_plan, preview_plan_change,
    validate_vesting_schedule
)

logger = logging.getLogger(__name__)

# Sales this recent also update the symbol's price history
RECENT_SALE_PRICE_DAYS = 3

GRANT_TEXT_LIMITS = {'name': 150, 'company': 100, 'notes': 500}


def parse_date(value, error_cls, field: str) -> date:
    """Accept a date or an ISO-8601 string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise error_cls(f'{field} is required')
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        raise error_cls(f'Invalid {field}: {value!r}')


def parse_whole_number(value, error_cls, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise error_cls(f'{field} must be a whole number')
    if isinstance(value, float):
        if not value.is_integer():
            raise error_cls(f'{field} must be a whole number')
        value = int(value)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise error_cls(f'{field} must be a whole number')
    if number <= 0:
        raise error_cls(f'{field} must be greater than 0')
    return number


def parse_positive_number(value, error_cls, field: str) -> float:
    if isinstance(value, bool) or value is None:
        raise error_cls(f'{field} must be a number')
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise error_cls(f'{field} must be a number')
    if number <= 0:
        raise error_cls(f'{field} must be greater than 0')
    return number


def _parse_symbol(value) -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise InvalidGrantInput('Stock symbol is required')
    symbol = value.strip().upper()
    if len(symbol) > 10:
        raise InvalidGrantInput('Stock symbol must be at most 10 characters')
    return symbol


def _parse_text(data: Mapping, field: str) -> Optional[str]:
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidGrantInput(f'{field} must be a string if provided')
    value = value.strip()
    if len(value) > GRANT_TEXT_LIMITS[field]:
        raise InvalidGrantInput(f'{field} must be at most {GRANT_TEXT_LIMITS[field]} characters')
    return value or None


def _check_sales_still_vested(schedule, sales, as_of: date) -> None:
    """A new schedule must vest at least the shares already sold by ``as_of``."""
    sold_shares = sum(s.shares_sold for s in sales)
    vested_after = sum(e.shares for e in schedule if e.vest_date <= as_of)
    if vested_after < sold_shares:
        raise GrantHasSales(
            f'Updated schedule would vest only {vested_after} shares but {sold_shares} are already sold',
            sales_count=len(sales)
        )


def _commit(action: str) -> None:
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent update detected while trying to %s", action)
        raise ConcurrentModification(f'Grant was modified concurrently, could not {action}; retry the request')


def get_grant(grant_id: int) -> Grant:
    grant = db.session.get(Grant, grant_id)
    if grant is None:
        raise RecordNotFound(f'Grant {grant_id} not found')
    return grant


def get_sale(sale_id: int) -> StockSale:
    sale = db.session.get(StockSale, sale_id)
    if sale is None:
        raise RecordNotFound(f'Sale {sale_id} not found')
    return sale


def list_grants(status: Optional[str] = None, symbol: Optional[str] = None) -> List[Grant]:
    query = Grant.query
    if status:
        query = query.filter_by(status=status)
    if symbol:
        query = query.filter_by(stock_symbol=symbol.upper())
    return query.order_by(Grant.grant_date.desc(), Grant.id.desc()).all()


def create_grant(data: Mapping, default_plan: Optional[str] = None) -> Grant:
    """
    Create a grant and its vesting schedule.

    Args:
        data: stock_symbol, grant_date, total_value, total_shares and optional
            name, company, notes, vesting_plan
        default_plan: Plan used when data does not name one

    Returns:
        The persisted Grant
    """
    symbol = _parse_symbol(data.get('stock_symbol'))
    grant_date = parse_date(data.get('grant_date'), InvalidGrantInput, 'grant_date')
    total_value = parse_positive_number(data.get('total_value'), InvalidGrantInput, 'total_value')
    total_shares = parse_whole_number(data.get('total_shares'), InvalidGrantInput, 'total_shares')
    plan = get_vesting_plan(data.get('vesting_plan') or default_plan)

    schedule = calculate_vest_schedule(grant_date, total_shares, plan.id)
    validation = validate_vesting_schedule(schedule, total_shares)
    if not validation['is_valid']:
        raise InvalidGrantInput(f"Vesting schedule validation failed: {', '.join(validation['errors'])}")

    grant = Grant(
        stock_symbol=symbol,
        name=_parse_text(data, 'name'),
        company=_parse_text(data, 'company'),
        grant_date=grant_date,
        total_value=total_value,
        total_shares=total_shares,
        vesting_plan=plan.id,
        status=GrantStatus.ACTIVE.value,
        notes=_parse_text(data, 'notes')
    )
    grant.replace_schedule(schedule)

    current_price = get_latest_price(symbol)
    if current_price is None:
        # First grant of a symbol seeds its price history with the grant price
        current_price = grant.price_per_share
        record_price(symbol, current_price, grant_date, source='grant')
    grant.current_price = current_price

    db.session.add(grant)
    db.session.commit()

    logger.info("Created grant %s: %s shares of %s on %s (%s, %d vest events)",
                grant.id, total_shares, symbol, grant_date, plan.id, len(schedule))
    return grant


def update_grant(grant_id: int, data: Mapping, as_of: Optional[date] = None) -> Grant:
    """
    Apply a partial update. The schedule is regenerated only when total
    shares or the grant date change; a plan change on its own keeps vested
    tranches, like change_vesting_plan.

    Raises:
        GrantHasSales: the edit would leave recorded sales unbacked by vested shares
    """
    as_of = as_of or date.today()
    grant = get_grant(grant_id)
    sales = list(grant.sales)
    sold_shares = sum(s.shares_sold for s in sales)

    if 'stock_symbol' in data:
        grant.stock_symbol = _parse_symbol(data['stock_symbol'])
    for field in ('name', 'company', 'notes'):
        if field in data:
            setattr(grant, field, _parse_text(data, field))
    if 'total_value' in data:
        grant.total_value = parse_positive_number(data['total_value'], InvalidGrantInput, 'total_value')
    if 'status' in data:
        try:
            grant.status = GrantStatus(data['status']).value
        except ValueError:
            raise InvalidGrantInput(f"Invalid status: {data['status']!r}")

    new_shares = grant.total_shares
    if 'total_shares' in data:
        new_shares = parse_whole_number(data['total_shares'], InvalidGrantInput, 'total_shares')
    new_date = grant.grant_date
    if 'grant_date' in data:
        new_date = parse_date(data['grant_date'], InvalidGrantInput, 'grant_date')
    new_plan = grant.vesting_plan
    if data.get('vesting_plan'):
        new_plan = get_vesting_plan(data['vesting_plan']).id

    if new_shares < sold_shares:
        raise GrantHasSales(
            f'Total shares ({new_shares}) cannot be less than shares already sold ({sold_shares})',
            sales_count=len(sales)
        )
    if sales and new_date > min(s.sale_date for s in sales):
        raise GrantHasSales('Grant date cannot be after an existing sale date', sales_count=len(sales))

    if new_shares != grant.total_shares or new_date != grant.grant_date:
        schedule = calculate_vest_schedule(new_date, new_shares, new_plan)
        _check_sales_still_vested(schedule, sales, as_of)
        grant.total_shares = new_shares
        grant.grant_date = new_date
        grant.vesting_plan = new_plan
        grant.replace_schedule(schedule)
        logger.info("Regenerated vesting schedule for grant %s (%d events)", grant.id, len(schedule))
    elif new_plan != grant.vesting_plan:
        schedule, summary = apply_plan_change(grant.grant_date, grant.vest_events, grant.vesting_plan,
                                              new_plan, as_of)
        _check_sales_still_vested(schedule, sales, as_of)
        grant.replace_schedule(schedule)
        grant.vesting_plan = new_plan
        logger.info("Changed vesting plan for grant %s from %s to %s",
                    grant.id, summary['old_plan'], summary['new_plan'])

    _commit('update grant')
    return grant


def delete_grant(grant_id: int, confirm: bool = False) -> Dict:
    """
    Delete a grant with its schedule. Grants with sales need ``confirm``;
    their sales are deleted with them.
    """
    grant = get_grant(grant_id)
    sales_count = len(grant.sales)
    if sales_count and not confirm:
        raise GrantHasSales(
            f'Grant has {sales_count} recorded sales that will be permanently deleted; confirm to proceed',
            sales_count=sales_count
        )

    symbol = grant.stock_symbol
    db.session.delete(grant)
    _commit('delete grant')

    logger.info("Deleted grant %s (%s) and %d sales", grant_id, symbol, sales_count)
    return {
        'deleted_grant': True,
        'deleted_sales_count': sales_count,
        'stock_symbol': symbol
    }


def preview_vesting_plan_change(grant_id: int, new_plan_id: str, as_of: Optional[date] = None) -> Dict:
    grant = get_grant(grant_id)
    preview = preview_plan_change(grant.grant_date, grant.vest_events, grant.vesting_plan, new_plan_id, as_of)
    preview['grant_id'] = grant.id
    return preview


def change_vesting_plan(grant_id: int, new_plan_id: str, today: Optional[date] = None) -> Dict:
    """
    Switch plans, keeping tranches vested by today and redistributing the rest.

    Always applied as of today; a past date would rewrite tranches that have
    already vested and may back recorded sales.

    Raises:
        GrantHasSales: the new schedule vests fewer shares today than have been sold
    """
    today = today or date.today()
    grant = get_grant(grant_id)
    schedule, summary = apply_plan_change(grant.grant_date, grant.vest_events, grant.vesting_plan,
                                          new_plan_id, today)
    _check_sales_still_vested(schedule, list(grant.sales), today)

    grant.replace_schedule(schedule)
    grant.vesting_plan = summary['new_plan']
    _commit('change vesting plan')

    logger.info("Changed vesting plan for grant %s from %s to %s (%d -> %d periods)",
                grant.id, summary['old_plan'], summary['new_plan'],
                summary['old_period_count'], summary['new_period_count'])
    return {
        'grant': grant.to_dict(today, include_schedule=True),
        'summary': summary
    }


def _parse_sale_request(grant: Grant, shares_amount, sale_price, sale_date, today: date,
                        allow_future: bool = False):
    shares_amount = parse_whole_number(shares_amount, InvalidSaleInput, 'shares_amount')
    sale_price = parse_positive_number(sale_price, InvalidSaleInput, 'price_per_share')
    sale_date = parse_date(sale_date or today, InvalidSaleInput, 'sale_date')

    if sale_date < grant.grant_date:
        raise InvalidSaleInput('Sale date cannot be before grant date')
    if sale_date > today and not allow_future:
        raise InvalidSaleInput('Sale date cannot be in the future')
    return shares_amount, sale_price, sale_date


def preview_sale_tax(grant_id: int, shares_amount, sale_price, sale_date=None,
                     config: Optional[Mapping] = None, today: Optional[date] = None) -> Dict:
    """
    Tax on a prospective sale. Nothing is stored.

    The sale date may lie in the future; availability is then checked against
    the shares vested by that date.
    """
    today = today or date.today()
    grant = get_grant(grant_id)
    shares_amount, sale_price, sale_date = _parse_sale_request(grant, shares_amount, sale_price, sale_date, today,
                                                               allow_future=True)

    position = grant.position(as_of=sale_date)
    validate_sale_request(position, shares_amount)

    calculator = TaxCalculator(get_tax_rates(sale_date, config or {}))
    calculation = calculator.calculate_sale_tax(
        grant_date=grant.grant_date,
        sale_date=sale_date,
        shares_amount=shares_amount,
        sale_price=sale_price,
        grant_price_per_share=grant.price_per_share
    )

    result = calculation.to_dict()
    result['grant_info'] = {
        'grant_id': grant.id,
        'stock_symbol': grant.stock_symbol,
        'company': grant.company,
        'grant_date': grant.grant_date.isoformat(),
        'total_shares': grant.total_shares,
        'available_shares': position.available_shares,
        'long_term_date': calculator.long_term_qualification_date(grant.grant_date).isoformat()
    }
    result['sale_info'] = {
        'shares_amount': shares_amount,
        'price_per_share': sale_price,
        'sale_date': sale_date.isoformat(),
        'total_sale_value': calculation.sale_value
    }
    return result


def record_sale(grant_id: int, data: Mapping, config: Optional[Mapping] = None,
                today: Optional[date] = None) -> StockSale:
    """
    Validate a sale against current availability, freeze its tax figures and
    store it.

    The grant's version column is bumped in the same transaction, so two
    requests that both validated against the same state cannot both commit.
    """
    today = today or date.today()
    grant = get_grant(grant_id)
    shares_amount, sale_price, sale_date = _parse_sale_request(
        grant, data.get('shares_amount'), data.get('price_per_share'), data.get('sale_date'), today
    )

    position = grant.position(as_of=sale_date)
    validate_sale_request(position, shares_amount)

    calculation = TaxCalculator(get_tax_rates(sale_date, config or {})).calculate_sale_tax(
        grant_date=grant.grant_date,
        sale_date=sale_date,
        shares_amount=shares_amount,
        sale_price=sale_price,
        grant_price_per_share=grant.price_per_share
    )

    notes = data.get('notes')
    if notes is not None and (not isinstance(notes, str) or len(notes) > 500):
        raise InvalidSaleInput('notes must be a string of at most 500 characters')

    sale = StockSale(
        sale_date=sale_date,
        shares_sold=shares_amount,
        sale_price=sale_price,
        total_proceeds=calculation.sale_value,
        notes=notes
    )
    sale.apply_tax_calculation(calculation)
    grant.sales.append(sale)
    grant.updated_at = datetime.utcnow()

    if (today - sale_date).days <= RECENT_SALE_PRICE_DAYS:
        # record_price flushes, which is where a stale grant version shows up
        try:
            record_price(grant.stock_symbol, sale_price, sale_date, source='sale')
        except StaleDataError:
            db.session.rollback()
            raise ConcurrentModification('Grant was modified concurrently, could not record sale; retry the request')

    _commit('record sale')

    logger.info("Recorded sale %s: %d shares of %s @ %.2f (tax %.2f, %s)",
                sale.id, shares_amount, grant.stock_symbol, sale_price, calculation.total_tax,
                'long-term' if calculation.is_long_term else 'short-term')
    return sale


def delete_sale(sale_id: int) -> Dict:
    """Delete a sale. The grant's schedule is untouched."""
    sale = get_sale(sale_id)
    grant = sale.grant
    grant.sales.remove(sale)
    grant.updated_at = datetime.utcnow()
    _commit('delete sale')

    logger.info("Deleted sale %s from grant %s", sale_id, grant.id)
    return {'deleted': True, 'sale_id': sale_id, 'grant_id': grant.id}


def list_sales(grant_id: Optional[int] = None) -> List[StockSale]:
    query = StockSale.query
    if grant_id is not None:
        query = query.filter_by(grant_id=grant_id)
    return query.order_by(StockSale.sale_date.desc(), StockSale.id.desc()).all()


def get_annual_tax_summary(year: int) -> Dict:
    sales = StockSale.query.filter(extract('year', StockSale.sale_date) == year).all()
    summary = summarize_sales(sales)
    summary['year'] = year
    return summary


def get_tax_projections(year: int) -> Dict:
    """Annual summary plus a per-month breakdown and the quarterly installments."""
    sales = StockSale.query.filter(extract('year', StockSale.sale_date) == year).all()
    summary = summarize_sales(sales)
    return {
        'year': year,
        'summary': summary,
        'monthly_breakdown': monthly_tax_breakdown(sales),
        'quarterly_payments': calculate_quarterly_payments(year, summary['total_tax'])
    }


def get_tax_liability_by_grant(grant_id: int, config: Optional[Mapping] = None,
                               today: Optional[date] = None) -> Dict:
    """
    Realized tax from the grant's recorded sales and the estimated tax on the
    shares it still holds, valued at the current price.
    """
    today = today or date.today()
    grant = get_grant(grant_id)
    calculator = TaxCalculator(get_tax_rates(today, config or {}))

    realized = summarize_sales(grant.sales)
    remaining_shares = grant.total_shares - realized['total_shares_sold']
    current_price = grant.current_price or grant.price_per_share
    is_long_term = calculator.is_long_term(grant.grant_date, today)

    unrealized = {'remaining_shares': remaining_shares, 'current_price': current_price}
    if remaining_shares > 0:
        unrealized.update(calculator.estimate_unrealized_tax(
            remaining_shares, grant.price_per_share, current_price, is_long_term=is_long_term
        ))

    return {
        'grant_id': grant.id,
        'stock_symbol': grant.stock_symbol,
        'grant_date': grant.grant_date.isoformat(),
        'is_long_term': is_long_term,
        'long_term_date': calculator.long_term_qualification_date(grant.grant_date).isoformat(),
        'realized': realized,
        'unrealized': unrealized
    }


def get_optimal_sale_timing(grant_id: int, shares_amount, sale_price, config: Optional[Mapping] = None,
                            today: Optional[date] = None) -> Dict:
    """
    Compare selling now against selling once the shares qualify for
    long-term treatment, at the same price.

    The shares must be available on the later of the two dates.
    """
    today = today or date.today()
    grant = get_grant(grant_id)
    shares_amount = parse_whole_number(shares_amount, InvalidSaleInput, 'shares_amount')
    sale_price = parse_positive_number(sale_price, InvalidSaleInput, 'price_per_share')
    if today < grant.grant_date:
        raise InvalidSaleInput('Grant date is in the future')

    calculator = TaxCalculator(get_tax_rates(today, config or {}))
    long_term_date = max(today, calculator.long_term_qualification_date(grant.grant_date))
    validate_sale_request(grant.position(as_of=long_term_date), shares_amount)

    timing = calculator.compare_sale_timing(
        grant_date=grant.grant_date,
        shares_amount=shares_amount,
        sale_price=sale_price,
        grant_price_per_share=grant.price_per_share,
        today=today
    )
    timing['grant_id'] = grant.id
    timing['shares_amount'] = shares_amount
    timing['price_per_share'] = sale_price
    return timing


def get_upcoming_vesting(days: int = 30, as_of: Optional[date] = None) -> List[Dict]:
    """Upcoming vest events across active grants, soonest first."""
    as_of = as_of or date.today()
    events = []
    for grant in list_grants(status=GrantStatus.ACTIVE.value):
        for event in upcoming_vest_events(grant.vest_events, as_of, days):
            events.append({
                'grant_id': grant.id,
                'stock_symbol': grant.stock_symbol,
                'company': grant.company,
                'vest_date': event.vest_date,
                'shares': event.shares,
                'is_cliff': bool(event.is_cliff),
                'estimated_value': event.estimated_value()
            })
    events.sort(key=lambda e: (e['vest_date'], e['grant_id']))
    return events


def get_vesting_calendar(months: int = 12, as_of: Optional[date] = None) -> List[Dict]:
    as_of = as_of or date.today()
    days = ((as_of + relativedelta(months=months)) - as_of).days
    return group_events_by_month(get_upcoming_vesting(days, as_of))


def get_portfolio_summary(as_of: Optional[date] = None, config: Optional[Mapping] = None) -> Dict:
    """Totals across active grants, plus realized figures from recorded sales."""
    as_of = as_of or date.today()
    grants = list_grants(status=GrantStatus.ACTIVE.value)
    calculator = TaxCalculator(get_tax_rates(as_of, config or {}))

    totals = {
        'total_grants': len(grants),
        'total_shares': 0,
        'vested_shares': 0,
        'unvested_shares': 0,
        'sold_shares': 0,
        'available_shares': 0,
        'total_original_value': 0.0,
        'total_current_value': 0.0,
        'estimated_tax_on_available': 0.0
    }
    next_vest_date = None

    for grant in grants:
        position = grant.position(as_of)
        totals['total_shares'] += position.total_shares
        totals['vested_shares'] += position.vested_shares
        totals['unvested_shares'] += position.unvested_shares
        totals['sold_shares'] += position.sold_shares
        totals['available_shares'] += position.available_shares
        totals['total_original_value'] += grant.total_value
        totals['total_current_value'] += position.current_value
        if position.available_shares:
            estimate = calculator.estimate_unrealized_tax(
                position.available_shares, grant.price_per_share,
                grant.current_price or grant.price_per_share,
                is_long_term=calculator.is_long_term(grant.grant_date, as_of)
            )
            totals['estimated_tax_on_available'] += estimate['estimated_total_tax']
        if position.next_vest_date and (next_vest_date is None or position.next_vest_date < next_vest_date):
            next_vest_date = position.next_vest_date

    gain_loss = totals['total_current_value'] - totals['total_original_value']
    totals['total_gain_loss'] = round(gain_loss, 2)
    totals['gain_loss_percentage'] = (
        gain_loss / totals['total_original_value'] * 100 if totals['total_original_value'] else 0.0
    )
    totals['overall_progress'] = (
        totals['vested_shares'] / totals['total_shares'] * 100 if totals['total_shares'] else 0.0
    )
    totals['next_vest_date'] = next_vest_date.isoformat() if next_vest_date else None
    totals['estimated_tax_on_available'] = round(totals['estimated_tax_on_available'], 2)
    totals['realized'] = summarize_sales(StockSale.query.all())
    return totals
