"""
Helper utilities for retrieving and recording stock prices.

Centralizes the lookup used throughout the app to find the most recent
``StockPrice`` for a symbol (optionally as-of a specific date), and keeps
``Grant.current_price`` in step when a new price is recorded.
"""
from __future__ import annotations

from typing import Optional
from datetime import date
import logging

from vestledger import db
from vestledger.models.grant import Grant, GrantStatus
from vestledger.models.stock_price import StockPrice

logger = logging.getLogger(__name__)


def get_latest_price(symbol: str, as_of_date: Optional[date] = None) -> Optional[float]:
    """Return the latest price for ``symbol`` on or before ``as_of_date``
    (today when omitted), or None when no price has been recorded.
    """
    as_of_date = as_of_date or date.today()
    price_entry = StockPrice.query.filter_by(symbol=symbol.upper()).filter(
        StockPrice.price_date <= as_of_date
    ).order_by(StockPrice.price_date.desc(), StockPrice.id.desc()).first()

    if not price_entry:
        logger.debug("No StockPrice entry found for %s on or before %s", symbol, as_of_date)
        return None
    return price_entry.price


def record_price(symbol: str, price: float, price_date: Optional[date] = None,
                 source: str = 'manual') -> StockPrice:
    """
    Add a price point and refresh active grants of the symbol if it is now
    the latest price. Does not commit.
    """
    symbol = symbol.upper()
    price_date = price_date or date.today()

    entry = StockPrice(symbol=symbol, price_date=price_date, price=price, source=source)
    db.session.add(entry)
    db.session.flush()

    latest = get_latest_price(symbol)
    if latest is not None:
        grants = Grant.query.filter_by(stock_symbol=symbol, status=GrantStatus.ACTIVE.value).all()
        for grant in grants:
            grant.current_price = latest
        logger.debug("Refreshed current price of %d %s grants to %s", len(grants), symbol, latest)

    return entry
