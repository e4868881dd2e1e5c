"""
Stock price history routes.
"""

from flask import Blueprint, jsonify, request
from datetime import date
import logging

from vestledger import db
from vestledger.errors import InvalidGrantInput
from vestledger.models.stock_price import StockPrice
from vestledger.utils.grant_manager import parse_date, parse_positive_number
from vestledger.utils.price_utils import get_latest_price, record_price
from vestledger.utils.request_utils import get_json_object

logger = logging.getLogger(__name__)

prices_bp = Blueprint('prices', __name__, url_prefix='/api/prices')


@prices_bp.route('/<symbol>', methods=['GET'])
def list_prices(symbol):
    """Price history for a symbol, newest first, with the latest price."""
    symbol = symbol.upper()
    prices = StockPrice.query.filter_by(symbol=symbol).order_by(
        StockPrice.price_date.desc(), StockPrice.id.desc()
    ).all()
    return jsonify({
        'symbol': symbol,
        'latest_price': get_latest_price(symbol),
        'prices': [p.to_dict() for p in prices]
    })


@prices_bp.route('/<symbol>', methods=['POST'])
def add_price(symbol):
    """Add a price entry. Accepts JSON {price: number, date: ISO (optional)}."""
    data = get_json_object(InvalidGrantInput)
    price = parse_positive_number(data.get('price'), InvalidGrantInput, 'price')
    price_date = parse_date(data.get('date') or date.today(), InvalidGrantInput, 'date')

    entry = record_price(symbol, price, price_date, source='manual')
    db.session.commit()

    logger.info("Recorded %s price %.2f on %s", entry.symbol, price, price_date)
    return jsonify(entry.to_dict()), 201
