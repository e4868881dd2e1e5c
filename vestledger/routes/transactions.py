"""
Transaction routes for stock sales and their tax figures.
"""

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from datetime import date
import logging

from vestledger import db
from vestledger.errors import InvalidSaleInput
from vestledger.utils import grant_manager
from vestledger.utils.request_utils import get_json_object

logger = logging.getLogger(__name__)

transactions_bp = Blueprint('transactions', __name__, url_prefix='/api')


def _grant_id(data):
    return grant_manager.parse_whole_number(data.get('grant_id'), InvalidSaleInput, 'grant_id')


@transactions_bp.route('/sales', methods=['GET'])
def list_sales():
    grant_id = request.args.get('grant_id', type=int)
    sales = grant_manager.list_sales(grant_id)
    return jsonify([sale.to_dict() for sale in sales])


@transactions_bp.route('/sales', methods=['POST'])
def create_sale():
    """
    Record a sale of vested shares.

    Expects JSON with grant_id, shares_amount, price_per_share and optional
    sale_date (defaults to today) and notes. Tax is computed once here and
    stored with the sale.
    """
    data = get_json_object(InvalidSaleInput)
    grant_id = _grant_id(data)
    try:
        sale = grant_manager.record_sale(grant_id, data, current_app.config)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Error creating sale for grant %s: %s", grant_id, e, exc_info=True)
        return jsonify({'error': 'Could not record sale', 'code': 'DatabaseError'}), 500
    return jsonify(sale.to_dict()), 201


@transactions_bp.route('/sales/<int:sale_id>', methods=['GET'])
def view_sale(sale_id):
    return jsonify(grant_manager.get_sale(sale_id).to_dict())


@transactions_bp.route('/sales/<int:sale_id>', methods=['DELETE'])
def delete_sale(sale_id):
    """Delete a stock sale."""
    try:
        result = grant_manager.delete_sale(sale_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Error deleting sale %s: %s", sale_id, e, exc_info=True)
        return jsonify({'error': 'Could not delete sale', 'code': 'DatabaseError'}), 500
    return jsonify(result)


@transactions_bp.route('/tax/preview', methods=['POST'])
def preview_tax():
    """Tax on a prospective sale. Nothing is stored."""
    data = get_json_object(InvalidSaleInput)
    preview = grant_manager.preview_sale_tax(
        _grant_id(data),
        data.get('shares_amount'),
        data.get('price_per_share'),
        data.get('sale_date'),
        config=current_app.config
    )
    return jsonify(preview)


@transactions_bp.route('/tax/summary/<int:year>', methods=['GET'])
def tax_summary(year):
    return jsonify(grant_manager.get_annual_tax_summary(year))


@transactions_bp.route('/tax/projections', methods=['GET'])
def tax_projections():
    """Year's realized tax by month with quarterly installments (``?year=``, default this year)."""
    year = request.args.get('year', date.today().year)
    try:
        year = int(year)
    except (TypeError, ValueError):
        raise InvalidSaleInput('year must be a whole number')
    return jsonify(grant_manager.get_tax_projections(year))


@transactions_bp.route('/tax/optimal-timing', methods=['POST'])
def optimal_timing():
    """Selling today against waiting for long-term treatment."""
    data = get_json_object(InvalidSaleInput)
    timing = grant_manager.get_optimal_sale_timing(
        _grant_id(data),
        data.get('shares_amount'),
        data.get('price_per_share'),
        config=current_app.config
    )
    return jsonify(timing)


@transactions_bp.route('/tax/grants/<int:grant_id>/liability', methods=['GET'])
def grant_tax_liability(grant_id):
    return jsonify(grant_manager.get_tax_liability_by_grant(grant_id, current_app.config))
