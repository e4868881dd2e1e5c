"""
Grant management routes - list, add, edit, delete grants and change vesting plans.
"""

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from datetime import date
import logging

from vestledger import db
from vestledger.errors import InvalidGrantInput
from vestledger.utils import grant_manager
from vestledger.utils.request_utils import get_json_object
from vestledger.utils.vest_calculator import list_vesting_plans

logger = logging.getLogger(__name__)

grants_bp = Blueprint('grants', __name__, url_prefix='/api')


def _as_of_param():
    """Optional ``?as_of=YYYY-MM-DD`` override for position figures."""
    value = request.args.get('as_of')
    if not value:
        return date.today()
    return grant_manager.parse_date(value, InvalidGrantInput, 'as_of')


def _int_param(name, default):
    value = request.args.get(name, default)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidGrantInput(f'{name} must be a whole number')
    if number <= 0:
        raise InvalidGrantInput(f'{name} must be greater than 0')
    return number


def _database_error(action, error):
    db.session.rollback()
    logger.error("Database error while trying to %s: %s", action, error, exc_info=True)
    return jsonify({'error': f'Could not {action}', 'code': 'DatabaseError'}), 500


@grants_bp.route('/grants', methods=['GET'])
def list_grants():
    """List grants with their share positions."""
    as_of = _as_of_param()
    grants = grant_manager.list_grants(
        status=request.args.get('status'),
        symbol=request.args.get('symbol')
    )
    return jsonify([grant.to_dict(as_of) for grant in grants])


@grants_bp.route('/grants', methods=['POST'])
def add_grant():
    """Create a grant and generate its vesting schedule."""
    data = get_json_object(InvalidGrantInput)
    try:
        grant = grant_manager.create_grant(data, current_app.config['DEFAULT_VESTING_PLAN'])
    except SQLAlchemyError as e:
        return _database_error('create grant', e)
    return jsonify(grant.to_dict(include_schedule=True)), 201


@grants_bp.route('/grants/<int:grant_id>', methods=['GET'])
def view_grant(grant_id):
    """Grant with schedule, position and sales."""
    grant = grant_manager.get_grant(grant_id)
    return jsonify(grant.to_dict(_as_of_param(), include_schedule=True, include_sales=True))


@grants_bp.route('/grants/<int:grant_id>', methods=['PUT'])
def edit_grant(grant_id):
    data = get_json_object(InvalidGrantInput)
    try:
        grant = grant_manager.update_grant(grant_id, data)
    except SQLAlchemyError as e:
        return _database_error('update grant', e)
    return jsonify(grant.to_dict(include_schedule=True))


@grants_bp.route('/grants/<int:grant_id>', methods=['DELETE'])
def delete_grant(grant_id):
    """Delete a grant. Grants with sales require ``?confirm=true``."""
    confirm = request.args.get('confirm', '').lower() in ('1', 'true', 'yes')
    try:
        result = grant_manager.delete_grant(grant_id, confirm=confirm)
    except SQLAlchemyError as e:
        return _database_error('delete grant', e)
    return jsonify(result)


@grants_bp.route('/vesting/plans', methods=['GET'])
def vesting_plans():
    return jsonify(list_vesting_plans())


def _requested_plan():
    data = get_json_object(InvalidGrantInput)
    plan_id = data.get('vesting_plan')
    if not plan_id:
        raise InvalidGrantInput('vesting_plan is required')
    return plan_id


@grants_bp.route('/grants/<int:grant_id>/vesting-plan/preview', methods=['POST'])
def preview_vesting_plan(grant_id):
    """Impact of switching plans, without changing anything."""
    preview = grant_manager.preview_vesting_plan_change(grant_id, _requested_plan(), _as_of_param())
    return jsonify(preview)


@grants_bp.route('/grants/<int:grant_id>/vesting-plan', methods=['POST'])
def change_vesting_plan(grant_id):
    """Switch plans as of today. ``?as_of`` only applies to the preview."""
    plan_id = _requested_plan()
    try:
        result = grant_manager.change_vesting_plan(grant_id, plan_id)
    except SQLAlchemyError as e:
        return _database_error('change vesting plan', e)
    return jsonify(result)


@grants_bp.route('/vesting/upcoming', methods=['GET'])
def upcoming_vesting():
    """Vest events across active grants within ``?days=`` (default from config)."""
    days = _int_param('days', current_app.config['UPCOMING_VESTING_DAYS'])
    events = grant_manager.get_upcoming_vesting(days, _as_of_param())
    for event in events:
        event['vest_date'] = event['vest_date'].isoformat()
    return jsonify({'days': days, 'events': events})


@grants_bp.route('/vesting/calendar', methods=['GET'])
def vesting_calendar():
    months = _int_param('months', 12)
    calendar = grant_manager.get_vesting_calendar(months, _as_of_param())
    for month in calendar:
        for event in month['events']:
            event['vest_date'] = event['vest_date'].isoformat()
    return jsonify({'months': months, 'calendar': calendar})


@grants_bp.route('/portfolio', methods=['GET'])
def portfolio():
    """Totals across active grants."""
    summary = grant_manager.get_portfolio_summary(_as_of_param(), current_app.config)
    return jsonify(summary)
