"""
Check the stored vesting schedule of every grant.
Use this after changing the vest_calculator logic to find grants whose
schedules no longer add up.
"""

from typing import Dict, List
import logging

import click
from flask.cli import with_appcontext

from vestledger import db
from vestledger.models.grant import Grant
from vestledger.utils.vest_calculator import calculate_vest_schedule, validate_vesting_schedule

logger = logging.getLogger(__name__)


def verify_all_vesting_schedules(repair: bool = False) -> List[Dict]:
    """
    Validate every grant's schedule against its total shares.

    Args:
        repair: Regenerate invalid schedules from the grant's plan. Only
            grants without sales are repaired.

    Returns:
        One report dict per invalid grant
    """
    problems = []
    grants = Grant.query.order_by(Grant.id).all()
    logger.info("Verifying vesting schedules for %d grants", len(grants))

    for grant in grants:
        result = validate_vesting_schedule(grant.vest_events, grant.total_shares)
        if result['is_valid'] and not result['warnings']:
            continue

        report = {
            'grant_id': grant.id,
            'stock_symbol': grant.stock_symbol,
            'is_valid': result['is_valid'],
            'errors': result['errors'],
            'warnings': result['warnings'],
            'repaired': False
        }
        if not result['is_valid'] and repair and not grant.sales:
            grant.replace_schedule(calculate_vest_schedule(grant.grant_date, grant.total_shares, grant.vesting_plan))
            report['repaired'] = True
            logger.info("Regenerated schedule for grant %s", grant.id)
        problems.append(report)

    if repair:
        db.session.commit()
    return problems


@click.command('verify-vesting')
@click.option('--repair', is_flag=True, help='Regenerate invalid schedules of grants without sales.')
@with_appcontext
def verify_vesting_command(repair):
    """Report grants whose vest events do not add up to their total shares."""
    problems = verify_all_vesting_schedules(repair=repair)
    total = Grant.query.count()

    for report in problems:
        status = 'invalid' if not report['is_valid'] else 'warning'
        click.echo(f"Grant #{report['grant_id']} ({report['stock_symbol']}): {status}")
        for message in report['errors'] + report['warnings']:
            click.echo(f"  - {message}")
        if report['repaired']:
            click.echo("  Regenerated schedule")

    invalid = sum(1 for r in problems if not r['is_valid'])
    click.echo(f"Checked {total} grants: {invalid} invalid, {len(problems) - invalid} with warnings")
