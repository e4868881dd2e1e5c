"""
Domain errors raised by the vesting, ledger and tax calculators.

Every error carries the HTTP status the API layer should answer with and a
``to_dict`` payload for the JSON body.
"""

from typing import Dict, Optional


class VestLedgerError(Exception):
    """Base class for validation and business-rule failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict:
        return {
            'error': self.message,
            'code': type(self).__name__
        }


class InvalidGrantInput(VestLedgerError):
    """Non-positive shares or value, or a missing/invalid grant date."""


class UnknownVestingPlan(VestLedgerError):
    """Vesting plan identifier is not in the registry."""

    def __init__(self, plan_id: Optional[str]):
        super().__init__(f'Unknown vesting plan: {plan_id}')
        self.plan_id = plan_id


class PlanChangeRejected(VestLedgerError):
    """Plan change cannot be applied (e.g. grant already fully vested)."""

    status_code = 409


class InvalidSaleInput(VestLedgerError):
    """Non-positive shares or price, or an impossible sale date."""


class InsufficientAvailableShares(VestLedgerError):
    """Sale request exceeds vested shares minus shares already sold."""

    status_code = 409

    def __init__(self, requested: int, vested: int, sold: int, available: int):
        super().__init__(
            f'Insufficient available shares: requested {requested}, '
            f'vested {vested}, already sold {sold}, available {available}'
        )
        self.requested = requested
        self.vested = vested
        self.sold = sold
        self.available = available

    def to_dict(self) -> Dict:
        payload = super().to_dict()
        payload.update({
            'requested': self.requested,
            'vested': self.vested,
            'sold': self.sold,
            'available': self.available
        })
        return payload


class GrantHasSales(VestLedgerError):
    """Operation would destroy or invalidate recorded sales."""

    status_code = 409

    def __init__(self, message: str, sales_count: int):
        super().__init__(message)
        self.sales_count = sales_count

    def to_dict(self) -> Dict:
        payload = super().to_dict()
        payload['sales_count'] = self.sales_count
        return payload


class RecordNotFound(VestLedgerError):
    """Requested grant or sale does not exist."""

    status_code = 404


class ConcurrentModification(VestLedgerError):
    """Grant was modified by another request between read and write."""

    status_code = 409
