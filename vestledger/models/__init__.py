"""
Model package initialization.
"""

from vestledger.models.grant import Grant, GrantStatus
from vestledger.models.vest_event import VestEvent
from vestledger.models.stock_sale import StockSale
from vestledger.models.stock_price import StockPrice
from vestledger.models.tax_rate import TaxRateSet, get_tax_rates

__all__ = [
    'Grant',
    'GrantStatus',
    'VestEvent',
    'StockSale',
    'StockPrice',
    'TaxRateSet',
    'get_tax_rates'
]
