"""
Stock price history per symbol.
"""

from vestledger import db
from datetime import datetime
from typing import Dict


class StockPrice(db.Model):
    """A market price for a symbol on a date."""

    __tablename__ = 'stock_prices'

    id = db.Column(db.Integer, primary_key=True)
    symbol = db.Column(db.String(10), nullable=False, index=True)
    price_date = db.Column(db.Date, nullable=False, index=True)
    price = db.Column(db.Float, nullable=False)
    source = db.Column(db.String(20), nullable=False, default='manual')  # 'manual', 'sale' or 'grant'

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f'<StockPrice {self.symbol} {self.price_date}: ${self.price}>'

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'price_date': self.price_date.isoformat(),
            'price': self.price,
            'source': self.source
        }
