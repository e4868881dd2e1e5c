"""
Shared fixtures: an application over an in-memory SQLite database.
"""

import pytest

from vestledger import create_app, db


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'LOG_LEVEL': 'WARNING'
    })

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def grant_payload():
    """1000 shares worth $10,000 granted 2022-01-01 on the default plan."""
    return {
        'stock_symbol': 'ACME',
        'name': '2022 refresh',
        'company': 'Acme Corp',
        'grant_date': '2022-01-01',
        'total_value': 10000,
        'total_shares': 1000
    }
