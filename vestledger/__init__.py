"""
Application factory and initialization.
"""

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from dotenv import load_dotenv
import logging
import os

__version__ = '0.3.0'

# Load environment variables
load_dotenv()

# Initialize extensions
db = SQLAlchemy()

logger = logging.getLogger(__name__)


def create_app(test_config=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key-change-me')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///vestledger.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    # Tax rates applied when no TaxRateSet row covers the sale date
    app.config['WAGE_INCOME_TAX_RATE'] = float(os.getenv('WAGE_INCOME_TAX_RATE', 0.65))
    app.config['LONG_TERM_CAPITAL_GAINS_RATE'] = float(os.getenv('LONG_TERM_CAPITAL_GAINS_RATE', 0.25))
    app.config['SHORT_TERM_CAPITAL_GAINS_RATE'] = float(os.getenv('SHORT_TERM_CAPITAL_GAINS_RATE', 0.65))
    app.config['LONG_TERM_THRESHOLD_DAYS'] = int(os.getenv('LONG_TERM_THRESHOLD_DAYS', 730))

    # Vesting
    app.config['DEFAULT_VESTING_PLAN'] = os.getenv('DEFAULT_VESTING_PLAN', 'quarterly-5yr')
    app.config['UPCOMING_VESTING_DAYS'] = int(os.getenv('UPCOMING_VESTING_DAYS', 30))

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config['LOG_LEVEL'])

    # Initialize extensions with app
    db.init_app(app)

    # Register blueprints
    from vestledger.routes.grants import grants_bp
    from vestledger.routes.transactions import transactions_bp
    from vestledger.routes.prices import prices_bp

    app.register_blueprint(grants_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(prices_bp)

    register_error_handlers(app)
    register_commands(app)

    # Create database tables
    with app.app_context():
        import vestledger.models  # noqa: F401
        db.create_all()

    return app


def register_error_handlers(app):
    """Render domain errors as JSON."""
    from vestledger.errors import VestLedgerError

    @app.errorhandler(VestLedgerError)
    def handle_domain_error(error):
        db.session.rollback()
        logger.warning("Request rejected: %s", error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'Not found', 'code': 'RecordNotFound'}), 404


def register_commands(app):
    """Attach maintenance commands to the ``flask`` CLI."""
    from vestledger.utils.verify_vesting import verify_vesting_command

    app.cli.add_command(verify_vesting_command)
