# ==============================================================================
# fleetpay/__init__.py
# ------------------------------------------------------------------------------
# Application factory for creating and configuring the Flask app instance.
# ==============================================================================

import os
import logging
from flask import Flask
from config import Config
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

# Initialize extensions globally to be accessible by other modules
db = SQLAlchemy()
migrate = Migrate()

def _enable_sqlite_savepoints(engine):
    @event.listens_for(engine, 'connect')
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin(conn):
        conn.exec_driver_sql('BEGIN')


def create_app(config_class=Config):
    """
    Application factory function. Creates and configures the Flask application.

    Args:
        config_class (class): The configuration class to use.

    Returns:
        Flask: The configured Flask application instance.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    # Configure logging
    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    # Ensure the instance folder exists for the SQLite database
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize extensions with the application instance
    db.init_app(app)
    migrate.init_app(app, db)

    # pysqlite never emits BEGIN before a SAVEPOINT, so let SQLAlchemy open transactions itself
    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        with app.app_context():
            _enable_sqlite_savepoints(db.engine)

    # Importing the models registers the immutability listeners as well
    from fleetpay import models  # noqa: F401

    from fleetpay.main import bp as main_bp
    app.register_blueprint(main_bp)

    from fleetpay.cli import register_commands
    register_commands(app)

    app.logger.info('FleetPay reconciliation engine startup complete')

    return app
