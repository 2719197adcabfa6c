# ==============================================================================
# config.py
# ------------------------------------------------------------------------------
# Configuration settings for the FleetPay Flask application.
# Uses environment variables for sensitive data to keep them out of version control.
# ==============================================================================

import os
from dotenv import load_dotenv

# Determine the absolute path of the project directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load environment variables from a .env file located in the project root
load_dotenv(os.path.join(basedir, '.env'))

class Config:
    """
    Base configuration class. Contains default settings that can be overridden
    by environment-specific configurations.
    """
    # --- Security ---
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-should-really-set-a-secret-key-in-your-env-file'

    # --- Database Configuration ---
    # SQLite in the 'instance' folder unless DATABASE_URL points elsewhere.
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance/fleetpay.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Weekly formula rates ---
    # IVA withheld from gross earnings, and the admin fee charged on earnings net of IVA.
    TAX_RATE = float(os.environ.get('TAX_RATE') or 0.06)
    ADMIN_FEE_RATE = float(os.environ.get('ADMIN_FEE_RATE') or 0.07)

    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY') or 'EUR'

    # The JSON API is called by the admin backend, not by browser forms.
    WTF_CSRF_ENABLED = False

    # --- Command line file loading ---
    ALLOWED_EXTENSIONS = {'.xlsx', '.csv'}
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024

    WKHTMLTOPDF_PATH = os.environ.get('WKHTMLTOPDF_PATH') or None


class TestConfig(Config):
    """In-memory database for the test suite."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    TAX_RATE = 0.06
    ADMIN_FEE_RATE = 0.07
