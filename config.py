"""
Application Configuration
Loads environment variables and provides configuration classes for different environments
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))


class Config:
    """Base configuration class"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'fueldesk.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # Business Configuration
    BUSINESS_NAME = os.environ.get('BUSINESS_NAME', 'FuelDesk')
    CURRENCY = os.environ.get('CURRENCY', 'INR')
    CURRENCY_SYMBOL = os.environ.get('CURRENCY_SYMBOL', '₹')

    # Identity proxy header carrying the authenticated user id
    ACTOR_HEADER = os.environ.get('ACTOR_HEADER', 'X-Actor-Id')

    # Meter reset handling: 'zero_base' (assume the meter restarted at zero
    # and flag the sale for review) or 'reject' (refuse the lower reading)
    METER_RESET_POLICY = os.environ.get('METER_RESET_POLICY', 'zero_base')

    # Rejected closures are terminal unless this is enabled
    CLOSURE_REOPEN_REJECTED = os.environ.get('CLOSURE_REOPEN_REJECTED', 'False').lower() == 'true'

    # How long the entering operator may still delete a reading
    READING_DELETE_WINDOW_MINUTES = int(os.environ.get('READING_DELETE_WINDOW_MINUTES', 60))

    # Pagination
    ITEMS_PER_PAGE = int(os.environ.get('ITEMS_PER_PAGE', 50))

    # CSRF Configuration
    WTF_CSRF_TIME_LIMIT = None
    WTF_CSRF_SSL_STRICT = False
    WTF_CSRF_HEADERS = ['X-CSRFToken', 'X-CSRF-Token']

    # Logging
    LOG_FOLDER = os.path.join(basedir, 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False  # Set to True to see SQL queries


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WTF_CSRF_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
