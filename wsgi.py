"""
WSGI Entry Point

Point the WSGI server at `wsgi:application`. Configuration comes from the
environment (or a .env file next to config.py): SECRET_KEY, DATABASE_URL,
METER_RESET_POLICY, and so on.
"""

import os

from fueldesk import create_app

application = create_app(os.environ.get('FLASK_ENV', 'production'))
