"""
Application Entry Point
Initializes and runs the Flask application
"""

import os
import logging
import click
from fueldesk import create_app, db

# Determine configuration environment
config_name = os.environ.get('FLASK_ENV', 'development')
app = create_app(config_name)

# Setup logging
if not os.path.exists(app.config['LOG_FOLDER']):
    os.makedirs(app.config['LOG_FOLDER'])

logging.basicConfig(
    level=getattr(logging, app.config['LOG_LEVEL']),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(os.path.join(app.config['LOG_FOLDER'], 'app.log')),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


@app.shell_context_processor
def make_shell_context():
    """Make database and models available in Flask shell"""
    from fueldesk import models
    return {
        'db': db,
        'User': models.User,
        'Station': models.Station,
        'NozzleReading': models.NozzleReading,
        'Sale': models.Sale,
        'DailyClosure': models.DailyClosure,
        'Creditor': models.Creditor,
    }


@app.cli.command('init-db')
def init_db():
    """Create database tables"""
    from fueldesk.utils.db_utils import init_database
    logger.info("Initializing database...")
    if not init_database():
        raise click.ClickException('Database initialization failed')
    logger.info("Database initialized successfully!")


@app.cli.command('seed-demo')
def seed_demo():
    """Create a demo station with staff, pumps, prices and tanks"""
    from fueldesk.utils.db_utils import init_database, seed_demo_data
    init_database()
    station = seed_demo_data()
    click.echo(f"Demo station {station.code} (id {station.id}) ready")


if __name__ == '__main__':
    with app.app_context():
        # Create tables if they don't exist
        db.create_all()
        logger.info("Database tables created")

    # Run the application
    logger.info(f"Starting {app.config['BUSINESS_NAME']}...")
    app.run(
        host=os.environ.get('HOST', '127.0.0.1'),
        port=int(os.environ.get('PORT', 5000)),
        debug=app.config.get('DEBUG', False)
    )
