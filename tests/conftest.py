"""
Shared pytest fixtures and configuration for all tests.

Provides common fixtures for Flask application testing, database sessions,
header-authenticated API clients, and test data initialization.
"""

import pytest
import sys
import os
from datetime import datetime, date, time
from decimal import Decimal

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fueldesk import create_app
from fueldesk.models import db


@pytest.fixture(scope='session')
def app_factory():
    """Factory fixture for creating test app instances."""
    def _create_app(config='testing', **overrides):
        app = create_app(config)
        app.config['WTF_CSRF_ENABLED'] = False
        app.config['TESTING'] = True
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
        app.config['ITEMS_PER_PAGE'] = 20
        app.config.update(overrides)
        return app
    return _create_app


@pytest.fixture(scope='function')
def fresh_app(app_factory):
    """Create a fresh application for each test with clean database."""
    app = app_factory()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(fresh_app):
    """Create a test client for each test."""
    return fresh_app.test_client()


@pytest.fixture(scope='function')
def db_session(fresh_app):
    """Provide a database session for testing."""
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def init_database(fresh_app):
    """
    Initialize database with test data.

    Creates:
    - Users (super admin, two owners, managers, employees, inactive)
    - Stations A and B with staff assignments
    - Pumps and nozzles (A: P1 petrol+diesel, P2 petrol; B: P1 petrol)
    - Fuel prices effective from 2024-01-01
    - Tanks

    Returns:
        dict of ids keyed by name
    """
    from fueldesk.models import (
        User, Station, StationAssignment, Pump, Nozzle, FuelPrice, Tank
    )

    users = {
        'super_admin': User(username='root', full_name='Platform Admin', role='super_admin'),
        'owner_a': User(username='owner_a', full_name='Owner A', role='owner'),
        'owner_b': User(username='owner_b', full_name='Owner B', role='owner'),
        'manager_a': User(username='manager_a', full_name='Manager A', role='manager'),
        'employee_a': User(username='employee_a', full_name='Employee A', role='employee'),
        'employee_a2': User(username='employee_a2', full_name='Employee A Two', role='employee'),
        'manager_b': User(username='manager_b', full_name='Manager B', role='manager'),
        'inactive': User(username='inactive', full_name='Inactive User', role='employee', is_active=False),
    }
    db.session.add_all(users.values())
    db.session.flush()

    station_a = Station(code='STN-A', name='Highway Station A', owner_id=users['owner_a'].id)
    station_b = Station(code='STN-B', name='City Station B', owner_id=users['owner_b'].id)
    db.session.add_all([station_a, station_b])
    db.session.flush()

    for name in ('manager_a', 'employee_a', 'employee_a2', 'inactive'):
        db.session.add(StationAssignment(user_id=users[name].id, station_id=station_a.id))
    db.session.add(StationAssignment(user_id=users['manager_b'].id, station_id=station_b.id))

    pump_a1 = Pump(station_id=station_a.id, pump_sno='P1', name='Pump 1')
    pump_a2 = Pump(station_id=station_a.id, pump_sno='P2', name='Pump 2')
    pump_b1 = Pump(station_id=station_b.id, pump_sno='P1', name='Pump 1')
    db.session.add_all([pump_a1, pump_a2, pump_b1])
    db.session.flush()

    nozzle_a1_petrol = Nozzle(pump_id=pump_a1.id, nozzle_number=1, fuel_type='petrol')
    nozzle_a1_diesel = Nozzle(pump_id=pump_a1.id, nozzle_number=2, fuel_type='diesel')
    nozzle_a2_petrol = Nozzle(pump_id=pump_a2.id, nozzle_number=1, fuel_type='petrol')
    nozzle_b1_petrol = Nozzle(pump_id=pump_b1.id, nozzle_number=1, fuel_type='petrol')
    db.session.add_all([nozzle_a1_petrol, nozzle_a1_diesel, nozzle_a2_petrol, nozzle_b1_petrol])

    effective = datetime(2024, 1, 1, 0, 0)
    db.session.add_all([
        FuelPrice(station_id=station_a.id, fuel_type='petrol', price=Decimal('100.00'), valid_from=effective),
        FuelPrice(station_id=station_a.id, fuel_type='diesel', price=Decimal('90.00'), valid_from=effective),
        FuelPrice(station_id=station_b.id, fuel_type='petrol', price=Decimal('101.00'), valid_from=effective),
        Tank(station_id=station_a.id, tank_number='T1', fuel_type='petrol',
             capacity=Decimal('20000'), current_stock=Decimal('12000')),
    ])
    db.session.commit()

    ids = {name: user.id for name, user in users.items()}
    ids.update({
        'station_a': station_a.id,
        'station_b': station_b.id,
        'pump_a1': pump_a1.id,
        'pump_a2': pump_a2.id,
        'pump_b1': pump_b1.id,
        'nozzle_a1_petrol': nozzle_a1_petrol.id,
        'nozzle_a1_diesel': nozzle_a1_diesel.id,
        'nozzle_a2_petrol': nozzle_a2_petrol.id,
        'nozzle_b1_petrol': nozzle_b1_petrol.id,
    })
    return ids


@pytest.fixture
def actor(init_database):
    """Build the Actor record for a seeded user by name."""
    from fueldesk.models import User
    from fueldesk.utils.station_context import actor_for

    def _actor(name):
        return actor_for(db.session.get(User, init_database[name]))
    return _actor


class ActorClient:
    """Test client that sends the identity header on every request."""

    def __init__(self, client, user_id, header='X-Actor-Id'):
        self.client = client
        self.user_id = user_id
        self.header = header

    def _call(self, method, url, **kwargs):
        headers = dict(kwargs.pop('headers', None) or {})
        headers[self.header] = str(self.user_id)
        return getattr(self.client, method)(url, headers=headers, **kwargs)

    def get(self, url, **kwargs):
        return self._call('get', url, **kwargs)

    def post(self, url, **kwargs):
        return self._call('post', url, **kwargs)

    def put(self, url, **kwargs):
        return self._call('put', url, **kwargs)

    def delete(self, url, **kwargs):
        return self._call('delete', url, **kwargs)


@pytest.fixture
def auth_super_admin(client, init_database):
    """Platform administrator; reaches every station."""
    return ActorClient(client, init_database['super_admin'])


@pytest.fixture
def auth_owner(client, init_database):
    """Owner of station A."""
    return ActorClient(client, init_database['owner_a'])


@pytest.fixture
def auth_manager(client, init_database):
    """Manager assigned to station A."""
    return ActorClient(client, init_database['manager_a'])


@pytest.fixture
def auth_employee(client, init_database):
    """Employee assigned to station A."""
    return ActorClient(client, init_database['employee_a'])


@pytest.fixture
def auth_other_manager(client, init_database):
    """Manager assigned to station B only."""
    return ActorClient(client, init_database['manager_b'])


@pytest.fixture
def reading_body(init_database):
    """Build the JSON body for POST /api/readings."""
    def _body(volume, reading_date=date(2024, 6, 1), reading_time=time(8, 0),
              nozzle='nozzle_a1_petrol', pump='pump_a1', station='station_a'):
        ids = init_database
        return {
            'stationId': ids[station],
            'pumpId': ids[pump],
            'nozzleId': ids[nozzle],
            'cumulativeVolume': str(volume),
            'readingDate': reading_date.isoformat(),
            'readingTime': reading_time.strftime('%H:%M'),
        }
    return _body


# Pytest configuration
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "security: marks tests as security-related"
    )
    config.addinivalue_line(
        "markers", "api: marks tests as API endpoint tests"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically add markers based on test class/function names."""
    for item in items:
        # Add api marker to all API tests
        if 'API' in item.nodeid or 'api' in item.nodeid.lower():
            item.add_marker(pytest.mark.api)

        # Add security marker to access tests
        keywords = ['forbidden', 'access', 'scope', 'security']
        if any(kw in item.name.lower() for kw in keywords):
            item.add_marker(pytest.mark.security)
