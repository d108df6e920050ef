"""
Database Utilities
Helper functions for database setup and demo data
"""

import logging
from datetime import datetime, time
from decimal import Decimal

from fueldesk.models import (
    db, User, Station, StationAssignment, Pump, Nozzle, FuelPrice, Tank
)

logger = logging.getLogger(__name__)


def init_database():
    """Initialize database with tables"""
    try:
        db.create_all()
        logger.info("Database tables created successfully")
        return True
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        return False


def get_or_create(model, defaults=None, **kwargs):
    """
    Get existing record or add a new one to the session

    Args:
        model: SQLAlchemy model class
        defaults: Extra fields used only when creating
        **kwargs: Fields to search/create with

    Returns:
        tuple: (instance, created) where created is bool
    """
    instance = model.query.filter_by(**kwargs).first()
    if instance:
        return instance, False
    instance = model(**dict(kwargs, **(defaults or {})))
    db.session.add(instance)
    db.session.flush()
    return instance, True


def seed_demo_data():
    """
    Create one demo station with staff, two pumps, prices and tanks.

    Safe to run repeatedly; existing rows are reused.

    Returns:
        Station
    """
    admin, _ = get_or_create(User, username='admin', defaults={
        'full_name': 'Platform Administrator', 'role': 'super_admin', 'email': 'admin@fueldesk.local'
    })
    owner, _ = get_or_create(User, username='owner', defaults={
        'full_name': 'Station Owner', 'role': 'owner', 'email': 'owner@fueldesk.local'
    })
    manager, _ = get_or_create(User, username='manager', defaults={
        'full_name': 'Shift Manager', 'role': 'manager'
    })
    attendant, _ = get_or_create(User, username='attendant', defaults={
        'full_name': 'Forecourt Attendant', 'role': 'employee'
    })

    station, created = get_or_create(Station, code='DEMO01', defaults={
        'name': 'Demo Highway Station', 'owner_id': owner.id
    })

    for user in (manager, attendant):
        get_or_create(StationAssignment, user_id=user.id, station_id=station.id)

    for sno, fuels in (('P1', ('petrol', 'diesel')), ('P2', ('petrol', 'diesel'))):
        pump, _ = get_or_create(Pump, station_id=station.id, pump_sno=sno, defaults={'name': f'Pump {sno}'})
        for number, fuel_type in enumerate(fuels, start=1):
            get_or_create(Nozzle, pump_id=pump.id, nozzle_number=number, defaults={'fuel_type': fuel_type})

    if created:
        effective = datetime.combine(datetime.now().date(), time(0, 0))
        db.session.add_all([
            FuelPrice(station_id=station.id, fuel_type='petrol', price=Decimal('102.50'),
                      valid_from=effective, set_by=owner.id),
            FuelPrice(station_id=station.id, fuel_type='diesel', price=Decimal('89.60'),
                      valid_from=effective, set_by=owner.id),
            Tank(station_id=station.id, tank_number='T1', fuel_type='petrol',
                 capacity=Decimal('20000'), current_stock=Decimal('12000')),
            Tank(station_id=station.id, tank_number='T2', fuel_type='diesel',
                 capacity=Decimal('20000'), current_stock=Decimal('15000')),
        ])

    db.session.commit()
    logger.info(f"Demo station {station.code} ready (admin id {admin.id})")
    return station
