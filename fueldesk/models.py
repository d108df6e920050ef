"""
Database Models
SQLAlchemy ORM models for stations, meter readings, sales, closures and credit
"""

from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin

db = SQLAlchemy()


class User(UserMixin, db.Model):
    """Station staff and platform accounts"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, index=True)
    full_name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(32), nullable=False, default='employee')
    # Roles: super_admin, owner, manager, employee
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<User {self.username}>'


class Station(db.Model):
    """Fuel station owned by exactly one owner account"""
    __tablename__ = 'stations'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    owner = db.relationship('User', backref=db.backref('owned_stations', lazy='dynamic'))

    def __repr__(self):
        return f'<Station {self.code}>'


class StationAssignment(db.Model):
    """Manager/employee assignment to a station"""
    __tablename__ = 'station_assignments'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'station_id', name='uq_station_assignment'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False, index=True)
    assigned_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('assignments', lazy='dynamic'))
    station = db.relationship('Station')


class Pump(db.Model):
    """Dispensing unit identified on the forecourt by its serial number"""
    __tablename__ = 'pumps'
    __table_args__ = (
        db.UniqueConstraint('station_id', 'pump_sno', name='uq_pump_station_sno'),
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False, index=True)
    pump_sno = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(64))
    is_active = db.Column(db.Boolean, default=True)

    station = db.relationship('Station', backref=db.backref('pumps', lazy='dynamic'))
    nozzles = db.relationship('Nozzle', backref='pump', lazy='dynamic')

    def __repr__(self):
        return f'<Pump {self.pump_sno}>'


class Nozzle(db.Model):
    """Single outlet on a pump with its own cumulative meter"""
    __tablename__ = 'nozzles'
    __table_args__ = (
        db.UniqueConstraint('pump_id', 'nozzle_number', name='uq_nozzle_pump_number'),
    )

    id = db.Column(db.Integer, primary_key=True)
    pump_id = db.Column(db.Integer, db.ForeignKey('pumps.id'), nullable=False, index=True)
    nozzle_number = db.Column(db.Integer, nullable=False)
    fuel_type = db.Column(db.String(30), nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    def __repr__(self):
        return f'<Nozzle {self.pump_id}/{self.nozzle_number}>'


class FuelPrice(db.Model):
    """Per-station fuel price, effective from valid_from onwards"""
    __tablename__ = 'fuel_prices'
    __table_args__ = (
        db.Index('ix_fuel_prices_lookup', 'station_id', 'fuel_type', 'valid_from'),
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False)
    fuel_type = db.Column(db.String(30), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    valid_from = db.Column(db.DateTime, nullable=False)
    set_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<FuelPrice {self.fuel_type} {self.price}>'


class Tank(db.Model):
    """Underground storage tank; dip readings feed the closure preview"""
    __tablename__ = 'tanks'

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False, index=True)
    tank_number = db.Column(db.String(16), nullable=False)
    fuel_type = db.Column(db.String(30), nullable=False)
    capacity = db.Column(db.Numeric(14, 3))
    current_stock = db.Column(db.Numeric(14, 3), default=0)
    last_dip_reading = db.Column(db.Numeric(14, 3))
    last_dip_at = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, default=True)


class NozzleReading(db.Model):
    """Raw cumulative meter reading from manual entry or OCR"""
    __tablename__ = 'nozzle_readings'
    __table_args__ = (
        db.Index('ix_nozzle_readings_order', 'nozzle_id', 'reading_date', 'reading_time'),
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False, index=True)
    pump_id = db.Column(db.Integer, db.ForeignKey('pumps.id'), nullable=False)
    nozzle_id = db.Column(db.Integer, db.ForeignKey('nozzles.id'), nullable=False)
    fuel_type = db.Column(db.String(30), nullable=False)

    cumulative_volume = db.Column(db.Numeric(14, 3), nullable=False)
    reading_date = db.Column(db.Date, nullable=False, index=True)
    reading_time = db.Column(db.Time, nullable=False)

    is_manual_entry = db.Column(db.Boolean, nullable=False, default=True)
    source_confidence = db.Column(db.Numeric(5, 2))  # OCR confidence, null for manual

    # Corrections supersede, they never edit in place
    supersedes_id = db.Column(db.Integer, db.ForeignKey('nozzle_readings.id'))
    superseded_by_id = db.Column(db.Integer, db.ForeignKey('nozzle_readings.id'))
    superseded_at = db.Column(db.DateTime)

    notes = db.Column(db.Text)
    entered_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<NozzleReading {self.nozzle_id} {self.cumulative_volume}>'


class Sale(db.Model):
    """Derived sale between two consecutive readings of a nozzle"""
    __tablename__ = 'sales'

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False)
    pump_id = db.Column(db.Integer, db.ForeignKey('pumps.id'), nullable=False)
    nozzle_id = db.Column(db.Integer, db.ForeignKey('nozzles.id'), nullable=False, index=True)
    fuel_type = db.Column(db.String(30), nullable=False)

    delta_volume = db.Column(db.Numeric(14, 3), nullable=False)
    price_per_litre = db.Column(db.Numeric(10, 2), nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    shift = db.Column(db.String(16), nullable=False)
    sale_date = db.Column(db.Date, nullable=False)

    # One sale per closing reading; the upsert key for re-derivation
    source_reading_id = db.Column(db.Integer, db.ForeignKey('nozzle_readings.id'),
                                  nullable=False, unique=True)
    previous_reading_id = db.Column(db.Integer, db.ForeignKey('nozzle_readings.id'))
    needs_review = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_sales_period', 'station_id', 'sale_date', 'shift'),
    )

    def __repr__(self):
        return f'<Sale {self.nozzle_id} {self.delta_volume}L>'


class DailyClosure(db.Model):
    """End-of-shift/day cash reconciliation"""
    __tablename__ = 'daily_closures'
    __table_args__ = (
        db.UniqueConstraint('station_id', 'closure_date', 'shift', name='uq_closure_period'),
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False, index=True)
    closure_date = db.Column(db.Date, nullable=False, index=True)
    shift = db.Column(db.String(16), nullable=False)

    # Derived from sales at save time
    total_sales_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_litres_sold = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    per_fuel_type_breakdown = db.Column(db.JSON)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)

    # Tenders
    expected_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    actual_cash = db.Column(db.Numeric(12, 2))
    card_payments = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    upi_payments = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    credit_sales = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cash_variance = db.Column(db.Numeric(12, 2))

    status = db.Column(db.String(16), nullable=False, default='draft', index=True)
    prepared_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    submitted_at = db.Column(db.DateTime)
    approved_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    approved_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.Text)
    notes = db.Column(db.Text)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f'<DailyClosure {self.station_id} {self.closure_date} {self.shift}>'


class Creditor(db.Model):
    """Customer account allowed to buy fuel on credit"""
    __tablename__ = 'creditors'

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    contact_person = db.Column(db.String(128))
    phone = db.Column(db.String(32))
    credit_limit = db.Column(db.Numeric(12, 2), default=0)  # 0 = no limit
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Creditor {self.name}>'


class CreditTransaction(db.Model):
    """Credit sale or settlement payment for a creditor"""
    __tablename__ = 'credit_transactions'

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), nullable=False, index=True)
    creditor_id = db.Column(db.Integer, db.ForeignKey('creditors.id'), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # credit, settlement
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    transaction_date = db.Column(db.Date, nullable=False, index=True)
    reference_number = db.Column(db.String(64))

    fuel_type = db.Column(db.String(30))
    litres = db.Column(db.Numeric(14, 3))
    vehicle_number = db.Column(db.String(20))
    notes = db.Column(db.Text)

    entered_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    creditor = db.relationship('Creditor', backref=db.backref('transactions', lazy='dynamic'))

    def __repr__(self):
        return f'<CreditTransaction {self.transaction_type} {self.amount}>'


class SettlementAllocation(db.Model):
    """Portion of a settlement applied to one credit transaction"""
    __tablename__ = 'settlement_allocations'

    id = db.Column(db.Integer, primary_key=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey('credit_transactions.id'),
                              nullable=False, index=True)
    credit_transaction_id = db.Column(db.Integer, db.ForeignKey('credit_transactions.id'),
                                      nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class ActivityLog(db.Model):
    """Log of all critical activities"""
    __tablename__ = 'activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    station_id = db.Column(db.Integer, db.ForeignKey('stations.id'), index=True)
    action = db.Column(db.String(128), nullable=False)
    entity_type = db.Column(db.String(64))  # reading, closure, settlement, etc.
    entity_id = db.Column(db.Integer)
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(64))

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship('User')

    def __repr__(self):
        return f'<ActivityLog {self.action}>'
