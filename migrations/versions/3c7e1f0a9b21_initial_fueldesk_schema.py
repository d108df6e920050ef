"""initial fueldesk schema

Revision ID: 3c7e1f0a9b21
Revises:
Create Date: 2026-10-19 09:12:05.118342

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = '3c7e1f0a9b21'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'users' not in existing_tables:
        op.create_table('users',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('username', sa.String(length=64), nullable=False),
    sa.Column('email', sa.String(length=120), nullable=True),
    sa.Column('full_name', sa.String(length=128), nullable=False),
    sa.Column('role', sa.String(length=32), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('users', schema=None) as batch_op:
            batch_op.create_index('ix_users_username', ['username'], unique=True)
            batch_op.create_index('ix_users_email', ['email'], unique=True)

    if 'stations' not in existing_tables:
        op.create_table('stations',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('code', sa.String(length=32), nullable=False),
    sa.Column('name', sa.String(length=128), nullable=False),
    sa.Column('owner_id', sa.Integer(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('stations', schema=None) as batch_op:
            batch_op.create_index('ix_stations_code', ['code'], unique=True)
            batch_op.create_index('ix_stations_owner_id', ['owner_id'], unique=False)

    if 'station_assignments' not in existing_tables:
        op.create_table('station_assignments',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('user_id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('assigned_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'station_id', name='uq_station_assignment')
        )
        with op.batch_alter_table('station_assignments', schema=None) as batch_op:
            batch_op.create_index('ix_station_assignments_user_id', ['user_id'], unique=False)
            batch_op.create_index('ix_station_assignments_station_id', ['station_id'], unique=False)

    if 'pumps' not in existing_tables:
        op.create_table('pumps',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('pump_sno', sa.String(length=32), nullable=False),
    sa.Column('name', sa.String(length=64), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('station_id', 'pump_sno', name='uq_pump_station_sno')
        )
        with op.batch_alter_table('pumps', schema=None) as batch_op:
            batch_op.create_index('ix_pumps_station_id', ['station_id'], unique=False)

    if 'nozzles' not in existing_tables:
        op.create_table('nozzles',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('pump_id', sa.Integer(), nullable=False),
    sa.Column('nozzle_number', sa.Integer(), nullable=False),
    sa.Column('fuel_type', sa.String(length=30), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.ForeignKeyConstraint(['pump_id'], ['pumps.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pump_id', 'nozzle_number', name='uq_nozzle_pump_number')
        )
        with op.batch_alter_table('nozzles', schema=None) as batch_op:
            batch_op.create_index('ix_nozzles_pump_id', ['pump_id'], unique=False)

    if 'fuel_prices' not in existing_tables:
        op.create_table('fuel_prices',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('fuel_type', sa.String(length=30), nullable=False),
    sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
    sa.Column('valid_from', sa.DateTime(), nullable=False),
    sa.Column('set_by', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['set_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('fuel_prices', schema=None) as batch_op:
            batch_op.create_index('ix_fuel_prices_lookup', ['station_id', 'fuel_type', 'valid_from'], unique=False)

    if 'tanks' not in existing_tables:
        op.create_table('tanks',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('tank_number', sa.String(length=16), nullable=False),
    sa.Column('fuel_type', sa.String(length=30), nullable=False),
    sa.Column('capacity', sa.Numeric(precision=14, scale=3), nullable=True),
    sa.Column('current_stock', sa.Numeric(precision=14, scale=3), nullable=True),
    sa.Column('last_dip_reading', sa.Numeric(precision=14, scale=3), nullable=True),
    sa.Column('last_dip_at', sa.DateTime(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('tanks', schema=None) as batch_op:
            batch_op.create_index('ix_tanks_station_id', ['station_id'], unique=False)

    if 'nozzle_readings' not in existing_tables:
        op.create_table('nozzle_readings',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('pump_id', sa.Integer(), nullable=False),
    sa.Column('nozzle_id', sa.Integer(), nullable=False),
    sa.Column('fuel_type', sa.String(length=30), nullable=False),
    sa.Column('cumulative_volume', sa.Numeric(precision=14, scale=3), nullable=False),
    sa.Column('reading_date', sa.Date(), nullable=False),
    sa.Column('reading_time', sa.Time(), nullable=False),
    sa.Column('is_manual_entry', sa.Boolean(), nullable=False),
    sa.Column('source_confidence', sa.Numeric(precision=5, scale=2), nullable=True),
    sa.Column('supersedes_id', sa.Integer(), nullable=True),
    sa.Column('superseded_by_id', sa.Integer(), nullable=True),
    sa.Column('superseded_at', sa.DateTime(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('entered_by', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['entered_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['nozzle_id'], ['nozzles.id'], ),
    sa.ForeignKeyConstraint(['pump_id'], ['pumps.id'], ),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
    sa.ForeignKeyConstraint(['superseded_by_id'], ['nozzle_readings.id'], ),
    sa.ForeignKeyConstraint(['supersedes_id'], ['nozzle_readings.id'], ),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('nozzle_readings', schema=None) as batch_op:
            batch_op.create_index('ix_nozzle_readings_station_id', ['station_id'], unique=False)
            batch_op.create_index('ix_nozzle_readings_reading_date', ['reading_date'], unique=False)
            batch_op.create_index('ix_nozzle_readings_order', ['nozzle_id', 'reading_date', 'reading_time'], unique=False)

    if 'sales' not in existing_tables:
        op.create_table('sales',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('pump_id', sa.Integer(), nullable=False),
    sa.Column('nozzle_id', sa.Integer(), nullable=False),
    sa.Column('fuel_type', sa.String(length=30), nullable=False),
    sa.Column('delta_volume', sa.Numeric(precision=14, scale=3), nullable=False),
    sa.Column('price_per_litre', sa.Numeric(precision=10, scale=2), nullable=False),
    sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('shift', sa.String(length=16), nullable=False),
    sa.Column('sale_date', sa.Date(), nullable=False),
    sa.Column('source_reading_id', sa.Integer(), nullable=False),
    sa.Column('previous_reading_id', sa.Integer(), nullable=True),
    sa.Column('needs_review', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['nozzle_id'], ['nozzles.id'], ),
    sa.ForeignKeyConstraint(['previous_reading_id'], ['nozzle_readings.id'], ),
    sa.ForeignKeyConstraint(['pump_id'], ['pumps.id'], ),
    sa.ForeignKeyConstraint(['source_reading_id'], ['nozzle_readings.id'], ),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_reading_id')
        )
        with op.batch_alter_table('sales', schema=None) as batch_op:
            batch_op.create_index('ix_sales_nozzle_id', ['nozzle_id'], unique=False)
            batch_op.create_index('ix_sales_period', ['station_id', 'sale_date', 'shift'], unique=False)

    if 'daily_closures' not in existing_tables:
        op.create_table('daily_closures',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('closure_date', sa.Date(), nullable=False),
    sa.Column('shift', sa.String(length=16), nullable=False),
    sa.Column('total_sales_amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('total_litres_sold', sa.Numeric(precision=14, scale=3), nullable=False),
    sa.Column('per_fuel_type_breakdown', sa.JSON(), nullable=True),
    sa.Column('transaction_count', sa.Integer(), nullable=False),
    sa.Column('expected_cash', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('actual_cash', sa.Numeric(precision=12, scale=2), nullable=True),
    sa.Column('card_payments', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('upi_payments', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('credit_sales', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('cash_variance', sa.Numeric(precision=12, scale=2), nullable=True),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('prepared_by', sa.Integer(), nullable=False),
    sa.Column('submitted_at', sa.DateTime(), nullable=True),
    sa.Column('approved_by', sa.Integer(), nullable=True),
    sa.Column('approved_at', sa.DateTime(), nullable=True),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['approved_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['prepared_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('station_id', 'closure_date', 'shift', name='uq_closure_period')
        )
        with op.batch_alter_table('daily_closures', schema=None) as batch_op:
            batch_op.create_index('ix_daily_closures_station_id', ['station_id'], unique=False)
            batch_op.create_index('ix_daily_closures_closure_date', ['closure_date'], unique=False)
            batch_op.create_index('ix_daily_closures_status', ['status'], unique=False)

    if 'creditors' not in existing_tables:
        op.create_table('creditors',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=128), nullable=False),
    sa.Column('contact_person', sa.String(length=128), nullable=True),
    sa.Column('phone', sa.String(length=32), nullable=True),
    sa.Column('credit_limit', sa.Numeric(precision=12, scale=2), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('creditors', schema=None) as batch_op:
            batch_op.create_index('ix_creditors_station_id', ['station_id'], unique=False)

    if 'credit_transactions' not in existing_tables:
        op.create_table('credit_transactions',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('station_id', sa.Integer(), nullable=False),
    sa.Column('creditor_id', sa.Integer(), nullable=False),
    sa.Column('transaction_type', sa.String(length=16), nullable=False),
    sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('transaction_date', sa.Date(), nullable=False),
    sa.Column('reference_number', sa.String(length=64), nullable=True),
    sa.Column('fuel_type', sa.String(length=30), nullable=True),
    sa.Column('litres', sa.Numeric(precision=14, scale=3), nullable=True),
    sa.Column('vehicle_number', sa.String(length=20), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('entered_by', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['creditor_id'], ['creditors.id'], ),
    sa.ForeignKeyConstraint(['entered_by'], ['users.id'], ),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('credit_transactions', schema=None) as batch_op:
            batch_op.create_index('ix_credit_transactions_station_id', ['station_id'], unique=False)
            batch_op.create_index('ix_credit_transactions_creditor_id', ['creditor_id'], unique=False)
            batch_op.create_index('ix_credit_transactions_transaction_type', ['transaction_type'], unique=False)
            batch_op.create_index('ix_credit_transactions_transaction_date', ['transaction_date'], unique=False)

    if 'settlement_allocations' not in existing_tables:
        op.create_table('settlement_allocations',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('settlement_id', sa.Integer(), nullable=False),
    sa.Column('credit_transaction_id', sa.Integer(), nullable=False),
    sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['credit_transaction_id'], ['credit_transactions.id'], ),
    sa.ForeignKeyConstraint(['settlement_id'], ['credit_transactions.id'], ),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('settlement_allocations', schema=None) as batch_op:
            batch_op.create_index('ix_settlement_allocations_settlement_id', ['settlement_id'], unique=False)
            batch_op.create_index('ix_settlement_allocations_credit_transaction_id', ['credit_transaction_id'], unique=False)

    if 'activity_logs' not in existing_tables:
        op.create_table('activity_logs',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('user_id', sa.Integer(), nullable=True),
    sa.Column('station_id', sa.Integer(), nullable=True),
    sa.Column('action', sa.String(length=128), nullable=False),
    sa.Column('entity_type', sa.String(length=64), nullable=True),
    sa.Column('entity_id', sa.Integer(), nullable=True),
    sa.Column('details', sa.Text(), nullable=True),
    sa.Column('ip_address', sa.String(length=64), nullable=True),
    sa.Column('timestamp', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
        )
        with op.batch_alter_table('activity_logs', schema=None) as batch_op:
            batch_op.create_index('ix_activity_logs_station_id', ['station_id'], unique=False)
            batch_op.create_index('ix_activity_logs_timestamp', ['timestamp'], unique=False)


def downgrade():
    for table in (
        'activity_logs', 'settlement_allocations', 'credit_transactions', 'creditors',
        'daily_closures', 'sales', 'nozzle_readings', 'tanks', 'fuel_prices',
        'nozzles', 'pumps', 'station_assignments', 'stations', 'users',
    ):
        op.drop_table(table)
