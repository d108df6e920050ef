"""
Tests for the tender aggregator and the closure state machine

Tests cover:
1. Sales aggregation per shift and full day
2. Closure preparation
3. Draft save arithmetic (expected cash, variance)
4. draft -> submitted -> approved | rejected
5. Immutability of approved closures and optimistic versioning
6. Concurrent creates and updates of one closure
"""

import pytest
from datetime import date, time
from decimal import Decimal

from sqlalchemy import update

from fueldesk.models import db, DailyClosure, ActivityLog, Sale
from fueldesk.errors import Conflict, Forbidden, InvalidTransition, ValidationError
from fueldesk.repositories import ClosureRepo
from fueldesk.services.closure_service import ClosureService
from fueldesk.services.reading_service import ReadingService
from fueldesk.services.tender_service import TenderAggregator

DAY = date(2024, 6, 1)


@pytest.fixture
def day_of_sales(actor, reading_body):
    """
    Petrol: 100 L morning (10000.00), 10 L afternoon (1000.00)
    Diesel: 20 L morning (1800.00)
    """
    employee = actor('employee_a')
    for volume, at in (('1000', time(7, 0)), ('1100', time(10, 0)), ('1110', time(15, 0))):
        ReadingService.record_reading(employee, reading_body(volume, reading_time=at))
    for volume, at in (('500', time(7, 0)), ('520', time(11, 0))):
        ReadingService.record_reading(employee, reading_body(volume, reading_time=at,
                                                             nozzle='nozzle_a1_diesel'))
    return employee


def _closure_body(init_database, **overrides):
    body = {
        'stationId': init_database['station_a'],
        'closureDate': DAY.isoformat(),
        'shift': 'morning',
        'cardPayments': '2500',
        'upiPayments': '1000',
        'creditSales': '500',
        'actualCash': '7750',
    }
    body.update(overrides)
    return body


# ============================================================
# Tender aggregator
# ============================================================

class TestTenderAggregator:
    """Tests for TenderAggregator.aggregate()"""

    def test_aggregate_single_shift(self, day_of_sales, init_database):
        summary = TenderAggregator.aggregate(day_of_sales, init_database['station_a'], DAY, 'morning')

        assert summary.total_sales_amount == Decimal('11800.00')
        assert summary.total_litres_sold == Decimal('120.000')
        assert summary.transaction_count == 2
        assert summary.per_fuel_type['petrol'] == {
            'litres': '100.000', 'amount': '10000.00', 'transactionCount': 1
        }
        assert summary.per_fuel_type['diesel']['amount'] == '1800.00'

    def test_full_day_ignores_shift(self, day_of_sales, init_database):
        summary = TenderAggregator.aggregate(day_of_sales, init_database['station_a'], DAY, 'full_day')

        assert summary.total_sales_amount == Decimal('12800.00')
        assert summary.transaction_count == 3

    def test_breakdown_sums_to_totals(self, day_of_sales, init_database):
        summary = TenderAggregator.aggregate(day_of_sales, init_database['station_a'], DAY, 'full_day')
        amounts = sum(Decimal(v['amount']) for v in summary.per_fuel_type.values())
        litres = sum(Decimal(v['litres']) for v in summary.per_fuel_type.values())
        assert amounts == summary.total_sales_amount
        assert litres == summary.total_litres_sold

    def test_empty_period_is_zero(self, actor, init_database):
        summary = TenderAggregator.aggregate(actor('manager_a'), init_database['station_a'], DAY, 'night')
        assert summary.total_sales_amount == Decimal('0.00')
        assert summary.transaction_count == 0
        assert summary.per_fuel_type == {}

    def test_other_station_forbidden(self, actor, init_database):
        with pytest.raises(Forbidden):
            TenderAggregator.aggregate(actor('manager_b'), init_database['station_a'], DAY, 'morning')

    def test_prepare_via_api(self, auth_manager, day_of_sales, init_database):
        response = auth_manager.get(
            f"/api/closures/prepare?date=2024-06-01&shift=morning&stationId={init_database['station_a']}"
        )

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['totalSalesAmount'] == '11800.00'
        assert data['expectedCash'] == '11800.00'
        assert data['existingClosure'] is None
        assert len(data['tanks']) == 1

        petrol = [n for n in data['nozzles'] if n['nozzleId'] == init_database['nozzle_a1_petrol']][0]
        assert Decimal(petrol['openingReading']['cumulativeVolume']) == Decimal('1000')
        assert Decimal(petrol['closingReading']['cumulativeVolume']) == Decimal('1100')
        assert petrol['readingCount'] == 2

    def test_opening_is_last_reading_before_period(self, auth_manager, day_of_sales, init_database):
        response = auth_manager.get(
            f"/api/closures/prepare?date=2024-06-01&shift=afternoon&stationId={init_database['station_a']}"
        )

        data = response.get_json()['data']
        assert [n['nozzleId'] for n in data['nozzles']] == [init_database['nozzle_a1_petrol']]
        petrol = data['nozzles'][0]
        assert Decimal(petrol['openingReading']['cumulativeVolume']) == Decimal('1100')
        assert petrol['openingReading']['readingTime'].startswith('10:00')
        assert Decimal(petrol['closingReading']['cumulativeVolume']) == Decimal('1110')
        assert petrol['readingCount'] == 1

    def test_prepare_rejects_submitted_period(self, auth_manager, day_of_sales, init_database):
        record, _ = ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        ClosureService.submit(day_of_sales, record.id)

        response = auth_manager.get(
            f"/api/closures/prepare?date=2024-06-01&shift=morning&stationId={init_database['station_a']}"
        )
        assert response.status_code == 409


# ============================================================
# Draft save
# ============================================================

class TestSaveDraft:
    """Tests for POST /api/closures"""

    def test_expected_cash_and_variance(self, actor, reading_body, init_database):
        employee = actor('employee_a')
        ReadingService.record_reading(employee, reading_body('1000', reading_time=time(7, 0)))
        ReadingService.record_reading(employee, reading_body('1100', reading_time=time(10, 0)))

        record, created = ClosureService.save_draft(employee, _closure_body(init_database, actualCash='5950'))

        assert created is True
        assert record.total_sales_amount == Decimal('10000.00')
        assert record.expected_cash == Decimal('6000.00')
        assert record.cash_variance == Decimal('-50.00')
        assert record.status.value == 'draft'
        assert record.prepared_by == init_database['employee_a']

    def test_variance_null_without_actual_cash(self, day_of_sales, init_database):
        body = _closure_body(init_database)
        del body['actualCash']
        record, _ = ClosureService.save_draft(day_of_sales, body)
        assert record.actual_cash is None
        assert record.cash_variance is None

    def test_create_then_update(self, auth_employee, day_of_sales, init_database):
        first = auth_employee.post('/api/closures', json=_closure_body(init_database))
        second = auth_employee.post('/api/closures', json=_closure_body(init_database, cardPayments='3000'))

        assert first.status_code == 201
        assert second.status_code == 200
        assert first.get_json()['data']['id'] == second.get_json()['data']['id']
        assert second.get_json()['data']['expectedCash'] == '7300.00'
        assert DailyClosure.query.count() == 1

    def test_client_totals_are_ignored(self, day_of_sales, init_database):
        record, _ = ClosureService.save_draft(
            day_of_sales, _closure_body(init_database, totalSalesAmount='1.00'))
        assert record.total_sales_amount == Decimal('11800.00')

    def test_shift_defaults_to_full_day(self, day_of_sales, init_database):
        body = _closure_body(init_database)
        del body['shift']
        record, _ = ClosureService.save_draft(day_of_sales, body)
        assert record.shift == 'full_day'
        assert record.total_sales_amount == Decimal('12800.00')

    def test_negative_tender_rejected(self, auth_employee, init_database):
        response = auth_employee.post('/api/closures', json=_closure_body(init_database, cardPayments='-1'))
        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'ValidationError'

    def test_unknown_shift_rejected(self, auth_employee, init_database):
        response = auth_employee.post('/api/closures', json=_closure_body(init_database, shift='evening'))
        assert response.status_code == 400

    def test_stale_version_conflicts(self, day_of_sales, init_database):
        record, _ = ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        ClosureService.save_draft(day_of_sales, _closure_body(init_database, cardPayments='2600',
                                                              version=record.version))

        with pytest.raises(Conflict):
            ClosureService.save_draft(day_of_sales, _closure_body(init_database, version=record.version))

    def test_save_is_audited(self, day_of_sales, init_database):
        ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        assert ActivityLog.query.filter_by(action='closure_created').count() == 1


# ============================================================
# Workflow
# ============================================================

class TestClosureWorkflow:
    """Tests for submit and review transitions"""

    def _submitted(self, employee, init_database):
        record, _ = ClosureService.save_draft(employee, _closure_body(init_database))
        return ClosureService.submit(employee, record.id)

    def test_submit_sets_timestamp(self, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        assert record.status.value == 'submitted'
        assert record.submitted_at is not None

    def test_submit_twice_is_invalid(self, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        with pytest.raises(InvalidTransition):
            ClosureService.submit(day_of_sales, record.id)

    def test_approve(self, auth_manager, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)

        response = auth_manager.put(f'/api/closures/{record.id}/review', json={'action': 'approve'})

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['status'] == 'approved'
        assert data['approvedBy'] == init_database['manager_a']
        assert data['approvedAt'] is not None

    def test_reject_requires_reason(self, auth_manager, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)

        response = auth_manager.put(f'/api/closures/{record.id}/review', json={'action': 'reject'})

        assert response.status_code == 400
        assert db.session.get(DailyClosure, record.id).status == 'submitted'

    def test_reject_with_reason(self, actor, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        rejected = ClosureService.review(actor('manager_a'), record.id, 'reject', reason='Cash short')
        assert rejected.status.value == 'rejected'
        assert rejected.rejection_reason == 'Cash short'
        assert rejected.approved_by == init_database['manager_a']

    def test_unknown_review_action(self, actor, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        with pytest.raises(ValidationError):
            ClosureService.review(actor('manager_a'), record.id, 'maybe')

    def test_employee_cannot_review(self, auth_employee, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        response = auth_employee.put(f'/api/closures/{record.id}/review', json={'action': 'approve'})
        assert response.status_code == 403

    def test_review_draft_is_invalid(self, actor, day_of_sales, init_database):
        record, _ = ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        with pytest.raises(InvalidTransition):
            ClosureService.review(actor('manager_a'), record.id, 'approve')

    def test_approved_closure_is_immutable(self, actor, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        ClosureService.review(actor('manager_a'), record.id, 'approve')

        with pytest.raises(Conflict):
            ClosureService.save_draft(day_of_sales, _closure_body(init_database, cardPayments='0'))
        with pytest.raises(InvalidTransition):
            ClosureService.review(actor('manager_a'), record.id, 'reject', reason='late')

        stored = db.session.get(DailyClosure, record.id)
        assert stored.status == 'approved'
        assert stored.card_payments == Decimal('2500.00')

    def test_submit_refuses_stale_totals(self, day_of_sales, reading_body, init_database):
        record, _ = ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        ReadingService.record_reading(day_of_sales, reading_body('540', reading_time=time(13, 0),
                                                                 nozzle='nozzle_a1_diesel'))

        with pytest.raises(Conflict):
            ClosureService.submit(day_of_sales, record.id)
        assert db.session.get(DailyClosure, record.id).status == 'draft'

        refreshed, _ = ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        submitted = ClosureService.submit(day_of_sales, refreshed.id)
        assert submitted.total_sales_amount == Decimal('13600.00')

    def test_approval_refuses_stale_totals(self, actor, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        sale = Sale.query.filter_by(sale_date=DAY, shift='morning', fuel_type='diesel').one()
        sale.total_amount = Decimal('1900.00')
        db.session.commit()

        with pytest.raises(Conflict):
            ClosureService.review(actor('manager_a'), record.id, 'approve')
        assert db.session.get(DailyClosure, record.id).status == 'submitted'

    def test_approved_totals_match_sales(self, actor, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        approved = ClosureService.review(actor('manager_a'), record.id, 'approve')

        summary = TenderAggregator.summarize(init_database['station_a'], DAY, 'morning')
        assert approved.total_sales_amount == summary.total_sales_amount
        assert approved.cash_variance == Decimal('7750.00') - (summary.total_sales_amount - Decimal('4000.00'))

    def test_rejected_is_terminal_by_default(self, actor, day_of_sales, init_database):
        record = self._submitted(day_of_sales, init_database)
        ClosureService.review(actor('manager_a'), record.id, 'reject', reason='Recount')

        with pytest.raises(Conflict):
            ClosureService.save_draft(day_of_sales, _closure_body(init_database))

    def test_rejected_can_reopen_when_configured(self, fresh_app, actor, day_of_sales, init_database):
        fresh_app.config['CLOSURE_REOPEN_REJECTED'] = True
        record = self._submitted(day_of_sales, init_database)
        ClosureService.review(actor('manager_a'), record.id, 'reject', reason='Recount')

        reopened, created = ClosureService.save_draft(day_of_sales, _closure_body(init_database))

        assert created is False
        assert reopened.id == record.id
        assert reopened.status.value == 'draft'
        assert reopened.rejection_reason is None
        assert reopened.approved_by is None

    def test_other_station_cannot_submit(self, actor, day_of_sales, init_database):
        record, _ = ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        with pytest.raises(Forbidden):
            ClosureService.submit(actor('manager_b'), record.id)

    def test_list_is_scoped(self, auth_manager, auth_other_manager, day_of_sales, init_database):
        ClosureService.save_draft(day_of_sales, _closure_body(init_database))

        assert auth_manager.get('/api/closures').get_json()['pagination']['total'] == 1
        assert auth_other_manager.get('/api/closures').get_json()['pagination']['total'] == 0

    def test_get_missing_closure(self, auth_manager):
        response = auth_manager.get('/api/closures/9999')
        assert response.status_code == 404


# ============================================================
# Concurrent writers
# ============================================================

class TestClosureConcurrency:
    """One closure per station, date and shift; lost updates are refused"""

    def test_concurrent_create_conflicts(self, monkeypatch, day_of_sales, init_database):
        ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        # Second writer did not see the first one's row before inserting
        monkeypatch.setattr(ClosureRepo, 'find_row', lambda *args, **kwargs: None)

        with pytest.raises(Conflict) as excinfo:
            ClosureService.save_draft(day_of_sales, _closure_body(init_database, cardPayments='0'))

        assert excinfo.value.details['shift'] == 'morning'
        assert DailyClosure.query.count() == 1
        assert DailyClosure.query.one().card_payments == Decimal('2500.00')

    def test_concurrent_update_conflicts_without_version(self, day_of_sales, init_database):
        record, _ = ClosureService.save_draft(day_of_sales, _closure_body(init_database))
        loaded = db.session.get(DailyClosure, record.id)
        assert loaded.version == record.version

        # Another session bumps the row behind this session's back
        db.session.execute(
            update(DailyClosure)
            .where(DailyClosure.id == record.id)
            .values(version=DailyClosure.version + 1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(Conflict) as excinfo:
            ClosureService.submit(day_of_sales, record.id)

        assert 'concurrently' in excinfo.value.message
        assert db.session.get(DailyClosure, record.id).status == 'draft'
