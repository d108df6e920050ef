"""
Closure Service
Daily/shift cash reconciliation and its approval workflow:

    draft -> submitted -> approved | rejected

Approved closures are immutable. Rejected closures are terminal unless
CLOSURE_REOPEN_REJECTED is set, in which case saving one returns it to draft.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from fueldesk.constants import Action, ClosureStatus, ReviewAction, Shift
from fueldesk.errors import Conflict, InvalidTransition, NotFound, ValidationError
from fueldesk.models import db
from fueldesk.records import ClosureRecord
from fueldesk.repositories import ClosureRepo, StationRepo
from fueldesk.services.tender_service import TenderAggregator, closure_editable
from fueldesk.utils.audit import log_activity
from fueldesk.utils.helpers import parse_date, parse_int, parse_shift, round_money, to_decimal
from fueldesk.utils.permissions import require_access, scope_station_ids

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


def _tender(payload, key):
    value = to_decimal(payload.get(key), key, allow_none=True, minimum=0)
    return ZERO if value is None else round_money(value)


def _check_version(row, version):
    if version in (None, ''):
        return
    version = parse_int(version, 'version')
    if version != row.version:
        raise Conflict(
            'Closure was modified by someone else; reload and try again',
            {'closureId': row.id, 'expectedVersion': version, 'currentVersion': row.version}
        )


def _check_totals(row):
    """Refuse to move a closure whose stored totals no longer match its sales"""
    summary = TenderAggregator.summarize(row.station_id, row.closure_date, Shift(row.shift))
    stored = (
        Decimal(str(row.total_sales_amount or 0)),
        Decimal(str(row.total_litres_sold or 0)),
        row.transaction_count or 0,
    )
    current = (summary.total_sales_amount, summary.total_litres_sold, summary.transaction_count)
    if stored != current:
        raise Conflict(
            'Sales for this period changed after the draft was saved; save the draft again',
            {'closureId': row.id, 'storedTotal': str(stored[0]), 'currentTotal': str(current[0])}
        )


def _commit(closure_id=None):
    """Commit, mapping unique-key and optimistic-lock failures to Conflict"""
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict('A closure already exists for this station, date and shift')
    except StaleDataError:
        db.session.rollback()
        raise Conflict('Closure was modified concurrently; reload and try again',
                       {'closureId': closure_id})
    except Exception:
        db.session.rollback()
        raise


class ClosureService:
    """Service for the closure state machine"""

    @staticmethod
    def _get_row(closure_id):
        row = ClosureRepo.get_row(closure_id)
        if not row:
            raise NotFound('Closure not found', {'closureId': closure_id})
        return row

    @staticmethod
    def save_draft(actor, payload):
        """
        Create or update the draft closure for a station, date and shift

        Sales totals are recomputed from the derived sales; any totals sent
        by the client are ignored. Sales belong to the calendar date of their
        reading, so a night closure for D covers D 00:00-06:00 and D
        22:00-24:00, which are the tails of two different physical nights.

            expectedCash = totalSalesAmount - card - upi - credit
            cashVariance = actualCash - expectedCash (null without actualCash)

        Args:
            actor: Actor record
            payload: dict with stationId, closureDate, shift, cardPayments,
                upiPayments, creditSales, actualCash, notes, version

        Returns:
            (ClosureRecord, created) where created is bool

        Raises:
            Conflict: closure past draft, stale version, or concurrent create
        """
        station_id = parse_int(payload.get('stationId'), 'stationId')
        require_access(actor, station_id, Action.SAVE_CLOSURE)
        if not StationRepo.get(station_id):
            raise NotFound('Station not found', {'stationId': station_id})

        closure_date = parse_date(payload.get('closureDate') or payload.get('date'), 'closureDate')
        shift = parse_shift(payload.get('shift'), default=Shift.FULL_DAY)

        card = _tender(payload, 'cardPayments')
        upi = _tender(payload, 'upiPayments')
        credit = _tender(payload, 'creditSales')
        actual_cash = to_decimal(payload.get('actualCash'), 'actualCash', allow_none=True, minimum=0)
        if actual_cash is not None:
            actual_cash = round_money(actual_cash)

        summary = TenderAggregator.summarize(station_id, closure_date, shift)
        expected_cash = round_money(summary.total_sales_amount - card - upi - credit)
        cash_variance = None if actual_cash is None else round_money(actual_cash - expected_cash)

        row = ClosureRepo.find_row(station_id, closure_date, shift)
        created = row is None

        if created:
            row = ClosureRepo.add(
                station_id=station_id,
                closure_date=closure_date,
                shift=shift.value,
                status=ClosureStatus.DRAFT.value,
                prepared_by=actor.id,
            )
        else:
            if not closure_editable(row.status):
                raise Conflict(
                    f'Closure is {row.status} and can no longer be edited',
                    {'closureId': row.id, 'status': row.status}
                )
            _check_version(row, payload.get('version'))
            if row.status == ClosureStatus.REJECTED.value:
                logger.info(f"Closure {row.id} reopened from rejected by user {actor.id}")
                row.rejection_reason = None
                row.approved_by = None
                row.approved_at = None
            row.status = ClosureStatus.DRAFT.value

        row.total_sales_amount = summary.total_sales_amount
        row.total_litres_sold = summary.total_litres_sold
        row.per_fuel_type_breakdown = summary.per_fuel_type
        row.transaction_count = summary.transaction_count
        row.card_payments = card
        row.upi_payments = upi
        row.credit_sales = credit
        row.actual_cash = actual_cash
        row.expected_cash = expected_cash
        row.cash_variance = cash_variance
        if 'notes' in payload:
            row.notes = payload.get('notes')

        try:
            db.session.flush()
        except (IntegrityError, StaleDataError):
            db.session.rollback()
            raise Conflict('A closure already exists for this station, date and shift',
                           {'stationId': station_id, 'closureDate': closure_date.isoformat(),
                            'shift': shift.value})

        log_activity(actor, 'closure_created' if created else 'closure_updated', 'closure', row.id, {
            'closureDate': closure_date.isoformat(),
            'shift': shift.value,
            'expectedCash': str(expected_cash),
            'cashVariance': None if cash_variance is None else str(cash_variance),
        }, station_id=station_id)
        _commit(row.id)

        logger.info(
            f"Closure {row.id} {'created' if created else 'updated'} for station {station_id} "
            f"{closure_date} {shift.value}: expected {expected_cash}, variance {cash_variance}"
        )
        return ClosureRepo.to_record(row), created

    @staticmethod
    def submit(actor, closure_id, version=None) -> ClosureRecord:
        """draft -> submitted, once the stored totals still match the sales"""
        row = ClosureService._get_row(closure_id)
        require_access(actor, row.station_id, Action.SUBMIT_CLOSURE)

        if row.status != ClosureStatus.DRAFT.value:
            raise InvalidTransition(
                f'Only draft closures can be submitted (current status: {row.status})',
                {'closureId': row.id, 'status': row.status}
            )
        _check_version(row, version)
        _check_totals(row)

        row.status = ClosureStatus.SUBMITTED.value
        row.submitted_at = datetime.utcnow()
        log_activity(actor, 'closure_submitted', 'closure', row.id, station_id=row.station_id)
        _commit(row.id)

        logger.info(f"Closure {row.id} submitted by user {actor.id}")
        return ClosureRepo.to_record(row)

    @staticmethod
    def review(actor, closure_id, action, reason=None, version=None) -> ClosureRecord:
        """
        submitted -> approved | rejected

        Manager or above. A rejection must carry a reason. Both outcomes
        stamp approvedBy/approvedAt with the reviewer and time. Approval
        re-checks the stored totals against the current sales.
        """
        row = ClosureService._get_row(closure_id)
        require_access(actor, row.station_id, Action.REVIEW_CLOSURE)

        try:
            action = ReviewAction(action)
        except ValueError:
            raise ValidationError("action must be 'approve' or 'reject'", {'field': 'action'})

        if row.status != ClosureStatus.SUBMITTED.value:
            raise InvalidTransition(
                f'Only submitted closures can be reviewed (current status: {row.status})',
                {'closureId': row.id, 'status': row.status}
            )

        reason = (reason or '').strip()
        if action == ReviewAction.REJECT and not reason:
            raise ValidationError('A rejection reason is required', {'field': 'reason'})
        _check_version(row, version)

        if action == ReviewAction.APPROVE:
            _check_totals(row)
            row.status = ClosureStatus.APPROVED.value
        else:
            row.status = ClosureStatus.REJECTED.value
            row.rejection_reason = reason
        row.approved_by = actor.id
        row.approved_at = datetime.utcnow()

        log_activity(actor, f'closure_{row.status}', 'closure', row.id,
                     {'reason': reason or None}, station_id=row.station_id)
        _commit(row.id)

        logger.info(f"Closure {row.id} {row.status} by user {actor.id}")
        return ClosureRepo.to_record(row)

    @staticmethod
    def get(actor, closure_id) -> ClosureRecord:
        row = ClosureService._get_row(closure_id)
        require_access(actor, row.station_id, Action.VIEW)
        return ClosureRepo.to_record(row)

    @staticmethod
    def list(actor, filters, page=1, per_page=20):
        """Closures visible to the actor; out-of-scope stations drop out silently"""
        requested = filters.get('stationId')
        requested = parse_int(requested, 'stationId') if requested not in (None, '') else None

        status = filters.get('status')
        if status:
            try:
                status = ClosureStatus(status)
            except ValueError:
                raise ValidationError(f'Unknown status: {status}', {'field': 'status'})
        else:
            status = None

        shift = parse_shift(filters.get('shift')) if filters.get('shift') else None
        date_from = parse_date(filters.get('dateFrom'), 'dateFrom') if filters.get('dateFrom') else None
        date_to = parse_date(filters.get('dateTo'), 'dateTo') if filters.get('dateTo') else None

        return ClosureRepo.list(
            station_ids=scope_station_ids(actor, requested),
            status=status,
            shift=shift,
            date_from=date_from,
            date_to=date_to,
            page=page,
            per_page=per_page,
        )
