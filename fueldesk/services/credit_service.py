"""
Credit Service
Creditor accounts, credit sales and settlement allocation.

Outstanding balance of a creditor is the sum of its credit transactions less
every settlement allocation applied to them. Money received in a settlement
but not allocated to any credit stays on the settlement row.
"""

import logging
from collections import OrderedDict
from datetime import date
from decimal import Decimal

from fueldesk.constants import Action, TransactionType
from fueldesk.errors import CreditLimitExceeded, NotFound, OverAllocation, ValidationError
from fueldesk.models import db
from fueldesk.records import SettlementRecord
from fueldesk.repositories import CreditRepo, StationRepo
from fueldesk.utils.audit import log_activity
from fueldesk.utils.helpers import parse_date, parse_int, round_money, round_volume, to_decimal
from fueldesk.utils.permissions import require_access, scope_station_ids

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


def _positive_money(value, field_name, allow_none=False):
    amount = to_decimal(value, field_name, allow_none=allow_none)
    if amount is None:
        return None
    amount = round_money(amount)
    if amount <= 0:
        raise ValidationError(f'{field_name} must be greater than zero', {'field': field_name})
    return amount


class CreditService:
    """Service for creditor accounts and settlements"""

    @staticmethod
    def _creditor(creditor_id):
        creditor = CreditRepo.get_creditor(creditor_id)
        if not creditor:
            raise NotFound('Creditor not found', {'creditorId': creditor_id})
        return creditor

    @staticmethod
    def create_creditor(actor, station_id, payload):
        """Register a credit customer at a station (manager or above)"""
        require_access(actor, station_id, Action.MANAGE_CREDITORS)
        if not StationRepo.get(station_id):
            raise NotFound('Station not found', {'stationId': station_id})

        name = (payload.get('name') or '').strip()
        if not name:
            raise ValidationError('Creditor name is required', {'field': 'name'})
        credit_limit = to_decimal(payload.get('creditLimit'), 'creditLimit', allow_none=True, minimum=0)

        try:
            row = CreditRepo.add_creditor(
                station_id=station_id,
                name=name,
                contact_person=payload.get('contactPerson'),
                phone=payload.get('phone'),
                credit_limit=round_money(credit_limit) if credit_limit is not None else ZERO,
            )
            log_activity(actor, 'creditor_created', 'creditor', row.id, {'name': name},
                         station_id=station_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Creditor {row.id} ({name}) created at station {station_id}")
        return CreditRepo.creditor_record(row)

    @staticmethod
    def list_creditors(actor, station_id=None):
        return CreditRepo.creditors_for(scope_station_ids(actor, station_id))

    @staticmethod
    def record_credit(actor, creditor_id, payload):
        """
        Record fuel sold on credit

        A creditor with a positive credit limit may not go above it; a limit
        of zero means no limit.

        Raises:
            CreditLimitExceeded: the sale would take the balance over the limit
        """
        creditor = CreditService._creditor(creditor_id)
        require_access(actor, creditor.station_id, Action.RECORD_CREDIT)
        if not creditor.is_active:
            raise ValidationError('Creditor account is inactive', {'creditorId': creditor_id})

        amount = _positive_money(payload.get('amount'), 'amount')
        transaction_date = parse_date(payload.get('transactionDate'), 'transactionDate', default=date.today())
        litres = to_decimal(payload.get('litres'), 'litres', allow_none=True, minimum=0)

        limit = Decimal(str(creditor.credit_limit or 0))
        if limit > 0:
            outstanding = CreditRepo.outstanding_balance(creditor.id)
            if outstanding + amount > limit:
                raise CreditLimitExceeded(
                    f'Credit limit of {limit} would be exceeded',
                    {'creditLimit': str(limit), 'outstanding': str(outstanding), 'requested': str(amount)}
                )

        try:
            row = CreditRepo.add_transaction(
                station_id=creditor.station_id,
                creditor_id=creditor.id,
                transaction_type=TransactionType.CREDIT.value,
                amount=amount,
                transaction_date=transaction_date,
                reference_number=payload.get('referenceNumber'),
                fuel_type=payload.get('fuelType'),
                litres=round_volume(litres) if litres is not None else None,
                vehicle_number=payload.get('vehicleNumber'),
                notes=payload.get('notes'),
                entered_by=actor.id,
            )
            log_activity(actor, 'credit_recorded', 'credit_transaction', row.id,
                         {'creditorId': creditor.id, 'amount': str(amount)},
                         station_id=creditor.station_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Credit {row.id} of {amount} recorded for creditor {creditor.id}")
        return CreditRepo.transaction_record(row)

    @staticmethod
    def _requested_allocations(raw):
        """Validate allocation lines and merge repeats of the same credit"""
        if not isinstance(raw, list):
            raise ValidationError('allocations must be a list', {'field': 'allocations'})

        merged = OrderedDict()
        for index, line in enumerate(raw):
            if not isinstance(line, dict):
                raise ValidationError('Each allocation must be an object', {'index': index})
            credit_id = parse_int(line.get('creditTransactionId'), 'creditTransactionId')
            amount = _positive_money(line.get('amount'), 'amount')
            merged[credit_id] = merged.get(credit_id, ZERO) + amount
        return merged

    @staticmethod
    def _fifo(credits, amount):
        """Spread an amount over the oldest outstanding credits first"""
        outstanding_total = sum((c.outstanding for c in credits), ZERO)
        if amount > outstanding_total:
            raise OverAllocation(
                'Settlement exceeds the outstanding balance',
                {'amount': str(amount), 'outstanding': str(outstanding_total)}
            )

        plan = OrderedDict()
        remaining = amount
        for credit in credits:
            if remaining <= 0:
                break
            if credit.outstanding <= 0:
                continue
            portion = min(remaining, credit.outstanding)
            plan[credit.id] = portion
            remaining -= portion
        return plan

    @staticmethod
    def settle(actor, creditor_id, payload) -> SettlementRecord:
        """
        Apply a settlement against a creditor's outstanding credits

        With explicit allocations each line must be positive, belong to this
        creditor and keep the credit's cumulative allocations within its
        amount. The settlement amount defaults to the sum of the lines; when
        given, the lines may not exceed it. Without allocations the amount
        is spread oldest credit first.

        Everything is written in one transaction: either the settlement and
        all of its allocations are stored, or nothing is.

        Raises:
            ValidationError, NotFound, OverAllocation, Forbidden
        """
        creditor = CreditService._creditor(creditor_id)
        require_access(actor, creditor.station_id, Action.SETTLE_CREDIT)

        amount = _positive_money(payload.get('amount'), 'amount', allow_none=True)
        raw_allocations = payload.get('allocations')
        transaction_date = parse_date(payload.get('transactionDate') or payload.get('date'),
                                      'transactionDate', default=date.today())

        if not raw_allocations and amount is None:
            raise ValidationError('Either amount or allocations is required', {'field': 'allocations'})

        try:
            credits = CreditRepo.credits_with_allocated(creditor.id, lock=True)

            if raw_allocations:
                requested = CreditService._requested_allocations(raw_allocations)
                by_id = {c.id: c for c in credits}

                for credit_id, portion in requested.items():
                    credit = by_id.get(credit_id)
                    if credit is None:
                        raise NotFound('Credit transaction not found for this creditor',
                                       {'creditTransactionId': credit_id})
                    if credit.allocated + portion > credit.amount:
                        raise OverAllocation(
                            'Allocation exceeds the outstanding amount of the credit',
                            {'creditTransactionId': credit_id, 'outstanding': str(credit.outstanding),
                             'requested': str(portion)}
                        )

                total = sum(requested.values(), ZERO)
                if amount is None:
                    amount = total
                elif total > amount:
                    raise OverAllocation(
                        'Allocations exceed the settlement amount',
                        {'amount': str(amount), 'allocated': str(total)}
                    )
                plan = requested
            else:
                plan = CreditService._fifo(credits, amount)

            settlement = CreditRepo.add_transaction(
                station_id=creditor.station_id,
                creditor_id=creditor.id,
                transaction_type=TransactionType.SETTLEMENT.value,
                amount=amount,
                transaction_date=transaction_date,
                reference_number=payload.get('referenceNumber'),
                notes=payload.get('notes'),
                entered_by=actor.id,
            )
            allocations = [
                CreditRepo.add_allocation(settlement.id, credit_id, portion)
                for credit_id, portion in plan.items()
            ]
            log_activity(actor, 'credit_settled', 'credit_transaction', settlement.id, {
                'creditorId': creditor.id,
                'amount': str(amount),
                'allocations': {str(k): str(v) for k, v in plan.items()},
            }, station_id=creditor.station_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        allocated = sum((a.amount for a in allocations), ZERO)
        balance = CreditRepo.outstanding_balance(creditor.id)
        logger.info(
            f"Settlement {settlement.id} of {amount} for creditor {creditor.id}: "
            f"{allocated} allocated over {len(allocations)} credits, balance {balance}"
        )
        return SettlementRecord(
            settlement=CreditRepo.transaction_record(settlement, allocated),
            allocations=allocations,
            outstanding_balance=balance,
        )

    @staticmethod
    def get_ledger(actor, creditor_id):
        """
        Creditor statement: every transaction oldest first with its
        allocated and (for credits) outstanding amount
        """
        creditor = CreditService._creditor(creditor_id)
        require_access(actor, creditor.station_id, Action.VIEW)

        rows = CreditRepo.transactions(creditor.id)
        credit_ids = [r.id for r in rows if r.transaction_type == TransactionType.CREDIT.value]
        settlement_ids = [r.id for r in rows if r.transaction_type == TransactionType.SETTLEMENT.value]
        allocated = CreditRepo.allocated_by_credit(credit_ids)
        allocated.update(CreditRepo.allocated_by_settlement(settlement_ids))

        transactions = [CreditRepo.transaction_record(r, allocated.get(r.id)) for r in rows]
        unallocated = sum(
            (t.amount - t.allocated for t in transactions
             if t.transaction_type == TransactionType.SETTLEMENT.value),
            ZERO
        )

        return {
            'creditor': CreditRepo.creditor_record(creditor).to_dict(),
            'transactions': [t.to_dict() for t in transactions],
            'outstandingBalance': str(CreditRepo.outstanding_balance(creditor.id)),
            'unallocatedSettlements': str(unallocated),
        }
