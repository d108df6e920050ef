"""
Repositories
Data access behind the services. Each repository reads and writes ORM rows
and hands plain records back; none of them commits.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func

from fueldesk.constants import ClosureStatus, Shift, TransactionType
from fueldesk.models import (
    db, Station, Pump, Nozzle, Tank, FuelPrice, NozzleReading, Sale,
    DailyClosure, Creditor, CreditTransaction, SettlementAllocation
)
from fueldesk.records import (
    ReadingRecord, PriceRecord, SaleRecord, ClosureRecord, CreditorRecord,
    CreditTransactionRecord, AllocationRecord
)
from fueldesk.utils.helpers import round_money


def _dec(value, default='0'):
    if value is None:
        return Decimal(default)
    return Decimal(str(value))


class StationRepo:
    """Stations and their equipment"""

    @staticmethod
    def get(station_id) -> Optional[Station]:
        return db.session.get(Station, station_id)

    @staticmethod
    def get_nozzle(nozzle_id) -> Optional[Nozzle]:
        return db.session.get(Nozzle, nozzle_id)

    @staticmethod
    def find_nozzle(station_id, pump_sno, nozzle_number) -> Optional[Nozzle]:
        return Nozzle.query.join(Pump).filter(
            Pump.station_id == station_id,
            Pump.pump_sno == str(pump_sno),
            Nozzle.nozzle_number == nozzle_number
        ).first()

    @staticmethod
    def pumps_by_id(station_id) -> Dict[int, Pump]:
        return {p.id: p for p in Pump.query.filter_by(station_id=station_id).all()}

    @staticmethod
    def active_tanks(station_id) -> List[Tank]:
        return Tank.query.filter_by(station_id=station_id, is_active=True).order_by(Tank.tank_number).all()


class ReadingRepo:
    """Raw nozzle readings; append-only apart from supersede marks"""

    @staticmethod
    def to_record(row) -> ReadingRecord:
        return ReadingRecord(
            id=row.id,
            station_id=row.station_id,
            pump_id=row.pump_id,
            nozzle_id=row.nozzle_id,
            fuel_type=row.fuel_type,
            cumulative_volume=_dec(row.cumulative_volume),
            reading_date=row.reading_date,
            reading_time=row.reading_time,
            is_manual_entry=bool(row.is_manual_entry),
            source_confidence=None if row.source_confidence is None else _dec(row.source_confidence),
            entered_by=row.entered_by,
            supersedes_id=row.supersedes_id,
            superseded_by_id=row.superseded_by_id,
            created_at=row.created_at,
        )

    @staticmethod
    def get_row(reading_id) -> Optional[NozzleReading]:
        return db.session.get(NozzleReading, reading_id)

    @staticmethod
    def get(reading_id) -> Optional[ReadingRecord]:
        row = db.session.get(NozzleReading, reading_id)
        return ReadingRepo.to_record(row) if row else None

    @staticmethod
    def add(**fields) -> NozzleReading:
        row = NozzleReading(**fields)
        db.session.add(row)
        db.session.flush()
        return row

    @staticmethod
    def delete(row):
        db.session.delete(row)
        db.session.flush()

    @staticmethod
    def find_active(nozzle_id, reading_date, reading_time, manual=None) -> List[ReadingRecord]:
        query = NozzleReading.query.filter(
            NozzleReading.nozzle_id == nozzle_id,
            NozzleReading.reading_date == reading_date,
            NozzleReading.reading_time == reading_time,
            NozzleReading.superseded_by_id.is_(None)
        )
        if manual is not None:
            query = query.filter(NozzleReading.is_manual_entry == manual)
        return [ReadingRepo.to_record(r) for r in query.order_by(NozzleReading.id).all()]

    @staticmethod
    def find_by_key(nozzle_id, reading_date, reading_time, manual) -> List[ReadingRecord]:
        """Every reading stored at this key, superseded ones included"""
        rows = NozzleReading.query.filter(
            NozzleReading.nozzle_id == nozzle_id,
            NozzleReading.reading_date == reading_date,
            NozzleReading.reading_time == reading_time,
            NozzleReading.is_manual_entry == manual
        ).order_by(NozzleReading.id).all()
        return [ReadingRepo.to_record(r) for r in rows]

    @staticmethod
    def current_version(reading: ReadingRecord) -> ReadingRecord:
        """Follow superseded_by links to the reading now in effect"""
        while reading.superseded_by_id is not None:
            successor = ReadingRepo.get(reading.superseded_by_id)
            if successor is None:
                break
            reading = successor
        return reading

    @staticmethod
    def active_for_nozzle(nozzle_id) -> List[ReadingRecord]:
        rows = NozzleReading.query.filter(
            NozzleReading.nozzle_id == nozzle_id,
            NozzleReading.superseded_by_id.is_(None)
        ).order_by(NozzleReading.id).all()
        return [ReadingRepo.to_record(r) for r in rows]

    @staticmethod
    def active_nozzle_ids(station_id) -> List[int]:
        rows = db.session.query(NozzleReading.nozzle_id).filter(
            NozzleReading.station_id == station_id,
            NozzleReading.superseded_by_id.is_(None)
        ).distinct().all()
        return sorted(r.nozzle_id for r in rows)

    @staticmethod
    def active_for_day(station_id, reading_date) -> List[ReadingRecord]:
        rows = NozzleReading.query.filter(
            NozzleReading.station_id == station_id,
            NozzleReading.reading_date == reading_date,
            NozzleReading.superseded_by_id.is_(None)
        ).order_by(NozzleReading.id).all()
        return [ReadingRepo.to_record(r) for r in rows]

    @staticmethod
    def list(station_ids=None, nozzle_id=None, date_from=None, date_to=None,
             include_superseded=False, page=1, per_page=50):
        query = NozzleReading.query
        if station_ids is not None:
            query = query.filter(NozzleReading.station_id.in_(station_ids or [-1]))
        if nozzle_id is not None:
            query = query.filter(NozzleReading.nozzle_id == nozzle_id)
        if date_from is not None:
            query = query.filter(NozzleReading.reading_date >= date_from)
        if date_to is not None:
            query = query.filter(NozzleReading.reading_date <= date_to)
        if not include_superseded:
            query = query.filter(NozzleReading.superseded_by_id.is_(None))
        query = query.order_by(
            NozzleReading.reading_date.desc(), NozzleReading.reading_time.desc(), NozzleReading.id.desc()
        )
        pagination = query.paginate(page=page, per_page=per_page, error_out=False)
        return [ReadingRepo.to_record(r) for r in pagination.items], pagination.total


class PriceRepo:
    """Fuel price table"""

    @staticmethod
    def to_record(row) -> PriceRecord:
        return PriceRecord(
            id=row.id,
            station_id=row.station_id,
            fuel_type=row.fuel_type,
            price=_dec(row.price),
            valid_from=row.valid_from,
        )

    @staticmethod
    def for_station(station_id, fuel_types: Optional[Iterable[str]] = None) -> List[PriceRecord]:
        query = FuelPrice.query.filter(FuelPrice.station_id == station_id)
        if fuel_types is not None:
            query = query.filter(FuelPrice.fuel_type.in_(list(fuel_types)))
        rows = query.order_by(FuelPrice.fuel_type, FuelPrice.valid_from, FuelPrice.id).all()
        return [PriceRepo.to_record(r) for r in rows]

    @staticmethod
    def effective(station_id, fuel_type, at) -> Optional[PriceRecord]:
        row = FuelPrice.query.filter(
            FuelPrice.station_id == station_id,
            FuelPrice.fuel_type == fuel_type,
            FuelPrice.valid_from <= at
        ).order_by(FuelPrice.valid_from.desc(), FuelPrice.id.desc()).first()
        return PriceRepo.to_record(row) if row else None

    @staticmethod
    def add(**fields) -> PriceRecord:
        row = FuelPrice(**fields)
        db.session.add(row)
        db.session.flush()
        return PriceRepo.to_record(row)


class SaleRepo:
    """Derived sales"""

    @staticmethod
    def to_record(row) -> SaleRecord:
        return SaleRecord(
            id=row.id,
            station_id=row.station_id,
            pump_id=row.pump_id,
            nozzle_id=row.nozzle_id,
            fuel_type=row.fuel_type,
            delta_volume=_dec(row.delta_volume),
            price_per_litre=_dec(row.price_per_litre),
            total_amount=_dec(row.total_amount),
            shift=row.shift,
            sale_date=row.sale_date,
            source_reading_id=row.source_reading_id,
            previous_reading_id=row.previous_reading_id,
            needs_review=bool(row.needs_review),
        )

    @staticmethod
    def rows_for_nozzle(nozzle_id) -> Dict[int, Sale]:
        rows = Sale.query.filter_by(nozzle_id=nozzle_id).all()
        return {r.source_reading_id: r for r in rows}

    @staticmethod
    def insert(record: SaleRecord) -> Sale:
        row = Sale(
            station_id=record.station_id,
            pump_id=record.pump_id,
            nozzle_id=record.nozzle_id,
            source_reading_id=record.source_reading_id,
        )
        SaleRepo.apply(row, record)
        db.session.add(row)
        return row

    @staticmethod
    def apply(row, record: SaleRecord):
        row.pump_id = record.pump_id
        row.fuel_type = record.fuel_type
        row.delta_volume = record.delta_volume
        row.price_per_litre = record.price_per_litre
        row.total_amount = record.total_amount
        row.shift = record.shift
        row.sale_date = record.sale_date
        row.previous_reading_id = record.previous_reading_id
        row.needs_review = record.needs_review

    @staticmethod
    def delete(row):
        db.session.delete(row)

    @staticmethod
    def totals_by_fuel_type(station_id, sale_date, shift):
        """
        Sum sales per fuel type for a period in a single SELECT.

        Returns:
            list of (fuel_type, amount, litres, count) rows
        """
        query = db.session.query(
            Sale.fuel_type,
            func.sum(Sale.total_amount).label('amount'),
            func.sum(Sale.delta_volume).label('litres'),
            func.count(Sale.id).label('count')
        ).filter(
            Sale.station_id == station_id,
            Sale.sale_date == sale_date
        )
        if shift != Shift.FULL_DAY:
            query = query.filter(Sale.shift == shift.value)
        return query.group_by(Sale.fuel_type).order_by(Sale.fuel_type).all()


class ClosureRepo:
    """Daily closures"""

    @staticmethod
    def to_record(row) -> ClosureRecord:
        return ClosureRecord(
            id=row.id,
            station_id=row.station_id,
            closure_date=row.closure_date,
            shift=row.shift,
            total_sales_amount=_dec(row.total_sales_amount),
            total_litres_sold=_dec(row.total_litres_sold),
            per_fuel_type_breakdown=row.per_fuel_type_breakdown or {},
            transaction_count=row.transaction_count or 0,
            expected_cash=_dec(row.expected_cash),
            actual_cash=None if row.actual_cash is None else _dec(row.actual_cash),
            card_payments=_dec(row.card_payments),
            upi_payments=_dec(row.upi_payments),
            credit_sales=_dec(row.credit_sales),
            cash_variance=None if row.cash_variance is None else _dec(row.cash_variance),
            status=ClosureStatus(row.status),
            prepared_by=row.prepared_by,
            version=row.version,
            submitted_at=row.submitted_at,
            approved_by=row.approved_by,
            approved_at=row.approved_at,
            rejection_reason=row.rejection_reason,
            notes=row.notes,
        )

    @staticmethod
    def get_row(closure_id) -> Optional[DailyClosure]:
        return db.session.get(DailyClosure, closure_id)

    @staticmethod
    def find_row(station_id, closure_date, shift) -> Optional[DailyClosure]:
        return DailyClosure.query.filter_by(
            station_id=station_id,
            closure_date=closure_date,
            shift=shift.value
        ).first()

    @staticmethod
    def add(**fields) -> DailyClosure:
        row = DailyClosure(**fields)
        db.session.add(row)
        return row

    @staticmethod
    def locked_periods(station_id, dates):
        """(date, shift) pairs whose closure is submitted or approved among the given dates"""
        if not dates:
            return set()
        rows = db.session.query(DailyClosure.closure_date, DailyClosure.shift).filter(
            DailyClosure.station_id == station_id,
            DailyClosure.closure_date.in_(list(dates)),
            DailyClosure.status.in_([ClosureStatus.SUBMITTED.value, ClosureStatus.APPROVED.value])
        ).all()
        return {(r.closure_date, r.shift) for r in rows}

    @staticmethod
    def list(station_ids=None, status=None, shift=None, date_from=None, date_to=None,
             page=1, per_page=20):
        query = DailyClosure.query
        if station_ids is not None:
            query = query.filter(DailyClosure.station_id.in_(station_ids or [-1]))
        if status is not None:
            query = query.filter(DailyClosure.status == status.value)
        if shift is not None:
            query = query.filter(DailyClosure.shift == shift.value)
        if date_from is not None:
            query = query.filter(DailyClosure.closure_date >= date_from)
        if date_to is not None:
            query = query.filter(DailyClosure.closure_date <= date_to)
        query = query.order_by(DailyClosure.closure_date.desc(), DailyClosure.id.desc())
        pagination = query.paginate(page=page, per_page=per_page, error_out=False)
        return [ClosureRepo.to_record(r) for r in pagination.items], pagination.total


class CreditRepo:
    """Creditors, credit transactions and settlement allocations"""

    @staticmethod
    def creditor_record(row) -> CreditorRecord:
        return CreditorRecord(
            id=row.id,
            station_id=row.station_id,
            name=row.name,
            credit_limit=_dec(row.credit_limit),
            is_active=bool(row.is_active),
            contact_person=row.contact_person,
            phone=row.phone,
        )

    @staticmethod
    def transaction_record(row, allocated=None) -> CreditTransactionRecord:
        return CreditTransactionRecord(
            id=row.id,
            station_id=row.station_id,
            creditor_id=row.creditor_id,
            transaction_type=row.transaction_type,
            amount=_dec(row.amount),
            transaction_date=row.transaction_date,
            reference_number=row.reference_number,
            allocated=_dec(allocated),
        )

    @staticmethod
    def get_creditor(creditor_id) -> Optional[Creditor]:
        return db.session.get(Creditor, creditor_id)

    @staticmethod
    def add_creditor(**fields) -> Creditor:
        row = Creditor(**fields)
        db.session.add(row)
        db.session.flush()
        return row

    @staticmethod
    def creditors_for(station_ids=None) -> List[CreditorRecord]:
        query = Creditor.query
        if station_ids is not None:
            query = query.filter(Creditor.station_id.in_(station_ids or [-1]))
        return [CreditRepo.creditor_record(r) for r in query.order_by(Creditor.name).all()]

    @staticmethod
    def add_transaction(**fields) -> CreditTransaction:
        row = CreditTransaction(**fields)
        db.session.add(row)
        db.session.flush()
        return row

    @staticmethod
    def add_allocation(settlement_id, credit_transaction_id, amount) -> AllocationRecord:
        row = SettlementAllocation(
            settlement_id=settlement_id,
            credit_transaction_id=credit_transaction_id,
            amount=amount,
        )
        db.session.add(row)
        return AllocationRecord(
            credit_transaction_id=credit_transaction_id,
            settlement_id=settlement_id,
            amount=amount,
        )

    @staticmethod
    def credits_with_allocated(creditor_id, credit_ids=None, lock=False) -> List[CreditTransactionRecord]:
        """
        Credit transactions of a creditor with the amount already allocated.

        Ordered oldest first. With lock=True the credit rows are selected
        FOR UPDATE on dialects that support it.
        """
        query = CreditTransaction.query.filter(
            CreditTransaction.creditor_id == creditor_id,
            CreditTransaction.transaction_type == TransactionType.CREDIT.value
        )
        if credit_ids is not None:
            query = query.filter(CreditTransaction.id.in_(list(credit_ids)))
        if lock:
            query = query.with_for_update()
        rows = query.order_by(CreditTransaction.transaction_date, CreditTransaction.id).all()

        allocated = CreditRepo.allocated_by_credit([r.id for r in rows])
        return [CreditRepo.transaction_record(r, allocated.get(r.id)) for r in rows]

    @staticmethod
    def allocated_by_credit(credit_ids) -> Dict[int, Decimal]:
        if not credit_ids:
            return {}
        rows = db.session.query(
            SettlementAllocation.credit_transaction_id,
            func.sum(SettlementAllocation.amount)
        ).filter(
            SettlementAllocation.credit_transaction_id.in_(list(credit_ids))
        ).group_by(SettlementAllocation.credit_transaction_id).all()
        return {cid: round_money(_dec(total)) for cid, total in rows}

    @staticmethod
    def allocated_by_settlement(settlement_ids) -> Dict[int, Decimal]:
        if not settlement_ids:
            return {}
        rows = db.session.query(
            SettlementAllocation.settlement_id,
            func.sum(SettlementAllocation.amount)
        ).filter(
            SettlementAllocation.settlement_id.in_(list(settlement_ids))
        ).group_by(SettlementAllocation.settlement_id).all()
        return {sid: round_money(_dec(total)) for sid, total in rows}

    @staticmethod
    def transactions(creditor_id) -> List[CreditTransaction]:
        return CreditTransaction.query.filter_by(creditor_id=creditor_id).order_by(
            CreditTransaction.transaction_date, CreditTransaction.id
        ).all()

    @staticmethod
    def outstanding_balance(creditor_id) -> Decimal:
        """sum(credit) - sum(allocations applied to those credits)"""
        credit_total = db.session.query(
            func.coalesce(func.sum(CreditTransaction.amount), 0)
        ).filter(
            CreditTransaction.creditor_id == creditor_id,
            CreditTransaction.transaction_type == TransactionType.CREDIT.value
        ).scalar()

        allocated_total = db.session.query(
            func.coalesce(func.sum(SettlementAllocation.amount), 0)
        ).join(
            CreditTransaction, SettlementAllocation.credit_transaction_id == CreditTransaction.id
        ).filter(
            CreditTransaction.creditor_id == creditor_id
        ).scalar()

        return round_money(_dec(credit_total) - _dec(allocated_total))
