"""
Plain Data Records
Immutable values handed between repositories, services and routes.
Business rules live in the services, never on these records.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from fueldesk.constants import ClosureStatus, Role


def _num(value):
    return None if value is None else str(value)


def _iso(value):
    return None if value is None else value.isoformat()


@dataclass(frozen=True)
class Actor:
    """Caller identity supplied by the identity layer on every call"""
    id: int
    role: Role
    station_ids: FrozenSet[int] = frozenset()

    @property
    def is_super_admin(self):
        return self.role == Role.SUPER_ADMIN


@dataclass(frozen=True)
class ReadingRecord:
    id: Optional[int]
    station_id: int
    pump_id: int
    nozzle_id: int
    fuel_type: str
    cumulative_volume: Decimal
    reading_date: date
    reading_time: time
    is_manual_entry: bool = True
    source_confidence: Optional[Decimal] = None
    entered_by: Optional[int] = None
    supersedes_id: Optional[int] = None
    superseded_by_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def timestamp(self):
        return datetime.combine(self.reading_date, self.reading_time)

    @property
    def is_superseded(self):
        return self.superseded_by_id is not None

    def to_dict(self):
        return {
            'id': self.id,
            'stationId': self.station_id,
            'pumpId': self.pump_id,
            'nozzleId': self.nozzle_id,
            'fuelType': self.fuel_type,
            'cumulativeVolume': _num(self.cumulative_volume),
            'readingDate': _iso(self.reading_date),
            'readingTime': _iso(self.reading_time),
            'isManualEntry': self.is_manual_entry,
            'sourceConfidence': _num(self.source_confidence),
            'enteredBy': self.entered_by,
            'supersedesId': self.supersedes_id,
            'supersededById': self.superseded_by_id,
        }


@dataclass(frozen=True)
class PriceRecord:
    station_id: int
    fuel_type: str
    price: Decimal
    valid_from: datetime
    id: Optional[int] = None

    def to_dict(self):
        return {
            'id': self.id,
            'stationId': self.station_id,
            'fuelType': self.fuel_type,
            'price': _num(self.price),
            'validFrom': _iso(self.valid_from),
        }


@dataclass(frozen=True)
class SaleRecord:
    station_id: int
    pump_id: int
    nozzle_id: int
    fuel_type: str
    delta_volume: Decimal
    price_per_litre: Decimal
    total_amount: Decimal
    shift: str
    sale_date: date
    source_reading_id: int
    previous_reading_id: Optional[int] = None
    needs_review: bool = False
    id: Optional[int] = None

    def key_fields(self):
        """Fields compared when deciding whether a stored sale changed"""
        return (
            self.pump_id, self.nozzle_id, self.fuel_type, self.delta_volume,
            self.price_per_litre, self.total_amount, self.shift, self.sale_date,
            self.previous_reading_id, self.needs_review,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'stationId': self.station_id,
            'pumpId': self.pump_id,
            'nozzleId': self.nozzle_id,
            'fuelType': self.fuel_type,
            'deltaVolume': _num(self.delta_volume),
            'pricePerLitre': _num(self.price_per_litre),
            'totalAmount': _num(self.total_amount),
            'shift': self.shift,
            'saleDate': _iso(self.sale_date),
            'sourceReadingId': self.source_reading_id,
            'previousReadingId': self.previous_reading_id,
            'needsReview': self.needs_review,
        }


@dataclass(frozen=True)
class DerivationIssue:
    """Reportable, non-fatal problem found while deriving one reading pair"""
    code: str
    message: str
    nozzle_id: int
    reading_id: Optional[int] = None
    previous_reading_id: Optional[int] = None

    def to_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'nozzleId': self.nozzle_id,
            'readingId': self.reading_id,
            'previousReadingId': self.previous_reading_id,
        }


@dataclass(frozen=True)
class SalesSummary:
    station_id: int
    closure_date: date
    shift: str
    total_sales_amount: Decimal
    total_litres_sold: Decimal
    transaction_count: int
    per_fuel_type: Dict[str, Dict[str, object]] = field(default_factory=dict)

    def to_dict(self):
        return {
            'stationId': self.station_id,
            'closureDate': _iso(self.closure_date),
            'shift': self.shift,
            'totalSalesAmount': _num(self.total_sales_amount),
            'totalLitresSold': _num(self.total_litres_sold),
            'transactionCount': self.transaction_count,
            'perFuelType': self.per_fuel_type,
        }


@dataclass(frozen=True)
class ClosureRecord:
    id: int
    station_id: int
    closure_date: date
    shift: str
    total_sales_amount: Decimal
    total_litres_sold: Decimal
    per_fuel_type_breakdown: Dict[str, Dict[str, object]]
    transaction_count: int
    expected_cash: Decimal
    actual_cash: Optional[Decimal]
    card_payments: Decimal
    upi_payments: Decimal
    credit_sales: Decimal
    cash_variance: Optional[Decimal]
    status: ClosureStatus
    prepared_by: int
    version: int
    submitted_at: Optional[datetime] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self):
        return {
            'id': self.id,
            'stationId': self.station_id,
            'closureDate': _iso(self.closure_date),
            'shift': self.shift,
            'totalSalesAmount': _num(self.total_sales_amount),
            'totalLitresSold': _num(self.total_litres_sold),
            'perFuelTypeBreakdown': self.per_fuel_type_breakdown or {},
            'transactionCount': self.transaction_count,
            'expectedCash': _num(self.expected_cash),
            'actualCash': _num(self.actual_cash),
            'cardPayments': _num(self.card_payments),
            'upiPayments': _num(self.upi_payments),
            'creditSales': _num(self.credit_sales),
            'cashVariance': _num(self.cash_variance),
            'status': self.status.value,
            'preparedBy': self.prepared_by,
            'submittedAt': _iso(self.submitted_at),
            'approvedBy': self.approved_by,
            'approvedAt': _iso(self.approved_at),
            'rejectionReason': self.rejection_reason,
            'notes': self.notes,
            'version': self.version,
        }


@dataclass(frozen=True)
class CreditorRecord:
    id: int
    station_id: int
    name: str
    credit_limit: Decimal
    is_active: bool = True
    contact_person: Optional[str] = None
    phone: Optional[str] = None

    def to_dict(self):
        return {
            'id': self.id,
            'stationId': self.station_id,
            'name': self.name,
            'creditLimit': _num(self.credit_limit),
            'isActive': self.is_active,
            'contactPerson': self.contact_person,
            'phone': self.phone,
        }


@dataclass(frozen=True)
class CreditTransactionRecord:
    id: int
    station_id: int
    creditor_id: int
    transaction_type: str
    amount: Decimal
    transaction_date: date
    reference_number: Optional[str] = None
    allocated: Decimal = Decimal('0.00')

    @property
    def outstanding(self):
        return self.amount - self.allocated

    def to_dict(self):
        data = {
            'id': self.id,
            'stationId': self.station_id,
            'creditorId': self.creditor_id,
            'type': self.transaction_type,
            'amount': _num(self.amount),
            'transactionDate': _iso(self.transaction_date),
            'referenceNumber': self.reference_number,
            'allocated': _num(self.allocated),
        }
        if self.transaction_type == 'credit':
            data['outstanding'] = _num(self.outstanding)
        return data


@dataclass(frozen=True)
class AllocationRecord:
    credit_transaction_id: int
    settlement_id: int
    amount: Decimal

    def to_dict(self):
        return {
            'creditTransactionId': self.credit_transaction_id,
            'settlementId': self.settlement_id,
            'amount': _num(self.amount),
        }


@dataclass(frozen=True)
class SettlementRecord:
    settlement: CreditTransactionRecord
    allocations: List[AllocationRecord]
    outstanding_balance: Decimal

    def to_dict(self):
        return {
            'settlement': self.settlement.to_dict(),
            'allocations': [a.to_dict() for a in self.allocations],
            'outstandingBalance': _num(self.outstanding_balance),
        }


@dataclass(frozen=True)
class ReadingResult:
    """Outcome of a reading write: the stored reading and the sales it moved"""
    reading: ReadingRecord
    sales: List[SaleRecord] = field(default_factory=list)
    errors: List[DerivationIssue] = field(default_factory=list)
    created: bool = True

    def to_dict(self):
        return {
            'reading': self.reading.to_dict(),
            'sales': [s.to_dict() for s in self.sales],
            'errors': [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class NozzleSync:
    """What re-deriving one nozzle wrote"""
    nozzle_id: int
    changed: List[SaleRecord] = field(default_factory=list)
    removed: int = 0
    issues: List[DerivationIssue] = field(default_factory=list)
