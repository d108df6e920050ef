"""
Tender Aggregator
Sums derived sales into the reconciliation summary a closure is built from
"""

import logging
from decimal import Decimal

from flask import current_app

from fueldesk.constants import Action, ClosureStatus, Shift
from fueldesk.errors import Conflict, NotFound
from fueldesk.records import SalesSummary
from fueldesk.repositories import ClosureRepo, ReadingRepo, SaleRepo, StationRepo
from fueldesk.services.sales_derivation import group_by_nozzle, ordered_readings
from fueldesk.utils.helpers import round_money, round_volume, shift_for
from fueldesk.utils.permissions import require_access

logger = logging.getLogger(__name__)


def closure_editable(status):
    """Whether a closure in this status may still be saved as a draft"""
    status = ClosureStatus(status)
    if status == ClosureStatus.DRAFT:
        return True
    return status == ClosureStatus.REJECTED and bool(current_app.config.get('CLOSURE_REOPEN_REJECTED'))


def _opening_reading(first_in_period):
    """The nozzle's last active reading before the period, else its first inside it"""
    history = ordered_readings(ReadingRepo.active_for_nozzle(first_in_period.nozzle_id))
    index = history.index(first_in_period)
    return history[index - 1] if index > 0 else first_in_period


class TenderAggregator:
    """Read-only aggregation over derived sales"""

    @staticmethod
    def summarize(station_id, closure_date, shift) -> SalesSummary:
        """Aggregate without an access check; callers have already checked"""
        shift = Shift(shift)
        rows = SaleRepo.totals_by_fuel_type(station_id, closure_date, shift)

        total_amount = Decimal('0')
        total_litres = Decimal('0')
        count = 0
        per_fuel_type = {}

        for fuel_type, amount, litres, txn_count in rows:
            amount = round_money(Decimal(str(amount or 0)))
            litres = round_volume(Decimal(str(litres or 0)))
            per_fuel_type[fuel_type] = {
                'litres': str(litres),
                'amount': str(amount),
                'transactionCount': int(txn_count),
            }
            total_amount += amount
            total_litres += litres
            count += int(txn_count)

        return SalesSummary(
            station_id=station_id,
            closure_date=closure_date,
            shift=shift.value,
            total_sales_amount=round_money(total_amount),
            total_litres_sold=round_volume(total_litres),
            transaction_count=count,
            per_fuel_type=per_fuel_type,
        )

    @staticmethod
    def aggregate(actor, station_id, closure_date, shift) -> SalesSummary:
        """
        Sum sales for a station, date and shift

        full_day ignores the shift. The totals come from a single SELECT, so
        a derivation committing concurrently is seen either entirely or not
        at all.
        """
        require_access(actor, station_id, Action.VIEW)
        return TenderAggregator.summarize(station_id, closure_date, shift)

    @staticmethod
    def prepare(actor, station_id, closure_date, shift):
        """
        Everything the closure form needs before tenders are entered

        Returns:
            dict with the sales summary, per-nozzle opening/closing readings
            (opening is the last reading before the period when there is one),
            tank rows, the existing draft (if any) and expectedCash assuming
            every sale was paid in cash

        Raises:
            Conflict: the period already has a closure past draft
        """
        require_access(actor, station_id, Action.VIEW)
        if not StationRepo.get(station_id):
            raise NotFound('Station not found', {'stationId': station_id})
        shift = Shift(shift)

        existing = ClosureRepo.find_row(station_id, closure_date, shift)
        if existing is not None and not closure_editable(existing.status):
            raise Conflict(
                f'A {existing.status} closure already exists for this period',
                {'closureId': existing.id, 'status': existing.status}
            )

        summary = TenderAggregator.summarize(station_id, closure_date, shift)

        readings = ReadingRepo.active_for_day(station_id, closure_date)
        if shift != Shift.FULL_DAY:
            readings = [r for r in readings if shift_for(r.timestamp) == shift]

        pumps = StationRepo.pumps_by_id(station_id)
        nozzles = []
        for (pump_id, nozzle_id), group in sorted(group_by_nozzle(readings).items()):
            ordered = ordered_readings(group)
            opening, closing = _opening_reading(ordered[0]), ordered[-1]
            pump = pumps.get(pump_id)
            nozzles.append({
                'pumpId': pump_id,
                'pumpSno': pump.pump_sno if pump else None,
                'nozzleId': nozzle_id,
                'fuelType': closing.fuel_type,
                'openingReading': opening.to_dict(),
                'closingReading': closing.to_dict(),
                'readingCount': len(ordered),
            })

        tanks = [{
            'id': t.id,
            'tankNumber': t.tank_number,
            'fuelType': t.fuel_type,
            'capacity': None if t.capacity is None else str(t.capacity),
            'currentStock': None if t.current_stock is None else str(t.current_stock),
            'lastDipReading': None if t.last_dip_reading is None else str(t.last_dip_reading),
            'lastDipAt': t.last_dip_at.isoformat() if t.last_dip_at else None,
        } for t in StationRepo.active_tanks(station_id)]

        data = summary.to_dict()
        data.update({
            'nozzles': nozzles,
            'tanks': tanks,
            'expectedCash': str(summary.total_sales_amount),
            'existingClosure': ClosureRepo.to_record(existing).to_dict() if existing else None,
        })
        return data
