"""
Sales Derivation Engine
Turns cumulative nozzle-meter readings into discrete sales.

Everything in this module is a pure function of the readings and the price
table it is given: no database access, no clock, no shared state. Running it
twice over the same input yields the same sales.
"""

import bisect
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from fueldesk.constants import ResetPolicy
from fueldesk.records import DerivationIssue, PriceRecord, ReadingRecord, SaleRecord
from fueldesk.utils.helpers import round_money, shift_for

PriceLookup = Callable[[int, str, object], Optional[object]]


class PriceTable:
    """
    In-memory fuel price table answering 'price effective at time t'

    The effective price is the most recent one with valid_from <= t. Two
    prices with the same valid_from resolve to the later-inserted one.
    """

    def __init__(self, prices: Iterable[PriceRecord]):
        self._series: Dict[Tuple[int, str], List[PriceRecord]] = defaultdict(list)
        for price in prices:
            self._series[(price.station_id, price.fuel_type)].append(price)
        self._starts = {}
        for key, series in self._series.items():
            series.sort(key=lambda p: (p.valid_from, p.id or 0))
            self._starts[key] = [p.valid_from for p in series]

    def lookup(self, station_id, fuel_type, at):
        """Effective price (Decimal) or None when nothing applies yet"""
        key = (station_id, fuel_type)
        starts = self._starts.get(key)
        if not starts:
            return None
        index = bisect.bisect_right(starts, at) - 1
        if index < 0:
            return None
        return self._series[key][index].price


def ordering_key(position, reading):
    # Automatic readings sort before manual ones at the same timestamp,
    # then insertion order
    return (reading.timestamp, bool(reading.is_manual_entry), position)


def ordered_readings(readings: Iterable[ReadingRecord]) -> List[ReadingRecord]:
    """Sort one nozzle's readings into meter order"""
    indexed = list(enumerate(readings))
    indexed.sort(key=lambda item: ordering_key(*item))
    return [reading for _, reading in indexed]


def group_by_nozzle(readings: Iterable[ReadingRecord]) -> Dict[Tuple[int, int], List[ReadingRecord]]:
    """Group active readings by (pump_id, nozzle_id), keeping input order"""
    groups = defaultdict(list)
    for reading in readings:
        if reading.is_superseded:
            continue
        groups[(reading.pump_id, reading.nozzle_id)].append(reading)
    return groups


def derive_pair(prev, curr, price_lookup, reset_policy=ResetPolicy.ZERO_BASE):
    """
    Derive the sale for one consecutive reading pair

    Returns:
        (SaleRecord or None, DerivationIssue or None)
    """
    delta = curr.cumulative_volume - prev.cumulative_volume
    needs_review = False

    if delta < 0:
        if ResetPolicy(reset_policy) == ResetPolicy.REJECT:
            return None, DerivationIssue(
                code='MeterReset',
                message=(f'Reading {curr.cumulative_volume} is lower than the previous '
                         f'reading {prev.cumulative_volume}'),
                nozzle_id=curr.nozzle_id,
                reading_id=curr.id,
                previous_reading_id=prev.id,
            )
        # Meter was replaced or zeroed: everything on the new counter was sold
        delta = curr.cumulative_volume
        needs_review = True

    if delta == 0:
        return None, None

    price = price_lookup(curr.station_id, curr.fuel_type, curr.timestamp)
    if price is None:
        return None, DerivationIssue(
            code='MissingPrice',
            message=f'No {curr.fuel_type} price effective at {curr.timestamp.isoformat()}',
            nozzle_id=curr.nozzle_id,
            reading_id=curr.id,
            previous_reading_id=prev.id,
        )

    sale = SaleRecord(
        station_id=curr.station_id,
        pump_id=curr.pump_id,
        nozzle_id=curr.nozzle_id,
        fuel_type=curr.fuel_type,
        delta_volume=delta,
        price_per_litre=price,
        total_amount=round_money(delta * price),
        shift=shift_for(curr.timestamp).value,
        # Calendar date of the reading; night sales of D span two physical nights
        sale_date=curr.reading_date,
        source_reading_id=curr.id,
        previous_reading_id=prev.id,
        needs_review=needs_review,
    )
    return sale, None


def derive_sales(readings: Iterable[ReadingRecord], price_lookup: PriceLookup,
                 reset_policy=ResetPolicy.ZERO_BASE):
    """
    Derive sales for a batch of readings spanning any number of nozzles

    Readings are grouped per (pump, nozzle), put in meter order, and every
    consecutive pair yields at most one sale. A missing price or a rejected
    reset only affects its own pair; the later reading still becomes the
    baseline for the next pair.

    Args:
        readings: NozzleReading records, any order
        price_lookup: callable(station_id, fuel_type, at) -> Decimal | None
        reset_policy: ResetPolicy for negative deltas

    Returns:
        (list of SaleRecord, list of DerivationIssue)

    Example:
        1000.0 then 1025.5 litres at 100.00/L -> one sale of 25.5 L, 2550.00
    """
    sales = []
    issues = []

    groups = group_by_nozzle(readings)
    for key in sorted(groups):
        ordered = ordered_readings(groups[key])
        for prev, curr in zip(ordered, ordered[1:]):
            sale, issue = derive_pair(prev, curr, price_lookup, reset_policy)
            if sale is not None:
                sales.append(sale)
            if issue is not None:
                issues.append(issue)

    return sales, issues
