"""
Unit Tests for the Sales Derivation Engine

Tests cover:
1. Consecutive-pair derivation and amount rounding
2. Ordering (timestamp, automatic before manual, insertion order)
3. Meter resets under both policies
4. Missing prices reported per pair
5. Price table lookup
6. Shift bands

No database is involved; the engine is a pure function of its input.
"""

import pytest
from datetime import date, datetime, time
from decimal import Decimal

from fueldesk.constants import ResetPolicy, Shift
from fueldesk.records import PriceRecord, ReadingRecord
from fueldesk.services.sales_derivation import PriceTable, derive_sales, ordered_readings
from fueldesk.utils.helpers import round_money, shift_for


# ============================================================
# Helpers
# ============================================================

def make_reading(reading_id, volume, at, nozzle_id=1, pump_id=1, fuel_type='petrol',
                 manual=True, superseded_by=None, station_id=1):
    return ReadingRecord(
        id=reading_id,
        station_id=station_id,
        pump_id=pump_id,
        nozzle_id=nozzle_id,
        fuel_type=fuel_type,
        cumulative_volume=Decimal(str(volume)),
        reading_date=at.date(),
        reading_time=at.time(),
        is_manual_entry=manual,
        superseded_by_id=superseded_by,
    )


@pytest.fixture
def prices():
    return PriceTable([
        PriceRecord(station_id=1, fuel_type='petrol', price=Decimal('100.00'),
                    valid_from=datetime(2024, 1, 1), id=1),
        PriceRecord(station_id=1, fuel_type='diesel', price=Decimal('90.00'),
                    valid_from=datetime(2024, 1, 1), id=2),
    ])


# ============================================================
# Derivation
# ============================================================

class TestDeriveSales:
    """Tests for pairwise sale derivation"""

    def test_single_pair_produces_sale(self, prices):
        """1000.0 then 1025.5 litres at 100.00 -> 25.5 L, 2550.00"""
        readings = [
            make_reading(1, '1000.0', datetime(2024, 6, 1, 8, 0)),
            make_reading(2, '1025.5', datetime(2024, 6, 1, 10, 0)),
        ]

        sales, issues = derive_sales(readings, prices.lookup)

        assert issues == []
        assert len(sales) == 1
        sale = sales[0]
        assert sale.delta_volume == Decimal('25.5')
        assert sale.price_per_litre == Decimal('100.00')
        assert sale.total_amount == Decimal('2550.00')
        assert sale.shift == Shift.MORNING.value
        assert sale.sale_date == date(2024, 6, 1)
        assert sale.source_reading_id == 2
        assert sale.previous_reading_id == 1
        assert sale.needs_review is False

    def test_single_reading_produces_nothing(self, prices):
        sales, issues = derive_sales([make_reading(1, '500', datetime(2024, 6, 1, 8))], prices.lookup)
        assert sales == []
        assert issues == []

    def test_volumes_sum_to_first_last_difference(self, prices):
        """Sum of deltas equals last minus first when the meter never resets"""
        volumes = ['1000.000', '1010.250', '1010.250', '1047.125', '1100.000']
        readings = [
            make_reading(i + 1, v, datetime(2024, 6, 1, 6 + i * 3, 0))
            for i, v in enumerate(volumes)
        ]

        sales, _ = derive_sales(readings, prices.lookup)

        assert sum(s.delta_volume for s in sales) == Decimal('100.000')
        assert all(s.delta_volume >= 0 for s in sales)
        # Zero-delta pair emits nothing
        assert len(sales) == 3

    def test_amount_rounds_half_up(self, prices):
        readings = [
            make_reading(1, '0.000', datetime(2024, 6, 1, 8)),
            make_reading(2, '0.005', datetime(2024, 6, 1, 9)),
        ]
        sales, _ = derive_sales(readings, lambda *_: Decimal('1.00'))
        # 0.005 * 1.00 = 0.005 -> 0.01
        assert sales[0].total_amount == Decimal('0.01')

    def test_every_amount_matches_rounded_product(self, prices):
        readings = [
            make_reading(1, '12.345', datetime(2024, 6, 1, 7)),
            make_reading(2, '20.001', datetime(2024, 6, 1, 9)),
            make_reading(3, '33.333', datetime(2024, 6, 1, 15)),
        ]
        sales, _ = derive_sales(readings, prices.lookup)
        for sale in sales:
            assert sale.total_amount == round_money(sale.delta_volume * sale.price_per_litre)

    def test_unordered_input_is_sorted(self, prices):
        readings = [
            make_reading(3, '1030', datetime(2024, 6, 1, 12)),
            make_reading(1, '1000', datetime(2024, 6, 1, 8)),
            make_reading(2, '1010', datetime(2024, 6, 1, 10)),
        ]
        sales, _ = derive_sales(readings, prices.lookup)
        assert [(s.previous_reading_id, s.source_reading_id) for s in sales] == [(1, 2), (2, 3)]
        assert [s.delta_volume for s in sales] == [Decimal('10'), Decimal('20')]

    def test_nozzles_are_independent(self, prices):
        readings = [
            make_reading(1, '100', datetime(2024, 6, 1, 8), nozzle_id=1),
            make_reading(2, '500', datetime(2024, 6, 1, 8), nozzle_id=2, fuel_type='diesel'),
            make_reading(3, '110', datetime(2024, 6, 1, 9), nozzle_id=1),
            make_reading(4, '520', datetime(2024, 6, 1, 9), nozzle_id=2, fuel_type='diesel'),
        ]
        sales, _ = derive_sales(readings, prices.lookup)
        by_nozzle = {s.nozzle_id: s for s in sales}
        assert by_nozzle[1].total_amount == Decimal('1000.00')
        assert by_nozzle[2].total_amount == Decimal('1800.00')

    def test_superseded_readings_are_ignored(self, prices):
        readings = [
            make_reading(1, '1000', datetime(2024, 6, 1, 8)),
            make_reading(2, '9999', datetime(2024, 6, 1, 10), superseded_by=3),
            make_reading(3, '1020', datetime(2024, 6, 1, 10)),
        ]
        sales, _ = derive_sales(readings, prices.lookup)
        assert len(sales) == 1
        assert sales[0].source_reading_id == 3
        assert sales[0].delta_volume == Decimal('20')

    def test_derivation_is_deterministic(self, prices):
        readings = [
            make_reading(1, '1000', datetime(2024, 6, 1, 8)),
            make_reading(2, '1040', datetime(2024, 6, 1, 15)),
            make_reading(3, '1090', datetime(2024, 6, 1, 23)),
        ]
        first = derive_sales(readings, prices.lookup)
        second = derive_sales(list(reversed(readings)), prices.lookup)
        assert first == second


# ============================================================
# Ordering
# ============================================================

class TestOrdering:
    """Tests for tie-breaking between readings at the same timestamp"""

    def test_automatic_before_manual_at_same_time(self):
        at = datetime(2024, 6, 1, 8)
        manual = make_reading(1, '10', at, manual=True)
        ocr = make_reading(2, '10', at, manual=False)
        assert [r.id for r in ordered_readings([manual, ocr])] == [2, 1]

    def test_insertion_order_breaks_remaining_ties(self):
        at = datetime(2024, 6, 1, 8)
        first = make_reading(7, '10', at)
        second = make_reading(8, '11', at)
        assert [r.id for r in ordered_readings([first, second])] == [7, 8]


# ============================================================
# Meter resets
# ============================================================

class TestMeterReset:
    """Tests for negative deltas"""

    def test_zero_base_uses_current_volume_and_flags_review(self, prices):
        readings = [
            make_reading(1, '99990', datetime(2024, 6, 1, 8)),
            make_reading(2, '15', datetime(2024, 6, 1, 10)),
        ]
        sales, issues = derive_sales(readings, prices.lookup, ResetPolicy.ZERO_BASE)

        assert issues == []
        assert sales[0].delta_volume == Decimal('15')
        assert sales[0].total_amount == Decimal('1500.00')
        assert sales[0].needs_review is True

    def test_zero_base_reset_to_zero_emits_nothing(self, prices):
        readings = [
            make_reading(1, '500', datetime(2024, 6, 1, 8)),
            make_reading(2, '0', datetime(2024, 6, 1, 10)),
        ]
        sales, issues = derive_sales(readings, prices.lookup)
        assert sales == []
        assert issues == []

    def test_reject_policy_reports_issue(self, prices):
        readings = [
            make_reading(1, '500', datetime(2024, 6, 1, 8)),
            make_reading(2, '400', datetime(2024, 6, 1, 10)),
            make_reading(3, '450', datetime(2024, 6, 1, 12)),
        ]
        sales, issues = derive_sales(readings, prices.lookup, ResetPolicy.REJECT)

        assert len(issues) == 1
        assert issues[0].code == 'MeterReset'
        assert issues[0].reading_id == 2
        # The lower reading is still the baseline for the next pair
        assert len(sales) == 1
        assert sales[0].delta_volume == Decimal('50')


# ============================================================
# Prices
# ============================================================

class TestPrices:
    """Tests for price lookup during derivation"""

    def test_missing_price_reported_without_stopping_other_pairs(self, prices):
        readings = [
            make_reading(1, '100', datetime(2024, 6, 1, 8), nozzle_id=1, fuel_type='cng'),
            make_reading(2, '110', datetime(2024, 6, 1, 9), nozzle_id=1, fuel_type='cng'),
            make_reading(3, '100', datetime(2024, 6, 1, 8), nozzle_id=2),
            make_reading(4, '120', datetime(2024, 6, 1, 9), nozzle_id=2),
        ]
        sales, issues = derive_sales(readings, prices.lookup)

        assert [i.code for i in issues] == ['MissingPrice']
        assert issues[0].reading_id == 2
        assert [s.source_reading_id for s in sales] == [4]

    def test_price_effective_at_closing_reading(self):
        table = PriceTable([
            PriceRecord(1, 'petrol', Decimal('100.00'), datetime(2024, 1, 1)),
            PriceRecord(1, 'petrol', Decimal('105.00'), datetime(2024, 6, 1, 12)),
        ])
        readings = [
            make_reading(1, '0', datetime(2024, 6, 1, 8)),
            make_reading(2, '10', datetime(2024, 6, 1, 11, 59)),
            make_reading(3, '20', datetime(2024, 6, 1, 12, 0)),
        ]
        sales, _ = derive_sales(readings, table.lookup)
        assert [s.price_per_litre for s in sales] == [Decimal('100.00'), Decimal('105.00')]

    def test_lookup_before_first_price_is_none(self, prices):
        assert prices.lookup(1, 'petrol', datetime(2023, 12, 31, 23, 59)) is None
        assert prices.lookup(2, 'petrol', datetime(2024, 6, 1)) is None

    def test_same_valid_from_later_row_wins(self):
        at = datetime(2024, 1, 1)
        table = PriceTable([
            PriceRecord(1, 'diesel', Decimal('91.00'), at, id=5),
            PriceRecord(1, 'diesel', Decimal('90.00'), at, id=4),
        ])
        assert table.lookup(1, 'diesel', at) == Decimal('91.00')


# ============================================================
# Shifts
# ============================================================

class TestShiftBands:
    """Tests for shift assignment from the closing reading's hour"""

    @pytest.mark.parametrize('hour,expected', [
        (0, Shift.NIGHT),
        (5, Shift.NIGHT),
        (6, Shift.MORNING),
        (13, Shift.MORNING),
        (14, Shift.AFTERNOON),
        (21, Shift.AFTERNOON),
        (22, Shift.NIGHT),
        (23, Shift.NIGHT),
    ])
    def test_shift_for_hour(self, hour, expected):
        assert shift_for(datetime.combine(date(2024, 6, 1), time(hour, 30))) == expected

    def test_night_sale_keeps_closing_calendar_date(self, prices):
        readings = [
            make_reading(1, '0', datetime(2024, 6, 1, 23)),
            make_reading(2, '5', datetime(2024, 6, 2, 2)),
        ]
        sales, _ = derive_sales(readings, prices.lookup)
        assert sales[0].shift == Shift.NIGHT.value
        assert sales[0].sale_date == date(2024, 6, 2)
