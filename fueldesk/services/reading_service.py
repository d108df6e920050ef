"""
Reading Service
Stores nozzle-meter readings and keeps the derived sales in step:
- Manual entry with duplicate detection
- OCR event intake (idempotent on repeats)
- Superseding corrections and operator deletion
- Keyed re-derivation per nozzle and per station
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Tuple

from flask import current_app

from fueldesk.constants import Action, ResetPolicy, Shift
from fueldesk.errors import (
    Conflict, DuplicateReading, Forbidden, MeterReset, NotFound, ValidationError
)
from fueldesk.models import db
from fueldesk.records import NozzleSync, ReadingRecord, ReadingResult
from fueldesk.repositories import ClosureRepo, PriceRepo, ReadingRepo, SaleRepo, StationRepo
from fueldesk.services.sales_derivation import PriceTable, derive_sales, ordered_readings
from fueldesk.utils.audit import log_activity
from fueldesk.utils.helpers import parse_date, parse_int, parse_time, round_volume, to_decimal
from fueldesk.utils.permissions import require_access, scope_station_ids

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_nozzle_locks: Dict[Tuple[int, int, int], threading.Lock] = {}


def nozzle_lock(station_id, pump_id, nozzle_id):
    """Lock serializing derivation for one (station, pump, nozzle)"""
    key = (station_id, pump_id, nozzle_id)
    with _registry_guard:
        lock = _nozzle_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _nozzle_locks[key] = lock
    return lock


def _reset_policy():
    return ResetPolicy(current_app.config.get('METER_RESET_POLICY', ResetPolicy.ZERO_BASE.value))


def _issues_touching(issues, reading_id):
    return [i for i in issues if reading_id in (i.reading_id, i.previous_reading_id)]


class ReadingService:
    """Service for meter readings and their derived sales"""

    @staticmethod
    def rederive_nozzle(station_id, pump_id, nozzle_id, exclude_ids=()) -> NozzleSync:
        """
        Re-derive every sale of one nozzle and upsert by source reading

        Sales whose source reading no longer produces a sale are deleted,
        changed ones are updated in place and new ones inserted. If any
        insert, update or delete lands in a period whose closure is submitted
        or approved (the shift itself or full_day), nothing is written.

        Callers hold nozzle_lock() and own the transaction.

        Raises:
            Conflict: the change would alter a submitted or approved period
        """
        readings = [r for r in ReadingRepo.active_for_nozzle(nozzle_id) if r.id not in exclude_ids]
        prices = PriceRepo.for_station(station_id, {r.fuel_type for r in readings})
        sales, issues = derive_sales(readings, PriceTable(prices).lookup, _reset_policy())

        existing = SaleRepo.rows_for_nozzle(nozzle_id)
        inserts = []
        updates = []
        touched = set()

        for sale in sales:
            row = existing.pop(sale.source_reading_id, None)
            if row is None:
                inserts.append(sale)
                touched.add((sale.sale_date, sale.shift))
                continue
            current = SaleRepo.to_record(row)
            if current.key_fields() != sale.key_fields():
                updates.append((row, sale))
                touched.add((current.sale_date, current.shift))
                touched.add((sale.sale_date, sale.shift))

        deletes = list(existing.values())
        for row in deletes:
            touched.add((row.sale_date, row.shift))

        if touched:
            locked = ClosureRepo.locked_periods(station_id, {d for d, _ in touched})
            frozen = sorted(
                (d, s) for d, s in touched
                if (d, s) in locked or (d, Shift.FULL_DAY.value) in locked
            )
            if frozen:
                d, s = frozen[0]
                raise Conflict(
                    f'Sales for {d.isoformat()} ({s}) belong to a submitted or approved closure',
                    {'nozzleId': nozzle_id, 'date': d.isoformat(), 'shift': s}
                )

        changed_rows = [SaleRepo.insert(sale) for sale in inserts]
        for row, sale in updates:
            SaleRepo.apply(row, sale)
            changed_rows.append(row)
        for row in deletes:
            SaleRepo.delete(row)
        db.session.flush()

        if changed_rows or deletes:
            logger.info(
                f"Nozzle {nozzle_id}: {len(inserts)} sales inserted, "
                f"{len(updates)} updated, {len(deletes)} removed"
            )

        return NozzleSync(
            nozzle_id=nozzle_id,
            changed=[SaleRepo.to_record(r) for r in changed_rows],
            removed=len(deletes),
            issues=issues,
        )

    @staticmethod
    def _nozzle_for(station_id, pump_id, nozzle_id):
        nozzle = StationRepo.get_nozzle(nozzle_id)
        if not nozzle or nozzle.pump.station_id != station_id:
            raise NotFound('Nozzle not found', {'nozzleId': nozzle_id})
        if pump_id is not None and nozzle.pump_id != pump_id:
            raise ValidationError('Nozzle does not belong to this pump',
                                  {'pumpId': pump_id, 'nozzleId': nozzle_id})
        if not nozzle.is_active:
            raise ValidationError('Nozzle is not active', {'nozzleId': nozzle_id})
        return nozzle

    @staticmethod
    def _check_fuel_type(nozzle, fuel_type):
        if fuel_type and fuel_type != nozzle.fuel_type:
            raise ValidationError(
                f'Nozzle dispenses {nozzle.fuel_type}, not {fuel_type}',
                {'field': 'fuelType'}
            )

    @staticmethod
    def _check_duplicate(nozzle_id, reading_date, reading_time, ignore_id=None):
        duplicates = [
            r for r in ReadingRepo.find_active(nozzle_id, reading_date, reading_time, manual=True)
            if r.id != ignore_id
        ]
        if duplicates:
            raise DuplicateReading(
                'A manual reading already exists for this nozzle at this date and time',
                {'existingReadingId': duplicates[0].id}
            )

    @staticmethod
    def _check_predecessor(candidate, ignore_id=None):
        """Under the 'reject' policy a reading may not run the meter backwards"""
        if _reset_policy() != ResetPolicy.REJECT:
            return
        others = [r for r in ReadingRepo.active_for_nozzle(candidate.nozzle_id) if r.id != ignore_id]
        ordered = ordered_readings(others + [candidate])
        index = ordered.index(candidate)
        if index > 0:
            prev = ordered[index - 1]
            if candidate.cumulative_volume < prev.cumulative_volume:
                raise MeterReset(
                    f'Reading {candidate.cumulative_volume} is lower than the previous '
                    f'reading {prev.cumulative_volume}',
                    {'previousReadingId': prev.id, 'field': 'cumulativeVolume'}
                )

    @staticmethod
    def _store(actor, nozzle, fields, activity, supersede=None, precheck=None):
        """
        Insert a reading, re-derive its nozzle and commit

        precheck runs under the nozzle lock before anything is written. It
        raises to refuse the reading or returns a ReadingResult to answer
        without writing.
        """
        station_id = nozzle.pump.station_id
        with nozzle_lock(station_id, nozzle.pump_id, nozzle.id):
            try:
                if precheck is not None:
                    answer = precheck()
                    if answer is not None:
                        return answer

                row = ReadingRepo.add(
                    station_id=station_id,
                    pump_id=nozzle.pump_id,
                    nozzle_id=nozzle.id,
                    fuel_type=nozzle.fuel_type,
                    entered_by=actor.id,
                    **fields
                )
                if supersede is not None:
                    supersede.superseded_by_id = row.id
                    supersede.superseded_at = datetime.utcnow()
                    db.session.flush()

                sync = ReadingService.rederive_nozzle(station_id, nozzle.pump_id, nozzle.id)
                log_activity(actor, activity, 'reading', row.id, {
                    'nozzleId': nozzle.id,
                    'cumulativeVolume': str(row.cumulative_volume),
                    'supersedes': supersede.id if supersede is not None else None,
                }, station_id=station_id)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        reading = ReadingRepo.to_record(row)
        logger.info(f"Reading {reading.id} stored for nozzle {nozzle.id} by user {actor.id}")
        return ReadingResult(
            reading=reading,
            sales=sync.changed,
            errors=_issues_touching(sync.issues, reading.id),
        )

    @staticmethod
    def record_reading(actor, payload) -> ReadingResult:
        """
        Store a manually entered reading and derive its sales

        Args:
            actor: Actor record
            payload: dict with stationId, pumpId, nozzleId, cumulativeVolume,
                readingDate, readingTime and optional fuelType, notes

        Returns:
            ReadingResult; MissingPrice and similar per-pair problems are
            reported in errors, not raised

        Raises:
            ValidationError, NotFound, Forbidden, DuplicateReading, Conflict
        """
        station_id = parse_int(payload.get('stationId'), 'stationId')
        require_access(actor, station_id, Action.CREATE_READING)

        nozzle_id = parse_int(payload.get('nozzleId'), 'nozzleId')
        pump_id = payload.get('pumpId')
        pump_id = parse_int(pump_id, 'pumpId') if pump_id not in (None, '') else None
        nozzle = ReadingService._nozzle_for(station_id, pump_id, nozzle_id)
        ReadingService._check_fuel_type(nozzle, payload.get('fuelType'))

        volume = round_volume(to_decimal(payload.get('cumulativeVolume'), 'cumulativeVolume', minimum=0))
        reading_date = parse_date(payload.get('readingDate'), 'readingDate')
        reading_time = parse_time(payload.get('readingTime'), 'readingTime')

        candidate = ReadingRecord(
            id=None, station_id=station_id, pump_id=nozzle.pump_id, nozzle_id=nozzle.id,
            fuel_type=nozzle.fuel_type, cumulative_volume=volume,
            reading_date=reading_date, reading_time=reading_time, is_manual_entry=True,
        )

        def precheck():
            ReadingService._check_duplicate(nozzle.id, reading_date, reading_time)
            ReadingService._check_predecessor(candidate)

        return ReadingService._store(actor, nozzle, {
            'cumulative_volume': volume,
            'reading_date': reading_date,
            'reading_time': reading_time,
            'is_manual_entry': True,
            'notes': payload.get('notes'),
        }, 'reading_created', precheck=precheck)

    @staticmethod
    def ingest_ocr_event(actor, event) -> ReadingResult:
        """
        Store a reading produced by the OCR pipeline

        The event names the pump by serial number and the nozzle by its
        number on that pump. Repeating an event with the same key and
        volume returns the stored reading without writing anything.

        Raises:
            DuplicateReading: same key already stored with another volume
        """
        station_id = parse_int(event.get('stationId'), 'stationId')
        require_access(actor, station_id, Action.CREATE_READING)

        pump_sno = event.get('pumpSno')
        if pump_sno in (None, ''):
            raise ValidationError('pumpSno is required', {'field': 'pumpSno'})
        nozzle_number = parse_int(event.get('nozzleId'), 'nozzleId')

        nozzle = StationRepo.find_nozzle(station_id, pump_sno, nozzle_number)
        if not nozzle:
            raise NotFound('Nozzle not found', {'pumpSno': str(pump_sno), 'nozzleId': nozzle_number})
        if not nozzle.is_active:
            raise ValidationError('Nozzle is not active', {'nozzleId': nozzle.id})
        ReadingService._check_fuel_type(nozzle, event.get('fuelType'))

        volume = round_volume(to_decimal(event.get('cumulativeVolume'), 'cumulativeVolume', minimum=0))
        reading_date = parse_date(event.get('readingDate'), 'readingDate')
        reading_time = parse_time(event.get('readingTime'), 'readingTime')
        confidence = to_decimal(event.get('confidence'), 'confidence', allow_none=True, minimum=0)

        def precheck():
            stored = ReadingRepo.find_by_key(nozzle.id, reading_date, reading_time, manual=False)
            for reading in stored:
                if reading.cumulative_volume == volume:
                    current = ReadingRepo.current_version(reading)
                    logger.info(f"OCR event for nozzle {nozzle.id} already stored as reading {reading.id}")
                    return ReadingResult(reading=current, created=False)
            if stored:
                raise DuplicateReading(
                    'An OCR reading already exists for this nozzle at this date and time',
                    {'existingReadingId': ReadingRepo.current_version(stored[0]).id}
                )
            return None

        return ReadingService._store(actor, nozzle, {
            'cumulative_volume': volume,
            'reading_date': reading_date,
            'reading_time': reading_time,
            'is_manual_entry': False,
            'source_confidence': confidence,
        }, 'reading_ocr_ingested', precheck=precheck)

    @staticmethod
    def correct_reading(actor, reading_id, payload) -> ReadingResult:
        """
        Replace a reading with a corrected one

        The original stays in the store marked as superseded; the new
        reading points back at it. Date and time default to the original's.

        Raises:
            NotFound, Forbidden, Conflict (already superseded), ValidationError
        """
        original = ReadingRepo.get_row(reading_id)
        if not original:
            raise NotFound('Reading not found', {'readingId': reading_id})
        require_access(actor, original.station_id, Action.CORRECT_READING)
        if original.superseded_by_id is not None:
            raise Conflict('Reading has already been corrected',
                           {'readingId': reading_id, 'supersededById': original.superseded_by_id})

        nozzle = StationRepo.get_nozzle(original.nozzle_id)
        volume = round_volume(to_decimal(payload.get('cumulativeVolume'), 'cumulativeVolume', minimum=0))
        reading_date = parse_date(payload.get('readingDate'), 'readingDate', default=original.reading_date)
        reading_time = (parse_time(payload.get('readingTime'), 'readingTime')
                        if payload.get('readingTime') else original.reading_time)
        reason = (payload.get('reason') or '').strip()
        if not reason:
            raise ValidationError('A reason is required for corrections', {'field': 'reason'})

        candidate = ReadingRecord(
            id=None, station_id=original.station_id, pump_id=original.pump_id,
            nozzle_id=original.nozzle_id, fuel_type=original.fuel_type, cumulative_volume=volume,
            reading_date=reading_date, reading_time=reading_time, is_manual_entry=True,
        )

        def precheck():
            db.session.refresh(original)
            if original.superseded_by_id is not None:
                raise Conflict('Reading has already been corrected',
                               {'readingId': reading_id, 'supersededById': original.superseded_by_id})
            ReadingService._check_duplicate(nozzle.id, reading_date, reading_time, ignore_id=original.id)
            ReadingService._check_predecessor(candidate, ignore_id=original.id)

        return ReadingService._store(actor, nozzle, {
            'cumulative_volume': volume,
            'reading_date': reading_date,
            'reading_time': reading_time,
            'is_manual_entry': True,
            'supersedes_id': original.id,
            'notes': reason,
        }, 'reading_corrected', supersede=original, precheck=precheck)

    @staticmethod
    def delete_reading(actor, reading_id):
        """
        Delete a reading entered by mistake

        Only the operator who entered it may delete it, and only within
        READING_DELETE_WINDOW_MINUTES. Deleting a correction reinstates the
        reading it superseded.

        Returns:
            NozzleSync for the affected nozzle
        """
        row = ReadingRepo.get_row(reading_id)
        if not row:
            raise NotFound('Reading not found', {'readingId': reading_id})
        require_access(actor, row.station_id, Action.DELETE_READING)

        if row.entered_by != actor.id:
            raise Forbidden('Only the operator who entered a reading may delete it',
                            {'readingId': reading_id})
        window = timedelta(minutes=current_app.config.get('READING_DELETE_WINDOW_MINUTES', 60))
        if row.created_at is not None and datetime.utcnow() - row.created_at > window:
            raise Forbidden('The deletion window for this reading has closed',
                            {'readingId': reading_id})
        if row.superseded_by_id is not None:
            raise Conflict('A corrected reading cannot be deleted',
                           {'readingId': reading_id, 'supersededById': row.superseded_by_id})

        with nozzle_lock(row.station_id, row.pump_id, row.nozzle_id):
            try:
                if row.supersedes_id is not None:
                    original = ReadingRepo.get_row(row.supersedes_id)
                    if original is not None:
                        original.superseded_by_id = None
                        original.superseded_at = None
                        db.session.flush()

                sync = ReadingService.rederive_nozzle(
                    row.station_id, row.pump_id, row.nozzle_id, exclude_ids={row.id}
                )
                log_activity(actor, 'reading_deleted', 'reading', row.id, {
                    'nozzleId': row.nozzle_id,
                    'cumulativeVolume': str(row.cumulative_volume),
                }, station_id=row.station_id)
                ReadingRepo.delete(row)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        logger.info(f"Reading {reading_id} deleted by user {actor.id}")
        return sync

    @staticmethod
    def rederive_station(actor, station_id):
        """
        Re-derive all sales of a station, nozzle by nozzle

        A nozzle that cannot be re-derived (frozen period) is reported and
        skipped; the rest are committed.

        Returns:
            dict with nozzle count, changed sale count and reported errors
        """
        require_access(actor, station_id, Action.REDERIVE_SALES)
        if not StationRepo.get(station_id):
            raise NotFound('Station not found', {'stationId': station_id})

        errors = []
        changed = 0
        removed = 0
        nozzle_ids = ReadingRepo.active_nozzle_ids(station_id)

        for nozzle_id in nozzle_ids:
            nozzle = StationRepo.get_nozzle(nozzle_id)
            with nozzle_lock(station_id, nozzle.pump_id, nozzle_id):
                try:
                    sync = ReadingService.rederive_nozzle(station_id, nozzle.pump_id, nozzle_id)
                except Conflict as e:
                    # Raised before anything was written for this nozzle
                    errors.append({'code': e.code, 'message': e.message, 'nozzleId': nozzle_id})
                    continue
            changed += len(sync.changed)
            removed += sync.removed
            errors.extend(issue.to_dict() for issue in sync.issues)

        try:
            log_activity(actor, 'sales_rederived', 'station', station_id, {
                'nozzles': len(nozzle_ids), 'changed': changed, 'removed': removed,
            }, station_id=station_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Station {station_id} re-derived: {changed} sales changed, {removed} removed")
        return {
            'stationId': station_id,
            'nozzles': len(nozzle_ids),
            'salesChanged': changed,
            'salesRemoved': removed,
            'errors': errors,
        }

    @staticmethod
    def list_readings(actor, filters, page=1, per_page=50):
        """
        Readings visible to the actor, newest first

        Filters: stationId, nozzleId, dateFrom, dateTo, includeSuperseded.
        Stations outside the actor's scope are filtered out silently.
        """
        requested = filters.get('stationId')
        requested = parse_int(requested, 'stationId') if requested not in (None, '') else None
        nozzle_id = filters.get('nozzleId')
        nozzle_id = parse_int(nozzle_id, 'nozzleId') if nozzle_id not in (None, '') else None
        date_from = parse_date(filters.get('dateFrom'), 'dateFrom') if filters.get('dateFrom') else None
        date_to = parse_date(filters.get('dateTo'), 'dateTo') if filters.get('dateTo') else None
        include_superseded = str(filters.get('includeSuperseded', '')).lower() in ('1', 'true', 'yes')

        return ReadingRepo.list(
            station_ids=scope_station_ids(actor, requested),
            nozzle_id=nozzle_id,
            date_from=date_from,
            date_to=date_to,
            include_superseded=include_superseded,
            page=page,
            per_page=per_page,
        )
