"""
Meter Reading Routes
Manual entry, OCR intake, corrections and deletion of nozzle readings
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from fueldesk.constants import Action
from fueldesk.services.reading_service import ReadingService
from fueldesk.utils.permissions import permission_required
from fueldesk.utils.station_context import get_current_actor, resolve_station_id

bp = Blueprint('readings', __name__, url_prefix='/api/readings')


def _payload():
    return request.get_json(silent=True) or {}


@bp.route('', methods=['POST'])
@login_required
@permission_required(Action.CREATE_READING)
def create_reading():
    """Record a manual reading; per-pair derivation problems come back in errors"""
    actor = get_current_actor()
    data = _payload()
    data['stationId'] = resolve_station_id(actor, data.get('stationId'))

    result = ReadingService.record_reading(actor, data)
    return jsonify({'success': True, 'data': result.to_dict()}), 201


@bp.route('/ocr', methods=['POST'])
@login_required
@permission_required(Action.CREATE_READING)
def ingest_ocr():
    """Accept a reading event from the OCR pipeline; repeats answer 200"""
    actor = get_current_actor()
    data = _payload()
    data['stationId'] = resolve_station_id(actor, data.get('stationId'))

    result = ReadingService.ingest_ocr_event(actor, data)
    return jsonify({'success': True, 'data': result.to_dict()}), 201 if result.created else 200


@bp.route('', methods=['GET'])
@login_required
@permission_required(Action.VIEW)
def list_readings():
    actor = get_current_actor()
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('perPage', current_app.config['ITEMS_PER_PAGE'], type=int)

    readings, total = ReadingService.list_readings(actor, request.args, page=page, per_page=per_page)
    return jsonify({
        'success': True,
        'data': [r.to_dict() for r in readings],
        'pagination': {'page': page, 'perPage': per_page, 'total': total},
    })


@bp.route('/<int:reading_id>/correct', methods=['PUT'])
@login_required
@permission_required(Action.CORRECT_READING)
def correct_reading(reading_id):
    actor = get_current_actor()
    result = ReadingService.correct_reading(actor, reading_id, _payload())
    return jsonify({'success': True, 'data': result.to_dict()})


@bp.route('/<int:reading_id>', methods=['DELETE'])
@login_required
@permission_required(Action.DELETE_READING)
def delete_reading(reading_id):
    actor = get_current_actor()
    sync = ReadingService.delete_reading(actor, reading_id)
    return jsonify({
        'success': True,
        'data': {
            'deletedReadingId': reading_id,
            'sales': [s.to_dict() for s in sync.changed],
            'salesRemoved': sync.removed,
        }
    })
