"""
Daily Closure Routes
Closure preparation, draft save and the submit/review workflow
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from fueldesk.constants import Action
from fueldesk.services.closure_service import ClosureService
from fueldesk.services.tender_service import TenderAggregator
from fueldesk.utils.helpers import parse_date, parse_shift
from fueldesk.utils.permissions import permission_required
from fueldesk.utils.station_context import get_current_actor, resolve_station_id

bp = Blueprint('closures', __name__, url_prefix='/api/closures')


def _payload():
    return request.get_json(silent=True) or {}


@bp.route('/prepare', methods=['GET'])
@login_required
@permission_required(Action.VIEW)
def prepare():
    """Sales summary, nozzle readings and tanks for ?date=&shift=&stationId="""
    actor = get_current_actor()
    station_id = resolve_station_id(actor)
    closure_date = parse_date(request.args.get('date'), 'date')
    shift = parse_shift(request.args.get('shift'))

    data = TenderAggregator.prepare(actor, station_id, closure_date, shift)
    return jsonify({'success': True, 'data': data})


@bp.route('', methods=['POST'])
@login_required
@permission_required(Action.SAVE_CLOSURE)
def save_closure():
    """Create (201) or update (200) the draft for a station, date and shift"""
    actor = get_current_actor()
    data = _payload()
    data['stationId'] = resolve_station_id(actor, data.get('stationId'))

    closure, created = ClosureService.save_draft(actor, data)
    return jsonify({'success': True, 'data': closure.to_dict()}), 201 if created else 200


@bp.route('', methods=['GET'])
@login_required
@permission_required(Action.VIEW)
def list_closures():
    actor = get_current_actor()
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('perPage', current_app.config['ITEMS_PER_PAGE'], type=int)

    closures, total = ClosureService.list(actor, request.args, page=page, per_page=per_page)
    return jsonify({
        'success': True,
        'data': [c.to_dict() for c in closures],
        'pagination': {'page': page, 'perPage': per_page, 'total': total},
    })


@bp.route('/<int:closure_id>', methods=['GET'])
@login_required
@permission_required(Action.VIEW)
def get_closure(closure_id):
    closure = ClosureService.get(get_current_actor(), closure_id)
    return jsonify({'success': True, 'data': closure.to_dict()})


@bp.route('/<int:closure_id>/submit', methods=['PUT'])
@login_required
@permission_required(Action.SUBMIT_CLOSURE)
def submit_closure(closure_id):
    data = _payload()
    closure = ClosureService.submit(get_current_actor(), closure_id, version=data.get('version'))
    return jsonify({'success': True, 'data': closure.to_dict()})


@bp.route('/<int:closure_id>/review', methods=['PUT'])
@login_required
@permission_required(Action.REVIEW_CLOSURE)
def review_closure(closure_id):
    """Body: {"action": "approve" | "reject", "reason": "..."}"""
    data = _payload()
    closure = ClosureService.review(
        get_current_actor(),
        closure_id,
        data.get('action'),
        reason=data.get('reason') or data.get('rejectionReason'),
        version=data.get('version'),
    )
    return jsonify({'success': True, 'data': closure.to_dict()})
