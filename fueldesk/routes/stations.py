"""
Station Routes
Fuel prices, creditor registration and sales re-derivation per station
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required

from fueldesk.constants import Action
from fueldesk.services.credit_service import CreditService
from fueldesk.services.price_service import PriceService
from fueldesk.services.reading_service import ReadingService
from fueldesk.utils.permissions import permission_required
from fueldesk.utils.station_context import get_current_actor

bp = Blueprint('stations', __name__, url_prefix='/api/stations')


@bp.route('/<int:station_id>/prices', methods=['POST'])
@login_required
@permission_required(Action.SET_PRICE)
def set_price(station_id):
    data = request.get_json(silent=True) or {}
    price = PriceService.set_price(get_current_actor(), station_id, data)
    return jsonify({'success': True, 'data': price.to_dict()}), 201


@bp.route('/<int:station_id>/prices', methods=['GET'])
@login_required
@permission_required(Action.VIEW)
def list_prices(station_id):
    prices = PriceService.list_prices(get_current_actor(), station_id, request.args.get('fuelType'))
    return jsonify({'success': True, 'data': [p.to_dict() for p in prices]})


@bp.route('/<int:station_id>/creditors', methods=['POST'])
@login_required
@permission_required(Action.MANAGE_CREDITORS)
def create_creditor(station_id):
    data = request.get_json(silent=True) or {}
    creditor = CreditService.create_creditor(get_current_actor(), station_id, data)
    return jsonify({'success': True, 'data': creditor.to_dict()}), 201


@bp.route('/<int:station_id>/creditors', methods=['GET'])
@login_required
@permission_required(Action.VIEW)
def list_creditors(station_id):
    creditors = CreditService.list_creditors(get_current_actor(), station_id)
    return jsonify({'success': True, 'data': [c.to_dict() for c in creditors]})


@bp.route('/<int:station_id>/rederive', methods=['POST'])
@login_required
@permission_required(Action.REDERIVE_SALES)
def rederive(station_id):
    """Recompute every sale of the station; frozen nozzles are reported in errors"""
    result = ReadingService.rederive_station(get_current_actor(), station_id)
    return jsonify({'success': True, 'data': result})
