"""
Creditor Routes
Credit sales, settlements and the creditor ledger
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required

from fueldesk.constants import Action
from fueldesk.services.credit_service import CreditService
from fueldesk.utils.permissions import permission_required
from fueldesk.utils.station_context import get_current_actor

bp = Blueprint('creditors', __name__, url_prefix='/api/creditors')


@bp.route('/<int:creditor_id>/credits', methods=['POST'])
@login_required
@permission_required(Action.RECORD_CREDIT)
def record_credit(creditor_id):
    data = request.get_json(silent=True) or {}
    transaction = CreditService.record_credit(get_current_actor(), creditor_id, data)
    return jsonify({'success': True, 'data': transaction.to_dict()}), 201


@bp.route('/<int:creditor_id>/settle', methods=['POST'])
@login_required
@permission_required(Action.SETTLE_CREDIT)
def settle(creditor_id):
    """
    Body: {"amount": "300.00", "allocations": [{"creditTransactionId": 1, "amount": "200.00"}]}

    Without allocations the amount is applied to the oldest credits first.
    """
    data = request.get_json(silent=True) or {}
    result = CreditService.settle(get_current_actor(), creditor_id, data)
    return jsonify({'success': True, 'data': result.to_dict()})


@bp.route('/<int:creditor_id>/ledger', methods=['GET'])
@login_required
@permission_required(Action.VIEW)
def ledger(creditor_id):
    data = CreditService.get_ledger(get_current_actor(), creditor_id)
    return jsonify({'success': True, 'data': data})
