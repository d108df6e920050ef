"""
Permission Decorators and Station Scoping Guard
"""

from functools import wraps
from flask import jsonify
from flask_login import current_user

from fueldesk.constants import Action, Role
from fueldesk.errors import Forbidden


# Minimum role for each action; station scoping is applied on top
ACTION_MIN_ROLE = {
    Action.VIEW: Role.EMPLOYEE,
    Action.CREATE_READING: Role.EMPLOYEE,
    Action.DELETE_READING: Role.EMPLOYEE,
    Action.SAVE_CLOSURE: Role.EMPLOYEE,
    Action.SUBMIT_CLOSURE: Role.EMPLOYEE,
    Action.RECORD_CREDIT: Role.EMPLOYEE,
    Action.CORRECT_READING: Role.MANAGER,
    Action.REDERIVE_SALES: Role.MANAGER,
    Action.SET_PRICE: Role.MANAGER,
    Action.REVIEW_CLOSURE: Role.MANAGER,
    Action.MANAGE_CREDITORS: Role.MANAGER,
    Action.SETTLE_CREDIT: Role.MANAGER,
}


def role_allows(role, action):
    """Check the policy table only, ignoring station scoping"""
    return Role(role).at_least(ACTION_MIN_ROLE[Action(action)])


def can_access(actor, station_id, action):
    """
    Decide whether an actor may perform an action on a station's data

    Platform administrators bypass station scoping. Everyone else must be
    assigned to (or own) the station and hold the minimum role for the
    action.

    Args:
        actor: Actor record
        station_id: Station the resource belongs to
        action: Action key

    Returns:
        bool
    """
    if actor is None:
        return False
    if actor.is_super_admin:
        return True
    if station_id not in actor.station_ids:
        return False
    return role_allows(actor.role, action)


def require_access(actor, station_id, action):
    """Raise Forbidden unless can_access() allows the call"""
    if not can_access(actor, station_id, action):
        action = Action(action)
        if actor is not None and not actor.is_super_admin and station_id not in actor.station_ids:
            message = 'You are not assigned to this station'
        else:
            message = f'Your role may not perform {action.value}'
        raise Forbidden(message, {'stationId': station_id, 'action': action.value})


def scope_station_ids(actor, requested=None):
    """
    Narrow a list query to the stations an actor can see

    List endpoints filter silently instead of failing.

    Args:
        actor: Actor record
        requested: Optional station id the caller asked for

    Returns:
        None when unrestricted (super admin, no filter), else a set of ids
    """
    if actor.is_super_admin:
        return None if requested is None else {requested}
    if requested is None:
        return set(actor.station_ids)
    return {requested} & set(actor.station_ids)


def permission_required(action):
    """
    Decorator to require an authenticated caller whose role allows an action

    Usage:
        @permission_required(Action.REVIEW_CLOSURE)
        def review_closure(closure_id):
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({
                    'success': False,
                    'error': {'code': 'Unauthorized', 'message': 'Authentication required', 'details': {}}
                }), 401

            try:
                role = Role(current_user.role)
            except ValueError:
                raise Forbidden(f'Unknown role {current_user.role}')

            if not role_allows(role, action):
                raise Forbidden('Insufficient permissions', {'action': Action(action).value})

            return f(*args, **kwargs)
        return decorated_function
    return decorator
