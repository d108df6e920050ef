"""
Station Context Utilities for Multi-Station Support

Builds the explicit Actor passed into every service call and resolves which
station a request is about.
"""

from flask import g, request
from flask_login import current_user

from fueldesk.constants import Role
from fueldesk.errors import Forbidden, ValidationError
from fueldesk.records import Actor


def get_user_station_ids(user):
    """
    Get all station ids a user is attached to.

    Owners reach the stations they own; managers and employees reach the
    stations they are assigned to.
    """
    from fueldesk.models import Station, StationAssignment

    ids = {a.station_id for a in StationAssignment.query.filter_by(user_id=user.id).all()}
    if user.role == Role.OWNER.value:
        ids |= {s.id for s in Station.query.filter_by(owner_id=user.id).all()}
    return frozenset(ids)


def actor_for(user):
    """Build an Actor record from a User row"""
    try:
        role = Role(user.role)
    except ValueError:
        raise Forbidden(f'Unknown role {user.role}')
    return Actor(id=user.id, role=role, station_ids=get_user_station_ids(user))


def get_current_actor():
    """
    Actor for the authenticated caller of this request.

    Cached on flask.g for the duration of the request.
    """
    actor = getattr(g, 'actor', None)
    if actor is None:
        actor = actor_for(current_user)
        g.actor = actor
    return actor


def resolve_station_id(actor, value=None):
    """
    Station a request targets.

    An explicit stationId wins; otherwise a caller attached to exactly one
    station gets that station.

    Raises:
        ValidationError: no station given and none can be inferred
    """
    if value is None:
        value = request.args.get('stationId') or (request.get_json(silent=True) or {}).get('stationId')

    if value not in (None, ''):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError('stationId must be an integer', {'field': 'stationId'})

    if len(actor.station_ids) == 1:
        return next(iter(actor.station_ids))

    raise ValidationError('Station ID is required', {'field': 'stationId'})
