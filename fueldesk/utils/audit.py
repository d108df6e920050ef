"""
Activity Log Helper
"""

import json
import logging

from flask import has_request_context, request

from fueldesk.models import db, ActivityLog

logger = logging.getLogger(__name__)


def log_activity(actor, action, entity_type, entity_id, details=None, station_id=None):
    """
    Append an audit row to the current transaction

    The row is committed (or rolled back) together with the change it
    describes, so callers never see an audit entry for a write that failed.
    """
    if isinstance(details, dict):
        details = json.dumps(details, default=str)

    entry = ActivityLog(
        user_id=actor.id if actor is not None else None,
        station_id=station_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=request.remote_addr if has_request_context() else None
    )
    db.session.add(entry)
    logger.debug(f"Activity {action} on {entity_type} {entity_id} by user {entry.user_id}")
    return entry
