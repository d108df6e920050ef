"""
Error Logger Utility
Logs unexpected errors with sanitized request context.
"""

import json
import logging

from flask import current_app, has_request_context, request

logger = logging.getLogger(__name__)

# Keys to redact from request data
SENSITIVE_KEYS = {
    'password', 'token', 'csrf_token', 'secret', 'api_key',
    'authorization', 'cookie', 'session', 'card_number', 'cvv', 'pin', 'otp'
}


def _sanitize_data(data):
    """Redact sensitive keys from a dict."""
    if not isinstance(data, dict):
        return data
    sanitized = {}
    for key, value in data.items():
        if any(s in str(key).lower() for s in SENSITIVE_KEYS):
            sanitized[key] = '[REDACTED]'
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_data(value)
        else:
            sanitized[key] = str(value)[:500]  # Truncate long values
    return sanitized


def request_context():
    """Sanitized summary of the current request, or {} outside one"""
    if not has_request_context():
        return {}

    context = {
        'method': request.method,
        'path': request.path,
        'endpoint': request.endpoint,
        'remote_addr': request.remote_addr,
        'actor_header': request.headers.get(current_app.config.get('ACTOR_HEADER', 'X-Actor-Id')),
    }
    raw_data = {}
    if request.args:
        raw_data['args'] = dict(request.args)
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        raw_data['json'] = payload
    if raw_data:
        context['data'] = _sanitize_data(raw_data)
    return context


def log_error(error, status_code=500):
    """
    Log an unexpected error with its traceback and request context.

    Args:
        error: The exception
        status_code: HTTP status code returned to the caller
    """
    context = request_context()
    logger.error(
        f"{type(error).__name__} ({status_code}): {error} | "
        f"{json.dumps(context, default=str)[:4000]}",
        exc_info=error
    )
