"""
Helper Utilities
Common parsing and rounding functions used across the application
"""

from datetime import datetime, date, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from fueldesk.constants import SHIFT_BANDS, Shift
from fueldesk.errors import ValidationError

CENT = Decimal('0.01')
MILLILITRE = Decimal('0.001')


def round_money(amount):
    """
    Round an amount to currency precision using round-half-up

    Args:
        amount: Decimal amount

    Returns:
        Decimal: amount with two decimal places
    """
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def round_volume(volume):
    """Round a volume to meter precision (millilitres)"""
    return Decimal(volume).quantize(MILLILITRE, rounding=ROUND_HALF_UP)


def to_decimal(value, field_name, allow_none=False, minimum=None):
    """
    Parse a request value into a Decimal

    Floats are converted through str() so 25.5 stays 25.5.

    Raises:
        ValidationError: missing or malformed value, or below minimum
    """
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'{field_name} is required', {'field': field_name})

    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be a number', {'field': field_name})

    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field_name} must be a number', {'field': field_name})

    if not number.is_finite():
        raise ValidationError(f'{field_name} must be a number', {'field': field_name})

    if minimum is not None and number < minimum:
        raise ValidationError(f'{field_name} must be at least {minimum}', {'field': field_name})

    return number


def parse_date(value, field_name='date', default=None):
    """Parse YYYY-MM-DD into a date"""
    if value is None or value == '':
        if default is not None:
            return default
        raise ValidationError(f'{field_name} is required', {'field': field_name})
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'{field_name} must be YYYY-MM-DD', {'field': field_name})


def parse_time(value, field_name='time'):
    """Parse HH:MM or HH:MM:SS into a time"""
    if value is None or value == '':
        raise ValidationError(f'{field_name} is required', {'field': field_name})
    if isinstance(value, time):
        return value
    for fmt in ('%H:%M:%S', '%H:%M'):
        try:
            return datetime.strptime(str(value), fmt).time()
        except ValueError:
            continue
    raise ValidationError(f'{field_name} must be HH:MM or HH:MM:SS', {'field': field_name})


def parse_datetime(value, field_name='timestamp'):
    """Parse an ISO-8601 timestamp (naive, station local time)"""
    if value is None or value == '':
        raise ValidationError(f'{field_name} is required', {'field': field_name})
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f'{field_name} must be an ISO-8601 timestamp', {'field': field_name})


def parse_int(value, field_name):
    if value is None or value == '':
        raise ValidationError(f'{field_name} is required', {'field': field_name})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} must be an integer', {'field': field_name})


def parse_shift(value, allow_full_day=True, default=None):
    """Parse a shift name into a Shift"""
    if value is None or value == '':
        if default is not None:
            return default
        raise ValidationError('shift is required', {'field': 'shift'})
    try:
        shift = Shift(value)
    except ValueError:
        raise ValidationError(f'Unknown shift: {value}', {'field': 'shift'})
    if shift == Shift.FULL_DAY and not allow_full_day:
        raise ValidationError('full_day is not allowed here', {'field': 'shift'})
    return shift


def shift_for(moment):
    """
    Shift band for a timestamp

    06:00-14:00 morning, 14:00-22:00 afternoon, 22:00-06:00 night.
    """
    hour = moment.hour
    for shift, start, end in SHIFT_BANDS:
        if start <= hour < end:
            return shift
    return Shift.NIGHT
