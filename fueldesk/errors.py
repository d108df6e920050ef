"""
Error Taxonomy
Exceptions raised by the core services and rendered as JSON by the app
"""


class FuelDeskError(Exception):
    """Base class for all reportable core errors"""
    code = 'Error'
    status_code = 400

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details,
        }


class ValidationError(FuelDeskError):
    code = 'ValidationError'
    status_code = 400


class CreditLimitExceeded(ValidationError):
    code = 'CreditLimitExceeded'


class DuplicateReading(FuelDeskError):
    code = 'DuplicateReading'
    status_code = 409


class MissingPrice(FuelDeskError):
    code = 'MissingPrice'
    status_code = 422


class MeterReset(ValidationError):
    """Reading lower than its predecessor under the 'reject' reset policy"""
    code = 'MeterReset'


class Conflict(FuelDeskError):
    code = 'Conflict'
    status_code = 409


class InvalidTransition(FuelDeskError):
    code = 'InvalidTransition'
    status_code = 409


class OverAllocation(FuelDeskError):
    code = 'OverAllocation'
    status_code = 400


class Forbidden(FuelDeskError):
    code = 'Forbidden'
    status_code = 403


class NotFound(FuelDeskError):
    code = 'NotFound'
    status_code = 404
