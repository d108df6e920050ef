"""
Domain Constants
Closed enumerations for roles, closure states, shifts and policy actions
"""

from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = 'super_admin'
    OWNER = 'owner'
    MANAGER = 'manager'
    EMPLOYEE = 'employee'

    @property
    def level(self):
        return ROLE_HIERARCHY[self]

    def at_least(self, other):
        return self.level >= ROLE_HIERARCHY[Role(other)]


# Higher number = more access
ROLE_HIERARCHY = {
    Role.SUPER_ADMIN: 100,
    Role.OWNER: 75,
    Role.MANAGER: 50,
    Role.EMPLOYEE: 25,
}


class ClosureStatus(str, Enum):
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class Shift(str, Enum):
    MORNING = 'morning'
    AFTERNOON = 'afternoon'
    NIGHT = 'night'
    FULL_DAY = 'full_day'


# (start hour inclusive, end hour exclusive); night is everything else
SHIFT_BANDS = (
    (Shift.MORNING, 6, 14),
    (Shift.AFTERNOON, 14, 22),
)


class TransactionType(str, Enum):
    CREDIT = 'credit'
    SETTLEMENT = 'settlement'


class ResetPolicy(str, Enum):
    ZERO_BASE = 'zero_base'
    REJECT = 'reject'


class ReviewAction(str, Enum):
    APPROVE = 'approve'
    REJECT = 'reject'


class Action(str, Enum):
    """Keys of the role -> action policy table"""
    VIEW = 'view'
    CREATE_READING = 'reading.create'
    CORRECT_READING = 'reading.correct'
    DELETE_READING = 'reading.delete'
    REDERIVE_SALES = 'sales.rederive'
    SET_PRICE = 'price.set'
    SAVE_CLOSURE = 'closure.save'
    SUBMIT_CLOSURE = 'closure.submit'
    REVIEW_CLOSURE = 'closure.review'
    MANAGE_CREDITORS = 'creditor.manage'
    RECORD_CREDIT = 'credit.record'
    SETTLE_CREDIT = 'credit.settle'


FUEL_TYPES = (
    'petrol',
    'diesel',
    'premium_petrol',
    'premium_diesel',
    'cng',
    'lpg',
    'ev_charging',
)
