"""
Capability checks for booking actions.

Every role/relationship decision goes through ``can_perform``; handlers
never compare role strings themselves.
"""
import enum

from .models import BookingStatus, UserRole

ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


class BookingAction(str, enum.Enum):
    VIEW = "view"
    COMPLETE = "complete"
    CANCEL = "cancel"


# Which relationship to the booking grants each action to non-admins
_RELATIONSHIP_GRANTS = {
    BookingAction.VIEW: {"customer", "provider"},
    BookingAction.CANCEL: {"customer", "provider"},
    BookingAction.COMPLETE: {"provider"},
}

_STATUS_ACTIONS = {
    BookingStatus.COMPLETED: BookingAction.COMPLETE,
    BookingStatus.CANCELLED: BookingAction.CANCEL,
}


def is_admin(role: UserRole) -> bool:
    return role in ADMIN_ROLES


def action_for_status(status: BookingStatus) -> BookingAction:
    return _STATUS_ACTIONS[status]


def can_perform(role: UserRole, action: BookingAction, *, is_customer: bool = False, is_provider: bool = False) -> bool:
    """Whether a caller with this role and relationship may perform the action on a booking"""
    if is_admin(role):
        return True

    grants = _RELATIONSHIP_GRANTS[action]
    if is_customer and "customer" in grants:
        return True
    if is_provider and "provider" in grants:
        return True
    return False
