"""Capability checks shared by every handler.

``ensure_allowed`` is the single place that compares principal roles,
statuses and ownership; handlers never test ``user.type`` themselves.
"""
from enum import Enum
from typing import Optional

from errors import Forbidden
from models import User


class Action(str, Enum):
    CREATE_DONATION = "create_donation"
    CLAIM_DONATION = "claim_donation"
    UPDATE_DONATION = "update_donation"
    DELETE_DONATION = "delete_donation"
    REMOVE_DONATION = "remove_donation"
    MANAGE_USERS = "manage_users"
    LEAVE_FEEDBACK = "leave_feedback"


_ROLE_ACTIONS = {
    Action.CREATE_DONATION: ("donor", "Only donors can create donations"),
    Action.CLAIM_DONATION: ("ngo", "Only NGOs can claim donations"),
    Action.REMOVE_DONATION: ("admin", "Only admins can remove donations"),
    Action.MANAGE_USERS: ("admin", "Only admins can manage users"),
}

_OWNER_ACTIONS = {
    Action.UPDATE_DONATION: "You can only update your own donations",
    Action.DELETE_DONATION: "You can only delete your own donations",
}


def is_allowed(principal: User, action: Action, owner_id: Optional[int] = None) -> bool:
    try:
        ensure_allowed(principal, action, owner_id)
    except Forbidden:
        return False
    return True


def ensure_allowed(
    principal: User, action: Action, owner_id: Optional[int] = None
) -> None:
    """Raise ``Forbidden`` unless ``principal`` may perform ``action`` on a
    resource owned by ``owner_id``."""
    if principal.status != "active":
        raise Forbidden("Account is not active")

    if action in _ROLE_ACTIONS:
        role, message = _ROLE_ACTIONS[action]
        if principal.type != role:
            raise Forbidden(message)
    elif action in _OWNER_ACTIONS:
        if owner_id is None or principal.id != owner_id:
            raise Forbidden(_OWNER_ACTIONS[action])
