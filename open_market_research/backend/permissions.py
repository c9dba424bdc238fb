"""
Read/write rules for studies and profiles.

Rules are declared per entity and action as small predicates over the
caller's user id (``None`` for anonymous callers) and the target
record.  Studies are public to read, any signed in user may create
them, and only the author may change or delete them.  Profiles are
visible to signed in users and editable by their owner.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

Rule = Callable[[Optional[str], Optional[Dict[str, Any]]], bool]


class PermissionDenied(Exception):
    """Raised when a rule rejects an action."""

    def __init__(self, entity: str, action: str, authenticated: bool) -> None:
        self.entity = entity
        self.action = action
        self.authenticated = authenticated
        reason = "not allowed" if authenticated else "authentication required"
        super().__init__(f"Cannot {action} {entity}: {reason}")


def _anyone(auth_id: Optional[str], data: Optional[Dict[str, Any]]) -> bool:
    return True


def _authenticated(auth_id: Optional[str], data: Optional[Dict[str, Any]]) -> bool:
    return auth_id is not None


def _owner(field: str) -> Rule:
    def rule(auth_id: Optional[str], data: Optional[Dict[str, Any]]) -> bool:
        return auth_id is not None and data is not None and data.get(field) == auth_id
    return rule


RULES: Dict[str, Dict[str, Rule]] = {
    'studies': {
        'view': _anyone,
        'create': _authenticated,
        'update': _owner('created_by'),
        'delete': _owner('created_by'),
    },
    'profiles': {
        'view': _authenticated,
        'create': _authenticated,
        'update': _owner('user_id'),
        'delete': _owner('user_id'),
    },
}


def check_permission(
    entity: str,
    action: str,
    auth_id: Optional[str],
    data: Optional[Dict[str, Any]] = None,
) -> bool:
    """Return whether ``auth_id`` may perform ``action`` on ``entity``.

    Unknown entities and actions are denied.
    """
    rule = RULES.get(entity, {}).get(action)
    if rule is None:
        return False
    return rule(auth_id, data)


def require_permission(
    entity: str,
    action: str,
    auth_id: Optional[str],
    data: Optional[Dict[str, Any]] = None,
) -> None:
    if not check_permission(entity, action, auth_id, data):
        raise PermissionDenied(entity, action, authenticated=auth_id is not None)
