"""
budget_revision/security.py

Access control helpers.

Key rules:
- Clients are never trusted; all permission checks are server-side.
- Admin (reviewer): full access, not bound by submission windows.
- Unit isolation: a unit user sees and mutates only their unit's proposals.
  Record-level checks live in services/workflow.py and BudgetContext.scope_unit().

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Tuple

from flask import Response, jsonify
from flask_login import current_user


def _forbidden(message: str = "Administrator access required.") -> Tuple[Response, int]:
    """Consistent JSON 403 body (same shape as BudgetError responses)."""
    return jsonify({"error": "forbidden", "message": message}), 403


def _unauthorized() -> Tuple[Response, int]:
    return jsonify({"error": "unauthorized", "message": "Login required."}), 401


def is_admin() -> bool:
    """Return True if current user is authenticated and admin."""
    return bool(current_user.is_authenticated and getattr(current_user, "is_admin", False))


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _unauthorized()
        if not is_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def unit_member_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator: admin, or a user assigned to a service unit.

    Users without a unit have nothing to submit or report on.
    """
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _unauthorized()
        if not is_admin() and not getattr(current_user, "service_unit_id", None):
            return _forbidden("User is not assigned to a unit.")
        return view_func(*args, **kwargs)

    return wrapper
