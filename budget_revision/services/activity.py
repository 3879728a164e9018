"""
Activity log viewer (administrators only).

Reads the AuditLog trail newest first, one page at a time. Filters:
user_id, username, entity_type, action, date_from / date_to (YYYY-MM-DD,
both inclusive).
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, Mapping

from ..context import BudgetContext
from ..errors import ValidationError
from ..extensions import db
from ..models import AuditLog
from ..utils import parse_optional_int

DEFAULT_PER_PAGE = 50
MAX_PER_PAGE = 200


def _parse_day(raw, field: str) -> date | None:
    text = str(raw).strip() if raw is not None else ""
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Field '{field}' must be a date (YYYY-MM-DD).") from None


def _positive(raw, field: str, default: int) -> int:
    if raw in (None, ""):
        return default
    value = parse_optional_int(raw)
    if value is None or value < 1:
        raise ValidationError(f"Field '{field}' must be a positive integer.")
    return value


def audit_log_page(ctx: BudgetContext, filters: Mapping[str, Any] | None = None) -> dict:
    ctx.require_admin()
    filters = filters or {}

    query = AuditLog.query

    if filters.get("user_id") not in (None, ""):
        user_id = parse_optional_int(filters.get("user_id"))
        if user_id is None:
            raise ValidationError("Field 'user_id' must be an integer.")
        query = query.filter(AuditLog.user_id == user_id)
    username = (filters.get("username") or "").strip()
    if username:
        query = query.filter(AuditLog.username_snapshot == username)
    entity_type = (filters.get("entity_type") or "").strip()
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    action = (filters.get("action") or "").strip().upper()
    if action:
        query = query.filter(AuditLog.action == action)

    date_from = _parse_day(filters.get("date_from"), "date_from")
    date_to = _parse_day(filters.get("date_to"), "date_to")
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from is after date_to.")
    if date_from:
        query = query.filter(AuditLog.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        query = query.filter(AuditLog.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    page = _positive(filters.get("page"), "page", 1)
    per_page = min(_positive(filters.get("per_page"), "per_page", DEFAULT_PER_PAGE), MAX_PER_PAGE)

    pagination = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )
    return {
        "entries": [entry.to_dict() for entry in pagination.items],
        "page": pagination.page,
        "per_page": pagination.per_page,
        "total": pagination.total,
        "pages": pagination.pages,
        "has_next": pagination.has_next,
        "has_prev": pagination.has_prev,
    }


def audit_log_users(ctx: BudgetContext) -> list[dict]:
    """Distinct actors present in the log, for the user filter."""
    ctx.require_admin()
    rows = (
        db.session.query(AuditLog.user_id, AuditLog.username_snapshot)
        .filter(AuditLog.username_snapshot.isnot(None))
        .distinct()
        .order_by(AuditLog.username_snapshot.asc())
        .all()
    )
    return [{"user_id": user_id, "username": username} for user_id, username in rows]
