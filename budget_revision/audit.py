"""
budget_revision/audit.py

Audit and history helpers.

- log_action():      AuditLog entry for master-data mutations (units, users, options, settings).
- record_history():  ProposalHistory entry for a proposal mutation.
- delete_history():  drop the history of a deleted proposal.

IMPORTANT:
- These helpers ADD rows to the current SQLAlchemy session.
  The caller controls transaction boundaries (commit/rollback), so the audit row
  is committed together with the data change.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog, ProposalHistory


def _safe_str(value: Any) -> Optional[str]:
    """Stable string representation suitable for JSON and DB storage."""
    if value is None:
        return None
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """
    Convert a SQLAlchemy model instance to a dict snapshot based on table columns.

    NOTES:
    - Captures only scalar column values (not relationships).
    - Values are converted to string for JSON safety and SQLite/PostgreSQL portability.
    """
    data: Dict[str, Optional[str]] = {}
    for column in instance.__table__.columns:
        data[column.name] = _safe_str(getattr(instance, column.name))
    return data


def _actor(user=None):
    """(user_id, username) of the acting user, from the argument or Flask-Login."""
    if user is not None:
        return user.id, user.username
    if has_request_context() and current_user.is_authenticated:
        return current_user.id, current_user.username
    return None, None


def log_action(
    entity: Any,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    user=None,
) -> None:
    """
    Add an AuditLog entry to the current db session.

    Parameters:
        entity: SQLAlchemy model instance with .id (flush first)
        action: CREATE / UPDATE / DELETE
        before: dict snapshot (optional)
        after: dict snapshot (optional)
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError("log_action entity must have an 'id' attribute (after flush).")

    user_id, username = _actor(user)

    entry = AuditLog(
        user_id=user_id,
        username_snapshot=username,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)


def record_history(
    record: Any,
    action: str,
    *,
    status_before: Optional[str] = None,
    status_after: Optional[str] = None,
    note: Optional[str] = None,
    user=None,
) -> ProposalHistory:
    """Append one history row for a proposal record (flush the record first)."""
    if record.id is None:
        raise ValueError("record_history requires a flushed record.")

    user_id, username = _actor(user)

    entry = ProposalHistory(
        stage_index=record.stage.index,
        proposal_id=record.id,
        unit_id=record.unit_id,
        action=action,
        status_before=status_before,
        status_after=status_after if status_after is not None else record.status,
        note=note,
        user_id=user_id,
        username_snapshot=username,
    )
    db.session.add(entry)
    return entry


def delete_history(stage_index: int, proposal_id: int) -> int:
    return (
        ProposalHistory.query
        .filter_by(stage_index=stage_index, proposal_id=proposal_id)
        .delete(synchronize_session=False)
    )
