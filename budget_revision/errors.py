"""
budget_revision/errors.py

Domain exceptions for the budget engine.

Routes never catch these one by one: the app factory registers a single
handler for BudgetError that maps each class to its HTTP status and a JSON body.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional


class BudgetError(Exception):
    """Base class for all budget engine errors."""

    status_code = 400
    code = "budget_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BudgetError):
    """Missing field, non-positive quantity/price/total, malformed input."""

    code = "validation_error"


class StageResolutionError(ValidationError):
    """Stage label or index that does not map to a stage table."""

    code = "unknown_stage"


class WorkflowError(BudgetError):
    """Status transition or edit not allowed in the record's current state."""

    status_code = 409
    code = "workflow_error"


class PermissionDenied(BudgetError):
    status_code = 403
    code = "forbidden"


class CeilingExceeded(BudgetError):
    """A write would push a unit's Initial-stage commitment past its ceiling."""

    status_code = 409
    code = "ceiling_exceeded"

    def __init__(self, unit_id: int, projected: Decimal, ceiling: Decimal):
        super().__init__(
            f"Projected total {projected} exceeds ceiling {ceiling} for unit {unit_id}.",
            details={"unit_id": unit_id, "projected_total": str(projected), "ceiling": str(ceiling)},
        )
        self.unit_id = unit_id
        self.projected = projected
        self.ceiling = ceiling


class LineageInconsistency(BudgetError):
    """A lineage pointer that does not resolve in the predecessor stage."""

    status_code = 409
    code = "lineage_inconsistency"


class StoreError(BudgetError):
    """Transient read/write failure of the database. Safe to retry manually."""

    status_code = 503
    code = "store_error"
