"""
Ceiling guard (Initial stage only).

committed = sum(total) of the unit's active Initial records
            (PendingReview / Accepted / NeedsRevision, not blocked),
            excluding the record under edit
projected = committed + prospective
allowed   = projected <= ceiling

The unit row is locked (SELECT ... FOR UPDATE) before reading, so the check and
the following write happen in one transaction. On SQLite the FOR UPDATE clause is
not emitted; its database write lock serialises writers instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func

from ..errors import CeilingExceeded, ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import ProposalStatus, ServiceUnit, money, to_decimal, model_for
from ..stages import Stage

logger = get_logger(__name__)


@dataclass(frozen=True)
class CeilingCheck:
    unit_id: int
    ceiling: Decimal
    committed: Decimal
    prospective: Decimal
    projected: Decimal
    allowed: bool

    @property
    def remaining(self) -> Decimal:
        return money(self.ceiling - self.projected)

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "ceiling": self.ceiling,
            "committed": self.committed,
            "prospective": self.prospective,
            "projected_total": self.projected,
            "remaining": self.remaining,
            "allowed": self.allowed,
        }


def _load_unit(unit_id: int, lock: bool) -> ServiceUnit:
    query = db.session.query(ServiceUnit).filter(ServiceUnit.id == unit_id)
    if lock:
        query = query.with_for_update()
    unit = query.one_or_none()
    if unit is None:
        raise ValidationError(f"Unknown unit: {unit_id}.")
    return unit


def active_initial_total(unit_id: int, exclude_id: int | None = None) -> Decimal:
    model = model_for(Stage.initial())
    query = db.session.query(func.coalesce(func.sum(model.total), 0)).filter(
        model.unit_id == unit_id,
        model.status.in_(ProposalStatus.ACTIVE),
        model.is_blocked.is_(False),
    )
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return money(to_decimal(query.scalar()))


def check_ceiling(
    unit_id: int,
    prospective,
    *,
    exclude_id: int | None = None,
    lock: bool = False,
) -> CeilingCheck:
    unit = _load_unit(unit_id, lock)
    ceiling = money(to_decimal(unit.ceiling))
    committed = active_initial_total(unit_id, exclude_id=exclude_id)
    prospective = money(to_decimal(prospective))
    projected = money(committed + prospective)
    return CeilingCheck(
        unit_id=unit_id,
        ceiling=ceiling,
        committed=committed,
        prospective=prospective,
        projected=projected,
        allowed=projected <= ceiling,
    )


def enforce_ceiling(unit_id: int, prospective, *, exclude_id: int | None = None) -> CeilingCheck:
    """Locking check used right before an Initial-stage write. Raises CeilingExceeded."""
    check = check_ceiling(unit_id, prospective, exclude_id=exclude_id, lock=True)
    if not check.allowed:
        logger.info(
            "Ceiling exceeded for unit %s: projected %s > ceiling %s",
            unit_id, check.projected, check.ceiling,
        )
        raise CeilingExceeded(unit_id, check.projected, check.ceiling)
    return check
