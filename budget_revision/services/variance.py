"""
Variance comparator ("matrix"): stage k against stage k-1.

For every Accepted, unblocked record of stage k:
- lineage resolves to an Accepted, unblocked record of stage k-1
    before = predecessor total, after = record total, delta = after - before
    Changed if delta != 0 else Unchanged
- otherwise
    New, before = 0

Stage k-1 records without a successor are not listed.
Rows are grouped per unit (unit name order), items ordered by activity title,
with per-unit and grand totals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..context import BudgetContext
from ..errors import ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import ProposalStatus, ServiceUnit, model_for, money, to_decimal
from ..stages import Stage
from .lineage import find_dangling

logger = get_logger(__name__)

CHANGED = "Changed"
UNCHANGED = "Unchanged"
NEW = "New"


@dataclass
class VarianceRow:
    unit_id: int
    proposal_id: int
    lineage_id: int | None
    activity_title: str
    category: str | None
    subcategory: str | None
    before: Decimal
    after: Decimal
    delta: Decimal
    classification: str

    def to_dict(self) -> dict:
        return {
            "proposal_id": self.proposal_id,
            "lineage_id": self.lineage_id,
            "activity_title": self.activity_title,
            "category": self.category,
            "subcategory": self.subcategory,
            "before": self.before,
            "after": self.after,
            "delta": self.delta,
            "classification": self.classification,
        }


@dataclass
class UnitVariance:
    unit_id: int
    unit_name: str
    rows: list = field(default_factory=list)

    @property
    def before_total(self) -> Decimal:
        return money(sum((r.before for r in self.rows), Decimal("0.00")))

    @property
    def after_total(self) -> Decimal:
        return money(sum((r.after for r in self.rows), Decimal("0.00")))

    @property
    def delta_total(self) -> Decimal:
        return money(sum((r.delta for r in self.rows), Decimal("0.00")))

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "unit_name": self.unit_name,
            "rows": [r.to_dict() for r in self.rows],
            "before_total": self.before_total,
            "after_total": self.after_total,
            "delta_total": self.delta_total,
        }


@dataclass
class VarianceReport:
    stage: Stage
    previous: Stage
    units: list = field(default_factory=list)

    @property
    def before_total(self) -> Decimal:
        return money(sum((u.before_total for u in self.units), Decimal("0.00")))

    @property
    def after_total(self) -> Decimal:
        return money(sum((u.after_total for u in self.units), Decimal("0.00")))

    @property
    def delta_total(self) -> Decimal:
        return money(sum((u.delta_total for u in self.units), Decimal("0.00")))

    def rows(self) -> list:
        return [row for unit in self.units for row in unit.rows]

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.label,
            "previous_stage": self.previous.label,
            "units": [u.to_dict() for u in self.units],
            "before_total": self.before_total,
            "after_total": self.after_total,
            "delta_total": self.delta_total,
        }


def _accepted_records(stage: Stage, unit_id: int | None):
    model = model_for(stage)
    query = model.query.filter(
        model.status == ProposalStatus.ACCEPTED,
        model.is_blocked.is_(False),
    )
    if unit_id is not None:
        query = query.filter(model.unit_id == unit_id)
    return query.all()


def classify(before: Decimal, after: Decimal, matched: bool) -> str:
    if not matched:
        return NEW
    return UNCHANGED if after == before else CHANGED


def build_variance_report(
    ctx: BudgetContext,
    stage: Stage | None = None,
    *,
    unit_id: int | None = None,
) -> VarianceReport:
    if stage is None:
        stage = ctx.revision_stage
        if stage is None:
            raise ValidationError("No Revision stage is active; there is nothing to compare.")
    if stage.is_initial:
        raise ValidationError("The Initial stage has no predecessor to compare with.")

    previous = stage.previous()
    scope = ctx.scope_unit(unit_id)

    # independent reads
    current_records = _accepted_records(stage, scope)
    previous_by_id = {r.id: r for r in _accepted_records(previous, scope)}

    pointers = {r.lineage_id for r in current_records if r.lineage_id is not None}
    for lineage_id in sorted(find_dangling(stage, pointers)):
        logger.warning(
            "Lineage inconsistency: %s points to missing %s #%s; reported as New",
            stage.label, previous.label, lineage_id,
        )

    unit_ids = {r.unit_id for r in current_records}
    units = {}
    if unit_ids:
        units = {u.id: u for u in db.session.query(ServiceUnit).filter(ServiceUnit.id.in_(unit_ids)).all()}

    grouped: dict[int, UnitVariance] = {}
    for record in current_records:
        predecessor = previous_by_id.get(record.lineage_id) if record.lineage_id is not None else None
        after = money(to_decimal(record.total))
        before = money(to_decimal(predecessor.total)) if predecessor is not None else Decimal("0.00")
        row = VarianceRow(
            unit_id=record.unit_id,
            proposal_id=record.id,
            lineage_id=record.lineage_id,
            activity_title=record.activity_title or "",
            category=record.category,
            subcategory=record.subcategory,
            before=before,
            after=after,
            delta=money(after - before),
            classification=classify(before, after, predecessor is not None),
        )
        unit = units.get(record.unit_id)
        group = grouped.setdefault(
            record.unit_id,
            UnitVariance(unit_id=record.unit_id, unit_name=unit.name if unit else str(record.unit_id)),
        )
        group.rows.append(row)

    report = VarianceReport(stage=stage, previous=previous)
    for group in sorted(grouped.values(), key=lambda g: (g.unit_name.lower(), g.unit_id)):
        group.rows.sort(key=lambda r: (r.activity_title.lower(), r.proposal_id))
        report.units.append(group)
    return report
