"""
Summary aggregator.

Rebuilds one UnitSummary row from the unit's proposal records:

- stages considered: Initial, plus the activated Revision stage (if any)
- only Accepted, unblocked records count toward
    initial_net_total  (Initial stage only)
    current_total      (both stages)
    planned / executed totals and their 12-month vectors
- total_submitted counts every record of both stages, whatever its status
- ceiling is copied from ServiceUnit, never recomputed

Always a full rebuild followed by an upsert keyed by unit_id. Two overlapping
recomputes for one unit may race; the last upsert wins, which is fine because
the row is a derived cache.

Two read strategies:
- server-side: one SUM() query per stage (BUDGET_SERVER_SIDE_AGGREGATION)
- scan: read the rows and add them up in Python
Both produce the same result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from flask import current_app, has_app_context
from sqlalchemy import case, func

from ..extensions import db
from ..logging_config import get_logger
from ..models import (
    EXECUTED_COLUMNS,
    PLANNED_COLUMNS,
    BudgetSettings,
    ProposalStatus,
    ServiceUnit,
    UnitSummary,
    model_for,
    money,
    to_decimal,
    zero_vector,
)
from ..stages import Stage
from .store import unit_of_work

logger = get_logger(__name__)


@dataclass
class StageTotals:
    accepted_total: Decimal = Decimal("0.00")
    submitted_total: Decimal = Decimal("0.00")
    planned: list = field(default_factory=zero_vector)
    executed: list = field(default_factory=zero_vector)


def _server_side_enabled() -> bool:
    if not has_app_context():
        return True
    return bool(current_app.config.get("BUDGET_SERVER_SIDE_AGGREGATION", True))


def _stage_totals_sql(stage: Stage, unit_id: int) -> StageTotals:
    model = model_for(stage)
    counted = (model.status == ProposalStatus.ACCEPTED) & (model.is_blocked.is_(False))

    def accepted_sum(column):
        return func.coalesce(func.sum(case((counted, column), else_=0)), 0)

    columns = [
        accepted_sum(model.total),
        func.coalesce(func.sum(model.total), 0),
    ]
    columns += [accepted_sum(getattr(model, col)) for col in PLANNED_COLUMNS]
    columns += [accepted_sum(getattr(model, col)) for col in EXECUTED_COLUMNS]

    row = db.session.query(*columns).filter(model.unit_id == unit_id).one()

    months = len(PLANNED_COLUMNS)
    return StageTotals(
        accepted_total=money(to_decimal(row[0])),
        submitted_total=money(to_decimal(row[1])),
        planned=[money(to_decimal(v)) for v in row[2:2 + months]],
        executed=[money(to_decimal(v)) for v in row[2 + months:2 + 2 * months]],
    )


def _stage_totals_scan(stage: Stage, unit_id: int) -> StageTotals:
    model = model_for(stage)
    totals = StageTotals()
    for record in model.query.filter(model.unit_id == unit_id).all():
        amount = to_decimal(record.total)
        totals.submitted_total += amount
        if not record.counts_in_aggregation:
            continue
        totals.accepted_total += amount
        for i, value in enumerate(record.planned_amounts()):
            totals.planned[i] += value
        for i, value in enumerate(record.executed_amounts()):
            totals.executed[i] += value
    return totals


def stage_totals(stage: Stage, unit_id: int, *, server_side: bool | None = None) -> StageTotals:
    if server_side is None:
        server_side = _server_side_enabled()
    if server_side:
        return _stage_totals_sql(stage, unit_id)
    return _stage_totals_scan(stage, unit_id)


def summary_stages(settings: BudgetSettings) -> list[Stage]:
    stages = [Stage.initial()]
    if settings.revision_stage is not None:
        stages.append(settings.revision_stage)
    return stages


def compute_unit_summary(unit: ServiceUnit, settings: BudgetSettings, *, server_side: bool | None = None) -> dict:
    """Pure rebuild of one unit's summary values (no writes)."""
    initial_net = Decimal("0.00")
    current = Decimal("0.00")
    submitted = Decimal("0.00")
    planned = zero_vector()
    executed = zero_vector()

    for stage in summary_stages(settings):
        totals = stage_totals(stage, unit.id, server_side=server_side)
        if stage.is_initial:
            initial_net += totals.accepted_total
        current += totals.accepted_total
        submitted += totals.submitted_total
        planned = [a + b for a, b in zip(planned, totals.planned)]
        executed = [a + b for a, b in zip(executed, totals.executed)]

    return {
        "unit_id": unit.id,
        "ceiling": money(to_decimal(unit.ceiling)),
        "total_submitted": money(submitted),
        "initial_net_total": money(initial_net),
        "current_total": money(current),
        "total_planned": money(sum(planned, Decimal("0.00"))),
        "total_executed": money(sum(executed, Decimal("0.00"))),
        "planned_monthly": [money(v) for v in planned],
        "executed_monthly": [money(v) for v in executed],
    }


def _upsert(row: dict) -> None:
    values = dict(row)
    values["planned_monthly"] = [str(v) for v in row["planned_monthly"]]
    values["executed_monthly"] = [str(v) for v in row["executed_monthly"]]
    values["recomputed_at"] = datetime.utcnow()

    dialect = db.session.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        dialect_insert = None

    if dialect_insert is None:
        db.session.merge(UnitSummary(**values))
        return

    table = UnitSummary.__table__
    stmt = dialect_insert(table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.unit_id],
        set_={key: stmt.excluded[key] for key in values if key != "unit_id"},
    )
    db.session.execute(stmt)


def recompute_unit_summary(unit_id: int, settings: BudgetSettings | None = None) -> UnitSummary | None:
    """Full rebuild + upsert for one unit. Returns the persisted row (None for unknown units)."""
    unit = db.session.get(ServiceUnit, unit_id)
    if unit is None:
        logger.warning("Summary recompute skipped: unknown unit %s", unit_id)
        return None
    if settings is None:
        settings = BudgetSettings.load()

    row = compute_unit_summary(unit, settings)
    with unit_of_work():
        _upsert(row)

    logger.debug("Summary recomputed for unit %s: current_total=%s", unit_id, row["current_total"])
    return db.session.get(UnitSummary, unit_id, populate_existing=True)


def recompute_all(settings: BudgetSettings | None = None) -> int:
    if settings is None:
        settings = BudgetSettings.load()
    count = 0
    for (unit_id,) in db.session.query(ServiceUnit.id).order_by(ServiceUnit.id.asc()).all():
        recompute_unit_summary(unit_id, settings)
        count += 1
    logger.info("Recomputed %s unit summaries", count)
    return count


def refresh_summaries(unit_ids: Iterable[int], settings: BudgetSettings | None = None) -> None:
    """
    Post-mutation trigger.

    The mutation is already committed when this runs, so a failure here is
    logged and left for the next recompute instead of failing the request.
    """
    for unit_id in sorted({u for u in unit_ids if u is not None}):
        try:
            recompute_unit_summary(unit_id, settings)
        except Exception:
            logger.exception("Summary recompute failed for unit %s", unit_id)
