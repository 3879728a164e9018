"""
Stage migration: carry Accepted, unblocked records of stage k-1 into stage k.

Steps:
1. source = destination.previous()
2. already-migrated set = lineage pointers present in the destination (unit scope or global)
3. candidates = source records with status Accepted and not blocked (same scope)
4. drop candidates already in the migrated set
5. copy each remaining record: monetary + classification fields and planned months
   are carried; status -> PendingReview; executed months -> 0; blocked -> False;
   lineage_id -> source id
6. insert in one batch, one history row per copy, then recompute the affected units

Re-running is a no-op for records that were already carried forward; the UNIQUE
lineage column rejects a concurrent duplicate, in which case the whole batch is
rolled back and can be re-run.

With BUDGET_SERVER_SIDE_COPY the batch is a single INSERT ... SELECT.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from flask import current_app, has_app_context
from sqlalchemy import insert, literal, select

from ..audit import record_history
from ..context import BudgetContext
from ..errors import PermissionDenied, StageResolutionError, ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import EXECUTED_COLUMNS, PLANNED_COLUMNS, ProposalStatus, model_for
from ..stages import Stage
from .lineage import find_dangling, migrated_source_ids
from .store import unit_of_work
from .summary import refresh_summaries

logger = get_logger(__name__)

# Columns copied verbatim from the source record
CARRIED_COLUMNS = (
    "unit_id",
    "category",
    "subcategory",
    "activity_title",
    "description",
    "unit_of_measure",
    "quantity",
    "unit_price",
    "total",
) + PLANNED_COLUMNS


@dataclass
class MigrationResult:
    source: Stage
    destination: Stage
    inserted_ids: list = field(default_factory=list)
    skipped_ids: list = field(default_factory=list)
    affected_units: set = field(default_factory=set)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)

    def to_dict(self) -> dict:
        return {
            "source": self.source.label,
            "destination": self.destination.label,
            "inserted": self.inserted_count,
            "inserted_ids": list(self.inserted_ids),
            "already_migrated": len(self.skipped_ids),
            "affected_units": sorted(self.affected_units),
        }


def _server_side_enabled() -> bool:
    if not has_app_context():
        return True
    return bool(current_app.config.get("BUDGET_SERVER_SIDE_COPY", True))


def _resolve_destination(ctx: BudgetContext, destination: Stage | None) -> Stage:
    active = ctx.revision_stage
    if destination is None:
        if active is None:
            raise ValidationError("No Revision stage is active; activate one before migrating.")
        destination = active
    if destination.is_initial:
        raise StageResolutionError("Cannot migrate into the Initial stage.")
    if active is None or destination != active:
        raise ValidationError(f"{destination.label} is not the active Revision stage.")
    if not ctx.is_admin and not ctx.is_window_open(destination):
        raise PermissionDenied(f"Submissions for {destination.label} are closed.")
    return destination


def _candidates(source: Stage, unit_id: int | None):
    model = model_for(source)
    query = model.query.filter(
        model.status == ProposalStatus.ACCEPTED,
        model.is_blocked.is_(False),
    )
    if unit_id is not None:
        query = query.filter(model.unit_id == unit_id)
    return query.order_by(model.id.asc()).all()


def _copy_emulated(source: Stage, destination: Stage, records) -> None:
    target = model_for(destination)
    copies = []
    for record in records:
        values = {col: getattr(record, col) for col in CARRIED_COLUMNS}
        copy = target(
            **values,
            status=ProposalStatus.PENDING_REVIEW,
            is_blocked=False,
            lineage_id=record.id,
        )
        copy.set_executed([Decimal("0.00")] * len(EXECUTED_COLUMNS))
        copies.append(copy)
    db.session.add_all(copies)
    db.session.flush()


def _copy_server_side(source: Stage, destination: Stage, source_ids: list[int]) -> None:
    src = model_for(source)
    dst_table = model_for(destination).__table__
    now = datetime.utcnow()

    target_columns = list(CARRIED_COLUMNS) + list(EXECUTED_COLUMNS) + [
        "status", "is_blocked", "lineage_id", "submitted_at", "updated_at",
    ]
    select_columns = [getattr(src, col) for col in CARRIED_COLUMNS]
    select_columns += [literal(Decimal("0.00"), dst_table.c[col].type) for col in EXECUTED_COLUMNS]
    select_columns += [
        literal(ProposalStatus.PENDING_REVIEW, dst_table.c.status.type),
        literal(False, dst_table.c.is_blocked.type),
        src.id,
        literal(now, dst_table.c.submitted_at.type),
        literal(now, dst_table.c.updated_at.type),
    ]

    stmt = insert(dst_table).from_select(
        target_columns,
        select(*select_columns).where(src.id.in_(source_ids)),
    )
    db.session.execute(stmt)


def migrate_stage(
    ctx: BudgetContext,
    destination: Stage | None = None,
    *,
    unit_id: int | None = None,
    server_side: bool | None = None,
) -> MigrationResult:
    destination = _resolve_destination(ctx, destination)
    source = destination.previous()
    scope = ctx.scope_unit(unit_id)
    if server_side is None:
        server_side = _server_side_enabled()

    already = migrated_source_ids(destination, scope)
    dangling = find_dangling(destination, already)
    for lineage_id in sorted(dangling):
        logger.warning(
            "Lineage inconsistency: %s has a pointer to missing %s #%s",
            destination.label, source.label, lineage_id,
        )

    candidates = _candidates(source, scope)
    pending = [r for r in candidates if r.id not in already]

    result = MigrationResult(source=source, destination=destination)
    result.skipped_ids = [r.id for r in candidates if r.id in already]

    if not pending:
        logger.info("Migration %s -> %s: nothing to carry forward", source.label, destination.label)
        return result

    pending_ids = [r.id for r in pending]
    target = model_for(destination)

    with unit_of_work():
        if server_side:
            _copy_server_side(source, destination, pending_ids)
        else:
            _copy_emulated(source, destination, pending)

        copies = (
            target.query.filter(target.lineage_id.in_(pending_ids))
            .order_by(target.lineage_id.asc())
            .all()
        )
        for copy in copies:
            record_history(
                copy,
                "MIGRATE",
                status_after=ProposalStatus.PENDING_REVIEW,
                note=f"Carried forward from {source.label} #{copy.lineage_id}",
                user=ctx.user,
            )
        result.inserted_ids = [c.id for c in copies]
        result.affected_units = {c.unit_id for c in copies}

    logger.info(
        "Migration %s -> %s: %s inserted, %s already migrated",
        source.label, destination.label, result.inserted_count, len(result.skipped_ids),
    )
    refresh_summaries(result.affected_units, ctx.settings)
    return result
