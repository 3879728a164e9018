"""
Proposal record operations.

Every mutation follows the same shape:
    permission + workflow checks
    -> validation (total = quantity * unit_price, recomputed here)
    -> ceiling guard (Initial stage, active records only)
    -> write + history row in one transaction
    -> summary recompute for the owning unit
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import extract

from ..audit import delete_history, log_action, record_history, serialize_model
from ..context import BudgetContext
from ..errors import PermissionDenied, ValidationError, WorkflowError
from ..extensions import db
from ..logging_config import get_logger
from ..models import (
    MONTHS,
    ProposalHistory,
    ProposalStatus,
    ServiceUnit,
    money,
    model_for,
    to_decimal,
    zero_vector,
)
from ..stages import MAX_REVISION, Stage
from ..utils import OPTION_KEY_CATEGORY, OPTION_KEY_SUBCATEGORY, parse_bool, parse_decimal, parse_optional_int
from . import lineage, workflow
from .ceiling import enforce_ceiling
from .store import unit_of_work
from .summary import refresh_summaries

logger = get_logger(__name__)

TEXT_FIELDS = ("category", "subcategory", "activity_title", "description", "unit_of_measure")
NUMBER_FIELDS = ("quantity", "unit_price")
EDITABLE_FIELDS = TEXT_FIELDS + NUMBER_FIELDS


# ---------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------
def load_record(stage: Stage, proposal_id: int):
    return db.get_or_404(model_for(stage), proposal_id)


def get_proposal(ctx: BudgetContext, stage: Stage, proposal_id: int):
    record = load_record(stage, proposal_id)
    workflow.check_view(ctx, record)
    return record


def list_proposals(ctx: BudgetContext, stage: Stage, filters: Mapping[str, Any] | None = None):
    filters = filters or {}
    model = model_for(stage)
    query = model.query

    unit_id = ctx.scope_unit(parse_optional_int(filters.get("unit_id")))
    if unit_id is not None:
        query = query.filter(model.unit_id == unit_id)

    status = (filters.get("status") or "").strip()
    if status:
        if status not in ProposalStatus.ALL:
            raise ValidationError(f"Unknown status: {status!r}.")
        query = query.filter(model.status == status)

    category = (filters.get("category") or "").strip()
    if category:
        query = query.filter(model.category == category)

    subcategory = (filters.get("subcategory") or "").strip()
    if subcategory:
        query = query.filter(model.subcategory == subcategory)

    blocked = parse_bool(filters.get("blocked"))
    if blocked is not None:
        query = query.filter(model.is_blocked.is_(blocked))

    year = parse_optional_int(filters.get("year"))
    if year:
        query = query.filter(extract("year", model.submitted_at) == year)

    return query.order_by(model.submitted_at.desc(), model.id.desc()).all()


def proposal_history(ctx: BudgetContext, stage: Stage, proposal_id: int):
    get_proposal(ctx, stage, proposal_id)
    return (
        ProposalHistory.query
        .filter_by(stage_index=stage.index, proposal_id=proposal_id)
        .order_by(ProposalHistory.created_at.asc(), ProposalHistory.id.asc())
        .all()
    )


# ---------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------
def _check_option(ctx: BudgetContext, key: str, value: str | None, label: str) -> None:
    if not value:
        return
    allowed = ctx.options(key)
    if allowed and value not in allowed:
        raise ValidationError(f"Invalid {label}: {value!r}.")


def clean_payload(ctx: BudgetContext, data: Mapping[str, Any], *, partial: bool) -> dict:
    """Validated field values from client input (only the fields present when partial)."""
    values: dict = {}

    for name in TEXT_FIELDS:
        if partial and name not in data:
            continue
        raw = data.get(name)
        values[name] = (str(raw).strip() or None) if raw is not None else None

    for name in NUMBER_FIELDS:
        if partial and name not in data:
            continue
        number = parse_decimal(data.get(name))
        if number is None:
            raise ValidationError(f"Field '{name}' is required and must be a number.")
        if number <= 0:
            raise ValidationError(f"Field '{name}' must be greater than zero.")
        values[name] = number

    if not partial:
        for name in ("category", "activity_title"):
            if not values.get(name):
                raise ValidationError(f"Field '{name}' is required.")
    else:
        for name in ("category", "activity_title"):
            if name in values and not values[name]:
                raise ValidationError(f"Field '{name}' cannot be empty.")

    _check_option(ctx, OPTION_KEY_CATEGORY, values.get("category"), "category")
    _check_option(ctx, OPTION_KEY_SUBCATEGORY, values.get("subcategory"), "subcategory")
    return values


def _check_total(record) -> None:
    record.recalc_total()
    if to_decimal(record.total) <= 0:
        raise ValidationError("Total must be greater than zero.")


def _reconcile_monthly(record) -> None:
    """
    Keep the monthly figures consistent with a changed total.

    A plan that no longer adds up to the total is cleared; executed figures
    above the new total are refused.
    """
    total = money(to_decimal(record.total))
    if record.executed_total > total:
        raise ValidationError(
            f"Executed amounts ({record.executed_total}) exceed the new total ({total})."
        )
    planned = record.planned_total
    if planned and planned != total:
        logger.info(
            "%s #%s: planned months (%s) cleared after total changed to %s",
            record.stage.label, record.id, planned, total,
        )
        record.set_planned(zero_vector())


def parse_monthly(raw) -> list[Decimal]:
    """12 non-negative amounts, from a list (Jan..Dec) or a {"jan": ..} mapping."""
    if isinstance(raw, Mapping):
        unknown = set(raw) - set(MONTHS)
        if unknown:
            raise ValidationError(f"Unknown month keys: {sorted(unknown)}.")
        raw = [raw.get(m, 0) for m in MONTHS]
    if not isinstance(raw, (list, tuple)) or len(raw) != len(MONTHS):
        raise ValidationError("Monthly amounts must be 12 values (Jan..Dec).")

    amounts = []
    for month, value in zip(MONTHS, raw):
        number = parse_decimal(value) if value not in (None, "") else Decimal("0")
        if number is None:
            raise ValidationError(f"Amount for {month} is not a number.")
        if number < 0:
            raise ValidationError(f"Amount for {month} cannot be negative.")
        amounts.append(money(number))
    return amounts


def _resolve_unit(ctx: BudgetContext, data: Mapping[str, Any]) -> int:
    if ctx.is_admin:
        unit_id = parse_optional_int(data.get("unit_id"))
        if unit_id is None:
            raise ValidationError("Field 'unit_id' is required.")
        if db.session.get(ServiceUnit, unit_id) is None:
            raise ValidationError(f"Unknown unit: {unit_id}.")
        return unit_id
    if ctx.unit_id is None:
        raise PermissionDenied("User is not assigned to a unit.")
    return ctx.unit_id


def _counts_against_ceiling(record) -> bool:
    return record.stage.is_initial and record.status in ProposalStatus.ACTIVE and not record.is_blocked


# ---------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------
def create_proposal(ctx: BudgetContext, stage: Stage, data: Mapping[str, Any]):
    unit_id = _resolve_unit(ctx, data)
    if not ctx.is_admin and not ctx.is_window_open(stage):
        raise WorkflowError(f"Submissions for {stage.label} are closed.")

    values = clean_payload(ctx, data, partial=False)
    model = model_for(stage)
    record = model(unit_id=unit_id, status=ProposalStatus.PENDING_REVIEW, is_blocked=False, **values)
    _check_total(record)

    lineage_id = parse_optional_int(data.get("lineage_id"))
    if lineage_id is not None:
        if stage.is_initial:
            raise ValidationError("Initial-stage records cannot have a lineage pointer.")
        lineage.validate_link(stage, lineage_id, unit_id)
        record.lineage_id = lineage_id

    with unit_of_work():
        if stage.is_initial:
            enforce_ceiling(unit_id, record.total)
        db.session.add(record)
        db.session.flush()
        record_history(record, "CREATE", status_after=record.status, user=ctx.user)

    logger.info("Created %s proposal #%s for unit %s (total %s)", stage.label, record.id, unit_id, record.total)
    refresh_summaries([unit_id], ctx.settings)
    return record


def update_proposal(ctx: BudgetContext, stage: Stage, proposal_id: int, data: Mapping[str, Any]):
    record = load_record(stage, proposal_id)
    workflow.check_view(ctx, record)
    workflow.check_edit(ctx, record)

    values = clean_payload(ctx, data, partial=True)
    before = serialize_model(record)

    with unit_of_work():
        for name, value in values.items():
            setattr(record, name, value)
        _check_total(record)
        _reconcile_monthly(record)

        if "lineage_id" in data:
            if stage.is_initial:
                raise ValidationError("Initial-stage records cannot have a lineage pointer.")
            lineage.link(record, parse_optional_int(data.get("lineage_id")))

        if _counts_against_ceiling(record):
            enforce_ceiling(record.unit_id, record.total, exclude_id=record.id)

        db.session.flush()
        after = serialize_model(record)
        changes = [
            f"{key}: {before.get(key)} -> {after[key]}"
            for key in sorted(after)
            if key != "updated_at" and after[key] != before.get(key)
        ]
        record_history(record, "UPDATE", status_before=record.status, note="; ".join(changes) or None, user=ctx.user)

    refresh_summaries([record.unit_id], ctx.settings)
    return record


def delete_proposal(ctx: BudgetContext, stage: Stage, proposal_id: int) -> None:
    record = load_record(stage, proposal_id)
    workflow.check_view(ctx, record)
    workflow.check_delete(ctx, record)

    unit_id = record.unit_id
    snapshot = serialize_model(record)

    with unit_of_work():
        if stage.index < MAX_REVISION:
            successor_model = model_for(Stage(stage.index + 1))
            cleared = (
                successor_model.query.filter(successor_model.lineage_id == record.id)
                .update({successor_model.lineage_id: None}, synchronize_session=False)
            )
            if cleared:
                logger.warning(
                    "Deleting %s #%s cleared the lineage of %s successor record(s)",
                    stage.label, record.id, cleared,
                )
        delete_history(stage.index, record.id)
        log_action(record, "DELETE", before=snapshot, after=None, user=ctx.user)
        db.session.delete(record)

    logger.info("Deleted %s proposal #%s of unit %s", stage.label, proposal_id, unit_id)
    refresh_summaries([unit_id], ctx.settings)


# ---------------------------------------------------------------------
# Review actions
# ---------------------------------------------------------------------
def change_status(ctx: BudgetContext, stage: Stage, proposal_id: int, new_status: str, note: str | None = None):
    record = load_record(stage, proposal_id)
    workflow.check_transition(ctx, record, new_status)

    with unit_of_work():
        reactivated = (
            stage.is_initial
            and record.status not in ProposalStatus.ACTIVE
            and new_status in ProposalStatus.ACTIVE
        )
        if reactivated:
            enforce_ceiling(record.unit_id, record.total, exclude_id=record.id)
        planned = record.planned_total
        if new_status == ProposalStatus.ACCEPTED and planned and planned != money(to_decimal(record.total)):
            raise WorkflowError(
                f"Planned months ({planned}) do not add up to the total ({money(to_decimal(record.total))})."
            )
        previous = workflow.apply_transition(record, new_status, note)
        db.session.flush()
        record_history(record, "STATUS", status_before=previous, status_after=new_status, note=note, user=ctx.user)

    logger.info("%s #%s: %s -> %s", stage.label, record.id, previous, new_status)
    refresh_summaries([record.unit_id], ctx.settings)
    return record


def set_blocked(ctx: BudgetContext, stage: Stage, proposal_id: int, blocked: bool, note: str | None = None):
    record = load_record(stage, proposal_id)
    workflow.check_block(ctx, record, blocked)

    with unit_of_work():
        record.is_blocked = bool(blocked)
        db.session.flush()
        record_history(record, "BLOCK" if blocked else "UNBLOCK", status_before=record.status, note=note, user=ctx.user)

    refresh_summaries([record.unit_id], ctx.settings)
    return record


# ---------------------------------------------------------------------
# Monthly figures
# ---------------------------------------------------------------------
def save_planned(ctx: BudgetContext, stage: Stage, proposal_id: int, raw_amounts):
    """Planned disbursement per month; must add up to the total (all zeros clears the plan)."""
    record = load_record(stage, proposal_id)
    workflow.check_disbursement_edit(ctx, record)

    amounts = parse_monthly(raw_amounts)
    planned = money(sum(amounts, Decimal("0.00")))
    total = money(to_decimal(record.total))
    if planned != Decimal("0.00") and planned != total:
        raise ValidationError(
            f"Planned amounts add up to {planned} but the total is {total}.",
            details={"planned_total": str(planned), "total": str(total)},
        )

    with unit_of_work():
        record.set_planned(amounts)
        db.session.flush()
        record_history(record, "PLAN", status_before=record.status, note=f"planned {planned}", user=ctx.user)

    refresh_summaries([record.unit_id], ctx.settings)
    return record


def save_executed(ctx: BudgetContext, stage: Stage, proposal_id: int, raw_amounts):
    """Executed disbursement per month; may not exceed the total."""
    record = load_record(stage, proposal_id)
    workflow.check_disbursement_edit(ctx, record)

    amounts = parse_monthly(raw_amounts)
    executed = money(sum(amounts, Decimal("0.00")))
    total = money(to_decimal(record.total))
    if executed > total:
        raise ValidationError(
            f"Executed amounts add up to {executed}, above the total {total}.",
            details={"executed_total": str(executed), "total": str(total)},
        )

    with unit_of_work():
        record.set_executed(amounts)
        db.session.flush()
        record_history(record, "EXECUTE", status_before=record.status, note=f"executed {executed}", user=ctx.user)

    refresh_summaries([record.unit_id], ctx.settings)
    return record
