"""
Read-side reports built on top of the persisted unit summaries.

- unit summary view: summary row + quarterly / semester breakdowns
- directorate view: every unit summary, in unit order
- realization recap: Accepted, unblocked records of one stage grouped by
  (unit, category, subcategory)
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from sqlalchemy import extract, func

from ..context import BudgetContext
from ..errors import ValidationError
from ..extensions import db
from ..models import (
    EXECUTED_COLUMNS,
    PLANNED_COLUMNS,
    ProposalStatus,
    ServiceUnit,
    UnitSummary,
    model_for,
    money,
    to_decimal,
    zero_vector,
)
from ..stages import Stage
from ..utils import parse_optional_int
from .summary import recompute_all, recompute_unit_summary

QUARTERS = (("Q1", 0, 3), ("Q2", 3, 6), ("Q3", 6, 9), ("Q4", 9, 12))
SEMESTERS = (("S1", 0, 6), ("S2", 6, 12))


def percentage(part: Decimal, whole: Decimal) -> str:
    """Share of `whole` as "x.x%" ("0.0%" when whole is zero)."""
    if not whole:
        return "0.0%"
    value = (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"{value}%"


def period_breakdown(vector, periods) -> list[dict]:
    amounts = [to_decimal(v) for v in vector] or zero_vector()
    total = sum(amounts, Decimal("0.00"))
    rows = []
    for name, start, end in periods:
        amount = money(sum(amounts[start:end], Decimal("0.00")))
        rows.append({"period": name, "amount": amount, "percentage": percentage(amount, total)})
    return rows


def summary_view(summary: UnitSummary) -> dict:
    data = summary.to_dict()
    data["unit_name"] = summary.unit.name if summary.unit else None
    data["quarterly"] = {
        "planned": period_breakdown(data["planned_monthly"], QUARTERS),
        "executed": period_breakdown(data["executed_monthly"], QUARTERS),
    }
    data["semester"] = {
        "planned": period_breakdown(data["planned_monthly"], SEMESTERS),
        "executed": period_breakdown(data["executed_monthly"], SEMESTERS),
    }
    data["execution_rate"] = percentage(data["total_executed"], data["current_total"])
    return data


def unit_summary(ctx: BudgetContext, unit_id: int) -> dict:
    scope = ctx.scope_unit(unit_id)
    if scope is None:
        raise ValidationError("A unit is required.")
    summary = db.session.get(UnitSummary, scope)
    if summary is None:
        # never recomputed yet; build it on first view
        summary = recompute_unit_summary(scope, ctx.settings)
        if summary is None:
            raise ValidationError(f"Unknown unit: {scope}.")
    return summary_view(summary)


def directorate_summary(ctx: BudgetContext) -> dict:
    ctx.require_admin()
    rows = (
        UnitSummary.query.join(ServiceUnit, ServiceUnit.id == UnitSummary.unit_id)
        .order_by(ServiceUnit.name.asc(), ServiceUnit.id.asc())
        .all()
    )
    units = [summary_view(r) for r in rows]

    keys = ("ceiling", "total_submitted", "initial_net_total", "current_total", "total_planned", "total_executed")
    totals = {k: money(sum((u[k] for u in units), Decimal("0.00"))) for k in keys}
    return {"units": units, "totals": totals}


def rebuild_summaries(ctx: BudgetContext) -> int:
    ctx.require_admin()
    return recompute_all(ctx.settings)


def realization_recap(ctx: BudgetContext, stage: Stage, filters: Mapping[str, Any] | None = None) -> list[dict]:
    filters = filters or {}
    model = model_for(stage)

    planned = sum(getattr(model, col) for col in PLANNED_COLUMNS)
    executed = sum(getattr(model, col) for col in EXECUTED_COLUMNS)

    query = (
        db.session.query(
            model.unit_id,
            ServiceUnit.name,
            model.category,
            model.subcategory,
            func.count(model.id),
            func.coalesce(func.sum(model.total), 0),
            func.coalesce(func.sum(planned), 0),
            func.coalesce(func.sum(executed), 0),
        )
        .join(ServiceUnit, ServiceUnit.id == model.unit_id)
        .filter(model.status == ProposalStatus.ACCEPTED, model.is_blocked.is_(False))
    )

    unit_id = ctx.scope_unit(parse_optional_int(filters.get("unit_id")))
    if unit_id is not None:
        query = query.filter(model.unit_id == unit_id)
    category = (filters.get("category") or "").strip()
    if category:
        query = query.filter(model.category == category)
    subcategory = (filters.get("subcategory") or "").strip()
    if subcategory:
        query = query.filter(model.subcategory == subcategory)
    year = parse_optional_int(filters.get("year"))
    if year:
        query = query.filter(extract("year", model.submitted_at) == year)

    rows = (
        query.group_by(model.unit_id, ServiceUnit.name, model.category, model.subcategory)
        .order_by(ServiceUnit.name.asc(), model.category.asc(), model.subcategory.asc())
        .all()
    )

    recap = []
    for unit, unit_name, cat, subcat, count, total, plan, done in rows:
        total = money(to_decimal(total))
        done = money(to_decimal(done))
        recap.append({
            "unit_id": unit,
            "unit_name": unit_name,
            "category": cat,
            "subcategory": subcat,
            "items": count,
            "accepted_total": total,
            "planned_total": money(to_decimal(plan)),
            "executed_total": done,
            "execution_rate": percentage(done, total),
        })
    return recap
