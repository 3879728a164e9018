"""
budget_revision/blueprints/reports/routes.py

Read-side reports.

- /reports/summary            directorate view (admin) or the caller's unit
- /reports/summary/<unit_id>  one unit, with quarterly / semester breakdowns
- /reports/summary/recompute  rebuild every summary (admin)
- /reports/matrix             variance of stage k against stage k-1
- /reports/recap              realization recap per unit / category / subcategory
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...context import current_context
from ...security import admin_required, unit_member_required
from ...services import reporting
from ...services.variance import build_variance_report
from ...stages import resolve_stage
from ...utils import parse_optional_int

reports_bp = Blueprint("reports", __name__, url_prefix="/reports")


@reports_bp.route("/summary", methods=["GET"])
@unit_member_required
def summary():
    ctx = current_context()
    if ctx.is_admin:
        return jsonify(reporting.directorate_summary(ctx))
    return jsonify({"units": [reporting.unit_summary(ctx, ctx.unit_id)]})


@reports_bp.route("/summary/<int:unit_id>", methods=["GET"])
@unit_member_required
def unit_summary(unit_id: int):
    return jsonify(reporting.unit_summary(current_context(), unit_id))


@reports_bp.route("/summary/recompute", methods=["POST"])
@admin_required
def recompute():
    count = reporting.rebuild_summaries(current_context())
    return jsonify({"recomputed": count})


@reports_bp.route("/matrix", methods=["GET"])
@unit_member_required
def matrix():
    """Variance report; defaults to the active Revision stage."""
    raw_stage = request.args.get("stage")
    stage = resolve_stage(raw_stage) if raw_stage else None
    report = build_variance_report(
        current_context(),
        stage,
        unit_id=parse_optional_int(request.args.get("unit_id")),
    )
    return jsonify(report.to_dict())


@reports_bp.route("/recap", methods=["GET"])
@unit_member_required
def recap():
    """Realization recap of one stage (defaults to the current stage)."""
    ctx = current_context()
    raw_stage = request.args.get("stage")
    stage = resolve_stage(raw_stage) if raw_stage else ctx.active_stage
    rows = reporting.realization_recap(ctx, stage, request.args)
    return jsonify({"stage": stage.label, "rows": rows})
