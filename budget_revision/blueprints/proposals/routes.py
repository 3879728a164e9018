"""
budget_revision/blueprints/proposals/routes.py

Proposal routes, one set per stage.

<stage> is the URL form of a stage: "initial" or "revision-N".

Includes:
- list / create / read / update / delete
- review actions: status, block, unblock (reviewer)
- monthly planned / executed figures
- history timeline
- stage migration and a read-only ceiling check

IMPORTANT:
- Clients are never trusted. Access control and validations are server-side,
  in the services layer; these views only translate HTTP <-> service calls.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...context import current_context
from ...errors import ValidationError
from ...security import unit_member_required
from ...services import proposals as service
from ...services.ceiling import check_ceiling
from ...services.migration import migrate_stage
from ...stages import Stage, resolve_stage
from ...utils import parse_decimal, parse_optional_int

proposals_bp = Blueprint("proposals", __name__, url_prefix="/proposals")


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def _stage(slug: str) -> Stage:
    return Stage.from_slug(slug)


def _payload() -> dict:
    return request.get_json(silent=True) or {}


# ---------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------
@proposals_bp.route("/<stage>", methods=["GET"])
@unit_member_required
def list_proposals(stage: str):
    stage_obj = _stage(stage)
    records = service.list_proposals(current_context(), stage_obj, request.args)
    return jsonify({"stage": stage_obj.label, "proposals": [r.to_dict() for r in records]})


@proposals_bp.route("/<stage>", methods=["POST"])
@unit_member_required
def create_proposal(stage: str):
    record = service.create_proposal(current_context(), _stage(stage), _payload())
    return jsonify({"proposal": record.to_dict()}), 201


# ---------------------------------------------------------------------
# Single record
# ---------------------------------------------------------------------
@proposals_bp.route("/<stage>/<int:proposal_id>", methods=["GET"])
@unit_member_required
def get_proposal(stage: str, proposal_id: int):
    record = service.get_proposal(current_context(), _stage(stage), proposal_id)
    return jsonify({"proposal": record.to_dict()})


@proposals_bp.route("/<stage>/<int:proposal_id>", methods=["PUT"])
@unit_member_required
def update_proposal(stage: str, proposal_id: int):
    record = service.update_proposal(current_context(), _stage(stage), proposal_id, _payload())
    return jsonify({"proposal": record.to_dict()})


@proposals_bp.route("/<stage>/<int:proposal_id>", methods=["DELETE"])
@unit_member_required
def delete_proposal(stage: str, proposal_id: int):
    service.delete_proposal(current_context(), _stage(stage), proposal_id)
    return jsonify({"status": "deleted", "id": proposal_id})


@proposals_bp.route("/<stage>/<int:proposal_id>/history", methods=["GET"])
@unit_member_required
def proposal_history(stage: str, proposal_id: int):
    entries = service.proposal_history(current_context(), _stage(stage), proposal_id)
    return jsonify({"history": [e.to_dict() for e in entries]})


# ---------------------------------------------------------------------
# Review actions
# ---------------------------------------------------------------------
@proposals_bp.route("/<stage>/<int:proposal_id>/status", methods=["POST"])
@unit_member_required
def change_status(stage: str, proposal_id: int):
    data = _payload()
    new_status = (data.get("status") or "").strip()
    if not new_status:
        raise ValidationError("Field 'status' is required.")
    note = (data.get("note") or "").strip() or None
    record = service.change_status(current_context(), _stage(stage), proposal_id, new_status, note)
    return jsonify({"proposal": record.to_dict()})


@proposals_bp.route("/<stage>/<int:proposal_id>/block", methods=["POST"])
@unit_member_required
def block(stage: str, proposal_id: int):
    note = (_payload().get("note") or "").strip() or None
    record = service.set_blocked(current_context(), _stage(stage), proposal_id, True, note)
    return jsonify({"proposal": record.to_dict()})


@proposals_bp.route("/<stage>/<int:proposal_id>/unblock", methods=["POST"])
@unit_member_required
def unblock(stage: str, proposal_id: int):
    note = (_payload().get("note") or "").strip() or None
    record = service.set_blocked(current_context(), _stage(stage), proposal_id, False, note)
    return jsonify({"proposal": record.to_dict()})


# ---------------------------------------------------------------------
# Monthly figures
# ---------------------------------------------------------------------
@proposals_bp.route("/<stage>/<int:proposal_id>/planned", methods=["PUT"])
@unit_member_required
def save_planned(stage: str, proposal_id: int):
    amounts = _payload().get("amounts")
    record = service.save_planned(current_context(), _stage(stage), proposal_id, amounts)
    return jsonify({"proposal": record.to_dict()})


@proposals_bp.route("/<stage>/<int:proposal_id>/executed", methods=["PUT"])
@unit_member_required
def save_executed(stage: str, proposal_id: int):
    amounts = _payload().get("amounts")
    record = service.save_executed(current_context(), _stage(stage), proposal_id, amounts)
    return jsonify({"proposal": record.to_dict()})


# ---------------------------------------------------------------------
# Stage migration / ceiling
# ---------------------------------------------------------------------
@proposals_bp.route("/migrate", methods=["POST"])
@unit_member_required
def migrate():
    """
    Carry Accepted records of the previous stage into the active Revision stage.

    Unit users migrate their own unit; reviewers migrate every unit unless a
    unit_id is given.
    """
    data = _payload()
    destination = resolve_stage(data["stage"]) if data.get("stage") else None
    result = migrate_stage(
        current_context(),
        destination,
        unit_id=parse_optional_int(data.get("unit_id")),
    )
    return jsonify(result.to_dict())


@proposals_bp.route("/ceiling-check", methods=["GET"])
@unit_member_required
def ceiling_check():
    """Read-only preview of the ceiling guard (no lock, no write)."""
    ctx = current_context()
    unit_id = ctx.scope_unit(parse_optional_int(request.args.get("unit_id")))
    if unit_id is None:
        raise ValidationError("Parameter 'unit_id' is required.")

    amount = parse_decimal(request.args.get("amount", "0"))
    if amount is None or amount < 0:
        raise ValidationError("Parameter 'amount' must be a non-negative number.")

    check = check_ceiling(unit_id, amount, exclude_id=parse_optional_int(request.args.get("exclude_id")))
    return jsonify(check.to_dict())

