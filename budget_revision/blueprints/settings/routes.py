"""
budget_revision/blueprints/settings/routes.py

Settings & Master Data routes.

Scope:
- ServiceUnits CRUD with budget ceilings (admin-only)
- Budget cycle: fiscal year, submission windows, revision activation (admin-only writes)
- OptionValue lists used to classify proposals (CATEGORY / SUBCATEGORY)
- Activity log viewer over AuditLog (admin-only, read-only)

SECURITY:
- Clients are never trusted. All permissions are enforced here server-side.

AUDIT:
- CREATE/UPDATE/DELETE for master data is audited via audit.py.
"""

from __future__ import annotations

from decimal import Decimal

from flask import Blueprint, abort, jsonify, request
from flask_login import login_required

from ...audit import log_action, serialize_model
from ...context import current_context
from ...errors import ValidationError, WorkflowError
from ...extensions import db
from ...logging_config import get_logger
from ...models import OptionCategory, OptionValue, ServiceUnit, UnitSummary, model_for, money
from ...security import admin_required
from ...services import activity, cycle
from ...services.store import unit_of_work
from ...services.summary import refresh_summaries
from ...stages import ALL_STAGES
from ...utils import OPTION_KEY_CATEGORY, OPTION_KEY_SUBCATEGORY, parse_bool, parse_decimal, parse_optional_int

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")

logger = get_logger(__name__)

# Canonical OptionCategory keys (must match proposal validation)
OPTION_LABELS = {
    OPTION_KEY_CATEGORY: "Expenditure category",
    OPTION_KEY_SUBCATEGORY: "Expenditure subcategory",
}


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _get_or_create_category(key: str) -> OptionCategory:
    """
    Ensure an OptionCategory exists.

    This prevents runtime issues if categories have not been seeded yet.
    """
    key = key.upper()
    if key not in OPTION_LABELS:
        abort(404, description=f"Unknown option list: {key}.")

    category = OptionCategory.query.filter_by(key=key).first()
    if category:
        return category

    category = OptionCategory(key=key, label=OPTION_LABELS[key])
    with unit_of_work():
        db.session.add(category)
    return category


def _option_values_for_category(category: OptionCategory):
    """Return OptionValue list ordered consistently."""
    return (
        OptionValue.query.filter_by(category_id=category.id)
        .order_by(OptionValue.sort_order.asc(), OptionValue.value.asc())
        .all()
    )


def _parse_ceiling(raw) -> Decimal:
    ceiling = parse_decimal(raw)
    if ceiling is None:
        raise ValidationError("Ceiling must be a number.")
    if ceiling < 0:
        raise ValidationError("Ceiling cannot be negative.")
    return money(ceiling)


def _unit_has_proposals(unit_id: int) -> bool:
    for stage in ALL_STAGES:
        model = model_for(stage)
        if db.session.query(model.id).filter(model.unit_id == unit_id).first() is not None:
            return True
    return False


# ----------------------------------------------------------------------
# SERVICE UNITS CRUD (admin only)
# ----------------------------------------------------------------------
@settings_bp.route("/units", methods=["GET"])
@admin_required
def units_list():
    """List ServiceUnits (admin-only)."""
    units = ServiceUnit.query.order_by(ServiceUnit.name.asc()).all()
    return jsonify({"units": [u.to_dict() for u in units]})


@settings_bp.route("/units", methods=["POST"])
@admin_required
def unit_create():
    """Create ServiceUnit (admin-only)."""
    data = _payload()
    code = (data.get("code") or "").strip()
    name = (data.get("name") or "").strip()
    short_name = (data.get("short_name") or "").strip()

    if not code or not name:
        raise ValidationError("Code and name are required.")
    if ServiceUnit.query.filter_by(code=code).first():
        raise ValidationError(f"A unit with code {code!r} already exists.")

    unit = ServiceUnit(
        code=code,
        name=name,
        short_name=short_name or None,
        ceiling=_parse_ceiling(data.get("ceiling", 0)),
    )

    with unit_of_work():
        db.session.add(unit)
        db.session.flush()
        log_action(entity=unit, action="CREATE", after=serialize_model(unit))

    refresh_summaries([unit.id])
    return jsonify({"unit": unit.to_dict()}), 201


@settings_bp.route("/units/<int:unit_id>", methods=["PUT"])
@admin_required
def unit_edit(unit_id: int):
    """Edit ServiceUnit (admin-only). A ceiling change rebuilds the unit summary."""
    unit = db.get_or_404(ServiceUnit, unit_id)
    data = _payload()
    before = serialize_model(unit)

    # validate the whole payload before the unit row is touched
    changes = {}
    if "code" in data:
        code = (data.get("code") or "").strip()
        if not code:
            raise ValidationError("Code cannot be empty.")
        clash = ServiceUnit.query.filter(ServiceUnit.code == code, ServiceUnit.id != unit.id).first()
        if clash:
            raise ValidationError(f"A unit with code {code!r} already exists.")
        changes["code"] = code
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Name cannot be empty.")
        changes["name"] = name
    if "short_name" in data:
        changes["short_name"] = (data.get("short_name") or "").strip() or None
    if "ceiling" in data:
        changes["ceiling"] = _parse_ceiling(data.get("ceiling"))

    with unit_of_work():
        for field, value in changes.items():
            setattr(unit, field, value)
        if "ceiling" in changes and before["ceiling"] != str(unit.ceiling):
            logger.info("Ceiling of unit %s changed: %s -> %s", unit.code, before["ceiling"], unit.ceiling)
        db.session.flush()
        log_action(entity=unit, action="UPDATE", before=before, after=serialize_model(unit))

    refresh_summaries([unit.id])
    return jsonify({"unit": unit.to_dict()})


@settings_bp.route("/units/<int:unit_id>", methods=["DELETE"])
@admin_required
def unit_delete(unit_id: int):
    """Delete ServiceUnit (admin-only). Units that own proposals are kept."""
    unit = db.get_or_404(ServiceUnit, unit_id)
    if _unit_has_proposals(unit.id):
        raise WorkflowError("The unit has proposals and cannot be deleted.")

    before = serialize_model(unit)
    with unit_of_work():
        UnitSummary.query.filter_by(unit_id=unit.id).delete(synchronize_session=False)
        log_action(entity=unit, action="DELETE", before=before, after=None)
        db.session.delete(unit)

    return jsonify({"status": "deleted", "id": unit_id})


# ----------------------------------------------------------------------
# BUDGET CYCLE
# ----------------------------------------------------------------------
@settings_bp.route("/budget", methods=["GET"])
@login_required
def budget_settings():
    return jsonify({"settings": current_context().settings.to_dict()})


@settings_bp.route("/budget", methods=["PUT"])
@admin_required
def budget_settings_update():
    settings = cycle.update_settings(current_context(), _payload())
    return jsonify({"settings": settings.to_dict()})


@settings_bp.route("/budget/activate-revision", methods=["POST"])
@admin_required
def activate_revision():
    data = _payload()
    number = parse_optional_int(data.get("revision"))
    if number is None:
        raise ValidationError("Field 'revision' is required.")
    settings = cycle.activate_revision(current_context(), number)
    return jsonify({"settings": settings.to_dict()})


# ----------------------------------------------------------------------
# OPTION VALUES (classification master data)
# ----------------------------------------------------------------------
@settings_bp.route("/options/<key>", methods=["GET"])
@login_required
def options_list(key: str):
    """Option values of one list. Everyone may read; inactive values are admin-only."""
    category = _get_or_create_category(key)
    values = _option_values_for_category(category)
    if not current_context().is_admin:
        values = [v for v in values if v.is_active]
    return jsonify({"key": category.key, "label": category.label, "values": [v.to_dict() for v in values]})


@settings_bp.route("/options/<key>", methods=["POST"])
@admin_required
def options_save(key: str):
    """
    Create a value, or update it when the body carries an "id".

    Audited for CREATE/UPDATE.
    """
    category = _get_or_create_category(key)
    data = _payload()

    value = (data.get("value") or "").strip()
    if not value:
        raise ValidationError("Value is required.")
    sort_order = parse_optional_int(data.get("sort_order")) or 0
    is_active = parse_bool(data.get("is_active"))
    if is_active is None:
        is_active = True

    ov_id = parse_optional_int(data.get("id"))
    duplicate = OptionValue.query.filter(
        OptionValue.category_id == category.id,
        OptionValue.value == value,
        OptionValue.id != (ov_id or 0),
    ).first()
    if duplicate:
        raise ValidationError(f"Value {value!r} already exists in {category.key}.")

    if ov_id is None:
        ov = OptionValue(category_id=category.id, value=value, sort_order=sort_order, is_active=is_active)
        with unit_of_work():
            db.session.add(ov)
            db.session.flush()
            log_action(entity=ov, action="CREATE", after=serialize_model(ov))
        return jsonify({"value": ov.to_dict()}), 201

    ov = OptionValue.query.filter_by(id=ov_id, category_id=category.id).first()
    if not ov:
        abort(404, description="Option value not found.")

    before = serialize_model(ov)
    ov.value = value
    ov.sort_order = sort_order
    ov.is_active = is_active
    with unit_of_work():
        db.session.flush()
        log_action(entity=ov, action="UPDATE", before=before, after=serialize_model(ov))
    return jsonify({"value": ov.to_dict()})


@settings_bp.route("/options/<key>/<int:value_id>", methods=["DELETE"])
@admin_required
def options_delete(key: str, value_id: int):
    category = _get_or_create_category(key)
    ov = OptionValue.query.filter_by(id=value_id, category_id=category.id).first()
    if not ov:
        abort(404, description="Option value not found.")

    before = serialize_model(ov)
    with unit_of_work():
        log_action(entity=ov, action="DELETE", before=before)
        db.session.delete(ov)

    return jsonify({"status": "deleted", "id": value_id})


# ----------------------------------------------------------------------
# ACTIVITY LOG (admin only, read-only)
# ----------------------------------------------------------------------
@settings_bp.route("/audit-log", methods=["GET"])
@admin_required
def audit_log():
    """Paginated audit trail; filters user_id, username, entity_type, action, date_from, date_to."""
    return jsonify(activity.audit_log_page(current_context(), request.args))


@settings_bp.route("/audit-log/users", methods=["GET"])
@admin_required
def audit_log_users():
    return jsonify({"users": activity.audit_log_users(current_context())})
