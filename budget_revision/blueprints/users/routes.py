"""
User Management (Admin Only).

Rules enforced:
- Unit users MUST be linked to a ServiceUnit; administrators may have none.
- Usernames are unique.
- Clients never trusted: we validate server-side.

Audit:
- CREATE / UPDATE logged
"""

from flask import Blueprint, jsonify, request

from ...audit import log_action, serialize_model
from ...errors import ValidationError
from ...extensions import db
from ...models import ServiceUnit, User
from ...security import admin_required
from ...services.store import unit_of_work
from ...utils import parse_bool, parse_optional_int

users_bp = Blueprint(
    "users",
    __name__,
    url_prefix="/users",
)


def _validated_unit_id(raw, is_admin: bool):
    """Unit link rule: unit users need an existing unit."""
    service_unit_id = parse_optional_int(raw)
    if service_unit_id is not None and db.session.get(ServiceUnit, service_unit_id) is None:
        raise ValidationError(f"Unknown unit: {service_unit_id}.")
    if service_unit_id is None and not is_admin:
        raise ValidationError("A unit user must be assigned to a service unit.")
    return service_unit_id


def _snapshot(user: User) -> dict:
    """Audit snapshot without the password hash."""
    data = serialize_model(user)
    data.pop("password_hash", None)
    return data


# ---------------------------------------------------------------------
# LIST USERS
# ---------------------------------------------------------------------

@users_bp.route("", methods=["GET"])
@admin_required
def list_users():
    """Admin view: list all users."""
    users = User.query.order_by(User.username.asc()).all()
    return jsonify({"users": [u.to_dict() for u in users]})


# ---------------------------------------------------------------------
# CREATE USER
# ---------------------------------------------------------------------

@users_bp.route("", methods=["POST"])
@admin_required
def create_user():
    """
    Create a new system user.

    Required:
    - username
    - password
    - service_unit_id (unit users only)
    """
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = (data.get("password") or "").strip()
    is_admin = bool(parse_bool(data.get("is_admin")))

    if not username or not password:
        raise ValidationError("Username and password are required.")

    if User.query.filter_by(username=username).first():
        raise ValidationError("The username already exists.")

    user = User(
        username=username,
        display_name=(data.get("display_name") or "").strip() or None,
        is_admin=is_admin,
        is_active=True,
        service_unit_id=_validated_unit_id(data.get("service_unit_id"), is_admin),
    )
    user.set_password(password)

    with unit_of_work():
        db.session.add(user)
        db.session.flush()
        log_action(user, "CREATE", before=None, after=_snapshot(user))

    return jsonify({"user": user.to_dict()}), 201


# ---------------------------------------------------------------------
# EDIT USER
# ---------------------------------------------------------------------

@users_bp.route("/<int:user_id>", methods=["PUT"])
@admin_required
def edit_user(user_id):
    """
    Edit an existing user.

    Admin can:
    - change service unit
    - activate/deactivate
    - toggle admin
    - reset password
    """
    user = db.get_or_404(User, user_id)
    data = request.get_json(silent=True) or {}
    before_snapshot = _snapshot(user)

    # validate first; the user row is only touched inside the transaction
    changes = {}
    for flag in ("is_admin", "is_active"):
        if flag in data:
            value = parse_bool(data.get(flag))
            if value is None:
                raise ValidationError(f"Field '{flag}' must be true or false.")
            changes[flag] = value

    if "display_name" in data:
        changes["display_name"] = (data.get("display_name") or "").strip() or None

    raw_unit = data["service_unit_id"] if "service_unit_id" in data else user.service_unit_id
    changes["service_unit_id"] = _validated_unit_id(raw_unit, changes.get("is_admin", user.is_admin))

    new_password = (data.get("password") or "").strip()

    with unit_of_work():
        for name, value in changes.items():
            setattr(user, name, value)
        if new_password:
            user.set_password(new_password)
        db.session.flush()
        log_action(user, "UPDATE", before=before_snapshot, after=_snapshot(user))

    return jsonify({"user": user.to_dict()})
