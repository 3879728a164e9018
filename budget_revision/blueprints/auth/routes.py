"""
Authentication Routes

Provides:
- /auth/login
- /auth/logout
- /auth/seed-admin (first system bootstrap)
- /auth/csrf-token (token for JSON clients, sent back as X-CSRFToken)

Rules:
- Only active users may log in.
- The bootstrap admin is a reviewer without a service unit.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ...audit import log_action
from ...errors import ValidationError, WorkflowError
from ...extensions import db
from ...logging_config import get_logger
from ...models import User
from ...services.store import unit_of_work

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

logger = get_logger(__name__)


def _payload() -> dict:
    """JSON body, falling back to form fields."""
    return request.get_json(silent=True) or request.form.to_dict()


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate a user.

    - Only active users may log in
    - Credentials validated via password hash
    """
    if current_user.is_authenticated:
        return jsonify({"user": current_user.to_dict()})

    data = _payload()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    user = User.query.filter_by(username=username).first()

    if not user or not user.check_password(password):
        logger.info("Failed login for %r", username)
        return jsonify({"error": "invalid_credentials", "message": "Invalid username or password."}), 401

    if not user.is_active:
        return jsonify({"error": "inactive_account", "message": "The account is inactive."}), 403

    login_user(user)
    logger.info("User %s logged in", user.username)
    return jsonify({"user": user.to_dict()})


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log out the current user."""
    logout_user()
    return jsonify({"status": "logged_out"})


# ============================================================
# CSRF TOKEN
# ============================================================

@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


# ============================================================
# SEED FIRST ADMIN (BOOTSTRAP)
# ============================================================

@auth_bp.route("/seed-admin", methods=["POST"])
def seed_admin():
    """
    Bootstrap the FIRST admin of the system.

    Safety Rules:
    - If ANY user already exists -> block
    """
    if User.query.count() > 0:
        raise WorkflowError("A user already exists; the bootstrap admin cannot be created again.")

    data = _payload()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        raise ValidationError("Username and password are required.")

    user = User(
        username=username,
        display_name="System Administrator",
        is_admin=True,
        is_active=True,
        service_unit_id=None,
    )
    user.set_password(password)

    with unit_of_work():
        db.session.add(user)
        db.session.flush()
        log_action(user, "CREATE", after=user.to_dict(), user=user)

    logger.info("Bootstrap admin %s created", username)
    return jsonify({"user": user.to_dict()}), 201
