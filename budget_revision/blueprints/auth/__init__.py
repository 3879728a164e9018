"""Auth blueprint: session login/logout, CSRF token and the bootstrap admin."""

from .routes import auth_bp  # noqa: F401
