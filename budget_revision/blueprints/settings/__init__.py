"""
Settings blueprint package export.
"""

from __future__ import annotations

from .routes import settings_bp  # noqa: F401
