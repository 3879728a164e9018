"""
Proposals blueprint package export.

IMPORTANT:
- Must expose proposals_bp for app factory registration.
"""

from __future__ import annotations

from .routes import proposals_bp  # noqa: F401
