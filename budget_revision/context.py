"""
budget_revision/context.py

Explicit session context for the budget engine.

Every service function receives a BudgetContext instead of reading global state:
- who is acting (user, admin flag, owning unit)
- a snapshot of BudgetSettings (active stage, submission windows)
- cached master lists (classification options)

Lifecycle:
- load():     built once per request from the Flask-Login user (see current_context()).
- refresh():  drop cached lists and re-read settings, e.g. after an admin changes them.
- teardown:   the app factory pops the context from flask.g at app-context teardown.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from flask import g
from flask_login import current_user

from .errors import PermissionDenied
from .models import BudgetSettings, User
from .stages import Stage
from .utils import get_active_options


@dataclass
class BudgetContext:
    user: Optional[User]
    settings: BudgetSettings
    _options: Dict[str, List[str]] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Load / refresh
    # ------------------------------------------------------------------
    @classmethod
    def load(cls, user: Optional[User]) -> "BudgetContext":
        return cls(user=user, settings=BudgetSettings.load())

    def refresh(self) -> None:
        self._options.clear()
        self.settings = BudgetSettings.load()

    # ------------------------------------------------------------------
    # Actor
    # ------------------------------------------------------------------
    @property
    def is_admin(self) -> bool:
        return bool(self.user is not None and self.user.is_admin)

    @property
    def unit_id(self) -> Optional[int]:
        if self.user is None:
            return None
        return self.user.service_unit_id

    @property
    def user_id(self) -> Optional[int]:
        return self.user.id if self.user is not None else None

    @property
    def username(self) -> Optional[str]:
        return self.user.username if self.user is not None else None

    def require_admin(self) -> None:
        if not self.is_admin:
            raise PermissionDenied("Administrator access required.")

    def scope_unit(self, requested_unit_id: Optional[int] = None) -> Optional[int]:
        """
        Unit scope for reads/batch operations.

        - Admin: the requested unit, or None (all units).
        - Unit user: always their own unit; asking for another unit is forbidden.
        """
        if self.is_admin:
            return requested_unit_id
        if self.unit_id is None:
            raise PermissionDenied("User is not assigned to a unit.")
        if requested_unit_id is not None and requested_unit_id != self.unit_id:
            raise PermissionDenied("Access to another unit is not allowed.")
        return self.unit_id

    def can_access_unit(self, unit_id: Optional[int]) -> bool:
        return self.is_admin or (self.unit_id is not None and self.unit_id == unit_id)

    # ------------------------------------------------------------------
    # Budget cycle
    # ------------------------------------------------------------------
    @property
    def active_stage(self) -> Stage:
        return self.settings.active_stage

    @property
    def revision_stage(self) -> Optional[Stage]:
        return self.settings.revision_stage

    def is_superseded(self, stage: Stage) -> bool:
        return stage.index < (self.settings.active_revision or 0)

    def is_window_open(self, stage: Stage) -> bool:
        if stage.is_initial:
            return bool(self.settings.initial_open) and not self.is_superseded(stage)
        return bool(self.settings.revision_open) and stage.index == self.settings.active_revision

    # ------------------------------------------------------------------
    # Master lists
    # ------------------------------------------------------------------
    def options(self, category_key: str) -> List[str]:
        if category_key not in self._options:
            self._options[category_key] = get_active_options(category_key)
        return self._options[category_key]


def current_context() -> BudgetContext:
    """Per-request context stored on flask.g."""
    ctx = g.get("budget_ctx")
    if ctx is None:
        user = current_user._get_current_object() if current_user.is_authenticated else None
        ctx = BudgetContext.load(user)
        g.budget_ctx = ctx
    return ctx


def teardown_context(_exc=None) -> None:
    g.pop("budget_ctx", None)
