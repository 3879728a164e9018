"""
Budget Revision Manager – Domain Models

Master data:
- ServiceUnit (organizational budget holder, with its admin-set ceiling)
- User (login user, optionally bound to one ServiceUnit)
- OptionCategory / OptionValue (classification lists: CATEGORY, SUBCATEGORY)
- BudgetSettings (singleton row: fiscal year, submission windows, active revision)

Proposal storage:
- One table per stage ("proposals", "proposals_rev1" ... "proposals_rev30").
  Every stage table has the same flat columns, generated by _build_stage_model().
- Revision tables carry lineage_id -> predecessor table, UNIQUE.
- STAGE_MODELS maps Stage index -> model class.

Derived / history:
- ProposalHistory (one row per proposal mutation)
- UnitSummary (derived rollup, always rebuildable from the stage tables)
- AuditLog (master-data mutations)

IMPORTANT:
- total is ALWAYS quantity * unit_price, recomputed server-side (recalc_total()).
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db
from .stages import ALL_STAGES, Stage


MONTHS = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")

PLANNED_COLUMNS = tuple(f"planned_{m}" for m in MONTHS)
EXECUTED_COLUMNS = tuple(f"executed_{m}" for m in MONTHS)


class ProposalStatus:
    PENDING_REVIEW = "PendingReview"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    NEEDS_REVISION = "NeedsRevision"

    ALL = (PENDING_REVIEW, ACCEPTED, REJECTED, NEEDS_REVISION)

    # Statuses that count against the Initial-stage ceiling
    ACTIVE = (PENDING_REVIEW, ACCEPTED, NEEDS_REVISION)

    # Statuses in which the owning unit may edit/delete
    OWNER_EDITABLE = (PENDING_REVIEW, NEEDS_REVISION, REJECTED)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def to_decimal(value) -> Decimal:
    """Convert Numeric/None to Decimal safely."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value))


def money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def zero_vector() -> list[Decimal]:
    return [Decimal("0.00") for _ in MONTHS]


# ---------------------------------------------------------------------
# Units & users
# ---------------------------------------------------------------------
class ServiceUnit(db.Model):
    """Organizational budget holder. The ceiling caps its Initial-stage commitment."""

    __tablename__ = "service_units"

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(50), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    short_name = db.Column(db.String(100))

    ceiling = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    users = db.relationship("User", back_populates="service_unit", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "short_name": self.short_name,
            "ceiling": money(to_decimal(self.ceiling)),
        }

    def __repr__(self):
        return f"<ServiceUnit {self.code}>"


class User(UserMixin, db.Model):
    """
    System login user.

    - is_admin: directorate user (reviewer + administrator), sees all units.
    - service_unit_id: owning unit for unit users.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(255), nullable=True)

    is_admin = db.Column(db.Boolean, default=False, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    service_unit_id = db.Column(
        db.Integer,
        db.ForeignKey("service_units.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    service_unit = db.relationship(
        "ServiceUnit",
        back_populates="users",
        foreign_keys=[service_unit_id],
    )

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "service_unit_id": self.service_unit_id,
        }

    def __repr__(self):
        return f"<User {self.username}>"


# ---------------------------------------------------------------------
# Generic option lists (classification master data)
# ---------------------------------------------------------------------
class OptionCategory(db.Model):
    __tablename__ = "option_categories"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(80), unique=True, nullable=False, index=True)
    label = db.Column(db.String(120), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class OptionValue(db.Model):
    __tablename__ = "option_values"

    id = db.Column(db.Integer, primary_key=True)

    category_id = db.Column(
        db.Integer,
        db.ForeignKey("option_categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    value = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    sort_order = db.Column(db.Integer, default=0)

    category = db.relationship(
        "OptionCategory",
        backref=db.backref("values", lazy=True, cascade="all, delete-orphan"),
    )

    __table_args__ = (db.UniqueConstraint("category_id", "value", name="uq_category_value"),)

    def to_dict(self) -> dict:
        return {"id": self.id, "value": self.value, "is_active": self.is_active, "sort_order": self.sort_order}


# ---------------------------------------------------------------------
# Budget cycle settings
# ---------------------------------------------------------------------
class BudgetSettings(db.Model):
    """
    Singleton row (id=1) holding the state of the budget cycle.

    active_revision:
    - 0 => only the Initial stage exists
    - N => Revision N is the current stage; stages < N are superseded
    """

    __tablename__ = "budget_settings"

    id = db.Column(db.Integer, primary_key=True)

    fiscal_year = db.Column(db.Integer, nullable=True)
    initial_open = db.Column(db.Boolean, default=True, nullable=False)
    active_revision = db.Column(db.Integer, default=0, nullable=False)
    revision_open = db.Column(db.Boolean, default=False, nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def load(cls) -> "BudgetSettings":
        """Return the singleton row, creating it on first use."""
        settings = db.session.get(cls, 1)
        if settings is None:
            settings = cls(id=1, initial_open=True, active_revision=0, revision_open=False)
            db.session.add(settings)
            db.session.flush()
        return settings

    @property
    def active_stage(self) -> Stage:
        return Stage(self.active_revision or 0)

    @property
    def revision_stage(self) -> Stage | None:
        """The activated Revision stage, if any."""
        if not self.active_revision:
            return None
        return Stage.revision(self.active_revision)

    def to_dict(self) -> dict:
        return {
            "fiscal_year": self.fiscal_year,
            "initial_open": self.initial_open,
            "active_revision": self.active_revision,
            "revision_open": self.revision_open,
            "active_stage": self.active_stage.label,
        }


# ---------------------------------------------------------------------
# Proposal records (one table per stage)
# ---------------------------------------------------------------------
class ProposalMixin:
    """Behaviour shared by every stage table. Columns come from _build_stage_model()."""

    def recalc_total(self):
        self.total = money(to_decimal(self.quantity) * to_decimal(self.unit_price))

    def planned_amounts(self) -> list[Decimal]:
        return [to_decimal(getattr(self, col)) for col in PLANNED_COLUMNS]

    def executed_amounts(self) -> list[Decimal]:
        return [to_decimal(getattr(self, col)) for col in EXECUTED_COLUMNS]

    def set_planned(self, amounts):
        for col, amount in zip(PLANNED_COLUMNS, amounts):
            setattr(self, col, money(to_decimal(amount)))

    def set_executed(self, amounts):
        for col, amount in zip(EXECUTED_COLUMNS, amounts):
            setattr(self, col, money(to_decimal(amount)))

    @property
    def planned_total(self) -> Decimal:
        return money(sum(self.planned_amounts(), Decimal("0.00")))

    @property
    def executed_total(self) -> Decimal:
        return money(sum(self.executed_amounts(), Decimal("0.00")))

    @property
    def counts_in_aggregation(self) -> bool:
        """Accepted and not blocked."""
        return self.status == ProposalStatus.ACCEPTED and not self.is_blocked

    @property
    def lineage(self) -> int | None:
        if self.stage.is_initial:
            return None
        return self.lineage_id

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "stage": self.stage.label,
            "unit_id": self.unit_id,
            "category": self.category,
            "subcategory": self.subcategory,
            "activity_title": self.activity_title,
            "description": self.description,
            "unit_of_measure": self.unit_of_measure,
            "quantity": to_decimal(self.quantity),
            "unit_price": to_decimal(self.unit_price),
            "total": to_decimal(self.total),
            "status": self.status,
            "is_blocked": bool(self.is_blocked),
            "review_note": self.review_note,
            "lineage_id": self.lineage,
            "planned": self.planned_amounts(),
            "executed": self.executed_amounts(),
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        return data

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.id} unit={self.unit_id} {self.status}>"


def _monthly_columns() -> dict:
    cols = {}
    for col in PLANNED_COLUMNS + EXECUTED_COLUMNS:
        cols[col] = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    return cols


def _build_stage_model(stage: Stage):
    """Create the ORM class for one stage table."""
    attrs = {
        "__tablename__": stage.table_name,
        "stage": stage,
        "id": db.Column(db.Integer, primary_key=True),
        "unit_id": db.Column(
            db.Integer,
            db.ForeignKey("service_units.id"),
            nullable=False,
            index=True,
        ),
        "category": db.Column(db.String(120), nullable=False, index=True),
        "subcategory": db.Column(db.String(120), nullable=True, index=True),
        "activity_title": db.Column(db.String(255), nullable=False),
        "description": db.Column(db.Text, nullable=True),
        "unit_of_measure": db.Column(db.String(50), nullable=True),
        "quantity": db.Column(db.Numeric(12, 2), nullable=False),
        "unit_price": db.Column(db.Numeric(18, 2), nullable=False),
        "total": db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00")),
        "status": db.Column(db.String(20), nullable=False, default=ProposalStatus.PENDING_REVIEW, index=True),
        "is_blocked": db.Column(db.Boolean, nullable=False, default=False, index=True),
        "review_note": db.Column(db.Text, nullable=True),
        "submitted_at": db.Column(db.DateTime, default=datetime.utcnow, index=True),
        "updated_at": db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow),
        "unit": db.relationship("ServiceUnit"),
    }
    attrs.update(_monthly_columns())

    if stage.is_initial:
        class_name = "InitialProposal"
    else:
        class_name = f"Revision{stage.index}Proposal"
        # lineage pointer: at most one successor per predecessor record
        attrs["lineage_id"] = db.Column(
            db.Integer,
            db.ForeignKey(f"{stage.previous().table_name}.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
            index=True,
        )

    return type(class_name, (ProposalMixin, db.Model), attrs)


STAGE_MODELS = {stage.index: _build_stage_model(stage) for stage in ALL_STAGES}


def model_for(stage: Stage):
    """Lookup table stage -> ORM class."""
    return STAGE_MODELS[stage.index]


# ---------------------------------------------------------------------
# History, summary, audit
# ---------------------------------------------------------------------
class ProposalHistory(db.Model):
    """Timeline of a single proposal record (deleted together with it)."""

    __tablename__ = "proposal_history"

    id = db.Column(db.Integer, primary_key=True)

    stage_index = db.Column(db.Integer, nullable=False, index=True)
    proposal_id = db.Column(db.Integer, nullable=False, index=True)
    unit_id = db.Column(db.Integer, nullable=True, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)
    status_before = db.Column(db.String(20), nullable=True)
    status_after = db.Column(db.String(20), nullable=True)
    note = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(150), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (db.Index("ix_history_stage_proposal", "stage_index", "proposal_id"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage": Stage(self.stage_index).label,
            "proposal_id": self.proposal_id,
            "action": self.action,
            "status_before": self.status_before,
            "status_after": self.status_after,
            "note": self.note,
            "username": self.username_snapshot,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UnitSummary(db.Model):
    """
    Derived per-unit rollup. Fully overwritten on every recompute.

    planned_monthly / executed_monthly are 12-element lists (JSON).
    """

    __tablename__ = "unit_summaries"

    unit_id = db.Column(
        db.Integer,
        db.ForeignKey("service_units.id", ondelete="CASCADE"),
        primary_key=True,
    )

    ceiling = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    total_submitted = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    initial_net_total = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    current_total = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    total_planned = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    total_executed = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))

    planned_monthly = db.Column(db.JSON, nullable=False, default=list)
    executed_monthly = db.Column(db.JSON, nullable=False, default=list)

    recomputed_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    unit = db.relationship("ServiceUnit")

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "ceiling": to_decimal(self.ceiling),
            "total_submitted": to_decimal(self.total_submitted),
            "initial_net_total": to_decimal(self.initial_net_total),
            "current_total": to_decimal(self.current_total),
            "total_planned": to_decimal(self.total_planned),
            "total_executed": to_decimal(self.total_executed),
            "planned_monthly": [to_decimal(v) for v in (self.planned_monthly or [])],
            "executed_monthly": [to_decimal(v) for v in (self.executed_monthly or [])],
            "recomputed_at": self.recomputed_at.isoformat() if self.recomputed_at else None,
        }


class AuditLog(db.Model):
    """Audit trail for master-data mutations."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(150), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username_snapshot,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "before": json.loads(self.before_data) if self.before_data else None,
            "after": json.loads(self.after_data) if self.after_data else None,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
