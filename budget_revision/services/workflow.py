"""
Status workflow for proposal records.

    PendingReview  -> Accepted | Rejected | NeedsRevision     (reviewer)
    NeedsRevision  -> Accepted | Rejected | NeedsRevision     (reviewer, after owner edits)
    Accepted       -> PendingReview                           (administrative reset)
    Rejected       -> PendingReview                           (administrative reset)

Blocked is orthogonal to status:
- may be set only on an Accepted record
- leaving Accepted clears it (blocked implies Accepted)

Edit rights:
- owner (unit user of the record's unit): PendingReview / NeedsRevision / Rejected,
  and only while the stage is not superseded and its submission window is open
- reviewer (admin): any status
"""

from __future__ import annotations

from ..context import BudgetContext
from ..errors import PermissionDenied, ValidationError, WorkflowError
from ..models import ProposalStatus

S = ProposalStatus

TRANSITIONS = {
    S.PENDING_REVIEW: frozenset({S.ACCEPTED, S.REJECTED, S.NEEDS_REVISION}),
    S.NEEDS_REVISION: frozenset({S.ACCEPTED, S.REJECTED, S.NEEDS_REVISION}),
    S.ACCEPTED: frozenset({S.PENDING_REVIEW}),
    S.REJECTED: frozenset({S.PENDING_REVIEW}),
}


def allowed_transitions(status: str) -> frozenset:
    return TRANSITIONS.get(status, frozenset())


def is_owner(ctx: BudgetContext, record) -> bool:
    return ctx.unit_id is not None and ctx.unit_id == record.unit_id


def check_view(ctx: BudgetContext, record) -> None:
    if not ctx.can_access_unit(record.unit_id):
        raise PermissionDenied("This proposal belongs to another unit.")


def check_edit(ctx: BudgetContext, record) -> None:
    """Owner edits while editable; reviewer edits anything."""
    if ctx.is_admin:
        return
    if not is_owner(ctx, record):
        raise PermissionDenied("This proposal belongs to another unit.")
    if ctx.is_superseded(record.stage):
        raise WorkflowError(f"{record.stage.label} is superseded and read-only.")
    if not ctx.is_window_open(record.stage):
        raise WorkflowError(f"The submission window for {record.stage.label} is closed.")
    if record.status not in S.OWNER_EDITABLE:
        raise WorkflowError(f"A proposal in status {record.status} can only be changed by a reviewer.")


# Deletion follows the same rules as editing.
check_delete = check_edit


def check_transition(ctx: BudgetContext, record, new_status: str) -> None:
    if not ctx.is_admin:
        raise PermissionDenied("Only reviewers can change the status of a proposal.")
    if new_status not in S.ALL:
        raise ValidationError(f"Unknown status: {new_status!r}.")
    if new_status not in allowed_transitions(record.status):
        raise WorkflowError(f"Transition {record.status} -> {new_status} is not allowed.")


def apply_transition(record, new_status: str, note: str | None = None) -> str:
    """Set the new status and note. Returns the previous status."""
    previous = record.status
    record.status = new_status
    if note is not None:
        record.review_note = note
    if new_status != S.ACCEPTED:
        record.is_blocked = False
    return previous


def check_block(ctx: BudgetContext, record, blocked: bool) -> None:
    if not ctx.is_admin:
        raise PermissionDenied("Only reviewers can block or unblock a proposal.")
    if blocked and record.status != S.ACCEPTED:
        raise WorkflowError("Only an Accepted proposal can be blocked.")
    if bool(record.is_blocked) == bool(blocked):
        state = "blocked" if blocked else "not blocked"
        raise WorkflowError(f"Proposal is already {state}.")


def check_disbursement_edit(ctx: BudgetContext, record) -> None:
    """Monthly planned/executed figures exist only for Accepted records."""
    if not ctx.can_access_unit(record.unit_id):
        raise PermissionDenied("This proposal belongs to another unit.")
    if record.status != S.ACCEPTED:
        raise WorkflowError("Monthly figures can be recorded only on an Accepted proposal.")
    if not ctx.is_admin and ctx.is_superseded(record.stage):
        raise WorkflowError(f"{record.stage.label} is superseded and read-only.")
