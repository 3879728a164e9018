"""
Budget cycle administration: fiscal year, submission windows and revision activation.

A Revision stage, once activated, is never deactivated; the cycle only moves
forward one stage at a time.
"""

from __future__ import annotations

from typing import Any, Mapping

from ..audit import log_action, serialize_model
from ..context import BudgetContext
from ..errors import ValidationError
from ..logging_config import get_logger
from ..models import BudgetSettings
from ..stages import MAX_REVISION
from ..utils import parse_bool, parse_optional_int
from .store import unit_of_work
from .summary import recompute_all

logger = get_logger(__name__)


def update_settings(ctx: BudgetContext, data: Mapping[str, Any]) -> BudgetSettings:
    """Fiscal year and submission windows. Stage activation goes through activate_revision()."""
    ctx.require_admin()
    settings = BudgetSettings.load()
    before = serialize_model(settings)

    # validate everything before touching the session-attached row
    changes = {}
    if "fiscal_year" in data:
        year = parse_optional_int(data.get("fiscal_year"))
        if data.get("fiscal_year") not in (None, "") and year is None:
            raise ValidationError("Fiscal year must be a number.")
        changes["fiscal_year"] = year

    for name in ("initial_open", "revision_open"):
        if name in data:
            value = parse_bool(data.get(name))
            if value is None:
                raise ValidationError(f"Field '{name}' must be true or false.")
            changes[name] = value

    if changes.get("revision_open", settings.revision_open) and not settings.active_revision:
        raise ValidationError("No Revision stage is active; activate one before opening it.")

    with unit_of_work():
        for name, value in changes.items():
            setattr(settings, name, value)
        log_action(settings, "UPDATE", before=before, after=serialize_model(settings), user=ctx.user)

    ctx.refresh()
    return settings


def activate_revision(ctx: BudgetContext, number: int) -> BudgetSettings:
    """Make Revision `number` the current stage and open its window."""
    ctx.require_admin()
    settings = BudgetSettings.load()
    current = settings.active_revision or 0

    if number is None or not 1 <= number <= MAX_REVISION:
        raise ValidationError(f"Revision number must be between 1 and {MAX_REVISION}.")
    if number not in (current, current + 1):
        raise ValidationError(
            f"Cannot activate Revision {number} while Revision {current} is active; "
            f"only Revision {current + 1} can be activated next."
        )

    before = serialize_model(settings)
    changed = number != current
    settings.active_revision = number
    settings.revision_open = True
    if changed:
        # once a revision runs, Initial no longer accepts submissions
        settings.initial_open = False

    with unit_of_work():
        log_action(settings, "ACTIVATE", before=before, after=serialize_model(settings), user=ctx.user)

    ctx.refresh()
    logger.info("Revision %s activated", number)
    if changed:
        # summaries now include the new revision stage
        recompute_all(ctx.settings)
    return settings
