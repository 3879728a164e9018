"""
Lineage linking between adjacent stages.

A record of Revision k may point (lineage_id) to the Revision k-1 / Initial record
it supersedes. Invariants:
- the pointer resolves to an existing record of the immediately preceding stage
- the pointed-to record belongs to the same unit
- at most one successor per predecessor record (UNIQUE column + check here)
"""

from __future__ import annotations

from typing import Iterable

from ..errors import LineageInconsistency, ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import model_for
from ..stages import Stage

logger = get_logger(__name__)


def migrated_source_ids(destination: Stage, unit_id: int | None = None) -> set[int]:
    """Predecessor ids already carried into `destination` (scoped to a unit, or global)."""
    if destination.is_initial:
        raise ValidationError("The Initial stage has no lineage.")
    model = model_for(destination)
    query = db.session.query(model.lineage_id).filter(model.lineage_id.isnot(None))
    if unit_id is not None:
        query = query.filter(model.unit_id == unit_id)
    return {row[0] for row in query.all()}


def find_dangling(destination: Stage, lineage_ids: Iterable[int]) -> set[int]:
    """Pointers that do not resolve to any record of the predecessor stage."""
    wanted = set(lineage_ids)
    if not wanted:
        return set()
    source = model_for(destination.previous())
    found = {row[0] for row in db.session.query(source.id).filter(source.id.in_(wanted)).all()}
    return wanted - found


def resolve_predecessor(record):
    """
    Return the predecessor record, or None.

    A pointer that does not resolve is logged as a lineage inconsistency and
    treated as "no lineage".
    """
    if record.stage.is_initial or record.lineage_id is None:
        return None
    source = model_for(record.stage.previous())
    predecessor = db.session.get(source, record.lineage_id)
    if predecessor is None:
        logger.warning(
            "Lineage inconsistency: %s #%s points to missing %s #%s",
            record.stage.label, record.id, record.stage.previous().label, record.lineage_id,
        )
    return predecessor


def validate_link(destination: Stage, source_id: int, unit_id: int, *, exclude_id: int | None = None):
    """
    Check that `source_id` may be linked from a new/edited record of `destination`.

    Returns the predecessor record. Raises LineageInconsistency.
    """
    if destination.is_initial:
        raise ValidationError("Initial-stage records cannot have a lineage pointer.")

    source_stage = destination.previous()
    source = db.session.get(model_for(source_stage), source_id)
    if source is None:
        raise LineageInconsistency(
            f"{source_stage.label} record #{source_id} does not exist.",
            details={"stage": source_stage.label, "lineage_id": source_id},
        )
    if source.unit_id != unit_id:
        raise LineageInconsistency(
            f"{source_stage.label} record #{source_id} belongs to another unit.",
            details={"stage": source_stage.label, "lineage_id": source_id},
        )

    model = model_for(destination)
    query = model.query.filter(model.lineage_id == source_id)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first() is not None:
        raise LineageInconsistency(
            f"{source_stage.label} record #{source_id} already has a successor in {destination.label}.",
            details={"stage": destination.label, "lineage_id": source_id},
        )
    return source


def link(record, source_id: int | None) -> None:
    """Point `record` at `source_id` (None clears the pointer)."""
    if source_id is None:
        record.lineage_id = None
        return
    validate_link(record.stage, source_id, record.unit_id, exclude_id=record.id)
    record.lineage_id = source_id
