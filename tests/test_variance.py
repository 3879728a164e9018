"""
Variance comparator tests.

Stage k records are matched to stage k-1 through lineage; matched rows are
Changed / Unchanged by delta, unmatched rows are New with before = 0.
"""

import logging
from decimal import Decimal

import pytest

from budget_revision.errors import PermissionDenied, ValidationError
from budget_revision.extensions import db
from budget_revision.models import model_for
from budget_revision.services import cycle, proposals
from budget_revision.services.migration import migrate_stage
from budget_revision.services.variance import CHANGED, NEW, UNCHANGED, build_variance_report
from budget_revision.stages import Stage
from helpers import accept, item

INITIAL = Stage.initial()
REV1 = Stage(1)


@pytest.fixture
def migrated(admin_ctx, alice_ctx):
    """Item A accepted at Initial and carried into Revision 1. Returns (a, copy)."""
    a = proposals.create_proposal(alice_ctx, INITIAL, item(10, 50000, activity_title="A"))
    accept(admin_ctx, INITIAL, a.id)
    cycle.activate_revision(admin_ctx, 1)
    (copy_id,) = migrate_stage(admin_ctx).inserted_ids
    return a, proposals.get_proposal(admin_ctx, REV1, copy_id)


class TestScenario:

    def test_changed_item(self, admin_ctx, migrated):
        a, copy = migrated
        proposals.update_proposal(admin_ctx, REV1, copy.id, {"quantity": 14})
        accept(admin_ctx, REV1, copy.id)

        report = build_variance_report(admin_ctx)
        assert report.stage == REV1
        assert report.previous == INITIAL

        (row,) = report.rows()
        assert row.classification == CHANGED
        assert row.before == Decimal("500000.00")
        assert row.after == Decimal("700000.00")
        assert row.delta == Decimal("200000.00")
        assert report.delta_total == Decimal("200000.00")

    def test_unchanged_item(self, admin_ctx, migrated):
        _, copy = migrated
        accept(admin_ctx, REV1, copy.id)
        (row,) = build_variance_report(admin_ctx, REV1).rows()
        assert row.classification == UNCHANGED
        assert row.delta == Decimal("0.00")


class TestClassification:

    def test_unmatched_record_is_new(self, admin_ctx, migrated, units):
        _, copy = migrated
        accept(admin_ctx, REV1, copy.id)
        extra = proposals.create_proposal(
            admin_ctx, REV1, item(1, 1000, activity_title="B", unit_id=units["U1"].id)
        )
        accept(admin_ctx, REV1, extra.id)

        rows = {r.proposal_id: r for r in build_variance_report(admin_ctx).rows()}
        assert rows[extra.id].classification == NEW
        assert rows[extra.id].before == Decimal("0.00")
        assert rows[extra.id].delta == Decimal("1000.00")

    def test_pending_records_are_not_reported(self, admin_ctx, migrated):
        assert build_variance_report(admin_ctx).rows() == []

    def test_predecessor_without_successor_is_omitted(self, admin_ctx, migrated):
        _, copy = migrated
        proposals.delete_proposal(admin_ctx, REV1, copy.id)
        assert build_variance_report(admin_ctx).rows() == []

    def test_blocked_predecessor_makes_row_new(self, admin_ctx, migrated):
        a, copy = migrated
        accept(admin_ctx, REV1, copy.id)
        proposals.set_blocked(admin_ctx, INITIAL, a.id, True)
        (row,) = build_variance_report(admin_ctx).rows()
        assert row.classification == NEW

    def test_dangling_lineage_is_logged_and_reported_as_new(self, admin_ctx, migrated, caplog):
        a, copy = migrated
        accept(admin_ctx, REV1, copy.id)
        a_id = a.id

        # remove the predecessor behind the pointer's back
        initial_model = model_for(INITIAL)
        db.session.execute(initial_model.__table__.delete().where(initial_model.id == a_id))
        db.session.commit()

        with caplog.at_level(logging.WARNING, logger="budget_revision"):
            report = build_variance_report(admin_ctx)

        (row,) = report.rows()
        assert row.classification == NEW
        assert row.lineage_id == a_id
        assert "Lineage inconsistency" in caplog.text


class TestGrouping:

    def test_units_and_totals(self, admin_ctx, alice_ctx, bob_ctx, units):
        a = proposals.create_proposal(alice_ctx, INITIAL, item(1, 1000, activity_title="Zeta"))
        b = proposals.create_proposal(alice_ctx, INITIAL, item(1, 2000, activity_title="Alpha"))
        c = proposals.create_proposal(bob_ctx, INITIAL, item(1, 3000, activity_title="Mid"))
        for record in (a, b, c):
            accept(admin_ctx, INITIAL, record.id)

        cycle.activate_revision(admin_ctx, 1)
        for copy_id in migrate_stage(admin_ctx).inserted_ids:
            accept(admin_ctx, REV1, copy_id)

        report = build_variance_report(admin_ctx)
        assert [u.unit_name for u in report.units] == ["Unit One", "Unit Two"]
        assert [r.activity_title for r in report.units[0].rows] == ["Alpha", "Zeta"]
        assert report.units[0].after_total == Decimal("3000.00")
        assert report.after_total == Decimal("6000.00")
        assert report.delta_total == Decimal("0.00")

    def test_unit_user_sees_own_unit(self, admin_ctx, bob_ctx, migrated):
        _, copy = migrated
        accept(admin_ctx, REV1, copy.id)
        assert build_variance_report(bob_ctx).rows() == []
        with pytest.raises(PermissionDenied):
            build_variance_report(bob_ctx, unit_id=copy.unit_id)


class TestGuards:

    def test_no_active_revision(self, admin_ctx):
        with pytest.raises(ValidationError):
            build_variance_report(admin_ctx)

    def test_initial_has_no_predecessor(self, admin_ctx):
        with pytest.raises(ValidationError):
            build_variance_report(admin_ctx, INITIAL)
