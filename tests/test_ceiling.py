"""
Ceiling guard tests (Initial stage only).

allowed iff committed + prospective <= ceiling, where committed is the sum of
the unit's PendingReview / Accepted / NeedsRevision Initial records that are
not blocked. A refused write leaves nothing behind.
"""

from decimal import Decimal

import pytest

from budget_revision.errors import CeilingExceeded
from budget_revision.models import ProposalStatus, model_for
from budget_revision.services import cycle, proposals
from budget_revision.services.ceiling import active_initial_total, check_ceiling
from budget_revision.stages import Stage
from helpers import accept, item

INITIAL = Stage.initial()


def initial_count(unit_id):
    model = model_for(INITIAL)
    return model.query.filter_by(unit_id=unit_id).count()


class TestScenario:

    def test_second_item_exceeds_ceiling(self, alice_ctx, units):
        u1 = units["U1"]

        a = proposals.create_proposal(alice_ctx, INITIAL, item(10, 50000, activity_title="A"))
        assert a.total == Decimal("500000.00")

        with pytest.raises(CeilingExceeded) as excinfo:
            proposals.create_proposal(alice_ctx, INITIAL, item(20, 30000, activity_title="B"))

        assert excinfo.value.projected == Decimal("1100000.00")
        assert excinfo.value.ceiling == Decimal("1000000.00")
        assert excinfo.value.details["projected_total"] == "1100000.00"
        assert initial_count(u1.id) == 1

    def test_exact_ceiling_is_allowed(self, alice_ctx, units):
        proposals.create_proposal(alice_ctx, INITIAL, item(10, 50000))
        proposals.create_proposal(alice_ctx, INITIAL, item(10, 50000))
        assert active_initial_total(units["U1"].id) == Decimal("1000000.00")


class TestCommittedTotal:

    def test_rejected_and_blocked_do_not_count(self, admin_ctx, alice_ctx, units):
        a = proposals.create_proposal(alice_ctx, INITIAL, item(1, 300000))
        b = proposals.create_proposal(alice_ctx, INITIAL, item(1, 200000))
        c = proposals.create_proposal(alice_ctx, INITIAL, item(1, 100000))

        proposals.change_status(admin_ctx, INITIAL, a.id, ProposalStatus.REJECTED)
        accept(admin_ctx, INITIAL, b.id)
        proposals.set_blocked(admin_ctx, INITIAL, b.id, True)

        assert active_initial_total(units["U1"].id) == Decimal("100000.00")
        assert active_initial_total(units["U1"].id, exclude_id=c.id) == Decimal("0.00")

    def test_other_units_are_ignored(self, alice_ctx, bob_ctx, units):
        proposals.create_proposal(bob_ctx, INITIAL, item(1, 400000))
        check = check_ceiling(units["U1"].id, Decimal("900000"))
        assert check.committed == Decimal("0.00")
        assert check.allowed
        assert check.remaining == Decimal("100000.00")


class TestEdits:

    def test_edit_excludes_the_record_itself(self, alice_ctx):
        a = proposals.create_proposal(alice_ctx, INITIAL, item(10, 50000))
        proposals.create_proposal(alice_ctx, INITIAL, item(1, 400000))

        # 400,000 + 600,000 fits; the old 500,000 is not counted twice
        updated = proposals.update_proposal(alice_ctx, INITIAL, a.id, {"quantity": 12})
        assert updated.total == Decimal("600000.00")

    def test_edit_over_ceiling_is_rolled_back(self, alice_ctx):
        a = proposals.create_proposal(alice_ctx, INITIAL, item(10, 50000))
        proposals.create_proposal(alice_ctx, INITIAL, item(1, 400000))

        with pytest.raises(CeilingExceeded):
            proposals.update_proposal(alice_ctx, INITIAL, a.id, {"quantity": 13})

        reloaded = proposals.get_proposal(alice_ctx, INITIAL, a.id)
        assert reloaded.quantity == Decimal("10.00")
        assert reloaded.total == Decimal("500000.00")

    def test_reset_of_rejected_record_is_guarded(self, admin_ctx, alice_ctx):
        a = proposals.create_proposal(alice_ctx, INITIAL, item(10, 50000))
        proposals.change_status(admin_ctx, INITIAL, a.id, ProposalStatus.REJECTED)
        proposals.create_proposal(alice_ctx, INITIAL, item(10, 60000))

        with pytest.raises(CeilingExceeded):
            proposals.change_status(admin_ctx, INITIAL, a.id, ProposalStatus.PENDING_REVIEW)

        assert proposals.get_proposal(admin_ctx, INITIAL, a.id).status == ProposalStatus.REJECTED

    def test_unblock_is_not_guarded(self, admin_ctx, alice_ctx, units):
        a = proposals.create_proposal(alice_ctx, INITIAL, item(10, 60000))
        accept(admin_ctx, INITIAL, a.id)
        proposals.set_blocked(admin_ctx, INITIAL, a.id, True)
        proposals.create_proposal(alice_ctx, INITIAL, item(10, 60000))

        # unblocking only reverses the exclusion; the unit may end up over its ceiling
        unblocked = proposals.set_blocked(admin_ctx, INITIAL, a.id, False)
        assert unblocked.is_blocked is False
        assert active_initial_total(units["U1"].id) == Decimal("1200000.00")
        assert check_ceiling(units["U1"].id, 0).allowed is False

    def test_revision_stages_are_not_capped(self, admin_ctx, units):
        cycle.activate_revision(admin_ctx, 1)
        record = proposals.create_proposal(
            admin_ctx, Stage(1), item(1, 5000000, unit_id=units["U1"].id)
        )
        assert record.total == Decimal("5000000.00")
