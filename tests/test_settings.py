"""
Administration write tests.

Budget cycle settings, unit master data and user accounts are validated as a
whole before any row changes. These tests keep the application context pushed
so the test client shares the session with the service calls that follow; a
rejected request must leave nothing behind for a later commit to pick up.
"""

from decimal import Decimal

import pytest

from budget_revision.errors import ValidationError
from budget_revision.extensions import db
from budget_revision.models import BudgetSettings, ServiceUnit, User
from budget_revision.services import cycle, proposals
from budget_revision.stages import Stage
from helpers import PASSWORD, item

INITIAL = Stage.initial()


@pytest.fixture
def admin_client(app, admin):
    client = app.test_client()
    resp = client.post("/auth/login", json={"username": "admin", "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client


# =============================================================================
# Budget cycle
# =============================================================================

class TestUpdateSettings:

    def test_rejected_update_leaves_settings_untouched(self, admin_ctx, alice_ctx):
        with pytest.raises(ValidationError):
            cycle.update_settings(admin_ctx, {"initial_open": False, "revision_open": True})

        # a later unrelated commit must not carry the rejected values
        proposals.create_proposal(alice_ctx, INITIAL, item(1, 10))
        db.session.expire_all()
        settings = BudgetSettings.load()
        assert settings.initial_open is True
        assert settings.revision_open is False

    def test_bad_flag_is_rejected(self, admin_ctx):
        with pytest.raises(ValidationError):
            cycle.update_settings(admin_ctx, {"fiscal_year": 2027, "initial_open": "maybe"})
        db.session.expire_all()
        assert BudgetSettings.load().fiscal_year != 2027

    def test_valid_update(self, admin_ctx):
        settings = cycle.update_settings(admin_ctx, {"fiscal_year": "2027", "initial_open": "false"})
        assert settings.fiscal_year == 2027
        assert settings.initial_open is False
        assert admin_ctx.settings.initial_open is False


# =============================================================================
# Service units
# =============================================================================

class TestUnitEdit:

    def test_rejected_edit_leaves_unit_untouched(self, admin_client, alice_ctx, units):
        unit_id = units["U1"].id
        resp = admin_client.put(f"/settings/units/{unit_id}", json={"name": "Renamed", "ceiling": "-5"})
        assert resp.status_code == 400

        proposals.create_proposal(alice_ctx, INITIAL, item(1, 10))
        db.session.expire_all()
        unit = db.session.get(ServiceUnit, unit_id)
        assert unit.name == "Unit One"
        assert unit.ceiling == Decimal("1000000.00")

    def test_code_clash_is_rejected(self, admin_client, alice_ctx, units):
        unit_id = units["U1"].id
        resp = admin_client.put(f"/settings/units/{unit_id}", json={"short_name": "One", "code": "U2"})
        assert resp.status_code == 400

        proposals.create_proposal(alice_ctx, INITIAL, item(1, 10))
        db.session.expire_all()
        unit = db.session.get(ServiceUnit, unit_id)
        assert unit.code == "U1"
        assert unit.short_name is None

    def test_valid_edit(self, admin_client, units):
        resp = admin_client.put(f"/settings/units/{units['U1'].id}", json={"name": "Unit 1", "ceiling": "1200000"})
        assert resp.status_code == 200
        body = resp.get_json()["unit"]
        assert body["name"] == "Unit 1"
        assert body["ceiling"] == "1200000.00"


# =============================================================================
# Users
# =============================================================================

class TestUserEdit:

    def test_rejected_edit_leaves_user_untouched(self, admin_client, alice, alice_ctx):
        resp = admin_client.put(f"/users/{alice.id}", json={"display_name": "Changed", "service_unit_id": 9999})
        assert resp.status_code == 400

        proposals.create_proposal(alice_ctx, INITIAL, item(1, 10))
        db.session.expire_all()
        user = db.session.get(User, alice.id)
        assert user.display_name is None
        assert user.service_unit_id is not None

    def test_demoting_admin_requires_a_unit(self, admin_client, units):
        other = User(username="carol", is_admin=True, is_active=True)
        other.set_password(PASSWORD)
        db.session.add(other)
        db.session.commit()

        resp = admin_client.put(f"/users/{other.id}", json={"is_admin": False})
        assert resp.status_code == 400
        db.session.expire_all()
        assert db.session.get(User, other.id).is_admin is True

    def test_valid_edit(self, admin_client, alice, units):
        resp = admin_client.put(
            f"/users/{alice.id}", json={"display_name": "Alice A.", "service_unit_id": units["U2"].id}
        )
        assert resp.status_code == 200
        body = resp.get_json()["user"]
        assert body["display_name"] == "Alice A."
        assert body["service_unit_id"] == units["U2"].id
