"""
HTTP surface tests.

These run against the Flask test client with no application context pushed
between requests, so every request builds its own context (and its own
BudgetContext on flask.g). Data is seeded up front inside a short-lived
context; the in-memory database is shared across contexts.

Money values arrive as strings (Flask serializes Decimal with str()).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from budget_revision import create_app
from budget_revision.extensions import db
from budget_revision.models import ProposalStatus, ServiceUnit, User
from budget_revision.seed import seed_default_options
from helpers import PASSWORD, item


@pytest.fixture
def api():
    app = create_app("config.TestingConfig")
    ids = {}
    with app.app_context():
        db.create_all()
        seed_default_options()

        u1 = ServiceUnit(code="U1", name="Unit One", ceiling=Decimal("1000000.00"))
        u2 = ServiceUnit(code="U2", name="Unit Two", ceiling=Decimal("500000.00"))
        db.session.add_all([u1, u2])
        db.session.flush()

        for username, is_admin, unit in (("admin", True, None), ("alice", False, u1), ("bob", False, u2)):
            user = User(username=username, is_admin=is_admin, is_active=True,
                        service_unit_id=unit.id if unit else None)
            user.set_password(PASSWORD)
            db.session.add(user)
        db.session.commit()
        ids = {"U1": u1.id, "U2": u2.id}

    app.ids = ids
    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


def login(app, username):
    client = app.test_client()
    resp = client.post("/auth/login", json={"username": username, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def admin_client(api):
    return login(api, "admin")


@pytest.fixture
def alice_client(api):
    return login(api, "alice")


@pytest.fixture
def bob_client(api):
    return login(api, "bob")


def create(client, payload, stage="initial"):
    resp = client.post(f"/proposals/{stage}", json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["proposal"]


def set_status(client, proposal_id, status, stage="initial"):
    resp = client.post(f"/proposals/{stage}/{proposal_id}/status", json={"status": status})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["proposal"]


# =============================================================================
# Authentication
# =============================================================================

class TestAuth:

    def test_anonymous_index(self, api):
        body = api.test_client().get("/").get_json()
        assert body["user"] is None
        assert body["app"] == "Budget Revision Manager"

    def test_login_required(self, api):
        resp = api.test_client().get("/proposals/initial")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "unauthorized"

    def test_bad_password(self, api):
        resp = api.test_client().post("/auth/login", json={"username": "alice", "password": "nope"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "invalid_credentials"

    def test_login_and_logout(self, alice_client):
        assert alice_client.get("/").get_json()["user"]["username"] == "alice"
        assert alice_client.post("/auth/logout").status_code == 200
        assert alice_client.get("/").get_json()["user"] is None

    def test_seed_admin_only_once(self, api):
        resp = api.test_client().post("/auth/seed-admin", json={"username": "root", "password": "x"})
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "workflow_error"


def test_seed_admin_bootstraps_empty_system():
    app = create_app("config.TestingConfig")
    with app.app_context():
        db.create_all()
    try:
        client = app.test_client()
        resp = client.post("/auth/seed-admin", json={"username": "root", "password": "pw"})
        assert resp.status_code == 201
        user = resp.get_json()["user"]
        assert user["is_admin"] is True
        assert user["service_unit_id"] is None
    finally:
        with app.app_context():
            db.session.remove()
            db.drop_all()


# =============================================================================
# Proposals
# =============================================================================

class TestProposals:

    def test_create_and_list(self, alice_client, bob_client):
        created = create(alice_client, item(10, 50000, activity_title="A"))
        assert created["status"] == ProposalStatus.PENDING_REVIEW
        assert Decimal(created["total"]) == Decimal("500000")
        assert created["stage"] == "Initial"

        listed = alice_client.get("/proposals/initial").get_json()
        assert [p["id"] for p in listed["proposals"]] == [created["id"]]

        # unit isolation
        assert bob_client.get("/proposals/initial").get_json()["proposals"] == []
        assert bob_client.get(f"/proposals/initial/{created['id']}").status_code == 403

    def test_ceiling_exceeded_body(self, alice_client):
        create(alice_client, item(10, 50000, activity_title="A"))
        resp = alice_client.post("/proposals/initial", json=item(20, 30000, activity_title="B"))
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["error"] == "ceiling_exceeded"
        assert body["details"]["projected_total"] == "1100000.00"
        assert body["details"]["ceiling"] == "1000000.00"

    def test_ceiling_preview(self, api, alice_client):
        create(alice_client, item(1, 400000))
        body = alice_client.get("/proposals/ceiling-check?amount=700000").get_json()
        assert body["allowed"] is False
        assert Decimal(body["committed"]) == Decimal("400000")
        assert Decimal(body["remaining"]) == Decimal("-100000")

    def test_unknown_stage(self, alice_client):
        resp = alice_client.get("/proposals/bogus")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "unknown_stage"

    def test_unknown_category(self, alice_client):
        payload = item(1, 10)
        payload["category"] = "Lottery Tickets"
        resp = alice_client.post("/proposals/initial", json=payload)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "validation_error"

    def test_missing_record(self, alice_client):
        resp = alice_client.get("/proposals/initial/9999")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "not_found"

    def test_owner_cannot_review(self, alice_client):
        created = create(alice_client, item(1, 10))
        resp = alice_client.post(f"/proposals/initial/{created['id']}/status", json={"status": "Accepted"})
        assert resp.status_code == 403

    def test_planned_figures(self, admin_client, alice_client):
        created = create(alice_client, item(1, 1200))
        set_status(admin_client, created["id"], "Accepted")

        resp = alice_client.put(f"/proposals/initial/{created['id']}/planned", json={"amounts": [100] * 12})
        assert resp.status_code == 200
        assert resp.get_json()["proposal"]["planned"][0] == "100.00"

        resp = alice_client.put(f"/proposals/initial/{created['id']}/planned", json={"amounts": {"jan": 5}})
        assert resp.status_code == 400

    def test_history(self, admin_client, alice_client):
        created = create(alice_client, item(1, 10))
        set_status(admin_client, created["id"], "NeedsRevision")
        history = alice_client.get(f"/proposals/initial/{created['id']}/history").get_json()["history"]
        assert [h["action"] for h in history] == ["CREATE", "STATUS"]


# =============================================================================
# Budget cycle
# =============================================================================

class TestBudgetCycle:

    def test_settings_are_admin_only(self, alice_client):
        assert alice_client.get("/settings/budget").status_code == 200
        assert alice_client.put("/settings/budget", json={"fiscal_year": 2026}).status_code == 403
        assert alice_client.post("/settings/budget/activate-revision", json={"revision": 1}).status_code == 403

    def test_activate_revision(self, admin_client):
        resp = admin_client.post("/settings/budget/activate-revision", json={"revision": 1})
        settings = resp.get_json()["settings"]
        assert settings["active_revision"] == 1
        assert settings["active_stage"] == "Revision 1"
        assert settings["initial_open"] is False
        assert settings["revision_open"] is True

    def test_revisions_cannot_be_skipped(self, admin_client):
        resp = admin_client.post("/settings/budget/activate-revision", json={"revision": 2})
        assert resp.status_code == 400

    def test_closed_initial_window(self, admin_client, alice_client):
        admin_client.put("/settings/budget", json={"initial_open": False})
        resp = alice_client.post("/proposals/initial", json=item(1, 10))
        assert resp.status_code == 409

    def test_full_revision_cycle(self, admin_client, alice_client):
        a = create(alice_client, item(10, 50000, activity_title="A"))
        set_status(admin_client, a["id"], "Accepted")

        admin_client.post("/settings/budget/activate-revision", json={"revision": 1})

        migrated = alice_client.post("/proposals/migrate", json={}).get_json()
        assert migrated["destination"] == "Revision 1"
        assert migrated["inserted"] == 1
        (copy_id,) = migrated["inserted_ids"]

        again = alice_client.post("/proposals/migrate", json={}).get_json()
        assert again["inserted"] == 0
        assert again["already_migrated"] == 1

        resp = admin_client.put(f"/proposals/revision-1/{copy_id}", json={"quantity": 14})
        assert resp.status_code == 200
        set_status(admin_client, copy_id, "Accepted", stage="revision-1")

        matrix = alice_client.get("/reports/matrix").get_json()
        assert matrix["stage"] == "Revision 1"
        assert matrix["previous_stage"] == "Initial"
        (row,) = matrix["units"][0]["rows"]
        assert row["classification"] == "Changed"
        assert row["before"] == "500000.00"
        assert row["after"] == "700000.00"
        assert row["delta"] == "200000.00"

    def test_matrix_without_revision(self, admin_client):
        resp = admin_client.get("/reports/matrix")
        assert resp.status_code == 400


# =============================================================================
# Settings master data
# =============================================================================

class TestMasterData:

    def test_units_are_admin_only(self, alice_client, admin_client):
        assert alice_client.get("/settings/units").status_code == 403
        units = admin_client.get("/settings/units").get_json()["units"]
        assert [u["code"] for u in units] == ["U1", "U2"]

    def test_duplicate_unit_code(self, admin_client):
        resp = admin_client.post("/settings/units", json={"code": "U1", "name": "Again"})
        assert resp.status_code == 400

    def test_unit_with_proposals_is_kept(self, api, admin_client, alice_client):
        create(alice_client, item(1, 10))
        resp = admin_client.delete(f"/settings/units/{api.ids['U1']}")
        assert resp.status_code == 409

    def test_ceiling_change_rebuilds_summary(self, api, admin_client):
        resp = admin_client.put(f"/settings/units/{api.ids['U2']}", json={"ceiling": "750000"})
        assert resp.status_code == 200
        body = admin_client.get(f"/reports/summary/{api.ids['U2']}").get_json()
        assert body["ceiling"] == "750000.00"

    def test_options(self, admin_client, alice_client):
        values = alice_client.get("/settings/options/category").get_json()["values"]
        assert "Goods and Services" in [v["value"] for v in values]

        resp = admin_client.post("/settings/options/CATEGORY", json={"value": "Grants"})
        assert resp.status_code == 201
        dup = admin_client.post("/settings/options/CATEGORY", json={"value": "Grants"})
        assert dup.status_code == 400

    def test_unknown_option_list(self, admin_client):
        resp = admin_client.get("/settings/options/COLOUR")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "not_found"


# =============================================================================
# Reports
# =============================================================================

class TestReports:

    def test_unit_user_summary(self, api, admin_client, alice_client):
        a = create(alice_client, item(1, 1200))
        set_status(admin_client, a["id"], "Accepted")
        alice_client.put(f"/proposals/initial/{a['id']}/planned", json={"amounts": [100] * 12})
        alice_client.put(f"/proposals/initial/{a['id']}/executed", json={"amounts": {"jan": 300}})

        (summary,) = alice_client.get("/reports/summary").get_json()["units"]
        assert summary["unit_id"] == api.ids["U1"]
        assert summary["current_total"] == "1200.00"
        assert summary["execution_rate"] == "25.0%"
        assert [q["amount"] for q in summary["quarterly"]["planned"]] == ["300.00"] * 4
        assert summary["semester"]["executed"][0]["percentage"] == "100.0%"

        assert alice_client.get(f"/reports/summary/{api.ids['U2']}").status_code == 403

    def test_directorate_summary(self, admin_client, alice_client):
        a = create(alice_client, item(1, 1000))
        set_status(admin_client, a["id"], "Accepted")
        admin_client.post("/reports/summary/recompute")

        body = admin_client.get("/reports/summary").get_json()
        assert [u["unit_name"] for u in body["units"]] == ["Unit One", "Unit Two"]
        assert body["totals"]["current_total"] == "1000.00"
        assert body["totals"]["ceiling"] == "1500000.00"

    def test_recompute_is_admin_only(self, alice_client):
        assert alice_client.post("/reports/summary/recompute").status_code == 403

    def test_recap(self, admin_client, alice_client, bob_client):
        for title, price in (("A", 100), ("B", 300)):
            created = create(alice_client, item(1, price, activity_title=title, subcategory="Travel"))
            set_status(admin_client, created["id"], "Accepted")
        create(bob_client, item(1, 50, subcategory="Travel"))

        body = admin_client.get("/reports/recap?stage=initial&subcategory=Travel").get_json()
        assert body["stage"] == "Initial"
        (row,) = body["rows"]
        assert row["unit_name"] == "Unit One"
        assert row["items"] == 2
        assert row["accepted_total"] == "400.00"
        assert row["execution_rate"] == "0.0%"


# =============================================================================
# Activity log
# =============================================================================

class TestActivityLog:

    @pytest.fixture
    def logged(self, admin_client):
        unit = admin_client.post("/settings/units", json={"code": "U3", "name": "Unit Three"}).get_json()["unit"]
        admin_client.put(f"/settings/units/{unit['id']}", json={"ceiling": "250000"})
        admin_client.post("/settings/options/CATEGORY", json={"value": "Grants"})
        return unit

    def test_filter_by_entity(self, admin_client, logged):
        body = admin_client.get("/settings/audit-log?entity_type=ServiceUnit").get_json()
        assert body["total"] == 2
        assert [e["action"] for e in body["entries"]] == ["UPDATE", "CREATE"]
        assert {e["username"] for e in body["entries"]} == {"admin"}
        assert body["entries"][0]["entity_id"] == logged["id"]
        assert body["entries"][0]["after"]["ceiling"] == "250000.00"

    def test_pagination(self, admin_client, logged):
        body = admin_client.get("/settings/audit-log?per_page=1").get_json()
        assert body["total"] == 3
        assert body["pages"] == 3
        assert len(body["entries"]) == 1
        assert body["has_next"] is True
        assert body["has_prev"] is False

        last = admin_client.get("/settings/audit-log?per_page=1&page=3").get_json()
        assert last["entries"][0]["action"] == "CREATE"
        assert last["entries"][0]["entity_type"] == "ServiceUnit"
        assert last["has_next"] is False

    def test_filter_by_user_and_date(self, admin_client, logged):
        users = admin_client.get("/settings/audit-log/users").get_json()["users"]
        assert [u["username"] for u in users] == ["admin"]

        admin_id = users[0]["user_id"]
        assert admin_client.get(f"/settings/audit-log?user_id={admin_id}").get_json()["total"] == 3
        assert admin_client.get("/settings/audit-log?user_id=99999").get_json()["total"] == 0

        tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).date().isoformat()
        body = admin_client.get(f"/settings/audit-log?date_from={tomorrow}").get_json()
        assert body["total"] == 0
        assert body["entries"] == []

    def test_bad_filters(self, admin_client):
        assert admin_client.get("/settings/audit-log?date_from=31-12-2026").status_code == 400
        assert admin_client.get("/settings/audit-log?date_from=2026-02-01&date_to=2026-01-01").status_code == 400
        assert admin_client.get("/settings/audit-log?page=0").status_code == 400

    def test_admin_only(self, alice_client):
        assert alice_client.get("/settings/audit-log").status_code == 403
        assert alice_client.get("/settings/audit-log/users").status_code == 403
