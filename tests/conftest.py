"""
Shared fixtures.

Every test gets a fresh application on an in-memory SQLite database with two
service units and three users:

    admin   reviewer, no unit
    alice   unit user of U1 (ceiling 1,000,000)
    bob     unit user of U2 (ceiling 500,000)
"""

from decimal import Decimal

import pytest

from budget_revision import create_app
from budget_revision.context import BudgetContext
from budget_revision.extensions import db
from budget_revision.models import ServiceUnit, User
from helpers import PASSWORD


@pytest.fixture
def app():
    app = create_app("config.TestingConfig")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

# =============================================================================
# Master data
# =============================================================================

@pytest.fixture
def units(app):
    u1 = ServiceUnit(code="U1", name="Unit One", ceiling=Decimal("1000000.00"))
    u2 = ServiceUnit(code="U2", name="Unit Two", ceiling=Decimal("500000.00"))
    db.session.add_all([u1, u2])
    db.session.commit()
    return {"U1": u1, "U2": u2}

def _make_user(username, *, is_admin=False, unit=None):
    user = User(
        username=username,
        is_admin=is_admin,
        is_active=True,
        service_unit_id=unit.id if unit is not None else None,
    )
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user

@pytest.fixture
def admin(app):
    return _make_user("admin", is_admin=True)

@pytest.fixture
def alice(units):
    return _make_user("alice", unit=units["U1"])

@pytest.fixture
def bob(units):
    return _make_user("bob", unit=units["U2"])

@pytest.fixture
def admin_ctx(admin):
    return BudgetContext.load(admin)

@pytest.fixture
def alice_ctx(alice):
    return BudgetContext.load(alice)

@pytest.fixture
def bob_ctx(bob):
    return BudgetContext.load(bob)

