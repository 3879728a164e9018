"""
Flask extension singletons for the budget service.

- db:            Flask-SQLAlchemy, one metadata shared by every stage table
- migrate:       Flask-Migrate (Alembic); batch mode so SQLite can alter tables
- login_manager: Flask-Login session auth for unit users and reviewers
- csrf:          Flask-WTF CSRFProtect; JSON clients send X-CSRFToken

They are bound to the application in create_app().
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect
from sqlalchemy import MetaData

# Stable constraint names; Alembic needs them to drop/alter the per-stage
# UNIQUE lineage constraints and foreign keys.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

db = SQLAlchemy(metadata=MetaData(naming_convention=NAMING_CONVENTION))
migrate = Migrate(render_as_batch=True)
login_manager = LoginManager()
csrf = CSRFProtect()
