"""
budget_revision/seed.py

Seed default classification lists.

Rules:
- Safe to run multiple times (idempotent).
- Seeds the canonical OptionCategory keys used by proposal validation
  (CATEGORY / SUBCATEGORY).
- Creates the BudgetSettings singleton if it is missing.
"""

from __future__ import annotations

from .extensions import db
from .models import BudgetSettings, OptionCategory, OptionValue
from .utils import OPTION_KEY_CATEGORY, OPTION_KEY_SUBCATEGORY

DEFAULT_CATEGORIES = [
    (
        OPTION_KEY_CATEGORY,
        "Expenditure category",
        ["Personnel", "Goods and Services", "Capital Expenditure", "Maintenance"],
    ),
    (
        OPTION_KEY_SUBCATEGORY,
        "Expenditure subcategory",
        [
            "Office Supplies",
            "Travel",
            "Training",
            "Equipment",
            "Consumables",
            "Professional Services",
            "Buildings",
        ],
    ),
]


def seed_default_options() -> None:
    """
    Create default OptionCategory and OptionValue rows if they don't exist.

    Idempotent behavior:
    - If category exists, we don't recreate it (its label is kept in sync).
    - If a value exists under category, we don't recreate it.
    """
    for key, label, values in DEFAULT_CATEGORIES:
        category = OptionCategory.query.filter_by(key=key).first()
        if not category:
            category = OptionCategory(key=key, label=label)
            db.session.add(category)
            db.session.flush()
        elif category.label != label:
            category.label = label
            db.session.flush()

        for idx, val in enumerate(values):
            exists = OptionValue.query.filter_by(category_id=category.id, value=val).first()
            if exists:
                continue
            db.session.add(
                OptionValue(
                    category_id=category.id,
                    value=val,
                    sort_order=idx,
                    is_active=True,
                )
            )

    BudgetSettings.load()
    db.session.commit()
