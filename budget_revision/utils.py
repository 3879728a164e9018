"""
Utility functions shared across the app. This includes:
- get_active_options: Fetch active option values (classification lists) by category key.
- parse_decimal / parse_optional_int / parse_bool: lenient parsing of client input.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .models import OptionCategory, OptionValue

OPTION_KEY_CATEGORY = "CATEGORY"
OPTION_KEY_SUBCATEGORY = "SUBCATEGORY"


def get_active_options(category_key: str):
    """Return a list of active option strings for a given category key."""
    category = OptionCategory.query.filter_by(key=category_key).first()
    if not category:
        return []

    values = (
        OptionValue.query
        .filter_by(category_id=category.id, is_active=True)
        .order_by(OptionValue.sort_order.asc(), OptionValue.value.asc())
        .all()
    )
    return [v.value for v in values]


def parse_decimal(value) -> Decimal | None:
    """Parse decimal from user input (accepts comma or dot, or a JSON number)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        return Decimal(raw)
    except (InvalidOperation, ValueError):
        return None


def parse_optional_int(value) -> int | None:
    """Parse optional int from JSON/query input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_bool(value) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return None
