"""Small builders shared by the service tests."""

from budget_revision.services import proposals

PASSWORD = "secret-pass"


def item(quantity, unit_price, **extra):
    data = {
        "category": "Goods and Services",
        "activity_title": extra.pop("activity_title", "Item"),
        "quantity": quantity,
        "unit_price": unit_price,
    }
    data.update(extra)
    return data


def accept(admin_ctx, stage, record_id):
    return proposals.change_status(admin_ctx, stage, record_id, "Accepted")
