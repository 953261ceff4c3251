import pytest

from conftest import seed_project

from ctp.domain.errors import InsufficientStockError, ItemNotFoundError, ProjectNotFoundError, ValidationError
from ctp.domain.models import ReceiptLine


def _drywall(app, quantity=150, cost=3.5):
    return app.inventory.add_item("Drywall screws", quantity, "box", cost, 20)


def test_usage_deducts_stock_and_posts_frozen_cost(app, clock):
    pid = seed_project(app)
    item_id = _drywall(app)

    ml = app.materials.log_usage_from_inventory(pid, item_id, 10)

    assert ml.cost_at_time == 35.0
    assert ml.unit_cost == 3.5
    assert ml.quantity_used == 10
    assert ml.description == "Drywall screws"
    assert ml.inventory_item_id == item_id
    assert ml.date_used == clock()
    assert ml.invoice_id is None
    assert app.inventory.get_item(item_id).quantity == 140
    assert app.projects.get_project(pid).current_spend == 35.0


def test_insufficient_stock_changes_nothing(app):
    pid = seed_project(app)
    item_id = _drywall(app, quantity=5)

    with pytest.raises(InsufficientStockError) as exc:
        app.materials.log_usage_from_inventory(pid, item_id, 6)

    assert "Drywall screws" in str(exc.value)
    assert app.inventory.get_item(item_id).quantity == 5
    assert app.projects.get_project(pid).current_spend == 0.0
    assert app.materials.list_material_logs(pid) == []


def test_using_the_whole_stock_is_allowed(app):
    pid = seed_project(app)
    item_id = _drywall(app, quantity=5)
    app.materials.log_usage_from_inventory(pid, item_id, 5)
    assert app.inventory.get_item(item_id).quantity == 0


def test_unknown_item_and_project(app):
    pid = seed_project(app)
    item_id = _drywall(app)
    with pytest.raises(ItemNotFoundError):
        app.materials.log_usage_from_inventory(pid, 999, 1)
    with pytest.raises(ProjectNotFoundError):
        app.materials.log_usage_from_inventory(999, item_id, 1)
    with pytest.raises(ItemNotFoundError):
        app.repo.record_inventory_usage(pid, 999, 1, app.materials.clock())


@pytest.mark.parametrize("qty", [0, -3])
def test_non_positive_quantity_is_rejected(app, qty):
    pid = seed_project(app)
    item_id = _drywall(app)
    with pytest.raises(ValidationError):
        app.materials.log_usage_from_inventory(pid, item_id, qty)
    assert app.inventory.get_item(item_id).quantity == 150


def test_repository_rechecks_stock_inside_transaction(app):
    pid = seed_project(app)
    item_id = _drywall(app, quantity=3)
    with pytest.raises(InsufficientStockError):
        app.repo.record_inventory_usage(pid, item_id, 4, app.materials.clock())
    assert app.inventory.get_item(item_id).quantity == 3


def test_cost_at_time_is_not_rewritten_by_price_changes(app):
    pid = seed_project(app)
    item_id = _drywall(app)
    ml = app.materials.log_usage_from_inventory(pid, item_id, 10)

    app.inventory.update_item(item_id, cost=9.99)

    assert app.repo.get_material_log(ml.id).cost_at_time == 35.0
    assert app.projects.get_project(pid).current_spend == 35.0


def test_fractional_costs_are_rounded_to_cents(app):
    pid = seed_project(app)
    item_id = app.inventory.add_item("Wire", 100, "ft", 0.333)
    ml = app.materials.log_usage_from_inventory(pid, item_id, 7)
    assert ml.cost_at_time == 2.33


def test_receipt_lines_post_their_sum_once(app):
    pid = seed_project(app)
    logs = app.materials.log_usage_from_receipt(
        pid,
        [
            ReceiptLine(description="2x4 stud", quantity=10, unit_price=4.25, total_price=42.50),
            {"description": "Deck screws", "quantity": 2, "unitPrice": 12.0, "totalPrice": 24.0},
        ],
        receipt_photo_id="receipt-abc",
    )

    assert [ml.cost_at_time for ml in logs] == [42.5, 24.0]
    assert all(ml.inventory_item_id is None for ml in logs)
    assert all(ml.receipt_photo_id == "receipt-abc" for ml in logs)
    assert app.projects.get_project(pid).current_spend == 66.5
    assert len(app.materials.list_material_logs(pid)) == 2


def test_receipt_with_bad_line_logs_nothing(app):
    pid = seed_project(app)
    with pytest.raises(ValidationError):
        app.materials.log_usage_from_receipt(
            pid,
            [
                {"description": "Caulk", "quantity": 1, "unit_price": 6.0, "total_price": 6.0},
                {"description": "", "quantity": 1, "unit_price": 1.0, "total_price": 1.0},
            ],
        )
    with pytest.raises(ValidationError):
        app.materials.log_usage_from_receipt(pid, [])

    assert app.materials.list_material_logs(pid) == []
    assert app.projects.get_project(pid).current_spend == 0.0


def test_receipt_image_is_kept_in_photo_store(app):
    pid = seed_project(app)
    receipt_id = app.photos.store_receipt(b"\x89PNG receipt")
    logs = app.materials.log_usage_from_receipt(
        pid, [ReceiptLine("Primer", 1, 30.0, 30.0)], receipt_photo_id=receipt_id
    )
    assert receipt_id.startswith("receipt-")
    assert app.photos.get_photo(logs[0].receipt_photo_id) == b"\x89PNG receipt"
