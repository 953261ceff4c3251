import threading
from datetime import timedelta

import pytest

from conftest import seed_project, seed_user

from ctp.domain.errors import NothingToInvoiceError, NotFoundError, ProjectNotFoundError, ValidationError


def _bill_two_hours_and_screws(app, clock, pid, uid):
    app.time_tracking.clock_in(uid, pid)
    clock.advance(hours=2)
    app.time_tracking.clock_out(uid)
    item_id = app.inventory.add_item("Drywall screws", 150, "box", 3.5)
    app.materials.log_usage_from_inventory(pid, item_id, 10)


def test_invoice_totals_and_markup(app, clock):
    uid = seed_user(app, rate=25.0)
    pid = seed_project(app, markup=20.0)
    _bill_two_hours_and_screws(app, clock, pid, uid)

    inv = app.invoices.generate_invoice(pid)

    assert inv.subtotal == 85.0
    assert inv.markup_amount == 17.0
    assert inv.total_amount == 102.0
    assert inv.status == "Draft"
    assert inv.invoice_number == f"{pid}-001"
    assert inv.issue_date == clock()
    assert inv.due_date == clock() + timedelta(days=30)

    (labor,) = inv.labor_line_items
    assert labor.description == "Labor: Ryan on 2024-03-04"
    assert labor.quantity == 2.0
    assert labor.unit_price == 25.0
    assert labor.total == 50.0

    (material,) = inv.material_line_items
    assert material.description == "Drywall screws"
    assert material.quantity == 10
    assert material.unit_price == 3.5
    assert material.total == 35.0


def test_invoiced_logs_are_marked_and_not_billed_again(app, clock):
    uid = seed_user(app)
    pid = seed_project(app)
    _bill_two_hours_and_screws(app, clock, pid, uid)

    inv = app.invoices.generate_invoice(pid)

    assert all(tl.invoice_id == inv.id for tl in app.time_tracking.list_time_logs(project_id=pid))
    assert all(ml.invoice_id == inv.id for ml in app.materials.list_material_logs(pid))
    with pytest.raises(NothingToInvoiceError):
        app.invoices.generate_invoice(pid)
    assert len(app.invoices.list_invoices(pid)) == 1


def test_nothing_to_invoice_on_fresh_project(app):
    pid = seed_project(app)
    with pytest.raises(NothingToInvoiceError):
        app.invoices.generate_invoice(pid)
    assert app.invoices.list_invoices(pid) == []


def test_unknown_project(app):
    with pytest.raises(ProjectNotFoundError):
        app.invoices.generate_invoice(404)


def test_numbers_are_sequential_per_project(app, clock):
    uid = seed_user(app)
    p1 = seed_project(app, "One")
    p2 = seed_project(app, "Two")
    numbers = []
    for pid in (p1, p1, p2):
        app.time_tracking.clock_in(uid, pid)
        clock.advance(hours=1)
        app.time_tracking.clock_out(uid)
        numbers.append(app.invoices.generate_invoice(pid).invoice_number)

    assert numbers == [f"{p1}-001", f"{p1}-002", f"{p2}-001"]


def test_open_sessions_are_not_billed(app, clock):
    done = seed_user(app, "Done")
    working = seed_user(app, "Working")
    pid = seed_project(app)
    app.time_tracking.clock_in(done, pid)
    app.time_tracking.clock_in(working, pid)
    clock.advance(hours=1)
    app.time_tracking.clock_out(done)

    inv = app.invoices.generate_invoice(pid)

    assert len(inv.labor_line_items) == 1
    assert inv.labor_line_items[0].description.startswith("Labor: Done")
    assert app.time_tracking.open_log_for(working).invoice_id is None


def test_labor_is_billed_at_the_rate_frozen_at_clock_out(app, clock):
    uid = seed_user(app, rate=20.0)
    pid = seed_project(app, markup=0.0)
    app.time_tracking.clock_in(uid, pid)
    clock.advance(hours=3)
    app.time_tracking.clock_out(uid)
    app.users.update_user(uid, hourly_rate=50.0)

    inv = app.invoices.generate_invoice(pid)

    assert inv.labor_line_items[0].unit_price == 20.0
    assert inv.labor_line_items[0].total == 60.0
    assert inv.total_amount == 60.0


def test_status_may_move_in_any_direction(app, clock):
    uid = seed_user(app)
    pid = seed_project(app)
    _bill_two_hours_and_screws(app, clock, pid, uid)
    inv = app.invoices.generate_invoice(pid)

    for status in ("Sent", "Paid", "Draft", "Void", "Sent"):
        assert app.invoices.update_invoice_status(inv.id, status).status == status

    with pytest.raises(ValidationError):
        app.invoices.update_invoice_status(inv.id, "Overdue")
    with pytest.raises(NotFoundError):
        app.invoices.update_invoice_status(999, "Paid")
    assert app.invoices.get_invoice(inv.id).status == "Sent"


def test_concurrent_generation_bills_each_log_once(app, clock):
    uid = seed_user(app)
    pid = seed_project(app)
    _bill_two_hours_and_screws(app, clock, pid, uid)

    barrier = threading.Barrier(4)
    created, refused, errors = [], [], []

    def worker():
        barrier.wait()
        try:
            created.append(app.invoices.generate_invoice(pid))
        except NothingToInvoiceError:
            refused.append(True)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(created) == 1
    assert len(refused) == 3
    assert len(app.invoices.list_invoices(pid)) == 1
    assert created[0].total_amount == 102.0


def test_amounts_are_stored_in_cents(app):
    pid = seed_project(app, markup=10.0)
    app.materials.log_usage_from_receipt(
        pid,
        [
            {"description": "Washer", "quantity": 1, "unit_price": 0.10, "total_price": 0.10},
            {"description": "Nut", "quantity": 1, "unit_price": 0.20, "total_price": 0.20},
        ],
    )
    assert app.projects.get_project(pid).current_spend == 0.3

    inv = app.invoices.generate_invoice(pid)

    assert inv.subtotal == 0.3
    assert inv.markup_amount == 0.03
    assert inv.total_amount == 0.33
    assert inv.total_amount == round(inv.subtotal + inv.markup_amount, 2)
