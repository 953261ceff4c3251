from datetime import date, datetime

import pytest
from openpyxl import Workbook, load_workbook

from conftest import seed_project, seed_user

from ctp.domain.errors import ValidationError
from ctp.services.snapshot_service import SnapshotService


def _work_week(app, clock, uid, pid):
    # Monday 08:00-10:00, Wednesday 08:00-09:30, next Monday 1h
    app.time_tracking.clock_in(uid, pid)
    clock.advance(hours=2)
    app.time_tracking.clock_out(uid)
    clock.advance(days=2, hours=-2)
    app.time_tracking.clock_in(uid, pid)
    clock.advance(hours=1, minutes=30)
    app.time_tracking.clock_out(uid)
    clock.advance(days=5)
    app.time_tracking.clock_in(uid, pid)
    clock.advance(hours=1)
    app.time_tracking.clock_out(uid)


def test_payroll_summary_covers_monday_to_sunday(app, clock):
    uid = seed_user(app, rate=25.0)
    pid = seed_project(app)
    _work_week(app, clock, uid, pid)

    summary = app.reporting.payroll_summary(uid, date(2024, 3, 7))

    assert summary.week_start == date(2024, 3, 4)
    assert summary.week_end == date(2024, 3, 10)
    assert len(summary.logs) == 2
    assert summary.total_hours == pytest.approx(3.5)
    assert summary.total_pay == pytest.approx(87.5)


def test_payroll_export_writes_workbook(app, clock, tmp_path):
    uid = seed_user(app, rate=25.0)
    pid = seed_project(app)
    _work_week(app, clock, uid, pid)
    out = tmp_path / "payroll.xlsx"

    app.reporting.export_payroll_report_excel(str(out), uid, date(2024, 3, 4))

    ws = load_workbook(out).active
    assert ws["A1"].value == "Payroll Report - Ryan"
    totals = {row[0]: row[1] for row in ws.iter_rows(values_only=True) if row and row[0] in ("Total hours", "Total pay")}
    assert totals == {"Total hours": 3.5, "Total pay": 87.5}


def test_payroll_export_refuses_empty_week(app, tmp_path):
    uid = seed_user(app)
    with pytest.raises(ValidationError):
        app.reporting.export_payroll_report_excel(str(tmp_path / "empty.xlsx"), uid, date(2024, 3, 4))
    assert not (tmp_path / "empty.xlsx").exists()


def test_project_summary_and_export(app, clock, tmp_path):
    uid = seed_user(app, rate=25.0)
    pid = seed_project(app, budget=1000.0)
    app.time_tracking.clock_in(uid, pid)
    clock.advance(hours=2)
    app.time_tracking.clock_out(uid)
    item_id = app.inventory.add_item("Drywall screws", 150, "box", 3.5)
    app.materials.log_usage_from_inventory(pid, item_id, 10)
    app.tasks.add_task("Sand", pid)
    app.projects.add_punch_list_item(pid, "Outlet cover")

    summary = app.reporting.project_summary(pid)
    assert summary.labor_cost == 50.0
    assert summary.material_cost == 35.0
    assert summary.remaining_budget == 915.0
    assert summary.tasks_by_status == {"To Do": 1}
    assert summary.open_punch_items == 1

    out = tmp_path / "project.xlsx"
    app.reporting.export_project_report_excel(str(out), pid)
    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Time Logs", "Materials"]


def test_invoice_export(app, clock, tmp_path):
    uid = seed_user(app)
    pid = seed_project(app)
    app.time_tracking.clock_in(uid, pid)
    clock.advance(hours=1)
    app.time_tracking.clock_out(uid)
    inv = app.invoices.generate_invoice(pid)

    out = tmp_path / "invoice.xlsx"
    app.reporting.export_invoice_excel(str(out), inv.id)

    ws = load_workbook(out).active
    assert ws["A1"].value == f"Invoice {inv.invoice_number}"
    last = [row for row in ws.iter_rows(values_only=True) if row and row[3] == "Total"]
    assert last[0][4] == inv.total_amount


def test_snapshot_round_trip_revives_timestamps(app, clock):
    uid = seed_user(app)
    pid = seed_project(app)
    app.time_tracking.clock_in(uid, pid)
    clock.advance(hours=1)
    app.time_tracking.clock_out(uid)
    app.inventory.add_manual_to_order_list("Dumpster")

    path = app.snapshots.write_snapshot()
    data = app.snapshots.load_snapshot(path)

    assert set(data) == {
        "scc_users", "scc_projects", "scc_tasks", "scc_timeLogs",
        "scc_inventory", "scc_orderList", "scc_materialLogs", "scc_invoices",
    }
    (tl,) = data["scc_timeLogs"]
    assert isinstance(tl["clock_in"], datetime)
    assert tl["clock_out"] == clock()
    assert data["scc_orderList"] == [{"type": "manual", "id": 1, "name": "Dumpster"}]


def test_snapshot_retention(app, tmp_path):
    svc = SnapshotService(app.repo, tmp_path / "snaps", company_key="acme", retention=2)
    written = [svc.write_snapshot() for _ in range(3)]

    kept = svc.list_snapshots()
    assert len(kept) == 2
    assert written[0] not in kept
    assert all(p.name.startswith("acme_snapshot_") for p in kept)


def _inventory_sheet(path, rows):
    wb = Workbook()
    ws = wb.active
    ws.append(["Name", "Quantity", "Unit", "Cost", "Low_Stock_Threshold"])
    for r in rows:
        ws.append(r)
    wb.save(path)


def test_import_inventory_excel_creates_and_updates(app, tmp_path):
    existing = app.inventory.add_item("Drywall Screws", 10, "box", 3.0)
    path = tmp_path / "count.xlsx"
    _inventory_sheet(
        path,
        [
            ["drywall screws", 42, "box", 3.25, 20],
            ["Tape", 8, "roll", 4.0, None],
            [None, 5, "ea", 1.0, None],
            ["Nails", "lots", "lb", 2.0, None],
        ],
    )

    ok, skipped = app.excel.import_inventory_excel(str(path))

    assert (ok, skipped) == (2, 2)
    item = app.inventory.get_item(existing)
    assert item.quantity == 42
    assert item.cost == 3.25
    assert item.low_stock_threshold == 20
    assert sorted(i.name for i in app.inventory.list_items()) == ["Tape", "drywall screws"]


def test_import_inventory_excel_requires_headers(app, tmp_path):
    path = tmp_path / "bad.xlsx"
    wb = Workbook()
    wb.active.append(["Name", "Qty"])
    wb.save(path)
    with pytest.raises(ValidationError):
        app.excel.import_inventory_excel(str(path))
