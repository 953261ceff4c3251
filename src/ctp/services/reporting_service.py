from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from ctp.domain.costing import hours
from ctp.domain.errors import NotFoundError, ProjectNotFoundError, UserNotFoundError, ValidationError
from ctp.domain.models import Project, TimeLog, User


@dataclass(frozen=True)
class PayrollSummary:
    user: User
    week_start: date
    week_end: date
    logs: tuple[TimeLog, ...]
    total_hours: float
    total_pay: float


@dataclass(frozen=True)
class ProjectSummary:
    project: Project
    labor_cost: float
    labor_hours: float
    material_cost: float
    remaining_budget: float
    budget_used_pct: float
    tasks_by_status: dict[str, int]
    open_punch_items: int


def _money(cell):
    cell.number_format = "#,##0.00"


def _bold_row(ws, r):
    for c in ws[r]:
        c.font = Font(bold=True)


def _set_widths(ws, widths: dict[str, int]):
    for col, w in widths.items():
        ws.column_dimensions[col].width = w


def _add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
    ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
    tab = Table(displayName=name, ref=ref)
    tab.tableStyleInfo = TableStyleInfo(
        name="TableStyleMedium9",
        showRowStripes=True,
        showColumnStripes=False,
    )
    ws.add_table(tab)


def _fmt_dt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


class ReportingService:
    def __init__(self, repo):
        self.repo = repo

    def payroll_summary(self, user_id: int, week_of: date) -> PayrollSummary:
        """Completed sessions whose clock-in falls in the Monday-Sunday week containing week_of."""
        user = self.repo.get_user(int(user_id))
        if not user:
            raise UserNotFoundError("User not found.")
        week_start = week_of - timedelta(days=week_of.weekday())
        week_end = week_start + timedelta(days=6)
        start = datetime.combine(week_start, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=7)

        logs = sorted(
            (
                tl
                for tl in self.repo.list_time_logs(user_id=user.id)
                if tl.clock_out is not None and start <= tl.clock_in < end
            ),
            key=lambda tl: tl.clock_in,
        )
        return PayrollSummary(
            user=user,
            week_start=week_start,
            week_end=week_end,
            logs=tuple(logs),
            total_hours=sum(hours(tl.duration_ms) for tl in logs),
            total_pay=sum(float(tl.cost or 0.0) for tl in logs),
        )

    def project_summary(self, project_id: int) -> ProjectSummary:
        project = self.repo.get_project(int(project_id))
        if not project:
            raise ProjectNotFoundError("Project not found.")
        closed = [tl for tl in self.repo.list_time_logs(project_id=project.id) if tl.clock_out is not None]
        materials = self.repo.list_material_logs(project.id)
        tasks = self.repo.list_tasks(project.id)

        remaining = float(project.budget) - float(project.current_spend)
        used_pct = (float(project.current_spend) / float(project.budget)) if project.budget else 0.0
        return ProjectSummary(
            project=project,
            labor_cost=sum(float(tl.cost or 0.0) for tl in closed),
            labor_hours=sum(hours(tl.duration_ms) for tl in closed),
            material_cost=sum(float(ml.cost_at_time) for ml in materials),
            remaining_budget=remaining,
            budget_used_pct=used_pct,
            tasks_by_status=dict(Counter(t.status for t in tasks)),
            open_punch_items=sum(1 for it in project.punch_list if not it.is_complete),
        )

    def export_payroll_report_excel(self, path: str, user_id: int, week_of: date) -> PayrollSummary:
        summary = self.payroll_summary(user_id, week_of)
        if not summary.logs:
            raise ValidationError("No completed time logs found for this week. Cannot generate a report.")

        projects = {p.id: p.name for p in self.repo.list_projects()}
        wb = Workbook()
        ws = wb.active
        ws.title = "Payroll"
        ws["A1"] = f"Payroll Report - {summary.user.name}"
        ws["A1"].font = Font(bold=True, size=14)
        ws["A2"] = f"Week {summary.week_start.isoformat()}  ->  {summary.week_end.isoformat()}"

        ws.append([])
        ws.append(["Date", "Project", "Clock In", "Clock Out", "Hours", "Rate", "Pay"])
        header_row = ws.max_row
        _bold_row(ws, header_row)

        for tl in summary.logs:
            ws.append([
                tl.clock_in.date().isoformat(),
                projects.get(tl.project_id, f"#{tl.project_id}"),
                _fmt_dt(tl.clock_in),
                _fmt_dt(tl.clock_out),
                round(hours(tl.duration_ms), 2),
                float(tl.hourly_rate or 0.0),
                float(tl.cost or 0.0),
            ])
            _money(ws[f"F{ws.max_row}"])
            _money(ws[f"G{ws.max_row}"])
        _add_table(ws, "PayrollDetail", header_row, 1, ws.max_row, 7)

        ws.append([])
        ws.append(["Total hours", round(summary.total_hours, 2)])
        ws.append(["Total pay", summary.total_pay])
        _money(ws[f"B{ws.max_row}"])

        _set_widths(ws, {"A": 14, "B": 28, "C": 18, "D": 18, "E": 8, "F": 10, "G": 12})
        wb.save(path)
        return summary

    def export_project_report_excel(self, path: str, project_id: int) -> ProjectSummary:
        summary = self.project_summary(project_id)
        project = summary.project
        users = {u.id: u.name for u in self.repo.list_users()}

        wb = Workbook()
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = project.name
        ws["A1"].font = Font(bold=True, size=14)
        ws["A2"] = project.address

        rows = [
            ("Type", project.type, None),
            ("Status", project.status, None),
            ("Budget", float(project.budget), "money"),
            ("Current spend", float(project.current_spend), "money"),
            ("Remaining budget", summary.remaining_budget, "money"),
            ("Labor cost", summary.labor_cost, "money"),
            ("Labor hours", round(summary.labor_hours, 2), None),
            ("Material cost", summary.material_cost, "money"),
            ("Open punch list items", summary.open_punch_items, None),
        ]
        for status, count in sorted(summary.tasks_by_status.items()):
            rows.append((f"Tasks - {status}", count, None))

        start_row = 4
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                _money(ws[f"B{r}"])
        _set_widths(ws, {"A": 26, "B": 30})

        ws2 = wb.create_sheet("Time Logs")
        ws2.append(["Worker", "Clock In", "Clock Out", "Hours", "Cost", "Invoiced"])
        _bold_row(ws2, 1)
        for tl in self.repo.list_time_logs(project_id=project.id):
            ws2.append([
                users.get(tl.user_id, "Unknown"),
                _fmt_dt(tl.clock_in),
                _fmt_dt(tl.clock_out),
                round(hours(tl.duration_ms), 2),
                float(tl.cost or 0.0),
                "yes" if tl.invoice_id else "",
            ])
            _money(ws2[f"E{ws2.max_row}"])
        ws2.freeze_panes = "A2"
        _set_widths(ws2, {"A": 20, "B": 18, "C": 18, "D": 8, "E": 12, "F": 9})

        ws3 = wb.create_sheet("Materials")
        ws3.append(["Date", "Description", "Qty", "Unit Cost", "Total", "Invoiced"])
        _bold_row(ws3, 1)
        for ml in self.repo.list_material_logs(project.id):
            ws3.append([
                _fmt_dt(ml.date_used),
                ml.description,
                float(ml.quantity_used),
                float(ml.unit_cost),
                float(ml.cost_at_time),
                "yes" if ml.invoice_id else "",
            ])
            _money(ws3[f"D{ws3.max_row}"])
            _money(ws3[f"E{ws3.max_row}"])
        ws3.freeze_panes = "A2"
        _set_widths(ws3, {"A": 18, "B": 34, "C": 8, "D": 12, "E": 12, "F": 9})

        wb.save(path)
        return summary

    def export_invoice_excel(self, path: str, invoice_id: int) -> None:
        invoice = self.repo.get_invoice(int(invoice_id))
        if not invoice:
            raise NotFoundError("Invoice not found.")
        project = self.repo.get_project(invoice.project_id)

        wb = Workbook()
        ws = wb.active
        ws.title = "Invoice"
        ws["A1"] = f"Invoice {invoice.invoice_number}"
        ws["A1"].font = Font(bold=True, size=14)
        ws["A2"] = project.name if project else f"Project #{invoice.project_id}"
        ws["A3"] = f"Issued {invoice.issue_date.date().isoformat()}  -  Due {invoice.due_date.date().isoformat()}"
        ws["A4"] = f"Status: {invoice.status}"

        ws.append([])
        ws.append(["Section", "Description", "Qty", "Unit Price", "Total"])
        _bold_row(ws, ws.max_row)
        for section, lines in (("Labor", invoice.labor_line_items), ("Materials", invoice.material_line_items)):
            for li in lines:
                ws.append([section, li.description, li.quantity, li.unit_price, li.total])
                _money(ws[f"D{ws.max_row}"])
                _money(ws[f"E{ws.max_row}"])

        ws.append([])
        for label, val in (
            ("Subtotal", invoice.subtotal),
            ("Markup", invoice.markup_amount),
            ("Total", invoice.total_amount),
        ):
            ws.append(["", "", "", label, val])
            _money(ws[f"E{ws.max_row}"])
        _bold_row(ws, ws.max_row)

        _set_widths(ws, {"A": 12, "B": 40, "C": 8, "D": 12, "E": 14})
        wb.save(path)
