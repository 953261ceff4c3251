from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ctp.domain.costing import hours, money
from ctp.domain.errors import (
    ConcurrentUpdateError,
    NotFoundError,
    NothingToInvoiceError,
    ProjectNotFoundError,
    ValidationError,
)
from ctp.domain.models import (
    INVOICE_STATUSES,
    Invoice,
    InvoiceDraft,
    InvoiceLineItem,
    MaterialLog,
    Project,
    TimeLog,
    User,
)
from ctp.repositories.contracts import EntityRepository
from ctp.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork
from ctp.timeutils import utcnow

log = logging.getLogger("ctp.billing")

PAYMENT_TERMS_DAYS = 30


def build_invoice_draft(
    project: Project,
    time_logs: list[TimeLog],
    material_logs: list[MaterialLog],
    users: dict[int, User],
    issue_date: datetime,
) -> InvoiceDraft:
    """
    Line totals are the frozen log costs. Labor quantity is rounded hours for
    display; the subtotal sums the totals, not quantity * unit price, and every
    invoice amount is stored in cents.
    """
    labor = []
    for tl in time_logs:
        user = users.get(tl.user_id)
        labor.append(
            InvoiceLineItem(
                description=f"Labor: {user.name if user else 'Unknown'} on {tl.clock_in.date().isoformat()}",
                quantity=round(hours(tl.duration_ms), 2),
                unit_price=float(tl.hourly_rate if tl.hourly_rate is not None else (user.hourly_rate if user else 0.0)),
                total=float(tl.cost or 0.0),
            )
        )
    material = [
        InvoiceLineItem(
            description=ml.description,
            quantity=float(ml.quantity_used),
            unit_price=float(ml.unit_cost),
            total=float(ml.cost_at_time),
        )
        for ml in material_logs
    ]

    subtotal = money(sum(li.total for li in labor) + sum(li.total for li in material))
    markup_amount = money(subtotal * float(project.markup_percent) / 100)
    return InvoiceDraft(
        project_id=project.id,
        issue_date=issue_date,
        due_date=issue_date + timedelta(days=PAYMENT_TERMS_DAYS),
        labor_line_items=tuple(labor),
        material_line_items=tuple(material),
        subtotal=subtotal,
        markup_amount=markup_amount,
        total_amount=money(subtotal + markup_amount),
        time_log_ids=tuple(tl.id for tl in time_logs),
        material_log_ids=tuple(ml.id for ml in material_logs),
    )


class InvoiceService:
    MAX_ATTEMPTS = 3

    def __init__(
        self,
        repo: EntityRepository,
        clock: Callable[[], datetime] = utcnow,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def generate_invoice(self, project_id: int) -> Invoice:
        project = self.repo.get_project(int(project_id))
        if not project:
            raise ProjectNotFoundError("Project not found.")

        last_err: Optional[ConcurrentUpdateError] = None
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            time_logs = self.repo.uninvoiced_time_logs(project.id)
            material_logs = self.repo.uninvoiced_material_logs(project.id)
            if not time_logs and not material_logs:
                raise NothingToInvoiceError("No new billable hours or materials to invoice for this project.")

            users = {u.id: u for u in self.repo.list_users()}
            draft = build_invoice_draft(project, time_logs, material_logs, users, self.clock())
            try:
                with self.uow_factory() as uow:
                    invoice_id = uow.create_invoice(draft)
            except ConcurrentUpdateError as e:
                last_err = e
                log.warning("invoice_claim_conflict project_id=%s attempt=%s error=%s", project.id, attempt, e)
                continue

            invoice = self.get_invoice(invoice_id)
            log.info(
                "invoice_created invoice_id=%s number=%s project_id=%s labor=%s material=%s total=%.2f",
                invoice.id,
                invoice.invoice_number,
                project.id,
                len(invoice.labor_line_items),
                len(invoice.material_line_items),
                invoice.total_amount,
            )
            return invoice

        raise last_err if last_err else NothingToInvoiceError("Nothing to invoice.")

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.repo.get_invoice(int(invoice_id))
        if not invoice:
            raise NotFoundError("Invoice not found.")
        return invoice

    def list_invoices(self, project_id: int | None = None) -> list[Invoice]:
        return self.repo.list_invoices(project_id)

    def update_invoice_status(self, invoice_id: int, status: str) -> Invoice:
        # any status may follow any other
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Unknown invoice status: {status}")
        if not self.repo.update_invoice_status(int(invoice_id), status):
            raise NotFoundError("Invoice not found.")
        log.info("invoice_status invoice_id=%s status=%s", invoice_id, status)
        return self.get_invoice(invoice_id)
