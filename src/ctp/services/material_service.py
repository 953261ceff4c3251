from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from ctp.domain.errors import ItemNotFoundError, ProjectNotFoundError, ValidationError
from ctp.domain.models import MaterialLog, ReceiptLine
from ctp.repositories.contracts import EntityRepository
from ctp.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork
from ctp.timeutils import utcnow

log = logging.getLogger("ctp.billing")


class MaterialService:
    def __init__(
        self,
        repo: EntityRepository,
        clock: Callable[[], datetime] = utcnow,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def log_usage_from_inventory(self, project_id: int, item_id: int, quantity_used: float) -> MaterialLog:
        """
        Deducts stock, freezes cost_at_time = unit cost * quantity and posts it
        to the project's spend, all in one commit.
        """
        if quantity_used <= 0:
            raise ValidationError("Quantity used must be > 0.")
        if not self.repo.get_inventory_item(int(item_id)):
            raise ItemNotFoundError("Inventory item not found.")
        if not self.repo.get_project(int(project_id)):
            raise ProjectNotFoundError("Project not found.")

        # stock is re-checked inside the transaction
        with self.uow_factory() as uow:
            material_log = uow.record_inventory_usage(int(project_id), int(item_id), float(quantity_used), self.clock())
        log.info(
            "material_used project_id=%s item_id=%s qty=%s cost=%.2f log_id=%s",
            project_id, item_id, quantity_used, material_log.cost_at_time, material_log.id,
        )
        return material_log

    def log_usage_from_receipt(
        self,
        project_id: int,
        items: Iterable[ReceiptLine | dict],
        receipt_photo_id: Optional[str] = None,
    ) -> list[MaterialLog]:
        """
        items: ReceiptLine or {description, quantity, unitPrice|unit_price, totalPrice|total_price}
        """
        lines = [self._to_receipt_line(it) for it in items]
        if not lines:
            raise ValidationError("Receipt has no items.")
        if not self.repo.get_project(int(project_id)):
            raise ProjectNotFoundError("Project not found.")

        with self.uow_factory() as uow:
            logs = uow.record_receipt_usage(int(project_id), lines, receipt_photo_id, self.clock())
        log.info(
            "receipt_logged project_id=%s lines=%s total=%.2f receipt=%s",
            project_id, len(logs), sum(l.cost_at_time for l in logs), receipt_photo_id,
        )
        return logs

    @staticmethod
    def _to_receipt_line(it: ReceiptLine | dict) -> ReceiptLine:
        if isinstance(it, ReceiptLine):
            line = it
        else:
            line = ReceiptLine(
                description=str(it.get("description", "")).strip(),
                quantity=float(it.get("quantity", 0)),
                unit_price=float(it.get("unit_price", it.get("unitPrice", 0))),
                total_price=float(it.get("total_price", it.get("totalPrice", 0))),
            )
        if not line.description:
            raise ValidationError("Receipt line description is required.")
        if line.quantity < 0 or line.unit_price < 0 or line.total_price < 0:
            raise ValidationError("Receipt amounts must be >= 0.")
        return line

    def list_material_logs(self, project_id: int | None = None) -> list[MaterialLog]:
        return self.repo.list_material_logs(project_id)
