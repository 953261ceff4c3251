from __future__ import annotations

from openpyxl import load_workbook

from ctp.domain.errors import ValidationError
import logging

log = logging.getLogger(__name__)


class ExcelService:
    def __init__(self, repo, inventory_service):
        self.repo = repo
        self.inventory = inventory_service

    def import_inventory_excel(self, path: str) -> tuple[int, int]:
        """
        Excel holds the counted stock (absolute quantity), one row per item.
        Headers:
          name | quantity | unit | cost | low_stock_threshold
        Items are matched by name (case-insensitive); unknown names are created.
        """
        wb = load_workbook(path)
        ws = wb.active

        headers = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str):
                headers[v.strip().lower()] = col

        required = ["name", "quantity", "unit", "cost"]
        for r in required:
            if r not in headers:
                raise ValidationError(f"Missing column header: {r}")

        ok = 0
        skipped = 0

        for row in range(2, ws.max_row + 1):
            try:
                name = ws.cell(row=row, column=headers["name"]).value
                quantity = ws.cell(row=row, column=headers["quantity"]).value
                unit = ws.cell(row=row, column=headers["unit"]).value
                cost = ws.cell(row=row, column=headers["cost"]).value
                threshold = None
                if "low_stock_threshold" in headers:
                    threshold = ws.cell(row=row, column=headers["low_stock_threshold"]).value

                if not name or quantity is None or cost is None:
                    skipped += 1
                    continue

                name = str(name).strip()
                unit = str(unit or "").strip()
                quantity = float(quantity)
                cost = float(cost)
                threshold = float(threshold) if threshold not in (None, "") else None

                if quantity < 0 or cost < 0:
                    skipped += 1
                    continue

                existing = self.repo.find_inventory_item_by_name(name)
                if existing:
                    self.inventory.update_item(
                        existing.id, name=name, unit=unit, cost=cost, low_stock_threshold=threshold
                    )
                    self.inventory.set_quantity(existing.id, quantity)
                else:
                    self.inventory.add_item(name, quantity, unit, cost, threshold)

                ok += 1
            except (ValueError, TypeError, ValidationError) as e:
                log.warning("Excel import skipped row %s: %s", row, e)
                skipped += 1

        log.info("inventory_import path=%s ok=%s skipped=%s", path, ok, skipped)
        return ok, skipped
