from __future__ import annotations

import logging

from ctp.domain.errors import ItemNotFoundError, NotFoundError, ValidationError
from ctp.domain.models import InventoryItem, InventoryOrderItem, ManualOrderItem, OrderListItem

log = logging.getLogger(__name__)


class InventoryService:
    def __init__(self, repo):
        self.repo = repo

    def list_items(self) -> list[InventoryItem]:
        return self.repo.list_inventory_items()

    def low_stock_items(self) -> list[InventoryItem]:
        return [it for it in self.repo.list_inventory_items() if it.is_low_stock]

    def get_item(self, item_id: int) -> InventoryItem:
        item = self.repo.get_inventory_item(int(item_id))
        if not item:
            raise ItemNotFoundError("Inventory item not found.")
        return item

    def add_item(
        self,
        name: str,
        quantity: float,
        unit: str,
        cost: float,
        low_stock_threshold: float | None = None,
    ) -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        if quantity < 0:
            raise ValidationError("Quantity must be >= 0.")
        if cost < 0:
            raise ValidationError("Cost must be >= 0.")
        if low_stock_threshold is not None and low_stock_threshold < 0:
            raise ValidationError("Low stock threshold must be >= 0.")
        return self.repo.add_inventory_item(name, float(quantity), (unit or "").strip(), float(cost), low_stock_threshold)

    def update_item(
        self,
        item_id: int,
        name: str | None = None,
        unit: str | None = None,
        cost: float | None = None,
        low_stock_threshold: float | None = None,
    ) -> InventoryItem:
        """Edits everything but the quantity, which only moves through usage and adjustments."""
        item = self.get_item(item_id)
        new_name = item.name if name is None else name.strip()
        new_cost = item.cost if cost is None else float(cost)
        if not new_name:
            raise ValidationError("Name is required.")
        if new_cost < 0:
            raise ValidationError("Cost must be >= 0.")
        threshold = item.low_stock_threshold if low_stock_threshold is None else float(low_stock_threshold)
        updated = self.repo.update_inventory_item(
            item.id,
            new_name,
            item.unit if unit is None else unit.strip(),
            new_cost,
            threshold,
        )
        if not updated:
            raise ItemNotFoundError("Inventory item not found.")
        return self.get_item(item.id)

    def set_quantity(self, item_id: int, new_quantity: float) -> InventoryItem:
        # negative values floor to zero
        item = self.repo.set_inventory_quantity(int(item_id), float(new_quantity))
        if not item:
            raise ItemNotFoundError("Inventory item not found.")
        return item

    def adjust_inventory(self, item_id: int, delta: float) -> InventoryItem:
        item = self.repo.adjust_inventory_quantity(int(item_id), float(delta))
        if not item:
            raise ItemNotFoundError("Inventory item not found.")
        log.info("inventory_adjusted item_id=%s delta=%s quantity=%s", item.id, delta, item.quantity)
        return item

    # ---------- Order list ----------
    def list_order_list(self) -> list[OrderListItem]:
        return self.repo.list_order_list()

    def add_to_order_list(self, item_id: int) -> bool:
        """Returns False when the item was already on the list."""
        return self.repo.add_inventory_order_item(int(item_id))

    def add_manual_to_order_list(self, name: str) -> ManualOrderItem:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        return self.repo.add_manual_order_item(name)

    def remove_from_order_list(self, entry: OrderListItem) -> None:
        if isinstance(entry, InventoryOrderItem):
            removed = self.repo.remove_inventory_order_item(entry.item_id)
        elif isinstance(entry, ManualOrderItem):
            removed = self.repo.remove_manual_order_item(entry.id)
        else:
            raise TypeError(f"Unsupported order list entry: {entry!r}")
        if not removed:
            raise NotFoundError("Order list entry not found.")

    def clear_order_list(self) -> None:
        self.repo.clear_order_list()

    def describe_order_item(self, entry: OrderListItem) -> str:
        if isinstance(entry, InventoryOrderItem):
            item = self.repo.get_inventory_item(entry.item_id)
            if not item:
                return f"Unknown item #{entry.item_id}"
            unit = f" {item.unit}" if item.unit else ""
            return f"{item.name} (on hand: {item.quantity:g}{unit})"
        if isinstance(entry, ManualOrderItem):
            return entry.name
        raise TypeError(f"Unsupported order list entry: {entry!r}")
