from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol

from ctp.domain.models import (
    InventoryItem,
    Invoice,
    InvoiceDraft,
    Location,
    MaterialLog,
    Project,
    ReceiptLine,
    SwitchResult,
    TimeLog,
    User,
)


class PhotoStore(Protocol):
    """Binary blob storage keyed by composite photo keys."""

    def put_photo(self, key: str, data: bytes) -> None: ...
    def get_photo(self, key: str) -> Optional[bytes]: ...


class EntityRepository(PhotoStore, Protocol):
    """Storage the core needs. Every mutating method is one commit boundary."""

    def get_user(self, user_id: int) -> Optional[User]: ...
    def get_project(self, project_id: int) -> Optional[Project]: ...
    def get_inventory_item(self, item_id: int) -> Optional[InventoryItem]: ...
    def get_open_time_log(self, user_id: int) -> Optional[TimeLog]: ...
    def get_invoice(self, invoice_id: int) -> Optional[Invoice]: ...
    def list_users(self) -> list[User]: ...
    def list_time_logs(self, user_id: Optional[int] = None, project_id: Optional[int] = None) -> list[TimeLog]: ...
    def list_material_logs(self, project_id: Optional[int] = None) -> list[MaterialLog]: ...
    def list_invoices(self, project_id: Optional[int] = None) -> list[Invoice]: ...

    def open_time_log(
        self,
        user_id: int,
        project_id: int,
        clock_in: datetime,
        location: Optional[Location] = None,
        map_image: Optional[str] = None,
    ) -> TimeLog: ...

    def close_time_log(
        self,
        user_id: int,
        clock_out: datetime,
        location: Optional[Location] = None,
        map_image: Optional[str] = None,
    ) -> TimeLog: ...

    def switch_time_log(
        self,
        user_id: int,
        new_project_id: int,
        clock_out: datetime,
        clock_in: datetime,
        out_location: Optional[Location] = None,
        out_map_image: Optional[str] = None,
        in_location: Optional[Location] = None,
        in_map_image: Optional[str] = None,
    ) -> SwitchResult: ...

    def record_inventory_usage(
        self, project_id: int, item_id: int, quantity_used: float, date_used: datetime
    ) -> MaterialLog: ...

    def record_receipt_usage(
        self,
        project_id: int,
        lines: Iterable[ReceiptLine],
        receipt_photo_id: Optional[str],
        date_used: datetime,
    ) -> list[MaterialLog]: ...

    def uninvoiced_time_logs(self, project_id: int) -> list[TimeLog]: ...
    def uninvoiced_material_logs(self, project_id: int) -> list[MaterialLog]: ...
    def create_invoice(self, draft: InvoiceDraft, status: str = "Draft") -> int: ...
    def update_invoice_status(self, invoice_id: int, status: str) -> bool: ...
