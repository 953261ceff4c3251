from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol

from ctp.domain.models import InvoiceDraft, Location, MaterialLog, ReceiptLine, SwitchResult, TimeLog


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def open_time_log(self, user_id: int, project_id: int, clock_in: datetime, location: Optional[Location], map_image: Optional[str]) -> TimeLog: ...
    def close_time_log(self, user_id: int, clock_out: datetime, location: Optional[Location], map_image: Optional[str]) -> TimeLog: ...
    def switch_time_log(self, user_id: int, new_project_id: int, clock_out: datetime, clock_in: datetime, **enrichment) -> SwitchResult: ...
    def record_inventory_usage(self, project_id: int, item_id: int, quantity_used: float, date_used: datetime) -> MaterialLog: ...
    def record_receipt_usage(self, project_id: int, lines: Iterable[ReceiptLine], receipt_photo_id: Optional[str], date_used: datetime) -> list[MaterialLog]: ...
    def create_invoice(self, draft: InvoiceDraft) -> int: ...


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for transactional write use-cases.

    Each repository method below runs inside a single SQLite transaction.
    This class centralizes write orchestration so services stay persistence-agnostic.
    """

    repo: object

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def open_time_log(
        self,
        user_id: int,
        project_id: int,
        clock_in: datetime,
        location: Optional[Location] = None,
        map_image: Optional[str] = None,
    ) -> TimeLog:
        return self.repo.open_time_log(user_id, project_id, clock_in, location=location, map_image=map_image)

    def close_time_log(
        self,
        user_id: int,
        clock_out: datetime,
        location: Optional[Location] = None,
        map_image: Optional[str] = None,
    ) -> TimeLog:
        return self.repo.close_time_log(user_id, clock_out, location=location, map_image=map_image)

    def switch_time_log(self, user_id: int, new_project_id: int, clock_out: datetime, clock_in: datetime, **enrichment) -> SwitchResult:
        # the new session never starts before the old one ends
        clock_in = max(clock_in, clock_out)
        return self.repo.switch_time_log(user_id, new_project_id, clock_out, clock_in, **enrichment)

    def record_inventory_usage(self, project_id: int, item_id: int, quantity_used: float, date_used: datetime) -> MaterialLog:
        return self.repo.record_inventory_usage(project_id, item_id, quantity_used, date_used)

    def record_receipt_usage(
        self,
        project_id: int,
        lines: Iterable[ReceiptLine],
        receipt_photo_id: Optional[str],
        date_used: datetime,
    ) -> list[MaterialLog]:
        return self.repo.record_receipt_usage(project_id, list(lines), receipt_photo_id, date_used)

    def create_invoice(self, draft: InvoiceDraft) -> int:
        return int(self.repo.create_invoice(draft))
