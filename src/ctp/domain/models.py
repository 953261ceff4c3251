from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union


PROJECT_TYPES = ("New Construction", "Renovation", "Demolition", "Interior Fit-Out")
PROJECT_STATUSES = ("In Progress", "Completed", "On Hold")
TASK_STATUSES = ("To Do", "In Progress", "Done")
INVOICE_STATUSES = ("Draft", "Sent", "Paid", "Void")

MS_PER_HOUR = 3_600_000


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float


@dataclass(frozen=True)
class User:
    id: int
    name: str
    role: str
    hourly_rate: float
    is_clocked_in: bool = False
    clock_in_time: Optional[datetime] = None
    current_project_id: Optional[int] = None


@dataclass(frozen=True)
class ProjectPhoto:
    id: int
    project_id: int
    description: str
    date_added: datetime
    key: str
    punch_list_item_id: Optional[int] = None


@dataclass(frozen=True)
class PunchListItem:
    id: int
    project_id: int
    text: str
    is_complete: bool = False
    photos: tuple[ProjectPhoto, ...] = ()


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    address: str
    type: str
    status: str
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    budget: float
    current_spend: float
    markup_percent: float
    punch_list: tuple[PunchListItem, ...] = ()
    photos: tuple[ProjectPhoto, ...] = ()


@dataclass(frozen=True)
class Task:
    id: int
    title: str
    description: str
    project_id: int
    assignee_id: Optional[int]
    due_date: Optional[datetime]
    status: str = "To Do"


@dataclass(frozen=True)
class TimeLog:
    id: int
    user_id: int
    project_id: int
    clock_in: datetime
    clock_out: Optional[datetime] = None
    duration_ms: Optional[int] = None
    cost: Optional[float] = None
    hourly_rate: Optional[float] = None
    clock_in_location: Optional[Location] = None
    clock_out_location: Optional[Location] = None
    clock_in_map_image: Optional[str] = None
    clock_out_map_image: Optional[str] = None
    clock_skew: bool = False
    invoice_id: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.clock_out is None


@dataclass(frozen=True)
class SwitchResult:
    closed_log: TimeLog
    opened_log: TimeLog


@dataclass(frozen=True)
class InventoryItem:
    id: int
    name: str
    quantity: float
    unit: str
    cost: float
    low_stock_threshold: Optional[float] = None

    @property
    def is_low_stock(self) -> bool:
        return self.low_stock_threshold is not None and self.quantity <= self.low_stock_threshold


@dataclass(frozen=True)
class InventoryOrderItem:
    item_id: int


@dataclass(frozen=True)
class ManualOrderItem:
    id: int
    name: str


OrderListItem = Union[InventoryOrderItem, ManualOrderItem]


@dataclass(frozen=True)
class ReceiptLine:
    description: str
    quantity: float
    unit_price: float
    total_price: float


@dataclass(frozen=True)
class MaterialLog:
    id: int
    project_id: int
    description: str
    quantity_used: float
    unit_cost: float
    cost_at_time: float
    date_used: datetime
    inventory_item_id: Optional[int] = None
    invoice_id: Optional[int] = None
    receipt_photo_id: Optional[str] = None


@dataclass(frozen=True)
class InvoiceLineItem:
    description: str
    quantity: float
    unit_price: float
    total: float


@dataclass(frozen=True)
class Invoice:
    id: int
    invoice_number: str
    project_id: int
    issue_date: datetime
    due_date: datetime
    status: str
    labor_line_items: tuple[InvoiceLineItem, ...]
    material_line_items: tuple[InvoiceLineItem, ...]
    subtotal: float
    markup_amount: float
    total_amount: float


@dataclass(frozen=True)
class InvoiceDraft:
    """Invoice figures computed before the number and id are assigned."""

    project_id: int
    issue_date: datetime
    due_date: datetime
    labor_line_items: tuple[InvoiceLineItem, ...]
    material_line_items: tuple[InvoiceLineItem, ...]
    subtotal: float
    markup_amount: float
    total_amount: float
    time_log_ids: tuple[int, ...]
    material_log_ids: tuple[int, ...]
