from .models import (
    User,
    Project,
    PunchListItem,
    ProjectPhoto,
    Task,
    TimeLog,
    InventoryItem,
    MaterialLog,
    Invoice,
    InvoiceLineItem,
    InventoryOrderItem,
    ManualOrderItem,
    ReceiptLine,
)
from .errors import (
    ValidationError,
    NotFoundError,
    InvalidTransitionError,
    InsufficientStockError,
    NothingToInvoiceError,
)

__all__ = [
    "User",
    "Project",
    "PunchListItem",
    "ProjectPhoto",
    "Task",
    "TimeLog",
    "InventoryItem",
    "MaterialLog",
    "Invoice",
    "InvoiceLineItem",
    "InventoryOrderItem",
    "ManualOrderItem",
    "ReceiptLine",
    "ValidationError",
    "NotFoundError",
    "InvalidTransitionError",
    "InsufficientStockError",
    "NothingToInvoiceError",
]
