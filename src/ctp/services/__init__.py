from .location_service import LocationService
from .time_tracking_service import TimeTrackingService
from .inventory_service import InventoryService
from .material_service import MaterialService
from .invoice_service import InvoiceService
from .photo_service import PhotoService
from .user_service import UserService
from .project_service import ProjectService
from .task_service import TaskService
from .reporting_service import ReportingService
from .excel_service import ExcelService
from .snapshot_service import SnapshotService

__all__ = [
    "LocationService",
    "TimeTrackingService",
    "InventoryService",
    "MaterialService",
    "InvoiceService",
    "PhotoService",
    "UserService",
    "ProjectService",
    "TaskService",
    "ReportingService",
    "ExcelService",
    "SnapshotService",
]
