from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from ctp.config import AppSettings
from ctp.repositories.sqlite_repo import SqliteRepository
from ctp.services.excel_service import ExcelService
from ctp.services.inventory_service import InventoryService
from ctp.services.invoice_service import InvoiceService
from ctp.services.location_service import LocationProvider, LocationService
from ctp.services.material_service import MaterialService
from ctp.services.photo_service import PhotoService
from ctp.services.project_service import ProjectService
from ctp.services.reporting_service import ReportingService
from ctp.services.snapshot_service import SnapshotService
from ctp.services.task_service import TaskService
from ctp.services.time_tracking_service import TimeTrackingService
from ctp.services.user_service import UserService
from ctp.timeutils import utcnow


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    location: LocationService
    users: UserService
    projects: ProjectService
    tasks: TaskService
    time_tracking: TimeTrackingService
    inventory: InventoryService
    materials: MaterialService
    invoices: InvoiceService
    photos: PhotoService
    reporting: ReportingService
    excel: ExcelService
    snapshots: SnapshotService


def build_container(
    db_path: Path | str,
    settings: AppSettings | None = None,
    location_provider: LocationProvider | None = None,
    clock: Callable[[], datetime] = utcnow,
    snapshot_dir: Path | str | None = None,
) -> AppContainer:
    settings = settings or AppSettings()
    repo = SqliteRepository(db_path)
    repo.init_db()

    location = LocationService(
        provider=location_provider,
        maps_api_key=settings.maps_api_key,
        timeout=settings.geo_timeout_seconds,
    )
    inventory = InventoryService(repo)
    snapshot_dir = Path(snapshot_dir) if snapshot_dir else Path(db_path).parent / "snapshots"

    return AppContainer(
        repo=repo,
        location=location,
        users=UserService(repo),
        projects=ProjectService(repo),
        tasks=TaskService(repo),
        time_tracking=TimeTrackingService(repo, location=location, clock=clock),
        inventory=inventory,
        materials=MaterialService(repo, clock=clock),
        invoices=InvoiceService(repo, clock=clock),
        photos=PhotoService(repo, clock=clock),
        reporting=ReportingService(repo),
        excel=ExcelService(repo, inventory),
        snapshots=SnapshotService(
            repo,
            snapshot_dir,
            company_key=settings.company_key,
            retention=settings.snapshot_retention,
        ),
    )
