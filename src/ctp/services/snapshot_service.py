from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any

from ctp.domain.models import InventoryOrderItem, ManualOrderItem, OrderListItem
from ctp.timeutils import revive, to_iso

log = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def _order_entry(entry: OrderListItem) -> dict:
    if isinstance(entry, InventoryOrderItem):
        return {"type": "inventory", "itemId": entry.item_id}
    if isinstance(entry, ManualOrderItem):
        return {"type": "manual", "id": entry.id, "name": entry.name}
    raise TypeError(f"Unsupported order list entry: {entry!r}")


class SnapshotService:
    """Flat-collection export of the whole store: one ordered list of records per collection."""

    def __init__(self, repo, snapshot_dir: Path | str, company_key: str = "scc", retention: int = 30):
        self.repo = repo
        self.snapshot_dir = Path(snapshot_dir)
        self.company_key = company_key
        self.retention = int(retention)

    def _key(self, collection: str) -> str:
        return f"{self.company_key}_{collection}"

    def export_collections(self) -> dict[str, list[dict]]:
        return {
            self._key("users"): [asdict(u) for u in self.repo.list_users()],
            self._key("projects"): [asdict(p) for p in self.repo.list_projects()],
            self._key("tasks"): [asdict(t) for t in self.repo.list_tasks()],
            self._key("timeLogs"): [asdict(tl) for tl in self.repo.list_time_logs()],
            self._key("inventory"): [asdict(i) for i in self.repo.list_inventory_items()],
            self._key("orderList"): [_order_entry(e) for e in self.repo.list_order_list()],
            self._key("materialLogs"): [asdict(m) for m in self.repo.list_material_logs()],
            self._key("invoices"): [asdict(inv) for inv in self.repo.list_invoices()],
        }

    def write_snapshot(self) -> Path:
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        target = self.snapshot_dir / f"{self.company_key}_snapshot_{ts}.json"
        payload = json.dumps(self.export_collections(), default=_json_default, ensure_ascii=False, indent=2)
        target.write_text(payload, encoding="utf-8")
        self._enforce_retention(self.retention)
        log.info("snapshot_written path=%s", target)
        return target

    def load_snapshot(self, path: Path | str) -> dict[str, list[dict]]:
        return revive(json.loads(Path(path).read_text(encoding="utf-8")))

    def list_snapshots(self) -> list[Path]:
        return sorted(self.snapshot_dir.glob(f"{self.company_key}_snapshot_*.json"))

    def _enforce_retention(self, max_snapshots: int) -> None:
        files = self.list_snapshots()
        if len(files) <= max_snapshots:
            return
        for old in files[: len(files) - max_snapshots]:
            old.unlink(missing_ok=True)
