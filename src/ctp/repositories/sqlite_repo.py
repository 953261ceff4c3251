from __future__ import annotations

import shutil
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from ctp.domain.costing import money, session_cost
from ctp.domain.errors import (
    ConcurrentUpdateError,
    InsufficientStockError,
    InvalidTransitionError,
    ItemNotFoundError,
    NotFoundError,
    ProjectNotFoundError,
    SameProjectError,
    UserNotFoundError,
)
from ctp.domain.models import (
    InventoryItem,
    InventoryOrderItem,
    Invoice,
    InvoiceDraft,
    InvoiceLineItem,
    Location,
    ManualOrderItem,
    MaterialLog,
    OrderListItem,
    Project,
    ProjectPhoto,
    PunchListItem,
    ReceiptLine,
    SwitchResult,
    Task,
    TimeLog,
    User,
)
from ctp.timeutils import from_iso, to_iso

_USER_COLS = "id, name, role, hourly_rate, is_clocked_in, clock_in_time, current_project_id"
_PROJECT_COLS = (
    "id, name, address, type, status, start_date, end_date, budget, current_spend, markup_percent"
)
_TASK_COLS = "id, title, description, project_id, assignee_id, due_date, status"
_TIME_LOG_COLS = (
    "id, user_id, project_id, clock_in, clock_out, duration_ms, cost, hourly_rate, "
    "clock_in_lat, clock_in_lng, clock_out_lat, clock_out_lng, "
    "clock_in_map_image, clock_out_map_image, clock_skew, invoice_id"
)
_ITEM_COLS = "id, name, quantity, unit, cost, low_stock_threshold"
_MATERIAL_COLS = (
    "id, project_id, description, quantity_used, unit_cost, cost_at_time, date_used, "
    "inventory_item_id, invoice_id, receipt_photo_id"
)
_PHOTO_COLS = "id, project_id, description, date_added, photo_key, punch_list_item_id"
_INVOICE_COLS = (
    "id, invoice_number, project_id, issue_date, due_date, status, subtotal, markup_amount, total_amount"
)


def _loc(lat, lng) -> Optional[Location]:
    if lat is None or lng is None:
        return None
    return Location(lat=float(lat), lng=float(lng))


def _opt_float(v) -> Optional[float]:
    return float(v) if v is not None else None


def _opt_int(v) -> Optional[int]:
    return int(v) if v is not None else None


def _user(r) -> User:
    return User(
        id=int(r[0]),
        name=str(r[1]),
        role=str(r[2]),
        hourly_rate=float(r[3]),
        is_clocked_in=bool(r[4]),
        clock_in_time=from_iso(r[5]),
        current_project_id=_opt_int(r[6]),
    )


def _task(r) -> Task:
    return Task(
        id=int(r[0]),
        title=str(r[1]),
        description=str(r[2]),
        project_id=int(r[3]),
        assignee_id=_opt_int(r[4]),
        due_date=from_iso(r[5]),
        status=str(r[6]),
    )


def _time_log(r) -> TimeLog:
    return TimeLog(
        id=int(r[0]),
        user_id=int(r[1]),
        project_id=int(r[2]),
        clock_in=from_iso(r[3]),
        clock_out=from_iso(r[4]),
        duration_ms=_opt_int(r[5]),
        cost=_opt_float(r[6]),
        hourly_rate=_opt_float(r[7]),
        clock_in_location=_loc(r[8], r[9]),
        clock_out_location=_loc(r[10], r[11]),
        clock_in_map_image=r[12],
        clock_out_map_image=r[13],
        clock_skew=bool(r[14]),
        invoice_id=_opt_int(r[15]),
    )


def _item(r) -> InventoryItem:
    return InventoryItem(
        id=int(r[0]),
        name=str(r[1]),
        quantity=float(r[2]),
        unit=str(r[3]),
        cost=float(r[4]),
        low_stock_threshold=_opt_float(r[5]),
    )


def _material_log(r) -> MaterialLog:
    return MaterialLog(
        id=int(r[0]),
        project_id=int(r[1]),
        description=str(r[2]),
        quantity_used=float(r[3]),
        unit_cost=float(r[4]),
        cost_at_time=float(r[5]),
        date_used=from_iso(r[6]),
        inventory_item_id=_opt_int(r[7]),
        invoice_id=_opt_int(r[8]),
        receipt_photo_id=r[9],
    )


def _photo(r) -> ProjectPhoto:
    return ProjectPhoto(
        id=int(r[0]),
        project_id=int(r[1]),
        description=str(r[2]),
        date_added=from_iso(r[3]),
        key=str(r[4]),
        punch_list_item_id=_opt_int(r[5]),
    )


def project_photo_key(project_id: int, photo_id: int) -> str:
    return f"proj-{int(project_id)}-{int(photo_id)}"


def punch_photo_key(project_id: int, punch_list_item_id: int, photo_id: int) -> str:
    return f"punch-{int(project_id)}-{int(punch_list_item_id)}-{int(photo_id)}"


class SqliteRepository:
    def __init__(self, db_path: Path | str, busy_timeout: float = 10.0):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Single write transaction; IMMEDIATE takes the write lock up front."""
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("BEGIN IMMEDIATE")
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        conn = self._conn()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[tuple]:
        conn = self._conn()
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_billing),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT '',
            hourly_rate REAL NOT NULL CHECK(hourly_rate >= 0),
            is_clocked_in INTEGER NOT NULL DEFAULT 0 CHECK(is_clocked_in IN (0,1)),
            clock_in_time TEXT,
            current_project_id INTEGER,
            CHECK(
                (is_clocked_in = 1 AND clock_in_time IS NOT NULL AND current_project_id IS NOT NULL)
                OR (is_clocked_in = 0 AND clock_in_time IS NULL AND current_project_id IS NULL)
            )
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS projects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            address TEXT NOT NULL DEFAULT '',
            type TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('In Progress','Completed','On Hold')),
            start_date TEXT,
            end_date TEXT,
            budget REAL NOT NULL DEFAULT 0 CHECK(budget >= 0),
            current_spend REAL NOT NULL DEFAULT 0 CHECK(current_spend >= 0),
            markup_percent REAL NOT NULL DEFAULT 0 CHECK(markup_percent >= 0)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS punch_list_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id INTEGER NOT NULL,
            text TEXT NOT NULL,
            is_complete INTEGER NOT NULL DEFAULT 0 CHECK(is_complete IN (0,1)),
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS project_photos (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id INTEGER NOT NULL,
            punch_list_item_id INTEGER,
            description TEXT NOT NULL DEFAULT '',
            date_added TEXT NOT NULL,
            photo_key TEXT UNIQUE,
            FOREIGN KEY(project_id) REFERENCES projects(id) ON DELETE CASCADE,
            FOREIGN KEY(punch_list_item_id) REFERENCES punch_list_items(id) ON DELETE CASCADE
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS photo_blobs (
            photo_key TEXT PRIMARY KEY,
            data BLOB NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            project_id INTEGER NOT NULL,
            assignee_id INTEGER,
            due_date TEXT,
            status TEXT NOT NULL DEFAULT 'To Do' CHECK(status IN ('To Do','In Progress','Done'))
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS inventory_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            quantity REAL NOT NULL DEFAULT 0 CHECK(quantity >= 0),
            unit TEXT NOT NULL DEFAULT '',
            cost REAL NOT NULL DEFAULT 0 CHECK(cost >= 0),
            low_stock_threshold REAL CHECK(low_stock_threshold IS NULL OR low_stock_threshold >= 0)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS order_list (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL CHECK(kind IN ('inventory','manual')),
            item_id INTEGER,
            manual_id INTEGER,
            name TEXT,
            CHECK(
                (kind = 'inventory' AND item_id IS NOT NULL)
                OR (kind = 'manual' AND manual_id IS NOT NULL AND name IS NOT NULL)
            )
        )
        """
        )
        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_order_list_inventory ON order_list(item_id) WHERE kind = 'inventory'")
        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_order_list_manual ON order_list(manual_id) WHERE kind = 'manual'")

    def _migration_v2_billing(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS time_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                project_id INTEGER NOT NULL,
                clock_in TEXT NOT NULL,
                clock_out TEXT,
                duration_ms INTEGER CHECK(duration_ms IS NULL OR duration_ms >= 0),
                cost REAL CHECK(cost IS NULL OR cost >= 0),
                hourly_rate REAL,
                clock_in_lat REAL,
                clock_in_lng REAL,
                clock_out_lat REAL,
                clock_out_lng REAL,
                clock_in_map_image TEXT,
                clock_out_map_image TEXT,
                clock_skew INTEGER NOT NULL DEFAULT 0 CHECK(clock_skew IN (0,1)),
                invoice_id INTEGER
            )
            """
        )
        # one open session per user
        cur.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_time_logs_open_user ON time_logs(user_id) WHERE clock_out IS NULL"
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_time_logs_project ON time_logs(project_id, invoice_id)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS material_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                inventory_item_id INTEGER,
                description TEXT NOT NULL,
                quantity_used REAL NOT NULL CHECK(quantity_used >= 0),
                unit_cost REAL NOT NULL CHECK(unit_cost >= 0),
                cost_at_time REAL NOT NULL CHECK(cost_at_time >= 0),
                date_used TEXT NOT NULL,
                invoice_id INTEGER,
                receipt_photo_id TEXT
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_material_logs_project ON material_logs(project_id, invoice_id)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_number TEXT NOT NULL UNIQUE,
                project_id INTEGER NOT NULL,
                issue_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('Draft','Sent','Paid','Void')),
                subtotal REAL NOT NULL,
                markup_amount REAL NOT NULL,
                total_amount REAL NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS invoice_line_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_id INTEGER NOT NULL,
                kind TEXT NOT NULL CHECK(kind IN ('labor','material')),
                position INTEGER NOT NULL,
                description TEXT NOT NULL,
                quantity REAL NOT NULL,
                unit_price REAL NOT NULL,
                total REAL NOT NULL,
                source_id INTEGER NOT NULL,
                FOREIGN KEY(invoice_id) REFERENCES invoices(id) ON DELETE CASCADE,
                UNIQUE(kind, source_id)
            )
            """
        )

    # ---------- Users ----------
    def add_user(self, name: str, role: str, hourly_rate: float) -> int:
        with self._transaction() as cur:
            cur.execute(
                "INSERT INTO users (name, role, hourly_rate) VALUES (?, ?, ?)",
                (name, role, float(hourly_rate)),
            )
            return int(cur.lastrowid)

    def update_user(self, user_id: int, name: str, role: str, hourly_rate: float) -> bool:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE users SET name=?, role=?, hourly_rate=? WHERE id=?",
                (name, role, float(hourly_rate), int(user_id)),
            )
            return cur.rowcount > 0

    def get_user(self, user_id: int) -> Optional[User]:
        r = self._fetchone(f"SELECT {_USER_COLS} FROM users WHERE id=?", (int(user_id),))
        return _user(r) if r else None

    def list_users(self) -> list[User]:
        rows = self._fetchall(f"SELECT {_USER_COLS} FROM users ORDER BY name, id")
        return [_user(r) for r in rows]

    # ---------- Projects ----------
    def add_project(
        self,
        name: str,
        address: str,
        type: str,
        status: str,
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        budget: float,
        markup_percent: float,
        current_spend: float = 0.0,
    ) -> int:
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO projects (name, address, type, status, start_date, end_date, budget, current_spend, markup_percent)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    address,
                    type,
                    status,
                    to_iso(start_date),
                    to_iso(end_date),
                    float(budget),
                    float(current_spend),
                    float(markup_percent),
                ),
            )
            return int(cur.lastrowid)

    def _project_from_row(self, conn: sqlite3.Connection, r) -> Project:
        project_id = int(r[0])
        photo_rows = conn.execute(
            f"SELECT {_PHOTO_COLS} FROM project_photos WHERE project_id=? ORDER BY date_added DESC, id DESC",
            (project_id,),
        ).fetchall()
        photos = [_photo(p) for p in photo_rows]
        item_rows = conn.execute(
            "SELECT id, project_id, text, is_complete FROM punch_list_items WHERE project_id=? ORDER BY id",
            (project_id,),
        ).fetchall()
        punch_list = tuple(
            PunchListItem(
                id=int(i[0]),
                project_id=int(i[1]),
                text=str(i[2]),
                is_complete=bool(i[3]),
                photos=tuple(p for p in photos if p.punch_list_item_id == int(i[0])),
            )
            for i in item_rows
        )
        return Project(
            id=project_id,
            name=str(r[1]),
            address=str(r[2]),
            type=str(r[3]),
            status=str(r[4]),
            start_date=from_iso(r[5]),
            end_date=from_iso(r[6]),
            budget=float(r[7]),
            current_spend=float(r[8]),
            markup_percent=float(r[9]),
            punch_list=punch_list,
            photos=tuple(p for p in photos if p.punch_list_item_id is None),
        )

    def get_project(self, project_id: int) -> Optional[Project]:
        conn = self._conn()
        try:
            r = conn.execute(f"SELECT {_PROJECT_COLS} FROM projects WHERE id=?", (int(project_id),)).fetchone()
            if not r:
                return None
            return self._project_from_row(conn, r)
        finally:
            conn.close()

    def list_projects(self) -> list[Project]:
        conn = self._conn()
        try:
            rows = conn.execute(f"SELECT {_PROJECT_COLS} FROM projects ORDER BY name, id").fetchall()
            return [self._project_from_row(conn, r) for r in rows]
        finally:
            conn.close()

    def delete_project(self, project_id: int) -> bool:
        with self._transaction() as cur:
            pid = int(project_id)
            cur.execute("SELECT 1 FROM time_logs WHERE project_id=? AND clock_out IS NULL LIMIT 1", (pid,))
            if cur.fetchone():
                raise InvalidTransitionError(f"Project {pid} has workers clocked in.")
            cur.execute(
                """
                DELETE FROM photo_blobs
                WHERE photo_key IN (SELECT photo_key FROM project_photos WHERE project_id=? AND photo_key IS NOT NULL)
                """,
                (pid,),
            )
            cur.execute("DELETE FROM projects WHERE id=?", (pid,))
            return cur.rowcount > 0

    # ---------- Punch list ----------
    def add_punch_list_item(self, project_id: int, text: str) -> int:
        with self._transaction() as cur:
            self._require_project(cur, project_id)
            cur.execute(
                "INSERT INTO punch_list_items (project_id, text) VALUES (?, ?)",
                (int(project_id), text),
            )
            return int(cur.lastrowid)

    def toggle_punch_list_item(self, project_id: int, item_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE punch_list_items SET is_complete = 1 - is_complete WHERE id=? AND project_id=?",
                (int(item_id), int(project_id)),
            )
            return cur.rowcount > 0

    # ---------- Photos ----------
    def add_photos(
        self,
        project_id: int,
        punch_list_item_id: Optional[int],
        description: str,
        date_added: datetime,
        images: Iterable[bytes],
    ) -> list[ProjectPhoto]:
        out: list[ProjectPhoto] = []
        with self._transaction() as cur:
            self._require_project(cur, project_id)
            if punch_list_item_id is not None:
                cur.execute(
                    "SELECT 1 FROM punch_list_items WHERE id=? AND project_id=?",
                    (int(punch_list_item_id), int(project_id)),
                )
                if not cur.fetchone():
                    raise NotFoundError(f"Punch list item not found: {punch_list_item_id}")

            for data in images:
                cur.execute(
                    """
                    INSERT INTO project_photos (project_id, punch_list_item_id, description, date_added)
                    VALUES (?, ?, ?, ?)
                    """,
                    (int(project_id), punch_list_item_id, description, to_iso(date_added)),
                )
                photo_id = int(cur.lastrowid)
                if punch_list_item_id is None:
                    key = project_photo_key(project_id, photo_id)
                else:
                    key = punch_photo_key(project_id, punch_list_item_id, photo_id)
                cur.execute("UPDATE project_photos SET photo_key=? WHERE id=?", (key, photo_id))
                cur.execute(
                    "INSERT OR REPLACE INTO photo_blobs (photo_key, data) VALUES (?, ?)",
                    (key, sqlite3.Binary(bytes(data))),
                )
                out.append(
                    ProjectPhoto(
                        id=photo_id,
                        project_id=int(project_id),
                        description=description,
                        date_added=date_added,
                        key=key,
                        punch_list_item_id=punch_list_item_id,
                    )
                )
        return out

    def put_photo(self, key: str, data: bytes) -> None:
        with self._transaction() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO photo_blobs (photo_key, data) VALUES (?, ?)",
                (key, sqlite3.Binary(bytes(data))),
            )

    def get_photo(self, key: str) -> Optional[bytes]:
        r = self._fetchone("SELECT data FROM photo_blobs WHERE photo_key=?", (key,))
        return bytes(r[0]) if r else None

    def get_photo_meta(self, photo_id: int) -> Optional[ProjectPhoto]:
        r = self._fetchone(f"SELECT {_PHOTO_COLS} FROM project_photos WHERE id=?", (int(photo_id),))
        return _photo(r) if r else None

    # ---------- Tasks ----------
    def add_task(
        self,
        title: str,
        description: str,
        project_id: int,
        assignee_id: Optional[int],
        due_date: Optional[datetime],
    ) -> int:
        with self._transaction() as cur:
            self._require_project(cur, project_id)
            cur.execute(
                """
                INSERT INTO tasks (title, description, project_id, assignee_id, due_date)
                VALUES (?, ?, ?, ?, ?)
                """,
                (title, description, int(project_id), assignee_id, to_iso(due_date)),
            )
            return int(cur.lastrowid)

    def get_task(self, task_id: int) -> Optional[Task]:
        r = self._fetchone(f"SELECT {_TASK_COLS} FROM tasks WHERE id=?", (int(task_id),))
        return _task(r) if r else None

    def update_task_status(self, task_id: int, status: str) -> bool:
        with self._transaction() as cur:
            cur.execute("UPDATE tasks SET status=? WHERE id=?", (status, int(task_id)))
            return cur.rowcount > 0

    def list_tasks(self, project_id: Optional[int] = None) -> list[Task]:
        if project_id is None:
            rows = self._fetchall(f"SELECT {_TASK_COLS} FROM tasks ORDER BY due_date, id")
        else:
            rows = self._fetchall(
                f"SELECT {_TASK_COLS} FROM tasks WHERE project_id=? ORDER BY due_date, id",
                (int(project_id),),
            )
        return [_task(r) for r in rows]

    # ---------- Time logs ----------
    def get_time_log(self, log_id: int) -> Optional[TimeLog]:
        r = self._fetchone(f"SELECT {_TIME_LOG_COLS} FROM time_logs WHERE id=?", (int(log_id),))
        return _time_log(r) if r else None

    def get_open_time_log(self, user_id: int) -> Optional[TimeLog]:
        r = self._fetchone(
            f"SELECT {_TIME_LOG_COLS} FROM time_logs WHERE user_id=? AND clock_out IS NULL",
            (int(user_id),),
        )
        return _time_log(r) if r else None

    def list_time_logs(self, user_id: Optional[int] = None, project_id: Optional[int] = None) -> list[TimeLog]:
        where = []
        params: list = []
        if user_id is not None:
            where.append("user_id=?")
            params.append(int(user_id))
        if project_id is not None:
            where.append("project_id=?")
            params.append(int(project_id))
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        rows = self._fetchall(
            f"SELECT {_TIME_LOG_COLS} FROM time_logs {clause} ORDER BY clock_in DESC, id DESC",
            tuple(params),
        )
        return [_time_log(r) for r in rows]

    def _require_user(self, cur: sqlite3.Cursor, user_id: int) -> User:
        cur.execute(f"SELECT {_USER_COLS} FROM users WHERE id=?", (int(user_id),))
        r = cur.fetchone()
        if not r:
            raise UserNotFoundError(f"User not found: {user_id}")
        return _user(r)

    def _require_project(self, cur: sqlite3.Cursor, project_id: int) -> None:
        cur.execute("SELECT 1 FROM projects WHERE id=?", (int(project_id),))
        if not cur.fetchone():
            raise ProjectNotFoundError(f"Project not found: {project_id}")

    def _insert_open_log(
        self,
        cur: sqlite3.Cursor,
        user_id: int,
        project_id: int,
        clock_in: datetime,
        location: Optional[Location],
        map_image: Optional[str],
    ) -> int:
        cur.execute(
            """
            INSERT INTO time_logs (user_id, project_id, clock_in, clock_in_lat, clock_in_lng, clock_in_map_image)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                int(user_id),
                int(project_id),
                to_iso(clock_in),
                location.lat if location else None,
                location.lng if location else None,
                map_image,
            ),
        )
        log_id = int(cur.lastrowid)
        cur.execute(
            "UPDATE users SET is_clocked_in=1, clock_in_time=?, current_project_id=? WHERE id=?",
            (to_iso(clock_in), int(project_id), int(user_id)),
        )
        return log_id

    def _close_open_log(
        self,
        cur: sqlite3.Cursor,
        user: User,
        clock_out: datetime,
        location: Optional[Location],
        map_image: Optional[str],
    ) -> int:
        cur.execute(
            f"SELECT {_TIME_LOG_COLS} FROM time_logs WHERE user_id=? AND clock_out IS NULL",
            (user.id,),
        )
        r = cur.fetchone()
        if not user.is_clocked_in or not r:
            raise InvalidTransitionError(f"User {user.id} is not clocked in.")
        open_log = _time_log(r)

        duration_ms, cost, skewed = session_cost(open_log.clock_in, clock_out, user.hourly_rate)
        cur.execute(
            """
            UPDATE time_logs
            SET clock_out=?, duration_ms=?, cost=?, hourly_rate=?,
                clock_out_lat=?, clock_out_lng=?, clock_out_map_image=?, clock_skew=?
            WHERE id=? AND clock_out IS NULL
            """,
            (
                to_iso(clock_out),
                duration_ms,
                cost,
                float(user.hourly_rate),
                location.lat if location else None,
                location.lng if location else None,
                map_image,
                1 if skewed else 0,
                open_log.id,
            ),
        )
        if cur.rowcount != 1:
            raise InvalidTransitionError(f"Time log {open_log.id} was already closed.")
        cur.execute(
            "UPDATE projects SET current_spend = current_spend + ? WHERE id=?",
            (cost, open_log.project_id),
        )
        if cur.rowcount != 1:
            raise ProjectNotFoundError(f"Project not found: {open_log.project_id}")
        cur.execute(
            "UPDATE users SET is_clocked_in=0, clock_in_time=NULL, current_project_id=NULL WHERE id=?",
            (user.id,),
        )
        return open_log.id

    def _time_log_in(self, cur: sqlite3.Cursor, log_id: int) -> TimeLog:
        cur.execute(f"SELECT {_TIME_LOG_COLS} FROM time_logs WHERE id=?", (int(log_id),))
        return _time_log(cur.fetchone())

    def open_time_log(
        self,
        user_id: int,
        project_id: int,
        clock_in: datetime,
        location: Optional[Location] = None,
        map_image: Optional[str] = None,
    ) -> TimeLog:
        with self._transaction() as cur:
            user = self._require_user(cur, user_id)
            if user.is_clocked_in:
                raise InvalidTransitionError(f"User {user.id} is already clocked in.")
            self._require_project(cur, project_id)
            log_id = self._insert_open_log(cur, user.id, project_id, clock_in, location, map_image)
            return self._time_log_in(cur, log_id)

    def close_time_log(
        self,
        user_id: int,
        clock_out: datetime,
        location: Optional[Location] = None,
        map_image: Optional[str] = None,
    ) -> TimeLog:
        with self._transaction() as cur:
            user = self._require_user(cur, user_id)
            log_id = self._close_open_log(cur, user, clock_out, location, map_image)
            return self._time_log_in(cur, log_id)

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
    ) -> SwitchResult:
        with self._transaction() as cur:
            user = self._require_user(cur, user_id)
            if not user.is_clocked_in:
                raise InvalidTransitionError(f"User {user.id} is not clocked in.")
            if user.current_project_id == int(new_project_id):
                raise SameProjectError(f"User {user.id} is already on project {new_project_id}.")
            self._require_project(cur, new_project_id)
            closed_id = self._close_open_log(cur, user, clock_out, out_location, out_map_image)
            opened_id = self._insert_open_log(cur, user.id, new_project_id, clock_in, in_location, in_map_image)
            return SwitchResult(
                closed_log=self._time_log_in(cur, closed_id),
                opened_log=self._time_log_in(cur, opened_id),
            )

    # ---------- Inventory ----------
    def add_inventory_item(
        self, name: str, quantity: float, unit: str, cost: float, low_stock_threshold: Optional[float]
    ) -> int:
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO inventory_items (name, quantity, unit, cost, low_stock_threshold)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, float(quantity), unit, float(cost), _opt_float(low_stock_threshold)),
            )
            return int(cur.lastrowid)

    def update_inventory_item(
        self, item_id: int, name: str, unit: str, cost: float, low_stock_threshold: Optional[float]
    ) -> bool:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE inventory_items SET name=?, unit=?, cost=?, low_stock_threshold=? WHERE id=?",
                (name, unit, float(cost), _opt_float(low_stock_threshold), int(item_id)),
            )
            return cur.rowcount > 0

    def get_inventory_item(self, item_id: int) -> Optional[InventoryItem]:
        r = self._fetchone(f"SELECT {_ITEM_COLS} FROM inventory_items WHERE id=?", (int(item_id),))
        return _item(r) if r else None

    def find_inventory_item_by_name(self, name: str) -> Optional[InventoryItem]:
        r = self._fetchone(
            f"SELECT {_ITEM_COLS} FROM inventory_items WHERE lower(name)=lower(?) ORDER BY id LIMIT 1",
            (name,),
        )
        return _item(r) if r else None

    def list_inventory_items(self) -> list[InventoryItem]:
        rows = self._fetchall(f"SELECT {_ITEM_COLS} FROM inventory_items ORDER BY name COLLATE NOCASE, id")
        return [_item(r) for r in rows]

    def set_inventory_quantity(self, item_id: int, quantity: float) -> Optional[InventoryItem]:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE inventory_items SET quantity = MAX(?, 0) WHERE id=?",
                (float(quantity), int(item_id)),
            )
            if cur.rowcount == 0:
                return None
            cur.execute(f"SELECT {_ITEM_COLS} FROM inventory_items WHERE id=?", (int(item_id),))
            return _item(cur.fetchone())

    def adjust_inventory_quantity(self, item_id: int, delta: float) -> Optional[InventoryItem]:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE inventory_items SET quantity = MAX(quantity + ?, 0) WHERE id=?",
                (float(delta), int(item_id)),
            )
            if cur.rowcount == 0:
                return None
            cur.execute(f"SELECT {_ITEM_COLS} FROM inventory_items WHERE id=?", (int(item_id),))
            return _item(cur.fetchone())

    # ---------- Material usage ----------
    def _insert_material_log(
        self,
        cur: sqlite3.Cursor,
        project_id: int,
        inventory_item_id: Optional[int],
        description: str,
        quantity_used: float,
        unit_cost: float,
        cost_at_time: float,
        date_used: datetime,
        receipt_photo_id: Optional[str],
    ) -> MaterialLog:
        cur.execute(
            """
            INSERT INTO material_logs (
                project_id, inventory_item_id, description, quantity_used, unit_cost,
                cost_at_time, date_used, receipt_photo_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(project_id),
                inventory_item_id,
                description,
                float(quantity_used),
                float(unit_cost),
                float(cost_at_time),
                to_iso(date_used),
                receipt_photo_id,
            ),
        )
        cur.execute(f"SELECT {_MATERIAL_COLS} FROM material_logs WHERE id=?", (int(cur.lastrowid),))
        return _material_log(cur.fetchone())

    def record_inventory_usage(
        self, project_id: int, item_id: int, quantity_used: float, date_used: datetime
    ) -> MaterialLog:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_ITEM_COLS} FROM inventory_items WHERE id=?", (int(item_id),))
            r = cur.fetchone()
            if not r:
                raise ItemNotFoundError(f"Inventory item not found: {item_id}")
            item = _item(r)
            self._require_project(cur, project_id)
            if item.quantity < float(quantity_used):
                raise InsufficientStockError(
                    f"Not enough {item.name} in stock. Available: {item.quantity:g} {item.unit}".rstrip()
                )

            cost_at_time = money(item.cost * float(quantity_used))
            cur.execute(
                "UPDATE inventory_items SET quantity = quantity - ? WHERE id=? AND quantity >= ?",
                (float(quantity_used), item.id, float(quantity_used)),
            )
            if cur.rowcount != 1:
                raise InsufficientStockError(f"Not enough {item.name} in stock.")
            log = self._insert_material_log(
                cur, project_id, item.id, item.name, quantity_used, item.cost, cost_at_time, date_used, None
            )
            cur.execute(
                "UPDATE projects SET current_spend = current_spend + ? WHERE id=?",
                (cost_at_time, int(project_id)),
            )
            return log

    def record_receipt_usage(
        self,
        project_id: int,
        lines: Iterable[ReceiptLine],
        receipt_photo_id: Optional[str],
        date_used: datetime,
    ) -> list[MaterialLog]:
        logs: list[MaterialLog] = []
        with self._transaction() as cur:
            self._require_project(cur, project_id)
            total = 0.0
            for line in lines:
                cost_at_time = money(line.total_price)
                total += cost_at_time
                logs.append(
                    self._insert_material_log(
                        cur,
                        project_id,
                        None,
                        line.description,
                        line.quantity,
                        line.unit_price,
                        cost_at_time,
                        date_used,
                        receipt_photo_id,
                    )
                )
            cur.execute(
                "UPDATE projects SET current_spend = current_spend + ? WHERE id=?",
                (money(total), int(project_id)),
            )
        return logs

    def get_material_log(self, log_id: int) -> Optional[MaterialLog]:
        r = self._fetchone(f"SELECT {_MATERIAL_COLS} FROM material_logs WHERE id=?", (int(log_id),))
        return _material_log(r) if r else None

    def list_material_logs(self, project_id: Optional[int] = None) -> list[MaterialLog]:
        if project_id is None:
            rows = self._fetchall(f"SELECT {_MATERIAL_COLS} FROM material_logs ORDER BY date_used DESC, id DESC")
        else:
            rows = self._fetchall(
                f"SELECT {_MATERIAL_COLS} FROM material_logs WHERE project_id=? ORDER BY date_used DESC, id DESC",
                (int(project_id),),
            )
        return [_material_log(r) for r in rows]

    # ---------- Order list ----------
    def add_inventory_order_item(self, item_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute("SELECT 1 FROM inventory_items WHERE id=?", (int(item_id),))
            if not cur.fetchone():
                raise ItemNotFoundError(f"Inventory item not found: {item_id}")
            cur.execute(
                "INSERT OR IGNORE INTO order_list (kind, item_id) VALUES ('inventory', ?)",
                (int(item_id),),
            )
            return cur.rowcount > 0

    def add_manual_order_item(self, name: str) -> ManualOrderItem:
        with self._transaction() as cur:
            cur.execute("SELECT COALESCE(MAX(manual_id), 0) FROM order_list WHERE kind='manual'")
            manual_id = int(cur.fetchone()[0]) + 1
            cur.execute(
                "INSERT INTO order_list (kind, manual_id, name) VALUES ('manual', ?, ?)",
                (manual_id, name),
            )
            return ManualOrderItem(id=manual_id, name=name)

    def remove_inventory_order_item(self, item_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute("DELETE FROM order_list WHERE kind='inventory' AND item_id=?", (int(item_id),))
            return cur.rowcount > 0

    def remove_manual_order_item(self, manual_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute("DELETE FROM order_list WHERE kind='manual' AND manual_id=?", (int(manual_id),))
            return cur.rowcount > 0

    def clear_order_list(self) -> None:
        with self._transaction() as cur:
            cur.execute("DELETE FROM order_list")

    def list_order_list(self) -> list[OrderListItem]:
        rows = self._fetchall("SELECT kind, item_id, manual_id, name FROM order_list ORDER BY id")
        out: list[OrderListItem] = []
        for kind, item_id, manual_id, name in rows:
            if kind == "inventory":
                out.append(InventoryOrderItem(item_id=int(item_id)))
            else:
                out.append(ManualOrderItem(id=int(manual_id), name=str(name)))
        return out

    # ---------- Invoices ----------
    def uninvoiced_time_logs(self, project_id: int) -> list[TimeLog]:
        rows = self._fetchall(
            f"""
            SELECT {_TIME_LOG_COLS} FROM time_logs
            WHERE project_id=? AND invoice_id IS NULL AND clock_out IS NOT NULL
            ORDER BY clock_in, id
            """,
            (int(project_id),),
        )
        return [_time_log(r) for r in rows]

    def uninvoiced_material_logs(self, project_id: int) -> list[MaterialLog]:
        rows = self._fetchall(
            f"""
            SELECT {_MATERIAL_COLS} FROM material_logs
            WHERE project_id=? AND invoice_id IS NULL
            ORDER BY date_used, id
            """,
            (int(project_id),),
        )
        return [_material_log(r) for r in rows]

    def create_invoice(self, draft: InvoiceDraft, status: str = "Draft") -> int:
        with self._transaction() as cur:
            self._require_project(cur, draft.project_id)
            cur.execute("SELECT COUNT(*) FROM invoices WHERE project_id=?", (draft.project_id,))
            seq = int(cur.fetchone()[0]) + 1
            invoice_number = f"{draft.project_id}-{seq:03d}"

            cur.execute(
                """
                INSERT INTO invoices (
                    invoice_number, project_id, issue_date, due_date, status,
                    subtotal, markup_amount, total_amount
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invoice_number,
                    draft.project_id,
                    to_iso(draft.issue_date),
                    to_iso(draft.due_date),
                    status,
                    float(draft.subtotal),
                    float(draft.markup_amount),
                    float(draft.total_amount),
                ),
            )
            invoice_id = int(cur.lastrowid)

            groups = (
                ("labor", draft.labor_line_items, draft.time_log_ids),
                ("material", draft.material_line_items, draft.material_log_ids),
            )
            for kind, lines, source_ids in groups:
                for position, (line, source_id) in enumerate(zip(lines, source_ids)):
                    cur.execute(
                        """
                        INSERT INTO invoice_line_items (
                            invoice_id, kind, position, description, quantity, unit_price, total, source_id
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            invoice_id,
                            kind,
                            position,
                            line.description,
                            float(line.quantity),
                            float(line.unit_price),
                            float(line.total),
                            int(source_id),
                        ),
                    )

            for table, ids in (("time_logs", draft.time_log_ids), ("material_logs", draft.material_log_ids)):
                for source_id in ids:
                    cur.execute(
                        f"UPDATE {table} SET invoice_id=? WHERE id=? AND project_id=? AND invoice_id IS NULL",
                        (invoice_id, int(source_id), draft.project_id),
                    )
                    if cur.rowcount != 1:
                        raise ConcurrentUpdateError(f"{table} row {source_id} is no longer billable.")
            return invoice_id

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        conn = self._conn()
        try:
            r = conn.execute(f"SELECT {_INVOICE_COLS} FROM invoices WHERE id=?", (int(invoice_id),)).fetchone()
            if not r:
                return None
            return self._invoice_from_row(conn, r)
        finally:
            conn.close()

    def list_invoices(self, project_id: Optional[int] = None) -> list[Invoice]:
        conn = self._conn()
        try:
            if project_id is None:
                rows = conn.execute(f"SELECT {_INVOICE_COLS} FROM invoices ORDER BY issue_date DESC, id DESC").fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {_INVOICE_COLS} FROM invoices WHERE project_id=? ORDER BY issue_date DESC, id DESC",
                    (int(project_id),),
                ).fetchall()
            return [self._invoice_from_row(conn, r) for r in rows]
        finally:
            conn.close()

    def _invoice_from_row(self, conn: sqlite3.Connection, r) -> Invoice:
        lines = conn.execute(
            """
            SELECT kind, description, quantity, unit_price, total
            FROM invoice_line_items
            WHERE invoice_id=?
            ORDER BY kind, position
            """,
            (int(r[0]),),
        ).fetchall()
        labor = tuple(
            InvoiceLineItem(description=str(l[1]), quantity=float(l[2]), unit_price=float(l[3]), total=float(l[4]))
            for l in lines
            if l[0] == "labor"
        )
        material = tuple(
            InvoiceLineItem(description=str(l[1]), quantity=float(l[2]), unit_price=float(l[3]), total=float(l[4]))
            for l in lines
            if l[0] == "material"
        )
        return Invoice(
            id=int(r[0]),
            invoice_number=str(r[1]),
            project_id=int(r[2]),
            issue_date=from_iso(r[3]),
            due_date=from_iso(r[4]),
            status=str(r[5]),
            labor_line_items=labor,
            material_line_items=material,
            subtotal=float(r[6]),
            markup_amount=float(r[7]),
            total_amount=float(r[8]),
        )

    def update_invoice_status(self, invoice_id: int, status: str) -> bool:
        with self._transaction() as cur:
            cur.execute("UPDATE invoices SET status=? WHERE id=?", (status, int(invoice_id)))
            return cur.rowcount > 0
