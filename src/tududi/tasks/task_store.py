# src/tududi/tasks/task_store.py

from __future__ import annotations

import contextlib
import hashlib
import hmac
import logging
import secrets
import sqlite3
import time
import uuid
from collections.abc import Iterable
from datetime import date
from pathlib import Path
from typing import Any

from ..errors import NotFoundError, ValidationError
from .recurrence import RECURRENCE_FIELDS
from .task_models import (
    Area,
    Note,
    Priority,
    Project,
    RecurrenceType,
    Tag,
    Task,
    TaskPayload,
    TaskStatus,
    User,
)

logger = logging.getLogger(__name__)

_PBKDF2_ITERATIONS = 200_000

_TASK_COLUMNS: dict[str, str] = {
    "uuid": "TEXT NOT NULL DEFAULT ''",
    "user_id": "INTEGER NOT NULL DEFAULT 0",
    "name": "TEXT NOT NULL DEFAULT ''",
    "status": "TEXT NOT NULL DEFAULT 'not_started'",
    "priority": "TEXT NOT NULL DEFAULT 'medium'",
    "note": "TEXT",
    "due_date": "TEXT",
    "today": "INTEGER NOT NULL DEFAULT 0",
    "project_id": "INTEGER",
    "recurrence_type": "TEXT NOT NULL DEFAULT 'none'",
    "recurrence_interval": "INTEGER NOT NULL DEFAULT 1",
    "recurrence_end_date": "TEXT",
    "recurrence_weekday": "INTEGER",
    "recurrence_month_day": "INTEGER",
    "recurrence_week_of_month": "INTEGER",
    "completion_based": "INTEGER NOT NULL DEFAULT 0",
    "recurring_parent_id": "INTEGER",
    "created_at": "REAL NOT NULL DEFAULT 0",
    "updated_at": "REAL NOT NULL DEFAULT 0",
    "completed_at": "REAL",
}


def _coerce_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD), got {value!r}", field=field) from None


def _coerce_int(value: Any, field: str, lo: int, hi: int | None = None) -> int | None:
    if value is None or value == "":
        return None
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer, got {value!r}", field=field) from None
    if n < lo or (hi is not None and n > hi):
        bound = f"{lo}..{hi}" if hi is not None else f">= {lo}"
        raise ValidationError(f"{field} must be {bound}, got {n}", field=field)
    return n


def _coerce_status(value: Any) -> TaskStatus:
    if value is None:
        return TaskStatus.NOT_STARTED
    if isinstance(value, int):
        return TaskStatus.from_db(value)
    try:
        return TaskStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"unknown status {value!r}", field="status") from None


def _coerce_recurrence_type(value: Any) -> RecurrenceType:
    if value is None:
        return RecurrenceType.NONE
    try:
        return RecurrenceType(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"unknown recurrence_type {value!r}", field="recurrence_type") from None


def validate_payload(payload: TaskPayload) -> dict[str, Any]:
    """
    Validate a payload at the persistence boundary.

    Returns the normalized column values for the task row (tags excluded).
    Raises ValidationError on the first problem found.
    """
    name = (payload.name or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")

    cols: dict[str, Any] = {
        "name": name,
        "status": _coerce_status(payload.status),
        "priority": Priority.coerce(payload.priority),
        "note": payload.note,
        "due_date": _coerce_date(payload.due_date, "due_date"),
        "today": bool(payload.today),
        "project_id": _coerce_int(payload.project_id, "project_id", 1),
        "recurrence_type": _coerce_recurrence_type(payload.recurrence_type),
        "recurrence_interval": _coerce_int(payload.recurrence_interval, "recurrence_interval", 1) or 1,
        "recurrence_end_date": _coerce_date(payload.recurrence_end_date, "recurrence_end_date"),
        "recurrence_weekday": _coerce_int(payload.recurrence_weekday, "recurrence_weekday", 0, 6),
        "recurrence_month_day": _coerce_int(payload.recurrence_month_day, "recurrence_month_day", 1, 31),
        "recurrence_week_of_month": _coerce_int(
            payload.recurrence_week_of_month, "recurrence_week_of_month", 1, 5
        ),
        "completion_based": bool(payload.completion_based),
        "recurring_parent_id": _coerce_int(payload.recurring_parent_id, "recurring_parent_id", 1),
    }

    due, end = cols["due_date"], cols["recurrence_end_date"]
    if due is not None and end is not None and end < due and not payload.update_parent_recurrence:
        raise ValidationError("recurrence_end_date is before due_date", field="recurrence_end_date")

    parent_id = cols["recurring_parent_id"]
    if payload.id is not None and parent_id == payload.id:
        raise ValidationError("a task cannot be its own recurring parent", field="recurring_parent_id")

    if payload.update_parent_recurrence and parent_id is None:
        raise ValidationError(
            "update_parent_recurrence requires recurring_parent_id", field="update_parent_recurrence"
        )

    if (
        parent_id is not None
        and not payload.update_parent_recurrence
        and cols["recurrence_type"] != RecurrenceType.NONE
    ):
        raise ValidationError(
            "generated instances cannot carry their own recurrence rule", field="recurrence_type"
        )

    return cols


def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${_PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algo, iterations, salt_hex, digest_hex = encoded.split("$")
    except ValueError:
        return False
    if algo != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations)
    )
    return hmac.compare_digest(digest.hex(), digest_hex)


class TaskStore:
    """
    SQLite store for users, areas, projects, tasks, tags, notes and per-user flags.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing task columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tududi.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at REAL NOT NULL
                );
                CREATE TABLE IF NOT EXISTS areas (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    created_at REAL NOT NULL
                );
                CREATE TABLE IF NOT EXISTS projects (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    active INTEGER NOT NULL DEFAULT 1,
                    pin_to_sidebar INTEGER NOT NULL DEFAULT 0,
                    area_id INTEGER,
                    priority TEXT,
                    due_date TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                );
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS tags (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    UNIQUE(user_id, name)
                );
                CREATE TABLE IF NOT EXISTS tasks_tags (
                    task_id INTEGER NOT NULL,
                    tag_id INTEGER NOT NULL,
                    PRIMARY KEY (task_id, tag_id)
                );
                CREATE TABLE IF NOT EXISTS projects_tags (
                    project_id INTEGER NOT NULL,
                    tag_id INTEGER NOT NULL,
                    PRIMARY KEY (project_id, tag_id)
                );
                CREATE TABLE IF NOT EXISTS notes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL DEFAULT '',
                    project_id INTEGER,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                );
                CREATE TABLE IF NOT EXISTS notes_tags (
                    note_id INTEGER NOT NULL,
                    tag_id INTEGER NOT NULL,
                    PRIMARY KEY (note_id, tag_id)
                );
                CREATE TABLE IF NOT EXISTS user_flags (
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    value INTEGER NOT NULL,
                    PRIMARY KEY (user_id, name)
                );
                """
            )

            # Migrations (safe): add missing task columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}
            for name, decl in _TASK_COLUMNS.items():
                if name in cols:
                    continue
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_status ON tasks(user_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(recurring_parent_id, due_date)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _date_or_none(raw: str | None) -> date | None:
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except ValueError:
            return None

    @staticmethod
    def _iso(d: date | None) -> str | None:
        return d.isoformat() if d is not None else None

    @staticmethod
    def _owned(sql: str, row_id: int, user_id: int | None) -> tuple[str, tuple[int, ...]]:
        if user_id is None:
            return sql, (int(row_id),)
        return f"{sql} AND user_id = ?", (int(row_id), int(user_id))

    def _row_to_task(self, row: sqlite3.Row, tags: list[str]) -> Task:
        return Task(
            id=int(row["id"]),
            uuid=str(row["uuid"] or ""),
            user_id=int(row["user_id"] or 0),
            name=str(row["name"] or ""),
            status=TaskStatus.from_db(row["status"]),
            priority=Priority.coerce(row["priority"]),
            note=row["note"],
            due_date=self._date_or_none(row["due_date"]),
            today=bool(row["today"]),
            project_id=row["project_id"],
            tags=tags,
            recurrence_type=RecurrenceType.from_db(row["recurrence_type"]),
            recurrence_interval=int(row["recurrence_interval"] or 1),
            recurrence_end_date=self._date_or_none(row["recurrence_end_date"]),
            recurrence_weekday=row["recurrence_weekday"],
            recurrence_month_day=row["recurrence_month_day"],
            recurrence_week_of_month=row["recurrence_week_of_month"],
            completion_based=bool(row["completion_based"]),
            recurring_parent_id=row["recurring_parent_id"],
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
        )

    @staticmethod
    def _tags_by_owner(
        cur: sqlite3.Cursor, join_table: str, owner_col: str, ids: Iterable[int]
    ) -> dict[int, list[str]]:
        id_list = list(ids)
        out: dict[int, list[str]] = {i: [] for i in id_list}
        if not id_list:
            return out
        placeholders = ",".join("?" for _ in id_list)
        cur.execute(
            f"""
            SELECT j.{owner_col} AS owner_id, t.name AS name
            FROM {join_table} j JOIN tags t ON t.id = j.tag_id
            WHERE j.{owner_col} IN ({placeholders})
            ORDER BY t.name
            """,
            id_list,
        )
        for row in cur.fetchall():
            out[int(row["owner_id"])].append(str(row["name"]))
        return out

    def _rows_to_tasks(self, cur: sqlite3.Cursor, rows: list[sqlite3.Row]) -> list[Task]:
        tags = self._tags_by_owner(cur, "tasks_tags", "task_id", (int(r["id"]) for r in rows))
        return [self._row_to_task(r, tags[int(r["id"])]) for r in rows]

    @staticmethod
    def _attach_tags(
        cur: sqlite3.Cursor, *, user_id: int, join_table: str, owner_col: str, owner_id: int, names: Iterable[str]
    ) -> None:
        cur.execute(f"DELETE FROM {join_table} WHERE {owner_col} = ?", (owner_id,))
        for raw in names:
            name = (raw or "").strip()
            if not name:
                continue
            cur.execute("INSERT OR IGNORE INTO tags(user_id, name) VALUES (?, ?)", (user_id, name))
            cur.execute("SELECT id FROM tags WHERE user_id = ? AND name = ?", (user_id, name))
            (tag_id,) = cur.fetchone()
            # Repeated names collapse here; callers may pass duplicates.
            cur.execute(
                f"INSERT OR IGNORE INTO {join_table}({owner_col}, tag_id) VALUES (?, ?)",
                (owner_id, int(tag_id)),
            )

    # ---- users ----

    def ensure_user(self, email: str, password: str) -> User:
        """Create the user if missing. An existing user's password is left untouched."""
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("email is required", field="email")
        if not password:
            raise ValidationError("password is required", field="password")

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT id, email FROM users WHERE email = ?", (email,))
            row = cur.fetchone()
            if row:
                return User(id=int(row["id"]), email=str(row["email"]))
            cur.execute(
                "INSERT INTO users(email, password_hash, created_at) VALUES (?, ?, ?)",
                (email, hash_password(password), time.time()),
            )
            conn.commit()
            user_id = int(cur.lastrowid or 0)
            logger.info("User created id=%s email=%s", user_id, email)
            return User(id=user_id, email=email)
        finally:
            conn.close()

    def authenticate(self, email: str, password: str) -> User | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT id, email, password_hash FROM users WHERE email = ?",
                ((email or "").strip().lower(),),
            )
            row = cur.fetchone()
        finally:
            conn.close()
        if not row or not verify_password(password or "", str(row["password_hash"])):
            return None
        return User(id=int(row["id"]), email=str(row["email"]))

    def first_user(self) -> User | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT id, email FROM users ORDER BY id LIMIT 1")
            row = cur.fetchone()
            return User(id=int(row["id"]), email=str(row["email"])) if row else None
        finally:
            conn.close()

    # ---- areas ----

    def create_area(self, *, user_id: int, name: str, description: str | None = None) -> Area:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required", field="name")
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO areas(user_id, name, description, created_at) VALUES (?, ?, ?, ?)",
                (user_id, name, description, time.time()),
            )
            conn.commit()
            return Area(id=int(cur.lastrowid or 0), user_id=user_id, name=name, description=description)
        finally:
            conn.close()

    def list_areas(self, user_id: int) -> list[Area]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM areas WHERE user_id = ? ORDER BY name", (user_id,))
            return [
                Area(id=int(r["id"]), user_id=int(r["user_id"]), name=r["name"], description=r["description"])
                for r in cur.fetchall()
            ]
        finally:
            conn.close()

    # ---- projects ----

    def _row_to_project(self, row: sqlite3.Row, tags: list[str]) -> Project:
        return Project(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            name=str(row["name"]),
            description=row["description"],
            active=bool(row["active"]),
            pin_to_sidebar=bool(row["pin_to_sidebar"]),
            area_id=row["area_id"],
            tags=tags,
            priority=Priority.coerce(row["priority"]) if row["priority"] else None,
            due_date=self._date_or_none(row["due_date"]),
        )

    def create_project(
        self,
        *,
        user_id: int,
        name: str,
        description: str | None = None,
        area_id: int | None = None,
        tags: Iterable[str] = (),
        priority: Priority | None = None,
        due_date: date | None = None,
    ) -> Project:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required", field="name")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO projects(user_id, name, description, active, pin_to_sidebar,
                                     area_id, priority, due_date, created_at, updated_at)
                VALUES (?, ?, ?, 1, 0, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    name,
                    description,
                    area_id,
                    priority.value if priority else None,
                    self._iso(due_date),
                    now,
                    now,
                ),
            )
            project_id = int(cur.lastrowid or 0)
            self._attach_tags(
                cur,
                user_id=user_id,
                join_table="projects_tags",
                owner_col="project_id",
                owner_id=project_id,
                names=tags,
            )
            conn.commit()
            logger.debug("Project added id=%s name=%s", project_id, name)
        finally:
            conn.close()
        return self.get_project(project_id)

    def get_project(self, project_id: int, *, user_id: int | None = None) -> Project:
        sql, params = self._owned("SELECT * FROM projects WHERE id = ?", project_id, user_id)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            row = cur.fetchone()
            if row is None:
                raise NotFoundError("project", project_id)
            tags = self._tags_by_owner(cur, "projects_tags", "project_id", [int(project_id)])
            return self._row_to_project(row, tags[int(project_id)])
        finally:
            conn.close()

    def list_projects(self, user_id: int, *, active: bool | None = None) -> list[Project]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if active is None:
                cur.execute("SELECT * FROM projects WHERE user_id = ? ORDER BY name", (user_id,))
            else:
                cur.execute(
                    "SELECT * FROM projects WHERE user_id = ? AND active = ? ORDER BY name",
                    (user_id, int(active)),
                )
            rows = cur.fetchall()
            tags = self._tags_by_owner(cur, "projects_tags", "project_id", (int(r["id"]) for r in rows))
            return [self._row_to_project(r, tags[int(r["id"])]) for r in rows]
        finally:
            conn.close()

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def get_task(self, task_id: int, *, user_id: int | None = None) -> Task:
        """Load one task. With user_id set, a task owned by someone else is NotFoundError."""
        sql, params = self._owned("SELECT * FROM tasks WHERE id = ?", task_id, user_id)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            row = cur.fetchone()
            if row is None:
                raise NotFoundError("task", task_id)
            return self._rows_to_tasks(cur, [row])[0]
        finally:
            conn.close()

    def save_task(self, payload: TaskPayload, *, user_id: int) -> Task:
        """
        Create (payload.id is None) or fully update a task owned by user_id.

        The task being updated, its recurring parent and its project must all
        belong to user_id; anything else is NotFoundError.

        When payload.update_parent_recurrence is set, the recurrence fields of the
        payload are written to the parent named by recurring_parent_id in the same
        transaction; the child row itself never stores a rule. Any failure rolls
        back both writes.
        """
        cols = validate_payload(payload)
        parent_id = cols["recurring_parent_id"]
        parent_rule = {name: cols[name] for name in RECURRENCE_FIELDS}
        now = time.time()

        conn = self._get_conn()
        try:
            cur = conn.cursor()

            if parent_id is not None:
                cur.execute(
                    "SELECT id, recurring_parent_id, due_date FROM tasks WHERE id = ? AND user_id = ?",
                    (parent_id, int(user_id)),
                )
                parent_row = cur.fetchone()
                if parent_row is None:
                    raise NotFoundError("recurring parent task", parent_id)
                if parent_row["recurring_parent_id"] is not None:
                    raise ValidationError(
                        f"task {parent_id} is itself a generated instance", field="recurring_parent_id"
                    )
                parent_due = self._date_or_none(parent_row["due_date"])
                parent_end = parent_rule["recurrence_end_date"]
                if (
                    payload.update_parent_recurrence
                    and parent_due is not None
                    and parent_end is not None
                    and parent_end < parent_due
                ):
                    raise ValidationError(
                        "recurrence_end_date is before the parent's due_date", field="recurrence_end_date"
                    )
                # An instance never carries a rule of its own.
                cols.update(
                    recurrence_type=RecurrenceType.NONE,
                    recurrence_interval=1,
                    recurrence_end_date=None,
                    recurrence_weekday=None,
                    recurrence_month_day=None,
                    recurrence_week_of_month=None,
                    completion_based=False,
                )

            existing = None
            if payload.id is not None:
                cur.execute(
                    "SELECT status, completed_at FROM tasks WHERE id = ? AND user_id = ?",
                    (int(payload.id), int(user_id)),
                )
                existing = cur.fetchone()
                if existing is None:
                    raise NotFoundError("task", payload.id)

            if cols["project_id"] is not None:
                cur.execute(
                    "SELECT id FROM projects WHERE id = ? AND user_id = ?",
                    (cols["project_id"], int(user_id)),
                )
                if cur.fetchone() is None:
                    raise NotFoundError("project", cols["project_id"])

            if parent_id is not None and payload.id is not None:
                cur.execute("SELECT COUNT(*) FROM tasks WHERE recurring_parent_id = ?", (int(payload.id),))
                (n_children,) = cur.fetchone()
                if n_children:
                    raise ValidationError(
                        f"task {payload.id} has generated instances and cannot become one",
                        field="recurring_parent_id",
                    )

            status: TaskStatus = cols["status"]
            completed_at: float | None
            if status == TaskStatus.DONE:
                prev_done = existing is not None and TaskStatus.from_db(existing["status"]) == TaskStatus.DONE
                completed_at = float(existing["completed_at"]) if prev_done and existing["completed_at"] else now
            else:
                completed_at = None

            values = {
                **cols,
                "status": status.value,
                "priority": cols["priority"].value,
                "recurrence_type": cols["recurrence_type"].value,
                "due_date": self._iso(cols["due_date"]),
                "recurrence_end_date": self._iso(cols["recurrence_end_date"]),
                "today": int(cols["today"]),
                "completion_based": int(cols["completion_based"]),
                "completed_at": completed_at,
                "updated_at": now,
            }

            if payload.id is None:
                values.update(uuid=uuid.uuid4().hex, user_id=int(user_id), created_at=now)
                names = list(values)
                cur.execute(
                    f"INSERT INTO tasks({', '.join(names)}) VALUES ({', '.join('?' for _ in names)})",
                    [values[n] for n in names],
                )
                rowid = cur.lastrowid
                if rowid is None:
                    raise RuntimeError("SQLite did not return lastrowid for tasks insert")
                task_id = int(rowid)
            else:
                task_id = int(payload.id)
                names = list(values)
                cur.execute(
                    f"UPDATE tasks SET {', '.join(f'{n} = ?' for n in names)} WHERE id = ?",
                    [*(values[n] for n in names), task_id],
                )

            if payload.tags is not None:
                self._attach_tags(
                    cur,
                    user_id=int(user_id),
                    join_table="tasks_tags",
                    owner_col="task_id",
                    owner_id=task_id,
                    names=payload.tags,
                )

            if payload.update_parent_recurrence and parent_id is not None:
                # The session seeds the child form with the parent's whole rule,
                # so every recurrence field of the payload is written.
                if parent_rule["recurrence_type"] == RecurrenceType.NONE:
                    logger.info("Recurrence removed from parent task_id=%s via child %s", parent_id, task_id)
                cur.execute(
                    f"""
                    UPDATE tasks
                    SET {', '.join(f'{n} = ?' for n in RECURRENCE_FIELDS)}, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        parent_rule["recurrence_type"].value,
                        int(parent_rule["recurrence_interval"]),
                        self._iso(parent_rule["recurrence_end_date"]),
                        parent_rule["recurrence_weekday"],
                        parent_rule["recurrence_month_day"],
                        parent_rule["recurrence_week_of_month"],
                        int(parent_rule["completion_based"]),
                        now,
                        parent_id,
                    ),
                )

            conn.commit()
            logger.debug(
                "Task saved id=%s status=%s parent=%s update_parent=%s",
                task_id,
                status.value,
                parent_id,
                payload.update_parent_recurrence,
            )
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

        return self.get_task(task_id)

    def delete_task(self, task_id: int, *, user_id: int | None = None) -> int:
        """
        Delete a task.

        Generated instances of a deleted recurring parent are orphaned, not
        deleted: their recurring_parent_id is cleared in the same transaction.
        Returns the number of orphaned instances. With user_id set, only that
        user's task can be deleted.
        """
        sql, params = self._owned("SELECT id FROM tasks WHERE id = ?", task_id, user_id)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            if cur.fetchone() is None:
                raise NotFoundError("task", task_id)

            cur.execute(
                "UPDATE tasks SET recurring_parent_id = NULL, updated_at = ? WHERE recurring_parent_id = ?",
                (time.time(), int(task_id)),
            )
            orphaned = int(cur.rowcount or 0)
            cur.execute("DELETE FROM tasks_tags WHERE task_id = ?", (int(task_id),))
            cur.execute("DELETE FROM tasks WHERE id = ?", (int(task_id),))
            conn.commit()
            logger.info("Task deleted id=%s orphaned_instances=%s", task_id, orphaned)
            return orphaned
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def update_task_status(self, task_id: int, new_status: TaskStatus) -> None:
        now = time.time()
        completed_at = now if new_status == TaskStatus.DONE else None
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE tasks SET status = ?, completed_at = ?, updated_at = ? WHERE id = ?",
                (new_status.value, completed_at, now, int(task_id)),
            )
            if cur.rowcount == 0:
                raise NotFoundError("task", task_id)
            conn.commit()
        finally:
            conn.close()

    def list_tasks(
        self,
        user_id: int,
        *,
        project_id: int | None = None,
        due_on: date | None = None,
        include_completed: bool = False,
    ) -> list[Task]:
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(int(project_id))
        if due_on is not None:
            clauses.append("due_date = ?")
            params.append(due_on.isoformat())
        if not include_completed:
            clauses.append("status NOT IN ('done','archived')")

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT * FROM tasks
                WHERE {' AND '.join(clauses)}
                ORDER BY COALESCE(due_date, '9999-12-31') ASC, name ASC
                """,
                params,
            )
            return self._rows_to_tasks(cur, cur.fetchall())
        finally:
            conn.close()

    def list_today(self, user_id: int, today: date) -> list[Task]:
        """Incomplete tasks flagged for today or due today or earlier."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM tasks
                WHERE user_id = ?
                  AND status NOT IN ('done','archived')
                  AND (today = 1 OR (due_date IS NOT NULL AND due_date <= ?))
                ORDER BY COALESCE(due_date, ?) ASC, name ASC
                """,
                (user_id, today.isoformat(), today.isoformat()),
            )
            return self._rows_to_tasks(cur, cur.fetchall())
        finally:
            conn.close()

    def list_inbox(self, user_id: int) -> list[Task]:
        """Incomplete tasks without a project, ordered by name."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM tasks
                WHERE user_id = ?
                  AND project_id IS NULL
                  AND status NOT IN ('done','archived')
                ORDER BY name ASC
                """,
                (user_id,),
            )
            return self._rows_to_tasks(cur, cur.fetchall())
        finally:
            conn.close()

    def list_recurring_parents(self) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM tasks
                WHERE recurrence_type != 'none'
                  AND recurring_parent_id IS NULL
                  AND status != 'archived'
                ORDER BY id ASC
                """
            )
            return self._rows_to_tasks(cur, cur.fetchall())
        finally:
            conn.close()

    def list_instances(self, parent_id: int) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM tasks
                WHERE recurring_parent_id = ?
                ORDER BY COALESCE(due_date, '') ASC, id ASC
                """,
                (int(parent_id),),
            )
            return self._rows_to_tasks(cur, cur.fetchall())
        finally:
            conn.close()

    def instance_exists(self, parent_id: int, due_date: date) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT 1 FROM tasks WHERE recurring_parent_id = ? AND due_date = ? LIMIT 1",
                (int(parent_id), due_date.isoformat()),
            )
            return cur.fetchone() is not None
        finally:
            conn.close()

    # ---- tags ----

    def list_tags(self, user_id: int) -> list[Tag]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT id, name FROM tags WHERE user_id = ? ORDER BY name", (user_id,))
            return [Tag(id=int(r["id"]), name=str(r["name"])) for r in cur.fetchall()]
        finally:
            conn.close()

    # ---- notes ----

    def create_note(
        self,
        *,
        user_id: int,
        title: str,
        content: str = "",
        project_id: int | None = None,
        tags: Iterable[str] = (),
    ) -> Note:
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required", field="title")
        now = time.time()
        tag_list = list(tags)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO notes(user_id, title, content, project_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, title, content or "", project_id, now, now),
            )
            note_id = int(cur.lastrowid or 0)
            self._attach_tags(
                cur,
                user_id=user_id,
                join_table="notes_tags",
                owner_col="note_id",
                owner_id=note_id,
                names=tag_list,
            )
            conn.commit()
            tags_out = self._tags_by_owner(cur, "notes_tags", "note_id", [note_id])[note_id]
        finally:
            conn.close()
        return Note(
            id=note_id,
            user_id=user_id,
            title=title,
            content=content or "",
            project_id=project_id,
            tags=tags_out,
        )

    def list_notes(self, user_id: int, *, project_id: int | None = None) -> list[Note]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if project_id is None:
                cur.execute("SELECT * FROM notes WHERE user_id = ? ORDER BY updated_at DESC", (user_id,))
            else:
                cur.execute(
                    "SELECT * FROM notes WHERE user_id = ? AND project_id = ? ORDER BY updated_at DESC",
                    (user_id, int(project_id)),
                )
            rows = cur.fetchall()
            tags = self._tags_by_owner(cur, "notes_tags", "note_id", (int(r["id"]) for r in rows))
            return [
                Note(
                    id=int(r["id"]),
                    user_id=int(r["user_id"]),
                    title=str(r["title"]),
                    content=str(r["content"] or ""),
                    project_id=r["project_id"],
                    tags=tags[int(r["id"])],
                )
                for r in rows
            ]
        finally:
            conn.close()

    # ---- per-user feature flags ----

    def get_flag(self, user_id: int, name: str, default: bool = True) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT value FROM user_flags WHERE user_id = ? AND name = ?", (user_id, name))
            row = cur.fetchone()
            return bool(row["value"]) if row else default
        finally:
            conn.close()

    def set_flag(self, user_id: int, name: str, value: bool) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO user_flags(user_id, name, value) VALUES (?, ?, ?)
                ON CONFLICT(user_id, name) DO UPDATE SET value = excluded.value
                """,
                (user_id, name, int(bool(value))),
            )
            conn.commit()
        finally:
            conn.close()
