# src/nrp_tracker/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Final

from ..errors import (
    ConflictError,
    FatalStorageError,
    NotFoundError,
    TrackerError,
    TransientStorageError,
    ValidationError,
)
from .id_generator import TaskIdGenerator
from .task_models import (
    DEFAULT_DESCRIPTION,
    DEFAULT_TITLE,
    Task,
    TaskPriority,
    TaskStatus,
    normalize_due_date,
)

logger = logging.getLogger(__name__)


class _Keep:
    def __repr__(self) -> str:
        return "KEEP"


KEEP: Final = _Keep()
"""Marker for update_task(due_date=...) meaning "leave unchanged" (None clears it)."""


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


class TaskStore:
    """
    SQLite task store: task rows plus the symmetric link graph.

    Schema:
    - tasks: one row per task, files/allowed_apps as JSON lists, ISO-8601 timestamps
    - task_links: ordered (task_id, linked_task_id) pairs, PRIMARY KEY on the pair

    Every link exists in both directions. delete_task and link_tasks run under
    BEGIN IMMEDIATE so readers never see one direction without the other.
    Edge cleanup on delete is done explicitly, not through ON DELETE CASCADE.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        id_generator: TaskIdGenerator | None = None,
        max_insert_attempts: int = 5,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ids = id_generator or TaskIdGenerator()
        self._max_insert_attempts = max(1, int(max_insert_attempts))
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # Autocommit; multi-statement operations open explicit transactions.
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    @contextlib.contextmanager
    def _transaction(self, conn: sqlite3.Connection, op: str) -> Iterator[sqlite3.Cursor]:
        """
        BEGIN IMMEDIATE ... COMMIT, ROLLBACK on any error.

        Domain errors (validation/not found/conflict) are re-raised as is;
        SQLite failures become FatalStorageError.
        """
        cur = conn.cursor()
        try:
            cur.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise FatalStorageError(f"{op}: could not begin transaction: {e}") from e

        try:
            yield cur
            cur.execute("COMMIT")
        except TrackerError:
            self._rollback(conn, op)
            raise
        except sqlite3.Error as e:
            self._rollback(conn, op)
            logger.exception("%s failed; transaction rolled back", op)
            raise FatalStorageError(f"{op} failed and was rolled back: {e}") from e
        except BaseException:
            self._rollback(conn, op)
            raise

    @staticmethod
    def _rollback(conn: sqlite3.Connection, op: str) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("%s: ROLLBACK failed", op)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    assignee TEXT NOT NULL DEFAULT '',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    due_date TEXT,
                    status TEXT NOT NULL DEFAULT 'backlog',
                    files TEXT NOT NULL DEFAULT '[]',
                    allowed_apps TEXT NOT NULL DEFAULT '[]',
                    time_spent INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("files", "TEXT NOT NULL DEFAULT '[]'")
            add_col("allowed_apps", "TEXT NOT NULL DEFAULT '[]'")
            add_col("time_spent", "INTEGER NOT NULL DEFAULT 0")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_links (
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    linked_task_id TEXT NOT NULL REFERENCES tasks(id),
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (task_id, linked_task_id),
                    CHECK (task_id <> linked_task_id)
                )
                """
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status_updated ON tasks(status, updated_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_task_links_linked ON task_links(linked_task_id)")
        finally:
            conn.close()

    @staticmethod
    def _list_to_str(items: Iterable[str] | None) -> str:
        return json.dumps([str(x) for x in (items or [])], ensure_ascii=False)

    @staticmethod
    def _str_to_list(s: str | None) -> list[str]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Corrupt JSON list in tasks table: %r", s)
            return []
        return [str(x) for x in val] if isinstance(val, list) else []

    def _row_to_task(self, row: sqlite3.Row, linked: list[str] | None = None) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            assignee=str(row["assignee"] or ""),
            priority=TaskPriority.from_db(row["priority"]),
            due_date=row["due_date"],
            status=TaskStatus.from_db(row["status"]),
            files=self._str_to_list(row["files"]),
            allowed_apps=self._str_to_list(row["allowed_apps"]),
            time_spent=int(row["time_spent"] or 0),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
            linked_tasks=list(linked or []),
        )

    @staticmethod
    def _links_for(cur: sqlite3.Cursor, task_id: str) -> list[str]:
        cur.execute(
            "SELECT linked_task_id FROM task_links WHERE task_id = ? ORDER BY rowid ASC",
            (task_id,),
        )
        return [str(r["linked_task_id"]) for r in cur.fetchall()]

    def _fetch_task(self, cur: sqlite3.Cursor, task_id: str) -> Task | None:
        cur.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_task(row, self._links_for(cur, task_id))

    @staticmethod
    def _coerce_str_list(items: Iterable[Any] | None, field_name: str) -> list[str]:
        if items is None:
            return []
        if isinstance(items, (str, bytes)):
            raise ValidationError(f"{field_name} must be a list of strings")
        return [str(x) for x in items]

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def task_exists(self, task_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,))
            return cur.fetchone() is not None
        finally:
            conn.close()

    def create_task(
        self,
        *,
        title: str | None = None,
        description: str | None = None,
        assignee: str | None = None,
        priority: TaskPriority | str | None = None,
        due_date: str | date | None = None,
        status: TaskStatus | str | None = None,
        files: Iterable[str] | None = None,
        allowed_apps: Iterable[str] | None = None,
    ) -> Task:
        """
        Insert a new task with a generated id and defaults applied.

        A lost id race (another writer inserted the same id between the
        generator's check and our INSERT) is retried with a fresh id.
        """
        prio = TaskPriority.parse(priority) if priority else TaskPriority.MEDIUM
        st = TaskStatus.parse(status) if status else TaskStatus.BACKLOG
        due = normalize_due_date(due_date)
        files_s = self._list_to_str(self._coerce_str_list(files, "files"))
        apps_s = self._list_to_str(self._coerce_str_list(allowed_apps, "allowed_apps"))
        title_s = (title or "").strip() or DEFAULT_TITLE
        desc_s = description if description is not None else DEFAULT_DESCRIPTION

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            for attempt in range(1, self._max_insert_attempts + 1):
                task_id = self._ids.generate(self.task_exists)
                now = _now_iso()
                try:
                    cur.execute(
                        """
                        INSERT INTO tasks(
                            id, title, description, assignee, priority, due_date,
                            status, files, allowed_apps, time_spent, created_at, updated_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                        """,
                        (
                            task_id,
                            title_s,
                            desc_s,
                            (assignee or "").strip(),
                            prio.value,
                            due,
                            st.value,
                            files_s,
                            apps_s,
                            now,
                            now,
                        ),
                    )
                except sqlite3.IntegrityError:
                    logger.warning("Task id %s taken by a concurrent insert (attempt %s)", task_id, attempt)
                    continue
                except sqlite3.OperationalError as e:
                    raise TransientStorageError(f"create_task failed: {e}") from e

                task = self._fetch_task(cur, task_id)
                if task is None:
                    raise FatalStorageError(f"Task {task_id} vanished right after insert")
                logger.debug("Task created id=%s status=%s priority=%s", task_id, st.value, prio.value)
                return task
        finally:
            conn.close()

        raise FatalStorageError(
            f"Could not allocate a unique task id after {self._max_insert_attempts} attempts"
        )

    def list_tasks(self) -> list[Task]:
        """All tasks with resolved linked_tasks, newest first."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            # One read transaction so rows and links come from the same snapshot.
            cur.execute("BEGIN")
            try:
                cur.execute("SELECT * FROM tasks ORDER BY created_at DESC, rowid DESC")
                rows = cur.fetchall()
                cur.execute("SELECT task_id, linked_task_id FROM task_links ORDER BY rowid ASC")
                links: dict[str, list[str]] = {}
                for r in cur.fetchall():
                    links.setdefault(str(r["task_id"]), []).append(str(r["linked_task_id"]))
            finally:
                cur.execute("COMMIT")
            return [self._row_to_task(r, links.get(str(r["id"]))) for r in rows]
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            try:
                return self._fetch_task(cur, task_id)
            finally:
                cur.execute("COMMIT")
        finally:
            conn.close()

    def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        assignee: str | None = None,
        priority: TaskPriority | str | None = None,
        due_date: str | date | None | _Keep = KEEP,
        status: TaskStatus | str | None = None,
        files: Iterable[str] | None = None,
        allowed_apps: Iterable[str] | None = None,
    ) -> Task | None:
        """
        Replace the given mutable fields and bump updated_at.

        None leaves a field unchanged, except due_date where None clears the date
        and KEEP (the default) leaves it unchanged. Links and time_spent are not
        touched here. Returns None if the task does not exist.
        """
        fields: list[str] = []
        params: list[Any] = []

        if title is not None:
            if not title.strip():
                raise ValidationError("Task title cannot be empty")
            fields.append("title = ?")
            params.append(title.strip())

        if description is not None:
            fields.append("description = ?")
            params.append(description)

        if assignee is not None:
            fields.append("assignee = ?")
            params.append(assignee.strip())

        if priority is not None:
            fields.append("priority = ?")
            params.append(TaskPriority.parse(priority).value)

        if not isinstance(due_date, _Keep):
            fields.append("due_date = ?")
            params.append(normalize_due_date(due_date))

        if status is not None:
            fields.append("status = ?")
            params.append(TaskStatus.parse(status).value)

        if files is not None:
            fields.append("files = ?")
            params.append(self._list_to_str(self._coerce_str_list(files, "files")))

        if allowed_apps is not None:
            fields.append("allowed_apps = ?")
            params.append(self._list_to_str(self._coerce_str_list(allowed_apps, "allowed_apps")))

        fields.append("updated_at = ?")
        params.append(_now_iso())
        params.append(task_id)

        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            try:
                cur.execute(sql, params)
            except sqlite3.OperationalError as e:
                raise TransientStorageError(f"update_task failed: {e}") from e
            if cur.rowcount == 0:
                return None
            return self._fetch_task(cur, task_id)
        finally:
            conn.close()

    def delete_task(self, task_id: str) -> Task | None:
        """
        Remove the task and every edge that mentions it, in one transaction.

        Returns the deleted record (with the links it had) or None if absent.
        """
        conn = self._get_conn()
        try:
            with self._transaction(conn, "delete_task") as cur:
                task = self._fetch_task(cur, task_id)
                if task is None:
                    return None

                cur.execute(
                    "DELETE FROM task_links WHERE task_id = ? OR linked_task_id = ?",
                    (task_id, task_id),
                )
                removed_edges = cur.rowcount
                cur.execute("DELETE FROM tasks WHERE id = ?", (task_id,))

            logger.info("Task deleted id=%s edges_removed=%s", task_id, removed_edges)
            return task
        finally:
            conn.close()

    def link_tasks(self, task_id: str, linked_task_id: str) -> None:
        """
        Create the symmetric edge pair (a, b) + (b, a).

        Raises:
        - ValidationError if a == b
        - NotFoundError unless both tasks exist
        - ConflictError if the tasks are already linked
        """
        if task_id == linked_task_id:
            raise ValidationError("Cannot link a task to itself")

        conn = self._get_conn()
        try:
            with self._transaction(conn, "link_tasks") as cur:
                cur.execute(
                    "SELECT id FROM tasks WHERE id IN (?, ?)",
                    (task_id, linked_task_id),
                )
                found = {str(r["id"]) for r in cur.fetchall()}
                missing = tuple(t for t in (task_id, linked_task_id) if t not in found)
                if missing:
                    raise NotFoundError(
                        f"Task(s) not found: {', '.join(missing)}",
                        task_ids=missing,
                    )

                cur.execute(
                    "SELECT 1 FROM task_links WHERE task_id = ? AND linked_task_id = ?",
                    (task_id, linked_task_id),
                )
                if cur.fetchone() is not None:
                    raise ConflictError(f"Tasks {task_id} and {linked_task_id} are already linked")

                now = _now_iso()
                try:
                    cur.executemany(
                        "INSERT INTO task_links(task_id, linked_task_id, created_at) VALUES (?, ?, ?)",
                        [(task_id, linked_task_id, now), (linked_task_id, task_id, now)],
                    )
                except sqlite3.IntegrityError as e:
                    cur.execute(
                        "SELECT 1 FROM task_links WHERE task_id = ? AND linked_task_id = ?",
                        (linked_task_id, task_id),
                    )
                    if cur.fetchone() is None:
                        raise
                    # Reverse edge present without the forward one; refuse rather than repair.
                    raise ConflictError(
                        f"Tasks {task_id} and {linked_task_id} are already linked"
                    ) from e

            logger.info("Tasks linked %s <-> %s", task_id, linked_task_id)
        finally:
            conn.close()

    def unlink_tasks(self, task_id: str, linked_task_id: str) -> bool:
        """Remove both directions of the edge. Idempotent; returns True if anything was removed."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            try:
                cur.execute(
                    """
                    DELETE FROM task_links
                    WHERE (task_id = ? AND linked_task_id = ?)
                       OR (task_id = ? AND linked_task_id = ?)
                    """,
                    (task_id, linked_task_id, linked_task_id, task_id),
                )
            except sqlite3.OperationalError as e:
                raise TransientStorageError(f"unlink_tasks failed: {e}") from e
            removed = cur.rowcount > 0
            if removed:
                logger.info("Tasks unlinked %s <-> %s", task_id, linked_task_id)
            return removed
        finally:
            conn.close()

    def update_time_spent(self, task_id: str, seconds: int) -> Task | None:
        """
        Set the absolute time spent (seconds). Returns None if the task is gone.

        Any SQLite failure here is reported as TransientStorageError: callers
        (the timer flusher) retry on their next window.
        """
        if isinstance(seconds, bool) or not isinstance(seconds, int):
            raise ValidationError(f"time spent must be an integer number of seconds, got {seconds!r}")
        if seconds < 0:
            raise ValidationError("time spent cannot be negative")

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            try:
                cur.execute(
                    "UPDATE tasks SET time_spent = ?, updated_at = ? WHERE id = ?",
                    (seconds, _now_iso(), task_id),
                )
                if cur.rowcount == 0:
                    return None
                return self._fetch_task(cur, task_id)
            except sqlite3.Error as e:
                raise TransientStorageError(f"update_time_spent({task_id}) failed: {e}") from e
        finally:
            conn.close()

    def find_active_task(self) -> Task | None:
        """
        Most recently updated task in status in-progress.

        A derived, best-effort answer; the timer coordinator is the authority
        on what is actually being timed.
        """
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT id
                FROM tasks
                WHERE status = ?
                ORDER BY updated_at DESC, rowid DESC
                    LIMIT 1
                """,
                (TaskStatus.IN_PROGRESS.value,),
            )
            row = cur.fetchone()
            return self._fetch_task(cur, str(row["id"])) if row else None
        finally:
            conn.close()
