"""
Tracker storage backend (SQLite).

Provides CRUD for projects, columns, tasks and task metadata, and the
transactional batch reorder behind drag-and-drop.
"""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from . import positions
from .errors import NotFoundError, StorageFailure, ValidationError
from .schema import (
    DEFAULT_COLUMNS,
    Attachment,
    Checklist,
    ChecklistItem,
    Column,
    Comment,
    Label,
    Priority,
    Project,
    Role,
    Task,
    TimeEntry,
    User,
    iso,
    new_id,
    parse_datetime,
    parse_estimate,
    parse_flag,
    parse_hours,
    require_text,
    utc_now,
)

logger = logging.getLogger(__name__)

TASK_FIELDS = ("title", "description", "priority", "due_date", "assignee_id", "estimated_hours")
PROJECT_FIELDS = ("name", "description", "type", "archived")


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _placeholders(values: Iterable[Any]) -> str:
    return ",".join("?" for _ in values)


class SQLiteStore:
    """SQLite-backed tracker store."""

    backend = "sqlite"

    def __init__(self, db_path: str = None, strict_positions: bool = False):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "tracker" / "tracker.db")
        self.db_path = db_path
        self.strict_positions = strict_positions
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _db(self):
        """One connection per operation; commit on success, roll back on any error."""
        conn = None
        try:
            conn = _connect(self.db_path)
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"SQLite error on {self.db_path}: {e}")
            raise StorageFailure() from e
        finally:
            if conn is not None:
                conn.close()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self._db() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    role TEXT DEFAULT 'member',
                    password_hash TEXT DEFAULT '',
                    avatar TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    type TEXT DEFAULT 'general',
                    archived INTEGER DEFAULT 0,
                    owner_id TEXT NOT NULL REFERENCES users(id),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS board_columns (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    position INTEGER NOT NULL
                );
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    column_id TEXT NOT NULL REFERENCES board_columns(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    description TEXT,
                    position INTEGER NOT NULL,
                    priority TEXT DEFAULT 'medium',
                    due_date TEXT,
                    estimated_hours REAL,
                    assignee_id TEXT REFERENCES users(id) ON DELETE SET NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS checklists (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    position INTEGER NOT NULL
                );
                CREATE TABLE IF NOT EXISTS checklist_items (
                    id TEXT PRIMARY KEY,
                    checklist_id TEXT NOT NULL REFERENCES checklists(id) ON DELETE CASCADE,
                    content TEXT NOT NULL,
                    completed INTEGER DEFAULT 0,
                    position INTEGER NOT NULL
                );
                CREATE TABLE IF NOT EXISTS comments (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    author_id TEXT NOT NULL REFERENCES users(id),
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS attachments (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    filename TEXT NOT NULL,
                    filepath TEXT NOT NULL,
                    mimetype TEXT,
                    size INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS time_entries (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL REFERENCES users(id),
                    hours REAL NOT NULL,
                    description TEXT,
                    date TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS labels (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    color TEXT
                );
                CREATE TABLE IF NOT EXISTS task_labels (
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    label_id TEXT NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
                    PRIMARY KEY (task_id, label_id)
                );

                CREATE INDEX IF NOT EXISTS idx_columns_project ON board_columns(project_id, position);
                CREATE INDEX IF NOT EXISTS idx_tasks_column ON tasks(column_id, position);
                CREATE INDEX IF NOT EXISTS idx_checklists_task ON checklists(task_id, position);
                CREATE INDEX IF NOT EXISTS idx_items_checklist ON checklist_items(checklist_id, position);
                CREATE INDEX IF NOT EXISTS idx_comments_task ON comments(task_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_time_entries_task ON time_entries(task_id, date);
            """)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _require(self, conn, table: str, row_id: str, what: str) -> sqlite3.Row:
        row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
        if not row:
            raise NotFoundError(f"{what} not found")
        return row

    def _next_position(self, conn, table: str, key: str, container_id: str) -> int:
        """Append position within a container: highest existing + 1."""
        rows = conn.execute(
            f"SELECT position FROM {table} WHERE {key} = ? ORDER BY position DESC LIMIT 1",
            (container_id,),
        ).fetchall()
        return positions.next_position([dict(r) for r in rows])

    def _users_by_id(self, conn, ids: Iterable[Optional[str]]) -> Dict[str, User]:
        ids = sorted({i for i in ids if i})
        if not ids:
            return {}
        rows = conn.execute(
            f"SELECT * FROM users WHERE id IN ({_placeholders(ids)})", ids
        ).fetchall()
        return {r["id"]: User.from_dict(dict(r)) for r in rows}

    # ── Users ────────────────────────────────────────────────────────────────

    def create_user(self, email: str, name: str, password_hash: str = "",
                    role: str = "member", user_id: str = None) -> User:
        email = require_text(email, "Email is required").lower()
        name = require_text(name, "Name is required")
        with self._db() as conn:
            if conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone():
                raise ValidationError("User already exists")
            user = User(id=user_id or new_id(), email=email, name=name,
                        role=Role(role), password_hash=password_hash)
            conn.execute(
                "INSERT INTO users (id, email, name, role, password_hash, avatar, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user.id, user.email, user.name, user.role.value, user.password_hash,
                 user.avatar, iso(user.created_at)),
            )
        return user

    def get_user(self, user_id: str) -> User:
        with self._db() as conn:
            return User.from_dict(dict(self._require(conn, "users", user_id, "User")))

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", ((email or "").strip().lower(),)
            ).fetchone()
        return User.from_dict(dict(row)) if row else None

    def list_users(self) -> List[User]:
        with self._db() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY name").fetchall()
        return [User.from_dict(dict(r)) for r in rows]

    # ── Projects ─────────────────────────────────────────────────────────────

    def list_projects(self, include_archived: bool = False) -> List[Project]:
        """Projects newest first, with owner and per-column task counts (no tasks)."""
        with self._db() as conn:
            where = "" if include_archived else "WHERE archived = 0"
            rows = conn.execute(
                f"SELECT * FROM projects {where} ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
            owners = self._users_by_id(conn, (r["owner_id"] for r in rows))
            projects = []
            for row in rows:
                project = self._row_to_project(row, owners)
                for col in conn.execute("""
                    SELECT c.*, COUNT(t.id) AS task_count
                    FROM board_columns c LEFT JOIN tasks t ON t.column_id = c.id
                    WHERE c.project_id = ?
                    GROUP BY c.id ORDER BY c.position
                """, (project.id,)):
                    project.columns.append(Column(
                        id=col["id"], project_id=col["project_id"], name=col["name"],
                        position=col["position"], task_count=col["task_count"],
                    ))
                projects.append(project)
        return projects

    def get_project(self, project_id: str) -> Project:
        """Project with ordered columns, ordered tasks and labels."""
        with self._db() as conn:
            row = self._require(conn, "projects", project_id, "Project")
            owners = self._users_by_id(conn, [row["owner_id"]])
            project = self._row_to_project(row, owners)
            cols = conn.execute(
                "SELECT * FROM board_columns WHERE project_id = ? ORDER BY position",
                (project_id,),
            ).fetchall()
            tasks = self._load_tasks(conn, [c["id"] for c in cols])
            for col in cols:
                column_tasks = [t for t in tasks if t.column_id == col["id"]]
                project.columns.append(Column(
                    id=col["id"], project_id=project_id, name=col["name"],
                    position=col["position"], tasks=column_tasks,
                    task_count=len(column_tasks),
                ))
            project.labels = self._labels_for_project(conn, project_id)
        return project

    def create_project(self, owner_id: str, name: str, description: str = None,
                       type: str = None) -> Project:
        """Create a project with the default columns at positions 0..4."""
        name = require_text(name, "Project name is required")
        with self._db() as conn:
            owner = User.from_dict(dict(self._require(conn, "users", owner_id, "User")))
            project = Project(id=new_id(), name=name, owner_id=owner_id,
                              description=description or None, type=type or "general",
                              owner=owner.summary())
            conn.execute(
                "INSERT INTO projects (id, name, description, type, archived, owner_id, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, 0, ?, ?, ?)",
                (project.id, project.name, project.description, project.type,
                 owner_id, iso(project.created_at), iso(project.updated_at)),
            )
            for position, column_name in enumerate(DEFAULT_COLUMNS):
                column = Column(id=new_id(), project_id=project.id, name=column_name,
                                position=position)
                conn.execute(
                    "INSERT INTO board_columns (id, project_id, name, position) VALUES (?, ?, ?, ?)",
                    (column.id, column.project_id, column.name, column.position),
                )
                project.columns.append(column)
        logger.info(f"Created project {project.id} ({project.name})")
        return project

    def update_project(self, project_id: str, **fields) -> Project:
        with self._db() as conn:
            self._require(conn, "projects", project_id, "Project")
            updates = {k: v for k, v in fields.items() if k in PROJECT_FIELDS}
            if "name" in updates:
                updates["name"] = require_text(updates["name"], "Project name is required")
            if "type" in updates:
                updates["type"] = updates["type"] or "general"
            if "description" in updates:
                updates["description"] = updates["description"] or None
            if "archived" in updates:
                updates["archived"] = 1 if parse_flag(updates["archived"], "archived") else 0
            if updates:
                updates["updated_at"] = iso(utc_now())
                assignments = ", ".join(f"{k} = ?" for k in updates)
                conn.execute(
                    f"UPDATE projects SET {assignments} WHERE id = ?",
                    (*updates.values(), project_id),
                )
        return self.get_project(project_id)

    def delete_project(self, project_id: str) -> List[Attachment]:
        """Delete a project and everything under it.

        Returns the attachment records removed, so the caller can clean up files.
        """
        with self._db() as conn:
            self._require(conn, "projects", project_id, "Project")
            rows = conn.execute("""
                SELECT a.* FROM attachments a
                JOIN tasks t ON a.task_id = t.id
                JOIN board_columns c ON t.column_id = c.id
                WHERE c.project_id = ?
            """, (project_id,)).fetchall()
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        logger.info(f"Deleted project {project_id}")
        return [Attachment.from_dict(dict(r)) for r in rows]

    def _row_to_project(self, row: sqlite3.Row, owners: Dict[str, User]) -> Project:
        data = dict(row)
        data["archived"] = bool(data.get("archived", 0))
        project = Project.from_dict(data)
        owner = owners.get(project.owner_id)
        if owner:
            project.owner = {"id": owner.id, "name": owner.name, "email": owner.email}
        return project

    # ── Labels ───────────────────────────────────────────────────────────────

    def create_label(self, project_id: str, name: str, color: str = None) -> Label:
        name = require_text(name, "Label name is required")
        with self._db() as conn:
            self._require(conn, "projects", project_id, "Project")
            label = Label(id=new_id(), project_id=project_id, name=name)
            if color:
                label.color = color
            conn.execute(
                "INSERT INTO labels (id, project_id, name, color) VALUES (?, ?, ?, ?)",
                (label.id, label.project_id, label.name, label.color),
            )
        return label

    def add_task_label(self, task_id: str, label_id: str) -> None:
        with self._db() as conn:
            self._require(conn, "tasks", task_id, "Task")
            self._require(conn, "labels", label_id, "Label")
            conn.execute(
                "INSERT OR IGNORE INTO task_labels (task_id, label_id) VALUES (?, ?)",
                (task_id, label_id),
            )

    def remove_task_label(self, task_id: str, label_id: str) -> None:
        with self._db() as conn:
            cur = conn.execute(
                "DELETE FROM task_labels WHERE task_id = ? AND label_id = ?",
                (task_id, label_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Task label not found")

    def _labels_for_project(self, conn, project_id: str) -> List[Label]:
        rows = conn.execute(
            "SELECT * FROM labels WHERE project_id = ? ORDER BY name", (project_id,)
        ).fetchall()
        return [Label.from_dict(dict(r)) for r in rows]

    # ── Tasks ────────────────────────────────────────────────────────────────

    def create_task(self, column_id: str, title: str, description: str = None,
                    priority: str = None, due_date: Any = None, assignee_id: str = None,
                    estimated_hours: Any = None) -> Task:
        """Create a task at the end of its column."""
        if not isinstance(title, str) or not title.strip() or not column_id:
            raise ValidationError("Title and column are required")
        task = Task(
            id=new_id(),
            column_id=column_id,
            title=title.strip(),
            description=description or None,
            priority=Priority.parse(priority),
            due_date=parse_datetime(due_date),
            estimated_hours=parse_estimate(estimated_hours),
            assignee_id=assignee_id or None,
        )
        with self._db() as conn:
            self._require(conn, "board_columns", column_id, "Column")
            if task.assignee_id:
                self._require(conn, "users", task.assignee_id, "Assignee")
            task.position = self._next_position(conn, "tasks", "column_id", column_id)
            conn.execute("""
                INSERT INTO tasks (id, column_id, title, description, position, priority,
                                   due_date, estimated_hours, assignee_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                task.id, task.column_id, task.title, task.description, task.position,
                task.priority.value, iso(task.due_date), task.estimated_hours,
                task.assignee_id, iso(task.created_at), iso(task.updated_at),
            ))
            return self._load_task(conn, task.id, full=False)

    def get_task(self, task_id: str) -> Task:
        """Task with checklists, comments, attachments, time entries and labels."""
        with self._db() as conn:
            return self._load_task(conn, task_id, full=True)

    def update_task(self, task_id: str, **fields) -> Task:
        updates = {k: v for k, v in fields.items() if k in TASK_FIELDS}
        if "title" in updates:
            updates["title"] = require_text(updates["title"], "Title is required")
        if "priority" in updates:
            updates["priority"] = Priority.parse(updates["priority"]).value
        if "due_date" in updates:
            updates["due_date"] = iso(parse_datetime(updates["due_date"]))
        if "estimated_hours" in updates:
            updates["estimated_hours"] = parse_estimate(updates["estimated_hours"])
        if "description" in updates:
            updates["description"] = updates["description"] or None
        if "assignee_id" in updates:
            updates["assignee_id"] = updates["assignee_id"] or None

        with self._db() as conn:
            self._require(conn, "tasks", task_id, "Task")
            if updates.get("assignee_id"):
                self._require(conn, "users", updates["assignee_id"], "Assignee")
            if updates:
                updates["updated_at"] = iso(utc_now())
                assignments = ", ".join(f"{k} = ?" for k in updates)
                conn.execute(
                    f"UPDATE tasks SET {assignments} WHERE id = ?",
                    (*updates.values(), task_id),
                )
            return self._load_task(conn, task_id, full=False)

    def delete_task(self, task_id: str) -> List[Attachment]:
        """Delete a task. Later tasks in the column keep their positions.

        Returns the attachment records removed, so the caller can clean up files.
        """
        with self._db() as conn:
            self._require(conn, "tasks", task_id, "Task")
            rows = conn.execute(
                "SELECT * FROM attachments WHERE task_id = ?", (task_id,)
            ).fetchall()
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        logger.info(f"Deleted task {task_id}")
        return [Attachment.from_dict(dict(r)) for r in rows]

    def reorder_tasks(self, moves) -> None:
        """Apply a batch of (task, column, position) assignments atomically.

        The batch is persisted verbatim. With strict_positions on, every
        column the batch touches must come out dense or the whole batch is
        rolled back.
        """
        moves = positions.parse_moves(moves)
        task_ids = [m.id for m in moves]
        column_ids = positions.affected_containers(moves)

        with self._db() as conn:
            found = {r["id"] for r in conn.execute(
                f"SELECT id FROM tasks WHERE id IN ({_placeholders(task_ids)})", task_ids
            )}
            missing = [i for i in task_ids if i not in found]
            if missing:
                raise NotFoundError(f"Task {missing[0]} not found")
            found = {r["id"] for r in conn.execute(
                f"SELECT id FROM board_columns WHERE id IN ({_placeholders(column_ids)})",
                column_ids,
            )}
            missing = [i for i in column_ids if i not in found]
            if missing:
                raise NotFoundError(f"Column {missing[0]} not found")

            now = iso(utc_now())
            conn.executemany(
                "UPDATE tasks SET column_id = ?, position = ?, updated_at = ? WHERE id = ?",
                [(m.column_id, m.position, now, m.id) for m in moves],
            )

            if self.strict_positions:
                for column_id in column_ids:
                    rows = conn.execute(
                        "SELECT position FROM tasks WHERE column_id = ?", (column_id,)
                    ).fetchall()
                    if not positions.is_dense(r["position"] for r in rows):
                        raise ValidationError(
                            f"Positions in column {column_id} would not be contiguous"
                        )
        logger.info(f"Reordered {len(moves)} tasks across {len(column_ids)} column(s)")

    def _load_task(self, conn, task_id: str, full: bool) -> Task:
        tasks = self._load_tasks(conn, task_ids=[task_id], full=full)
        if not tasks:
            raise NotFoundError("Task not found")
        return tasks[0]

    def _load_tasks(self, conn, column_ids: List[str] = None, task_ids: List[str] = None,
                    full: bool = False) -> List[Task]:
        """Fetch tasks with their relations, ordered by column then position."""
        if task_ids is not None:
            key, ids = "id", task_ids
        else:
            key, ids = "column_id", column_ids or []
        if not ids:
            return []
        rows = conn.execute(
            f"SELECT * FROM tasks WHERE {key} IN ({_placeholders(ids)})"
            " ORDER BY column_id, position, created_at",
            ids,
        ).fetchall()
        tasks = [Task.from_dict(dict(r)) for r in rows]
        if not tasks:
            return []
        by_id = {t.id: t for t in tasks}
        ids = list(by_id)
        marks = _placeholders(ids)

        users = self._users_by_id(conn, (t.assignee_id for t in tasks))
        for task in tasks:
            if task.assignee_id in users:
                task.assignee = users[task.assignee_id].summary()

        checklists = {}
        for r in conn.execute(
            f"SELECT * FROM checklists WHERE task_id IN ({marks}) ORDER BY position", ids
        ):
            checklist = Checklist.from_dict(dict(r))
            checklists[checklist.id] = checklist
            by_id[checklist.task_id].checklists.append(checklist)
        if checklists:
            cids = list(checklists)
            for r in conn.execute(
                f"SELECT * FROM checklist_items WHERE checklist_id IN ({_placeholders(cids)})"
                " ORDER BY position", cids,
            ):
                data = dict(r)
                data["completed"] = bool(data["completed"])
                item = ChecklistItem.from_dict(data)
                checklists[item.checklist_id].items.append(item)

        for r in conn.execute(f"""
            SELECT tl.task_id, l.* FROM task_labels tl JOIN labels l ON tl.label_id = l.id
            WHERE tl.task_id IN ({marks}) ORDER BY l.name
        """, ids):
            by_id[r["task_id"]].labels.append(Label.from_dict(dict(r)))

        for r in conn.execute(
            f"SELECT task_id, COUNT(*) AS n FROM comments WHERE task_id IN ({marks}) GROUP BY task_id", ids
        ):
            by_id[r["task_id"]].comment_count = r["n"]
        for r in conn.execute(
            f"SELECT task_id, COUNT(*) AS n FROM attachments WHERE task_id IN ({marks}) GROUP BY task_id", ids
        ):
            by_id[r["task_id"]].attachment_count = r["n"]

        if full:
            comment_rows = conn.execute(
                f"SELECT * FROM comments WHERE task_id IN ({marks}) ORDER BY created_at", ids
            ).fetchall()
            entry_rows = conn.execute(
                f"SELECT * FROM time_entries WHERE task_id IN ({marks}) ORDER BY date DESC", ids
            ).fetchall()
            people = self._users_by_id(
                conn,
                [r["author_id"] for r in comment_rows] + [r["user_id"] for r in entry_rows],
            )
            for r in comment_rows:
                comment = self._row_to_comment(r, people)
                by_id[comment.task_id].comments.append(comment)
            for r in entry_rows:
                entry = self._row_to_time_entry(r, people)
                by_id[entry.task_id].time_entries.append(entry)
            for r in conn.execute(
                f"SELECT * FROM attachments WHERE task_id IN ({marks}) ORDER BY created_at", ids
            ):
                by_id[r["task_id"]].attachments.append(Attachment.from_dict(dict(r)))

        return tasks

    # ── Checklists ───────────────────────────────────────────────────────────

    def create_checklist(self, task_id: str, title: str) -> Checklist:
        if not isinstance(title, str) or not title.strip() or not task_id:
            raise ValidationError("Title and task_id are required")
        with self._db() as conn:
            self._require(conn, "tasks", task_id, "Task")
            checklist = Checklist(id=new_id(), task_id=task_id, title=title.strip())
            checklist.position = self._next_position(conn, "checklists", "task_id", task_id)
            conn.execute(
                "INSERT INTO checklists (id, task_id, title, position) VALUES (?, ?, ?, ?)",
                (checklist.id, checklist.task_id, checklist.title, checklist.position),
            )
        return checklist

    def get_checklist(self, checklist_id: str) -> Checklist:
        with self._db() as conn:
            checklist = Checklist.from_dict(
                dict(self._require(conn, "checklists", checklist_id, "Checklist"))
            )
            for r in conn.execute(
                "SELECT * FROM checklist_items WHERE checklist_id = ? ORDER BY position",
                (checklist_id,),
            ):
                data = dict(r)
                data["completed"] = bool(data["completed"])
                checklist.items.append(ChecklistItem.from_dict(data))
        return checklist

    def update_checklist(self, checklist_id: str, title: str) -> Checklist:
        title = require_text(title, "Title is required")
        with self._db() as conn:
            self._require(conn, "checklists", checklist_id, "Checklist")
            conn.execute("UPDATE checklists SET title = ? WHERE id = ?", (title, checklist_id))
        return self.get_checklist(checklist_id)

    def delete_checklist(self, checklist_id: str) -> None:
        with self._db() as conn:
            self._require(conn, "checklists", checklist_id, "Checklist")
            conn.execute("DELETE FROM checklists WHERE id = ?", (checklist_id,))

    def create_checklist_item(self, checklist_id: str, content: str) -> ChecklistItem:
        if not isinstance(content, str) or not content.strip() or not checklist_id:
            raise ValidationError("Content and checklist_id are required")
        with self._db() as conn:
            self._require(conn, "checklists", checklist_id, "Checklist")
            item = ChecklistItem(id=new_id(), checklist_id=checklist_id, content=content.strip())
            item.position = self._next_position(
                conn, "checklist_items", "checklist_id", checklist_id
            )
            conn.execute(
                "INSERT INTO checklist_items (id, checklist_id, content, completed, position)"
                " VALUES (?, ?, ?, 0, ?)",
                (item.id, item.checklist_id, item.content, item.position),
            )
        return item

    def update_checklist_item(self, item_id: str, content: str = None,
                              completed: bool = None) -> ChecklistItem:
        with self._db() as conn:
            self._require(conn, "checklist_items", item_id, "Checklist item")
            if content is not None:
                conn.execute(
                    "UPDATE checklist_items SET content = ? WHERE id = ?",
                    (require_text(content, "Content is required"), item_id),
                )
            if completed is not None:
                conn.execute(
                    "UPDATE checklist_items SET completed = ? WHERE id = ?",
                    (1 if parse_flag(completed, "completed") else 0, item_id),
                )
            data = dict(self._require(conn, "checklist_items", item_id, "Checklist item"))
        data["completed"] = bool(data["completed"])
        return ChecklistItem.from_dict(data)

    def delete_checklist_item(self, item_id: str) -> None:
        with self._db() as conn:
            self._require(conn, "checklist_items", item_id, "Checklist item")
            conn.execute("DELETE FROM checklist_items WHERE id = ?", (item_id,))

    # ── Comments ─────────────────────────────────────────────────────────────

    def create_comment(self, task_id: str, author_id: str, content: str) -> Comment:
        if not isinstance(content, str) or not content.strip() or not task_id:
            raise ValidationError("Content and task_id are required")
        with self._db() as conn:
            self._require(conn, "tasks", task_id, "Task")
            author = User.from_dict(dict(self._require(conn, "users", author_id, "User")))
            comment = Comment(id=new_id(), task_id=task_id, author_id=author_id,
                              content=content.strip(), author=author.summary())
            conn.execute(
                "INSERT INTO comments (id, task_id, author_id, content, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (comment.id, comment.task_id, comment.author_id, comment.content,
                 iso(comment.created_at), iso(comment.updated_at)),
            )
        return comment

    def get_comment(self, comment_id: str) -> Comment:
        with self._db() as conn:
            row = self._require(conn, "comments", comment_id, "Comment")
            return self._row_to_comment(row, self._users_by_id(conn, [row["author_id"]]))

    def update_comment(self, comment_id: str, content: str) -> Comment:
        content = require_text(content, "Content is required")
        with self._db() as conn:
            self._require(conn, "comments", comment_id, "Comment")
            conn.execute(
                "UPDATE comments SET content = ?, updated_at = ? WHERE id = ?",
                (content, iso(utc_now()), comment_id),
            )
        return self.get_comment(comment_id)

    def delete_comment(self, comment_id: str) -> None:
        with self._db() as conn:
            self._require(conn, "comments", comment_id, "Comment")
            conn.execute("DELETE FROM comments WHERE id = ?", (comment_id,))

    def _row_to_comment(self, row: sqlite3.Row, users: Dict[str, User]) -> Comment:
        comment = Comment.from_dict(dict(row))
        if comment.author_id in users:
            comment.author = users[comment.author_id].summary()
        return comment

    # ── Time entries ─────────────────────────────────────────────────────────

    def list_time_entries(self, task_id: str) -> List[TimeEntry]:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM time_entries WHERE task_id = ? ORDER BY date DESC", (task_id,)
            ).fetchall()
            users = self._users_by_id(conn, (r["user_id"] for r in rows))
        return [self._row_to_time_entry(r, users) for r in rows]

    def create_time_entry(self, task_id: str, user_id: str, hours: Any,
                          description: str = None, date: Any = None) -> TimeEntry:
        if not task_id:
            raise ValidationError("task_id and a positive hours value are required")
        hours = parse_hours(hours, "task_id and a positive hours value are required")
        with self._db() as conn:
            self._require(conn, "tasks", task_id, "Task")
            user = User.from_dict(dict(self._require(conn, "users", user_id, "User")))
            entry = TimeEntry(id=new_id(), task_id=task_id, user_id=user_id, hours=hours,
                              description=description or None,
                              date=parse_datetime(date) or utc_now(), user=user.summary())
            conn.execute(
                "INSERT INTO time_entries (id, task_id, user_id, hours, description, date, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (entry.id, entry.task_id, entry.user_id, entry.hours, entry.description,
                 iso(entry.date), iso(entry.created_at)),
            )
        return entry

    def get_time_entry(self, entry_id: str) -> TimeEntry:
        with self._db() as conn:
            row = self._require(conn, "time_entries", entry_id, "Time entry")
            return self._row_to_time_entry(row, self._users_by_id(conn, [row["user_id"]]))

    def update_time_entry(self, entry_id: str, **fields) -> TimeEntry:
        updates = {}
        if "hours" in fields:
            updates["hours"] = parse_hours(fields["hours"])
        if "description" in fields:
            updates["description"] = fields["description"] or None
        if "date" in fields:
            updates["date"] = iso(parse_datetime(fields["date"]) or utc_now())
        with self._db() as conn:
            self._require(conn, "time_entries", entry_id, "Time entry")
            if updates:
                assignments = ", ".join(f"{k} = ?" for k in updates)
                conn.execute(
                    f"UPDATE time_entries SET {assignments} WHERE id = ?",
                    (*updates.values(), entry_id),
                )
        return self.get_time_entry(entry_id)

    def delete_time_entry(self, entry_id: str) -> None:
        with self._db() as conn:
            self._require(conn, "time_entries", entry_id, "Time entry")
            conn.execute("DELETE FROM time_entries WHERE id = ?", (entry_id,))

    def _row_to_time_entry(self, row: sqlite3.Row, users: Dict[str, User]) -> TimeEntry:
        entry = TimeEntry.from_dict(dict(row))
        if entry.user_id in users:
            entry.user = users[entry.user_id].summary()
        return entry

    # ── Attachments ──────────────────────────────────────────────────────────

    def create_attachment(self, task_id: str, filename: str, filepath: str,
                          mimetype: str = None, size: int = 0) -> Attachment:
        with self._db() as conn:
            self._require(conn, "tasks", task_id, "Task")
            attachment = Attachment(id=new_id(), task_id=task_id, filename=filename,
                                    filepath=filepath, size=size or 0)
            if mimetype:
                attachment.mimetype = mimetype
            conn.execute(
                "INSERT INTO attachments (id, task_id, filename, filepath, mimetype, size, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (attachment.id, attachment.task_id, attachment.filename, attachment.filepath,
                 attachment.mimetype, attachment.size, iso(attachment.created_at)),
            )
        return attachment

    def get_attachment(self, attachment_id: str) -> Attachment:
        with self._db() as conn:
            return Attachment.from_dict(
                dict(self._require(conn, "attachments", attachment_id, "Attachment"))
            )

    def delete_attachment(self, attachment_id: str) -> None:
        with self._db() as conn:
            self._require(conn, "attachments", attachment_id, "Attachment")
            conn.execute("DELETE FROM attachments WHERE id = ?", (attachment_id,))
