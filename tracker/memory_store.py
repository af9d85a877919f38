"""
In-memory tracker store for demo and offline use.

Same public methods as SQLiteStore, so the server and BoardSession can run
on either. Rows are kept as plain dicts shaped like the SQLite rows and can
be mirrored to a JSON file, which is reloaded on the next start. Every
mutation runs against a snapshot and is rolled back if it raises.
"""
import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

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

TABLES = (
    "users", "projects", "columns", "tasks", "checklists", "checklist_items",
    "comments", "attachments", "time_entries", "labels", "task_labels",
)

DEMO_USER_ID = "demo-user-1"


class MemoryStore:
    """Dict-backed tracker store with optional JSON file persistence."""

    backend = "memory"

    def __init__(self, path: str = None, seed: bool = True, strict_positions: bool = False):
        self.path = Path(path).expanduser() if path else None
        self.strict_positions = strict_positions
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[str, dict]] = {name: {} for name in TABLES}

        if self.path and self.path.exists():
            self._load()
        elif seed:
            seed_demo_data(self)

    # ── Persistence ──────────────────────────────────────────────────────────

    def _load(self):
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read demo data from {self.path}: {e}")
            return
        for name in TABLES:
            self._tables[name] = data.get(name, {})

    def _save(self):
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp, "w") as f:
                json.dump(self._tables, f)
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save demo data to {self.path}: {e}")
            raise StorageFailure() from e

    @contextmanager
    def _mutate(self):
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield self._tables
            except Exception:
                self._tables = snapshot
                raise
            try:
                self._save()
            except StorageFailure:
                self._tables = snapshot
                raise

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _require(self, table: str, row_id: str, what: str) -> dict:
        row = self._tables[table].get(row_id)
        if row is None:
            raise NotFoundError(f"{what} not found")
        return row

    def _children(self, table: str, key: str, parent_id: str) -> List[dict]:
        return [r for r in self._tables[table].values() if r[key] == parent_id]

    def _user(self, user_id: Optional[str]) -> Optional[User]:
        row = self._tables["users"].get(user_id) if user_id else None
        return User.from_dict(row) if row else None

    def _summary(self, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        user = self._user(user_id)
        return user.summary() if user else None

    # ── Users ────────────────────────────────────────────────────────────────

    def create_user(self, email: str, name: str, password_hash: str = "",
                    role: str = "member", user_id: str = None) -> User:
        email = require_text(email, "Email is required").lower()
        name = require_text(name, "Name is required")
        with self._mutate() as t:
            if any(u["email"] == email for u in t["users"].values()):
                raise ValidationError("User already exists")
            user = User(id=user_id or new_id(), email=email, name=name,
                        role=Role(role), password_hash=password_hash)
            row = user.to_dict()
            row["password_hash"] = password_hash
            t["users"][user.id] = row
        return user

    def get_user(self, user_id: str) -> User:
        with self._lock:
            return User.from_dict(self._require("users", user_id, "User"))

    def find_user_by_email(self, email: str) -> Optional[User]:
        email = (email or "").strip().lower()
        with self._lock:
            for row in self._tables["users"].values():
                if row["email"] == email:
                    return User.from_dict(row)
        return None

    def list_users(self) -> List[User]:
        with self._lock:
            users = [User.from_dict(r) for r in self._tables["users"].values()]
        return sorted(users, key=lambda u: u.name)

    # ── Projects ─────────────────────────────────────────────────────────────

    def list_projects(self, include_archived: bool = False) -> List[Project]:
        with self._lock:
            rows = [(n, r) for n, r in enumerate(self._tables["projects"].values())
                    if include_archived or not r["archived"]]
            rows.sort(key=lambda pair: (pair[1]["created_at"], pair[0]), reverse=True)
            projects = []
            for _, row in rows:
                project = self._project(row)
                for col in positions.ordered(self._children("columns", "project_id", row["id"])):
                    project.columns.append(Column(
                        id=col["id"], project_id=col["project_id"], name=col["name"],
                        position=col["position"],
                        task_count=len(self._children("tasks", "column_id", col["id"])),
                    ))
                projects.append(project)
        return projects

    def get_project(self, project_id: str) -> Project:
        with self._lock:
            project = self._project(self._require("projects", project_id, "Project"))
            for col in positions.ordered(self._children("columns", "project_id", project_id)):
                tasks = [self._task(r, full=False) for r in
                         positions.ordered(self._children("tasks", "column_id", col["id"]))]
                project.columns.append(Column(
                    id=col["id"], project_id=project_id, name=col["name"],
                    position=col["position"], tasks=tasks, task_count=len(tasks),
                ))
            project.labels = sorted(
                (Label.from_dict(r) for r in self._children("labels", "project_id", project_id)),
                key=lambda l: l.name,
            )
        return project

    def create_project(self, owner_id: str, name: str, description: str = None,
                       type: str = None) -> Project:
        name = require_text(name, "Project name is required")
        with self._mutate() as t:
            owner = User.from_dict(self._require("users", owner_id, "User"))
            project = Project(id=new_id(), name=name, owner_id=owner_id,
                              description=description or None, type=type or "general",
                              owner=owner.summary())
            t["projects"][project.id] = {
                "id": project.id, "name": project.name, "description": project.description,
                "type": project.type, "archived": False, "owner_id": owner_id,
                "created_at": iso(project.created_at), "updated_at": iso(project.updated_at),
            }
            for position, column_name in enumerate(DEFAULT_COLUMNS):
                column = Column(id=new_id(), project_id=project.id, name=column_name,
                                position=position)
                t["columns"][column.id] = {
                    "id": column.id, "project_id": project.id,
                    "name": column.name, "position": position,
                }
                project.columns.append(column)
        logger.info(f"Created project {project.id} ({project.name})")
        return project

    def update_project(self, project_id: str, **fields) -> Project:
        with self._mutate() as t:
            row = self._require("projects", project_id, "Project")
            if "name" in fields:
                row["name"] = require_text(fields["name"], "Project name is required")
            if "description" in fields:
                row["description"] = fields["description"] or None
            if "type" in fields:
                row["type"] = fields["type"] or "general"
            if "archived" in fields:
                row["archived"] = parse_flag(fields["archived"], "archived")
            row["updated_at"] = iso(utc_now())
        return self.get_project(project_id)

    def delete_project(self, project_id: str) -> List[Attachment]:
        with self._mutate() as t:
            self._require("projects", project_id, "Project")
            removed = []
            for col in self._children("columns", "project_id", project_id):
                for task in self._children("tasks", "column_id", col["id"]):
                    removed += self._drop_task(t, task["id"])
                del t["columns"][col["id"]]
            for label in self._children("labels", "project_id", project_id):
                self._drop_label(t, label["id"])
            del t["projects"][project_id]
        logger.info(f"Deleted project {project_id}")
        return removed

    def _project(self, row: dict) -> Project:
        project = Project.from_dict(row)
        owner = self._user(project.owner_id)
        if owner:
            project.owner = {"id": owner.id, "name": owner.name, "email": owner.email}
        return project

    # ── Labels ───────────────────────────────────────────────────────────────

    def create_label(self, project_id: str, name: str, color: str = None) -> Label:
        name = require_text(name, "Label name is required")
        with self._mutate() as t:
            self._require("projects", project_id, "Project")
            label = Label(id=new_id(), project_id=project_id, name=name)
            if color:
                label.color = color
            t["labels"][label.id] = label.to_dict()
        return label

    def add_task_label(self, task_id: str, label_id: str) -> None:
        with self._mutate() as t:
            self._require("tasks", task_id, "Task")
            self._require("labels", label_id, "Label")
            key = f"{task_id}:{label_id}"
            t["task_labels"][key] = {"task_id": task_id, "label_id": label_id}

    def remove_task_label(self, task_id: str, label_id: str) -> None:
        with self._mutate() as t:
            key = f"{task_id}:{label_id}"
            if key not in t["task_labels"]:
                raise NotFoundError("Task label not found")
            del t["task_labels"][key]

    def _drop_label(self, t, label_id: str) -> None:
        for key, link in list(t["task_labels"].items()):
            if link["label_id"] == label_id:
                del t["task_labels"][key]
        del t["labels"][label_id]

    # ── Tasks ────────────────────────────────────────────────────────────────

    def create_task(self, column_id: str, title: str, description: str = None,
                    priority: str = None, due_date: Any = None, assignee_id: str = None,
                    estimated_hours: Any = None) -> Task:
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
        with self._mutate() as t:
            self._require("columns", column_id, "Column")
            if task.assignee_id:
                self._require("users", task.assignee_id, "Assignee")
            positions.append(self._children("tasks", "column_id", column_id), task)
            t["tasks"][task.id] = {
                "id": task.id, "column_id": column_id, "title": task.title,
                "description": task.description, "position": task.position,
                "priority": task.priority.value, "due_date": iso(task.due_date),
                "estimated_hours": task.estimated_hours, "assignee_id": task.assignee_id,
                "created_at": iso(task.created_at), "updated_at": iso(task.updated_at),
            }
            return self._task(t["tasks"][task.id], full=False)

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            return self._task(self._require("tasks", task_id, "Task"), full=True)

    def update_task(self, task_id: str, **fields) -> Task:
        with self._mutate() as t:
            row = self._require("tasks", task_id, "Task")
            if "title" in fields:
                row["title"] = require_text(fields["title"], "Title is required")
            if "description" in fields:
                row["description"] = fields["description"] or None
            if "priority" in fields:
                row["priority"] = Priority.parse(fields["priority"]).value
            if "due_date" in fields:
                row["due_date"] = iso(parse_datetime(fields["due_date"]))
            if "estimated_hours" in fields:
                row["estimated_hours"] = parse_estimate(fields["estimated_hours"])
            if "assignee_id" in fields:
                if fields["assignee_id"]:
                    self._require("users", fields["assignee_id"], "Assignee")
                row["assignee_id"] = fields["assignee_id"] or None
            row["updated_at"] = iso(utc_now())
            return self._task(row, full=False)

    def delete_task(self, task_id: str) -> List[Attachment]:
        with self._mutate() as t:
            self._require("tasks", task_id, "Task")
            removed = self._drop_task(t, task_id)
        logger.info(f"Deleted task {task_id}")
        return removed

    def reorder_tasks(self, moves) -> None:
        """Apply a batch of (task, column, position) assignments atomically."""
        moves = positions.parse_moves(moves)
        with self._mutate() as t:
            positions.apply_moves(t["tasks"], moves, containers=t["columns"])
            now = iso(utc_now())
            for move in moves:
                t["tasks"][move.id]["updated_at"] = now
            if self.strict_positions:
                for column_id in positions.affected_containers(moves):
                    taken = [r["position"] for r in self._children("tasks", "column_id", column_id)]
                    if not positions.is_dense(taken):
                        raise ValidationError(
                            f"Positions in column {column_id} would not be contiguous"
                        )
        logger.info(f"Reordered {len(moves)} tasks")

    def _drop_task(self, t, task_id: str) -> List[Attachment]:
        for checklist in self._children("checklists", "task_id", task_id):
            for item in self._children("checklist_items", "checklist_id", checklist["id"]):
                del t["checklist_items"][item["id"]]
            del t["checklists"][checklist["id"]]
        for table in ("comments", "time_entries"):
            for row in self._children(table, "task_id", task_id):
                del t[table][row["id"]]
        removed = []
        for row in self._children("attachments", "task_id", task_id):
            removed.append(Attachment.from_dict(row))
            del t["attachments"][row["id"]]
        for key, link in list(t["task_labels"].items()):
            if link["task_id"] == task_id:
                del t["task_labels"][key]
        del t["tasks"][task_id]
        return removed

    def _task(self, row: dict, full: bool) -> Task:
        task = Task.from_dict(row)
        task.assignee = self._summary(task.assignee_id)
        task.checklists = [self._checklist(r) for r in
                           positions.ordered(self._children("checklists", "task_id", task.id))]
        task.labels = sorted(
            (Label.from_dict(self._tables["labels"][link["label_id"]])
             for link in self._tables["task_labels"].values() if link["task_id"] == task.id),
            key=lambda l: l.name,
        )
        comments = self._children("comments", "task_id", task.id)
        attachments = self._children("attachments", "task_id", task.id)
        task.comment_count = len(comments)
        task.attachment_count = len(attachments)
        if full:
            task.comments = [self._comment(r) for r in
                             sorted(comments, key=lambda r: r["created_at"])]
            task.attachments = [Attachment.from_dict(r) for r in
                                sorted(attachments, key=lambda r: r["created_at"])]
            task.time_entries = self.list_time_entries(task.id)
        return task

    # ── Checklists ───────────────────────────────────────────────────────────

    def create_checklist(self, task_id: str, title: str) -> Checklist:
        if not isinstance(title, str) or not title.strip() or not task_id:
            raise ValidationError("Title and task_id are required")
        with self._mutate() as t:
            self._require("tasks", task_id, "Task")
            checklist = Checklist(id=new_id(), task_id=task_id, title=title.strip())
            positions.append(self._children("checklists", "task_id", task_id), checklist)
            row = checklist.to_dict()
            del row["items"]
            t["checklists"][checklist.id] = row
        return checklist

    def get_checklist(self, checklist_id: str) -> Checklist:
        with self._lock:
            return self._checklist(self._require("checklists", checklist_id, "Checklist"))

    def update_checklist(self, checklist_id: str, title: str) -> Checklist:
        title = require_text(title, "Title is required")
        with self._mutate():
            self._require("checklists", checklist_id, "Checklist")["title"] = title
        return self.get_checklist(checklist_id)

    def delete_checklist(self, checklist_id: str) -> None:
        with self._mutate() as t:
            self._require("checklists", checklist_id, "Checklist")
            for item in self._children("checklist_items", "checklist_id", checklist_id):
                del t["checklist_items"][item["id"]]
            del t["checklists"][checklist_id]

    def create_checklist_item(self, checklist_id: str, content: str) -> ChecklistItem:
        if not isinstance(content, str) or not content.strip() or not checklist_id:
            raise ValidationError("Content and checklist_id are required")
        with self._mutate() as t:
            self._require("checklists", checklist_id, "Checklist")
            item = ChecklistItem(id=new_id(), checklist_id=checklist_id, content=content.strip())
            positions.append(self._children("checklist_items", "checklist_id", checklist_id), item)
            t["checklist_items"][item.id] = item.to_dict()
        return item

    def update_checklist_item(self, item_id: str, content: str = None,
                              completed: bool = None) -> ChecklistItem:
        with self._mutate():
            row = self._require("checklist_items", item_id, "Checklist item")
            if content is not None:
                row["content"] = require_text(content, "Content is required")
            if completed is not None:
                row["completed"] = parse_flag(completed, "completed")
            return ChecklistItem.from_dict(row)

    def delete_checklist_item(self, item_id: str) -> None:
        with self._mutate() as t:
            self._require("checklist_items", item_id, "Checklist item")
            del t["checklist_items"][item_id]

    def _checklist(self, row: dict) -> Checklist:
        checklist = Checklist.from_dict(row)
        checklist.items = [ChecklistItem.from_dict(r) for r in positions.ordered(
            self._children("checklist_items", "checklist_id", checklist.id))]
        return checklist

    # ── Comments ─────────────────────────────────────────────────────────────

    def create_comment(self, task_id: str, author_id: str, content: str) -> Comment:
        if not isinstance(content, str) or not content.strip() or not task_id:
            raise ValidationError("Content and task_id are required")
        with self._mutate() as t:
            self._require("tasks", task_id, "Task")
            author = User.from_dict(self._require("users", author_id, "User"))
            comment = Comment(id=new_id(), task_id=task_id, author_id=author_id,
                              content=content.strip(), author=author.summary())
            row = comment.to_dict()
            del row["author"]
            t["comments"][comment.id] = row
        return comment

    def get_comment(self, comment_id: str) -> Comment:
        with self._lock:
            return self._comment(self._require("comments", comment_id, "Comment"))

    def update_comment(self, comment_id: str, content: str) -> Comment:
        content = require_text(content, "Content is required")
        with self._mutate():
            row = self._require("comments", comment_id, "Comment")
            row["content"] = content
            row["updated_at"] = iso(utc_now())
            return self._comment(row)

    def delete_comment(self, comment_id: str) -> None:
        with self._mutate() as t:
            self._require("comments", comment_id, "Comment")
            del t["comments"][comment_id]

    def _comment(self, row: dict) -> Comment:
        comment = Comment.from_dict(row)
        comment.author = self._summary(comment.author_id)
        return comment

    # ── Time entries ─────────────────────────────────────────────────────────

    def list_time_entries(self, task_id: str) -> List[TimeEntry]:
        with self._lock:
            rows = sorted(self._children("time_entries", "task_id", task_id),
                          key=lambda r: r["date"], reverse=True)
            return [self._time_entry(r) for r in rows]

    def create_time_entry(self, task_id: str, user_id: str, hours: Any,
                          description: str = None, date: Any = None) -> TimeEntry:
        if not task_id:
            raise ValidationError("task_id and a positive hours value are required")
        hours = parse_hours(hours, "task_id and a positive hours value are required")
        with self._mutate() as t:
            self._require("tasks", task_id, "Task")
            user = User.from_dict(self._require("users", user_id, "User"))
            entry = TimeEntry(id=new_id(), task_id=task_id, user_id=user_id, hours=hours,
                              description=description or None,
                              date=parse_datetime(date) or utc_now(), user=user.summary())
            row = entry.to_dict()
            del row["user"]
            t["time_entries"][entry.id] = row
        return entry

    def get_time_entry(self, entry_id: str) -> TimeEntry:
        with self._lock:
            return self._time_entry(self._require("time_entries", entry_id, "Time entry"))

    def update_time_entry(self, entry_id: str, **fields) -> TimeEntry:
        with self._mutate():
            row = self._require("time_entries", entry_id, "Time entry")
            if "hours" in fields:
                row["hours"] = parse_hours(fields["hours"])
            if "description" in fields:
                row["description"] = fields["description"] or None
            if "date" in fields:
                row["date"] = iso(parse_datetime(fields["date"]) or utc_now())
            return self._time_entry(row)

    def delete_time_entry(self, entry_id: str) -> None:
        with self._mutate() as t:
            self._require("time_entries", entry_id, "Time entry")
            del t["time_entries"][entry_id]

    def _time_entry(self, row: dict) -> TimeEntry:
        entry = TimeEntry.from_dict(row)
        entry.user = self._summary(entry.user_id)
        return entry

    # ── Attachments ──────────────────────────────────────────────────────────

    def create_attachment(self, task_id: str, filename: str, filepath: str,
                          mimetype: str = None, size: int = 0) -> Attachment:
        with self._mutate() as t:
            self._require("tasks", task_id, "Task")
            attachment = Attachment(id=new_id(), task_id=task_id, filename=filename,
                                    filepath=filepath, size=size or 0)
            if mimetype:
                attachment.mimetype = mimetype
            t["attachments"][attachment.id] = attachment.to_dict()
        return attachment

    def get_attachment(self, attachment_id: str) -> Attachment:
        with self._lock:
            return Attachment.from_dict(self._require("attachments", attachment_id, "Attachment"))

    def delete_attachment(self, attachment_id: str) -> None:
        with self._mutate() as t:
            self._require("attachments", attachment_id, "Attachment")
            del t["attachments"][attachment_id]


def seed_demo_data(store) -> Project:
    """Populate any store with the demo user and a sample board.

    Works through the public store methods only, so it seeds a SQLiteStore
    just as well as a MemoryStore.
    """
    user = store.find_user_by_email("demo@example.com")
    if user is None:
        user = store.create_user("demo@example.com", "Demo User", role="admin",
                                 user_id=DEMO_USER_ID)

    project = store.create_project(
        user.id, "AI Team Project Tracker",
        description="Track all AI adoption team projects and tasks", type="internal",
    )
    for name, color in (("Bug", "#ef4444"), ("Feature", "#3b82f6"),
                        ("Enhancement", "#10b981"), ("Documentation", "#f59e0b")):
        store.create_label(project.id, name, color)

    columns = {c.name: c.id for c in project.columns}
    now = utc_now()

    design = store.create_task(
        columns["To Do"], "Design new dashboard layout",
        description="Create wireframes and mockups for the new dashboard",
        priority="high", due_date=now + timedelta(days=7),
        assignee_id=user.id,
    )
    checklist = store.create_checklist(design.id, "Design Tasks")
    first = store.create_checklist_item(checklist.id, "Create wireframes")
    store.update_checklist_item(first.id, completed=True)
    store.create_checklist_item(checklist.id, "Design mockups")
    store.create_checklist_item(checklist.id, "Get feedback")

    auth = store.create_task(
        columns["In Progress"], "Implement user authentication",
        description="Set up credential login for the API", priority="high",
        due_date=now + timedelta(days=3), assignee_id=user.id,
    )
    store.create_comment(auth.id, user.id,
                         "Started working on this. Will have a PR ready by tomorrow.")

    store.create_task(
        columns["Done"], "Project setup and configuration",
        description="Initialize the project skeleton and tooling", priority="medium",
        assignee_id=user.id,
    )
    logger.info(f"Seeded demo project {project.id}")
    return project
