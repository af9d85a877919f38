"""
Tracker data model.

  Project → Columns (ordered) → Tasks (ordered) → Checklists (ordered) → Items (ordered)

Tasks also carry comments, attachments, time entries and labels. Every
ordered entity has a zero-based ``position`` within its container; see
positions.py for how those are assigned.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import math
import uuid

from .errors import ValidationError


DEFAULT_COLUMNS = ["Backlog", "To Do", "In Progress", "Review", "Done"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Opaque unique identifier for any entity."""
    return uuid.uuid4().hex


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, datetime) else value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept a datetime, an ISO-8601 string (``Z`` suffix allowed) or empty.

    The result is always in UTC.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid date: {value}")
    else:
        raise ValidationError(f"Invalid date: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class Priority(Enum):
    """Task priority, lowest to highest."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def from_str(cls, value: str) -> "Priority":
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            return cls.MEDIUM

    @classmethod
    def parse(cls, value: Optional[str]) -> "Priority":
        """Strict variant of from_str for user input. Empty means MEDIUM."""
        if not value:
            return cls.MEDIUM
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(f"Invalid priority: {value}")


class Role(Enum):
    MEMBER = "member"
    ADMIN = "admin"


@dataclass
class User:
    id: str
    email: str
    name: str
    role: Role = Role.MEMBER
    password_hash: str = field(default="", repr=False)
    avatar: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def summary(self) -> Dict[str, Any]:
        """The public subset embedded in tasks, comments and time entries."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "avatar": self.avatar,
        }

    def to_dict(self) -> Dict[str, Any]:
        # password_hash never leaves the store
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "avatar": self.avatar,
            "created_at": iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            email=data.get("email", ""),
            name=data.get("name", ""),
            role=Role(data.get("role") or "member"),
            password_hash=data.get("password_hash", "") or "",
            avatar=data.get("avatar"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


@dataclass
class Label:
    id: str
    project_id: str
    name: str
    color: str = "#6b7280"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "color": self.color,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Label":
        return cls(
            id=data["id"],
            project_id=data.get("project_id", ""),
            name=data.get("name", ""),
            color=data.get("color") or "#6b7280",
        )


@dataclass
class ChecklistItem:
    id: str
    checklist_id: str
    content: str
    completed: bool = False
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "checklist_id": self.checklist_id,
            "content": self.content,
            "completed": self.completed,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChecklistItem":
        return cls(
            id=data["id"],
            checklist_id=data.get("checklist_id", ""),
            content=data.get("content", ""),
            completed=bool(data.get("completed", False)),
            position=int(data.get("position", 0)),
        )


@dataclass
class Checklist:
    id: str
    task_id: str
    title: str
    position: int = 0
    items: List[ChecklistItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "title": self.title,
            "position": self.position,
            "items": [i.to_dict() for i in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checklist":
        return cls(
            id=data["id"],
            task_id=data.get("task_id", ""),
            title=data.get("title", ""),
            position=int(data.get("position", 0)),
            items=[ChecklistItem.from_dict(i) for i in data.get("items", [])],
        )


@dataclass
class Comment:
    id: str
    task_id: str
    author_id: str
    content: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    author: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "author_id": self.author_id,
            "content": self.content,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "author": self.author,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comment":
        return cls(
            id=data["id"],
            task_id=data.get("task_id", ""),
            author_id=data.get("author_id", ""),
            content=data.get("content", ""),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
            author=data.get("author"),
        )


@dataclass
class Attachment:
    id: str
    task_id: str
    filename: str                  # name as uploaded
    filepath: str                  # public path, e.g. /uploads/mockup-1718000000000.pdf
    mimetype: str = "application/octet-stream"
    size: int = 0
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "filename": self.filename,
            "filepath": self.filepath,
            "mimetype": self.mimetype,
            "size": self.size,
            "created_at": iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        return cls(
            id=data["id"],
            task_id=data.get("task_id", ""),
            filename=data.get("filename", ""),
            filepath=data.get("filepath", ""),
            mimetype=data.get("mimetype") or "application/octet-stream",
            size=int(data.get("size") or 0),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


@dataclass
class TimeEntry:
    id: str
    task_id: str
    user_id: str
    hours: float
    description: Optional[str] = None
    date: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)
    user: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "hours": self.hours,
            "description": self.description,
            "date": iso(self.date),
            "created_at": iso(self.created_at),
            "user": self.user,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeEntry":
        return cls(
            id=data["id"],
            task_id=data.get("task_id", ""),
            user_id=data.get("user_id", ""),
            hours=float(data.get("hours", 0)),
            description=data.get("description"),
            date=parse_datetime(data.get("date")) or utc_now(),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            user=data.get("user"),
        )


@dataclass
class Task:
    """A card on the board. Lives in exactly one column at a time."""

    id: str
    column_id: str
    title: str
    description: Optional[str] = None
    position: int = 0
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    assignee_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # Relations, filled in by the store on read
    assignee: Optional[Dict[str, Any]] = None
    checklists: List[Checklist] = field(default_factory=list)
    labels: List[Label] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    time_entries: List[TimeEntry] = field(default_factory=list)
    comment_count: int = 0
    attachment_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "column_id": self.column_id,
            "title": self.title,
            "description": self.description,
            "position": self.position,
            "priority": self.priority.value,
            "due_date": iso(self.due_date),
            "estimated_hours": self.estimated_hours,
            "assignee_id": self.assignee_id,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "assignee": self.assignee,
            "checklists": [c.to_dict() for c in self.checklists],
            "labels": [l.to_dict() for l in self.labels],
            "comments": [c.to_dict() for c in self.comments],
            "attachments": [a.to_dict() for a in self.attachments],
            "time_entries": [t.to_dict() for t in self.time_entries],
            "comment_count": self.comment_count,
            "attachment_count": self.attachment_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        estimated = data.get("estimated_hours")
        return cls(
            id=data["id"],
            column_id=data.get("column_id", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            position=int(data.get("position", 0)),
            priority=Priority.from_str(data.get("priority") or "medium"),
            due_date=parse_datetime(data.get("due_date")),
            estimated_hours=float(estimated) if estimated is not None else None,
            assignee_id=data.get("assignee_id"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
            assignee=data.get("assignee"),
            checklists=[Checklist.from_dict(c) for c in data.get("checklists", [])],
            labels=[Label.from_dict(l) for l in data.get("labels", [])],
            comments=[Comment.from_dict(c) for c in data.get("comments", [])],
            attachments=[Attachment.from_dict(a) for a in data.get("attachments", [])],
            time_entries=[TimeEntry.from_dict(t) for t in data.get("time_entries", [])],
            comment_count=int(data.get("comment_count", 0)),
            attachment_count=int(data.get("attachment_count", 0)),
        )


@dataclass
class Column:
    id: str
    project_id: str
    name: str
    position: int = 0
    tasks: List[Task] = field(default_factory=list)
    task_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "position": self.position,
            "tasks": [t.to_dict() for t in self.tasks],
            "task_count": self.task_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            id=data["id"],
            project_id=data.get("project_id", ""),
            name=data.get("name", ""),
            position=int(data.get("position", 0)),
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            task_count=int(data.get("task_count", 0)),
        )


@dataclass
class Project:
    id: str
    name: str
    owner_id: str
    description: Optional[str] = None
    type: str = "general"
    archived: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    owner: Optional[Dict[str, Any]] = None
    columns: List[Column] = field(default_factory=list)
    labels: List[Label] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "archived": self.archived,
            "owner_id": self.owner_id,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "owner": self.owner,
            "columns": [c.to_dict() for c in self.columns],
            "labels": [l.to_dict() for l in self.labels],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            owner_id=data.get("owner_id", ""),
            description=data.get("description"),
            type=data.get("type") or "general",
            archived=bool(data.get("archived", False)),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
            owner=data.get("owner"),
            columns=[Column.from_dict(c) for c in data.get("columns", [])],
            labels=[Label.from_dict(l) for l in data.get("labels", [])],
        )


@dataclass
class TaskMove:
    """One entry of a batch reorder: where a task should end up."""
    id: str
    column_id: str
    position: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "column_id": self.column_id, "position": self.position}


# ── Input helpers shared by the stores ───────────────────────────────────────

def require_text(value: Any, message: str) -> str:
    """Return ``value`` stripped, or raise ValidationError when it is empty."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value.strip()


def parse_flag(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false")
    return value


def parse_hours(value: Any, message: str = "A positive hours value is required") -> float:
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError(message)
    if not math.isfinite(hours) or hours <= 0:
        raise ValidationError(message)
    return hours


def parse_estimate(value: Any) -> Optional[float]:
    """Estimated hours may be cleared with None or an empty string."""
    if value in (None, ""):
        return None
    try:
        estimate = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid estimated hours: {value}")
    if not math.isfinite(estimate):
        raise ValidationError(f"Invalid estimated hours: {value}")
    if estimate < 0:
        raise ValidationError("Estimated hours cannot be negative")
    return estimate
