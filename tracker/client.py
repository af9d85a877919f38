"""
HTTP client for a remote tracker server.

TrackerClient mirrors the store methods over the JSON API, so a BoardSession
can run against a server exactly as it runs against a local store. Calls act
as the authenticated caller, so the author/owner/user arguments the stores
take are not part of these signatures.

Non-2xx responses are raised as the matching TrackerError subclass; network
failures surface as StorageFailure.
"""
import logging
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

import requests

from . import positions
from .errors import StorageFailure, error_for_status
from .schema import (
    Attachment,
    Checklist,
    ChecklistItem,
    Comment,
    Label,
    Project,
    Task,
    TimeEntry,
    User,
)

logger = logging.getLogger(__name__)


class TrackerClient:
    """Talks to tracker_server.py over HTTP."""

    backend = "http"

    def __init__(self, base_url: str, api_key: str = None,
                 auth: Optional[Tuple[str, str]] = None,
                 session=None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Accept": "application/json"}
        if api_key:
            self.headers["X-API-Key"] = api_key

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(
                method, url, headers=self.headers, auth=self.auth,
                timeout=self.timeout, **kwargs,
            )
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise StorageFailure(f"Tracker server unreachable: {e}") from e

        if not r.ok:
            try:
                message = r.json().get("error", "")
            except ValueError:
                message = r.text
            logger.debug(f"{method} {path} → {r.status_code}: {message}")
            raise error_for_status(r.status_code, message)
        return r.json()

    # ── Misc ─────────────────────────────────────────────────────────────────

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def register(self, email: str, password: str, name: str) -> User:
        data = self._request("POST", "/api/auth/register",
                             json={"email": email, "password": password, "name": name})
        return User.from_dict(data["user"])

    def list_users(self) -> List[User]:
        return [User.from_dict(u) for u in self._request("GET", "/api/users")]

    # ── Projects ─────────────────────────────────────────────────────────────

    def list_projects(self) -> List[Project]:
        return [Project.from_dict(p) for p in self._request("GET", "/api/projects")]

    def get_project(self, project_id: str) -> Project:
        return Project.from_dict(self._request("GET", f"/api/projects/{project_id}"))

    def create_project(self, name: str, description: str = None, type: str = None) -> Project:
        body = {"name": name, "description": description, "type": type}
        return Project.from_dict(self._request("POST", "/api/projects", json=body))

    def update_project(self, project_id: str, **fields) -> Project:
        return Project.from_dict(self._request("PUT", f"/api/projects/{project_id}", json=fields))

    def delete_project(self, project_id: str) -> None:
        self._request("DELETE", f"/api/projects/{project_id}")

    def create_label(self, project_id: str, name: str, color: str = None) -> Label:
        data = self._request("POST", f"/api/projects/{project_id}/labels",
                             json={"name": name, "color": color})
        return Label.from_dict(data)

    # ── Tasks ────────────────────────────────────────────────────────────────

    def create_task(self, column_id: str, title: str, description: str = None,
                    priority: str = None, due_date: Any = None, assignee_id: str = None,
                    estimated_hours: Any = None) -> Task:
        body = {
            "column_id": column_id,
            "title": title,
            "description": description,
            "priority": priority,
            "due_date": due_date.isoformat() if hasattr(due_date, "isoformat") else due_date,
            "assignee_id": assignee_id,
            "estimated_hours": estimated_hours,
        }
        return Task.from_dict(self._request("POST", "/api/tasks", json=body))

    def get_task(self, task_id: str) -> Task:
        return Task.from_dict(self._request("GET", f"/api/tasks/{task_id}"))

    def update_task(self, task_id: str, **fields) -> Task:
        if hasattr(fields.get("due_date"), "isoformat"):
            fields["due_date"] = fields["due_date"].isoformat()
        return Task.from_dict(self._request("PUT", f"/api/tasks/{task_id}", json=fields))

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", f"/api/tasks/{task_id}")

    def reorder_tasks(self, moves) -> None:
        """Submit a batch reorder. Malformed batches never leave the process."""
        moves = positions.parse_moves(moves)
        self._request("PUT", "/api/tasks", json={"tasks": [m.to_dict() for m in moves]})

    def add_task_label(self, task_id: str, label_id: str) -> None:
        self._request("POST", f"/api/tasks/{task_id}/labels", json={"label_id": label_id})

    def remove_task_label(self, task_id: str, label_id: str) -> None:
        self._request("DELETE", f"/api/tasks/{task_id}/labels/{label_id}")

    # ── Checklists ───────────────────────────────────────────────────────────

    def create_checklist(self, task_id: str, title: str) -> Checklist:
        data = self._request("POST", "/api/checklists", json={"task_id": task_id, "title": title})
        return Checklist.from_dict(data)

    def update_checklist(self, checklist_id: str, title: str) -> Checklist:
        data = self._request("PUT", f"/api/checklists/{checklist_id}", json={"title": title})
        return Checklist.from_dict(data)

    def delete_checklist(self, checklist_id: str) -> None:
        self._request("DELETE", f"/api/checklists/{checklist_id}")

    def create_checklist_item(self, checklist_id: str, content: str) -> ChecklistItem:
        data = self._request("POST", "/api/checklist-items",
                             json={"checklist_id": checklist_id, "content": content})
        return ChecklistItem.from_dict(data)

    def update_checklist_item(self, item_id: str, content: str = None,
                              completed: bool = None) -> ChecklistItem:
        body = {k: v for k, v in (("content", content), ("completed", completed)) if v is not None}
        return ChecklistItem.from_dict(
            self._request("PUT", f"/api/checklist-items/{item_id}", json=body)
        )

    def delete_checklist_item(self, item_id: str) -> None:
        self._request("DELETE", f"/api/checklist-items/{item_id}")

    # ── Comments ─────────────────────────────────────────────────────────────

    def create_comment(self, task_id: str, content: str) -> Comment:
        data = self._request("POST", "/api/comments", json={"task_id": task_id, "content": content})
        return Comment.from_dict(data)

    def update_comment(self, comment_id: str, content: str) -> Comment:
        data = self._request("PUT", f"/api/comments/{comment_id}", json={"content": content})
        return Comment.from_dict(data)

    def delete_comment(self, comment_id: str) -> None:
        self._request("DELETE", f"/api/comments/{comment_id}")

    # ── Time entries ─────────────────────────────────────────────────────────

    def list_time_entries(self, task_id: str) -> List[TimeEntry]:
        data = self._request("GET", "/api/time-entries", params={"task_id": task_id})
        return [TimeEntry.from_dict(e) for e in data]

    def create_time_entry(self, task_id: str, hours: Any, description: str = None,
                          date: Any = None) -> TimeEntry:
        body = {
            "task_id": task_id,
            "hours": hours,
            "description": description,
            "date": date.isoformat() if hasattr(date, "isoformat") else date,
        }
        return TimeEntry.from_dict(self._request("POST", "/api/time-entries", json=body))

    def update_time_entry(self, entry_id: str, **fields) -> TimeEntry:
        if hasattr(fields.get("date"), "isoformat"):
            fields["date"] = fields["date"].isoformat()
        return TimeEntry.from_dict(self._request("PUT", f"/api/time-entries/{entry_id}", json=fields))

    def delete_time_entry(self, entry_id: str) -> None:
        self._request("DELETE", f"/api/time-entries/{entry_id}")

    # ── Attachments ──────────────────────────────────────────────────────────

    def upload_attachment(self, task_id: str, filename: str, fileobj: BinaryIO,
                          mimetype: str = "application/octet-stream") -> Attachment:
        data = self._request(
            "POST", "/api/attachments",
            data={"task_id": task_id},
            files={"file": (filename, fileobj, mimetype)},
        )
        return Attachment.from_dict(data)

    def delete_attachment(self, attachment_id: str) -> None:
        self._request("DELETE", f"/api/attachments/{attachment_id}")
